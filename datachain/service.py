"""
Marketplace flows: upload, registration, lookup, download and purchase.

MarketplaceService wires the content protection unit, the registry, the
blob store and the chain service together. HTTP handlers call into it with
an already authenticated wallet address.
"""

import logging
from typing import Dict, List, Optional, Tuple, Union

from datachain import constants
from datachain.catalog import parse_tags, query_datasets
from datachain.chain import (
    CREATE_DATASET, GET_DATASET, HAS_ACCESS, PURCHASE_ACCESS,
    ChainService, NullChainService, chain_dataset_id, record_from_chain
)
from datachain.crypto import aes
from datachain.crypto.tokens import create_access_token, verify_access_token
from datachain.errors import (
    AccessDenied, ExternalServiceError, IntegrityError, InternalError, InvalidInput, NotFound
)
from datachain.helpers import same_address, short_address, utcnow
from datachain.ipfs_helper import BlobStore, MemoryBlobStore, content_type_for
from datachain.models import (
    AccessStatus, DatasetCreate, DatasetRecord, DownloadedFile, PurchaseReceipt, UploadResult
)
from datachain.registry import RegistryService
from datachain.sources import (
    ChainDataSource, DataSource, PinListDataSource, RegistryDataSource, resolve_candidates
)

logger = logging.getLogger(__name__)


class MarketplaceService:
    def __init__(self, registry: Optional[RegistryService] = None,
                 blob_store: Optional[BlobStore] = None,
                 chain: Optional[ChainService] = None,
                 sources: Optional[List[DataSource]] = None,
                 access_token_secret: str = constants.ACCESS_TOKEN_SECRET,
                 access_token_ttl: int = constants.ACCESS_TOKEN_TTL):
        self.registry = registry if registry is not None else RegistryService()
        self.blob_store = blob_store if blob_store is not None else MemoryBlobStore()
        self.chain = chain if chain is not None else NullChainService()
        if sources is None:
            sources = [
                ChainDataSource(self.chain),
                RegistryDataSource(self.registry),
                PinListDataSource(self.blob_store),
            ]
        self.sources = sources
        self.access_token_secret = access_token_secret
        self.access_token_ttl = access_token_ttl

    # Upload and registration

    def upload(self, data: bytes, filename: str, uploader: str, name: Optional[str] = None,
               description: str = "", license: str = "MIT", category: str = "Other",
               tags: Union[str, List[str], None] = None, access_status: str = "Public",
               price: int = 0, encrypt: bool = False,
               content_type: Optional[str] = None) -> UploadResult:
        """
        Hash, optionally encrypt, pin and register an uploaded file.

        Encrypted files are sealed for the uploader's address; only that
        address can decrypt them later.
        """
        if not data:
            raise InvalidInput("No file provided")
        if not uploader:
            raise InvalidInput("uploader address is required")
        try:
            status = AccessStatus(access_status)
        except ValueError:
            raise InvalidInput(f"unknown access status: {access_status}")
        # Checked before pinning so a rejected upload leaves nothing on the gateway
        if status == AccessStatus.GATED and price <= 0:
            raise InvalidInput("gated datasets require a positive price")
        if price < 0:
            raise InvalidInput("price must be non-negative")

        tag_list = parse_tags(tags) if isinstance(tags, str) or tags is None else [t for t in tags if t]
        original_hash = aes.hash_content(data)

        payload = data
        envelope = None
        if encrypt:
            payload, envelope = aes.encrypt(data, uploader)
            logger.info(f"Encrypted {filename} for {short_address(uploader)}")

        stored_hash = aes.hash_content(payload)
        name = name or filename or "Untitled"

        content_id = self.blob_store.pin(payload, filename, {
            "name": name,
            "originalName": filename,
            "description": description,
            "license": license,
            "category": category,
            "tags": ",".join(tag_list),
            "hash": stored_hash,
            "creator": uploader,
            "status": status.value,
            "encrypted": envelope is not None,
            "uploadedAt": utcnow().isoformat(),
        })

        record = self.registry.create_dataset(DatasetCreate(
            creator=uploader,
            content_id=content_id,
            integrity_hash=original_hash,
            name=name,
            description=description,
            license=license,
            category=category,
            tags=tag_list,
            access_status=status,
            price=price,
            size_bytes=len(data),
            filename=filename,
            content_type=content_type or content_type_for(filename),
            encryption=envelope,
        ))

        return UploadResult(
            dataset=record,
            content_id=content_id,
            hash=stored_hash,
            original_hash=original_hash,
            encrypted=envelope is not None,
        )

    def register_on_chain(self, dataset_id: str, requester: str) -> Tuple[str, DatasetRecord]:
        """Publish a registry dataset to the registry contract; only its creator may do so"""
        record = self.registry.get_dataset(dataset_id)
        if not same_address(record.creator, requester):
            raise AccessDenied("only the creator can register this dataset")
        if not self.chain.is_configured():
            raise ExternalServiceError("Smart contract not configured", service="chain")

        tx_hash = self.chain.submit(CREATE_DATASET, [
            record.content_id,
            record.integrity_hash,
            record.name,
            record.description,
            record.license,
            record.category,
            record.tags,
            record.access_status.value,
            record.price,
        ])
        logger.info(f"Registered {dataset_id} on chain in {tx_hash}")
        return tx_hash, record

    # Lookup

    def _lookup(self, owner: str, dataset_id: str) -> DatasetRecord:
        try:
            record = self.registry.get_dataset(dataset_id)
        except NotFound:
            record = None
        # Registry datasets are addressed by creator and id together
        if record is not None and same_address(record.creator, owner):
            return record
        if not self.chain.is_configured():
            raise NotFound(f"dataset {dataset_id} not found")

        try:
            raw = self.chain.view(GET_DATASET, [owner, chain_dataset_id(dataset_id)])
        except ExternalServiceError as e:
            logger.warning(f"Smart contract query for {dataset_id} failed: {e}")
            raise NotFound(f"dataset {dataset_id} not found")
        return record_from_chain(raw, default_id=dataset_id, default_creator=owner)

    def get_dataset(self, owner: str, dataset_id: str) -> DatasetRecord:
        """Look a dataset up (registry first, then chain) and count the view"""
        record = self._lookup(owner, dataset_id)
        if record.source == "registry":
            record.views = self.registry.record_view(dataset_id)
        return record

    def list_datasets(self, creator: Optional[str] = None, search: Optional[str] = None,
                      tags: Optional[str] = None, sort_by: str = "downloads",
                      limit: int = 50, offset: int = 0) -> Dict:
        source, candidates = resolve_candidates(self.sources, creator)
        page, total = query_datasets(candidates, search=search, tags=tags, sort_by=sort_by,
                                     limit=limit, offset=offset)
        return {
            "source": source,
            "datasets": page,
            "total": total,
            "stats": self.registry.stats(),
        }

    # Access control

    def check_access(self, owner: str, dataset_id: str, requester: Optional[str]) -> bool:
        """Registry policy for local datasets, the contract's hasAccess otherwise"""
        try:
            record = self._lookup(owner, dataset_id)
        except NotFound:
            return False

        if record.source == "registry":
            return self.registry.has_access(dataset_id, requester)
        if record.access_status == AccessStatus.PUBLIC:
            return True
        if not requester:
            return False
        try:
            return bool(self.chain.view(HAS_ACCESS, [requester, owner, chain_dataset_id(dataset_id)]))
        except ExternalServiceError as e:
            logger.error(f"Error checking access on blockchain: {e}")
            return False

    def _require_access(self, record: DatasetRecord, owner: str, requester: Optional[str]) -> None:
        if not self.check_access(owner, record.id, requester):
            if record.access_status == AccessStatus.PRIVATE:
                raise AccessDenied("This dataset is private")
            raise AccessDenied("This dataset requires purchase")

    def download(self, owner: str, dataset_id: str, requester: Optional[str]) -> DownloadedFile:
        """
        Fetch a dataset file for requester.

        Raises:
            NotFound: unknown dataset or missing blob
            AccessDenied: the policy refuses requester, or the file was encrypted for another address
            IntegrityError: decryption or hash verification failed
        """
        record = self._lookup(owner, dataset_id)
        self._require_access(record, owner, requester)

        data = self.blob_store.fetch(record.content_id)
        encrypted = record.is_encrypted
        verified = False

        if encrypted:
            if not requester:
                raise AccessDenied("authentication required for encrypted datasets")
            logger.info(f"Decrypting {dataset_id} for {short_address(requester)}")
            data = aes.decrypt(data, requester, record.encryption)
            aes.verify_plaintext(data, record.encryption)
            verified = True
        elif record.integrity_hash:
            if not aes.verify_hash(data, record.integrity_hash):
                logger.error(f"File integrity check failed for {dataset_id}")
                raise IntegrityError("File integrity verification failed")
            verified = True

        if record.source == "registry":
            self.registry.record_download(dataset_id)

        return DownloadedFile(
            filename=record.filename or record.name,
            content=data,
            content_type=record.content_type or content_type_for(record.filename),
            encrypted=encrypted,
            verified=verified,
        )

    # Purchase

    def purchase(self, owner: str, dataset_id: str, buyer: str) -> PurchaseReceipt:
        """Buy access to a gated dataset on chain (when configured) and grant it locally"""
        if not buyer:
            raise InvalidInput("buyer address is required")
        record = self._lookup(owner, dataset_id)
        if record.access_status != AccessStatus.GATED:
            raise InvalidInput("Dataset is not available for purchase")
        if record.price <= 0:
            raise InvalidInput("Dataset price not set")

        tx_hash = None
        if self.chain.is_configured():
            tx_hash = self.chain.submit(PURCHASE_ACCESS, [
                record.creator or owner, chain_dataset_id(dataset_id), buyer, record.price
            ])

        if record.source == "registry":
            self.registry.grant_purchase(dataset_id, buyer)

        logger.info(f"{short_address(buyer)} purchased {dataset_id}")
        return PurchaseReceipt(
            buyer=buyer,
            dataset_id=dataset_id,
            owner=record.creator or owner,
            price=record.price,
            purchased_at=utcnow(),
            transaction_hash=tx_hash,
        )

    # Access tokens and raw files

    def _token_secret(self) -> str:
        if not self.access_token_secret:
            raise InternalError("access tokens are not configured")
        return self.access_token_secret

    def issue_access_token(self, owner: str, dataset_id: str, requester: str) -> Tuple[str, int]:
        """Issue a download token for a registry dataset the requester can access"""
        secret = self._token_secret()
        record = self._lookup(owner, dataset_id)
        if record.source != "registry":
            raise InvalidInput("access tokens are only issued for datasets stored by this service")
        self._require_access(record, owner, requester)
        token = create_access_token(requester, record.id, record.content_id, secret, ttl=self.access_token_ttl)
        return token, self.access_token_ttl

    def redeem_access_token(self, token: str) -> DownloadedFile:
        payload = verify_access_token(token, self._token_secret())
        record = self.registry.get_dataset(payload.dataset_id)
        if record.content_id != payload.content_id:
            raise AccessDenied("token does not match the dataset content")
        return self.download(record.creator, record.id, payload.user_address)

    def _guard_raw_content(self, content_id: str) -> None:
        record = self.registry.find_by_content_id(content_id)
        if record is not None and (record.access_status != AccessStatus.PUBLIC or record.is_encrypted):
            raise AccessDenied("This file is only available through its dataset")

    def fetch_public_file(self, content_id: str) -> bytes:
        """Raw blob by content id, refused for gated, private or encrypted registry datasets"""
        self._guard_raw_content(content_id)
        return self.blob_store.fetch(content_id)

    def signed_url(self, content_id: str, expires: int = 3600) -> str:
        self._guard_raw_content(content_id)
        return self.blob_store.signed_url(content_id, expires)
