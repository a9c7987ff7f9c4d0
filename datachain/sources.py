"""
Ordered data sources for dataset listings.

Each source answers fetch_candidates(creator) with DatasetRecords. Listings
walk the sources in priority order (chain, local registry, pinning service)
and use the first one that returns anything.
"""

import datetime
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from datachain import constants
from datachain.chain import GET_DATASETS_BY_CREATOR, ChainService, record_from_chain
from datachain.errors import DataChainError
from datachain.helpers import same_address, utcnow
from datachain.ipfs_helper import BlobStore
from datachain.models import AccessStatus, DatasetRecord
from datachain.registry import RegistryService

logger = logging.getLogger(__name__)


class DataSource(ABC):
    name = "source"

    @abstractmethod
    def fetch_candidates(self, creator: Optional[str] = None) -> List[DatasetRecord]:
        """Datasets known to this source, optionally only those of creator"""


class ChainDataSource(DataSource):
    """Datasets registered on the registry contract"""
    name = "blockchain"

    def __init__(self, chain: ChainService,
                 service_account: str = constants.SERVICE_ACCOUNT_ADDRESS,
                 module_address: str = constants.CONTRACT_ADDRESS):
        self.chain = chain
        self.service_account = service_account
        self.module_address = module_address

    def _by_creator(self, creator: str) -> List[DatasetRecord]:
        result = self.chain.view(GET_DATASETS_BY_CREATOR, [creator])
        # Views returning a single array may come back wrapped in a list
        if (isinstance(result, (list, tuple)) and len(result) == 1 and isinstance(result[0], list)
                and all(isinstance(item, (list, tuple, dict)) for item in result[0])):
            result = result[0]
        return [
            record_from_chain(raw, default_id=str(index + 1), default_creator=creator)
            for index, raw in enumerate(result or [])
        ]

    def fetch_candidates(self, creator: Optional[str] = None) -> List[DatasetRecord]:
        if not self.chain.is_configured():
            return []
        if creator:
            return self._by_creator(creator)

        # Explore view: the service account registers datasets, the module address is the fallback
        for account in (self.service_account, self.module_address):
            if not account:
                continue
            try:
                records = self._by_creator(account)
            except DataChainError as e:
                logger.info(f"No datasets found for {account}: {e}")
                continue
            if records:
                return records
        return []


class RegistryDataSource(DataSource):
    """Datasets stored in the local registry"""
    name = "datastore"

    def __init__(self, registry: RegistryService):
        self.registry = registry

    def fetch_candidates(self, creator: Optional[str] = None) -> List[DatasetRecord]:
        if creator:
            return self.registry.list_by_creator(creator)
        return self.registry.list_all()


class PinListDataSource(DataSource):
    """Files pinned on the pinning service, described by their pin metadata"""
    name = "pinning"

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    def _record(self, pin: dict) -> DatasetRecord:
        keyvalues = pin.get("keyvalues") or {}
        pinned = pin.get("date_pinned")
        try:
            created_at = datetime.datetime.fromisoformat(pinned.replace("Z", "+00:00")) if pinned else utcnow()
        except ValueError:
            created_at = utcnow()

        tags = keyvalues.get("tags") or ""
        try:
            size = int(pin.get("size") or 0)
        except (TypeError, ValueError):
            size = 0

        return DatasetRecord(
            id=pin["cid"],
            creator=keyvalues.get("creator") or "unknown",
            content_id=pin["cid"],
            integrity_hash=keyvalues.get("hash", ""),
            name=keyvalues.get("originalName") or pin.get("name") or "Untitled Dataset",
            description=keyvalues.get("description", ""),
            license=keyvalues.get("license", "MIT"),
            category=keyvalues.get("category", "Other"),
            tags=[t.strip() for t in tags.split(",") if t.strip()],
            access_status=AccessStatus.PUBLIC,
            size_bytes=size,
            filename=keyvalues.get("originalName"),
            created_at=created_at,
            updated_at=created_at,
            source="pinning",
        )

    def fetch_candidates(self, creator: Optional[str] = None) -> List[DatasetRecord]:
        records = []
        for pin in self.blob_store.list_pins():
            if not pin.get("cid"):
                continue
            keyvalues = pin.get("keyvalues") or {}
            # Encrypted or non-public pins are never listed from pin metadata alone
            if keyvalues.get("encrypted") == "True" or keyvalues.get("status", "Public") != "Public":
                continue
            record = self._record(pin)
            if creator and not same_address(record.creator, creator):
                continue
            records.append(record)
        return records


def resolve_candidates(sources: Sequence[DataSource],
                       creator: Optional[str] = None) -> Tuple[Optional[str], List[DatasetRecord]]:
    """
    Evaluate sources in priority order.

    Returns:
        tuple: (source name, records) of the first source with results,
        or (None, []) when every source came back empty or failed
    """
    for source in sources:
        try:
            records = source.fetch_candidates(creator)
        except DataChainError as e:
            logger.warning(f"Data source {source.name} failed: {e}")
            continue
        if records:
            logger.info(f"Using {len(records)} datasets from {source.name}")
            return source.name, records
        logger.debug(f"Data source {source.name} returned no datasets")
    return None, []
