"""
Chain service client for the dataset registry contract.

The contract is treated as an opaque remote service with read-only views and
state-changing transactions. Web3ChainService talks to it over JSON-RPC with
web3; NullChainService stands in when no RPC URL or contract is configured.
"""

import datetime
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from web3 import Web3

from datachain import constants
from datachain.errors import ExternalServiceError
from datachain.helpers import short_address, utcnow
from datachain.models import AccessStatus, DatasetRecord

logger = logging.getLogger(__name__)

# Registry contract functions
GET_DATASETS_BY_CREATOR = "getDatasetsByCreator"
GET_DATASET = "getDataset"
HAS_ACCESS = "hasAccess"
CREATE_DATASET = "createDataset"
PURCHASE_ACCESS = "purchaseAccess"

# Positional layout of getDataset results
DATASET_TUPLE_FIELDS = (
    "cid", "hash", "name", "description", "license", "category", "tags", "status", "price", "created_at"
)

RECEIPT_TIMEOUT = 120


def load_contract_abi(path: str) -> List[Dict]:
    """Load a contract ABI from a compiled artifact or a bare ABI file"""
    try:
        with open(path, "r") as f:
            artifact = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.warning(f"Contract ABI not found or invalid at {path}: {e}. Using empty ABI.")
        return []
    if isinstance(artifact, dict):
        return artifact.get("abi", [])
    return artifact


def chain_dataset_id(dataset_id: str):
    """Contract dataset ids are integers; local ids stay strings"""
    if isinstance(dataset_id, str) and dataset_id.isdigit():
        return int(dataset_id)
    return dataset_id


class ChainService(ABC):
    """Remote registry contract: read-only views and signed submissions"""

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether views and submissions can be attempted at all"""

    @abstractmethod
    def view(self, function: str, args: Sequence[Any]) -> Any:
        """Run a read-only contract function"""

    @abstractmethod
    def submit(self, function: str, args: Sequence[Any], signer: Optional[str] = None) -> str:
        """Submit a transaction, wait for confirmation and return its hash"""


class NullChainService(ChainService):
    """Chain service used when no contract is configured"""

    def is_configured(self) -> bool:
        return False

    def view(self, function: str, args: Sequence[Any]) -> Any:
        raise ExternalServiceError("Smart contract not configured", service="chain")

    def submit(self, function: str, args: Sequence[Any], signer: Optional[str] = None) -> str:
        raise ExternalServiceError("Smart contract not configured", service="chain")


class Web3ChainService(ChainService):
    """Registry contract reached through a web3 HTTP provider"""

    def __init__(self, rpc_url: str = constants.CHAIN_RPC_URL,
                 contract_address: str = constants.CONTRACT_ADDRESS,
                 abi: Optional[List[Dict]] = None,
                 abi_path: str = constants.CONTRACT_ABI_PATH,
                 private_key: str = constants.SERVICE_ACCOUNT_PRIVATE_KEY,
                 w3: Optional[Web3] = None,
                 receipt_timeout: int = RECEIPT_TIMEOUT):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.private_key = private_key
        self.receipt_timeout = receipt_timeout

        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(
                rpc_url,
                request_kwargs={
                    'timeout': 60,
                    'headers': {
                        "Content-Type": "application/json",
                        "User-Agent": "datachain/1.0"
                    }
                }
            ))
        self.w3 = w3

        if abi is None:
            abi = load_contract_abi(abi_path)
        self.contract = self.w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        logger.info(f"Using registry contract {short_address(contract_address)} on {constants.CHAIN_NETWORK}")

    def is_configured(self) -> bool:
        return bool(self.rpc_url and self.contract_address)

    def _function(self, function: str, args: Sequence[Any]):
        try:
            return getattr(self.contract.functions, function)(*args)
        except Exception as e:
            raise ExternalServiceError(f"Contract function {function} unavailable: {e}", service="chain", cause=e)

    def view(self, function: str, args: Sequence[Any]) -> Any:
        call = self._function(function, args)
        try:
            return call.call()
        except Exception as e:
            logger.error(f"Error calling {function} on chain: {e}")
            raise ExternalServiceError(f"Chain view {function} failed", service="chain", cause=e)

    def submit(self, function: str, args: Sequence[Any], signer: Optional[str] = None) -> str:
        private_key = signer or self.private_key
        if not private_key:
            raise ExternalServiceError("No service account key configured", service="chain")

        call = self._function(function, args)
        try:
            account = self.w3.eth.account.from_key(private_key)
            tx = call.build_transaction({
                'from': account.address,
                'nonce': self.w3.eth.get_transaction_count(account.address),
                'chainId': self.w3.eth.chain_id,
            })
            signed_tx = self.w3.eth.account.sign_transaction(tx, private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            tx_hash_hex = Web3.to_hex(tx_hash)
            logger.info(f"Submitted {function}: {tx_hash_hex}")
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            logger.error(f"Error submitting {function}: {e}")
            raise ExternalServiceError(f"Chain transaction {function} failed", service="chain", cause=e)

        if receipt.get("status") != 1:
            raise ExternalServiceError(f"Chain transaction {function} reverted: {tx_hash_hex}", service="chain")
        return tx_hash_hex


def create_chain_service() -> ChainService:
    """Build the chain service from the environment"""
    if not constants.CHAIN_RPC_URL or not constants.CONTRACT_ADDRESS:
        logger.info("Blockchain not configured, using local registry only")
        return NullChainService()
    return Web3ChainService()


def _parse_tags(tags) -> List[str]:
    if isinstance(tags, str):
        try:
            tags = json.loads(tags)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse tags: {tags}")
            return []
    if isinstance(tags, (list, tuple)):
        return [str(t) for t in tags]
    return []


def _parse_timestamp(value) -> Optional[datetime.datetime]:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)


def record_from_chain(raw, default_id: str = "", default_creator: str = "") -> DatasetRecord:
    """
    Convert a registry contract result into a DatasetRecord.

    Accepts a mapping with named fields or a tuple laid out like getDataset.
    Counters start at zero; the chain does not track them.
    """
    if isinstance(raw, dict):
        fields = dict(raw)
    else:
        fields = dict(zip(DATASET_TUPLE_FIELDS, raw))

    try:
        status = AccessStatus(fields.get("status") or "Public")
    except ValueError:
        status = AccessStatus.PUBLIC

    try:
        price = int(fields.get("price") or 0)
    except (TypeError, ValueError):
        price = 0

    created_at = _parse_timestamp(fields.get("created_at")) or utcnow()
    updated_at = _parse_timestamp(fields.get("updated_at")) or created_at

    return DatasetRecord(
        id=str(fields.get("id") or default_id),
        creator=fields.get("creator") or default_creator,
        content_id=fields.get("cid") or "",
        integrity_hash=fields.get("hash") or "",
        name=fields.get("name") or "Untitled Dataset",
        description=fields.get("description") or "",
        license=fields.get("license") or "MIT",
        category=fields.get("category") or "Other",
        tags=_parse_tags(fields.get("tags")),
        access_status=status,
        price=price if status == AccessStatus.GATED else 0,
        created_at=created_at,
        updated_at=max(updated_at, created_at),
        source="chain",
    )
