"""
Dataset registry for tracking dataset metadata and gated-access grants.

The registry is the process-local source of truth for datasets uploaded
through this service. It is constructed explicitly and handed to whatever
needs it; tests build their own isolated instances.
"""

import itertools
import logging
import threading
from typing import Dict, List, Optional

from datachain import constants
from datachain.errors import InvalidInput, NotFound
from datachain.helpers import same_address, short_address, utcnow
from datachain.models import (
    AccessGrant, AccessStatus, DatasetCreate, DatasetRecord, RegistryStats
)

logger = logging.getLogger(__name__)

BASE_TRUST_SCORE = 80
TRUST_BONUS = 5


def initial_trust_score(fields: DatasetCreate) -> int:
    """Deterministic starting trust score: 80 plus 5 per completed metadata field"""
    score = BASE_TRUST_SCORE
    for present in (fields.description.strip(), fields.license.strip(), fields.tags, fields.integrity_hash):
        if present:
            score += TRUST_BONUS
    return max(0, min(100, score))


class RegistryService:
    """
    In-memory catalog of datasets and purchase grants.

    A single lock serializes every mutation and read, so counters never lose
    increments and readers always see a state from between two operations.
    Records handed out are copies; mutating them does not touch the registry.
    """

    def __init__(self, high_trust_threshold: int = constants.HIGH_TRUST_THRESHOLD):
        self._lock = threading.Lock()
        self._datasets: Dict[str, DatasetRecord] = {}
        self._grants: Dict[str, AccessGrant] = {}
        self._ids = itertools.count(1)
        self.high_trust_threshold = high_trust_threshold

    def _get(self, dataset_id: str) -> DatasetRecord:
        dataset = self._datasets.get(dataset_id)
        if dataset is None:
            raise NotFound(f"dataset {dataset_id} not found")
        return dataset

    def create_dataset(self, fields: DatasetCreate) -> DatasetRecord:
        """
        Store a new dataset.

        Args:
            fields: The uploaded dataset's metadata

        Returns:
            The stored record, with its id, timestamps, counters and trust score

        Raises:
            InvalidInput: a gated dataset without a positive price, or negative sizes/prices
        """
        if not fields.creator or not fields.creator.strip():
            raise InvalidInput("creator is required")
        if not fields.content_id:
            raise InvalidInput("content id is required")
        if fields.size_bytes < 0:
            raise InvalidInput("size must be non-negative")

        gated = fields.access_status == AccessStatus.GATED
        if gated and fields.price <= 0:
            raise InvalidInput("gated datasets require a positive price")
        if fields.price < 0:
            raise InvalidInput("price must be non-negative")

        data = fields.model_dump()
        data["tags"] = list(fields.tags)
        if not gated:
            data["price"] = 0

        with self._lock:
            dataset_id = f"dataset_{next(self._ids)}"
            now = utcnow()
            record = DatasetRecord(
                **data,
                id=dataset_id,
                downloads=0,
                views=0,
                trust_score=initial_trust_score(fields),
                created_at=now,
                updated_at=now,
                source="registry",
            )
            grant = AccessGrant(dataset_id=dataset_id) if gated else None

            # Both inserts are plain dict assignments, so neither can fail halfway
            self._datasets[dataset_id] = record
            if grant is not None:
                self._grants[dataset_id] = grant

        logger.info(
            f"Registered {dataset_id} ({record.access_status.value}) for {short_address(record.creator)}"
        )
        return record.model_copy(deep=True)

    def get_dataset(self, dataset_id: str) -> DatasetRecord:
        with self._lock:
            return self._get(dataset_id).model_copy(deep=True)

    def find_by_content_id(self, content_id: str) -> Optional[DatasetRecord]:
        """Return the first dataset stored under content_id, if any"""
        with self._lock:
            for dataset in self._datasets.values():
                if dataset.content_id == content_id:
                    return dataset.model_copy(deep=True)
        return None

    def list_by_creator(self, creator: str) -> List[DatasetRecord]:
        with self._lock:
            return [
                d.model_copy(deep=True) for d in self._datasets.values()
                if same_address(d.creator, creator)
            ]

    def list_all(self) -> List[DatasetRecord]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._datasets.values()]

    def _touch(self, dataset: DatasetRecord) -> None:
        dataset.updated_at = max(utcnow(), dataset.created_at)

    def record_view(self, dataset_id: str) -> int:
        """Increment the view counter; returns the new count"""
        with self._lock:
            dataset = self._get(dataset_id)
            dataset.views += 1
            self._touch(dataset)
            return dataset.views

    def record_download(self, dataset_id: str) -> int:
        """Increment the download counter; returns the new count"""
        with self._lock:
            dataset = self._get(dataset_id)
            dataset.downloads += 1
            self._touch(dataset)
            return dataset.downloads

    def grant_purchase(self, dataset_id: str, purchaser: str) -> AccessGrant:
        """
        Record that purchaser bought access to a gated dataset.

        Granting twice is not an error and does not duplicate the purchaser.

        Raises:
            InvalidInput: empty purchaser address
            NotFound: the dataset does not exist or is not gated
        """
        if not purchaser or not purchaser.strip():
            raise InvalidInput("purchaser address is required")
        with self._lock:
            grant = self._grants.get(dataset_id)
            if grant is None:
                raise NotFound(f"no access grant for dataset {dataset_id}")
            if not any(same_address(p, purchaser) for p in grant.purchasers):
                grant.purchasers.append(purchaser)
                logger.info(f"Granted {dataset_id} to {short_address(purchaser)}")
            return grant.model_copy(deep=True)

    def get_grant(self, dataset_id: str) -> AccessGrant:
        with self._lock:
            grant = self._grants.get(dataset_id)
            if grant is None:
                raise NotFound(f"no access grant for dataset {dataset_id}")
            return grant.model_copy(deep=True)

    def has_access(self, dataset_id: str, requester: Optional[str]) -> bool:
        """
        Evaluate the access policy for requester.

        Public datasets are open to everyone, private ones to their creator,
        gated ones to the creator and purchasers. Unknown datasets grant nothing.
        """
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                return False

            if dataset.access_status == AccessStatus.PUBLIC:
                return True

            if not requester:
                return False

            if same_address(requester, dataset.creator):
                return True

            if dataset.access_status == AccessStatus.GATED:
                grant = self._grants.get(dataset_id)
                return grant is not None and any(same_address(p, requester) for p in grant.purchasers)

            return False

    def stats(self) -> RegistryStats:
        with self._lock:
            datasets = list(self._datasets.values())
            return RegistryStats(
                total_datasets=len(datasets),
                total_downloads=sum(d.downloads for d in datasets),
                total_views=sum(d.views for d in datasets),
                unique_creators=len({d.creator.lower() for d in datasets}),
                high_trust_count=sum(1 for d in datasets if d.trust_score >= self.high_trust_threshold),
            )

    def clear(self) -> None:
        """Remove all datasets and grants and restart id allocation"""
        with self._lock:
            self._datasets.clear()
            self._grants.clear()
            self._ids = itertools.count(1)
