"""
Catalog queries and response shaping for dataset listings.
"""

from typing import Dict, List, Optional, Tuple

from datachain import constants
from datachain.errors import InvalidInput
from datachain.models import DatasetRecord

SORT_KEYS = {
    "downloads": lambda d: d.downloads,
    "trustScore": lambda d: d.trust_score,
    "views": lambda d: d.views,
    "recent": lambda d: d.created_at,
    "size": lambda d: d.size_bytes,
}

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f} MB"


def _matches_search(dataset: DatasetRecord, search: str) -> bool:
    needle = search.lower()
    return (needle in dataset.name.lower()
            or needle in dataset.description.lower()
            or needle in dataset.category.lower())


def _matches_tags(dataset: DatasetRecord, tags: List[str]) -> bool:
    dataset_tags = [t.lower() for t in dataset.tags]
    return any(tag in dataset_tag for tag in tags for dataset_tag in dataset_tags)


def parse_tags(tags: Optional[str]) -> List[str]:
    """Split a comma separated tag string, dropping empty entries"""
    if not tags:
        return []
    return [tag.strip() for tag in tags.split(",") if tag.strip()]


def query_datasets(datasets: List[DatasetRecord], search: Optional[str] = None,
                   tags: Optional[str] = None, sort_by: str = "downloads",
                   limit: int = DEFAULT_LIMIT, offset: int = 0) -> Tuple[List[DatasetRecord], int]:
    """
    Filter, sort and paginate datasets.

    Args:
        datasets: Candidate datasets
        search: Case-insensitive substring matched against name, description and category
        tags: Comma separated tags; a dataset matches when any tag is part of any of its tags
        sort_by: downloads, trustScore, views, recent or size (descending); unknown keys sort by downloads
        limit: Page size
        offset: Page start

    Returns:
        tuple: (page, total number of matches)
    """
    if limit < 0 or offset < 0:
        raise InvalidInput("limit and offset must be non-negative")
    limit = min(limit, MAX_LIMIT)

    results = list(datasets)
    if search:
        results = [d for d in results if _matches_search(d, search)]

    tag_list = [t.lower() for t in parse_tags(tags)]
    if tag_list:
        results = [d for d in results if _matches_tags(d, tag_list)]

    key = SORT_KEYS.get(sort_by, SORT_KEYS["downloads"])
    results.sort(key=key, reverse=True)

    return results[offset:offset + limit], len(results)


def dataset_card(dataset: DatasetRecord) -> Dict:
    """Listing card shape used by the explore page"""
    return {
        "id": dataset.id,
        "title": dataset.name,
        "creator": dataset.creator,
        "trustScore": dataset.trust_score,
        "description": dataset.description,
        "tags": dataset.tags,
        "size": format_size(dataset.size_bytes),
        "downloads": dataset.downloads,
        "views": dataset.views,
        "lastUpdated": dataset.updated_at.date().isoformat(),
        "licenseType": dataset.license,
        "verified": dataset.trust_score >= constants.HIGH_TRUST_THRESHOLD,
        "cid": dataset.content_id,
        "accessStatus": dataset.access_status.value,
        "price": dataset.price,
    }


def dataset_detail(dataset: DatasetRecord) -> Dict:
    """Detail view shape used by the dataset page"""
    return {
        "id": dataset.id,
        "creator": dataset.creator,
        "cid": dataset.content_id,
        "hash": dataset.integrity_hash,
        "name": dataset.name,
        "description": dataset.description,
        "license": dataset.license,
        "category": dataset.category,
        "tags": dataset.tags,
        "gatingInfo": {
            "status": dataset.access_status.value,
            "price": dataset.price,
        },
        "encrypted": dataset.is_encrypted,
        "createdAt": dataset.created_at.isoformat(),
        "updatedAt": dataset.updated_at.isoformat(),
        "versions": [
            {
                "version": "1.0.0",
                "hash": dataset.integrity_hash,
                "cid": dataset.content_id,
                "date": dataset.created_at.isoformat(),
                "changes": "Initial dataset release",
                "size": format_size(dataset.size_bytes),
            }
        ],
        "children": [],
        "downloads": dataset.downloads,
        "views": dataset.views,
        "trustScore": dataset.trust_score,
    }
