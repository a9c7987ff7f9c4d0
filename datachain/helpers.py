"""
Small helpers shared across the DataChain modules.
"""

import datetime
from typing import Optional


def short_address(address: Optional[str]) -> str:
    """Shorten a wallet address for log output (0x1234...abcd)"""
    if not address:
        return "<none>"
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def clean_cid(cid: Optional[str]) -> Optional[str]:
    """Clean a CID by removing whitespace and a leading /ipfs/ prefix"""
    if cid is None:
        return None
    cleaned = cid.strip()
    if cleaned.startswith("/ipfs/"):
        cleaned = cleaned[len("/ipfs/"):]
    return cleaned


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two wallet addresses, ignoring hex case"""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
