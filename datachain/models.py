from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum
import datetime


class AccessStatus(str, Enum):
    """Access tier of a dataset"""
    PUBLIC = "Public"
    PRIVATE = "Private"
    GATED = "Gated"

    @classmethod
    def _missing_(cls, value):
        # Accept the legacy "NFT_Gated" spelling and lower-case input
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in ("nft_gated", "gated"):
                return cls.GATED
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None


class EncryptionEnvelope(BaseModel):
    """Non-secret parameters stored alongside an encrypted payload"""
    salt: str
    iv: str
    auth_tag: str
    owner_address: str
    plaintext_hash: str


class DatasetCreate(BaseModel):
    """Fields supplied when a dataset is uploaded or registered"""
    creator: str
    content_id: str
    integrity_hash: str = ""
    name: str = "Untitled"
    description: str = ""
    license: str = "MIT"
    category: str = "Other"
    tags: List[str] = Field(default_factory=list)
    access_status: AccessStatus = AccessStatus.PUBLIC
    price: int = 0
    size_bytes: int = 0
    filename: Optional[str] = None
    content_type: Optional[str] = None
    encryption: Optional[EncryptionEnvelope] = None


class DatasetRecord(DatasetCreate):
    """One dataset entry in the catalog"""
    id: str
    downloads: int = 0
    views: int = 0
    trust_score: int = 0
    created_at: datetime.datetime
    updated_at: datetime.datetime
    source: str = "registry"

    @property
    def is_encrypted(self) -> bool:
        return self.encryption is not None


class AccessGrant(BaseModel):
    """Purchasers of a gated dataset"""
    dataset_id: str
    purchasers: List[str] = Field(default_factory=list)


class RegistryStats(BaseModel):
    """Aggregate counters over the registry snapshot"""
    total_datasets: int
    total_downloads: int
    total_views: int
    unique_creators: int
    high_trust_count: int


class AccessTokenPayload(BaseModel):
    """Claims carried by a download access token"""
    user_address: str
    dataset_id: str
    content_id: str
    iat: int  # issued at, epoch seconds
    exp: int  # expiry, epoch seconds


class UploadResult(BaseModel):
    """Outcome of an upload"""
    dataset: DatasetRecord
    content_id: str
    hash: str
    original_hash: str
    encrypted: bool


class PurchaseReceipt(BaseModel):
    """Outcome of a purchase"""
    buyer: str
    dataset_id: str
    owner: str
    price: int
    purchased_at: datetime.datetime
    transaction_hash: Optional[str] = None


class DownloadedFile(BaseModel):
    """Decrypted (or plain) file bytes ready to be served"""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    encrypted: bool = False
    verified: bool = False


class AuthChallengeRequest(BaseModel):
    """Model for an authentication challenge request"""
    wallet_address: str


class AuthVerifyRequest(BaseModel):
    """Model for a signed challenge"""
    wallet_address: str
    signature: str


class RegisterDatasetRequest(BaseModel):
    """Model for publishing a registry dataset on chain"""
    dataset_id: str
