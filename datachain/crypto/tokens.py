"""
Signed JWT access tokens for time-limited dataset downloads.
"""

import time
from typing import Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidSignatureError, InvalidTokenError
from pydantic import ValidationError

from datachain.errors import AccessDenied, InvalidInput
from datachain.models import AccessTokenPayload

JWT_ALGORITHM = "HS256"
DEFAULT_TTL = 24 * 60 * 60  # 24 hours


def create_access_token(user_address: str, dataset_id: str, content_id: str,
                        secret: str, ttl: int = DEFAULT_TTL, now: Optional[float] = None) -> str:
    """
    Create a signed token granting user_address a download of dataset_id.

    Args:
        user_address: Wallet address the download is for
        dataset_id: Dataset the token unlocks
        content_id: Content id of the dataset file when the token was issued
        secret: HMAC secret (ACCESS_TOKEN_SECRET)
        ttl: Lifetime in seconds
        now: Issue time, defaults to the current time

    Returns:
        Encoded JWT token string
    """
    if not secret:
        raise InvalidInput("access token secret is not configured")
    if not user_address or not dataset_id:
        raise InvalidInput("user address and dataset id are required")

    issued = int(now if now is not None else time.time())
    to_encode = {
        "user_address": user_address,
        "dataset_id": dataset_id,
        "content_id": content_id,
        "iat": issued,
        "exp": issued + ttl,
    }
    return jwt.encode(to_encode, secret, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str, secret: str) -> AccessTokenPayload:
    """
    Verify and decode a token produced by create_access_token.

    Raises:
        InvalidInput: the token cannot be decoded or lacks required claims
        AccessDenied: the token expired or its signature does not match
    """
    if not secret:
        raise InvalidInput("access token secret is not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except ExpiredSignatureError:
        raise AccessDenied("token expired")
    except InvalidSignatureError:
        raise AccessDenied("invalid token signature")
    except InvalidTokenError as e:
        raise InvalidInput(f"invalid token format: {e}")

    try:
        return AccessTokenPayload.model_validate(claims)
    except ValidationError as e:
        raise InvalidInput(f"invalid token claims: {e}")
