"""
Content protection for dataset payloads.

Keys are derived from the owner's wallet address with PBKDF2-HMAC-SHA256 and
a random salt; payloads are sealed with AES-256-GCM using the owner address
as associated data, so a ciphertext only opens for the address it was
encrypted for. The salt, IV and tag travel in an EncryptionEnvelope stored
with the dataset metadata.
"""

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import InvalidTag
import os
import hashlib
import logging
from typing import Optional, Tuple, Union

from pydantic import ValidationError

from datachain import constants
from datachain.errors import AccessDenied, IntegrityError, InternalError, InvalidInput
from datachain.helpers import short_address
from datachain.models import EncryptionEnvelope

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256-bit key
SALT_LENGTH = 32
IV_LENGTH = 12  # 96 bits for GCM
TAG_LENGTH = 16


def _require_address(owner_address) -> bytes:
    if not isinstance(owner_address, str) or not owner_address.strip():
        raise InvalidInput("owner address must be a non-empty string")
    return owner_address.encode('utf-8')


def _from_hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError) as e:
        raise InternalError(f"malformed {field} in encryption envelope", cause=e)


def _as_bytes(data) -> bytes:
    if isinstance(data, str):
        return data.encode('utf-8')
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise InvalidInput(f"expected bytes, got {type(data).__name__}")


def derive_key(owner_address: str, salt: Optional[Union[bytes, str]] = None,
               iterations: Optional[int] = None) -> Tuple[bytes, bytes]:
    """
    Derive a symmetric key from a wallet address.

    Args:
        owner_address: The wallet address the key belongs to
        salt: Salt as bytes or hex; a fresh random salt is generated when omitted
        iterations: PBKDF2 work factor, defaults to PBKDF2_ITERATIONS

    Returns:
        tuple: (key, salt). The caller must persist the salt to derive the key again.
    """
    password = _require_address(owner_address)

    if iterations is None:
        iterations = constants.PBKDF2_ITERATIONS
    if iterations < constants.MIN_PBKDF2_ITERATIONS:
        raise InvalidInput(f"PBKDF2 iterations must be at least {constants.MIN_PBKDF2_ITERATIONS}")

    if salt is None:
        salt = os.urandom(SALT_LENGTH)
    elif isinstance(salt, str):
        salt = _from_hex(salt, "salt")
    elif not isinstance(salt, (bytes, bytearray)):
        raise InvalidInput("salt must be bytes or a hex string")
    salt = bytes(salt)
    if not salt:
        raise InternalError("empty salt")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
        backend=default_backend()
    )
    return kdf.derive(password), salt


def encrypt(plaintext: Union[bytes, str], owner_address: str) -> Tuple[bytes, EncryptionEnvelope]:
    """Encrypt data for an owner address using AES-GCM"""
    data = _as_bytes(plaintext)
    aad = _require_address(owner_address)

    key, salt = derive_key(owner_address)

    # Fresh random IV per call
    iv = os.urandom(IV_LENGTH)

    try:
        encryptor = Cipher(
            algorithms.AES(key),
            modes.GCM(iv),
            backend=default_backend()
        ).encryptor()
        encryptor.authenticate_additional_data(aad)
        ciphertext = encryptor.update(data) + encryptor.finalize()
        tag = encryptor.tag
    except (TypeError, ValueError) as e:
        raise InternalError("encryption failed", cause=e)

    envelope = EncryptionEnvelope(
        salt=salt.hex(),
        iv=iv.hex(),
        auth_tag=tag.hex(),
        owner_address=owner_address,
        plaintext_hash=hash_content(data),
    )
    logger.debug(f"Encrypted {len(data)} bytes for {short_address(owner_address)}")
    return ciphertext, envelope


def decrypt(ciphertext: bytes, owner_address: str, envelope) -> bytes:
    """
    Decrypt data sealed by encrypt().

    Raises:
        AccessDenied: owner_address differs from the envelope owner
        IntegrityError: the authentication tag does not verify
        InternalError: the envelope is malformed
    """
    aad = _require_address(owner_address)
    if isinstance(envelope, dict):
        try:
            envelope = EncryptionEnvelope.model_validate(envelope)
        except ValidationError as e:
            raise InternalError("malformed encryption envelope", cause=e)
    elif not isinstance(envelope, EncryptionEnvelope):
        raise InternalError("malformed encryption envelope")

    if owner_address != envelope.owner_address:
        logger.warning(
            f"Decryption refused: {short_address(owner_address)} is not the envelope owner"
        )
        raise AccessDenied("encryption key mismatch")

    iv = _from_hex(envelope.iv, "iv")
    tag = _from_hex(envelope.auth_tag, "auth tag")
    if len(iv) != IV_LENGTH:
        raise InternalError(f"iv must be {IV_LENGTH} bytes, got {len(iv)}")
    if len(tag) != TAG_LENGTH:
        raise InternalError(f"auth tag must be {TAG_LENGTH} bytes, got {len(tag)}")

    key, _ = derive_key(owner_address, envelope.salt)
    data = _as_bytes(ciphertext)

    try:
        decryptor = Cipher(
            algorithms.AES(key),
            modes.GCM(iv, tag),
            backend=default_backend()
        ).decryptor()
        decryptor.authenticate_additional_data(aad)
        plaintext = decryptor.update(data) + decryptor.finalize()
    except InvalidTag:
        raise IntegrityError("authentication tag verification failed")
    except (TypeError, ValueError) as e:
        raise InternalError("decryption failed", cause=e)

    return plaintext


def hash_content(data: Union[bytes, str]) -> str:
    """SHA-256 hex digest of data"""
    return hashlib.sha256(_as_bytes(data)).hexdigest()


def verify_hash(data: Union[bytes, str], expected_digest) -> bool:
    """Check data against an expected SHA-256 hex digest"""
    if not isinstance(expected_digest, str):
        return False
    expected = expected_digest.strip().lower()
    if expected.startswith("0x"):
        expected = expected[2:]
    try:
        if len(bytes.fromhex(expected)) != hashlib.sha256().digest_size:
            return False
    except ValueError:
        return False
    return hash_content(data) == expected


def verify_plaintext(plaintext: bytes, envelope: EncryptionEnvelope) -> None:
    """Raise IntegrityError unless plaintext matches the envelope's recorded hash"""
    if not verify_hash(plaintext, envelope.plaintext_hash):
        raise IntegrityError("file integrity verification failed")
