"""
Blob store clients for IPFS pinning services.

All clients talk to their service over plain HTTP with requests, the same
way the node helpers bypass the ipfshttpclient compatibility issues. The
content id returned by pin() is opaque to the rest of the service.
"""

import hashlib
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Dict, List, Optional

import requests

from datachain import constants
from datachain.errors import ExternalServiceError, InvalidInput, NotFound
from datachain.helpers import clean_cid

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

CONTENT_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.svg': 'image/svg+xml',
    '.bmp': 'image/bmp',
    '.ico': 'image/x-icon',
    '.pdf': 'application/pdf',
    '.json': 'application/json',
    '.csv': 'text/csv',
    '.txt': 'text/plain',
    '.md': 'text/markdown',
    '.zip': 'application/zip',
    '.tar': 'application/x-tar',
    '.gz': 'application/gzip',
}

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.svg', '.bmp', '.ico'}


def _extension(filename: Optional[str]) -> str:
    if not filename or '.' not in filename:
        return ''
    return filename[filename.rfind('.'):].lower()


def content_type_for(filename: Optional[str]) -> str:
    """Guess a content type from a file name"""
    return CONTENT_TYPES.get(_extension(filename), 'application/octet-stream')


def is_image_file(filename: Optional[str]) -> bool:
    return _extension(filename) in IMAGE_EXTENSIONS


class BlobStore(ABC):
    """Opaque blob store: pin bytes, fetch them back by content id"""
    name = "blob"

    def __init__(self, gateway: str = constants.IPFS_GATEWAY):
        self.gateway = gateway.rstrip('/')

    @abstractmethod
    def pin(self, data: bytes, filename: str, metadata: Optional[Dict] = None) -> str:
        """Store data and return its content id"""

    @abstractmethod
    def fetch(self, content_id: str) -> bytes:
        """Return the bytes stored under content_id"""

    def gateway_url(self, content_id: str) -> str:
        return f"{self.gateway}/{clean_cid(content_id)}"

    def signed_url(self, content_id: str, expires: int = 3600) -> str:
        raise ExternalServiceError(f"{self.name} does not support signed URLs", service=self.name)

    def list_pins(self) -> List[Dict]:
        """List pinned items as {"cid", "name", "size", "date_pinned", "keyvalues"} dicts"""
        return []


class PinataBlobStore(BlobStore):
    """Pinata pinning API client"""
    name = "pinata"

    def __init__(self, jwt: str = constants.PINATA_JWT, api_key: str = constants.PINATA_API_KEY,
                 secret: str = constants.PINATA_SECRET, gateway: str = constants.IPFS_GATEWAY,
                 api_url: str = constants.PINATA_API_URL, timeout: int = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        super().__init__(gateway)
        self.jwt = jwt
        self.api_key = api_key
        self.secret = secret
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _credentials(self) -> List[tuple]:
        """Authentication header sets to try, JWT first"""
        credentials = []
        if self.jwt:
            credentials.append(("JWT", {'Authorization': f'Bearer {self.jwt}'}))
        if self.api_key and self.secret:
            credentials.append(("API_KEYS", {
                'pinata_api_key': self.api_key,
                'pinata_secret_api_key': self.secret,
            }))
        if not credentials:
            raise ExternalServiceError("Pinata credentials not configured", service=self.name)
        return credentials

    def pin(self, data: bytes, filename: str, metadata: Optional[Dict] = None) -> str:
        metadata = metadata or {}
        pinata_metadata = {
            "name": f"DataChain-{metadata.get('name', filename)}",
            "keyvalues": {k: str(v) for k, v in metadata.items() if v is not None},
        }

        last_error = None
        for method, headers in self._credentials():
            try:
                response = self.session.post(
                    f"{self.api_url}/pinning/pinFileToIPFS",
                    files={'file': (filename, BytesIO(data))},
                    data={'pinataMetadata': json.dumps(pinata_metadata)},
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error(f"Pinata upload with {method} failed: {e}")
                last_error = e
                continue

            if response.status_code == 200:
                cid = response.json().get('IpfsHash')
                logger.info(f"Pinned {len(data)} bytes to Pinata as {cid} using {method}")
                return cid

            logger.error(f"Pinata upload with {method} failed: {response.status_code} - {response.text}")
            last_error = response.text

        raise ExternalServiceError(f"Failed to upload to IPFS: {last_error}", service=self.name)

    def fetch(self, content_id: str) -> bytes:
        url = self.gateway_url(content_id)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f"Failed to retrieve {content_id} from IPFS", service=self.name, cause=e)
        if response.status_code == 404:
            raise NotFound(f"file {content_id} not found on IPFS")
        if response.status_code != 200:
            raise ExternalServiceError(
                f"IPFS gateway returned {response.status_code} for {content_id}", service=self.name
            )
        return response.content

    def _gateway_domain(self) -> str:
        domain = self.gateway
        for prefix in ('https://', 'http://'):
            if domain.startswith(prefix):
                domain = domain[len(prefix):]
        if domain.endswith('/ipfs'):
            domain = domain[:-len('/ipfs')]
        return domain

    def signed_url(self, content_id: str, expires: int = 3600) -> str:
        if expires <= 0:
            raise InvalidInput("expires must be positive")
        if not self.jwt:
            raise ExternalServiceError("PINATA_JWT is not set", service=self.name)

        payload = {
            "url": f"https://{self._gateway_domain()}/files/{clean_cid(content_id)}",
            "expires": expires,
            "date": int(time.time()),
            "method": "GET",
        }
        try:
            response = self.session.post(
                f"{self.api_url}/v3/files/private/download_link",
                json=payload,
                headers={'Authorization': f'Bearer {self.jwt}'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError("Failed to generate signed URL", service=self.name, cause=e)
        if response.status_code != 200:
            raise ExternalServiceError(
                f"Failed to generate signed URL: {response.status_code} - {response.text}", service=self.name
            )
        return response.json().get('data')

    def list_pins(self) -> List[Dict]:
        _, headers = self._credentials()[0]
        try:
            response = self.session.get(
                f"{self.api_url}/data/pinList",
                params={'status': 'pinned', 'pageLimit': 100},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError("Failed to list pins", service=self.name, cause=e)
        if response.status_code != 200:
            raise ExternalServiceError(
                f"Error listing pins: {response.status_code} - {response.text}", service=self.name
            )

        pins = []
        for row in response.json().get('rows', []):
            metadata = row.get('metadata') or {}
            pins.append({
                "cid": row.get('ipfs_pin_hash'),
                "name": metadata.get('name'),
                "size": row.get('size', 0),
                "date_pinned": row.get('date_pinned'),
                "keyvalues": metadata.get('keyvalues') or {},
            })
        return pins


class IpfsNodeBlobStore(BlobStore):
    """Local IPFS node reached through its HTTP API"""
    name = "ipfs"

    def __init__(self, api_url: str = constants.IPFS_API_URL, gateway: str = constants.IPFS_GATEWAY,
                 timeout: int = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        super().__init__(gateway)
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.post(f"{self.api_url}/{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ExternalServiceError(f"IPFS node request {path} failed", service=self.name, cause=e)
        if response.status_code != 200:
            raise ExternalServiceError(
                f"IPFS node request {path} failed: {response.status_code} - {response.text}", service=self.name
            )
        return response

    def pin(self, data: bytes, filename: str, metadata: Optional[Dict] = None) -> str:
        response = self._post("add", params={'pin': 'true'}, files={'file': (filename, BytesIO(data))})
        cid = response.json()["Hash"]
        logger.info(f"Added {len(data)} bytes to IPFS node as {cid}")
        return cid

    def fetch(self, content_id: str) -> bytes:
        return self._post("cat", params={'arg': clean_cid(content_id)}).content

    def list_pins(self) -> List[Dict]:
        keys = self._post("pin/ls", params={'type': 'recursive'}).json().get("Keys", {})
        return [{"cid": cid, "name": None, "size": 0, "date_pinned": None, "keyvalues": {}} for cid in keys]


class MemoryBlobStore(BlobStore):
    """Process-local blob store for development and tests"""
    name = "memory"

    def __init__(self, gateway: str = "memory://ipfs"):
        super().__init__(gateway)
        self._lock = threading.Lock()
        self._blobs: Dict[str, bytes] = {}
        self._pins: Dict[str, Dict] = {}

    def pin(self, data: bytes, filename: str, metadata: Optional[Dict] = None) -> str:
        cid = hashlib.sha256(data).hexdigest()
        with self._lock:
            self._blobs[cid] = bytes(data)
            self._pins[cid] = {
                "cid": cid,
                "name": (metadata or {}).get('name', filename),
                "size": len(data),
                "date_pinned": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
                "keyvalues": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            }
        return cid

    def fetch(self, content_id: str) -> bytes:
        with self._lock:
            data = self._blobs.get(clean_cid(content_id))
        if data is None:
            raise NotFound(f"file {content_id} not found")
        return data

    def signed_url(self, content_id: str, expires: int = 3600) -> str:
        if expires <= 0:
            raise InvalidInput("expires must be positive")
        return f"{self.gateway_url(content_id)}?expires={int(time.time()) + expires}"

    def list_pins(self) -> List[Dict]:
        with self._lock:
            return [dict(pin) for pin in self._pins.values()]


def create_blob_store(kind: str = constants.BLOB_STORE) -> BlobStore:
    """Build the blob store selected by BLOB_STORE"""
    if kind == "pinata":
        return PinataBlobStore()
    if kind == "ipfs":
        return IpfsNodeBlobStore()
    if kind == "memory":
        return MemoryBlobStore()
    raise InvalidInput(f"unknown blob store: {kind}")
