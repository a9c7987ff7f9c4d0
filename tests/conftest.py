import pytest
from fastapi.testclient import TestClient

from datachain.api import create_app
from datachain.auth import AuthManager
from datachain.ipfs_helper import MemoryBlobStore
from datachain.registry import RegistryService
from datachain.service import MarketplaceService

from tests.helpers import TEST_ACCOUNTS, TEST_KEYS, sign_challenge

TOKEN_SECRET = "marketplace-download-token-secret-for-tests"


@pytest.fixture
def registry():
    return RegistryService()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def service(registry, blob_store):
    return MarketplaceService(registry=registry, blob_store=blob_store, access_token_secret=TOKEN_SECRET)


@pytest.fixture
def auth():
    return AuthManager()


@pytest.fixture
def client(service, auth):
    return TestClient(create_app(service, auth))


@pytest.fixture
def login(client):
    """Sign in through the API and return Authorization headers"""
    def _login(name):
        address = TEST_ACCOUNTS[name]
        response = client.post("/api/auth/challenge", json={"wallet_address": address})
        challenge = response.json()["data"]["challenge"]
        response = client.post("/api/auth/verify", json={
            "wallet_address": address,
            "signature": sign_challenge(challenge, TEST_KEYS[name]),
        })
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['data']['session_token']}"}
    return _login
