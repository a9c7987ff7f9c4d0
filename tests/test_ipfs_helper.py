from unittest.mock import MagicMock

import pytest
import requests

from datachain.errors import ExternalServiceError, InvalidInput, NotFound
from datachain.ipfs_helper import (
    IpfsNodeBlobStore, MemoryBlobStore, PinataBlobStore, content_type_for, create_blob_store, is_image_file
)

GATEWAY = "https://gateway.pinata.cloud/ipfs"


def response(status_code=200, json_data=None, content=b"", text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data or {}
    resp.content = content
    resp.text = text
    return resp


def pinata(session, jwt="jwt-token", api_key="key", secret="secret"):
    return PinataBlobStore(jwt=jwt, api_key=api_key, secret=secret, gateway=GATEWAY,
                           api_url="https://api.pinata.cloud", session=session)


def test_content_types():
    assert content_type_for("data.CSV") == "text/csv"
    assert content_type_for("photo.jpeg") == "image/jpeg"
    assert content_type_for("archive") == "application/octet-stream"
    assert content_type_for(None) == "application/octet-stream"
    assert is_image_file("photo.PNG")
    assert not is_image_file("data.csv")


def test_pinata_pin_falls_back_to_api_keys():
    session = MagicMock()
    session.post.side_effect = [
        response(401, text="unauthorized"),
        response(200, {"IpfsHash": "QmPinned"}),
    ]
    cid = pinata(session).pin(b"rows", "data.csv", {"name": "Data", "encrypted": False, "skip": None})
    assert cid == "QmPinned"

    first, second = session.post.call_args_list
    assert first.kwargs["headers"] == {"Authorization": "Bearer jwt-token"}
    assert second.kwargs["headers"] == {"pinata_api_key": "key", "pinata_secret_api_key": "secret"}
    assert first.args[0] == "https://api.pinata.cloud/pinning/pinFileToIPFS"
    assert '"name": "DataChain-Data"' in second.kwargs["data"]["pinataMetadata"]
    assert '"skip"' not in second.kwargs["data"]["pinataMetadata"]


def test_pinata_pin_failure():
    session = MagicMock()
    session.post.side_effect = [requests.ConnectionError("down"), response(500, text="boom")]
    with pytest.raises(ExternalServiceError):
        pinata(session).pin(b"rows", "data.csv")


def test_pinata_requires_credentials():
    with pytest.raises(ExternalServiceError):
        pinata(MagicMock(), jwt="", api_key="", secret="").pin(b"rows", "data.csv")


def test_pinata_fetch():
    session = MagicMock()
    session.get.return_value = response(200, content=b"rows")
    assert pinata(session).fetch("/ipfs/QmPinned ") == b"rows"
    assert session.get.call_args.args[0] == f"{GATEWAY}/QmPinned"

    session.get.return_value = response(404)
    with pytest.raises(NotFound):
        pinata(session).fetch("QmPinned")

    session.get.return_value = response(502)
    with pytest.raises(ExternalServiceError):
        pinata(session).fetch("QmPinned")

    session.get.side_effect = requests.Timeout("slow")
    with pytest.raises(ExternalServiceError):
        pinata(session).fetch("QmPinned")


def test_pinata_signed_url():
    session = MagicMock()
    session.post.return_value = response(200, {"data": "https://signed.example/QmPinned?sig=1"})
    assert pinata(session).signed_url("QmPinned", 60) == "https://signed.example/QmPinned?sig=1"

    payload = session.post.call_args.kwargs["json"]
    assert payload["url"] == "https://gateway.pinata.cloud/files/QmPinned"
    assert payload["expires"] == 60
    assert session.post.call_args.args[0] == "https://api.pinata.cloud/v3/files/private/download_link"

    with pytest.raises(InvalidInput):
        pinata(session).signed_url("QmPinned", 0)
    with pytest.raises(ExternalServiceError):
        pinata(session, jwt="").signed_url("QmPinned", 60)


def test_pinata_list_pins():
    session = MagicMock()
    session.get.return_value = response(200, {"rows": [{
        "ipfs_pin_hash": "QmPinned",
        "size": 42,
        "date_pinned": "2025-01-01T00:00:00.000Z",
        "metadata": {"name": "DataChain-Data", "keyvalues": {"status": "Public"}},
    }]})
    pins = pinata(session).list_pins()
    assert pins == [{
        "cid": "QmPinned",
        "name": "DataChain-Data",
        "size": 42,
        "date_pinned": "2025-01-01T00:00:00.000Z",
        "keyvalues": {"status": "Public"},
    }]


def test_ipfs_node_store():
    session = MagicMock()
    session.post.side_effect = [
        response(200, {"Hash": "QmNode"}),
        response(200, content=b"rows"),
        response(200, {"Keys": {"QmNode": {"Type": "recursive"}}}),
    ]
    store = IpfsNodeBlobStore(api_url="http://localhost:5001/api/v0", session=session)
    assert store.pin(b"rows", "data.csv") == "QmNode"
    assert store.fetch("QmNode") == b"rows"
    assert [pin["cid"] for pin in store.list_pins()] == ["QmNode"]
    assert session.post.call_args_list[1].args[0] == "http://localhost:5001/api/v0/cat"

    session.post.side_effect = [response(500, text="no daemon")]
    with pytest.raises(ExternalServiceError):
        store.fetch("QmNode")


def test_memory_store():
    store = MemoryBlobStore()
    cid = store.pin(b"rows", "data.csv", {"status": "Public"})
    assert store.fetch(cid) == b"rows"
    assert store.list_pins()[0]["keyvalues"] == {"status": "Public"}
    with pytest.raises(NotFound):
        store.fetch("QmMissing")


def test_create_blob_store():
    assert isinstance(create_blob_store("memory"), MemoryBlobStore)
    with pytest.raises(InvalidInput):
        create_blob_store("floppy")
