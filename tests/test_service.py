import pytest

from datachain.chain import CREATE_DATASET, GET_DATASET, HAS_ACCESS, PURCHASE_ACCESS
from datachain.crypto import aes
from datachain.errors import (
    AccessDenied, ExternalServiceError, IntegrityError, InternalError, InvalidInput, NotFound
)
from datachain.ipfs_helper import MemoryBlobStore
from datachain.models import AccessStatus
from datachain.registry import RegistryService
from datachain.service import MarketplaceService
from tests.helpers import TEST_ACCOUNTS, TX_HASH, FakeChain, chain_dataset

CREATOR = TEST_ACCOUNTS["creator"]
BUYER = TEST_ACCOUNTS["buyer"]
OTHER = TEST_ACCOUNTS["other"]
CSV = b"station,temp\nA,12.5\nB,13.1\n"


class TamperingBlobStore(MemoryBlobStore):
    """Returns every stored blob with one bit flipped"""

    def fetch(self, content_id):
        data = bytearray(super().fetch(content_id))
        data[0] ^= 0x01
        return bytes(data)


def with_chain(chain, **kwargs):
    return MarketplaceService(registry=RegistryService(), blob_store=MemoryBlobStore(), chain=chain,
                              access_token_secret="chain-download-token-secret-for-tests", **kwargs)


def test_upload_public(service, blob_store):
    result = service.upload(CSV, "weather.csv", CREATOR, tags="climate, sensors", description="Hourly")
    assert result.encrypted is False
    assert result.hash == result.original_hash == aes.hash_content(CSV)
    assert result.dataset.id == "dataset_1"
    assert result.dataset.name == "weather.csv"
    assert result.dataset.tags == ["climate", "sensors"]
    assert result.dataset.content_type == "text/csv"
    assert blob_store.fetch(result.content_id) == CSV


def test_upload_encrypted_pins_ciphertext(service, blob_store):
    result = service.upload(CSV, "weather.csv", CREATOR, encrypt=True)
    assert result.encrypted is True
    assert result.original_hash == aes.hash_content(CSV)
    assert result.hash != result.original_hash
    assert blob_store.fetch(result.content_id) != CSV
    assert result.dataset.encryption.owner_address == CREATOR


def test_upload_validation(service, blob_store):
    with pytest.raises(InvalidInput):
        service.upload(b"", "empty.csv", CREATOR)
    with pytest.raises(InvalidInput):
        service.upload(CSV, "weather.csv", CREATOR, access_status="Secret")
    with pytest.raises(InvalidInput):
        service.upload(CSV, "weather.csv", CREATOR, access_status="Gated", price=0)
    assert blob_store.list_pins() == []
    assert service.registry.list_all() == []


def test_upload_accepts_legacy_gated_spelling(service):
    result = service.upload(CSV, "weather.csv", CREATOR, access_status="NFT_Gated", price=3)
    assert result.dataset.access_status == AccessStatus.GATED


def test_download_public(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    downloaded = service.download(CREATOR, dataset.id, None)
    assert downloaded.content == CSV
    assert downloaded.verified is True
    assert downloaded.encrypted is False
    assert downloaded.filename == "weather.csv"
    assert service.registry.get_dataset(dataset.id).downloads == 1


def test_download_encrypted_only_for_owner(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR, encrypt=True).dataset

    downloaded = service.download(CREATOR, dataset.id, CREATOR)
    assert downloaded.content == CSV
    assert downloaded.encrypted is True
    assert downloaded.verified is True

    with pytest.raises(AccessDenied):
        service.download(CREATOR, dataset.id, OTHER)
    with pytest.raises(AccessDenied):
        service.download(CREATOR, dataset.id, None)
    assert service.registry.get_dataset(dataset.id).downloads == 1


def test_download_private(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR, access_status="Private").dataset
    with pytest.raises(AccessDenied, match="private"):
        service.download(CREATOR, dataset.id, OTHER)
    assert service.download(CREATOR, dataset.id, CREATOR).content == CSV


def test_download_detects_tampering():
    service = MarketplaceService(registry=RegistryService(), blob_store=TamperingBlobStore())
    plain = service.upload(CSV, "weather.csv", CREATOR).dataset
    sealed = service.upload(CSV, "sealed.csv", CREATOR, encrypt=True).dataset

    with pytest.raises(IntegrityError):
        service.download(CREATOR, plain.id, CREATOR)
    with pytest.raises(IntegrityError):
        service.download(CREATOR, sealed.id, CREATOR)
    assert service.registry.stats().total_downloads == 0


def test_download_unknown_dataset(service):
    with pytest.raises(NotFound):
        service.download(CREATOR, "dataset_404", CREATOR)


def test_purchase_flow(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR, access_status="Gated", price=25).dataset

    with pytest.raises(AccessDenied, match="purchase"):
        service.download(CREATOR, dataset.id, BUYER)

    receipt = service.purchase(CREATOR, dataset.id, BUYER)
    assert receipt.price == 25
    assert receipt.owner == CREATOR
    assert receipt.transaction_hash is None

    assert service.check_access(CREATOR, dataset.id, BUYER)
    assert service.download(CREATOR, dataset.id, BUYER).content == CSV
    assert not service.check_access(CREATOR, dataset.id, OTHER)


def test_purchase_requires_gated_dataset(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    with pytest.raises(InvalidInput):
        service.purchase(CREATOR, dataset.id, BUYER)
    with pytest.raises(InvalidInput):
        service.purchase(CREATOR, dataset.id, "")


def test_purchase_submits_to_chain():
    chain = FakeChain()
    service = with_chain(chain)
    dataset = service.upload(CSV, "weather.csv", CREATOR, access_status="Gated", price=25).dataset

    receipt = service.purchase(CREATOR, dataset.id, BUYER)
    assert receipt.transaction_hash == TX_HASH
    assert chain.submitted == [(PURCHASE_ACCESS, [CREATOR, dataset.id, BUYER, 25])]
    assert service.registry.has_access(dataset.id, BUYER)


def test_get_dataset_counts_views(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    assert service.get_dataset(CREATOR, dataset.id).views == 1
    assert service.get_dataset(CREATOR, dataset.id).views == 2


def test_get_dataset_falls_back_to_chain():
    chain = FakeChain({GET_DATASET: lambda owner, dataset_id: chain_dataset() if dataset_id == 1 else None})
    service = with_chain(chain)
    record = service.get_dataset(CREATOR, "1")
    assert record.source == "chain"
    assert record.creator == CREATOR
    assert record.content_id == "QmChainCid"


def test_get_dataset_chain_failure_is_not_found():
    with pytest.raises(NotFound):
        with_chain(FakeChain()).get_dataset(CREATOR, "1")


def test_chain_access_check():
    chain = FakeChain({
        GET_DATASET: chain_dataset(status="Private"),
        HAS_ACCESS: lambda user, owner, dataset_id: user == BUYER,
    })
    service = with_chain(chain)
    assert service.check_access(CREATOR, "1", BUYER)
    assert not service.check_access(CREATOR, "1", OTHER)
    assert not service.check_access(CREATOR, "1", None)


def test_chain_access_check_failure_denies():
    service = with_chain(FakeChain({GET_DATASET: chain_dataset(status="Private")}))
    assert not service.check_access(CREATOR, "1", BUYER)


def test_register_on_chain():
    chain = FakeChain()
    service = with_chain(chain)
    dataset = service.upload(CSV, "weather.csv", CREATOR, tags="a,b").dataset

    with pytest.raises(AccessDenied):
        service.register_on_chain(dataset.id, OTHER)

    tx_hash, record = service.register_on_chain(dataset.id, CREATOR.lower())
    assert tx_hash == TX_HASH
    function, args = chain.submitted[0]
    assert function == CREATE_DATASET
    assert args[0] == dataset.content_id
    assert args[6] == ["a", "b"]


def test_register_without_chain(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    with pytest.raises(ExternalServiceError):
        service.register_on_chain(dataset.id, CREATOR)


def test_list_datasets(service):
    service.upload(CSV, "weather.csv", CREATOR, tags="climate")
    service.upload(b"x,y\n", "other.csv", OTHER)

    result = service.list_datasets()
    assert result["source"] == "datastore"
    assert result["total"] == 2
    assert result["stats"].total_datasets == 2

    result = service.list_datasets(creator=CREATOR.lower())
    assert [d.creator for d in result["datasets"]] == [CREATOR]

    assert service.list_datasets(tags="climate")["total"] == 1


def test_list_prefers_chain():
    chain = FakeChain({"getDatasetsByCreator": [[chain_dataset()]]})
    service = with_chain(chain)
    service.upload(CSV, "weather.csv", CREATOR)
    result = service.list_datasets(creator=CREATOR)
    assert result["source"] == "blockchain"
    assert result["datasets"][0].source == "chain"


def test_access_tokens(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR, access_status="Gated", price=5).dataset

    with pytest.raises(AccessDenied):
        service.issue_access_token(CREATOR, dataset.id, BUYER)

    service.purchase(CREATOR, dataset.id, BUYER)
    token, ttl = service.issue_access_token(CREATOR, dataset.id, BUYER)
    assert ttl == service.access_token_ttl

    downloaded = service.redeem_access_token(token)
    assert downloaded.content == CSV


def test_access_tokens_require_secret():
    service = MarketplaceService(access_token_secret="")
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    with pytest.raises(InternalError):
        service.issue_access_token(CREATOR, dataset.id, CREATOR)


def test_raw_file_guard(service):
    public = service.upload(CSV, "weather.csv", CREATOR)
    private = service.upload(b"secret rows", "private.csv", CREATOR, access_status="Private")
    sealed = service.upload(b"sealed rows", "sealed.csv", CREATOR, encrypt=True)

    assert service.fetch_public_file(public.content_id) == CSV
    assert service.signed_url(public.content_id, 60).startswith("memory://ipfs/")
    for result in (private, sealed):
        with pytest.raises(AccessDenied):
            service.fetch_public_file(result.content_id)
        with pytest.raises(AccessDenied):
            service.signed_url(result.content_id)

    with pytest.raises(NotFound):
        service.fetch_public_file("QmUnknown")


def test_lookup_requires_matching_owner(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR, access_status="Gated", price=5).dataset

    with pytest.raises(NotFound):
        service.get_dataset(OTHER, dataset.id)
    with pytest.raises(NotFound):
        service.download(OTHER, dataset.id, CREATOR)
    with pytest.raises(NotFound):
        service.purchase(OTHER, dataset.id, BUYER)
    assert not service.check_access(OTHER, dataset.id, CREATOR)
    assert service.registry.get_dataset(dataset.id).views == 0


def test_lookup_with_wrong_owner_falls_through_to_chain(service):
    dataset = service.upload(CSV, "weather.csv", CREATOR).dataset
    chain = FakeChain({GET_DATASET: chain_dataset(cid="QmOtherOwner")})
    chained = MarketplaceService(registry=service.registry, blob_store=service.blob_store, chain=chain)

    record = chained.get_dataset(OTHER, dataset.id)
    assert record.source == "chain"
    assert record.creator == OTHER
    assert record.content_id == "QmOtherOwner"


def test_negative_price_rejected_before_pinning(service, blob_store):
    for status in ("Public", "Private"):
        with pytest.raises(InvalidInput):
            service.upload(CSV, "weather.csv", CREATOR, access_status=status, price=-1)
    assert blob_store.list_pins() == []
    assert service.registry.list_all() == []
