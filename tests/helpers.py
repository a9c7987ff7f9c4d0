import logging

from eth_account import Account
from eth_account.messages import encode_defunct

from datachain.chain import ChainService
from datachain.errors import ExternalServiceError

logging.getLogger("datachain").setLevel(logging.CRITICAL)

# Well-known local development keys; never fund these on a public network
TEST_KEYS = {
    "creator": "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    "buyer": "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    "other": "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
}

TEST_ACCOUNTS = {name: Account.from_key(key).address for name, key in TEST_KEYS.items()}

TX_HASH = "0x" + "ab" * 32


def sign_challenge(challenge: str, private_key: str) -> str:
    signed = Account.sign_message(encode_defunct(text=challenge), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


class FakeChain(ChainService):
    """
    Scripted chain service.

    views maps a contract function name to either a fixed return value or a
    callable receiving the call arguments. Unscripted views fail the way an
    unreachable contract does.
    """

    def __init__(self, views=None, configured=True):
        self.views = views or {}
        self.configured = configured
        self.submitted = []

    def is_configured(self):
        return self.configured

    def view(self, function, args):
        if function not in self.views:
            raise ExternalServiceError(f"{function} reverted", service="chain")
        result = self.views[function]
        return result(*args) if callable(result) else result

    def submit(self, function, args, signer=None):
        self.submitted.append((function, list(args)))
        return TX_HASH


def chain_dataset(status="Public", price=0, cid="QmChainCid", tags='["chain", "test"]'):
    """A getDataset result tuple"""
    return (cid, "ab" * 32, "Chain Dataset", "Registered on chain", "CC-BY", "Science",
            tags, status, price, 1700000000)
