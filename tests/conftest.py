import pytest

from vaultsim.factory import VaultFactory
from vaultsim.fixed_point import PRECISION
from vaultsim.ledger import NATIVE_ASSET, FungibleToken, ItemCollection, Ledger
from vaultsim.waterfall import StaticSettings

ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
OPERATOR = "0x00000000000000000000000000000000000000a1"
REMAINDER = "0x00000000000000000000000000000000000000b2"


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def settings():
    return StaticSettings(PRECISION // 2, OPERATOR, REMAINDER)


@pytest.fixture
def factory(ledger, settings):
    return VaultFactory(ledger, settings)


@pytest.fixture
def token_a(ledger):
    return FungibleToken(ledger, "AAA")


@pytest.fixture
def token_b(ledger):
    return FungibleToken(ledger, "BBB")


@pytest.fixture
def make_backed(ledger):
    """Fungible backed token with `supply` units minted to `holder`."""
    def _make(symbol="BACK", supply=200, holder=ALICE, **kwargs):
        token = FungibleToken(ledger, symbol, **kwargs)
        token.mint(holder, supply)
        return token
    return _make


@pytest.fixture
def make_items(ledger):
    def _make(symbol="ITEMS", count=10, holder=ALICE, **kwargs):
        collection = ItemCollection(ledger, symbol, **kwargs)
        collection.mint(holder, count)
        return collection
    return _make


@pytest.fixture
def fund(ledger):
    """Deposit collateral straight into a vault."""
    def _fund(vault, asset, amount):
        if asset == NATIVE_ASSET:
            ledger.mint_native(vault.address, amount)
        else:
            ledger.contract(asset).mint(vault.address, amount)
    return _fund
