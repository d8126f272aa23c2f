"""
Redemption engine: proportional payouts, fee waterfall, duplicate guard and
whole-call rollback.
"""

import pytest

from vaultsim.errors import (
    EmptyCollateralList,
    InvalidAsset,
    InvalidInput,
    TransferFailed,
    ZeroAmount,
)
from vaultsim.factory import VaultFactory
from vaultsim.fixed_point import PRECISION
from vaultsim.ledger import DEAD_ADDRESS, NATIVE_ASSET, FungibleToken
from vaultsim.probe import BurnMode, HookStatus
from vaultsim.waterfall import StaticSettings

from conftest import ALICE, BOB, OPERATOR, REMAINDER


@pytest.fixture
def setup(factory, make_backed, token_a, token_b, fund):
    backed = make_backed(supply=200)
    vault = factory.create_vault(backed.address)
    fund(vault, token_a.address, 100)
    fund(vault, token_b.address, 50)
    return backed, vault


class TestDuplicateCollateral:
    """Each collateral is paid once per call."""

    def test_repeated_asset_paid_once(self, setup, token_a, token_b):
        backed, vault = setup
        receipt = vault.redeem(ALICE, [token_a.address, token_b.address, token_a.address], 100, BOB)
        assert receipt.supply_delta == PRECISION // 2
        assert token_a.balance_of(BOB) == 49
        assert token_b.balance_of(BOB) == 24
        assert len(receipt.payouts) == 2

    def test_fees_and_vault_remainder(self, setup, token_a, token_b):
        backed, vault = setup
        vault.redeem(ALICE, [token_a.address, token_b.address, token_a.address], 100, BOB)
        # fee of 1 split in half rounds the operator cut down to 0
        assert token_a.balance_of(OPERATOR) == 0
        assert token_a.balance_of(REMAINDER) == 1
        assert token_b.balance_of(REMAINDER) == 1
        assert vault.balance(token_a.address) == 50
        assert vault.balance(token_b.address) == 25


class TestSupplyAccounting:
    """supply_before / supply_after / supply_delta."""

    def test_supply_after_is_before_minus_real(self, setup, token_a):
        backed, vault = setup
        receipt = vault.redeem(ALICE, [token_a.address], 100)
        assert receipt.supply_before == 200
        assert receipt.supply_after == receipt.supply_before - receipt.real_amount
        assert 0 <= receipt.supply_delta <= PRECISION

    def test_surrendered_units_burned(self, setup, token_a):
        backed, vault = setup
        vault.redeem(ALICE, [token_a.address], 100)
        assert backed.total_supply() == 100
        assert vault.adaptation.burn_mode is BurnMode.STANDARD

    def test_consecutive_redemptions(self, setup, token_a):
        backed, vault = setup
        vault.redeem(ALICE, [token_a.address], 100)
        second = vault.redeem(ALICE, [token_a.address], 50)
        assert second.supply_before == 100
        assert second.supply_delta == PRECISION // 2

    def test_whole_supply_releases_everything(self, setup, token_a):
        backed, vault = setup
        receipt = vault.redeem(ALICE, [token_a.address], 200, BOB)
        assert receipt.supply_delta == PRECISION
        assert receipt.supply_after == 0
        assert token_a.balance_of(BOB) == 99
        assert vault.balance(token_a.address) == 0

    def test_taxed_asset_uses_measured_amount(self, factory, make_backed, token_a, fund):
        backed = make_backed(supply=1000, transfer_tax_bps=200)
        vault = factory.create_vault(backed.address)
        fund(vault, token_a.address, 10_000)
        receipt = vault.redeem(ALICE, [token_a.address], 100)
        assert receipt.real_amount == 98
        assert receipt.supply_before == 998
        assert receipt.supply_after == 900


class TestPayouts:
    """The vault never pays out more than it held."""

    def test_never_overpays(self, setup, token_a, token_b):
        backed, vault = setup
        before = vault.balance(token_a.address)
        receipt = vault.redeem(ALICE, [token_a.address, token_b.address], 77, BOB)
        for p in receipt.payouts:
            assert p.recipient_amount + p.protocol_fee <= p.availability
        paid = token_a.balance_of(BOB) + token_a.balance_of(OPERATOR) + token_a.balance_of(REMAINDER)
        assert paid + vault.balance(token_a.address) == before

    def test_recipient_defaults_to_caller(self, setup, token_a):
        backed, vault = setup
        receipt = vault.redeem(ALICE, [token_a.address], 100)
        assert receipt.recipient == ALICE
        assert token_a.balance_of(ALICE) == 49

    def test_native_collateral(self, setup, ledger, fund):
        backed, vault = setup
        fund(vault, NATIVE_ASSET, 1000)
        vault.redeem(ALICE, [NATIVE_ASSET], 50, BOB)
        assert ledger.balance_of(NATIVE_ASSET, BOB) == 249
        assert ledger.balance_of(NATIVE_ASSET, REMAINDER) == 1

    def test_empty_collateral_skipped(self, setup, token_a, ledger):
        backed, vault = setup
        other = FungibleToken(ledger, "NONE")
        receipt = vault.redeem(ALICE, [other.address, token_a.address], 100, BOB)
        assert [p.asset for p in receipt.payouts] == [token_a.address]

    def test_operator_share(self, ledger, make_backed, token_a, fund):
        factory = VaultFactory(ledger, StaticSettings(PRECISION, OPERATOR, REMAINDER))
        backed = make_backed(supply=200)
        vault = factory.create_vault(backed.address)
        fund(vault, token_a.address, 10_000)
        vault.redeem(ALICE, [token_a.address], 100, BOB)
        assert token_a.balance_of(OPERATOR) == 5
        assert token_a.balance_of(REMAINDER) == 0
        assert token_a.balance_of(BOB) == 4995

    def test_settings_share_bounded(self):
        with pytest.raises(InvalidInput):
            StaticSettings(PRECISION + 1, OPERATOR, REMAINDER)


class TestValidation:
    """Bad input fails fast with no state change."""

    def test_empty_collateral_list(self, setup):
        backed, vault = setup
        with pytest.raises(EmptyCollateralList):
            vault.redeem(ALICE, [], 100)
        assert backed.balance_of(ALICE) == 200

    def test_zero_amount(self, setup, token_a):
        backed, vault = setup
        with pytest.raises(ZeroAmount):
            vault.redeem(ALICE, [token_a.address], 0)

    def test_backed_asset_not_collateral(self, setup):
        backed, vault = setup
        with pytest.raises(InvalidAsset):
            vault.redeem(ALICE, [backed.address], 10)

    def test_surrender_more_than_held(self, setup, token_a):
        backed, vault = setup
        with pytest.raises(TransferFailed):
            vault.redeem(ALICE, [token_a.address], 500)
        assert backed.balance_of(ALICE) == 200


class TestAtomicity:
    """A failure after probing rolls back every effect of the call."""

    def test_payout_failure_rolls_back(self, ledger, factory, make_backed, fund):
        backed = make_backed(supply=200)
        vault = factory.create_vault(backed.address)
        picky = FungibleToken(ledger, "PICKY", reject_dead=True)
        fund(vault, picky.address, 100)
        events_before = len(ledger.log.events)
        with pytest.raises(TransferFailed):
            vault.redeem(ALICE, [picky.address], 100, DEAD_ADDRESS)
        assert backed.balance_of(ALICE) == 200
        assert backed.total_supply() == 200
        assert vault.balance(picky.address) == 100
        assert vault.adaptation.burn_mode is BurnMode.UNKNOWN
        assert vault.adaptation.zero_probed is False
        assert vault.hook_status is HookStatus.UNKNOWN
        assert len(ledger.log.events) == events_before


class TestQuote:
    """quote() mirrors redeem() for a standard asset without hook."""

    def test_quote_matches_redemption(self, setup, token_a, token_b):
        backed, vault = setup
        collaterals = [token_a.address, token_b.address]
        quote = vault.quote(60, collaterals)
        receipt = vault.redeem(ALICE, collaterals, 60, BOB)
        assert quote.amounts() == [p.recipient_amount for p in receipt.payouts]
        assert quote.supply_delta == receipt.supply_delta

    def test_quote_does_not_mutate(self, setup, token_a):
        backed, vault = setup
        vault.quote(60, [token_a.address])
        assert vault.hook_status is HookStatus.UNKNOWN
        assert vault.balance(token_a.address) == 100
        assert backed.balance_of(ALICE) == 200

    def test_quote_zero_rejected(self, setup, token_a):
        backed, vault = setup
        with pytest.raises(ZeroAmount):
            vault.quote(0, [token_a.address])


class TestEvents:
    """Successful redemptions leave a record."""

    def test_redeemed_event(self, setup, token_a, ledger):
        backed, vault = setup
        vault.redeem(ALICE, [token_a.address], 100)
        events = ledger.log.of_type("REDEEMED")
        assert len(events) == 1
        assert events[0].amount == 100
        assert events[0].meta["supply_delta"] == PRECISION // 2
