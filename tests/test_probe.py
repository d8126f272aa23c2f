"""
Self-learning probes: burn fallback tiers, zero-address heuristic, hook
presence. Each probe runs once per vault and its result sticks.
"""

import pytest

from vaultsim.ledger import DEAD_ADDRESS, ZERO_ADDRESS
from vaultsim.fixed_point import fraction_of
from vaultsim.probe import AdaptationState, BurnMode

from conftest import ALICE


@pytest.fixture
def vault_for(factory, token_a, fund):
    def _vault_for(backed):
        vault = factory.create_vault(backed.address)
        fund(vault, token_a.address, 1000)
        return vault
    return _vault_for


class TestBurnTiers:
    """burn -> dead address -> permanent hold."""

    def test_non_burnable_goes_to_dead_address(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, burnable=False)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.burn_mode is BurnMode.NON_BURNABLE
        assert vault.adaptation.non_burnable
        assert not vault.adaptation.supply_permanently_held
        assert backed.balance_of(DEAD_ADDRESS) == 100
        assert backed.total_supply() == 200

    def test_dead_address_excluded_from_supply(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, burnable=False)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        second = vault.redeem(ALICE, [token_a.address], 50)
        assert second.supply_before == 100

    def test_burn_attempted_only_once(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, burnable=False)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        vault.redeem(ALICE, [token_a.address], 50)
        assert backed.calls["burn"] == 1
        assert vault.adaptation.probe_runs == 1
        assert backed.balance_of(DEAD_ADDRESS) == 150

    def test_supply_permanently_held(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, burnable=False, reject_dead=True)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.burn_mode is BurnMode.PERMANENTLY_HELD
        assert vault.adaptation.supply_permanently_held
        assert backed.balance_of(vault.address) == 100

    def test_held_supply_excluded_on_next_redemption(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, burnable=False, reject_dead=True)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        second = vault.redeem(ALICE, [token_a.address], 50)
        assert second.supply_before == 100
        assert second.supply_after == 50
        assert backed.balance_of(vault.address) == 150
        assert backed.calls["burn"] == 1

    def test_standard_asset(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        vault.redeem(ALICE, [token_a.address], 10)
        assert vault.adaptation.burn_mode is BurnMode.STANDARD
        assert not vault.adaptation.non_burnable
        assert backed.total_supply() == 90


class TestZeroAddressProbe:
    """One-unit probe against the zero address."""

    def test_rejecting_token_excluded(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200)
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.zero_probed
        assert vault.adaptation.zero_address_counted is False
        assert backed.total_supply() == 100

    def test_burning_token_stays_counted(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, zero_transfer_mode="burn")
        vault = vault_for(backed)
        receipt = vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.zero_address_counted is True
        # the probe consumed one unit of the surrendered amount
        assert receipt.supply_before == 199
        assert backed.total_supply() == 100

    def test_holding_token_excluded(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, zero_transfer_mode="hold")
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.zero_address_counted is False
        assert backed.balance_of(ZERO_ADDRESS) == 1

    def test_existing_zero_holdings_leave_supply(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, zero_transfer_mode="hold")
        backed.transfer(ALICE, ZERO_ADDRESS, 100)
        vault = vault_for(backed)
        receipt = vault.redeem(ALICE, [token_a.address], 50)
        assert backed.balance_of(ZERO_ADDRESS) == 101
        # 200 issued, 101 parked at the zero address
        assert receipt.supply_before == 99
        assert receipt.supply_delta == fraction_of(50, 99)

    def test_counted_zero_address_not_subtracted(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, zero_transfer_mode="burn")
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        assert vault.adaptation.zero_address_counted is True
        assert vault.adjusted_supply() == backed.total_supply() == 100

    def test_probe_runs_once(self, make_backed, vault_for, token_a):
        backed = make_backed(supply=200, zero_transfer_mode="burn")
        vault = vault_for(backed)
        vault.redeem(ALICE, [token_a.address], 100)
        vault.redeem(ALICE, [token_a.address], 50)
        assert backed.total_supply() == 50


class TestAdaptationState:
    """Flags only move forward."""

    def test_monotonic(self):
        state = AdaptationState()
        assert state.advance(BurnMode.NON_BURNABLE)
        assert not state.advance(BurnMode.STANDARD)
        assert state.burn_mode is BurnMode.NON_BURNABLE

    def test_to_dict(self):
        d = AdaptationState().to_dict()
        assert d["burn_mode"] == "unknown"
        assert d["zero_address_counted"] is True
