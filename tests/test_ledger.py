"""
Host ledger: whole-call rollback and the call-scoped reentrancy lock.
"""

import pytest

from vaultsim.errors import InsufficientBalance, ReentrancyError, TransferRejected
from vaultsim.ledger import NATIVE_ASSET, ZERO_ADDRESS, FungibleToken

from conftest import ALICE, BOB


class TestTransaction:
    """Every scope snapshots; a failure restores its own scope."""

    def test_rollback_on_error(self, ledger, token_a):
        token_a.mint(ALICE, 10)
        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.transfer(token_a.address, ALICE, BOB, 4)
                ledger.emit("SOMETHING")
                raise RuntimeError("boom")
        assert token_a.balance_of(ALICE) == 10
        assert token_a.balance_of(BOB) == 0
        assert not ledger.log.of_type("SOMETHING")

    def test_outer_failure_reverts_inner_scope(self, ledger, token_a):
        token_a.mint(ALICE, 10)
        with pytest.raises(RuntimeError):
            with ledger.transaction():
                with ledger.transaction():
                    ledger.transfer(token_a.address, ALICE, BOB, 4)
                raise RuntimeError("outer fails")
        assert token_a.balance_of(BOB) == 0

    def test_failed_inner_scope_reverts_only_itself(self, ledger, token_a):
        token_a.mint(ALICE, 10)
        with ledger.transaction(), ledger.guard(token_a):
            ledger.transfer(token_a.address, ALICE, BOB, 3)
            with pytest.raises(RuntimeError):
                with ledger.transaction():
                    ledger.transfer(token_a.address, BOB, ALICE, 3)
                    ledger.emit("INNER")
                    raise RuntimeError("inner fails")
            assert ledger.in_call
            with pytest.raises(ReentrancyError):
                with ledger.guard(token_a):
                    pass
        assert token_a.balance_of(BOB) == 3
        assert token_a.balance_of(ALICE) == 7
        assert not ledger.log.of_type("INNER")

    def test_commit_on_success(self, ledger, token_a):
        token_a.mint(ALICE, 10)
        with ledger.transaction():
            ledger.transfer(token_a.address, ALICE, BOB, 4)
        assert token_a.balance_of(BOB) == 4
        assert not ledger.in_call

    def test_contracts_created_in_failed_call_vanish(self, ledger):
        with pytest.raises(RuntimeError):
            with ledger.transaction():
                FungibleToken(ledger, "TEMP")
                raise RuntimeError("boom")
        assert all(getattr(c, "symbol", None) != "TEMP" for c in ledger.contracts.values())


class TestGuard:
    """Re-entering a guarded entry point fails immediately."""

    def test_reentry_refused(self, ledger, token_a):
        with ledger.transaction(), ledger.guard(token_a):
            with pytest.raises(ReentrancyError):
                with ledger.guard(token_a):
                    pass

    def test_guard_released(self, ledger, token_a):
        with ledger.transaction():
            with ledger.guard(token_a):
                pass
            with ledger.guard(token_a):
                pass

    def test_distinct_names_independent(self, ledger, token_a):
        with ledger.guard(token_a, "a"), ledger.guard(token_a, "b"):
            pass


class TestAssets:
    """Native and token transfers share one API."""

    def test_native_transfer(self, ledger):
        ledger.mint_native(ALICE, 5)
        assert ledger.transfer(NATIVE_ASSET, ALICE, BOB, 3) == 3
        assert ledger.balance_of(NATIVE_ASSET, BOB) == 3

    def test_native_overdraw(self, ledger):
        with pytest.raises(InsufficientBalance):
            ledger.transfer(NATIVE_ASSET, ALICE, BOB, 1)

    def test_standard_token_refuses_zero_address(self, ledger, token_a):
        token_a.mint(ALICE, 5)
        with pytest.raises(TransferRejected):
            ledger.transfer(token_a.address, ALICE, ZERO_ADDRESS, 1)

    def test_tax_leaves_supply(self, ledger):
        taxed = FungibleToken(ledger, "TAX", transfer_tax_bps=1000)
        taxed.mint(ALICE, 100)
        assert ledger.transfer(taxed.address, ALICE, BOB, 50) == 45
        assert taxed.total_supply() == 95
