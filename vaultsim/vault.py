from __future__ import annotations
from typing import Iterable, List, Optional, Sequence, Set
import logging

from .amounts import AmountModel, Surrender, amount_model_for
from .core import Payout, Quote, RedemptionReceipt
from .errors import (
    AssetError,
    EmptyCollateralList,
    InvalidAsset,
    TransferFailed,
    Unauthorized,
    ZeroAddress,
    ZeroAmount,
)
from .fixed_point import FLASH_LOAN_FEE, PRECISION, PROTOCOL_FEE, Rounding, fraction_of, mul_div
from .hooks import HookDispatcher, HookPort, probe_hook
from .ledger import NATIVE_ASSET, ZERO_ADDRESS, Contract, FungibleToken, Ledger
from .probe import AdaptationState, HookStatus
from . import waterfall

logger = logging.getLogger(__name__)


class Vault(Contract):
    """
    Custodies collateral for exactly one backed asset. Holders surrender
    units of the backed asset and receive their share of every listed
    collateral, less the protocol fee.
    """

    _state_fields = ("adaptation", "hook_status")

    def __init__(self, ledger: Ledger, address: str, backed_asset: str, coordinator: str,
                 settings: waterfall.SettingsProvider) -> None:
        super().__init__(ledger, address)
        self._backed_asset = backed_asset
        self.coordinator = coordinator
        self.settings = settings
        self.model: AmountModel = amount_model_for(ledger.asset(backed_asset))
        self.adaptation = AdaptationState()
        self.hook_status = HookStatus.UNKNOWN
        ledger.register(self)

    @property
    def backed_asset(self) -> str:
        return self._backed_asset

    @property
    def kind(self) -> str:
        # vaults are not assets; `kind` stays out of the asset namespace
        return "vault:" + self.model.kind

    # -----------------------------
    # getters
    # -----------------------------
    @property
    def protocol_fee(self) -> int:
        return PROTOCOL_FEE

    @property
    def flash_loan_fee(self) -> int:
        return FLASH_LOAN_FEE

    def loan_fee(self, amount: int) -> int:
        return mul_div(int(amount), FLASH_LOAN_FEE, PRECISION, Rounding.CEIL)

    def self_learning(self) -> dict:
        return self.adaptation.to_dict()

    def balance(self, asset: str) -> int:
        return self.ledger.balance_of(asset, self.address)

    def balances(self, collaterals: Iterable[str]) -> List[int]:
        return [self.balance(a) for a in collaterals]

    def adjusted_supply(self) -> int:
        return self._adjusted_supply(self.model.held(self.address))

    def _port(self) -> Optional[HookPort]:
        return getattr(self.model.asset, "hook", None)

    def _adjusted_supply(self, vault_held: int) -> int:
        total = self.model.asset.total_supply()
        return max(0, total - self.model.sink_holdings(self.adaptation) - vault_held)

    # -----------------------------
    # validation
    # -----------------------------
    def _check_collaterals(self, collaterals: Optional[Sequence[str]]) -> List[str]:
        collaterals = list(collaterals or [])
        if not collaterals:
            raise EmptyCollateralList("no collateral requested")
        for asset in collaterals:
            if asset == self.backed_asset:
                raise InvalidAsset("the backed asset cannot be withdrawn as collateral")
            if asset != NATIVE_ASSET and not isinstance(self.ledger.contract(asset), FungibleToken):
                raise InvalidAsset(f"{asset} is not a collateral asset")
        return collaterals

    def _send(self, asset: str, to: str, amount: int) -> None:
        if amount <= 0:
            return
        try:
            self.ledger.transfer(asset, self.address, to, amount)
        except AssetError as exc:
            raise TransferFailed(f"vault {self.address} could not pay {to}: {exc}") from exc

    # -----------------------------
    # redemption
    # -----------------------------
    def _learn(self) -> None:
        if self.hook_status is HookStatus.UNKNOWN:
            self.hook_status = probe_hook(self._port())
            logger.info("vault=%s hook status %s", self.address, self.hook_status.value)
        if not self.adaptation.zero_probed:
            self.model.probe(self.address, self.adaptation)

    def redeem(self, caller: str, collaterals: Sequence[str], surrender: Surrender,
               recipient: Optional[str] = None) -> RedemptionReceipt:
        with self.ledger.transaction(), self.ledger.guard(self):
            collaterals = self._check_collaterals(collaterals)
            units = self.model.normalize(surrender)
            recipient = recipient or caller
            if recipient == ZERO_ADDRESS:
                raise ZeroAddress("recipient not set")

            prior_held = self.model.held(self.address)
            real_amount, received = self.model.pull(caller, self.address, units)
            if real_amount <= 0:
                raise TransferFailed("no units received")

            self._learn()
            port = self._port() if self.hook_status is HookStatus.PRESENT else None
            dispatcher = HookDispatcher(self.ledger, self.address, self.backed_asset, port)
            hook_claimed = self.model.pre_burn_hook(dispatcher, real_amount, recipient)
            real_amount -= hook_claimed

            supply_before = max(self._adjusted_supply(prior_held), real_amount)
            supply_after = supply_before - real_amount
            supply_delta = fraction_of(real_amount, supply_before) if real_amount > 0 else 0

            self.model.retire(self.address, prior_held, received, self.adaptation)
            self.model.post_burn_hook(dispatcher, received, recipient)

            payouts = self._pay_out(collaterals, supply_delta, recipient, dispatcher)

            receipt = RedemptionReceipt(
                tick=self.ledger.tick,
                vault=self.address,
                backed_asset=self.backed_asset,
                caller=caller,
                recipient=recipient,
                supply_delta=supply_delta,
                real_amount=real_amount,
                supply_before=supply_before,
                supply_after=supply_after,
                hook_claimed=hook_claimed,
                payouts=payouts,
                items=tuple(received or ()),
            )
            self.ledger.emit(
                "REDEEMED",
                actor_id=caller,
                vault_id=self.address,
                asset_id=self.backed_asset,
                amount=real_amount,
                meta={
                    "supply_delta": supply_delta,
                    "supply_before": supply_before,
                    "supply_after": supply_after,
                    "hook_claimed": hook_claimed,
                    "recipient": recipient,
                    "collaterals_paid": len(payouts),
                },
            )
            return receipt

    def _pay_out(self, collaterals: Sequence[str], supply_delta: int, recipient: str,
                 dispatcher: HookDispatcher) -> List[Payout]:
        share, operator, remainder_to = self.settings.fee_split()
        payouts: List[Payout] = []
        paid: Set[str] = set()
        try:
            for asset in collaterals:
                if asset in paid:
                    continue
                paid.add(asset)
                fees = waterfall.compute(self.balance(asset), supply_delta)
                if fees.recipient_amount <= 0:
                    continue
                hook_amount = dispatcher.dispatch(asset, fees.recipient_amount, recipient)
                vault_cut, remainder = waterfall.split_protocol_fee(fees.protocol_fee, share)
                to_recipient = fees.recipient_amount - hook_amount
                self._send(asset, operator, vault_cut)
                self._send(asset, remainder_to, remainder)
                self._send(asset, recipient, to_recipient)
                payouts.append(Payout(
                    asset=asset,
                    availability=fees.availability,
                    protocol_fee=fees.protocol_fee,
                    vault_operator_fee=vault_cut,
                    remainder_fee=remainder,
                    hook_amount=hook_amount,
                    recipient_amount=to_recipient,
                ))
        finally:
            paid.clear()
        return payouts

    def quote(self, amount: Surrender, collaterals: Sequence[str]) -> Quote:
        """Projected payouts for surrendering `amount` units, without touching state."""
        collaterals = self._check_collaterals(collaterals)
        if isinstance(amount, int):
            units = int(amount)
        else:
            units = self.model.units(self.model.normalize(amount))
        if units <= 0:
            raise ZeroAmount("nothing to quote")
        supply_before = max(self.adjusted_supply(), units)
        supply_delta = fraction_of(units, supply_before)
        share, _, _ = self.settings.fee_split()
        payouts: List[Payout] = []
        seen: Set[str] = set()
        for asset in collaterals:
            if asset in seen:
                continue
            seen.add(asset)
            fees = waterfall.compute(self.balance(asset), supply_delta)
            if fees.recipient_amount <= 0:
                continue
            vault_cut, remainder = waterfall.split_protocol_fee(fees.protocol_fee, share)
            payouts.append(Payout(asset, fees.availability, fees.protocol_fee, vault_cut,
                                  remainder, 0, fees.recipient_amount))
        return Quote(vault=self.address, amount=units, supply_delta=supply_delta,
                     supply_before=supply_before, payouts=payouts)

    # -----------------------------
    # loans
    # -----------------------------
    def disburse_loan(self, caller: str, asset: str, amount: int, borrower: str) -> None:
        with self.ledger.transaction(), self.ledger.guard(self):
            if caller != self.coordinator:
                raise Unauthorized("only the loan coordinator can disburse")
            if int(amount) <= 0:
                raise ZeroAmount("empty loan")
            if borrower == ZERO_ADDRESS:
                raise ZeroAddress("borrower not set")
            self._send(asset, borrower, int(amount))
            self.ledger.emit("LOAN_DISBURSED", actor_id=borrower, vault_id=self.address,
                             asset_id=asset, amount=int(amount))

    def flash_loan(self, caller: str, asset: str, amount: int, borrower: str, data: bytes = b""):
        coordinator = self.ledger.contract(self.coordinator)
        return coordinator.execute_loan(caller, [self.address], asset, amount, borrower, data)
