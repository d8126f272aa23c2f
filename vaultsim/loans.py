from __future__ import annotations
from dataclasses import dataclass
from typing import List, Protocol, Sequence
import logging

from .core import LoanReceipt
from .errors import (
    InsufficientLiquidity,
    InvalidInput,
    LoanCallbackFailed,
    RepaymentShortfall,
    UnknownVault,
    ZeroAddress,
    ZeroAmount,
)
from .ledger import ZERO_ADDRESS, Contract, Ledger, derive_address

logger = logging.getLogger(__name__)


class Borrower(Protocol):
    address: str

    def on_glued_loan(self, vaults: List[str], asset: str, expected_repay: List[int], data: bytes) -> bool: ...


@dataclass
class LoanPlanEntry:
    vault: str
    amount: int
    fee: int
    pre_balance: int

    @property
    def expected_repay(self) -> int:
        return self.amount + self.fee

    @property
    def expected_post_balance(self) -> int:
        return self.pre_balance + self.fee


@dataclass
class LoanPlan:
    ok: bool
    reason: str
    asset: str
    requested: int
    entries: List[LoanPlanEntry]

    @property
    def vaults(self) -> List[str]:
        return [e.vault for e in self.entries]

    @property
    def amounts(self) -> List[int]:
        return [e.amount for e in self.entries]

    @property
    def fees(self) -> List[int]:
        return [e.fee for e in self.entries]

    @property
    def expected_repay(self) -> List[int]:
        return [e.expected_repay for e in self.entries]

    @property
    def planned_total(self) -> int:
        return sum(self.amounts)


class LoanCoordinator(Contract):
    """
    Composes several vaults into one atomic flash loan:
    plan (pure), disburse, then settle against the borrower's callback.
    """

    def __init__(self, ledger: Ledger, factory_address: str) -> None:
        super().__init__(ledger, derive_address("coordinator", factory_address))
        self.factory_address = factory_address
        ledger.register(self)

    def _vault(self, address: str):
        v = self.ledger.contract(address)
        if v is None or not hasattr(v, "disburse_loan"):
            raise UnknownVault(f"{address} is not a vault")
        return v

    def max_loan(self, vaults: Sequence[str], asset: str) -> int:
        return sum(self._vault(v).balance(asset) for v in dict.fromkeys(vaults))

    def plan(self, vaults: Sequence[str], asset: str, total_amount: int) -> LoanPlan:
        remaining = int(total_amount)
        entries: List[LoanPlanEntry] = []
        for address in dict.fromkeys(vaults):
            if remaining <= 0:
                break
            vault = self._vault(address)
            available = vault.balance(asset)
            take = min(remaining, available)
            if take <= 0:
                continue
            entries.append(LoanPlanEntry(vault=address, amount=take, fee=vault.loan_fee(take),
                                         pre_balance=available))
            remaining -= take
        if remaining > 0:
            return LoanPlan(False, "insufficient_liquidity", asset, int(total_amount), entries)
        return LoanPlan(True, "ok", asset, int(total_amount), entries)

    def execute_loan(self, caller: str, vaults: Sequence[str], asset: str, total_amount: int,
                     borrower: Borrower, data: bytes = b"") -> LoanReceipt:
        with self.ledger.transaction(), self.ledger.guard(self):
            vaults = list(vaults or [])
            if not vaults:
                raise InvalidInput("no vaults")
            if int(total_amount) <= 0:
                raise ZeroAmount("empty loan")
            if borrower is None or getattr(borrower, "address", ZERO_ADDRESS) == ZERO_ADDRESS:
                raise ZeroAddress("borrower not set")

            plan = self.plan(vaults, asset, total_amount)
            if not plan.ok:
                raise InsufficientLiquidity(
                    f"requested {plan.requested}, vaults hold {plan.planned_total}"
                )

            for e in plan.entries:
                self._vault(e.vault).disburse_loan(self.address, asset, e.amount, borrower.address)

            ok = borrower.on_glued_loan(plan.vaults, asset, plan.expected_repay, data)
            if ok is not True:
                raise LoanCallbackFailed("borrower callback did not succeed")

            for e in plan.entries:
                actual = self._vault(e.vault).balance(asset)
                if actual < e.expected_post_balance:
                    raise RepaymentShortfall(e.vault, e.expected_post_balance, actual)

            receipt = LoanReceipt(
                tick=self.ledger.tick,
                asset=asset,
                borrower=borrower.address,
                total_amount=int(total_amount),
                vaults=plan.vaults,
                amounts=plan.amounts,
                fees=plan.fees,
            )
            self.ledger.emit("LOAN_SETTLED", actor_id=caller, asset_id=asset, amount=int(total_amount),
                             meta={"vaults": len(plan.entries), "fees": receipt.total_fee,
                                   "borrower": borrower.address})
            return receipt


# -----------------------------
# Borrowers
# -----------------------------
class RepayingBorrower:
    """
    Repays every vault from its own balance. `shortfall` under-pays the vault
    at `short_index` to model a borrower that cannot settle.
    """

    def __init__(self, ledger: Ledger, name: str, shortfall: int = 0, short_index: int = 0,
                 succeed: bool = True) -> None:
        self.ledger = ledger
        self.address = derive_address("borrower", name)
        self.shortfall = int(shortfall)
        self.short_index = short_index
        self.succeed = succeed
        self.calls = 0
        self.action = None

    def on_glued_loan(self, vaults: List[str], asset: str, expected_repay: List[int], data: bytes) -> bool:
        self.calls += 1
        if self.action is not None:
            self.action(vaults, asset, expected_repay, data)
        for idx, (vault, amount) in enumerate(zip(vaults, expected_repay)):
            if idx == self.short_index:
                amount -= self.shortfall
            if amount > 0:
                self.ledger.transfer(asset, self.address, vault, amount)
        return self.succeed

