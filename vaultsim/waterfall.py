from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Tuple

from .errors import InvalidInput, ZeroAddress
from .fixed_point import PRECISION, PROTOCOL_FEE, Rounding, mul_div
from .ledger import ZERO_ADDRESS


class SettingsProvider(Protocol):
    def fee_split(self) -> Tuple[int, str, str]:
        """(vault operator share of the protocol fee, vault operator, remainder recipient)"""
        ...


@dataclass
class StaticSettings:
    vault_operator_share: int
    vault_operator: str
    remainder_recipient: str

    def __post_init__(self) -> None:
        if not 0 <= int(self.vault_operator_share) <= PRECISION:
            raise InvalidInput("vault_operator_share out of bounds")
        if ZERO_ADDRESS in (self.vault_operator, self.remainder_recipient):
            raise ZeroAddress("fee recipients must be set")

    def fee_split(self) -> Tuple[int, str, str]:
        return int(self.vault_operator_share), self.vault_operator, self.remainder_recipient


@dataclass(frozen=True)
class FeeBreakdown:
    availability: int
    protocol_fee: int
    recipient_amount: int

    def to_dict(self) -> dict:
        return {
            "availability": int(self.availability),
            "protocol_fee": int(self.protocol_fee),
            "recipient_amount": int(self.recipient_amount),
        }


def availability(balance: int, supply_delta: int) -> int:
    return mul_div(balance, supply_delta, PRECISION, Rounding.FLOOR)


def compute(balance: int, supply_delta: int) -> FeeBreakdown:
    """
    The user-facing side of the waterfall: the share of `balance` released by
    `supply_delta`, less the protocol fee (rounded up).
    """
    avail = availability(balance, supply_delta)
    if avail <= 0:
        return FeeBreakdown(0, 0, 0)
    fee = mul_div(avail, PROTOCOL_FEE, PRECISION, Rounding.CEIL)
    return FeeBreakdown(avail, fee, max(0, avail - fee))


def split_protocol_fee(protocol_fee: int, vault_operator_share: int) -> Tuple[int, int]:
    vault_cut = mul_div(protocol_fee, vault_operator_share, PRECISION, Rounding.FLOOR)
    vault_cut = min(vault_cut, protocol_fee)
    return vault_cut, protocol_fee - vault_cut
