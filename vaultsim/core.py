from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, List, Tuple
from collections import deque


def short_addr(address: Optional[str]) -> str:
    if not address:
        return "-"
    if len(address) <= 12:
        return address
    return f"{address[:6]}..{address[-4:]}"


def format_inventory(inv: Dict[str, int]) -> str:
    if not inv:
        return "(empty)"
    items = sorted(inv.items(), key=lambda kv: kv[0])
    return ", ".join(f"{short_addr(asset)}:{amount}" for asset, amount in items)

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    tick: int
    event_type: str
    actor_id: Optional[str] = None
    vault_id: Optional[str] = None
    asset_id: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.maxlen = maxlen
        self.events = deque(maxlen=maxlen)

    def add(self, e: Event) -> None:
        self.events.append(e)

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def snapshot(self) -> Tuple[Event, ...]:
        return tuple(self.events)

    def restore(self, snap: Tuple[Event, ...]) -> None:
        self.events = deque(snap, maxlen=self.maxlen)


# -----------------------------
# Receipts
# -----------------------------
@dataclass
class Payout:
    asset: str
    availability: int
    protocol_fee: int
    vault_operator_fee: int
    remainder_fee: int
    hook_amount: int
    recipient_amount: int

    def to_dict(self) -> dict:
        return {
            "asset": self.asset,
            "availability": int(self.availability),
            "protocol_fee": int(self.protocol_fee),
            "vault_operator_fee": int(self.vault_operator_fee),
            "remainder_fee": int(self.remainder_fee),
            "hook_amount": int(self.hook_amount),
            "recipient_amount": int(self.recipient_amount),
        }

@dataclass
class RedemptionReceipt:
    tick: int
    vault: str
    backed_asset: str
    caller: str
    recipient: str
    supply_delta: int
    real_amount: int
    supply_before: int
    supply_after: int
    hook_claimed: int = 0
    payouts: List[Payout] = field(default_factory=list)
    items: Tuple[int, ...] = ()

    def paid(self, asset: str) -> int:
        return sum(p.recipient_amount for p in self.payouts if p.asset == asset)

    def to_dict(self) -> dict:
        return {
            "tick": self.tick,
            "vault": self.vault,
            "backed_asset": self.backed_asset,
            "caller": self.caller,
            "recipient": self.recipient,
            "supply_delta": int(self.supply_delta),
            "real_amount": int(self.real_amount),
            "supply_before": int(self.supply_before),
            "supply_after": int(self.supply_after),
            "hook_claimed": int(self.hook_claimed),
            "payouts": [p.to_dict() for p in self.payouts],
            "items": list(self.items),
        }

@dataclass
class Quote:
    vault: str
    amount: int
    supply_delta: int
    supply_before: int
    payouts: List[Payout] = field(default_factory=list)

    def amounts(self) -> List[int]:
        return [p.recipient_amount for p in self.payouts]

    def to_dict(self) -> dict:
        return {
            "vault": self.vault,
            "amount": int(self.amount),
            "supply_delta": int(self.supply_delta),
            "supply_before": int(self.supply_before),
            "payouts": [p.to_dict() for p in self.payouts],
        }

@dataclass
class LoanReceipt:
    tick: int
    asset: str
    borrower: str
    total_amount: int
    vaults: List[str]
    amounts: List[int]
    fees: List[int]

    @property
    def total_fee(self) -> int:
        return sum(self.fees)

    def to_dict(self) -> dict:
        return {
            "tick": self.tick,
            "asset": self.asset,
            "borrower": self.borrower,
            "total_amount": int(self.total_amount),
            "vaults": list(self.vaults),
            "amounts": [int(a) for a in self.amounts],
            "fees": [int(f) for f in self.fees],
        }

class ReceiptStore:
    def __init__(self) -> None:
        self.receipts: List[object] = []

    def add(self, r: object) -> None:
        self.receipts.append(r)

    def tail(self, n: int = 200) -> List[object]:
        return self.receipts[-n:]
