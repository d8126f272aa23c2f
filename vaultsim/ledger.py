from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List, Literal, Optional, Set, Tuple
import copy
import hashlib
import logging

from .core import Event, EventLog, format_inventory
from .errors import (
    BurnRejected,
    InsufficientBalance,
    InvalidAsset,
    ReentrancyError,
    TransferRejected,
)

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"
# collateral sentinel for the ledger's native currency
NATIVE_ASSET = ZERO_ADDRESS

ZeroTransferMode = Literal["reject", "burn", "hold"]


def derive_address(*parts: str) -> str:
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return "0x" + digest[:40]


# -----------------------------
# Contracts
# -----------------------------
class Contract:
    """
    Anything with an address whose state must roll back with a failed call.
    Subclasses list the attributes the ledger snapshots in `_state_fields`.
    """

    _state_fields: Tuple[str, ...] = ()

    def __init__(self, ledger: "Ledger", address: str) -> None:
        self.ledger = ledger
        self.address = address

    def snapshot_state(self) -> dict:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def restore_state(self, snap: dict) -> None:
        for name, value in snap.items():
            setattr(self, name, value)


class FungibleToken(Contract):
    """
    Continuous-amount asset. The keyword switches model the non-standard
    behaviours vaults have to cope with: transfer taxes, refused burns,
    refused transfers to the dead address and the three ways a token can
    treat transfers to the zero address.
    """

    kind = "fungible"
    _state_fields = ("balances", "supply", "calls")

    def __init__(
        self,
        ledger: "Ledger",
        symbol: str,
        *,
        address: Optional[str] = None,
        transfer_tax_bps: int = 0,
        burnable: bool = True,
        zero_transfer_mode: ZeroTransferMode = "reject",
        reject_dead: bool = False,
        hook: Optional[object] = None,
    ) -> None:
        super().__init__(ledger, address or derive_address("token", symbol))
        self.symbol = symbol
        self.transfer_tax_bps = int(transfer_tax_bps)
        self.burnable = burnable
        self.zero_transfer_mode = zero_transfer_mode
        self.reject_dead = reject_dead
        self.hook = hook
        self.balances: Dict[str, int] = {}
        self.supply: int = 0
        self.calls: Dict[str, int] = {}
        ledger.register(self)

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def total_supply(self) -> int:
        return self.supply

    def balance_of(self, holder: str) -> int:
        return int(self.balances.get(holder, 0))

    def _sub(self, holder: str, amount: int) -> None:
        bal = self.balance_of(holder)
        if bal < amount:
            raise InsufficientBalance(f"{self.symbol}: {holder} holds {bal}, needs {amount}")
        if bal == amount:
            self.balances.pop(holder, None)
        else:
            self.balances[holder] = bal - amount

    def _add(self, holder: str, amount: int) -> None:
        if amount:
            self.balances[holder] = self.balance_of(holder) + amount

    def mint(self, to: str, amount: int) -> None:
        if to == ZERO_ADDRESS:
            raise TransferRejected(f"{self.symbol}: mint to zero address")
        self._add(to, int(amount))
        self.supply += int(amount)

    def transfer(self, sender: str, to: str, amount: int) -> int:
        """Move `amount` from sender; returns what the recipient was credited."""
        self._count("transfer")
        amount = int(amount)
        if amount < 0:
            raise TransferRejected(f"{self.symbol}: negative amount")
        if to == ZERO_ADDRESS and self.zero_transfer_mode == "reject":
            raise TransferRejected(f"{self.symbol}: transfer to zero address")
        if to == DEAD_ADDRESS and self.reject_dead:
            raise TransferRejected(f"{self.symbol}: transfer to dead address")
        self._sub(sender, amount)
        if to == ZERO_ADDRESS and self.zero_transfer_mode == "burn":
            self.supply -= amount
            return 0
        tax = amount * self.transfer_tax_bps // 10_000
        received = amount - tax
        self._add(to, received)
        # tax leaves circulation
        self.supply -= tax
        return received

    def burn(self, holder: str, amount: int) -> None:
        self._count("burn")
        if not self.burnable:
            raise BurnRejected(f"{self.symbol}: burn disabled")
        self._sub(holder, int(amount))
        self.supply -= int(amount)


class ItemCollection(Contract):
    """Discrete item-set asset: every unit is an identified item with one owner."""

    kind = "items"
    _state_fields = ("owners", "next_id", "calls")

    def __init__(
        self,
        ledger: "Ledger",
        symbol: str,
        *,
        address: Optional[str] = None,
        burnable: bool = True,
        reject_dead: bool = False,
        hook: Optional[object] = None,
    ) -> None:
        super().__init__(ledger, address or derive_address("items", symbol))
        self.symbol = symbol
        self.burnable = burnable
        self.reject_dead = reject_dead
        self.hook = hook
        self.owners: Dict[int, str] = {}
        self.next_id: int = 1
        self.calls: Dict[str, int] = {}
        ledger.register(self)

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def total_supply(self) -> int:
        return len(self.owners)

    def balance_of(self, holder: str) -> int:
        return sum(1 for owner in self.owners.values() if owner == holder)

    def owner_of(self, item_id: int) -> Optional[str]:
        return self.owners.get(int(item_id))

    def items_of(self, holder: str) -> List[int]:
        return sorted(i for i, owner in self.owners.items() if owner == holder)

    def mint(self, to: str, count: int = 1) -> List[int]:
        if to == ZERO_ADDRESS:
            raise TransferRejected(f"{self.symbol}: mint to zero address")
        ids = []
        for _ in range(int(count)):
            self.owners[self.next_id] = to
            ids.append(self.next_id)
            self.next_id += 1
        return ids

    def transfer_item(self, sender: str, to: str, item_id: int) -> None:
        self._count("transfer")
        item_id = int(item_id)
        if self.owners.get(item_id) != sender:
            raise InsufficientBalance(f"{self.symbol}: {sender} does not own item {item_id}")
        if to == ZERO_ADDRESS:
            raise TransferRejected(f"{self.symbol}: transfer to zero address")
        if to == DEAD_ADDRESS and self.reject_dead:
            raise TransferRejected(f"{self.symbol}: transfer to dead address")
        self.owners[item_id] = to

    def burn(self, holder: str, item_id: int) -> None:
        self._count("burn")
        if not self.burnable:
            raise BurnRejected(f"{self.symbol}: burn disabled")
        item_id = int(item_id)
        if self.owners.get(item_id) != holder:
            raise InsufficientBalance(f"{self.symbol}: {holder} does not own item {item_id}")
        del self.owners[item_id]


# -----------------------------
# Ledger
# -----------------------------
class Ledger:
    """
    Host for every contract in a simulation. Serializes top-level calls:
    `transaction()` snapshots all contract state on entry to the outermost
    scope and restores it when the scope exits with an exception, so a failed
    call has no observable effect.
    """

    def __init__(self, event_log_maxlen: Optional[int] = None, debug_inventory: bool = False) -> None:
        self.tick: int = 0
        self.log = EventLog(maxlen=event_log_maxlen)
        self.debug_inventory = debug_inventory
        self.native: Dict[str, int] = {}
        self.contracts: Dict[str, Contract] = {}
        self._depth: int = 0
        self._locks: Set[Tuple[str, str]] = set()

    # -- registry of contracts --
    def register(self, contract: Contract) -> None:
        if contract.address in self.contracts:
            raise InvalidAsset(f"address {contract.address} already in use")
        self.contracts[contract.address] = contract

    def contract(self, address: str) -> Optional[Contract]:
        return self.contracts.get(address)

    def asset(self, address: str) -> Contract:
        c = self.contracts.get(address)
        if c is None or getattr(c, "kind", None) not in ("fungible", "items"):
            raise InvalidAsset(f"{address} is not an asset")
        return c

    def _fungible(self, asset: str) -> FungibleToken:
        c = self.contracts.get(asset)
        if not isinstance(c, FungibleToken):
            raise InvalidAsset(f"{asset} is not a fungible asset")
        return c

    # -- balances / transfers, native currency included --
    def balance_of(self, asset: str, holder: str) -> int:
        if asset == NATIVE_ASSET:
            return int(self.native.get(holder, 0))
        return self.asset(asset).balance_of(holder)

    def mint_native(self, to: str, amount: int) -> None:
        self.native[to] = self.native.get(to, 0) + int(amount)

    def _holdings(self, holder: str) -> Dict[str, int]:
        inv = {}
        if self.native.get(holder):
            inv["native"] = self.native[holder]
        for c in self.contracts.values():
            if isinstance(c, FungibleToken) and c.balance_of(holder):
                inv[c.symbol] = c.balance_of(holder)
        return inv

    def _debug_inventory_change(self, action: str, holder: str, counterparty: str, asset: str,
                                amount: int, before: Dict[str, int], after: Dict[str, int]) -> None:
        if not self.debug_inventory or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[INV] holder=%s action=%s counterparty=%s asset=%s amount=%d before={ %s } after={ %s }",
            holder,
            action,
            counterparty,
            asset,
            amount,
            format_inventory(before),
            format_inventory(after),
        )

    def transfer(self, asset: str, sender: str, to: str, amount: int) -> int:
        """Transfer `amount` of `asset`; returns the amount credited to `to`."""
        debug = self.debug_inventory and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = self._holdings(sender)
        amount = int(amount)
        if asset == NATIVE_ASSET:
            if amount < 0 or to == ZERO_ADDRESS:
                raise TransferRejected("native: invalid transfer")
            bal = self.native.get(sender, 0)
            if bal < amount:
                raise InsufficientBalance(f"native: {sender} holds {bal}, needs {amount}")
            self.native[sender] = bal - amount
            self.native[to] = self.native.get(to, 0) + amount
            received = amount
        else:
            received = self._fungible(asset).transfer(sender, to, amount)
        if debug:
            after = self._holdings(sender)
            self._debug_inventory_change("transfer_out", sender, to, asset, amount, before, after)
        return received

    def emit(self, event_type: str, **kwargs) -> None:
        self.log.add(Event(self.tick, event_type, **kwargs))

    # -- call atomicity --
    @property
    def in_call(self) -> bool:
        return self._depth > 0

    def _snapshot(self) -> dict:
        return {
            "native": dict(self.native),
            "contracts": dict(self.contracts),
            "state": {addr: c.snapshot_state() for addr, c in self.contracts.items()},
            "log": self.log.snapshot(),
        }

    def _restore(self, snap: dict) -> None:
        self.native = snap["native"]
        self.contracts = snap["contracts"]
        for addr, state in snap["state"].items():
            self.contracts[addr].restore_state(state)
        self.log.restore(snap["log"])

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        All-or-nothing scope. The outermost scope is the top-level call; nested
        scopes act as savepoints so a failed sub-call reverts only its own effects.
        """
        outermost = self._depth == 0
        snap = self._snapshot()
        self._depth += 1
        try:
            yield
        except BaseException as exc:
            self._restore(snap)
            logger.debug("%s rolled back at tick=%d: %r", "call" if outermost else "sub-call", self.tick, exc)
            raise
        finally:
            self._depth -= 1
            if outermost:
                self._locks.clear()

    @contextmanager
    def guard(self, instance: Contract, name: str = "non_reentrant") -> Iterator[None]:
        key = (instance.address, name)
        if key in self._locks:
            raise ReentrancyError(f"re-entered {name} on {instance.address}")
        self._locks.add(key)
        try:
            yield
        finally:
            self._locks.discard(key)
