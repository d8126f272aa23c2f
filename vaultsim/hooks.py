from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple
import logging

from .fixed_point import PRECISION, Rounding, apply_fraction, clamp_fraction
from .probe import HookStatus

logger = logging.getLogger(__name__)


class HookPort(Protocol):
    """Optional extension living on a backed asset's own contract."""

    def has_hook(self) -> bool: ...

    def hook_size(self, asset: str, amount: int) -> int: ...

    def execute_hook(self, asset: str, amount: int, context: Any) -> None: ...


@dataclass
class HookResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None


def _call(fn: Callable[..., Any], *args: Any, ledger=None) -> HookResult:
    """Run a hook entry point; with a ledger, whatever it changed is reverted when it fails."""
    try:
        if ledger is None:
            return HookResult(ok=True, value=fn(*args))
        with ledger.transaction():
            value = fn(*args)
        return HookResult(ok=True, value=value)
    except Exception as exc:  # hook failures never abort the caller
        logger.debug("hook call %s failed: %r", getattr(fn, "__name__", fn), exc)
        return HookResult(ok=False, error=repr(exc))


def probe_hook(port: Optional[HookPort]) -> HookStatus:
    if port is None:
        return HookStatus.ABSENT
    res = _call(port.has_hook)
    if res.ok and res.value is True:
        return HookStatus.PRESENT
    return HookStatus.ABSENT


class HookDispatcher:
    """
    Routes a slice of a pending payout to the backed asset's contract and
    notifies its hook. Lives for one redemption call; `served` tracks the
    assets already dispatched in that call.
    """

    def __init__(self, ledger, vault_address: str, backed_asset: str, port: Optional[HookPort]) -> None:
        self.ledger = ledger
        self.vault_address = vault_address
        self.backed_asset = backed_asset
        self.port = port
        self.served: Set[str] = set()

    def claim_size(self, asset: str, amount: int) -> int:
        if self.port is None or amount <= 0:
            return 0
        res = _call(self.port.hook_size, asset, amount, ledger=self.ledger)
        if not res.ok:
            return 0
        try:
            fraction = clamp_fraction(int(res.value))
        except (TypeError, ValueError):
            return 0
        return apply_fraction(amount, fraction, Rounding.FLOOR)

    def dispatch(self, asset: str, amount: int, context: Any) -> int:
        """
        Let the hook claim part of `amount` of `asset` held by the vault.
        Returns what the vault sent to the hook; the caller pays out the rest.
        """
        if self.port is None or asset in self.served:
            return 0
        self.served.add(asset)
        claimed = self.claim_size(asset, amount)
        if claimed <= 0:
            return 0
        before = self.ledger.balance_of(asset, self.backed_asset)
        self.ledger.transfer(asset, self.vault_address, self.backed_asset, claimed)
        delta = self.ledger.balance_of(asset, self.backed_asset) - before
        if delta > 0:
            _call(self.port.execute_hook, asset, delta, context, ledger=self.ledger)
        return claimed

    def notify_items(self, item_ids: Tuple[int, ...], recipient: str) -> None:
        if self.port is None:
            return
        _call(self.port.execute_hook, self.backed_asset, 0, {"items": tuple(item_ids), "recipient": recipient},
              ledger=self.ledger)


# -----------------------------
# Concrete hooks used by simulations
# -----------------------------
@dataclass
class FractionHook:
    """Claims a fixed fraction of every payout and records what it saw."""
    fraction: int = PRECISION // 100
    enabled: bool = True
    fail_size: bool = False
    fail_execute: bool = False
    sizes: Dict[str, int] = field(default_factory=dict)
    executions: List[Tuple[str, int, Any]] = field(default_factory=list)

    def has_hook(self) -> bool:
        return self.enabled

    def hook_size(self, asset: str, amount: int) -> int:
        if self.fail_size:
            raise RuntimeError("hook_size unavailable")
        self.sizes[asset] = amount
        return self.fraction

    def execute_hook(self, asset: str, amount: int, context: Any) -> None:
        if self.fail_execute:
            raise RuntimeError("execute_hook reverted")
        self.executions.append((asset, amount, context))


class BrokenHook:
    """A hook contract whose capability query itself fails."""

    def has_hook(self) -> bool:
        raise RuntimeError("has_hook reverted")

    def hook_size(self, asset: str, amount: int) -> int:
        raise RuntimeError("hook_size reverted")

    def execute_hook(self, asset: str, amount: int, context: Any) -> None:
        raise RuntimeError("execute_hook reverted")
