from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import logging

from .errors import AssetError
from .ledger import ZERO_ADDRESS, DEAD_ADDRESS, FungibleToken

logger = logging.getLogger(__name__)


class BurnMode(Enum):
    UNKNOWN = "unknown"
    STANDARD = "standard"
    NON_BURNABLE = "non_burnable"          # burn refused, units go to the dead address
    PERMANENTLY_HELD = "permanently_held"  # dead address refused too, vault keeps units


class HookStatus(Enum):
    UNKNOWN = "unknown"
    PRESENT = "present"
    ABSENT = "absent"


_BURN_ORDER = {
    BurnMode.UNKNOWN: 0,
    BurnMode.STANDARD: 1,
    BurnMode.NON_BURNABLE: 2,
    BurnMode.PERMANENTLY_HELD: 3,
}


@dataclass
class AdaptationState:
    """
    What a vault has learned about its backed asset. Transitions only move
    forward: once an asset is marked non-standard it never reverts.
    """
    burn_mode: BurnMode = BurnMode.UNKNOWN
    zero_probed: bool = False
    zero_address_counted: bool = True
    probe_runs: int = 0

    @property
    def non_burnable(self) -> bool:
        return _BURN_ORDER[self.burn_mode] >= _BURN_ORDER[BurnMode.NON_BURNABLE]

    @property
    def supply_permanently_held(self) -> bool:
        return self.burn_mode is BurnMode.PERMANENTLY_HELD

    def advance(self, mode: BurnMode) -> bool:
        if _BURN_ORDER[mode] <= _BURN_ORDER[self.burn_mode]:
            return False
        logger.info("burn mode %s -> %s", self.burn_mode.value, mode.value)
        self.burn_mode = mode
        return True

    def exclude_zero_address(self) -> None:
        self.zero_address_counted = False

    def to_dict(self) -> dict:
        return {
            "burn_mode": self.burn_mode.value,
            "non_burnable": self.non_burnable,
            "supply_permanently_held": self.supply_permanently_held,
            "zero_address_counted": self.zero_address_counted,
            "zero_probed": self.zero_probed,
            "probe_runs": self.probe_runs,
        }


def probe_zero_address(token: FungibleToken, vault_address: str, state: AdaptationState) -> None:
    """
    One-shot heuristic: send one unit from the vault to the zero address and
    watch total supply. A refused transfer, or a transfer that leaves supply
    untouched, means the token does not book zero-address holdings as burned,
    so the vault subtracts them from the adjusted supply itself.
    Consumes one unit when the transfer goes through.
    """
    if state.zero_probed:
        return
    state.zero_probed = True
    if token.balance_of(vault_address) <= 0:
        return
    before = token.total_supply()
    try:
        token.transfer(vault_address, ZERO_ADDRESS, 1)
    except AssetError as exc:
        logger.info("zero-address probe refused by %s: %s", token.symbol, exc)
        state.exclude_zero_address()
        return
    if token.total_supply() == before:
        logger.info("zero-address probe left %s supply unchanged", token.symbol)
        state.exclude_zero_address()


def remove_from_circulation(burn, send_to_sink, state: AdaptationState) -> BurnMode:
    """
    Walk the burn tiers starting at the vault's current mode. `burn` and
    `send_to_sink` are callables raising AssetError on refusal. A tier that
    failed once is never attempted again for this vault.
    """
    if state.burn_mode is BurnMode.PERMANENTLY_HELD:
        return state.burn_mode
    if state.burn_mode in (BurnMode.UNKNOWN, BurnMode.STANDARD):
        first = state.burn_mode is BurnMode.UNKNOWN
        if first:
            state.probe_runs += 1
        try:
            burn()
            state.advance(BurnMode.STANDARD)
            return state.burn_mode
        except AssetError as exc:
            logger.info("burn refused (%s); falling back to dead address", exc)
            state.advance(BurnMode.NON_BURNABLE)
    try:
        send_to_sink(DEAD_ADDRESS)
    except AssetError as exc:
        logger.info("dead-address transfer refused (%s); holding supply in vault", exc)
        state.advance(BurnMode.PERMANENTLY_HELD)
    return state.burn_mode
