from __future__ import annotations
from typing import Any, Iterable, Optional, Protocol, Tuple, Union
import logging

from .errors import AssetError, InvalidInput, TransferFailed, ZeroAmount
from .hooks import HookDispatcher
from .ledger import DEAD_ADDRESS, ZERO_ADDRESS, FungibleToken, ItemCollection
from .probe import AdaptationState, BurnMode, probe_zero_address, remove_from_circulation

logger = logging.getLogger(__name__)

Surrender = Union[int, Iterable[int]]


class AmountModel(Protocol):
    """
    How a vault counts, receives and retires units of its backed asset. The
    redemption engine in `vault.py` is written once against this interface.
    """

    kind: str
    asset: Any

    def normalize(self, surrender: Surrender) -> Any: ...

    def units(self, surrender: Any) -> int: ...

    def held(self, vault_address: str) -> int: ...

    def pull(self, caller: str, vault_address: str, surrender: Any) -> Tuple[int, Any]: ...

    def probe(self, vault_address: str, state: AdaptationState) -> None: ...

    def sink_holdings(self, state: AdaptationState) -> int: ...

    def pre_burn_hook(self, dispatcher: HookDispatcher, real_amount: int, recipient: str) -> int: ...

    def retire(self, vault_address: str, prior_held: int, received: Any, state: AdaptationState) -> BurnMode: ...

    def post_burn_hook(self, dispatcher: HookDispatcher, received: Any, recipient: str) -> None: ...


class FungibleAmounts:
    kind = "fungible"

    def __init__(self, token: FungibleToken) -> None:
        self.asset = token

    def normalize(self, surrender: Surrender) -> int:
        try:
            amount = int(surrender)
        except (TypeError, ValueError):
            raise InvalidInput("surrender amount must be an integer") from None
        if amount <= 0:
            raise ZeroAmount("nothing to surrender")
        return amount

    def units(self, surrender: int) -> int:
        return int(surrender)

    def held(self, vault_address: str) -> int:
        return self.asset.balance_of(vault_address)

    def pull(self, caller: str, vault_address: str, surrender: int) -> Tuple[int, None]:
        before = self.held(vault_address)
        try:
            self.asset.transfer(caller, vault_address, surrender)
        except AssetError as exc:
            raise TransferFailed(f"could not receive {self.asset.symbol}: {exc}") from exc
        return self.held(vault_address) - before, None

    def probe(self, vault_address: str, state: AdaptationState) -> None:
        probe_zero_address(self.asset, vault_address, state)

    def sink_holdings(self, state: AdaptationState) -> int:
        sinks = self.asset.balance_of(DEAD_ADDRESS)
        # units parked at an excluded zero address still sit in total supply
        if not state.zero_address_counted:
            sinks += self.asset.balance_of(ZERO_ADDRESS)
        return sinks

    def pre_burn_hook(self, dispatcher: HookDispatcher, real_amount: int, recipient: str) -> int:
        return dispatcher.dispatch(self.asset.address, real_amount, recipient)

    def retire(self, vault_address: str, prior_held: int, received: None, state: AdaptationState) -> BurnMode:
        amount = self.held(vault_address) - prior_held
        if amount <= 0:
            return state.burn_mode
        return remove_from_circulation(
            lambda: self.asset.burn(vault_address, amount),
            lambda sink: self.asset.transfer(vault_address, sink, amount),
            state,
        )

    def post_burn_hook(self, dispatcher: HookDispatcher, received: None, recipient: str) -> None:
        return None


class ItemSetAmounts:
    kind = "items"

    def __init__(self, collection: ItemCollection) -> None:
        self.asset = collection

    def normalize(self, surrender: Surrender) -> Tuple[int, ...]:
        if isinstance(surrender, int):
            raise InvalidInput("item-set vaults take item ids, not an amount")
        try:
            ids = tuple(dict.fromkeys(int(i) for i in surrender))
        except (TypeError, ValueError):
            raise InvalidInput("item ids must be integers") from None
        if not ids:
            raise ZeroAmount("no items to surrender")
        return ids

    def units(self, surrender: Tuple[int, ...]) -> int:
        return len(surrender)

    def held(self, vault_address: str) -> int:
        return self.asset.balance_of(vault_address)

    def pull(self, caller: str, vault_address: str, surrender: Tuple[int, ...]) -> Tuple[int, Tuple[int, ...]]:
        before = self.held(vault_address)
        try:
            for item_id in surrender:
                self.asset.transfer_item(caller, vault_address, item_id)
        except AssetError as exc:
            raise TransferFailed(f"could not receive {self.asset.symbol}: {exc}") from exc
        received = tuple(i for i in surrender if self.asset.owner_of(i) == vault_address)
        return self.held(vault_address) - before, received

    def probe(self, vault_address: str, state: AdaptationState) -> None:
        # item transfers to the zero address are always refused
        state.zero_probed = True
        state.exclude_zero_address()

    def sink_holdings(self, state: AdaptationState) -> int:
        return self.asset.balance_of(DEAD_ADDRESS)

    def pre_burn_hook(self, dispatcher: HookDispatcher, real_amount: int, recipient: str) -> int:
        return 0

    def retire(self, vault_address: str, prior_held: int, received: Tuple[int, ...], state: AdaptationState) -> BurnMode:
        if not received:
            return state.burn_mode

        def burn() -> None:
            for item_id in received:
                self.asset.burn(vault_address, item_id)

        def send_to_sink(sink: str) -> None:
            for item_id in received:
                self.asset.transfer_item(vault_address, sink, item_id)

        return remove_from_circulation(burn, send_to_sink, state)

    def post_burn_hook(self, dispatcher: HookDispatcher, received: Tuple[int, ...], recipient: str) -> None:
        dispatcher.notify_items(received, recipient)


def amount_model_for(asset: Any) -> AmountModel:
    if isinstance(asset, FungibleToken):
        return FungibleAmounts(asset)
    if isinstance(asset, ItemCollection):
        return ItemSetAmounts(asset)
    raise InvalidInput(f"unsupported asset kind: {type(asset).__name__}")


def describe(model: Optional[AmountModel]) -> str:
    if model is None:
        return "-"
    return f"{model.kind}:{model.asset.symbol}"
