from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

from .amounts import Surrender
from .core import Quote, RedemptionReceipt
from .errors import DuplicateVault, InvalidAsset, InvalidInput, UnknownVault
from .ledger import Contract, Ledger, derive_address
from .loans import LoanCoordinator
from .vault import Vault
from .waterfall import SettingsProvider

logger = logging.getLogger(__name__)


@dataclass
class RedeemRequest:
    asset: str
    amount: Surrender
    recipient: Optional[str] = None


class VaultFactory(Contract):
    """
    Registry of vaults: at most one per backed asset, at an address derived
    from the factory and the asset.
    """

    _state_fields = ("_vaults", "_by_asset")

    def __init__(self, ledger: Ledger, settings: SettingsProvider, name: str = "factory") -> None:
        super().__init__(ledger, derive_address("factory", name))
        self.settings = settings
        self._vaults: List[str] = []
        self._by_asset: Dict[str, str] = {}
        ledger.register(self)
        self.coordinator = LoanCoordinator(ledger, self.address)

    def compute_vault_address(self, asset: str) -> str:
        return derive_address("vault", self.address, asset)

    def create_vault(self, asset: str) -> Vault:
        with self.ledger.transaction(), self.ledger.guard(self):
            if asset in self._by_asset:
                raise DuplicateVault(f"{asset} is already backed by {self._by_asset[asset]}")
            contract = self.ledger.contract(asset)
            if getattr(contract, "kind", None) not in ("fungible", "items"):
                raise InvalidAsset(f"{asset} is not a fungible token or item collection")
            address = self.compute_vault_address(asset)
            vault = Vault(self.ledger, address, asset, self.coordinator.address, self.settings)
            self._vaults.append(address)
            self._by_asset[asset] = address
            self.ledger.emit("VAULT_CREATED", vault_id=address, asset_id=asset,
                             meta={"kind": vault.model.kind})
            logger.info("vault %s created for %s (%s)", address, asset, vault.model.kind)
            return vault

    # -----------------------------
    # enumeration
    # -----------------------------
    def vault_count(self) -> int:
        return len(self._vaults)

    def vault_at(self, index: int) -> Vault:
        if not 0 <= index < len(self._vaults):
            raise UnknownVault(f"no vault at index {index}")
        return self.ledger.contract(self._vaults[index])

    def vault_for(self, asset: str) -> Vault:
        address = self._by_asset.get(asset)
        if address is None:
            raise UnknownVault(f"{asset} is not backed")
        return self.ledger.contract(address)

    def is_backed(self, asset: str) -> bool:
        return asset in self._by_asset

    def vaults(self) -> List[Vault]:
        return [self.ledger.contract(a) for a in self._vaults]

    # -----------------------------
    # batch operations
    # -----------------------------
    def batch_redeem(self, caller: str, requests: Sequence[RedeemRequest],
                     collaterals: Sequence[str]) -> List[RedemptionReceipt]:
        with self.ledger.transaction():
            if not requests:
                raise InvalidInput("no redemption requests")
            return [
                self.vault_for(r.asset).redeem(caller, collaterals, r.amount, r.recipient)
                for r in requests
            ]

    def batch_quote(self, requests: Sequence[RedeemRequest], collaterals: Sequence[str]) -> List[Quote]:
        return [self.vault_for(r.asset).quote(r.amount, collaterals) for r in requests]

    def balances(self, assets: Sequence[str], collaterals: Sequence[str]) -> List[List[int]]:
        return [self.vault_for(a).balances(collaterals) for a in assets]

    def execute_loan(self, caller: str, vaults: Sequence[str], asset: str, total_amount: int,
                     borrower, data: bytes = b""):
        return self.coordinator.execute_loan(caller, vaults, asset, total_amount, borrower, data)
