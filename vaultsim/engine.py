from __future__ import annotations
from typing import Dict, List, Optional
import logging
import numpy as np
import random

from .amounts import describe
from .config import ScenarioConfig
from .core import ReceiptStore, short_addr
from .errors import VaultSimError
from .factory import VaultFactory
from .fixed_point import PRECISION
from .hooks import FractionHook
from .ledger import NATIVE_ASSET, FungibleToken, ItemCollection, Ledger, derive_address
from .loans import RepayingBorrower
from .metrics import MetricsStore
from .vault import Vault
from .waterfall import StaticSettings

logger = logging.getLogger(__name__)


class SimulationEngine:
    def __init__(self, cfg: ScenarioConfig, seed: int = 1) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        np.random.seed(seed)

        self.tick: int = 0
        self.ledger = Ledger(event_log_maxlen=cfg.event_log_maxlen, debug_inventory=cfg.debug_inventory)
        self.log = self.ledger.log
        self.metrics = MetricsStore()
        self.receipts = ReceiptStore()

        self.settings = StaticSettings(
            vault_operator_share=int(cfg.vault_operator_share * PRECISION),
            vault_operator=cfg.vault_operator,
            remainder_recipient=cfg.remainder_recipient,
        )
        self.factory = VaultFactory(self.ledger, self.settings)
        self.borrower = RepayingBorrower(self.ledger, "sim_borrower")

        self.collaterals: List[str] = []
        self.symbols: Dict[str, str] = {}
        self.holders: Dict[str, List[str]] = {}
        self.asset_counter = 0

        self._redemptions_tick = 0
        self._redemption_failures_tick = 0
        self._loans_tick = 0
        self._loan_failures_tick = 0
        self._loan_volume_tick = 0
        self._protocol_fees_tick = 0
        self._hook_claims_tick = 0
        self._fail_reasons: Dict[str, int] = {}

        self._bootstrap()

    def _bootstrap(self) -> None:
        for symbol in self.cfg.collateral_symbols:
            token = FungibleToken(self.ledger, symbol)
            self.collaterals.append(token.address)
            self.symbols[token.address] = symbol
        if self.cfg.include_native:
            self.collaterals.append(NATIVE_ASSET)
            self.symbols[NATIVE_ASSET] = "NATIVE"
        for _ in range(self.cfg.initial_vaults):
            self.add_vault(snapshot=False)
        self.snapshot_metrics()

    # -----------------------------
    # setup
    # -----------------------------
    def _new_symbol(self, prefix: str) -> str:
        self.asset_counter += 1
        return f"{prefix}{self.asset_counter:03d}"

    def _sample_amount(self, mean: float) -> int:
        return max(1, int(np.random.exponential(max(1.0, mean))))

    def _make_hook(self) -> Optional[FractionHook]:
        if self.rng.random() >= self.cfg.p_hooked:
            return None
        return FractionHook(fraction=int(self.cfg.hook_fraction * PRECISION))

    def _make_backed_asset(self, kind: Optional[str] = None):
        cfg = self.cfg
        if kind is None:
            kind = "items" if self.rng.random() < cfg.p_item_collection else "fungible"
        burnable = self.rng.random() >= cfg.p_non_burnable
        reject_dead = (not burnable) and self.rng.random() < cfg.p_dead_rejecting
        hook = self._make_hook()
        if kind == "items":
            return ItemCollection(self.ledger, self._new_symbol("ITEM"), burnable=burnable,
                                  reject_dead=reject_dead, hook=hook)
        r = self.rng.random()
        if r < cfg.p_zero_burns:
            zero_mode = "burn"
        elif r < cfg.p_zero_burns + cfg.p_zero_holds:
            zero_mode = "hold"
        else:
            zero_mode = "reject"
        tax = cfg.transfer_tax_bps if self.rng.random() < cfg.p_taxed else 0
        return FungibleToken(self.ledger, self._new_symbol("BACK"), transfer_tax_bps=tax,
                             burnable=burnable, zero_transfer_mode=zero_mode,
                             reject_dead=reject_dead, hook=hook)

    def add_vault(self, kind: Optional[str] = None, *, snapshot: bool = True) -> Vault:
        cfg = self.cfg
        asset = self._make_backed_asset(kind)
        self.symbols[asset.address] = asset.symbol
        holders = [derive_address("holder", asset.symbol, i) for i in range(max(1, cfg.holders_per_asset))]
        self.holders[asset.address] = holders
        for h in holders:
            if isinstance(asset, ItemCollection):
                asset.mint(h, self._sample_amount(cfg.items_per_holder_mean))
            else:
                asset.mint(h, self._sample_amount(cfg.supply_per_holder_mean))

        vault = self.factory.create_vault(asset.address)
        for c in self.collaterals:
            self._deposit(vault, c, self._sample_amount(cfg.collateral_per_vault_mean), "initial_deposit")
        if snapshot:
            self.snapshot_metrics()
        return vault

    def _deposit(self, vault: Vault, asset: str, amount: int, action: str) -> None:
        if amount <= 0:
            return
        if asset == NATIVE_ASSET:
            self.ledger.mint_native(vault.address, amount)
        else:
            self.ledger.contract(asset).mint(vault.address, amount)
        self.ledger.emit("COLLATERAL_DEPOSITED", vault_id=vault.address, asset_id=asset,
                         amount=amount, meta={"action": action})

    # -----------------------------
    # activity
    # -----------------------------
    def _fail(self, event_type: str, exc: VaultSimError, **kwargs) -> None:
        self._fail_reasons[exc.reason] = self._fail_reasons.get(exc.reason, 0) + 1
        meta = dict(kwargs.pop("meta", {}))
        meta["reason"] = exc.reason
        self.ledger.emit(event_type, meta=meta, **kwargs)

    def _collateral_request(self) -> List[str]:
        k = self.rng.randint(1, len(self.collaterals))
        chosen = self.rng.sample(self.collaterals, k=k)
        # callers sometimes list an asset twice; vaults pay it once
        if self.rng.random() < 0.2:
            chosen.append(self.rng.choice(chosen))
        return chosen

    def _random_redemption(self) -> bool:
        vaults = self.factory.vaults()
        if not vaults or not self.collaterals:
            return False
        vault = self.rng.choice(vaults)
        asset = vault.model.asset
        holders = [h for h in self.holders.get(asset.address, []) if asset.balance_of(h) > 0]
        if not holders:
            return False
        holder = self.rng.choice(holders)
        if isinstance(asset, ItemCollection):
            owned = asset.items_of(holder)
            k = max(1, int(len(owned) * self.cfg.redeem_size_mean_frac * 4))
            surrender = self.rng.sample(owned, k=min(k, len(owned)))
        else:
            frac = min(1.0, np.random.exponential(self.cfg.redeem_size_mean_frac))
            surrender = max(1, int(asset.balance_of(holder) * frac))
        collaterals = self._collateral_request()
        try:
            receipt = vault.redeem(holder, collaterals, surrender)
        except VaultSimError as exc:
            self._redemption_failures_tick += 1
            self._fail("REDEEM_FAILED", exc, actor_id=holder, vault_id=vault.address,
                       asset_id=asset.address)
            return True
        self.receipts.add(receipt)
        self._redemptions_tick += 1
        self._protocol_fees_tick += sum(p.protocol_fee for p in receipt.payouts)
        self._hook_claims_tick += sum(p.hook_amount for p in receipt.payouts)
        return True

    def _random_loan(self) -> bool:
        vaults = self.factory.vaults()
        if not vaults or not self.collaterals:
            return False
        asset = self.rng.choice(self.collaterals)
        k = self.rng.randint(1, max(1, min(self.cfg.loan_max_vaults, len(vaults))))
        chosen = [v.address for v in self.rng.sample(vaults, k=k)]
        coordinator = self.factory.coordinator
        liquidity = coordinator.max_loan(chosen, asset)
        amount = int(liquidity * self.cfg.loan_size_frac)
        if amount <= 0:
            return False
        plan = coordinator.plan(chosen, asset, amount)
        # borrower brings the fees; sometimes it comes up short
        fees = sum(plan.fees)
        if asset == NATIVE_ASSET:
            self.ledger.mint_native(self.borrower.address, fees)
        else:
            self.ledger.contract(asset).mint(self.borrower.address, fees)
        short = self.rng.random() < self.cfg.borrower_shortfall_prob
        self.borrower.shortfall = 1 if short else 0
        self.borrower.short_index = self.rng.randrange(max(1, len(plan.entries)))
        try:
            receipt = coordinator.execute_loan(self.borrower.address, chosen, asset, amount, self.borrower)
        except VaultSimError as exc:
            self._loan_failures_tick += 1
            self._fail("LOAN_FAILED", exc, actor_id=self.borrower.address, asset_id=asset,
                       amount=amount, meta={"vault": getattr(exc, "vault", None)})
            return True
        self.receipts.add(receipt)
        self._loans_tick += 1
        self._loan_volume_tick += receipt.total_amount
        return True

    def step(self, n_ticks: int = 1) -> None:
        for _ in range(n_ticks):
            self.tick += 1
            self.ledger.tick = self.tick
            self._redemptions_tick = 0
            self._redemption_failures_tick = 0
            self._loans_tick = 0
            self._loan_failures_tick = 0
            self._loan_volume_tick = 0
            self._protocol_fees_tick = 0
            self._hook_claims_tick = 0

            inflow = self.cfg.collateral_per_vault_mean * self.cfg.collateral_inflow_per_tick
            if inflow > 0:
                for vault in self.factory.vaults():
                    asset = self.rng.choice(self.collaterals)
                    self._deposit(vault, asset, self._sample_amount(inflow), "inflow")

            for _ in range(max(0, int(self.cfg.redemptions_per_tick))):
                self._random_redemption()
            for _ in range(max(0, int(self.cfg.loans_per_tick))):
                self._random_loan()

            self.snapshot_metrics()

    # -----------------------------
    # metrics
    # -----------------------------
    def vault_row(self, vault: Vault) -> dict:
        row = {
            "tick": self.tick,
            "vault": vault.address,
            "asset": describe(vault.model),
            "kind": vault.model.kind,
            "hook_status": vault.hook_status.value,
            "adjusted_supply": vault.adjusted_supply(),
            "total_supply": vault.model.asset.total_supply(),
            "held_by_vault": vault.model.held(vault.address),
        }
        row.update(vault.self_learning())
        for c in self.collaterals:
            row[f"bal_{self.symbols[c]}"] = vault.balance(c)
        return row

    def snapshot_metrics(self) -> None:
        cfg = self.cfg
        metrics_stride = int(cfg.metrics_stride or 0)
        vault_stride = int(cfg.vault_metrics_stride or 0)
        do_network = metrics_stride > 0 and self.tick % metrics_stride == 0
        do_vault = vault_stride > 0 and self.tick % vault_stride == 0
        if not do_network and not do_vault:
            return
        vaults = self.factory.vaults()
        if do_vault:
            self.metrics.add_vault_rows([self.vault_row(v) for v in vaults])
        if do_network:
            row = {
                "tick": self.tick,
                "num_vaults": len(vaults),
                "non_burnable_vaults": sum(1 for v in vaults if v.adaptation.non_burnable),
                "held_supply_vaults": sum(1 for v in vaults if v.adaptation.supply_permanently_held),
                "zero_excluded_vaults": sum(1 for v in vaults if not v.adaptation.zero_address_counted),
                "hooked_vaults": sum(1 for v in vaults if v.hook_status.value == "present"),
                "redemptions_tick": self._redemptions_tick,
                "redemption_failures_tick": self._redemption_failures_tick,
                "loans_tick": self._loans_tick,
                "loan_failures_tick": self._loan_failures_tick,
                "loan_volume_tick": self._loan_volume_tick,
                "protocol_fees_tick": self._protocol_fees_tick,
                "hook_claims_tick": self._hook_claims_tick,
            }
            for c in self.collaterals:
                row[f"collateral_{self.symbols[c]}"] = sum(v.balance(c) for v in vaults)
            self.metrics.add_network(row)

    def fail_reasons(self) -> Dict[str, int]:
        return dict(self._fail_reasons)

    def label(self, address: str) -> str:
        return self.symbols.get(address, short_addr(address))
