from dataclasses import dataclass, field

@dataclass
class ScenarioConfig:
    # Backed assets
    initial_vaults: int = 6
    p_item_collection: float = 0.2
    p_taxed: float = 0.15
    p_non_burnable: float = 0.2
    p_dead_rejecting: float = 0.1
    p_zero_burns: float = 0.15      # token books zero-address transfers as burns
    p_zero_holds: float = 0.15      # token credits the zero address, supply unchanged
    p_hooked: float = 0.2
    transfer_tax_bps: int = 200
    hook_fraction: float = 0.01
    holders_per_asset: int = 8
    supply_per_holder_mean: float = 1_000_000.0
    items_per_holder_mean: float = 5.0

    # Collateral
    collateral_symbols: list[str] = field(default_factory=lambda: ["USDX", "WETH", "DAIX"])
    include_native: bool = True
    collateral_per_vault_mean: float = 5_000_000.0
    collateral_inflow_per_tick: float = 0.01   # fraction of mean added per vault per tick

    # Activity
    redemptions_per_tick: int = 4
    redeem_size_mean_frac: float = 0.05        # share of holder balance per redemption
    loans_per_tick: int = 1
    loan_size_frac: float = 0.3                # share of aggregate vault liquidity
    loan_max_vaults: int = 3
    borrower_shortfall_prob: float = 0.1

    # Fee settings (governance collaborator)
    vault_operator_share: float = 0.5
    vault_operator: str = "0x00000000000000000000000000000000000000a1"
    remainder_recipient: str = "0x00000000000000000000000000000000000000b2"

    # Metrics / logs
    metrics_stride: int = 1
    vault_metrics_stride: int = 5
    event_log_maxlen: int | None = 20_000

    # Debug
    debug_inventory: bool = False

    def __post_init__(self) -> None:
        self.vault_operator_share = min(1.0, max(0.0, float(self.vault_operator_share)))
        self.hook_fraction = min(1.0, max(0.0, float(self.hook_fraction)))
        self.collateral_symbols = list(dict.fromkeys(self.collateral_symbols))
        if self.initial_vaults < 0:
            self.initial_vaults = 0
