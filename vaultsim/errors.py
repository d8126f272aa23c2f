from __future__ import annotations
from typing import Optional


class VaultSimError(Exception):
    """Base for every failure that aborts a ledger call."""

    reason = "error"

    def __init__(self, message: str = "", reason: Optional[str] = None) -> None:
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


# -----------------------------
# (a) input validation
# -----------------------------
class InvalidInput(VaultSimError):
    reason = "invalid_input"


class EmptyCollateralList(InvalidInput):
    reason = "empty_collateral_list"


class ZeroAmount(InvalidInput):
    reason = "zero_amount"


class ZeroAddress(InvalidInput):
    reason = "zero_address"


class InvalidAsset(InvalidInput):
    reason = "invalid_asset"


class Unauthorized(VaultSimError):
    reason = "unauthorized"


class ReentrancyError(VaultSimError):
    reason = "reentrancy"


# -----------------------------
# (b) asset interaction
# -----------------------------
class AssetError(VaultSimError):
    """Raised by asset contracts when an operation is refused."""

    reason = "asset_error"


class TransferRejected(AssetError):
    reason = "transfer_rejected"


class InsufficientBalance(AssetError):
    reason = "insufficient_balance"


class BurnRejected(AssetError):
    reason = "burn_rejected"


class TransferFailed(VaultSimError):
    reason = "transfer_failed"


# -----------------------------
# (c) liquidity
# -----------------------------
class InsufficientLiquidity(VaultSimError):
    reason = "insufficient_liquidity"


# -----------------------------
# (d) settlement
# -----------------------------
class LoanCallbackFailed(VaultSimError):
    reason = "loan_callback_failed"


class RepaymentShortfall(VaultSimError):
    reason = "repayment_shortfall"

    def __init__(self, vault: str, expected: int, actual: int) -> None:
        super().__init__(f"vault {vault} holds {actual}, expected at least {expected}")
        self.vault = vault
        self.expected = expected
        self.actual = actual


# -----------------------------
# registry
# -----------------------------
class DuplicateVault(VaultSimError):
    reason = "duplicate_vault"


class UnknownVault(VaultSimError):
    reason = "unknown_vault"
