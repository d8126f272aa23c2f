from __future__ import annotations
from enum import Enum

PRECISION = 10**18
PROTOCOL_FEE = 10**15      # 0.1%
FLASH_LOAN_FEE = 10**14    # 0.01%


class Rounding(Enum):
    FLOOR = "floor"
    CEIL = "ceil"


def mul_div(a: int, b: int, denominator: int, rounding: Rounding = Rounding.FLOOR) -> int:
    """
    Compute a * b / denominator on unbounded integers with an explicit rounding
    direction. Operands must be non-negative integers and the denominator must
    be positive.
    """
    if denominator <= 0:
        raise ValueError("mul_div: denominator must be positive")
    if a < 0 or b < 0:
        raise ValueError("mul_div: operands must be non-negative")
    q, r = divmod(int(a) * int(b), int(denominator))
    if rounding is Rounding.CEIL and r:
        q += 1
    return q


def apply_fraction(amount: int, fraction: int, rounding: Rounding = Rounding.FLOOR) -> int:
    return mul_div(amount, fraction, PRECISION, rounding)


def fraction_of(part: int, whole: int) -> int:
    # floor(part / whole) in PRECISION units
    return mul_div(part, PRECISION, whole, Rounding.FLOOR)


def clamp_fraction(fraction: int) -> int:
    return max(0, min(int(fraction), PRECISION))


def format_fraction(fraction: int, places: int = 4) -> str:
    whole, rem = divmod(int(fraction) * 100, PRECISION)
    digits = str(rem * 10**places // PRECISION).rjust(places, "0")
    return f"{whole}.{digits}%"
