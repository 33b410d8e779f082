import math
from typing import Optional

# Absorbs binary representation error just below a bucket edge (0.3 * 10 -> 2.9999...)
_FLOOR_EPS = 1e-9


def round_to(value: float, digits: int) -> float:
    """Floor ``value`` to ``digits`` decimal places."""

    factor = 10 ** digits
    scaled = value * factor
    # product error grows with magnitude (89.3 * 100 -> 8929.999999999998)
    return math.floor(scaled + max(_FLOOR_EPS, abs(scaled) * 1e-12)) / factor


def tenth_bucket(ratio: float) -> int:
    """Index of the 0.1-wide bucket a ratio falls into (0.37 -> 3)."""

    return int(math.floor(ratio * 10 + _FLOOR_EPS))


def amounts_equal(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


def format_number(value: float, precision: int = 8) -> str:
    return f"{value:.{precision}f}".rstrip("0").rstrip(".") or "0"


def step_precision(step: Optional[str]) -> int:
    """Decimal places implied by an exchange step such as ``"0.00100000"``."""

    if step is None:
        return 8
    text = str(step)
    if "." not in text:
        return 0
    return len(text.split(".")[-1].rstrip("0"))


def floor_to_step(quantity: float, step: Optional[float], min_qty: Optional[float] = None) -> float:
    if step is None or step <= 0:
        return quantity
    qty_steps = math.floor(quantity / step + _FLOOR_EPS)
    adjusted = qty_steps * step
    if min_qty is not None and adjusted < min_qty:
        return 0.0
    precision = step_precision(format_number(step, 12))
    return float(format_number(adjusted, precision))
