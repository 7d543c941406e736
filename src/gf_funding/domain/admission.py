# src/gf_funding/domain/admission.py
"""Admission arithmetic.

required = ceil(cost * (1 + buffer)) + safety_margin

Example (buffer 30%, margin $50):
    cost $40.00 -> 4000 * 1.30 = 5200, + 5000 = 10200 cents
    balance $100.00 -> denied, shortfall 200 cents
"""

from src.gf_common.cents import apply_bps_ceil, cents_to_display
from src.gf_common.errors import InsufficientFundsError


def required_funds(estimated_cost: int, safety_margin: int, buffer_bps: int) -> int:
    return apply_bps_ceil(estimated_cost, buffer_bps) + safety_margin


def hold_reason(exc: InsufficientFundsError) -> str:
    return (
        f"Insufficient funding balance: {cents_to_display(exc.required)} required, "
        f"{cents_to_display(exc.available)} available "
        f"(short {cents_to_display(exc.shortfall)})"
    )


def recommended_transfer(shortfall: int, margin_bps: int) -> int:
    """Top-up to suggest to operators: the shortfall plus a margin, rounded up."""
    if shortfall <= 0:
        return 0
    return apply_bps_ceil(shortfall, margin_bps)
