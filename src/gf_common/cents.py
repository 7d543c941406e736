"""Integer arithmetic utilities for cents-based money handling.

All amounts and balances use int (cents). No float, no Decimal.
"""


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 6500 -> '$65.00', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"


def apply_bps_ceil(amount: int, bps: int) -> int:
    """Grow amount by bps basis points, rounding up (the platform never under-reserves).

    apply_bps_ceil(4000, 3000) == 5200  (4000 * 1.30)
    Using integer ceiling: (a + b - 1) // b
    """
    if amount == 0:
        return 0
    return (amount * (10000 + bps) + 9999) // 10000
