from datetime import datetime, timedelta
from decimal import ROUND_CEILING, Decimal

CENT = Decimal("0.01")
_MS_PER_HOUR = 3_600_000


def duration_ms(starts_at: datetime, ends_at: datetime) -> int:
    return (ends_at - starts_at) // timedelta(milliseconds=1)


def compute_price(starts_at: datetime, ends_at: datetime, rate_per_hour: Decimal) -> Decimal:
    """Price of the window at `rate_per_hour`, rounded up to the cent.

    Callers guarantee ends_at > starts_at.
    """
    amount = Decimal(duration_ms(starts_at, ends_at)) * rate_per_hour / _MS_PER_HOUR
    return amount.quantize(CENT, rounding=ROUND_CEILING)
