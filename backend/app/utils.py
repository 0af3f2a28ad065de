from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB stores datetimes without tzinfo, so anything read back from a
    document must go through here before it is compared with utcnow().
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_odds(value: float) -> float:
    """Round an odds value to 2 decimals, half-up (1.005 -> 1.01)."""
    try:
        return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return round(value, 2)
