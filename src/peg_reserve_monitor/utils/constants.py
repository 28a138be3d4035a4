"""Shared constants for peg monitoring and reserve economics."""

from datetime import datetime, timezone


# Utility function to get timezone-aware UTC datetime
def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


PEG_PRICE = 1.0
DEPEG_THRESHOLD = 0.9995
BPS_PER_UNIT = 10_000

# The route only opens once the spread reaches the depeg threshold.
DEPEG_THRESHOLD_BPS = 5.0

# IOU issuance split: trader keeps 20%, the remaining 80% are protocol fees
# shared between the solver and the protocol treasury.
TRADER_SHARE = 0.20
PROTOCOL_FEES_SHARE = 0.80

HOURS_PER_DAY = 24.0
SECONDS_PER_HOUR = 3_600.0

__all__ = [
    "utc_now",
    "PEG_PRICE",
    "DEPEG_THRESHOLD",
    "BPS_PER_UNIT",
    "DEPEG_THRESHOLD_BPS",
    "TRADER_SHARE",
    "PROTOCOL_FEES_SHARE",
    "HOURS_PER_DAY",
    "SECONDS_PER_HOUR",
]
