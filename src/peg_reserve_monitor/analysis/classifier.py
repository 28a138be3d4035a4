"""Peg classification for a single venue price."""

from __future__ import annotations

from typing import Optional

from ..datalake.schemas import Classification, PegStatus
from ..utils.constants import BPS_PER_UNIT, DEPEG_THRESHOLD, PEG_PRICE


def depeg_bps(price: Optional[float]) -> float:
    """Distance below peg in basis points, rounded to 0.1 bps; zero at or above peg."""

    if price is None or price >= PEG_PRICE:
        return 0.0
    return round(max(0.0, PEG_PRICE - price) * BPS_PER_UNIT, 1)


def is_depegged(price: Optional[float]) -> bool:
    return price is not None and price < DEPEG_THRESHOLD


def classify(price: Optional[float]) -> Classification:
    if price is None:
        return Classification(status=PegStatus.UNAVAILABLE, depeg_bps=0.0)
    status = PegStatus.DEPEGGED if is_depegged(price) else PegStatus.PEGGED
    return Classification(status=status, depeg_bps=depeg_bps(price))


__all__ = ["classify", "depeg_bps", "is_depegged"]
