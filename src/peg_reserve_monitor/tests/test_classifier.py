from __future__ import annotations

import pytest

from peg_reserve_monitor.analysis.classifier import classify, depeg_bps, is_depegged
from peg_reserve_monitor.datalake.schemas import PegStatus


def test_missing_price_is_unavailable() -> None:
    result = classify(None)
    assert result.status == PegStatus.UNAVAILABLE
    assert result.depeg_bps == 0.0
    assert not result.is_depegged


@pytest.mark.parametrize(
    ("price", "status", "bps"),
    [
        (1.0, PegStatus.PEGGED, 0.0),
        (1.002, PegStatus.PEGGED, 0.0),
        (0.9995, PegStatus.PEGGED, 5.0),
        (0.9994, PegStatus.DEPEGGED, 6.0),
        (0.98, PegStatus.DEPEGGED, 200.0),
    ],
)
def test_classification_thresholds(price: float, status: PegStatus, bps: float) -> None:
    result = classify(price)
    assert result.status == status
    assert result.depeg_bps == bps


def test_depeg_bps_is_rounded_to_tenths() -> None:
    assert depeg_bps(0.99912) == 8.8
    assert depeg_bps(None) == 0.0


def test_threshold_is_strict() -> None:
    assert not is_depegged(0.9995)
    assert is_depegged(0.99949)
    assert not is_depegged(None)
