import math

import pytest

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.config import Settings
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.scoring.confidence import (
    calculate_confidence_score,
    ensure_final_confidence,
    finalize_confidence,
)
from signal_finalizer.scoring.justification import count_indicator_votes, generate_justification
from signal_finalizer.types import ConfidenceResult
from signal_finalizer.utils.logging import SignalObserver


def _signal(**overrides: object) -> ProposedSignal:
    fields: dict[str, object] = {
        "coin": "BTC",
        "signal": "buy_to_enter",
        "entry_price": 100.0,
        "stop_loss": 98.8,
        "confidence": 0.7,
        "risk_reward_ratio": 3.0,
    }
    fields.update(overrides)
    return ProposedSignal(**fields)


def _snapshot(**overrides: object) -> IndicatorSnapshot:
    fields: dict[str, object] = {
        "price": 100.0,
        "atr": 2.0,
        "ema8": 99.0,
        "macd": {"histogram": 1.0},
        "support_levels": [98.0],
        "trend_alignment": {"daily_trend": "uptrend", "alignment_score": 100},
        "market_regime": {"regime": "trending", "volatility": "normal"},
    }
    fields.update(overrides)
    return IndicatorSnapshot(**fields)


def _finalize(signal: ProposedSignal, snapshot: IndicatorSnapshot | None, **kwargs: object) -> ProposedSignal:
    return finalize_confidence(signal, snapshot, settings=Settings(), observer=SignalObserver(), **kwargs)


def test_scorer_fault_is_clamped_to_floor() -> None:
    def _faulty(*args: object) -> ConfidenceResult:
        return ConfidenceResult(confidence=0.0, breakdown=["Trend Alignment: 0/25"], rejection_reason="fault")

    result = _finalize(_signal(), _snapshot(), scorer=_faulty)
    assert result.confidence == 0.10
    assert result.confidence_breakdown == ["Trend Alignment: 0/25"]
    assert result.confidence_rejection_reason == "fault"
    assert any(note.startswith("confidence_floor_applied") for note in result.diagnostics)


def test_missing_indicators_use_admission_floor() -> None:
    result = _finalize(_signal(confidence=0.2), None)
    assert result.confidence == 0.60


def test_scorer_exception_is_treated_as_fault() -> None:
    def _boom(*args: object) -> ConfidenceResult:
        raise RuntimeError("scorer down")

    result = _finalize(_signal(), _snapshot(), scorer=_boom)
    assert result.confidence == 0.10


def test_scorer_confidence_is_authoritative() -> None:
    result = _finalize(_signal(confidence=0.9), _snapshot(), scorer=lambda *args: ConfidenceResult(confidence=0.42))
    assert result.confidence == pytest.approx(0.42)


def test_full_score_without_external_data() -> None:
    result = calculate_confidence_score(_signal(), _snapshot(), 3.0)
    assert not result.auto_rejected
    assert result.total_score == pytest.approx(88.0)
    assert result.max_score == pytest.approx(90.0)
    assert result.confidence == pytest.approx(88.0 / 90.0)
    assert "Note: External data missing, excluded from max score" in result.breakdown


def test_external_data_extends_max_score() -> None:
    snapshot = _snapshot(external_data={"order_book": {"imbalance": 0.3}})
    result = calculate_confidence_score(_signal(), snapshot, 3.0)
    assert result.max_score == pytest.approx(120.0)
    assert result.total_score == pytest.approx(98.0)


def test_contradictory_trend_auto_rejects() -> None:
    snapshot = _snapshot(trend_alignment={"trend": "downtrend", "alignment_score": 0})
    result = calculate_confidence_score(_signal(), snapshot, 3.0)
    assert result.auto_rejected
    assert result.confidence == pytest.approx(0.1)
    assert result.rejection_reason


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(None, 0.60), (math.nan, 0.60), (0.0, 0.60), (0.05, 0.10), (1.4, 1.0), (0.55, 0.55)],
)
def test_ensure_final_confidence(confidence: float | None, expected: float) -> None:
    signal = _signal().model_copy(update={"confidence": confidence})
    result = ensure_final_confidence(signal, settings=Settings(), observer=SignalObserver())
    assert result.confidence == pytest.approx(expected)


def test_justification_counts_indicator_votes() -> None:
    snapshot = _snapshot(vwap=101.0)
    assert count_indicator_votes(_signal(), snapshot) == (2, 1)
    text = generate_justification(_signal(), snapshot)
    assert text.startswith("BUY BTC: 2 supporting, 1 contradicting")
    assert "Daily trend uptrend" in text
