import pandas as pd
import pytest

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.config import Settings, get_trading_config
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.risk.bounce import calculate_bounce_tp_trail, describe_bounce_sl_offset
from signal_finalizer.risk.take_profit import (
    apply_take_profit,
    calculate_bounce_tp,
    calculate_dynamic_tp,
    enforce_min_risk_reward,
    enforce_target_direction,
    is_ai_target_acceptable,
    select_min_risk_reward,
)
from signal_finalizer.utils.logging import SignalObserver


def _signal(**overrides: object) -> ProposedSignal:
    fields: dict[str, object] = {
        "coin": "BTC",
        "signal": "buy_to_enter",
        "entry_price": 100.0,
        "confidence": 0.8,
    }
    fields.update(overrides)
    return ProposedSignal(**fields)


def _apply(signal: ProposedSignal, snapshot: IndicatorSnapshot | None, stop_distance: float, **kwargs: object) -> ProposedSignal:
    settings = Settings()
    return apply_take_profit(
        signal,
        snapshot,
        stop_distance,
        settings=settings,
        trading_config=get_trading_config(settings),
        observer=SignalObserver(),
        **kwargs,
    )


def test_ai_target_below_min_risk_reward_is_recomputed() -> None:
    result = _apply(_signal(profit_target=103.0), None, 3.3)
    assert result.profit_target == pytest.approx(108.25)
    assert result.risk_reward_ratio == pytest.approx(2.5)


def test_short_target_sits_below_entry() -> None:
    result = _apply(_signal(signal="sell_to_enter"), None, 3.3)
    assert result.profit_target == pytest.approx(91.75)
    assert result.profit_target < 100.0


def test_ai_target_in_band_with_enough_reward_is_used() -> None:
    result = _apply(_signal(profit_target=104.0), None, 1.0)
    assert result.profit_target == pytest.approx(104.0)
    assert result.risk_reward_ratio == pytest.approx(4.0)


def test_ai_target_outside_band_is_rejected() -> None:
    settings = Settings()
    accepted, direction_ok, move_pct = is_ai_target_acceptable(100.0, 110.0, is_long=True, settings=settings)
    assert not accepted
    assert direction_ok
    assert move_pct == pytest.approx(10.0)


def test_ai_target_on_wrong_side_is_rejected() -> None:
    settings = Settings()
    accepted, direction_ok, _ = is_ai_target_acceptable(100.0, 103.0, is_long=False, settings=settings)
    assert not accepted
    assert not direction_ok


def test_min_risk_reward_selection() -> None:
    settings = Settings()
    config = get_trading_config(settings)
    assert select_min_risk_reward(0.8, False, config, settings) == 2.5
    assert select_min_risk_reward(0.3, False, config, settings) == 3.0
    assert select_min_risk_reward(0.8, True, config, settings) == 3.0


def test_low_confidence_signal_requires_three_to_one() -> None:
    result = _apply(_signal(confidence=0.35), None, 2.0)
    assert result.risk_reward_ratio >= 3.0 - 1e-9
    assert result.profit_target == pytest.approx(106.0)


def test_min_risk_reward_correction_is_idempotent() -> None:
    target, _, adjusted = enforce_min_risk_reward(100.0, 110.0, 3.3, 2.5, is_long=True)
    assert target == 110.0
    assert not adjusted

    first, _, _ = enforce_min_risk_reward(100.0, 103.0, 3.3, 2.5, is_long=True)
    second, _, _ = enforce_min_risk_reward(100.0, first, 3.3, 2.5, is_long=True)
    assert second == first


def test_wrong_side_target_is_forced_to_min_risk_reward() -> None:
    target, ratio, corrected = enforce_target_direction(100.0, 99.0, 3.3, 2.5, is_long=True)
    assert corrected
    assert target == pytest.approx(108.25)
    assert ratio == pytest.approx(2.5)

    target, _, corrected = enforce_target_direction(100.0, 92.0, 3.3, 2.5, is_long=False)
    assert not corrected
    assert target == 92.0


def test_dynamic_target_uses_trend_and_floor() -> None:
    snapshot = IndicatorSnapshot(price=100.0, trend_alignment={"daily_trend": "uptrend", "alignment_score": 80})
    result = calculate_dynamic_tp(100.0, _signal(), snapshot, 1.0)
    assert result.tp_price == pytest.approx(103.0)
    assert result.factors["trend_strength"] == 80

    floored = calculate_dynamic_tp(100.0, _signal(), None, 3.0)
    assert floored.tp_price == pytest.approx(106.0)


def test_target_delegate_failure_falls_back_to_min_risk_reward() -> None:
    def _boom(*args: object) -> object:
        raise RuntimeError("delegate down")

    result = _apply(_signal(), None, 2.0, dynamic_target=_boom)
    assert result.profit_target == pytest.approx(105.0)
    assert any(note.startswith("take_profit_fallback") for note in result.diagnostics)


def test_counter_trend_bounce_target() -> None:
    snapshot = IndicatorSnapshot(price=100.0, trend_alignment={"daily_trend": "downtrend", "alignment_score": 40})
    signal = _signal(bounce_mode=True, bounce_strength=0.5)
    result = calculate_bounce_tp(100.0, signal, snapshot, 1.0, 0.5)
    assert result.is_counter_trend
    assert result.tp_price == pytest.approx(102.25)
    assert result.profit_expectation == pytest.approx(50.0)


def test_counter_trend_penalty_is_recorded_not_applied() -> None:
    snapshot = IndicatorSnapshot(price=100.0, trend_alignment={"daily_trend": "downtrend", "alignment_score": 40})
    signal = _signal(bounce_mode=True, bounce_strength=0.5)
    result = _apply(signal, snapshot, 1.0)
    assert result.bounce_counter_trend_penalty == 0.05
    assert result.confidence == 0.8
    assert result.bounce_target == pytest.approx(102.25)
    assert result.profit_target == pytest.approx(102.5)


def test_bounce_trail_on_ema8_crossdown() -> None:
    snapshot = IndicatorSnapshot(
        price=100.5,
        ema8=101.0,
        historical_data=pd.DataFrame({"close": [99.0, 102.0, 100.5]}),
    )
    trail = calculate_bounce_tp_trail(100.0, _signal(bounce_mode=True), snapshot, 104.0)
    assert trail.is_trailing
    assert trail.tp_price == pytest.approx(100.5)
    assert trail.ema_level == 101.0


def test_bounce_trail_without_cross_keeps_target() -> None:
    snapshot = IndicatorSnapshot(ema8=101.0, historical_data=[{"close": 102.0}, {"close": 103.0}])
    trail = calculate_bounce_tp_trail(100.0, _signal(bounce_mode=True), snapshot, 104.0)
    assert not trail.is_trailing
    assert trail.tp_price == 104.0


def test_trailed_bounce_target_is_recorded() -> None:
    snapshot = IndicatorSnapshot(
        price=100.5,
        ema8=101.0,
        historical_data=pd.DataFrame({"close": [102.0, 100.5]}),
    )
    result = _apply(_signal(bounce_mode=True, bounce_strength=0.5), snapshot, 1.0)
    assert result.bounce_tp_trailing
    assert result.bounce_tp_trailed == pytest.approx(100.5)
    assert result.profit_target > 100.0
    assert result.risk_reward_ratio >= 2.5 - 1e-9


def test_bounce_trail_failure_is_noted_and_target_kept() -> None:
    def _boom(*args: object) -> object:
        raise RuntimeError("trail down")

    snapshot = IndicatorSnapshot(price=100.0, trend_alignment={"daily_trend": "uptrend", "alignment_score": 80})
    result = _apply(_signal(bounce_mode=True, bounce_strength=0.5), snapshot, 1.0, bounce_trail=_boom)
    assert not result.bounce_tp_trailing
    assert result.profit_target > 100.0
    assert any(
        note.startswith("bounce_trail_failed") and "trail down" in note for note in result.diagnostics
    )


@pytest.mark.parametrize(
    ("atr_percent", "multiplier", "expected"),
    [
        (4.0, 1.5, "High ATR (4.00%) -> wider SL (x1.50)"),
        (1.0, 0.8, "Low ATR (1.00%) -> tighter SL (x0.80)"),
        (2.0, 1.2, "Moderate ATR (2.00%) -> wider SL (x1.20)"),
        (2.0, 0.9, "Moderate ATR (2.00%) -> tighter SL (x0.90)"),
        (4.0, 0.7, "High ATR (4.00%) -> tighter SL (x0.70)"),
    ],
)
def test_bounce_stop_reason_follows_multiplier(atr_percent: float, multiplier: float, expected: str) -> None:
    assert describe_bounce_sl_offset(atr_percent, multiplier).startswith(expected)
