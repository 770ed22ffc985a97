"""Take-profit calculators and the reward:risk policy applied on top of them."""

from __future__ import annotations

from collections.abc import Callable

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.config import Settings, TradingConfig
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.risk.bounce import calculate_bounce_tp_trail
from signal_finalizer.types import TakeProfitResult, TrailResult
from signal_finalizer.utils.logging import SignalObserver

DynamicTargetFn = Callable[[float, ProposedSignal, IndicatorSnapshot | None, float], TakeProfitResult]
BounceTargetFn = Callable[
    [float, ProposedSignal, IndicatorSnapshot | None, float, float], TakeProfitResult
]
BounceTrailFn = Callable[[float, ProposedSignal, IndicatorSnapshot | None, float], TrailResult]

COUNTER_TREND_PENALTY = 0.05


def calculate_dynamic_tp(
    entry_price: float,
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    stop_distance: float,
) -> TakeProfitResult:
    """Trend and regime aware target: 2-5% with an internal 2:1 floor."""
    tp_pct = 0.02
    factors: dict[str, float | bool] = {
        "momentum": 0.0,
        "volatility": 0.0,
        "trend_strength": 0.0,
        "volume": 0.0,
    }

    if snapshot is not None:
        histogram = snapshot.macd.histogram if snapshot.macd else None
        if histogram:
            strength = abs(histogram)
            factors["momentum"] = strength
            if strength > 30:
                tp_pct += 0.01
            elif strength > 20:
                tp_pct += 0.005

        atr_percent = snapshot.atr_percent(entry_price)
        if atr_percent is not None:
            factors["volatility"] = atr_percent
            if atr_percent > 2:
                tp_pct += 0.005

        if snapshot.trend_alignment is not None:
            score = snapshot.trend_alignment.alignment_score
            factors["trend_strength"] = score
            if score >= 75:
                tp_pct += 0.01
            elif score >= 50:
                tp_pct += 0.005

        if snapshot.volume_change and snapshot.volume_change > 10:
            factors["volume"] = snapshot.volume_change
            tp_pct += 0.005

    tp_pct = min(tp_pct, 0.05)
    return _finish_target(entry_price, signal, tp_pct, stop_distance, min_rr=2.0, factors=factors)


def calculate_bounce_tp(
    entry_price: float,
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    stop_distance: float,
    bounce_strength: float,
) -> TakeProfitResult:
    """Bounce target scaled by bounce strength, cut by 25% when counter-trend."""
    strength = min(max(bounce_strength, 0.0), 1.0)
    tp_pct = 0.015 + strength * 0.03
    factors: dict[str, float | bool] = {
        "bounce_strength": strength,
        "momentum": 0.0,
        "volatility": 0.0,
        "trend_strength": 0.0,
        "volume": 0.0,
        "counter_trend": False,
    }
    is_counter_trend = False

    if snapshot is not None:
        histogram = snapshot.macd.histogram if snapshot.macd else None
        if histogram:
            momentum = abs(histogram)
            factors["momentum"] = momentum
            if momentum > 30:
                tp_pct += 0.015
            elif momentum > 20:
                tp_pct += 0.01
            elif momentum > 10:
                tp_pct += 0.005

        atr_percent = snapshot.atr_percent(entry_price)
        if atr_percent is not None:
            factors["volatility"] = atr_percent
            if atr_percent > 3:
                tp_pct += 0.01
            elif atr_percent > 2:
                tp_pct += 0.005

        alignment = snapshot.trend_alignment
        daily_trend = alignment.effective_daily_trend if alignment is not None else None
        if alignment is not None and daily_trend is not None:
            if (signal.signal == "buy_to_enter" and daily_trend == "downtrend") or (
                signal.is_short and daily_trend == "uptrend"
            ):
                is_counter_trend = True
                factors["counter_trend"] = True
                tp_pct *= 0.75
            else:
                factors["trend_strength"] = alignment.alignment_score
                if alignment.alignment_score >= 75:
                    tp_pct += 0.01
                elif alignment.alignment_score >= 50:
                    tp_pct += 0.005

        if snapshot.volume_change and snapshot.volume_change > 10:
            factors["volume"] = snapshot.volume_change
            tp_pct += 0.005

    tp_pct = min(tp_pct, 0.06)
    result = _finish_target(entry_price, signal, tp_pct, stop_distance, min_rr=1.8, factors=factors)
    result.is_counter_trend = is_counter_trend
    result.profit_expectation = strength * 100.0
    return result


def select_min_risk_reward(
    confidence: float | None,
    contrarian: bool,
    trading_config: TradingConfig,
    settings: Settings,
) -> float:
    """Stricter reward:risk for low-confidence or contrarian signals."""
    medium = trading_config.thresholds.confidence.medium
    is_low_confidence = (confidence or 0.0) < medium
    if is_low_confidence or contrarian:
        return settings.min_risk_reward_low_confidence
    return settings.min_risk_reward


def is_ai_target_acceptable(
    entry_price: float,
    profit_target: float,
    *,
    is_long: bool,
    settings: Settings,
) -> tuple[bool, bool, float]:
    """Return ``(accepted, direction_ok, move_pct)`` for an AI-supplied target."""
    move_pct = abs(profit_target - entry_price) / entry_price * 100.0
    direction_ok = profit_target > entry_price if is_long else profit_target < entry_price
    in_band = settings.ai_target_min_pct <= move_pct <= settings.ai_target_max_pct
    return direction_ok and in_band, direction_ok, move_pct


def enforce_min_risk_reward(
    entry_price: float,
    target: float,
    stop_distance: float,
    min_rr: float,
    *,
    is_long: bool,
) -> tuple[float, float, bool]:
    """Push the target out to ``min_rr`` when needed.

    Returns ``(target, risk_reward_ratio, adjusted)``. A compliant target is
    returned unchanged.
    """
    ratio = abs(target - entry_price) / stop_distance
    if ratio >= min_rr:
        return target, ratio, False
    target = _min_rr_target(entry_price, stop_distance, min_rr, is_long=is_long)
    return target, abs(target - entry_price) / stop_distance, True


def enforce_target_direction(
    entry_price: float,
    target: float,
    stop_distance: float,
    min_rr: float,
    *,
    is_long: bool,
) -> tuple[float, float, bool]:
    """Force a target that sits on the wrong side of entry to ``min_rr``."""
    wrong_side = target <= entry_price if is_long else target >= entry_price
    if wrong_side:
        target = _min_rr_target(entry_price, stop_distance, min_rr, is_long=is_long)
    return target, abs(target - entry_price) / stop_distance, wrong_side


def apply_take_profit(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    stop_distance: float,
    *,
    settings: Settings,
    trading_config: TradingConfig,
    observer: SignalObserver,
    dynamic_target: DynamicTargetFn = calculate_dynamic_tp,
    bounce_target: BounceTargetFn = calculate_bounce_tp,
    bounce_trail: BounceTrailFn | None = calculate_bounce_tp_trail,
) -> ProposedSignal:
    """Compute, override and validate the profit target of a sized entry signal."""
    entry = float(signal.entry_price or 0.0)
    is_long = signal.is_long
    min_rr = select_min_risk_reward(
        signal.confidence, signal.is_contrarian, trading_config, settings
    )
    update: dict[str, object] = {}
    notes: list[str] = []

    use_bounce = bool(signal.bounce_mode and signal.bounce_strength)
    try:
        if use_bounce:
            strength = float(signal.bounce_strength or 0.0)
            result = bounce_target(entry, signal, snapshot, stop_distance, strength)
        else:
            result = dynamic_target(entry, signal, snapshot, stop_distance)
        target = result.tp_price
        update["tp_factors"] = dict(result.factors)
    except Exception as exc:  # noqa: BLE001 - delegate faults fall back to the R:R target.
        observer.exception("take_profit_delegate_failed", error=str(exc))
        notes.append(
            observer.note(
                "take_profit_fallback",
                f"target delegate failed ({exc}), using {min_rr}:1 target",
            )
        )
        result = None
        target = _min_rr_target(entry, stop_distance, min_rr, is_long=is_long)

    if use_bounce and result is not None:
        original_target = target
        if bounce_trail is not None:
            try:
                trail = bounce_trail(entry, signal, snapshot, original_target)
            except Exception as exc:  # noqa: BLE001 - trailing is optional.
                observer.exception("bounce_trail_failed", error=str(exc))
                notes.append(
                    observer.note("bounce_trail_failed", f"bounce trailing failed ({exc}), target kept")
                )
                trail = TrailResult(original_target, False, f"trail failed: {exc}")
            if trail.is_trailing:
                target = trail.tp_price
                update.update(
                    bounce_tp_trailing=True,
                    bounce_tp_trail_reason=trail.reason,
                    bounce_tp_original=original_target,
                    bounce_tp_trailed=target,
                )
                observer.verbose("bounce_tp_trailing", original=original_target, trailed=target)
        update["bounce_target"] = target
        update["bounce_profit_expectation"] = result.profit_expectation
        if result.is_counter_trend:
            update["bounce_counter_trend_penalty"] = COUNTER_TREND_PENALTY
            notes.append(
                observer.note(
                    "counter_trend_bounce",
                    "bounce opposes the daily trend; target cut 25%, "
                    f"{COUNTER_TREND_PENALTY:.0%} confidence penalty recorded",
                )
            )

    if signal.profit_target and signal.profit_target > 0 and entry > 0:
        accepted, direction_ok, move_pct = is_ai_target_acceptable(
            entry, signal.profit_target, is_long=is_long, settings=settings
        )
        if accepted:
            target = signal.profit_target
            observer.verbose("ai_target_accepted", target=target, move_pct=round(move_pct, 2))
        else:
            observer.verbose(
                "ai_target_rejected",
                target=signal.profit_target,
                direction_ok=direction_ok,
                move_pct=round(move_pct, 2),
            )

    target, ratio, adjusted = enforce_min_risk_reward(
        entry, target, stop_distance, min_rr, is_long=is_long
    )
    if adjusted:
        observer.verbose("target_adjusted_for_min_rr", min_rr=min_rr, target=target)

    target, ratio, corrected = enforce_target_direction(
        entry, target, stop_distance, min_rr, is_long=is_long
    )
    if corrected:
        notes.append(
            observer.note(
                "target_direction_corrected",
                f"target was on the wrong side of entry, corrected to {target:.6g}",
            )
        )

    update.update(profit_target=target, risk_reward_ratio=ratio)
    return signal.model_copy(update={**update, "diagnostics": [*signal.diagnostics, *notes]})


def _min_rr_target(entry_price: float, stop_distance: float, min_rr: float, *, is_long: bool) -> float:
    distance = stop_distance * min_rr
    return entry_price + distance if is_long else entry_price - distance


def _finish_target(
    entry_price: float,
    signal: ProposedSignal,
    tp_pct: float,
    stop_distance: float,
    *,
    min_rr: float,
    factors: dict[str, float | bool],
) -> TakeProfitResult:
    if signal.is_long:
        tp_price = entry_price * (1.0 + tp_pct)
    else:
        tp_price = entry_price * (1.0 - tp_pct)

    min_distance = stop_distance * min_rr
    if abs(tp_price - entry_price) < min_distance:
        tp_price = _min_rr_target(entry_price, stop_distance, min_rr, is_long=signal.is_long)

    final_pct = abs(tp_price - entry_price) / entry_price * 100.0 if entry_price > 0 else 0.0
    return TakeProfitResult(tp_price=tp_price, tp_percent=final_pct, factors=factors)
