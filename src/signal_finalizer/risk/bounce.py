"""Bounce-specific stop offset and trailing target rules."""

from __future__ import annotations

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.types import TrailResult

_HIGH_ATR_PCT = 3.0
_LOW_ATR_PCT = 1.5
_WIDE_MULTIPLIER = 1.5
_TIGHT_MULTIPLIER = 0.8


def calculate_bounce_sl_offset(
    stop_distance: float,
    snapshot: IndicatorSnapshot | None,
    entry_price: float,
) -> float:
    """Widen the stop under high ATR, tighten it under low ATR."""
    if snapshot is None or not entry_price:
        return stop_distance
    atr_percent = snapshot.atr_percent(entry_price)
    if atr_percent is None:
        return stop_distance
    if atr_percent > _HIGH_ATR_PCT:
        return stop_distance * _WIDE_MULTIPLIER
    if atr_percent < _LOW_ATR_PCT:
        return stop_distance * _TIGHT_MULTIPLIER
    return stop_distance


def describe_bounce_sl_offset(atr_percent: float, multiplier: float) -> str:
    """Reason text; the direction follows the applied multiplier, not the ATR tier."""
    if atr_percent > _HIGH_ATR_PCT:
        tier = "High"
    elif atr_percent < _LOW_ATR_PCT:
        tier = "Low"
    else:
        tier = "Moderate"
    if multiplier > 1:
        return f"{tier} ATR ({atr_percent:.2f}%) -> wider SL (x{multiplier:.2f}) to avoid shadow wick"
    return f"{tier} ATR ({atr_percent:.2f}%) -> tighter SL (x{multiplier:.2f})"


def calculate_bounce_tp_trail(
    entry_price: float,
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    bounce_tp: float,
) -> TrailResult:
    """Trail a bounce target to the last close on an EMA8 cross against the trade."""
    closes = snapshot.recent_closes(2) if snapshot is not None else []
    if not signal.bounce_mode or snapshot is None or not closes:
        return TrailResult(bounce_tp, False, "Not a bounce signal or insufficient data")

    is_buy_bounce = signal.bounce_type == "BUY_BOUNCE" or signal.is_long
    is_sell_bounce = signal.bounce_type == "SELL_BOUNCE" or signal.is_short
    if not is_buy_bounce and not is_sell_bounce:
        return TrailResult(bounce_tp, False, "Not a bounce signal")

    ema8 = snapshot.ema8
    if not ema8:
        return TrailResult(bounce_tp, False, "EMA8 not available")

    previous_close, current_close = closes
    if is_buy_bounce and previous_close >= ema8 > current_close and current_close < bounce_tp:
        return TrailResult(
            tp_price=current_close,
            is_trailing=True,
            reason=(
                f"EMA8 crossdown at ${current_close:.2f} "
                f"(below bounce TP ${bounce_tp:.2f}) - using trailing TP"
            ),
            ema_level=ema8,
        )
    if is_sell_bounce and previous_close <= ema8 < current_close:
        return TrailResult(
            tp_price=current_close,
            is_trailing=True,
            reason=(
                f"EMA8 crossup at ${current_close:.2f} "
                "(pullback failed) - using trailing TP for faster exit"
            ),
            ema_level=ema8,
        )
    return TrailResult(bounce_tp, False, "No EMA8 cross detected, using original bounce TP")
