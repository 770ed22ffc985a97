"""Invalidation condition synthesis.

Every signal must carry a concrete description of the market condition that
voids its thesis. Missing or boilerplate conditions are replaced with text
built from the asset's own levels and indicators.
"""

from __future__ import annotations

from collections.abc import Callable

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.utils.logging import SignalObserver

InvalidationGenerator = Callable[
    [ProposedSignal, IndicatorSnapshot | None, float, float], str
]

GENERIC_PHRASES = (
    "if price moves against",
    "if trend reverses",
    "if conditions change",
    "if market turns",
)
_MISSING_VALUES = {"", "n/a", "na"}
_MAX_CONDITIONS = 5
_FALLBACK = "Price breaks key support/resistance OR main indicator reverses"


def invalidation_issue(condition: str | None) -> str | None:
    """Return ``"missing"``, ``"generic"`` or ``None`` for a usable condition."""
    if condition is None or condition.strip().lower() in _MISSING_VALUES:
        return "missing"
    lowered = condition.lower()
    if any(phrase in lowered for phrase in GENERIC_PHRASES):
        return "generic"
    return None


def generate_invalidation_condition(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    entry_price: float,
    stop_loss: float,
) -> str:
    """Build up to five concrete invalidation conditions joined by OR."""
    if snapshot is None or entry_price <= 0:
        if signal.is_long:
            level = stop_loss or entry_price * 0.98
            return f"Price breaks below ${level:.2f} (stop loss level) OR main indicator reverses"
        if signal.is_short:
            level = stop_loss or entry_price * 1.02
            return f"Price breaks above ${level:.2f} (stop loss level) OR main indicator reverses"
        return _FALLBACK

    if signal.is_long:
        conditions = _long_conditions(snapshot, entry_price, stop_loss)
    elif signal.is_short:
        conditions = _short_conditions(snapshot, entry_price, stop_loss)
    else:
        conditions = _level_conditions(snapshot, snapshot.price or entry_price)

    if not conditions:
        return _FALLBACK
    return " OR ".join(conditions[:_MAX_CONDITIONS])


def synthesize_invalidation(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    observer: SignalObserver,
    generator: InvalidationGenerator = generate_invalidation_condition,
) -> ProposedSignal:
    """Replace a missing or generic invalidation condition. Never raises."""
    issue = invalidation_issue(signal.invalidation_condition)
    if issue is None:
        return signal

    entry = signal.entry_price or (snapshot.price if snapshot is not None else None) or 0.0
    try:
        condition = generator(signal, snapshot, float(entry), float(signal.stop_loss or 0.0))
    except Exception as exc:  # noqa: BLE001 - synthesis must not abort the pipeline.
        observer.exception("invalidation_generator_failed", error=str(exc))
        condition = generate_invalidation_condition(signal, None, float(entry), 0.0)

    if issue == "missing":
        message = "invalidation_condition was missing, auto-generated from price levels"
    else:
        message = (
            f"replaced generic invalidation_condition {signal.invalidation_condition!r}"
            " with a specific one"
        )
    note = observer.note("invalidation_auto_generated", message, condition=condition)
    return signal.with_diagnostic(
        note,
        invalidation_condition=condition,
        invalidation_auto_generated=True,
    )


def _long_conditions(snapshot: IndicatorSnapshot, entry_price: float, stop_loss: float) -> list[str]:
    price = snapshot.price or entry_price
    conditions: list[str] = []

    if snapshot.rsi14 is not None:
        if snapshot.rsi14 > 70:
            level = max(65, int(snapshot.rsi14 - 5))
            conditions.append(
                f"RSI(14) {snapshot.rsi14:.2f} breaks back below {level} (momentum failure)"
            )
        elif snapshot.rsi14 < 50:
            level = max(30, int(snapshot.rsi14 - 10))
            conditions.append(f"RSI(14) breaks back below {level} (momentum failure)")
        else:
            conditions.append("RSI(14) breaks below 50 (momentum failure)")

    histogram = snapshot.macd.histogram if snapshot.macd else None
    if histogram is not None:
        if histogram > 0:
            conditions.append(f"MACD histogram turns negative (from +{histogram:.4f}, bearish momentum)")
        else:
            conditions.append(f"MACD histogram fails to recover above 0 (remains {histogram:.4f})")

    for support in snapshot.support_levels:
        if 0 < support < price:
            conditions.append(f"Price breaks below ${support:.2f} (support level)")
    if stop_loss > 0:
        conditions.append(f"Price breaks below ${stop_loss:.2f} (stop loss level)")

    bands = snapshot.bollinger_bands
    if bands is not None:
        if bands.lower and price > bands.lower:
            conditions.append(f"Price breaks below ${bands.lower:.2f} (BB lower band)")
        if bands.middle and price > bands.middle:
            conditions.append(f"Price breaks below ${bands.middle:.2f} (BB middle, bearish)")

    if snapshot.ema20 and price > snapshot.ema20:
        conditions.append(f"Price breaks below EMA20 ${snapshot.ema20:.2f} (trend breakdown)")
    if snapshot.ema50 and price > snapshot.ema50:
        conditions.append(f"Price breaks below EMA50 ${snapshot.ema50:.2f} (major trend breakdown)")

    conditions.extend(_trend_conditions(snapshot, bullish=True))
    funding = _funding_rate(snapshot)
    if funding is not None and funding < 0:
        conditions.append(f"Funding rate turns positive (from {funding * 100:.4f}%, bearish)")
    conditions.extend(_atr_conditions(snapshot, price))
    return conditions


def _short_conditions(snapshot: IndicatorSnapshot, entry_price: float, stop_loss: float) -> list[str]:
    price = snapshot.price or entry_price
    conditions: list[str] = []

    if snapshot.rsi14 is not None:
        if snapshot.rsi14 < 30:
            level = min(35, int(snapshot.rsi14 + 5))
            conditions.append(
                f"RSI(14) {snapshot.rsi14:.2f} breaks back above {level} (momentum failure)"
            )
        elif snapshot.rsi14 > 50:
            level = min(70, int(snapshot.rsi14 + 10))
            conditions.append(f"RSI(14) breaks back above {level} (momentum failure)")
        else:
            conditions.append("RSI(14) breaks above 50 (momentum failure)")

    histogram = snapshot.macd.histogram if snapshot.macd else None
    if histogram is not None:
        if histogram < 0:
            conditions.append(f"MACD histogram turns positive (from {histogram:.4f}, bullish momentum)")
        else:
            conditions.append(f"MACD histogram fails to drop below 0 (remains +{histogram:.4f})")

    for resistance in snapshot.resistance_levels:
        if resistance > price:
            conditions.append(f"Price breaks above ${resistance:.2f} (resistance level)")
    if stop_loss > 0:
        conditions.append(f"Price breaks above ${stop_loss:.2f} (stop loss level)")

    bands = snapshot.bollinger_bands
    if bands is not None:
        if bands.upper and price < bands.upper:
            conditions.append(f"Price breaks above ${bands.upper:.2f} (BB upper band)")
        if bands.middle and price < bands.middle:
            conditions.append(f"Price breaks above ${bands.middle:.2f} (BB middle, bullish)")

    if snapshot.ema20 and price < snapshot.ema20:
        conditions.append(f"Price breaks above EMA20 ${snapshot.ema20:.2f} (trend recovery)")
    if snapshot.ema50 and price < snapshot.ema50:
        conditions.append(f"Price breaks above EMA50 ${snapshot.ema50:.2f} (major trend recovery)")

    conditions.extend(_trend_conditions(snapshot, bullish=False))
    funding = _funding_rate(snapshot)
    if funding is not None and funding > 0:
        conditions.append(f"Funding rate turns negative (from +{funding * 100:.4f}%, bullish)")
    conditions.extend(_atr_conditions(snapshot, price))
    return conditions


def _level_conditions(snapshot: IndicatorSnapshot, price: float) -> list[str]:
    conditions = [
        f"Price breaks below ${s:.2f} (support level)" for s in snapshot.support_levels if 0 < s < price
    ]
    conditions.extend(
        f"Price breaks above ${r:.2f} (resistance level)" for r in snapshot.resistance_levels if r > price
    )
    return conditions


def _trend_conditions(snapshot: IndicatorSnapshot, *, bullish: bool) -> list[str]:
    alignment = snapshot.trend_alignment
    if alignment is None:
        return []
    conditions: list[str] = []
    daily_trend = alignment.effective_daily_trend
    if bullish and daily_trend == "uptrend":
        conditions.append("4H RSI breaks back below 40 (momentum failure)")
    elif bullish and daily_trend == "downtrend":
        conditions.append("Daily trend confirms downtrend (counter-trend reversal)")
    elif not bullish and daily_trend == "downtrend":
        conditions.append("4H RSI breaks back above 60 (momentum failure)")
    elif not bullish and daily_trend == "uptrend":
        conditions.append("Daily trend confirms uptrend (counter-trend reversal)")
    if alignment.alignment_score < 20:
        conditions.append("Trend alignment drops below 20% (momentum failure)")
    return conditions


def _atr_conditions(snapshot: IndicatorSnapshot, price: float) -> list[str]:
    atr_percent = snapshot.atr_percent(price)
    if atr_percent is not None and atr_percent < 1.5:
        return [f"ATR volatility increases above 2% (from {atr_percent:.2f}%, whipsaw risk)"]
    return []


def _funding_rate(snapshot: IndicatorSnapshot) -> float | None:
    external = snapshot.external_data or {}
    venue = external.get("hyperliquid")
    if not isinstance(venue, dict):
        return None
    funding = venue.get("funding_rate", venue.get("fundingRate"))
    return float(funding) if isinstance(funding, (int, float)) else None
