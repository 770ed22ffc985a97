"""Indicator-derived justification text.

The text is explanatory only; confidence comes from the scorer.
"""

from __future__ import annotations

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.features.snapshot import IndicatorSnapshot


def indicator_readings(snapshot: IndicatorSnapshot) -> list[tuple[str, bool]]:
    """Return ``(description, is_bullish)`` for every indicator with a reading."""
    price = snapshot.price or 0.0
    readings: list[tuple[str, bool]] = []

    histogram = snapshot.macd.histogram if snapshot.macd else None
    if histogram:
        readings.append((f"MACD histogram {histogram:+.4f}", histogram > 0))
    if snapshot.obv:
        readings.append((f"OBV {snapshot.obv:+.2f}", snapshot.obv > 0))
    if price > 0:
        middle = snapshot.bollinger_bands.middle if snapshot.bollinger_bands else None
        if middle and price != middle:
            side = "above" if price > middle else "below"
            readings.append((f"Price {side} BB middle ${middle:.2f}", price > middle))
        if snapshot.parabolic_sar and price != snapshot.parabolic_sar:
            side = "above" if price > snapshot.parabolic_sar else "below"
            readings.append(
                (f"Price {side} Parabolic SAR ${snapshot.parabolic_sar:.2f}", price > snapshot.parabolic_sar)
            )
        if snapshot.vwap and price != snapshot.vwap:
            side = "above" if price > snapshot.vwap else "below"
            readings.append((f"Price {side} VWAP ${snapshot.vwap:.2f}", price > snapshot.vwap))
        if snapshot.ema8 and price != snapshot.ema8:
            side = "above" if price > snapshot.ema8 else "below"
            readings.append((f"Price {side} EMA8 ${snapshot.ema8:.2f}", price > snapshot.ema8))
    if snapshot.cci is not None and abs(snapshot.cci) > 100:
        readings.append((f"CCI {snapshot.cci:.2f}", snapshot.cci > 100))
    if snapshot.price_change_24h:
        readings.append((f"24h change {snapshot.price_change_24h:+.2f}%", snapshot.price_change_24h > 0))
    return readings


def count_indicator_votes(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> tuple[int, int]:
    """Count indicators supporting and contradicting the signal direction."""
    if not signal.is_entry:
        return 0, 0
    supporting = contradicting = 0
    for _, is_bullish in indicator_readings(snapshot):
        if is_bullish == signal.is_long:
            supporting += 1
        else:
            contradicting += 1
    return supporting, contradicting


def generate_justification(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> str:
    """Summarize which indicators support or contradict an entry signal."""
    if not signal.is_entry:
        return signal.justification or "Signal generated based on technical analysis"

    direction = "BUY" if signal.is_long else "SELL"
    supporting: list[str] = []
    contradicting: list[str] = []
    for description, is_bullish in indicator_readings(snapshot):
        (supporting if is_bullish == signal.is_long else contradicting).append(description)

    parts = [f"{direction} {signal.coin}: {len(supporting)} supporting, {len(contradicting)} contradicting"]
    if supporting:
        parts.append("Supporting: " + ", ".join(supporting))
    if contradicting:
        parts.append(f"Contradicting {direction}: " + ", ".join(contradicting))

    alignment = snapshot.trend_alignment
    if alignment is not None and alignment.effective_daily_trend:
        parts.append(
            f"Daily trend {alignment.effective_daily_trend} "
            f"(alignment {alignment.alignment_score:.0f}%)"
        )
    return "\n".join(parts)
