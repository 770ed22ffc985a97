"""Confidence scoring and the post-scoring floor policy."""

from __future__ import annotations

import math
from collections.abc import Callable

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.config import Settings
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.scoring.justification import count_indicator_votes
from signal_finalizer.types import ConfidenceResult
from signal_finalizer.utils.logging import SignalObserver

ConfidenceScorer = Callable[[ProposedSignal, IndicatorSnapshot, float], ConfidenceResult]

_TREND_MAX = 25
_RISK_REWARD_MAX = 20
_TECHNICAL_MAX = 30
_CONTEXT_MAX = 10
_EXTERNAL_MAX = 30
_SUPPORT_RESISTANCE_MAX = 5
_AUTO_REJECT_CONFIDENCE = 0.1


def calculate_confidence_score(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot,
    risk_reward_ratio: float,
) -> ConfidenceResult:
    """Score a sized signal out of a weighted point budget."""
    breakdown: list[str] = []
    max_score = float(_TREND_MAX)

    trend_score = _trend_score(signal, snapshot)
    if trend_score <= 0:
        return ConfidenceResult(
            confidence=_AUTO_REJECT_CONFIDENCE,
            total_score=trend_score,
            max_score=max_score,
            breakdown=[f"Trend Alignment: {trend_score}/{_TREND_MAX} (completely contradictory)"],
            auto_rejected=True,
            rejection_reason="Trend alignment contradicts signal direction",
        )
    score = float(trend_score)
    breakdown.append(f"Trend Alignment: {trend_score}/{_TREND_MAX}")

    rr_score = _risk_reward_score(signal, risk_reward_ratio)
    score += rr_score
    max_score += _RISK_REWARD_MAX
    breakdown.append(f"Risk/Reward: {rr_score}/{_RISK_REWARD_MAX}")

    technical_score = _technical_score(signal, snapshot)
    score += technical_score
    max_score += _TECHNICAL_MAX
    breakdown.append(f"Technical Consensus: {technical_score}/{_TECHNICAL_MAX}")

    context_score = _market_context_score(snapshot)
    score += context_score
    max_score += _CONTEXT_MAX
    breakdown.append(f"Market Context: {context_score}/{_CONTEXT_MAX}")

    if snapshot.has_external_data:
        external_score = _external_score(signal, snapshot)
        score += external_score
        max_score += _EXTERNAL_MAX
        breakdown.append(f"External Confirmation: {external_score}/{_EXTERNAL_MAX}")
    else:
        breakdown.append("Note: External data missing, excluded from max score")

    sr_score = _support_resistance_score(signal, snapshot)
    score += sr_score
    max_score += _SUPPORT_RESISTANCE_MAX
    breakdown.append(f"Support/Resistance: {sr_score}/{_SUPPORT_RESISTANCE_MAX}")

    return ConfidenceResult(
        confidence=min(score / max_score, 1.0),
        total_score=score,
        max_score=max_score,
        breakdown=breakdown,
    )


def finalize_confidence(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    *,
    settings: Settings,
    observer: SignalObserver,
    scorer: ConfidenceScorer = calculate_confidence_score,
) -> ProposedSignal:
    """Replace the AI confidence with the scorer's, then apply the 0.10 floor.

    Without a snapshot the signal gets the minimum admission confidence
    instead; scoring is never attempted.
    """
    if snapshot is None:
        minimum = settings.min_confidence_threshold
        note = observer.note(
            "confidence_without_indicators",
            f"no indicators available, using minimum confidence {minimum:.2f}",
        )
        return signal.with_diagnostic(note, confidence=minimum)

    try:
        result = scorer(signal, snapshot, float(signal.risk_reward_ratio or 0.0))
    except Exception as exc:  # noqa: BLE001 - a scoring fault falls through to the floor.
        observer.exception("confidence_scorer_failed", error=str(exc))
        result = ConfidenceResult(
            confidence=None,
            breakdown=[f"scorer failed: {exc}"],
            rejection_reason=str(exc),
        )

    confidence = result.confidence
    if _is_valid(confidence) and confidence >= settings.min_confidence_threshold:
        observer.verbose(
            "confidence_scored",
            confidence=round(confidence, 4),
            score=result.total_score,
            max_score=result.max_score,
        )
    else:
        observer.logger.info(
            "confidence_below_threshold",
            confidence=confidence,
            threshold=settings.min_confidence_threshold,
            score=result.total_score,
            max_score=result.max_score,
            breakdown=result.breakdown,
            rejection_reason=result.rejection_reason,
            external_data=snapshot.has_external_data,
        )

    update: dict[str, object] = {
        "confidence_breakdown": list(result.breakdown),
        "confidence_rejection_reason": result.rejection_reason,
    }
    floor = settings.confidence_floor
    if not _is_valid(confidence) or confidence < floor:
        note = observer.note(
            "confidence_floor_applied",
            f"confidence {confidence!r} is invalid, set to {floor:.2f}",
            breakdown=result.breakdown,
            rejection_reason=result.rejection_reason,
        )
        return signal.with_diagnostic(note, confidence=floor, **update)

    return signal.model_copy(update={**update, "confidence": min(float(confidence), 1.0)})


def ensure_final_confidence(
    signal: ProposedSignal,
    *,
    settings: Settings,
    observer: SignalObserver,
) -> ProposedSignal:
    """Last check before a signal leaves the pipeline.

    A confidence that was never set (or is zero/NaN) becomes the minimum
    admission confidence, not the scoring floor. Any other sub-floor value is
    raised to the floor, and values above one are capped.
    """
    confidence = signal.confidence
    default = settings.min_confidence_threshold
    if not _is_valid(confidence):
        note = observer.note(
            "confidence_defaulted",
            f"confidence {confidence!r} is invalid, defaulting to {default:.2f}",
        )
        return signal.with_diagnostic(note, confidence=default)
    if confidence < settings.confidence_floor:
        return signal.model_copy(update={"confidence": settings.confidence_floor})
    if confidence > 1.0:
        return signal.model_copy(update={"confidence": 1.0})
    return signal


def _is_valid(confidence: float | None) -> bool:
    return confidence is not None and math.isfinite(confidence) and confidence > 0


def _trend_score(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> int:
    alignment = snapshot.trend_alignment
    wanted = "uptrend" if signal.is_long else "downtrend" if signal.is_short else None
    if alignment is not None:
        daily_trend = alignment.effective_daily_trend
        if alignment.alignment_score > 0:
            if daily_trend == wanted:
                return round(alignment.alignment_score / 100 * _TREND_MAX)
            if daily_trend != "neutral":
                return round(alignment.alignment_score / 100 * 10)
            return 0
        score = 10 if alignment.trend == wanted else 0
        score += 8 if alignment.h4_aligned else 0
        score += 7 if alignment.h1_aligned else 0
        return score

    price, ema20, ema50 = snapshot.price, snapshot.ema20, snapshot.ema50
    if not (price and ema20 and ema50):
        return 0
    is_uptrend = price > ema20 > ema50
    is_downtrend = price < ema20 < ema50
    if (is_uptrend and signal.is_long) or (is_downtrend and signal.is_short):
        return 17
    return 0


def _risk_reward_score(signal: ProposedSignal, risk_reward_ratio: float) -> int:
    score = 0
    for threshold, points in ((3.0, 15), (2.5, 12), (2.0, 10), (1.5, 7), (1.0, 3)):
        if risk_reward_ratio >= threshold:
            score += points
            break

    if signal.stop_loss and signal.entry_price:
        stop_pct = abs(signal.entry_price - signal.stop_loss) / signal.entry_price * 100
        if stop_pct <= 1.5:
            score += 5
        elif stop_pct <= 2.0:
            score += 3
        elif stop_pct <= 2.5:
            score += 1
    return score


def _technical_score(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> int:
    supporting, contradicting = count_indicator_votes(signal, snapshot)
    total = supporting + contradicting
    if total == 0:
        return 0
    return round(supporting / total * _TECHNICAL_MAX)


def _market_context_score(snapshot: IndicatorSnapshot) -> int:
    score = 0
    regime = snapshot.market_regime.regime if snapshot.market_regime else None
    score += {"trending": 5, "neutral": 3, "choppy": 2}.get(regime or "", 0)

    atr_percent = snapshot.atr_percent(snapshot.price or 0.0)
    if atr_percent is not None:
        if 1 <= atr_percent <= 3:
            score += 5
        elif atr_percent <= 5:
            score += 3
        else:
            score += 1
    return score


def _external_score(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> int:
    external = snapshot.external_data or {}
    score = 0

    venue = external.get("hyperliquid")
    funding = None
    if isinstance(venue, dict):
        funding = venue.get("funding_rate", venue.get("fundingRate"))
    if isinstance(funding, (int, float)):
        if abs(funding) < 0.0001:
            score += 5
        elif (signal.is_long and funding < 0) or (signal.is_short and funding > 0):
            score += 10
        else:
            score += 2

    order_book = external.get("order_book", external.get("orderBook"))
    imbalance = order_book.get("imbalance") if isinstance(order_book, dict) else None
    if isinstance(imbalance, (int, float)):
        if (signal.is_long and imbalance > 0.1) or (signal.is_short and imbalance < -0.1):
            score += 10
        elif abs(imbalance) <= 0.1:
            score += 5

    blockchain = external.get("blockchain")
    whale = None
    if isinstance(blockchain, dict):
        whale = blockchain.get("whale_activity_score", blockchain.get("whaleActivityScore"))
    if isinstance(whale, (int, float)):
        if (signal.is_long and whale > 0) or (signal.is_short and whale < 0):
            score += 10
        elif whale == 0:
            score += 5
    return min(score, _EXTERNAL_MAX)


def _support_resistance_score(signal: ProposedSignal, snapshot: IndicatorSnapshot) -> int:
    price = snapshot.price
    if not price:
        return 0
    if signal.is_long:
        levels = [s for s in snapshot.support_levels if 0 < s < price]
        if not levels:
            return 0
        distance = (price - max(levels)) / price
    elif signal.is_short:
        levels = [r for r in snapshot.resistance_levels if r > price]
        if not levels:
            return 0
        distance = (min(levels) - price) / price
    else:
        return 0
    if distance < 0.05:
        return 3
    if distance < 0.10:
        return 1
    return 0
