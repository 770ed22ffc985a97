"""Signal finalization pipeline.

normalize -> invalidation -> stop loss -> position size -> take profit -> confidence
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from signal_finalizer.ai.schemas import ProposedSignal, normalize_raw_signal, normalize_response_text
from signal_finalizer.config import Settings, TradingConfig, get_settings, get_trading_config
from signal_finalizer.features.snapshot import IndicatorSnapshot, MarketData, lookup_snapshot
from signal_finalizer.risk.bounce import (
    calculate_bounce_sl_offset,
    calculate_bounce_tp_trail,
    describe_bounce_sl_offset,
)
from signal_finalizer.risk.rules import RiskEngine
from signal_finalizer.risk.take_profit import (
    BounceTargetFn,
    BounceTrailFn,
    DynamicTargetFn,
    apply_take_profit,
    calculate_bounce_tp,
    calculate_dynamic_tp,
)
from signal_finalizer.scoring.confidence import (
    ConfidenceScorer,
    calculate_confidence_score,
    ensure_final_confidence,
    finalize_confidence,
)
from signal_finalizer.scoring.justification import generate_justification
from signal_finalizer.types import AccountState
from signal_finalizer.utils.logging import SignalObserver, log_finalized_signal, log_risk_event
from signal_finalizer.validation.invalidation import (
    InvalidationGenerator,
    generate_invalidation_condition,
    synthesize_invalidation,
)

StopOffsetFn = Callable[[float, IndicatorSnapshot | None, float], float]
JustificationFn = Callable[[ProposedSignal, IndicatorSnapshot], str]


@dataclass(slots=True)
class SignalDelegates:
    """Pluggable collaborators used by the pipeline stages."""

    invalidation: InvalidationGenerator = generate_invalidation_condition
    dynamic_target: DynamicTargetFn = calculate_dynamic_tp
    bounce_target: BounceTargetFn = calculate_bounce_tp
    bounce_trail: BounceTrailFn = calculate_bounce_tp_trail
    bounce_stop_offset: StopOffsetFn = calculate_bounce_sl_offset
    confidence_scorer: ConfidenceScorer = calculate_confidence_score
    justification: JustificationFn | None = generate_justification


def finalize_signal(
    signal: ProposedSignal,
    market_data: MarketData | None,
    account: AccountState,
    capital_per_signal: float,
    *,
    settings: Settings | None = None,
    trading_config: TradingConfig | None = None,
    delegates: SignalDelegates | None = None,
    observer: SignalObserver | None = None,
) -> ProposedSignal:
    """Turn a normalized signal into a risk-bounded, internally consistent one.

    Non-entry signals and entry signals without a usable stop come back
    without position fields. Numeric edge cases never raise.
    """
    settings = settings or get_settings()
    trading_config = trading_config or get_trading_config(settings)
    delegates = delegates or SignalDelegates()
    observer = (observer or SignalObserver.from_settings(settings, "signal_finalizer.pipeline")).bind(
        coin=signal.coin
    )

    snapshot = lookup_snapshot(market_data, signal.coin)
    entry = signal.entry_price or 0.0
    if signal.is_entry and entry > 0 and not signal.entry_price_string:
        price_string = snapshot.price_string if snapshot is not None else None
        signal = signal.model_copy(update={"entry_price_string": price_string or str(entry)})

    signal = synthesize_invalidation(signal, snapshot, observer, delegates.invalidation)

    if signal.is_entry and entry > 0:
        signal = _size_entry_signal(
            signal,
            snapshot,
            account,
            capital_per_signal,
            settings=settings,
            trading_config=trading_config,
            delegates=delegates,
            observer=observer,
        )

    signal = ensure_final_confidence(signal, settings=settings, observer=observer)
    log_finalized_signal(
        observer.logger,
        coin=signal.coin,
        signal_type=signal.signal,
        confidence=float(signal.confidence or 0.0),
        quantity=signal.quantity,
        stop_loss=signal.stop_loss,
        profit_target=signal.profit_target,
        risk_reward_ratio=signal.risk_reward_ratio,
    )
    return signal


def finalize_response(
    text: str,
    asset_id: str,
    market_data: MarketData | None,
    account: AccountState,
    capital_per_signal: float,
    **kwargs: Any,
) -> ProposedSignal:
    """Parse raw model text for ``asset_id`` and finalize the signal."""
    observer = kwargs.get("observer")
    signal = normalize_response_text(text, asset_id, observer)
    return finalize_signal(signal, market_data, account, capital_per_signal, **kwargs)


def finalize_payload(
    payload: Any,
    asset_id: str,
    market_data: MarketData | None,
    account: AccountState,
    capital_per_signal: float,
    **kwargs: Any,
) -> ProposedSignal:
    """Normalize an already-decoded AI payload and finalize it."""
    signal = normalize_raw_signal(payload, asset_id, kwargs.get("observer"))
    return finalize_signal(signal, market_data, account, capital_per_signal, **kwargs)


def _size_entry_signal(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    account: AccountState,
    capital_per_signal: float,
    *,
    settings: Settings,
    trading_config: TradingConfig,
    delegates: SignalDelegates,
    observer: SignalObserver,
) -> ProposedSignal:
    engine = RiskEngine(settings)
    entry = float(signal.entry_price or 0.0)
    atr = snapshot.atr if snapshot is not None else None
    signal = signal.model_copy(update={"leverage": settings.leverage})

    volatility = snapshot.market_regime.volatility if snapshot and snapshot.market_regime else None
    if engine.is_extreme_volatility(entry, atr, volatility):
        atr_percent = atr / entry * 100.0 if atr else 0.0
        log_risk_event(
            observer.logger,
            event_type="extreme_volatility",
            action="downgrade_to_hold",
            atr_percent=round(atr_percent, 2),
        )
        note = observer.note(
            "extreme_volatility_skip",
            f"ATR {atr_percent:.2f}% in a high-volatility regime, {signal.signal} downgraded to hold",
        )
        return signal.with_diagnostic(note, signal="hold")

    if snapshot is not None and delegates.justification is not None:
        signal = _replace_justification(signal, snapshot, delegates.justification, observer)

    stop = engine.build_stop_loss(entry, atr, is_long=signal.is_long)
    stop_loss, stop_distance = stop.stop_loss, stop.stop_distance
    notes: list[str] = []
    if stop.used_fallback:
        notes.append(
            observer.note(
                "atr_unavailable",
                f"ATR not available, using fallback {stop.stop_pct:.2%} stop loss",
            )
        )
    else:
        observer.verbose(
            "stop_loss_computed",
            atr_percent=round(stop.atr_percent or 0.0, 2),
            multiplier=stop.atr_multiplier,
            stop_pct=round(stop.stop_pct * 100, 2),
            stop_loss=stop_loss,
        )

    update: dict[str, object] = {}
    if signal.bounce_mode and stop_distance > 0:
        stop_loss, stop_distance, bounce_update = _apply_bounce_offset(
            signal, snapshot, entry, stop_distance, delegates.bounce_stop_offset, observer, notes
        )
        update.update(bounce_update)

    if not (stop_loss > 0 and stop_distance > 0):
        ai_stop = signal.stop_loss or 0.0
        valid_side = 0 < ai_stop < entry if signal.is_long else ai_stop > entry
        if ai_stop > 0 and valid_side:
            stop_loss, stop_distance = ai_stop, abs(entry - ai_stop)
            notes.append(observer.note("ai_stop_used", f"using provided stop loss {ai_stop:.6g}"))
        else:
            notes.append(
                observer.note("stop_unavailable", "no usable stop loss, skipping position sizing")
            )
            return signal.model_copy(
                update={"diagnostics": [*signal.diagnostics, *notes]}
            )

    size = engine.compute_position_size(
        capital_per_signal, stop_distance, account, contrarian=signal.is_contrarian
    )
    observer.verbose(
        "position_sized",
        capital_per_signal=capital_per_signal,
        risk_usd=size.risk_usd,
        risk_percent=round(size.risk_percent, 2),
        quantity=size.quantity,
        contrarian=size.contrarian,
    )
    update.update(
        stop_loss=stop_loss,
        quantity=size.quantity,
        risk_usd=size.risk_usd,
        risk_percent=size.risk_percent,
        capital_per_signal=size.capital_per_signal,
        equal_allocation=True,
        atr_percent=stop.atr_percent,
        diagnostics=[*signal.diagnostics, *notes],
    )
    signal = signal.model_copy(update=update)

    signal = apply_take_profit(
        signal,
        snapshot,
        stop_distance,
        settings=settings,
        trading_config=trading_config,
        observer=observer,
        dynamic_target=delegates.dynamic_target,
        bounce_target=delegates.bounce_target,
        bounce_trail=delegates.bounce_trail,
    )
    return finalize_confidence(
        signal,
        snapshot,
        settings=settings,
        observer=observer,
        scorer=delegates.confidence_scorer,
    )


def _apply_bounce_offset(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot | None,
    entry: float,
    stop_distance: float,
    offset_fn: StopOffsetFn,
    observer: SignalObserver,
    notes: list[str],
) -> tuple[float, float, dict[str, object]]:
    try:
        adjusted = offset_fn(stop_distance, snapshot, entry)
    except Exception as exc:  # noqa: BLE001 - keep the unadjusted stop.
        observer.exception("bounce_stop_offset_failed", error=str(exc))
        notes.append(
            observer.note("bounce_stop_offset_failed", f"bounce stop offset failed ({exc}), stop kept")
        )
        adjusted = stop_distance

    stop_loss = entry - stop_distance if signal.is_long else entry + stop_distance
    if adjusted == stop_distance or adjusted <= 0:
        return stop_loss, stop_distance, {}

    multiplier = adjusted / stop_distance
    atr_percent = (snapshot.atr_percent(entry) if snapshot is not None else None) or 0.0
    stop_loss = entry - adjusted if signal.is_long else entry + adjusted
    observer.verbose(
        "bounce_stop_adjusted",
        original_pct=round(stop_distance / entry * 100, 2),
        adjusted_pct=round(adjusted / entry * 100, 2),
    )
    return stop_loss, adjusted, {
        "bounce_sl_offset": multiplier,
        "bounce_sl_reason": describe_bounce_sl_offset(atr_percent, multiplier),
    }


def _replace_justification(
    signal: ProposedSignal,
    snapshot: IndicatorSnapshot,
    justification_fn: JustificationFn,
    observer: SignalObserver,
) -> ProposedSignal:
    try:
        text = justification_fn(signal, snapshot)
    except Exception as exc:  # noqa: BLE001 - keep the AI justification.
        observer.exception("justification_failed", error=str(exc))
        return signal.with_diagnostic(
            observer.note("justification_failed", f"justification builder failed ({exc}), AI text kept")
        )
    if not text or text == signal.justification:
        return signal
    observer.verbose("justification_replaced")
    return signal.model_copy(
        update={"justification": text, "original_justification": signal.justification}
    )
