"""Shared result types for the signal finalization stages."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class AccountState:
    """Read-only account view used for risk reporting."""

    account_value: float | None = None
    available_cash: float | None = None

    def balance(self, default: float) -> float:
        """Account value, then available cash, then the configured default."""
        return self.account_value or self.available_cash or default


@dataclass(slots=True)
class StopLossResult:
    """Stop level derived from volatility."""

    stop_loss: float
    stop_distance: float
    stop_pct: float
    atr_percent: float | None
    atr_multiplier: float | None
    used_fallback: bool = False


@dataclass(slots=True)
class PositionSize:
    """Equal-risk position sizing output."""

    quantity: float
    risk_usd: float
    risk_percent: float
    leverage: float
    capital_per_signal: float
    contrarian: bool = False


@dataclass(slots=True)
class TakeProfitResult:
    """Target produced by a take-profit calculator."""

    tp_price: float
    tp_percent: float
    factors: dict[str, float | bool] = field(default_factory=dict)
    is_counter_trend: bool = False
    profit_expectation: float | None = None


@dataclass(slots=True)
class TrailResult:
    """Outcome of the bounce trailing rule."""

    tp_price: float
    is_trailing: bool
    reason: str
    ema_level: float | None = None


@dataclass(slots=True)
class ConfidenceResult:
    """Structured output of a confidence scorer."""

    confidence: float | None
    total_score: float = 0.0
    max_score: float = 0.0
    breakdown: list[str] = field(default_factory=list)
    auto_rejected: bool = False
    rejection_reason: str | None = None
