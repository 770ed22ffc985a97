"""Stop-loss and position sizing rules."""

from __future__ import annotations

from signal_finalizer.config import Settings
from signal_finalizer.types import AccountState, PositionSize, StopLossResult

# (atr_percent lower bound, ATR multiplier, minimum stop fraction), checked in order.
_ATR_TIERS: tuple[tuple[float, float, float], ...] = (
    (4.0, 2.0, 0.03),
    (2.5, 1.75, 0.02),
    (1.5, 1.5, 0.015),
)
_DEFAULT_TIER = (1.5, 0.015)


class RiskEngine:
    """Rule-based stop and sizing policies."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def select_atr_tier(self, atr_percent: float) -> tuple[float, float]:
        """Return ``(multiplier, minimum stop fraction)`` for a volatility tier."""
        for lower_bound, multiplier, floor in _ATR_TIERS:
            if atr_percent > lower_bound:
                return multiplier, floor
        return _DEFAULT_TIER

    def build_stop_loss(self, entry: float, atr: float | None, *, is_long: bool) -> StopLossResult:
        """Build an ATR-tiered stop with wick buffer, or a flat fallback stop."""
        if entry <= 0:
            return StopLossResult(
                stop_loss=0.0,
                stop_distance=0.0,
                stop_pct=0.0,
                atr_percent=None,
                atr_multiplier=None,
            )

        atr_percent: float | None = None
        multiplier: float | None = None
        if atr is not None and atr > 0:
            atr_percent = atr / entry * 100.0
            multiplier, floor = self.select_atr_tier(atr_percent)
            stop_pct = max(atr * multiplier / entry, floor) + self._settings.wick_buffer
            used_fallback = False
        else:
            stop_pct = self._settings.stop_loss_fallback_pct / 100.0
            used_fallback = True

        if is_long:
            stop_loss = entry * (1.0 - stop_pct)
            stop_distance = entry - stop_loss
        else:
            stop_loss = entry * (1.0 + stop_pct)
            stop_distance = stop_loss - entry

        return StopLossResult(
            stop_loss=max(0.0, stop_loss),
            stop_distance=stop_distance if stop_loss > 0 else 0.0,
            stop_pct=stop_pct,
            atr_percent=atr_percent,
            atr_multiplier=multiplier,
            used_fallback=used_fallback,
        )

    def is_extreme_volatility(self, entry: float, atr: float | None, volatility: str | None) -> bool:
        """High-volatility regime with ATR beyond the configured ceiling."""
        if volatility != "high" or atr is None or atr <= 0 or entry <= 0:
            return False
        return atr / entry * 100.0 > self._settings.extreme_volatility_atr_pct

    def compute_position_size(
        self,
        capital_per_signal: float,
        stop_distance: float,
        account: AccountState,
        *,
        contrarian: bool = False,
    ) -> PositionSize:
        """Equal-risk sizing: a fixed share of the capital slice per signal."""
        risk_budget = capital_per_signal * self._settings.risk_per_signal_pct / 100.0
        if contrarian:
            risk_budget *= self._settings.contrarian_risk_multiplier
        leverage = self._settings.leverage

        quantity = 0.0
        if stop_distance > 0:
            quantity = risk_budget / (stop_distance * leverage)

        balance = account.balance(self._settings.default_account_balance)
        return PositionSize(
            quantity=max(0.0, float(quantity)),
            risk_usd=risk_budget,
            risk_percent=risk_budget / balance * 100.0 if balance > 0 else 0.0,
            leverage=leverage,
            capital_per_signal=capital_per_signal,
            contrarian=contrarian,
        )
