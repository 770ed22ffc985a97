"""Read-only indicator snapshot consumed by the finalization pipeline.

Individual malformed readings are dropped field by field so that one bad
value never discards the rest of the snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Literal

import pandas as pd  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from signal_finalizer.utils.coerce import (
    coerce_flag,
    coerce_label,
    coerce_mapping,
    coerce_number,
    coerce_number_list,
    coerce_text,
)
from signal_finalizer.utils.logging import get_logger

TrendLabel = Literal["uptrend", "downtrend", "neutral"]

_TREND_LABELS = frozenset({"uptrend", "downtrend", "neutral"})
_REGIME_LABELS = frozenset({"trending", "choppy", "neutral"})
_VOLATILITY_LABELS = frozenset({"high", "normal", "low"})
_SNAPSHOT_NUMBERS = (
    "price",
    "atr",
    "ema8",
    "ema20",
    "ema50",
    "rsi14",
    "obv",
    "vwap",
    "parabolic_sar",
    "cci",
    "price_change_24h",
    "volume_change",
)


class MacdValues(BaseModel):
    """MACD line, signal line and histogram."""

    model_config = ConfigDict(frozen=True)

    macd: float | None = None
    signal: float | None = None
    histogram: float | None = None

    @field_validator("macd", "signal", "histogram", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> float | None:
        return coerce_number(v)


class BollingerBands(BaseModel):
    """Bollinger band levels."""

    model_config = ConfigDict(frozen=True)

    upper: float | None = None
    middle: float | None = None
    lower: float | None = None

    @field_validator("upper", "middle", "lower", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> float | None:
        return coerce_number(v)


class TrendAlignment(BaseModel):
    """Multi-timeframe trend labels."""

    model_config = ConfigDict(frozen=True, extra="allow")

    trend: TrendLabel | None = None
    daily_trend: TrendLabel | None = None
    alignment_score: float = Field(default=0.0, ge=0.0, le=100.0)
    h4_aligned: bool = False
    h1_aligned: bool = False

    @field_validator("trend", "daily_trend", mode="before")
    @classmethod
    def coerce_trend(cls, v: Any) -> str | None:
        return coerce_label(v, _TREND_LABELS)

    @field_validator("alignment_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float:
        score = coerce_number(v)
        return 0.0 if score is None else min(max(score, 0.0), 100.0)

    @field_validator("h4_aligned", "h1_aligned", mode="before")
    @classmethod
    def coerce_flags(cls, v: Any) -> bool:
        return coerce_flag(v)

    @property
    def effective_daily_trend(self) -> TrendLabel | None:
        return self.daily_trend or self.trend


class MarketRegime(BaseModel):
    """Volatility and regime labels."""

    model_config = ConfigDict(frozen=True, extra="allow")

    regime: Literal["trending", "choppy", "neutral"] | None = None
    volatility: Literal["high", "normal", "low"] | None = None

    @field_validator("regime", mode="before")
    @classmethod
    def coerce_regime(cls, v: Any) -> str | None:
        return coerce_label(v, _REGIME_LABELS)

    @field_validator("volatility", mode="before")
    @classmethod
    def coerce_volatility(cls, v: Any) -> str | None:
        return coerce_label(v, _VOLATILITY_LABELS)


class IndicatorSnapshot(BaseModel):
    """Precomputed technical values for one asset at one point in time."""

    model_config = ConfigDict(frozen=True, extra="allow", arbitrary_types_allowed=True)

    price: float | None = None
    price_string: str | None = None
    atr: float | None = None
    ema8: float | None = None
    ema20: float | None = None
    ema50: float | None = None
    rsi14: float | None = None
    macd: MacdValues | None = None
    bollinger_bands: BollingerBands | None = None
    obv: float | None = None
    vwap: float | None = None
    parabolic_sar: float | None = None
    cci: float | None = None
    price_change_24h: float | None = None
    volume_change: float | None = None
    support_levels: list[float] = Field(default_factory=list)
    resistance_levels: list[float] = Field(default_factory=list)
    trend_alignment: TrendAlignment | None = None
    market_regime: MarketRegime | None = None
    external_data: dict[str, Any] | None = None
    historical_data: pd.DataFrame | None = None

    @field_validator(*_SNAPSHOT_NUMBERS, mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> float | None:
        return coerce_number(v)

    @field_validator("price_string", mode="before")
    @classmethod
    def coerce_price_string(cls, v: Any) -> str | None:
        return coerce_text(v)

    @field_validator("support_levels", "resistance_levels", mode="before")
    @classmethod
    def keep_numeric_levels(cls, v: Any) -> list[float]:
        return [level for level in coerce_number_list(v) if level > 0]

    @field_validator("macd", "bollinger_bands", "trend_alignment", "market_regime", mode="before")
    @classmethod
    def drop_non_mapping(cls, v: Any) -> Any:
        if isinstance(v, BaseModel):
            return v
        return coerce_mapping(v)

    @field_validator("external_data", mode="before")
    @classmethod
    def coerce_external(cls, v: Any) -> dict[str, Any] | None:
        return coerce_mapping(v)

    @field_validator("historical_data", mode="before")
    @classmethod
    def parse_historical_data(cls, v: Any) -> pd.DataFrame | None:
        """Accept a list of candle dicts as well as a DataFrame."""
        if isinstance(v, pd.DataFrame):
            return v
        if isinstance(v, list) and all(isinstance(row, Mapping) for row in v):
            return pd.DataFrame(v)
        return None

    def atr_percent(self, reference_price: float) -> float | None:
        """ATR as a percentage of ``reference_price``."""
        if not self.atr or self.atr <= 0 or reference_price <= 0:
            return None
        return self.atr / reference_price * 100.0

    @property
    def has_external_data(self) -> bool:
        return bool(self.external_data)

    def recent_closes(self, count: int = 2) -> list[float]:
        """Last ``count`` closes, oldest first; empty when unavailable."""
        frame = self.historical_data
        if frame is None or frame.empty or "close" not in frame.columns:
            return []
        closes = pd.to_numeric(frame["close"], errors="coerce").dropna()
        if len(closes) < count:
            return []
        return [float(c) for c in closes.iloc[-count:]]


MarketData = Mapping[str, Any] | Iterable[tuple[str, Any]]


def lookup_snapshot(market_data: MarketData | None, asset_id: str) -> IndicatorSnapshot | None:
    """Find the snapshot for ``asset_id`` in a mapping or ordered pairs.

    Fields that still fail validation are dropped and the rest is kept; a
    value that is not a mapping at all is logged and treated as missing.
    """
    if market_data is None:
        return None
    if isinstance(market_data, Mapping):
        value = market_data.get(asset_id)
    else:
        value = next((v for key, v in market_data if key == asset_id), None)

    if value is None or isinstance(value, IndicatorSnapshot):
        return value

    logger = get_logger("signal_finalizer.features.snapshot")
    if not isinstance(value, Mapping):
        logger.warning("snapshot_invalid", coin=asset_id, value_type=type(value).__name__)
        return None
    try:
        return IndicatorSnapshot.model_validate(value)
    except ValidationError as exc:
        dropped = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        logger.warning("snapshot_fields_dropped", coin=asset_id, fields=dropped)

    try:
        return IndicatorSnapshot.model_validate({k: v for k, v in value.items() if k not in dropped})
    except ValidationError as exc:
        logger.warning("snapshot_invalid", coin=asset_id, error=exc.errors()[0]["msg"])
        return None
