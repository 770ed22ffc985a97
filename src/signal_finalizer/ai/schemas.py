"""AI signal schemas, payload shape resolution and raw signal normalization."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from signal_finalizer.utils.coerce import (
    coerce_flag,
    coerce_number,
    coerce_text,
    coerce_text_list,
    is_flag_like,
)
from signal_finalizer.utils.logging import SignalObserver

SignalType = Literal["buy_to_enter", "sell_to_enter", "add", "hold", "reduce", "close_all"]

ENTRY_SIGNALS = frozenset({"buy_to_enter", "sell_to_enter", "add"})
LONG_SIGNALS = frozenset({"buy_to_enter", "add"})

DEFAULT_CONFIDENCE = 0.60

_SIGNAL_ALIASES = {
    "enter_long": "buy_to_enter",
    "enter_short": "sell_to_enter",
    "exit": "close_all",
    "close": "close_all",
}
_NUMERIC_ARRAY = re.compile(r"^\[[\d\s.,]+\]$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

# Optional fields an AI payload may carry malformed; unusable values are dropped.
_NUMERIC_FIELDS = (
    "entry_price",
    "stop_loss",
    "profit_target",
    "bounce_strength",
    "leverage",
    "quantity",
    "risk_usd",
    "risk_percent",
    "capital_per_signal",
    "atr_percent",
    "risk_reward_ratio",
    "bounce_sl_offset",
    "bounce_target",
    "bounce_profit_expectation",
    "bounce_counter_trend_penalty",
    "bounce_tp_original",
    "bounce_tp_trailed",
)
_TEXT_FIELDS = (
    "entry_price_string",
    "justification",
    "invalidation_condition",
    "original_justification",
    "bounce_sl_reason",
    "bounce_tp_trail_reason",
    "confidence_rejection_reason",
)
_FLAG_FIELDS = (
    "bounce_mode",
    "contrarian_play",
    "oversold_contrarian",
    "invalidation_auto_generated",
    "equal_allocation",
    "bounce_tp_trailing",
)
_BOUNCE_TYPES = frozenset({"BUY_BOUNCE", "SELL_BOUNCE"})


class SignalFinalizerError(Exception):
    """Base signal finalizer error."""


class InvalidSignalStructure(SignalFinalizerError):
    """Raised when AI output cannot be resolved to a signal for the asset."""


class AIResponseFormatError(SignalFinalizerError):
    """Raised when model text does not contain a usable JSON value."""


class RawPayloadShape(str, Enum):
    """Shapes an AI payload may take."""

    DIRECT = "direct"
    MISSING_ASSET = "missing_asset"
    NESTED_SIGNALS = "nested_signals"
    NESTED_DATA = "nested_data"
    BARE_ARRAY = "bare_array"
    UNKNOWN = "unknown"


class ProposedSignal(BaseModel):
    """Trade signal proposed by the AI and refined by each pipeline stage.

    Instances are immutable; stages derive new ones with ``model_copy``.
    Unknown AI fields are kept as extras.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    coin: str = Field(min_length=1)
    signal: SignalType
    confidence: float | None = Field(default=DEFAULT_CONFIDENCE)
    entry_price: float | None = None
    entry_price_string: str | None = None
    stop_loss: float | None = None
    profit_target: float | None = None
    justification: str | None = None
    invalidation_condition: str | None = None
    bounce_mode: bool = False
    bounce_strength: float | None = None
    bounce_type: Literal["BUY_BOUNCE", "SELL_BOUNCE"] | None = None
    contrarian_play: bool = False
    oversold_contrarian: bool = False

    # Populated by the pipeline.
    invalidation_auto_generated: bool = False
    original_justification: str | None = None
    leverage: float | None = None
    quantity: float | None = None
    risk_usd: float | None = None
    risk_percent: float | None = None
    capital_per_signal: float | None = None
    equal_allocation: bool = False
    atr_percent: float | None = None
    risk_reward_ratio: float | None = None
    tp_factors: dict[str, float | bool] = Field(default_factory=dict)
    bounce_sl_offset: float | None = None
    bounce_sl_reason: str | None = None
    bounce_target: float | None = None
    bounce_profit_expectation: float | None = None
    bounce_counter_trend_penalty: float | None = None
    bounce_tp_trailing: bool = False
    bounce_tp_trail_reason: str | None = None
    bounce_tp_original: float | None = None
    bounce_tp_trailed: float | None = None
    confidence_breakdown: list[str] = Field(default_factory=list)
    confidence_rejection_reason: str | None = None
    diagnostics: list[str] = Field(default_factory=list)

    @field_validator("signal", mode="before")
    @classmethod
    def normalize_signal_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            return _SIGNAL_ALIASES.get(lowered, lowered)
        return v

    @field_validator("confidence", *_NUMERIC_FIELDS, mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> float | None:
        return coerce_number(v)

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def coerce_texts(cls, v: Any) -> str | None:
        return coerce_text(v)

    @field_validator(*_FLAG_FIELDS, mode="before")
    @classmethod
    def coerce_flags(cls, v: Any) -> bool:
        return coerce_flag(v)

    @field_validator("bounce_type", mode="before")
    @classmethod
    def coerce_bounce_type(cls, v: Any) -> str | None:
        label = v.strip().upper() if isinstance(v, str) else None
        return label if label in _BOUNCE_TYPES else None

    @field_validator("diagnostics", "confidence_breakdown", mode="before")
    @classmethod
    def coerce_text_lists(cls, v: Any) -> list[str]:
        return coerce_text_list(v)

    @field_validator("tp_factors", mode="before")
    @classmethod
    def coerce_tp_factors(cls, v: Any) -> dict[str, float | bool]:
        if not isinstance(v, dict):
            return {}
        factors: dict[str, float | bool] = {}
        for key, value in v.items():
            if isinstance(value, bool):
                factors[str(key)] = value
            elif (number := coerce_number(value)) is not None:
                factors[str(key)] = number
        return factors

    @property
    def is_entry(self) -> bool:
        return self.signal in ENTRY_SIGNALS

    @property
    def is_long(self) -> bool:
        return self.signal in LONG_SIGNALS

    @property
    def is_short(self) -> bool:
        return self.signal == "sell_to_enter"

    @property
    def is_contrarian(self) -> bool:
        return bool(self.contrarian_play or self.oversold_contrarian)

    def with_diagnostic(self, note: str, **update: Any) -> "ProposedSignal":
        """Return a copy with ``note`` appended to diagnostics."""
        return self.model_copy(update={**update, "diagnostics": [*self.diagnostics, note]})


def detect_payload_shape(payload: Any) -> RawPayloadShape:
    """Classify a decoded AI payload once, up front."""
    if isinstance(payload, list):
        return RawPayloadShape.BARE_ARRAY if payload else RawPayloadShape.UNKNOWN
    if not isinstance(payload, dict):
        return RawPayloadShape.UNKNOWN
    if payload.get("signal"):
        return RawPayloadShape.DIRECT if payload.get("coin") else RawPayloadShape.MISSING_ASSET
    if isinstance(payload.get("signals"), list) and payload["signals"]:
        return RawPayloadShape.NESTED_SIGNALS
    if isinstance(payload.get("data"), list) and payload["data"]:
        return RawPayloadShape.NESTED_DATA
    return RawPayloadShape.UNKNOWN


def normalize_raw_signal(
    payload: Any,
    asset_id: str,
    observer: SignalObserver | None = None,
) -> ProposedSignal:
    """Resolve an untyped AI payload into a ProposedSignal for ``asset_id``.

    Malformed optional fields are dropped with a ``field_invalid`` note.

    Raises:
        InvalidSignalStructure: no direction-bearing entry could be found, or
            the direction is not a known signal type.
    """
    observer = observer or SignalObserver()
    shape = detect_payload_shape(payload)
    raw = _resolve_entry(payload, shape, asset_id)
    if raw is None or not raw.get("signal"):
        observer.verbose("invalid_signal_structure", coin=asset_id, shape=shape.value)
        raise InvalidSignalStructure(
            f"invalid_signal_structure: no signal entry for {asset_id} (shape={shape.value})"
        )

    record = {**raw, "coin": asset_id}
    notes: list[str] = []
    for name, value in _invalid_fields(record):
        notes.append(
            observer.note(
                "field_invalid",
                f"{name}={value!r} is not usable, ignored",
                coin=asset_id,
                field=name,
            )
        )
    confidence = coerce_number(record.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    elif confidence < 0.0 or confidence > 1.0:
        notes.append(
            observer.note(
                "confidence_out_of_range",
                f"AI returned confidence {confidence}, reset to {DEFAULT_CONFIDENCE:.2f}",
                coin=asset_id,
            )
        )
        confidence = DEFAULT_CONFIDENCE
    record["confidence"] = confidence
    record["diagnostics"] = [*coerce_text_list(record.get("diagnostics")), *notes]

    try:
        return ProposedSignal.model_validate(record)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvalidSignalStructure(
            f"invalid_signal_structure: {location}: {first['msg']}"
        ) from exc


def normalize_response_text(
    text: str,
    asset_id: str,
    observer: SignalObserver | None = None,
) -> ProposedSignal:
    """Parse model text and normalize the signal it carries."""
    return normalize_raw_signal(extract_json_payload(text), asset_id, observer)


def extract_json_payload(text: str) -> Any:
    """Extract a JSON object or array from plain text or fenced content."""
    stripped = text.strip()
    if _NUMERIC_ARRAY.match(stripped):
        raise AIResponseFormatError("model_returned_numeric_array")

    fenced_match = re.search(r"```(?:json)?\s*(.*?)\s*```", stripped, re.DOTALL)
    if fenced_match:
        stripped = fenced_match.group(1).strip()

    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    brace_match = re.search(r"\{.*\}", stripped, re.DOTALL)
    if brace_match:
        try:
            return json.loads(_TRAILING_COMMA.sub(r"\1", brace_match.group(0)))
        except json.JSONDecodeError as exc:
            raise AIResponseFormatError(f"model_response_invalid_json: {exc.msg}") from exc

    raise AIResponseFormatError("model_response_not_json")


def _resolve_entry(payload: Any, shape: RawPayloadShape, asset_id: str) -> dict[str, Any] | None:
    if shape in (RawPayloadShape.DIRECT, RawPayloadShape.MISSING_ASSET):
        return payload
    if shape == RawPayloadShape.NESTED_SIGNALS:
        return _pick_for_asset(payload["signals"], asset_id)
    if shape == RawPayloadShape.NESTED_DATA:
        return _pick_for_asset(payload["data"], asset_id)
    if shape == RawPayloadShape.BARE_ARRAY:
        return _pick_for_asset(payload, asset_id)
    return None


def _pick_for_asset(entries: list[Any], asset_id: str) -> dict[str, Any] | None:
    candidates = [e for e in entries if isinstance(e, dict) and e.get("signal")]
    for entry in candidates:
        if entry.get("coin") == asset_id:
            return entry
    return candidates[0] if candidates else None


def _invalid_fields(record: dict[str, Any]) -> list[tuple[str, Any]]:
    invalid: list[tuple[str, Any]] = []
    for name in _NUMERIC_FIELDS:
        value = record.get(name)
        if value is not None and coerce_number(value) is None:
            invalid.append((name, value))
    for name in _TEXT_FIELDS:
        value = record.get(name)
        if value is not None and coerce_text(value) is None:
            invalid.append((name, value))
    for name in _FLAG_FIELDS:
        value = record.get(name)
        if not is_flag_like(value):
            invalid.append((name, value))
    bounce_type = record.get("bounce_type")
    if bounce_type is not None and (
        not isinstance(bounce_type, str) or bounce_type.strip().upper() not in _BOUNCE_TYPES
    ):
        invalid.append(("bounce_type", bounce_type))
    return invalid
