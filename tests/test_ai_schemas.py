import math

import pytest

from signal_finalizer.ai.schemas import (
    AIResponseFormatError,
    InvalidSignalStructure,
    RawPayloadShape,
    detect_payload_shape,
    extract_json_payload,
    normalize_raw_signal,
    normalize_response_text,
)


def test_nested_signals_entry_is_stamped_with_asset() -> None:
    payload = {"signals": [{"coin": "BTC", "signal": "buy_to_enter", "entry_price": 100}]}
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.coin == "BTC"
    assert signal.signal == "buy_to_enter"
    assert signal.entry_price == 100


def test_payload_shapes_are_detected_up_front() -> None:
    assert detect_payload_shape({"coin": "BTC", "signal": "hold"}) == RawPayloadShape.DIRECT
    assert detect_payload_shape({"signal": "hold"}) == RawPayloadShape.MISSING_ASSET
    assert detect_payload_shape({"signals": [{"signal": "hold"}]}) == RawPayloadShape.NESTED_SIGNALS
    assert detect_payload_shape({"data": [{"signal": "hold"}]}) == RawPayloadShape.NESTED_DATA
    assert detect_payload_shape([{"signal": "hold"}]) == RawPayloadShape.BARE_ARRAY
    assert detect_payload_shape("hold") == RawPayloadShape.UNKNOWN


def test_missing_asset_field_is_attached() -> None:
    signal = normalize_raw_signal({"signal": "hold"}, "ETH")
    assert signal.coin == "ETH"


def test_bare_array_prefers_matching_asset() -> None:
    payload = [
        {"coin": "ETH", "signal": "hold"},
        {"coin": "BTC", "signal": "sell_to_enter", "entry_price": 50_000},
    ]
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.signal == "sell_to_enter"
    assert signal.entry_price == 50_000


def test_nested_data_without_match_takes_first_entry() -> None:
    payload = {"data": [{"coin": "ETH", "signal": "reduce"}, {"coin": "SOL", "signal": "hold"}]}
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.coin == "BTC"
    assert signal.signal == "reduce"


def test_direction_aliases_are_normalized() -> None:
    assert normalize_raw_signal({"signal": "ENTER_LONG"}, "BTC").signal == "buy_to_enter"
    assert normalize_raw_signal({"signal": "enter_short"}, "BTC").signal == "sell_to_enter"
    assert normalize_raw_signal({"signal": "exit"}, "BTC").signal == "close_all"


@pytest.mark.parametrize("raw_confidence", [None, "bad", math.nan])
def test_unusable_confidence_defaults_to_admission_floor(raw_confidence: object) -> None:
    payload = {"coin": "BTC", "signal": "hold", "confidence": raw_confidence}
    assert normalize_raw_signal(payload, "BTC").confidence == 0.60


def test_missing_confidence_defaults_to_admission_floor() -> None:
    assert normalize_raw_signal({"coin": "BTC", "signal": "hold"}, "BTC").confidence == 0.60


def test_out_of_range_confidence_is_reset_with_diagnostic() -> None:
    signal = normalize_raw_signal({"coin": "BTC", "signal": "hold", "confidence": 1.7}, "BTC")
    assert signal.confidence == 0.60
    assert any(note.startswith("confidence_out_of_range") for note in signal.diagnostics)


def test_numeric_string_confidence_is_kept() -> None:
    signal = normalize_raw_signal({"coin": "BTC", "signal": "hold", "confidence": "0.72"}, "BTC")
    assert signal.confidence == 0.72


@pytest.mark.parametrize(
    "payload",
    [
        {"coin": "BTC"},
        {"signals": [{"coin": "BTC"}]},
        [],
        "buy",
        {"coin": "BTC", "signal": "moon"},
    ],
)
def test_unresolvable_payload_raises(payload: object) -> None:
    with pytest.raises(InvalidSignalStructure):
        normalize_raw_signal(payload, "BTC")


def test_extra_ai_fields_are_kept() -> None:
    signal = normalize_raw_signal({"signal": "hold", "timeframe": "4h"}, "BTC")
    assert signal.model_extra == {"timeframe": "4h"}


def test_extract_json_payload_from_fenced_block() -> None:
    raw = """Here is my call:
    ```json
    {"coin": "BTC", "signal": "buy_to_enter", "confidence": 0.7}
    ```
    """
    assert extract_json_payload(raw)["signal"] == "buy_to_enter"


def test_extract_json_payload_repairs_trailing_comma() -> None:
    raw = 'Decision: {"coin": "BTC", "signal": "hold",} thanks'
    assert extract_json_payload(raw) == {"coin": "BTC", "signal": "hold"}


def test_extract_json_payload_rejects_numeric_array() -> None:
    with pytest.raises(AIResponseFormatError):
        extract_json_payload("[1, 2.5, 3]")


def test_extract_json_payload_rejects_plain_text() -> None:
    with pytest.raises(AIResponseFormatError):
        extract_json_payload("hello world")


def test_normalize_response_text() -> None:
    signal = normalize_response_text('{"data": [{"signal": "add", "entry_price": 10}]}', "SOL")
    assert signal.coin == "SOL"
    assert signal.is_entry
    assert signal.is_long


@pytest.mark.parametrize(
    ("field", "raw_value"),
    [
        ("entry_price", "N/A"),
        ("stop_loss", ""),
        ("profit_target", {"price": 105}),
        ("bounce_strength", "strong"),
        ("leverage", [10]),
        ("invalidation_condition", {"below": 95}),
        ("contrarian_play", "maybe"),
        ("bounce_type", "up"),
    ],
)
def test_malformed_optional_field_is_dropped_with_note(field: str, raw_value: object) -> None:
    payload = {"coin": "BTC", "signal": "buy_to_enter", "entry_price": 100, field: raw_value}
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.signal == "buy_to_enter"
    assert getattr(signal, field) in (None, False)
    assert any(note.startswith(f"field_invalid: {field}=") for note in signal.diagnostics)


def test_list_justification_is_joined() -> None:
    payload = {"coin": "BTC", "signal": "hold", "justification": ["rsi low", "macd up"]}
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.justification == "rsi low; macd up"
    assert not any(note.startswith("field_invalid") for note in signal.diagnostics)


def test_formatted_numeric_strings_are_parsed() -> None:
    payload = {"coin": "BTC", "signal": "sell_to_enter", "entry_price": "$64,250.5", "stop_loss": " 65000 "}
    signal = normalize_raw_signal(payload, "BTC")
    assert signal.entry_price == 64250.5
    assert signal.stop_loss == 65000.0
    assert signal.diagnostics == []


def test_unknown_direction_still_raises() -> None:
    with pytest.raises(InvalidSignalStructure):
        normalize_raw_signal({"coin": "BTC", "signal": "moon", "entry_price": "N/A"}, "BTC")
