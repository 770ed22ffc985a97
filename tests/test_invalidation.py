import pytest

from signal_finalizer.ai.schemas import ProposedSignal
from signal_finalizer.features.snapshot import IndicatorSnapshot
from signal_finalizer.utils.logging import SignalObserver
from signal_finalizer.validation.invalidation import (
    generate_invalidation_condition,
    invalidation_issue,
    synthesize_invalidation,
)


def _signal(**overrides: object) -> ProposedSignal:
    fields: dict[str, object] = {"coin": "BTC", "signal": "buy_to_enter", "entry_price": 100.0}
    fields.update(overrides)
    return ProposedSignal(**fields)


def _snapshot() -> IndicatorSnapshot:
    return IndicatorSnapshot(
        price=100.0,
        atr=2.0,
        rsi14=55.0,
        macd={"histogram": 0.8},
        support_levels=[97.0, 95.0],
        resistance_levels=[105.0],
    )


@pytest.mark.parametrize(
    ("condition", "issue"),
    [
        (None, "missing"),
        ("", "missing"),
        ("N/A", "missing"),
        ("Exit IF TREND REVERSES", "generic"),
        ("Close if market turns", "generic"),
        ("Price closes below $97 support", None),
    ],
)
def test_invalidation_issue(condition: str | None, issue: str | None) -> None:
    assert invalidation_issue(condition) == issue


def test_missing_condition_is_generated() -> None:
    result = synthesize_invalidation(_signal(), _snapshot(), SignalObserver())
    assert result.invalidation_auto_generated
    assert "RSI(14) breaks below 50" in result.invalidation_condition
    assert "$97.00 (support level)" in result.invalidation_condition
    assert any("missing" in note for note in result.diagnostics)


def test_generic_condition_is_replaced() -> None:
    signal = _signal(invalidation_condition="if trend reverses")
    result = synthesize_invalidation(signal, _snapshot(), SignalObserver())
    assert result.invalidation_auto_generated
    assert invalidation_issue(result.invalidation_condition) is None
    assert any("generic" in note for note in result.diagnostics)
    assert signal.invalidation_condition == "if trend reverses"


def test_specific_condition_is_left_untouched() -> None:
    signal = _signal(invalidation_condition="4H close below $96.50")
    first = synthesize_invalidation(signal, _snapshot(), SignalObserver())
    second = synthesize_invalidation(first, _snapshot(), SignalObserver())
    assert first is signal
    assert second is signal
    assert not second.invalidation_auto_generated


def test_generated_condition_is_capped_at_five_clauses() -> None:
    condition = generate_invalidation_condition(_signal(), _snapshot(), 100.0, 96.7)
    assert 1 <= len(condition.split(" OR ")) <= 5


def test_short_condition_uses_resistance() -> None:
    condition = generate_invalidation_condition(
        _signal(signal="sell_to_enter"), _snapshot(), 100.0, 103.3
    )
    assert "$105.00 (resistance level)" in condition


def test_without_snapshot_falls_back_to_stop_level() -> None:
    condition = generate_invalidation_condition(_signal(), None, 100.0, 0.0)
    assert condition.startswith("Price breaks below $98.00 (stop loss level)")


def test_generator_failure_does_not_raise() -> None:
    def _boom(*args: object) -> str:
        raise RuntimeError("generator down")

    result = synthesize_invalidation(_signal(), _snapshot(), SignalObserver(), _boom)
    assert result.invalidation_auto_generated
    assert "stop loss level" in result.invalidation_condition
