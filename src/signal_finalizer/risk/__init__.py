"""Risk package exports."""

from signal_finalizer.risk.bounce import calculate_bounce_sl_offset, calculate_bounce_tp_trail
from signal_finalizer.risk.rules import RiskEngine
from signal_finalizer.risk.take_profit import (
    apply_take_profit,
    calculate_bounce_tp,
    calculate_dynamic_tp,
    enforce_min_risk_reward,
    enforce_target_direction,
)

__all__ = [
    "RiskEngine",
    "apply_take_profit",
    "calculate_bounce_sl_offset",
    "calculate_bounce_tp",
    "calculate_bounce_tp_trail",
    "calculate_dynamic_tp",
    "enforce_min_risk_reward",
    "enforce_target_direction",
]
