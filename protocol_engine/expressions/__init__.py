"""Condition evaluation.

Kinds and operators form a closed vocabulary; both are dispatched through
lookup tables in :mod:`protocol_engine.expressions.conditions`.
"""
from __future__ import annotations

from .conditions import ConditionEvaluator, conditions_met, evaluate_condition

__all__ = ["ConditionEvaluator", "conditions_met", "evaluate_condition"]
