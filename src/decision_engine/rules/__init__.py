"""Rules engine module."""

from .base import Rule, BaseRule, DecisionEngine
from .wrapper import AnyRule
from .result import EvaluationResult
from .engine import RulesEngine
from .evaluator import ConditionEvaluator
from .conditions import ConditionRule, FallbackRule, FileConditionRule
from .factory import build_engine, engine_from_config

__all__ = [
    "Rule",
    "BaseRule",
    "DecisionEngine",
    "AnyRule",
    "EvaluationResult",
    "RulesEngine",
    "ConditionEvaluator",
    "ConditionRule",
    "FallbackRule",
    "FileConditionRule",
    "build_engine",
    "engine_from_config",
]
