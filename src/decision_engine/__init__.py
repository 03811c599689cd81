"""
Priority-ordered decision engine

Evaluates caller-defined rules against a context:
- Main rules in ascending priority, first match wins
- Override rules that may supersede an overridable match
- Mandatory fallback when nothing matches
- Config-driven rules loaded from YAML/JSON
"""

from .rules import (
    AnyRule,
    BaseRule,
    DecisionEngine,
    EvaluationResult,
    Rule,
    RulesEngine,
)

__version__ = "0.1.0"

__all__ = [
    "AnyRule",
    "BaseRule",
    "DecisionEngine",
    "EvaluationResult",
    "Rule",
    "RulesEngine",
]
