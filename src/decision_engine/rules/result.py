"""Evaluation result type."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .base import OutcomeT

RuleT = TypeVar("RuleT")


@dataclass(frozen=True)
class EvaluationResult(Generic[OutcomeT, RuleT]):
    """A decision together with the rule that produced it."""
    decision: OutcomeT
    reason: RuleT    # Matching rule, or the fallback rule when nothing matched
