"""Config-driven rule types."""

from typing import Any, Optional

from ..core.config import RuleDefinition
from ..core.errors import RuleError
from .evaluator import ConditionEvaluator


class ConditionRule:
    """
    Rule built from a RuleDefinition.

    Fires with the definition's decision when all of its conditions hold
    for the context.
    """

    def __init__(
        self,
        definition: RuleDefinition,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.definition = definition
        self.evaluator = evaluator or ConditionEvaluator()

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def priority(self) -> int:
        return self.definition.priority

    @property
    def is_overridable(self) -> bool:
        return self.definition.overridable

    def evaluate(self, context: Any) -> Optional[Any]:
        try:
            matched = self.evaluator.evaluate(self.definition.conditions, context)
        except RuleError as e:
            e.context["rule_id"] = self.definition.id
            raise
        return self.definition.decision if matched else None

    def __repr__(self) -> str:
        return f"ConditionRule({self.definition.id!r}, priority={self.priority})"


class FallbackRule:
    """Reason attached to the fallback result; never fires on its own."""

    priority = 0
    is_overridable = False

    def __init__(self, decision: Any):
        self.decision = decision

    def evaluate(self, context: Any) -> Optional[Any]:
        return None

    def __repr__(self) -> str:
        return f"FallbackRule({self.decision!r})"


class FileConditionRule(ConditionRule):
    """
    ConditionRule loaded from a rules file.

    Hot reload replaces exactly these; ConditionRules built in code are
    never touched by a reload.
    """

    def __repr__(self) -> str:
        return f"FileConditionRule({self.definition.id!r}, priority={self.priority})"
