"""Type-erased rule wrapper."""

from typing import Callable, Generic, Optional

from .base import ContextT, OutcomeT, Rule


class AnyRule(Generic[ContextT, OutcomeT]):
    """
    Wraps any rule so rules of different classes can share one engine.

    The wrapper forwards evaluation unchanged and remembers the concrete
    class of the wrapped rule for introspection.
    """

    __slots__ = ("_priority", "_is_overridable", "_evaluator", "_rule_type")

    def __init__(self, rule: Rule[ContextT, OutcomeT]):
        self._priority: int = rule.priority
        self._is_overridable: bool = rule.is_overridable
        self._evaluator: Callable[[ContextT], Optional[OutcomeT]] = rule.evaluate
        self._rule_type: type = type(rule)

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def is_overridable(self) -> bool:
        return self._is_overridable

    @property
    def rule_type(self) -> type:
        """Concrete class the wrapped rule was built from."""
        return self._rule_type

    def evaluate(self, context: ContextT) -> Optional[OutcomeT]:
        return self._evaluator(context)

    def is_rule_type(self, rule_type: type) -> bool:
        """True if the wrapped rule is exactly an instance of rule_type (no subclasses)."""
        return self._rule_type is rule_type

    def __str__(self) -> str:
        return self._rule_type.__name__

    def __repr__(self) -> str:
        return (
            f"AnyRule({self._rule_type.__qualname__}, "
            f"priority={self._priority}, overridable={self._is_overridable})"
        )
