"""Rule and engine contracts."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Optional, Protocol, TypeVar, runtime_checkable


ContextT = TypeVar("ContextT")
OutcomeT = TypeVar("OutcomeT")
ContextT_contra = TypeVar("ContextT_contra", contravariant=True)
OutcomeT_co = TypeVar("OutcomeT_co", covariant=True)


@runtime_checkable
class Rule(Protocol[ContextT_contra, OutcomeT_co]):
    """
    A single decision rule.

    Rules are immutable once built and must not mutate the context they
    are given. Lower priority values are evaluated first.
    """

    priority: int
    is_overridable: bool

    def evaluate(self, context: ContextT_contra) -> Optional[OutcomeT_co]:
        """Return an outcome if the rule applies to the context, else None."""
        ...


class BaseRule(ABC, Generic[ContextT, OutcomeT]):
    """Convenience base for rules declared as classes."""

    priority: int = 0
    is_overridable: bool = True

    @abstractmethod
    def evaluate(self, context: ContextT) -> Optional[OutcomeT]:
        ...


@runtime_checkable
class DecisionEngine(Protocol):
    """Interface of an engine that turns rules and a context into a decision."""

    async def make_outcome(self) -> Any:
        ...

    async def add_rule(self, rule: Any) -> None:
        ...

    async def add_override_rule(self, rule: Any) -> None:
        ...

    async def remove_rules(self, predicate: Callable[[Any], bool]) -> int:
        ...

    async def update_context(self, context: Any) -> None:
        ...

    async def get_last_outcome(self) -> Optional[Any]:
        ...
