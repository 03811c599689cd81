"""Rules engine - priority-ordered main rules with an override phase."""

import asyncio
from operator import attrgetter
from typing import Callable, Generic, Iterable, Optional, TypeVar
import structlog

from ..core.errors import ErrorCategory, RuleError
from .base import ContextT, Rule
from .result import EvaluationResult


logger = structlog.get_logger()

RuleT = TypeVar("RuleT", bound=Rule)

_by_priority = attrgetter("priority")


class RulesEngine(Generic[ContextT, RuleT]):
    """
    Decides a single outcome from a context and two ordered rule sets.

    Flow:
    1. Evaluate main rules in ascending priority; the first match wins
    2. No match -> fallback result
    3. Non-overridable match -> final
    4. Overridable match -> first matching override rule wins, if any

    All operations are coroutines serialized through one asyncio.Lock, so
    callers on the same event loop never see a half-updated rule list or
    context. Both rule lists stay sorted by priority (stable, so equal
    priorities keep insertion order).
    """

    def __init__(
        self,
        rules: Iterable[RuleT] = (),
        override_rules: Iterable[RuleT] = (),
        *,
        fallback: EvaluationResult,
        context: ContextT,
    ):
        self._rules: list[RuleT] = sorted(rules, key=_by_priority)
        self._override_rules: list[RuleT] = sorted(override_rules, key=_by_priority)
        self._fallback = fallback
        self._context = context
        self._last_outcome: Optional[EvaluationResult] = None
        self._lock = asyncio.Lock()

    @property
    def rules(self) -> tuple[RuleT, ...]:
        """Snapshot of main rules in evaluation order."""
        return tuple(self._rules)

    @property
    def override_rules(self) -> tuple[RuleT, ...]:
        """Snapshot of override rules in evaluation order."""
        return tuple(self._override_rules)

    @property
    def context(self) -> ContextT:
        return self._context

    @property
    def fallback(self) -> EvaluationResult:
        return self._fallback

    @property
    def last_outcome(self) -> Optional[EvaluationResult]:
        """Result of the most recent make_outcome() call, None before the first."""
        return self._last_outcome

    async def make_outcome(self) -> EvaluationResult:
        """Compute the current decision and remember it as the last outcome."""
        async with self._lock:
            result = self._compute_outcome(self._context)
            self._last_outcome = result
            return result

    async def get_last_outcome(self) -> Optional[EvaluationResult]:
        """Get the last computed decision, if any."""
        async with self._lock:
            return self._last_outcome

    async def add_rule(self, rule: RuleT) -> None:
        """Add a main rule."""
        async with self._lock:
            self._rules.append(rule)
            self._rules.sort(key=_by_priority)
            logger.debug("rule_added", rule=str(rule), priority=rule.priority)

    async def add_override_rule(self, rule: RuleT) -> None:
        """Add an override rule."""
        async with self._lock:
            self._override_rules.append(rule)
            self._override_rules.sort(key=_by_priority)
            logger.debug("override_rule_added", rule=str(rule), priority=rule.priority)

    async def remove_rules(self, predicate: Callable[[RuleT], bool]) -> int:
        """
        Remove rules matching predicate from both main and override sets.

        Returns:
            Number of rules removed (0 is not an error)
        """
        async with self._lock:
            removed = self._remove_matching(predicate)
            if removed:
                logger.debug("rules_removed", count=removed)
            return removed

    async def replace_rules(
        self,
        predicate: Callable[[RuleT], bool],
        rules: Iterable[RuleT] = (),
        override_rules: Iterable[RuleT] = (),
    ) -> int:
        """
        Atomically remove rules matching predicate and add new ones.

        Evaluations never observe the state between the removal and the
        additions.

        Returns:
            Number of rules removed
        """
        async with self._lock:
            removed = self._remove_matching(predicate)
            self._rules.extend(rules)
            self._override_rules.extend(override_rules)
            self._rules.sort(key=_by_priority)
            self._override_rules.sort(key=_by_priority)
            logger.info(
                "rules_replaced",
                removed=removed,
                rules=len(self._rules),
                override_rules=len(self._override_rules),
            )
            return removed

    async def update_context(self, context: ContextT) -> None:
        """Replace the context used by the next evaluation."""
        async with self._lock:
            self._context = context

    def _remove_matching(self, predicate: Callable[[RuleT], bool]) -> int:
        before = len(self._rules) + len(self._override_rules)
        self._rules = [r for r in self._rules if not predicate(r)]
        self._override_rules = [r for r in self._override_rules if not predicate(r)]
        self._rules.sort(key=_by_priority)
        self._override_rules.sort(key=_by_priority)
        return before - len(self._rules) - len(self._override_rules)

    def _compute_outcome(self, context: ContextT) -> EvaluationResult:
        """Apply main rules, then override rules when the match allows it."""
        decision = self._first_match(self._rules, context)
        if decision is None:
            logger.debug("outcome_computed", phase="fallback", reason=str(self._fallback.reason))
            return self._fallback

        if not decision.reason.is_overridable:
            logger.debug("outcome_computed", phase="main", reason=str(decision.reason))
            return decision

        override = self._first_match(self._override_rules, context)
        if override is not None:
            logger.debug(
                "outcome_computed",
                phase="override",
                reason=str(override.reason),
                overridden=str(decision.reason),
            )
            return override

        logger.debug("outcome_computed", phase="main", reason=str(decision.reason))
        return decision

    def _first_match(
        self,
        rules: list[RuleT],
        context: ContextT,
    ) -> Optional[EvaluationResult]:
        """Return the first rule producing an outcome, paired with that outcome."""
        for rule in rules:
            try:
                outcome = rule.evaluate(context)
            except RuleError:
                logger.exception("rule_evaluation_error", rule=str(rule))
                raise
            except Exception as e:
                logger.exception("rule_evaluation_error", rule=str(rule))
                raise RuleError(
                    f"Rule {rule} raised during evaluation: {e}",
                    rule_id=str(rule),
                    category=ErrorCategory.EVALUATION,
                ) from e
            if outcome is not None:
                return EvaluationResult(decision=outcome, reason=rule)
        return None
