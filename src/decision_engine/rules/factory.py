"""Build engines from config-driven rule definitions."""

from typing import Any, Optional

import structlog

from ..core.config import EngineConfig, RuleSetDefinition, ConfigLoader
from .conditions import FallbackRule, FileConditionRule
from .engine import RulesEngine
from .evaluator import ConditionEvaluator
from .result import EvaluationResult
from .wrapper import AnyRule


logger = structlog.get_logger()


def wrap_definitions(
    rule_set: RuleSetDefinition,
    evaluator: Optional[ConditionEvaluator] = None,
) -> tuple[list[AnyRule], list[AnyRule]]:
    """Turn loaded definitions into wrapped main and override rules."""
    evaluator = evaluator or ConditionEvaluator()
    rules = [AnyRule(FileConditionRule(d, evaluator)) for d in rule_set.rules]
    override_rules = [AnyRule(FileConditionRule(d, evaluator)) for d in rule_set.override_rules]
    return rules, override_rules


def is_config_rule(rule: Any) -> bool:
    """Predicate selecting rules that came from rule files; any other rule is kept."""
    if isinstance(rule, AnyRule):
        return rule.is_rule_type(FileConditionRule)
    return type(rule) is FileConditionRule


def build_engine(
    rule_set: RuleSetDefinition,
    context: Any,
    fallback_decision: Any = None,
    evaluator: Optional[ConditionEvaluator] = None,
) -> RulesEngine[Any, AnyRule]:
    """
    Create an engine from a loaded rule set.

    The rule set's own fallback wins over fallback_decision.
    """
    rules, override_rules = wrap_definitions(rule_set, evaluator)

    decision = rule_set.fallback_decision if rule_set.has_fallback else fallback_decision
    fallback = EvaluationResult(decision=decision, reason=AnyRule(FallbackRule(decision)))

    logger.info(
        "rules_loaded",
        rules=len(rules),
        override_rules=len(override_rules),
        fallback=repr(decision),
    )
    return RulesEngine(rules, override_rules, fallback=fallback, context=context)


def engine_from_config(
    config: EngineConfig,
    context: Any,
    loader: Optional[ConfigLoader] = None,
) -> RulesEngine[Any, AnyRule]:
    """Load every rule file in config.rules_directory and build an engine."""
    loader = loader or ConfigLoader()
    rule_set = loader.load_rules(config.rules_directory)
    return build_engine(rule_set, context, fallback_decision=config.fallback_decision)
