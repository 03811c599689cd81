#!/usr/bin/env python3
"""
Demo script showing config-driven and code-defined rules side by side.
Run with: python3 demo.py
"""

import asyncio
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from decision_engine import AnyRule, BaseRule
from decision_engine.core import ConfigLoader, configure_logging
from decision_engine.rules import engine_from_config


class WeekendFreeze(BaseRule):
    """Code-defined rule: hold every payment on weekends."""
    priority = 0
    is_overridable = False

    def evaluate(self, context):
        return "hold" if context.get("weekend") else None


async def demo():
    print("=" * 60)
    print("DECISION ENGINE - DEMO")
    print("=" * 60)
    print()

    loader = ConfigLoader('./config')
    config = loader.load_engine_config()
    configure_logging(config.logging.level, config.logging.format)

    context = {
        "payment": {"amount": 25000, "country": "DE", "merchant": "acme"},
        "account": {"age_days": 400, "trusted_merchants": []},
        "weekend": False,
    }
    engine = engine_from_config(config, context, loader)

    print("[1] Loaded rules")
    print("-" * 40)
    for rule in engine.rules:
        print(f"    - main     {rule!r}")
    for rule in engine.override_rules:
        print(f"    - override {rule!r}")
    print()

    print("[2] Decisions")
    print("-" * 40)
    result = await engine.make_outcome()
    print(f"  high amount            -> {result.decision} ({result.reason})")

    context["account"] = {"age_days": 400, "trusted_merchants": ["acme"]}
    await engine.update_context(dict(context))
    result = await engine.make_outcome()
    print(f"  trusted merchant       -> {result.decision} ({result.reason})")

    await engine.add_rule(AnyRule(WeekendFreeze()))
    await engine.update_context({**context, "weekend": True})
    result = await engine.make_outcome()
    print(f"  weekend freeze         -> {result.decision} ({result.reason})")

    await engine.remove_rules(lambda r: r.is_rule_type(WeekendFreeze))
    await engine.update_context({**context, "payment": {"amount": 10, "country": "DE"}})
    result = await engine.make_outcome()
    print(f"  small payment          -> {result.decision} ({result.reason})")
    print()

    last = await engine.get_last_outcome()
    print(f"Last outcome: {last.decision}")


if __name__ == "__main__":
    asyncio.run(demo())
