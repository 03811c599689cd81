"""Tests for configuration, errors, engine factory and hot reload."""

import asyncio
import json
import textwrap

import pytest
import structlog

from decision_engine.core import configure_logging
from decision_engine.core.config import ConfigLoader, EngineConfig, HotReloadConfig, RuleDefinition
from decision_engine.core.errors import (
    ConfigError,
    EngineError,
    ErrorCategory,
    ErrorSeverity,
    RuleError,
)
from decision_engine.core.hot_reload import RulesReloader
from decision_engine.rules import (
    AnyRule,
    ConditionRule,
    FallbackRule,
    FileConditionRule,
    build_engine,
    engine_from_config,
)


RULES_YAML = textwrap.dedent("""
    rules:
      - id: blocked_country
        priority: 1
        overridable: false
        decision: reject
        conditions:
          - {field: payment.country, operator: in, value: [KP, IR]}
      - id: high_amount
        priority: 10
        decision: review
        conditions:
          - {field: payment.amount, operator: gte, value: 10000}
      - id: disabled
        enabled: false
        priority: 0
        decision: never
    override_rules:
      - id: trusted_merchant
        priority: 1
        decision: approve
        conditions:
          - {field: payment.merchant, operator: in, value: $account.trusted}
    fallback:
      decision: approve
""")


def payment_context(amount=50, country="DE", merchant="shop", trusted=()):
    return {
        "payment": {"amount": amount, "country": country, "merchant": merchant},
        "account": {"trusted": list(trusted)},
    }


@pytest.fixture
def rules_dir(tmp_path):
    directory = tmp_path / "rules"
    directory.mkdir()
    (directory / "payments.yaml").write_text(RULES_YAML)
    return directory


class TestEngineConfig:
    """Test configuration loading."""

    def test_default_config(self):
        config = EngineConfig()

        assert config.rules_directory == "./config/rules"
        assert config.fallback_decision is None
        assert config.logging.level == "INFO"
        assert config.logging.format == "console"
        assert config.hot_reload.enabled is False

    def test_config_hash(self):
        assert EngineConfig().config_hash() == EngineConfig().config_hash()
        assert EngineConfig(name="other").config_hash() != EngineConfig().config_hash()

    def test_load_engine_config(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(textwrap.dedent("""
            name: payments
            fallback_decision: approve
            logging:
              format: json
            hot_reload:
              enabled: true
              check_interval_seconds: 0.5
        """))

        config = ConfigLoader(str(tmp_path)).load_engine_config()

        assert config.name == "payments"
        assert config.fallback_decision == "approve"
        assert config.logging.format == "json"
        assert config.hot_reload.check_interval_seconds == 0.5

    def test_invalid_engine_config(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("logging:\n  format: xml\n")

        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(str(tmp_path)).load_engine_config()

        assert exc_info.value.context["config_path"] == str(path)

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DECISION_ENGINE_NAME", "from-env")
        monkeypatch.setenv("DECISION_ENGINE_LOG_FORMAT", "json")
        monkeypatch.setenv("DECISION_ENGINE_HOT_RELOAD", "true")

        config = EngineConfig.from_env(str(tmp_path / "missing.env"))

        assert config.name == "from-env"
        assert config.logging.format == "json"
        assert config.hot_reload.enabled is True

    def test_from_env_invalid(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DECISION_ENGINE_LOG_FORMAT", "xml")

        with pytest.raises(ConfigError):
            EngineConfig.from_env(str(tmp_path / "missing.env"))


class TestRuleLoading:
    """Rule file loading and validation."""

    def test_load_rule_set(self, rules_dir):
        rule_set = ConfigLoader().load_rule_set(str(rules_dir / "payments.yaml"))

        assert [r.id for r in rule_set.rules] == ["blocked_country", "high_amount"]
        assert [r.id for r in rule_set.override_rules] == ["trusted_merchant"]
        assert rule_set.has_fallback
        assert rule_set.fallback_decision == "approve"
        assert rule_set.rules[0].overridable is False
        assert rule_set.rules[1].name == "high_amount"

    def test_load_json_rules(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": [{"id": "j", "decision": 1, "priority": -3}]}))

        rule_set = ConfigLoader().load_rule_set(str(path))

        assert rule_set.rules[0].priority == -3
        assert rule_set.has_fallback is False

    def test_directory_merge_last_fallback_wins(self, rules_dir):
        (rules_dir / "zz_extra.yml").write_text(
            "rules:\n  - {id: extra, decision: hold}\nfallback:\n  decision: hold\n"
        )

        rule_set = ConfigLoader().load_rules(str(rules_dir))

        assert [r.id for r in rule_set.rules] == ["blocked_country", "high_amount", "extra"]
        assert rule_set.fallback_decision == "hold"

    def test_missing_directory_is_empty(self, tmp_path):
        rule_set = ConfigLoader().load_rules(str(tmp_path / "nope"))

        assert rule_set.rules == []
        assert rule_set.has_fallback is False

    @pytest.mark.parametrize("content, message", [
        ("rules:\n  - {decision: x}\n", "id"),
        ("rules:\n  - {id: a}\n", "decision"),
        ("rules:\n  - {id: a, decision: x, priority: high}\n", "rules/0/priority"),
        ("rules:\n  - {id: a, decision: x, color: red}\n", "color"),
        ("unknown: []\n", "unknown"),
    ])
    def test_schema_violations(self, tmp_path, content, message):
        path = tmp_path / "bad.yaml"
        path.write_text(content)

        with pytest.raises(ConfigError, match=message):
            ConfigLoader().load_rule_set(str(path))

    @pytest.mark.parametrize("condition, message", [
        ("{field: a, operator: equals, value: 1}", "Unknown operator: equals"),
        ("{operator: eq, value: 1}", "missing 'field'"),
        ("{field: a, operator: regex, value: '('}", "Invalid regex"),
        ("{field: a, operator: is_type, value: decimal}", "Unknown type"),
        ("{or: [{field: a, operator: approx, value: 1}]}", "Unknown operator: approx"),
        ("{field: a, operator: any, condition: {operator: near}}", "Unknown operator: near"),
    ])
    def test_invalid_conditions_rejected_at_load(self, tmp_path, condition, message):
        path = tmp_path / "bad.yaml"
        path.write_text(f"rules:\n  - id: bad\n    decision: x\n    conditions:\n      - {condition}\n")

        with pytest.raises(ConfigError, match=message) as exc_info:
            ConfigLoader().load_rule_set(str(path))

        assert exc_info.value.context["rule_id"] == "bad"
        assert exc_info.value.context["config_path"] == str(path)

    def test_disabled_rule_conditions_not_checked(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n  - id: dormant\n    enabled: false\n    decision: x\n"
            "    conditions:\n      - {field: a, operator: equals}\n"
        )

        assert ConfigLoader().load_rule_set(str(path)).rules == []

    def test_custom_operator_accepted(self, tmp_path):
        from decision_engine.rules import ConditionEvaluator

        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n  - id: near\n    decision: x\n"
            "    conditions:\n      - {field: a, operator: near, value: 10}\n"
        )
        evaluator = ConditionEvaluator()
        evaluator.register_operator("near", lambda a, b: abs(a - b) <= 1)

        rule_set = ConfigLoader(evaluator=evaluator).load_rule_set(str(path))

        assert [r.id for r in rule_set.rules] == ["near"]
        with pytest.raises(ConfigError, match="near"):
            ConfigLoader().load_rule_set(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("rules: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            ConfigLoader().load_rule_set(str(path))

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError, match="mapping"):
            ConfigLoader().load_rule_set(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigLoader().load_rule_set(str(tmp_path / "absent.yaml"))

    def test_has_config_changed(self, rules_dir):
        loader = ConfigLoader()
        path = rules_dir / "payments.yaml"
        loader.load_rule_set(str(path))

        assert not loader.has_config_changed(str(path))
        path.write_text(RULES_YAML + "\n# edited\n")
        assert loader.has_config_changed(str(path))

    def test_rule_definition_hash(self):
        a = RuleDefinition(id="a", name="A", decision="x", priority=1)
        b = RuleDefinition(id="b", name="B", decision="x", priority=1)
        c = RuleDefinition(id="a", name="A", decision="y", priority=1)

        assert a.config_hash == b.config_hash
        assert a.config_hash != c.config_hash


class TestErrors:
    """Test error classification and fingerprinting."""

    def test_config_error_defaults(self):
        error = ConfigError("bad file", config_path="rules.yaml")

        assert error.severity is ErrorSeverity.HIGH
        assert error.category is ErrorCategory.CONFIGURATION
        assert error.retryable is False
        assert isinstance(error, EngineError)

    def test_same_error_same_fingerprint(self):
        assert RuleError("x", rule_id="r1").fingerprint() == RuleError("y", rule_id="r1").fingerprint()
        assert RuleError("x", rule_id="r1").fingerprint() != RuleError("x", rule_id="r2").fingerprint()

    def test_error_serialization(self):
        data = RuleError("Unknown operator", rule_id="r1").to_dict()

        assert data["type"] == "RuleError"
        assert data["message"] == "Unknown operator"
        assert data["severity"] == "medium"
        assert data["category"] == "validation"
        assert data["context"]["rule_id"] == "r1"
        assert len(data["fingerprint"]) == 16


class TestBuildEngine:
    """Engines built from rule files."""

    @pytest.fixture
    def rule_set(self, rules_dir):
        return ConfigLoader().load_rules(str(rules_dir))

    @pytest.mark.asyncio
    async def test_fallback_when_nothing_matches(self, rule_set):
        engine = build_engine(rule_set, payment_context())

        result = await engine.make_outcome()

        assert result is engine.fallback
        assert result.decision == "approve"
        assert result.reason.is_rule_type(FallbackRule)

    @pytest.mark.asyncio
    async def test_main_rule_match(self, rule_set):
        engine = build_engine(rule_set, payment_context(amount=20000))

        result = await engine.make_outcome()

        assert result.decision == "review"
        assert result.reason.is_rule_type(FileConditionRule)

    @pytest.mark.asyncio
    async def test_override_rule_supersedes(self, rule_set):
        engine = build_engine(
            rule_set,
            payment_context(amount=20000, merchant="acme", trusted=["acme"]),
        )

        assert (await engine.make_outcome()).decision == "approve"

    @pytest.mark.asyncio
    async def test_non_overridable_rule_is_final(self, rule_set):
        engine = build_engine(
            rule_set,
            payment_context(country="KP", merchant="acme", trusted=["acme"]),
        )

        assert (await engine.make_outcome()).decision == "reject"

    @pytest.mark.asyncio
    async def test_config_fallback_used_without_file_fallback(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - {id: a, decision: x, conditions: [{field: go, value: true}]}\n")
        rule_set = ConfigLoader().load_rule_set(str(path))

        engine = build_engine(rule_set, {"go": False}, fallback_decision="default")

        assert (await engine.make_outcome()).decision == "default"

    @pytest.mark.asyncio
    async def test_engine_from_config(self, rules_dir):
        config = EngineConfig(rules_directory=str(rules_dir), fallback_decision="ignored")

        engine = engine_from_config(config, payment_context(amount=20000))

        assert len(engine.rules) == 2
        assert (await engine.make_outcome()).decision == "review"


class TestRulesReloader:
    """Hot reload of rule files into a live engine."""

    class CodeRule:
        priority = 5
        is_overridable = True

        def evaluate(self, context):
            return None

    @pytest.mark.asyncio
    async def test_force_reload_keeps_code_rules(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        code_rule = AnyRule(self.CodeRule())
        await engine.add_rule(code_rule)

        (rules_dir / "payments.yaml").write_text(
            "rules:\n  - {id: only, priority: 7, decision: hold}\n"
        )
        reloader = RulesReloader(engine, str(rules_dir))
        result = await reloader.force_reload()

        assert result.success
        assert result.rules_loaded == 1
        assert result.override_rules_loaded == 0
        assert result.rules_removed == 3
        assert engine.rules[0] is code_rule
        assert [str(r) for r in engine.rules] == ["CodeRule", "FileConditionRule"]
        assert (await engine.make_outcome()).decision == "hold"

    @pytest.mark.asyncio
    async def test_check_once_detects_changes(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        reloader = RulesReloader(engine, str(rules_dir))
        await reloader.force_reload()

        assert await reloader.check_once() is None

        (rules_dir / "more.json").write_text(json.dumps({
            "override_rules": [{"id": "always", "decision": "escalate"}],
        }))
        result = await reloader.check_once()

        assert result is not None and result.success
        assert len(engine.override_rules) == 2

    @pytest.mark.asyncio
    async def test_invalid_file_leaves_engine_untouched(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        before = engine.rules
        (rules_dir / "broken.yaml").write_text("rules:\n  - {decision: x}\n")

        result = await RulesReloader(engine, str(rules_dir)).force_reload()

        assert not result.success
        assert result.errors
        assert engine.rules == before

    @pytest.mark.asyncio
    async def test_reload_keeps_unwrapped_code_rules(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        plain_rule = self.CodeRule()
        plain_override = self.CodeRule()
        await engine.add_rule(plain_rule)
        await engine.add_override_rule(plain_override)

        result = await RulesReloader(engine, str(rules_dir)).force_reload()

        assert result.success
        assert result.rules_removed == 3
        assert plain_rule in engine.rules
        assert plain_override in engine.override_rules
        assert len(engine.rules) == 3
        assert len(engine.override_rules) == 2

    @pytest.mark.asyncio
    async def test_reload_keeps_condition_rules_added_in_code(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        code_rule = AnyRule(ConditionRule(RuleDefinition(
            id="manual",
            name="manual",
            decision="hold",
            priority=50,
            conditions=[{"field": "payment.merchant", "value": "shop"}],
        )))
        await engine.add_rule(code_rule)

        (rules_dir / "payments.yaml").write_text("rules: []\n")
        result = await RulesReloader(engine, str(rules_dir)).force_reload()

        assert result.success
        assert result.rules_removed == 3
        assert engine.rules == (code_rule,)
        assert (await engine.make_outcome()).decision == "hold"

    @pytest.mark.asyncio
    async def test_invalid_conditions_keep_previous_rules(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context(amount=20000))
        reloader = RulesReloader(engine, str(rules_dir))
        await reloader.force_reload()
        before = engine.rules

        (rules_dir / "payments.yaml").write_text(
            "rules:\n  - id: typo\n    decision: x\n"
            "    conditions:\n      - {field: a, operator: equals, value: 1}\n"
        )
        result = await reloader.check_once()

        assert result is not None
        assert not result.success
        assert "Unknown operator: equals" in result.errors[0]
        assert engine.rules == before
        assert (await engine.make_outcome()).decision == "review"

    @pytest.mark.asyncio
    async def test_watch_loop_reports_failed_reload(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        reloader = RulesReloader(
            engine,
            str(rules_dir),
            config=HotReloadConfig(enabled=True, check_interval_seconds=0.01, debounce_seconds=0),
        )
        notified = asyncio.Event()
        calls = []

        async def on_error(message, errors):
            calls.append((message, errors))
            notified.set()

        reloader.set_error_callback(on_error)
        await reloader.start()
        try:
            (rules_dir / "broken.yaml").write_text("rules:\n  - {decision: x}\n")
            await asyncio.wait_for(notified.wait(), timeout=5)
        finally:
            await reloader.stop()

        message, errors = calls[0]
        assert message == "Rules reload failed"
        assert errors and errors[0].startswith("Rules error:")
        assert len(engine.rules) == 2

    @pytest.mark.asyncio
    async def test_disabled_reloader_does_not_start(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        reloader = RulesReloader(engine, str(rules_dir), config=HotReloadConfig(enabled=False))

        await reloader.start()
        assert not reloader.running
        await reloader.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, rules_dir):
        engine = build_engine(ConfigLoader().load_rules(str(rules_dir)), payment_context())
        reloader = RulesReloader(
            engine,
            str(rules_dir),
            config=HotReloadConfig(enabled=True, check_interval_seconds=60),
        )

        await reloader.start()
        assert reloader.running
        await reloader.stop()
        assert not reloader.running


class TestLogging:

    def test_configure_json_logging(self):
        configure_logging("DEBUG", "json")
        try:
            assert structlog.is_configured()
            processors = structlog.get_config()["processors"]
            assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        finally:
            structlog.reset_defaults()
