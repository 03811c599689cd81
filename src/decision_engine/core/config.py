"""Configuration loading and validation."""

import os
import json
import hashlib
from pathlib import Path
from typing import Any, Optional, Literal
from dataclasses import dataclass, field

import yaml
import jsonschema
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError, RuleError


ENV_PREFIX = "DECISION_ENGINE_"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO")
    format: Literal["console", "json"] = Field(default="console")


class HotReloadConfig(BaseModel):
    """Configuration for rule file hot-reload."""
    enabled: bool = Field(default=False)
    check_interval_seconds: float = Field(default=10.0, gt=0)
    debounce_seconds: float = Field(default=2.0, ge=0)  # Wait for writes to settle


class EngineConfig(BaseModel):
    """Main engine configuration."""
    name: str = Field(default="decision-engine")
    rules_directory: str = Field(default="./config/rules")

    # Used when no rule file declares a fallback
    fallback_decision: Any = Field(default=None)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    hot_reload: HotReloadConfig = Field(default_factory=HotReloadConfig)

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """
        Build config from DECISION_ENGINE_* environment variables.

        A .env file is loaded first when present; variables already set in
        the process environment take precedence over it.
        """
        load_dotenv(dotenv_path)

        data: dict[str, Any] = {}
        if os.getenv(f"{ENV_PREFIX}NAME"):
            data["name"] = os.environ[f"{ENV_PREFIX}NAME"]
        if os.getenv(f"{ENV_PREFIX}RULES_DIRECTORY"):
            data["rules_directory"] = os.environ[f"{ENV_PREFIX}RULES_DIRECTORY"]
        if os.getenv(f"{ENV_PREFIX}FALLBACK_DECISION"):
            data["fallback_decision"] = os.environ[f"{ENV_PREFIX}FALLBACK_DECISION"]

        logging_data = {}
        if os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            logging_data["level"] = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]
        if os.getenv(f"{ENV_PREFIX}LOG_FORMAT"):
            logging_data["format"] = os.environ[f"{ENV_PREFIX}LOG_FORMAT"]
        if logging_data:
            data["logging"] = logging_data

        reload_enabled = os.getenv(f"{ENV_PREFIX}HOT_RELOAD")
        if reload_enabled:
            data["hot_reload"] = {
                "enabled": reload_enabled.lower() in ("1", "true", "yes", "on"),
            }

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid environment config: {e}")


# Shape of a single rule entry in a rules file
_RULE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "decision"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "enabled": {"type": "boolean"},
        "priority": {"type": "integer"},
        "overridable": {"type": "boolean"},
        "decision": {},
        "conditions": {"type": "array", "items": {"type": "object"}},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "additionalProperties": False,
}

RULES_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "rules": {"type": "array", "items": _RULE_SCHEMA},
        "override_rules": {"type": "array", "items": _RULE_SCHEMA},
        "fallback": {
            "type": "object",
            "required": ["decision"],
            "properties": {"decision": {}},
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


@dataclass
class RuleDefinition:
    """A single config-driven rule definition."""
    id: str
    name: str
    decision: Any
    description: str = ""
    enabled: bool = True
    priority: int = 0
    overridable: bool = True

    # Conditions that must all be true for the rule to fire
    conditions: list[dict[str, Any]] = field(default_factory=list)

    tags: list[str] = field(default_factory=list)
    config_hash: str = ""

    def __post_init__(self):
        if not self.config_hash:
            self.config_hash = self._compute_hash()

    def _compute_hash(self) -> str:
        """Compute hash of rule definition."""
        content = json.dumps({
            "priority": self.priority,
            "overridable": self.overridable,
            "conditions": self.conditions,
            "decision": self.decision,
        }, sort_keys=True, default=str)
        return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass
class RuleSetDefinition:
    """Main rules, override rules and fallback loaded from config."""
    rules: list[RuleDefinition] = field(default_factory=list)
    override_rules: list[RuleDefinition] = field(default_factory=list)
    has_fallback: bool = False
    fallback_decision: Any = None

    def merge(self, other: "RuleSetDefinition") -> None:
        """Merge another rule set into this one; a later fallback wins."""
        self.rules.extend(other.rules)
        self.override_rules.extend(other.override_rules)
        if other.has_fallback:
            self.has_fallback = True
            self.fallback_decision = other.fallback_decision


class ConfigLoader:
    """Loads and validates YAML/JSON configurations."""

    RULE_FILE_PATTERNS = ("*.yaml", "*.yml", "*.json")

    def __init__(self, config_dir: str = "./config", evaluator: Optional[Any] = None):
        """
        Args:
            config_dir: Directory holding engine.yaml and the rules directory
            evaluator: ConditionEvaluator used to check rule conditions at
                load time, so custom operators it registers are accepted
        """
        if evaluator is None:
            from ..rules.evaluator import ConditionEvaluator
            evaluator = ConditionEvaluator()

        self.config_dir = Path(config_dir)
        self.evaluator = evaluator
        self._hashes: dict[str, str] = {}

    def load_engine_config(self, path: Optional[str] = None) -> EngineConfig:
        """Load main engine configuration."""
        if path is None:
            path = self.config_dir / "engine.yaml"
        else:
            path = Path(path)

        data = self._load_file(path)
        try:
            return EngineConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid engine config: {e}", config_path=str(path))

    def load_rule_set(self, path: str) -> RuleSetDefinition:
        """Load a single rules file."""
        path = Path(path)
        data = self._load_file(path)

        try:
            jsonschema.validate(data, RULES_FILE_SCHEMA)
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigError(
                f"Invalid rules file at {location}: {e.message}",
                config_path=str(path),
            )

        rule_set = RuleSetDefinition(
            rules=self._parse_rules(data.get("rules", []), path),
            override_rules=self._parse_rules(data.get("override_rules", []), path),
        )
        if "fallback" in data:
            rule_set.has_fallback = True
            rule_set.fallback_decision = data["fallback"]["decision"]

        return rule_set

    def load_rules(self, directory: Optional[str] = None) -> RuleSetDefinition:
        """Load and merge all rule files from a directory, in path order."""
        if directory is None:
            directory = self.config_dir / "rules"
        else:
            directory = Path(directory)

        merged = RuleSetDefinition()
        if not directory.exists():
            return merged

        for file_path in self.rule_files(directory):
            merged.merge(self.load_rule_set(str(file_path)))

        return merged

    def rule_files(self, directory: Path) -> list[Path]:
        """List rule files under a directory, sorted by path."""
        files: list[Path] = []
        for pattern in self.RULE_FILE_PATTERNS:
            files.extend(directory.glob(f"**/{pattern}"))
        return sorted(files)

    def has_config_changed(self, path: str) -> bool:
        """Check if a config file has changed since last load."""
        path = Path(path)
        current_hash = self._compute_file_hash(path)
        previous_hash = self._hashes.get(str(path))
        return current_hash != previous_hash

    def _parse_rules(
        self,
        entries: list[dict[str, Any]],
        path: Path,
    ) -> list[RuleDefinition]:
        """Build enabled RuleDefinitions from validated entries."""
        rules = []
        for entry in entries:
            rule = RuleDefinition(
                id=entry["id"],
                name=entry.get("name", entry["id"]),
                decision=entry["decision"],
                description=entry.get("description", ""),
                enabled=entry.get("enabled", True),
                priority=entry.get("priority", 0),
                overridable=entry.get("overridable", True),
                conditions=entry.get("conditions", []),
                tags=entry.get("tags", []),
            )
            if not rule.enabled:
                continue

            try:
                self.evaluator.validate(rule.conditions)
            except RuleError as e:
                raise ConfigError(
                    f"Invalid conditions in rule '{rule.id}': {e.message}",
                    config_path=str(path),
                    context={"rule_id": rule.id},
                )
            rules.append(rule)
        return rules

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            self._hashes[str(path)] = hashlib.sha256(content.encode()).hexdigest()[:16]

            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError(
                f"Config root must be a mapping, got {type(data).__name__}",
                config_path=str(path),
            )
        return data

    def _compute_file_hash(self, path: Path) -> str:
        """Compute hash of file contents."""
        if not path.exists():
            return ""
        content = path.read_text()
        return hashlib.sha256(content.encode()).hexdigest()[:16]
