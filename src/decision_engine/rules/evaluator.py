"""Condition evaluation for config-driven rules."""

import re
import operator
from collections.abc import Mapping
from typing import Any, Callable

from ..core.errors import RuleError


# Field path that refers to the evaluated value itself
SELF_PATH = "."

# Operators handled inline rather than through the OPERATORS table
SPECIAL_OPERATORS = frozenset({"exists", "not_exists", "is_type", "regex", "all", "any"})


class ConditionEvaluator:
    """
    Evaluates condition trees against an arbitrary context object.

    Supports:
    - Comparison operators (eq, ne, gt, lt, gte, lte)
    - Logical operators (and, or, not)
    - String matching (contains, startswith, endswith, regex)
    - Existence checks (exists, not_exists)
    - Type checks (is_type)
    - List operations (in, not_in, all, any)

    Field paths are dot-separated and walk mappings by key, lists and
    tuples by index, and any other object by attribute. A string value
    starting with "$" is read from the context at that path.
    """

    OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
        "eq": operator.eq,
        "ne": operator.ne,
        "gt": operator.gt,
        "lt": operator.lt,
        "gte": operator.ge,
        "lte": operator.le,
        "contains": lambda a, b: b in a if hasattr(a, "__contains__") else False,
        "startswith": lambda a, b: str(a).startswith(str(b)),
        "endswith": lambda a, b: str(a).endswith(str(b)),
        "in": lambda a, b: a in b if hasattr(b, "__contains__") else False,
        "not_in": lambda a, b: a not in b if hasattr(b, "__contains__") else True,
    }

    TYPES: dict[str, Any] = {
        "string": str,
        "str": str,
        "int": int,
        "integer": int,
        "float": float,
        "number": (int, float),
        "bool": bool,
        "boolean": bool,
        "list": (list, tuple),
        "array": (list, tuple),
        "dict": Mapping,
        "object": Mapping,
        "null": type(None),
        "none": type(None),
    }

    def __init__(self):
        self._custom_operators: dict[str, Callable[[Any, Any], bool]] = {}

    def register_operator(
        self,
        name: str,
        func: Callable[[Any, Any], bool],
    ) -> None:
        """Register a custom operator."""
        self._custom_operators[name] = func

    def evaluate(self, conditions: list[dict[str, Any]], context: Any) -> bool:
        """
        Evaluate a list of conditions (AND by default).

        Returns True if all conditions pass; an empty list always passes.
        """
        return all(self._evaluate_condition(c, context) for c in conditions)

    def validate(self, conditions: list[dict[str, Any]]) -> None:
        """
        Check a condition list without evaluating it.

        Raises RuleError for a missing field, an unknown operator, a regex
        that does not compile or an unknown type name.
        """
        for condition in conditions:
            self._validate_condition(condition)

    def _validate_condition(self, condition: dict[str, Any]) -> None:
        if not isinstance(condition, dict):
            raise RuleError(f"Condition must be a mapping: {condition!r}")

        logical = [key for key in ("and", "or") if key in condition]
        if logical:
            for key in logical:
                if not isinstance(condition[key], list):
                    raise RuleError(f"'{key}' expects a list: {condition}")
                for child in condition[key]:
                    self._validate_condition(child)
            return

        if "not" in condition:
            self._validate_condition(condition["not"])
            return

        if condition.get("field") is None:
            raise RuleError(f"Condition missing 'field': {condition}")

        op = condition.get("operator", "eq")
        if not isinstance(op, str) or (
            op not in SPECIAL_OPERATORS
            and op not in self.OPERATORS
            and op not in self._custom_operators
        ):
            raise RuleError(f"Unknown operator: {op}")

        if op == "regex":
            pattern = condition.get("value", "")
            try:
                re.compile(pattern)
            except (re.error, TypeError) as e:
                raise RuleError(f"Invalid regex pattern: {pattern} - {e}")

        if op == "is_type" and str(condition.get("value", "")).lower() not in self.TYPES:
            raise RuleError(f"Unknown type: {condition.get('value')}")

        if op in ("all", "any"):
            sub_condition = condition.get("condition", {})
            if not isinstance(sub_condition, dict):
                raise RuleError(f"'{op}' expects a 'condition' mapping: {condition}")
            self._validate_condition({"field": SELF_PATH, **sub_condition})

    def _evaluate_condition(self, condition: dict[str, Any], context: Any) -> bool:
        """Evaluate a single condition."""
        if "and" in condition:
            return all(self._evaluate_condition(c, context) for c in condition["and"])

        if "or" in condition:
            return any(self._evaluate_condition(c, context) for c in condition["or"])

        if "not" in condition:
            return not self._evaluate_condition(condition["not"], context)

        field = condition.get("field")
        if field is None:
            raise RuleError(f"Condition missing 'field': {condition}")

        value = self.resolve_path(context, field)
        op = condition.get("operator", "eq")

        if op == "exists":
            return value is not None

        if op == "not_exists":
            return value is None

        if op == "is_type":
            return self._check_type(value, condition.get("value", ""))

        if op == "regex":
            pattern = condition.get("value", "")
            try:
                return bool(re.search(pattern, str(value)))
            except re.error as e:
                raise RuleError(f"Invalid regex pattern: {pattern} - {e}")

        # all/any: sub-condition paths are relative to each item
        if op in ("all", "any"):
            sub_condition = {"field": SELF_PATH, **condition.get("condition", {})}
            if not isinstance(value, (list, tuple)):
                return False
            check = all if op == "all" else any
            return check(self._evaluate_condition(sub_condition, item) for item in value)

        expected = self._resolve_value(condition.get("value"), context)

        op_func = self.OPERATORS.get(op) or self._custom_operators.get(op)
        if not op_func:
            raise RuleError(f"Unknown operator: {op}")

        try:
            return bool(op_func(value, expected))
        except TypeError:
            # Incomparable values (e.g. None > 3) simply don't match
            return False
        except Exception as e:
            raise RuleError(f"Error evaluating condition: {e}")

    def resolve_path(self, data: Any, path: str) -> Any:
        """Navigate a dot-separated path; missing segments yield None."""
        if path == SELF_PATH:
            return data

        current = data
        for part in path.split("."):
            if current is None:
                return None

            if isinstance(current, Mapping):
                current = current.get(part)
            elif isinstance(current, (list, tuple)):
                try:
                    index = int(part)
                except ValueError:
                    return None
                current = current[index] if -len(current) <= index < len(current) else None
            else:
                current = getattr(current, part, None)

        return current

    def _resolve_value(self, value: Any, context: Any) -> Any:
        """Resolve a value that might be a $path reference."""
        if isinstance(value, str) and value.startswith("$"):
            return self.resolve_path(context, value[1:])
        return value

    def _check_type(self, value: Any, expected_type: str) -> bool:
        """Check if value is of expected type."""
        type_name = str(expected_type).lower()
        expected = self.TYPES.get(type_name)
        if expected is None:
            raise RuleError(f"Unknown type: {expected_type}")

        # bool is a subclass of int; keep "integer"/"number" strict
        if isinstance(value, bool) and type_name not in ("bool", "boolean"):
            return False
        return isinstance(value, expected)
