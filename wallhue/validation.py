"""Declarative configuration schemas.

A section is described by a ConfigItems list of ConfigField. ConfigValidator
reports every problem it finds (missing required keys, wrong types, values
outside `choices`, custom validator messages, problems in nested tables) and
warns about unknown keys, suggesting the closest known one.
"""

import difflib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import BOOL_STRINGS

__all__ = ["ConfigField", "ConfigItems", "ConfigValidator", "format_config_error"]


@dataclass
class ConfigField:
    """One expected key of a section.

    Attributes:
        name: Key name
        field_type: Expected type, or a tuple of accepted types
        required: The key must be present
        default: Value used when the key is absent
        description: Shown in documentation and error messages
        choices: Accepted values, when the key is an enumeration
        validator: Extra check returning a list of problems
        children: Schema applied to every sub-table of a dict field
    """

    name: str
    field_type: type | tuple[type, ...] = str
    required: bool = False
    default: Any = None
    description: str = ""
    choices: list | None = None
    validator: Callable[[Any], list[str]] | None = None
    children: "ConfigItems | None" = None

    @property
    def types(self) -> tuple[type, ...]:
        """Return the accepted types."""
        return self.field_type if isinstance(self.field_type, tuple) else (self.field_type,)

    @property
    def type_name(self) -> str:
        """Return the accepted types, human readable."""
        return " or ".join(t.__name__ for t in self.types)


class ConfigItems(list):
    """A schema: a list of ConfigField items."""

    def __init__(self, *args: ConfigField) -> None:
        super().__init__(args)


def format_config_error(section: str, field: str, message: str, suggestion: str = "") -> str:
    """Return the standard error line for a field.

    Eg:
        [templates.bar] Config error for 'dialect': Invalid value 'hsl' -> Valid options: ...
    """
    msg = f"[{section}] Config error for '{field}': {message}"
    return f"{msg} -> {suggestion}" if suggestion else msg


def _matches(expected: type, value: Any) -> bool:  # noqa: ANN401
    """Tell whether a TOML value is acceptable for `expected`."""
    if expected is bool:
        return isinstance(value, bool) or (isinstance(value, str) and value.lower() in BOOL_STRINGS)
    if expected in (int, float):
        if isinstance(value, bool):
            return False
        try:
            expected(value)
        except (TypeError, ValueError):
            return False
        return True
    return isinstance(value, expected)


_TYPE_HINTS: dict[type, str] = {
    bool: "Use true/false (without quotes)",
    int: "Use {name} = 42 (without quotes)",
    float: "Use {name} = 1.5 (without quotes)",
    str: 'Use {name} = "value"',
    list: 'Use {name} = ["item1", "item2"]',
}

_REQUIRED_HINTS: dict[type, str] = {
    str: 'Add {name} = "value" to [{section}]',
    int: "Add {name} = {example} to [{section}]",
    float: "Add {name} = {example} to [{section}]",
    bool: "Add {name} = true/false to [{section}]",
    list: 'Add {name} = ["item"] to [{section}]',
}


class ConfigValidator:
    """Checks one configuration section against a schema."""

    def __init__(self, config: dict, section: str, logger: logging.Logger) -> None:
        self.config = config
        self.section = section
        self.log = logger

    def _error(self, field: str, message: str, suggestion: str = "") -> str:
        return format_config_error(self.section, field, message, suggestion)

    def validate(self, schema: ConfigItems) -> list[str]:
        """Return every problem found in the section (empty when valid)."""
        errors: list[str] = []
        for field_def in schema:
            value = self.config.get(field_def.name)
            if value is None:
                if field_def.required:
                    errors.append(self._error(field_def.name, "Missing required field", self._required_hint(field_def)))
                continue
            errors.extend(self._check_value(field_def, value))
        return errors

    def _check_value(self, field_def: ConfigField, value: Any) -> list[str]:  # noqa: ANN401
        if not any(_matches(t, value) for t in field_def.types):
            hint = _TYPE_HINTS.get(field_def.types[0], "") if len(field_def.types) == 1 else ""
            return [self._error(field_def.name, f"Expected {field_def.type_name}, got {type(value).__name__}", hint.format(name=field_def.name))]

        errors: list[str] = []
        if field_def.choices is not None and value not in field_def.choices:
            options = ", ".join(repr(c) for c in field_def.choices)
            errors.append(self._error(field_def.name, f"Invalid value {value!r}", f"Valid options: {options}"))
        if field_def.validator:
            errors.extend(self._error(field_def.name, problem) for problem in field_def.validator(value))
        if field_def.children is not None and isinstance(value, dict):
            child_errors = self._check_children(field_def.name, field_def.children, value)
            if child_errors:
                errors.append("\n".join(child_errors))
        return errors

    def _check_children(self, name: str, schema: ConfigItems, tables: dict) -> list[str]:
        """Validate every sub-table of `tables`, each as section `name.key`."""
        errors: list[str] = []
        for key, table in tables.items():
            if not isinstance(table, dict):
                errors.append(format_config_error(f"{self.section}.{name}", key, f"Expected dict, got {type(table).__name__}"))
                continue
            child = ConfigValidator(table, f"{name}.{key}", self.log)
            errors.extend(child.validate(schema))
            child.warn_unknown_keys(schema)
        return errors

    def _required_hint(self, field_def: ConfigField) -> str:
        template = _REQUIRED_HINTS.get(field_def.types[0], "Add '{name}' to [{section}]")
        example = field_def.default if field_def.default is not None else 0
        return template.format(name=field_def.name, section=self.section, example=example)

    def warn_unknown_keys(self, schema: ConfigItems) -> list[str]:
        """Log a warning for every key the schema does not know.

        Returns:
            The warnings
        """
        known = [f.name for f in schema]
        warnings = []
        for key in self.config:
            if key in known:
                continue
            close = difflib.get_close_matches(key, known, n=1)
            if close:
                msg = f"[{self.section}] Unknown option '{key}' (did you mean '{close[0]}'?)"
            else:
                msg = f"[{self.section}] Unknown option '{key}' - will be ignored"
            self.log.warning(msg)
            warnings.append(msg)
        return warnings
