"""Typed access to configuration sections."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    import logging

    from .validation import ConfigItems

__all__ = ["BOOL_STRINGS", "Configuration", "coerce_to_bool"]

ConfigValue = float | bool | str | list | dict
_Number = TypeVar("_Number", int, float)

FALSY_STRINGS = frozenset({"false", "no", "off", "0", "disabled"})
BOOL_STRINGS = FALSY_STRINGS | {"true", "yes", "on", "1", "enabled"}


def coerce_to_bool(value: ConfigValue | None, default: bool = False) -> bool:
    """Read a loosely typed boolean.

    None gives `default`, blank strings and the FALSY_STRINGS give False, any
    other string is True; other values use their truthiness.
    """
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        return bool(text) and text not in FALSY_STRINGS
    return bool(value)


class Configuration(dict):
    """One configuration table.

    Lookups fall back to the defaults of the schema (if any), then to the
    default given by the caller. Invalid numbers are logged, not raised.
    """

    def __init__(self, *args: Any, logger: logging.Logger, schema: ConfigItems | None = None, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(*args, **kwargs)
        self.log = logger
        self.defaults: dict[str, ConfigValue] = {}
        if schema:
            self.set_schema(schema)

    def set_schema(self, schema: ConfigItems) -> None:
        """Take the default values from `schema`."""
        self.defaults = {f.name: f.default for f in schema if f.default is not None}

    def get(self, name: str, default: ConfigValue | None = None) -> ConfigValue | None:  # type: ignore[override]
        if name in self:
            return self[name]  # type: ignore[no-any-return]
        return self.defaults.get(name, default)

    def _number(self, name: str, default: _Number, convert: Callable[[Any], _Number]) -> _Number:
        value = self.get(name)
        if value is None:
            return default
        try:
            return convert(value)
        except (TypeError, ValueError):
            self.log.warning("%s: %r is not a valid %s, using %s", name, value, convert.__name__, default)
            return default

    def get_int(self, name: str, default: int = 0) -> int:
        return self._number(name, default, int)

    def get_float(self, name: str, default: float = 0.0) -> float:
        return self._number(name, default, float)

    def get_bool(self, name: str, default: bool = False) -> bool:
        return coerce_to_bool(self.get(name), default)

    def get_str(self, name: str, default: str = "") -> str:
        value = self.get(name)
        return default if value is None else str(value)

    def get_list(self, name: str) -> list[Any]:
        """Return a list value; a scalar is wrapped in a one item list."""
        value = self.get(name)
        if value is None:
            return []
        return value if isinstance(value, list) else [value]
