"""Configuration file loading.

Reads the TOML configuration (a file, or a directory of `*.toml` files merged
in name order), follows `include` directives, validates every section and
builds the template registry and hook list consumed by the orchestrator.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import Configuration
from .constants import (
    CACHE_FILE,
    CONFIG_FILE,
    DEFAULT_ENGINE_COMMAND,
    DEFAULT_EXTRACT_TIMEOUT,
    DEFAULT_HOOK_TIMEOUT,
    DEFAULT_MAX_PARALLEL_HOOKS,
)
from .extractor import IMAGE_VARIABLE, build_command
from .models import ConfigError, DependencyPolicy, Dialect, HookCommand, Template
from .registry import TemplateRegistry
from .validation import ConfigField, ConfigItems, ConfigValidator

if TYPE_CHECKING:
    import logging

__all__ = [
    "ConfigLoader",
    "HOOK_SCHEMA",
    "PipelineConfig",
    "SETTINGS_SCHEMA",
    "TEMPLATE_SCHEMA",
    "expand_path",
    "merge",
]


def _positive(value: float) -> list[str]:
    return [] if float(value) > 0 else [f"Must be greater than 0, got {value}"]


def _command_line(value: str) -> list[str]:
    try:
        build_command(value, IMAGE_VARIABLE)
    except ValueError as e:
        return [f"Invalid command line {value!r}: {e}"]
    return []


SETTINGS_SCHEMA = ConfigItems(
    ConfigField("engine", str, default=DEFAULT_ENGINE_COMMAND, validator=_command_line, description="Palette engine command ([image] is the wallpaper path)"),
    ConfigField("extract_timeout", float, default=DEFAULT_EXTRACT_TIMEOUT, validator=_positive, description="Seconds before the engine is killed"),
    ConfigField("hook_timeout", float, default=DEFAULT_HOOK_TIMEOUT, validator=_positive, description="Default seconds before a hook is killed"),
    ConfigField("max_parallel_hooks", int, default=DEFAULT_MAX_PARALLEL_HOOKS, validator=_positive, description="Hooks running at the same time"),
    ConfigField("cache_file", str, default=str(CACHE_FILE), description="Palette cache location"),
    ConfigField("fingerprint", str, default="content", choices=["content", "mtime"], description="How wallpaper changes are detected"),
    ConfigField("include", list, default=[], description="Extra configuration files to merge"),
)

TEMPLATE_SCHEMA = ConfigItems(
    ConfigField("input_path", str, required=True, description="Template source file"),
    ConfigField("output_path", str, required=True, description="Rendered file destination"),
    ConfigField("dialect", str, default=Dialect.HEX.value, choices=[d.value for d in Dialect], description="Placeholder syntax and color format"),
    ConfigField("enabled", bool, default=True, description="Render this template"),
    ConfigField("post_hook", str, description="Command to run once this template rendered"),
)

HOOK_SCHEMA = ConfigItems(
    ConfigField("command", str, required=True, description="Shell command reloading an application"),
    ConfigField("cwd", str, description="Working directory of the command"),
    ConfigField("depends_on", (list, str), default=[], description="Template ids this hook needs"),
    ConfigField("timeout", float, validator=_positive, description="Seconds before the hook is killed"),
    ConfigField("require", str, default=DependencyPolicy.ALL.value, choices=[p.value for p in DependencyPolicy], description="all/any dependencies must render"),
)

ROOT_SCHEMA = ConfigItems(
    ConfigField("wallhue", dict, default={}),
    ConfigField("templates", dict, default={}, children=TEMPLATE_SCHEMA),
    ConfigField("hooks", dict, default={}, children=HOOK_SCHEMA),
)


def expand_path(path: str) -> str:
    """Expand `~` and environment variables in a path."""
    return str(Path(os.path.expandvars(path)).expanduser())


def merge(merged: dict[str, Any], obj2: dict[str, Any]) -> dict[str, Any]:
    """Merge the content of obj2 into merged.

    Eg:
        merge({"a": {"b": 1}}, {"a": {"c": 2}}) == {"a": {"b": 1, "c": 2}}
    """
    for key, value in obj2.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merge(merged[key], value)
        elif key in merged and isinstance(merged[key], list) and isinstance(value, list):
            merged[key] += value
        else:
            merged[key] = value
    return merged


@dataclass
class PipelineConfig:
    """Everything the orchestrator needs, built from the configuration file."""

    settings: Configuration
    templates: TemplateRegistry = field(default_factory=TemplateRegistry)
    hooks: list[HookCommand] = field(default_factory=list)


class ConfigLoader:
    """Loads, merges and validates configuration files."""

    def __init__(self, log: logging.Logger) -> None:
        self.log = log

    async def load(self, config_filename: str = "") -> PipelineConfig:
        """Load the configuration and build the pipeline description.

        Args:
            config_filename: File or directory; defaults to CONFIG_FILE

        Raises:
            ConfigError: if files are missing, unparsable or invalid
        """
        raw = self._open_config(config_filename)
        return self.build(raw)

    def build(self, raw: dict[str, Any]) -> PipelineConfig:
        """Validate a raw configuration mapping and build the pipeline description.

        Raises:
            ConfigError: listing every validation problem
        """
        validator = ConfigValidator(raw, "root", self.log)
        errors = validator.validate(ROOT_SCHEMA)
        if isinstance(raw.get("wallhue", {}), dict):
            settings_validator = ConfigValidator(raw.get("wallhue", {}), "wallhue", self.log)
            errors.extend(settings_validator.validate(SETTINGS_SCHEMA))
            settings_validator.warn_unknown_keys(SETTINGS_SCHEMA)
        if errors:
            for error in errors:
                self.log.error(error)
            raise ConfigError(errors)

        settings = Configuration(raw.get("wallhue", {}), logger=self.log, schema=SETTINGS_SCHEMA)
        registry = TemplateRegistry()
        hooks: list[HookCommand] = []

        for name, section in raw.get("templates", {}).items():
            cfg = Configuration(section, logger=self.log, schema=TEMPLATE_SCHEMA)
            registry.add(
                Template(
                    id=name,
                    source=expand_path(cfg.get_str("input_path")),
                    destination=expand_path(cfg.get_str("output_path")),
                    dialect=Dialect(cfg.get_str("dialect")),
                    enabled=cfg.get_bool("enabled", True),
                )
            )
            post_hook = cfg.get_str("post_hook")
            if post_hook:
                hooks.append(HookCommand(name=f"{name}.post_hook", command=post_hook, depends_on=(name,)))

        for name, section in raw.get("hooks", {}).items():
            cfg = Configuration(section, logger=self.log, schema=HOOK_SCHEMA)
            cwd = cfg.get_str("cwd")
            timeout = cfg.get("timeout")
            hooks.append(
                HookCommand(
                    name=name,
                    command=cfg.get_str("command"),
                    cwd=expand_path(cwd) if cwd else None,
                    depends_on=tuple(str(dep) for dep in cfg.get_list("depends_on")),
                    timeout=float(timeout) if timeout is not None else None,  # type: ignore[arg-type]
                    require=DependencyPolicy(cfg.get_str("require")),
                )
            )

        for hook in hooks:
            for dependency in hook.depends_on:
                if dependency not in registry:
                    self.log.warning("Hook %s depends on unknown template %s", hook.name, dependency)

        return PipelineConfig(settings=settings, templates=registry, hooks=hooks)

    def _open_config(self, config_filename: str = "") -> dict[str, Any]:
        """Load config file(s) into a dictionary, following includes."""
        fname = Path(expand_path(config_filename)) if config_filename else CONFIG_FILE
        config = self._load_config_directory(fname) if fname.is_dir() else self._load_config_file(fname)

        for extra_config in list(config.get("wallhue", {}).get("include", [])):
            merge(config, self._open_config(extra_config))

        return config

    def _load_config_directory(self, directory: Path) -> dict[str, Any]:
        """Load and merge all .toml files from a directory."""
        config: dict[str, Any] = {}
        for toml_file in sorted(f.name for f in directory.iterdir()):
            if not toml_file.endswith(".toml"):
                continue
            merge(config, self._load_config_file(directory / toml_file))
        return config

    def _load_config_file(self, fname: Path) -> dict[str, Any]:
        """Load a single TOML file.

        Raises:
            ConfigError: If file not found or has syntax errors
        """
        if not fname.exists():
            self.log.critical("Config file not found! Please create %s", fname)
            raise ConfigError([f"Config file not found: {fname}"])
        self.log.info("Loading %s", fname)
        with fname.open("rb") as f:
            try:
                return tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                self.log.critical("Problem reading %s: %s", fname, e)
                raise ConfigError([f"Problem reading {fname}: {e}"]) from e
