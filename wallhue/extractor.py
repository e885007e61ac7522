"""Palette extraction through an external engine.

The engine is run with the wallpaper path and must print the palette on
stdout, either as one `name value` entry per line::

    background #101010
    foreground #eeeeee
    color0 #000000
    ...
    color15 #ffffff

(`name=value` and `name: value` are accepted too), as sixteen bare `#rrggbb`
lines taken as color0..color15 in order (named `background`, `foreground`
and `cursor` entries may accompany them), or as a pywal style `colors.json`
document with `special` and `colors` objects.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
from typing import Any

from .constants import DEFAULT_ENGINE_COMMAND, DEFAULT_EXTRACT_TIMEOUT
from .logging_setup import get_logger
from .models import PALETTE_SIZE, SPECIAL_NAMES, Color, ExtractionErrorKind, ExtractionFailed, Palette
from .process import CommandRunner, CommandTimeoutError, SubprocessRunner

__all__ = ["PaletteExtractor", "build_command", "parse_palette"]

IMAGE_VARIABLE = "[image]"

_BARE_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
_ENTRY_RE = re.compile(r"^([A-Za-z][\w-]*)\s*(?:[=:]\s*|\s+)(\S.*?)\s*$")
_COMMENT_PREFIXES = ("//", ";")
_INDEXED_NAMES = tuple(f"color{i}" for i in range(PALETTE_SIZE))


def build_command(template: str, image_path: str) -> list[str]:
    """Return the engine argv for `image_path`.

    Every `[image]` variable is replaced, or the path is appended when the
    template has none.

    Raises:
        ValueError: the template is empty or not valid shell syntax
    """
    args = shlex.split(template)
    if not args:
        msg = "empty command"
        raise ValueError(msg)
    if not any(IMAGE_VARIABLE in arg for arg in args):
        return [*args, image_path]
    return [arg.replace(IMAGE_VARIABLE, image_path) for arg in args]


def _parse_error(message: str) -> ExtractionFailed:
    return ExtractionFailed(ExtractionErrorKind.PARSE_ERROR, message)


def _to_color(name: str, token: Any) -> Color:
    if not isinstance(token, str):
        msg = f"Invalid value for {name}: {token!r}"
        raise _parse_error(msg)
    try:
        return Color.from_hex(token)
    except ValueError as e:
        msg = f"Invalid color for {name}: {token!r}"
        raise _parse_error(msg) from e


def _assemble(entries: dict[str, Color]) -> Palette:
    missing = [name for name in _INDEXED_NAMES if name not in entries]
    if missing:
        msg = f"Missing {', '.join(missing)}"
        raise _parse_error(msg)
    return Palette(
        colors=tuple(entries[name] for name in _INDEXED_NAMES),
        **{name: entries[name] for name in SPECIAL_NAMES if name in entries},
    )


def _parse_json(text: str) -> Palette:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON output: {e}"
        raise _parse_error(msg) from e
    if not isinstance(data, dict) or not isinstance(data.get("colors"), dict):
        msg = "JSON output needs a 'colors' object"
        raise _parse_error(msg)

    entries: dict[str, Color] = {}
    special = data.get("special") or {}
    if not isinstance(special, dict):
        msg = "JSON 'special' must be an object"
        raise _parse_error(msg)
    for name in SPECIAL_NAMES:
        if name in special:
            entries[name] = _to_color(name, special[name])
    for name in _INDEXED_NAMES:
        if name in data["colors"]:
            entries[name] = _to_color(name, data["colors"][name])
    return _assemble(entries)


def _parse_lines(text: str, log: logging.Logger | None = None) -> Palette:
    entries: dict[str, Color] = {}
    positional: list[Color] = []
    known = set(_INDEXED_NAMES) | set(SPECIAL_NAMES)
    for lineno, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue
        if _BARE_COLOR_RE.match(line):
            positional.append(_to_color(f"line {lineno}", line))
            continue
        match = _ENTRY_RE.match(line)
        if not match:
            msg = f"Line {lineno}: expected 'name value' or '#rrggbb', got {line!r}"
            raise _parse_error(msg)
        name, token = match.group(1).lower(), match.group(2)
        if name not in known:
            if log:
                log.debug("Ignoring engine entry %s", name)
            continue
        if name in entries:
            msg = f"Line {lineno}: duplicated entry {name}"
            raise _parse_error(msg)
        entries[name] = _to_color(name, token)

    if positional:
        named = [name for name in _INDEXED_NAMES if name in entries]
        if named:
            msg = f"Bare colors cannot be mixed with named indexed colors ({', '.join(named)})"
            raise _parse_error(msg)
        if len(positional) != PALETTE_SIZE:
            msg = f"Expected {PALETTE_SIZE} bare colors, got {len(positional)}"
            raise _parse_error(msg)
        entries.update(zip(_INDEXED_NAMES, positional, strict=True))
    return _assemble(entries)


def parse_palette(text: str, log: logging.Logger | None = None) -> Palette:
    """Parse engine output into a palette.

    Raises:
        ExtractionFailed: with kind PARSE_ERROR when any indexed color is
            missing or a color token is malformed
    """
    stripped = text.strip()
    if not stripped:
        msg = "Empty engine output"
        raise _parse_error(msg)
    if stripped.startswith("{"):
        return _parse_json(stripped)
    return _parse_lines(stripped, log)


class PaletteExtractor:
    """Runs the palette engine against an image and parses its output."""

    def __init__(
        self,
        command: str = DEFAULT_ENGINE_COMMAND,
        timeout: float = DEFAULT_EXTRACT_TIMEOUT,
        runner: CommandRunner | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.runner: CommandRunner = runner or SubprocessRunner()
        self.log = log or get_logger("wallhue.extractor")

    async def extract(self, image_path: str) -> Palette:
        """Return the palette of `image_path`.

        Raises:
            ExtractionFailed: SPAWN_ERROR, NON_ZERO_EXIT, PARSE_ERROR or TIMEOUT
        """
        try:
            argv = build_command(self.command, image_path)
        except ValueError as e:
            self.log.error("Invalid palette engine command %r: %s", self.command, e)
            raise ExtractionFailed(ExtractionErrorKind.SPAWN_ERROR, f"invalid engine command {self.command!r}: {e}") from e
        self.log.info("Extracting palette from %s", image_path)
        self.log.debug("Running %s", argv)
        try:
            result = await self.runner.run(argv, timeout=self.timeout)
        except CommandTimeoutError as e:
            self.log.error("Palette engine timed out on %s", image_path)
            raise ExtractionFailed(ExtractionErrorKind.TIMEOUT, str(e)) from e
        except OSError as e:
            self.log.error("Cannot run palette engine %s: %s", argv[0], e)
            raise ExtractionFailed(ExtractionErrorKind.SPAWN_ERROR, f"{argv[0]}: {e.strerror or e}") from e

        if result.returncode != 0:
            self.log.error("Palette engine exited with %d: %s", result.returncode, result.stderr.strip())
            raise ExtractionFailed(
                ExtractionErrorKind.NON_ZERO_EXIT,
                result.stderr.strip() or f"exit status {result.returncode}",
                returncode=result.returncode,
            )

        try:
            palette = parse_palette(result.stdout, self.log)
        except ExtractionFailed:
            self.log.exception("Unusable palette engine output for %s", image_path)
            raise
        self.log.debug("Extracted %s", palette.to_dict())
        return palette
