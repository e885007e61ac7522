"""Palette, template, hook and report types shared by the pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .ansi import Sgr, paint

__all__ = [
    "ApplyReport",
    "ApplyState",
    "CacheError",
    "CacheKey",
    "Color",
    "ConfigError",
    "DependencyPolicy",
    "Dialect",
    "ExtractionErrorKind",
    "ExtractionFailed",
    "HookCommand",
    "HookOutcome",
    "HookStatus",
    "PALETTE_SIZE",
    "Palette",
    "PaletteSource",
    "RenderError",
    "RenderErrorKind",
    "RenderOutcome",
    "RenderStatus",
    "SPECIAL_NAMES",
    "Template",
    "WallhueError",
]

PALETTE_SIZE = 16
SPECIAL_NAMES = ("background", "foreground", "cursor")
CHANNEL_MAX = 255

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
_INDEXED_RE = re.compile(r"^(?:color)?(0|[1-9][0-9]?)$")


@dataclass(frozen=True)
class Color:
    """An RGB color with byte precision."""

    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        for channel in (self.r, self.g, self.b):
            if isinstance(channel, bool) or not isinstance(channel, int) or not 0 <= channel <= CHANNEL_MAX:
                msg = f"Invalid color channel {channel!r} (expected an int in 0..{CHANNEL_MAX})"
                raise ValueError(msg)

    @classmethod
    def from_hex(cls, value: str) -> Color:
        """Parse `#rrggbb` or `rrggbb`.

        Raises:
            ValueError: on any other shape
        """
        match = _HEX_RE.match(value.strip())
        if not match:
            msg = f"Invalid color token {value!r}"
            raise ValueError(msg)
        digits = match.group(1)
        return cls(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))

    @property
    def hex(self) -> str:
        """Return the color as `#rrggbb`."""
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    @property
    def hex_stripped(self) -> str:
        """Return the color as `rrggbb`."""
        return self.hex[1:]

    @property
    def rgb(self) -> str:
        """Return the color as a decimal `r,g,b` tuple."""
        return f"{self.r},{self.g},{self.b}"

    def as_tuple(self) -> tuple[int, int, int]:
        """Return the (r, g, b) tuple."""
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class Palette:
    """A 16 color terminal palette with optional special colors.

    Attributes:
        colors: Indexed colors 0..15
        background: Background color, if the engine provided one
        foreground: Foreground color, if the engine provided one
        cursor: Cursor color, if the engine provided one
    """

    colors: tuple[Color, ...]
    background: Color | None = None
    foreground: Color | None = None
    cursor: Color | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.colors, tuple):
            object.__setattr__(self, "colors", tuple(self.colors))
        if len(self.colors) != PALETTE_SIZE:
            msg = f"A palette needs exactly {PALETTE_SIZE} indexed colors, got {len(self.colors)}"
            raise ValueError(msg)
        if not all(isinstance(c, Color) for c in self.colors):
            msg = "Palette colors must be Color instances"
            raise ValueError(msg)

    def lookup(self, name: str) -> Color:
        """Resolve a palette field by name.

        Accepts `0`..`15`, `color0`..`color15` and the special color names.

        Raises:
            KeyError: unknown name, out of range index or unset special color
        """
        if name in SPECIAL_NAMES:
            value: Color | None = getattr(self, name)
            if value is None:
                raise KeyError(name)
            return value
        match = _INDEXED_RE.match(name)
        if match:
            index = int(match.group(1))
            if index < PALETTE_SIZE:
                return self.colors[index]
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        """Return the serializable form of the palette."""
        data: dict[str, Any] = {"colors": [c.hex for c in self.colors]}
        for name in SPECIAL_NAMES:
            value = getattr(self, name)
            if value is not None:
                data[name] = value.hex
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Palette:
        """Build a palette from `to_dict` output.

        Raises:
            ValueError: when the data does not describe a valid palette
        """
        try:
            colors = tuple(Color.from_hex(value) for value in data["colors"])
            specials = {name: Color.from_hex(data[name]) for name in SPECIAL_NAMES if data.get(name) is not None}
        except (KeyError, TypeError, AttributeError) as e:
            msg = f"Malformed palette data: {e!r}"
            raise ValueError(msg) from e
        return cls(colors=colors, **specials)


@dataclass(frozen=True)
class CacheKey:
    """Identity of a wallpaper: its absolute path and a fingerprint of its content."""

    path: str
    fingerprint: str


class Dialect(StrEnum):
    """Placeholder syntax and color format of a template."""

    HEX = "hex"  # {name} -> #rrggbb
    HEX_STRIPPED = "hex_stripped"  # {name} -> rrggbb
    RGB = "rgb"  # {name} -> r,g,b
    RGB_FUNCTION = "rgb_function"  # {name} -> rgb(r, g, b)
    MUSTACHE = "mustache"  # {{ name | filter: arg }} -> #rrggbb


@dataclass(frozen=True)
class Template:
    """A template file rendered to a destination path."""

    id: str
    source: str
    destination: str
    dialect: Dialect = Dialect.HEX
    enabled: bool = True


class DependencyPolicy(StrEnum):
    """How a hook's template dependencies must have rendered for it to run."""

    ALL = "all"
    ANY = "any"


@dataclass(frozen=True)
class HookCommand:
    """A reload command run after templates are rendered."""

    name: str
    command: str
    cwd: str | None = None
    depends_on: tuple[str, ...] = ()
    timeout: float | None = None
    require: DependencyPolicy = DependencyPolicy.ALL


# Errors


class WallhueError(Exception):
    """Base class for pipeline errors."""


class ExtractionErrorKind(StrEnum):
    """Why palette extraction failed."""

    SPAWN_ERROR = "spawn_error"
    NON_ZERO_EXIT = "non_zero_exit"
    PARSE_ERROR = "parse_error"
    TIMEOUT = "timeout"
    IMAGE_UNREADABLE = "image_unreadable"


class ExtractionFailed(WallhueError):
    """The palette engine could not produce a palette."""

    def __init__(self, kind: ExtractionErrorKind, message: str, returncode: int | None = None) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message
        self.returncode = returncode


class RenderErrorKind(StrEnum):
    """Why a template could not be rendered."""

    SOURCE_UNREADABLE = "source_unreadable"
    UNKNOWN_PLACEHOLDER = "unknown_placeholder"
    FORMAT_MISMATCH = "format_mismatch"
    DESTINATION_WRITE_FAILED = "destination_write_failed"


class RenderError(WallhueError):
    """A single template failed to render."""

    def __init__(self, kind: RenderErrorKind, message: str) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message


class CacheError(WallhueError):
    """The palette cache could not be read or written."""


class ConfigError(WallhueError):
    """The configuration is missing or invalid."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("\n".join(errors))
        self.errors = errors


# Report


class ApplyState(StrEnum):
    """States of an apply cycle."""

    IDLE = "idle"
    EXTRACTING_OR_CACHED = "extracting_or_cached"
    RENDERING = "rendering"
    RUNNING_HOOKS = "running_hooks"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FATAL_FAILED = "fatal_failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True for end states."""
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({ApplyState.COMPLETED, ApplyState.PARTIALLY_FAILED, ApplyState.FATAL_FAILED, ApplyState.CANCELLED})


class PaletteSource(StrEnum):
    """Where the palette of an apply cycle came from."""

    CACHE = "cache"
    EXTRACTED = "extracted"


class RenderStatus(StrEnum):
    """Outcome of a template render."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class HookStatus(StrEnum):
    """Outcome of a hook."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    SPAWN_ERROR = "spawn_error"
    SKIPPED = "skipped"


@dataclass
class RenderOutcome:
    """Result of rendering one template."""

    template_id: str
    destination: str
    status: RenderStatus
    error_kind: RenderErrorKind | None = None
    message: str = ""
    changed: bool = False

    @property
    def ok(self) -> bool:
        """Return True if the template rendered."""
        return self.status == RenderStatus.SUCCESS


@dataclass
class HookOutcome:
    """Result of running one hook."""

    name: str
    status: HookStatus
    returncode: int | None = None
    message: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return True if the hook exited successfully."""
        return self.status == HookStatus.SUCCESS


# StrEnum members hash like their values, so "success" covers both outcome enums
_STATUS_COLORS: dict[str, Sgr] = {
    RenderStatus.SUCCESS: Sgr.GREEN,
    ApplyState.COMPLETED: Sgr.GREEN,
    HookStatus.SKIPPED: Sgr.YELLOW,
    RenderStatus.CANCELLED: Sgr.YELLOW,
    PaletteSource.CACHE: Sgr.GREEN,
    PaletteSource.EXTRACTED: Sgr.GREEN,
}


@dataclass
class ApplyReport:  # pylint: disable=too-many-instance-attributes
    """Aggregated outcome of one apply cycle."""

    wallpaper: str
    state: ApplyState = ApplyState.IDLE
    palette_source: PaletteSource | None = None
    palette: Palette | None = None
    extraction_error: ExtractionFailed | None = None
    templates: list[RenderOutcome] = field(default_factory=list)
    hooks: list[HookOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True if the cycle completed without any failure."""
        return self.state == ApplyState.COMPLETED

    @property
    def failed_templates(self) -> list[RenderOutcome]:
        """Return the templates which did not render."""
        return [t for t in self.templates if t.status == RenderStatus.FAILED]

    @property
    def failed_hooks(self) -> list[HookOutcome]:
        """Return the hooks which did not succeed, skipped ones included."""
        return [h for h in self.hooks if not h.ok]

    def template(self, template_id: str) -> RenderOutcome:
        """Return the outcome of the given template.

        Raises:
            KeyError: if the template was not part of the cycle
        """
        for outcome in self.templates:
            if outcome.template_id == template_id:
                return outcome
        raise KeyError(template_id)

    def hook(self, name: str) -> HookOutcome:
        """Return the outcome of the given hook.

        Raises:
            KeyError: if the hook was not part of the cycle
        """
        for outcome in self.hooks:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def summary(self, color: bool = False) -> str:
        """Return a human readable, multi-line description of the cycle.

        Args:
            color: Use ANSI colors for statuses
        """

        def fmt(status: StrEnum) -> str:
            if not color:
                return str(status)
            return paint(str(status), _STATUS_COLORS.get(status, Sgr.RED))

        lines = [f"{self.wallpaper}: {fmt(self.state)}"]
        if self.extraction_error is not None:
            lines.append(f"  palette: {fmt(self.extraction_error.kind)} {self.extraction_error.message}")
            return "\n".join(lines)
        if self.palette_source is not None:
            lines.append(f"  palette: {fmt(self.palette_source)}")
        for tpl in self.templates:
            detail = f" ({tpl.error_kind}: {tpl.message})" if tpl.error_kind else ""
            unchanged = " (unchanged)" if tpl.ok and not tpl.changed else ""
            lines.append(f"  template {tpl.template_id}: {fmt(tpl.status)}{unchanged}{detail}")
        for hook in self.hooks:
            detail = f" ({hook.message})" if hook.message else ""
            lines.append(f"  hook {hook.name}: {fmt(hook.status)}{detail}")
        return "\n".join(lines)
