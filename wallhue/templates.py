"""Template rendering.

Placeholders name a palette field: `0`..`15`, `color0`..`color15`,
`background`, `foreground`, `cursor`, plus the `wallpaper` path. The
template's dialect decides both the token syntax and how colors are written:

=============  ====================  ================
dialect        token                 value
=============  ====================  ================
hex            ``{color1}``          ``#rrggbb``
hex_stripped   ``{color1}``          ``rrggbb``
rgb            ``{color1}``          ``r,g,b``
rgb_function   ``{color1}``          ``rgb(r, g, b)``
mustache       ``{{ color1 }}``      ``#rrggbb``
=============  ====================  ================

A name may carry an accessor: `.r`, `.g`, `.b` give one decimal channel,
`.hex`, `.hex_stripped` and `.rgb` force a format. The mustache dialect also
takes filters: ``{{ color1 | set_alpha: 0.5 }}``,
``{{ background | set_lightness: -20 | strip }}``.

Brace dialects have no escape sequence: any `{word}` is a placeholder, so a
file holding literal tags such as shell `${HOME}` fails with an unknown
placeholder. Only single braces around other text (CSS blocks, `{ }`) pass
through. Use the mustache dialect for such files, where single braces are
always literal.
"""

from __future__ import annotations

import asyncio
import colorsys
import logging
import re
from typing import assert_never

from .aioops import aiexists, atomic_write, read_text
from .cancellation import CancelToken
from .logging_setup import get_logger
from .models import Color, Dialect, Palette, RenderError, RenderErrorKind, RenderOutcome, RenderStatus, Template

__all__ = ["TemplateRenderer", "format_color", "render_text"]

_BRACE_TAG = re.compile(r"\{([A-Za-z0-9_]+(?:\.[A-Za-z0-9_]+)*)(\s*\|[^{}]*)?\}")
_MUSTACHE_TAG = re.compile(r"\{\{\s*([^{}|]*?)\s*(?:\|([^{}]*?))?\s*\}\}")
_FILTER = re.compile(r"^(\w+)\s*(?::\s*(.*?))?$")

_CHANNELS = {"r": 0, "g": 1, "b": 2}


def format_color(color: Color, dialect: Dialect) -> str:
    """Format a color the way `dialect` writes it."""
    match dialect:
        case Dialect.HEX | Dialect.MUSTACHE:
            return color.hex
        case Dialect.HEX_STRIPPED:
            return color.hex_stripped
        case Dialect.RGB:
            return color.rgb
        case Dialect.RGB_FUNCTION:
            return f"rgb({color.r}, {color.g}, {color.b})"
        case _:
            assert_never(dialect)


def _mismatch(message: str) -> RenderError:
    return RenderError(RenderErrorKind.FORMAT_MISMATCH, message)


def _apply_accessor(color: Color, accessor: str, tag: str) -> str:
    if accessor in _CHANNELS:
        return str(color.as_tuple()[_CHANNELS[accessor]])
    if accessor == "hex":
        return color.hex
    if accessor == "hex_stripped":
        return color.hex_stripped
    if accessor == "rgb":
        return color.rgb
    msg = f"Unknown accessor .{accessor} in {tag!r}"
    raise _mismatch(msg)


def _set_lightness(color: Color, amount: float) -> Color:
    """Shift the HLS lightness of a color by `amount` percent."""
    h, l_val, s = colorsys.rgb_to_hls(color.r / 255.0, color.g / 255.0, color.b / 255.0)
    l_val = max(0.0, min(1.0, l_val + amount / 100.0))
    r, g, b = colorsys.hls_to_rgb(h, l_val, s)
    return Color(round(r * 255), round(g * 255), round(b * 255))


def _parse_number(value: str | None, filter_name: str, tag: str) -> float:
    if value is None:
        msg = f"Filter {filter_name} needs an argument in {tag!r}"
        raise _mismatch(msg)
    try:
        return float(value)
    except ValueError as e:
        msg = f"Filter {filter_name} expects a number, got {value!r} in {tag!r}"
        raise _mismatch(msg) from e


def _apply_filters(color: Color, filters: str, tag: str) -> str:
    """Run a `| filter: arg | ...` chain on a color."""
    current: Color = color
    formatted: str | None = None
    for part in filters.split("|"):
        match = _FILTER.match(part.strip())
        if not match:
            msg = f"Malformed filter {part.strip()!r} in {tag!r}"
            raise _mismatch(msg)
        name, arg = match.group(1), match.group(2)
        if formatted is not None:
            msg = f"Filter {name} cannot follow a formatting filter in {tag!r}"
            raise _mismatch(msg)
        if name == "set_lightness":
            current = _set_lightness(current, _parse_number(arg, name, tag))
        elif name == "set_alpha":
            alpha = _parse_number(arg, name, tag)
            if not 0.0 <= alpha <= 1.0:
                msg = f"Alpha must be within 0..1, got {arg} in {tag!r}"
                raise _mismatch(msg)
            formatted = f"rgba({current.r}, {current.g}, {current.b}, {alpha:g})"
        elif name == "strip":
            formatted = current.hex_stripped
        elif name == "rgb":
            formatted = current.rgb
        else:
            msg = f"Unknown filter {name!r} in {tag!r}"
            raise _mismatch(msg)
    return formatted if formatted is not None else current.hex


def _resolve(
    palette: Palette,
    name: str,
    dialect: Dialect,
    variables: dict[str, str],
    tag: str,
    filters: str | None = None,
) -> str:
    base, _, accessor = name.partition(".")
    if base in variables:
        if accessor or filters is not None:
            msg = f"{base} is not a color in {tag!r}"
            raise _mismatch(msg)
        return variables[base]

    try:
        color = palette.lookup(base)
    except KeyError:
        msg = f"Unknown placeholder {tag!r}"
        raise RenderError(RenderErrorKind.UNKNOWN_PLACEHOLDER, msg) from None

    if accessor and filters is not None:
        msg = f"Accessor and filters cannot be combined in {tag!r}"
        raise _mismatch(msg)
    if accessor:
        if "." in accessor:
            msg = f"Unknown accessor .{accessor} in {tag!r}"
            raise _mismatch(msg)
        return _apply_accessor(color, accessor, tag)
    if filters is not None:
        return _apply_filters(color, filters, tag)
    return format_color(color, dialect)


def render_text(palette: Palette, text: str, dialect: Dialect, variables: dict[str, str] | None = None) -> str:
    """Replace every placeholder of `text`.

    Pure and deterministic: the same inputs always give the same output.

    Raises:
        RenderError: UNKNOWN_PLACEHOLDER or FORMAT_MISMATCH on the first bad tag
    """
    extra = variables or {}

    if dialect == Dialect.MUSTACHE:

        def replace_mustache(match: re.Match[str]) -> str:
            return _resolve(palette, match.group(1), dialect, extra, match.group(0), match.group(2))

        return _MUSTACHE_TAG.sub(replace_mustache, text)

    def replace_brace(match: re.Match[str]) -> str:
        if match.group(2):
            msg = f"Filters need the mustache dialect, got {match.group(0)!r} in a {dialect} template"
            raise _mismatch(msg)
        return _resolve(palette, match.group(1), dialect, extra, match.group(0))

    return _BRACE_TAG.sub(replace_brace, text)


class TemplateRenderer:
    """Renders templates and writes them atomically to their destination."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or get_logger("wallhue.templates")

    async def render(self, palette: Palette, template: Template, variables: dict[str, str] | None = None) -> str:
        """Return the rendered text of a template.

        Raises:
            RenderError: SOURCE_UNREADABLE, UNKNOWN_PLACEHOLDER or FORMAT_MISMATCH
        """
        try:
            source = await read_text(template.source)
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Cannot read {template.source}: {e}"
            raise RenderError(RenderErrorKind.SOURCE_UNREADABLE, msg) from e
        return await asyncio.to_thread(render_text, palette, source, template.dialect, variables)

    async def write(self, template: Template, content: str) -> bool:
        """Write rendered content to the template's destination.

        Returns:
            False if the destination already held `content` (nothing written)

        Raises:
            RenderError: DESTINATION_WRITE_FAILED (the destination is untouched)
        """
        destination = template.destination
        if await aiexists(destination):
            try:
                if await read_text(destination) == content:
                    return False
            except (OSError, UnicodeDecodeError):
                self.log.debug("Cannot compare with current %s, rewriting it", destination)
        try:
            async with atomic_write(destination) as f:
                await f.write(content)
        except OSError as e:
            msg = f"Cannot write {destination}: {e}"
            raise RenderError(RenderErrorKind.DESTINATION_WRITE_FAILED, msg) from e
        return True

    async def apply(
        self,
        palette: Palette,
        template: Template,
        variables: dict[str, str] | None = None,
        token: CancelToken | None = None,
    ) -> RenderOutcome:
        """Render and write one template, recording the outcome instead of raising."""
        outcome = RenderOutcome(template.id, template.destination, RenderStatus.SUCCESS)
        try:
            content = await self.render(palette, template, variables)
            if token is not None and token.cancelled:
                self.log.info("Not writing %s: %s", template.destination, token.reason)
                outcome.status = RenderStatus.CANCELLED
                outcome.message = token.reason
                return outcome
            outcome.changed = await self.write(template, content)
        except RenderError as e:
            self.log.error("Template %s failed: %s", template.id, e.message)  # noqa: TRY400
            outcome.status = RenderStatus.FAILED
            outcome.error_kind = e.kind
            outcome.message = e.message
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.log.exception("Error processing template %s", template.id)
            outcome.status = RenderStatus.FAILED
            outcome.message = repr(e)
        else:
            if outcome.changed:
                self.log.info("Generated %s from %s", template.destination, template.source)
            else:
                self.log.debug("%s is up to date", template.destination)
        return outcome
