"""Derive a color theme from a wallpaper and apply it to application configs."""

from .models import (
    ApplyReport,
    ApplyState,
    Color,
    Dialect,
    ExtractionFailed,
    HookCommand,
    Palette,
    RenderError,
    Template,
    WallhueError,
)
from .orchestrator import Orchestrator

__all__ = [
    "ApplyReport",
    "ApplyState",
    "Color",
    "Dialect",
    "ExtractionFailed",
    "HookCommand",
    "Orchestrator",
    "Palette",
    "RenderError",
    "Template",
    "WallhueError",
]
