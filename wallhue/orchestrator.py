"""Apply cycles: palette -> templates -> hooks."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence

from .cache import Fingerprint, PaletteCache
from .cancellation import CancelToken
from .config_loader import PipelineConfig, expand_path
from .extractor import PaletteExtractor
from .hooks import HookRunner
from .logging_setup import get_logger
from .models import (
    ApplyReport,
    ApplyState,
    ExtractionFailed,
    HookCommand,
    HookOutcome,
    HookStatus,
    Palette,
    RenderOutcome,
    RenderStatus,
)
from .process import CommandRunner
from .registry import TemplateRegistry
from .templates import TemplateRenderer

__all__ = ["Orchestrator"]


class Orchestrator:
    """Drives apply cycles and reports their outcome.

    A cycle moves through idle -> extracting_or_cached -> rendering ->
    running_hooks and ends completed, partially_failed, fatal_failed (no
    palette) or cancelled (superseded by a cycle for another wallpaper).
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        cache: PaletteCache,
        templates: TemplateRegistry,
        hooks: Sequence[HookCommand] = (),
        renderer: TemplateRenderer | None = None,
        hook_runner: HookRunner | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.templates = templates
        self.hooks = hooks
        self.log = log or get_logger("wallhue")
        self.renderer = renderer or TemplateRenderer(self.log)
        self.hook_runner = hook_runner or HookRunner(log=self.log)
        self.state = ApplyState.IDLE
        self._current: tuple[str, CancelToken] | None = None

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        runner: CommandRunner | None = None,
        log: logging.Logger | None = None,
    ) -> Orchestrator:
        """Build the whole pipeline from a loaded configuration.

        Args:
            config: Output of ConfigLoader.load()
            runner: Command runner shared by the extractor and the hooks
            log: Logger to use
        """
        log = log or get_logger("wallhue")
        settings = config.settings
        extractor = PaletteExtractor(
            command=settings.get_str("engine"),
            timeout=settings.get_float("extract_timeout"),
            runner=runner,
            log=log,
        )
        cache = PaletteCache(
            extractor.extract,
            cache_file=expand_path(settings.get_str("cache_file")),
            fingerprint=Fingerprint(settings.get_str("fingerprint")),
            log=log,
        )
        hook_runner = HookRunner(
            runner=runner,
            max_parallel=settings.get_int("max_parallel_hooks"),
            default_timeout=settings.get_float("hook_timeout"),
            log=log,
        )
        return cls(cache, config.templates, config.hooks, hook_runner=hook_runner, log=log)

    def _set_state(self, report: ApplyReport, state: ApplyState, token: CancelToken) -> None:
        report.state = state
        # a superseded cycle must not overwrite the state of the newer one
        if self._current is not None and self._current[1] is token:
            self.state = state
        self.log.debug("%s: %s", report.wallpaper, state)

    def _supersede(self, wallpaper: str) -> CancelToken:
        token = CancelToken()
        if self._current is not None:
            previous, previous_token = self._current
            if previous != wallpaper:
                previous_token.cancel(f"superseded by {wallpaper}")
                self.log.info("Cancelling apply of %s", previous)
        self._current = (wallpaper, token)
        return token

    async def _render_all(self, palette: Palette, wallpaper: str, token: CancelToken) -> list[RenderOutcome]:
        variables = {"wallpaper": wallpaper}
        templates = self.templates.enabled()
        return list(await asyncio.gather(*(self.renderer.apply(palette, template, variables, token) for template in templates)))

    def _cancelled_hooks(self, reason: str) -> list[HookOutcome]:
        return [HookOutcome(hook.name, HookStatus.SKIPPED, message=reason) for hook in self.hooks]

    async def apply(self, wallpaper: str) -> ApplyReport:
        """Run a full apply cycle for `wallpaper` and return its report.

        Never raises for pipeline failures: they are recorded in the report.
        """
        wallpaper = os.path.abspath(os.path.expanduser(wallpaper))
        token = self._supersede(wallpaper)
        report = ApplyReport(wallpaper=wallpaper)
        try:
            return await self._run_cycle(report, token)
        finally:
            if self._current is not None and self._current[1] is token:
                self._current = None

    async def _run_cycle(self, report: ApplyReport, token: CancelToken) -> ApplyReport:
        self._set_state(report, ApplyState.EXTRACTING_OR_CACHED, token)
        try:
            palette, source = await self.cache.get_or_extract(report.wallpaper)
        except ExtractionFailed as e:
            report.extraction_error = e
            self._set_state(report, ApplyState.FATAL_FAILED, token)
            self.log.error("No palette for %s: %s", report.wallpaper, e)  # noqa: TRY400
            return report
        report.palette = palette
        report.palette_source = source

        if token.cancelled:
            report.templates = [RenderOutcome(t.id, t.destination, RenderStatus.CANCELLED, message=token.reason) for t in self.templates.enabled()]
            report.hooks = self._cancelled_hooks(token.reason)
            self._set_state(report, ApplyState.CANCELLED, token)
            return report

        self._set_state(report, ApplyState.RENDERING, token)
        report.templates = await self._render_all(palette, report.wallpaper, token)

        self._set_state(report, ApplyState.RUNNING_HOOKS, token)
        if token.cancelled:
            report.hooks = self._cancelled_hooks(token.reason)
        else:
            report.hooks = await self.hook_runner.run_all(self.hooks, report.templates, token)

        cut_short = any(t.status == RenderStatus.CANCELLED for t in report.templates) or (
            token.cancelled and any(h.status == HookStatus.SKIPPED and h.message == token.reason for h in report.hooks)
        )
        if cut_short:
            final = ApplyState.CANCELLED
        elif all(t.ok for t in report.templates) and all(h.ok for h in report.hooks):
            final = ApplyState.COMPLETED
        else:
            final = ApplyState.PARTIALLY_FAILED
        self._set_state(report, final, token)
        self.log.info(report.summary())
        return report
