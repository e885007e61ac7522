"""Concurrent execution of post-apply reload hooks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from .cancellation import CancelToken
from .constants import DEFAULT_HOOK_TIMEOUT, DEFAULT_MAX_PARALLEL_HOOKS, STDERR_TAIL_LENGTH
from .logging_setup import get_logger
from .models import DependencyPolicy, HookCommand, HookOutcome, HookStatus, RenderOutcome
from .process import CommandRunner, CommandTimeoutError, SubprocessRunner

__all__ = ["HookRunner", "unmet_dependencies"]


def unmet_dependencies(hook: HookCommand, render_results: dict[str, RenderOutcome]) -> list[str]:
    """Return the dependencies preventing `hook` from running (empty if it may run).

    Templates missing from `render_results` (unknown or disabled) count as failed.
    """
    failed = [dep for dep in hook.depends_on if dep not in render_results or not render_results[dep].ok]
    if not hook.depends_on:
        return []
    if hook.require == DependencyPolicy.ANY:
        return failed if len(failed) == len(hook.depends_on) else []
    return failed


def _tail(text: str) -> str:
    text = text.strip()
    return text[-STDERR_TAIL_LENGTH:]


class HookRunner:
    """Runs hooks concurrently with bounded parallelism and per hook timeouts.

    Every hook gets its own outcome; a failing hook never affects the others.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        max_parallel: int = DEFAULT_MAX_PARALLEL_HOOKS,
        default_timeout: float = DEFAULT_HOOK_TIMEOUT,
        log: logging.Logger | None = None,
    ) -> None:
        if max_parallel < 1:
            msg = f"max_parallel must be at least 1, got {max_parallel}"
            raise ValueError(msg)
        self.runner: CommandRunner = runner or SubprocessRunner()
        self.max_parallel = max_parallel
        self.default_timeout = default_timeout
        self.log = log or get_logger("wallhue.hooks")

    async def run_one(self, hook: HookCommand) -> HookOutcome:
        """Run a single hook and record how it ended."""
        timeout = hook.timeout if hook.timeout is not None else self.default_timeout
        self.log.info("Running hook %s: %s", hook.name, hook.command)
        try:
            result = await self.runner.run(hook.command, cwd=hook.cwd, timeout=timeout)
        except CommandTimeoutError as e:
            self.log.warning("Hook %s timed out after %gs", hook.name, timeout)
            return HookOutcome(hook.name, HookStatus.TIMEOUT, message=str(e))
        except OSError as e:
            self.log.error("Cannot run hook %s: %s", hook.name, e)  # noqa: TRY400
            return HookOutcome(hook.name, HookStatus.SPAWN_ERROR, message=str(e))

        if result.returncode != 0:
            self.log.warning("Hook %s exited with %d", hook.name, result.returncode)
            return HookOutcome(
                hook.name,
                HookStatus.NON_ZERO_EXIT,
                returncode=result.returncode,
                message=f"exit status {result.returncode}",
                stderr=_tail(result.stderr),
            )
        return HookOutcome(hook.name, HookStatus.SUCCESS, returncode=0)

    async def _guarded(self, hook: HookCommand, semaphore: asyncio.Semaphore, token: CancelToken | None) -> HookOutcome:
        async with semaphore:
            if token is not None and token.cancelled:
                return HookOutcome(hook.name, HookStatus.SKIPPED, message=token.reason)
            try:
                return await self.run_one(hook)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self.log.exception("Error running hook %s", hook.name)
                return HookOutcome(hook.name, HookStatus.SPAWN_ERROR, message=repr(e))

    async def run_all(
        self,
        hooks: Sequence[HookCommand],
        render_results: Iterable[RenderOutcome],
        token: CancelToken | None = None,
    ) -> list[HookOutcome]:
        """Run every hook whose dependencies rendered.

        Args:
            hooks: Hooks to run, in configuration order
            render_results: Outcomes of the templates rendered in this cycle
            token: Checked right before each hook is spawned

        Returns:
            One outcome per hook, in the order of `hooks`
        """
        results = {r.template_id: r for r in render_results}
        semaphore = asyncio.Semaphore(self.max_parallel)
        outcomes: list[HookOutcome | None] = [None] * len(hooks)
        pending: list[asyncio.Task[HookOutcome]] = []
        positions: list[int] = []

        for index, hook in enumerate(hooks):
            unmet = unmet_dependencies(hook, results)
            if unmet:
                reason = f"dependencies did not render: {', '.join(unmet)}"
                self.log.info("Skipping hook %s (%s)", hook.name, reason)
                outcomes[index] = HookOutcome(hook.name, HookStatus.SKIPPED, message=reason)
                continue
            pending.append(asyncio.create_task(self._guarded(hook, semaphore, token)))
            positions.append(index)

        for index, outcome in zip(positions, await asyncio.gather(*pending), strict=True):
            outcomes[index] = outcome
        return [o for o in outcomes if o is not None]
