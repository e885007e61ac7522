"""Async file helpers built on aiofiles."""

__all__ = ["aiexists", "aiopen", "atomic_write", "read_text"]

import asyncio
import contextlib
import os
from collections.abc import AsyncIterator
from typing import Any

import aiofiles
import aiofiles.os
import aiofiles.tempfile

aiopen = aiofiles.open
aiexists = aiofiles.os.path.exists

NEW_FILE_MODE = 0o644


async def read_text(path: str) -> str:
    """Return the content of a UTF-8 text file."""
    async with aiopen(path, encoding="utf-8") as f:
        return str(await f.read())


@contextlib.asynccontextmanager
async def atomic_write(path: str, encoding: str = "utf-8") -> AsyncIterator[Any]:
    """Write a text file so readers only ever see the old or the new content.

    Yields a file opened on a temporary file next to `path`; when the block
    exits normally the temporary file is flushed, synced and renamed over
    `path`. On any error, cancellation included, the temporary file is removed
    and `path` is left untouched.

    Usage:
        async with atomic_write("~/.config/bar/colors.conf") as f:
            await f.write(text)
    """
    directory = os.path.dirname(path) or "."
    await aiofiles.os.makedirs(directory, exist_ok=True)
    try:
        mode = (await aiofiles.os.stat(path)).st_mode & 0o7777
    except FileNotFoundError:
        mode = NEW_FILE_MODE

    tmp_name: str | None = None
    try:
        async with aiofiles.tempfile.NamedTemporaryFile(
            "w",
            encoding=encoding,
            dir=directory,
            prefix=f".{os.path.basename(path)}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = str(f.name)
            yield f
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())
        await asyncio.to_thread(os.chmod, tmp_name, mode)
        await aiofiles.os.replace(tmp_name, path)
        tmp_name = None
    finally:
        if tmp_name is not None:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(tmp_name)
