"""Persistent palette cache keyed by wallpaper identity."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .aioops import aiexists, atomic_write, read_text
from .constants import CACHE_FILE, HASH_CHUNK_SIZE
from .logging_setup import get_logger
from .models import CacheError, CacheKey, ExtractionErrorKind, ExtractionFailed, Palette, PaletteSource

__all__ = ["Fingerprint", "PaletteCache", "decode_cache", "encode_cache", "make_cache_key"]

CACHE_FORMAT_VERSION = 1


class Fingerprint(StrEnum):
    """How a wallpaper's content identity is computed."""

    CONTENT = "content"  # sha256 of the file
    MTIME = "mtime"  # modification time and size


def _fingerprint(path: str, mode: Fingerprint) -> str:
    if mode == Fingerprint.MTIME:
        stat = os.stat(path)
        return f"{stat.st_mtime_ns}-{stat.st_size}"
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(HASH_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


async def make_cache_key(wallpaper: str, mode: Fingerprint = Fingerprint.CONTENT) -> CacheKey:
    """Compute the cache key of a wallpaper (hashing runs in a worker thread).

    Raises:
        ExtractionFailed: with kind IMAGE_UNREADABLE if the file cannot be read
    """
    path = os.path.abspath(os.path.expanduser(wallpaper))
    try:
        fingerprint = await asyncio.to_thread(_fingerprint, path, mode)
    except OSError as e:
        raise ExtractionFailed(ExtractionErrorKind.IMAGE_UNREADABLE, f"{path}: {e.strerror or e}") from e
    return CacheKey(path=path, fingerprint=f"{mode}:{fingerprint}")


def encode_cache(entries: dict[str, tuple[str, Palette]]) -> str:
    """Serialize cache entries (path -> (fingerprint, palette)) to JSON text."""
    document = {
        "version": CACHE_FORMAT_VERSION,
        "palettes": {path: {"fingerprint": fingerprint, "palette": palette.to_dict()} for path, (fingerprint, palette) in entries.items()},
    }
    return json.dumps(document, indent=2, sort_keys=True) + "\n"


def decode_cache(text: str, log: logging.Logger | None = None) -> dict[str, tuple[str, Palette]]:
    """Parse `encode_cache` output.

    Malformed entries are dropped (and logged); a malformed document raises.

    Raises:
        CacheError: if the document itself cannot be parsed
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        msg = f"Corrupt palette cache: {e}"
        raise CacheError(msg) from e
    if not isinstance(document, dict) or not isinstance(document.get("palettes"), dict):
        msg = "Corrupt palette cache: missing 'palettes'"
        raise CacheError(msg)

    entries: dict[str, tuple[str, Palette]] = {}
    for path, entry in document["palettes"].items():
        try:
            entries[path] = (str(entry["fingerprint"]), Palette.from_dict(entry["palette"]))
        except (KeyError, TypeError, ValueError) as e:
            if log:
                log.warning("Dropping malformed cache entry for %s: %s", path, e)
    return entries


class PaletteCache:
    """Wallpaper palettes persisted as a JSON document.

    One entry per wallpaper path, replaced wholesale when the wallpaper's
    fingerprint changes. Concurrent requests for the same key share a single
    extraction; different keys never wait on each other.
    """

    def __init__(
        self,
        extract: Callable[[str], Awaitable[Palette]],
        cache_file: str = str(CACHE_FILE),
        fingerprint: Fingerprint = Fingerprint.CONTENT,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            extract: Coroutine function returning the palette of an image path
            cache_file: JSON file holding the persisted palettes
            fingerprint: How wallpaper identity is computed
            log: Logger to use
        """
        self.extract = extract
        self.cache_file = cache_file
        self.fingerprint = fingerprint
        self.log = log or get_logger("wallhue.cache")
        self._entries: dict[str, tuple[str, Palette]] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._in_flight: dict[CacheKey, asyncio.Task[Palette]] = {}

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            try:
                if await aiexists(self.cache_file):
                    self._entries = decode_cache(await read_text(self.cache_file), self.log)
                    self.log.debug("Loaded %d cached palettes from %s", len(self._entries), self.cache_file)
            except (OSError, UnicodeDecodeError, CacheError) as e:
                self.log.warning("Ignoring unreadable palette cache %s: %s", self.cache_file, e)
                self._entries = {}
            self._loaded = True

    async def _save(self) -> None:
        async with self._save_lock:
            text = encode_cache(self._entries)
            try:
                async with atomic_write(self.cache_file) as f:
                    await f.write(text)
            except OSError as e:
                self.log.warning("Cannot write palette cache %s: %s", self.cache_file, e)

    async def lookup(self, key: CacheKey) -> Palette | None:
        """Return the cached palette for `key`, if any."""
        await self._ensure_loaded()
        entry = self._entries.get(key.path)
        if entry is None or entry[0] != key.fingerprint:
            return None
        return entry[1]

    async def store(self, key: CacheKey, palette: Palette) -> None:
        """Store (replacing any previous entry for the path) and persist."""
        await self._ensure_loaded()
        self._entries[key.path] = (key.fingerprint, palette)
        await self._save()

    def _forget_in_flight(self, task: asyncio.Task[Palette]) -> None:
        for key, pending in list(self._in_flight.items()):
            if pending is task:
                del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            self.log.debug("Extraction failed, cache left unchanged: %s", task.exception())

    async def _extract_and_store(self, key: CacheKey) -> Palette:
        palette = await self.extract(key.path)
        await self.store(key, palette)
        return palette

    async def get_or_extract(self, wallpaper: str) -> tuple[Palette, PaletteSource]:
        """Return the palette of `wallpaper`, extracting it on a cache miss.

        Returns:
            The palette and whether it came from the cache or the engine

        Raises:
            ExtractionFailed: if the wallpaper cannot be read or the engine fails
                (the cache is left unchanged)
        """
        key = await make_cache_key(wallpaper, self.fingerprint)
        cached = await self.lookup(key)
        if cached is not None:
            self.log.debug("Palette cache hit for %s", key.path)
            return cached, PaletteSource.CACHE

        task = self._in_flight.get(key)
        if task is None:
            self.log.debug("Palette cache miss for %s", key.path)
            task = asyncio.create_task(self._extract_and_store(key))
            self._in_flight[key] = task
            task.add_done_callback(self._forget_in_flight)
        else:
            self.log.debug("Waiting for in-flight extraction of %s", key.path)
        # shield: a cancelled waiter must not cancel the extraction others wait on
        return await asyncio.shield(task), PaletteSource.EXTRACTED

    async def forget(self, wallpaper: str) -> bool:
        """Drop the entry of a wallpaper. Returns True if one existed."""
        await self._ensure_loaded()
        path = os.path.abspath(os.path.expanduser(wallpaper))
        if self._entries.pop(path, None) is None:
            return False
        await self._save()
        return True

    async def prune(self) -> int:
        """Drop entries whose wallpaper no longer exists. Returns the count removed."""
        await self._ensure_loaded()
        stale = [path for path in self._entries if not await aiexists(path)]
        for path in stale:
            del self._entries[path]
        if stale:
            self.log.info("Pruned %d stale palettes", len(stale))
            await self._save()
        return len(stale)

    async def clear(self) -> int:
        """Drop every entry. Returns the count removed."""
        await self._ensure_loaded()
        removed = len(self._entries)
        self._entries.clear()
        await self._save()
        return removed

    def __len__(self) -> int:
        return len(self._entries)

