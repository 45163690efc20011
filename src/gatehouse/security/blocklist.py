"""Hot-reloaded substring blocklist.

The backing file is a JSON array of strings. Each entry is normalized once at
load time (trailing ``/`` stripped, lowercased) and the whole list is swapped
in as a new immutable tuple, so a reader always sees one complete snapshot.

Example:
    store = BlocklistStore("blocklist.json")
    store.load()
    await store.start()  # begin watching for changes

    if store.is_blocked(f"{request.path_qs} {host} {referer}"):
        return 403  # Forbidden
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from collections.abc import Iterable
from pathlib import Path

import structlog

from gatehouse.core.exceptions import MalformedBlocklistFile
from gatehouse.observability.metrics import BLOCKLIST_ENTRIES, BLOCKLIST_RELOADS

logger = structlog.get_logger()


def normalize_entry(entry: str) -> str:
    """Lowercase an entry and strip one trailing slash."""
    return entry.removesuffix("/").lower()


def normalize_entries(entries: Iterable[str]) -> tuple[str, ...]:
    """Normalize entries, dropping ones that would match every candidate."""
    normalized = (normalize_entry(e) for e in entries)
    return tuple(e for e in normalized if e)


def parse_blocklist(content: str, path: str = "<memory>") -> tuple[str, ...]:
    """Parse blocklist file content into normalized entries.

    Raises:
        MalformedBlocklistFile: If the content is not a JSON array of strings
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedBlocklistFile(f"Invalid JSON in blocklist {path}: {e}", path) from e

    if not isinstance(data, list):
        raise MalformedBlocklistFile(
            f"Blocklist {path} must be a JSON array, got {type(data).__name__}", path
        )

    for index, item in enumerate(data):
        if not isinstance(item, str):
            raise MalformedBlocklistFile(
                f"Blocklist {path} entry {index} is {type(item).__name__}, expected string",
                path,
            )

    return normalize_entries(data)


class BlocklistStore:
    """Reloadable blocklist snapshot backed by a JSON file."""

    def __init__(self, path: str | Path, poll_interval: float = 1.0) -> None:
        self.path = Path(path)
        self.poll_interval = max(0.05, float(poll_interval))
        self._entries: tuple[str, ...] = ()
        self._signature: tuple[int, int] | None = None
        self._watch_task: asyncio.Task | None = None

    @classmethod
    def from_entries(cls, entries: Iterable[str], path: str | Path = "blocklist.json") -> BlocklistStore:
        """Build a store with an in-memory snapshot, without touching the file."""
        store = cls(path)
        store.replace(entries)
        return store

    @property
    def entries(self) -> tuple[str, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, candidate: str) -> str | None:
        """Return the first entry contained in ``candidate``, or None."""
        text = candidate.lower()
        for entry in self._entries:
            if entry in text:
                return entry
        return None

    def is_blocked(self, candidate: str) -> bool:
        return self.match(candidate) is not None

    def replace(self, entries: Iterable[str]) -> None:
        """Swap in a new snapshot."""
        self._entries = normalize_entries(entries)
        BLOCKLIST_ENTRIES.set(len(self._entries))

    def _file_signature(self) -> tuple[int, int] | None:
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def load(self, missing_ok: bool = True) -> int:
        """Read and parse the backing file, replacing the snapshot.

        Args:
            missing_ok: Treat a missing file as an empty blocklist instead of
                an error

        Returns:
            Number of entries now active

        Raises:
            MalformedBlocklistFile: If the file cannot be read or parsed; the
                previous snapshot stays active
        """
        signature = self._file_signature()
        if signature is None:
            if not missing_ok:
                raise MalformedBlocklistFile(f"Blocklist {self.path} not found", str(self.path))
            logger.warning("Blocklist file not found, blocking nothing", path=str(self.path))
            self._signature = None
            self.replace(())
            return 0

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise MalformedBlocklistFile(
                f"Cannot read blocklist {self.path}: {e}", str(self.path)
            ) from e

        entries = parse_blocklist(content, str(self.path))
        self._signature = signature
        self._entries = entries
        BLOCKLIST_ENTRIES.set(len(entries))
        return len(entries)

    def reload(self) -> bool:
        """Reload the backing file, keeping the prior snapshot on failure."""
        try:
            count = self.load(missing_ok=False)
        except MalformedBlocklistFile as e:
            # Remember the bad file so it is not re-parsed on every poll.
            self._signature = self._file_signature()
            BLOCKLIST_RELOADS.labels(status="failed").inc()
            logger.error(
                "Blocklist reload failed, keeping previous entries",
                path=str(self.path),
                error=e.message,
                active_entries=len(self._entries),
            )
            return False

        BLOCKLIST_RELOADS.labels(status="ok").inc()
        logger.info("Blocklist updated", path=str(self.path), entries=count)
        return True

    def check_for_changes(self) -> bool:
        """Reload if the file changed since the last load. Returns True if reloaded."""
        signature = self._file_signature()
        if signature == self._signature:
            return False
        return self.reload()

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await asyncio.to_thread(self.check_for_changes)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Blocklist watcher error", path=str(self.path), error=str(e))

    async def start(self) -> None:
        """Start watching the backing file for changes."""
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch_loop())
            logger.debug("Blocklist watcher started", path=str(self.path))

    async def stop(self) -> None:
        if self._watch_task:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
