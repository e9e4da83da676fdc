"""JSONStore: alias → Link mapping persisted as a single JSON file.

    store = JSONStore("~/.config/golink/links.json")
    store.create(new_link("gh", "https://github.com"))
    store.get("gh").url

links.json layout (pretty-printed, keys sorted):
    {
      "gh": {"alias": "gh", "url": "https://github.com", "created_at": "...", "updated_at": "..."}
    }

Locking: one RWLock per store guards both the in-memory dict and all file I/O.
get/list take it shared; create/update/delete/save/reload take it exclusive.
_persist and _load assume the caller already holds the exclusive lock.

Across processes (CLI + server on the same file) a sidecar <file>.lock is
flock'd: LOCK_EX while writing, LOCK_SH while reading.

Writes go to a temp file and are renamed over the target, so a reader never
sees a half-written document. A background FileWatcher reloads the dict when
the file changes on disk.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import shutil
import threading
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from golink.models import Link

if TYPE_CHECKING:
    from collections.abc import Iterator

    from golink.watcher import FileWatcher

logger = logging.getLogger("golink.store")

_SETTLE_DELAY = 0.1        # seconds to wait after a change event before reloading
_POLL_INTERVAL = 1.0       # seconds between mtime checks when inotify is unavailable

# Errors a failed persist can raise (I/O, or json refusing the data).
_PERSIST_ERRORS = (OSError, TypeError, ValueError)


class StoreError(Exception):
    """Base class for store failures other than plain I/O errors."""


class NotFoundError(StoreError):
    """Alias is not in the store."""


class AlreadyExistsError(StoreError):
    """Alias is already in the store."""


class CorruptStoreError(StoreError):
    """The backing file could not be parsed. In-memory state is left as it was."""


# ---------------------------------------------------------------------------
# Reader/writer lock
# ---------------------------------------------------------------------------


class RWLock:
    """Many readers or one writer. Waiting writers block new readers. Not reentrant."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _atomic_write(path: Path, text: str) -> None:
    """Write text to a sibling temp file, fsync, then rename over path.

    A symlinked path is followed, so the link survives and its target gets the
    new content. The existing file's permission bits carry over.
    """
    real = Path(os.path.realpath(path))
    tmp = real.with_name(f".{real.name}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if real.exists():
            shutil.copymode(real, tmp)
        tmp.replace(real)
    except OSError:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class JSONStore:
    """File-backed link store, safe for concurrent callers in one process."""

    def __init__(
        self,
        path: Path | str,
        *,
        watch: bool = True,
        settle_delay: float = _SETTLE_DELAY,
        poll_interval: float = _POLL_INTERVAL,
    ) -> None:
        self._path = Path(os.path.abspath(Path(path).expanduser()))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._links: dict[str, Link] = {}
        self._lock = RWLock()
        self._watcher: FileWatcher | None = None

        if self._path.exists():
            with self._lock.write():
                self._load()

        if watch:
            from golink.watcher import FileWatcher

            self._watcher = FileWatcher(self, settle_delay=settle_delay, poll_interval=poll_interval)
            self._watcher.start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def watcher(self) -> FileWatcher | None:
        return self._watcher

    def close(self, timeout: float = 5.0) -> None:
        """Stop the file watcher. The store stays usable, it just no longer follows the file."""
        if self._watcher is None:
            return
        self._watcher.stop()
        self._watcher.join(timeout)
        self._watcher = None

    def __enter__(self) -> JSONStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, alias: str) -> Link:
        with self._lock.read():
            link = self._links.get(alias)
            if link is None:
                msg = f"link not found: {alias}"
                raise NotFoundError(msg)
            return replace(link)

    def list(self) -> list[Link]:
        """All links, in no particular order."""
        with self._lock.read():
            return [replace(link) for link in self._links.values()]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._links)

    def __contains__(self, alias: object) -> bool:
        with self._lock.read():
            return alias in self._links

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def create(self, link: Link) -> None:
        with self._lock.write():
            if link.alias in self._links:
                msg = f"link alias already exists: {link.alias}"
                raise AlreadyExistsError(msg)
            self._links[link.alias] = replace(link)
            try:
                self._persist()
            except _PERSIST_ERRORS:
                del self._links[link.alias]
                raise

    def update(self, link: Link) -> None:
        """Replace the stored record for link.alias. Timestamps are stored exactly as given."""
        with self._lock.write():
            previous = self._links.get(link.alias)
            if previous is None:
                msg = f"link not found: {link.alias}"
                raise NotFoundError(msg)
            self._links[link.alias] = replace(link)
            try:
                self._persist()
            except _PERSIST_ERRORS:
                self._links[link.alias] = previous
                raise

    def delete(self, alias: str) -> None:
        with self._lock.write():
            previous = self._links.pop(alias, None)
            if previous is None:
                msg = f"link not found: {alias}"
                raise NotFoundError(msg)
            try:
                self._persist()
            except _PERSIST_ERRORS:
                self._links[alias] = previous
                raise

    def save(self) -> None:
        """Force the in-memory mapping out to disk."""
        with self._lock.write():
            self._persist()

    def reload(self) -> None:
        """Re-read the backing file. On CorruptStoreError the current links are kept."""
        with self._lock.write():
            self._load()
            logger.info("reloaded %d links from %s", len(self._links), self._path)

    # ------------------------------------------------------------------
    # Persistence (caller holds the write lock)
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _file_lock(self, mode: int) -> Iterator[None]:
        lock_path = self._path.with_name(self._path.name + ".lock")
        with lock_path.open("a") as f:
            fcntl.flock(f, mode)
            yield

    def _persist(self) -> None:
        doc = {alias: self._links[alias].to_dict() for alias in sorted(self._links)}
        text = json.dumps(doc, indent=2, ensure_ascii=False) + "\n"
        with self._file_lock(fcntl.LOCK_EX):
            _atomic_write(self._path, text)
        logger.debug("saved %d links to %s", len(doc), self._path)

    def _load(self) -> None:
        with self._file_lock(fcntl.LOCK_SH):
            data = self._path.read_bytes()

        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = f"{self._path}: not valid UTF-8: {exc}"
            raise CorruptStoreError(msg) from exc

        if not text.strip():
            self._links = {}
            return

        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"{self._path}: invalid JSON: {exc}"
            raise CorruptStoreError(msg) from exc
        if not isinstance(doc, dict):
            msg = f"{self._path}: expected a JSON object of links, got {type(doc).__name__}"
            raise CorruptStoreError(msg)

        links: dict[str, Link] = {}
        for alias, obj in doc.items():
            try:
                links[alias] = Link.from_dict(obj, alias=alias)
            except ValueError as exc:
                msg = f"{self._path}: {exc}"
                raise CorruptStoreError(msg) from exc

        self._links = links
