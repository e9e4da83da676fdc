"""inotify watcher: reloads a JSONStore when its backing file changes on disk.

Watches the file's parent directory rather than the file itself, so both
in-place writes (IN_CLOSE_WRITE) and write-then-rename replacements
(IN_MOVED_TO) of links.json are seen. Events for other names in the
directory are ignored.

After a matching event the watcher sleeps a short settle delay, then calls
store.reload() under the store's exclusive lock. Reload errors are logged and
the watcher keeps going. If the watch itself breaks (directory removed,
unmounted, inotify read error) the error is logged and the thread exits; it is
not re-armed.

Falls back to polling mtime/size if inotify is unavailable (macOS, Docker).
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from golink.store import JSONStore

logger = logging.getLogger("golink.watcher")

_INOTIFY_TIMEOUT_MS = 500   # read() wake-up interval, bounds how long stop() takes


class FileWatcher(threading.Thread):
    """Background thread following one store's backing file. Stop with stop()."""

    def __init__(self, store: JSONStore, settle_delay: float = 0.1, poll_interval: float = 1.0) -> None:
        super().__init__(name="golink-watcher", daemon=True)
        self._store = store
        self._path = store.path
        self._settle_delay = settle_delay
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self.reloads = 0
        self.ready = threading.Event()    # set once the watch is armed

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        try:
            self._watch_inotify()
        except ImportError:
            logger.warning("inotify_simple not available, falling back to polling")
            self._watch_poll()
        logger.debug("watcher for %s exited", self._path)

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def _settle_and_reload(self) -> None:
        # Event.wait doubles as an interruptible sleep.
        if self._stop_event.wait(self._settle_delay):
            return
        try:
            self._store.reload()
            self.reloads += 1
        except Exception:
            logger.exception("failed to reload links from %s", self._path)

    # ------------------------------------------------------------------
    # inotify
    # ------------------------------------------------------------------

    def _watch_inotify(self) -> None:
        import inotify_simple  # type: ignore[import]

        flags = inotify_simple.flags  # type: ignore[attr-defined]
        directory = self._path.parent
        gone = flags.IGNORED | flags.DELETE_SELF | flags.MOVE_SELF | flags.UNMOUNT

        try:
            inotify = inotify_simple.INotify()
        except OSError:
            logger.exception("could not create inotify instance")
            return
        try:
            try:
                inotify.add_watch(
                    str(directory),
                    flags.CLOSE_WRITE | flags.MOVED_TO | flags.DELETE_SELF | flags.MOVE_SELF,
                )
            except OSError:
                logger.exception("could not watch directory %s", directory)
                return
            logger.info("inotify watching %s", self._path)
            self.ready.set()

            while not self._stop_event.is_set():
                try:
                    events = inotify.read(timeout=_INOTIFY_TIMEOUT_MS)
                except OSError:
                    logger.exception("inotify read failed for %s", directory)
                    return

                changed = False
                for event in events:
                    if event.mask & gone:
                        logger.error("watched directory %s went away, watcher stopping", directory)
                        return
                    # Q_OVERFLOW: events were dropped, so the file may have changed.
                    if event.name == self._path.name or event.mask & flags.Q_OVERFLOW:
                        changed = True

                # One reload per batch, however many events it held.
                if changed:
                    self._settle_and_reload()
        finally:
            inotify.close()

    # ------------------------------------------------------------------
    # Polling fallback
    # ------------------------------------------------------------------

    def _signature(self) -> tuple[int, int, int] | None:
        try:
            st = self._path.stat()
        except FileNotFoundError:
            return None
        return (st.st_mtime_ns, st.st_size, st.st_ino)

    def _watch_poll(self) -> None:
        """Check mtime/size/inode every poll_interval seconds."""
        directory = self._path.parent
        logger.info("polling %s interval=%.1fs", self._path, self._poll_interval)
        last = self._signature()
        self.ready.set()

        while not self._stop_event.wait(self._poll_interval):
            if not directory.is_dir():
                logger.error("watched directory %s went away, watcher stopping", directory)
                return
            try:
                current = self._signature()
            except OSError:
                logger.exception("could not stat %s", self._path)
                return
            if current is not None and current != last:
                self._settle_and_reload()
                current = self._signature()
            last = current
