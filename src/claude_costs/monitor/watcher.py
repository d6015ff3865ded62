"""Live monitoring: watches the log directory and feeds new lines to the tracker.

Threads:
    * watchdog observer threads and the refresh timer only enqueue messages;
    * tail reads run on a thread pool, one in-flight read per file, and
      report back through the same queue;
    * a single dispatcher thread drains the queue and is the only code that
      touches SessionStateTracker.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from claude_costs.alerts import Alert, evaluate_session_alerts
from claude_costs.config import CostsConfig
from claude_costs.ingest import LOG_SUFFIX, discover_log_files
from claude_costs.models import Event
from claude_costs.monitor.tail import new_lines, read_last_lines
from claude_costs.monitor.tracker import SessionStateTracker, SessionUpdate
from claude_costs.parser import ParseStats, iter_events

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicCheck:
    timestamp: datetime
    active_sessions: int
    current_session: str | None


class _LogFileHandler(FileSystemEventHandler):
    """Forwards log-file and directory events into the dispatcher queue."""

    def __init__(self, messages: queue.Queue):
        super().__init__()
        self._messages = messages

    def on_created(self, event: FileSystemEvent):
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            self._messages.put(("dir_created", path))
        elif path.endswith(LOG_SUFFIX):
            self._messages.put(("changed", path))

    def on_modified(self, event: FileSystemEvent):
        path = os.fsdecode(event.src_path)
        if not event.is_directory and path.endswith(LOG_SUFFIX):
            self._messages.put(("changed", path))

    def on_moved(self, event: FileSystemEvent):
        dest = os.fsdecode(event.dest_path)
        if not event.is_directory and dest.endswith(LOG_SUFFIX):
            self._messages.put(("changed", dest))


class LiveTailWatcher:
    """Tails every conversation log under ``root`` and tracks live sessions."""

    def __init__(
        self,
        root: Path,
        config: CostsConfig,
        on_update: Callable[[SessionUpdate], None] | None = None,
        on_alerts: Callable[[list[Alert]], None] | None = None,
        on_periodic: Callable[[PeriodicCheck], None] | None = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.root = Path(root)
        self._config = config
        self._on_update = on_update
        self._on_alerts = on_alerts
        self._on_periodic = on_periodic
        self._observer_factory = observer_factory

        self.tracker = SessionStateTracker(
            recent_activity_limit=config.monitoring.recent_activity_limit,
            burn_rate_history_limit=config.monitoring.burn_rate_history_limit,
        )
        self.parse_stats = ParseStats()

        # Owned by the dispatcher thread once started
        self._last_mtime: dict[str, int] = {}
        self._tails: dict[str, list[str]] = {}
        self._in_flight: dict[str, Future] = {}
        self._rerun: set[str] = set()

        self._messages: queue.Queue = queue.Queue()
        self._watches: dict[str, object] = {}
        self._observer = None
        self._handler: _LogFileHandler | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._dispatcher: threading.Thread | None = None
        self._timer: threading.Thread | None = None
        self._stop_timer = threading.Event()
        self.running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Begin monitoring. Returns False if the root directory is missing."""
        if self.running:
            logger.info("Monitoring already running")
            return True
        if not self.root.is_dir():
            logger.error("Log directory not found: %s", self.root)
            return False

        self.running = True
        self._messages = queue.Queue()
        self._stop_timer.clear()
        self._prime()

        self._pool = ThreadPoolExecutor(
            max_workers=self._config.workers, thread_name_prefix="claude-costs-tail",
        )
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="claude-costs-dispatch", daemon=True,
        )
        self._dispatcher.start()

        self._observer = self._observer_factory()
        self._handler = _LogFileHandler(self._messages)
        self._watch_directory(self.root, recursive=False)
        try:
            children = sorted(self.root.iterdir())
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.root, e)
            children = []
        for child in children:
            if child.is_dir():
                self._watch_directory(child, recursive=True)
        self._observer.start()

        self._timer = threading.Thread(
            target=self._timer_loop, name="claude-costs-refresh", daemon=True,
        )
        self._timer.start()

        logger.info("Monitoring started for %s", self.root)
        return True

    def stop(self) -> None:
        """Release every watch, cancel the timer and discard all session state."""
        if not self.running:
            return
        self.running = False

        self._stop_timer.set()
        if self._timer is not None:
            self._timer.join()

        self._messages.put(None)
        if self._dispatcher is not None:
            self._dispatcher.join()

        for path, watch in list(self._watches.items()):
            try:
                self._observer.unschedule(watch)
            except Exception as e:
                logger.warning("Error releasing watch for %s: %s", Path(path).name, e)
        self._watches.clear()
        try:
            self._observer.stop()
            self._observer.join()
        except Exception as e:
            logger.warning("Error stopping file observer: %s", e)

        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)

        self.tracker.clear()
        self._last_mtime.clear()
        self._tails.clear()
        self._in_flight.clear()
        self._rerun.clear()
        logger.info("Monitoring stopped")

    def _watch_directory(self, path: Path, recursive: bool) -> None:
        key = str(path)
        if key in self._watches:
            return
        try:
            self._watches[key] = self._observer.schedule(self._handler, key, recursive=recursive)
        except OSError as e:
            logger.warning("Cannot watch %s, not monitoring it: %s", path.name, e)

    def _prime(self) -> None:
        """Remember current mtimes so only changes after start are processed."""
        try:
            files = discover_log_files(self.root)
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.root, e)
            return
        for _, path in files:
            try:
                self._last_mtime[str(path)] = path.stat().st_mtime_ns
            except OSError:
                continue

    def _timer_loop(self) -> None:
        while not self._stop_timer.wait(self._config.monitoring.refresh_interval):
            self._messages.put(("tick",))

    # ------------------------------------------------------------------
    # Dispatcher (single writer)
    # ------------------------------------------------------------------

    def _dispatch_loop(self) -> None:
        while True:
            message = self._messages.get()
            if message is None:
                return
            try:
                self._handle(message)
            except Exception:
                logger.exception("Failed to handle monitor message %s", message[0])

    def _handle(self, message: tuple) -> None:
        kind = message[0]
        if kind == "changed":
            self._on_changed(message[1])
        elif kind == "tail":
            self._on_tail(message[1], message[2])
        elif kind == "dir_created":
            if self.running and Path(message[1]).parent == self.root:
                self._watch_directory(Path(message[1]), recursive=True)
        elif kind == "tick":
            self._periodic_check()

    def _on_changed(self, path: str) -> None:
        if not self._should_process(path):
            return
        if path in self._in_flight:
            self._rerun.add(path)
            return
        self._submit_read(path)

    def _submit_read(self, path: str) -> None:
        if self._pool is None:
            return
        future = self._pool.submit(read_last_lines, Path(path), self._config.monitoring.tail_lines)
        self._in_flight[path] = future
        future.add_done_callback(lambda f, p=path, q=self._messages: q.put(("tail", p, f)))

    def _on_tail(self, path: str, future: Future) -> None:
        self._in_flight.pop(path, None)
        if future.cancelled():
            return
        try:
            lines = future.result()
        except OSError as e:
            logger.warning("Cannot read %s: %s", Path(path).name, e)
        else:
            self._apply_tail(path, lines)
        if path in self._rerun:
            self._rerun.discard(path)
            self._submit_read(path)

    def _should_process(self, path: str) -> bool:
        """True only when the file's mtime moved forward since last seen."""
        try:
            mtime = os.stat(path).st_mtime_ns
        except OSError:
            return False
        last = self._last_mtime.get(path)
        if last is not None and mtime <= last:
            return False
        self._last_mtime[path] = mtime
        return True

    def _apply_tail(self, path: str, lines: list[str]) -> list[SessionUpdate]:
        """Parse the unseen part of a tail and fold it into session state."""
        fresh = new_lines(self._tails.get(path, []), lines)
        self._tails[path] = lines
        if not fresh:
            return []

        file_path = Path(path)
        by_session: dict[str, list[Event]] = {}
        for event in iter_events(fresh, self._config.pricing, self.parse_stats, file_path.name):
            by_session.setdefault(event.session_id or file_path.stem, []).append(event)

        updates = []
        for session_id, events in by_session.items():
            update = self.tracker.apply(session_id, events)
            if update is None:
                continue
            updates.append(update)
            if self._on_update is not None:
                self._on_update(update)
            alerts = evaluate_session_alerts(update.snapshot, self._config.alerts)
            if alerts and self._on_alerts is not None:
                self._on_alerts(alerts)
        return updates

    def _periodic_check(self) -> None:
        """Catch changes the observer missed, then report a heartbeat."""
        try:
            files = discover_log_files(self.root)
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.root, e)
            files = []
        for _, path in files:
            self._on_changed(str(path))

        if self._on_periodic is not None:
            self._on_periodic(PeriodicCheck(
                timestamp=datetime.now(timezone.utc),
                active_sessions=len(self.tracker),
                current_session=self.tracker.active_session_id,
            ))
