"""Port registry: live port list, favorites, watches and refresh orchestration."""

import dataclasses
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional

from .models import (
    PortFilter, PortRecord, PortView, ProcessGroup, RegistrySnapshot,
    WatchedPort, WatchState, validate_port,
)
from .notifications import NotificationSink
from .port_scanner import PortScanner
from .process_terminator import ProcessTerminator
from .settings import SettingsStore
from ..config import MIN_REFRESH_INTERVAL, WORKER_THREADS
from ..utils.logging_config import get_logger

logger = get_logger('registry')

Listener = Callable[[RegistrySnapshot], None]


def sort_ports(records: list[PortRecord], favorites: set[int]) -> list[PortRecord]:
    """Favorites first, then ascending port."""
    return sorted(records, key=lambda r: (r.port not in favorites, r.port))


def group_by_process(records: list[PortRecord], favorites: set[int],
                     watched: set[int]) -> list[ProcessGroup]:
    """
    Group records by PID.

    Groups holding a favorite come first, then groups holding a watched
    port, then the rest; ties are ordered by process name ignoring case.
    """
    groups: dict[int, ProcessGroup] = {}
    for record in records:
        group = groups.get(record.pid)
        if group is None:
            group = groups[record.pid] = ProcessGroup(pid=record.pid, process_name=record.process_name)
        group.ports.append(record)

    for group in groups.values():
        group.ports.sort(key=lambda r: r.port)

    def priority(group: ProcessGroup) -> int:
        if any(r.port in favorites for r in group.ports):
            return 2
        if any(r.port in watched for r in group.ports):
            return 1
        return 0

    return sorted(groups.values(),
                  key=lambda g: (-priority(g), g.process_name.casefold(), g.pid))


class PortRegistry:
    """
    Owns the live port list and user port preferences.

    All state changes go through one lock. Scans and kills run outside it
    (on the caller's thread, the auto-refresh thread or the worker pool)
    and their results are committed under it, so readers only ever see a
    complete port list.
    """

    def __init__(self, scanner: PortScanner, terminator: ProcessTerminator,
                 settings: SettingsStore, notifier: NotificationSink,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.scanner = scanner
        self.terminator = terminator
        self.settings = settings
        self.notifier = notifier
        self.filter = PortFilter()

        self._lock = threading.RLock()
        self._refresh_guard = threading.Lock()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=WORKER_THREADS, thread_name_prefix='portkeeper-worker')

        self._ports: tuple[PortRecord, ...] = ()
        self._liveness: dict[int, bool] = {}
        self._listeners: list[Listener] = []
        self._auto_refresh_stop: Optional[threading.Event] = None

        self._favorites: set[int] = settings.load_favorites()
        self._watched: list[WatchedPort] = settings.load_watched()
        self._refresh_interval: int = settings.load_refresh_interval()
        self._show_notifications: bool = settings.load_show_notifications()
        logger.info(f"Registry loaded {len(self._favorites)} favorites, "
                    f"{len(self._watched)} watched ports, interval {self._refresh_interval}s")

    # State access

    @property
    def ports(self) -> tuple[PortRecord, ...]:
        return self._ports

    @property
    def favorites(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._favorites)

    @property
    def watched_ports(self) -> tuple[WatchedPort, ...]:
        with self._lock:
            return tuple(self._watched)

    @property
    def refresh_interval(self) -> int:
        return self._refresh_interval

    @property
    def show_notifications(self) -> bool:
        return self._show_notifications

    @property
    def is_scanning(self) -> bool:
        return self._refresh_guard.locked()

    @property
    def liveness(self) -> dict[int, bool]:
        with self._lock:
            return dict(self._liveness)

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return self._snapshot_locked(self.is_scanning)

    def _snapshot_locked(self, is_scanning: bool) -> RegistrySnapshot:
        return RegistrySnapshot(
            ports=self._ports,
            favorites=frozenset(self._favorites),
            watched_ports=tuple(self._watched),
            refresh_interval=self._refresh_interval,
            show_notifications=self._show_notifications,
            is_scanning=is_scanning,
        )

    # Subscriptions

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for committed changes. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, snapshot: RegistrySnapshot):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Registry listener {listener!r} failed")

    def _publish_current(self):
        self._publish(self.snapshot())

    # Refresh

    def refresh(self) -> bool:
        """
        Scan ports and commit the result.

        Returns:
            False without scanning when another refresh is in flight.
        """
        if not self._refresh_guard.acquire(blocking=False):
            logger.debug("Refresh already in flight, skipping")
            return False

        try:
            try:
                result = self.scanner.scan_result()
            except Exception:
                logger.exception("Port scan raised, keeping previous snapshot")
                return True

            if result.failed:
                # An empty failed scan would read as every watched port stopping
                logger.warning(f"Scan failed ({result.error}), keeping previous snapshot")
                return True

            with self._lock:
                self._ports = tuple(result.records)
                events = self._evaluate_watched_locked()
                snapshot = self._snapshot_locked(is_scanning=False)

            self._dispatch(events)
            self._publish(snapshot)
            return True
        finally:
            self._refresh_guard.release()

    def refresh_async(self) -> Future:
        """Run ``refresh`` on the worker pool."""
        return self._executor.submit(self.refresh)

    def _evaluate_watched_locked(self) -> list[Callable[[], None]]:
        """Compare watched ports against the previous scan and update the baseline."""
        active_names: dict[int, str] = {}
        for record in self._ports:
            if record.is_active and record.port not in active_names:
                active_names[record.port] = record.process_name

        events: list[Callable[[], None]] = []
        for watched in self._watched:
            is_active = watched.port in active_names
            was_active = self._liveness.get(watched.port, False)

            if is_active and not was_active and watched.notify_on_start:
                logger.info(f"Watched port {watched.port} started ({active_names[watched.port]})")
                events.append(partial(self.notifier.notify_port_started,
                                      watched.port, active_names[watched.port]))
            elif was_active and not is_active and watched.notify_on_stop:
                logger.info(f"Watched port {watched.port} stopped")
                events.append(partial(self.notifier.notify_port_stopped, watched.port))

            self._liveness[watched.port] = is_active

        if not self._show_notifications:
            return []
        return events

    def _dispatch(self, events: list[Callable[[], None]]):
        for event in events:
            try:
                event()
            except Exception:
                logger.exception("Notification sink failed")

    # Auto-refresh

    @property
    def auto_refresh_running(self) -> bool:
        stop = self._auto_refresh_stop
        return stop is not None and not stop.is_set()

    def start_auto_refresh(self):
        """Start (or restart) the periodic refresh loop."""
        with self._lock:
            self._stop_auto_refresh_locked()
            stop = threading.Event()
            self._auto_refresh_stop = stop
            thread = threading.Thread(
                target=self._auto_refresh_loop,
                args=(stop,),
                name='portkeeper-auto-refresh',
                daemon=True,
            )
        thread.start()
        logger.info(f"Auto-refresh started (every {self._refresh_interval}s)")

    def stop_auto_refresh(self):
        with self._lock:
            self._stop_auto_refresh_locked()

    def _stop_auto_refresh_locked(self):
        if self._auto_refresh_stop is not None:
            self._auto_refresh_stop.set()
            self._auto_refresh_stop = None
            logger.debug("Auto-refresh stopped")

    def _auto_refresh_loop(self, stop: threading.Event):
        while not stop.wait(self._refresh_interval):
            try:
                self.refresh()
            except Exception:
                logger.exception("Auto-refresh cycle failed")

    def set_refresh_interval(self, seconds: int):
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < MIN_REFRESH_INTERVAL:
            raise ValueError(f"Refresh interval must be an integer >= {MIN_REFRESH_INTERVAL}, got {seconds!r}")

        with self._lock:
            self._refresh_interval = seconds
            self.settings.save_refresh_interval(seconds)
            restart = self.auto_refresh_running
        if restart:
            self.start_auto_refresh()
        self._publish_current()

    def set_show_notifications(self, show: bool):
        with self._lock:
            self._show_notifications = bool(show)
            self.settings.save_show_notifications(self._show_notifications)
        self._publish_current()

    def initialize(self):
        """Initial scan, then periodic refresh."""
        self.refresh()
        self.start_auto_refresh()

    def shutdown(self):
        self.stop_auto_refresh()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Registry shut down")

    # Favorites

    def is_favorite(self, port: int) -> bool:
        with self._lock:
            return port in self._favorites

    def toggle_favorite(self, port: int) -> bool:
        """Toggle a favorite. Returns True when the port is now a favorite."""
        validate_port(port)
        with self._lock:
            if port in self._favorites:
                self._favorites.discard(port)
                is_favorite = False
            else:
                self._favorites.add(port)
                is_favorite = True
            self.settings.save_favorites(set(self._favorites))
        logger.info(f"Port {port} {'added to' if is_favorite else 'removed from'} favorites")
        self._publish_current()
        return is_favorite

    # Watched ports

    def is_watched(self, port: int) -> bool:
        with self._lock:
            return any(w.port == port for w in self._watched)

    def watch_state(self, port: int) -> WatchState:
        with self._lock:
            if not any(w.port == port for w in self._watched):
                return WatchState.UNWATCHED
            if any(r.port == port and r.is_active for r in self._ports):
                return WatchState.WATCHED_ACTIVE
            return WatchState.WATCHED_INACTIVE

    def add_watched_port(self, port: int, notify_on_start: bool = True,
                         notify_on_stop: bool = True) -> bool:
        """
        Watch a port. Returns False if it is already watched.

        The liveness baseline is seeded from the current snapshot so adding
        a watch on a running port does not announce it as started.
        """
        validate_port(port)
        with self._lock:
            if any(w.port == port for w in self._watched):
                return False
            self._watched.append(WatchedPort(
                port=port,
                notify_on_start=notify_on_start,
                notify_on_stop=notify_on_stop,
            ))
            self._liveness[port] = any(r.port == port and r.is_active for r in self._ports)
            self.settings.save_watched(list(self._watched))
        logger.info(f"Watching port {port}")
        self._publish_current()
        return True

    def remove_watched_port(self, port: int) -> bool:
        with self._lock:
            remaining = [w for w in self._watched if w.port != port]
            if len(remaining) == len(self._watched):
                return False
            self._watched = remaining
            self._liveness.pop(port, None)
            self.settings.save_watched(list(self._watched))
        logger.info(f"Stopped watching port {port}")
        self._publish_current()
        return True

    def update_watched_port(self, port: int, notify_on_start: Optional[bool] = None,
                            notify_on_stop: Optional[bool] = None) -> bool:
        """Change notification flags of a watched port. Returns False if not watched."""
        with self._lock:
            for index, watched in enumerate(self._watched):
                if watched.port != port:
                    continue
                changes = {}
                if notify_on_start is not None:
                    changes['notify_on_start'] = notify_on_start
                if notify_on_stop is not None:
                    changes['notify_on_stop'] = notify_on_stop
                self._watched[index] = dataclasses.replace(watched, **changes)
                self.settings.save_watched(list(self._watched))
                break
            else:
                return False
        self._publish_current()
        return True

    # Filtering

    def set_filter(self, port_filter: PortFilter):
        with self._lock:
            self.filter = port_filter
        self._publish_current()

    def search(self, query: str):
        with self._lock:
            self.filter = dataclasses.replace(self.filter, search_text=query)
        self._publish_current()

    def clear_search(self):
        self.search("")

    def reset_filter(self):
        with self._lock:
            fresh = dataclasses.replace(self.filter)
            fresh.reset()
            self.filter = fresh
        self._publish_current()

    # Views

    def ports_for_view(self, view: PortView = PortView.ALL,
                       port_filter: Optional[PortFilter] = None) -> list[PortRecord]:
        """Rows for a view, filtered and sorted favorites-first."""
        with self._lock:
            favorites = set(self._favorites)
            rows = self._filtered_rows_locked(view, port_filter)
        return sort_ports(rows, favorites)

    def grouped_by_process(self, view: PortView = PortView.ALL,
                           port_filter: Optional[PortFilter] = None) -> list[ProcessGroup]:
        with self._lock:
            favorites = set(self._favorites)
            watched = {w.port for w in self._watched}
            rows = self._filtered_rows_locked(view, port_filter)
        return group_by_process(rows, favorites, watched)

    def _filtered_rows_locked(self, view: PortView,
                              port_filter: Optional[PortFilter]) -> list[PortRecord]:
        active_filter = port_filter if port_filter is not None else self.filter

        if view is PortView.FAVORITES:
            rows = self._overlay_locked(sorted(self._favorites))
        elif view is PortView.WATCHED:
            rows = self._overlay_locked([w.port for w in self._watched])
        elif view.process_type is not None:
            rows = [r for r in self._ports if r.process_type == view.process_type]
        else:
            rows = list(self._ports)

        if active_filter.is_active:
            rows = [r for r in rows if active_filter.matches(r, self._favorites, self._watched)]
        return rows

    def _overlay_locked(self, ports: list[int]) -> list[PortRecord]:
        """Active records for each port, or an inactive placeholder."""
        by_port: dict[int, list[PortRecord]] = {}
        for record in self._ports:
            if record.is_active:
                by_port.setdefault(record.port, []).append(record)

        rows: list[PortRecord] = []
        for port in ports:
            rows.extend(by_port.get(port) or [PortRecord.inactive(port)])
        return rows

    # Termination

    def kill_pid(self, pid: int, port: Optional[int] = None) -> tuple[bool, str]:
        """Gracefully kill a PID, then refresh. Failures are reported to the notifier."""
        success, message = self.terminator.kill_gracefully(pid)
        if success:
            self.refresh()
        else:
            where = f" on port {port}" if port is not None else ""
            logger.warning(f"Failed to stop PID {pid}{where}: {message}")
            self._dispatch([partial(self.notifier.notify, "Failed to stop process",
                                    f"PID {pid}{where}: {message}")])
        return success, message

    def kill_record(self, record: PortRecord) -> tuple[bool, str]:
        if not record.is_active:
            return False, f"Port {record.port} is not running"
        return self.kill_pid(record.pid, record.port)

    def kill_all_on_port(self, port: int) -> int:
        """Kill everything on a port (fresh scan). Returns the number killed."""
        validate_port(port)
        killed = self.terminator.kill_all_on_port(port)
        if killed:
            self.refresh()
        else:
            logger.info(f"Nothing killed on port {port}")
        return killed

    def kill_async(self, record: PortRecord) -> Future:
        """Run ``kill_record`` on the worker pool."""
        return self._executor.submit(self.kill_record, record)
