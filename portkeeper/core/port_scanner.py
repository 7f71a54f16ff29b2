"""Listening port enumeration.

Two interchangeable strategies: psutil (Linux, Windows) and lsof (macOS,
where ``psutil.net_connections`` needs root). ``create_scanner`` picks one
for the running platform.
"""

import re
import subprocess
import sys
from typing import NamedTuple, Optional

import psutil

from .models import PortRecord, ProcessMetadata
from .process_resolver import ProcessResolver
from ..config import LSOF_TIMEOUT_SECONDS, MAX_PORT, MIN_PORT, SLOW_SCAN_THRESHOLD_MS, UNKNOWN
from ..utils.logging_config import PerfTimer, get_logger, timed

logger = get_logger('port_scanner')


class ScanError(Exception):
    """The OS-level socket enumeration failed."""


class RawListener(NamedTuple):
    """A LISTEN socket before process resolution."""
    address: str
    port: int
    pid: int
    process_hint: str = ""


class ScanResult(NamedTuple):
    """Outcome of one scan. ``error`` is set when the OS query failed."""
    records: list[PortRecord]
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class PortScanner:
    """
    Base scanner: enumerate listeners, resolve owners, dedupe, sort.

    One scanner may serve several threads at once (the registry refresh
    and a kill-by-port rescan). Each scan keeps its outcome and its process
    cache to itself; ``last_error`` only mirrors the latest finished scan
    for diagnostics.
    """

    def __init__(self, resolver: Optional[ProcessResolver] = None):
        self.resolver = resolver or ProcessResolver()
        self.last_error: Optional[str] = None

    def _enumerate(self) -> list[RawListener]:
        """Return raw LISTEN rows. Raise ScanError when the OS query fails."""
        raise NotImplementedError

    @timed(threshold_ms=SLOW_SCAN_THRESHOLD_MS)
    def scan_result(self) -> ScanResult:
        """
        Scan all listening TCP ports.

        Returns:
            Records unique by (port, pid), sorted by port. When the OS query
            fails the records are empty and ``error`` holds the reason.
        """
        try:
            listeners = self._enumerate()
        except ScanError as e:
            logger.warning(f"Port scan failed: {e}")
            self.last_error = str(e)
            return ScanResult([], str(e))

        cache: dict[int, ProcessMetadata] = {}
        records: list[PortRecord] = []
        seen: set[tuple[int, int]] = set()

        for listener in listeners:
            key = (listener.port, listener.pid)
            if key in seen:
                continue
            try:
                record = self._build_record(listener, cache)
            except (psutil.Error, OSError, ValueError) as e:
                logger.debug(f"Skipping port {listener.port} (PID={listener.pid}): {e}")
                continue
            seen.add(key)
            records.append(record)

        logger.info(f"Found {len(records)} listening ports ({len(listeners)} sockets, "
                    f"{len(cache)} processes)")
        self.last_error = None
        return ScanResult(sorted(records, key=lambda r: r.port))

    def scan(self) -> list[PortRecord]:
        """Records of a fresh scan; empty when the OS query fails."""
        return self.scan_result().records

    def _build_record(self, listener: RawListener, cache: dict[int, ProcessMetadata]) -> PortRecord:
        metadata = self.resolver.resolve(listener.pid, cache)
        name = metadata.name
        if name == UNKNOWN and listener.process_hint:
            name = listener.process_hint
        return PortRecord.active(
            port=listener.port,
            pid=listener.pid,
            process_name=name,
            address=listener.address,
            user=metadata.user,
            command=metadata.command,
        )

    def find_by_port(self, port: int) -> list[PortRecord]:
        """Fresh scan filtered to active records on ``port``."""
        return [r for r in self.scan() if r.port == port and r.is_active]

    def is_port_in_use(self, port: int) -> bool:
        return len(self.find_by_port(port)) > 0


class PsutilPortScanner(PortScanner):
    """Scanner backed by ``psutil.net_connections``."""

    def _enumerate(self) -> list[RawListener]:
        try:
            with PerfTimer("psutil.net_connections", logger):
                connections = psutil.net_connections(kind='tcp')
        except (psutil.Error, OSError) as e:
            raise ScanError(f"net_connections failed: {e}") from e

        logger.debug(f"Found {len(connections)} total TCP connections")
        listeners: list[RawListener] = []
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            # Sockets owned by other users show no PID without privileges
            if not conn.pid or conn.pid <= 0:
                continue
            listeners.append(RawListener(
                address=conn.laddr.ip,
                port=conn.laddr.port,
                pid=conn.pid,
            ))
        return listeners


# NAME column looks like: *:3000 (LISTEN), 127.0.0.1:8000 (LISTEN), [::1]:5432 (LISTEN)
LSOF_NAME_RE = re.compile(r"^(?P<address>.+):(?P<port>\d+)\s+\(LISTEN\)$")


class LsofPortScanner(PortScanner):
    """Scanner backed by ``lsof -nP -iTCP -sTCP:LISTEN``."""

    COMMAND = ["lsof", "-nP", "-iTCP", "-sTCP:LISTEN"]

    def _enumerate(self) -> list[RawListener]:
        try:
            with PerfTimer("lsof", logger, threshold_ms=SLOW_SCAN_THRESHOLD_MS):
                result = subprocess.run(
                    self.COMMAND,
                    capture_output=True,
                    text=True,
                    timeout=LSOF_TIMEOUT_SECONDS,
                    check=False,
                )
        except FileNotFoundError as e:
            raise ScanError("lsof not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise ScanError(f"lsof timed out after {LSOF_TIMEOUT_SECONDS}s") from e
        except OSError as e:
            raise ScanError(f"lsof failed: {e}") from e

        # lsof exits 1 when nothing matched
        if result.returncode != 0:
            if result.returncode == 1 and not result.stdout.strip() and not result.stderr.strip():
                return []
            message = result.stderr.strip() or f"exit status {result.returncode}"
            raise ScanError(f"lsof failed: {message}")

        return parse_lsof_output(result.stdout)


def parse_lsof_output(output: str) -> list[RawListener]:
    """Parse the default lsof table into raw listeners."""
    listeners: list[RawListener] = []
    for line in output.splitlines()[1:]:  # skip header
        # COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME
        parts = re.split(r"\s+", line.strip(), maxsplit=8)
        if len(parts) < 9:
            continue
        command, pid_text, name = parts[0], parts[1], parts[8]
        match = LSOF_NAME_RE.match(name)
        if not match:
            continue
        try:
            pid = int(pid_text)
            port = int(match.group('port'))
        except ValueError:
            continue
        if pid <= 0 or not MIN_PORT <= port <= MAX_PORT:
            continue
        address = match.group('address').strip('[]')
        listeners.append(RawListener(
            address=address,
            port=port,
            pid=pid,
            process_hint=command.replace("\\x20", " "),  # lsof escapes spaces
        ))
    return listeners


def create_scanner(resolver: Optional[ProcessResolver] = None) -> PortScanner:
    """Pick the scanner strategy for the running platform."""
    if sys.platform == "darwin":
        logger.debug("Using lsof port scanner")
        return LsofPortScanner(resolver)
    logger.debug("Using psutil port scanner")
    return PsutilPortScanner(resolver)
