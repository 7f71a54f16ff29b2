"""Two-phase process termination: graceful request, then forced tree kill."""

import subprocess
import sys
from typing import Optional

import psutil

from .port_scanner import PortScanner, create_scanner
from ..config import FORCE_KILL_CONFIRM_SECONDS, GRACE_PERIOD_SECONDS
from ..utils.logging_config import get_logger

logger = get_logger('process_terminator')


class ProcessTerminator:
    """Terminates processes and everything listening on a port."""

    def __init__(self, scanner: Optional[PortScanner] = None,
                 grace_period: float = GRACE_PERIOD_SECONDS,
                 confirm_timeout: float = FORCE_KILL_CONFIRM_SECONDS):
        self.port_scanner = scanner or create_scanner()
        self.grace_period = grace_period
        self.confirm_timeout = confirm_timeout
        logger.debug(f"ProcessTerminator initialized (grace={grace_period}s)")

    def process_exists(self, pid: int) -> bool:
        """Check if a process exists and has not exited. Zombies count as gone."""
        if pid <= 0:
            return False
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False
        except psutil.AccessDenied:
            # Exists but belongs to someone else
            return True

    def kill_gracefully(self, pid: int) -> tuple[bool, str]:
        """
        Ask a process to exit, force-kill its tree if it does not.

        A process that is already gone counts as success.

        Args:
            pid: Process ID to terminate.

        Returns:
            Tuple of (success, message).
        """
        logger.info(f"Attempting graceful kill of PID={pid}")
        if pid <= 0:
            return False, f"Invalid PID {pid}"

        if not self.process_exists(pid):
            logger.info(f"PID={pid} not running, nothing to kill")
            return True, f"Process {pid} is not running"

        try:
            proc = psutil.Process(pid)
            proc_name = proc.name()
        except psutil.NoSuchProcess:
            logger.info(f"PID={pid} not running, nothing to kill")
            return True, f"Process {pid} is not running"
        except psutil.AccessDenied:
            logger.error(f"Access denied when opening PID={pid}")
            return False, f"Access denied - cannot kill PID {pid}. Try running as administrator."

        try:
            self._request_close(proc)
            try:
                proc.wait(timeout=self.grace_period)
                logger.info(f"Process {proc_name} (PID: {pid}) exited gracefully")
                return True, f"Terminated process {proc_name} (PID: {pid})"
            except psutil.TimeoutExpired:
                logger.warning(f"Process {proc_name} (PID: {pid}) still running after "
                               f"{self.grace_period}s, force killing")

            self._kill_tree(proc)
            try:
                proc.wait(timeout=self.confirm_timeout)
            except psutil.TimeoutExpired:
                logger.warning(f"Process {proc_name} (PID: {pid}) not confirmed dead after force kill")
            return True, f"Force killed process {proc_name} (PID: {pid})"

        except psutil.NoSuchProcess:
            # Exited between steps
            logger.info(f"Process {proc_name} (PID: {pid}) exited during kill")
            return True, f"Terminated process {proc_name} (PID: {pid})"
        except (psutil.AccessDenied, PermissionError):
            logger.error(f"Access denied when trying to kill PID={pid}")
            return False, f"Access denied - cannot kill PID {pid}. Try running as administrator."
        except (psutil.Error, OSError) as e:
            logger.exception(f"Error killing process PID={pid}")
            return False, f"Error killing process {pid}: {e}"

    def _request_close(self, proc: psutil.Process):
        """SIGTERM on POSIX, a window close request on Windows."""
        if sys.platform == "win32":
            # taskkill without /F posts WM_CLOSE instead of terminating
            try:
                subprocess.run(
                    ['taskkill', '/PID', str(proc.pid)],
                    capture_output=True,
                    check=False,
                )
            except OSError as e:
                # The grace wait and forced kill still run
                logger.warning(f"taskkill failed for PID={proc.pid}: {e}")
        else:
            proc.terminate()

    def _kill_tree(self, proc: psutil.Process):
        """Force kill children first, then the process itself."""
        try:
            children = proc.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            children = []

        for child in children:
            try:
                child.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        proc.kill()
        logger.debug(f"Force killed PID={proc.pid} and {len(children)} children")

    def kill_all_on_port(self, port: int) -> int:
        """
        Kill every process listening on a port.

        Re-scans first since a cached PID may have been reused.

        Returns:
            Number of processes successfully terminated.
        """
        records = self.port_scanner.find_by_port(port)
        pids = sorted({r.pid for r in records})
        logger.info(f"Killing {len(pids)} process(es) on port {port}: {pids}")

        killed = 0
        for pid in pids:
            success, message = self.kill_gracefully(pid)
            if success:
                killed += 1
            else:
                logger.warning(f"Port {port}: {message}")
        return killed
