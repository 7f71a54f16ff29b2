"""Resolve process details (name, command line, owner) from PIDs."""

import getpass
from typing import Optional

import psutil

from .models import ProcessMetadata
from ..config import COMMAND_MAX_LENGTH, UNKNOWN
from ..utils.logging_config import get_logger

logger = get_logger('process_resolver')


class ProcessResolver:
    """
    Resolves and caches process metadata by PID.

    Scanners pass a cache of their own to ``resolve`` so concurrent scans
    never share or clear each other's entries. Callers without one use the
    resolver's cache, which ``clear_cache()`` resets.
    """

    def __init__(self):
        self._cache: dict[int, ProcessMetadata] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self):
        """Start a new scan generation."""
        self._cache.clear()

    def resolve(self, pid: int, cache: Optional[dict[int, ProcessMetadata]] = None) -> ProcessMetadata:
        """
        Get name, command line and owning user for a PID.

        Each field degrades to a placeholder on its own; the result is
        all ``"Unknown"`` only when the process cannot be opened.
        """
        if cache is None:
            cache = self._cache
        cached = cache.get(pid)
        if cached is not None:
            return cached

        metadata = self._lookup(pid)
        cache[pid] = metadata
        return metadata

    def _lookup(self, pid: int) -> ProcessMetadata:
        try:
            proc = psutil.Process(pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"Cannot open PID={pid}: {e}")
            return ProcessMetadata.unknown()

        with proc.oneshot():
            name = self._resolve_name(proc)
            command = self._resolve_command(proc, name)
            user = self._resolve_user(proc)

        return ProcessMetadata(name=name, command=command, user=user)

    def _resolve_name(self, proc: psutil.Process) -> str:
        try:
            return proc.name() or UNKNOWN
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return UNKNOWN

    def _resolve_command(self, proc: psutil.Process, name: str) -> str:
        """Full command line, then executable path, then process name."""
        command = ""
        try:
            command = " ".join(proc.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            pass

        if not command:
            try:
                command = proc.exe()
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass

        if not command:
            command = name

        if len(command) > COMMAND_MAX_LENGTH:
            command = command[:COMMAND_MAX_LENGTH] + "..."
        return command

    def _resolve_user(self, proc: psutil.Process) -> str:
        try:
            username = proc.username()
            if username:
                return username
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            pass
        return current_user()


def current_user() -> str:
    """Session user, used when a process owner cannot be read."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return UNKNOWN
