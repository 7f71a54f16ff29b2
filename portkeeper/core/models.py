"""Data models for PortKeeper."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .classifier import ProcessType, classify
from ..config import MAX_PORT, MIN_PORT, NO_VALUE, NOT_RUNNING, UNKNOWN


def validate_port(port: int) -> int:
    """Return ``port`` as an int, raising ValueError when it is out of range."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"Port must be an integer, got {port!r}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"Port {port} outside {MIN_PORT}-{MAX_PORT}")
    return port


@dataclass(frozen=True)
class ProcessMetadata:
    """Resolved details of a process."""
    name: str = UNKNOWN
    command: str = UNKNOWN
    user: str = UNKNOWN

    @classmethod
    def unknown(cls) -> "ProcessMetadata":
        return cls()


@dataclass(frozen=True)
class PortRecord:
    """
    One listening (port, pid) pair observed during a scan.

    Records are rebuilt on every scan and never updated in place. The
    synthetic ``id`` only tells UI rows apart; two records describe the
    same listener when their ``key`` is equal.
    """
    port: int
    pid: int
    process_name: str
    address: str = ""
    user: str = ""
    command: str = ""
    is_active: bool = True
    id: uuid.UUID = field(default_factory=uuid.uuid4, compare=False)

    def __post_init__(self):
        if self.is_active and self.pid <= 0:
            raise ValueError(f"Active record for port {self.port} needs a PID, got {self.pid}")

    @property
    def key(self) -> tuple[int, int]:
        return (self.port, self.pid)

    @property
    def process_type(self) -> ProcessType:
        return classify(self.process_name)

    @property
    def display_port(self) -> str:
        return f":{self.port}"

    @classmethod
    def active(cls, port: int, pid: int, process_name: str, address: str,
               user: str, command: str) -> "PortRecord":
        """Create an active record from scan results."""
        return cls(
            port=port,
            pid=pid,
            process_name=process_name,
            address=address,
            user=user,
            command=command,
            is_active=True,
        )

    @classmethod
    def inactive(cls, port: int) -> "PortRecord":
        """Placeholder for a favorite or watched port that is not listening."""
        return cls(
            port=port,
            pid=0,
            process_name=NOT_RUNNING,
            address=NO_VALUE,
            user=NO_VALUE,
            command="",
            is_active=False,
        )


@dataclass(frozen=True)
class WatchedPort:
    """A port monitored for start/stop transitions."""
    port: int
    notify_on_start: bool = True
    notify_on_stop: bool = True
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "port": self.port,
            "notifyOnStart": self.notify_on_start,
            "notifyOnStop": self.notify_on_stop,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatchedPort":
        """
        Build from the persisted JSON form.

        Raises:
            ValueError: If the port is missing or invalid.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Watched port entry must be an object, got {type(data).__name__}")
        port = validate_port(data.get("port"))
        raw_id = data.get("id")
        try:
            watch_id = uuid.UUID(str(raw_id)) if raw_id else uuid.uuid4()
        except ValueError:
            watch_id = uuid.uuid4()
        return cls(
            port=port,
            notify_on_start=bool(data.get("notifyOnStart", True)),
            notify_on_stop=bool(data.get("notifyOnStop", True)),
            id=watch_id,
        )


class WatchState(Enum):
    UNWATCHED = "unwatched"
    WATCHED_INACTIVE = "watched_inactive"
    WATCHED_ACTIVE = "watched_active"


class PortView(Enum):
    """Sidebar selections that pick the source rows of a view."""
    ALL = "all"
    FAVORITES = "favorites"
    WATCHED = "watched"
    WEB_SERVER = "web-server"
    DATABASE = "database"
    DEVELOPMENT = "development"
    SYSTEM = "system"
    OTHER = "other"

    @property
    def process_type(self) -> Optional[ProcessType]:
        return _VIEW_PROCESS_TYPES.get(self)


_VIEW_PROCESS_TYPES = {
    PortView.WEB_SERVER: ProcessType.WEB_SERVER,
    PortView.DATABASE: ProcessType.DATABASE,
    PortView.DEVELOPMENT: ProcessType.DEVELOPMENT,
    PortView.SYSTEM: ProcessType.SYSTEM,
    PortView.OTHER: ProcessType.OTHER,
}


def _all_process_types() -> set[ProcessType]:
    return set(ProcessType)


@dataclass
class PortFilter:
    """Filter settings for the port list."""
    search_text: str = ""
    min_port: Optional[int] = None
    max_port: Optional[int] = None
    process_types: set[ProcessType] = field(default_factory=_all_process_types)
    show_only_favorites: bool = False
    show_only_watched: bool = False

    @property
    def is_active(self) -> bool:
        return bool(
            self.search_text
            or self.min_port is not None
            or self.max_port is not None
            or len(self.process_types) < len(ProcessType)
            or self.show_only_favorites
            or self.show_only_watched
        )

    def matches(self, record: PortRecord, favorites: set[int],
                watched_ports: list[WatchedPort]) -> bool:
        if self.search_text:
            query = self.search_text.lower()
            searchable = (
                record.process_name.lower(),
                str(record.port),
                str(record.pid),
                record.address.lower(),
                record.user.lower(),
                record.command.lower(),
            )
            if not any(query in value for value in searchable):
                return False

        if self.min_port is not None and record.port < self.min_port:
            return False
        if self.max_port is not None and record.port > self.max_port:
            return False

        if record.process_type not in self.process_types:
            return False

        if self.show_only_favorites and record.port not in favorites:
            return False
        if self.show_only_watched and not any(w.port == record.port for w in watched_ports):
            return False

        return True

    def reset(self):
        self.search_text = ""
        self.min_port = None
        self.max_port = None
        self.process_types = _all_process_types()
        self.show_only_favorites = False
        self.show_only_watched = False


@dataclass
class ProcessGroup:
    """Ports owned by one process, for the grouped view."""
    pid: int
    process_name: str
    ports: list[PortRecord] = field(default_factory=list)


@dataclass(frozen=True)
class RegistrySnapshot:
    """Plain-data view of registry state delivered to subscribers."""
    ports: tuple[PortRecord, ...]
    favorites: frozenset[int]
    watched_ports: tuple[WatchedPort, ...]
    refresh_interval: int
    show_notifications: bool
    is_scanning: bool = False

    @property
    def active_ports(self) -> set[int]:
        return {p.port for p in self.ports if p.is_active}
