from .classifier import ProcessType, classify
from .models import (
    PortRecord, ProcessMetadata, WatchedPort, PortFilter, PortView,
    ProcessGroup, RegistrySnapshot, WatchState,
)
from .process_resolver import ProcessResolver
from .port_scanner import (
    PortScanner, PsutilPortScanner, LsofPortScanner, ScanError, ScanResult, create_scanner,
)
from .process_terminator import ProcessTerminator
from .settings import SettingsStore
from .notifications import NotificationSink, LoggingNotificationSink, ConsoleNotificationSink
from .registry import PortRegistry

__all__ = [
    'ProcessType', 'classify',
    'PortRecord', 'ProcessMetadata', 'WatchedPort', 'PortFilter', 'PortView',
    'ProcessGroup', 'RegistrySnapshot', 'WatchState',
    'ProcessResolver',
    'PortScanner', 'PsutilPortScanner', 'LsofPortScanner', 'ScanError', 'ScanResult', 'create_scanner',
    'ProcessTerminator',
    'SettingsStore',
    'NotificationSink', 'LoggingNotificationSink', 'ConsoleNotificationSink',
    'PortRegistry',
]
