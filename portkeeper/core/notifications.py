"""Notification sinks for watched port events."""

from ..utils.logging_config import get_logger

logger = get_logger('notifications')


class NotificationSink:
    """Receives watched port events. Subclasses decide how to deliver them."""

    def notify_port_started(self, port: int, process_name: str):
        self.notify("Port started", f"Port {port} started - Process: {process_name}")

    def notify_port_stopped(self, port: int):
        self.notify("Port stopped", f"Port {port} stopped")

    def notify(self, title: str, message: str):
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the application log."""

    def notify(self, title: str, message: str):
        logger.info(f"{title}: {message}")


class ConsoleNotificationSink(NotificationSink):
    """Prints notifications, used by the foreground monitor."""

    def notify(self, title: str, message: str):
        print(f"[{title}] {message}", flush=True)
