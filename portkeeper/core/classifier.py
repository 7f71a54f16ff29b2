"""Process classification by well-known process names."""

from enum import Enum
from typing import Optional


class ProcessType(Enum):
    WEB_SERVER = "Web Server"
    DATABASE = "Database"
    DEVELOPMENT = "Development"
    SYSTEM = "System"
    OTHER = "Other"

    @property
    def display_name(self) -> str:
        return self.value


WEB_SERVER_KEYWORDS = (
    "nginx", "apache", "httpd", "caddy", "traefik", "lighttpd", "iis", "iisexpress",
)

DATABASE_KEYWORDS = (
    "postgres", "mysql", "mariadb", "redis", "mongo", "sqlite", "cockroach",
    "clickhouse", "sqlservr", "mssql",
)

DEVELOPMENT_KEYWORDS = (
    "node", "npm", "yarn", "python", "ruby", "php", "java", "go", "cargo", "dotnet",
    "vite", "webpack", "esbuild", "next", "nuxt", "remix", "bun", "deno",
)

SYSTEM_KEYWORDS = (
    # Windows
    "svchost", "csrss", "lsass", "winlogon", "services", "system", "smss", "dwm",
    # macOS / Linux daemons
    "launchd", "sshd", "cupsd", "mdnsresponder", "rapportd", "controlcenter",
)

# Checked in order, first match wins
KEYWORD_TABLE: tuple[tuple[ProcessType, tuple[str, ...]], ...] = (
    (ProcessType.WEB_SERVER, WEB_SERVER_KEYWORDS),
    (ProcessType.DATABASE, DATABASE_KEYWORDS),
    (ProcessType.DEVELOPMENT, DEVELOPMENT_KEYWORDS),
    (ProcessType.SYSTEM, SYSTEM_KEYWORDS),
)


def classify(process_name: Optional[str]) -> ProcessType:
    """
    Detect the process type from a process name.

    Case-insensitive substring match against the keyword tables.
    """
    if not process_name:
        return ProcessType.OTHER

    name = process_name.lower()
    for process_type, keywords in KEYWORD_TABLE:
        if any(keyword in name for keyword in keywords):
            return process_type
    return ProcessType.OTHER
