"""projdash backend configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


# Root whose immediate subdirectories are candidate projects
PROJECTS_DIR = Path(os.getenv("PROJDASH_PROJECTS_DIR", str(Path.home() / "projects"))).expanduser()

# Folders directly under the root that group projects instead of being one
CATEGORY_FOLDERS = _env_list("PROJDASH_CATEGORY_FOLDERS")

# Watcher tuning
WATCH_ENABLED = _env_bool("PROJDASH_WATCH_ENABLED", True)
DEBOUNCE_MS = _env_int("PROJDASH_DEBOUNCE_MS", 500)
WRITE_STABILITY_MS = _env_int("PROJDASH_WRITE_STABILITY_MS", 300)
WATCH_DEPTH = _env_int("PROJDASH_WATCH_DEPTH", 4)
WATCH_RETRY_SECONDS = _env_float("PROJDASH_WATCH_RETRY_SECONDS", 1.0)
WATCH_RETRY_MAX_SECONDS = 30.0

# Code statistics
CODE_STATS_TTL_SECONDS = _env_float("PROJDASH_CODE_STATS_TTL_SECONDS", 300.0)
CODE_STATS_BATCH_SIZE = _env_int("PROJDASH_CODE_STATS_BATCH_SIZE", 20)
COUNTED_EXTENSIONS = frozenset({
    ".js", ".jsx", ".ts", ".tsx", ".py", ".css", ".html", ".json", ".md", ".sql", ".sh",
})
SKIP_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", ".next", "__pycache__", ".vercel", "coverage",
})

# Git inspection bounds and timeouts
MAX_COMMITS = _env_int("PROJDASH_MAX_COMMITS", 15)
MAX_BRANCHES = _env_int("PROJDASH_MAX_BRANCHES", 10)
MAX_PARSED_COMMITS = 10
COMMIT_MESSAGE_LENGTH = 50
RECENT_COMMITS = _env_int("PROJDASH_RECENT_COMMITS", 5)
GIT_TIMEOUT_SECONDS = _env_float("PROJDASH_GIT_TIMEOUT_SECONDS", 3.0)
GIT_LOG_TIMEOUT_SECONDS = _env_float("PROJDASH_GIT_LOG_TIMEOUT_SECONDS", 5.0)
# Upper bound on reaping a killed git process group
GIT_KILL_GRACE_SECONDS = 1.0

# Auxiliary task files
MAX_TASKS = 10
LIVE_STATUS_FILE = Path(
    os.getenv("PROJDASH_LIVE_STATUS_FILE", str(Path.home() / ".project-dashboard" / "status.json"))
).expanduser()

# Observability
OTEL_ENABLED = _env_bool("PROJDASH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("PROJDASH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("PROJDASH_OTEL_SERVICE_NAME", "projdash")
PROM_PORT = _env_int("PROJDASH_PROM_PORT", 9464)

# CORS
FRONTEND_ORIGIN = os.getenv("PROJDASH_FRONTEND_ORIGIN", "http://localhost:5173")
