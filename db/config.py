"""
db/config.py

Database connection settings resolved from the process environment and
optional `.env` / `.env.local` files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_FILENAMES = (".env", ".env.local")
CLOUD_ENVIRONMENTS = frozenset({"prod", "production", "staging", "cloud"})

_DRIVER_PREFIXES = {
    "postgres://": "postgresql+psycopg://",
    "postgresql://": "postgresql+psycopg://",
}
_SUPPORTED_URL_PREFIXES = ("postgresql", "sqlite")


def _parse_env_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export ") :].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None

    key, _, value = line.partition("=")
    key = key.strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        value = value[1:-1]
    return (key, value) if key else None


def load_env_files(project_root: Path | None = None) -> None:
    """
    Load KEY=VALUE pairs from the project's env files.

    Variables already present in the process environment are never overwritten.
    """

    root = project_root or Path(__file__).resolve().parents[1]
    for filename in ENV_FILENAMES:
        env_path = root / filename
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(raw_line)
            if parsed is not None:
                os.environ.setdefault(*parsed)


def normalize_database_url(url: str) -> str:
    """
    Rewrite postgres URLs to the psycopg driver form; other URLs are returned stripped.
    """

    url = url.strip()
    for prefix, replacement in _DRIVER_PREFIXES.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix) :]
    return url


def is_supported_database_url(url: str) -> bool:
    return url.startswith(_SUPPORTED_URL_PREFIXES)


def resolve_database_url() -> str:
    """
    Pick the database URL for this process.

    DATABASE_URL wins; CLOUD_DATABASE_URL applies only when ENVIRONMENT is
    cloud-like; LOCAL_DATABASE_URL is the last resort.
    """

    load_env_files()
    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    candidates = (
        ("DATABASE_URL", True),
        ("CLOUD_DATABASE_URL", environment in CLOUD_ENVIRONMENTS),
        ("LOCAL_DATABASE_URL", True),
    )
    for name, applies in candidates:
        value = (os.getenv(name) or "").strip()
        if applies and value:
            return normalize_database_url(value)

    raise RuntimeError(
        "No database URL configured. Set DATABASE_URL, or configure "
        "LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle_seconds: int = 1800

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


def get_database_settings(database_url: str | None = None) -> DatabaseSettings:
    """
    Build engine settings; database_url overrides URL resolution (tests, one-off scripts).
    """

    url = normalize_database_url(database_url) if database_url else resolve_database_url()
    return DatabaseSettings(
        url=url,
        echo=(os.getenv("SQL_ECHO") or "").strip().lower() in {"1", "true", "yes", "on"},
        pool_size=max(1, _env_int("DB_POOL_SIZE", 5)),
        max_overflow=max(0, _env_int("DB_MAX_OVERFLOW", 10)),
        pool_recycle_seconds=max(30, _env_int("DB_POOL_RECYCLE", 1800)),
    )
