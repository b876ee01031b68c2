"""
Service configuration loaded from environment variables.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a duration such as ``90``, ``45s``, ``30m`` or ``1h30m`` into seconds.

    Raises ValueError for anything else.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _env_duration(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        seconds = parse_duration(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed {name}={raw!r}; using {default}s")
        return default
    if seconds <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}; using {default}s")
        return default
    return seconds


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    temp_dir: Path = Path("/tmp/converter")
    cleanup_interval: float = 3600.0
    retention_period: float = 24 * 3600.0
    database_url: str = "sqlite:///./converter.db"
    converter_binary: str = "libreoffice"
    job_timeout_sec: int = 1800
    max_upload_mb: int = 300
    recent_jobs_limit: int = 100
    shutdown_grace_sec: float = 30.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            temp_dir=Path(os.getenv("APP_TEMP_DIR", "/tmp/converter")).resolve(),
            cleanup_interval=_env_duration("CLEANUP_INTERVAL", 3600.0),
            retention_period=_env_duration("RETENTION_PERIOD", 24 * 3600.0),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./converter.db"),
            converter_binary=os.getenv("CONVERTER_BINARY", "libreoffice"),
            job_timeout_sec=int(os.getenv("JOB_TIMEOUT_SEC", "1800")),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "300")),
            recent_jobs_limit=int(os.getenv("RECENT_JOBS_LIMIT", "100")),
            shutdown_grace_sec=_env_duration("SHUTDOWN_GRACE_SEC", 30.0),
            log_level=os.getenv("APP_LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            reload=_env_bool("RELOAD"),
        )
