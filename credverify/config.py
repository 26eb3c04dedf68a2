"""
Runtime configuration.

Values come from the environment, optionally seeded from a ``.env`` file in
the working directory. Every variable is prefixed with ``CREDVERIFY_``.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "CREDVERIFY_"


def load_env(env_path: Optional[Path] = None) -> bool:
    """Load .env from the project root if present.

    Existing environment variables win over values in the file.
    Returns True when a file was loaded.
    """
    env_path = env_path or Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)


def _get(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_int(name: str, default: int) -> int:
    raw = _get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = _get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = _get(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Resolved configuration for one process."""

    db_path: Path = Path("data/credverify.db")
    document_dir: Path = Path("data/documents")
    ocr_endpoint: Optional[str] = None
    ocr_api_key: Optional[str] = None
    ocr_timeout: float = 30.0
    max_attempts: int = 3
    credential_validity_days: int = 365
    purge_documents: bool = True
    max_document_bytes: int = 10 * 1024 * 1024
    stale_attempt_minutes: int = 30
    sweep_interval: int = 3600
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from CREDVERIFY_* environment variables."""
        defaults = cls()
        settings = cls(
            db_path=Path(_get("DB_PATH", str(defaults.db_path))),
            document_dir=Path(_get("DOCUMENT_DIR", str(defaults.document_dir))),
            ocr_endpoint=_get("OCR_ENDPOINT"),
            ocr_api_key=_get("OCR_API_KEY"),
            ocr_timeout=_get_float("OCR_TIMEOUT", defaults.ocr_timeout),
            max_attempts=_get_int("MAX_ATTEMPTS", defaults.max_attempts),
            credential_validity_days=_get_int(
                "CREDENTIAL_VALIDITY_DAYS", defaults.credential_validity_days
            ),
            purge_documents=_get_bool("PURGE_DOCUMENTS", defaults.purge_documents),
            max_document_bytes=_get_int("MAX_DOCUMENT_BYTES", defaults.max_document_bytes),
            stale_attempt_minutes=_get_int(
                "STALE_ATTEMPT_MINUTES", defaults.stale_attempt_minutes
            ),
            sweep_interval=_get_int("SWEEP_INTERVAL", defaults.sweep_interval),
            log_level=_get("LOG_LEVEL", defaults.log_level).upper(),
            log_dir=Path(_get("LOG_DIR", str(defaults.log_dir))),
        )
        if settings.max_attempts < 1:
            raise ValueError(f"{ENV_PREFIX}MAX_ATTEMPTS must be at least 1")
        return settings
