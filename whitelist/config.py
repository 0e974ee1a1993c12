"""
Whitelist sync configuration.

Built once per orchestrator and passed explicitly to the fetcher, cache and
enforcement target. Values come from environment variables, then from
``config.json`` in the config directory (created with defaults on first run).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = os.path.join("plugins", "AutoWhitelist")
CONFIG_FILENAME = "config.json"
CREDENTIALS_FILENAME = "credentials.json"
CACHE_DIRNAME = "cache"
DEFAULT_FOLDER_NAME = "AutoWhitelistPlugin"
DEFAULT_CSV_FILENAME = "whitelist.csv"
DEFAULT_LOCAL_CSV_NAME = "whitelist.csv"
DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0
DEFAULT_RCON_HOST = "127.0.0.1"
DEFAULT_RCON_PORT = 25575

# config.json key -> SyncConfig field
_FILE_KEYS = {
    "drive-folder-name": "drive_folder_name",
    "drive-csv-filename": "drive_csv_filename",
    "local-csv-name": "local_csv_name",
}


@dataclass(frozen=True)
class DriveLocator:
    """Where the whitelist lives in Google Drive: a named folder and file."""

    folder_name: str
    file_name: str


@dataclass(frozen=True)
class SyncConfig:
    config_dir: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_DIR))
    drive_folder_name: str = DEFAULT_FOLDER_NAME
    drive_csv_filename: str = DEFAULT_CSV_FILENAME
    local_csv_name: str = DEFAULT_LOCAL_CSV_NAME
    credentials_file: Optional[Path] = None
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    poll_interval_seconds: float = 0.0
    rcon_host: str = DEFAULT_RCON_HOST
    rcon_port: int = DEFAULT_RCON_PORT
    rcon_password: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "config_dir", Path(self.config_dir))
        if self.credentials_file is None:
            object.__setattr__(self, "credentials_file", self.config_dir / CREDENTIALS_FILENAME)
        else:
            object.__setattr__(self, "credentials_file", Path(self.credentials_file))
        if self.fetch_timeout_seconds <= 0:
            raise ConfigError("fetch_timeout_seconds must be positive")
        if self.poll_interval_seconds < 0:
            raise ConfigError("poll_interval_seconds must not be negative")
        if not 0 < self.rcon_port < 65536:
            raise ConfigError(f"rcon_port out of range: {self.rcon_port}")
        for name in ("drive_folder_name", "drive_csv_filename", "local_csv_name"):
            if not str(getattr(self, name)).strip():
                raise ConfigError(f"{name} must not be empty")

    @property
    def cache_dir(self) -> Path:
        return self.config_dir / CACHE_DIRNAME

    @property
    def local_csv_path(self) -> Path:
        return self.cache_dir / self.local_csv_name

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def locator(self) -> DriveLocator:
        return DriveLocator(folder_name=self.drive_folder_name, file_name=self.drive_csv_filename)

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        return cls(
            config_dir=Path(os.getenv("AUTOWHITELIST_CONFIG_DIR", DEFAULT_CONFIG_DIR)),
            drive_folder_name=os.getenv("AUTOWHITELIST_DRIVE_FOLDER", DEFAULT_FOLDER_NAME),
            drive_csv_filename=os.getenv("AUTOWHITELIST_DRIVE_FILE", DEFAULT_CSV_FILENAME),
            local_csv_name=os.getenv("AUTOWHITELIST_LOCAL_CSV", DEFAULT_LOCAL_CSV_NAME),
            credentials_file=Path(credentials) if credentials else None,
            fetch_timeout_seconds=_env_number("AUTOWHITELIST_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT_SECONDS),
            poll_interval_seconds=_env_number("AUTOWHITELIST_POLL_INTERVAL", 0.0),
            rcon_host=os.getenv("RCON_HOST", DEFAULT_RCON_HOST),
            rcon_port=int(_env_number("RCON_PORT", DEFAULT_RCON_PORT)),
            rcon_password=os.getenv("RCON_PASSWORD") or None,
        )

    @classmethod
    def load(cls, base: Optional["SyncConfig"] = None) -> "SyncConfig":
        """Overlay ``config.json`` on ``base`` (environment by default).

        Writes a default config file when none exists. Empty values keep the
        current setting; unknown keys are ignored.
        """
        config = base or cls.from_env()
        ensure_directories(config)

        if not config.config_file.exists():
            write_default_config_file(config.config_file)
            return config

        try:
            with config.config_file.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error(
                "Failed to read config file, using defaults",
                extra={"path": str(config.config_file), "error": str(exc)},
            )
            return config

        if not isinstance(raw, dict):
            raise ConfigError(f"{config.config_file} must contain a top-level object")

        overrides = {}
        for key, attr in _FILE_KEYS.items():
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                overrides[attr] = value.strip()
        return replace(config, **overrides)


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def ensure_directories(config: SyncConfig) -> None:
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.cache_dir.mkdir(parents=True, exist_ok=True)
    if config.credentials_file is not None and not config.credentials_file.exists():
        logger.warning(
            "Credentials file not found",
            extra={"path": str(config.credentials_file)},
        )


def write_default_config_file(path: Path) -> None:
    payload = {
        "drive-folder-name": DEFAULT_FOLDER_NAME,
        "drive-csv-filename": DEFAULT_CSV_FILENAME,
        "local-csv-name": DEFAULT_LOCAL_CSV_NAME,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")
    logger.info("Default config file created", extra={"path": str(path)})
