"""Configuration management for Nervos.

The device configuration is a JSON file in the config directory, which can
be customized via CLI argument. The sync server is configured from
environment variables.

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .crypto import PBKDF2_ITERATIONS
from .validation import ValidationError, validate_api_url, validate_positive_number

logger = logging.getLogger(__name__)

__all__ = ["Config", "ServerConfig", "DEFAULT_API_URL", "CHUNK_SELECTIONS"]

DEFAULT_API_URL = "https://nervos.kiasaki.com"
DEFAULT_SYNC_INTERVAL = 30
DEFAULT_SAVE_DELAY = 1.0
DEFAULT_REQUEST_TIMEOUT = 30

CHUNK_SELECTIONS = ("covering", "legacy")


class Config:
    """Manages device configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/nervos/
        """
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".config" / "nervos"
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "nervos.db"),
            "api_url": DEFAULT_API_URL,
            "sync_interval": DEFAULT_SYNC_INTERVAL,
            "save_delay": DEFAULT_SAVE_DELAY,
            "request_timeout": DEFAULT_REQUEST_TIMEOUT,
            "kdf_iterations": PBKDF2_ITERATIONS,
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration, writing defaults if the file is missing or invalid."""
        defaults = self._default_config()
        if not self.config_file.exists():
            self.save_config(defaults)
            return defaults
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Invalid config file {self.config_file}: {e}. Using defaults.")
            return defaults
        if not isinstance(loaded, dict):
            logger.warning(f"Config file {self.config_file} is not an object. Using defaults.")
            return defaults
        defaults.update(loaded)
        return defaults

    def save_config(self, config: Dict[str, Any]) -> None:
        """Write configuration to disk."""
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        value = self.config_data.get(key)
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        self.config_data[key] = value
        self.save_config(self.config_data)

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    def get_database_file(self) -> Path:
        return Path(self.get("database_file", str(self.config_dir / "nervos.db")))

    def get_api_url(self) -> str:
        return validate_api_url(self.get("api_url", DEFAULT_API_URL))

    def get_sync_interval(self) -> float:
        return validate_positive_number(self.get("sync_interval", DEFAULT_SYNC_INTERVAL), "sync_interval")

    def get_save_delay(self) -> float:
        return validate_positive_number(self.get("save_delay", DEFAULT_SAVE_DELAY), "save_delay")

    def get_request_timeout(self) -> float:
        return validate_positive_number(
            self.get("request_timeout", DEFAULT_REQUEST_TIMEOUT), "request_timeout"
        )

    def get_kdf_iterations(self) -> int:
        """PBKDF2 iteration count. Every device of an account must use the same value."""
        value = self.get("kdf_iterations", PBKDF2_ITERATIONS)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError("kdf_iterations", f"must be a positive integer, got {value!r}")
        return value


def _int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(name, f"must be an integer, got '{raw}'") from None


@dataclass
class ServerConfig:
    """Sync server settings.

    Attributes:
        port: HTTP port to listen on
        object_store: "s3", "file" or "memory"
        s3_bucket: Bucket holding user chunks (s3 store)
        aws_region: Bucket region
        aws_access_key: Static credentials, or None for the boto3 default chain
        aws_secret_key: Static credentials, or None for the boto3 default chain
        data_dir: Root directory of the file store
        chunk_size: Items per chunk before rollover
        bcrypt_rounds: Cost factor for new passkey hashes
        chunk_selection: "covering" or "legacy" (see sync.select_chunk)
    """

    port: int = 8000
    object_store: str = "file"
    s3_bucket: str = ""
    aws_region: str = "us-east-1"
    aws_access_key: Optional[str] = None
    aws_secret_key: Optional[str] = None
    data_dir: str = "nervos-data"
    chunk_size: int = 500
    bcrypt_rounds: int = 11
    chunk_selection: str = "covering"

    def __post_init__(self) -> None:
        if self.object_store not in ("s3", "file", "memory"):
            raise ValidationError("OBJECT_STORE", f"unknown store '{self.object_store}'")
        if self.object_store == "s3" and not self.s3_bucket:
            raise ValidationError("S3_BUCKET", "is required for the s3 store")
        if self.chunk_size < 1:
            raise ValidationError("CHUNK_SIZE", "must be at least 1")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValidationError("BCRYPT_ROUNDS", "must be between 4 and 31")
        if self.chunk_selection not in CHUNK_SELECTIONS:
            raise ValidationError(
                "CHUNK_SELECTION", f"must be one of {', '.join(CHUNK_SELECTIONS)}"
            )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """Build the server config from environment variables."""
        env = os.environ if env is None else env
        bucket = env.get("S3_BUCKET", "")
        return cls(
            port=_int_from_env(env, "PORT", 8000),
            object_store=env.get("OBJECT_STORE") or ("s3" if bucket else "file"),
            s3_bucket=bucket,
            aws_region=env.get("AWS_REGION") or "us-east-1",
            aws_access_key=env.get("AWS_ACCESS_KEY") or None,
            aws_secret_key=env.get("AWS_SECRET_KEY") or None,
            data_dir=env.get("NERVOS_DATA_DIR") or "nervos-data",
            chunk_size=_int_from_env(env, "CHUNK_SIZE", 500),
            bcrypt_rounds=_int_from_env(env, "BCRYPT_ROUNDS", 11),
            chunk_selection=env.get("CHUNK_SELECTION") or "covering",
        )
