"""Unit tests for configuration.

Tests core/config.py: the device JSON config and the server environment config.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from nervos.core.config import DEFAULT_API_URL, Config, ServerConfig
from nervos.core.crypto import PBKDF2_ITERATIONS
from nervos.core.validation import ValidationError


@pytest.mark.unit
class TestConfig:
    """Tests for the device Config."""

    def test_defaults_written(self, test_config_dir: Path) -> None:
        config = Config(config_dir=test_config_dir)
        assert (test_config_dir / "config.json").exists()
        assert config.get_api_url() == DEFAULT_API_URL
        assert config.get_sync_interval() == 30
        assert config.get_save_delay() == 1.0
        assert config.get_request_timeout() == 30
        assert config.get_kdf_iterations() == PBKDF2_ITERATIONS
        assert config.get_database_file() == test_config_dir / "nervos.db"
        assert config.get_config_dir() == test_config_dir

    def test_set_persists(self, test_config_dir: Path) -> None:
        Config(config_dir=test_config_dir).set("api_url", "http://localhost:9000")
        assert Config(config_dir=test_config_dir).get_api_url() == "http://localhost:9000"

    def test_partial_file_merged_with_defaults(self, test_config_dir: Path) -> None:
        (test_config_dir / "config.json").write_text(json.dumps({"sync_interval": 5}))
        config = Config(config_dir=test_config_dir)
        assert config.get_sync_interval() == 5
        assert config.get_api_url() == DEFAULT_API_URL

    def test_invalid_json_falls_back_to_defaults(self, test_config_dir: Path) -> None:
        (test_config_dir / "config.json").write_text("{not json")
        assert Config(config_dir=test_config_dir).get_sync_interval() == 30

    def test_non_object_falls_back_to_defaults(self, test_config_dir: Path) -> None:
        (test_config_dir / "config.json").write_text("[1, 2]")
        assert Config(config_dir=test_config_dir).get_api_url() == DEFAULT_API_URL

    def test_get_default(self, test_config_dir: Path) -> None:
        assert Config(config_dir=test_config_dir).get("missing", "fallback") == "fallback"

    @pytest.mark.parametrize("key,value,getter", [
        ("api_url", "ftp://x", "get_api_url"),
        ("sync_interval", 0, "get_sync_interval"),
        ("save_delay", "soon", "get_save_delay"),
        ("request_timeout", -1, "get_request_timeout"),
        ("kdf_iterations", 0, "get_kdf_iterations"),
        ("kdf_iterations", 1.5, "get_kdf_iterations"),
    ])
    def test_invalid_values_rejected(
        self, test_config_dir: Path, key: str, value: object, getter: str
    ) -> None:
        config = Config(config_dir=test_config_dir)
        config.set(key, value)
        with pytest.raises(ValidationError) as exc_info:
            getattr(config, getter)()
        assert exc_info.value.field == key


@pytest.mark.unit
class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    def test_defaults(self) -> None:
        config = ServerConfig.from_env({})
        assert config.port == 8000
        assert config.object_store == "file"
        assert config.chunk_size == 500
        assert config.bcrypt_rounds == 11
        assert config.chunk_selection == "covering"

    def test_bucket_selects_s3(self) -> None:
        config = ServerConfig.from_env({
            "S3_BUCKET": "notes",
            "AWS_REGION": "eu-west-1",
            "AWS_ACCESS_KEY": "AKIA",
            "AWS_SECRET_KEY": "secret",
        })
        assert config.object_store == "s3"
        assert config.s3_bucket == "notes"
        assert config.aws_region == "eu-west-1"
        assert config.aws_access_key == "AKIA"
        assert config.aws_secret_key == "secret"

    def test_overrides(self) -> None:
        config = ServerConfig.from_env({
            "PORT": "9001",
            "OBJECT_STORE": "memory",
            "CHUNK_SIZE": "10",
            "BCRYPT_ROUNDS": "4",
            "CHUNK_SELECTION": "legacy",
            "NERVOS_DATA_DIR": "/srv/nervos",
        })
        assert config.port == 9001
        assert config.object_store == "memory"
        assert config.chunk_size == 10
        assert config.bcrypt_rounds == 4
        assert config.chunk_selection == "legacy"
        assert config.data_dir == "/srv/nervos"

    @pytest.mark.parametrize("env,field", [
        ({"PORT": "eighty"}, "PORT"),
        ({"OBJECT_STORE": "ftp"}, "OBJECT_STORE"),
        ({"OBJECT_STORE": "s3"}, "S3_BUCKET"),
        ({"CHUNK_SIZE": "0"}, "CHUNK_SIZE"),
        ({"BCRYPT_ROUNDS": "2"}, "BCRYPT_ROUNDS"),
        ({"CHUNK_SELECTION": "random"}, "CHUNK_SELECTION"),
    ])
    def test_invalid_env_rejected(self, env: dict, field: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ServerConfig.from_env(env)
        assert exc_info.value.field == field
