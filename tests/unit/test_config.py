"""
Unit tests for engine configuration loading.
"""

import os
from pathlib import Path

import pytest

from coinbid.core.config import EngineConfig, load_config


class TestEngineConfig:

    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.min_bid_increment == 10
        assert cfg.extension_window_minutes == 2
        assert cfg.max_extensions == 10
        assert cfg.db_path == Path("data") / "coinbid.db"

    def test_paths_coerced(self):
        cfg = EngineConfig(data_dir="/tmp/coinbid-test")
        assert isinstance(cfg.data_dir, Path)


class TestLoadConfig:

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("COINBID_MIN_BID_INCREMENT", "25")
        monkeypatch.setenv("COINBID_RETRY_BACKOFF_SECONDS", "0.5")
        cfg = load_config()

        assert cfg.min_bid_increment == 25
        assert cfg.retry_backoff_seconds == 0.5

    def test_explicit_override_wins(self, monkeypatch):
        monkeypatch.setenv("COINBID_MAX_EXTENSIONS", "4")
        cfg = load_config(max_extensions=7)
        assert cfg.max_extensions == 7

    def test_logging_from_env(self, monkeypatch):
        monkeypatch.setenv("COINBID_LOG_LEVEL", "info")
        monkeypatch.setenv("COINBID_LOG_TO_FILE", "yes")
        cfg = load_config()

        assert cfg.log_level == "info"
        assert cfg.log_to_file is True

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("COINBID_MAX_RETRIES", "many")
        with pytest.raises(ValueError, match="COINBID_MAX_RETRIES"):
            load_config()

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("COINBID_ENDING_SOON_HOURS=6\nCOINBID_DATA_DIR=/tmp/coinbid-env\n")
        try:
            cfg = load_config(env_file=str(env_file))
        finally:
            os.environ.pop("COINBID_ENDING_SOON_HOURS", None)
            os.environ.pop("COINBID_DATA_DIR", None)

        assert cfg.ending_soon_hours == 6
        assert cfg.data_dir == Path("/tmp/coinbid-env")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
