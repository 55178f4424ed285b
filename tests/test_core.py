"""
Core tests for relaycat.
"""

import json
import tempfile
from pathlib import Path

import pytest

from relaycat.config import (
    DEFAULT_BUFFER_SIZE,
    Config,
    get_config,
    reset_config,
    set_config,
)


class TestConfig:
    """Tests for configuration."""

    def test_default_config(self):
        """Test default configuration."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Config(data_dir=Path(tmpdir))

            assert config.buffer_size == DEFAULT_BUFFER_SIZE == 1024
            assert config.bind_host is None

    def test_load_missing(self):
        """Test loading without a config file gives defaults."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Config.load(Path(tmpdir))

            assert not Config.exists(Path(tmpdir))
            assert config.buffer_size == DEFAULT_BUFFER_SIZE

    def test_save_load(self):
        """Test saving and loading config."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir)

            config1 = Config(data_dir=path, buffer_size=65535, bind_host="127.0.0.1")
            config1.save()

            assert Config.exists(path)
            config2 = Config.load(path)

            assert config2.buffer_size == 65535
            assert config2.bind_host == "127.0.0.1"

    def test_unknown_keys_ignored(self):
        """Test config files from other versions still load."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir)
            (path / "config.json").write_text(json.dumps({
                "buffer_size": 2048,
                "keepalive": True,
            }))

            config = Config.load(path)

            assert config.buffer_size == 2048

    def test_global_instance(self):
        """Test the global config can be replaced and reset."""
        with tempfile.TemporaryDirectory() as tmpdir:
            custom = Config(data_dir=Path(tmpdir), buffer_size=4096)
            set_config(custom)

            assert get_config() is custom

            reset_config()
            assert get_config(Path(tmpdir)) is not custom
            reset_config()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
