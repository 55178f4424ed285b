"""
Configuration management for relaycat.

Handles:
- Transfer buffer sizing
- Listener bind host
- Diagnostic log format
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path(os.environ.get("RELAYCAT_HOME", Path.home() / ".relaycat"))

# Each copy task reads at most this many bytes (or one datagram) per chunk
DEFAULT_BUFFER_SIZE = 1024
# None listens on every interface, IPv4 and IPv6
DEFAULT_BIND_HOST: Optional[str] = None
DEFAULT_LOG_FORMAT = "%(asctime)s %(message)s"


@dataclass
class Config:
    """
    Main relaycat configuration.

    Stored at ~/.relaycat/config.json
    """
    buffer_size: int = DEFAULT_BUFFER_SIZE
    bind_host: Optional[str] = DEFAULT_BIND_HOST
    log_format: str = DEFAULT_LOG_FORMAT

    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    def to_dict(self) -> dict:
        return {
            "buffer_size": self.buffer_size,
            "bind_host": self.bind_host,
            "log_format": self.log_format,
        }

    def save(self) -> None:
        """Save configuration to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        # Filter to only known fields to handle config evolution
        known_fields = {"buffer_size", "bind_host", "log_format"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(data_dir=data_dir, **filtered)

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
