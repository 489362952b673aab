"""
Configuration management for matterhub.

Handles:
- chip-tool location and invocation timeouts
- Commissioning defaults
- Per-session queue and keepalive settings
- HTTP server settings
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".matterhub"

DEFAULT_API_PORT = 8080
DEFAULT_CHIP_TOOL = "chip-tool"

# Environment override for the tool path
CHIP_TOOL_ENV = "MATTERHUB_CHIP_TOOL"

PAIRING_METHODS = ("code", "onnetwork-long", "ble-wifi", "ble-thread", "ble-discriminator")


def _filter_known(cls, data: dict) -> dict:
    known_fields = set(cls.__dataclass_fields__)
    return {k: v for k, v in data.items() if k in known_fields}


@dataclass
class ChipToolConfig:
    """How the external chip-tool binary is invoked."""
    path: str = DEFAULT_CHIP_TOOL
    discovery_timeout: float = 60.0
    commissioning_timeout: float = 180.0
    command_timeout: float = 30.0
    read_timeout: float = 30.0

    # Pairing
    pairing_method: str = "onnetwork-long"
    commissioning_node_id: str = "112233"  # used when the client proposes none
    paa_trust_store_path: Optional[str] = None
    wifi_ssid: Optional[str] = None
    wifi_password: Optional[str] = None
    thread_dataset: Optional[str] = None  # hex operational dataset

    default_endpoint: str = "1"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "discovery_timeout": self.discovery_timeout,
            "commissioning_timeout": self.commissioning_timeout,
            "command_timeout": self.command_timeout,
            "read_timeout": self.read_timeout,
            "pairing_method": self.pairing_method,
            "commissioning_node_id": self.commissioning_node_id,
            "paa_trust_store_path": self.paa_trust_store_path,
            "wifi_ssid": self.wifi_ssid,
            "wifi_password": self.wifi_password,
            "thread_dataset": self.thread_dataset,
            "default_endpoint": self.default_endpoint,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChipToolConfig":
        # Filter to only known fields to handle config evolution
        config = cls(**_filter_known(cls, data))
        if config.pairing_method not in PAIRING_METHODS:
            logger.warning(
                f"Unknown pairing method '{config.pairing_method}', "
                f"falling back to 'onnetwork-long'"
            )
            config.pairing_method = "onnetwork-long"
        return config


@dataclass
class SessionConfig:
    """Per-connection settings."""
    queue_size: int = 256
    ping_interval: float = 54.0  # must stay below the client's read deadline
    max_message_size: int = 10 * 1024

    def to_dict(self) -> dict:
        return {
            "queue_size": self.queue_size,
            "ping_interval": self.ping_interval,
            "max_message_size": self.max_message_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionConfig":
        return cls(**_filter_known(cls, data))


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_API_PORT
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    debug: bool = False

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "cors_origins": self.cors_origins,
            "debug": self.debug
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(**_filter_known(cls, data))


@dataclass
class Config:
    """
    Main matterhub configuration.

    Stored at ~/.matterhub/config.json
    """
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    chip_tool: ChipToolConfig = field(default_factory=ChipToolConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        data = {
            "chip_tool": self.chip_tool.to_dict(),
            "session": self.session.to_dict(),
            "server": self.server.to_dict(),
        }

        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk, applying environment overrides."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        config = cls(data_dir=data_dir)

        if config_path.exists():
            with open(config_path, 'r') as f:
                data = json.load(f)

            if "chip_tool" in data:
                config.chip_tool = ChipToolConfig.from_dict(data["chip_tool"])
            if "session" in data:
                config.session = SessionConfig.from_dict(data["session"])
            if "server" in data:
                config.server = ServerConfig.from_dict(data["server"])

        tool_override = os.environ.get(CHIP_TOOL_ENV)
        if tool_override:
            config.chip_tool.path = tool_override

        return config

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
