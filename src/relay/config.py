"""
Sensor Relay Configuration

Fixed protocol constants with three layers of override, lowest first:
built-in defaults, ~/.config/sensor-relay/relay.json, SENSOR_RELAY_*
environment variables (a .env file is honoured). Command line flags are
applied on top by main_relay.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = 'SENSOR_RELAY_'


class ConfigError(Exception):
    """Raised when a configuration value cannot be used."""
    pass


def get_real_user_home() -> Path:
    """Get real user's home directory, even when running with sudo."""
    sudo_user = os.environ.get('SUDO_USER')
    if sudo_user and sudo_user != 'root':
        return Path(f'/home/{sudo_user}')
    return Path.home()


@dataclass
class RelayConfig:
    """Complete relay configuration"""
    # Discovery
    discovery_port: int = 45454             # UDP, sensor broadcasts here
    discovery_prefix: str = "ESP32_SENSOR:"
    discovery_interval: float = 3.0         # seconds between discovery cycles
    scan_every: int = 3                     # active scan on every Nth cycle
    scan_subnet: str = ""                   # Empty = derive from local address
    probe_timeout: float = 0.5              # seconds per scan probe
    scan_batch_size: int = 20               # concurrent probes

    # Sensor link
    sensor_port: int = 12345                # TCP
    connect_timeout: float = 5.0
    reconnect_delay: float = 3.0

    # Retention
    history_size: int = 100

    # HTTP
    http_host: str = "127.0.0.1"
    http_port: int = 3000

    # Logging
    log_level: str = "INFO"
    log_file: str = ""

    def validate(self) -> 'RelayConfig':
        """Reject values the relay cannot run with."""
        for name in ('discovery_port', 'sensor_port', 'http_port'):
            port = getattr(self, name)
            if not 0 < port < 65536:
                raise ConfigError(f"{name} out of range: {port}")
        for name in ('history_size', 'scan_every', 'scan_batch_size'):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        for name in ('discovery_interval', 'reconnect_delay', 'probe_timeout', 'connect_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if not self.discovery_prefix:
            raise ConfigError("discovery_prefix must not be empty")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RelayConfig':
        """Build from a dict, ignoring unknown keys and coercing types."""
        config = cls()
        for f in fields(cls):
            if f.name in data:
                setattr(config, f.name, _coerce(f.name, data[f.name], type(getattr(config, f.name))))
        return config

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the configuration file path"""
        return get_real_user_home() / ".config" / "sensor-relay" / "relay.json"

    @classmethod
    def load(cls, path: Optional[Path] = None, env: bool = True) -> 'RelayConfig':
        """
        Load configuration.

        Args:
            path: JSON file to read (default: get_config_path())
            env: Apply SENSOR_RELAY_* environment overrides

        Returns:
            Validated RelayConfig
        """
        config_path = Path(path) if path else cls.get_config_path()

        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ConfigError(f"{config_path} must contain a JSON object")
                config = cls.from_dict(data)
                logger.info(f"Loaded relay config from {config_path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Could not read {config_path}, using defaults: {e}")
                config = cls()
        else:
            logger.debug(f"No relay config at {config_path}, using defaults")
            config = cls()

        if env:
            config.apply_env()

        return config.validate()

    def save(self, path: Optional[Path] = None) -> bool:
        """Save configuration to file"""
        config_path = Path(path) if path else self.get_config_path()
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
            logger.info(f"Saved relay config to {config_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save relay config: {e}")
            return False

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> 'RelayConfig':
        """Override fields from SENSOR_RELAY_<FIELD> variables."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        for f in fields(self):
            key = ENV_PREFIX + f.name.upper()
            if key in environ:
                setattr(self, f.name, _coerce(f.name, environ[key], type(getattr(self, f.name))))
        return self


def _coerce(name: str, value: Any, target: type) -> Any:
    try:
        if target is bool and isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return target(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
