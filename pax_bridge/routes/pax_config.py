"""
PAX Configuration and Utilities Module
Handles settings management, terminal address validation, and logging configuration
"""

import json
import os
import logging
import ipaddress
import re
from dataclasses import dataclass
from typing import Dict, Any, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_PORT = "10009"
DEFAULT_TIMEOUT = 120.0  # card dip/tap + PIN entry
DEFAULT_CONNECT_TIMEOUT = 5.0

_HOSTNAME = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")


@dataclass(frozen=True)
class TerminalConfig:
    """Validated address and timeouts of one terminal"""

    ip: str
    port: int
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    @property
    def key(self) -> str:
        return f"{self.ip}:{self.port}"

    @property
    def host(self) -> str:
        """Address as it appears in a URL; IPv6 literals are bracketed"""
        return f"[{self.ip}]" if ":" in self.ip else self.ip

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/"


def validate_terminal_config(
    ip: Optional[str],
    port: Any,
    timeout: Any = None,
    connect_timeout: Any = None,
) -> TerminalConfig:
    """Validate raw terminal settings and build a TerminalConfig"""
    ip = (ip or "").strip()
    if not ip:
        raise ConfigurationError("Terminal IP address is not configured")
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        if not _HOSTNAME.match(ip):
            raise ConfigurationError(f"Invalid terminal address: {ip}")

    try:
        port_int = int(str(port).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid terminal port: {port}")
    if not 1 <= port_int <= 65535:
        raise ConfigurationError(f"Terminal port out of range: {port_int}")

    timeout_value = _positive_seconds("timeout", timeout, DEFAULT_TIMEOUT)
    connect_value = _positive_seconds("connect_timeout", connect_timeout, DEFAULT_CONNECT_TIMEOUT)

    return TerminalConfig(ip, port_int, timeout_value, connect_value)


def _positive_seconds(name: str, value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid {name}: {value}")
    if seconds <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return seconds


class PaxConfig:
    """PAX bridge configuration management"""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        self.settings_file = os.path.join(base_dir, "settings.json")
        self.app_settings = {}

        self._load_settings()

    @staticmethod
    def default_settings() -> Dict[str, Any]:
        """Defaults, overridable through the environment"""
        return {
            "terminal_ip": os.environ.get("PAX_TERMINAL_IP", ""),
            "terminal_port": os.environ.get("PAX_TERMINAL_PORT", DEFAULT_TERMINAL_PORT),
            "timeout": float(os.environ.get("PAX_TIMEOUT", DEFAULT_TIMEOUT)),
            "connect_timeout": float(os.environ.get("PAX_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)),
            "license_key": os.environ.get("PAX_LICENSE_KEY", ""),
            "license_url": os.environ.get("PAX_LICENSE_URL", ""),
        }

    def _load_settings(self):
        """Load application settings from JSON file"""
        self.app_settings = self.default_settings()
        if os.path.exists(self.settings_file):
            try:
                with open(self.settings_file, "r") as f:
                    self.app_settings.update(json.load(f))
                logger.info(f"Settings loaded from {self.settings_file}")
            except (OSError, ValueError) as e:
                logger.error(f"Error loading settings: {e}")
        else:
            logger.info("No settings file found, using defaults")

    def get_settings(self) -> Dict[str, Any]:
        """Get current application settings"""
        return self.app_settings.copy()

    def update_settings(self, new_settings: Dict[str, Any]) -> bool:
        """Update application settings"""
        unknown = set(new_settings) - set(self.default_settings())
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        merged = dict(self.app_settings, **new_settings)
        # Validate before anything is written
        if merged.get("terminal_ip"):
            validate_terminal_config(
                merged["terminal_ip"],
                merged.get("terminal_port"),
                merged.get("timeout"),
                merged.get("connect_timeout"),
            )

        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(self.settings_file, "w") as f:
                json.dump(merged, f, indent=2)
        except OSError as e:
            logger.error(f"Error saving settings: {e}")
            return False

        self.app_settings = merged
        logger.info(f"Settings updated: {sorted(new_settings)}")
        return True

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a specific setting value"""
        return self.app_settings.get(key, default)

    def get_terminal_config(self, overrides: Optional[Dict[str, Any]] = None) -> TerminalConfig:
        """Terminal config from saved settings, with per-request overrides on top"""
        values = {
            "ip": self.app_settings.get("terminal_ip"),
            "port": self.app_settings.get("terminal_port", DEFAULT_TERMINAL_PORT),
            "timeout": self.app_settings.get("timeout"),
            "connect_timeout": self.app_settings.get("connect_timeout"),
        }
        for key, value in (overrides or {}).items():
            if value not in (None, ""):
                values[key] = value
        return validate_terminal_config(**values)


class PaxUtils:
    """PAX Utility Functions"""

    @staticmethod
    def get_executable_dir() -> str:
        """Get the project root directory"""
        return os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

    @staticmethod
    def setup_logging(log_file_path: str, level: int = logging.DEBUG):
        """Setup logging configuration"""
        # Ensure the directory exists
        os.makedirs(os.path.dirname(log_file_path), exist_ok=True)

        logging.basicConfig(
            filename=log_file_path,
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info(f"Log file path: {log_file_path}")
