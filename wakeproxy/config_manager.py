"""Configuration management for the Wake-on-Connect gateway."""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .utils import validate_port


logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages configuration loading, validation, and reloading."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._default_config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "proxy": {
                "listen_address": "0.0.0.0",
                "listen_port": 25565
            },
            "server": {
                "host": "127.0.0.1",
                "port": 25566
            },
            "timing": {
                "health_check_interval": 1,
                "server_check_timeout": 1,
                "connection_timeout": 10,
                "client_read_timeout": 5,
                "wake_request_timeout": 10
            },
            "pterodactyl": {
                "url": "https://panel.example.com",
                "api_key": "",
                "server_id": ""
            },
            "minecraft": {
                "version_name": "1.20.4",
                "protocol_version": 765,
                "max_players_display": 100,
                "motd_offline": "Join to start Server",
                "motd_color": "red",
                "kick_message": "A request to turn on the server has been sent, please rejoin in a min",
                "kick_message_booting": "The server is booting, please rejoin in a min",
                "kick_color": "red"
            },
            "logging": {
                "level": "INFO",
                "file": "/var/log/wake-proxy.log",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True
            }
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file with validation."""
        try:
            if not self.config_path.exists():
                logger.warning(f"Config file {self.config_path} not found, using defaults")
                self._config = copy.deepcopy(self._default_config)
                return self._config

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)

            # Merge with defaults to ensure all keys exist
            self._config = self._merge_config(self._default_config, loaded_config)

            self._validate_config()

            logger.info(f"Configuration loaded successfully from {self.config_path}")
            return self._config

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            raise ValueError(f"Configuration file contains invalid JSON: {e}")
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    def _merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge loaded config with defaults."""
        result = copy.deepcopy(default)

        for key, value in loaded.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self) -> None:
        """Validate configuration values."""
        errors = []

        listen_port = self._config["proxy"]["listen_port"]
        if not validate_port(listen_port):
            errors.append(f"Invalid listen port: {listen_port}")

        backend_host = self._config["server"]["host"]
        if not isinstance(backend_host, str) or not backend_host.strip():
            errors.append(f"Invalid backend host: {backend_host!r}")

        backend_port = self._config["server"]["port"]
        if not validate_port(backend_port):
            errors.append(f"Invalid backend port: {backend_port}")

        # Validate timing values (skip comment fields)
        timing = self._config["timing"]
        for key, value in timing.items():
            if key.startswith('_comment'):
                continue
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                errors.append(f"Invalid timing value for {key}: {value}")

        panel_url = self._config["pterodactyl"]["url"]
        if not isinstance(panel_url, str) or not panel_url.startswith(("http://", "https://")):
            errors.append(f"Invalid Pterodactyl URL: {panel_url!r}")

        protocol_version = self._config["minecraft"]["protocol_version"]
        if not isinstance(protocol_version, int) or protocol_version < 0:
            errors.append(f"Invalid protocol version: {protocol_version}")

        log_level = str(self._config["logging"]["level"]).upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            errors.append(f"Invalid log level: {log_level}. Must be one of {valid_levels}")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'server.host')."""
        keys = key_path.split('.')
        value = self._config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def save_example_config(self, path: Optional[str] = None) -> None:
        """Save an example configuration file with comments."""
        if path is None:
            path = "config.json.example"

        example_config = {
            "_comment_proxy": "Address players connect to",
            "proxy": {
                "listen_address": "0.0.0.0",
                "listen_port": 25565
            },
            "_comment_server": "The real Minecraft server behind the gateway",
            "server": {
                "host": "192.168.1.100",
                "port": 25565
            },
            "_comment_timing": "Timing and timeout configuration",
            "timing": {
                "_comment": "All values in seconds",
                "health_check_interval": 1,
                "server_check_timeout": 1,
                "connection_timeout": 10,
                "client_read_timeout": 5,
                "wake_request_timeout": 10
            },
            "_comment_pterodactyl": "Pterodactyl client API used to start the server",
            "pterodactyl": {
                "url": "https://panel.example.com",
                "api_key": "ptlc_your_client_api_key",
                "server_id": "1a2b3c4d"
            },
            "_comment_minecraft": "Responses sent while the server is offline",
            "minecraft": copy.deepcopy(self._default_config["minecraft"]),
            "_comment_logging": "Logging configuration",
            "logging": copy.deepcopy(self._default_config["logging"])
        }

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(example_config, f, indent=2, ensure_ascii=False)

        logger.info(f"Example configuration saved to {path}")
