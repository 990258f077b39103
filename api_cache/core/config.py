"""Configuration management for api-cache."""

import copy
from typing import Any, Dict, List, Optional, Tuple

PAYLOAD_CLASSES = ("request_headers", "request_body", "response_headers", "response_body")

# Default configuration schema
DEFAULT_CONFIG = {
    "database": {"path": ":memory:", "table_prefix": "api_cache"},
    "rate_limit": {"backend": "memory", "redis_url": "redis://localhost:6379/0", "key_prefix": "api-cache"},
    "converter": {"batch_size": 100, "overwrite": False, "copy_processing_state": False},
    "logging": {
        "level": "INFO",
        "parent_logger": None,
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "date_format": "%Y-%m-%d %H:%M:%S",
        "enable_console": True,
        "enable_file": False,
        "file_path": None,
        "max_file_size": 10485760,  # 10MB
        "backup_count": 5,
    },
    "clients": {
        "default": {
            "base_url": None,
            "version": None,
            "cache_ttl": None,
            "compression_enabled": False,
            "rate_limit_max_attempts": 1000,
            "rate_limit_decay_seconds": 60,
        },
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge two dictionaries."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigurationValidator:
    """Validates configuration and provides error reporting."""

    @staticmethod
    def validate_client(name: str, client: Any) -> List[str]:
        errors = []
        prefix = f"clients.{name}"
        if not isinstance(client, dict):
            return [f"{prefix} must be a dictionary."]
        if client.get("base_url") is not None and not isinstance(client["base_url"], str):
            errors.append(f"{prefix}.base_url must be a string or None.")
        if client.get("version") is not None and not isinstance(client["version"], str):
            errors.append(f"{prefix}.version must be a string or None.")
        if client.get("cache_ttl") is not None and not _is_int(client["cache_ttl"]):
            errors.append(f"{prefix}.cache_ttl must be an integer or None.")
        compression = client.get("compression_enabled", False)
        if isinstance(compression, dict):
            for payload_class, flag in compression.items():
                if payload_class not in PAYLOAD_CLASSES:
                    errors.append(f"{prefix}.compression_enabled has unknown payload class '{payload_class}'.")
                elif not isinstance(flag, bool):
                    errors.append(f"{prefix}.compression_enabled.{payload_class} must be a boolean.")
        elif not isinstance(compression, bool):
            errors.append(f"{prefix}.compression_enabled must be a boolean or a dictionary of booleans.")
        if client.get("rate_limit_max_attempts") is not None and not _is_int(client["rate_limit_max_attempts"]):
            errors.append(f"{prefix}.rate_limit_max_attempts must be an integer or None.")
        decay = client.get("rate_limit_decay_seconds", 60)
        if not _is_int(decay) or decay <= 0:
            errors.append(f"{prefix}.rate_limit_decay_seconds must be a positive integer.")
        return errors

    @staticmethod
    def validate_config(config: dict) -> Tuple[bool, List[str]]:
        errors = []
        if not isinstance(config, dict):
            errors.append("Config must be a dictionary.")
            return False, errors
        # Validate database
        database = config.get("database", {})
        if not isinstance(database.get("path", None), str):
            errors.append("database.path must be a string.")
        if not isinstance(database.get("table_prefix", None), str) or not database.get("table_prefix"):
            errors.append("database.table_prefix must be a non-empty string.")
        # Validate rate limiting
        rate_limit = config.get("rate_limit", {})
        if rate_limit.get("backend") not in ("memory", "redis"):
            errors.append("rate_limit.backend must be 'memory' or 'redis'.")
        if not isinstance(rate_limit.get("redis_url", None), str):
            errors.append("rate_limit.redis_url must be a string.")
        if not isinstance(rate_limit.get("key_prefix", None), str):
            errors.append("rate_limit.key_prefix must be a string.")
        # Validate converter
        converter = config.get("converter", {})
        if not _is_int(converter.get("batch_size", None)) or converter.get("batch_size") <= 0:
            errors.append("converter.batch_size must be a positive integer.")
        if not isinstance(converter.get("overwrite", None), bool):
            errors.append("converter.overwrite must be a boolean.")
        if not isinstance(converter.get("copy_processing_state", None), bool):
            errors.append("converter.copy_processing_state must be a boolean.")
        # Validate logging
        logging_cfg = config.get("logging", {})
        if not isinstance(logging_cfg.get("level", None), str):
            errors.append("logging.level must be a string.")
        if logging_cfg.get("parent_logger") is not None and not isinstance(logging_cfg.get("parent_logger"), str):
            errors.append("logging.parent_logger must be a string or None.")
        if not isinstance(logging_cfg.get("enable_console", None), bool):
            errors.append("logging.enable_console must be a boolean.")
        if not isinstance(logging_cfg.get("enable_file", None), bool):
            errors.append("logging.enable_file must be a boolean.")
        if logging_cfg.get("file_path") is not None and not isinstance(logging_cfg.get("file_path"), str):
            errors.append("logging.file_path must be a string or None.")
        # Validate clients
        clients = config.get("clients", {})
        if not isinstance(clients, dict):
            errors.append("clients must be a dictionary.")
        else:
            for name, client in clients.items():
                errors.extend(ConfigurationValidator.validate_client(name, client))
        return len(errors) == 0, errors

    @staticmethod
    def merge_with_defaults(user_config: dict) -> dict:
        return deep_merge(DEFAULT_CONFIG, user_config)


class ConfigurationManager:
    """Manages configuration, validation, merging, and runtime updates.

    Example:
        >>> manager = ConfigurationManager({"clients": {"openai": {"rate_limit_max_attempts": 60}}})
        >>> manager.client_config("openai")["rate_limit_decay_seconds"]
        60
    """

    def __init__(self, user_config: Optional[dict] = None):
        if user_config is None:
            user_config = {}
        self._config = self.load_config(user_config)

    def load_config(self, user_config: dict) -> dict:
        merged = ConfigurationValidator.merge_with_defaults(user_config)
        valid, errors = ConfigurationValidator.validate_config(merged)
        if not valid:
            raise ValueError(f"Invalid configuration: {errors}")
        return merged

    @property
    def config(self) -> dict:
        return self._config

    def client_names(self) -> List[str]:
        """Names of explicitly configured clients (``default`` excluded)."""
        return [name for name in self._config["clients"] if name != "default"]

    def client_config(self, client_name: str) -> Dict[str, Any]:
        """Settings for a client, falling back to ``clients.default`` per key."""
        clients = self._config["clients"]
        return deep_merge(clients.get("default", {}), clients.get(client_name, {}))

    def update(self, key_path: str, value: Any) -> None:
        """Update a config value at a dotted key path (e.g., 'clients.openai.cache_ttl')."""
        keys = key_path.split(".")
        d = self._config
        for k in keys[:-1]:
            if k not in d or not isinstance(d[k], dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value
        # Re-validate after update
        valid, errors = ConfigurationValidator.validate_config(self._config)
        if not valid:
            raise ValueError(f"Invalid configuration after update: {errors}")

    def reload(self, new_config: dict) -> None:
        self._config = self.load_config(new_config)


def as_configuration(config: Any) -> ConfigurationManager:
    """Accept a ConfigurationManager, a plain dict or None."""
    if isinstance(config, ConfigurationManager):
        return config
    return ConfigurationManager(config or {})
