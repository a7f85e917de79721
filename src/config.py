"""
config.py - Configuration for the LDAP Password Modify Client

Loads, saves and validates the client's TOML configuration.

Version: 1.0.0

Example ldap_client.toml:
    [server]
    host = "ldap.example.org"
    port = 389

    [network]
    connect_timeout_ms = 5000
    request_timeout_ms = 0
    max_retries = 3
    retry_backoff_ms = 500
    max_message_size = 4194304

    [logging]
    path = "Data/ldap_client.log"
    level = "info"
    max_size_mb = 10
    backup_count = 3
    debug_packets = false

Functions:
    load_config(config_path)             -> ClientConfig or None
    save_config(config, path)            -> bool
    validate_config(config)              -> ValidationResult
    open_logger(config)                  -> LoggerHandle or None
"""

import os
import sys
import tomllib
from dataclasses import asdict
from typing import Optional

import tomli_w

from ldap_types import ClientConfig, LoggingConfig, NetworkConfig, ServerConfig, ValidationResult
from logger import LEVEL_BY_NAME, LoggerHandle, init_logger, parse_log_level


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_CONFIG_FILENAME = "config/ldap_client.toml"

MIN_PORT = 1
MAX_PORT = 65535


# ============================================================================
# LOAD / SAVE
# ============================================================================

def load_config(config_path: str) -> Optional[ClientConfig]:
    """
    Load configuration from a TOML file. Missing sections and keys take
    their dataclass defaults.

    Returns:
        ClientConfig if the file was read and parsed, None otherwise
    """
    if not os.path.isfile(config_path):
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        return None

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        print(f"Error: Invalid TOML syntax in {config_path}: {e}", file=sys.stderr)
        return None
    except OSError as e:
        print(f"Error: Could not read {config_path}: {e}", file=sys.stderr)
        return None

    config = ClientConfig()
    defaults_net = NetworkConfig()
    defaults_log = LoggingConfig()

    if "server" in data:
        s = data["server"]
        config.server = ServerConfig(
            host=s.get("host", config.server.host),
            port=s.get("port", config.server.port),
        )

    if "network" in data:
        n = data["network"]
        config.network = NetworkConfig(
            connect_timeout_ms=n.get("connect_timeout_ms", defaults_net.connect_timeout_ms),
            request_timeout_ms=n.get("request_timeout_ms", defaults_net.request_timeout_ms),
            max_retries=n.get("max_retries", defaults_net.max_retries),
            retry_backoff_ms=n.get("retry_backoff_ms", defaults_net.retry_backoff_ms),
            max_message_size=n.get("max_message_size", defaults_net.max_message_size),
        )

    if "logging" in data:
        lg = data["logging"]
        config.logging = LoggingConfig(
            path=lg.get("path", defaults_log.path),
            level=lg.get("level", defaults_log.level),
            max_size_mb=lg.get("max_size_mb", defaults_log.max_size_mb),
            backup_count=lg.get("backup_count", defaults_log.backup_count),
            debug_packets=lg.get("debug_packets", defaults_log.debug_packets),
        )

    return config


def save_config(config: ClientConfig, path: str) -> bool:
    """Write config as TOML, creating parent directories. Returns success."""
    try:
        parent_dir = os.path.dirname(path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(asdict(config), f)
        return True
    except OSError as e:
        print(f"Error: Could not write {path}: {e}", file=sys.stderr)
        return False


# ============================================================================
# VALIDATION
# ============================================================================

def validate_config(config: ClientConfig) -> ValidationResult:
    """Check ranges and names; warnings do not make the config invalid."""
    result = ValidationResult()

    if not config.server.host:
        result.errors.append("server.host is empty")
    if not MIN_PORT <= config.server.port <= MAX_PORT:
        result.errors.append(f"server.port {config.server.port} out of range")

    net = config.network
    if net.connect_timeout_ms <= 0:
        result.errors.append("network.connect_timeout_ms must be positive")
    if net.request_timeout_ms < 0:
        result.errors.append("network.request_timeout_ms must be >= 0")
    if net.max_retries < 1:
        result.errors.append("network.max_retries must be >= 1")
    if net.retry_backoff_ms < 0:
        result.errors.append("network.retry_backoff_ms must be >= 0")
    if net.max_message_size <= 0:
        result.errors.append("network.max_message_size must be positive")

    lg = config.logging
    if lg.level.lower() not in LEVEL_BY_NAME:
        result.errors.append(f"logging.level {lg.level!r} is not one of {sorted(LEVEL_BY_NAME)}")
    if lg.max_size_mb <= 0:
        result.errors.append("logging.max_size_mb must be positive")
    if lg.backup_count < 0:
        result.errors.append("logging.backup_count must be >= 0")
    if lg.debug_packets:
        result.warnings.append("logging.debug_packets writes passwords to the log")

    result.valid = not result.errors
    return result


def open_logger(config: ClientConfig) -> Optional[LoggerHandle]:
    """Open the logger described by config.logging."""
    lg = config.logging
    return init_logger(
        lg.path,
        max_file_size=lg.max_size_mb * 1024 * 1024,
        max_archives=lg.backup_count,
        min_level=parse_log_level(lg.level),
    )
