"""
Configuration management for POS Bridge.

This module handles loading, validating, and saving the central config.json file,
and layering the deployment environment variables over it.
"""

import copy
import json
import os
import sys
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


# Determine base directory (works for dev, service runtime, and frozen/PyInstaller)
_env_base = os.environ.get("POS_BRIDGE_BASE")
if _env_base:
    BASE_DIR = _env_base
elif getattr(sys, 'frozen', False):
    # Running as compiled executable
    BASE_DIR = os.path.dirname(sys.executable)
else:
    # Running as script from posbridge/core/ directory
    # Need to go up 3 levels: core -> posbridge -> repo root
    BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


CONFIG_FILE = os.path.join(BASE_DIR, 'config.json')

REQUIRED_SECTIONS = ['system', 'server', 'auth', 'pos', 'printer_server', 'printer', 'erp']

DEFAULT_CONFIG: Dict[str, Any] = {
    "system": {
        "log_level": "INFO",
        "data_dir": "data",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5050,
        "cors_origins": ["*"],
        "ws_send_timeout_seconds": 5,
    },
    "auth": {
        "secret": "change-me-dev",
        "token_ttl_seconds": 7 * 24 * 3600,
        "cookie_name": "sid",
        "users": [
            {"id": "u1", "name": "Admin", "username": "admin", "role": "admin", "password": "1234"},
            {"id": "u2", "name": "Anne (Waiter)", "username": "anne", "role": "waiter", "password": "1234"},
        ],
    },
    "pos": {
        "table_count": 16,
        "state_file": "pos-state.json",
    },
    "idempotency": {
        "enabled": True,
        "max_recent_sales": 100,
    },
    "printer_server": {
        "host": "127.0.0.1",
        "port": 4000,
        "auth_key": "change-me-printer",
    },
    "printer_relay": {
        "reconnect_interval_seconds": 2,
        "ack_timeout_seconds": 15,
    },
    "printer": {
        "active": "file",
        "spooler": {
            "printer_name": "",
        },
        "escpos": {
            "com_port": "AUTO",
            "baud_rate": 19200,
            "serial_timeout": 5,
            "line_width": 42,
        },
        "file": {
            "output_dir": "prints",
        },
        "receipt": {
            "header": "RESTAURANT",
            "vat_reg": "VAT Reg: 000000",
            "footer": "Thank you!",
        },
    },
    "erp": {
        "active": "business_central",
        "business_central": {
            "auth": "oauth",
            "environment": "Production",
            "region": "api.businesscentral.dynamics.com",
            "tenant_id": "",
            "company_id": "",
            "client_id": "",
            "client_secret": "",
            "username": "",
            "password": "",
            "location_code": "",
            "default_customer": "CASH",
            "timeout_seconds": 15,
            "credentials_file": "",
        },
    },
}

# Environment variable -> config key path
ENV_OVERRIDES = {
    "PORT": ("server", "port"),
    "BRIDGE_PORT": ("server", "port"),
    "JWT_SECRET": ("auth", "secret"),
    "DATA_DIR": ("system", "data_dir"),
    "LOG_LEVEL": ("system", "log_level"),
    "PRINTER_HOST": ("printer_server", "host"),
    "PRINTER_PORT": ("printer_server", "port"),
    "PRINTER_NAME": ("printer", "spooler", "printer_name"),
    "BC_AUTH": ("erp", "business_central", "auth"),
    "BC_ENV": ("erp", "business_central", "environment"),
    "BC_REGION": ("erp", "business_central", "region"),
    "BC_TENANT_ID": ("erp", "business_central", "tenant_id"),
    "BC_COMPANY_ID": ("erp", "business_central", "company_id"),
    "BC_CLIENT_ID": ("erp", "business_central", "client_id"),
    "BC_CLIENT_SECRET": ("erp", "business_central", "client_secret"),
    "BC_USERNAME": ("erp", "business_central", "username"),
    "BC_PASSWORD": ("erp", "business_central", "password"),
    "BC_LOCATION_CODE": ("erp", "business_central", "location_code"),
    "BC_DEFAULT_CUSTOMER": ("erp", "business_central", "default_customer"),
}

_INT_KEYS = {("server", "port"), ("printer_server", "port")}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from config.json, merged over DEFAULT_CONFIG.

    Args:
        config_path: Optional path to config file (defaults to BASE_DIR/config.json)

    Returns:
        dict: Configuration dictionary

    Raises:
        json.JSONDecodeError: If config file is invalid JSON
    """
    path = config_path or CONFIG_FILE

    if not os.path.exists(path):
        logger.warning(f"Config file not found: {path} - using built-in defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
        logger.info(f"Configuration loaded from {path}")
        return _deep_merge(DEFAULT_CONFIG, config)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in config file: {e}")
        raise


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Layer deployment environment variables over the configuration in place.

    Args:
        config: Configuration dictionary
        environ: Environment mapping (defaults to os.environ)

    Returns:
        dict: The same configuration dictionary
    """
    environ = os.environ if environ is None else environ

    for var, key_path in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue

        section = config
        for key in key_path[:-1]:
            section = section.setdefault(key, {})

        if key_path in _INT_KEYS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {var}={value!r}")
                continue

        section[key_path[-1]] = value
        logger.debug(f"Config override from {var}: {'.'.join(key_path)}")

    return config


def save_config(config: Dict[str, Any], config_path: Optional[str] = None) -> bool:
    """
    Save configuration to config.json atomically.

    Args:
        config: Configuration dictionary
        config_path: Optional path to config file

    Returns:
        bool: True if saved successfully

    Raises:
        Exception: If save fails
    """
    path = config_path or CONFIG_FILE
    temp_path = path + '.tmp'

    try:
        # Write to temporary file first (atomic operation)
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=2, ensure_ascii=False)

        os.replace(temp_path, path)

        logger.info(f"Configuration saved to {path}")
        return True

    except Exception as e:
        logger.error(f"Error saving config: {e}")
        # Clean up temp file if exists
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
        raise


def get_printer_config(config: Dict[str, Any], printer_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Get configuration for a specific printer driver.

    Args:
        config: Full configuration dictionary
        printer_name: Name of printer (defaults to active printer)

    Returns:
        dict: Printer-specific configuration

    Raises:
        KeyError: If printer not found in config
    """
    if printer_name is None:
        printer_name = config['printer']['active']

    if printer_name not in config['printer']:
        raise KeyError(f"Printer '{printer_name}' not found in config")

    return config['printer'][printer_name]


def get_erp_config(config: Dict[str, Any], erp_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Get configuration for a specific ERP integration.

    Args:
        config: Full configuration dictionary
        erp_name: Name of ERP (defaults to active ERP)

    Returns:
        dict: ERP-specific configuration (empty if not configured)
    """
    if erp_name is None:
        erp_name = config.get('erp', {}).get('active', 'business_central')

    return config.get('erp', {}).get(erp_name, {}) or {}


def get_data_dir(config: Dict[str, Any]) -> str:
    """
    Resolve the POS state data directory.

    Relative paths are resolved against the base directory.

    Args:
        config: Full configuration dictionary

    Returns:
        str: Absolute data directory path
    """
    data_dir = config.get('system', {}).get('data_dir') or 'data'
    if not os.path.isabs(data_dir):
        data_dir = os.path.join(BASE_DIR, data_dir)
    return data_dir


def get_printer_server_address(config: Dict[str, Any]):
    """
    Get the printer server address and auth key.

    Returns:
        tuple: ((host, port), auth_key_bytes)
    """
    section = config.get('printer_server', {})
    host = section.get('host', '127.0.0.1')
    port = int(section.get('port', 4000))
    auth_key = str(section.get('auth_key', '')).encode('utf-8')
    return (host, port), auth_key


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure.

    Args:
        config: Configuration dictionary to validate

    Returns:
        bool: True if valid

    Raises:
        ValueError: If configuration is invalid
    """
    # Check required top-level keys
    for key in REQUIRED_SECTIONS:
        if key not in config:
            raise ValueError(f"Missing required config key: {key}")

    # Check printer configuration
    if 'active' not in config['printer']:
        raise ValueError("Missing printer.active in config")

    active_printer = config['printer']['active']
    if active_printer not in config['printer']:
        raise ValueError(f"Active printer '{active_printer}' not found in config.printer")

    if not config['printer_server'].get('auth_key'):
        raise ValueError("Missing printer_server.auth_key in config")

    if not config['auth'].get('secret'):
        raise ValueError("Missing auth.secret in config")

    try:
        table_count = int(config['pos'].get('table_count', 16))
    except (TypeError, ValueError):
        raise ValueError("pos.table_count must be an integer")
    if table_count < 1:
        raise ValueError("pos.table_count must be at least 1")

    logger.info("Configuration validation passed")
    return True


def get_base_dir() -> str:
    """
    Get the base directory for the application.

    Returns:
        str: Base directory path
    """
    return BASE_DIR


def get_config_path() -> str:
    """
    Get the path to the config file.

    Returns:
        str: Config file path
    """
    return CONFIG_FILE
