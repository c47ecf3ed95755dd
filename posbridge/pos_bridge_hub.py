"""
POS Bridge - Main Application Entry Point

Runs the bridge between the POS terminals, Business Central and the printer
server:
- Persisted table/ticket state shared by every connected terminal
- HTTP mutation API and /ws state sync channel (FastAPI + uvicorn)
- ERP facade (Business Central or demo fixtures)
- Printer relay to the independent printer server process
- Single instance enforcement per data directory
"""

import sys

import uvicorn

from .logger_module import logger, init_file_logging, install_exception_hooks
from .version import VERSION


def main():
    """
    Main application entry point.

    Workflow:
    1. Load configuration (config.json + environment overrides)
    2. Attach file logging
    3. Enforce single instance
    4. Load persisted POS state
    5. Initialize ERP integration (factory pattern) and printer relay
    6. Serve HTTP + WebSocket until interrupted
    """
    install_exception_hooks()

    logger.info("=" * 60)
    logger.info(f"POS Bridge v{VERSION} Starting...")
    logger.info("=" * 60)

    # =========================================================================
    # Step 1: Load Configuration
    # =========================================================================
    logger.info("[1/6] Loading configuration...")
    from .core.config_manager import (
        load_config, apply_env_overrides, validate_config,
        get_base_dir, get_data_dir, get_printer_server_address,
    )

    try:
        config = apply_env_overrides(load_config())
        validate_config(config)
        logger.info("✓ Configuration loaded and validated")
        logger.info(f"  Active ERP: {config['erp'].get('active')}")
        logger.info(f"  Data directory: {get_data_dir(config)}")
    except Exception as e:
        logger.error(f"✗ Configuration error: {e}")
        sys.exit(1)

    # =========================================================================
    # Step 2: File Logging
    # =========================================================================
    logger.info("[2/6] Initializing file logging...")
    log_level = config['system'].get('log_level', 'INFO')
    log_file = init_file_logging(get_base_dir(), log_level)
    logger.info(f"✓ Logging to {log_file}")

    # =========================================================================
    # Step 3: Single Instance Enforcement
    # =========================================================================
    logger.info("[3/6] Enforcing single instance...")
    from .single_instance import check_single_instance

    instance_lock = check_single_instance(get_data_dir(config), "posbridge")
    logger.info("✓ Single instance lock acquired")

    # =========================================================================
    # Step 4: POS State
    # =========================================================================
    logger.info("[4/6] Loading POS state...")
    from .core.state_store import PosStateStore

    pos_config = config.get('pos', {})
    store = PosStateStore(get_data_dir(config), int(pos_config.get('table_count', 16)),
                          pos_config.get('state_file') or 'pos-state.json')
    state = store.load()
    logger.info(f"✓ {len(state['tables'])} tables, {len(state['tickets'])} tickets")

    # =========================================================================
    # Step 5: ERP + Printer Relay
    # =========================================================================
    logger.info("[5/6] Initializing ERP integration and printer relay...")
    from .erp import create_erp
    from .core.printer_relay import PrinterRelay

    try:
        erp = create_erp(config)
        logger.info(f"✓ ERP integration loaded: {erp.get_name()}")
        if erp.is_demo_mode():
            logger.info("  Demo mode: menu, stock and invoices are placeholders")
    except Exception as e:
        logger.error(f"✗ ERP integration failed: {e}")
        instance_lock.release()
        sys.exit(1)

    address, auth_key = get_printer_server_address(config)
    relay_config = config.get('printer_relay', {})
    relay = PrinterRelay(
        address,
        auth_key,
        reconnect_interval=float(relay_config.get('reconnect_interval_seconds', 2)),
        ack_timeout=float(relay_config.get('ack_timeout_seconds', 15)),
    )
    logger.info(f"✓ Printer relay -> {address[0]}:{address[1]} (connects in background)")

    # =========================================================================
    # Step 6: HTTP + WebSocket Server
    # =========================================================================
    from .core.http_api import create_app

    app = create_app(config, store=store, relay=relay, erp=erp)
    host = config['server'].get('host', '0.0.0.0')
    port = int(config['server'].get('port', 5050))

    logger.info(f"[6/6] Serving on http://{host}:{port}")
    logger.info("=" * 60)
    logger.info(f"POS Bridge v{VERSION} is running")
    logger.info("=" * 60)

    try:
        uvicorn.run(app, host=host, port=port, log_level=str(log_level).lower())
    finally:
        instance_lock.release()
        logger.info("POS Bridge stopped")


if __name__ == "__main__":
    main()
