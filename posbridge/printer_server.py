"""
POS Bridge Printer Server - standalone printing process.

Listens for print requests from the bridge over an authenticated
multiprocessing.connection socket and hands them to the configured printer
driver (spooler, escpos or file).

Actions:
- ping: liveness probe
- status: driver status
- print-order: kitchen chit for a ticket
- print-receipt: customer receipt
- test: zero-value test receipt
"""

import sys
import threading
from typing import Dict, Any

from .logger_module import logger, init_file_logging, install_exception_hooks
from .version import VERSION


class PrinterCommandHandler:
    """Dispatches IPC actions to the printer driver."""

    def __init__(self, printer) -> None:
        self.printer = printer
        # One job on the printer at a time
        self._lock = threading.Lock()

    def handle(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Main dispatcher for IPC actions."""
        if action == "ping":
            return {"ok": True, "message": "pong"}

        if action == "status":
            return {"ok": True, "printer": self.printer.get_status()}

        if action == "print-order":
            logger.info(f"Print order: ticket {payload.get('id') or '?'}")
            with self._lock:
                return self._ack(self.printer.print_order(payload))

        if action == "print-receipt":
            logger.info(f"Print receipt: sale {payload.get('saleNo') or '?'}")
            with self._lock:
                return self._ack(self.printer.print_receipt(payload))

        if action == "test":
            logger.info("Test print requested")
            with self._lock:
                return self._ack(self.printer.print_test())

        return {"ok": False, "error": f"Unknown action: {action}"}

    @staticmethod
    def _ack(result: Dict[str, Any]) -> Dict[str, Any]:
        if result.get("ok"):
            return {"ok": True}
        return {"ok": False, "error": result.get("error") or "print failed"}


def main():
    """
    Printer server entry point.

    Workflow:
    1. Load configuration
    2. Attach file logging
    3. Enforce single instance
    4. Initialize printer (factory pattern)
    5. Serve IPC requests until interrupted
    """
    install_exception_hooks()

    logger.info("=" * 60)
    logger.info(f"POS Bridge Printer Server v{VERSION} Starting...")
    logger.info("=" * 60)

    # =========================================================================
    # Step 1: Load Configuration
    # =========================================================================
    logger.info("[1/5] Loading configuration...")
    from .core.config_manager import (
        load_config, apply_env_overrides, validate_config,
        get_base_dir, get_data_dir, get_printer_server_address,
    )

    try:
        config = apply_env_overrides(load_config())
        validate_config(config)
        logger.info("✓ Configuration loaded and validated")
        logger.info(f"  Active printer: {config['printer']['active']}")
    except Exception as e:
        logger.error(f"✗ Configuration error: {e}")
        sys.exit(1)

    # =========================================================================
    # Step 2: File Logging
    # =========================================================================
    logger.info("[2/5] Initializing file logging...")
    log_file = init_file_logging(get_base_dir(), config['system'].get('log_level'), 'printer.log')
    logger.info(f"✓ Logging to {log_file}")

    # =========================================================================
    # Step 3: Single Instance Enforcement
    # =========================================================================
    logger.info("[3/5] Enforcing single instance...")
    from .single_instance import check_single_instance

    instance_lock = check_single_instance(get_data_dir(config), "posbridge-printer")
    logger.info("✓ Single instance lock acquired")

    # =========================================================================
    # Step 4: Initialize Printer (Factory Pattern)
    # =========================================================================
    logger.info("[4/5] Initializing printer...")
    from .printers import create_printer

    try:
        printer = create_printer(config)
        logger.info(f"✓ Printer driver loaded: {printer.get_name()}")

        if printer.connect():
            logger.info(f"  ✓ Connected: {printer}")
        else:
            logger.warning("  ✗ Could not connect to printer - will retry on next print")
    except Exception as e:
        logger.error(f"✗ Printer initialization failed: {e}")
        instance_lock.release()
        sys.exit(1)

    # =========================================================================
    # Step 5: IPC Server
    # =========================================================================
    logger.info("[5/5] Starting IPC server...")
    from .core.ipc import IpcServer

    address, auth_key = get_printer_server_address(config)
    handler = PrinterCommandHandler(printer)
    server = IpcServer(address, auth_key, handler.handle, log=logger)

    try:
        server.start()
    except OSError as e:
        logger.error(f"✗ Cannot listen on {address[0]}:{address[1]}: {e}")
        instance_lock.release()
        sys.exit(1)

    logger.info("=" * 60)
    logger.info(f"POS Bridge Printer Server v{VERSION} is running")
    logger.info("=" * 60)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
    finally:
        server.stop()
        printer.disconnect()
        instance_lock.release()
        logger.info("Printer server stopped")


if __name__ == "__main__":
    main()
