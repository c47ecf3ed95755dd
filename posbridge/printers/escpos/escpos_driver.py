"""
ESC/POS Thermal Printer Driver

Prints receipts as plain text on serial ESC/POS printers. The serial port
is taken from config (com_port) or auto-detected by sending the real-time
status request (DLE EOT 1) to every available port.
"""

import logging
from typing import Dict, Any, Optional

import serial
import serial.tools.list_ports

from ..base_printer import BasePrinter
from ..receipt_renderer import render_text

logger = logging.getLogger(__name__)

# ESC/POS commands
ESC_INIT = b"\x1b\x40"
STATUS_REQUEST = b"\x10\x04\x01"
FEED_LINES = b"\x1b\x64\x04"
PARTIAL_CUT = b"\x1d\x56\x42\x00"

DEFAULT_BAUD_RATE = 19200
DEFAULT_SERIAL_TIMEOUT = 5
DEFAULT_LINE_WIDTH = 42
ENCODING = "cp437"

AUTO_PORT_VALUES = ('', 'AUTO', 'NULL', 'NONE')


class EscPosDriver(BasePrinter):
    """Serial ESC/POS driver."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the ESC/POS driver.

        Args:
            config: Printer-specific config dict containing:
                - com_port: Serial port or AUTO (default: AUTO)
                - baud_rate: Serial baud rate (default: 19200)
                - serial_timeout: Serial timeout in seconds (default: 5)
                - line_width: Characters per line (default: 42)
        """
        super().__init__(config)
        self.com_port: Optional[str] = None
        self.configured_port = str(config.get('com_port') or '')
        self.baud_rate = int(config.get('baud_rate') or DEFAULT_BAUD_RATE)
        self.serial_timeout = float(config.get('serial_timeout') or DEFAULT_SERIAL_TIMEOUT)
        self.line_width = int(config.get('line_width') or DEFAULT_LINE_WIDTH)

        logger.info(f"ESC/POS driver initialized (port={self.configured_port or 'AUTO'}, baud={self.baud_rate})")

    def get_name(self) -> str:
        """Get printer driver name."""
        return "escpos"

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    def _probe(self, port: str) -> bool:
        """Send a status request to a port; True if the printer answers."""
        try:
            with serial.Serial(port, self.baud_rate, timeout=1.0) as ser:
                ser.write(STATUS_REQUEST)
                return len(ser.read(1)) == 1
        except serial.SerialException as e:
            logger.debug(f"Probe {port} failed: {e}")
            return False

    def connect(self) -> bool:
        """Detect and connect to the printer.

        Tries the configured port first, then scans all serial ports.

        Returns:
            bool: True if connected successfully
        """
        configured = self.configured_port
        if configured.upper() not in AUTO_PORT_VALUES:
            logger.info(f"Trying configured serial port: {configured}")
            if self._probe(configured):
                self.com_port = configured
                self.connected = True
                logger.info(f"Found ESC/POS printer on configured port {configured}")
                return True
            logger.warning(f"Configured port {configured} did not respond, falling back to auto-detection")

        logger.info("Scanning for ESC/POS printer...")
        ports = serial.tools.list_ports.comports()
        if len(ports) == 0:
            logger.error("No serial ports found")
            return False

        for port in ports:
            if port.device == configured:
                continue
            logger.debug(f"Checking {port.device}...")
            if self._probe(port.device):
                self.com_port = port.device
                self.connected = True
                logger.info(f"Found ESC/POS printer on {port.device}")
                return True

        logger.error("ESC/POS printer not found on any serial port")
        return False

    def disconnect(self) -> bool:
        self.connected = False
        self.com_port = None
        logger.info("Disconnected from printer")
        return True

    # =========================================================================
    # PRINTING
    # =========================================================================

    def encode_receipt(self, payload: Dict[str, Any]) -> bytes:
        """Build the ESC/POS byte stream for a receipt."""
        text = render_text(payload, self.receipt_config, width=self.line_width)
        return ESC_INIT + text.encode(ENCODING, errors="replace") + FEED_LINES + PARTIAL_CUT

    def print_receipt(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.connected and not self.connect():
            return {"ok": False, "error": "ESC/POS printer not found"}

        data = self.encode_receipt(payload)
        try:
            with serial.Serial(self.com_port, self.baud_rate, timeout=self.serial_timeout,
                               write_timeout=self.serial_timeout) as ser:
                ser.write(data)
                ser.flush()
        except serial.SerialException as e:
            logger.error(f"Serial communication error: {e}")
            # Port may have changed; detect again on the next print
            self.connected = False
            return {"ok": False, "error": str(e)}

        logger.info(f"Receipt {payload.get('saleNo') or ''} printed on {self.com_port}")
        return {"ok": True}

    def get_status(self) -> Dict[str, Any]:
        if not self.connected:
            return {
                "driver": self.get_name(),
                "connected": False,
                "com_port": None,
                "error": "Not connected",
            }
        return {
            "driver": self.get_name(),
            "connected": True,
            "com_port": self.com_port,
            "online": self._probe(self.com_port),
            "error": None,
        }
