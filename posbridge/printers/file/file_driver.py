"""
File Printer Driver

Writes every receipt and kitchen chit as an 80mm PDF into an output
directory. Used when no printer hardware is attached.
"""

import logging
import os
import re
import time
from typing import Dict, Any, Optional

from ..base_printer import BasePrinter
from ..receipt_renderer import render_pdf
from ...core.config_manager import get_base_dir

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class FileDriver(BasePrinter):
    """PDF-to-directory driver."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the file driver.

        Args:
            config: Printer-specific config dict containing:
                - output_dir: Target directory (relative to the base dir)
        """
        super().__init__(config)
        output_dir = config.get('output_dir') or 'prints'
        if not os.path.isabs(output_dir):
            output_dir = os.path.join(get_base_dir(), output_dir)
        self.output_dir = output_dir
        self.last_file: Optional[str] = None

        logger.info(f"File driver initialized (output_dir={self.output_dir})")

    def get_name(self) -> str:
        """Get printer driver name."""
        return "file"

    def connect(self) -> bool:
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            self.connected = True
            return True
        except OSError as e:
            logger.error(f"Cannot create output directory {self.output_dir}: {e}")
            self.connected = False
            return False

    def disconnect(self) -> bool:
        self.connected = False
        return True

    def _target_path(self, payload: Dict[str, Any]) -> str:
        sale_no = _UNSAFE_CHARS.sub("_", str(payload.get("saleNo") or "receipt"))
        return os.path.join(self.output_dir, f"{sale_no}-{int(time.time() * 1000)}.pdf")

    def print_receipt(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.connected and not self.connect():
            return {"ok": False, "error": f"output directory unavailable: {self.output_dir}"}

        path = self._target_path(payload or {})
        try:
            render_pdf(payload, path, self.receipt_config)
        except Exception as e:
            logger.error(f"Failed to write {path}: {e}")
            return {"ok": False, "error": str(e)}

        self.last_file = path
        logger.info(f"Receipt written to {path}")
        return {"ok": True, "file": path}

    def get_status(self) -> Dict[str, Any]:
        return {
            "driver": self.get_name(),
            "connected": self.connected,
            "output_dir": self.output_dir,
            "last_file": self.last_file,
            "error": None if self.connected else "Not connected",
        }
