"""
OS Spooler Printer Driver

Renders each receipt into a temporary 80mm PDF and hands it to the
operating system's print spooler:
- POSIX: `lp` (CUPS) or `lpr`, optionally with a printer name
- Windows: the shell `print` / `printto` verb via os.startfile

Most thermal printer drivers accept PDF input directly. If nothing prints,
check that printer_name matches the spooler's printer name exactly.
"""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
import threading
from typing import Dict, Any, List, Optional

from ..base_printer import BasePrinter
from ..receipt_renderer import render_pdf

logger = logging.getLogger(__name__)

# Seconds to keep the temp PDF around for the asynchronous Windows print verb
WINDOWS_CLEANUP_DELAY = 5.0

SPOOL_TIMEOUT = 30


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")


class SpoolerDriver(BasePrinter):
    """PDF-through-OS-spooler driver."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the spooler driver.

        Args:
            config: Printer-specific config dict containing:
                - printer_name: Spooler printer name (empty for OS default)
        """
        super().__init__(config)
        self.printer_name = config.get('printer_name') or ''
        self.is_windows = sys.platform.startswith('win')
        self.command: Optional[str] = None

        logger.info(f"Spooler driver initialized (printer={self.printer_name or '(OS default)'})")

    def get_name(self) -> str:
        """Get printer driver name."""
        return "spooler"

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    def connect(self) -> bool:
        """Locate the spooler command.

        Returns:
            bool: True if a spooler is available
        """
        if self.is_windows:
            self.connected = True
            return True

        self.command = shutil.which('lp') or shutil.which('lpr')
        if not self.command:
            logger.error("No print spooler found (lp/lpr not on PATH)")
            self.connected = False
            return False

        logger.info(f"Using spooler command {self.command}")
        self.connected = True
        return True

    def disconnect(self) -> bool:
        self.connected = False
        return True

    # =========================================================================
    # PRINTING
    # =========================================================================

    def build_command(self, path: str) -> List[str]:
        """Build the POSIX spooler command line for a file."""
        command = self.command or 'lp'
        if os.path.basename(command) == 'lpr':
            args = [command]
            if self.printer_name:
                args += ['-P', self.printer_name]
        else:
            args = [command]
            if self.printer_name:
                args += ['-d', self.printer_name]
        args.append(path)
        return args

    def _submit(self, path: str) -> None:
        if self.is_windows:
            if self.printer_name:
                os.startfile(path, 'printto', f'"{self.printer_name}"')
            else:
                os.startfile(path, 'print')
            return

        result = subprocess.run(
            self.build_command(path),
            capture_output=True, text=True, timeout=SPOOL_TIMEOUT,
        )
        if result.returncode != 0:
            raise RuntimeError((result.stderr or result.stdout or f"exit {result.returncode}").strip())
        logger.debug(f"Spooler: {result.stdout.strip()}")

    def print_receipt(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.connected and not self.connect():
            return {"ok": False, "error": "no print spooler available"}

        fd, path = tempfile.mkstemp(prefix='receipt-', suffix='.pdf')
        os.close(fd)

        try:
            render_pdf(payload, path, self.receipt_config)
            self._submit(path)
        except Exception as e:
            logger.error(f"Spooler print failed: {e}")
            _remove_file(path)
            return {"ok": False, "error": str(e)}

        if self.is_windows:
            threading.Timer(WINDOWS_CLEANUP_DELAY, _remove_file, args=(path,)).start()
        else:
            _remove_file(path)

        logger.info(f"Receipt {payload.get('saleNo') or ''} sent to spooler")
        return {"ok": True}

    def get_status(self) -> Dict[str, Any]:
        return {
            "driver": self.get_name(),
            "connected": self.connected,
            "printer": self.printer_name or "(OS default)",
            "command": "shell print verb" if self.is_windows else self.command,
            "error": None if self.connected else "Not connected",
        }
