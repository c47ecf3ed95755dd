"""
Receipt printer driver modules.

This package contains the drivers the printer server can print through:
- spooler: 80mm PDF handed to the OS print spooler
- escpos: ESC/POS thermal printer on a serial port
- file: PDF written to an output directory (no hardware)
"""

from .base_printer import BasePrinter


def create_printer(config):
    """
    Factory function to create printer driver instance.

    Args:
        config: Full config dict from config.json

    Returns:
        BasePrinter: Instance of the active printer driver

    Raises:
        ValueError: If printer not found or not supported
    """
    from ..core.config_manager import get_printer_config

    printer_name = config['printer']['active']

    # Merge driver-specific config with the shared receipt texts
    printer_config = dict(get_printer_config(config, printer_name) or {})
    printer_config['receipt'] = config['printer'].get('receipt', {})

    if printer_name == 'spooler':
        from .spooler.spooler_driver import SpoolerDriver
        return SpoolerDriver(printer_config)
    elif printer_name == 'escpos':
        from .escpos.escpos_driver import EscPosDriver
        return EscPosDriver(printer_config)
    elif printer_name == 'file':
        from .file.file_driver import FileDriver
        return FileDriver(printer_config)
    else:
        raise ValueError(f"Unknown printer: {printer_name}")


__all__ = ['BasePrinter', 'create_printer']
