"""
ESC/POS thermal printer driver module.

Prints plain-text receipts on serial ESC/POS printers using pyserial.
"""

from .escpos_driver import EscPosDriver

__all__ = ['EscPosDriver']
