"""
OS spooler printer driver module.

Renders 80mm PDF receipts and submits them to the operating system's print
spooler (lp/lpr on POSIX, the shell print verb on Windows).
"""

from .spooler_driver import SpoolerDriver

__all__ = ['SpoolerDriver']
