"""
File printer driver module.

Writes rendered receipts as PDF files instead of printing them.
"""

from .file_driver import FileDriver

__all__ = ['FileDriver']
