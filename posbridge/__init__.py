"""
POS Bridge.

Connects browser-based waiter/kitchen terminals to the ERP backend and to
the local receipt/kitchen printer, and keeps the shared table/ticket state
for every connected terminal.
"""

from .version import VERSION

__all__ = ['VERSION']
