"""
Demo ERP module.

Placeholder menu, stock and invoice results for running without an ERP.
"""

from .demo_erp import DemoErp

__all__ = ['DemoErp']
