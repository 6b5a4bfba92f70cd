"""Expense tracking backend: local persistence, multi-currency display and
import/export of expense records."""

__version__ = "0.1.0"
