"""Worklog MCP: interrupt-driven work timer with ledger reconciliation."""

__version__ = "0.1.0"

__all__ = ["__version__"]
