"""Reconciliation and health watchdog for CodeChat WhatsApp instances."""

__version__ = "1.0.0"
