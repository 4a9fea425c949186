"""Cortex billing core: entitlements, throttling and billing-state reconciliation."""

__version__ = "1.0.0"
