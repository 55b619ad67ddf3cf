"""Ephemeral channel — shared-secret encrypted notes over Bitcoin testnet."""

__version__ = "0.1.0"
