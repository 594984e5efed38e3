"""Inbound channel adapters."""
