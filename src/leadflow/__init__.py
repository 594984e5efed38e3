"""Core package for the LeadFlow inbound messaging automation service."""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
