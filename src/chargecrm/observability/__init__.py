"""Observability package -- structured logging configuration."""

from __future__ import annotations

from src.chargecrm.observability.logging import configure_structlog

__all__ = ["configure_structlog"]
