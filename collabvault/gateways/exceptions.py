"""Exceptions raised inside the gateway layer.

The payments service converts these to ``collabvault.errors.GatewayError``
before they reach an HTTP handler.
"""

from __future__ import annotations

from typing import Any


class GatewayRequestError(Exception):
    """The provider rejected a request or could not be reached."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class GatewayConfigurationError(GatewayRequestError):
    """Credentials or endpoints for the provider are missing."""
