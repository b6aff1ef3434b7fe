"""Connector error taxonomy.

``ConfigurationError`` is fatal and never retried.  Subclasses of
``ConnectionUnavailableError`` are eligible for the host's reconnect policy.
``DeliveryError`` is scoped to a single message and resolved by nack.
"""

from __future__ import annotations

from pathlib import Path


class ConnectorError(Exception):
    """Base class for all connector errors."""


class ConfigurationError(ConnectorError):
    """Invalid or missing configuration, surfaced at initialization."""


class CredentialLoadError(ConfigurationError):
    """The service-account credential file is missing, unreadable or malformed."""

    def __init__(self, message: str, path: str | Path) -> None:
        super().__init__(message)
        self.path = Path(path)


class ConnectionUnavailableError(ConnectorError):
    """The broker cannot be reached or refused the connection; retriable."""


class ProvisioningError(ConnectionUnavailableError):
    """The broker rejected subscription creation (other than already-exists)."""

    def __init__(self, message: str, status_code: str = "UNKNOWN") -> None:
        super().__init__(message)
        self.status_code = status_code


class TransportError(ConnectionUnavailableError):
    """The streaming pull could not be opened or died while receiving."""


class DeliveryError(ConnectorError):
    """A single message could not be handed to the sink."""

    def __init__(self, message: str, message_id: str) -> None:
        super().__init__(message)
        self.message_id = message_id


class InvalidStateError(ConnectorError):
    """A lifecycle call is not legal in the current receiver state."""
