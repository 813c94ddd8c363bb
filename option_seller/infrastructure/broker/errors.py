"""
Broker error taxonomy.

AuthenticationError is fatal to the engine. TransientBrokerError is the
only class that is ever retried.
"""

from typing import Optional


class BrokerError(Exception):
    def __init__(self, message: str, error_type: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code


class AuthenticationError(BrokerError):
    """Session token expired or invalid."""


class TransientBrokerError(BrokerError):
    """Network failure, rate limit or broker-side 5xx."""


class BrokerValidationError(BrokerError):
    """Malformed request parameters."""


class OrderRejectedError(BrokerError):
    """Order refused, rejected or cancelled by the broker."""


class OrderPlacementError(BrokerError):
    """Order could not be placed within the configured attempts."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class FatalEngineError(Exception):
    """Unrecoverable engine condition; stops both loops."""
