"""Custom exception classes for the deal engine."""

from typing import List


class GroceryDealsException(Exception):
    """Base exception for all grocery deal engine errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(GroceryDealsException):
    """Raised when required configuration (e.g. API credentials) is missing."""


class AuthenticationError(GroceryDealsException):
    """Raised when a source API rejects the client credentials."""

    def __init__(self, source: str, message: str = "authentication failed"):
        self.source = source
        super().__init__(f"{source} API {message}")


class NetworkError(GroceryDealsException):
    """Raised when a source stays unreachable after the client's retry budget."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Network error for {source}: {message}")


class SourceFetchError(GroceryDealsException):
    """Raised when a source returns something we cannot use."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Failed to fetch {source} deals: {message}")


class DealValidationError(GroceryDealsException):
    """Raised when a deal fails validation. Carries every failed rule."""

    def __init__(self, reasons: List[str]):
        self.reasons = list(reasons)
        super().__init__(f"Deal validation failed: {', '.join(self.reasons)}")


class ResourceInitError(GroceryDealsException):
    """Raised when a heavyweight resource such as the browser cannot start."""


class ConcurrencyError(GroceryDealsException):
    """Raised when a full aggregation run is requested while one is in flight."""

    def __init__(self, message: str = "Aggregation is already running"):
        super().__init__(message)
