"""
Courier Aggregation Exception Hierarchy

All exceptions include code, message, and details so they can be logged and
mapped to transport responses by the caller.

Exception Hierarchy:
    CourierError
    ├── ConfigurationError
    │   ├── ProviderNotFoundError
    │   ├── UnsupportedProviderError
    │   └── UnsupportedOperationError
    ├── CourierValidationError
    ├── AuthenticationError
    ├── RateLimitError
    ├── UpstreamClientError
    │   └── ProviderResponseError
    └── UpstreamTransientError
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class CourierError(Exception):
    """
    Base exception for all courier aggregation errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "COURIER_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(CourierError):
    """Provider cannot be resolved or is misconfigured."""
    default_code = "COURIER_CONFIGURATION_ERROR"
    default_severity = "P1"


class ProviderNotFoundError(ConfigurationError):
    """Provider missing from the registry or inactive."""
    default_code = "PROVIDER_NOT_FOUND"

    def __init__(self, provider: str, **kwargs):
        details = kwargs.pop("details", {})
        details["provider"] = provider
        super().__init__(f"Active provider not found: {provider}", details=details, **kwargs)


class UnsupportedProviderError(ConfigurationError):
    """No adapter is registered for the provider name."""
    default_code = "PROVIDER_UNSUPPORTED"

    def __init__(self, provider: str, **kwargs):
        details = kwargs.pop("details", {})
        details["provider"] = provider
        super().__init__(f"Unsupported provider: {provider}", details=details, **kwargs)


class UnsupportedOperationError(ConfigurationError):
    """Adapter does not implement an optional operation."""
    default_code = "OPERATION_UNSUPPORTED"
    default_severity = "P3"

    def __init__(self, provider: str, operation: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"provider": provider, "operation": operation})
        super().__init__(f"{provider} does not support {operation}", details=details, **kwargs)


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class CourierValidationError(CourierError):
    """Required input missing or malformed. Raised before any network call."""
    default_code = "COURIER_VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["errors"] = errors or [message]
        super().__init__(message, details=details, **kwargs)

    @property
    def errors(self) -> List[str]:
        return self.details.get("errors", [])


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

class AuthenticationError(CourierError):
    """Credential exchange failed, or 401 persisted after re-authentication."""
    default_code = "COURIER_AUTH_FAILED"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"provider": provider, "endpoint": endpoint})
        super().__init__(message, details=details, **kwargs)


class RateLimitError(CourierError):
    """Upstream kept answering 429 beyond the retry budget."""
    default_code = "COURIER_RATE_LIMITED"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        endpoint: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"provider": provider, "endpoint": endpoint, "attempts": attempts})
        super().__init__(message, details=details, **kwargs)


class UpstreamClientError(CourierError):
    """Terminal 4xx (other than 401/429). Never retried."""
    default_code = "COURIER_UPSTREAM_CLIENT_ERROR"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        self.status_code = status_code
        details = kwargs.pop("details", {})
        details.update({"status_code": status_code, "provider": provider, "endpoint": endpoint})
        super().__init__(message, details=details, **kwargs)


class ProviderResponseError(UpstreamClientError):
    """Provider signalled an error inside a successful (2xx) envelope."""
    default_code = "COURIER_PROVIDER_ERROR"


class UpstreamTransientError(CourierError):
    """5xx, timeout or network failure that outlived the retry budget."""
    default_code = "COURIER_UPSTREAM_UNAVAILABLE"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        endpoint: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"provider": provider, "endpoint": endpoint, "attempts": attempts})
        super().__init__(message, details=details, **kwargs)
