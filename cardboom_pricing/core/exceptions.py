"""
Pricing Engine Exception Hierarchy

All exceptions include code, message, and details so run summaries and logs
can itemize every failure.

Exception Hierarchy:
    PricingBaseError
    ├── ConfigurationError      fatal, aborts the run before any item
    ├── SourceError
    │   ├── ExternalFetchError  network failure / non-success status
    │   └── ParseError          malformed or unexpected response shape
    └── PersistenceError        database write failure for one item

A price that falls outside the accepted bounds is not an exception; see
services.price_validator.ValidationOutcome.
"""
from typing import Optional, Dict, Any


class PricingBaseError(Exception):
    """
    Base exception for all pricing engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
    """

    default_code: str = "PRICING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(PricingBaseError):
    """A required external credential or setting is missing."""
    default_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, setting: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["setting"] = setting
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SOURCE ERRORS
# =============================================================================

class SourceError(PricingBaseError):
    """Base exception for external price source failures."""
    default_code = "SOURCE_ERROR"

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["source"] = source
        self.source = source
        super().__init__(message, details=details, **kwargs)


class ExternalFetchError(SourceError):
    """Network failure or non-success response from a source."""
    default_code = "EXTERNAL_FETCH_FAILED"

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message, source=source, details=details, **kwargs)


class ParseError(SourceError):
    """Response body could not be decoded or had an unexpected shape."""
    default_code = "SOURCE_PARSE_FAILED"


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class PersistenceError(PricingBaseError):
    """Database write failed; the owning item is reported and the batch continues."""
    default_code = "PERSISTENCE_FAILED"

    def __init__(self, message: str, entity: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["entity"] = entity
        super().__init__(message, details=details, **kwargs)
