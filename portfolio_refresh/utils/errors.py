"""
Exception hierarchy for the portfolio refresh service.

Every error carries a stable ``error_code`` and a ``details`` dict that
the HTTP layer returns verbatim, so clients can tell "user does not
exist" apart from "database is down" without parsing messages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ErrorContext:
    service: str
    operation: str
    user_id: Optional[str] = None
    symbol: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PortfolioRefreshError(Exception):
    """Base class; subclasses set ``error_code``."""

    error_code = "PORTFOLIO_REFRESH_ERROR"

    def __init__(self, message: str, context: Optional[ErrorContext] = None,
                 details: Optional[Dict[str, Any]] = None, **fields: Any):
        super().__init__(message)
        self.message = message
        self.context = context
        self.details = dict(details or {})
        for name, value in fields.items():
            setattr(self, name, value)
            if value is not None:
                self.details[name] = value

    def to_dict(self) -> Dict[str, Any]:
        data = {"error_code": self.error_code, "message": self.message, "details": self.details}
        if self.context is not None:
            data["context"] = {
                "service": self.context.service,
                "operation": self.context.operation,
                "user_id": self.context.user_id,
                "symbol": self.context.symbol,
                "metadata": self.context.metadata,
            }
        return data


class SourceError(PortfolioRefreshError):
    """A quote provider could not supply a quote."""

    def __init__(self, message: str, source: Optional[str] = None, symbol: Optional[str] = None, **kwargs: Any):
        super().__init__(message, source=source, symbol=symbol, **kwargs)


class SourceUnavailableError(SourceError):
    """Network failure, timeout or non-2xx answer from a provider."""

    error_code = "SOURCE_UNAVAILABLE"

    def __init__(self, message: str, source: Optional[str] = None, symbol: Optional[str] = None,
                 status: Optional[int] = None, **kwargs: Any):
        super().__init__(message, source=source, symbol=symbol, status=status, **kwargs)


class SourceDataMissingError(SourceError):
    """The provider answered but the response had nothing usable."""

    error_code = "SOURCE_DATA_MISSING"

    def __init__(self, message: str, source: Optional[str] = None, symbol: Optional[str] = None,
                 field: Optional[str] = None, **kwargs: Any):
        super().__init__(message, source=source, symbol=symbol, field=field, **kwargs)


class CacheUnavailableError(PortfolioRefreshError):
    error_code = "CACHE_UNAVAILABLE"

    def __init__(self, message: str, operation: Optional[str] = None, key: Optional[str] = None, **kwargs: Any):
        super().__init__(message, operation=operation, key=key, **kwargs)


class QueueUnavailableError(PortfolioRefreshError):
    """The refresh stream could not be written or read."""

    error_code = "QUEUE_UNAVAILABLE"

    def __init__(self, message: str, operation: Optional[str] = None, stream: Optional[str] = None, **kwargs: Any):
        super().__init__(message, operation=operation, stream=stream, **kwargs)


class PersistentStoreUnavailableError(PortfolioRefreshError):
    """Users or holdings could not be read from PostgreSQL."""

    error_code = "PERSISTENT_STORE_UNAVAILABLE"

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs: Any):
        super().__init__(message, operation=operation, **kwargs)


class UnknownUserError(PortfolioRefreshError):
    error_code = "USER_NOT_FOUND"

    def __init__(self, message: str, user_id: Optional[str] = None, **kwargs: Any):
        super().__init__(message, user_id=user_id, **kwargs)


class ValidationError(PortfolioRefreshError):
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None, **kwargs: Any):
        super().__init__(message, field=field, **kwargs)
        self.value = value
        if value is not None:
            self.details["value"] = str(value)


class ConfigurationError(PortfolioRefreshError):
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, config_key: Optional[str] = None, config_value: Optional[Any] = None,
                 **kwargs: Any):
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_value = config_value
        if config_value is not None:
            self.details["config_value"] = str(config_value)


class OperationTimeoutError(PortfolioRefreshError):
    """A bounded call to Redis, PostgreSQL or a provider ran past its deadline."""

    error_code = "TIMEOUT_ERROR"

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, operation: Optional[str] = None,
                 **kwargs: Any):
        super().__init__(message, timeout_seconds=timeout_seconds, operation=operation, **kwargs)


def create_error_context(service: str, operation: str, user_id: Optional[str] = None,
                         symbol: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> ErrorContext:
    return ErrorContext(service, operation, user_id, symbol, metadata or {})
