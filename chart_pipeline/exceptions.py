"""
Chart Pipeline Exceptions - Custom exception hierarchy.

ChartPipelineError (base)
├── ConfigurationError
├── FetchError
│   └── RateLimitError
└── InvalidTransitionError

Errors raised by caller-supplied sources and accessors are NOT wrapped:
they propagate unchanged to the task lifecycle.
"""

from datetime import datetime
from typing import Any, Optional


class ChartPipelineError(Exception):
    """Base exception for all chart pipeline errors."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class ConfigurationError(ChartPipelineError):
    """Invalid pipeline configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.config_key = config_key


class FetchError(ChartPipelineError):
    """Error while fetching a page from the web-status API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_server_error(self) -> bool:
        """Check if error is server-side."""
        return self.status_code is not None and 500 <= self.status_code < 600


class RateLimitError(FetchError):
    """API answered 429."""

    def __init__(
        self,
        message: str,
        retry_after_seconds: Optional[int] = None,
        request_url: Optional[str] = None,
    ) -> None:
        super().__init__(message, status_code=429, request_url=request_url)
        self.retry_after_seconds = retry_after_seconds


class InvalidTransitionError(ChartPipelineError):
    """A task lifecycle transition that the state machine does not allow."""

    def __init__(self, from_status: Any, to_status: Any) -> None:
        super().__init__(
            f"Invalid transition: {from_status.value} -> {to_status.value}",
            context={"from": from_status.value, "to": to_status.value},
        )
        self.from_status = from_status
        self.to_status = to_status
