"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"

    # Webhook gate errors (2xxx)
    WEBHOOK_NOT_CONFIGURED = "ERR_2001"
    WEBHOOK_UNAUTHORIZED = "ERR_2002"
    WEBHOOK_RATE_LIMITED = "ERR_2003"
    INVALID_PAYLOAD = "ERR_2004"
    INVALID_SIGNATURE = "ERR_2005"
    WEBHOOK_PROCESSING_FAILED = "ERR_2006"

    # Payment gateway errors (4xxx)
    PAYMENT_METADATA_MISSING = "ERR_4001"

    # External service errors (5xxx)
    CHAIN_READ_ERROR = "ERR_5001"
    PAYMENT_GATEWAY_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.headers: dict[str, str] = {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class WebhookRejection(AppException):
    """
    Base exception for a webhook delivery refused before any processing.

    Serialised in the flat ``{"success": false, "error": ...}`` shape the
    chain indexer and the payment gateway expect.
    """

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class WebhookNotConfiguredError(WebhookRejection):
    """Raised when no shared secret is configured for the webhook"""

    def __init__(self, webhook: str):
        super().__init__(
            message="Webhook not configured",
            error_code=ErrorCode.WEBHOOK_NOT_CONFIGURED,
            status_code=401,
            details={"webhook": webhook}
        )


class WebhookUnauthorizedError(WebhookRejection):
    """Raised when the authorization header is missing or wrong"""

    def __init__(self, reason: str = "Unauthorized"):
        super().__init__(
            message=reason,
            error_code=ErrorCode.WEBHOOK_UNAUTHORIZED,
            status_code=401
        )


class RateLimitExceededError(WebhookRejection):
    """Raised when a client identity exceeds the webhook rate limit"""

    def __init__(self, identity: str, retry_after_seconds: int):
        super().__init__(
            message="Too many requests. Please try again later.",
            error_code=ErrorCode.WEBHOOK_RATE_LIMITED,
            status_code=429,
            details={"identity": identity, "retry_after_seconds": retry_after_seconds}
        )
        self.headers["Retry-After"] = str(retry_after_seconds)


class InvalidPayloadError(WebhookRejection):
    """Raised when a webhook body fails structural validation"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_PAYLOAD,
            status_code=400,
            details=details
        )


class InvalidSignatureError(WebhookRejection):
    """Raised when a payment gateway callback signature does not verify"""

    def __init__(self, reason: str = "Invalid signature"):
        super().__init__(
            message=reason,
            error_code=ErrorCode.INVALID_SIGNATURE,
            status_code=401
        )


class WebhookProcessingError(WebhookRejection):
    """Raised when the ingestion pipeline fails outside per-block error handling"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.WEBHOOK_PROCESSING_FAILED,
            status_code=500,
            details=details
        )


class PaymentMetadataError(AppException):
    """Raised when a payment callback lacks the marketplace metadata it needs"""

    def __init__(self, payment_id: str, missing: list[str]):
        super().__init__(
            message=f"Missing required metadata: {', '.join(missing)}",
            error_code=ErrorCode.PAYMENT_METADATA_MISSING,
            status_code=500,
            details={"payment_id": payment_id, "missing": missing}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class ChainReadError(ExternalServiceException):
    """Raised when a read-only contract call fails or returns an unusable value"""

    def __init__(self, function_name: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="stacks_api",
            message=f"Read-only call {function_name} failed: {message}",
            error_code=ErrorCode.CHAIN_READ_ERROR,
            details={"function": function_name, **(details or {})}
        )

    @classmethod
    def from_response(
        cls,
        function_name: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "ChainReadError":
        """Build a ChainReadError from a non-2xx Stacks API response"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            function_name,
            f"status {status_code}",
            details={
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class PaymentGatewayError(ExternalServiceException):
    """Raised when the payment gateway or the settlement relay rejects a call"""

    def __init__(self, operation: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="stackspay",
            message=f"{operation} failed: {message}",
            error_code=ErrorCode.PAYMENT_GATEWAY_ERROR,
            details={"operation": operation, **(details or {})}
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "PaymentGatewayError":
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            operation,
            f"status {status_code}",
            details={
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
