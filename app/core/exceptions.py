"""Custom exception classes for structured error handling."""

from typing import Any


class OrchestratorError(Exception):
    """Base exception for all orchestration errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class CustomerNotFoundError(OrchestratorError):
    def __init__(self, message: str = "Customer not found") -> None:
        super().__init__(code="CUSTOMER_NOT_FOUND", message=message, status_code=404)


class SessionNotFoundError(OrchestratorError):
    def __init__(self, message: str = "Session not found or not live") -> None:
        super().__init__(code="SESSION_NOT_FOUND", message=message, status_code=404)


class SessionInactiveError(OrchestratorError):
    def __init__(self, message: str = "Session is not active") -> None:
        super().__init__(code="SESSION_INACTIVE", message=message, status_code=409)


class InvalidSessionTransitionError(OrchestratorError):
    def __init__(self, message: str = "Invalid session status transition") -> None:
        super().__init__(
            code="INVALID_SESSION_TRANSITION", message=message, status_code=409
        )


class ExternalServiceError(OrchestratorError):
    def __init__(self, message: str = "External service call failed") -> None:
        super().__init__(code="EXTERNAL_SERVICE_ERROR", message=message, status_code=502)


class ProcessingError(OrchestratorError):
    def __init__(self, message: str = "Message processing failed") -> None:
        super().__init__(code="PROCESSING_FAILED", message=message, status_code=500)


class SessionStartError(OrchestratorError):
    def __init__(self, message: str = "Session could not be started") -> None:
        super().__init__(code="SESSION_START_FAILED", message=message, status_code=500)


class InvalidAPIKeyError(OrchestratorError):
    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(code="INVALID_API_KEY", message=message, status_code=401)


class TenantInactiveError(OrchestratorError):
    def __init__(self, message: str = "Tenant account is inactive") -> None:
        super().__init__(code="TENANT_INACTIVE", message=message, status_code=401)


class RateLimitExceededError(OrchestratorError):
    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(code="RATE_LIMIT_EXCEEDED", message=message, status_code=429)


class DatabaseConnectionError(OrchestratorError):
    def __init__(self, message: str = "Database connection failed") -> None:
        super().__init__(code="DATABASE_CONNECTION_ERROR", message=message, status_code=503)


class RedisConnectionError(OrchestratorError):
    def __init__(self, message: str = "Redis connection failed") -> None:
        super().__init__(code="REDIS_CONNECTION_ERROR", message=message, status_code=503)
