import math
from typing import Any, Optional

from .types import Outcome, ProxyResponse, RateLimited, Status, TransportError


class ConfigError(ValueError):
    """Startup configuration is missing or invalid."""


class ProxyError(Exception):
    """Base for client-facing failures of a proxied request."""

    status = Status.UPSTREAM_ERROR
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def headers(self) -> dict[str, str]:
        return {}

    def to_response(self) -> ProxyResponse:
        body: dict[str, Any] = {"error": self.status.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return ProxyResponse(
            status=self.status,
            status_code=self.status_code,
            body=body,
            headers=self.headers(),
        )


class InvalidRequest(ProxyError):
    status = Status.BAD_REQUEST
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)


class AuthorizationDenied(ProxyError):
    status = Status.UNAUTHORIZED
    status_code = 401

    def __init__(self, message: str = "Invalid or missing API key"):
        super().__init__(message)

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class RateLimitExceeded(ProxyError):
    status = Status.TOO_MANY_REQUESTS
    status_code = 429

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded", {"retry_after": round(retry_after, 3)})

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(max(1, math.ceil(self.retry_after)))}


class NoCredentialAvailable(ProxyError):
    status = Status.SERVICE_UNAVAILABLE
    status_code = 503

    def __init__(self, message: str = "No upstream credential available"):
        super().__init__(message)


class UpstreamFailure(ProxyError):
    status = Status.UPSTREAM_ERROR
    status_code = 502

    def __init__(self, outcome: Outcome, attempts: int):
        self.outcome = outcome
        self.attempts = attempts
        details: dict[str, Any] = {"reason": _reason(outcome), "attempts": attempts}
        if isinstance(outcome, RateLimited) and outcome.retry_after:
            details["retry_after"] = outcome.retry_after
        super().__init__("Upstream lyrics request failed", details)


def _reason(outcome: Outcome) -> str:
    if isinstance(outcome, TransportError):
        return "transport_error"
    if isinstance(outcome, RateLimited):
        return "upstream_rate_limited"
    return "upstream_auth_rejected"
