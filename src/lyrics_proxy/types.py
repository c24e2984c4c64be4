import enum
from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass
class CredentialConfig:
    name: str
    token: str


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    in_: Literal["header", "query"] = "header"
    query_param: str = "api_key"


@dataclass(frozen=True)
class BackoffConfig:
    # Upstream 429 without a usable Retry-After
    rate_limit_default: float = 30.0

    # Transport errors/backoff
    error_base: float = 1.0
    error_growth: float = 2.0
    error_cap: float = 60.0

    # consecutive failures before a state change
    auth_failure_threshold: int = 1
    transport_failure_threshold: int = 3


@dataclass
class ProxyConfig:
    cookies: list[str]
    api_keys: list[str] = field(default_factory=list)
    host: str = "127.0.0.1"
    port: int = 3000
    # Global fixed window: capacity requests per window seconds. 0 disables.
    rate_limit_capacity: int = 0
    rate_limit_window: float = 1.0
    upstream_timeout: float = 10.0
    max_retries: int = 1
    status_map: dict[str, list[int]] | None = None
    auth: AuthConfig = field(default_factory=AuthConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def credential_configs(self) -> list[CredentialConfig]:
        return [CredentialConfig(name=f"cookie_{i + 1}", token=c) for i, c in enumerate(self.cookies)]


# ---------- upstream outcomes ----------


@dataclass(frozen=True)
class Success:
    status_code: int
    body: Any


@dataclass(frozen=True)
class AuthRejected:
    status_code: int | None = None


@dataclass(frozen=True)
class RateLimited:
    # seconds; None when upstream sent no usable hint
    retry_after: float | None = None


@dataclass(frozen=True)
class TransportError:
    error: BaseException | None = None

    def describe(self) -> str:
        if self.error is None:
            return "transport error"
        return f"{type(self.error).__name__}: {self.error}" if str(self.error) else type(self.error).__name__


Outcome = Union[Success, AuthRejected, RateLimited, TransportError]
OUTCOME_TYPES = (Success, AuthRejected, RateLimited, TransportError)


# ---------- client-facing result ----------


class Status(str, enum.Enum):
    OK = "ok"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    TOO_MANY_REQUESTS = "too_many_requests"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UPSTREAM_ERROR = "upstream_error"


@dataclass
class ProxyResponse:
    status: Status
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
