__version__ = "0.1.0"

from .auth import Authenticator, extract_api_key  # noqa: E402
from .config import load_config  # noqa: E402
from .env import load_cookies_from_env  # noqa: E402
from .errors import (  # noqa: E402
    AuthorizationDenied,
    ConfigError,
    InvalidRequest,
    NoCredentialAvailable,
    ProxyError,
    RateLimitExceeded,
    UpstreamFailure,
)
from .policies import StatusClassifier, coerce_classifier  # noqa: E402
from .pool import CredentialPool  # noqa: E402
from .proxy import LyricsRequest, ProxyCore  # noqa: E402
from .ratelimit import Admission, FixedWindowRateLimiter  # noqa: E402
from .state import CredentialState, Health  # noqa: E402
from .types import (  # noqa: E402
    AuthConfig,
    AuthRejected,
    BackoffConfig,
    CredentialConfig,
    ProxyConfig,
    ProxyResponse,
    RateLimited,
    Status,
    Success,
    TransportError,
)
from .upstream import SpotifyLyricsClient, parse_retry_after  # noqa: E402

__all__ = [
    "CredentialConfig",
    "AuthConfig",
    "BackoffConfig",
    "ProxyConfig",
    "Success",
    "AuthRejected",
    "RateLimited",
    "TransportError",
    "Status",
    "ProxyResponse",
    "CredentialState",
    "Health",
    "CredentialPool",
    "FixedWindowRateLimiter",
    "Admission",
    "Authenticator",
    "extract_api_key",
    "StatusClassifier",
    "coerce_classifier",
    "SpotifyLyricsClient",
    "parse_retry_after",
    "ProxyCore",
    "LyricsRequest",
    "ProxyError",
    "AuthorizationDenied",
    "RateLimitExceeded",
    "InvalidRequest",
    "NoCredentialAvailable",
    "UpstreamFailure",
    "ConfigError",
    "load_config",
    "load_cookies_from_env",
]
