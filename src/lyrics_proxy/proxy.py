import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from .auth import Authenticator
from .errors import (
    AuthorizationDenied,
    InvalidRequest,
    NoCredentialAvailable,
    ProxyError,
    RateLimitExceeded,
    UpstreamFailure,
)
from .pool import CredentialPool
from .ratelimit import FixedWindowRateLimiter
from .state import CredentialState
from .types import OUTCOME_TYPES, Outcome, ProxyResponse, Status, Success, TransportError

# one retry with a different credential after a failed attempt
DEFAULT_MAX_RETRIES = 1


class UpstreamClient(Protocol):
    async def lookup(self, credential: CredentialState, params: Mapping[str, Any]) -> Outcome: ...


@dataclass
class LyricsRequest:
    api_key: Union[str, None]
    params: dict[str, Any] = field(default_factory=dict)


class ProxyCore:
    """Authorize, admit, pick a credential, call upstream, feed the outcome back.

    Order matters: a denied or malformed request consumes no rate budget, and a rejected
    one never touches the credential pool.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        limiter: FixedWindowRateLimiter,
        pool: CredentialPool,
        upstream: UpstreamClient,
        timeout: float = 10.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.authenticator = authenticator
        self.limiter = limiter
        self.pool = pool
        self.upstream = upstream
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self._logger = logging.getLogger("lyrics_proxy")

    async def handle(self, request: LyricsRequest) -> ProxyResponse:
        try:
            return await self._handle(request)
        except ProxyError as e:
            return e.to_response()

    async def _handle(self, request: LyricsRequest) -> ProxyResponse:
        if not self.authenticator.authorize(request.api_key):
            self._logger.info("request denied: invalid or missing API key")
            raise AuthorizationDenied()

        if not request.params.get("track_id"):
            # no budget or credential is spent on malformed input
            raise InvalidRequest("A track_id is required")

        admission = self.limiter.try_admit()
        if not admission.admitted:
            raise RateLimitExceeded(admission.retry_after)

        last: Union[Outcome, None] = None
        tried: list[CredentialState] = []
        while len(tried) <= self.max_retries:
            cred = self.pool.acquire(exclude=tried)
            if cred is None:
                if last is not None and self.pool.active_count():
                    # the only healthy credentials left were already tried
                    break
                self._logger.warning("no active upstream credential")
                raise NoCredentialAvailable()
            tried.append(cred)
            outcome = await self._attempt(cred, request.params)
            if isinstance(outcome, Success):
                return ProxyResponse(
                    status=Status.OK,
                    status_code=outcome.status_code,
                    body=outcome.body,
                )
            last = outcome
            self._logger.info(
                f"attempt {len(tried)} failed credential={cred.name} outcome={type(outcome).__name__}"
            )
        raise UpstreamFailure(last, len(tried))

    async def _attempt(self, cred: CredentialState, params: Mapping[str, Any]) -> Outcome:
        # Timeouts, bugs and non-outcome results count as transport failures. A cancelled
        # call says nothing about the credential, so it is checked back in untouched.
        outcome: Union[Outcome, None] = None
        try:
            result = await asyncio.wait_for(self.upstream.lookup(cred, params), self.timeout)
            if isinstance(result, OUTCOME_TYPES):
                outcome = result
            else:
                self._logger.error(f"upstream returned {result!r} instead of an outcome credential={cred.name}")
                outcome = TransportError(TypeError(f"unexpected upstream result: {result!r}"))
        except asyncio.TimeoutError as e:
            self._logger.warning(f"upstream timed out after {self.timeout}s credential={cred.name}")
            outcome = TransportError(e)
        except Exception as e:
            self._logger.exception(f"upstream call failed credential={cred.name}")
            outcome = TransportError(e)
        finally:
            if outcome is None:
                self.pool.checkin(cred)
            else:
                self.pool.release(cred, outcome)
        return outcome
