import email.utils as eut
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Union

import httpx

from .policies import AUTH_REJECTED, RATE_LIMITED, SUCCESS, TRANSPORT_ERROR, coerce_classifier
from .state import CredentialState
from .types import AuthRejected, Outcome, RateLimited, Success, TransportError

TOKEN_URL = "https://open.spotify.com/get_access_token?reason=transport&productType=web_player"
LYRICS_URL = "https://spclient.wg.spotify.com/color-lyrics/v2/track/"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# refresh access tokens this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 5.0


class UpstreamStatusError(Exception):
    def __init__(self, status_code: int, where: str):
        self.status_code = status_code
        super().__init__(f"{where} returned HTTP {status_code}")


def parse_retry_after(headers: Mapping[str, str], now: float) -> Union[float, None]:
    """Seconds to wait per a Retry-After header (delta-seconds or HTTP-date), else None."""
    ra = None
    for k, v in headers.items():
        if k.lower() == "retry-after":
            ra = v
            break
    if ra is None:
        return None
    try:
        return max(0.0, float(ra))
    except ValueError:
        pass
    try:
        ts = eut.parsedate_to_datetime(ra)
    except (TypeError, ValueError):
        return None
    if ts is None:
        return None
    # Round up so short delays are not truncated to nothing
    return max(0.0, float(math.ceil(ts.timestamp() - now)))


@dataclass
class AccessToken:
    token: str
    expires_at: float  # wall clock seconds


class SpotifyLyricsClient:
    """Performs lyrics lookups against the private API with a given sp_dc credential.

    Each cookie is exchanged for a short-lived bearer token, cached until shortly before
    expiry. Results come back as outcomes, never exceptions, so the caller can feed
    them straight into credential health.
    """

    def __init__(
        self,
        client: Union[httpx.AsyncClient, None] = None,
        classifier: Union[object, None] = None,
        timeout: float = 10.0,
        token_url: str = TOKEN_URL,
        lyrics_url: str = LYRICS_URL,
        user_agent: str = USER_AGENT,
        wall_clock: Union[Callable[[], float], None] = None,
    ):
        self._client = client
        self._own_client = client is None
        self.classifier = coerce_classifier(classifier)
        self.timeout = timeout
        self.token_url = token_url
        self.lyrics_url = lyrics_url
        self.user_agent = user_agent
        self._wall_clock = wall_clock or time.time
        self._tokens: dict[str, AccessToken] = {}
        self._logger = logging.getLogger("lyrics_proxy")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self):
        if self._own_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _base_headers(self) -> dict[str, str]:
        return {
            "App-platform": "WebPlayer",
            "User-Agent": self.user_agent,
            "Content-Type": "text/html",
        }

    # ---------- public ----------
    async def lookup(self, credential: CredentialState, params: Mapping[str, Any]) -> Outcome:
        track_id = params.get("track_id")
        if not track_id:
            raise ValueError("lyrics lookup needs a track_id")
        query = {"format": "json", "market": "from_token"}
        query.update({k: v for k, v in params.items() if k != "track_id"})
        try:
            token = await self._access_token(credential)
            if not isinstance(token, AccessToken):
                return token
            resp = await self._fetch(token, track_id, query)
            if resp.status_code == 401:  # noqa: PLR2004, http status code can be constant
                # cached token may have been revoked early; exchange the cookie once more
                self._tokens.pop(credential.token, None)
                token = await self._access_token(credential)
                if not isinstance(token, AccessToken):
                    return token
                resp = await self._fetch(token, track_id, query)
            return self._to_outcome(resp)
        except httpx.TransportError as e:
            self._logger.warning(f"transport error credential={credential.name}: {e!r}")
            return TransportError(e)

    # ---------- internal ----------
    async def _fetch(self, token: AccessToken, track_id: str, query: dict) -> httpx.Response:
        headers = self._base_headers()
        headers["Authorization"] = f"Bearer {token.token}"
        return await self._http().get(f"{self.lyrics_url}{track_id}", params=query, headers=headers)

    async def _access_token(self, credential: CredentialState) -> Union[AccessToken, Outcome]:
        cached = self._tokens.get(credential.token)
        if cached is not None and cached.expires_at - TOKEN_EXPIRY_MARGIN > self._wall_clock():
            return cached

        headers = self._base_headers()
        headers["Cookie"] = f"sp_dc={credential.token}"
        resp = await self._http().get(self.token_url, headers=headers)
        kind = self.classifier.classify(resp.status_code, resp.headers)
        if kind != SUCCESS or not resp.is_success:
            outcome = self._failure(kind, resp, "token exchange")
            self._logger.info(f"token exchange failed credential={credential.name} status={resp.status_code}")
            return outcome
        try:
            data = resp.json()
        except ValueError as e:
            return TransportError(e)
        access = data.get("accessToken") if isinstance(data, dict) else None
        if not access or data.get("isAnonymous"):
            # sp_dc no longer maps to a logged-in session
            return AuthRejected(resp.status_code)
        expires_ms = data.get("accessTokenExpirationTimestampMs")
        expires_at = expires_ms / 1000.0 if expires_ms else self._wall_clock() + 3600.0
        token = AccessToken(token=access, expires_at=expires_at)
        self._tokens[credential.token] = token
        self._logger.debug(f"new access token credential={credential.name}")
        return token

    def _failure(self, kind: str, resp: httpx.Response, where: str) -> Outcome:
        if kind == RATE_LIMITED:
            return RateLimited(parse_retry_after(resp.headers, self._wall_clock()))
        if kind == AUTH_REJECTED:
            return AuthRejected(resp.status_code)
        # TRANSPORT_ERROR, or a pass-through status where a token was required
        return TransportError(UpstreamStatusError(resp.status_code, where))

    def _to_outcome(self, resp: httpx.Response) -> Outcome:
        kind = self.classifier.classify(resp.status_code, resp.headers)
        if kind in (RATE_LIMITED, AUTH_REJECTED, TRANSPORT_ERROR):
            return self._failure(kind, resp, "lyrics")
        try:
            body = resp.json() if resp.content else None
        except ValueError as e:
            if resp.is_success:
                return TransportError(e)
            body = resp.text
        if isinstance(body, dict) and "lyrics" in body:
            body = body["lyrics"]
        return Success(status_code=resp.status_code, body=body)
