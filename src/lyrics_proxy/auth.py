import logging
from collections.abc import Iterable, Mapping

from .types import AuthConfig

logger = logging.getLogger("lyrics_proxy")


class Authenticator:
    """Exact-match, case-sensitive check of client API keys against an allow-list.

    An empty allow-list means open access: every request is allowed.
    """

    def __init__(self, api_keys: Iterable[str] | None = None):
        self._keys = frozenset(api_keys or ())
        if not self._keys:
            logger.warning("No API key provided, this means anyone can use your API")

    @property
    def open_access(self) -> bool:
        return not self._keys

    def authorize(self, supplied_key: str | None) -> bool:
        if self.open_access:
            return True
        return supplied_key is not None and supplied_key in self._keys


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    # starlette/httpx headers are case-insensitive already; plain dicts are not
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for k, v in headers.items():
        if k.lower() == lowered:
            return v
    return None


def extract_api_key(
    headers: Mapping[str, str],
    query: Mapping[str, str] | None = None,
    auth_config: AuthConfig | None = None,
) -> str | None:
    """Pull the client's API key from the request per the auth configuration.

    Header mode expects ``<header>: <scheme> <key>`` (``Authorization: Bearer <key>`` by
    default). A header without the scheme prefix yields no key.
    """
    ac = auth_config or AuthConfig()
    if ac.in_ == "query":
        return (query or {}).get(ac.query_param) or None
    raw = _get_header(headers, ac.header)
    if raw is None:
        return None
    if not ac.scheme:
        return raw.strip() or None
    prefix = f"{ac.scheme} "
    if not raw.startswith(prefix):
        return None
    return raw[len(prefix) :].strip() or None
