import contextlib
import logging
import threading
import time
from typing import Callable, Union

from .env import load_cookies_from_env
from .state import CredentialState, Health
from .types import (
    AuthRejected,
    BackoffConfig,
    CredentialConfig,
    Outcome,
    RateLimited,
    Success,
    TransportError,
)

# exponent ceiling for transport backoff growth
MAX_BACKOFF_EXPONENT = 5


class CredentialPool:
    """Round-robin pool of upstream session credentials with lazy health reconciliation.

    Credentials live in a fixed-order list; a cursor walks it modulo its length on every
    acquisition, skipping ineligible entries. Entries are never removed, only their health
    flips, so indices stay stable and rotation resumes fairly after a cooldown ends.

    All state transitions happen under one lock. The lock is never held while the caller
    talks to the upstream, so different credentials serve concurrent requests in parallel.
    """

    def __init__(
        self,
        credentials: list[CredentialConfig],
        backoff: Union[BackoffConfig, None] = None,
        clock: Union[Callable[[], float], None] = None,
        log_level: Union[int, None] = None,
    ):
        """Initialize a CredentialPool.

        Args:
            credentials (list[CredentialConfig]): credentials in rotation order
            backoff (BackoffConfig | None): thresholds and cooldown durations
            clock (Callable[[], float] | None): monotonic time source, seconds
            log_level (int | None): level for the "lyrics_proxy" logger
        """
        self._backoff = backoff or BackoffConfig()
        self._clock = clock or time.monotonic
        self._credentials: list[CredentialState] = [
            CredentialState(name=c.name, token=c.token) for c in credentials
        ]
        self._cursor = 0
        self._lock = threading.Lock()
        self._logger = logging.getLogger("lyrics_proxy")
        if log_level is not None:
            with contextlib.suppress(Exception):
                self._logger.setLevel(log_level)

    def __len__(self) -> int:
        return len(self._credentials)

    def _now(self) -> float:
        return self._clock()

    # ---------- convenience: build credentials from env ----------
    @classmethod
    def from_env(
        cls,
        names=None,
        prefix: Union[str, None] = None,
        env_path: Union[str, None] = None,
        **kwargs,
    ):
        """Create a CredentialPool from cookie values in environment variables.

        kwargs keywords:
        to_lower_names: make names lowercase
        split_commas: split comma-separated values
        strip_prefix: strip prefix from names
        Remaining kwargs go to the pool constructor.
        """
        loader_keys = {
            k: kwargs.pop(k)
            for k in list(kwargs.keys())
            if k in {"to_lower_names", "split_commas", "strip_prefix"}
        }
        creds = load_cookies_from_env(names=names, prefix=prefix, env_path=env_path, **loader_keys)
        return cls(creds, **kwargs)

    # ---------- public API ----------
    def acquire(self, exclude=()) -> Union[CredentialState, None]:
        """Check out the next ACTIVE credential, skipping any in `exclude`. None if there is none.

        Idle credentials are preferred. When every ACTIVE credential is already checked out,
        the next one in rotation order is shared rather than failing the request, whether one
        or several are ACTIVE; `in_use` counts the concurrent checkouts.
        """
        with self._lock:
            now = self._now()
            for cred in self._credentials:
                if cred.reconcile(now):
                    self._logger.info(f"credential={cred.name} cooldown over; active again")

            cred = self._next_candidate(True, exclude) or self._next_candidate(False, exclude)
            if cred is None:
                return None
            cred.in_use += 1
            return cred

    def release(self, cred: CredentialState, outcome: Outcome) -> None:
        with self._lock:
            cred.in_use = max(0, cred.in_use - 1)
            if cred.health is Health.DEAD:
                return
            if isinstance(outcome, Success):
                cred.failures = 0
                cred.successes += 1
            elif isinstance(outcome, AuthRejected):
                self._on_auth_rejected(cred, outcome)
            elif isinstance(outcome, RateLimited):
                self._on_rate_limited(cred, outcome)
            elif isinstance(outcome, TransportError):
                self._on_transport_error(cred, outcome)
            else:
                raise TypeError(f"unknown upstream outcome: {outcome!r}")

    def checkin(self, cred: CredentialState) -> None:
        """Return a checked-out credential without any outcome, e.g. when the request was cancelled."""
        with self._lock:
            cred.in_use = max(0, cred.in_use - 1)

    def active_count(self) -> int:
        with self._lock:
            now = self._now()
            return sum(
                1
                for c in self._credentials
                if c.is_eligible() or (c.health is Health.COOLDOWN and (c.cooldown_until or 0.0) <= now)
            )

    def snapshot(self) -> list[dict]:
        with self._lock:
            now = self._now()
            return [
                {
                    "name": c.name,
                    "health": c.health.value,
                    "failures": c.failures,
                    "successes": c.successes,
                    "in_use": c.in_use,
                    "cooldown_remaining": (
                        max(0.0, c.cooldown_until - now) if c.cooldown_until is not None else None
                    ),
                }
                for c in self._credentials
            ]

    # ---------- internal ----------
    def _next_candidate(self, idle_only: bool, exclude=()) -> Union[CredentialState, None]:
        n = len(self._credentials)
        for offset in range(n):
            idx = (self._cursor + offset) % n
            cred = self._credentials[idx]
            if not cred.is_eligible() or cred in exclude:
                continue
            if idle_only and cred.in_use:
                continue
            self._cursor = (idx + 1) % n
            return cred
        return None

    def _cooldown(self, cred: CredentialState, seconds: float) -> None:
        until = self._now() + seconds
        cred.health = Health.COOLDOWN
        cred.cooldown_until = max(cred.cooldown_until or 0.0, until)

    def _on_auth_rejected(self, cred: CredentialState, outcome: AuthRejected) -> None:
        cred.failures += 1
        if cred.failures >= self._backoff.auth_failure_threshold:
            cred.health = Health.DEAD
            cred.cooldown_until = None
            self._logger.warning(
                f"credential={cred.name} rejected by upstream (status={outcome.status_code}); "
                "marked dead until restart"
            )

    def _on_rate_limited(self, cred: CredentialState, outcome: RateLimited) -> None:
        retry_after = outcome.retry_after
        if retry_after is None or retry_after <= 0:
            retry_after = self._backoff.rate_limit_default
        self._cooldown(cred, retry_after)
        self._logger.info(f"credential={cred.name} throttled upstream; cooling down {retry_after:.2f}s")

    def _on_transport_error(self, cred: CredentialState, outcome: TransportError) -> None:
        cred.failures += 1
        threshold = self._backoff.transport_failure_threshold
        if cred.failures < threshold:
            self._logger.debug(f"credential={cred.name} transport failure {cred.failures}/{threshold}")
            return
        exponent = min(MAX_BACKOFF_EXPONENT, cred.failures - threshold)
        delay = min(
            self._backoff.error_cap,
            self._backoff.error_base * (self._backoff.error_growth**exponent),
        )
        self._cooldown(cred, delay)
        self._logger.warning(
            f"credential={cred.name} {cred.failures} consecutive transport failures "
            f"({outcome.describe()}); cooling down {delay:.2f}s"
        )
