import inspect
from collections.abc import Iterable, Mapping
from typing import Callable, Union

# Outcome kinds a classifier may return
SUCCESS = "success"
AUTH_REJECTED = "auth_rejected"
RATE_LIMITED = "rate_limited"
TRANSPORT_ERROR = "transport_error"
KINDS = (SUCCESS, AUTH_REJECTED, RATE_LIMITED, TRANSPORT_ERROR)

DEFAULT_AUTH_REJECTED = frozenset({401, 403})
DEFAULT_RATE_LIMITED = frozenset({429})
DEFAULT_TRANSPORT_ERROR = frozenset(range(500, 600))

# Defaults used when inspect.signature cannot determine argument counts
DEFAULT_CLASSIFY_ARGC = 1  # classify_fn(status_code)
CLASSIFY_WITH_HEADERS_ARGC = 2  # classify_fn(status_code, headers)


def _count_positional_args(fn, default: int) -> int:
    """Return count of positional params for fn; fall back to default on failure."""
    try:
        sig = inspect.signature(fn)
        return len(
            [
                p
                for p in sig.parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
            ]
        )
    except (TypeError, ValueError):
        return default


class StatusClassifier:
    """Maps an upstream HTTP status to an outcome kind.

    The private API's real status semantics are undocumented, so every set is overridable.
    Statuses outside all three sets are passed through to the client as a success.
    """

    def __init__(
        self,
        auth_rejected: Union[Iterable[int], None] = None,
        rate_limited: Union[Iterable[int], None] = None,
        transport_error: Union[Iterable[int], None] = None,
    ):
        self.auth_rejected = frozenset(DEFAULT_AUTH_REJECTED if auth_rejected is None else auth_rejected)
        self.rate_limited = frozenset(DEFAULT_RATE_LIMITED if rate_limited is None else rate_limited)
        self.transport_error = frozenset(
            DEFAULT_TRANSPORT_ERROR if transport_error is None else transport_error
        )

    def classify(self, status_code: int, headers: Mapping[str, str]) -> str:
        if status_code in self.rate_limited:
            return RATE_LIMITED
        if status_code in self.auth_rejected:
            return AUTH_REJECTED
        if status_code in self.transport_error:
            return TRANSPORT_ERROR
        return SUCCESS


class FunctionalClassifier(StatusClassifier):
    """Wrap a user-supplied classification function.

    Accepted function signatures:
        - classify_fn(status_code) -> kind | None
        - classify_fn(status_code, headers) -> kind | None
    Returning None defers to the default status sets.
    """

    def __init__(self, classify_fn: Callable):
        super().__init__()
        self.classify_fn = classify_fn
        self._argc = _count_positional_args(classify_fn, DEFAULT_CLASSIFY_ARGC)

    def classify(self, status_code, headers):
        if self._argc >= CLASSIFY_WITH_HEADERS_ARGC:
            kind = self.classify_fn(status_code, headers)
        else:
            kind = self.classify_fn(status_code)
        if kind is None:
            return super().classify(status_code, headers)
        if kind not in KINDS:
            raise ValueError(f"Custom classify function returned unknown outcome kind {kind!r}")
        return kind


def coerce_classifier(classifier: Union[object, None]) -> StatusClassifier:
    """Turn None | str | mapping | StatusClassifier | callable into a StatusClassifier.

    Accepted inputs:
      - None / "default" -> StatusClassifier with default sets
      - mapping of kind -> list of status codes, e.g. {"auth_rejected": [401]};
        kinds left out keep their defaults
      - StatusClassifier instance (returned as-is)
      - callable: (status_code[, headers]) -> kind | None, wrapped into FunctionalClassifier
    """
    if classifier is None:
        return StatusClassifier()
    if isinstance(classifier, StatusClassifier):
        return classifier
    if isinstance(classifier, str):
        if classifier.lower() == "default":
            return StatusClassifier()
        raise ValueError("Unknown classifier string. Use 'default', a mapping or a callable.")
    if isinstance(classifier, Mapping):
        unknown = set(classifier) - {AUTH_REJECTED, RATE_LIMITED, TRANSPORT_ERROR}
        if unknown:
            raise ValueError(f"Unknown outcome kinds in status map: {sorted(unknown)}")
        return StatusClassifier(
            auth_rejected=classifier.get(AUTH_REJECTED),
            rate_limited=classifier.get(RATE_LIMITED),
            transport_error=classifier.get(TRANSPORT_ERROR),
        )
    if callable(classifier):
        return FunctionalClassifier(classifier)
    raise TypeError("classifier must be None, 'default', a mapping, StatusClassifier, or a callable")
