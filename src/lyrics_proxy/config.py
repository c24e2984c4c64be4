"""Startup configuration: a TOML file layered with environment variables.

File layout (every key optional except ``cookies``, which may come from the environment)::

    port = 3000
    host = "127.0.0.1"
    api_keys = ["k1"]
    cookies = ["<sp_dc>", "<sp_dc>"]

    [rate_limit]
    capacity = 60
    window = 60

    [upstream]
    timeout = 10
    max_retries = 1

    [upstream.status_map]
    auth_rejected = [401, 403]
    rate_limited = [429]

    [backoff]
    rate_limit_default = 30
"""

import dataclasses
import logging
import tomllib
from typing import Any

from . import env
from .errors import ConfigError
from .policies import coerce_classifier
from .types import AuthConfig, BackoffConfig, ProxyConfig

logger = logging.getLogger("lyrics_proxy")


def _read_toml(path: str) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"failed to parse {path}: {e}") from e


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return [v for v in value if v]


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _build_dataclass(cls, values: dict[str, Any], section: str):
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"unknown keys in [{section}]: {sorted(unknown)}")
    return cls(**values)


def config_from_mapping(data: dict[str, Any], env_map: dict[str, str] | None = None) -> ProxyConfig:
    env_map = env_map or {}

    cookies = _string_list(data.get("cookies"), "cookies")
    cookies += [c.token for c in env.load_cookies_from_env(env_map=env_map)]
    if not cookies:
        raise ConfigError("You must provide at least one sp_dc cookie")

    api_keys = _string_list(data.get("api_keys"), "api_keys")
    api_keys += env.split_list(env_map.get(env.API_KEYS_VAR))

    rate = _section(data, "rate_limit")
    upstream = _section(data, "upstream")
    status_map = upstream.get("status_map")
    if status_map is not None and not isinstance(status_map, dict):
        raise ConfigError("[upstream.status_map] must be a table")
    if status_map is not None:
        for kind, codes in status_map.items():
            if not isinstance(codes, list) or not all(isinstance(c, int) for c in codes):
                raise ConfigError(f"[upstream.status_map] {kind} must be a list of status codes")
        try:
            coerce_classifier(status_map)
        except ValueError as e:
            raise ConfigError(f"invalid [upstream.status_map]: {e}") from e

    try:
        port = int(env_map.get(env.PORT_VAR) or data.get("port", 3000))
        cfg = ProxyConfig(
            cookies=list(dict.fromkeys(cookies)),
            api_keys=list(dict.fromkeys(api_keys)),
            host=env_map.get(env.HOST_VAR) or data.get("host", "127.0.0.1"),
            port=port,
            rate_limit_capacity=int(rate.get("capacity", 0)),
            rate_limit_window=float(rate.get("window", 1.0)),
            upstream_timeout=float(upstream.get("timeout", 10.0)),
            max_retries=int(upstream.get("max_retries", 1)),
            status_map=status_map,
            auth=_build_dataclass(AuthConfig, _section(data, "auth"), "auth"),
            backoff=_build_dataclass(BackoffConfig, _section(data, "backoff"), "backoff"),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"invalid configuration value: {e}") from e

    if cfg.rate_limit_capacity < 0:
        raise ConfigError("rate_limit.capacity must be >= 0")
    if cfg.rate_limit_window <= 0:
        raise ConfigError("rate_limit.window must be > 0")
    if cfg.upstream_timeout <= 0:
        raise ConfigError("upstream.timeout must be > 0")
    if cfg.max_retries not in (0, 1):
        raise ConfigError("upstream.max_retries must be 0 or 1")
    return cfg


def load_config(path: str | None = None, env_path: str | None = None) -> ProxyConfig:
    """Load a ProxyConfig from an optional TOML file plus the (optionally .env-augmented) environment."""
    data = _read_toml(path) if path else {}
    cfg = config_from_mapping(data, env.environment(env_path))
    logger.info(
        f"loaded {len(cfg.cookies)} credential(s), {len(cfg.api_keys)} API key(s), "
        f"rate limit {cfg.rate_limit_capacity or 'off'}/{cfg.rate_limit_window}s"
    )
    return cfg
