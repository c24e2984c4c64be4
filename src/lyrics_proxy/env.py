import os
from collections.abc import Iterable

from .types import CredentialConfig

COOKIES_VAR = "LYRICS_PROXY_COOKIES"
COOKIE_PREFIX = "LYRICS_PROXY_COOKIE_"
API_KEYS_VAR = "LYRICS_PROXY_API_KEYS"
PORT_VAR = "LYRICS_PROXY_PORT"
HOST_VAR = "LYRICS_PROXY_HOST"


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, val = line.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key:
                    values[key] = val
    except FileNotFoundError:
        # a missing .env is the common case
        pass
    return values


def environment(env_path: str | None = None) -> dict[str, str]:
    """Process environment layered over an optional .env file (environment wins)."""
    file_env = _parse_env_file(env_path) if env_path else {}
    return {**file_env, **os.environ}


def split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _expand(cfg_name: str, token: str, split_commas: bool) -> list[CredentialConfig]:
    if split_commas and "," in token:
        return [
            CredentialConfig(name=f"{cfg_name}_{idx + 1}", token=part)
            for idx, part in enumerate(split_list(token))
        ]
    return [CredentialConfig(name=cfg_name, token=token)]


def load_cookies_from_env(
    names: Iterable[str] | None = None,
    prefix: str | None = None,
    env_path: str | None = None,
    env_map: dict[str, str] | None = None,
    **kwargs,
) -> list[CredentialConfig]:
    """Create CredentialConfig objects from sp_dc cookies held in environment variables.

    - If 'names' is provided, look up each explicit env var name.
    - If 'prefix' is provided, every env var starting with the prefix contributes.
    - If neither is given, LYRICS_PROXY_COOKIES and the LYRICS_PROXY_COOKIE_ prefix are used.
    - If 'env_path' is provided, variables from the .env file augment lookups
        (without mutating the process environment). The real environment takes precedence.
    - If 'env_map' is provided it replaces the environment lookup entirely.

    kwargs keywords:
    to_lower_names: make names lowercase (default False)
    split_commas: split comma-separated values (default True)
    strip_prefix: strip prefix from names (default False)
    """
    if env_map is None:
        env_map = environment(env_path)
    split_commas = kwargs.get("split_commas", True)
    to_lower_names = kwargs.get("to_lower_names", False)
    strip_prefix = kwargs.get("strip_prefix", False)

    if names is None and prefix is None:
        names, prefix = [COOKIES_VAR], COOKIE_PREFIX

    results: list[CredentialConfig] = []
    if names:
        for var in names:
            token = env_map.get(var)
            if not token:
                continue
            cfg_name = var.lower() if to_lower_names else var
            results.extend(_expand(cfg_name, token, split_commas))

    if prefix:
        for var, token in sorted(env_map.items()):
            if not (var.startswith(prefix) and token):
                continue
            name_part = var[len(prefix) :] if strip_prefix else var
            cfg_name = name_part.lower() if to_lower_names else name_part
            results.extend(_expand(cfg_name, token, split_commas))

    return results
