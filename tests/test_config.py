import pytest

from lyrics_proxy import BackoffConfig, ConfigError, load_config
from lyrics_proxy.config import config_from_mapping


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("LYRICS_PROXY_COOKIES", "LYRICS_PROXY_API_KEYS", "LYRICS_PROXY_PORT", "LYRICS_PROXY_HOST"):
        monkeypatch.delenv(var, raising=False)


def test_load_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        'port = 8080\n'
        'api_keys = ["k1", "k2"]\n'
        'cookies = ["c1", "c2"]\n'
        "[rate_limit]\ncapacity = 2\nwindow = 1.5\n"
        "[upstream]\ntimeout = 3\n"
        "[upstream.status_map]\nauth_rejected = [401]\n"
        "[backoff]\nrate_limit_default = 5\n"
    )
    cfg = load_config(str(path))
    assert cfg.port == 8080  # noqa: PLR2004
    assert cfg.api_keys == ["k1", "k2"]
    assert cfg.cookies == ["c1", "c2"]
    assert cfg.rate_limit_capacity == 2  # noqa: PLR2004
    assert cfg.rate_limit_window == 1.5  # noqa: PLR2004
    assert cfg.upstream_timeout == 3.0  # noqa: PLR2004
    assert cfg.status_map == {"auth_rejected": [401]}
    assert cfg.backoff == BackoffConfig(rate_limit_default=5)
    assert [c.name for c in cfg.credential_configs()] == ["cookie_1", "cookie_2"]


def test_environment_extends_file(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    path.write_text('cookies = ["c1"]\n')
    monkeypatch.setenv("LYRICS_PROXY_COOKIES", "c2,c1")
    monkeypatch.setenv("LYRICS_PROXY_API_KEYS", "k9")
    monkeypatch.setenv("LYRICS_PROXY_PORT", "4000")
    cfg = load_config(str(path))
    assert cfg.cookies == ["c1", "c2"]
    assert cfg.api_keys == ["k9"]
    assert cfg.port == 4000  # noqa: PLR2004


def test_defaults():
    cfg = config_from_mapping({"cookies": ["c"]})
    assert cfg.port == 3000  # noqa: PLR2004
    assert cfg.api_keys == []
    assert cfg.rate_limit_capacity == 0
    assert cfg.max_retries == 1


def test_no_cookies_is_an_error():
    with pytest.raises(ConfigError):
        config_from_mapping({"cookies": []})


@pytest.mark.parametrize(
    "data",
    [
        {"cookies": "c1"},
        {"cookies": ["c"], "rate_limit": {"capacity": -1}},
        {"cookies": ["c"], "rate_limit": {"window": 0}},
        {"cookies": ["c"], "port": "http"},
        {"cookies": ["c"], "backoff": {"bogus": 1}},
        {"cookies": ["c"], "upstream": {"status_map": [401]}},
        {"cookies": ["c"], "upstream": {"status_map": {"bogus": [500]}}},
        {"cookies": ["c"], "upstream": {"status_map": {"auth_rejected": "401"}}},
        {"cookies": ["c"], "upstream": {"max_retries": 2}},
        {"cookies": ["c"], "upstream": {"max_retries": -1}},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ConfigError):
        config_from_mapping(data)


def test_missing_or_broken_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.toml"))
    bad = tmp_path / "bad.toml"
    bad.write_text("cookies = [")
    with pytest.raises(ConfigError):
        load_config(str(bad))
