import asyncio

import pytest

from lyrics_proxy import (
    Authenticator,
    AuthRejected,
    CredentialConfig,
    CredentialPool,
    FixedWindowRateLimiter,
    Health,
    LyricsRequest,
    ProxyCore,
    RateLimited,
    Status,
    Success,
    TransportError,
)


def _core(clock, upstream, api_keys=(), cookies=2, capacity=0, window=1.0, **kwargs):
    pool = CredentialPool([CredentialConfig(f"c{i}", f"T{i}") for i in range(cookies)], clock=clock)
    limiter = FixedWindowRateLimiter(capacity, window, clock=clock)
    return ProxyCore(Authenticator(api_keys), limiter, pool, upstream, **kwargs)


def _req(key="k1", track="abc"):
    return LyricsRequest(api_key=key, params={"track_id": track})


@pytest.mark.asyncio
async def test_allow_list_and_rate_limit_scenario(clock, make_upstream):
    upstream = make_upstream(Success(200, {"lines": ["la"]}))
    core = _core(clock, upstream, api_keys=["k1"], capacity=2, window=1.0)

    first = await core.handle(_req())
    second = await core.handle(_req())
    clock.advance(0.3)
    third = await core.handle(_req())

    assert first.status is Status.OK and first.status_code == 200  # noqa: PLR2004
    assert first.body == {"lines": ["la"]}
    assert second.status is Status.OK
    assert third.status is Status.TOO_MANY_REQUESTS
    assert third.status_code == 429  # noqa: PLR2004
    assert third.body["details"]["retry_after"] == pytest.approx(0.7)
    assert third.headers["Retry-After"] == "1"

    fourth = await core.handle(_req(key="k2"))
    assert fourth.status is Status.UNAUTHORIZED
    assert fourth.status_code == 401  # noqa: PLR2004
    assert len(upstream.calls) == 2  # noqa: PLR2004

    clock.advance(0.8)
    assert (await core.handle(_req())).status is Status.OK


@pytest.mark.asyncio
async def test_denied_requests_do_not_consume_budget(clock, make_upstream):
    core = _core(clock, make_upstream(), api_keys=["k1"], capacity=1)
    for key in (None, "K1", "nope"):
        resp = await core.handle(_req(key=key))
        assert resp.status is Status.UNAUTHORIZED
    assert core.limiter.count == 0
    assert (await core.handle(_req())).status is Status.OK
    assert core.limiter.count == 1


@pytest.mark.asyncio
async def test_single_dead_credential_gives_service_unavailable(clock, make_upstream):
    upstream = make_upstream(AuthRejected(401))
    core = _core(clock, upstream, cookies=1)

    resp = await core.handle(_req())
    assert resp.status is Status.SERVICE_UNAVAILABLE
    assert resp.status_code == 503  # noqa: PLR2004
    assert len(upstream.calls) == 1
    assert core.pool.snapshot()[0]["health"] == Health.DEAD.value

    # degraded but running
    again = await core.handle(_req())
    assert again.status is Status.SERVICE_UNAVAILABLE
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_retry_uses_a_different_credential(clock, make_upstream):
    def respond(cred, params):
        return RateLimited(30.0) if cred.name == "c0" else Success(200, {"ok": True})

    upstream = make_upstream(respond)
    core = _core(clock, upstream)
    resp = await core.handle(_req())

    assert resp.status is Status.OK
    assert [name for name, _ in upstream.calls] == ["c0", "c1"]
    health = {s["name"]: s["health"] for s in core.pool.snapshot()}
    assert health == {"c0": "cooldown", "c1": "active"}


@pytest.mark.asyncio
async def test_retry_is_bounded_then_upstream_error(clock, make_upstream):
    upstream = make_upstream(TransportError(ConnectionError("down")))
    core = _core(clock, upstream, cookies=3)
    resp = await core.handle(_req())

    assert resp.status is Status.UPSTREAM_ERROR
    assert resp.status_code == 502  # noqa: PLR2004
    assert resp.body["details"] == {"reason": "transport_error", "attempts": 2}
    assert len(upstream.calls) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_upstream_status_passes_through(clock, make_upstream):
    core = _core(clock, make_upstream(Success(404, None)))
    resp = await core.handle(_req())
    assert resp.status is Status.OK
    assert resp.status_code == 404  # noqa: PLR2004
    assert resp.body is None


@pytest.mark.asyncio
async def test_timeout_is_transport_error_and_releases(clock, make_upstream):
    upstream = make_upstream(delay=1.0)
    core = _core(clock, upstream, cookies=1, timeout=0.01, max_retries=0)
    resp = await core.handle(_req())

    assert resp.status is Status.UPSTREAM_ERROR
    cred = core.pool.snapshot()[0]
    assert cred["in_use"] == 0
    assert cred["failures"] == 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_classified(clock, make_upstream):
    core = _core(clock, make_upstream(RuntimeError("bug")), cookies=1, max_retries=0)
    resp = await core.handle(_req())
    assert resp.status is Status.UPSTREAM_ERROR
    assert core.pool.snapshot()[0]["in_use"] == 0


@pytest.mark.asyncio
async def test_cancellation_still_releases(clock, make_upstream):
    upstream = make_upstream(delay=10.0)
    core = _core(clock, upstream, cookies=1)
    task = asyncio.create_task(core.handle(_req()))
    await upstream.started.wait()
    assert core.pool.snapshot()[0]["in_use"] == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert core.pool.snapshot()[0]["in_use"] == 0


@pytest.mark.asyncio
async def test_cancelled_requests_leave_health_untouched(clock, make_upstream):
    upstream = make_upstream(delay=10.0)
    core = _core(clock, upstream, cookies=1)
    for _ in range(3):
        upstream.started.clear()
        task = asyncio.create_task(core.handle(_req()))
        await upstream.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    cred = core.pool.snapshot()[0]
    assert cred["health"] == "active"
    assert cred["failures"] == 0
    assert cred["in_use"] == 0


@pytest.mark.asyncio
async def test_concurrent_requests_use_distinct_credentials(clock, make_upstream):
    gate = asyncio.Event()
    seen = []

    class Slow:
        async def lookup(self, cred, params):
            seen.append(cred.name)
            await gate.wait()
            return Success(200, {})

    core = _core(clock, Slow(), cookies=3)
    tasks = [asyncio.create_task(core.handle(_req())) for _ in range(3)]
    while len(seen) < 3:  # noqa: PLR2004
        await asyncio.sleep(0)
    assert sorted(seen) == ["c0", "c1", "c2"]
    gate.set()
    results = await asyncio.gather(*tasks)
    assert all(r.status is Status.OK for r in results)


@pytest.mark.asyncio
async def test_retry_never_reuses_the_failed_credential(clock, make_upstream):
    upstream = make_upstream(TransportError(TimeoutError()))
    core = _core(clock, upstream, cookies=1)
    resp = await core.handle(_req())

    # the credential is still active, so this is an upstream error, not exhaustion
    assert resp.status is Status.UPSTREAM_ERROR
    assert resp.body["details"]["attempts"] == 1
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_non_outcome_from_upstream_is_a_transport_error(clock, make_upstream):
    core = _core(clock, make_upstream(lambda cred, params: None), cookies=1, max_retries=0)
    resp = await core.handle(_req())

    assert resp.status is Status.UPSTREAM_ERROR
    assert resp.status_code == 502  # noqa: PLR2004
    assert resp.body["details"]["reason"] == "transport_error"
    cred = core.pool.snapshot()[0]
    assert cred["in_use"] == 0
    assert cred["failures"] == 1


@pytest.mark.asyncio
async def test_missing_track_id_is_rejected_before_upstream(clock, make_upstream):
    upstream = make_upstream()
    core = _core(clock, upstream, cookies=1, capacity=1)
    for _ in range(3):
        resp = await core.handle(LyricsRequest(api_key=None, params={}))
        assert resp.status is Status.BAD_REQUEST
        assert resp.status_code == 400  # noqa: PLR2004

    assert upstream.calls == []
    cred = core.pool.snapshot()[0]
    assert cred["health"] == "active"
    assert cred["failures"] == 0
    # no rate budget was spent either
    assert (await core.handle(_req())).status is Status.OK
