"""Tests for TrafficSplitVerifier sampling and threshold policy."""

import pytest
from aiohttp.test_utils import TestServer

from cutover.common.config import TrafficSettings
from cutover.deploy.traffic import SplitLevel, TrafficSplitVerifier, classify_split, identity_of
from cutover.health.identity import make_identity_app
from cutover.probe.http import Endpoint, HttpProbe
from tests.helpers.fakes import FakeProbe, identity, ok, refused, status


EXTERNAL = Endpoint.parse("https://domain.com")


class TestClassifySplit:
    @pytest.mark.parametrize("fraction,level", [
        (1.0, SplitLevel.CONFIRMED),
        (0.9, SplitLevel.CONFIRMED),
        (0.89, SplitLevel.CONFIRMED_WITH_WARNING),
        (0.5, SplitLevel.CONFIRMED_WITH_WARNING),
        (0.49, SplitLevel.NOT_CONFIRMED),
        (0.0, SplitLevel.NOT_CONFIRMED),
    ])
    def test_thresholds(self, fraction, level):
        assert classify_split(fraction) is level


class TestIdentityOf:
    def test_tag(self):
        assert identity_of(identity("running")) == "running"

    @pytest.mark.parametrize("result", [
        status(502),
        refused(),
        ok("not json"),
        ok("[1, 2]"),
        ok('{"id": 7}'),
    ])
    def test_unusable(self, result):
        assert identity_of(result) is None


class TestTrafficSplitVerifier:
    @pytest.mark.asyncio
    async def test_all_running_confirms(self, fake_clock):
        probe = FakeProbe().script("/api/server-identity", identity("running"))
        verifier = TrafficSplitVerifier(probe, sleep=fake_clock.sleep)

        verdict = await verifier.verify_split(EXTERNAL, 10)

        assert verdict.routed_fraction == 1.0
        assert verdict.level is SplitLevel.CONFIRMED
        assert verdict.overall
        assert len(probe.calls) == 10
        # Delay between samples only
        assert fake_clock.slept_ms == [300] * 9

    @pytest.mark.asyncio
    async def test_mostly_main_is_not_confirmed(self, fake_clock):
        probe = FakeProbe().script(
            "/api/server-identity", *([identity("main")] * 8 + [identity("running")] * 2)
        )
        verdict = await TrafficSplitVerifier(probe, sleep=fake_clock.sleep).verify_split(EXTERNAL, 10)

        assert verdict.new_instance_hits == 2
        assert verdict.old_instance_hits == 8
        assert verdict.routed_fraction == pytest.approx(0.2)
        assert not verdict.overall

    @pytest.mark.asyncio
    async def test_partial_split_confirms_with_warning(self, fake_clock):
        probe = FakeProbe().script(
            "/api/server-identity", *([identity("running")] * 6 + [identity("main")] * 4)
        )
        verdict = await TrafficSplitVerifier(probe, sleep=fake_clock.sleep).verify_split(EXTERNAL, 10)

        assert verdict.level is SplitLevel.CONFIRMED_WITH_WARNING
        assert verdict.overall

    @pytest.mark.asyncio
    async def test_failures_and_unknown_tags_are_failed_samples(self, fake_clock):
        probe = FakeProbe().script(
            "/api/server-identity",
            identity("running"), status(502), refused(), ok("oops"), identity("unknown"),
        )
        verdict = await TrafficSplitVerifier(probe, sleep=fake_clock.sleep).verify_split(EXTERNAL, 5)

        assert verdict.new_instance_hits == 1
        assert verdict.old_instance_hits == 0
        assert verdict.failed_samples == 4
        assert verdict.routed_fraction == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_requests_are_cache_busted(self, fake_clock):
        seen = []

        def record(endpoint):
            seen.append(endpoint.path)
            return identity("running")

        probe = FakeProbe(default=record)
        await TrafficSplitVerifier(probe, sleep=fake_clock.sleep).verify_split(EXTERNAL, 3)

        assert all(p.startswith("/api/server-identity?_=") for p in seen)
        assert len(set(seen)) == 3
        assert {t for _, t, _ in probe.calls} == {2000}
        assert all(keep for _, _, keep in probe.calls)

    @pytest.mark.asyncio
    async def test_custom_tags_and_path(self, fake_clock):
        settings = TrafficSettings(identity_path="/whoami", new_tag="green", old_tag="blue", sample_delay_ms=0)
        probe = FakeProbe().script("/whoami", identity("green"))
        verdict = await TrafficSplitVerifier(probe, settings, sleep=fake_clock.sleep).verify_split(EXTERNAL)

        assert verdict.sample_size == 10
        assert verdict.overall
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_rejects_empty_sample(self, fake_clock):
        with pytest.raises(ValueError):
            await TrafficSplitVerifier(FakeProbe(), sleep=fake_clock.sleep).verify_split(EXTERNAL, 0)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_against_identity_endpoint(fake_clock):
    srv = TestServer(make_identity_app({"SERVER_ID": "running"}), host="127.0.0.1")
    await srv.start_server()
    try:
        async with HttpProbe() as probe:
            verifier = TrafficSplitVerifier(probe, sleep=fake_clock.sleep)
            verdict = await verifier.verify_split(Endpoint(host="127.0.0.1", port=srv.port), 3)
    finally:
        await srv.close()

    assert verdict.new_instance_hits == 3
    assert verdict.level is SplitLevel.CONFIRMED
