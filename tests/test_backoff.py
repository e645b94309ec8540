"""Tests for backoff helpers."""

import pytest

from cutover.common.backoff import AdaptiveTimeout, LinearBackoff, retry_check_async


class TestLinearBackoff:
    def test_delay_grows_linearly(self):
        policy = LinearBackoff(base_delay_ms=3000, max_attempts=3)
        assert [policy.compute_delay_ms(a) for a in (1, 2, 3)] == [3000, 6000, 9000]

    def test_validation(self):
        with pytest.raises(ValueError):
            LinearBackoff(max_attempts=0)
        with pytest.raises(ValueError):
            LinearBackoff(base_delay_ms=-1)


class TestAdaptiveTimeout:
    def test_grow_and_cap(self):
        t = AdaptiveTimeout(base_ms=300, factor=1.5, max_ms=2000)
        assert [t.grow() for _ in range(6)] == pytest.approx([450, 675, 1012.5, 1518.75, 2000, 2000])
        t.reset()
        assert t.current_ms == 300

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            AdaptiveTimeout(base_ms=500, max_ms=100)


class TestRetryCheckAsync:
    @pytest.mark.asyncio
    async def test_success_first_try(self, fake_clock):
        async def check():
            return True

        result, attempts = await retry_check_async(check, sleep=fake_clock.sleep)
        assert (result, attempts) == (True, 1)
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retries_with_linear_delay_and_no_trailing_sleep(self, fake_clock):
        calls = []
        retries = []

        async def check(tag):
            calls.append(tag)
            return False

        result, attempts = await retry_check_async(
            check, "x",
            policy=LinearBackoff(base_delay_ms=3000, max_attempts=3),
            on_retry=lambda *a: retries.append(a),
            sleep=fake_clock.sleep,
        )
        assert result is False
        assert attempts == 3
        assert calls == ["x", "x", "x"]
        assert fake_clock.slept_ms == [3000, 6000]
        assert retries == [(1, 3, 3000), (2, 3, 6000)]

    @pytest.mark.asyncio
    async def test_custom_predicate(self, fake_clock):
        values = iter([{"ok": False}, {"ok": True}])

        async def check():
            return next(values)

        result, attempts = await retry_check_async(
            check, is_success=lambda v: v["ok"], sleep=fake_clock.sleep,
        )
        assert result == {"ok": True}
        assert attempts == 2
