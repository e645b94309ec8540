"""
Common test fixtures for the rollout tests.

Provides:
- fake_clock: FakeClock whose sleep() advances time instead of waiting
- mk_cfg(): DeployConfig with short delays rooted in tmp_path
- fake_probe / fake_pm: scripted probe and in-memory process manager
- mk_ctx(): RolloutContext wired to the fakes
"""

# --- BEGIN: Ensure repo root in sys.path ---
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
root_str = str(ROOT)
if sys.path[:1] != [root_str]:
    sys.path[:] = [root_str] + [p for p in sys.path if p != root_str]
# --- END: Ensure repo root in sys.path ---

import asyncio
import platform
import signal
from contextlib import contextmanager

import pytest

from cutover.common.config import DeployConfig
from cutover.common.di import RolloutContext
from tests.helpers.fake_clock import FakeClock
from tests.helpers.fakes import FakeBuilder, FakeProbe, FakeProcessManager, FakeStager

if platform.system() == "Windows":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def pytest_configure(config):
    """Register custom markers to avoid 'unknown marker' warnings."""
    config.addinivalue_line("markers", "timeout(duration): per-test timeout in seconds")
    config.addinivalue_line("markers", "integration: tests that bind local sockets or run processes")


@contextmanager
def _alarm_timeout(seconds: int):
    """POSIX-only hard timeout using SIGALRM. No-op elsewhere."""
    if seconds <= 0 or not hasattr(signal, "SIGALRM"):
        yield
        return

    def _handler(signum, frame):
        raise TimeoutError(f"Test exceeded timeout of {seconds}s")

    old_handler = signal.getsignal(signal.SIGALRM)
    signal.signal(signal.SIGALRM, _handler)
    signal.alarm(int(seconds))
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, old_handler)


@pytest.fixture(autouse=True)
def _apply_timeout_marker(request):
    """Apply @pytest.mark.timeout(N) on POSIX."""
    mark = request.node.get_closest_marker("timeout")
    if not mark:
        yield
        return
    seconds = int(mark.args[0]) if mark.args else int(mark.kwargs.get("seconds", 0))
    with _alarm_timeout(seconds):
        yield


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep CUTOVER_* / PORT / MODE from the developer shell out of config tests."""
    import os
    for key in list(os.environ):
        if key.startswith("CUTOVER_") or key in ("PORT", "MODE", "SERVER_ID"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def fake_probe(fake_clock):
    return FakeProbe(clock=fake_clock)


@pytest.fixture
def fake_pm():
    return FakeProcessManager()


@pytest.fixture
def mk_cfg(tmp_path):
    """Factory for a DeployConfig with explicit ports and small delays."""
    def _mk(**overrides) -> DeployConfig:
        data = {
            "project_dir": tmp_path / "shop",
            "main_port": 3000,
            "running_port": 13000,
            "external_host": "http://proxy.test",
        }
        data.update(overrides)
        return DeployConfig(**data)
    return _mk


@pytest.fixture
def mk_ctx(mk_cfg, fake_probe, fake_pm, fake_clock):
    """Factory for a RolloutContext wired to fakes; keyword args override fields."""
    def _mk(cfg=None, **overrides) -> RolloutContext:
        fields = dict(
            cfg=cfg or mk_cfg(),
            probe=fake_probe,
            process_manager=fake_pm,
            builder=FakeBuilder(),
            stager=FakeStager(),
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )
        fields.update(overrides)
        return RolloutContext(**fields)
    return _mk
