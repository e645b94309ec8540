"""Tests for the PM2 adapter: table parsing and error wrapping."""

import pytest

from cutover.common.commands import CommandResult
from cutover.common.errors import CommandError, ProcessManagerError
from cutover.common.process_manager import Pm2ProcessManager, list_contains, parse_status, parse_table_rows


PM2_LIST = """\
┌────┬──────────────────┬─────────┬─────────┬──────────┬────────┬──────┐
│ id │ name             │ mode    │ pid     │ uptime   │ ↺      │ status │
├────┼──────────────────┼─────────┼─────────┼──────────┼────────┼──────┤
│ 0  │ shop--spare      │ fork    │ 4121    │ 3D       │ 0      │ online │
│ 1  │ shop             │ fork    │ 5150    │ 2m       │ 1      │ online │
└────┴──────────────────┴─────────┴─────────┴──────────┴────────┴──────┘
"""

PM2_SHOW = """\
 Describing process with id 1 - name shop
┌───────────────────┬──────────────────────────────────┐
│ status            │ online                           │
│ name              │ shop                             │
│ restarts          │ 3                                │
│ uptime            │ 2m                               │
│ script path       │ /srv/shop-running/.output/server/index.mjs │
└───────────────────┴──────────────────────────────────┘
 Code metrics value
┌────────────────────────┬───────────┐
│ Used Heap Size         │ 61.02 MiB │
│ Heap Usage             │ 88.5 %    │
└────────────────────────┴───────────┘
"""


def _result(stdout=""):
    return CommandResult(args=[], returncode=0, stdout=stdout, stderr="", duration_s=0.01)


class RecordingRunner:
    def __init__(self, outputs=None, error=None):
        self.outputs = outputs or {}
        self.error = error
        self.calls = []

    def __call__(self, args, cwd=None, timeout_s=None):
        self.calls.append((list(args), cwd, timeout_s))
        if self.error:
            raise self.error
        return _result(self.outputs.get(args[1], ""))


class TestParsing:
    def test_table_rows(self):
        rows = parse_table_rows(PM2_SHOW)
        assert rows["status"] == "online"
        assert rows["used heap size"] == "61.02 MiB"

    def test_parse_status(self):
        st = parse_status("shop", PM2_SHOW)
        assert st.online
        assert st.restarts == 3
        assert st.uptime == "2m"
        assert st.memory == "61.02 MiB"

    def test_parse_status_stopped(self):
        st = parse_status("shop", "│ status │ stopped │\n")
        assert not st.online
        assert st.restarts == 0

    def test_parse_status_garbage(self):
        assert parse_status("shop", "[PM2][ERROR] Process shop not found").status == "unknown"

    def test_list_contains_exact_name(self):
        assert list_contains("shop", PM2_LIST)
        assert list_contains("shop--spare", PM2_LIST)
        assert not list_contains("sho", PM2_LIST)
        assert not list_contains("shop-running", PM2_LIST)


class TestPm2ProcessManager:
    def test_is_registered(self):
        runner = RecordingRunner({"list": PM2_LIST})
        pm = Pm2ProcessManager(runner=runner)
        assert pm.is_registered("shop--spare")
        assert runner.calls[0][0] == ["pm2", "list"]

    def test_start_passes_cwd(self, tmp_path):
        runner = RecordingRunner()
        Pm2ProcessManager(binary="/usr/bin/pm2", timeout_s=30, runner=runner).start(
            tmp_path / "ecosystem.config.js", cwd=tmp_path,
        )
        args, cwd, timeout_s = runner.calls[0]
        assert args == ["/usr/bin/pm2", "start", str(tmp_path / "ecosystem.config.js")]
        assert cwd == tmp_path
        assert timeout_s == 30

    def test_reload_stop_status(self):
        runner = RecordingRunner({"show": PM2_SHOW})
        pm = Pm2ProcessManager(runner=runner)
        pm.reload("shop")
        pm.stop("shop--spare")
        assert pm.status("shop").online
        assert [c[0][1:] for c in runner.calls] == [["reload", "shop"], ["stop", "shop--spare"], ["show", "shop"]]

    def test_command_error_is_wrapped(self):
        pm = Pm2ProcessManager(runner=RecordingRunner(error=CommandError("exit 1", returncode=1)))
        with pytest.raises(ProcessManagerError) as exc:
            pm.stop("shop--spare")
        assert "pm2 stop shop--spare failed" in exc.value.message
        assert exc.value.code == "E_PM_FAILED"
