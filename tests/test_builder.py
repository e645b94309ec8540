"""Tests for CommandBuilder."""

import pytest

from cutover.common.commands import CommandResult
from cutover.common.errors import BuildError, CommandError
from cutover.deploy.builder import CommandBuilder


def test_runs_command_in_project_dir(tmp_path):
    calls = []

    def runner(args, cwd=None, timeout_s=None):
        calls.append((args, cwd, timeout_s))
        return CommandResult(args=list(args), returncode=0, stdout="built", stderr="", duration_s=12.5)

    CommandBuilder(["npm", "run", "build"], tmp_path, timeout_s=900, runner=runner).build()

    assert calls == [(["npm", "run", "build"], tmp_path, 900)]


def test_failure_becomes_build_error(tmp_path, caplog):
    def runner(args, cwd=None, timeout_s=None):
        raise CommandError("'npm run build' exited with 1: ERROR", returncode=1, stderr="ERROR  Cannot find module")

    with pytest.raises(BuildError) as exc:
        CommandBuilder(["npm", "run", "build"], tmp_path, runner=runner).build()

    assert exc.value.code == "E_BUILD_FAILED"
    assert isinstance(exc.value.__cause__, CommandError)
    assert "Cannot find module" in caplog.text


def test_empty_command_rejected(tmp_path):
    with pytest.raises(ValueError):
        CommandBuilder([], tmp_path)
