"""
External command execution with bounded runtime.

Commands run strictly one at a time. A command that outlives its timeout is
killed together with every child it spawned (npm, node, pm2 daemons started
by a build script), so no orphan keeps the build directory busy.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import psutil

from .errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_s: float


def kill_process_tree(pid: int, timeout: float = 5.0, include_parent: bool = True) -> bool:
    """
    Kill entire process tree (parent + all children).

    Args:
        pid: Process ID of the parent process
        timeout: Grace period for SIGTERM before SIGKILL (seconds)
        include_parent: If True, kill parent process as well

    Returns:
        True if all processes are gone, False if some survived SIGKILL
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return True

    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return True

    processes = children + ([parent] if include_parent else [])
    if not processes:
        return True

    # Graceful first
    for proc in processes:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    _, alive = psutil.wait_procs(processes, timeout=timeout)

    # Force kill survivors
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    if alive:
        _, still_alive = psutil.wait_procs(alive, timeout=0.5)
        if still_alive:
            logger.warning(
                "Failed to kill %d processes: PIDs=%s",
                len(still_alive), [p.pid for p in still_alive],
            )
            return False
    return True


def run_command(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    timeout_s: float = 600.0,
    check: bool = True,
) -> CommandResult:
    """
    Run an external command and capture its output.

    Args:
        args: Program and arguments (no shell)
        cwd: Working directory
        timeout_s: Wall-clock limit; the process tree is killed when exceeded
        check: Raise CommandError on a non-zero exit code

    Returns:
        CommandResult with decoded stdout/stderr

    Raises:
        CommandError: start failure, timeout, or non-zero exit with check=True
    """
    argv = [str(a) for a in args]
    logger.debug("$ %s (cwd=%s)", " ".join(argv), cwd or ".")
    started = time.monotonic()

    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        raise CommandError(f"cannot start '{argv[0]}': {e}") from e

    try:
        stdout, stderr = proc.communicate(timeout=timeout_s)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc.pid)
        proc.communicate()
        raise CommandError(f"'{' '.join(argv)}' timed out after {timeout_s:.0f}s")

    duration = time.monotonic() - started
    result = CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration_s=duration,
    )

    if check and proc.returncode != 0:
        raise CommandError(
            f"'{' '.join(argv)}' exited with {proc.returncode}: {result.stderr.strip()}",
            returncode=proc.returncode,
            stderr=result.stderr,
        )
    return result
