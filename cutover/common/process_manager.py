"""
Process manager interface and the PM2 adapter.

The rollout only needs register/start/reload/stop/status of a named process.
PM2 answers with human-oriented tables; Pm2ProcessManager is the single place
that parses them into a structured ProcessStatus.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Union

from .commands import CommandResult, run_command
from .errors import CommandError, ProcessManagerError

logger = logging.getLogger(__name__)

# Box-drawing and ASCII table separators used by pm2 list/show
_CELL_SPLIT = re.compile(r"[│|]")


@dataclass(frozen=True)
class ProcessStatus:
    """Structured view of `pm2 show <name>`."""

    name: str
    status: str
    uptime: str = ""
    restarts: int = 0
    memory: str = ""
    raw: str = ""

    @property
    def online(self) -> bool:
        return self.status.strip().lower() == "online"


class ProcessManager(ABC):
    """Operations the rollout needs from a process supervisor."""

    @abstractmethod
    def is_registered(self, name: str) -> bool:
        ...

    @abstractmethod
    def start(self, config_path: Union[str, Path], cwd: Optional[Union[str, Path]] = None) -> None:
        ...

    @abstractmethod
    def reload(self, name: str) -> None:
        ...

    @abstractmethod
    def stop(self, name: str) -> None:
        ...

    @abstractmethod
    def status(self, name: str) -> ProcessStatus:
        ...


def parse_table_rows(text: str) -> Dict[str, str]:
    """
    Parse two-column table rows into a lowercase key -> value dict.

    Rows that do not have exactly a key cell and a value cell are ignored, so
    headers, borders and multi-column sections of `pm2 show` drop out.
    """
    rows: Dict[str, str] = {}
    for line in text.splitlines():
        cells = [c.strip() for c in _CELL_SPLIT.split(line)]
        cells = [c for c in cells if c]
        if len(cells) != 2:
            continue
        key, value = cells
        rows.setdefault(key.lower(), value)
    return rows


def parse_status(name: str, text: str) -> ProcessStatus:
    """Build a ProcessStatus from `pm2 show` output."""
    rows = parse_table_rows(text)
    restarts_raw = rows.get("restarts") or rows.get("restart") or "0"
    match = re.search(r"\d+", restarts_raw)
    memory = rows.get("memory") or rows.get("used heap size") or rows.get("heap size") or ""
    return ProcessStatus(
        name=name,
        status=rows.get("status", "unknown"),
        uptime=rows.get("uptime", ""),
        restarts=int(match.group(0)) if match else 0,
        memory=memory,
        raw=text,
    )


def list_contains(name: str, text: str) -> bool:
    """True when `pm2 list` output has a cell exactly equal to `name`."""
    pattern = re.compile(r"[│|]\s*" + re.escape(name) + r"\s*[│|]")
    return bool(pattern.search(text))


class Pm2ProcessManager(ProcessManager):
    """ProcessManager backed by the `pm2` CLI."""

    def __init__(
        self,
        binary: str = "pm2",
        timeout_s: float = 60.0,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.binary = binary
        self.timeout_s = timeout_s
        self._run = runner

    def _pm2(self, args: Sequence[str], cwd: Optional[Union[str, Path]] = None) -> CommandResult:
        try:
            return self._run([self.binary, *args], cwd=cwd, timeout_s=self.timeout_s)
        except CommandError as e:
            raise ProcessManagerError(f"pm2 {' '.join(args)} failed: {e.message}") from e

    def is_registered(self, name: str) -> bool:
        return list_contains(name, self._pm2(["list"]).stdout)

    def start(self, config_path: Union[str, Path], cwd: Optional[Union[str, Path]] = None) -> None:
        self._pm2(["start", str(config_path)], cwd=cwd)
        logger.debug("pm2 started %s", config_path)

    def reload(self, name: str) -> None:
        self._pm2(["reload", name])

    def stop(self, name: str) -> None:
        self._pm2(["stop", name])

    def status(self, name: str) -> ProcessStatus:
        return parse_status(name, self._pm2(["show", name]).stdout)
