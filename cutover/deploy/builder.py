"""Build step: run the project's build command in the project directory."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Sequence, Union

from cutover.common.commands import CommandResult, run_command
from cutover.common.errors import BuildError, CommandError

logger = logging.getLogger(__name__)


class Builder(ABC):
    @abstractmethod
    def build(self) -> None:
        """Raises BuildError on failure."""


class CommandBuilder(Builder):
    def __init__(
        self,
        command: Sequence[str],
        cwd: Union[str, Path],
        timeout_s: float = 1800.0,
        runner: Callable[..., CommandResult] = run_command,
    ):
        if not command:
            raise ValueError("build command must not be empty")
        self.command = list(command)
        self.cwd = Path(cwd)
        self.timeout_s = timeout_s
        self._run = runner

    def build(self) -> None:
        logger.info("Building: %s", " ".join(self.command))
        try:
            result = self._run(self.command, cwd=self.cwd, timeout_s=self.timeout_s)
        except CommandError as e:
            if e.stderr:
                logger.error("Build output:\n%s", e.stderr.rstrip())
            raise BuildError(f"build failed: {e.message}") from e
        logger.info("Build finished in %.1fs", result.duration_s)
