"""
Error taxonomy for the rollout.

Only FatalPhaseError terminates a rollout. Check failures and probe failures
are values (verdicts, ProbeResult), never exceptions.
"""

import re
from typing import Optional


ALLOWED_PREFIXES = (
    'E_BUILD_', 'E_PM_', 'E_STAGE_', 'E_CMD_', 'E_CFG_', 'E_PHASE_'
)


def one_line(msg: str, code: str) -> str:
    c = str(code).strip()
    # Normalize code prefix
    if not any(c.startswith(p) for p in ALLOWED_PREFIXES):
        c = 'E_PHASE_' + c
    # Normalize message: collapse whitespace and strip newlines
    m = str(msg)
    m = m.replace('\r', ' ')
    m = m.replace('\n', ' ')
    m = re.sub(r'\s+', ' ', m).strip()
    return f"{c}: {m}"


class CutoverError(Exception):
    """Base class for errors raised by collaborators."""

    code = 'E_PHASE_UNKNOWN'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def one_line(self) -> str:
        return one_line(self.message, self.code)


class CommandError(CutoverError):
    """External command failed, timed out or could not be started."""

    code = 'E_CMD_FAILED'

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class BuildError(CutoverError):
    code = 'E_BUILD_FAILED'


class ProcessManagerError(CutoverError):
    code = 'E_PM_FAILED'


class StagingError(CutoverError):
    code = 'E_STAGE_FAILED'


class FatalPhaseError(Exception):
    """
    Unrecoverable failure of a rollout phase.

    The old instance is left untouched and the run ends with a non-zero exit.
    """

    def __init__(self, phase: str, message: str, cause: Optional[BaseException] = None):
        self.phase = phase
        self.message = message
        self.cause = cause
        super().__init__(f"{phase}: {message}")

    def one_line(self) -> str:
        code = getattr(self.cause, 'code', None) or f"E_PHASE_{self.phase.upper()}"
        return one_line(f"[{self.phase}] {self.message}", code)
