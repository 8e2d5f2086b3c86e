"""Child-process execution with Result-based error handling.

Two flavours:

- ``run`` captures stdout/stderr (queries: ``git rev-parse``, ``gh api``...).
- ``run_inherit`` lets the child write straight to the terminal, for long
  or interactive commands the operator must see (``git push``,
  ``gh run watch``).

Both return ``Err(ProcessError)`` whether the program could not be launched
(``returncode == -1``) or exited nonzero. Call sites that tolerate failure
inspect the error; the others turn it into a fatal release error.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from lexrel.core.result import Err, Ok, Result

__all__ = ["ProcessError", "command_exists", "run", "run_inherit"]


@dataclass(frozen=True, slots=True)
class ProcessError:
    """Failed child process.

    Attributes:
        command: The argv that was executed.
        returncode: Exit status, or -1 if the program could not be launched.
        stdout: Captured standard output (empty for inherited stdio).
        stderr: Captured standard error, or the launch error text.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"

    @property
    def launch_failed(self) -> bool:
        return self.returncode == -1

    def detail(self) -> str:
        """Best single-line explanation: stderr, else stdout, else the summary."""
        return self.stderr.strip() or self.stdout.strip() or str(self)


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
    trim: bool = True,
) -> Result[str, ProcessError]:
    """Execute a command, capturing its output.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        env: Environment (inherits the current one if None).
        timeout: Maximum seconds to wait (None for no limit).
        trim: Strip trailing whitespace from stdout/stderr.

    Returns:
        Ok(stdout) on exit 0, Err(ProcessError) otherwise.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.stdout if isinstance(e.stdout, str) else ""
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout=partial,
                stderr=f"Command timed out after {timeout}s",
            )
        )
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    stdout = proc.stdout or ""
    stderr = proc.stderr or ""
    if trim:
        stdout = stdout.rstrip()
        stderr = stderr.rstrip()

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        )

    return Ok(stdout)


def run_inherit(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[None, ProcessError]:
    """Execute a command with stdio inherited from this process.

    Nothing is captured; on failure the error only carries the exit status.
    """
    try:
        proc = subprocess.run(cmd, cwd=str(cwd), env=env, timeout=timeout, check=False)
    except subprocess.TimeoutExpired:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
            )
        )
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    if proc.returncode != 0:
        return Err(
            ProcessError(command=tuple(cmd), returncode=proc.returncode, stdout="", stderr="")
        )
    return Ok(None)


def command_exists(name: str) -> bool:
    """True if ``name`` resolves on PATH. Never spawns the program itself."""
    return shutil.which(name) is not None
