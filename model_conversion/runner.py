"""
Command Runner

Runs external conversion tools (Blender, gltf-pipeline, usd_from_gltf) as
subprocesses with an explicit argument list. Commands are never passed
through a shell.

The process executor is injectable so tests can stand in for the real tools.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union
from rich.console import Console
from rich.markup import escape

console = Console()

ProcessExecutor = Callable[..., subprocess.CompletedProcess]


class CommandError(Exception):
    """An external command failed, timed out, or could not be started."""

    def __init__(self, message: str, result: Optional["CommandResult"] = None):
        super().__init__(message)
        self.result = result


@dataclass
class CommandResult:
    """Outcome of a single external command."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostics(self) -> str:
        """Trimmed stderr, or stdout when the tool only writes there."""
        text = (self.stderr or "").strip() or (self.stdout or "").strip()
        if len(text) > 2000:
            text = "..." + text[-2000:]
        return text


class CommandRunner:
    """
    Execute external processes and capture their output.

    Args:
        executor: Callable with the signature of ``subprocess.run``
        timeout: Default timeout in seconds (None = no timeout)
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        timeout: Optional[float] = None,
    ):
        self.executor = executor or subprocess.run
        self.timeout = timeout

    def run(
        self,
        args: Sequence[Union[str, Path]],
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command and return its result.

        Raises:
            CommandError: If the binary is missing, the command times out,
                or it exits with a non-zero status
        """
        cmd = [str(a) for a in args]
        if not cmd:
            raise CommandError("Empty command")

        console.print(f"[dim]Command: {escape(' '.join(cmd))}[/dim]")

        try:
            proc = self.executor(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except FileNotFoundError:
            raise CommandError(f"Command not found: {cmd[0]}")
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"Command timed out after {e.timeout}s: {cmd[0]}")
        except OSError as e:
            raise CommandError(f"Failed to start {cmd[0]}: {e}")

        result = CommandResult(
            args=cmd,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

        if not result.ok:
            raise CommandError(
                f"Command failed with exit code {result.returncode}: {cmd[0]}\n"
                f"Stderr: {result.diagnostics}",
                result=result,
            )

        return result


def tool_available(binary: str) -> bool:
    """Check whether a tool can be found on PATH (or at an explicit path)."""
    if Path(binary).is_file():
        return True
    return shutil.which(binary) is not None
