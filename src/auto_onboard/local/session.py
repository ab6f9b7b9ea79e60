"""Local command execution session."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence, Union


@dataclass
class LocalCommandResult:
    """Result of executing a local command."""
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class LocalSession:
    """
    Local command execution session on the controller.

    Provides a `run` with the same shape as SSHSession.run, used for the
    registry's sudo fallback and for invoking the `ansible` CLI.
    """

    def __init__(self, working_dir: Optional[str] = None) -> None:
        self.working_dir = working_dir or os.getcwd()

    @staticmethod
    def which(program: str) -> Optional[str]:
        return shutil.which(program)

    def run(
        self,
        command: Union[str, Sequence[str]],
        *,
        timeout: Optional[int] = 60,
        input_data: Optional[str] = None,
    ) -> LocalCommandResult:
        """
        Execute a command locally and wait for completion.

        Args:
            command: argv list (preferred, no shell) or a string run by /bin/bash
            timeout: Seconds before the command is killed
            input_data: Text written to stdin

        Returns:
            LocalCommandResult; timeouts and missing executables are reported
            with exit status -1 / 127 instead of raising.
        """
        if isinstance(command, str):
            display = command
            popen_args: dict = {"args": command, "shell": True, "executable": "/bin/bash"}
        else:
            display = shlex.join(command)
            popen_args = {"args": list(command)}

        try:
            result = subprocess.run(
                **popen_args,
                input=input_data,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
            )
        except subprocess.TimeoutExpired:
            return LocalCommandResult(
                command=display,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
            )
        except FileNotFoundError as exc:
            return LocalCommandResult(
                command=display,
                stdout="",
                stderr=str(exc),
                exit_status=127,
            )

        return LocalCommandResult(
            command=display,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            exit_status=result.returncode,
        )
