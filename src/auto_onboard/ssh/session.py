"""SSH session management built on Paramiko."""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import paramiko

from .credentials import SSHCredentials
from .host_keys import configure_host_keys


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


class SSHAuthenticationError(SSHConnectionError):
    """The server answered but rejected every offered credential."""

    pass


@dataclass
class SSHCommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for error reports."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class SSHSession:
    """High-level wrapper around paramiko.SSHClient.

    Exactly one connection attempt is made; authentication failures are not
    retried so an unknown host never sees repeated login attempts.
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        known_hosts_path: Optional[Path] = None,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.credentials = credentials
        self.known_hosts_path = known_hosts_path
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        if self._client:
            return
        self.credentials.validate()
        client = self._client_factory()
        try:
            # known_hosts 解析失败也按连接失败处理
            configure_host_keys(client, self.known_hosts_path)
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "banner_timeout": self.credentials.timeout,
                "auth_timeout": self.credentials.timeout,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
                connect_kwargs["look_for_keys"] = False
                connect_kwargs["allow_agent"] = False
            elif self.credentials.auth_method == "key":
                # 只用指定的私钥，确保验证的是我们安装的那把 key
                connect_kwargs["key_filename"] = self.credentials.key_path
                connect_kwargs["look_for_keys"] = False
                connect_kwargs["allow_agent"] = False
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            else:
                connect_kwargs["look_for_keys"] = True
                connect_kwargs["allow_agent"] = True
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise SSHAuthenticationError(str(exc) or "Authentication failed") from exc
        except Exception as exc:
            client.close()
            raise SSHConnectionError(str(exc) or type(exc).__name__) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(
        self,
        command: str,
        *,
        timeout: Optional[int] = None,
        input_data: Optional[str] = None,
    ) -> SSHCommandResult:
        """
        Execute a command on the remote server and wait for it to finish.

        stdout and stderr are drained together, so a command that fills the
        stderr window never stalls waiting for stdout to close.

        Args:
            command: The command to execute
            timeout: Seconds to wait for completion (default: credentials.timeout * 3)
            input_data: Written once to the command's stdin, then stdin is closed

        Returns:
            SSHCommandResult with command output and exit status. A timeout is
            reported as exit status -1, never retried.
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        if timeout is None:
            timeout = self.credentials.timeout * 3

        stdin, stdout, _ = self._client.exec_command(command, timeout=timeout)

        if input_data is not None:
            stdin.write(input_data)
            stdin.flush()
            stdin.channel.shutdown_write()

        channel = stdout.channel
        channel.settimeout(float(timeout))
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        start_time = time.monotonic()
        try:
            while not channel.exit_status_ready():
                drained = self._drain(channel, stdout_chunks, stderr_chunks)
                if time.monotonic() - start_time > timeout:
                    raise socket.timeout()
                if not drained:
                    time.sleep(self.POLL_INTERVAL)
            # 读取剩余输出
            self._drain(channel, stdout_chunks, stderr_chunks)
            exit_status = channel.recv_exit_status()
        except socket.timeout:
            channel.close()
            return SSHCommandResult(
                command=command,
                stdout="",
                stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                exit_status=-1,
            )

        return SSHCommandResult(
            command=command,
            stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace").strip(),
            stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace").strip(),
            exit_status=exit_status,
        )

    @staticmethod
    def _drain(channel: paramiko.Channel, stdout_chunks: List[bytes], stderr_chunks: List[bytes]) -> bool:
        """Read whatever is buffered on both streams; True if anything arrived."""
        drained = False
        while channel.recv_ready():
            stdout_chunks.append(channel.recv(32768))
            drained = True
        while channel.recv_stderr_ready():
            stderr_chunks.append(channel.recv_stderr(32768))
            drained = True
        return drained
