"""Remote command execution transport used by the provisioning steps."""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .credentials import SSHCredentials
from .session import SSHAuthenticationError, SSHCommandResult, SSHConnectionError, SSHSession
from ..utils.logging import get_logger

logger = get_logger(__name__)


def privileged_command(command: str, *, with_secret: bool) -> str:
    """Wrap `command` for sudo.

    Without a secret sudo runs with ``-n`` so it fails instead of prompting.
    With a secret sudo reads it from stdin (``-S``) with an empty prompt.
    """
    if with_secret:
        return f"sudo -S -p '' bash -c {shlex.quote(command)}"
    return f"sudo -n bash -c {shlex.quote(command)}"


class RemoteExecutor(ABC):
    """Runs one command on a remote host as a given identity."""

    @abstractmethod
    def execute(
        self,
        address: str,
        identity: str,
        command: str,
        *,
        timeout: Optional[int] = None,
        privileged: bool = False,
        secret: Optional[str] = None,
        key_path: Optional[Path] = None,
    ) -> SSHCommandResult:
        """
        Run `command` on `address` as `identity`.

        Args:
            privileged: Run through sudo
            secret: Cached sudo password, fed once on stdin (privileged only)
            key_path: Authenticate with exactly this private key instead of agent/default keys

        Raises:
            SSHConnectionError: The connection or authentication failed
        """

    def close(self) -> None:
        """Release any open connections."""

    def __enter__(self) -> "RemoteExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SSHRemoteExecutor(RemoteExecutor):
    """Paramiko-backed executor; keeps one session per (address, identity, key).

    When agent/default-key login is rejected and no password is configured,
    `password_prompt` is asked once per executor. The answer lives only in
    memory and gets exactly one login attempt.
    """

    def __init__(
        self,
        *,
        port: int = 22,
        connect_timeout: int = 10,
        command_timeout: int = 30,
        known_hosts_path: Optional[Path] = None,
        password: Optional[str] = None,
        password_prompt: Optional[Callable[[str, str], Optional[str]]] = None,
        session_factory: Callable[..., SSHSession] = SSHSession,
    ) -> None:
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.known_hosts_path = known_hosts_path
        self.password = password
        self.password_prompt = password_prompt
        self._session_factory = session_factory
        self._sessions: Dict[Tuple[str, str, Optional[str]], SSHSession] = {}
        self._prompted_password: Optional[str] = None
        self._password_asked = False

    def _credentials(self, address: str, identity: str, key_path: Optional[Path]) -> SSHCredentials:
        if key_path is not None:
            return SSHCredentials(
                host=address,
                username=identity,
                port=self.port,
                auth_method="key",
                key_path=str(key_path),
                timeout=self.connect_timeout,
            )
        password = self.password or self._prompted_password
        if password:
            return SSHCredentials(
                host=address,
                username=identity,
                port=self.port,
                auth_method="password",
                password=password,
                timeout=self.connect_timeout,
            )
        return SSHCredentials(
            host=address,
            username=identity,
            port=self.port,
            timeout=self.connect_timeout,
        )

    def _connect(self, address: str, identity: str, key_path: Optional[Path]) -> SSHSession:
        credentials = self._credentials(address, identity, key_path)
        session = self._session_factory(credentials, known_hosts_path=self.known_hosts_path)
        try:
            session.connect()
            return session
        except SSHAuthenticationError:
            if credentials.auth_method != "agent" or self.password_prompt is None or self._password_asked:
                raise
        self._password_asked = True
        password = self.password_prompt(identity, address)
        if not password:
            raise SSHAuthenticationError(f"Authentication failed for {identity}@{address}; no password entered")

        logger.info("Key login rejected for %s@%s; trying the entered password once", identity, address)
        self._prompted_password = password
        session = self._session_factory(
            self._credentials(address, identity, None), known_hosts_path=self.known_hosts_path
        )
        try:
            session.connect()
        except SSHConnectionError:
            # 密码只尝试一次，失败即丢弃
            self._prompted_password = None
            raise
        return session

    def _session(self, address: str, identity: str, key_path: Optional[Path]) -> SSHSession:
        cache_key = (address, identity, str(key_path) if key_path else None)
        session = self._sessions.get(cache_key)
        if session is None:
            # 连接失败时不缓存，异常直接抛给调用方，不重试
            session = self._connect(address, identity, key_path)
            self._sessions[cache_key] = session
        return session

    def execute(
        self,
        address: str,
        identity: str,
        command: str,
        *,
        timeout: Optional[int] = None,
        privileged: bool = False,
        secret: Optional[str] = None,
        key_path: Optional[Path] = None,
    ) -> SSHCommandResult:
        session = self._session(address, identity, key_path)
        input_data = None
        actual_command = command
        if privileged:
            actual_command = privileged_command(command, with_secret=secret is not None)
            if secret is not None:
                input_data = secret + "\n"
        logger.debug("[%s@%s] %s%s", identity, address, "(sudo) " if privileged else "", command)
        result = session.run(
            actual_command,
            timeout=timeout or self.command_timeout,
            input_data=input_data,
        )
        # 结果里保留原始命令，避免把 sudo 包装泄露到报告中
        result.command = command
        return result

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._prompted_password = None
