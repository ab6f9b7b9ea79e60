"""Remote host probing utilities."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

from .executor import RemoteExecutor
from .session import SSHConnectionError


@dataclass
class ProbeResult:
    reachable: bool
    detail: str = ""


class ConnectionProbe:
    """Checks that a host answers under a given identity. One attempt, no retry."""

    NOOP_COMMAND = "echo Connected"

    def __init__(self, executor: RemoteExecutor, timeout: Optional[int] = None) -> None:
        self.executor = executor
        self.timeout = timeout

    def probe(self, address: str, identity: str) -> ProbeResult:
        try:
            result = self.executor.execute(
                address, identity, self.NOOP_COMMAND, timeout=self.timeout
            )
        except (SSHConnectionError, paramiko.SSHException, OSError) as exc:
            return ProbeResult(reachable=False, detail=str(exc))
        if not result.ok:
            return ProbeResult(reachable=False, detail=result.output)
        return ProbeResult(reachable=True, detail=result.stdout)

    def detect_hostname(
        self,
        address: str,
        identity: str,
        key_path: Optional[Path] = None,
    ) -> Optional[str]:
        """Return the remote `hostname`, or None when it cannot be read."""
        try:
            result = self.executor.execute(
                address, identity, "hostname", timeout=self.timeout, key_path=key_path
            )
        except (SSHConnectionError, paramiko.SSHException, OSError):
            return None
        hostname = result.stdout.strip() if result.ok else ""
        return hostname or None
