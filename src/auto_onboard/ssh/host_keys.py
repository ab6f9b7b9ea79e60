"""Accept-on-first-use host key handling."""

from __future__ import annotations

import base64
import hashlib
import os
from pathlib import Path
from typing import Callable, Optional

import paramiko
from paramiko.hostkeys import HostKeyEntry, InvalidHostKey

from ..utils.logging import get_logger

logger = get_logger(__name__)

# 与 paramiko.SSHClient.load_system_host_keys() 读取的位置一致
SYSTEM_KNOWN_HOSTS = Path("~/.ssh/known_hosts")


def fingerprint_sha256(key: paramiko.PKey) -> str:
    """OpenSSH-style `SHA256:...` fingerprint."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def load_known_hosts(host_keys: paramiko.HostKeys, path: Path) -> int:
    """
    Merge the plain entries of an OpenSSH known_hosts file into `host_keys`.

    Marker lines (``@cert-authority``, ``@revoked``) and entries paramiko
    cannot decode are skipped rather than failing the whole load.

    Returns:
        Number of entries loaded
    """
    loaded = 0
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for lineno, raw in enumerate(handle, 1):
            line = raw.strip()
            if not line or line.startswith("#") or line.startswith("@"):
                continue
            try:
                entry = HostKeyEntry.from_line(line, lineno)
            except (InvalidHostKey, paramiko.SSHException) as exc:
                logger.debug("Skipping %s:%d: %s", path, lineno, exc)
                continue
            if entry is None:
                continue
            for hostname in entry.hostnames:
                host_keys.add(hostname, entry.key.get_name(), entry.key)
            loaded += 1
    return loaded


def append_known_host(path: Path, hostname: str, key: paramiko.PKey) -> str:
    """Append one `<host> <type> <base64>` line; existing lines are left alone."""
    line = f"{hostname} {key.get_name()} {key.get_base64()}"
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    prefix = ""
    if path.is_file() and path.stat().st_size:
        with path.open("rb") as handle:
            handle.seek(-1, os.SEEK_END)
            if handle.read(1) != b"\n":
                prefix = "\n"
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{prefix}{line}\n")
    return line


class TrustOnFirstUsePolicy(paramiko.MissingHostKeyPolicy):
    """Accept an unknown host key once, log it, and persist it.

    Only *unknown* keys reach this policy. A key that differs from the stored
    one makes paramiko raise ``BadHostKeyException`` before we are consulted,
    so changed keys are still rejected.
    """

    def __init__(
        self,
        known_hosts_path: Optional[Path] = None,
        audit_callback: Optional[Callable[[str, str, str], None]] = None,
    ) -> None:
        self.known_hosts_path = known_hosts_path
        self.audit_callback = audit_callback

    def missing_host_key(self, client: paramiko.SSHClient, hostname: str, key: paramiko.PKey) -> None:
        key_type = key.get_name()
        fingerprint = fingerprint_sha256(key)
        logger.warning(
            "Unknown host key for %s (%s %s); accepting on first use",
            hostname,
            key_type,
            fingerprint,
        )
        if self.audit_callback:
            self.audit_callback(hostname, key_type, fingerprint)

        client.get_host_keys().add(hostname, key_type, key)
        if self.known_hosts_path is None:
            return
        try:
            append_known_host(self.known_hosts_path, hostname, key)
        except OSError as exc:
            # 本次连接仍然使用内存中的 key，只是下次会再次询问
            logger.warning("Could not record host key in %s: %s", self.known_hosts_path, exc)
            return
        logger.info("Recorded host key for %s in %s", hostname, self.known_hosts_path)


def configure_host_keys(client: paramiko.SSHClient, known_hosts_path: Optional[Path]) -> None:
    """Load known hosts and install the accept-on-first-use policy.

    The user's ``~/.ssh/known_hosts`` is optional and read best-effort; an
    explicitly configured file that exists but cannot be read raises OSError.
    """
    host_keys = client.get_host_keys()
    system_path = SYSTEM_KNOWN_HOSTS.expanduser()
    try:
        if system_path.is_file():
            load_known_hosts(host_keys, system_path)
    except OSError as exc:
        logger.debug("Could not load system host keys: %s", exc)

    if known_hosts_path is not None and known_hosts_path != system_path and known_hosts_path.is_file():
        load_known_hosts(host_keys, known_hosts_path)

    client.set_missing_host_key_policy(TrustOnFirstUsePolicy(known_hosts_path))
