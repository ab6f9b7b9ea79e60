"""Idempotent installation of the controller public key for the automation user."""

from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import paramiko

from ..errors import ConnectivityError, InstallationError
from ..ssh import PublicKey, RemoteExecutor, SSHConnectionError
from ..utils.logging import get_logger
from .models import ProvisioningSession

logger = get_logger(__name__)

APPENDED_MARKER = "KEY_APPENDED"
PRESENT_MARKER = "KEY_PRESENT"


def key_present_test(public_key: PublicKey, authorized_keys: str) -> str:
    """Shell test that succeeds when the key identity is already in the file.

    Compares (algorithm, key_data) field pairs so the comment is ignored and
    option-prefixed lines (``from="..." ssh-ed25519 AAAA...``) still match.
    """
    return (
        f"awk -v alg={shlex.quote(public_key.algorithm)} -v key={shlex.quote(public_key.key_data)} "
        "'{for (i = 1; i < NF; i++) if ($i == alg && $(i + 1) == key) found = 1} "
        "END {exit (found ? 0 : 1)}' "
        f"{shlex.quote(authorized_keys)}"
    )


def build_install_script(user: str, ssh_dir: str, authorized_keys: str, public_key: PublicKey) -> str:
    d = shlex.quote(ssh_dir)
    f = shlex.quote(authorized_keys)
    owner = shlex.quote(f"{user}:")
    return "\n".join([
        "set -e",
        f"mkdir -p {d}",
        f"chmod 700 {d}",
        f"touch {f}",
        f"chmod 600 {f}",
        f"chown -R {owner} {d}",
        f"if {key_present_test(public_key, authorized_keys)}; then",
        f"  echo {PRESENT_MARKER}",
        "else",
        # 文件末尾没有换行时先补一个，避免和上一行粘在一起
        f"  if [ -s {f} ] && [ -n \"$(tail -c1 {f})\" ]; then echo >> {f}; fi",
        f"  printf '%s\\n' {shlex.quote(public_key.line)} >> {f}",
        f"  echo {APPENDED_MARKER}",
        "fi",
        # 无论是否追加，都重新校正属主和权限
        f"chown {owner} {d} {f}",
        f"chmod 700 {d}",
        f"chmod 600 {f}",
    ])


def build_inspect_script(ssh_dir: str, authorized_keys: str, public_key: PublicKey) -> str:
    """Read-only counterpart of the install script, used for dry runs."""
    d = shlex.quote(ssh_dir)
    f = shlex.quote(authorized_keys)
    return "\n".join([
        f"if [ -d {d} ]; then echo ssh_dir=present; else echo ssh_dir=missing; fi",
        f"if [ -f {f} ]; then",
        "  echo authorized_keys=present",
        f"  if {key_present_test(public_key, authorized_keys)}; then echo key=present; else echo key=missing; fi",
        "else",
        "  echo authorized_keys=missing",
        "  echo key=missing",
        "fi",
    ])


def parse_inspection(stdout: str) -> Dict[str, str]:
    facts = {}
    for line in stdout.splitlines():
        if "=" in line:
            name, _, value = line.strip().partition("=")
            facts[name] = value
    return facts


@dataclass
class KeyInstallResult:
    ssh_dir: str
    authorized_keys: str
    appended: bool = False
    dry_run: bool = False
    actions: List[str] = field(default_factory=list)


class KeyInstaller:
    """Puts the controller public key into the automation user's authorized_keys.

    Runs as one privileged remote transaction. Running it N times leaves
    exactly one line with the key's identity, and ownership/modes are
    re-asserted every time.
    """

    def __init__(self, executor: RemoteExecutor, timeout: Optional[int] = None) -> None:
        self.executor = executor
        self.timeout = timeout

    def install(self, session: ProvisioningSession) -> KeyInstallResult:
        target = session.target
        user = target.automation_user
        home = target.automation_home
        if not user or not home:
            raise InstallationError(
                "Automation user is not resolved; cannot install key",
                hint="This is a sequencing bug: user resolution must run first.",
            )

        secret = session.require_escalation()
        public_key = session.key_pair.public_key
        ssh_dir = posixpath.join(home, ".ssh")
        authorized_keys = posixpath.join(ssh_dir, "authorized_keys")

        if session.dry_run:
            return self._plan(session, secret, user, ssh_dir, authorized_keys, public_key)

        logger.info("Ensuring %s and %s exist with correct permissions...", ssh_dir, authorized_keys)
        result = self._execute(
            session,
            build_install_script(user, ssh_dir, authorized_keys, public_key),
            secret,
        )
        if not result.ok:
            raise InstallationError(
                f"Failed to install key for '{user}' on {target.address}",
                location=f"{target.address}:{authorized_keys}",
                hint=(
                    f"Inspect ownership and modes on the target:\n"
                    f"  sudo ls -la {ssh_dir}\n"
                    f"  sudo stat {authorized_keys}"
                ),
                details=result.output or None,
            )

        appended = APPENDED_MARKER in result.stdout
        if appended:
            logger.info("✅ Key appended to %s", authorized_keys)
        else:
            logger.info("✅ Key already present in %s; permissions re-asserted", authorized_keys)
        return KeyInstallResult(ssh_dir=ssh_dir, authorized_keys=authorized_keys, appended=appended)

    def _plan(
        self,
        session: ProvisioningSession,
        secret: Optional[str],
        user: str,
        ssh_dir: str,
        authorized_keys: str,
        public_key: PublicKey,
    ) -> KeyInstallResult:
        result = self._execute(
            session, build_inspect_script(ssh_dir, authorized_keys, public_key), secret
        )
        facts = parse_inspection(result.stdout) if result.ok else {}

        actions = []
        if facts.get("ssh_dir") != "present":
            actions.append(f"create {ssh_dir} (mode 700, owner {user})")
        if facts.get("authorized_keys") != "present":
            actions.append(f"create {authorized_keys} (mode 600, owner {user})")
        if facts.get("key") == "present":
            actions.append(f"leave {authorized_keys} content unchanged (key already present)")
        else:
            actions.append(f"append {public_key.algorithm} key '{public_key.comment or '-'}' to {authorized_keys}")
        actions.append(f"re-assert owner {user} and modes 700/600 on {ssh_dir}")

        for action in actions:
            logger.info("[DRY RUN] Would %s", action)
            session.plan(action)
        return KeyInstallResult(
            ssh_dir=ssh_dir,
            authorized_keys=authorized_keys,
            dry_run=True,
            actions=actions,
        )

    def _execute(self, session: ProvisioningSession, script: str, secret: Optional[str]):
        target = session.target
        try:
            return self.executor.execute(
                target.address,
                target.bootstrap_user,
                script,
                timeout=self.timeout,
                privileged=True,
                secret=secret,
            )
        except (SSHConnectionError, paramiko.SSHException, OSError) as exc:
            raise ConnectivityError(
                f"Lost connection to {target.bootstrap_user}@{target.address} during key install: {exc}",
                location=f"{target.bootstrap_user}@{target.address}",
            ) from exc
