"""Post-install checks run as the automation user with the installed key."""

from __future__ import annotations

import posixpath
from typing import Optional

import paramiko

from ..errors import VerificationError
from ..ssh import RemoteExecutor, SSHConnectionError
from ..utils.logging import get_logger
from .models import ProvisioningSession

logger = get_logger(__name__)


class AccessVerifier:
    """Confirms key login and non-interactive sudo for the automation user.

    Failures are reported, never repaired here: they mean the install step or
    the target's own configuration is inconsistent.
    """

    def __init__(self, executor: RemoteExecutor, timeout: Optional[int] = None) -> None:
        self.executor = executor
        self.timeout = timeout

    def verify(self, session: ProvisioningSession) -> None:
        target = session.target
        user = target.automation_user
        key_path = session.key_pair.private_path
        home = target.automation_home or "~"
        authorized_keys = posixpath.join(home, ".ssh", "authorized_keys")

        if session.dry_run:
            action = f"test ssh login and 'sudo -n' as {user}@{target.address} with {key_path}"
            logger.info("[DRY RUN] Would %s", action)
            session.plan(action)
            return

        logger.info("Testing SSH login as %s using key...", user)
        whoami = self._run(session, "whoami")
        if whoami is None or not whoami.ok or whoami.stdout.strip() != user:
            raise VerificationError(
                f"SSH key auth FAILED for {user}@{target.address}",
                location=f"{target.address}:{authorized_keys}",
                hint=(
                    f"Debug with: ssh -vvv -i {key_path} {user}@{target.address}\n"
                    f"Check owner/modes of {posixpath.dirname(authorized_keys)} (700) "
                    f"and {authorized_keys} (600)."
                ),
                details=whoami.output if whoami is not None else None,
            )
        logger.info("✅ SSH key auth works for %s", user)

        logger.info("Testing passwordless sudo as %s...", user)
        sudo = self._run(session, "sudo -n whoami")
        if sudo is None or not sudo.ok or sudo.stdout.strip() != "root":
            raise VerificationError(
                f"Passwordless sudo FAILED for {user}@{target.address}",
                location=f"{target.address}:/etc/sudoers.d/",
                hint=(
                    f"The target bootstrap must grant '{user}' NOPASSWD sudo, e.g.\n"
                    f"  echo '{user} ALL=(ALL) NOPASSWD:ALL' | sudo tee /etc/sudoers.d/{user}\n"
                    f"Then rerun."
                ),
                details=sudo.output if sudo is not None else None,
            )
        logger.info("✅ Passwordless sudo: OK")

    def _run(self, session: ProvisioningSession, command: str):
        target = session.target
        try:
            return self.executor.execute(
                target.address,
                target.automation_user,
                command,
                timeout=self.timeout,
                key_path=session.key_pair.private_path,
            )
        except (SSHConnectionError, paramiko.SSHException, OSError) as exc:
            logger.debug("Key login failed: %s", exc)
            return None
