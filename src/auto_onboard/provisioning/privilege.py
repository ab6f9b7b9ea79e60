"""Sudo capability detection for the bootstrap user."""

from __future__ import annotations

from typing import Optional

import paramiko

from ..errors import ConnectivityError, PrivilegeError
from ..interaction import InputType, InteractionRequest, QuestionCategory, UserInteractionHandler
from ..ssh import RemoteExecutor, SSHConnectionError
from ..utils.logging import get_logger
from .models import ProvisioningSession, SudoCapability

logger = get_logger(__name__)

# sudo 校验命令本身是无副作用的
VALIDATION_COMMAND = "true"


class PrivilegeDetector:
    """
    Classifies sudo capability, in this order, stopping at the first success:

    1. ``sudo -n`` with no secret -> PASSWORDLESS
    2. one hidden prompt, cached in the session, fed to ``sudo -S`` -> PASSWORD_CACHED
    3. otherwise NONE, reported with remediation; nothing is created or repaired
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        interaction_handler: UserInteractionHandler,
        timeout: Optional[int] = None,
    ) -> None:
        self.executor = executor
        self.interaction_handler = interaction_handler
        self.timeout = timeout

    def detect(self, session: ProvisioningSession) -> SudoCapability:
        target = session.target

        if self._validate(session, secret=None).ok:
            session.set_capability(SudoCapability.PASSWORDLESS)
            logger.info("✅ Passwordless sudo is enabled for '%s'", target.bootstrap_user)
            return session.capability

        logger.warning("Passwordless sudo is NOT enabled for '%s'", target.bootstrap_user)
        response = self.interaction_handler.ask(
            InteractionRequest(
                question=f"Enter sudo password for {target.bootstrap_user}@{target.address}",
                input_type=InputType.SECRET,
                category=QuestionCategory.CREDENTIAL,
                context="Prompted once; kept in memory for this run only.",
            )
        )

        details = ""
        if not response.cancelled and response.value:
            session.secret.set(response.value)
            result = self._validate(session, secret=response.value)
            if result.ok:
                session.set_capability(SudoCapability.PASSWORD_CACHED)
                logger.info("✅ Sudo works with password for '%s' (cached for this run)", target.bootstrap_user)
                return session.capability
            details = result.output
        else:
            details = "No password entered."

        session.secret.clear()
        session.set_capability(SudoCapability.NONE)
        raise PrivilegeError(
            f"Bootstrap user '{target.bootstrap_user}' cannot run sudo on {target.address}",
            location=f"{target.bootstrap_user}@{target.address} (sudo / /etc/sudoers)",
            hint=(
                f"Option A (recommended): as an admin on the target run\n"
                f"  sudo usermod -aG sudo {target.bootstrap_user}\n"
                f"  then log out/in and rerun.\n"
                f"Option B: rerun with a different bootstrap user that already has sudo "
                f"(e.g. vagrant, ubuntu, root)."
            ),
            details=details or None,
        )

    def _validate(self, session: ProvisioningSession, secret: Optional[str]):
        target = session.target
        try:
            return self.executor.execute(
                target.address,
                target.bootstrap_user,
                VALIDATION_COMMAND,
                timeout=self.timeout,
                privileged=True,
                secret=secret,
            )
        except (SSHConnectionError, paramiko.SSHException, OSError) as exc:
            raise ConnectivityError(
                f"Lost connection to {target.bootstrap_user}@{target.address} during sudo check: {exc}",
                location=f"{target.bootstrap_user}@{target.address}",
                hint=f"Check the host is still up: ssh {target.bootstrap_user}@{target.address}",
            ) from exc
