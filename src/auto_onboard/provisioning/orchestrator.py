"""Provisioning orchestrator: runs the steps in order and drives rollback."""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from ..config import AppConfig
from ..errors import ConnectivityError, ProvisioningError, RegistryError
from ..interaction import UserInteractionHandler
from ..ssh import ConnectionProbe, LocalKeyPair, RemoteExecutor
from ..utils.logging import get_logger
from .inventory import InventoryManager
from .keys import KeyInstaller
from .models import (
    ProvisioningSession,
    ProvisionResult,
    ProvisionState,
    SessionConfig,
)
from .ping import PingVerifier
from .privilege import PrivilegeDetector
from .users import AutomationUserResolver
from .verify import AccessVerifier

logger = get_logger(__name__)

Step = Tuple[ProvisionState, str, Callable[[ProvisioningSession], None]]


class ProvisioningOrchestrator:
    """
    State machine for one host:

    INIT → PROBED → PRIVILEGE_KNOWN → USER_RESOLVED → KEY_INSTALLED →
    ACCESS_VERIFIED → INVENTORIED → VERIFIED → DONE

    Any fatal error moves to ABORTED; if the inventory was changed, the
    compensation stack is unwound and the run ends in ROLLED_BACK. A failed
    ping goes straight from INVENTORIED to DONE with a warning.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        interaction_handler: UserInteractionHandler,
        inventory: InventoryManager,
        settings: Optional[AppConfig] = None,
        ping_verifier: Optional[PingVerifier] = None,
    ) -> None:
        self.settings = settings or AppConfig()
        timeout = self.settings.ssh.command_timeout
        self.executor = executor
        self.interaction_handler = interaction_handler
        self.inventory = inventory
        self.probe = ConnectionProbe(executor, timeout=timeout)
        self.privilege_detector = PrivilegeDetector(executor, interaction_handler, timeout=timeout)
        self.user_resolver = AutomationUserResolver(
            executor, interaction_handler, self.settings.automation_user, timeout=timeout
        )
        self.key_installer = KeyInstaller(executor, timeout=timeout)
        self.access_verifier = AccessVerifier(executor, timeout=timeout)
        self.ping_verifier = ping_verifier or PingVerifier(timeout=self.settings.ping.timeout)
        self._history: List[Tuple[ProvisionState, ProvisionState]] = []

    def run(self, config: SessionConfig, key_pair: LocalKeyPair) -> ProvisionResult:
        session = ProvisioningSession.start(config, key_pair)
        self._history = []
        error: Optional[ProvisioningError] = None

        steps: List[Step] = [
            (ProvisionState.PROBED, "Connectivity Check", self._probe),
            (ProvisionState.PRIVILEGE_KNOWN, "Sudo Capability Check (Bootstrap User)", self._detect_privilege),
            (ProvisionState.USER_RESOLVED, "Detect Target Automation User", self._resolve_user),
            (ProvisionState.KEY_INSTALLED, "Copy SSH Key to Target", self._install_key),
            (ProvisionState.ACCESS_VERIFIED, "Test SSH & Passwordless Sudo (Automation User)", self._verify_access),
            (ProvisionState.INVENTORIED, "Add Target to Inventory", self._register),
        ]

        if config.dry_run:
            logger.info("🧪 DRY RUN: no changes will be made")

        try:
            for index, (state, title, step) in enumerate(steps, 1):
                logger.info("")
                logger.info("📍 Step %d/%d: %s", index, len(steps) + 1, title)
                step(session)
                self._transition(session, state)

            logger.info("")
            logger.info("📍 Step %d/%d: Ansible Connectivity Test", len(steps) + 1, len(steps) + 1)
            if self._ping(session):
                self._transition(session, ProvisionState.VERIFIED)
            self._transition(session, ProvisionState.DONE)
        except ProvisioningError as exc:
            error = exc
            logger.error("❌ %s", exc.describe())
            self._abort(session)
        except Exception:
            # 非预期异常也要撤销已做的修改，然后继续向上抛
            self._abort(session)
            raise
        finally:
            session.secret.clear()

        return ProvisionResult(
            state=session.state,
            warnings=list(session.warnings),
            error=error,
            rolled_back=session.state is ProvisionState.ROLLED_BACK,
            inventory_line=session.inventory_line,
            planned_actions=list(session.planned_actions),
            history=list(self._history),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _probe(self, session: ProvisioningSession) -> None:
        target = session.target
        logger.info("Testing connectivity to %s@%s...", target.bootstrap_user, target.address)
        result = self.probe.probe(target.address, target.bootstrap_user)
        if not result.reachable:
            raise ConnectivityError(
                f"Cannot SSH to {target.bootstrap_user}@{target.address}",
                location=f"{target.bootstrap_user}@{target.address}:{self.settings.ssh.port}",
                hint=(
                    f"Check the address and that '{target.bootstrap_user}' can log in:\n"
                    f"  ssh -v {target.bootstrap_user}@{target.address}"
                ),
                details=result.detail or None,
            )
        logger.info("✅ Can connect to server as %s", target.bootstrap_user)

    def _detect_privilege(self, session: ProvisioningSession) -> None:
        self.privilege_detector.detect(session)

    def _resolve_user(self, session: ProvisioningSession) -> None:
        self.user_resolver.resolve(session)

    def _install_key(self, session: ProvisioningSession) -> None:
        self.key_installer.install(session)

    def _verify_access(self, session: ProvisioningSession) -> None:
        self.access_verifier.verify(session)

    def _register(self, session: ProvisioningSession) -> None:
        hostname = self._resolve_hostname(session)
        session.hostname = hostname
        try:
            session.inventory_line = self.inventory.register(session, hostname)
        except RegistryError as exc:
            # 清单写不进去不影响主机本身已就绪
            logger.warning("⚠️ %s", exc.describe())
            session.warn(exc)

    def _ping(self, session: ProvisioningSession) -> bool:
        if not self.settings.ping.enabled:
            logger.info("Ansible ping disabled by configuration")
            return False
        return self.ping_verifier.verify(session) is None

    def _resolve_hostname(self, session: ProvisioningSession) -> str:
        target = session.target
        if session.config.hostname:
            logger.info("Using provided hostname: %s", session.config.hostname)
            return session.config.hostname

        logger.info("Detecting hostname from server...")
        if session.dry_run:
            # key 还没装上，用 bootstrap 用户读取
            detected = self.probe.detect_hostname(target.address, target.bootstrap_user)
        else:
            detected = self.probe.detect_hostname(
                target.address, target.automation_user, key_path=session.key_pair.private_path
            )
        if detected:
            logger.info("Detected hostname: %s", detected)
            return detected
        logger.warning("Could not detect hostname, using IP address")
        return target.address

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _transition(self, session: ProvisioningSession, new_state: ProvisionState) -> None:
        old_state = session.state
        if new_state is ProvisionState.ROLLED_BACK:
            if old_state is not ProvisionState.ABORTED:
                raise RuntimeError("ROLLED_BACK is only reachable from ABORTED")
        elif old_state.terminal:
            raise RuntimeError(f"Cannot leave terminal state {old_state.value}")
        session.state = new_state
        self._history.append((old_state, new_state))
        logger.debug("State: %s -> %s", old_state.value, new_state.value)

    def _abort(self, session: ProvisioningSession) -> None:
        if session.state.terminal:
            return
        self._transition(session, ProvisionState.ABORTED)

        if not session.inventory_mutated:
            return

        while session.compensations:
            action = session.compensations.pop()
            logger.warning("Rolling back: %s", action.description)
            try:
                action.undo()
            except Exception as exc:
                logger.error(
                    "Rollback step failed (%s): %s. Remove the line for %s from %s by hand.",
                    action.description,
                    exc,
                    session.inserted_address,
                    self.inventory.path,
                )
        self._transition(session, ProvisionState.ROLLED_BACK)
