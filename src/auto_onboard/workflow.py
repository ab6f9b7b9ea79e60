"""High-level workflow: wires configuration, collaborators and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig
from .errors import CredentialError
from .interaction import (
    CLIInteractionHandler,
    InputType,
    InteractionRequest,
    QuestionCategory,
    UserInteractionHandler,
)
from .local import LocalSession
from .provisioning import (
    InventoryManager,
    PingVerifier,
    ProvisioningOrchestrator,
    ProvisionResult,
    ProvisionState,
    SessionConfig,
    check_prerequisites,
    detect_inventory_path,
)
from .ssh import LocalKeyPair, RemoteExecutor, SSHRemoteExecutor
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProvisionRequest:
    """User-provided request captured from the CLI."""

    address: str
    bootstrap_user: str
    hostname: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False
    assume_yes: bool = False


class ProvisioningWorkflow:
    """Coordinates one provisioning run end to end."""

    def __init__(
        self,
        config: AppConfig,
        interaction_handler: Optional[UserInteractionHandler] = None,
        executor_factory: Optional[Callable[[AppConfig], RemoteExecutor]] = None,
        local: Optional[LocalSession] = None,
    ) -> None:
        self.config = config
        # 用户交互处理器 - 默认使用 CLI
        self.interaction_handler = interaction_handler or CLIInteractionHandler()
        self._executor_factory = executor_factory or self._default_executor
        self.local = local or LocalSession()

    def _default_executor(self, config: AppConfig) -> RemoteExecutor:
        return SSHRemoteExecutor(
            port=config.ssh.port,
            connect_timeout=config.ssh.connect_timeout,
            command_timeout=config.ssh.command_timeout,
            known_hosts_path=config.resolved_known_hosts_path,
            password=config.ssh.password,
            password_prompt=self._ask_login_password,
        )

    def _ask_login_password(self, username: str, address: str) -> Optional[str]:
        response = self.interaction_handler.ask(
            InteractionRequest(
                question=f"SSH password for {username}@{address}",
                input_type=InputType.SECRET,
                category=QuestionCategory.CREDENTIAL,
                context="Key login was rejected. Asked once; kept in memory for this run only.",
            )
        )
        if response.cancelled or not response.value:
            return None
        return response.value

    def inventory_path(self) -> Path:
        if self.config.inventory.path:
            return Path(self.config.inventory.path).expanduser()
        return detect_inventory_path(self.local)

    def build_session_config(self, request: ProvisionRequest) -> SessionConfig:
        session_config = SessionConfig(
            address=request.address.strip(),
            bootstrap_user=request.bootstrap_user.strip(),
            key_path=self.config.resolved_key_path,
            inventory_path=self.inventory_path(),
            hostname=request.hostname or None,
            dry_run=request.dry_run,
            verbose=request.verbose,
        )
        session_config.validate()
        automation_name = self.config.automation_user.default_name
        if session_config.bootstrap_user == automation_name:
            raise ValueError(
                f"Bootstrap user cannot be the automation user '{automation_name}'; "
                "use your own login on the target (e.g. vagrant, ubuntu)"
            )
        return session_config

    def run(self, request: ProvisionRequest) -> ProvisionResult:
        for warning in check_prerequisites():
            self.interaction_handler.notify(warning, "warning")

        session_config = self.build_session_config(request)
        if session_config.bootstrap_user == "root" and not self._confirm_root(session_config):
            self.interaction_handler.notify("Cancelled: not connecting as root", "warning")
            return ProvisionResult(state=ProvisionState.ABORTED)

        try:
            key_pair = LocalKeyPair.load(session_config.key_path)
        except CredentialError as exc:
            logger.error("❌ %s", exc.describe())
            return ProvisionResult(state=ProvisionState.ABORTED, error=exc)
        logger.info("✅ SSH keypair found: %s", key_pair.private_path)

        if not request.assume_yes and not self._confirm(session_config):
            self.interaction_handler.notify("Cancelled by user", "warning")
            return ProvisionResult(state=ProvisionState.ABORTED)

        with self._executor_factory(self.config) as executor:
            orchestrator = ProvisioningOrchestrator(
                executor=executor,
                interaction_handler=self.interaction_handler,
                inventory=InventoryManager(session_config.inventory_path, local=self.local),
                settings=self.config,
                ping_verifier=PingVerifier(local=self.local, timeout=self.config.ping.timeout),
            )
            result = orchestrator.run(session_config, key_pair)

        self._report(session_config, result)
        return result

    def _confirm(self, session_config: SessionConfig) -> bool:
        summary = "\n".join([
            f"Target:          {session_config.address}",
            f"Bootstrap user:  {session_config.bootstrap_user}",
            f"Hostname:        {session_config.hostname or '(auto-detect)'}",
            f"SSH key:         {session_config.key_path}",
            f"Inventory:       {session_config.inventory_path}",
            f"DRY_RUN:         {session_config.dry_run}",
            f"VERBOSE:         {session_config.verbose}",
        ])
        response = self.interaction_handler.ask(
            InteractionRequest(
                question="Configuration Summary",
                input_type=InputType.CONFIRM,
                category=QuestionCategory.CONFIRMATION,
                context=summary,
                default="n",
            )
        )
        return not response.cancelled and response.confirmed

    def _confirm_root(self, session_config: SessionConfig) -> bool:
        response = self.interaction_handler.ask(
            InteractionRequest(
                question=f"Connect to {session_config.address} as root?",
                input_type=InputType.CONFIRM,
                category=QuestionCategory.CONFIRMATION,
                context="Direct root login is usually disabled; a regular sudo user is preferred.",
                default="n",
            )
        )
        return not response.cancelled and response.confirmed

    def _report(self, session_config: SessionConfig, result: ProvisionResult) -> None:
        notify = self.interaction_handler.notify
        if result.ok:
            if session_config.dry_run:
                notify("DRY RUN complete. Actions that would be taken:", "success")
                for action in result.planned_actions:
                    notify(f"  {action}", "info")
            else:
                notify(f"Target {session_config.address} is ready for Ansible management", "success")
                if result.inventory_line:
                    notify(f"Inventory entry: {result.inventory_line}", "info")
                notify(
                    f"Try: ansible {session_config.address} -m ping --private-key {session_config.key_path}",
                    "info",
                )
            for warning in result.warnings:
                notify(warning.describe(), "warning")
            return

        if result.error is not None:
            notify(result.error.describe(), "error")
        if result.rolled_back:
            notify(f"Rolled back: {session_config.address} removed from {session_config.inventory_path}", "warning")
