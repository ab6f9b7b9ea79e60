"""Automation user discovery on the target."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import List, Optional

import paramiko

from ..config import AutomationUserConfig
from ..errors import ConnectivityError, ResolutionError
from ..interaction import InputType, InteractionRequest, QuestionCategory, UserInteractionHandler
from ..ssh import RemoteExecutor, SSHConnectionError
from ..utils.logging import get_logger
from .models import ProvisioningSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountEntry:
    """One row of the remote account database."""

    name: str
    uid: int
    home: str

    @classmethod
    def parse(cls, line: str) -> Optional["AccountEntry"]:
        # name:passwd:uid:gid:gecos:home:shell
        fields = line.strip().split(":")
        if len(fields) < 7:
            return None
        try:
            uid = int(fields[2])
        except ValueError:
            return None
        return cls(name=fields[0], uid=uid, home=fields[5])

    def describe(self) -> str:
        return f"{self.name} (uid: {self.uid}, home: {self.home})"


def filter_candidates(lines: List[str], settings: AutomationUserConfig) -> List[AccountEntry]:
    """Non-system accounts whose name looks like an automation account, in discovery order."""
    pattern = re.compile(settings.name_pattern)
    candidates = []
    for line in lines:
        entry = AccountEntry.parse(line)
        if entry is None:
            continue
        if not settings.uid_min <= entry.uid < settings.uid_max:
            continue
        if pattern.search(entry.name):
            candidates.append(entry)
    return candidates


class AutomationUserResolver:
    """Settles which remote account is the automation identity.

    0 candidates: default name or manual entry. 1 candidate: confirm, else
    manual entry. 2+: numbered pick with manual entry as an escape. Whatever
    was chosen is then re-checked against the remote account database.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        interaction_handler: UserInteractionHandler,
        settings: Optional[AutomationUserConfig] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self.executor = executor
        self.interaction_handler = interaction_handler
        self.settings = settings or AutomationUserConfig()
        self.timeout = timeout

    def resolve(self, session: ProvisioningSession) -> str:
        target = session.target
        candidates = self.discover(session)
        name = self.choose(candidates)
        entry = self.lookup(session, name)
        if entry is None:
            raise ResolutionError(
                f"User '{name}' does NOT exist on {target.address}",
                location=f"{target.address}:/etc/passwd",
                hint=(
                    "Run the server bootstrap on the target first so it creates the "
                    "automation user, or rerun and pick an existing account."
                ),
            )
        if not entry.home:
            raise ResolutionError(
                f"Could not determine home directory for '{name}'",
                location=f"{target.address}:/etc/passwd",
                hint=f"Check: getent passwd {name}",
            )
        target.resolve_automation_user(entry.name, entry.home)
        logger.info("✅ Target automation user: %s", entry.describe())
        return entry.name

    def discover(self, session: ProvisioningSession) -> List[AccountEntry]:
        result = self._run(session, "getent passwd")
        if not result.ok:
            logger.warning("Could not list accounts on target: %s", result.output)
            return []
        return filter_candidates(result.stdout.splitlines(), self.settings)

    def lookup(self, session: ProvisioningSession, name: str) -> Optional[AccountEntry]:
        result = self._run(session, f"getent passwd {shlex.quote(name)}")
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            entry = AccountEntry.parse(line)
            if entry is not None and entry.name == name:
                return entry
        return None

    def choose(self, candidates: List[AccountEntry]) -> str:
        default_name = self.settings.default_name

        if not candidates:
            logger.warning("No obvious automation user found on target")
            response = self.interaction_handler.ask(
                InteractionRequest(
                    question="No automation user found. Which account should be used?",
                    options=[default_name],
                    default=default_name,
                    custom_label="Enter a username",
                )
            )
            return self._require_name(response)

        if len(candidates) == 1:
            entry = candidates[0]
            response = self.interaction_handler.ask(
                InteractionRequest(
                    question=f"Use '{entry.name}' as target automation user?",
                    input_type=InputType.CONFIRM,
                    category=QuestionCategory.CONFIRMATION,
                    context=entry.describe(),
                    default="y",
                )
            )
            if response.cancelled:
                raise self._cancelled()
            if response.confirmed:
                return entry.name
            return self._manual_entry()

        response = self.interaction_handler.ask(
            InteractionRequest(
                question="Found multiple potential automation users:",
                options=[entry.describe() for entry in candidates],
                custom_label="Enter different username",
            )
        )
        if response.cancelled:
            raise self._cancelled()
        if response.selected_option and 1 <= response.selected_option <= len(candidates):
            return candidates[response.selected_option - 1].name
        if response.is_custom and response.value:
            return response.value.strip()
        return self._manual_entry()

    def _manual_entry(self) -> str:
        response = self.interaction_handler.ask(
            InteractionRequest(
                question="Enter target automation username",
                input_type=InputType.TEXT,
                category=QuestionCategory.INFORMATION,
                default=self.settings.default_name,
            )
        )
        return self._require_name(response)

    def _require_name(self, response) -> str:
        if response.cancelled or not response.value.strip():
            raise self._cancelled()
        return response.value.strip()

    def _cancelled(self) -> ResolutionError:
        return ResolutionError(
            "No automation user selected",
            hint="Rerun and pick or type the automation account created by the bootstrap script.",
        )

    def _run(self, session: ProvisioningSession, command: str):
        target = session.target
        try:
            return self.executor.execute(
                target.address, target.bootstrap_user, command, timeout=self.timeout
            )
        except (SSHConnectionError, paramiko.SSHException, OSError) as exc:
            raise ConnectivityError(
                f"Lost connection to {target.bootstrap_user}@{target.address}: {exc}",
                location=f"{target.bootstrap_user}@{target.address}",
            ) from exc
