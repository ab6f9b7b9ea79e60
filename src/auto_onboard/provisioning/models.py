"""Data models for the provisioning state machine."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..errors import PrivilegeError, ProvisioningError
from ..ssh.credentials import LocalKeyPair

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class SudoCapability(Enum):
    """How the bootstrap user can escalate on the target."""
    UNKNOWN = "unknown"
    PASSWORDLESS = "passwordless"
    PASSWORD_CACHED = "password_cached"
    NONE = "none"


class ProvisionState(Enum):
    """Orchestrator states, in pipeline order."""
    INIT = "init"
    PROBED = "probed"
    PRIVILEGE_KNOWN = "privilege_known"
    USER_RESOLVED = "user_resolved"
    KEY_INSTALLED = "key_installed"
    ACCESS_VERIFIED = "access_verified"
    INVENTORIED = "inventoried"
    VERIFIED = "verified"
    DONE = "done"
    ABORTED = "aborted"
    ROLLED_BACK = "rolled_back"

    @property
    def terminal(self) -> bool:
        return self in (ProvisionState.DONE, ProvisionState.ABORTED, ProvisionState.ROLLED_BACK)


@dataclass(frozen=True)
class SessionConfig:
    """Immutable per-run settings handed over by the CLI layer."""

    address: str
    bootstrap_user: str
    key_path: Path
    inventory_path: Path
    hostname: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False

    def validate(self) -> None:
        try:
            ipaddress.ip_address(self.address)
        except ValueError as exc:
            raise ValueError(f"Invalid IP address: {self.address}") from exc
        if not self.bootstrap_user:
            raise ValueError("Bootstrap user is required")


class TargetHost:
    """The host being provisioned.

    `address` and `bootstrap_user` are fixed at construction; the automation
    user is resolved exactly once.
    """

    def __init__(self, address: str, bootstrap_user: str) -> None:
        self._address = address
        self._bootstrap_user = bootstrap_user
        self._automation_user: Optional[str] = None
        self._automation_home: Optional[str] = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def bootstrap_user(self) -> str:
        return self._bootstrap_user

    @property
    def automation_user(self) -> Optional[str]:
        return self._automation_user

    @property
    def automation_home(self) -> Optional[str]:
        return self._automation_home

    def resolve_automation_user(self, name: str, home: str) -> None:
        if self._automation_user is not None:
            raise RuntimeError(
                f"Automation user already resolved to {self._automation_user!r}"
            )
        self._automation_user = name
        self._automation_home = home

    def __repr__(self) -> str:
        return (
            f"TargetHost(address={self._address!r}, bootstrap_user={self._bootstrap_user!r}, "
            f"automation_user={self._automation_user!r})"
        )


class SessionSecret:
    """Sudo password cached in memory for one run. Never logged or persisted."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: Optional[str] = None

    def set(self, value: str) -> None:
        self._value = value

    def get(self) -> Optional[str]:
        return self._value

    def clear(self) -> None:
        self._value = None

    def __bool__(self) -> bool:
        return self._value is not None

    def __repr__(self) -> str:
        return "SessionSecret(<set>)" if self._value is not None else "SessionSecret(<empty>)"

    __str__ = __repr__


@dataclass
class InventoryRecord:
    """One registry line: `<address>   # <hostname> - Added <timestamp>`."""

    address: str
    hostname: str
    added_at: datetime = field(default_factory=datetime.now)

    def render(self) -> str:
        return f"{self.address}   # {self.hostname} - Added {self.added_at.strftime(TIMESTAMP_FORMAT)}"


@dataclass
class CompensatingAction:
    """Inverse of one successful mutation."""
    description: str
    undo: Callable[[], None]


@dataclass
class ProvisioningSession:
    """State shared by every step of one run. Owned by the orchestrator."""

    config: SessionConfig
    key_pair: LocalKeyPair
    target: TargetHost
    secret: SessionSecret = field(default_factory=SessionSecret)
    capability: SudoCapability = SudoCapability.UNKNOWN
    state: ProvisionState = ProvisionState.INIT
    hostname: Optional[str] = None
    inventory_line: Optional[str] = None
    inventory_mutated: bool = False
    inserted_address: Optional[str] = None
    warnings: List[ProvisioningError] = field(default_factory=list)
    # dry-run 时记录"将会执行"的动作
    planned_actions: List[str] = field(default_factory=list)
    compensations: List[CompensatingAction] = field(default_factory=list)

    @classmethod
    def start(cls, config: SessionConfig, key_pair: LocalKeyPair) -> "ProvisioningSession":
        return cls(
            config=config,
            key_pair=key_pair,
            target=TargetHost(config.address, config.bootstrap_user),
        )

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def set_capability(self, capability: SudoCapability) -> None:
        if self.capability is not SudoCapability.UNKNOWN:
            raise RuntimeError(f"Sudo capability already settled as {self.capability.value}")
        if capability is SudoCapability.UNKNOWN:
            raise ValueError("Cannot settle sudo capability to UNKNOWN")
        self.capability = capability

    def require_escalation(self) -> Optional[str]:
        """Gate for mutating steps; returns the secret to feed sudo, if any."""
        if self.capability is SudoCapability.PASSWORDLESS:
            return None
        if self.capability is SudoCapability.PASSWORD_CACHED:
            return self.secret.get()
        raise PrivilegeError(
            f"Refusing to modify {self.target.address}: sudo capability is {self.capability.value}",
            location=f"{self.target.bootstrap_user}@{self.target.address}",
        )

    def record_inventory_insert(self, address: str, undo: Callable[[], None]) -> None:
        self.inventory_mutated = True
        self.inserted_address = address
        self.compensations.append(
            CompensatingAction(description=f"remove {address} from inventory", undo=undo)
        )

    def warn(self, warning: ProvisioningError) -> None:
        self.warnings.append(warning)

    def plan(self, action: str) -> None:
        self.planned_actions.append(action)


@dataclass
class ProvisionResult:
    """Outcome of one orchestrator run."""

    state: ProvisionState
    warnings: List[ProvisioningError] = field(default_factory=list)
    error: Optional[ProvisioningError] = None
    rolled_back: bool = False
    inventory_line: Optional[str] = None
    planned_actions: List[str] = field(default_factory=list)
    history: List[Tuple[ProvisionState, ProvisionState]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is ProvisionState.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
