"""Provisioning module: the step-based state machine that onboards one host.

- ProvisioningOrchestrator: runs the steps in order and unwinds compensations
- PrivilegeDetector / AutomationUserResolver / KeyInstaller / AccessVerifier:
  remote steps executed through a RemoteExecutor
- InventoryManager / PingVerifier: controller-side steps
- ProvisioningSession: state threaded through every step
"""

from .models import (
    SudoCapability,
    ProvisionState,
    SessionConfig,
    TargetHost,
    SessionSecret,
    InventoryRecord,
    CompensatingAction,
    ProvisioningSession,
    ProvisionResult,
)
from .privilege import PrivilegeDetector
from .users import AccountEntry, AutomationUserResolver, filter_candidates
from .keys import KeyInstaller, KeyInstallResult
from .verify import AccessVerifier
from .inventory import InventoryManager, detect_inventory_path
from .ping import PingVerifier
from .prerequisites import check_prerequisites
from .orchestrator import ProvisioningOrchestrator

__all__ = [
    "SudoCapability",
    "ProvisionState",
    "SessionConfig",
    "TargetHost",
    "SessionSecret",
    "InventoryRecord",
    "CompensatingAction",
    "ProvisioningSession",
    "ProvisionResult",
    "PrivilegeDetector",
    "AccountEntry",
    "AutomationUserResolver",
    "filter_candidates",
    "KeyInstaller",
    "KeyInstallResult",
    "AccessVerifier",
    "InventoryManager",
    "detect_inventory_path",
    "PingVerifier",
    "check_prerequisites",
    "ProvisioningOrchestrator",
]
