"""Error taxonomy for host provisioning.

Every error carries the remote (or local) location involved and a corrective
next step, so the console output always says *what* failed, *where*, and
*what to do about it*.
"""

from __future__ import annotations

from typing import Optional


class ProvisioningError(RuntimeError):
    """Base class for all provisioning failures."""

    kind = "ProvisioningError"
    fatal = True

    def __init__(
        self,
        message: str,
        *,
        location: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.hint = hint
        self.details = details

    def describe(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.location:
            lines.append(f"  Location: {self.location}")
        if self.hint:
            lines.append("  Next step:")
            lines.extend(f"    {line}" for line in self.hint.splitlines())
        if self.details:
            lines.append("  Details:")
            lines.extend(f"    {line}" for line in self.details.splitlines())
        return "\n".join(lines)


class CredentialError(ProvisioningError):
    """Local key pair is missing or unusable."""

    kind = "CredentialError"


class ConnectivityError(ProvisioningError):
    """Host unreachable under the bootstrap identity."""

    kind = "ConnectivityError"


class PrivilegeError(ProvisioningError):
    """Neither passwordless nor password-based sudo works."""

    kind = "PrivilegeError"


class ResolutionError(ProvisioningError):
    """No usable automation account could be settled on."""

    kind = "ResolutionError"


class InstallationError(ProvisioningError):
    """A remote filesystem or ownership operation failed."""

    kind = "InstallationError"


class VerificationError(ProvisioningError):
    """Key login or unattended sudo check failed after install."""

    kind = "VerificationError"


class RegistryError(ProvisioningError):
    """Inventory not writable, even with escalation. Downgraded to a warning."""

    kind = "RegistryError"
    fatal = False


class PingWarning(ProvisioningError):
    """Ansible ping did not report SUCCESS. Warning only."""

    kind = "PingWarning"
    fatal = False
