"""SSH credential helpers."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import CredentialError
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SSHCredentials:
    """Normalized credential payload for one remote identity."""

    host: str
    username: str
    port: int = 22
    auth_method: str = "agent"  # "agent" | "password" | "key"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 10

    def validate(self) -> None:
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")


@dataclass(frozen=True)
class PublicKey:
    """One OpenSSH public key line split into its three fields."""

    algorithm: str
    key_data: str
    comment: str = ""

    @classmethod
    def parse(cls, line: str) -> "PublicKey":
        parts = line.strip().split(None, 2)
        if len(parts) < 2:
            raise ValueError(f"Not an OpenSSH public key line: {line.strip()[:40]!r}")
        comment = parts[2].strip() if len(parts) == 3 else ""
        return cls(algorithm=parts[0], key_data=parts[1], comment=comment)

    @property
    def identity(self) -> str:
        """Stable identity of the key; the free-text comment is not part of it."""
        return f"{self.algorithm} {self.key_data}"

    @property
    def line(self) -> str:
        if self.comment:
            return f"{self.identity} {self.comment}"
        return self.identity


@dataclass(frozen=True)
class LocalKeyPair:
    """Controller-side key pair. Read-only here; never regenerated."""

    private_path: Path
    public_path: Path
    public_key: PublicKey

    @classmethod
    def load(cls, private_path: Path, fix_permissions: bool = True) -> "LocalKeyPair":
        private_path = Path(private_path).expanduser()
        public_path = private_path.with_name(private_path.name + ".pub")
        hint = f"ssh-keygen -t ed25519 -f {private_path} -C 'ansible-automation'"

        if not private_path.is_file():
            raise CredentialError(
                f"SSH private key not found: {private_path}",
                location=str(private_path),
                hint=f"Generate it with: {hint} (or point ANSIBLE_SSH_KEY at an existing key)",
            )
        if not public_path.is_file():
            raise CredentialError(
                f"SSH public key not found: {public_path}",
                location=str(public_path),
                hint="The public key must sit next to the private key with a .pub suffix",
            )

        if fix_permissions:
            ensure_private_key_mode(private_path)

        try:
            public_key = PublicKey.parse(public_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CredentialError(
                f"Cannot read public key {public_path}: {exc}",
                location=str(public_path),
                hint=f"Regenerate the pair with: {hint}",
            ) from exc

        return cls(private_path=private_path, public_path=public_path, public_key=public_key)


def ensure_private_key_mode(path: Path) -> bool:
    """Tighten the private key to 0600 if group/other bits are set.

    Returns True when the mode was changed.
    """
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077 == 0:
        return False
    logger.warning("Fixing key permissions (%o -> 600): %s", mode, path)
    os.chmod(path, 0o600)
    return True
