"""Ansible inventory (registry) management on the controller."""

from __future__ import annotations

import getpass
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import RegistryError
from ..local import LocalSession
from ..paths import COMMON_INVENTORY_LOCATIONS, DEFAULT_INVENTORY_PATH
from ..utils.logging import get_logger
from .models import TIMESTAMP_FORMAT, InventoryRecord, ProvisioningSession

logger = get_logger(__name__)


def address_pattern(address: str) -> "re.Pattern[str]":
    """Whole-token match at line start: 10.0.0.1 must not match 10.0.0.10."""
    return re.compile(rf"^{re.escape(address)}(\s|$)")


def sed_address_regex(address: str) -> str:
    """POSIX ERE equivalent of `address_pattern`, for `sed -E`."""
    escaped = re.sub(r"([.\[\]\\^$*+?(){}|/])", r"\\\1", address)
    return f"^{escaped}([[:space:]]|$)"


def inventory_header(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return (
        "# Ansible Inventory File\n"
        f"# Created: {now.strftime(TIMESTAMP_FORMAT)}\n"
        "# Format: IP_ADDRESS   # HOSTNAME - DESCRIPTION\n"
        "\n"
    )


def _parse_host_list(dump: str) -> Optional[str]:
    for line in dump.splitlines():
        if line.upper().startswith("DEFAULT_HOST_LIST"):
            _, _, value = line.partition("=")
            value = value.strip().strip("[]").split(",")[0].strip().strip("'\"")
            return value or None
    return None


def detect_inventory_path(local: Optional[LocalSession] = None) -> Path:
    """Inventory path from `ansible-config dump`, then common locations, then the default."""
    local = local or LocalSession()
    if local.which("ansible-config"):
        result = local.run(["ansible-config", "dump"], timeout=30)
        if result.ok:
            detected = _parse_host_list(result.stdout)
            if detected and Path(detected).expanduser().is_file():
                return Path(detected).expanduser()

    for location in COMMON_INVENTORY_LOCATIONS:
        candidate = location.expanduser()
        if candidate.is_file():
            return candidate
    return DEFAULT_INVENTORY_PATH


class InventoryManager:
    """Append-only registry keyed by address.

    Plain filesystem calls are tried first; `sudo -n` on the controller is the
    fallback for creating and writing the file. If both fail, a RegistryError
    carries the line to add by hand.
    """

    def __init__(self, path: Path, local: Optional[LocalSession] = None) -> None:
        self.path = Path(path)
        self.local = local or LocalSession()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            return self.path.read_text(encoding="utf-8").splitlines()
        except PermissionError:
            result = self._sudo(["cat", str(self.path)], action="read")
            return result.stdout.splitlines()

    def find(self, address: str) -> List[str]:
        pattern = address_pattern(address)
        return [
            line for line in self.read_lines()
            if not line.startswith("#") and pattern.match(line)
        ]

    def contains(self, address: str) -> bool:
        return bool(self.find(address))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, session: ProvisioningSession, hostname: str) -> Optional[str]:
        """Append the record for the session's address unless already present.

        Returns the line written (or, in dry-run, the line that would be
        written); None when the address was already registered.
        """
        address = session.target.address
        line = InventoryRecord(address=address, hostname=hostname).render()
        logger.info("Inventory: %s", self.path)

        if session.dry_run:
            if not self.path.parent.is_dir():
                session.plan(f"create directory {self.path.parent} (mode 755)")
            if not self.path.exists():
                session.plan(f"create inventory file {self.path} (mode 644)")
            if self.path.exists() and self.contains(address):
                logger.info("[DRY RUN] %s already present in inventory; nothing to add", address)
                return None
            logger.info("[DRY RUN] Would add: %s", line)
            session.plan(f"append to {self.path}: {line}")
            return line

        try:
            self.ensure_exists()
            if self.contains(address):
                logger.info("%s already present in inventory; leaving it untouched", address)
                return None
            self._append(line)
        except RegistryError as exc:
            exc.hint = f"Add this line to {self.path} manually:\n  {line}"
            raise
        session.record_inventory_insert(address, undo=lambda: self.remove(address))
        logger.info("✅ Added to inventory: %s", line)
        return line

    def ensure_exists(self) -> None:
        parent = self.path.parent
        if not parent.is_dir():
            logger.warning("%s does not exist; creating...", parent)
            try:
                parent.mkdir(mode=0o755, parents=True)
            except PermissionError:
                self._sudo(["mkdir", "-p", str(parent)], action="create")
                self._sudo(["chmod", "755", str(parent)], action="create")

        if not self.path.exists():
            logger.warning("Inventory file missing; creating %s", self.path)
            header = inventory_header()
            try:
                with self.path.open("w", encoding="utf-8") as handle:
                    handle.write(header)
                os.chmod(self.path, 0o644)
            except PermissionError:
                self._sudo(["tee", str(self.path)], action="create", input_data=header)
                self._sudo(["chmod", "644", str(self.path)], action="create")
                # 交给控制端用户，之后追加无需 sudo
                self._sudo(["chown", getpass.getuser(), str(self.path)], action="create")

    def remove(self, address: str) -> bool:
        """
        Delete every record line for `address`. Returns True if any was removed.

        The file is never truncated in place: the kept lines go to a temp file
        in the same directory that replaces the original atomically, and the
        previous content is kept as ``<inventory>.bak``. Without write access
        the same is done through ``sudo sed -i.bak``.
        """
        if not self.find(address):
            return False
        try:
            self._rewrite_without(address_pattern(address))
        except PermissionError:
            self._sudo(
                ["sed", "-i.bak", "-E", f"/{sed_address_regex(address)}/d", str(self.path)],
                action="rewrite",
            )
        logger.info("Removed %s from inventory %s (backup: %s)", address, self.path, self.backup_path)
        return True

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def _rewrite_without(self, pattern: "re.Pattern[str]") -> None:
        with self.path.open("r", encoding="utf-8", newline="") as source:
            original = source.read()
        kept = [
            line for line in original.splitlines(keepends=True)
            if line.startswith("#") or not pattern.match(line)
        ]
        shutil.copy2(self.path, self.backup_path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.writelines(kept)
            shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except BaseException:
            # 原文件未被改动，只清理临时文件
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _append(self, line: str) -> None:
        text = line + "\n"
        existing = self.path.read_bytes() if os.access(self.path, os.R_OK) else b""
        if existing and not existing.endswith(b"\n"):
            text = "\n" + text
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(text)
        except PermissionError:
            self._sudo(["tee", "-a", str(self.path)], action="append to", input_data=text)

    def _sudo(self, argv: Sequence[str], *, action: str, input_data: Optional[str] = None):
        result = self.local.run(["sudo", "-n", *argv], input_data=input_data, timeout=30)
        if not result.ok:
            raise RegistryError(
                f"Could not {action} inventory {self.path}, even with sudo",
                location=str(self.path),
                hint=(
                    f"Fix it manually:\n  sudo mkdir -p {self.path.parent}\n"
                    f"  sudo touch {self.path} && sudo chmod 644 {self.path}"
                ),
                details=result.output or None,
            )
        return result
