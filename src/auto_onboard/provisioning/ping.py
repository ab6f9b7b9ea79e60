"""Best-effort `ansible -m ping` smoke test."""

from __future__ import annotations

import shlex
from typing import List, Optional

from ..errors import PingWarning
from ..local import LocalSession
from ..utils.logging import get_logger
from .models import ProvisioningSession

logger = get_logger(__name__)


class PingVerifier:
    """Checks that Ansible itself can reach the host.

    Never fatal: failures often come from ansible.cfg or inventory settings
    that are outside this tool's control, so they become a PingWarning.
    """

    def __init__(self, local: Optional[LocalSession] = None, timeout: int = 60) -> None:
        self.local = local or LocalSession()
        self.timeout = timeout

    def build_command(self, session: ProvisioningSession, pattern: str) -> List[str]:
        argv = [
            "ansible",
            pattern,
            "-m",
            "ping",
            "--user",
            session.target.automation_user or "",
            "--private-key",
            str(session.key_pair.private_path),
        ]
        if session.config.verbose:
            argv.append("-vvv")
        return argv

    def verify(self, session: ProvisioningSession) -> Optional[PingWarning]:
        address = session.target.address
        inventory_cmd = self.build_command(session, address)

        if session.dry_run:
            action = f"run {shlex.join(inventory_cmd)}"
            logger.info("[DRY RUN] Would %s", action)
            session.plan(action)
            return None

        if not self.local.which("ansible"):
            return self._warn(session, "ansible is not installed on this controller", inventory_cmd)

        # 先按 inventory 条目，再用 "ip," 的 ad-hoc 形式
        for argv, label in ((inventory_cmd, "via inventory"), (self.build_command(session, f"{address},"), "ad-hoc")):
            logger.info("Running: %s", shlex.join(argv))
            result = self.local.run(argv, timeout=self.timeout)
            logger.debug(result.output)
            if "SUCCESS" in result.stdout:
                logger.info("✅ Ansible ping: SUCCESS (%s)", label)
                return None

        return self._warn(session, "Ansible ping did not return SUCCESS", inventory_cmd)

    def _warn(self, session: ProvisioningSession, message: str, argv: List[str]) -> PingWarning:
        adhoc = self.build_command(session, f"{session.target.address},")
        if "-vvv" not in adhoc:
            adhoc.append("-vvv")
        warning = PingWarning(
            message,
            location=session.target.address,
            hint=(
                "This may be normal if ansible.cfg needs configuration. Try manually:\n"
                f"  {shlex.join(adhoc)}"
            ),
        )
        logger.warning("⚠️ %s", message)
        session.warn(warning)
        return warning
