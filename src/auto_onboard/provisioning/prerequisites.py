"""Controller-side sanity checks run before any remote work."""

from __future__ import annotations

from typing import List, Optional

from ..local import LocalHostFacts, LocalProbe
from ..utils.logging import get_logger

logger = get_logger(__name__)


def check_prerequisites(facts: Optional[LocalHostFacts] = None) -> List[str]:
    """Return human-readable warnings; nothing here is fatal.

    SSH itself is handled by paramiko, so the only external tool is
    `ansible`, which only the final ping needs.
    """
    facts = facts or LocalProbe().collect()
    warnings = []

    if facts.running_under_sudo:
        warnings.append(
            f"You ran this with sudo (SUDO_USER={facts.sudo_user}). Not recommended: "
            "run it as your normal controller user; it escalates only where needed."
        )

    missing = facts.missing(["ansible"])
    if missing:
        warnings.append(
            "Ansible is not installed on this system; the final ping test will be skipped. "
            "Install with: sudo apt install ansible"
        )

    if not facts.tools.get("sudo"):
        warnings.append("sudo not found; an inventory outside your write access cannot be created")

    for warning in warnings:
        logger.warning(warning)
    if not warnings:
        logger.info("✅ Controller prerequisites OK (%s on %s)", facts.user, facts.hostname)
    return warnings
