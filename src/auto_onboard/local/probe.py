"""Controller-side probe: who we run as and which tools are installed."""

from __future__ import annotations

import getpass
import os
import platform
import shutil
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..paths import controller_home


@dataclass
class LocalHostFacts:
    """Facts about the controller."""

    hostname: str
    user: str
    home_dir: str
    sudo_user: Optional[str] = None  # 非空表示被 sudo 调用（不推荐）
    # 可用工具
    tools: Dict[str, bool] = field(default_factory=dict)

    @property
    def running_under_sudo(self) -> bool:
        return bool(self.sudo_user)

    def missing(self, names: List[str]) -> List[str]:
        return [name for name in names if not self.tools.get(name)]


class LocalProbe:
    """Collects information about the local system."""

    TOOLS = ("ansible", "ansible-config", "sudo")

    def collect(self) -> LocalHostFacts:
        sudo_user = os.environ.get("SUDO_USER") or None
        return LocalHostFacts(
            hostname=platform.node(),
            user=sudo_user or getpass.getuser(),
            home_dir=str(controller_home()),
            sudo_user=sudo_user,
            tools={name: shutil.which(name) is not None for name in self.TOOLS},
        )
