"""Unified path constants for auto-onboard.

Controller-side locations used when nothing else is configured:
- ~/.ssh/ansible-automation-key      # automation key pair (private half)
- ~/.ssh/known_hosts                 # accept-on-first-use trust store
- /etc/ansible/hosts                 # Ansible inventory (registry)
"""

import os
from pathlib import Path

# 默认配置文件（相对于当前工作目录）
DEFAULT_CONFIG_PATH = Path("config/default_config.json")

DEFAULT_KEY_NAME = "ansible-automation-key"
DEFAULT_INVENTORY_PATH = Path("/etc/ansible/hosts")

# ansible-config 找不到时依次检查的位置
COMMON_INVENTORY_LOCATIONS = (
    Path("/etc/ansible/hosts"),
    Path("~/.ansible/hosts"),
    Path("./inventory"),
    Path("./hosts"),
)


def controller_home() -> Path:
    """Home of the controller user, even when run through sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        return Path(os.path.expanduser(f"~{sudo_user}"))
    return Path.home()


def default_key_path() -> Path:
    return controller_home() / ".ssh" / DEFAULT_KEY_NAME


def default_known_hosts_path() -> Path:
    return controller_home() / ".ssh" / "known_hosts"
