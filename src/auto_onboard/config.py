"""Configuration loading utilities for auto-onboard."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .paths import DEFAULT_CONFIG_PATH, default_key_path, default_known_hosts_path

# Load .env file if it exists
load_dotenv()

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class SSHConfig:
    """Transport settings shared by every remote call."""

    port: int = 22
    connect_timeout: int = 10     # 连接超时（秒）
    command_timeout: int = 30     # 单条命令超时（秒）
    known_hosts_path: Optional[str] = None
    password: Optional[str] = None  # bootstrap 用户的 SSH 密码（可选，默认走 agent/key）


@dataclass
class KeyConfig:
    """Controller key pair used by the automation user."""

    key_path: Optional[str] = None  # None 表示 ~/.ssh/ansible-automation-key


@dataclass
class AutomationUserConfig:
    """Heuristics for finding the automation account on the target."""

    default_name: str = "ansible"
    name_pattern: str = "ansible|automation|svc"
    uid_min: int = 1000
    uid_max: int = 65534


@dataclass
class InventoryConfig:
    """Location of the Ansible inventory on the controller."""

    path: Optional[str] = None  # None 表示自动探测


@dataclass
class PingConfig:
    """Settings for the final `ansible -m ping` smoke test."""

    enabled: bool = True
    timeout: int = 60


@dataclass
class InteractionConfig:
    """Configuration for user interaction."""

    mode: str = "cli"  # "cli" | "auto"


@dataclass
class RunConfig:
    """Mode switches, normally set from the CLI."""

    dry_run: bool = False
    verbose: bool = False


@dataclass
class AppConfig:
    """Top-level configuration."""

    ssh: SSHConfig = field(default_factory=SSHConfig)
    keys: KeyConfig = field(default_factory=KeyConfig)
    automation_user: AutomationUserConfig = field(default_factory=AutomationUserConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    ping: PingConfig = field(default_factory=PingConfig)
    interaction: InteractionConfig = field(default_factory=InteractionConfig)
    run: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str) -> Dict[str, Any]:
            data = payload.get(name, {}) or {}
            # 过滤掉以下划线开头的注释字段
            return {k: v for k, v in data.items() if not k.startswith("_")}

        return cls(
            ssh=SSHConfig(**{**SSHConfig().__dict__, **section("ssh")}),
            keys=KeyConfig(**{**KeyConfig().__dict__, **section("keys")}),
            automation_user=AutomationUserConfig(
                **{**AutomationUserConfig().__dict__, **section("automation_user")}
            ),
            inventory=InventoryConfig(
                **{**InventoryConfig().__dict__, **section("inventory")}
            ),
            ping=PingConfig(**{**PingConfig().__dict__, **section("ping")}),
            interaction=InteractionConfig(
                **{**InteractionConfig().__dict__, **section("interaction")}
            ),
            run=RunConfig(**{**RunConfig().__dict__, **section("run")}),
        )

    @property
    def resolved_key_path(self) -> Path:
        if self.keys.key_path:
            return Path(self.keys.key_path).expanduser()
        return default_key_path()

    @property
    def resolved_known_hosts_path(self) -> Path:
        if self.ssh.known_hosts_path:
            return Path(self.ssh.known_hosts_path).expanduser()
        return default_known_hosts_path()


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in _TRUE_VALUES


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply environment variables on top of file values.

    Environment variables (higher priority than config file):
    - ANSIBLE_SSH_KEY: controller private key path
    - ANSIBLE_INVENTORY: inventory file path
    - ANSIBLE_USER: default automation user name
    - AUTO_ONBOARD_SSH_PORT: SSH port
    - AUTO_ONBOARD_SSH_PASSWORD: SSH password for the bootstrap user
    - AUTO_ONBOARD_DRY_RUN / AUTO_ONBOARD_VERBOSE: mode switches
    """
    env_key = os.getenv("ANSIBLE_SSH_KEY")
    if env_key:
        config.keys.key_path = env_key

    env_inventory = os.getenv("ANSIBLE_INVENTORY")
    if env_inventory:
        config.inventory.path = env_inventory

    env_user = os.getenv("ANSIBLE_USER")
    if env_user:
        config.automation_user.default_name = env_user

    env_port = os.getenv("AUTO_ONBOARD_SSH_PORT")
    if env_port:
        config.ssh.port = int(env_port)

    env_password = os.getenv("AUTO_ONBOARD_SSH_PASSWORD")
    if env_password:
        config.ssh.password = env_password

    dry_run = _env_flag("AUTO_ONBOARD_DRY_RUN")
    if dry_run is not None:
        config.run.dry_run = dry_run

    verbose = _env_flag("AUTO_ONBOARD_VERBOSE")
    if verbose is not None:
        config.run.verbose = verbose

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path`, the default location, or built-in defaults.

    An explicit `path` that does not exist is an error; a missing default
    file is not.
    """
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return apply_env_overrides(config)
