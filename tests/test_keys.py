import getpass
import shutil
import stat
from pathlib import Path

import pytest

from auto_onboard.errors import InstallationError, PrivilegeError
from auto_onboard.local import LocalSession
from auto_onboard.provisioning import KeyInstaller, SudoCapability
from auto_onboard.provisioning.keys import build_inspect_script, build_install_script, parse_inspection
from auto_onboard.ssh import PublicKey

from helpers import PUBLIC_KEY_LINE, FakeExecutor, FakeTarget, fail, make_session

KEY = PublicKey.parse(PUBLIC_KEY_LINE)

needs_shell = pytest.mark.skipif(
    not (shutil.which("bash") and shutil.which("awk")), reason="bash and awk required"
)


def ready_session(tmp_path: Path, capability=SudoCapability.PASSWORDLESS, **overrides):
    session = make_session(tmp_path, **overrides)
    session.target.resolve_automation_user("ansible", "/home/ansible")
    session.set_capability(capability)
    return session


def run_install(home: Path) -> str:
    ssh_dir = home / ".ssh"
    script = build_install_script(getpass.getuser(), str(ssh_dir), str(ssh_dir / "authorized_keys"), KEY)
    result = LocalSession().run(script, timeout=30)
    assert result.ok, result.output
    return result.stdout


def key_lines(authorized_keys: Path):
    return [line for line in authorized_keys.read_text().splitlines() if KEY.key_data in line]


@needs_shell
def test_install_script_is_idempotent(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()

    assert "KEY_APPENDED" in run_install(home)
    assert "KEY_PRESENT" in run_install(home)
    assert "KEY_PRESENT" in run_install(home)

    authorized_keys = home / ".ssh" / "authorized_keys"
    assert key_lines(authorized_keys) == [PUBLIC_KEY_LINE]
    assert stat.S_IMODE((home / ".ssh").stat().st_mode) == 0o700
    assert stat.S_IMODE(authorized_keys.stat().st_mode) == 0o600


@needs_shell
def test_existing_key_with_options_and_other_comment_is_recognised(tmp_path: Path):
    ssh_dir = tmp_path / "home" / ".ssh"
    ssh_dir.mkdir(parents=True)
    authorized_keys = ssh_dir / "authorized_keys"
    existing = f'from="10.0.0.0/8" {KEY.identity} renamed-comment\n'
    authorized_keys.write_text(existing)

    assert "KEY_PRESENT" in run_install(tmp_path / "home")
    assert authorized_keys.read_text() == existing


@needs_shell
def test_missing_trailing_newline_does_not_merge_lines(tmp_path: Path):
    ssh_dir = tmp_path / "home" / ".ssh"
    ssh_dir.mkdir(parents=True)
    authorized_keys = ssh_dir / "authorized_keys"
    authorized_keys.write_text("ssh-rsa AAAAother someone@else")

    run_install(tmp_path / "home")

    assert authorized_keys.read_text().splitlines() == ["ssh-rsa AAAAother someone@else", PUBLIC_KEY_LINE]


@needs_shell
def test_inspect_script_reports_state(tmp_path: Path):
    ssh_dir = tmp_path / ".ssh"
    script = build_inspect_script(str(ssh_dir), str(ssh_dir / "authorized_keys"), KEY)
    facts = parse_inspection(LocalSession().run(script).stdout)
    assert facts == {"ssh_dir": "missing", "authorized_keys": "missing", "key": "missing"}
    assert not ssh_dir.exists()


def test_inspect_script_has_no_mutating_commands():
    script = build_inspect_script("/home/ansible/.ssh", "/home/ansible/.ssh/authorized_keys", KEY)
    for token in ("mkdir", "chmod", "chown", "touch", ">>", "printf"):
        assert token not in script


def test_installer_runs_one_privileged_transaction_as_bootstrap_user(tmp_path: Path):
    session = ready_session(tmp_path)
    target = FakeTarget()
    executor = FakeExecutor(target)

    first = KeyInstaller(executor).install(session)
    second = KeyInstaller(executor).install(session)

    assert first.appended and not second.appended
    assert first.authorized_keys == "/home/ansible/.ssh/authorized_keys"
    assert len(target.authorized_keys) == 1
    assert all(call.privileged and call.identity == "vagrant" for call in executor.calls)


def test_installer_feeds_cached_secret(tmp_path: Path):
    session = make_session(tmp_path)
    session.target.resolve_automation_user("ansible", "/home/ansible")
    session.secret.set("s3cret")
    session.set_capability(SudoCapability.PASSWORD_CACHED)
    executor = FakeExecutor(FakeTarget(sudo="password"))

    KeyInstaller(executor).install(session)

    assert executor.calls[0].secret == "s3cret"


def test_installer_refuses_without_capability(tmp_path: Path):
    session = ready_session(tmp_path, capability=SudoCapability.NONE)
    executor = FakeExecutor(FakeTarget())

    with pytest.raises(PrivilegeError):
        KeyInstaller(executor).install(session)
    assert executor.calls == []


def test_remote_failure_is_an_installation_error(tmp_path: Path):
    session = ready_session(tmp_path)
    executor = FakeExecutor(lambda call: fail("chown: invalid user"))

    with pytest.raises(InstallationError) as excinfo:
        KeyInstaller(executor).install(session)
    assert "/home/ansible/.ssh/authorized_keys" in excinfo.value.location
    assert "chown: invalid user" in excinfo.value.details


def test_dry_run_only_inspects(tmp_path: Path):
    session = ready_session(tmp_path, dry_run=True)
    target = FakeTarget()
    executor = FakeExecutor(target)

    result = KeyInstaller(executor).install(session)

    assert result.dry_run
    assert target.authorized_keys == []
    assert not any(call.command.startswith("set -e") for call in executor.calls)
    assert any("append ssh-ed25519" in action for action in session.planned_actions)
