from pathlib import Path

from auto_onboard.errors import PingWarning
from auto_onboard.provisioning import PingVerifier

from helpers import FakeLocal, local_result, make_session, ping_failure, ping_success


def resolved_session(tmp_path: Path, **overrides):
    session = make_session(tmp_path, **overrides)
    session.target.resolve_automation_user("ansible", "/home/ansible")
    return session


def test_success_via_inventory(tmp_path: Path):
    session = resolved_session(tmp_path)
    local = FakeLocal(responder=ping_success)

    assert PingVerifier(local).verify(session) is None
    assert local.commands == [[
        "ansible", "192.168.56.10", "-m", "ping",
        "--user", "ansible",
        "--private-key", str(session.key_pair.private_path),
    ]]
    assert session.warnings == []


def test_falls_back_to_adhoc_inventory(tmp_path: Path):
    session = resolved_session(tmp_path)

    def respond(argv, data):
        return ping_success(argv) if argv[1].endswith(",") else ping_failure(argv)

    local = FakeLocal(responder=respond)

    assert PingVerifier(local).verify(session) is None
    assert [argv[1] for argv in local.commands] == ["192.168.56.10", "192.168.56.10,"]


def test_failure_is_only_a_warning(tmp_path: Path):
    session = resolved_session(tmp_path)
    local = FakeLocal(responder=ping_failure)

    warning = PingVerifier(local).verify(session)

    assert isinstance(warning, PingWarning)
    assert not warning.fatal
    assert session.warnings == [warning]
    assert "-vvv" in warning.hint


def test_missing_ansible_is_a_warning(tmp_path: Path):
    session = resolved_session(tmp_path)
    local = FakeLocal(tools=())

    warning = PingVerifier(local).verify(session)

    assert "not installed" in warning.message
    assert local.commands == []


def test_verbose_adds_vvv(tmp_path: Path):
    session = resolved_session(tmp_path, verbose=True)
    assert PingVerifier(FakeLocal()).build_command(session, "192.168.56.10")[-1] == "-vvv"


def test_dry_run_reports_command_only(tmp_path: Path):
    session = resolved_session(tmp_path, dry_run=True)
    local = FakeLocal(responder=lambda argv, data: local_result(argv, status=1))

    assert PingVerifier(local).verify(session) is None
    assert local.commands == []
    assert session.planned_actions[0].startswith("run ansible 192.168.56.10 -m ping")
