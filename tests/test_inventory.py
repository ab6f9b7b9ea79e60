from pathlib import Path

import pytest

from auto_onboard.errors import RegistryError
from auto_onboard.provisioning import InventoryManager, detect_inventory_path
from auto_onboard.provisioning.inventory import address_pattern

from helpers import FakeLocal, local_result, make_session


def manager_for(session, local=None) -> InventoryManager:
    return InventoryManager(session.config.inventory_path, local=local or FakeLocal())


def test_register_creates_file_with_header(tmp_path: Path):
    session = make_session(tmp_path)
    inventory = manager_for(session)

    line = inventory.register(session, "web01")

    lines = session.config.inventory_path.read_text().splitlines()
    assert lines[0] == "# Ansible Inventory File"
    assert lines[1].startswith("# Created: ")
    assert lines[2] == "# Format: IP_ADDRESS   # HOSTNAME - DESCRIPTION"
    assert lines[-1] == line
    assert line.startswith("192.168.56.10   # web01 - Added ")
    assert session.inventory_mutated
    assert session.inserted_address == "192.168.56.10"


def test_register_is_idempotent(tmp_path: Path):
    first = make_session(tmp_path)
    inventory = manager_for(first)
    inventory.register(first, "web01")
    before = first.config.inventory_path.read_text()

    second = make_session(tmp_path)
    assert inventory.register(second, "web01") is None

    assert first.config.inventory_path.read_text() == before
    assert not second.inventory_mutated
    assert second.compensations == []


def test_address_prefix_is_not_a_match(tmp_path: Path):
    session = make_session(tmp_path, address="10.0.0.1")
    path = session.config.inventory_path
    path.parent.mkdir(parents=True)
    path.write_text("10.0.0.10   # other - Added 2024-01-01 00:00:00\n")
    inventory = manager_for(session)

    assert not inventory.contains("10.0.0.1")
    inventory.register(session, "web01")
    assert inventory.contains("10.0.0.1")

    assert inventory.remove("10.0.0.1")
    assert path.read_text().splitlines() == ["10.0.0.10   # other - Added 2024-01-01 00:00:00"]


def test_comment_lines_are_never_matched(tmp_path: Path):
    path = tmp_path / "hosts"
    path.write_text("# 192.168.56.10 was retired\n192.168.56.10\n")
    inventory = InventoryManager(path, local=FakeLocal())
    assert inventory.find("192.168.56.10") == ["192.168.56.10"]

    inventory.remove("192.168.56.10")
    assert path.read_text() == "# 192.168.56.10 was retired\n"


def test_address_pattern_matches_whole_token():
    pattern = address_pattern("10.0.0.1")
    assert pattern.match("10.0.0.1")
    assert pattern.match("10.0.0.1\tansible_user=ansible")
    assert not pattern.match("10.0.0.10")
    assert not pattern.match("10.0.0.1.5")


def test_compensation_removes_only_the_inserted_line(tmp_path: Path):
    session = make_session(tmp_path)
    path = session.config.inventory_path
    path.parent.mkdir(parents=True)
    path.write_text("[web]\n10.0.0.7   # db - Added 2024-01-01 00:00:00")
    inventory = manager_for(session)

    inventory.register(session, "web01")
    assert path.read_text().splitlines()[1] == "10.0.0.7   # db - Added 2024-01-01 00:00:00"

    session.compensations.pop().undo()
    assert path.read_text().splitlines() == ["[web]", "10.0.0.7   # db - Added 2024-01-01 00:00:00"]


def test_dry_run_writes_nothing(tmp_path: Path):
    session = make_session(tmp_path, dry_run=True)
    local = FakeLocal()
    inventory = manager_for(session, local)

    line = inventory.register(session, "web01")

    assert line.startswith("192.168.56.10   # web01")
    assert not session.config.inventory_path.parent.exists()
    assert not session.inventory_mutated
    assert local.commands == []
    assert any(action.startswith("append to") for action in session.planned_actions)


def test_sudo_failure_is_a_registry_error(tmp_path: Path):
    local = FakeLocal(responder=lambda argv, data: local_result(argv, stderr="sudo: a password is required", status=1))
    inventory = InventoryManager(tmp_path / "hosts", local=local)

    with pytest.raises(RegistryError) as excinfo:
        inventory._sudo(["tee", str(tmp_path / "hosts")], action="create", input_data="x")

    assert local.commands[0][:2] == ["sudo", "-n"]
    assert "password is required" in excinfo.value.details


def test_unwritable_inventory_carries_manual_line(tmp_path: Path, monkeypatch):
    session = make_session(tmp_path)
    local = FakeLocal(responder=lambda argv, data: local_result(argv, status=1))
    inventory = manager_for(session, local)

    def deny(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "mkdir", deny)

    with pytest.raises(RegistryError) as excinfo:
        inventory.register(session, "web01")

    assert "192.168.56.10   # web01 - Added" in excinfo.value.hint
    assert not session.inventory_mutated


def test_unreadable_inventory_is_read_with_sudo(tmp_path: Path, monkeypatch):
    path = tmp_path / "hosts"
    path.write_text("")
    local = FakeLocal(responder=lambda argv, data: local_result(argv, stdout="192.168.56.10   # web01"))
    inventory = InventoryManager(path, local=local)

    def deny(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "read_text", deny)

    assert inventory.contains("192.168.56.10")
    assert local.commands == [["sudo", "-n", "cat", str(path)]]


def test_detect_inventory_from_ansible_config(tmp_path: Path):
    hosts = tmp_path / "hosts"
    hosts.write_text("")
    dump = f"DEFAULT_HOST_LIST(/etc/ansible/ansible.cfg) = ['{hosts}']\nDEFAULT_FORKS(default) = 5"
    local = FakeLocal(responder=lambda argv, data: local_result(argv, stdout=dump))

    assert detect_inventory_path(local) == hosts
    assert local.commands == [["ansible-config", "dump"]]


def test_detect_inventory_falls_back_without_ansible_config(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "auto_onboard.provisioning.inventory.COMMON_INVENTORY_LOCATIONS", (Path("./inventory"),)
    )
    local = FakeLocal(tools=())

    assert detect_inventory_path(local) == Path("/etc/ansible/hosts")

    (tmp_path / "inventory").write_text("")
    assert detect_inventory_path(local) == Path("inventory")


def test_remove_keeps_backup_and_exact_bytes(tmp_path: Path):
    path = tmp_path / "hosts"
    original = "[web]\r\n10.0.0.7   # db - Added 2024-01-01 00:00:00\r\n192.168.56.10   # web01\r\n# tail"
    path.write_bytes(original.encode("utf-8"))
    inventory = InventoryManager(path, local=FakeLocal())

    assert inventory.remove("192.168.56.10")

    assert path.read_bytes() == b"[web]\r\n10.0.0.7   # db - Added 2024-01-01 00:00:00\r\n# tail"
    assert inventory.backup_path.read_bytes() == original.encode("utf-8")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["hosts", "hosts.bak"]


def test_failed_rewrite_leaves_original_untouched(tmp_path: Path, monkeypatch):
    path = tmp_path / "hosts"
    original = "10.0.0.7   # db - Added 2024-01-01 00:00:00\n192.168.56.10   # web01\n"
    path.write_text(original)
    inventory = InventoryManager(path, local=FakeLocal())

    def disk_full(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("auto_onboard.provisioning.inventory.os.replace", disk_full)

    with pytest.raises(OSError):
        inventory.remove("192.168.56.10")

    assert path.read_text() == original
    assert not any(p.name.startswith(".hosts.") for p in tmp_path.iterdir())


def test_unwritable_inventory_is_rewritten_with_sudo_sed(tmp_path: Path, monkeypatch):
    path = tmp_path / "hosts"
    path.write_text("10.0.0.5   # db\n10.0.0.50   # other\n")
    local = FakeLocal(responder=lambda argv, data: local_result(argv))
    inventory = InventoryManager(path, local=local)

    def deny(*args, **kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr("auto_onboard.provisioning.inventory.shutil.copy2", deny)

    assert inventory.remove("10.0.0.5")

    assert local.commands == [[
        "sudo", "-n", "sed", "-i.bak", "-E", r"/^10\.0\.0\.5([[:space:]]|$)/d", str(path),
    ]]
    assert path.read_text() == "10.0.0.5   # db\n10.0.0.50   # other\n"
