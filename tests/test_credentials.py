import os
import stat
from pathlib import Path

import pytest

from auto_onboard.errors import CredentialError
from auto_onboard.ssh import LocalKeyPair, PublicKey

from helpers import PUBLIC_KEY_LINE, write_key_pair


def test_public_key_identity_excludes_comment():
    key = PublicKey.parse("ssh-ed25519 AAAAkeydata ansible automation key\n")
    assert key.algorithm == "ssh-ed25519"
    assert key.key_data == "AAAAkeydata"
    assert key.comment == "ansible automation key"
    assert key.identity == "ssh-ed25519 AAAAkeydata"
    assert key.line == "ssh-ed25519 AAAAkeydata ansible automation key"


def test_public_key_without_comment():
    key = PublicKey.parse("ssh-rsa AAAAB3Nza")
    assert key.comment == ""
    assert key.line == "ssh-rsa AAAAB3Nza"


def test_public_key_rejects_garbage():
    with pytest.raises(ValueError):
        PublicKey.parse("not-a-key")


def test_load_key_pair(tmp_path: Path):
    pair = write_key_pair(tmp_path)
    assert pair.public_path == tmp_path / "ansible-automation-key.pub"
    assert pair.public_key.line == PUBLIC_KEY_LINE


def test_missing_private_key_suggests_keygen(tmp_path: Path):
    with pytest.raises(CredentialError) as excinfo:
        LocalKeyPair.load(tmp_path / "absent")
    assert "ssh-keygen -t ed25519" in excinfo.value.hint
    assert excinfo.value.kind == "CredentialError"


def test_missing_public_key(tmp_path: Path):
    private_path = tmp_path / "key"
    private_path.write_text("private")
    with pytest.raises(CredentialError) as excinfo:
        LocalKeyPair.load(private_path)
    assert str(tmp_path / "key.pub") in excinfo.value.message


def test_loose_private_key_mode_is_tightened(tmp_path: Path):
    pair = write_key_pair(tmp_path)
    os.chmod(pair.private_path, 0o644)

    LocalKeyPair.load(pair.private_path)

    assert stat.S_IMODE(pair.private_path.stat().st_mode) == 0o600


def test_strict_private_key_mode_is_left_alone(tmp_path: Path):
    pair = write_key_pair(tmp_path)
    os.chmod(pair.private_path, 0o400)

    LocalKeyPair.load(pair.private_path)

    assert stat.S_IMODE(pair.private_path.stat().st_mode) == 0o400
