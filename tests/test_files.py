import stat

import pytest

from hancock.common.errors import NotFound, StorageFailure
from hancock.storage import files


def _mode(path):
    return stat.S_IMODE(path.stat().st_mode)


def test_ensure_writable_dir_creates_owner_only_directory(tmp_path):
    target = tmp_path / "a" / "b"
    files.ensure_writable_dir(target)
    assert target.is_dir()
    assert _mode(target) == 0o700


def test_ensure_writable_dir_restricts_every_created_level(tmp_path):
    target = tmp_path / "store" / "intermediates" / "ops"
    files.ensure_writable_dir(target)
    assert _mode(tmp_path / "store") == 0o700
    assert _mode(tmp_path / "store" / "intermediates") == 0o700
    assert _mode(target) == 0o700


def test_ensure_writable_dir_refuses_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    blocker.chmod(0o644)
    with pytest.raises(StorageFailure):
        files.ensure_writable_dir(blocker)
    assert _mode(blocker) == 0o644


def test_ensure_writable_dir_tightens_existing_directory(tmp_path):
    target = tmp_path / "open"
    target.mkdir(mode=0o755)
    files.ensure_writable_dir(target)
    assert _mode(target) == 0o700


def test_write_private_is_owner_only(tmp_path):
    target = tmp_path / "store" / "authority.pem"
    files.write_private(target, b"secret")
    assert target.read_bytes() == b"secret"
    assert _mode(target) == 0o600
    assert _mode(target.parent) == 0o700


def test_write_private_replaces_and_tightens_existing_file(tmp_path):
    target = tmp_path / "cert.crt"
    target.write_bytes(b"old")
    target.chmod(0o644)
    files.write_private(target, b"new")
    assert target.read_bytes() == b"new"
    assert _mode(target) == 0o600
    assert [p.name for p in tmp_path.iterdir()] == ["cert.crt"]


def test_write_private_into_a_file_path_fails(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    with pytest.raises(StorageFailure):
        files.write_private(blocker / "child.pem", b"x")


def test_read_bytes_missing_file(tmp_path):
    with pytest.raises(NotFound) as excinfo:
        files.read_bytes(tmp_path / "nope.crt", what="certificate")
    assert "certificate not found" in str(excinfo.value)
