import os
from pathlib import Path

import pytest

from hancock.common.errors import StorageFailure, ValidationFailure
from hancock.common.models import Entity, KeyAlgorithm, Role
from hancock.storage.paths import (
    Catalog,
    intermediate_paths,
    leaf_paths,
    resolve_base_dir,
    root_paths,
    validate_name,
)

BASE = Path("/srv/ca")
RSA = KeyAlgorithm.rsa()
EC = KeyAlgorithm.ecdsa()


def test_root_paths():
    assert root_paths(BASE, RSA) == (BASE / "authority.pem", None, BASE / "authority.crt")
    assert root_paths(BASE, EC) == (BASE / "authority.ecdsa.pem", None, BASE / "authority.ecdsa.crt")


def test_leaf_paths():
    paths = leaf_paths(BASE, "svc.internal", RSA)
    assert paths.key == BASE / "svc.internal" / "svc.internal.pem"
    assert paths.csr == BASE / "svc.internal" / "svc.internal.csr"
    assert paths.cert == BASE / "svc.internal" / "svc.internal.crt"

    ec_paths = leaf_paths(BASE, "svc.internal", EC)
    assert ec_paths.cert == BASE / "svc.internal" / "svc.internal.ecdsa.crt"


def test_intermediate_paths():
    paths = intermediate_paths(BASE, "ops", EC)
    assert paths.key == BASE / "intermediates" / "ops" / "ops.ecdsa.pem"
    assert paths.csr == BASE / "intermediates" / "ops" / "ops.ecdsa.csr"
    assert paths.cert == BASE / "intermediates" / "ops" / "ops.ecdsa.crt"


def test_resolve_base_dir_expands_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_base_dir("~/.hancock") == tmp_path / ".hancock"


def test_resolve_base_dir_is_absolute_and_normalized(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    assert resolve_base_dir("a/../store") == tmp_path / "store"


@pytest.mark.parametrize("name", ["", " ", "a/b", "..", ".hidden", " padded"])
def test_validate_name_rejects(name):
    with pytest.raises(ValidationFailure):
        validate_name(name, Role.LEAF)


def test_intermediates_is_reserved_for_leaves_only():
    with pytest.raises(ValidationFailure):
        validate_name("intermediates", Role.LEAF)
    assert validate_name("intermediates", Role.INTERMEDIATE) == "intermediates"


def test_catalog_paths_validate_names(tmp_path):
    catalog = Catalog(str(tmp_path))
    with pytest.raises(ValidationFailure):
        catalog.paths(Entity.leaf("../escape"), RSA)


def test_catalog_refuses_a_file_as_base_dir(tmp_path):
    target = tmp_path / "not-a-dir"
    target.write_text("x")
    with pytest.raises(StorageFailure):
        Catalog(str(target))


def test_scan_of_missing_store_is_empty(tmp_path):
    assert Catalog(str(tmp_path / "missing")).scan() == []


def _touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("placeholder")


def test_scan_orders_tiers_and_skips_noise(tmp_path):
    _touch(tmp_path / "authority.crt")
    _touch(tmp_path / "authority.ecdsa.crt")
    _touch(tmp_path / "intermediates" / "ops" / "ops.crt")
    _touch(tmp_path / "web" / "web.ecdsa.crt")
    _touch(tmp_path / "api" / "api.crt")
    _touch(tmp_path / "api" / "api.ecdsa.crt")
    _touch(tmp_path / "empty" / "unrelated.txt")
    _touch(tmp_path / ".git" / ".git.crt")

    entries = Catalog(str(tmp_path)).scan()
    described = [(e.entity.tier, e.entity.name, e.algorithm.suffix) for e in entries]
    assert described == [
        (Role.ROOT, None, None),
        (Role.ROOT, None, "ecdsa"),
        (Role.INTERMEDIATE, "ops", None),
        (Role.LEAF, "api", None),
        (Role.LEAF, "api", "ecdsa"),
        (Role.LEAF, "web", "ecdsa"),
    ]


def test_scan_can_be_limited_to_tiers(tmp_path):
    _touch(tmp_path / "authority.crt")
    _touch(tmp_path / "api" / "api.crt")
    entries = Catalog(str(tmp_path)).scan(tiers=[Role.LEAF])
    assert [e.entity for e in entries] == [Entity.leaf("api")]
    assert os.path.basename(entries[0].paths.cert) == "api.crt"
