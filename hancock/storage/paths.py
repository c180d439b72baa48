"""
Path layout of the CA store and the catalog built on top of it.

Layout (the algorithm suffix is omitted for the default algorithm, RSA):

    <base>/authority[.<alg>].pem                                root key
    <base>/authority[.<alg>].crt                                root certificate
    <base>/intermediates/<name>/<name>[.<alg>].{pem,csr,crt}    intermediates
    <base>/<name>/<name>[.<alg>].{pem,csr,crt}                  leaves

The path functions are pure. `Catalog` is the single place the
orchestrator derives locations from: it validates entity names before
handing out paths and enumerates what is actually on disk.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional

from hancock.common.errors import StorageFailure, ValidationFailure
from hancock.common.models import SUPPORTED_ALGORITHMS, Entity, KeyAlgorithm, Role

log = logging.getLogger(__name__)

ROOT_STEM = "authority"
INTERMEDIATES_DIR = "intermediates"

KEY_EXT = "pem"
CSR_EXT = "csr"
CERT_EXT = "crt"


class ArtifactPaths(NamedTuple):
    key: Path
    csr: Optional[Path]  # roots have no CSR
    cert: Path


def resolve_base_dir(raw: str) -> Path:
    """Expand a leading ~ and return an absolute, normalized path."""
    return Path(os.path.abspath(os.path.expanduser(raw)))


def _file_name(stem: str, algorithm: KeyAlgorithm, ext: str) -> str:
    if algorithm.suffix is None:
        return f"{stem}.{ext}"
    return f"{stem}.{algorithm.suffix}.{ext}"


def root_paths(base_dir: Path, algorithm: KeyAlgorithm) -> ArtifactPaths:
    return ArtifactPaths(
        key=base_dir / _file_name(ROOT_STEM, algorithm, KEY_EXT),
        csr=None,
        cert=base_dir / _file_name(ROOT_STEM, algorithm, CERT_EXT),
    )


def _named_paths(directory: Path, name: str, algorithm: KeyAlgorithm) -> ArtifactPaths:
    return ArtifactPaths(
        key=directory / _file_name(name, algorithm, KEY_EXT),
        csr=directory / _file_name(name, algorithm, CSR_EXT),
        cert=directory / _file_name(name, algorithm, CERT_EXT),
    )


def leaf_paths(base_dir: Path, name: str, algorithm: KeyAlgorithm) -> ArtifactPaths:
    return _named_paths(base_dir / name, name, algorithm)


def intermediate_paths(base_dir: Path, name: str, algorithm: KeyAlgorithm) -> ArtifactPaths:
    return _named_paths(base_dir / INTERMEDIATES_DIR / name, name, algorithm)


def artifact_paths(base_dir: Path, entity: Entity, algorithm: KeyAlgorithm) -> ArtifactPaths:
    if entity.tier is Role.ROOT:
        return root_paths(base_dir, algorithm)
    if entity.tier is Role.INTERMEDIATE:
        return intermediate_paths(base_dir, entity.name, algorithm)
    return leaf_paths(base_dir, entity.name, algorithm)


def validate_name(name: Optional[str], tier: Role) -> str:
    """
    Check that `name` can be used as a storage key for `tier`.

    Raises:
        ValidationFailure for empty names, names containing a path
        separator, hidden names, and the reserved leaf name 'intermediates'.
    """
    if not name or not name.strip():
        raise ValidationFailure(f"{tier.value} name must not be empty")
    if name != name.strip():
        raise ValidationFailure(f"{tier.value} name {name!r} has surrounding whitespace")
    if "/" in name or "\\" in name or "\x00" in name:
        raise ValidationFailure(f"{tier.value} name {name!r} must not contain a path separator")
    if name.startswith("."):
        raise ValidationFailure(f"{tier.value} name {name!r} must not start with '.'")
    if tier is Role.LEAF and name == INTERMEDIATES_DIR:
        raise ValidationFailure(f"{name!r} is reserved for intermediate authorities")
    return name


@dataclass(frozen=True)
class CatalogEntry:
    entity: Entity
    algorithm: KeyAlgorithm
    paths: ArtifactPaths


class Catalog:
    """
    Explicit view of the CA store: (tier, name, algorithm) -> artifact paths.

    All path derivation goes through `paths`, which validates the entity
    name first, so two call sites can never disagree on where an artifact
    lives.
    """

    def __init__(self, base_dir: str):
        self.base_dir = resolve_base_dir(base_dir)
        if self.base_dir.exists() and not self.base_dir.is_dir():
            raise StorageFailure(f"base directory {self.base_dir} is not a directory")

    def paths(self, entity: Entity, algorithm: KeyAlgorithm) -> ArtifactPaths:
        if entity.tier is not Role.ROOT:
            validate_name(entity.name, entity.tier)
        return artifact_paths(self.base_dir, entity, algorithm)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def scan(self, tiers: Iterable[Role] = (Role.ROOT, Role.INTERMEDIATE, Role.LEAF)) -> List[CatalogEntry]:
        """
        Enumerate certificates present on disk: roots (one per algorithm),
        then intermediates, then leaves, names sorted within each tier.
        """
        tiers = set(tiers)
        entries: List[CatalogEntry] = []
        if not self.base_dir.is_dir():
            log.debug("base directory %s does not exist, nothing to scan", self.base_dir)
            return entries

        if Role.ROOT in tiers:
            entries.extend(self._entries_for(Entity.root()))

        if Role.INTERMEDIATE in tiers:
            for name in self._subdirectories(self.base_dir / INTERMEDIATES_DIR, Role.INTERMEDIATE):
                entries.extend(self._entries_for(Entity.intermediate(name)))

        if Role.LEAF in tiers:
            for name in self._subdirectories(self.base_dir, Role.LEAF):
                entries.extend(self._entries_for(Entity.leaf(name)))

        return entries

    def _entries_for(self, entity: Entity) -> List[CatalogEntry]:
        found = []
        for algorithm in SUPPORTED_ALGORITHMS:
            paths = artifact_paths(self.base_dir, entity, algorithm)
            if paths.cert.is_file():
                found.append(CatalogEntry(entity=entity, algorithm=algorithm, paths=paths))
        return found

    @staticmethod
    def _subdirectories(directory: Path, tier: Role) -> List[str]:
        if not directory.is_dir():
            return []
        names = []
        for child in sorted(directory.iterdir()):
            if not child.is_dir():
                continue
            try:
                names.append(validate_name(child.name, tier))
            except ValidationFailure:
                log.debug("skipping %s: not a %s directory", child, tier.value)
        return names
