"""
Pydantic models: key algorithm, subject fields, roles and issue targets.

The issue target is a closed set of tagged models, decided once at the CLI
boundary by `resolve_issue_target` and then passed as-is to the
orchestrator.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, ConfigDict, field_validator

from hancock.common.errors import ValidationFailure

MIN_RSA_BITS = 2048


# ---------------------------------------------------------------------------
# Key algorithm
# ---------------------------------------------------------------------------


class KeyKind(str, Enum):
    RSA = "rsa"
    ECDSA = "ecdsa"


class KeyAlgorithm(BaseModel):
    """RSA(bits) or ECDSA (SECP384R1). RSA is the default algorithm."""

    model_config = ConfigDict(frozen=True)

    kind: KeyKind
    bits: int = MIN_RSA_BITS

    @classmethod
    def rsa(cls, bits: int = MIN_RSA_BITS) -> "KeyAlgorithm":
        if bits < MIN_RSA_BITS:
            raise ValidationFailure(f"RSA key length must be at least {MIN_RSA_BITS} bits, got {bits}")
        return cls(kind=KeyKind.RSA, bits=bits)

    @classmethod
    def ecdsa(cls) -> "KeyAlgorithm":
        return cls(kind=KeyKind.ECDSA, bits=384)

    @classmethod
    def parse(cls, name: str, bits: int = MIN_RSA_BITS) -> "KeyAlgorithm":
        """Parse 'RSA' / 'ECDSA' case-insensitively. Key length is ignored for ECDSA."""
        value = (name or "").strip().lower()
        if value == KeyKind.RSA.value:
            return cls.rsa(bits)
        if value == KeyKind.ECDSA.value:
            return cls.ecdsa()
        raise ValidationFailure(f"{name!r} is not a valid key type ['rsa', 'ecdsa']")

    @property
    def is_default(self) -> bool:
        return self.kind is KeyKind.RSA

    @property
    def suffix(self) -> Optional[str]:
        """File name suffix, None for the default algorithm."""
        return None if self.is_default else self.kind.value

    def same_kind(self, other: "KeyAlgorithm") -> bool:
        return self.kind is other.kind

    def __str__(self) -> str:
        if self.kind is KeyKind.RSA:
            return f"RSA-{self.bits}"
        return "ECDSA-P384"


# One representative per kind, used when walking the store.
SUPPORTED_ALGORITHMS = (KeyAlgorithm.rsa(), KeyAlgorithm.ecdsa())


# ---------------------------------------------------------------------------
# Subject
# ---------------------------------------------------------------------------

_NAME_ORDER = (
    ("common_name", NameOID.COMMON_NAME),
    ("country", NameOID.COUNTRY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
)


class SubjectFields(BaseModel):
    """Distinguished-name fields. Absent (or blank) fields are left out of the name."""

    model_config = ConfigDict(frozen=True)

    common_name: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_name(self) -> x509.Name:
        """Build an x509.Name in the fixed order CN, C, ST, L, O, OU."""
        attrs = []
        for field, oid in _NAME_ORDER:
            value = getattr(self, field)
            if value is None:
                continue
            try:
                attrs.append(x509.NameAttribute(oid, value))
            except ValueError as exc:
                # e.g. country codes must be exactly two characters
                raise ValidationFailure(f"invalid {field.replace('_', ' ')}: {exc}") from exc
        return x509.Name(attrs)

    def with_default_common_name(self, name: str) -> "SubjectFields":
        if self.common_name is not None:
            return self
        return self.model_copy(update={"common_name": name})


# ---------------------------------------------------------------------------
# Roles / tiers
# ---------------------------------------------------------------------------


class Role(str, Enum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"
    LEAF = "leaf"

    @property
    def is_ca(self) -> bool:
        return self is not Role.LEAF


class Entity(BaseModel):
    """A logical owner of key material: the root, or a named intermediate / leaf."""

    model_config = ConfigDict(frozen=True)

    tier: Role
    name: Optional[str] = None

    @classmethod
    def root(cls) -> "Entity":
        return cls(tier=Role.ROOT)

    @classmethod
    def intermediate(cls, name: str) -> "Entity":
        return cls(tier=Role.INTERMEDIATE, name=name)

    @classmethod
    def leaf(cls, name: str) -> "Entity":
        return cls(tier=Role.LEAF, name=name)

    def __str__(self) -> str:
        if self.tier is Role.ROOT:
            return "root authority"
        return f"{self.tier.value} {self.name!r}"


# ---------------------------------------------------------------------------
# Issue targets
# ---------------------------------------------------------------------------


class IssueTargetBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    def subject(self) -> Entity:
        raise NotImplementedError

    def issuer(self) -> Entity:
        return Entity.root()


class IssueRoot(IssueTargetBase):
    kind: Literal["root"] = "root"

    def subject(self) -> Entity:
        return Entity.root()


class IssueIntermediate(IssueTargetBase):
    kind: Literal["intermediate"] = "intermediate"
    name: str

    def subject(self) -> Entity:
        return Entity.intermediate(self.name)


class IssueLeafUnderRoot(IssueTargetBase):
    kind: Literal["leaf"] = "leaf"
    name: str

    def subject(self) -> Entity:
        return Entity.leaf(self.name)


class IssueLeafUnderIntermediate(IssueTargetBase):
    kind: Literal["leaf under intermediate"] = "leaf under intermediate"
    name: str
    intermediate: str

    def subject(self) -> Entity:
        return Entity.leaf(self.name)

    def issuer(self) -> Entity:
        return Entity.intermediate(self.intermediate)


IssueTarget = Union[
    IssueRoot,
    IssueIntermediate,
    IssueLeafUnderRoot,
    IssueLeafUnderIntermediate,
]


def resolve_issue_target(
    common_name: Optional[str],
    intermediate: Optional[str],
) -> IssueTarget:
    """
    Pick the issue target from the optional CLI arguments.

      common name + intermediate -> leaf signed by that intermediate
      intermediate only          -> intermediate signed by the root
      common name only           -> leaf signed by the root

    Raises:
        ValidationFailure if neither is supplied.
    """
    common_name = common_name or None
    intermediate = intermediate or None

    if common_name and intermediate:
        return IssueLeafUnderIntermediate(name=common_name, intermediate=intermediate)
    if intermediate:
        return IssueIntermediate(name=intermediate)
    if common_name:
        return IssueLeafUnderRoot(name=common_name)

    raise ValidationFailure("issue needs a common name, an intermediate name, or both")
