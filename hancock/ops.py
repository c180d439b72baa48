"""
Issuance and renewal workflows for the CA store.

    ca = CertificateAuthority("~/.hancock", passphrase="s3cret")
    ca.init(SubjectFields(common_name="Internal Root"), KeyAlgorithm.rsa(4096))
    ca.issue(IssueLeafUnderRoot(name="svc.internal"), SubjectFields(), [], KeyAlgorithm.rsa())
    for info in ca.list_certificates():
        print(info)
    ca.renew()

CA keys (root and intermediates) are encrypted with the passphrase when
one is given. Leaf keys are stored unencrypted so services can load them
directly.

Files are written only once every step before them succeeded: a key is
persisted when generated, the CSR once built, the certificate once signed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from cryptography import x509

from hancock.common.errors import NotFound, ValidationFailure
from hancock.common.models import (
    Entity,
    IssueRoot,
    IssueTarget,
    KeyAlgorithm,
    KeyKind,
    Role,
    SubjectFields,
)
from hancock.common.utils import describe_expiry, utc_now, whole_days
from hancock.crypto import keys, pki, req
from hancock.storage.paths import ArtifactPaths, Catalog, CatalogEntry

log = logging.getLogger(__name__)

ROOT_LIFETIME_DAYS = 365 * 10
INTERMEDIATE_LIFETIME_DAYS = 365 * 2
LEAF_LIFETIME_DAYS = 90
RENEWAL_THRESHOLD = timedelta(days=30)

UNKNOWN_CN = "Unknown CN"


@dataclass
class InitResult:
    paths: ArtifactPaths
    certificate: x509.Certificate
    key_created: bool
    cert_created: bool


@dataclass
class IssueResult:
    entity: Entity
    issuer: Entity
    paths: ArtifactPaths
    certificate: x509.Certificate
    key_created: bool
    san: req.SanOutcome


@dataclass
class CertificateInfo:
    entry: CatalogEntry
    certificate: x509.Certificate
    common_name: str
    expires: str
    lifetime_days: int

    def __str__(self) -> str:
        return f"{self.common_name} - expires {self.expires} (originally {self.lifetime_days} days)"


@dataclass
class RenewalDecision:
    entry: CatalogEntry
    common_name: str
    days_left: int
    expires: str
    lifetime_days: int
    renewed: bool
    reason: str
    certificate: Optional[x509.Certificate] = None


class CertificateAuthority:
    """Init / issue / list / renew against one CA store directory."""

    def __init__(self, base_dir: str, passphrase: Optional[str] = None):
        self.catalog = Catalog(base_dir)
        self.passphrase = passphrase or None

    @property
    def base_dir(self):
        return self.catalog.base_dir

    def _key_passphrase(self, entity: Entity) -> Optional[str]:
        return self.passphrase if entity.tier.is_ca else None

    # ------------------------------------------------------------------
    # init
    # ------------------------------------------------------------------

    def init(
        self,
        subject: SubjectFields,
        algorithm: KeyAlgorithm,
        lifetime_days: int = ROOT_LIFETIME_DAYS,
    ) -> InitResult:
        """
        Create the root key and self-issued root certificate for `algorithm`,
        filling in whichever of the two is missing. An existing root
        certificate is never overwritten.
        """
        root = IssueRoot().subject()
        paths = self.catalog.paths(root, algorithm)

        key, key_created = keys.load_or_generate(paths.key, algorithm, self._key_passphrase(root))

        if paths.cert.exists():
            cert = pki.load(paths.cert)
            if not keys.public_keys_match(cert.public_key(), key.public_key()):
                raise ValidationFailure(f"root certificate {paths.cert} does not match key {paths.key}")
            log.info("root certificate %s already exists, leaving it untouched", paths.cert)
            return InitResult(paths=paths, certificate=cert, key_created=key_created, cert_created=False)

        cert = pki.issue_root(lifetime_days, subject, key)
        pki.save(paths.cert, cert)
        return InitResult(paths=paths, certificate=cert, key_created=key_created, cert_created=True)

    # ------------------------------------------------------------------
    # issue
    # ------------------------------------------------------------------

    def _load_issuer(self, issuer: Entity, algorithm: KeyAlgorithm) -> Tuple[x509.Certificate, keys.PrivateKey]:
        paths = self.catalog.paths(issuer, algorithm)
        cert = pki.load(paths.cert)
        if not pki.role_of(cert).is_ca:
            raise ValidationFailure(f"{paths.cert} is not a CA certificate")

        # the certificate exists, so its key must as well
        if not paths.key.exists():
            raise NotFound(str(paths.key), what=f"{issuer} private key")
        key, _ = keys.load_or_generate(paths.key, algorithm, self._key_passphrase(issuer))
        if not keys.public_keys_match(cert.public_key(), key.public_key()):
            raise ValidationFailure(f"{issuer} key {paths.key} does not match its certificate {paths.cert}")
        return cert, key

    def issue(
        self,
        target: IssueTarget,
        subject: SubjectFields,
        san_list: Iterable[str],
        algorithm: KeyAlgorithm,
        lifetime_days: Optional[int] = None,
    ) -> IssueResult:
        """
        Issue (or re-issue) the certificate described by `target`.

        The issuer certificate must exist; the subject's key and CSR are
        loaded when present and created otherwise.
        """
        if isinstance(target, IssueRoot):
            raise ValidationFailure("the root certificate is created with init, not issue")

        entity = target.subject()
        issuer = target.issuer()
        paths = self.catalog.paths(entity, algorithm)

        if entity.tier is Role.LEAF:
            subject = subject.model_copy(update={"common_name": entity.name})
            default_lifetime = LEAF_LIFETIME_DAYS
        else:
            subject = subject.with_default_common_name(entity.name)
            default_lifetime = INTERMEDIATE_LIFETIME_DAYS
        if lifetime_days is None:
            lifetime_days = default_lifetime

        issuer_cert, issuer_key = self._load_issuer(issuer, algorithm)

        key, key_created = keys.load_or_generate(paths.key, algorithm, self._key_passphrase(entity))
        built = req.load_or_build(paths.csr, subject, list(san_list), key)

        cert = pki.issue(lifetime_days, built.csr, entity.tier, issuer_cert, issuer_key)
        pki.save(paths.cert, cert)
        log.info("issued %s signed by %s for %d days", entity, issuer, lifetime_days)

        return IssueResult(
            entity=entity,
            issuer=issuer,
            paths=paths,
            certificate=cert,
            key_created=key_created,
            san=built.san,
        )

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    def list_certificates(self, now: Optional[datetime] = None) -> List[CertificateInfo]:
        if now is None:
            now = utc_now()

        infos = []
        for entry in self.catalog.scan():
            cert = pki.load(entry.paths.cert)
            infos.append(
                CertificateInfo(
                    entry=entry,
                    certificate=cert,
                    common_name=pki.get_common_name(cert) or UNKNOWN_CN,
                    expires=describe_expiry(cert.not_valid_after_utc, now),
                    lifetime_days=pki.lifetime_days(cert),
                )
            )
        return infos

    # ------------------------------------------------------------------
    # renew
    # ------------------------------------------------------------------

    def renew(
        self,
        common_name: Optional[str] = None,
        threshold: timedelta = RENEWAL_THRESHOLD,
        now: Optional[datetime] = None,
    ) -> List[RenewalDecision]:
        """
        Re-issue every intermediate and leaf certificate expiring within
        `threshold` (already expired ones included), keeping its original
        lifetime and reusing its stored CSR. Roots are reported, never
        re-issued: they have no CSR.

        Leaves are re-signed by whichever CA actually issued them, the root
        or an intermediate. When `common_name` is given only certificates
        with that CommonName (or storage name) are considered.
        """
        if now is None:
            now = utc_now()

        # CA certificates by (name, kind); the root is stored under name None.
        authorities: Dict[Tuple[Optional[str], KeyKind], Tuple[CatalogEntry, x509.Certificate]] = {}
        decisions = []

        for entry in self.catalog.scan():
            cert = pki.load(entry.paths.cert)
            if entry.entity.tier.is_ca:
                authorities[(entry.entity.name, entry.algorithm.kind)] = (entry, cert)

            cn = pki.get_common_name(cert)
            if common_name is not None and common_name not in (cn, entry.entity.name):
                continue

            remaining = cert.not_valid_after_utc - now
            decision = RenewalDecision(
                entry=entry,
                common_name=cn or UNKNOWN_CN,
                days_left=whole_days(remaining),
                expires=describe_expiry(cert.not_valid_after_utc, now),
                lifetime_days=pki.lifetime_days(cert),
                renewed=False,
                reason="",
            )
            decisions.append(decision)

            if remaining >= threshold:
                decision.reason = "not due"
                continue

            if entry.entity.tier is Role.ROOT:
                decision.reason = "root certificates are not renewed, re-create the root with init"
                log.warning("root certificate %s expires %s", entry.paths.cert, decision.expires)
                continue

            log.info(
                "%s expires %s, renewing for %d days",
                decision.common_name, decision.expires, decision.lifetime_days,
            )
            issuer_entry, issuer_cert = self._find_issuer(entry, cert, authorities)
            issuer_key = keys.load(issuer_entry.paths.key, self._key_passphrase(issuer_entry.entity))
            if not keys.public_keys_match(issuer_cert.public_key(), issuer_key.public_key()):
                raise ValidationFailure(f"{issuer_entry.paths.key} does not match {issuer_entry.paths.cert}")

            csr = req.load(entry.paths.csr)
            renewed = pki.issue(decision.lifetime_days, csr, entry.entity.tier, issuer_cert, issuer_key, now=now)
            pki.save(entry.paths.cert, renewed)

            decision.renewed = True
            decision.reason = f"renewed, signed by {issuer_entry.entity}"
            decision.certificate = renewed
            if entry.entity.tier.is_ca:
                authorities[(entry.entity.name, entry.algorithm.kind)] = (entry, renewed)

        return decisions

    @staticmethod
    def _find_issuer(
        entry: CatalogEntry,
        cert: x509.Certificate,
        authorities: Dict[Tuple[Optional[str], KeyKind], Tuple[CatalogEntry, x509.Certificate]],
    ) -> Tuple[CatalogEntry, x509.Certificate]:
        kind = entry.algorithm.kind
        if entry.entity.tier is Role.INTERMEDIATE:
            candidates = [authorities.get((None, kind))]
        else:
            candidates = [authorities.get((None, kind))]
            candidates += [
                value for (name, k), value in sorted(authorities.items(), key=lambda item: str(item[0][0]))
                if name is not None and k is kind
            ]

        for candidate in candidates:
            if candidate is not None and pki.verify_issued_by(cert, candidate[1]):
                return candidate
        raise NotFound(str(entry.paths.cert), what="issuer for certificate")
