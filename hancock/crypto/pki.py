"""
X.509 certificate synthesis and inspection.

Responsibilities:
  - Self-issue root certificates.
  - Issue intermediate and leaf certificates from a CSR, signed by a CA.
  - Attach the extension set that matches the certificate's role:

      root          BasicConstraints CA=true, KeyUsage keyCertSign+cRLSign,
                    SubjectKeyIdentifier
      intermediate  as root, plus AuthorityKeyIdentifier
      leaf          BasicConstraints CA=false, KeyUsage digitalSignature+
                    keyEncipherment, ExtendedKeyUsage clientAuth+serverAuth,
                    SubjectKeyIdentifier, AuthorityKeyIdentifier and the
                    request's SubjectAlternativeName

  - Check that a certificate was issued by a given CA certificate.

The signing digest follows the subject key: SHA-256 for RSA, SHA-384 for EC.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from hancock.common.errors import CryptoFailure, ParseFailure, ValidationFailure
from hancock.common.models import Role, SubjectFields
from hancock.common.utils import sha256_hex, utc_now, whole_days
from hancock.crypto import keys
from hancock.storage import files

log = logging.getLogger(__name__)

SERIAL_BITS = 128


def random_serial() -> int:
    """128 random bits. X.509 serials must be positive, so zero is redrawn."""
    serial = secrets.randbits(SERIAL_BITS)
    while serial == 0:
        serial = secrets.randbits(SERIAL_BITS)
    return serial


def _ca_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=True,
        crl_sign=True,
        encipher_only=False,
        decipher_only=False,
    )


def _leaf_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=True,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def _authority_key_identifier(issuer_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    """Prefer the issuer's own SubjectKeyIdentifier, else derive it from its public key."""
    try:
        ski = issuer_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_cert.public_key())
    return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)


def _base_builder(
    lifetime_days: int,
    subject: x509.Name,
    issuer: x509.Name,
    public_key: keys.PublicKey,
    now: Optional[datetime] = None,
) -> x509.CertificateBuilder:
    if lifetime_days < 1:
        raise ValidationFailure(f"lifetime must be at least 1 day, got {lifetime_days}")
    if now is None:
        now = utc_now()

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(random_serial())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=lifetime_days))
    )


def _sign(
    builder: x509.CertificateBuilder,
    signing_key: keys.PrivateKey,
    subject_key: keys.PublicKey,
) -> x509.Certificate:
    try:
        return builder.sign(private_key=signing_key, algorithm=keys.digest_for(subject_key))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"cannot sign certificate: {exc}") from exc


def issue_root(
    lifetime_days: int,
    subject: SubjectFields,
    key: keys.PrivateKey,
    now: Optional[datetime] = None,
) -> x509.Certificate:
    """
    Build a self-issued root CA certificate (issuer == subject).

    Raises:
        ValidationFailure for a non-positive lifetime or bad subject fields.
        CryptoFailure on signing errors.
    """
    name = subject.to_name()
    public_key = key.public_key()

    try:
        builder = (
            _base_builder(lifetime_days, name, name, public_key, now)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_ca_key_usage(), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        )
    except ValueError as exc:
        raise CryptoFailure(f"cannot build root certificate: {exc}") from exc

    cert = _sign(builder, key, public_key)
    log.debug("issued root certificate serial=%x", cert.serial_number)
    return cert


def issue(
    lifetime_days: int,
    request: x509.CertificateSigningRequest,
    role: Role,
    issuer_cert: x509.Certificate,
    issuer_key: keys.PrivateKey,
    now: Optional[datetime] = None,
) -> x509.Certificate:
    """
    Issue an intermediate or leaf certificate for `request`, signed by the CA
    described by (`issuer_cert`, `issuer_key`).

    The subject name and public key come from the request, the issuer name
    from `issuer_cert`'s subject.

    Raises:
        ValidationFailure if `role` is root or the lifetime is not positive.
        CryptoFailure on extension building or signing errors.
    """
    if role is Role.ROOT:
        raise ValidationFailure("root certificates are self-issued, use issue_root")

    public_key = request.public_key()

    try:
        builder = _base_builder(lifetime_days, request.subject, issuer_cert.subject, public_key, now)

        if role is Role.INTERMEDIATE:
            builder = (
                builder
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(_ca_key_usage(), critical=True)
            )
        else:
            builder = (
                builder
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(_leaf_key_usage(), critical=True)
                .add_extension(
                    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
            )
            try:
                san = request.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            except x509.ExtensionNotFound:
                san = None
            if san is not None:
                builder = builder.add_extension(san.value, critical=san.critical)

        builder = (
            builder
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(_authority_key_identifier(issuer_cert), critical=False)
        )
    except (ValueError, TypeError) as exc:
        raise CryptoFailure(f"cannot build {role.value} certificate: {exc}") from exc

    cert = _sign(builder, issuer_key, public_key)
    log.debug("issued %s certificate serial=%x", role.value, cert.serial_number)
    return cert


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


def get_common_name(cert: Union[x509.Certificate, x509.CertificateSigningRequest]) -> Optional[str]:
    """Extract Common Name (CN) from the subject, or None if missing."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return None
    return attrs[0].value


def role_of(cert: x509.Certificate) -> Role:
    """Infer the role from BasicConstraints and self-issuance."""
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return Role.LEAF
    if not bc.ca:
        return Role.LEAF
    if cert.issuer == cert.subject:
        return Role.ROOT
    return Role.INTERMEDIATE


def lifetime_days(cert: x509.Certificate) -> int:
    """Whole days between not-before and not-after."""
    return whole_days(cert.not_valid_after_utc - cert.not_valid_before_utc)


def verify_issued_by(cert: x509.Certificate, issuer_cert: x509.Certificate) -> bool:
    """
    True if `cert` names `issuer_cert`'s subject as its issuer and its
    signature verifies under `issuer_cert`'s public key.
    """
    try:
        cert.verify_directly_issued_by(issuer_cert)
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False
    return True


def fingerprint_hex(cert: x509.Certificate) -> str:
    """SHA-256 fingerprint of the DER encoding, as lowercase hex."""
    return sha256_hex(cert.public_bytes(serialization.Encoding.DER))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def save(path: Union[str, Path], cert: x509.Certificate) -> None:
    files.write_private(path, cert.public_bytes(serialization.Encoding.PEM))
    log.info("saved certificate %s", path)


def load(path: Union[str, Path]) -> x509.Certificate:
    """
    Load an X.509 certificate from a PEM file.

    Raises:
        NotFound, ParseFailure, StorageFailure.
    """
    data = files.read_bytes(path, what="certificate")
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise ParseFailure(f"cannot parse certificate {path}: {exc}") from exc
