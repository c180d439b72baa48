"""
Certificate signing requests (PKCS#10).

A request carries the subject name, the subject's public key, an optional
SubjectAlternativeName extension and a self-signature proving possession
of the private key.

SAN inference:
  - every token of the SAN list is an IP address if it parses as one,
    otherwise a DNS name;
  - the CommonName, when present, is added too: IP if it parses as one,
    email if it contains '@', otherwise DNS.

If the library rejects a SAN value, the request is still signed, without
the extension, and the failure is reported in `SanOutcome.error`.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from hancock.common.errors import CryptoFailure, ParseFailure, ValidationFailure
from hancock.common.models import SubjectFields
from hancock.crypto import keys
from hancock.storage import files

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SanOutcome:
    """What happened to the SubjectAlternativeName extension."""

    entries: List[x509.GeneralName] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def attached(self) -> bool:
        return bool(self.entries) and self.error is None


@dataclass(frozen=True)
class BuiltRequest:
    csr: x509.CertificateSigningRequest
    san: SanOutcome


def parse_san_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated SAN list, trimming blanks and dropping empty tokens."""
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def san_entry(token: str) -> x509.GeneralName:
    """Classify a SAN list token: IP literal, else DNS name."""
    if _is_ip(token):
        return x509.IPAddress(ipaddress.ip_address(token))
    return x509.DNSName(token)


def common_name_entry(common_name: str) -> x509.GeneralName:
    """Classify a CommonName: IP literal, else email if it contains '@', else DNS name."""
    if _is_ip(common_name):
        return x509.IPAddress(ipaddress.ip_address(common_name))
    if "@" in common_name:
        return x509.RFC822Name(common_name)
    return x509.DNSName(common_name)


def build_san(tokens: Iterable[str], common_name: Optional[str]) -> SanOutcome:
    """
    Build the SAN entries for a request.

    Never raises: a value rejected by the library results in an outcome
    with no entries and the error message set.
    """
    entries: List[x509.GeneralName] = []
    try:
        candidates = [san_entry(t) for t in tokens]
        if common_name:
            candidates.append(common_name_entry(common_name))
    except ValueError as exc:
        return SanOutcome(error=str(exc))

    for entry in candidates:
        if entry not in entries:
            entries.append(entry)
    return SanOutcome(entries=entries)


def build(
    subject: SubjectFields,
    san_list: Iterable[str],
    key: keys.PrivateKey,
) -> BuiltRequest:
    """
    Build and self-sign a CSR.

    Args:
        subject: Subject name fields (absent fields are omitted).
        san_list: Extra SAN tokens (already split).
        key: The subject's private key; its public half goes into the CSR.

    Raises:
        ValidationFailure for invalid subject fields.
        CryptoFailure if signing fails.
    """
    builder = x509.CertificateSigningRequestBuilder().subject_name(subject.to_name())

    san = build_san(san_list, subject.common_name)
    if san.error is not None:
        log.warning("subject alternative names dropped, request signed without them: %s", san.error)
    elif san.entries:
        builder = builder.add_extension(x509.SubjectAlternativeName(san.entries), critical=False)

    try:
        csr = builder.sign(key, keys.digest_for(key.public_key()))
    except (ValueError, TypeError) as exc:
        raise CryptoFailure(f"cannot sign request: {exc}") from exc

    return BuiltRequest(csr=csr, san=san)


def save(path: Union[str, Path], csr: x509.CertificateSigningRequest) -> None:
    files.write_private(path, csr.public_bytes(serialization.Encoding.PEM))
    log.info("saved signing request %s", path)


def load(path: Union[str, Path]) -> x509.CertificateSigningRequest:
    """
    Load a PEM CSR.

    Raises:
        NotFound, ParseFailure, StorageFailure.
    """
    data = files.read_bytes(path, what="signing request")
    try:
        return x509.load_pem_x509_csr(data)
    except ValueError as exc:
        raise ParseFailure(f"cannot parse signing request {path}: {exc}") from exc


def load_or_build(
    path: Union[str, Path],
    subject: SubjectFields,
    san_list: Iterable[str],
    key: keys.PrivateKey,
) -> BuiltRequest:
    """
    Reuse the CSR stored at `path`, or build one and persist it.

    A stored CSR must carry the subject key and a valid self-signature.
    """
    if Path(path).exists():
        csr = load(path)
        if not csr.is_signature_valid:
            raise ParseFailure(f"signing request {path} has an invalid self-signature")
        if not keys.public_keys_match(csr.public_key(), key.public_key()):
            raise ValidationFailure(f"signing request {path} does not carry the key it is stored with")
        log.debug("reusing signing request %s", path)
        return BuiltRequest(csr=csr, san=SanOutcome(entries=request_san(csr)))

    built = build(subject, san_list, key)
    save(path, built.csr)
    return built


def request_san(csr: x509.CertificateSigningRequest) -> List[x509.GeneralName]:
    """SAN entries of a request, empty if it has none."""
    try:
        ext = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return list(ext.value)
