from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID

from hancock.common.errors import NotFound, ValidationFailure
from hancock.common.models import KeyAlgorithm, Role, SubjectFields
from hancock.crypto import keys, pki, req


def _ext(cert, cls):
    return cert.extensions.get_extension_for_class(cls)


@pytest.fixture
def rsa_root(rsa_key, root_subject):
    return pki.issue_root(3650, root_subject, rsa_key)


@pytest.fixture
def leaf_key():
    return keys.generate(KeyAlgorithm.ecdsa())


def test_root_is_self_issued_ca(rsa_root, rsa_key):
    assert rsa_root.issuer == rsa_root.subject
    assert pki.role_of(rsa_root) is Role.ROOT
    assert pki.verify_issued_by(rsa_root, rsa_root)

    bc = _ext(rsa_root, x509.BasicConstraints)
    assert bc.critical and bc.value.ca

    ku = _ext(rsa_root, x509.KeyUsage)
    assert ku.critical
    assert ku.value.key_cert_sign and ku.value.crl_sign
    assert not ku.value.digital_signature

    ski = _ext(rsa_root, x509.SubjectKeyIdentifier).value
    assert ski == x509.SubjectKeyIdentifier.from_public_key(rsa_key.public_key())
    with pytest.raises(x509.ExtensionNotFound):
        _ext(rsa_root, x509.AuthorityKeyIdentifier)
    with pytest.raises(x509.ExtensionNotFound):
        _ext(rsa_root, x509.ExtendedKeyUsage)


def test_root_lifetime_and_serial(rsa_root):
    assert rsa_root.not_valid_after_utc - rsa_root.not_valid_before_utc == timedelta(days=3650)
    assert pki.lifetime_days(rsa_root) == 3650
    assert 0 < rsa_root.serial_number < 2 ** 128
    assert isinstance(rsa_root.signature_hash_algorithm, hashes.SHA256)


def test_serials_are_random():
    assert len({pki.random_serial() for _ in range(50)}) == 50


def test_leaf_extensions_and_chain(rsa_root, rsa_key):
    subject_key = keys.generate(KeyAlgorithm.rsa(2048))
    csr = req.build(SubjectFields(common_name="svc.internal"), ["10.1.2.3"], subject_key).csr
    leaf = pki.issue(90, csr, Role.LEAF, rsa_root, rsa_key)

    assert leaf.issuer == rsa_root.subject
    assert leaf.subject == csr.subject
    assert pki.verify_issued_by(leaf, rsa_root)
    assert pki.role_of(leaf) is Role.LEAF
    assert leaf.not_valid_after_utc - leaf.not_valid_before_utc == timedelta(days=90)

    bc = _ext(leaf, x509.BasicConstraints)
    assert bc.critical and not bc.value.ca

    ku = _ext(leaf, x509.KeyUsage)
    assert ku.critical
    assert ku.value.digital_signature and ku.value.key_encipherment
    assert not ku.value.key_cert_sign

    eku = _ext(leaf, x509.ExtendedKeyUsage).value
    assert list(eku) == [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]

    assert _ext(leaf, x509.SubjectAlternativeName).value == _ext_csr_san(csr)

    aki = _ext(leaf, x509.AuthorityKeyIdentifier).value
    assert aki.key_identifier == _ext(rsa_root, x509.SubjectKeyIdentifier).value.digest


def _ext_csr_san(csr):
    return csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value


def test_leaf_without_san(rsa_root, rsa_key, leaf_key):
    csr = req.build(SubjectFields(organization="No Names"), [], leaf_key).csr
    leaf = pki.issue(30, csr, Role.LEAF, rsa_root, rsa_key)
    with pytest.raises(x509.ExtensionNotFound):
        _ext(leaf, x509.SubjectAlternativeName)


def test_intermediate_extensions(rsa_root, rsa_key):
    ca_key = keys.generate(KeyAlgorithm.rsa(2048))
    csr = req.build(SubjectFields(common_name="ops"), [], ca_key).csr
    inter = pki.issue(730, csr, Role.INTERMEDIATE, rsa_root, rsa_key)

    assert pki.role_of(inter) is Role.INTERMEDIATE
    assert pki.verify_issued_by(inter, rsa_root)
    assert _ext(inter, x509.BasicConstraints).value.ca
    ku = _ext(inter, x509.KeyUsage).value
    assert ku.key_cert_sign and ku.crl_sign
    with pytest.raises(x509.ExtensionNotFound):
        _ext(inter, x509.ExtendedKeyUsage)
    assert _ext(inter, x509.AuthorityKeyIdentifier).value.key_identifier == (
        _ext(rsa_root, x509.SubjectKeyIdentifier).value.digest
    )

    leaf_key = keys.generate(KeyAlgorithm.rsa(2048))
    leaf_csr = req.build(SubjectFields(common_name="api.internal"), [], leaf_key).csr
    leaf = pki.issue(90, leaf_csr, Role.LEAF, inter, ca_key)
    assert leaf.issuer == inter.subject
    assert pki.verify_issued_by(leaf, inter)
    assert not pki.verify_issued_by(leaf, rsa_root)


def test_digest_tracks_subject_key(ec_key, root_subject, leaf_key):
    root = pki.issue_root(365, root_subject, ec_key)
    assert isinstance(root.signature_hash_algorithm, hashes.SHA384)

    csr = req.build(SubjectFields(common_name="ec.internal"), [], leaf_key).csr
    leaf = pki.issue(10, csr, Role.LEAF, root, ec_key)
    assert isinstance(leaf.signature_hash_algorithm, hashes.SHA384)
    assert pki.verify_issued_by(leaf, root)


def test_issue_refuses_root_role_and_bad_lifetime(rsa_root, rsa_key, leaf_key):
    csr = req.build(SubjectFields(common_name="x"), [], leaf_key).csr
    with pytest.raises(ValidationFailure):
        pki.issue(90, csr, Role.ROOT, rsa_root, rsa_key)
    with pytest.raises(ValidationFailure):
        pki.issue(0, csr, Role.LEAF, rsa_root, rsa_key)


def test_save_and_load(tmp_path, rsa_root):
    path = tmp_path / "authority.crt"
    pki.save(path, rsa_root)
    assert pki.load(path) == rsa_root
    assert pki.get_common_name(rsa_root) == "Hancock Test Root"
    assert len(pki.fingerprint_hex(rsa_root)) == 64
    with pytest.raises(NotFound):
        pki.load(tmp_path / "missing.crt")


def test_common_name_may_be_absent(ec_key):
    root = pki.issue_root(1, SubjectFields(organization="Anonymous"), ec_key)
    assert pki.get_common_name(root) is None
