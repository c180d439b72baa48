import pytest

from hancock.common.models import KeyAlgorithm, SubjectFields
from hancock.crypto import keys
from hancock.ops import CertificateAuthority

ROOT_SUBJECT = SubjectFields(common_name="Hancock Test Root", country="US", organization="Hancock Tests")


@pytest.fixture(scope="session")
def rsa_key():
    return keys.generate(KeyAlgorithm.rsa(2048))


@pytest.fixture(scope="session")
def ec_key():
    return keys.generate(KeyAlgorithm.ecdsa())


@pytest.fixture
def store(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def ca(store):
    return CertificateAuthority(str(store))


@pytest.fixture
def rsa_ca(ca):
    ca.init(ROOT_SUBJECT, KeyAlgorithm.rsa(2048))
    return ca


@pytest.fixture
def ec_ca(ca):
    ca.init(ROOT_SUBJECT, KeyAlgorithm.ecdsa())
    return ca


@pytest.fixture
def root_subject():
    return ROOT_SUBJECT
