"""
Private key generation, persistence and loading (RSA or ECDSA P-384).

Keys are stored as PKCS#8 PEM. With a passphrase they are encrypted with
cryptography's BestAvailableEncryption, which for PKCS#8 PEM means PBES2
with AES-256-CBC.

Usage example:

    from hancock.common.models import KeyAlgorithm
    from hancock.crypto import keys

    key, created = keys.load_or_generate(path, KeyAlgorithm.ecdsa(), passphrase="s3cret")
    digest = keys.digest_for(key.public_key())   # SHA384 for EC keys
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from hancock.common.errors import CryptoFailure, DecryptionFailure, ParseFailure
from hancock.common.models import KeyAlgorithm, KeyKind
from hancock.storage import files

log = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]

RSA_PUBLIC_EXPONENT = 65537
EC_CURVE = ec.SECP384R1


def generate(algorithm: KeyAlgorithm) -> PrivateKey:
    """
    Generate a fresh private key.

    Raises:
        CryptoFailure if the library cannot produce the key.
    """
    try:
        if algorithm.kind is KeyKind.ECDSA:
            key = ec.generate_private_key(EC_CURVE())
        else:
            key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT,
                key_size=algorithm.bits,
            )
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"cannot generate {algorithm} key: {exc}") from exc

    log.debug("generated %s key", algorithm)
    return key


def to_pem(key: PrivateKey, passphrase: Optional[str] = None) -> bytes:
    """Serialize as PKCS#8 PEM, encrypted when a passphrase is given."""
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def persist(path: Union[str, Path], key: PrivateKey, passphrase: Optional[str] = None) -> None:
    """
    Write the key to `path` with mode 0600 (parent directories 0700).

    Raises:
        StorageFailure on I/O errors.
    """
    files.write_private(path, to_pem(key, passphrase))
    log.info("saved private key %s%s", path, " (encrypted)" if passphrase else "")


def from_pem(data: bytes, passphrase: Optional[str] = None, source: str = "<memory>") -> PrivateKey:
    """
    Decode a PEM private key.

    Raises:
        DecryptionFailure: wrong passphrase, or passphrase missing for an
            encrypted key. A passphrase given for an unencrypted key is
            ignored.
        ParseFailure: malformed PEM or a key that is neither RSA nor EC.
    """
    password = passphrase.encode("utf-8") if passphrase else None
    encrypted = b"ENCRYPTED" in data

    try:
        key = serialization.load_pem_private_key(data, password=password)
    except TypeError as exc:
        if encrypted or password is None:
            raise DecryptionFailure(f"private key {source} is encrypted, a passphrase is required") from exc
        log.debug("private key %s is not encrypted, ignoring the passphrase", source)
        return from_pem(data, None, source)
    except ValueError as exc:
        if encrypted:
            raise DecryptionFailure(f"cannot decrypt private key {source}: wrong passphrase?") from exc
        raise ParseFailure(f"cannot parse private key {source}: {exc}") from exc
    except UnsupportedAlgorithm as exc:
        raise ParseFailure(f"unsupported private key in {source}: {exc}") from exc

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ParseFailure(f"{source} holds a {type(key).__name__}, expected an RSA or EC key")
    return key


def load(path: Union[str, Path], passphrase: Optional[str] = None) -> PrivateKey:
    """
    Load a private key from a PEM file.

    Raises:
        NotFound, DecryptionFailure, ParseFailure, StorageFailure.
    """
    data = files.read_bytes(path, what="private key")
    return from_pem(data, passphrase, source=str(path))


def load_or_generate(
    path: Union[str, Path],
    algorithm: KeyAlgorithm,
    passphrase: Optional[str] = None,
) -> Tuple[PrivateKey, bool]:
    """
    Load the key at `path` if the file exists, otherwise generate and persist one.

    Existence of the file is authoritative. A stored key whose type does
    not match `algorithm` is refused, since a trust line never mixes
    algorithms.

    Returns:
        (key, created) where created is True if a new key was written.
    """
    if Path(path).exists():
        key = load(path, passphrase)
        if algorithm_of(key).kind is not algorithm.kind:
            raise ParseFailure(f"{path} holds a {algorithm_of(key)} key, expected {algorithm}")
        log.debug("loaded existing key %s", path)
        return key, False

    key = generate(algorithm)
    persist(path, key, passphrase)
    return key, True


def algorithm_of(key: Union[PrivateKey, PublicKey]) -> KeyAlgorithm:
    """Describe an RSA or EC key as a KeyAlgorithm."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return KeyAlgorithm(kind=KeyKind.RSA, bits=key.key_size)
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return KeyAlgorithm.ecdsa()
    raise CryptoFailure(f"unsupported key type {type(key).__name__}")


def digest_for(public_key: PublicKey) -> hashes.HashAlgorithm:
    """SHA-256 for RSA keys, SHA-384 for EC keys."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return hashes.SHA256()
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return hashes.SHA384()
    raise CryptoFailure(f"no digest defined for {type(public_key).__name__}")


def public_keys_match(a: PublicKey, b: PublicKey) -> bool:
    """Compare two public keys by their SubjectPublicKeyInfo encoding."""
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    return a.public_bytes(serialization.Encoding.DER, fmt) == b.public_bytes(serialization.Encoding.DER, fmt)
