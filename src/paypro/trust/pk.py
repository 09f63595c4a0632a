# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Mapping
from typing import Final

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey, EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .exceptions import UnsupportedAlgorithmError, UnsupportedDigestError

__all__ = 'CURVES', 'DIGESTS', 'PrivateKey', 'PublicKey', 'sign', 'verify'


type PrivateKey = RSAPrivateKey | EllipticCurvePrivateKey
type PublicKey = RSAPublicKey | EllipticCurvePublicKey


DIGESTS: Final[Mapping[str, type[hashes.HashAlgorithm]]] = {
    'sha1': hashes.SHA1,
    'sha224': hashes.SHA224,
    'sha256': hashes.SHA256,
    'sha384': hashes.SHA384,
    'sha512': hashes.SHA512,
}

# named curves by their short name and by the name used by cryptography
CURVES: Final[Mapping[str, str]] = {
    'secp224r1': 'p224',
    'secp256r1': 'p256',
    'secp384r1': 'p384',
    'secp521r1': 'p521',
}


def _get_digest(digest: str) -> hashes.HashAlgorithm | None:
    algorithm = DIGESTS.get(digest, None)
    return algorithm() if algorithm is not None else None


def _curve_supported(curve: ec.EllipticCurve) -> bool:
    return curve.name in CURVES


def sign(digest: str, message: bytes, key: PrivateKey) -> bytes:
    """Sign the message using the given digest and private key"""
    algorithm = _get_digest(digest)
    if algorithm is None:
        raise UnsupportedDigestError(f'Unsupported hash algorithm: {digest!r}')
    match key:
        case RSAPrivateKey():
            return key.sign(message, padding.PKCS1v15(), algorithm)
        case EllipticCurvePrivateKey():
            if not _curve_supported(key.curve):
                raise UnsupportedAlgorithmError(f'Unsupported curve: {key.curve.name!r}')
            return key.sign(message, ec.ECDSA(algorithm))
        case _:
            raise UnsupportedAlgorithmError(f'Unsupported key type: {key.__class__.__qualname__!r}')


def verify(digest: str, message: bytes, signature: bytes, key: PublicKey) -> bool:
    """Verify the message signature with the public key (unknown digests or curves do not verify)"""
    algorithm = _get_digest(digest)
    if algorithm is None:
        return False
    match key:
        case RSAPublicKey():
            try:
                key.verify(signature, message, padding.PKCS1v15(), algorithm)
            except InvalidSignature:
                return False
            return True
        case EllipticCurvePublicKey():
            if not _curve_supported(key.curve):
                return False
            try:
                key.verify(signature, message, ec.ECDSA(algorithm))
            except InvalidSignature:
                return False
            return True
        case _:
            raise UnsupportedAlgorithmError(f'Unsupported key type: {key.__class__.__qualname__!r}')
