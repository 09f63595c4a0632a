# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from dataclasses import dataclass
from typing import Final

from .exceptions import UnknownPKITypeError, UnsupportedDigestError, UnsupportedSchemeError

__all__ = 'DEFAULT_PKI_TYPE', 'NO_PKI_TYPE', 'SUPPORTED_DIGESTS', 'X509_SCHEME', 'AlgorithmIdentifier', 'resolve_algorithm'


X509_SCHEME: Final = 'x509'
SUPPORTED_DIGESTS: Final = frozenset({'sha1', 'sha256'})

NO_PKI_TYPE: Final = 'none'
DEFAULT_PKI_TYPE: Final = f'{X509_SCHEME}+sha256'


@dataclass(frozen=True, slots=True)
class AlgorithmIdentifier:
    scheme: str
    digest: str

    def __str__(self) -> str:
        return f'{self.scheme}+{self.digest}'


def resolve_algorithm(pki_type: str | None) -> AlgorithmIdentifier:
    """Split a PKI type like 'x509+sha256' into its certificate scheme and digest algorithm"""
    if not pki_type:
        raise UnknownPKITypeError('No PKI type available')
    parts = pki_type.split('+')
    if len(parts) != 2:
        raise UnknownPKITypeError(f'Could not parse PKI algorithm: {pki_type!r}')
    scheme, digest = parts
    if scheme != X509_SCHEME:
        raise UnsupportedSchemeError(f'Unknown PKI type: {scheme!r}')
    if digest not in SUPPORTED_DIGESTS:
        raise UnsupportedDigestError(f'Unknown hash algorithm: {digest!r}')
    return AlgorithmIdentifier(scheme, digest)
