# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = (  # noqa: RUF022
    'UnsupportedAlgorithmError',
    'UnknownPKITypeError',
    'UnsupportedSchemeError',
    'UnsupportedDigestError',

    'TrustLookupError',
    'NoCertificateAuthorityError',

    'CertificateChainError',
)


class UnsupportedAlgorithmError(ValueError):
    """Raised when a signature algorithm cannot be used."""


class UnknownPKITypeError(UnsupportedAlgorithmError):
    """Raised when the PKI type is missing or is not of the form scheme+digest."""


class UnsupportedSchemeError(UnsupportedAlgorithmError):
    """Raised when the PKI type names a certificate scheme other than x509."""


class UnsupportedDigestError(UnsupportedAlgorithmError):
    """Raised when the PKI type names a digest algorithm that is not allowed."""


class TrustLookupError(LookupError):
    """Raised when the trust information of a request cannot be determined."""


class NoCertificateAuthorityError(TrustLookupError):
    """Raised when a request has no certificate chain to take the authority from."""


class CertificateChainError(ValueError):
    """Raised when a certificate chain is empty, expired, broken or untrusted."""
