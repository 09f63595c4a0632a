# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = (  # noqa: RUF022
    'MalformedInputError',
    'TruncatedBufferError',
    'MalformedVarintError',
    'WireTypeError',
    'RequiredFieldMissingError',

    'InvalidInputError',
    'InvalidCertificateEncodingError',
)


class MalformedInputError(ValueError):
    """Raised when wire data cannot be decoded into a message."""


class TruncatedBufferError(MalformedInputError):
    """Raised when the buffer ends in the middle of a field."""


class MalformedVarintError(MalformedInputError):
    """Raised when a varint is outside the supported range of 0 to 2**63-1."""


class WireTypeError(MalformedInputError):
    """Raised when a field has an unsupported or unexpected wire type."""


class RequiredFieldMissingError(MalformedInputError):
    """Raised when a mandatory field is not present at its position."""


class InvalidInputError(ValueError):
    """Raised when a message attribute is assigned an invalid value."""


class InvalidCertificateEncodingError(InvalidInputError, TypeError):
    """Raised when a certificate chain contains something other than DER bytes."""
