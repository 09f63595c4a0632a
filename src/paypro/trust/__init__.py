# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .algorithms import DEFAULT_PKI_TYPE, AlgorithmIdentifier, resolve_algorithm
from .private import KeyType, load_private_key, save_private_key
from .x509 import CA, CertificateAuthority, TrustStore, default_trust_store, load_certificate, save_certificate

__all__ = (  # noqa: RUF022
    'DEFAULT_PKI_TYPE',
    'AlgorithmIdentifier',
    'resolve_algorithm',

    'CA',
    'CertificateAuthority',
    'TrustStore',
    'default_trust_store',

    'KeyType',
    'load_certificate',
    'load_private_key',
    'save_certificate',
    'save_private_key',
)
