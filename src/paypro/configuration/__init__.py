# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import logging
from collections.abc import Sequence

from paypro.messages import PaymentRequest
from paypro.trust.algorithms import DEFAULT_PKI_TYPE, resolve_algorithm
from paypro.trust.pk import PrivateKey
from paypro.trust.x509 import TrustStore, parse_certificate

from .xml import AnnotatedXMLElement, HexBinaryAdapter, MultiDataElement, Namespace, OptionalAttribute, OptionalDataElement

__all__ = 'Configuration', 'PKITypeAdapter', 'ns_paypro'  # noqa: RUF022


log = logging.getLogger(__name__)


ns_paypro = Namespace('urn:paypro:params:xml:ns:config', prefix=None)


class PKITypeAdapter:
    @staticmethod
    def xml_parse(value: str) -> str:
        resolve_algorithm(value)
        return value

    @staticmethod
    def xml_build(value: str) -> str:
        resolve_algorithm(value)
        return value


class PayProElement(AnnotatedXMLElement):
    _namespace_ = ns_paypro


class Configuration(PayProElement, name='payment-protocol'):
    """
    The trust configuration used when signing and verifying payment requests.

    <payment-protocol xmlns="urn:paypro:params:xml:ns:config" allow-untrusted="false">
      <pki-type>x509+sha256</pki-type>
      <trusted-root>MIIB...</trusted-root>
      <trusted-fingerprint>4f1a...</trusted-fingerprint>
      <blocked-fingerprint>9c2e...</blocked-fingerprint>
    </payment-protocol>
    """

    allow_untrusted: OptionalAttribute[bool] = OptionalAttribute(bool, default=False)

    pki_type: OptionalDataElement[str] = OptionalDataElement(str, default=DEFAULT_PKI_TYPE, adapter=PKITypeAdapter)
    trusted_roots: MultiDataElement[bytes] = MultiDataElement(bytes, name='trusted-root', optional=True)
    trusted_fingerprints: MultiDataElement[bytes] = MultiDataElement(bytes, name='trusted-fingerprint', optional=True, adapter=HexBinaryAdapter)
    blocked_fingerprints: MultiDataElement[bytes] = MultiDataElement(bytes, name='blocked-fingerprint', optional=True, adapter=HexBinaryAdapter)

    def trust_store(self) -> TrustStore:
        """Build a trust store from the configured roots and fingerprints"""
        certificates = []
        for index, data in enumerate(self.trusted_roots):
            try:
                certificates.append(parse_certificate(data))
            except ValueError as exc:
                raise ValueError(f'Invalid trusted-root certificate at position {index}: {exc}') from exc
        store = TrustStore(
            certificates=certificates,
            fingerprints=self.trusted_fingerprints,
            blocked=self.blocked_fingerprints,
            allow_untrusted=bool(self.allow_untrusted),
        )
        log.debug('Loaded trust store with %d trusted and %d blocked certificates', len(store.trusted), len(store.blocked))
        return store

    def sign_request(self, request: PaymentRequest, private_key: PrivateKey, chain: Sequence[bytes] | None = None) -> None:
        """Sign the payment request using the configured PKI type"""
        request.sign(private_key, chain, pki_type=self.pki_type)

    def verify_request(self, request: PaymentRequest) -> bool:
        """Check both the signature and the certificate chain of the request against the configured trust store"""
        return request.verify() and request.verify_chain(self.trust_store())
