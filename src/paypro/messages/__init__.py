# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Payment protocol messages

   The payment protocol is a message exchange between a merchant and a
   customer. All messages are encoded as protocol buffers, using only the
   field types listed below. The fields of every message are written in
   the order given by their tags, which is also the order in which they
   are decoded.

     PaymentDetails {
         1  optional string   network = "main"
         2  repeated Output   outputs
         3  required uint64   time
         4  optional uint64   expires
         5  optional string   memo
         6  optional string   payment_url
         7  optional bytes    merchant_data
     }

     PaymentRequest {
         1  optional uint32          version = 1
         2  optional string          pki_type = "none"
         3  optional bytes           pki_data
         4  required PaymentDetails  serialized_payment_details
         5  optional bytes           signature
     }

     X509Certificates {
         1  repeated bytes   certificate
     }

     Payment {
         1  optional bytes    merchant_data
         2  repeated bytes    transactions
         3  repeated Output   refund_to
         4  optional string   memo
     }

     PaymentACK {
         1  required Payment  payment
         2  optional string   memo
     }

   A signed PaymentRequest carries the certificate chain of the merchant in
   pki_data and a signature computed over the whole serialized request with
   the signature field set to an empty byte string.

"""

import logging
import time
from collections.abc import Sequence
from copy import copy

from paypro.trust import x509
from paypro.trust.algorithms import DEFAULT_PKI_TYPE, NO_PKI_TYPE, AlgorithmIdentifier, resolve_algorithm
from paypro.trust.exceptions import NoCertificateAuthorityError
from paypro.trust.pk import PrivateKey
from paypro.trust.x509 import CertificateAuthority, TrustStore

from .datamodel import UInt32Adapter, UInt64Adapter
from .elements import AnnotatedStructure, Element, MessageElement, RepeatedElement
from .exceptions import InvalidCertificateEncodingError
from .merchant import decode_merchant_data, encode_merchant_data

__all__ = (  # noqa: RUF022
    'Output',
    'PaymentDetails',
    'PaymentRequest',
    'Payment',
    'PaymentACK',
    'CertificateChain',
)


log = logging.getLogger(__name__)


class Output(AnnotatedStructure):
    value: Element[int] = Element(int, tag=1, adapter=UInt64Adapter)
    script: Element[bytes] = Element(bytes, tag=2, default=b'')


class CertificateChain(AnnotatedStructure):
    """The X.509 certificate chain carried in PaymentRequest.pki_data, leaf first"""

    certificates: RepeatedElement[bytes] = RepeatedElement(bytes, tag=1)


class MerchantDataMixin:
    merchant_data: bytes | None

    def set_data(self, data: object, encoding: str | None = None) -> None:
        self.merchant_data = encode_merchant_data(data, encoding)

    def get_data(self, encoding: str | None = None) -> object:
        return decode_merchant_data(self.merchant_data, encoding)


class PaymentDetails(MerchantDataMixin, AnnotatedStructure):
    network: Element[str | None] = Element(str, tag=1, optional=True)
    outputs: RepeatedElement[Output] = RepeatedElement(Output, tag=2)
    time: Element[int] = Element(int, tag=3, adapter=UInt64Adapter, default_factory=lambda: int(time.time()))
    expires: Element[int | None] = Element(int, tag=4, adapter=UInt64Adapter, optional=True, sentinel=-1)
    memo: Element[str | None] = Element(str, tag=5, optional=True)
    payment_url: Element[str | None] = Element(str, tag=6, optional=True)
    merchant_data: Element[bytes | None] = Element(bytes, tag=7, optional=True)

    def is_expired(self, now: int | None = None) -> bool:
        if self.expires is None:
            return False
        if now is None:
            now = int(time.time())
        return now > self.expires


class PaymentRequest(AnnotatedStructure):
    version: Element[int | None] = Element(int, tag=1, adapter=UInt32Adapter, optional=True, sentinel=-1)
    pki_type: Element[str | None] = Element(str, tag=2, optional=True)
    pki_data: Element[bytes | None] = Element(bytes, tag=3, optional=True)
    payment_details: MessageElement[PaymentDetails] = MessageElement(PaymentDetails, tag=4, default_factory=PaymentDetails)
    signature: Element[bytes | None] = Element(bytes, tag=5, optional=True)

    @property
    def has_pki(self) -> bool:
        return bool(self.pki_type) and self.pki_type != NO_PKI_TYPE

    def set_chain(self, chain: Sequence[bytes]) -> None:
        """Store the DER encoded certificate chain (leaf first) in pki_data, replacing any previous chain"""
        if isinstance(chain, str | bytes | bytearray | memoryview) or not isinstance(chain, Sequence):
            raise InvalidCertificateEncodingError(f'The certificate chain must be a sequence of DER encoded certificates, got {chain.__class__.__qualname__!r}')
        for index, certificate in enumerate(chain):
            if not isinstance(certificate, bytes | bytearray | memoryview):
                raise InvalidCertificateEncodingError(f'Certificate {index} in the chain is not a byte sequence: {certificate.__class__.__qualname__!r}')
        self.pki_data = CertificateChain(certificates=chain).to_wire()

    def get_chain(self) -> list[bytes]:
        if self.pki_data is None:
            return []
        return CertificateChain.from_wire(self.pki_data).certificates

    def signature_data(self) -> bytes:
        """Return the serialized request with an empty signature, which is what gets signed"""
        request = copy(self)
        request.signature = b''
        return request.to_wire()

    def get_algorithm(self) -> AlgorithmIdentifier:
        return resolve_algorithm(self.pki_type)

    def sign(self, private_key: PrivateKey, chain: Sequence[bytes] | None = None, *, pki_type: str | None = None) -> None:
        """
        Sign the request with the private key of the leaf certificate.

        If a chain is given it replaces the one already in the request. The
        PKI type can be given explicitly, otherwise it defaults to x509+sha256
        when the request does not have one or it is empty.
        """
        if chain is not None:
            self.set_chain(chain)
        if pki_type is not None:
            self.pki_type = pki_type
        elif not self.pki_type:
            self.pki_type = DEFAULT_PKI_TYPE
        algorithm = self.get_algorithm()
        self.signature = x509.sign_subject(algorithm.digest, self.signature_data(), private_key, self.get_chain())
        log.debug('Signed payment request using %s', algorithm)

    def verify(self) -> bool:
        """Check the request signature against the leaf certificate. This never raises, it returns False instead."""
        if not self.has_pki or not self.signature:
            return False
        try:
            algorithm = self.get_algorithm()
            return x509.verify_subject(algorithm.digest, self.signature_data(), self.signature, self.get_chain())
        except Exception as exc:  # noqa: BLE001
            log.debug('Payment request signature verification failed: %s', exc)
            return False

    def verify_chain(self, trust_store: TrustStore | None = None) -> bool:
        """Check the certificate chain of the request. This never raises, it returns False instead."""
        if not self.has_pki:
            return False
        try:
            return x509.verify_chain(self.get_chain(), trust_store)
        except Exception as exc:  # noqa: BLE001
            log.debug('Payment request certificate chain verification failed: %s', exc)
            return False

    def get_ca(self, trust_store: TrustStore | None = None) -> CertificateAuthority:
        """Return the name and trust status of the root certificate of the chain"""
        if not self.has_pki:
            raise NoCertificateAuthorityError(f'The payment request has no certificate chain (PKI type is {self.pki_type!r})')
        chain = self.get_chain()
        if not chain:
            raise NoCertificateAuthorityError('The payment request has an empty certificate chain')
        return CertificateAuthority.from_certificate(x509.parse_certificate(chain[-1]), trust_store)


class Payment(MerchantDataMixin, AnnotatedStructure):
    merchant_data: Element[bytes | None] = Element(bytes, tag=1, optional=True)
    transactions: RepeatedElement[bytes] = RepeatedElement(bytes, tag=2)
    refund_to: RepeatedElement[Output] = RepeatedElement(Output, tag=3)
    memo: Element[str | None] = Element(str, tag=4, optional=True)


class PaymentACK(AnnotatedStructure):
    payment: MessageElement[Payment] = MessageElement(Payment, tag=1, default_factory=Payment)
    memo: Element[str | None] = Element(str, tag=2, optional=True)
