# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import cached_property
from itertools import pairwise
from os import PathLike
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Self

import idna
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import Certificate, CertificateBuilder, Name
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from . import pk
from .exceptions import CertificateChainError
from .pk import PrivateKey, PublicKey
from .private import KeyType

__all__ = (  # noqa: RUF022
    'CA',
    'CertificateAuthority',
    'TrustStore',
    'default_trust_store',

    'fingerprint',
    'get_ca_name',
    'is_trusted',
    'make_name',
    'parse_certificate',
    'parse_chain',
    'sign_subject',
    'verify_chain',
    'verify_subject',

    'idna_decode',
    'idna_encode',
    'load_certificate',
    'save_certificate',
)


# Parsing

def parse_certificate(data: bytes | bytearray | memoryview) -> Certificate:
    """Parse a DER encoded certificate"""
    if not isinstance(data, bytes | bytearray | memoryview):
        raise TypeError(f'Certificates must be DER encoded bytes, got {data.__class__.__qualname__!r}')
    try:
        return x509.load_der_x509_certificate(bytes(data))
    except ValueError as exc:
        raise ValueError(f'Invalid DER certificate: {exc}') from exc


def parse_chain(chain: Sequence[bytes]) -> list[Certificate]:
    return [parse_certificate(data) for data in chain]


def fingerprint(certificate: Certificate) -> str:
    """Return the hex encoded SHA-256 fingerprint of the certificate"""
    return certificate.fingerprint(hashes.SHA256()).hex()


def _normalize_fingerprint(value: str | bytes) -> str:
    if isinstance(value, bytes):
        value = value.hex()
    value = value.replace(':', '').strip().lower()
    try:
        if len(bytes.fromhex(value)) != 32:
            raise ValueError('fingerprint must have 32 bytes')
    except ValueError as exc:
        raise ValueError(f'Invalid SHA-256 fingerprint {value!r}: {exc}') from exc
    return value


def _describe(certificate: Certificate) -> str:
    return certificate.subject.rfc4514_string() or '<empty subject>'


# Trust

class TrustStore:
    """
    The certificates trusted as roots of payment request chains.

    Certificates are identified by their SHA-256 fingerprint. A blocked
    fingerprint is never trusted. When allow_untrusted is set, every
    certificate that is not blocked is considered trusted.
    """

    def __init__(self, *, certificates: Iterable[Certificate] = (), fingerprints: Iterable[str | bytes] = (), blocked: Iterable[str | bytes] = (), allow_untrusted: bool = False) -> None:
        self.trusted: set[str] = set()
        self.blocked: set[str] = set()
        self.allow_untrusted = allow_untrusted
        for certificate in certificates:
            self.add_certificate(certificate)
        for value in fingerprints:
            self.add_fingerprint(value)
        for value in blocked:
            self.block_fingerprint(value)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(<{len(self.trusted)} trusted>, <{len(self.blocked)} blocked>, allow_untrusted={self.allow_untrusted!r})'

    def __len__(self) -> int:
        return len(self.trusted)

    def __contains__(self, certificate: Certificate) -> bool:
        return fingerprint(certificate) in self.trusted

    def add_certificate(self, certificate: Certificate | bytes) -> None:
        if not isinstance(certificate, Certificate):
            certificate = parse_certificate(certificate)
        self.trusted.add(fingerprint(certificate))

    def add_fingerprint(self, value: str | bytes) -> None:
        self.trusted.add(_normalize_fingerprint(value))

    def block_fingerprint(self, value: str | bytes) -> None:
        self.blocked.add(_normalize_fingerprint(value))

    def is_blocked(self, certificate: Certificate) -> bool:
        return fingerprint(certificate) in self.blocked

    def is_trusted(self, certificate: Certificate) -> bool:
        certificate_fingerprint = fingerprint(certificate)
        if certificate_fingerprint in self.blocked:
            return False
        if self.allow_untrusted:
            return True
        return certificate_fingerprint in self.trusted


default_trust_store = TrustStore()


def is_trusted(certificate: Certificate, trust_store: TrustStore | None = None) -> bool:
    if trust_store is None:
        trust_store = default_trust_store
    return trust_store.is_trusted(certificate)


def get_ca_name(certificate: Certificate) -> str:
    """Return a human readable name for a certificate authority"""
    # commonName works best in practice, followed by organizationalUnitName and organizationName
    for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATIONAL_UNIT_NAME, NameOID.ORGANIZATION_NAME):
        if attributes := certificate.subject.get_attributes_for_oid(oid):
            value = attributes[0].value
            return idna_decode(value if isinstance(value, str) else value.decode())
    return 'Unknown'


@dataclass(frozen=True)
class CertificateAuthority:
    name: str
    trusted: bool
    certificate: Certificate

    @classmethod
    def from_certificate(cls, certificate: Certificate, trust_store: TrustStore | None = None) -> Self:
        return cls(name=get_ca_name(certificate), trusted=is_trusted(certificate, trust_store), certificate=certificate)


# Chains and signatures

def verify_chain(chain: Sequence[bytes], trust_store: TrustStore | None = None, *, now: datetime | None = None) -> bool:
    """
    Verify a leaf first certificate chain.

    Every certificate must be valid at the given time and must be directly
    issued by the certificate that follows it. If the trust store has trust
    anchors, at least one certificate from the chain must be trusted.
    Raises CertificateChainError when the chain does not verify.
    """
    if trust_store is None:
        trust_store = default_trust_store
    if now is None:
        now = datetime.now(tz=UTC)

    certificates = parse_chain(chain)
    if not certificates:
        raise CertificateChainError('The certificate chain is empty')

    for certificate in certificates:
        if not certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc:
            raise CertificateChainError(f'Certificate {_describe(certificate)!r} is not valid at {now.isoformat()}')
        if trust_store.is_blocked(certificate):
            raise CertificateChainError(f'Certificate {_describe(certificate)!r} is blocked')

    for child, parent in pairwise(certificates):
        try:
            child.verify_directly_issued_by(parent)
        except (ValueError, TypeError, InvalidSignature) as exc:
            raise CertificateChainError(f'Certificate {_describe(child)!r} is not issued by {_describe(parent)!r}: {str(exc) or "invalid signature"}') from exc

    if any(trust_store.is_trusted(certificate) for certificate in certificates):
        return True

    if trust_store.trusted:
        raise CertificateChainError('The certificate chain is not trusted')

    return True


def sign_subject(digest: str, message: bytes, key: PrivateKey, chain: Sequence[bytes]) -> bytes:
    """Sign the message with the private key that belongs to the leaf certificate of the chain"""
    if not chain:
        raise CertificateChainError('Cannot sign without a certificate chain')
    leaf = parse_certificate(chain[0])
    if leaf.public_key() != key.public_key():
        raise ValueError('The private key does not match the leaf certificate')
    return pk.sign(digest, message, key)


def verify_subject(digest: str, message: bytes, signature: bytes, chain: Sequence[bytes]) -> bool:
    """Verify the message signature using the public key of the leaf certificate"""
    if not chain:
        raise CertificateChainError('No certificates in chain')
    leaf = parse_certificate(chain[0])
    return pk.verify(digest, message, signature, leaf.public_key())  # type: ignore[arg-type]


# Certificate authorities

def make_name(*, common_name: str | None = None, organizational_unit: str | None = None, organization: str | None = None, country: str | None = None) -> Name:
    attributes = [
        (NameOID.COUNTRY_NAME, country),
        (NameOID.ORGANIZATION_NAME, organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, organizational_unit),
        (NameOID.COMMON_NAME, common_name),
    ]
    return Name(x509.NameAttribute(oid, value) for oid, value in attributes if value is not None)


@dataclass
class CA:
    private_key: PrivateKey
    certificate: Certificate

    def __post_init__(self) -> None:
        if self.private_key.public_key() != self.certificate.public_key():
            raise ValueError('The certificate and the private key do not match each other!')
        if not self.certificate.extensions.get_extension_for_class(x509.BasicConstraints).value.ca:
            raise ValueError('The certificate is not a CA!')

    @cached_property
    def path_length(self) -> int | None:
        return self.certificate.extensions.get_extension_for_class(x509.BasicConstraints).value.path_length

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)

    @classmethod
    def new(cls, subject: Name, private_key: KeyType | PrivateKey = KeyType.RSA, parent_ca: Self | None = None, path_length: int | None = None, years: int | None = None) -> Self:
        if not subject:
            raise ValueError('The subject name must have at least one name attribute')
        if path_length is not None and path_length < 0:
            raise ValueError('The path_length argument must be a non-negative integer or None')
        if parent_ca is not None:
            if parent_ca.path_length is not None:
                if parent_ca.path_length == 0:
                    raise ValueError('The parent CA cannot create any other intermediary CAs')
                max_path_length = parent_ca.path_length - 1
                path_length = max_path_length if path_length is None else min(path_length, max_path_length)
            issuer = parent_ca.certificate.subject
            start_date = datetime.now(tz=UTC)
            end_date = min(start_date.replace(year=start_date.year + (years or 10)), parent_ca.certificate.not_valid_after_utc)
        else:
            issuer = subject
            start_date = datetime.now(tz=UTC)
            end_date = start_date.replace(year=start_date.year + (years or 30))

        if isinstance(private_key, KeyType):
            private_key = private_key.generate()

        public_key = private_key.public_key()

        cert_builder = CertificateBuilder(
            issuer_name=issuer,
            subject_name=subject,
            public_key=public_key,
            serial_number=x509.random_serial_number(),
            not_valid_before=start_date,
            not_valid_after=end_date,
        ).add_extension(
            x509.BasicConstraints(ca=True, path_length=path_length),
            critical=True,
        ).add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        ).add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
        if parent_ca is not None:
            certificate = cert_builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(parent_ca.certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value),
                critical=False,
            ).sign(parent_ca.private_key, algorithm=hashes.SHA256())
        else:
            certificate = cert_builder.sign(private_key, algorithm=hashes.SHA256())

        return cls(private_key, certificate)

    def issue_merchant_certificate(self, public_key: PublicKey, *, domain: str, organization: str | None = None, days: int = 365) -> Certificate:
        """Issue a certificate for a merchant that signs payment requests on behalf of a domain"""
        start_date = datetime.now(tz=UTC)
        end_date = start_date + timedelta(days=days)
        if end_date > self.certificate.not_valid_after_utc:
            raise ValueError(f'The requested period of {days} days exceeds the lifetime of this certificate authority')

        domain_name = idna_encode(domain)

        cert_builder = CertificateBuilder(
            issuer_name=self.certificate.subject,
            subject_name=make_name(common_name=domain_name, organization=organization),
            public_key=public_key,
            serial_number=x509.random_serial_number(),
            not_valid_before=start_date,
            not_valid_after=end_date,
        ).add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        ).add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        ).add_extension(
            x509.SubjectAlternativeName([x509.DNSName(domain_name)]),
            critical=False,
        ).add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        ).add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(self.certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value),
            critical=False,
        )

        return cert_builder.sign(self.private_key, algorithm=hashes.SHA256())


# Helpers

def idna_encode(string: str, /) -> str:
    """Turn a domain name into an ASCII representation by encoding it with IDNA"""
    return idna.encode(string, uts46=True).decode('ascii')


def idna_decode(string: str, /) -> str:
    """Turn the IDNA encoded labels of a domain name into their unicode representation"""
    if not any(label.startswith('xn--') for label in string.lower().split('.')):
        return string
    try:
        return idna.decode(string)
    except idna.IDNAError:
        return string  # not a domain name, show it as it is


def load_certificate(path: str | PathLike[str]) -> Certificate:
    return x509.load_pem_x509_certificate(Path(path).expanduser().read_bytes())


def save_certificate(certificate: Certificate, path: str | PathLike[str]) -> None:
    certificate_data = certificate.public_bytes(Encoding.PEM)
    path = Path(path).expanduser()
    with NamedTemporaryFile(dir=path.parent, delete=False) as tempfile:
        tempfile.write(certificate_data)
    Path(tempfile.name).replace(path)
    path.chmod(0o644)
