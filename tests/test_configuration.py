# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from binascii import b2a_base64 as base64encode
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding

from paypro.configuration import Configuration, ns_paypro
from paypro.configuration.xml import (
    AdapterRegistry,
    Base64BinaryAdapter,
    BooleanAdapter,
    DataAdapter,
    HexBinaryAdapter,
    MultiDataElement,
    Namespace,
    OptionalAttribute,
    OptionalDataElement,
    XMLElement,
)
from paypro.messages import PaymentDetails, PaymentRequest
from paypro.trust.exceptions import UnsupportedSchemeError
from paypro.trust.private import KeyType
from paypro.trust.x509 import CA, fingerprint, make_name


@pytest.fixture(scope='module')
def root_ca() -> CA:
    return CA.new(make_name(common_name='Configuration Test Root CA'), private_key=KeyType.ECDSA)


def make_document(body: str = '', attributes: str = '') -> str:
    return f'<payment-protocol xmlns="{ns_paypro}"{attributes}>{body}</payment-protocol>'


class TestXMLFramework:

    def test_namespaces(self) -> None:
        namespace = Namespace('urn:test', prefix='test')
        assert namespace == 'urn:test'
        assert namespace.prefix == 'test'
        with pytest.raises(AttributeError, match='is read-only'):
            namespace.prefix = 'other'

    def test_adapters(self) -> None:
        assert isinstance(BooleanAdapter, DataAdapter)
        assert AdapterRegistry.get_adapter(bool) is BooleanAdapter
        assert AdapterRegistry.get_adapter(bytes) is Base64BinaryAdapter

        assert BooleanAdapter.xml_parse('true') is True
        assert BooleanAdapter.xml_parse('0') is False
        with pytest.raises(ValueError, match='Invalid boolean value'):
            BooleanAdapter.xml_parse('yes')

        assert Base64BinaryAdapter.xml_build(b'\x01\x02') == 'AQI='
        assert Base64BinaryAdapter.xml_parse('AQI=') == b'\x01\x02'
        assert HexBinaryAdapter.xml_build(b'\xab\xcd') == 'abcd'
        assert HexBinaryAdapter.xml_parse('AB:CD') == b'\xab\xcd'

    def test_xml_element(self) -> None:
        test_ns = Namespace('urn:test', prefix=None)

        class AbstractElement(XMLElement, namespace=test_ns):
            pass

        with pytest.raises(TypeError, match=r'Cannot instantiate abstract class .+'):
            AbstractElement()

        class RootElement(AbstractElement, name='root'):
            count: OptionalAttribute[int] = OptionalAttribute(int, default=0)
            label: OptionalDataElement[str] = OptionalDataElement(str)
            items: MultiDataElement[str] = MultiDataElement(str, name='item')

        with pytest.raises(TypeError, match='got an unexpected keyword argument'):
            RootElement(other=None)  # type: ignore[call-arg]
        with pytest.raises(TypeError, match="missing a required keyword argument 'items'"):
            RootElement()  # type: ignore[call-arg]

        root = RootElement(items=['a', 'b'], label='text', count=3)
        assert root.to_string(pretty_print=False) == '<root xmlns="urn:test" count="3"><label>text</label><item>a</item><item>b</item></root>'

        parsed = RootElement.from_string(root.to_string())
        assert parsed == root
        assert parsed.items == ['a', 'b']

        with pytest.raises(ValueError, match='must have at least one entry'):
            root.items = []
        with pytest.raises(TypeError, match='value must be of type str'):
            root.items = [1]  # type: ignore[list-item]
        assert root.items == ['a', 'b']

        root.label = None
        assert root.label is None
        root.count = None
        assert root.count == 0

        with pytest.raises(ValueError, match='There must be at least 1 element'):
            RootElement.from_string('<root xmlns="urn:test"/>')
        with pytest.raises(ValueError, match="Invalid value for attribute 'count'"):
            RootElement.from_string('<root xmlns="urn:test" count="many"><item>a</item></root>')
        with pytest.raises(ValueError, match='Excess elements'):
            RootElement.from_string('<root xmlns="urn:test"><label>a</label><label>b</label><item>a</item></root>')
        with pytest.raises(ValueError, match='does not match'):
            RootElement.from_string('<root><item>a</item></root>')


class TestConfiguration:

    def test_defaults(self) -> None:
        configuration = Configuration()
        assert configuration.allow_untrusted is False
        assert configuration.pki_type == 'x509+sha256'
        assert configuration.trusted_roots == []
        assert configuration.trusted_fingerprints == []
        assert configuration.blocked_fingerprints == []

        store = configuration.trust_store()
        assert len(store) == 0
        assert not store.allow_untrusted

        assert Configuration.from_string(make_document()) == configuration

    def test_parse(self, root_ca: CA) -> None:
        root_fingerprint = fingerprint(root_ca.certificate)
        body = (
            '<pki-type>x509+sha1</pki-type>'
            f'<trusted-root>{base64encode(root_ca.der, newline=False).decode()}</trusted-root>'
            f'<trusted-fingerprint>{64 * "a"}</trusted-fingerprint>'
            f'<blocked-fingerprint>{root_fingerprint}</blocked-fingerprint>'
        )
        configuration = Configuration.from_string(make_document(body, ' allow-untrusted="true"'))

        assert configuration.allow_untrusted is True
        assert configuration.pki_type == 'x509+sha1'
        assert configuration.trusted_roots == [root_ca.der]
        assert configuration.trusted_fingerprints == [32 * b'\xaa']
        assert configuration.blocked_fingerprints == [bytes.fromhex(root_fingerprint)]

        store = configuration.trust_store()
        assert root_ca.certificate in store
        assert len(store) == 2
        assert store.allow_untrusted
        assert not store.is_trusted(root_ca.certificate)  # blocked takes precedence

    def test_build(self, root_ca: CA) -> None:
        configuration = Configuration(trusted_fingerprints=[bytes.fromhex(fingerprint(root_ca.certificate))], pki_type='x509+sha1')
        document = configuration.to_string()
        assert document.index('pki-type') < document.index('trusted-fingerprint')

        configuration.trusted_roots = [root_ca.der]
        assert document.index('pki-type') < configuration.to_string().index('trusted-root') < configuration.to_string().index('trusted-fingerprint')

        parsed = Configuration.from_string(configuration.to_string())
        assert parsed == configuration
        assert parsed.trust_store().is_trusted(root_ca.certificate)

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / 'paypro.xml'
        path.write_text(make_document('<pki-type>x509+sha256</pki-type>', ' allow-untrusted="1"'))
        configuration = Configuration.from_file(path)
        assert configuration.allow_untrusted is True
        assert configuration.pki_type == 'x509+sha256'

    def test_validation(self) -> None:
        with pytest.raises(ValueError, match="Invalid value for element 'pki-type'"):
            Configuration.from_string(make_document('<pki-type>x509+md5</pki-type>'))
        with pytest.raises(ValueError, match="Invalid value for element 'trusted-fingerprint'"):
            Configuration.from_string(make_document('<trusted-fingerprint>xyz</trusted-fingerprint>'))
        with pytest.raises(ValueError, match="Invalid value for attribute 'allow-untrusted'"):
            Configuration.from_string(make_document(attributes=' allow-untrusted="maybe"'))
        with pytest.raises(ValueError, match='Excess elements'):
            Configuration.from_string(make_document('<pki-type>x509+sha1</pki-type><pki-type>x509+sha256</pki-type>'))
        with pytest.raises(ValueError, match='Invalid XML document'):
            Configuration.from_string('<payment-protocol')
        with pytest.raises(ValueError, match='does not match'):
            Configuration.from_string('<configuration/>')

        with pytest.raises(UnsupportedSchemeError):
            Configuration(pki_type='pgp+sha256')
        with pytest.raises(TypeError):
            Configuration(allow_untrusted='yes')  # type: ignore[arg-type]

    def test_invalid_trust_data(self) -> None:
        configuration = Configuration.from_string(make_document('<trusted-root>AQI=</trusted-root>'))
        with pytest.raises(ValueError, match='Invalid trusted-root certificate at position 0'):
            configuration.trust_store()

        configuration = Configuration.from_string(make_document('<trusted-fingerprint>abcd</trusted-fingerprint>'))
        with pytest.raises(ValueError, match='Invalid SHA-256 fingerprint'):
            configuration.trust_store()

    def test_signing(self, root_ca: CA) -> None:
        merchant_key = ec.generate_private_key(ec.SECP256R1())
        certificate = root_ca.issue_merchant_certificate(merchant_key.public_key(), domain='shop.example.com')
        chain = [certificate.public_bytes(Encoding.DER), root_ca.der]

        configuration = Configuration(pki_type='x509+sha1', trusted_roots=[root_ca.der])
        request = PaymentRequest(payment_details=PaymentDetails(network='test', time=1000))
        configuration.sign_request(request, merchant_key, chain)
        assert request.pki_type == 'x509+sha1'
        assert request.get_chain() == chain
        assert configuration.verify_request(request)

        assert not Configuration(trusted_fingerprints=[32 * b'\xaa']).verify_request(request)
        assert not Configuration(blocked_fingerprints=[bytes.fromhex(fingerprint(root_ca.certificate))]).verify_request(request)

        request.payment_details = PaymentDetails(network='main', time=1000)
        assert not configuration.verify_request(request)
