# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from copy import copy
from typing import Self

import pytest

from paypro.messages import CertificateChain, Output, Payment, PaymentACK, PaymentDetails, PaymentRequest
from paypro.messages.datamodel import AdapterRegistry, BytesAdapter, FieldAdapter, IntegerAdapter, StringAdapter, UInt32Adapter, UInt64Adapter
from paypro.messages.elements import AnnotatedStructure, Element, MessageElement, RepeatedElement, Structure
from paypro.messages.exceptions import InvalidCertificateEncodingError, InvalidInputError, MalformedInputError, RequiredFieldMissingError, TruncatedBufferError
from paypro.messages.merchant import decode_merchant_data, encode_merchant_data
from paypro.messages.wire import MAX_UINT32, MAX_VARINT


def make_details() -> PaymentDetails:
    return PaymentDetails(network='testnet', outputs=[Output(value=10000, script=b'')], time=1000, expires=2000)


class TestDataModel:

    def test_protocols(self) -> None:
        assert isinstance(UInt32Adapter, FieldAdapter)
        assert isinstance(UInt64Adapter, FieldAdapter)
        assert isinstance(BytesAdapter, FieldAdapter)
        assert isinstance(StringAdapter, FieldAdapter)

    def test_adapter_registry(self) -> None:
        assert AdapterRegistry.get_adapter(bytes) is BytesAdapter
        assert AdapterRegistry.get_adapter(str) is StringAdapter
        assert AdapterRegistry.get_adapter(int) is None

    def test_integer_adapters(self) -> None:
        for adapter, max_value in ((UInt32Adapter, MAX_UINT32), (UInt64Adapter, MAX_VARINT)):
            assert adapter.validate(0) == 0
            assert adapter.validate(max_value) == max_value
            with pytest.raises(InvalidInputError, match='Value is out of range for '):
                adapter.validate(-1)
            with pytest.raises(InvalidInputError, match='Value is out of range for '):
                adapter.validate(max_value + 1)
            with pytest.raises(InvalidInputError, match='Expected an integer value'):
                adapter.validate(True)  # noqa: FBT003
            with pytest.raises(InvalidInputError, match='Expected an integer value'):
                adapter.validate('1')  # type: ignore[arg-type]

        assert IntegerAdapter._abstract_
        assert not UInt32Adapter._abstract_

    def test_bytes_and_string_adapters(self) -> None:
        assert BytesAdapter.validate(bytearray(b'abc')) == b'abc'
        assert type(BytesAdapter.validate(memoryview(b'abc'))) is bytes
        with pytest.raises(InvalidInputError, match='Expected a bytes value'):
            BytesAdapter.validate('abc')  # type: ignore[arg-type]

        assert StringAdapter.validate('abc') == 'abc'
        with pytest.raises(InvalidInputError, match='Expected a string value'):
            StringAdapter.validate(b'abc')  # type: ignore[arg-type]
        with pytest.raises(InvalidInputError, match='String cannot be encoded as UTF-8'):
            StringAdapter.validate('\ud800')


class TestElements:

    def test_element(self) -> None:
        with pytest.raises(TypeError, match='No adapter is registered for'):
            class Structure1(AnnotatedStructure):
                test: Element[int] = Element(int, tag=1)

        with pytest.raises(TypeError, match='Cannot use abstract adapter'):
            class Structure2(AnnotatedStructure):
                test: Element[int] = Element(int, tag=1, adapter=IntegerAdapter)

        with pytest.raises(TypeError, match='Field tags must be positive integers'):
            class Structure3(AnnotatedStructure):
                test: Element[str] = Element(str, tag=0)

        with pytest.raises(TypeError, match='must have unique tags'):
            class Structure4(AnnotatedStructure):
                first: Element[str] = Element(str, tag=1)
                second: Element[str] = Element(str, tag=1)

        with pytest.raises(TypeError, match=r'Cannot assign the same .*? to two different names'):
            class Structure5(AnnotatedStructure):
                test: Element[str] = Element(str, tag=1)
                alias: Element[str] = test

        with pytest.raises(TypeError, match='Cannot specify both default and default_factory'):
            Element(str, tag=1, default='', default_factory=str)

        class Test(AnnotatedStructure):
            elem: Element[str] = Element(str, tag=1)

            @classmethod
            def new(cls) -> Self:
                # Bypass normal instance creation and return a bare-bone instance with no attributes set
                return super(Structure, cls).__new__(cls)

        assert isinstance(Test.elem, Element)  # Accessing the element on the class returns the element instance
        repr(Test.elem)  # Trigger element representation to test if it raises any exception

        struct = Test.new()
        with pytest.raises(AttributeError):
            _ = struct.elem
        with pytest.raises(AttributeError, match=r'Attribute .*? of .*? object cannot be deleted'):
            del struct.elem

        with pytest.raises(TruncatedBufferError, match=r'Failed to read the .*Test\.elem element from wire'):
            Test.from_wire(b'\x0a\x05abc')

    def test_structure(self) -> None:
        # When instantiated, only keyword arguments are allowed
        with pytest.raises(TypeError):
            Output(1, b'')  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]

        with pytest.raises(TypeError, match='Got an unexpected keyword argument'):
            Output(value=1, other=2)  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]

        with pytest.raises(TypeError, match="Missing a required keyword argument 'value'"):
            Output()  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]

        output = Output(value=5)
        assert output.script == b''
        assert output == Output(value=5, script=b'')
        assert output != Output(value=6)
        assert output != Payment()
        assert repr(output) == "Output(value=5, script=b'')"

        assert list(Output._fields_) == ['value', 'script']
        assert list(PaymentRequest.__signature__.parameters) == ['version', 'pki_type', 'pki_data', 'payment_details', 'signature']

    def test_message_element(self) -> None:
        class Test(AnnotatedStructure):
            output: MessageElement[Output] = MessageElement(Output, tag=1)

        with pytest.raises(TypeError, match="Missing a required keyword argument 'output'"):
            Test()  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]
        with pytest.raises(InvalidInputError, match='should be of type'):
            Test(output=Payment())  # type: ignore[arg-type]

        test = Test(output=Output(value=1))
        assert test.to_wire() == b'\x0a\x04\x08\x01\x12\x00'
        assert Test.from_wire(test.to_wire()) == test

        with pytest.raises(RequiredFieldMissingError, match=r'Failed to read the .*Test\.output element from wire'):
            Test.from_wire(b'')

    def test_repeated_element(self) -> None:
        class Test(AnnotatedStructure):
            values: RepeatedElement[str] = RepeatedElement(str, tag=1)
            outputs: RepeatedElement[Output] = RepeatedElement(Output, tag=2)

        test = Test()
        assert test.values == []
        assert test.outputs == []
        assert test.to_wire() == b''

        test = Test(values=('a', 'b'), outputs=[Output(value=1)])
        assert test.values == ['a', 'b']
        assert test.to_wire() == b'\x0a\x01a\x0a\x01b\x12\x04\x08\x01\x12\x00'
        assert Test.from_wire(test.to_wire()) == test

        with pytest.raises(InvalidInputError, match='must be set from an iterable'):
            test.values = 'abc'  # type: ignore[assignment]
        with pytest.raises(InvalidInputError, match=r'Invalid item for the .*Test\.values element'):
            test.values = [b'abc']  # type: ignore[list-item]
        with pytest.raises(InvalidInputError, match='items should be of type'):
            test.outputs = [Payment()]  # type: ignore[list-item]

    def test_copy(self) -> None:
        payment = Payment(transactions=[b'tx'])
        payment_copy = copy(payment)
        assert payment_copy == payment
        payment_copy.transactions.append(b'other')
        assert payment.transactions == [b'tx']


class TestPaymentDetails:

    def test_encoding(self) -> None:
        details = make_details()
        data = details.to_wire()

        assert data.hex() == '0a07746573746e6574' '120508904e1200' '18e807' '20d00f'
        assert PaymentDetails.from_wire(data) == details
        assert PaymentDetails.from_hex(details.to_hex()) == details

    def test_defaults(self) -> None:
        details = PaymentDetails()
        assert details.network is None
        assert details.outputs == []
        assert details.expires is None
        assert details.memo is None
        assert details.payment_url is None
        assert details.merchant_data is None
        assert isinstance(details.time, int)
        assert details.time > 0

    def test_optional_fields(self) -> None:
        details = PaymentDetails(time=1, memo='memo', payment_url='https://example.com/pay', merchant_data=b'\x00\x01')
        decoded = PaymentDetails.from_wire(details.to_wire())
        assert decoded == details
        assert decoded.network is None
        assert decoded.expires is None
        assert decoded.payment_url == 'https://example.com/pay'
        assert decoded.merchant_data == b'\x00\x01'

    def test_sentinel(self) -> None:
        details = PaymentDetails(time=1, expires=-1)
        assert details.expires is None
        assert details.to_wire() == b'\x18\x01'

        details.expires = 5
        details.expires = -1
        assert details.expires is None

        decoded = PaymentDetails.from_wire(details.to_wire())
        assert decoded.expires is None

    def test_validation(self) -> None:
        with pytest.raises(InvalidInputError, match=r'Invalid value for the PaymentDetails\.time element'):
            PaymentDetails(time=-5)
        with pytest.raises(InvalidInputError, match=r'Invalid value for the PaymentDetails\.expires element'):
            PaymentDetails(time=1, expires=-2)
        with pytest.raises(InvalidInputError, match=r'PaymentDetails\.time element is mandatory'):
            PaymentDetails(time=None)  # type: ignore[arg-type]
        with pytest.raises(InvalidInputError):
            PaymentDetails(time=1, network=b'main')  # type: ignore[arg-type]
        with pytest.raises(InvalidInputError):
            Output(value=MAX_VARINT + 1)

    def test_decoding_errors(self) -> None:
        with pytest.raises(RequiredFieldMissingError, match=r'Failed to read the PaymentDetails\.time element from wire'):
            PaymentDetails.from_wire(b'')
        with pytest.raises(MalformedInputError, match='Unexpected data after the last PaymentDetails field'):
            PaymentDetails.from_wire(b'\x18\x01\x40\x01')
        with pytest.raises(MalformedInputError, match=r'PaymentDetails\.time element from wire: .* out of range for unsigned 64-bit integer'):
            PaymentDetails.from_wire(b'\x19' + 8 * b'\xff')
        with pytest.raises(MalformedInputError, match=r'Output\.value element from wire'):
            Output.from_wire(b'\x09' + 8 * b'\xff' + b'\x12\x00')
        assert PaymentDetails.from_wire(b'\x19' + b'\xff' * 7 + b'\x7f').time == MAX_VARINT
        with pytest.raises(MalformedInputError, match='Invalid hex data'):
            PaymentDetails.from_hex('xyz')

    def test_expiration(self) -> None:
        details = make_details()
        assert not details.is_expired(now=1500)
        assert not details.is_expired(now=2000)
        assert details.is_expired(now=2001)

        details.expires = None
        assert not details.is_expired(now=2**40)
        assert not details.is_expired()


class TestPaymentRequest:

    def test_encoding(self) -> None:
        request = PaymentRequest(version=1, pki_type='none', payment_details=make_details())
        decoded = PaymentRequest.from_wire(request.to_wire())
        assert decoded == request
        assert decoded.payment_details == make_details()
        assert decoded.signature is None

    def test_sentinel(self) -> None:
        request = PaymentRequest(version=-1, payment_details=PaymentDetails(time=1))
        assert request.version is None
        assert request.to_wire() == b'\x22\x02\x18\x01'

        with pytest.raises(InvalidInputError, match=r'Invalid value for the PaymentRequest\.version element'):
            request.version = MAX_UINT32 + 1

    def test_required_details(self) -> None:
        with pytest.raises(RequiredFieldMissingError, match=r'PaymentRequest\.payment_details'):
            PaymentRequest.from_wire(b'\x08\x01')

    def test_chain(self) -> None:
        request = PaymentRequest()
        assert request.get_chain() == []

        request.set_chain([b'a', bytearray(b'bc')])
        assert request.pki_data == b'\x0a\x01a\x0a\x02bc'
        assert request.get_chain() == [b'a', b'bc']
        assert CertificateChain.from_wire(request.pki_data).certificates == [b'a', b'bc']

        request.set_chain([b'xyz'])
        assert request.get_chain() == [b'xyz']

        with pytest.raises(InvalidCertificateEncodingError, match='Certificate 1 in the chain is not a byte sequence'):
            request.set_chain([b'a', 'b'])  # type: ignore[list-item]
        with pytest.raises(InvalidCertificateEncodingError, match='must be a sequence of DER encoded certificates'):
            request.set_chain(b'abc')
        with pytest.raises(TypeError):
            request.set_chain(None)  # type: ignore[arg-type]

        # A failed update leaves the previous chain in place
        assert request.get_chain() == [b'xyz']

    def test_signature_data(self) -> None:
        request = PaymentRequest(pki_type='x509+sha256', payment_details=make_details())
        never_set = request.signature_data()

        # The signature is present but empty
        assert never_set.endswith(b'\x2a\x00')
        assert never_set == request.to_wire() + b'\x2a\x00'

        request.signature = b'signature'
        assert request.signature_data() == never_set
        assert request.signature == b'signature'

        request.signature = None
        assert request.signature_data() == never_set

        request.signature = b''
        assert request.signature_data() == never_set


class TestPayment:

    def test_encoding(self) -> None:
        payment = Payment(merchant_data=b'\x01\x02', transactions=[b'tx1', b'tx2'], refund_to=[Output(value=5, script=b'\x76\xa9')], memo='thanks')
        decoded = Payment.from_wire(payment.to_wire())
        assert decoded == payment
        assert decoded.transactions == [b'tx1', b'tx2']
        assert decoded.refund_to == [Output(value=5, script=b'\x76\xa9')]

        assert Payment().to_wire() == b''
        assert Payment.from_wire(b'') == Payment()

    def test_ack(self) -> None:
        ack = PaymentACK(payment=Payment(transactions=[b'tx']), memo='ok')
        assert ack.to_wire() == b'\x0a\x04\x12\x02tx\x12\x02ok'
        assert PaymentACK.from_wire(ack.to_wire()) == ack
        assert PaymentACK().payment == Payment()


class TestMerchantData:

    def test_json(self) -> None:
        details = PaymentDetails(time=1)
        details.set_data({'order': 42})
        assert details.merchant_data == b'{"order":42}'
        assert details.get_data() == b'{"order":42}'
        assert details.get_data('json') == {'order': 42}

        details.set_data('order', 'json')
        assert details.get_data('json') == 'order'

        details.set_data(b'\x01\x02')
        assert details.get_data('json') is None

    def test_encodings(self) -> None:
        payment = Payment()
        assert payment.get_data() is None

        payment.set_data('hello')
        assert payment.merchant_data == b'hello'
        assert payment.get_data('utf-8') == 'hello'

        payment.set_data('0102', 'hex')
        assert payment.merchant_data == b'\x01\x02'
        assert payment.get_data('hex') == '0102'
        assert payment.get_data('base64') == 'AQI='

        payment.set_data('AQI=', 'base64')
        assert payment.merchant_data == b'\x01\x02'

        payment.set_data(None)
        assert payment.merchant_data is None

        # empty merchant data is present, just empty
        payment.set_data(b'')
        assert payment.merchant_data == b''
        assert payment.get_data() == b''
        assert payment.get_data('hex') == ''
        assert Payment.from_wire(payment.to_wire()).get_data() == b''

    def test_errors(self) -> None:
        with pytest.raises(InvalidInputError, match='Invalid hex merchant data'):
            encode_merchant_data('abc', 'hex')
        with pytest.raises(InvalidInputError, match='Cannot encode merchant data'):
            encode_merchant_data('data', 'no-such-codec')
        with pytest.raises(InvalidInputError, match='can only be encoded as JSON'):
            encode_merchant_data({'a': 1}, 'hex')
        with pytest.raises(InvalidInputError, match='Cannot serialize merchant data to JSON'):
            encode_merchant_data(object())
        with pytest.raises(InvalidInputError, match='Unknown merchant data encoding'):
            decode_merchant_data(b'data', 'no-such-codec')
        with pytest.raises(InvalidInputError, match='Cannot decode merchant data'):
            decode_merchant_data(b'\xff', 'utf-8')
