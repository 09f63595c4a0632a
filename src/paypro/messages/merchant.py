# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import json
from binascii import Error as BinasciiError
from binascii import a2b_base64 as base64decode
from binascii import b2a_base64 as base64encode

from .exceptions import InvalidInputError

__all__ = 'decode_merchant_data', 'encode_merchant_data'


# Merchant data is opaque to the protocol and is carried as bytes on the
# wire. These helpers convert between those bytes and the representations
# merchants commonly use for it.

def encode_merchant_data(data: object, encoding: str | None = None) -> bytes | None:
    """
    Turn merchant data into the bytes carried on the wire.

    Bytes are used as they are, strings are encoded using the given encoding
    (utf-8 by default, 'hex' and 'base64' are also recognized) and anything
    else is serialized as JSON.
    """
    match data:
        case None:
            return None
        case bytes() | bytearray() | memoryview():
            return bytes(data)
        case str():
            match encoding:
                case 'hex':
                    try:
                        return bytes.fromhex(data)
                    except ValueError as exc:
                        raise InvalidInputError(f'Invalid hex merchant data: {exc}') from exc
                case 'base64':
                    try:
                        return base64decode(data)
                    except BinasciiError as exc:
                        raise InvalidInputError(f'Invalid base64 merchant data: {exc}') from exc
                case 'json':
                    return json.dumps(data).encode()
                case _:
                    try:
                        return data.encode(encoding or 'utf-8')
                    except (LookupError, UnicodeEncodeError) as exc:
                        raise InvalidInputError(f'Cannot encode merchant data: {exc}') from exc
        case _:
            if encoding not in {None, 'json'}:
                raise InvalidInputError(f'Structured merchant data can only be encoded as JSON, not {encoding!r}')
            try:
                return json.dumps(data, separators=(',', ':')).encode()
            except (TypeError, ValueError) as exc:
                raise InvalidInputError(f'Cannot serialize merchant data to JSON: {exc}') from exc


def decode_merchant_data(data: bytes | None, encoding: str | None = None) -> object:
    """
    Turn the merchant data bytes into the requested representation.

    Without an encoding the raw bytes are returned. With the 'json' encoding
    the parsed value is returned, or None if the data is not valid JSON.
    """
    if data is None:
        return None
    match encoding:
        case None:
            return data
        case 'json':
            try:
                return json.loads(data.decode())
            except (UnicodeDecodeError, ValueError):
                return None
        case 'hex':
            return data.hex()
        case 'base64':
            return base64encode(data, newline=False).decode('ascii')
        case _:
            try:
                return data.decode(encoding)
            except LookupError as exc:
                raise InvalidInputError(f'Unknown merchant data encoding: {encoding!r}') from exc
            except UnicodeDecodeError as exc:
                raise InvalidInputError(f'Cannot decode merchant data as {encoding!r}: {exc}') from exc
