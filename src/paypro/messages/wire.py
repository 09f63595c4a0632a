# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Low level codec for the subset of the protocol buffers wire format used by
the payment protocol messages.

   Every field is encoded as a header followed by a payload. The header is a
   varint holding the field tag in the high bits and the wire type in the
   low 3 bits:

     +------------------------------+-------------------------------+
     |  header = tag << 3 | type    |  payload (depends on type)    |
     +------------------------------+-------------------------------+

   Supported wire types:

     0  varint      base-128 little endian groups, continuation bit 0x80
     1  fixed64     8 bytes, little endian
     2  delimited   varint length followed by that many bytes
     5  fixed32     4 bytes, little endian

   Group wire types (3 and 4) are rejected. Varints are limited to 9 groups,
   which caps values at 2**63-1.

"""

import enum
from dataclasses import dataclass
from typing import Final, Literal, overload

from .exceptions import MalformedInputError, MalformedVarintError, RequiredFieldMissingError, TruncatedBufferError, WireTypeError

__all__ = 'MAX_UINT32', 'MAX_VARINT', 'Field', 'WireData', 'WireReader', 'WireType', 'WireWriter'


type WireData = bytes | bytearray | memoryview


MAX_VARINT_GROUPS: Final = 9
MAX_VARINT: Final = 2**(7 * MAX_VARINT_GROUPS) - 1
MAX_UINT32: Final = 2**32 - 1
MAX_UINT64: Final = 2**64 - 1


class WireType(enum.IntEnum):
    VARINT = 0
    FIXED64 = 1
    DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


@dataclass(frozen=True, slots=True)
class Field:
    """A decoded field. Numeric wire types populate value, DELIMITED populates data."""

    tag: int
    wire_type: WireType
    value: int | None = None
    data: bytes | None = None
    size: int = 0


class WireReader:
    """Forward only reader over an immutable buffer with an explicit cursor"""

    __slots__ = '_data', '_offset'

    def __init__(self, data: WireData, /) -> None:
        self._data = bytes(data)
        self._offset = 0

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(<{len(self._data)} bytes>, offset={self._offset})'

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    @property
    def at_end(self) -> bool:
        return self._offset >= len(self._data)

    def tell(self) -> int:
        return self._offset

    def seek(self, offset: int, /) -> None:
        if not 0 <= offset <= len(self._data):
            raise ValueError(f'Offset is outside the buffer: {offset!r}')
        self._offset = offset

    def read_varint(self) -> int:
        value = 0
        for group in range(MAX_VARINT_GROUPS):
            if self._offset >= len(self._data):
                raise TruncatedBufferError('Insufficient data in buffer to extract a varint')
            byte = self._data[self._offset]
            self._offset += 1
            value |= (byte & 0x7f) << (7 * group)
            if not byte & 0x80:
                return value
        raise MalformedVarintError(f'Varint has more than {MAX_VARINT_GROUPS} groups (exceeds {MAX_VARINT})')

    def _read_bytes(self, size: int, /) -> bytes:
        if size > self.remaining:
            raise TruncatedBufferError(f'Insufficient data in buffer to extract {size} bytes ({self.remaining} left)')
        data = self._data[self._offset:self._offset + size]
        self._offset += size
        return data

    @overload
    def read_field(self, tag: None = None, /, *, optional: bool = False) -> Field: ...

    @overload
    def read_field(self, tag: int, /, *, optional: Literal[False] = False) -> Field: ...

    @overload
    def read_field(self, tag: int, /, *, optional: bool) -> Field | None: ...

    def read_field(self, tag: int | None = None, /, *, optional: bool = False) -> Field | None:
        offset = self._offset

        if tag is not None and self.at_end:
            if optional:
                return None
            raise RequiredFieldMissingError(f'Required field {tag} is missing (reached the end of the buffer)')

        header = self.read_varint()
        field_tag = header >> 3

        if field_tag == 0:
            raise MalformedInputError('Invalid field tag 0')

        if tag is not None and field_tag != tag:
            self._offset = offset
            if optional:
                return None
            raise RequiredFieldMissingError(f'Required field {tag} is missing (found field {field_tag} instead)')

        try:
            wire_type = WireType(header & 7)
        except ValueError:
            raise WireTypeError(f'Invalid wire type {header & 7} for field {field_tag}') from None

        match wire_type:
            case WireType.VARINT:
                field = Field(field_tag, wire_type, value=self.read_varint())
            case WireType.FIXED64:
                field = Field(field_tag, wire_type, value=int.from_bytes(self._read_bytes(8), byteorder='little'))
            case WireType.DELIMITED:
                field = Field(field_tag, wire_type, data=self._read_bytes(self.read_varint()))
            case WireType.FIXED32:
                field = Field(field_tag, wire_type, value=int.from_bytes(self._read_bytes(4), byteorder='little'))
            case WireType.START_GROUP | WireType.END_GROUP:
                raise WireTypeError(f'Group wire types are not supported (field {field_tag})')

        return Field(field.tag, field.wire_type, value=field.value, data=field.data, size=self._offset - offset)

    def peek_tag(self) -> int:
        """Return the tag of the next field without consuming it, or -1 if the buffer is exhausted"""
        if self.at_end:
            return -1
        offset = self._offset
        field = self.read_field()
        self._offset -= field.size
        assert self._offset == offset  # noqa: S101 (used by type checkers)
        return field.tag

    def read_field_u32(self, tag: int, /, *, optional: bool = False) -> int | None:
        field = self.read_field(tag, optional=optional)
        if field is None:
            return None
        if field.wire_type not in {WireType.VARINT, WireType.FIXED32}:
            raise WireTypeError(f'Field {tag} has wire type {field.wire_type.name}, expected VARINT or FIXED32')
        assert field.value is not None  # noqa: S101 (used by type checkers)
        if field.value > MAX_UINT32:
            raise MalformedInputError(f'Value of field {tag} is out of range for unsigned 32-bit integer: {field.value!r}')
        return field.value

    def read_field_u64(self, tag: int, /, *, optional: bool = False) -> int | None:
        field = self.read_field(tag, optional=optional)
        if field is None:
            return None
        if field.wire_type not in {WireType.VARINT, WireType.FIXED64}:
            raise WireTypeError(f'Field {tag} has wire type {field.wire_type.name}, expected VARINT or FIXED64')
        assert field.value is not None  # noqa: S101 (used by type checkers)
        if field.value > MAX_VARINT:
            raise MalformedInputError(f'Value of field {tag} is out of range for unsigned 64-bit integer: {field.value!r}')
        return field.value

    def read_field_bytes(self, tag: int, /, *, optional: bool = False) -> bytes | None:
        field = self.read_field(tag, optional=optional)
        if field is None:
            return None
        if field.wire_type is not WireType.DELIMITED:
            raise WireTypeError(f'Field {tag} has wire type {field.wire_type.name}, expected DELIMITED')
        assert field.data is not None  # noqa: S101 (used by type checkers)
        return field.data

    def read_field_string(self, tag: int, /, *, optional: bool = False) -> str | None:
        data = self.read_field_bytes(tag, optional=optional)
        if data is None:
            return None
        try:
            return data.decode()
        except UnicodeDecodeError as exc:
            raise MalformedInputError(f'Cannot decode field {tag} to string: {exc}') from exc


class WireWriter:
    """Accumulates fields in the order they are written. A writer is used for a single message."""

    __slots__ = '_buffer',  # noqa: COM818

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(<{len(self._buffer)} bytes>)'

    def __len__(self) -> int:
        return len(self._buffer)

    def write_varint(self, value: int, /) -> None:
        if not 0 <= value <= MAX_VARINT:
            raise MalformedVarintError(f'Value is out of range for a varint (0 to {MAX_VARINT}): {value!r}')
        while value > 0x7f:
            self._buffer.append(value & 0x7f | 0x80)
            value >>= 7
        self._buffer.append(value)

    def write_header(self, tag: int, wire_type: WireType, /) -> None:
        if tag < 1:
            raise ValueError(f'Field tags must be positive integers: {tag!r}')
        self.write_varint(tag << 3 | wire_type)

    def write_field_bytes(self, tag: int, data: WireData, /) -> None:
        self.write_header(tag, WireType.DELIMITED)
        self.write_varint(len(data))
        self._buffer.extend(data)

    def write_field_string(self, tag: int, value: str, /) -> None:
        self.write_field_bytes(tag, value.encode())

    def write_field_u32(self, tag: int, value: int, /) -> None:
        if not 0 <= value <= MAX_UINT32:
            raise MalformedInputError(f'Value is out of range for unsigned 32-bit integer: {value!r}')
        self.write_header(tag, WireType.VARINT)
        self.write_varint(value)

    def write_field_u64(self, tag: int, value: int, /) -> None:
        if not 0 <= value <= MAX_VARINT:
            raise MalformedVarintError(f'Value is out of range for a varint (0 to {MAX_VARINT}): {value!r}')
        self.write_header(tag, WireType.VARINT)
        self.write_varint(value)

    def write_field_fixed32(self, tag: int, value: int, /) -> None:
        if not 0 <= value <= MAX_UINT32:
            raise MalformedInputError(f'Value is out of range for fixed32: {value!r}')
        self.write_header(tag, WireType.FIXED32)
        self._buffer.extend(value.to_bytes(4, byteorder='little'))

    def write_field_fixed64(self, tag: int, value: int, /) -> None:
        if not 0 <= value <= MAX_UINT64:
            raise MalformedInputError(f'Value is out of range for fixed64: {value!r}')
        self.write_header(tag, WireType.FIXED64)
        self._buffer.extend(value.to_bytes(8, byteorder='little'))

    def render(self) -> bytes:
        return bytes(self._buffer)
