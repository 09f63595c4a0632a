# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import MutableMapping
from typing import ClassVar, Protocol, runtime_checkable

from .exceptions import InvalidInputError
from .wire import MAX_UINT32, MAX_VARINT, WireReader, WireWriter

__all__ = (  # noqa: RUF022
    'FieldAdapter',
    'AdapterRegistry',

    'IntegerAdapter',
    'UInt32Adapter',
    'UInt64Adapter',
    'BytesAdapter',
    'StringAdapter',
)


@runtime_checkable
class FieldAdapter[T](Protocol):
    """Wire protocol adapter for a scalar message field of type T"""

    _abstract_: ClassVar[bool] = True

    @staticmethod
    def read(reader: WireReader, tag: int, /, *, optional: bool) -> T | None: ...

    @staticmethod
    def write(writer: WireWriter, tag: int, value: T, /) -> None: ...

    @staticmethod
    def validate(value: T, /) -> T: ...


class AdapterRegistry[T]:
    _adapters: ClassVar[MutableMapping[type, type[FieldAdapter]]] = {}

    @classmethod
    def associate(cls, data_type: type[T], adapter: type[FieldAdapter[T]]) -> None:
        cls._adapters[data_type] = adapter

    @classmethod
    def get_adapter(cls, data_type: type[T]) -> type[FieldAdapter[T]] | None:
        return cls._adapters.get(data_type, None)


class IntegerAdapter:
    _abstract_: ClassVar[bool] = True
    _max_value_: ClassVar[int] = NotImplemented
    _description_: ClassVar[str] = 'integer'

    def __init_subclass__(cls, *, max_value: int = NotImplemented, description: str = NotImplemented, **kw: object) -> None:
        if max_value is not NotImplemented:
            cls._max_value_ = max_value
            cls._abstract_ = False
        if description is not NotImplemented:
            cls._description_ = description
        super().__init_subclass__(**kw)

    @classmethod
    def validate(cls, value: int, /) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidInputError(f'Expected an integer value, got {value.__class__.__qualname__!r}')
        if not 0 <= value <= cls._max_value_:
            raise InvalidInputError(f'Value is out of range for {cls._description_}: {value!r}')
        return value


class UInt32Adapter(IntegerAdapter, max_value=MAX_UINT32, description='unsigned 32-bit integer'):
    @staticmethod
    def read(reader: WireReader, tag: int, /, *, optional: bool) -> int | None:
        return reader.read_field_u32(tag, optional=optional)

    @staticmethod
    def write(writer: WireWriter, tag: int, value: int, /) -> None:
        writer.write_field_u32(tag, value)


class UInt64Adapter(IntegerAdapter, max_value=MAX_VARINT, description='unsigned 64-bit integer'):
    # The upper bound is the varint limit (2**63-1), not 2**64-1.

    @staticmethod
    def read(reader: WireReader, tag: int, /, *, optional: bool) -> int | None:
        return reader.read_field_u64(tag, optional=optional)

    @staticmethod
    def write(writer: WireWriter, tag: int, value: int, /) -> None:
        writer.write_field_u64(tag, value)


class BytesAdapter:
    _abstract_: ClassVar[bool] = False

    @staticmethod
    def read(reader: WireReader, tag: int, /, *, optional: bool) -> bytes | None:
        return reader.read_field_bytes(tag, optional=optional)

    @staticmethod
    def write(writer: WireWriter, tag: int, value: bytes, /) -> None:
        writer.write_field_bytes(tag, value)

    @staticmethod
    def validate(value: bytes, /) -> bytes:
        if not isinstance(value, bytes | bytearray | memoryview):
            raise InvalidInputError(f'Expected a bytes value, got {value.__class__.__qualname__!r}')
        return bytes(value)


class StringAdapter:
    _abstract_: ClassVar[bool] = False

    @staticmethod
    def read(reader: WireReader, tag: int, /, *, optional: bool) -> str | None:
        return reader.read_field_string(tag, optional=optional)

    @staticmethod
    def write(writer: WireWriter, tag: int, value: str, /) -> None:
        writer.write_field_string(tag, value)

    @staticmethod
    def validate(value: str, /) -> str:
        if not isinstance(value, str):
            raise InvalidInputError(f'Expected a string value, got {value.__class__.__qualname__!r}')
        try:
            value.encode()
        except UnicodeEncodeError as exc:
            raise InvalidInputError(f'String cannot be encoded as UTF-8: {exc}') from exc
        return value


AdapterRegistry.associate(bytes, BytesAdapter)
AdapterRegistry.associate(str, StringAdapter)
