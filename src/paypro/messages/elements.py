# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from inspect import Parameter, Signature
from typing import Any, ClassVar, Self, cast, dataclass_transform, overload

from .datamodel import AdapterRegistry, FieldAdapter
from .exceptions import InvalidInputError, MalformedInputError
from .wire import WireData, WireReader, WireWriter

__all__ = (  # noqa: RUF022
    'Structure',
    'AnnotatedStructure',

    'Element',
    'MessageElement',
    'RepeatedElement',
)


class Structure:  # noqa: PLW1641
    """
    A message made of tagged fields.

    The fields are declared as class level descriptors and their declaration
    order is the canonical order in which they are decoded from and emitted
    on the wire.
    """

    __signature__: ClassVar[Signature] = Signature()

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    _all_arguments: ClassVar[frozenset[str]] = frozenset()
    _mandatory_arguments: ClassVar[frozenset[str]] = frozenset()

    def __new__(cls, **kw: object) -> Self:
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'Got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'Missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        for name, field in self._fields_.items():
            setattr(self, name, kw[name] if name in kw else field.get_default())

    def __init_subclass__(cls, **kw: object) -> None:
        super().__init_subclass__(**kw)

        # all the fields on this structure (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        tags = [field.tag for field in fields.values()]
        if len(tags) != len(set(tags)):
            raise TypeError(f'The fields of {cls.__qualname__!r} must have unique tags')

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={getattr(self, name)!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Structure):
            return type(self) is type(other) and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    def __copy__(self) -> Self:
        instance = super().__new__(self.__class__)
        instance.__dict__.update({name: value.copy() if isinstance(value, list) else value for name, value in self.__dict__.items()})
        return instance

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        reader = WireReader(buffer)
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.from_wire(instance, reader)
        if not reader.at_end:
            raise MalformedInputError(f'Unexpected data after the last {cls.__qualname__} field ({reader.remaining} bytes left)')
        return instance

    @classmethod
    def from_hex(cls, data: str) -> Self:
        try:
            buffer = bytes.fromhex(data)
        except ValueError as exc:
            raise MalformedInputError(f'Invalid hex data for {cls.__qualname__}: {exc}') from exc
        return cls.from_wire(buffer)

    def to_wire(self) -> bytes:
        writer = WireWriter()
        for field in self._fields_.values():
            field.to_wire(self, writer)
        return writer.render()

    def to_hex(self) -> str:
        return self.to_wire().hex()


# Helpers

def _reraise_with_context(exc: ValueError, instance: Structure, name: str | None) -> ValueError:
    # Build an exception of the same type with the structure field path prepended to the message.
    return exc.__class__(f'Failed to read the {instance.__class__.__qualname__}.{name} element from wire: {exc}')


# Field descriptor specifications

class FieldDescriptor(ABC):
    name: str | None
    tag: int

    def __set_name__(self, owner: type[Structure], name: str) -> None:
        if self.name is None:
            self.name = name
        elif name != self.name:
            raise TypeError(f'Cannot assign the same {self.__class__.__qualname__!r} to two different names: {self.name!r} and {name!r}')

    def __delete__(self, instance: Structure) -> None:
        raise AttributeError(f'Attribute {self.name!r} of {instance.__class__.__qualname__!r} object cannot be deleted')

    def _get_name(self) -> str:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        return self.name

    def _get_value(self, instance: Structure) -> Any:  # noqa: ANN401
        name = self._get_name()
        try:
            return instance.__dict__[name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    @property
    @abstractmethod
    def signature_parameter(self) -> Parameter: ...

    @abstractmethod
    def get_default(self) -> object: ...

    @abstractmethod
    def from_wire(self, instance: Structure, reader: WireReader) -> None: ...

    @abstractmethod
    def to_wire(self, instance: Structure, writer: WireWriter) -> None: ...


# Field descriptor implementations

class Element[T](FieldDescriptor):
    """
    A scalar field.

    Optional fields hold None when they are absent and are not emitted on the
    wire. For optional numeric fields a sentinel value can be specified, which
    is accepted on assignment as an alias for None.
    """

    def __init__(self, element_type: type, /, *, tag: int, optional: bool = False, default: T = NotImplemented, default_factory: Callable[[], T] | None = None, sentinel: object = None, adapter: type[FieldAdapter] | None = None) -> None:
        if tag < 1:
            raise TypeError(f'Field tags must be positive integers: {tag!r}')
        if default is not NotImplemented and default_factory is not None:
            raise TypeError('Cannot specify both default and default_factory')
        if optional and default is NotImplemented and default_factory is None:
            default = cast(T, None)
        self.name = None
        self.tag = tag
        self.type = element_type
        self.optional = optional
        self.default = default
        self.default_factory = default_factory
        self.sentinel = sentinel
        self.provided_adapter = adapter
        if adapter is None:
            adapter = AdapterRegistry.get_adapter(element_type)
        if adapter is None:
            raise TypeError(f'No adapter is registered for {element_type.__qualname__!r} and none was provided')
        if adapter._abstract_:
            raise TypeError(f'Cannot use abstract adapter {adapter.__qualname__!r}')
        self.adapter = adapter

    def __repr__(self) -> str:
        adapter_name = self.provided_adapter.__qualname__ if self.provided_adapter is not None else None
        return f'{self.__class__.__name__}({self.type.__qualname__}, tag={self.tag!r}, optional={self.optional!r}, default={self.default!r}, adapter={adapter_name})'

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        annotation = self.type | None if self.optional else self.type
        if self.default is NotImplemented and self.default_factory is None:
            return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=annotation)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=annotation, default=self.default if self.default_factory is None else ...)

    def get_default(self) -> T:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> T: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | T:
        if instance is None:
            return self
        return self._get_value(instance)

    def __set__(self, instance: Structure, value: T) -> None:
        name = self._get_name()
        if self.optional and self.sentinel is not None and value == self.sentinel and type(value) is type(self.sentinel):
            value = cast(T, None)
        if value is None:
            if not self.optional:
                raise InvalidInputError(f'The {instance.__class__.__qualname__}.{name} element is mandatory and cannot be None')
            instance.__dict__[name] = None
            return
        try:
            instance.__dict__[name] = self.adapter.validate(value)
        except InvalidInputError as exc:
            raise InvalidInputError(f'Invalid value for the {instance.__class__.__qualname__}.{name} element: {exc}') from exc

    def from_wire(self, instance: Structure, reader: WireReader) -> None:
        name = self._get_name()
        try:
            instance.__dict__[name] = self.adapter.read(reader, self.tag, optional=self.optional)
        except MalformedInputError as exc:
            raise _reraise_with_context(exc, instance, name) from exc

    def to_wire(self, instance: Structure, writer: WireWriter) -> None:
        value = self._get_value(instance)
        if value is not None:
            self.adapter.write(writer, self.tag, value)


class MessageElement[S: Structure](FieldDescriptor):
    """A mandatory embedded message, encoded as a length delimited field"""

    def __init__(self, message_type: type[S], /, *, tag: int, default_factory: Callable[[], S] | None = None) -> None:
        if tag < 1:
            raise TypeError(f'Field tags must be positive integers: {tag!r}')
        self.name = None
        self.tag = tag
        self.type = message_type
        self.default_factory = default_factory

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.type.__qualname__}, tag={self.tag!r})'

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        if self.default_factory is None:
            return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type, default=...)

    def get_default(self) -> S:
        if self.default_factory is None:
            raise TypeError(f'The {self.name!r} element has no default')
        return self.default_factory()

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> S: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | S:
        if instance is None:
            return self
        return self._get_value(instance)

    def __set__(self, instance: Structure, value: S) -> None:
        name = self._get_name()
        if not isinstance(value, self.type):
            raise InvalidInputError(f'The value for the {instance.__class__.__qualname__}.{name} element should be of type {self.type.__qualname__!r}')
        instance.__dict__[name] = value

    def from_wire(self, instance: Structure, reader: WireReader) -> None:
        name = self._get_name()
        try:
            data = reader.read_field_bytes(self.tag)
            assert data is not None  # noqa: S101 (used by type checkers)
            instance.__dict__[name] = self.type.from_wire(data)
        except MalformedInputError as exc:
            raise _reraise_with_context(exc, instance, name) from exc

    def to_wire(self, instance: Structure, writer: WireWriter) -> None:
        writer.write_field_bytes(self.tag, self._get_value(instance).to_wire())


class RepeatedElement[T](FieldDescriptor):
    """
    A repeated field holding either scalar values or embedded messages.

    On the wire every item is a separate field with the same tag. Decoding
    consumes fields for as long as the next tag matches.
    """

    def __init__(self, item_type: type[T], /, *, tag: int, adapter: type[FieldAdapter] | None = None) -> None:
        if tag < 1:
            raise TypeError(f'Field tags must be positive integers: {tag!r}')
        self.name = None
        self.tag = tag
        self.item_type = item_type
        self.provided_adapter = adapter
        if issubclass(item_type, Structure):
            self.adapter = None
        else:
            if adapter is None:
                adapter = AdapterRegistry.get_adapter(item_type)
            if adapter is None:
                raise TypeError(f'The item type must be a Structure or an adapter must be available for {item_type.__qualname__!r}')
            self.adapter = adapter

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.item_type.__qualname__}, tag={self.tag!r})'

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=list[self.item_type], default=())  # type: ignore[name-defined]

    def get_default(self) -> list[T]:
        return []

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> list[T]: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | list[T]:
        if instance is None:
            return self
        return self._get_value(instance)

    def __set__(self, instance: Structure, values: Iterable[T]) -> None:
        name = self._get_name()
        if isinstance(values, str | bytes | bytearray | memoryview) or not isinstance(values, Iterable):
            raise InvalidInputError(f'The {instance.__class__.__qualname__}.{name} element must be set from an iterable of {self.item_type.__qualname__!r} items')
        instance.__dict__[name] = [self._validate_item(instance, name, item) for item in values]

    def _validate_item(self, instance: Structure, name: str, item: T) -> T:
        if self.adapter is None:
            if not isinstance(item, self.item_type):
                raise InvalidInputError(f'The {instance.__class__.__qualname__}.{name} items should be of type {self.item_type.__qualname__!r}')
            return item
        try:
            return self.adapter.validate(item)
        except InvalidInputError as exc:
            raise InvalidInputError(f'Invalid item for the {instance.__class__.__qualname__}.{name} element: {exc}') from exc

    def from_wire(self, instance: Structure, reader: WireReader) -> None:
        name = self._get_name()
        items = []
        try:
            while reader.peek_tag() == self.tag:
                if self.adapter is None:
                    data = reader.read_field_bytes(self.tag)
                    assert data is not None  # noqa: S101 (used by type checkers)
                    items.append(cast(type[Structure], self.item_type).from_wire(data))
                else:
                    items.append(self.adapter.read(reader, self.tag, optional=False))
        except MalformedInputError as exc:
            raise _reraise_with_context(exc, instance, name) from exc
        instance.__dict__[name] = items

    def to_wire(self, instance: Structure, writer: WireWriter) -> None:
        for item in self._get_value(instance):
            if self.adapter is None:
                writer.write_field_bytes(self.tag, item.to_wire())
            else:
                self.adapter.write(writer, self.tag, item)


@dataclass_transform(kw_only_default=True, field_specifiers=(Element, MessageElement, RepeatedElement))
class AnnotatedStructure(Structure):
    pass
