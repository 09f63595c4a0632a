# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from binascii import a2b_base64 as base64decode
from binascii import a2b_hex as hexdecode
from binascii import b2a_base64 as base64encode
from binascii import b2a_hex as hexencode
from collections.abc import Callable, Iterable, MutableMapping
from inspect import Parameter, Signature
from os import PathLike
from pathlib import Path
from typing import ClassVar, Protocol, Self, dataclass_transform, overload, runtime_checkable

from lxml import etree

__all__ = (  # noqa: RUF022
    'Namespace',
    'XMLElement',
    'AnnotatedXMLElement',

    'DataAdapter',
    'AdapterRegistry',
    'Base64BinaryAdapter',
    'HexBinaryAdapter',
    'BooleanAdapter',

    'OptionalAttribute',
    'OptionalDataElement',
    'MultiDataElement',
)


# noinspection PyProtectedMember
type ETreeElement = etree._Element  # noqa: SLF001
type NSMap = dict[str | None, str]
type XMLData = str | bytes | int | bool


class Namespace(str):
    __slots__ = 'prefix',  # noqa: COM818

    prefix: str | None

    def __new__(cls, namespace: str, /, *, prefix: str | None = None) -> Self:
        self = super().__new__(cls, namespace)
        self.prefix = prefix
        return self

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({super().__repr__()}, prefix={self.prefix!r})'

    def __setattr__(self, name: str, value: object, /) -> None:
        if name in self.__slots__ and hasattr(self, name):
            raise AttributeError(f'{self.__class__.__name__} object attribute {name!r} is read-only')
        return super().__setattr__(name, value)


class XMLElement:
    # Subclasses specify these either as class attributes or as class parameters:
    #
    # class MyElement(XMLElement, name=..., namespace=...):
    #     ...

    _name_: ClassVar[str | None] = None
    _namespace_: ClassVar[Namespace | None] = None

    # Derived and internal attributes (these should not be overwritten in subclasses)

    _etree_element_: ETreeElement

    _tag_: ClassVar[str | None] = None
    _qualname_: ClassVar[str | None] = None
    _nsmap_: ClassVar[NSMap | None] = None

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    __signature__: ClassVar[Signature] = Signature()

    _all_arguments: ClassVar[frozenset[str]] = frozenset()
    _mandatory_arguments: ClassVar[frozenset[str]] = frozenset()

    def __new__(cls, **kw: object) -> Self:
        if cls._tag_ is None:
            raise TypeError(f'Cannot instantiate abstract class {cls.__qualname__!r} that does not specify a name')
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        self._etree_element_ = etree.Element(self._tag_, nsmap=self._nsmap_)  # type: ignore[arg-type]  # lxml stubs are a mess
        for name, value in kw.items():
            setattr(self, name, value)

    def __init_subclass__(cls, name: str | None = None, namespace: Namespace | None = None, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if name is not None:
            cls._name_ = name
        if namespace is not None:
            cls._namespace_ = namespace

        if cls._name_ is not None:
            if cls._namespace_ is not None:
                cls._tag_ = f'{{{cls._namespace_}}}{cls._name_}'
                cls._qualname_ = f'{cls._namespace_.prefix}:{cls._name_}' if cls._namespace_.prefix is not None else cls._name_
                cls._nsmap_ = {cls._namespace_.prefix: cls._namespace_}
            else:
                cls._tag_ = cls._name_
                cls._qualname_ = cls._name_

        # all the fields on this element (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={getattr(self, name)!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, XMLElement):
            return type(self) is type(other) and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_xml(cls, element: ETreeElement) -> Self:
        if cls._tag_ is None:
            raise TypeError(f'Cannot instantiate abstract class {cls.__qualname__!r} that does not specify a name')
        if element.tag != cls._tag_:
            raise ValueError(f'The element tag does not match the {cls.__qualname__} element tag: {element.tag!r} != {cls._tag_!r}')
        instance = super().__new__(cls)
        instance._etree_element_ = element
        for field in instance._fields_.values():
            field.from_xml(instance)
        return instance

    @classmethod
    def from_string(cls, data: str | bytes) -> Self:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)
        try:
            element = etree.fromstring(data.encode() if isinstance(data, str) else data, parser=parser)
        except etree.XMLSyntaxError as exc:
            raise ValueError(f'Invalid XML document: {exc}') from exc
        return cls.from_xml(element)

    @classmethod
    def from_file(cls, path: str | PathLike[str]) -> Self:
        return cls.from_string(Path(path).expanduser().read_bytes())

    def to_string(self, *, pretty_print: bool = True) -> str:
        return etree.tostring(self._etree_element_, encoding='unicode', pretty_print=pretty_print)


# Data adapters

@runtime_checkable
class DataAdapter[T](Protocol):
    """A protocol that describes an external adapter between a data type T and XML"""

    @staticmethod
    def xml_parse(value: str, /) -> T:
        """Parse XML into the data type"""
        ...

    @staticmethod
    def xml_build(value: T, /) -> str:
        """Build XML from the data type"""
        ...


class AdapterRegistry[T]:
    _adapters: ClassVar[MutableMapping[type, type[DataAdapter]]] = {}

    @classmethod
    def associate(cls, data_type: type[T], adapter: type[DataAdapter[T]]) -> None:
        cls._adapters[data_type] = adapter

    @classmethod
    def get_adapter(cls, data_type: type[T]) -> type[DataAdapter[T]] | None:
        return cls._adapters.get(data_type, None)


class Base64BinaryAdapter:
    @staticmethod
    def xml_parse(value: str) -> bytes:
        return base64decode(value)

    @staticmethod
    def xml_build(value: bytes) -> str:
        return base64encode(value, newline=False).decode('ascii')


class HexBinaryAdapter:
    @staticmethod
    def xml_parse(value: str) -> bytes:
        return hexdecode(value.strip().replace(':', ''))

    @staticmethod
    def xml_build(value: bytes) -> str:
        return hexencode(value).decode('ascii')


class BooleanAdapter:
    @staticmethod
    def xml_parse(value: str) -> bool:
        match value.strip():
            case 'true' | '1':
                return True
            case 'false' | '0':
                return False
            case _:
                raise ValueError(f'Invalid boolean value: {value!r}')

    @staticmethod
    def xml_build(value: bool) -> str:  # noqa: FBT001
        return 'true' if value else 'false'


AdapterRegistry.associate(bool, BooleanAdapter)
AdapterRegistry.associate(bytes, Base64BinaryAdapter)


def _get_converters[D: XMLData](data_type: type[D], adapter: type[DataAdapter[D]] | None) -> tuple[Callable[[str], D], Callable[[D], str]]:
    if adapter is None:
        adapter = AdapterRegistry.get_adapter(data_type)
    if adapter is not None:
        return adapter.xml_parse, adapter.xml_build
    assert not issubclass(data_type, bool | bytes)  # noqa: S101 (used by type checkers)
    return data_type, str


# Field descriptors

class FieldDescriptor[F](ABC):
    name: str | None
    type: type[F]

    def __set_name__(self, owner: type[XMLElement], name: str) -> None:
        if not issubclass(owner, XMLElement):  # static type analysis does not catch this
            raise TypeError(f'Can only use {self.__class__.__qualname__} descriptors on XMLElement objects')
        if self.name is None:
            self.name = name
            self._setup(owner)
        elif name != self.name:
            raise TypeError(f'cannot assign the same {self.__class__.__name__} descriptor to two different names: {self.name} and {name}')

    def _setup(self, owner: type[XMLElement]) -> None:  # noqa: B027
        pass

    @property
    @abstractmethod
    def signature_parameter(self) -> Parameter: ...

    @abstractmethod
    def from_xml(self, instance: XMLElement) -> None:
        """Check the instance's field value from its corresponding etree element"""
        raise NotImplementedError


class OptionalAttribute[D: XMLData](FieldDescriptor[D]):
    def __init__(self, data_type: type[D], /, *, name: str | None = None, default: D | None = None, adapter: type[DataAdapter[D]] | None = None) -> None:
        self.name = None
        self.xml_name = name or ''
        self.type = data_type
        self.default = default
        self.xml_parse, self.xml_build = _get_converters(data_type, adapter)

    def _setup(self, owner: type[XMLElement]) -> None:
        self.xml_name = self.xml_name or self._get_name().replace('_', '-')

    def _get_name(self) -> str:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return self.name

    @property
    def signature_parameter(self) -> Parameter:
        return Parameter(name=self._get_name(), kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=self.default)

    @overload
    def __get__(self, instance: None, owner: type[XMLElement]) -> Self: ...

    @overload
    def __get__(self, instance: XMLElement, owner: type[XMLElement] | None = None) -> D | None: ...

    def __get__(self, instance: XMLElement | None, owner: type[XMLElement] | None = None) -> Self | D | None:
        if instance is None:
            return self
        attribute = instance._etree_element_.get(self.xml_name)
        return self.default if attribute is None else self.xml_parse(attribute)

    def __set__(self, instance: XMLElement, value: D | None) -> None:
        if value is None:
            instance._etree_element_.attrib.pop(self.xml_name, '')
        else:
            if not isinstance(value, self.type):
                raise TypeError(f'value must be of type {self.type.__qualname__}')
            instance._etree_element_.set(self.xml_name, self.xml_build(value))

    def __delete__(self, instance: XMLElement) -> None:
        instance._etree_element_.attrib.pop(self.xml_name, '')

    def from_xml(self, instance: XMLElement) -> None:
        try:
            self.__get__(instance)
        except ValueError as exc:
            raise ValueError(f'Invalid value for attribute {self.xml_name!r} from {instance._qualname_!r}: {exc!s}') from exc


class DataElementDescriptor[D: XMLData](FieldDescriptor[D], ABC):
    """A child element that only carries text data"""

    def __init__(self, data_type: type[D], /, *, name: str | None = None, adapter: type[DataAdapter[D]] | None = None) -> None:
        self.name = None
        self.type = data_type
        self.xml_name = name or ''
        self.xml_tag = ''
        self.xml_parse, self.xml_build = _get_converters(data_type, adapter)

    def _setup(self, owner: type[XMLElement]) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        self.xml_name = self.xml_name or self.name.replace('_', '-')
        # child elements live in the namespace of the element that holds them
        self.xml_tag = f'{{{owner._namespace_}}}{self.xml_name}' if owner._namespace_ is not None else self.xml_name

    def _find_elements(self, instance: XMLElement) -> list[ETreeElement]:
        return [element for element in instance._etree_element_ if element.tag == self.xml_tag]

    def _parse(self, element: ETreeElement) -> D:
        try:
            return self.xml_parse((element.text or '').strip())
        except ValueError as exc:
            raise ValueError(f'Invalid value for element {self.xml_name!r}: {exc!s}') from exc

    def _build(self, value: D) -> ETreeElement:
        if not isinstance(value, self.type):
            raise TypeError(f'value must be of type {self.type.__qualname__}')
        element = etree.Element(self.xml_tag)
        element.text = self.xml_build(value)
        return element

    def _insertion_point(self, instance: XMLElement) -> int:
        # keep child elements in the order in which their descriptors are declared
        parent = instance._etree_element_
        position = 0
        for field in instance._fields_.values():
            if field is self:
                break
            if isinstance(field, DataElementDescriptor):
                for element in field._find_elements(instance):
                    position = max(position, parent.index(element) + 1)
        return position


class OptionalDataElement[D: XMLData](DataElementDescriptor[D]):
    def __init__(self, data_type: type[D], /, *, name: str | None = None, default: D | None = None, adapter: type[DataAdapter[D]] | None = None) -> None:
        super().__init__(data_type, name=name, adapter=adapter)
        self.default = default

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=self.default)

    @overload
    def __get__(self, instance: None, owner: type[XMLElement]) -> Self: ...

    @overload
    def __get__(self, instance: XMLElement, owner: type[XMLElement] | None = None) -> D | None: ...

    def __get__(self, instance: XMLElement | None, owner: type[XMLElement] | None = None) -> Self | D | None:
        if instance is None:
            return self
        elements = self._find_elements(instance)
        return self._parse(elements[0]) if elements else self.default

    def __set__(self, instance: XMLElement, value: D | None) -> None:
        if value is None:
            self.__delete__(instance)
            return
        element = self._build(value)
        self.__delete__(instance)
        instance._etree_element_.insert(self._insertion_point(instance), element)

    def __delete__(self, instance: XMLElement) -> None:
        for element in self._find_elements(instance):
            instance._etree_element_.remove(element)

    def from_xml(self, instance: XMLElement) -> None:
        elements = self._find_elements(instance)
        if len(elements) > 1:
            raise ValueError(f'Excess elements for {self.xml_name!r}')
        if elements:
            self._parse(elements[0])


class MultiDataElement[D: XMLData](DataElementDescriptor[D]):
    def __init__(self, data_type: type[D], /, *, name: str | None = None, optional: bool = False, adapter: type[DataAdapter[D]] | None = None) -> None:
        super().__init__(data_type, name=name, adapter=adapter)
        self.optional = optional

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=Iterable[self.type], default=() if self.optional else Parameter.empty)  # type: ignore[name-defined]

    @overload
    def __get__(self, instance: None, owner: type[XMLElement]) -> Self: ...

    @overload
    def __get__(self, instance: XMLElement, owner: type[XMLElement] | None = None) -> list[D]: ...

    def __get__(self, instance: XMLElement | None, owner: type[XMLElement] | None = None) -> Self | list[D]:
        if instance is None:
            return self
        return [self._parse(element) for element in self._find_elements(instance)]

    def __set__(self, instance: XMLElement, values: Iterable[D]) -> None:
        values = list(values)
        if not values and not self.optional:
            raise ValueError(f'mandatory element {self.name!r} must have at least one entry')

        # build these early to catch errors in values before touching the existing elements
        elements = [self._build(value) for value in values]

        for element in self._find_elements(instance):
            instance._etree_element_.remove(element)
        position = self._insertion_point(instance)
        instance._etree_element_[position:position] = elements

    def __delete__(self, instance: XMLElement) -> None:
        if not self.optional:
            raise AttributeError(f'mandatory element {self.name!r} cannot be deleted')
        for element in self._find_elements(instance):
            instance._etree_element_.remove(element)

    def from_xml(self, instance: XMLElement) -> None:
        elements = self._find_elements(instance)
        if not self.optional and not elements:
            raise ValueError(f'There must be at least 1 element for {self.xml_name!r}')
        for element in elements:
            self._parse(element)


@dataclass_transform(kw_only_default=True, field_specifiers=(OptionalAttribute, OptionalDataElement, MultiDataElement))
class AnnotatedXMLElement(XMLElement):
    """
    A static type checker friendly variant of XMLElement.

    The element definition needs to include both an annotation and the
    descriptor definition for the element (same for attributes):

      allow_untrusted: OptionalAttribute[bool] = OptionalAttribute(bool, default=False)
      trusted_roots: MultiDataElement[bytes] = MultiDataElement(bytes, name='trusted-root', optional=True)
    """
