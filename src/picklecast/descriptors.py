"""Destination descriptors: static descriptions of the shapes values unpack into."""

from __future__ import annotations

import dataclasses
import types
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Union

from picklecast.record import Record


class ScalarKind(Enum):
    """Scalar destination kinds."""

    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    UINT8 = "uint8"
    INT8 = "int8"
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    UINT64 = "uint64"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def size_bytes(self) -> int:
        """Return the width in bytes, or 0 for variable-size kinds."""
        sizes = {
            ScalarKind.BOOL: 1,
            ScalarKind.STRING: 0,
            ScalarKind.BYTES: 0,
            ScalarKind.UINT8: 1,
            ScalarKind.INT8: 1,
            ScalarKind.UINT16: 2,
            ScalarKind.INT16: 2,
            ScalarKind.UINT32: 4,
            ScalarKind.INT32: 4,
            ScalarKind.UINT64: 8,
            ScalarKind.INT64: 8,
            ScalarKind.FLOAT32: 4,
            ScalarKind.FLOAT64: 8,
        }
        return sizes[self]

    @property
    def is_integer(self) -> bool:
        return self.value.startswith(("int", "uint"))

    @property
    def is_signed(self) -> bool:
        return self.value.startswith("int")

    @property
    def is_float(self) -> bool:
        return self in (ScalarKind.FLOAT32, ScalarKind.FLOAT64)

    @property
    def bounds(self) -> tuple[int, int]:
        """Return the inclusive (min, max) range of an integer kind."""
        if not self.is_integer:
            raise ValueError(f"{self.value} is not an integer kind")
        bits = self.size_bytes * 8
        if self.is_signed:
            return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        return 0, (1 << bits) - 1


# Mapping from kind name strings to ScalarKind enum values
SCALAR_KIND_NAMES: dict[str, ScalarKind] = {sk.value: sk for sk in ScalarKind}

# Shorter names accepted for common kinds
SCALAR_ALIASES: dict[str, str] = {
    "int": "int64",
    "uint": "uint64",
    "float": "float64",
    "str": "string",
}


@dataclass
class Descriptor:
    """Base class for all destination descriptors."""

    name: str

    @property
    def is_scalar(self) -> bool:
        return False

    @property
    def is_pointer(self) -> bool:
        return False

    def resolve(self) -> Descriptor:
        """Resolve through aliases to the underlying descriptor."""
        return self

    def __str__(self) -> str:
        return self.name


@dataclass
class ScalarDescriptor(Descriptor):
    kind: ScalarKind

    @property
    def is_scalar(self) -> bool:
        return True


@dataclass
class BigIntDescriptor(Descriptor):
    """Arbitrary-precision integer sink."""

    @property
    def is_scalar(self) -> bool:
        return True


@dataclass
class AnyDescriptor(Descriptor):
    """Accepts any value in its native representation."""


@dataclass(eq=False)
class PointerDescriptor(Descriptor):
    """Optional slot: None when the value is nil, otherwise an allocated ``inner``."""

    inner: Descriptor

    @property
    def is_pointer(self) -> bool:
        return True


@dataclass(eq=False)
class SequenceDescriptor(Descriptor):
    """List destination; ``length`` set means a fixed-size array."""

    element: Descriptor
    length: int | None = None


@dataclass(eq=False)
class MapDescriptor(Descriptor):
    key: Descriptor
    value: Descriptor


@dataclass(eq=False)
class AliasDescriptor(Descriptor):
    """Descriptor for 'define X as Y' aliases."""

    base: Descriptor

    def resolve(self) -> Descriptor:
        return self.base.resolve()


@dataclass(eq=False)
class FieldDescriptor:
    """A named field of a struct destination."""

    name: str
    descriptor: Descriptor


@dataclass(eq=False)
class StructDescriptor(Descriptor):
    """Struct destination with fields matched to dict keys by name.

    ``cls`` is the dataclass instantiated for new values; None means the
    struct was declared through the DSL and values are ``Record`` objects.
    """

    fields: list[FieldDescriptor] = field(default_factory=list)
    cls: type | None = None

    def get_field(self, name: str) -> FieldDescriptor | None:
        """Get a field by its exact name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def match_field(self, key: str) -> FieldDescriptor | None:
        """Find the field a dict key maps to, ignoring case."""
        exact = self.get_field(key)
        if exact is not None:
            return exact
        folded = key.casefold()
        for f in self.fields:
            if f.name.casefold() == folded:
                return f
        return None

    def accepts(self, obj: Any) -> bool:
        """Check whether an existing object can be populated in place."""
        if self.cls is not None:
            return isinstance(obj, self.cls)
        return isinstance(obj, Record) and obj.type_name == self.name

    def new_instance(self) -> Any:
        """Create an empty destination value for this struct."""
        if self.cls is None:
            return Record(self)
        kwargs = {}
        for f in dataclasses.fields(self.cls):
            if not f.init:
                continue
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                kwargs[f.name] = None
        return self.cls(**kwargs)


# Sized annotations for dataclass fields, e.g. ``count: UInt16``
Int8 = Annotated[int, "int8"]
Int16 = Annotated[int, "int16"]
Int32 = Annotated[int, "int32"]
Int64 = Annotated[int, "int64"]
UInt8 = Annotated[int, "uint8"]
UInt16 = Annotated[int, "uint16"]
UInt32 = Annotated[int, "uint32"]
UInt64 = Annotated[int, "uint64"]
Float32 = Annotated[float, "float32"]
Float64 = Annotated[float, "float64"]
BigInt = Annotated[int, "bigint"]


class DescriptorRegistry:
    """Registry of named descriptors and descriptors built from Python types.

    Each registry is independent; nothing is cached across registries.
    """

    def __init__(self) -> None:
        self._descriptors: dict[str, Descriptor] = {}
        self._classes: dict[type, StructDescriptor] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        """Register all scalar kinds plus bigint and any."""
        for sk in ScalarKind:
            self._descriptors[sk.value] = ScalarDescriptor(name=sk.value, kind=sk)
        for alias, target in SCALAR_ALIASES.items():
            self._descriptors[alias] = self._descriptors[target]
        self._descriptors["bigint"] = BigIntDescriptor(name="bigint")
        self._descriptors["any"] = AnyDescriptor(name="any")

    def register(self, descriptor: Descriptor) -> None:
        """Register a named descriptor."""
        if descriptor.name in self._descriptors:
            raise ValueError(f"Descriptor '{descriptor.name}' is already defined")
        self._descriptors[descriptor.name] = descriptor

    def get(self, name: str) -> Descriptor | None:
        """Get a descriptor by name."""
        return self._descriptors.get(name)

    def get_or_raise(self, name: str) -> Descriptor:
        """Get a descriptor by name, raising if not found."""
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise KeyError(f"Descriptor '{name}' not found")
        return descriptor

    def register_stub(self, name: str) -> StructDescriptor:
        """Pre-register an empty struct for forward/self-references.

        Idempotent: returns existing stub if name is already an empty struct.
        Raises ValueError if name is registered with a non-empty descriptor.
        """
        existing = self._descriptors.get(name)
        if existing is not None:
            if isinstance(existing, StructDescriptor) and not existing.fields:
                return existing
            raise ValueError(f"Descriptor '{name}' is already defined")
        stub = StructDescriptor(name=name, fields=[])
        self._descriptors[name] = stub
        return stub

    def is_stub(self, name: str) -> bool:
        """Check if a name is registered as an unpopulated struct stub."""
        d = self._descriptors.get(name)
        return isinstance(d, StructDescriptor) and not d.fields

    def sequence_of(self, element: Descriptor, length: int | None = None) -> SequenceDescriptor:
        suffix = "[]" if length is None else f"[{length}]"
        return SequenceDescriptor(name=f"{element.name}{suffix}", element=element, length=length)

    def map_of(self, key: Descriptor, value: Descriptor) -> MapDescriptor:
        return MapDescriptor(name=f"{{{key.name}: {value.name}}}", key=key, value=value)

    def pointer_to(self, inner: Descriptor) -> PointerDescriptor:
        return PointerDescriptor(name=f"{inner.name}?", inner=inner)

    def describe(self, target: Any) -> Descriptor:
        """Build the descriptor for a destination type.

        Args:
            target: A Descriptor, a registered descriptor name, or a type
                hint (scalars, ``Annotated`` sized ints, ``X | None``,
                ``list[X]``, ``dict[K, V]``, dataclasses, ``Any``).

        Raises:
            TypeError: The type has no descriptor equivalent.
            KeyError: A descriptor name is not registered.
        """
        if isinstance(target, Descriptor):
            return target
        if isinstance(target, str):
            return self.get_or_raise(target)

        origin = typing.get_origin(target)
        args = typing.get_args(target)

        if origin is Annotated:
            for meta in args[1:]:
                if isinstance(meta, Descriptor):
                    return meta
                # Other metadata (documentation strings etc.) is ignored
                if isinstance(meta, str) and meta in self:
                    return self._descriptors[meta]
            return self.describe(args[0])

        if target is Any or target is object:
            return self._descriptors["any"]
        # bool before int: bool is an int subclass
        if target is bool:
            return self._descriptors["bool"]
        if target is int:
            return self._descriptors["int64"]
        if target is float:
            return self._descriptors["float64"]
        if target is str:
            return self._descriptors["string"]
        if target is bytes:
            return self._descriptors["bytes"]

        if origin is Union or origin is types.UnionType:
            members = [a for a in args if a is not type(None)]
            if len(members) != 1 or len(args) != 2:
                raise TypeError(f"Only optional unions are supported, got {target!r}")
            return self.pointer_to(self.describe(members[0]))

        if target is list or origin is list:
            element = self.describe(args[0]) if args else self._descriptors["any"]
            return self.sequence_of(element)

        if target is dict or origin is dict:
            if args:
                return self.map_of(self.describe(args[0]), self.describe(args[1]))
            return self.map_of(self._descriptors["any"], self._descriptors["any"])

        if isinstance(target, type) and dataclasses.is_dataclass(target):
            return self._describe_dataclass(target)

        raise TypeError(f"Cannot describe destination type {target!r}")

    def _describe_dataclass(self, cls: type) -> StructDescriptor:
        """Describe a dataclass, registering it before its fields so it may refer to itself."""
        existing = self._classes.get(cls)
        if existing is not None:
            return existing
        if cls.__dataclass_params__.frozen:  # type: ignore[attr-defined]
            raise TypeError(f"Frozen dataclass {cls.__qualname__} cannot be unpacked into")

        stub = StructDescriptor(name=cls.__qualname__, fields=[], cls=cls)
        self._classes[cls] = stub
        try:
            hints = typing.get_type_hints(cls, include_extras=True)
            stub.fields = [
                FieldDescriptor(name=f.name, descriptor=self.describe(hints[f.name]))
                for f in dataclasses.fields(cls)
            ]
        except Exception:
            del self._classes[cls]
            raise
        return stub

    def list_names(self) -> list[str]:
        """List all registered descriptor names."""
        return list(self._descriptors.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors
