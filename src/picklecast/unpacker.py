"""Projection of decoded values onto statically described destinations."""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import is_dataclass
from typing import Any

from picklecast.descriptors import (
    AnyDescriptor,
    BigIntDescriptor,
    Descriptor,
    DescriptorRegistry,
    MapDescriptor,
    PointerDescriptor,
    ScalarDescriptor,
    ScalarKind,
    SequenceDescriptor,
    StructDescriptor,
)
from picklecast.errors import (
    DepthExceededError,
    IndexedError,
    KeyedError,
    RangeError,
    TypeMismatchError,
    UnknownFieldError,
    UnpackError,
)
from picklecast.record import Record, Ref
from picklecast.values import (
    DEFAULT_MAX_DEPTH,
    BoolValue,
    BytesValue,
    DictValue,
    FloatValue,
    IntValue,
    ListValue,
    LongValue,
    NoneValue,
    StrValue,
    TupleValue,
    Value,
    key_text,
)

logger = logging.getLogger(__name__)


class Unpacker:
    """Coerces decoded values into destinations guided by descriptors."""

    DEFAULT_MAX_DEPTH = DEFAULT_MAX_DEPTH

    def __init__(
        self,
        registry: DescriptorRegistry | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        strict: bool = False,
    ) -> None:
        """Initialize the unpacker.

        Args:
            registry: Registry used to resolve destination types. A fresh
                one is created when omitted.
            max_depth: Deepest nesting an unpack may reach before failing
                with DepthExceededError.
            strict: If True, dict keys with no matching struct field are
                errors instead of being dropped.
        """
        self.registry = registry if registry is not None else DescriptorRegistry()
        self.max_depth = max_depth
        self.strict = strict

    def descriptor_for(self, dest: Any) -> Descriptor:
        """Infer the descriptor of an existing destination object."""
        if isinstance(dest, Ref):
            return self.registry.describe(dest.target)
        if isinstance(dest, Record):
            return dest._descriptor
        if is_dataclass(dest) and not isinstance(dest, type):
            return self.registry.describe(type(dest))
        if isinstance(dest, list):
            return self.registry.describe(list)
        if isinstance(dest, dict):
            return self.registry.describe(dict)
        raise TypeError(
            f"Destination must be a Ref, Record, dataclass instance, list or dict, not {type(dest).__name__}"
        )

    def unpack_into(self, dest: Any, value: Value, descriptor: Any = None) -> Any:
        """Project ``value`` onto ``dest`` in place.

        Args:
            dest: A ``Ref`` slot, a dataclass or ``Record`` instance, a
                list or a dict.
            value: Decoded value.
            descriptor: Destination type (Descriptor, registered name or
                type hint). Inferred from ``dest`` when omitted.

        Returns:
            ``dest``, populated.

        Raises:
            UnpackError: The value does not fit. Fields and elements
                assigned before the failure keep their new values.
            TypeError: ``dest`` cannot be written in place.
        """
        if descriptor is None:
            desc = self.descriptor_for(dest)
        else:
            desc = self.registry.describe(descriptor)
        projection = _Projection(self.max_depth, self.strict)

        if isinstance(dest, Ref):
            dest.value = projection.unpack(desc, value, dest.value, 0)
            return dest

        base = desc.resolve()
        if isinstance(base, PointerDescriptor):
            base = base.inner.resolve()
        if isinstance(base, StructDescriptor) and not base.accepts(dest):
            raise TypeError(f"{type(dest).__name__} is not a {base.name} destination")
        if isinstance(base, SequenceDescriptor) and not isinstance(dest, list):
            raise TypeError(f"{type(dest).__name__} is not a list destination")
        if isinstance(base, MapDescriptor) and not isinstance(dest, dict):
            raise TypeError(f"{type(dest).__name__} is not a dict destination")
        if not isinstance(base, (StructDescriptor, SequenceDescriptor, MapDescriptor)):
            raise TypeError(f"{desc.name} values cannot be written in place; use a Ref")

        projection.unpack(desc, value, dest, 0)
        return dest

    def unpack(self, value: Value, target: Any) -> Any:
        """Project ``value`` onto a freshly built destination of type ``target``."""
        return self.unpack_into(Ref(target), value).value


def unpack_into(
    dest: Any,
    value: Value,
    descriptor: Any = None,
    max_depth: int = Unpacker.DEFAULT_MAX_DEPTH,
    strict: bool = False,
) -> Any:
    """Project a decoded value onto an existing destination."""
    return Unpacker(max_depth=max_depth, strict=strict).unpack_into(dest, value, descriptor)


def unpack(
    value: Value,
    target: Any,
    max_depth: int = Unpacker.DEFAULT_MAX_DEPTH,
    strict: bool = False,
) -> Any:
    """Project a decoded value onto a new destination of type ``target``."""
    return Unpacker(max_depth=max_depth, strict=strict).unpack(value, target)


def _narrow_float32(x: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", x))[0]
    except OverflowError:
        return math.copysign(math.inf, x)


class _Projection:
    """State for one unpack call.

    ``allocated`` maps (value handle, descriptor) to the destination object
    allocated for it through a pointer, plus the root struct. A cyclic value
    reached through a pointer yields a cyclic destination instead of
    unbounded recursion. Structs held by value are never shared with a
    pointer.
    """

    def __init__(self, max_depth: int, strict: bool) -> None:
        self.max_depth = max_depth
        self.strict = strict
        self.allocated: dict[tuple[int, int], Any] = {}
        self.any_seen: dict[int, Any] = {}

    def unpack(self, desc: Descriptor, value: Value, current: Any, depth: int) -> Any:
        """Return the destination content for ``value``, reusing ``current`` where possible."""
        if depth > self.max_depth:
            logger.debug("Unpack depth limit %d exceeded at %s", self.max_depth, desc.name)
            raise DepthExceededError(self.max_depth)
        desc = desc.resolve()

        if isinstance(desc, PointerDescriptor):
            return self._unpack_pointer(desc, value, current, depth)
        if isinstance(desc, ScalarDescriptor):
            return self._unpack_scalar(desc, value)
        if isinstance(desc, BigIntDescriptor):
            if isinstance(value, (IntValue, LongValue)):
                return value.value
            raise TypeMismatchError(value.kind, desc.name)
        if isinstance(desc, SequenceDescriptor):
            return self._unpack_sequence(desc, value, current, depth)
        if isinstance(desc, MapDescriptor):
            return self._unpack_map(desc, value, current, depth)
        if isinstance(desc, StructDescriptor):
            return self._unpack_struct(desc, value, current, depth)
        if isinstance(desc, AnyDescriptor):
            return self._unpack_any(value, depth)
        raise TypeError(f"Unknown descriptor type: {type(desc)}")

    def _unpack_pointer(self, desc: PointerDescriptor, value: Value, current: Any, depth: int) -> Any:
        if isinstance(value, NoneValue):
            return None
        if isinstance(current, Ref):
            current.value = self.unpack(desc.inner, value, current.value, depth + 1)
            return current

        key = (id(value), id(desc.inner.resolve()))
        if current is None and value.is_container:
            existing = self.allocated.get(key)
            if existing is not None:
                return existing
            current = self._allocate(desc.inner, value)
            if current is not None:
                self.allocated[key] = current
        return self.unpack(desc.inner, value, current, depth + 1)

    def _allocate(self, desc: Descriptor, value: Value) -> Any:
        """Create an empty container for a pointer target, or None for scalars."""
        desc = desc.resolve()
        if isinstance(desc, StructDescriptor) and isinstance(value, DictValue):
            return desc.new_instance()
        if isinstance(desc, SequenceDescriptor) and isinstance(value, (ListValue, TupleValue)):
            return []
        if isinstance(desc, MapDescriptor) and isinstance(value, DictValue):
            return {}
        return None

    def _unpack_scalar(self, desc: ScalarDescriptor, value: Value) -> Any:
        kind = desc.kind
        if kind.is_integer:
            if not isinstance(value, (IntValue, LongValue)):
                raise TypeMismatchError(value.kind, desc.name)
            low, high = kind.bounds
            if not low <= value.value <= high:
                raise RangeError(value.value, value.kind, desc.name)
            return value.value

        if kind.is_float:
            if isinstance(value, FloatValue):
                x = value.value
            elif isinstance(value, (IntValue, LongValue)):
                try:
                    x = float(value.value)
                except OverflowError:
                    raise RangeError(value.value, value.kind, desc.name) from None
            else:
                raise TypeMismatchError(value.kind, desc.name)
            return _narrow_float32(x) if kind is ScalarKind.FLOAT32 else x

        if kind is ScalarKind.BOOL:
            if isinstance(value, BoolValue):
                return value.value
            raise TypeMismatchError(value.kind, desc.name)

        if kind is ScalarKind.STRING:
            if isinstance(value, StrValue):
                return value.value
            if isinstance(value, BytesValue):
                return value.text
            raise TypeMismatchError(value.kind, desc.name)

        if kind is ScalarKind.BYTES:
            if isinstance(value, BytesValue):
                return value.value
            if isinstance(value, StrValue):
                try:
                    return value.value.encode("latin-1")
                except UnicodeEncodeError:
                    raise RangeError(value.value, value.kind, desc.name) from None
            raise TypeMismatchError(value.kind, desc.name)

        raise TypeError(f"Unknown scalar kind: {kind}")

    def _unpack_sequence(self, desc: SequenceDescriptor, value: Value, current: Any, depth: int) -> list[Any]:
        if not isinstance(value, (ListValue, TupleValue)):
            raise TypeMismatchError(value.kind, desc.name)
        items = value.items
        if desc.length is not None and len(items) != desc.length:
            raise RangeError(len(items), value.kind, desc.name)

        result = current if isinstance(current, list) else []
        del result[len(items):]
        for i, item in enumerate(items):
            existing = result[i] if i < len(result) else None
            try:
                element = self.unpack(desc.element, item, existing, depth + 1)
            except UnpackError as e:
                raise IndexedError(i, e) from e
            if i < len(result):
                result[i] = element
            else:
                result.append(element)
        return result

    def _unpack_map(self, desc: MapDescriptor, value: Value, current: Any, depth: int) -> dict[Any, Any]:
        if not isinstance(value, DictValue):
            raise TypeMismatchError(value.kind, desc.name)
        result = current if isinstance(current, dict) else {}
        for k, v in value.entries.items():
            try:
                key = self.unpack(desc.key, k, None, depth + 1)
                result[key] = self.unpack(desc.value, v, None, depth + 1)
            except UnpackError as e:
                raise KeyedError(key_text(k), e) from e
        return result

    def _unpack_struct(self, desc: StructDescriptor, value: Value, current: Any, depth: int) -> Any:
        if not isinstance(value, DictValue):
            raise TypeMismatchError(value.kind, desc.name)
        instance = current if desc.accepts(current) else desc.new_instance()
        if depth == 0:
            # The root is addressable, so pointers back to it close the cycle.
            self.allocated.setdefault((id(value), id(desc)), instance)
        for k, v in value.entries.items():
            if isinstance(k, StrValue):
                name = k.value
            elif isinstance(k, BytesValue):
                name = k.text
            else:
                name = None
            f = desc.match_field(name) if name is not None else None
            if f is None:
                if self.strict:
                    raise KeyedError(key_text(k), UnknownFieldError(key_text(k), desc.name))
                continue
            try:
                setattr(instance, f.name, self.unpack(f.descriptor, v, getattr(instance, f.name, None), depth + 1))
            except UnpackError as e:
                raise KeyedError(f.name, e) from e
        return instance

    def _unpack_any(self, value: Value, depth: int) -> Any:
        if depth > self.max_depth:
            raise DepthExceededError(self.max_depth)
        if isinstance(value, NoneValue):
            return None
        if isinstance(value, (BoolValue, IntValue, LongValue, FloatValue, StrValue)):
            return value.value
        if isinstance(value, BytesValue):
            return value.text
        if id(value) in self.any_seen:
            return self.any_seen[id(value)]
        if isinstance(value, ListValue):
            result: list[Any] = []
            self.any_seen[id(value)] = result
            result.extend(self._unpack_any(item, depth + 1) for item in value.items)
            return result
        if isinstance(value, TupleValue):
            return tuple(self._unpack_any(item, depth + 1) for item in value.items)
        if isinstance(value, DictValue):
            mapping: dict[Any, Any] = {}
            self.any_seen[id(value)] = mapping
            for k, v in value.entries.items():
                mapping[self._unpack_any(k, depth + 1)] = self._unpack_any(v, depth + 1)
            return mapping
        raise TypeError(f"Unknown value type: {type(value)}")
