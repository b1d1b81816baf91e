"""Decoded pickle value model.

A closed set of variants. Scalar variants are immutable and hashable so
they can serve as dict keys; container variants are mutable handles that
may be shared (and may form cycles) through the memo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from picklecast.errors import DepthExceededError

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

# Deepest container nesting a projection will follow
DEFAULT_MAX_DEPTH = 256


class ValueKind(Enum):
    """Variant tag for every decodable pickle value."""

    NIL = "nil"
    BOOL = "bool"
    INT64 = "int64"
    BIGINT = "bigint"
    FLOAT64 = "float64"
    STR = "str"
    BYTES = "bytes"
    LIST = "list"
    TUPLE = "tuple"
    DICT = "dict"

    @property
    def is_container(self) -> bool:
        return self in (ValueKind.LIST, ValueKind.TUPLE, ValueKind.DICT)


class Value:
    """Base class for all decoded values."""

    kind: ClassVar[ValueKind]

    @property
    def is_container(self) -> bool:
        return self.kind.is_container

    def to_python(self, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
        """Return the most natural native representation of this value.

        Byte strings become text (one character per byte). Shared and
        cyclic lists and dicts stay shared in the result.

        Raises:
            DepthExceededError: Containers nest deeper than ``max_depth``.
        """
        return _to_python(self, {}, 0, max_depth)


@dataclass(frozen=True)
class NoneValue(Value):
    kind: ClassVar[ValueKind] = ValueKind.NIL


@dataclass(frozen=True)
class BoolValue(Value):
    value: bool
    kind: ClassVar[ValueKind] = ValueKind.BOOL


@dataclass(frozen=True)
class IntValue(Value):
    """Integer that fits in a signed 64-bit word."""

    value: int
    kind: ClassVar[ValueKind] = ValueKind.INT64


@dataclass(frozen=True)
class LongValue(Value):
    """Arbitrary-precision integer."""

    value: int
    kind: ClassVar[ValueKind] = ValueKind.BIGINT


@dataclass(frozen=True)
class FloatValue(Value):
    value: float
    kind: ClassVar[ValueKind] = ValueKind.FLOAT64


@dataclass(frozen=True)
class StrValue(Value):
    value: str
    kind: ClassVar[ValueKind] = ValueKind.STR


@dataclass(frozen=True)
class BytesValue(Value):
    value: bytes
    kind: ClassVar[ValueKind] = ValueKind.BYTES

    @property
    def text(self) -> str:
        """The bytes read as single-byte-per-character text."""
        return self.value.decode("latin-1")


@dataclass
class ListValue(Value):
    items: list[Value] = field(default_factory=list)
    kind: ClassVar[ValueKind] = ValueKind.LIST

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class TupleValue(Value):
    items: tuple[Value, ...] = ()
    kind: ClassVar[ValueKind] = ValueKind.TUPLE

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class DictValue(Value):
    """Mapping preserving insertion order; a repeated key keeps the last value."""

    entries: dict[Value, Value] = field(default_factory=dict)
    kind: ClassVar[ValueKind] = ValueKind.DICT

    def __len__(self) -> int:
        return len(self.entries)

    def set(self, key: Value, value: Value) -> None:
        self.entries[key] = value


def make_int(n: int) -> IntValue | LongValue:
    """Wrap an integer in the narrowest integer variant."""
    if INT64_MIN <= n <= INT64_MAX:
        return IntValue(n)
    return LongValue(n)


def key_text(key: Value) -> str:
    """Return the textual form of a dict key, as used in error paths."""
    if isinstance(key, StrValue):
        return key.value
    if isinstance(key, BytesValue):
        return key.text
    if isinstance(key, (BoolValue, IntValue, LongValue, FloatValue)):
        return repr(key.value)
    return key.kind.value


def _to_python(value: Value, seen: dict[int, Any], depth: int, max_depth: int) -> Any:
    if depth > max_depth:
        raise DepthExceededError(max_depth)
    if isinstance(value, NoneValue):
        return None
    if isinstance(value, (BoolValue, IntValue, LongValue, FloatValue, StrValue)):
        return value.value
    if isinstance(value, BytesValue):
        return value.text
    if id(value) in seen:
        return seen[id(value)]
    if isinstance(value, ListValue):
        result: list[Any] = []
        seen[id(value)] = result
        result.extend(_to_python(item, seen, depth + 1, max_depth) for item in value.items)
        return result
    if isinstance(value, TupleValue):
        return tuple(_to_python(item, seen, depth + 1, max_depth) for item in value.items)
    if isinstance(value, DictValue):
        mapping: dict[Any, Any] = {}
        seen[id(value)] = mapping
        for k, v in value.entries.items():
            key = _to_python(k, seen, depth + 1, max_depth)
            mapping[key] = _to_python(v, seen, depth + 1, max_depth)
        return mapping
    raise TypeError(f"Unknown value type: {type(value)}")
