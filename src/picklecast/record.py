"""Destination containers that are not plain Python classes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from picklecast.descriptors import StructDescriptor


class Record:
    """Instance of a struct declared through the descriptor DSL.

    Fields are plain attributes; fields never assigned hold None.
    """

    def __init__(self, descriptor: StructDescriptor, **values: Any) -> None:
        object.__setattr__(self, "_descriptor", descriptor)
        for f in descriptor.fields:
            object.__setattr__(self, f.name, values.pop(f.name, None))
        if values:
            raise TypeError(f"Unknown fields for {descriptor.name}: {sorted(values)}")

    @property
    def type_name(self) -> str:
        return self._descriptor.name

    def to_dict(self) -> dict[str, Any]:
        """Return field values keyed by field name, in declaration order."""
        return {f.name: getattr(self, f.name) for f in self._descriptor.fields}

    def __setattr__(self, name: str, value: Any) -> None:
        if self._descriptor.get_field(name) is None:
            raise AttributeError(f"'{self.type_name}' has no field '{name}'")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"{self.type_name}({inner})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.type_name == other.type_name and self.to_dict() == other.to_dict()

    __hash__ = None  # type: ignore[assignment]


class Ref:
    """A writable slot for a single destination value.

    A ``Ref`` stands in for an addressable variable: unpacking into it
    replaces ``value``. Stored in a pointer-typed field, it is the pointee
    that later unpacks overwrite in place.
    """

    def __init__(self, target: Any = Any, value: Any = None) -> None:
        """Initialize the slot.

        Args:
            target: Destination type (a type hint, a registered descriptor
                name, or a Descriptor) describing what the slot holds.
            value: Initial content.
        """
        self.target = target
        self.value = value

    def __repr__(self) -> str:
        return f"Ref({self.value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ref):
            return NotImplemented
        return self.value == other.value

    __hash__ = None  # type: ignore[assignment]
