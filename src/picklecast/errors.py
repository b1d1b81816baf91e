"""Exception hierarchy for decoding and unpacking pickle data.

Two disjoint families: ``ParseError`` means the bytes are not a valid
pickle stream, ``UnpackError`` means the decoded value does not fit the
requested destination.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from picklecast.values import ValueKind


class ParseError(ValueError):
    """Base class for errors raised while decoding a pickle stream."""

    def __init__(self, message: str, offset: int | None = None) -> None:
        self.message = message
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)


class MalformedStreamError(ParseError):
    """The opcode stream violates the pickle grammar."""


class StackUnderflowError(ParseError):
    """An opcode needed more stack entries than were present."""


class UnknownMemoReferenceError(ParseError):
    """A GET-family opcode referenced a memo id that was never stored."""

    def __init__(self, memo_id: int, offset: int | None = None) -> None:
        self.memo_id = memo_id
        super().__init__(f"Memo id {memo_id} was never stored", offset)


class UnsupportedOpcodeError(ParseError):
    """An opcode outside the supported protocol 0-2 data subset."""

    def __init__(self, opcode: int, name: str | None = None, offset: int | None = None) -> None:
        self.opcode = opcode
        self.name = name
        if name is None:
            message = f"Unknown opcode 0x{opcode:02x}"
        else:
            message = f"Unsupported opcode {name} (0x{opcode:02x})"
        super().__init__(message, offset)


class IncompleteStreamError(ParseError):
    """The stream ended before a STOP opcode."""


class TruncatedOperandError(ParseError):
    """Fewer operand bytes remained than the opcode declared."""


class UnpackError(ValueError):
    """Base class for errors raised while projecting a value onto a destination."""

    def __init__(
        self,
        message: str,
        found: ValueKind | None = None,
        expected: Any = None,
    ) -> None:
        self.message = message
        self.found = found
        self.expected = expected
        super().__init__(message)

    @property
    def path(self) -> tuple[int | str, ...]:
        """Segments traversed from the unpack root to the failure."""
        return ()

    @property
    def root_cause(self) -> UnpackError:
        return self

    def format_path(self) -> str:
        parts: list[str] = []
        for segment in self.path:
            if isinstance(segment, int):
                parts.append(f"[{segment}]")
            elif parts:
                parts.append(f".{segment}")
            else:
                parts.append(segment)
        return "".join(parts)


class TypeMismatchError(UnpackError):
    """The value variant cannot be assigned to the destination kind."""

    def __init__(self, found: ValueKind | None, expected: Any) -> None:
        found_name = found.value if found is not None else "nothing"
        super().__init__(f"Cannot unpack {found_name} into {expected}", found, expected)


class RangeError(UnpackError):
    """The value cannot be represented exactly by the destination."""

    def __init__(self, value: Any, found: ValueKind | None, expected: Any) -> None:
        self.value = value
        super().__init__(f"Value {value!r} out of range for {expected}", found, expected)


class UnknownFieldError(UnpackError):
    """A dict key matched no struct field while unpacking strictly."""

    def __init__(self, key: str, expected: Any) -> None:
        self.key = key
        super().__init__(f"No field of {expected} matches key {key!r}", None, expected)


class DepthExceededError(UnpackError):
    """Unpacking recursed deeper than the configured limit."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        super().__init__(f"Maximum unpack depth of {max_depth} exceeded")


class _WrappedError(UnpackError):
    """An inner unpack error annotated with one path segment."""

    def __init__(self, segment: int | str, inner: UnpackError) -> None:
        self.segment = segment
        self.inner = inner
        cause = inner.root_cause
        super().__init__(cause.message, cause.found, cause.expected)
        self.args = (self._render(),)

    @property
    def path(self) -> tuple[int | str, ...]:
        return (self.segment,) + self.inner.path

    @property
    def root_cause(self) -> UnpackError:
        return self.inner.root_cause

    def _render(self) -> str:
        return f"{self.format_path()}: {self.root_cause.message}"


class IndexedError(_WrappedError):
    """Failure at a sequence index."""

    def __init__(self, index: int, inner: UnpackError) -> None:
        self.index = index
        super().__init__(index, inner)


class KeyedError(_WrappedError):
    """Failure at a map key or struct field."""

    def __init__(self, key: str, inner: UnpackError) -> None:
        self.key = key
        super().__init__(key, inner)
