"""Opcode reader for pickle byte streams."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from picklecast.errors import (
    MalformedStreamError,
    TruncatedOperandError,
    UnsupportedOpcodeError,
)
from picklecast.opcodes import OPCODES, Opcode, OperandKind


@dataclass(frozen=True)
class Instruction:
    """One opcode read from the stream, with its raw operand bytes.

    For length-prefixed operands ``operand`` holds only the payload; for
    line operands it holds the line without its trailing newline.
    """

    offset: int
    opcode: Opcode
    operand: bytes = b""

    def __repr__(self) -> str:
        return f"Instruction({self.offset}, {self.opcode.name}, {self.operand!r})"


class Reader:
    """Pulls one opcode and its inline operand at a time from a byte stream.

    The reader never looks past the current opcode's operand, so a stream
    positioned after STOP is left at the first byte following the pickle.
    """

    def __init__(self, stream: BinaryIO, max_length: int | None = None) -> None:
        """Initialize the reader.

        Args:
            stream: Binary file-like object providing ``read(n)``.
            max_length: Optional upper bound on length-prefixed and line
                operands. Longer operands are rejected as malformed.
        """
        self.stream = stream
        self.max_length = max_length
        self.position = 0

    def _read(self, size: int) -> bytes:
        """Read up to ``size`` bytes, tolerating short reads from the stream."""
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self.position += len(data)
        return data

    def _read_exact(self, size: int, opcode: Opcode, offset: int) -> bytes:
        data = self._read(size)
        if len(data) < size:
            raise TruncatedOperandError(
                f"{opcode.name} needs {size} operand bytes, only {len(data)} remain", offset
            )
        return data

    def _read_line(self, opcode: Opcode, offset: int) -> bytes:
        buf = bytearray()
        while True:
            ch = self._read(1)
            if not ch:
                raise TruncatedOperandError(f"{opcode.name} operand is missing its newline", offset)
            if ch == b"\n":
                return bytes(buf)
            buf += ch
            if self.max_length is not None and len(buf) > self.max_length:
                raise MalformedStreamError(
                    f"{opcode.name} operand longer than {self.max_length} bytes", offset
                )

    def _check_length(self, length: int, opcode: Opcode, offset: int) -> None:
        if length < 0:
            raise MalformedStreamError(f"{opcode.name} has negative length {length}", offset)
        if self.max_length is not None and length > self.max_length:
            raise MalformedStreamError(
                f"{opcode.name} length {length} exceeds limit of {self.max_length}", offset
            )

    def _read_operand(self, opcode: Opcode, offset: int) -> bytes:
        kind = opcode.operand
        if kind is OperandKind.NONE:
            return b""
        if kind is OperandKind.LINE:
            return self._read_line(opcode, offset)
        if kind is OperandKind.BYTES1:
            length = self._read_exact(1, opcode, offset)[0]
            self._check_length(length, opcode, offset)
            return self._read_exact(length, opcode, offset)
        if kind is OperandKind.BYTES4:
            (length,) = struct.unpack("<i", self._read_exact(4, opcode, offset))
            self._check_length(length, opcode, offset)
            return self._read_exact(length, opcode, offset)
        return self._read_exact(kind.size_bytes, opcode, offset)

    def next(self) -> Instruction | None:
        """Read the next instruction.

        Returns:
            The instruction, or None if the stream is exhausted before an
            opcode byte.

        Raises:
            UnsupportedOpcodeError: The byte is unknown or names an opcode
                outside the supported set. Its operand is not consumed.
            TruncatedOperandError: The operand is shorter than declared.
            MalformedStreamError: A length prefix is negative or too large.
        """
        offset = self.position
        code = self._read(1)
        if not code:
            return None
        opcode = OPCODES.get(code[0])
        if opcode is None:
            raise UnsupportedOpcodeError(code[0], offset=offset)
        if not opcode.supported:
            raise UnsupportedOpcodeError(code[0], opcode.name, offset)
        return Instruction(offset, opcode, self._read_operand(opcode, offset))

    def __iter__(self) -> Iterator[Instruction]:
        while True:
            instruction = self.next()
            if instruction is None:
                return
            yield instruction


def iter_instructions(stream: BinaryIO, max_length: int | None = None) -> Iterator[Instruction]:
    """Yield every instruction of one pickle, up to and including STOP."""
    for instruction in Reader(stream, max_length=max_length):
        yield instruction
        if instruction.opcode is Opcode.STOP:
            return
