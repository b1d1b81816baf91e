"""Stack machine that interprets a pickle opcode stream into a Value tree."""

from __future__ import annotations

import codecs
import io
import logging
import struct
from typing import BinaryIO, Callable

from picklecast.errors import (
    IncompleteStreamError,
    MalformedStreamError,
    StackUnderflowError,
    UnknownMemoReferenceError,
    UnsupportedOpcodeError,
)
from picklecast.opcodes import HIGHEST_PROTOCOL, Opcode
from picklecast.reader import Instruction, Reader
from picklecast.values import (
    BoolValue,
    BytesValue,
    DictValue,
    FloatValue,
    ListValue,
    NoneValue,
    StrValue,
    TupleValue,
    Value,
    make_int,
)

logger = logging.getLogger(__name__)


class _Stop(Exception):
    """Raised by the STOP handler to end interpretation with a result."""

    def __init__(self, value: Value) -> None:
        self.value = value


class StackMachine:
    """Interprets opcodes against an operand stack, a mark stack and a memo.

    A machine decodes exactly one pickle. All state lives on the instance,
    so independent machines never share anything.
    """

    def __init__(self, reader: Reader) -> None:
        self.reader = reader
        self.stack: list[Value] = []
        self.marks: list[int] = []
        self.memo: dict[int, Value] = {}
        self.offset = 0

    def run(self) -> Value:
        """Interpret opcodes until STOP and return the single remaining value.

        Raises:
            ParseError: The stream is not a valid protocol 0-2 pickle.
        """
        dispatch = self.dispatch
        try:
            while True:
                instruction = self.reader.next()
                if instruction is None:
                    raise IncompleteStreamError(
                        "Stream ended before STOP", self.reader.position
                    )
                self.offset = instruction.offset
                dispatch[instruction.opcode](self, instruction)
        except _Stop as stop:
            return stop.value

    # Stack helpers

    def _floor(self) -> int:
        """Lowest stack index visible to the current opcode."""
        return self.marks[-1] if self.marks else 0

    def _pop(self, count: int) -> list[Value]:
        if len(self.stack) - count < self._floor():
            raise StackUnderflowError(
                f"Needed {count} stack values, found {len(self.stack) - self._floor()}",
                self.offset,
            )
        items = self.stack[len(self.stack) - count:]
        del self.stack[len(self.stack) - count:]
        return items

    def _top(self) -> Value:
        if len(self.stack) <= self._floor():
            raise StackUnderflowError("Stack is empty", self.offset)
        return self.stack[-1]

    def _pop_mark(self) -> list[Value]:
        """Pop and return everything pushed since the most recent mark."""
        if not self.marks:
            raise MalformedStreamError("No mark on the mark stack", self.offset)
        k = self.marks.pop()
        items = self.stack[k:]
        del self.stack[k:]
        return items

    def _push(self, value: Value) -> None:
        self.stack.append(value)

    def _check_key(self, key: Value) -> None:
        if key.is_container:
            raise MalformedStreamError(f"Unhashable dict key of type {key.kind.value}", self.offset)

    def _fill_dict(self, target: DictValue, items: list[Value]) -> None:
        if len(items) % 2:
            raise MalformedStreamError("Odd number of items for dict", self.offset)
        for i in range(0, len(items), 2):
            self._check_key(items[i])
            target.set(items[i], items[i + 1])

    def _list_below(self) -> ListValue:
        target = self._top()
        if not isinstance(target, ListValue):
            raise MalformedStreamError(f"Cannot append to {target.kind.value}", self.offset)
        return target

    def _dict_below(self) -> DictValue:
        target = self._top()
        if not isinstance(target, DictValue):
            raise MalformedStreamError(f"Cannot set item on {target.kind.value}", self.offset)
        return target

    def _parse_int(self, text: bytes, what: str) -> int:
        try:
            return int(text, 0)
        except ValueError:
            raise MalformedStreamError(f"Invalid {what} literal {text!r}", self.offset) from None

    def _parse_memo_id(self, text: bytes) -> int:
        # Decimal digits only; no sign, prefix or underscores.
        if not text.isdigit():
            raise MalformedStreamError(f"Invalid memo id {text!r}", self.offset)
        return int(text)

    def _get(self, memo_id: int) -> None:
        try:
            value = self.memo[memo_id]
        except KeyError:
            raise UnknownMemoReferenceError(memo_id, self.offset) from None
        self._push(value)

    def _put(self, memo_id: int) -> None:
        self.memo[memo_id] = self._top()

    dispatch: dict[Opcode, Callable[[StackMachine, Instruction], None]] = {}

    # Framing

    def load_proto(self, ins: Instruction) -> None:
        version = ins.operand[0]
        if version > HIGHEST_PROTOCOL:
            raise UnsupportedOpcodeError(ins.opcode.code, f"PROTO {version}", self.offset)
    dispatch[Opcode.PROTO] = load_proto

    def load_stop(self, ins: Instruction) -> None:
        if self.marks:
            raise MalformedStreamError("Unclosed mark at STOP", self.offset)
        if len(self.stack) != 1:
            raise MalformedStreamError(
                f"Expected one value at STOP, found {len(self.stack)}", self.offset
            )
        raise _Stop(self.stack.pop())
    dispatch[Opcode.STOP] = load_stop

    def load_mark(self, ins: Instruction) -> None:
        self.marks.append(len(self.stack))
    dispatch[Opcode.MARK] = load_mark

    def load_pop(self, ins: Instruction) -> None:
        # An empty frame means the top of the stack is a mark.
        if len(self.stack) > self._floor():
            del self.stack[-1]
        elif self.marks:
            self.marks.pop()
        else:
            raise StackUnderflowError("Stack is empty", self.offset)
    dispatch[Opcode.POP] = load_pop

    def load_pop_mark(self, ins: Instruction) -> None:
        self._pop_mark()
    dispatch[Opcode.POP_MARK] = load_pop_mark

    def load_dup(self, ins: Instruction) -> None:
        self._push(self._top())
    dispatch[Opcode.DUP] = load_dup

    # Literals

    def load_none(self, ins: Instruction) -> None:
        self._push(NoneValue())
    dispatch[Opcode.NONE] = load_none

    def load_true(self, ins: Instruction) -> None:
        self._push(BoolValue(True))
    dispatch[Opcode.NEWTRUE] = load_true

    def load_false(self, ins: Instruction) -> None:
        self._push(BoolValue(False))
    dispatch[Opcode.NEWFALSE] = load_false

    def load_int(self, ins: Instruction) -> None:
        if ins.operand == b"01":
            self._push(BoolValue(True))
        elif ins.operand == b"00":
            self._push(BoolValue(False))
        else:
            self._push(make_int(self._parse_int(ins.operand, "INT")))
    dispatch[Opcode.INT] = load_int

    def load_binint(self, ins: Instruction) -> None:
        self._push(make_int(struct.unpack("<i", ins.operand)[0]))
    dispatch[Opcode.BININT] = load_binint

    def load_binint1(self, ins: Instruction) -> None:
        self._push(make_int(ins.operand[0]))
    dispatch[Opcode.BININT1] = load_binint1

    def load_binint2(self, ins: Instruction) -> None:
        self._push(make_int(struct.unpack("<H", ins.operand)[0]))
    dispatch[Opcode.BININT2] = load_binint2

    def load_long(self, ins: Instruction) -> None:
        text = ins.operand
        if text.endswith(b"L"):
            text = text[:-1]
        self._push(make_int(self._parse_int(text, "LONG")))
    dispatch[Opcode.LONG] = load_long

    def load_long_binary(self, ins: Instruction) -> None:
        # Two's complement, least significant byte first.
        self._push(make_int(int.from_bytes(ins.operand, "little", signed=True)))
    dispatch[Opcode.LONG1] = load_long_binary
    dispatch[Opcode.LONG4] = load_long_binary

    def load_float(self, ins: Instruction) -> None:
        try:
            value = float(ins.operand)
        except ValueError:
            raise MalformedStreamError(f"Invalid FLOAT literal {ins.operand!r}", self.offset) from None
        self._push(FloatValue(value))
    dispatch[Opcode.FLOAT] = load_float

    def load_binfloat(self, ins: Instruction) -> None:
        self._push(FloatValue(struct.unpack(">d", ins.operand)[0]))
    dispatch[Opcode.BINFLOAT] = load_binfloat

    def load_string(self, ins: Instruction) -> None:
        data = ins.operand
        if len(data) >= 2 and data[0] == data[-1] and data[:1] in (b'"', b"'"):
            data = data[1:-1]
        else:
            raise MalformedStreamError("STRING argument must be quoted", self.offset)
        try:
            self._push(BytesValue(codecs.escape_decode(data)[0]))
        except ValueError as e:
            raise MalformedStreamError(f"Invalid STRING escape: {e}", self.offset) from None
    dispatch[Opcode.STRING] = load_string

    def load_binstring(self, ins: Instruction) -> None:
        self._push(BytesValue(ins.operand))
    dispatch[Opcode.BINSTRING] = load_binstring
    dispatch[Opcode.SHORT_BINSTRING] = load_binstring

    def load_unicode(self, ins: Instruction) -> None:
        try:
            self._push(StrValue(str(ins.operand, "raw-unicode-escape")))
        except UnicodeDecodeError as e:
            raise MalformedStreamError(f"Invalid UNICODE argument: {e}", self.offset) from None
    dispatch[Opcode.UNICODE] = load_unicode

    def load_binunicode(self, ins: Instruction) -> None:
        try:
            self._push(StrValue(ins.operand.decode("utf-8")))
        except UnicodeDecodeError as e:
            raise MalformedStreamError(f"Invalid UTF-8 in BINUNICODE: {e}", self.offset) from None
    dispatch[Opcode.BINUNICODE] = load_binunicode

    # Containers

    def load_empty_list(self, ins: Instruction) -> None:
        self._push(ListValue())
    dispatch[Opcode.EMPTY_LIST] = load_empty_list

    def load_empty_dict(self, ins: Instruction) -> None:
        self._push(DictValue())
    dispatch[Opcode.EMPTY_DICT] = load_empty_dict

    def load_empty_tuple(self, ins: Instruction) -> None:
        self._push(TupleValue())
    dispatch[Opcode.EMPTY_TUPLE] = load_empty_tuple

    def load_list(self, ins: Instruction) -> None:
        self._push(ListValue(self._pop_mark()))
    dispatch[Opcode.LIST] = load_list

    def load_tuple(self, ins: Instruction) -> None:
        self._push(TupleValue(tuple(self._pop_mark())))
    dispatch[Opcode.TUPLE] = load_tuple

    def load_tuple_n(self, ins: Instruction) -> None:
        count = {Opcode.TUPLE1: 1, Opcode.TUPLE2: 2, Opcode.TUPLE3: 3}[ins.opcode]
        self._push(TupleValue(tuple(self._pop(count))))
    dispatch[Opcode.TUPLE1] = load_tuple_n
    dispatch[Opcode.TUPLE2] = load_tuple_n
    dispatch[Opcode.TUPLE3] = load_tuple_n

    def load_dict(self, ins: Instruction) -> None:
        items = self._pop_mark()
        result = DictValue()
        self._fill_dict(result, items)
        self._push(result)
    dispatch[Opcode.DICT] = load_dict

    def load_append(self, ins: Instruction) -> None:
        (value,) = self._pop(1)
        self._list_below().items.append(value)
    dispatch[Opcode.APPEND] = load_append

    def load_appends(self, ins: Instruction) -> None:
        items = self._pop_mark()
        self._list_below().items.extend(items)
    dispatch[Opcode.APPENDS] = load_appends

    def load_setitem(self, ins: Instruction) -> None:
        items = self._pop(2)
        self._fill_dict(self._dict_below(), items)
    dispatch[Opcode.SETITEM] = load_setitem

    def load_setitems(self, ins: Instruction) -> None:
        items = self._pop_mark()
        self._fill_dict(self._dict_below(), items)
    dispatch[Opcode.SETITEMS] = load_setitems

    # Memo

    def load_put(self, ins: Instruction) -> None:
        self._put(self._parse_memo_id(ins.operand))
    dispatch[Opcode.PUT] = load_put

    def load_binput(self, ins: Instruction) -> None:
        self._put(ins.operand[0])
    dispatch[Opcode.BINPUT] = load_binput

    def load_long_binput(self, ins: Instruction) -> None:
        self._put(struct.unpack("<I", ins.operand)[0])
    dispatch[Opcode.LONG_BINPUT] = load_long_binput

    def load_get(self, ins: Instruction) -> None:
        self._get(self._parse_memo_id(ins.operand))
    dispatch[Opcode.GET] = load_get

    def load_binget(self, ins: Instruction) -> None:
        self._get(ins.operand[0])
    dispatch[Opcode.BINGET] = load_binget

    def load_long_binget(self, ins: Instruction) -> None:
        self._get(struct.unpack("<I", ins.operand)[0])
    dispatch[Opcode.LONG_BINGET] = load_long_binget


def decode(stream: BinaryIO, max_length: int | None = None) -> Value:
    """Decode exactly one pickled value from a binary stream.

    Args:
        stream: Binary file-like object positioned at the start of a pickle.
        max_length: Optional limit on string, bytes and line operand sizes.

    Returns:
        The top-level value.

    Raises:
        ParseError: The stream is not a valid protocol 0-2 pickle. No
            partial value is returned.
    """
    machine = StackMachine(Reader(stream, max_length=max_length))
    logger.debug("Decoding pickle stream")
    try:
        value = machine.run()
    except Exception:
        logger.debug("Decode failed at byte %d", machine.offset)
        raise
    logger.debug("Decoded %s from %d bytes", value.kind.value, machine.reader.position)
    return value


def decode_bytes(data: bytes | bytearray | memoryview, max_length: int | None = None) -> Value:
    """Decode a pickle held in memory."""
    return decode(io.BytesIO(bytes(data)), max_length=max_length)
