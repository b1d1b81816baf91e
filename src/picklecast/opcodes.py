"""Pickle opcode table for protocols 0 through 5.

Only the protocol 0-2 data opcodes are supported. Object reconstruction
opcodes and later-protocol opcodes are listed so they can be named when
rejected.
"""

from __future__ import annotations

from enum import Enum


class OperandKind(Enum):
    """How an opcode's inline operand is framed in the stream."""

    NONE = "none"
    UINT1 = "uint1"
    UINT2 = "uint2"
    INT4 = "int4"
    UINT4 = "uint4"
    FLOAT8 = "float8"
    LINE = "line"  # newline-terminated text
    BYTES1 = "bytes1"  # 1-byte length prefix
    BYTES4 = "bytes4"  # 4-byte signed length prefix

    @property
    def size_bytes(self) -> int:
        """Return the fixed operand size, or 0 for variable-length operands."""
        sizes = {
            OperandKind.NONE: 0,
            OperandKind.UINT1: 1,
            OperandKind.UINT2: 2,
            OperandKind.INT4: 4,
            OperandKind.UINT4: 4,
            OperandKind.FLOAT8: 8,
            OperandKind.LINE: 0,
            OperandKind.BYTES1: 0,
            OperandKind.BYTES4: 0,
        }
        return sizes[self]


class Opcode(Enum):
    """Every opcode byte defined by the pickle format.

    Each member carries (code, operand kind, protocol introduced, supported).
    """

    MARK = (0x28, OperandKind.NONE, 0, True)  # (
    STOP = (0x2E, OperandKind.NONE, 0, True)  # .
    POP = (0x30, OperandKind.NONE, 0, True)  # 0
    POP_MARK = (0x31, OperandKind.NONE, 1, True)  # 1
    DUP = (0x32, OperandKind.NONE, 0, True)  # 2
    FLOAT = (0x46, OperandKind.LINE, 0, True)  # F
    INT = (0x49, OperandKind.LINE, 0, True)  # I
    BININT = (0x4A, OperandKind.INT4, 1, True)  # J
    BININT1 = (0x4B, OperandKind.UINT1, 1, True)  # K
    LONG = (0x4C, OperandKind.LINE, 0, True)  # L
    BININT2 = (0x4D, OperandKind.UINT2, 1, True)  # M
    NONE = (0x4E, OperandKind.NONE, 0, True)  # N
    PERSID = (0x50, OperandKind.LINE, 0, False)  # P
    BINPERSID = (0x51, OperandKind.NONE, 1, False)  # Q
    REDUCE = (0x52, OperandKind.NONE, 0, False)  # R
    STRING = (0x53, OperandKind.LINE, 0, True)  # S
    BINSTRING = (0x54, OperandKind.BYTES4, 1, True)  # T
    SHORT_BINSTRING = (0x55, OperandKind.BYTES1, 1, True)  # U
    UNICODE = (0x56, OperandKind.LINE, 0, True)  # V
    BINUNICODE = (0x58, OperandKind.BYTES4, 1, True)  # X
    APPEND = (0x61, OperandKind.NONE, 0, True)  # a
    BUILD = (0x62, OperandKind.NONE, 0, False)  # b
    GLOBAL = (0x63, OperandKind.LINE, 0, False)  # c
    DICT = (0x64, OperandKind.NONE, 0, True)  # d
    EMPTY_DICT = (0x7D, OperandKind.NONE, 1, True)  # }
    APPENDS = (0x65, OperandKind.NONE, 1, True)  # e
    GET = (0x67, OperandKind.LINE, 0, True)  # g
    BINGET = (0x68, OperandKind.UINT1, 1, True)  # h
    INST = (0x69, OperandKind.LINE, 0, False)  # i
    LONG_BINGET = (0x6A, OperandKind.UINT4, 1, True)  # j
    LIST = (0x6C, OperandKind.NONE, 0, True)  # l
    EMPTY_LIST = (0x5D, OperandKind.NONE, 1, True)  # ]
    OBJ = (0x6F, OperandKind.NONE, 1, False)  # o
    PUT = (0x70, OperandKind.LINE, 0, True)  # p
    BINPUT = (0x71, OperandKind.UINT1, 1, True)  # q
    LONG_BINPUT = (0x72, OperandKind.UINT4, 1, True)  # r
    SETITEM = (0x73, OperandKind.NONE, 0, True)  # s
    TUPLE = (0x74, OperandKind.NONE, 0, True)  # t
    EMPTY_TUPLE = (0x29, OperandKind.NONE, 1, True)  # )
    SETITEMS = (0x75, OperandKind.NONE, 1, True)  # u
    BINFLOAT = (0x47, OperandKind.FLOAT8, 1, True)  # G

    PROTO = (0x80, OperandKind.UINT1, 2, True)
    NEWOBJ = (0x81, OperandKind.NONE, 2, False)
    EXT1 = (0x82, OperandKind.UINT1, 2, False)
    EXT2 = (0x83, OperandKind.UINT2, 2, False)
    EXT4 = (0x84, OperandKind.INT4, 2, False)
    TUPLE1 = (0x85, OperandKind.NONE, 2, True)
    TUPLE2 = (0x86, OperandKind.NONE, 2, True)
    TUPLE3 = (0x87, OperandKind.NONE, 2, True)
    NEWTRUE = (0x88, OperandKind.NONE, 2, True)
    NEWFALSE = (0x89, OperandKind.NONE, 2, True)
    LONG1 = (0x8A, OperandKind.BYTES1, 2, True)
    LONG4 = (0x8B, OperandKind.BYTES4, 2, True)

    BINBYTES = (0x42, OperandKind.BYTES4, 3, False)  # B
    SHORT_BINBYTES = (0x43, OperandKind.BYTES1, 3, False)  # C

    SHORT_BINUNICODE = (0x8C, OperandKind.BYTES1, 4, False)
    BINUNICODE8 = (0x8D, OperandKind.NONE, 4, False)
    BINBYTES8 = (0x8E, OperandKind.NONE, 4, False)
    EMPTY_SET = (0x8F, OperandKind.NONE, 4, False)
    ADDITEMS = (0x90, OperandKind.NONE, 4, False)
    FROZENSET = (0x91, OperandKind.NONE, 4, False)
    NEWOBJ_EX = (0x92, OperandKind.NONE, 4, False)
    STACK_GLOBAL = (0x93, OperandKind.NONE, 4, False)
    MEMOIZE = (0x94, OperandKind.NONE, 4, False)
    FRAME = (0x95, OperandKind.NONE, 4, False)

    BYTEARRAY8 = (0x96, OperandKind.NONE, 5, False)
    NEXT_BUFFER = (0x97, OperandKind.NONE, 5, False)
    READONLY_BUFFER = (0x98, OperandKind.NONE, 5, False)

    def __init__(self, code: int, operand: OperandKind, protocol: int, supported: bool) -> None:
        self.code = code
        self.operand = operand
        self.protocol = protocol
        self.supported = supported

    @property
    def char(self) -> str:
        """Return the opcode byte as a one-character string."""
        return chr(self.code)


# Mapping from opcode byte to Opcode member
OPCODES: dict[int, Opcode] = {op.code: op for op in Opcode}

# Highest protocol version this package decodes
HIGHEST_PROTOCOL = 2
