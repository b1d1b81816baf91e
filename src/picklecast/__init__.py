"""picklecast - Decode Python pickles and project them onto typed destinations."""

from picklecast.descriptors import (
    BigInt,
    DescriptorRegistry,
    Float32,
    Float64,
    Int8,
    Int16,
    Int32,
    Int64,
    ScalarKind,
    UInt8,
    UInt16,
    UInt32,
    UInt64,
)
from picklecast.errors import (
    DepthExceededError,
    IncompleteStreamError,
    IndexedError,
    KeyedError,
    MalformedStreamError,
    ParseError,
    RangeError,
    StackUnderflowError,
    TruncatedOperandError,
    TypeMismatchError,
    UnknownFieldError,
    UnknownMemoReferenceError,
    UnpackError,
    UnsupportedOpcodeError,
)
from picklecast.machine import StackMachine, decode, decode_bytes
from picklecast.parsing import parse_descriptors
from picklecast.record import Record, Ref
from picklecast.unpacker import Unpacker, unpack, unpack_into
from picklecast.values import Value, ValueKind

__all__ = [
    # Main API
    "decode",
    "decode_bytes",
    "unpack",
    "unpack_into",
    "Unpacker",
    "StackMachine",
    # Values
    "Value",
    "ValueKind",
    # Destinations
    "DescriptorRegistry",
    "ScalarKind",
    "parse_descriptors",
    "Record",
    "Ref",
    "BigInt",
    "Float32",
    "Float64",
    "Int8",
    "Int16",
    "Int32",
    "Int64",
    "UInt8",
    "UInt16",
    "UInt32",
    "UInt64",
    # Decode errors
    "ParseError",
    "MalformedStreamError",
    "StackUnderflowError",
    "UnknownMemoReferenceError",
    "UnsupportedOpcodeError",
    "IncompleteStreamError",
    "TruncatedOperandError",
    # Unpack errors
    "UnpackError",
    "TypeMismatchError",
    "RangeError",
    "UnknownFieldError",
    "DepthExceededError",
    "IndexedError",
    "KeyedError",
]

__version__ = "0.1.0"
