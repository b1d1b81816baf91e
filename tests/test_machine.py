"""Tests for the pickle stack machine."""

import io
import pickle

import pytest

from picklecast.errors import (
    IncompleteStreamError,
    MalformedStreamError,
    ParseError,
    StackUnderflowError,
    TruncatedOperandError,
    UnknownMemoReferenceError,
    UnsupportedOpcodeError,
)
from picklecast.machine import StackMachine, decode, decode_bytes
from picklecast.reader import Reader
from picklecast.values import (
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
)

PROTOCOLS = [0, 1, 2]


class TestScalars:
    """Tests for literal opcodes."""

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize(
        "obj",
        [0, 1, 255, 256, 65535, 65536, -1, -(2**31), 2**31 - 1],
    )
    def test_small_ints(self, proto, obj):
        """Test integers produced by CPython at each protocol."""
        assert decode_bytes(pickle.dumps(obj, protocol=proto)) == IntValue(obj)

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize("obj", [2**63 - 1, -(2**63)])
    def test_int64_boundaries(self, proto, obj):
        """Test that values at the int64 edges stay Int64."""
        assert decode_bytes(pickle.dumps(obj, protocol=proto)) == IntValue(obj)

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize("obj", [2**63, -(2**63) - 1, 2**200, -(3**90)])
    def test_big_ints(self, proto, obj):
        """Test that integers beyond int64 decode as BigInt."""
        assert decode_bytes(pickle.dumps(obj, protocol=proto)) == LongValue(obj)

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize("obj", [0.0, 1.5, -2.5, 13.37, 1e300, float("inf")])
    def test_floats(self, proto, obj):
        """Test floats in text and binary encodings."""
        assert decode_bytes(pickle.dumps(obj, protocol=proto)) == FloatValue(obj)

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize("obj", ["", "a", "hello world", "x" * 300, "caf\u00e9 \u2603", "a\nb\\c"])
    def test_unicode(self, proto, obj):
        """Test text strings in every protocol."""
        assert decode_bytes(pickle.dumps(obj, protocol=proto)) == StrValue(obj)

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_singletons(self, proto):
        """Test True, False and None."""
        assert decode_bytes(pickle.dumps(True, protocol=proto)) == BoolValue(True)
        assert decode_bytes(pickle.dumps(False, protocol=proto)) == BoolValue(False)
        assert decode_bytes(pickle.dumps(None, protocol=proto)) == NoneValue()

    def test_long1(self):
        """Test LONG1 decoding of small and large magnitudes."""
        assert decode_bytes(b"\x80\x02\x8a\x00.") == IntValue(0)
        assert decode_bytes(b"\x80\x02\x8a\x02\xff\x00.") == IntValue(255)
        assert decode_bytes(b"\x80\x02\x8a\x01\xff.") == IntValue(-1)
        assert decode_bytes(b"\x80\x02\x8a\x09" + b"\x00" * 8 + b"\x01.") == LongValue(2**64)
        assert decode_bytes(b"\x80\x02\x8a\x09" + b"\x00" * 8 + b"\xff.") == LongValue(-(2**64))

    def test_long4(self):
        """Test LONG4 decoding."""
        payload = (2**300).to_bytes(40, "little", signed=True)
        data = b"\x8b" + len(payload).to_bytes(4, "little") + payload + b"."
        assert decode_bytes(data) == LongValue(2**300)

    def test_protocol0_long(self):
        """Test LONG with and without the trailing L."""
        assert decode_bytes(b"L12345678901234567890L\n.") == LongValue(12345678901234567890)
        assert decode_bytes(b"L5\n.") == IntValue(5)

    def test_protocol0_bools(self):
        """Test INT encodings of booleans."""
        assert decode_bytes(b"I01\n.") == BoolValue(True)
        assert decode_bytes(b"I00\n.") == BoolValue(False)

    def test_binfloat_big_endian(self):
        """Test BINFLOAT reads big-endian IEEE754."""
        assert decode_bytes(b"G?\xf8\x00\x00\x00\x00\x00\x00.") == FloatValue(1.5)
        assert decode_bytes(b"G\xc0\x04\x00\x00\x00\x00\x00\x00.") == FloatValue(-2.5)

    def test_byte_strings(self):
        """Test that STRING opcodes yield raw bytes."""
        assert decode_bytes(b"S'abc'\n.") == BytesValue(b"abc")
        assert decode_bytes(b'S"a\\nb"\n.') == BytesValue(b"a\nb")
        assert decode_bytes(b"S'\\xff'\n.") == BytesValue(b"\xff")
        assert decode_bytes(b"T\x03\x00\x00\x00abc.") == BytesValue(b"abc")
        assert decode_bytes(b"U\x00.") == BytesValue(b"")

    def test_unquoted_string(self):
        """Test that an unquoted STRING is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"Sabc\n.")

    def test_invalid_utf8(self):
        """Test that invalid UTF-8 in BINUNICODE is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"X\x01\x00\x00\x00\xff.")

    def test_invalid_int_literal(self):
        """Test that a non-numeric INT is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"Ifoo\n.")

    def test_invalid_float_literal(self):
        """Test that a non-numeric FLOAT is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"Fbar\n.")


class TestContainers:
    """Tests for container opcodes."""

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_list(self, proto):
        """Test lists at each protocol."""
        value = decode_bytes(pickle.dumps([1, "two", 3.0], protocol=proto))
        assert value == ListValue([IntValue(1), StrValue("two"), FloatValue(3.0)])

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_long_list(self, proto):
        """Test lists longer than one APPENDS batch."""
        obj = list(range(2500))
        assert decode_bytes(pickle.dumps(obj, protocol=proto)).to_python() == obj

    @pytest.mark.parametrize("proto", PROTOCOLS)
    @pytest.mark.parametrize("obj", [(), (1,), (1, 2), (1, 2, 3), (1, 2, 3, 4)])
    def test_tuples(self, proto, obj):
        """Test every tuple opcode."""
        value = decode_bytes(pickle.dumps(obj, protocol=proto))
        assert value == TupleValue(tuple(IntValue(i) for i in obj))

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_dict(self, proto):
        """Test dicts preserve insertion order."""
        obj = {"a": 1, "c": 3, "b": 2}
        value = decode_bytes(pickle.dumps(obj, protocol=proto))
        assert isinstance(value, DictValue)
        assert [k.value for k in value.entries] == ["a", "c", "b"]
        assert value.to_python() == obj

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_nested(self, proto):
        """Test nested containers."""
        obj = {"list": [1, [2, 3]], "tuple": (None, True), "dict": {"x": -1.5}}
        assert decode_bytes(pickle.dumps(obj, protocol=proto)).to_python() == obj

    def test_dict_opcode(self):
        """Test the DICT opcode builds from marked pairs."""
        value = decode_bytes(b"(K\x01K\x02K\x03K\x04d.")
        assert value == DictValue({IntValue(1): IntValue(2), IntValue(3): IntValue(4)})

    def test_duplicate_key_last_wins(self):
        """Test that a repeated dict key keeps the later value."""
        value = decode_bytes(b"(X\x01\x00\x00\x00aK\x01X\x01\x00\x00\x00aK\x02d.")
        assert value == DictValue({StrValue("a"): IntValue(2)})

    def test_odd_dict_items(self):
        """Test DICT with an odd number of items."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"(K\x01d.")

    def test_odd_setitems(self):
        """Test SETITEMS with an odd number of items."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"}(K\x01u.")

    def test_unhashable_key(self):
        """Test that a container used as a dict key is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"}]K\x01s.")

    def test_append_to_non_list(self):
        """Test APPEND onto a dict."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"}K\x01a.")

    def test_setitem_on_non_dict(self):
        """Test SETITEM onto a list."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"]K\x01K\x02s.")


class TestMemo:
    """Tests for PUT/GET and shared references."""

    def test_shared_container(self):
        """Test that a memoized list is shared, not copied."""
        inner = [1]
        value = decode_bytes(pickle.dumps([inner, inner], protocol=2))
        first, second = value.items
        assert first is second
        assert first == second

    def test_shared_container_protocol0(self):
        """Test sharing through text PUT/GET."""
        inner = {"k": "v"}
        value = decode_bytes(pickle.dumps([inner, inner], protocol=0))
        assert value.items[0] is value.items[1]

    def test_self_referencing_list(self):
        """Test a list that contains itself."""
        obj = []
        obj.append(obj)
        value = decode_bytes(pickle.dumps(obj, protocol=2))
        assert value.items[0] is value

    def test_self_referencing_dict(self):
        """Test a dict that contains itself."""
        obj = {"name": "a"}
        obj["self"] = obj
        value = decode_bytes(pickle.dumps(obj, protocol=1))
        assert value.entries[StrValue("self")] is value

    def test_unknown_memo_reference(self):
        """Test GET of an id never stored."""
        with pytest.raises(UnknownMemoReferenceError) as exc_info:
            decode_bytes(b"\x80\x02h\x05.")
        assert exc_info.value.memo_id == 5
        assert exc_info.value.offset == 2

    def test_unknown_memo_reference_text(self):
        """Test text GET of an id never stored."""
        with pytest.raises(UnknownMemoReferenceError):
            decode_bytes(b"g3\n.")

    def test_put_overwrites(self):
        """Test that a later PUT replaces an earlier one."""
        assert decode_bytes(b"K\x01q\x000K\x02q\x000h\x00.") == IntValue(2)

    def test_long_binput_binget(self):
        """Test 4-byte memo ids."""
        value = decode_bytes(b"K\x01r\x00\x01\x00\x00j\x00\x01\x00\x00\x86.")
        assert value == TupleValue((IntValue(1), IntValue(1)))

    def test_negative_memo_id(self):
        """Test that a negative text memo id is malformed."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"K\x01p-1\n.")

    @pytest.mark.parametrize("data", [b"K\x01p0x1\n.", b"K\x01p0\ng1_0\n.", b"K\x01p\n."])
    def test_non_decimal_memo_id(self, data):
        """Test that text memo ids must be plain decimal."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(data)

    def test_put_on_empty_stack(self):
        """Test PUT with nothing to store."""
        with pytest.raises(StackUnderflowError):
            decode_bytes(b"q\x00.")


class TestStackDiscipline:
    """Tests for stack, mark and STOP handling."""

    def test_pop(self):
        """Test POP discards the top value."""
        assert decode_bytes(b"K\x01K\x020.") == IntValue(1)

    def test_pop_mark(self):
        """Test POP_MARK discards through the mark."""
        assert decode_bytes(b"K\x01(K\x02K\x031.") == IntValue(1)

    def test_pop_removes_empty_mark(self):
        """Test POP on an empty frame discards the mark."""
        assert decode_bytes(b"K\x01(0.") == IntValue(1)

    def test_dup(self):
        """Test DUP pushes the top value again."""
        value = decode_bytes(b"]2\x86.")
        assert value.items[0] is value.items[1]

    def test_append_underflow(self):
        """Test APPEND on an empty stack."""
        with pytest.raises(StackUnderflowError):
            decode_bytes(b"\x80\x02a.")

    def test_tuple_underflow(self):
        """Test TUPLE2 with one value."""
        with pytest.raises(StackUnderflowError):
            decode_bytes(b"K\x01\x86.")

    def test_underflow_does_not_cross_mark(self):
        """Test that fixed-arity opcodes cannot consume values below a mark."""
        with pytest.raises(StackUnderflowError):
            decode_bytes(b"K\x01(\x85.")

    def test_pop_empty(self):
        """Test POP with nothing on the stack."""
        with pytest.raises(StackUnderflowError):
            decode_bytes(b"0.")

    def test_missing_mark(self):
        """Test APPENDS without a mark."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"]K\x01e.")

    def test_stop_with_two_values(self):
        """Test STOP with more than one value."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"K\x01K\x02.")

    def test_stop_with_empty_stack(self):
        """Test STOP with nothing on the stack."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b".")

    def test_stop_with_open_mark(self):
        """Test STOP inside an unclosed mark."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"(K\x01.")

    def test_incomplete_stream(self):
        """Test stream ending before STOP."""
        with pytest.raises(IncompleteStreamError) as exc_info:
            decode_bytes(b"\x80\x02K\x01")
        assert exc_info.value.offset == 4

    def test_truncated_operand(self):
        """Test truncated operand surfaces from decode."""
        with pytest.raises(TruncatedOperandError) as exc_info:
            decode_bytes(b"\x80\x02J\x01\x00")
        assert exc_info.value.offset == 2


class TestUnsupported:
    """Tests for rejected opcodes."""

    def test_later_protocol(self):
        """Test that PROTO above 2 is rejected."""
        with pytest.raises(UnsupportedOpcodeError) as exc_info:
            decode_bytes(pickle.dumps(1, protocol=3))
        assert exc_info.value.name == "PROTO 3"

    @pytest.mark.parametrize("proto", PROTOCOLS)
    def test_custom_object(self, proto):
        """Test that pickles of class instances are rejected."""
        with pytest.raises(UnsupportedOpcodeError) as exc_info:
            decode_bytes(pickle.dumps({1, 2}, protocol=proto))
        assert exc_info.value.name == "GLOBAL"

    @pytest.mark.parametrize(
        "data, name",
        [
            (b"R", "REDUCE"),
            (b"b", "BUILD"),
            (b"Pid\n", "PERSID"),
            (b"Q", "BINPERSID"),
            (b"\x81", "NEWOBJ"),
            (b"\x82\x01", "EXT1"),
            (b"C\x01a", "SHORT_BINBYTES"),
            (b"\x8c\x01a", "SHORT_BINUNICODE"),
            (b"\x95" + b"\x00" * 8, "FRAME"),
            (b"\x94", "MEMOIZE"),
        ],
    )
    def test_named_rejections(self, data, name):
        """Test that each unsupported opcode is rejected by name."""
        with pytest.raises(UnsupportedOpcodeError) as exc_info:
            decode_bytes(data + b".")
        assert exc_info.value.name == name

    def test_parse_errors_are_value_errors(self):
        """Test that parse errors share a ValueError base."""
        with pytest.raises(ValueError):
            decode_bytes(b"\xff")
        assert issubclass(UnsupportedOpcodeError, ParseError)


class TestDecode:
    """Tests for the decode entry points."""

    def test_decode_stream(self):
        """Test decoding from a stream leaves trailing bytes unread."""
        stream = io.BytesIO(pickle.dumps([1, 2], protocol=2) + b"rest")
        assert decode(stream).to_python() == [1, 2]
        assert stream.read() == b"rest"

    def test_consecutive_pickles(self):
        """Test decoding two pickles from one stream."""
        stream = io.BytesIO(pickle.dumps("a", protocol=2) + pickle.dumps("b", protocol=0))
        assert decode(stream) == StrValue("a")
        assert decode(stream) == StrValue("b")

    def test_max_length(self):
        """Test the operand size limit."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(pickle.dumps("hello", protocol=2), max_length=4)
        assert decode_bytes(pickle.dumps("hello", protocol=2), max_length=5) == StrValue("hello")

    def test_max_length_short_operands(self):
        """Test the size limit on SHORT_BINSTRING and LONG1."""
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"\x80\x02U\x14" + b"x" * 20 + b".", max_length=4)
        with pytest.raises(MalformedStreamError):
            decode_bytes(b"\x80\x02\x8a\x10" + b"\x01" * 16 + b".", max_length=4)
        assert decode_bytes(b"\x80\x02U\x04abcd.", max_length=4) == BytesValue(b"abcd")

    def test_fresh_state_per_machine(self):
        """Test that memo entries do not leak between decodes."""
        decode_bytes(b"K\x01q\x00.")
        with pytest.raises(UnknownMemoReferenceError):
            decode_bytes(b"h\x00.")

    def test_machine_state(self):
        """Test StackMachine leaves an empty stack after STOP."""
        machine = StackMachine(Reader(io.BytesIO(b"K\x01q\x07.")))
        assert machine.run() == IntValue(1)
        assert machine.stack == []
        assert machine.marks == []
        assert machine.memo == {7: IntValue(1)}
