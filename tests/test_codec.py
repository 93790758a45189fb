"""
Tests for the value codec.

Tests cover:
- Canonical byte layouts of each wire type
- Prefix decoding and consumed byte counts
- Boundary values
- Unknown tags and truncated input
"""
import struct

import pytest

from traci_core.constants import ValueTag
from traci_core.engine.codec import (
    Byte,
    ByteReader,
    Color,
    Compound,
    Double,
    DoubleList,
    GeoPosition,
    Integer,
    Polygon,
    Position2D,
    Position3D,
    RoadPosition,
    String,
    StringList,
    MAX_COMPOUND_DEPTH,
    UByte,
    decode,
    decode_tagged,
    encode,
    encode_tagged,
)
from traci_core.exceptions import (
    DecodeError,
    InvalidValueError,
    TruncatedValueError,
    UnknownTagError,
    UsageError,
)


SAMPLES = [
    UByte(0),
    UByte(255),
    Byte(-128),
    Byte(127),
    Integer(-(2 ** 31)),
    Integer(2 ** 31 - 1),
    Double(0.0),
    Double(-1.5e300),
    Double(1e-300),
    String(""),
    String("veh_0"),
    String("x" * 70000),
    String("Straße"),
    StringList(()),
    StringList(("a", "", "lane_1_0")),
    DoubleList(()),
    DoubleList((1.0, -2.5, 3.25)),
    Position2D(0.0, -12.5),
    Position3D(1.0, 2.0, -3.0),
    GeoPosition(13.4, 52.5),
    RoadPosition("edge_1", 12.5, 2),
    Color(255, 0, 16, 128),
    Polygon(()),
    Polygon(((1.0, 2.0),)),
    Polygon(tuple((float(i), float(-i)) for i in range(300))),
    Compound(()),
    Compound((String("route"), Integer(3), Compound((Double(1.0),)))),
]


class TestRoundTrip:
    """decode(encode(v)) recovers v and reports the full length"""

    @pytest.mark.parametrize("value", SAMPLES, ids=lambda v: type(v).__name__)
    def test_body_round_trip(self, value):
        """Test that a body decodes back to the same value."""
        data = encode(value)
        decoded, consumed = decode(value.tag, data)

        assert decoded == value
        assert consumed == len(data)

    @pytest.mark.parametrize("value", SAMPLES, ids=lambda v: type(v).__name__)
    def test_tagged_round_trip(self, value):
        """Test that the tag byte is written and counted."""
        data = encode_tagged(value)
        decoded, consumed = decode_tagged(data)

        assert data[0] == value.tag
        assert decoded == value
        assert consumed == len(data)

    def test_decode_stops_at_value_end(self):
        """Test that decoding is prefix based and ignores trailing siblings."""
        data = encode(String("abc")) + encode(Integer(7))

        value, consumed = decode(ValueTag.STRING, data)
        assert value == String("abc")
        assert consumed == 7

        sibling, used = decode(ValueTag.INTEGER, data, consumed)
        assert sibling == Integer(7)
        assert used == 4


class TestLayouts:
    """Canonical big-endian layouts"""

    def test_integer_is_big_endian(self):
        assert encode(Integer(1)) == b"\x00\x00\x00\x01"

    def test_double_is_big_endian(self):
        assert encode(Double(1.0)) == struct.pack(">d", 1.0)

    def test_string_has_length_prefix_and_no_terminator(self):
        assert encode(String("ab")) == b"\x00\x00\x00\x02ab"

    def test_string_uses_latin1(self):
        assert encode(String("ß")) == b"\x00\x00\x00\x01\xdf"

    def test_string_list_layout(self):
        assert encode(StringList(("a", "bc"))) == b"\x00\x00\x00\x02" + b"\x00\x00\x00\x01a" + b"\x00\x00\x00\x02bc"

    def test_compound_elements_are_tagged(self):
        assert encode(Compound((UByte(5), Integer(2)))) == b"\x00\x00\x00\x02" + b"\x07\x05" + b"\x09\x00\x00\x00\x02"

    def test_color_layout(self):
        assert encode_tagged(Color(1, 2, 3, 4)) == b"\x11\x01\x02\x03\x04"

    def test_small_polygon_uses_byte_count(self):
        data = encode(Polygon(((1.0, 2.0),)))
        assert data[0] == 1
        assert len(data) == 1 + 16

    def test_large_polygon_uses_int_count(self):
        data = encode(Polygon(tuple((0.0, 0.0) for _ in range(256))))
        assert data[:5] == b"\x00\x00\x00\x01\x00"
        assert len(data) == 5 + 256 * 16

    def test_road_position_layout(self):
        data = encode(RoadPosition("e", 1.0, 3))
        assert data == b"\x00\x00\x00\x01e" + struct.pack(">d", 1.0) + b"\x03"


class TestValidation:
    """Ill-formed instances are rejected at construction"""

    @pytest.mark.parametrize("factory", [
        lambda: UByte(256),
        lambda: UByte(-1),
        lambda: Byte(128),
        lambda: Integer(2 ** 31),
        lambda: Color(0, 0, 0, 300),
        lambda: String("€"),
        lambda: StringList(("ok", "€")),
        lambda: RoadPosition("e", 0.0, 256),
        lambda: Compound((1,)),
        lambda: Double("fast"),
        lambda: Position2D(True, 0.0),
        lambda: Polygon(((1.0, None),)),
    ])
    def test_invalid_values_rejected(self, factory):
        """Test that out-of-range or unencodable values raise a usage error that is also a ValueError."""
        with pytest.raises(InvalidValueError) as exc_info:
            factory()

        assert isinstance(exc_info.value, UsageError)
        assert isinstance(exc_info.value, ValueError)
        assert exc_info.value.invalidates_connection is False

    def test_encode_rejects_non_wire_values(self):
        with pytest.raises(InvalidValueError):
            encode(3.0)

    def test_sequences_are_frozen_to_tuples(self):
        assert StringList(["a", "b"]).values == ("a", "b")
        assert Polygon([[1, 2]]).points == ((1.0, 2.0),)


class TestDecodeErrors:
    """Unknown tags and truncated input raise decode errors"""

    def test_unknown_tag(self):
        """Test that an unrecognized tag is never coerced."""
        with pytest.raises(UnknownTagError) as exc_info:
            decode(0x42, b"\x00\x00\x00\x00")

        assert exc_info.value.details["tag"] == 0x42
        assert exc_info.value.invalidates_connection is True

    def test_unknown_tag_in_tagged_data(self):
        with pytest.raises(UnknownTagError):
            decode_tagged(b"\x02\x00")

    @pytest.mark.parametrize("tag,data", [
        (ValueTag.INTEGER, b"\x00\x01"),
        (ValueTag.DOUBLE, b"\x00" * 7),
        (ValueTag.STRING, b"\x00\x00\x00\x05abc"),
        (ValueTag.STRINGLIST, b"\x00\x00\x00\x02\x00\x00\x00\x01a"),
        (ValueTag.COLOR, b"\x01\x02\x03"),
        (ValueTag.POLYGON, b"\x02" + b"\x00" * 16),
        (ValueTag.COMPOUND, b"\x00\x00\x00\x01\x09\x00"),
        (ValueTag.DOUBLELIST, b"\x7f\xff\xff\xff"),
    ])
    def test_truncated_input(self, tag, data):
        """Test that missing bytes raise TruncatedValueError."""
        with pytest.raises(TruncatedValueError):
            decode(tag, data)

    def test_negative_count_rejected(self):
        with pytest.raises(DecodeError):
            decode(ValueTag.STRINGLIST, b"\xff\xff\xff\xff")

    def test_truncated_is_a_decode_error(self):
        assert issubclass(TruncatedValueError, DecodeError)


def _nested_compound_body(levels: int) -> bytes:
    """Body of ``levels`` compounds, each holding the next one"""
    body = struct.pack(">i", 0)
    for _ in range(levels - 1):
        body = struct.pack(">i", 1) + bytes([ValueTag.COMPOUND]) + body
    return body


class TestCompoundNesting:
    """Nesting depth of decoded compounds is bounded"""

    def test_deepest_allowed_nesting_decodes(self):
        value, consumed = decode(ValueTag.COMPOUND, _nested_compound_body(MAX_COMPOUND_DEPTH))

        depth = 1
        while value.items:
            value = value.items[0]
            depth += 1
        assert depth == MAX_COMPOUND_DEPTH
        assert consumed == len(_nested_compound_body(MAX_COMPOUND_DEPTH))

    def test_one_level_too_deep(self):
        with pytest.raises(DecodeError) as exc_info:
            decode(ValueTag.COMPOUND, _nested_compound_body(MAX_COMPOUND_DEPTH + 1))
        assert exc_info.value.details["max_depth"] == MAX_COMPOUND_DEPTH

    def test_pathological_nesting_is_a_decode_error(self):
        """Test that thousands of nested compounds fail cleanly instead of exhausting the stack."""
        with pytest.raises(DecodeError):
            decode(ValueTag.COMPOUND, _nested_compound_body(3000))

    def test_depth_resets_between_values(self):
        reader = ByteReader(_nested_compound_body(MAX_COMPOUND_DEPTH) * 2)
        reader.read_value(ValueTag.COMPOUND)
        reader.read_value(ValueTag.COMPOUND)

        assert reader.depth == 0
        assert reader.at_end()


class TestByteReader:
    """Bounded reader behaviour"""

    def test_reader_respects_end(self):
        reader = ByteReader(b"\x01\x02\x03\x04", 0, end=2)
        assert reader.read_ubyte() == 1
        assert reader.remaining == 1

        with pytest.raises(TruncatedValueError):
            reader.take(2)

    def test_every_tag_has_a_decoder(self):
        """Test that each wire tag round-trips through the reader."""
        covered = {type(v).tag for v in SAMPLES}
        assert covered == set(ValueTag)
