"""
Value Codec - Bidirectional conversion between tagged values and wire bytes

Every value exchanged with the simulator is one of a fixed set of wire types.
Each type is an immutable dataclass carrying its tag; encoding produces the
canonical big-endian layout and decoding is prefix-based so callers can keep
reading sibling values out of the same command payload.
"""
import struct
from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, Iterable, Optional, Tuple, Type

import structlog

from traci_core.constants import STRING_ENCODING, ValueTag
from traci_core.exceptions import DecodeError, InvalidValueError, TruncatedValueError, UnknownTagError

logger = structlog.get_logger()

_UBYTE = struct.Struct("!B")
_BYTE = struct.Struct("!b")
_INT = struct.Struct("!i")
_DOUBLE = struct.Struct("!d")

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1

# Deepest compound nesting accepted from a reply
MAX_COMPOUND_DEPTH = 32


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidValueError(f"{name} must be an int, got {type(value).__name__}")
    if not low <= value <= high:
        raise InvalidValueError(f"{name} {value} outside [{low}, {high}]")


def _check_string(value: str) -> None:
    if not isinstance(value, str):
        raise InvalidValueError(f"expected str, got {type(value).__name__}")
    try:
        value.encode(STRING_ENCODING)
    except UnicodeEncodeError as e:
        raise InvalidValueError(f"string not representable in {STRING_ENCODING}: {value!r}") from e


def _as_float(name: str, value) -> float:
    if isinstance(value, bool):
        raise InvalidValueError(f"{name} must be a number, got bool")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidValueError(f"{name} must be a number, got {value!r}") from e


def _set_floats(obj, *names: str) -> None:
    for name in names:
        object.__setattr__(obj, name, _as_float(name, getattr(obj, name)))


class TypedValue:
    """Base class of all wire values; subclasses pin their tag"""

    tag: ClassVar[ValueTag]


@dataclass(frozen=True)
class UByte(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.UBYTE
    value: int

    def __post_init__(self):
        _check_range("ubyte", self.value, 0, 255)


@dataclass(frozen=True)
class Byte(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.BYTE
    value: int

    def __post_init__(self):
        _check_range("byte", self.value, -128, 127)


@dataclass(frozen=True)
class Integer(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.INTEGER
    value: int

    def __post_init__(self):
        _check_range("integer", self.value, _INT32_MIN, _INT32_MAX)


@dataclass(frozen=True)
class Double(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.DOUBLE
    value: float

    def __post_init__(self):
        _set_floats(self, "value")


@dataclass(frozen=True)
class String(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.STRING
    value: str

    def __post_init__(self):
        _check_string(self.value)


@dataclass(frozen=True)
class StringList(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.STRINGLIST
    values: Tuple[str, ...] = ()

    def __post_init__(self):
        values = tuple(self.values)
        for item in values:
            _check_string(item)
        object.__setattr__(self, "values", values)


@dataclass(frozen=True)
class DoubleList(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.DOUBLELIST
    values: Tuple[float, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(_as_float("double list item", v) for v in self.values))


@dataclass(frozen=True)
class Position2D(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.POSITION_2D
    x: float
    y: float

    def __post_init__(self):
        _set_floats(self, "x", "y")


@dataclass(frozen=True)
class Position3D(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.POSITION_3D
    x: float
    y: float
    z: float

    def __post_init__(self):
        _set_floats(self, "x", "y", "z")


@dataclass(frozen=True)
class GeoPosition(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.POSITION_LON_LAT
    lon: float
    lat: float

    def __post_init__(self):
        _set_floats(self, "lon", "lat")


@dataclass(frozen=True)
class RoadPosition(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.POSITION_ROADMAP
    edge_id: str
    pos: float
    lane_index: int

    def __post_init__(self):
        _check_string(self.edge_id)
        _set_floats(self, "pos")
        _check_range("lane index", self.lane_index, 0, 255)


@dataclass(frozen=True)
class Color(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.COLOR
    r: int
    g: int
    b: int
    a: int = 255

    def __post_init__(self):
        for name in ("r", "g", "b", "a"):
            _check_range(f"color channel {name}", getattr(self, name), 0, 255)


@dataclass(frozen=True)
class Polygon(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.POLYGON
    points: Tuple[Tuple[float, float], ...] = ()

    def __post_init__(self):
        points = tuple((_as_float("x", x), _as_float("y", y)) for x, y in self.points)
        if len(points) > _INT32_MAX:
            raise InvalidValueError("polygon has too many points")
        object.__setattr__(self, "points", points)


@dataclass(frozen=True)
class Compound(TypedValue):
    tag: ClassVar[ValueTag] = ValueTag.COMPOUND
    items: Tuple[TypedValue, ...] = ()

    def __post_init__(self):
        items = tuple(self.items)
        for item in items:
            if not isinstance(item, TypedValue):
                raise InvalidValueError(f"compound items must be typed values, got {type(item).__name__}")
        object.__setattr__(self, "items", items)


# Encoding

def _pack_string(value: str) -> bytes:
    raw = value.encode(STRING_ENCODING)
    return _INT.pack(len(raw)) + raw


def _encode_polygon(value: Polygon) -> bytes:
    count = len(value.points)
    # Counts that do not fit a byte use a 0 marker followed by an int
    if 0 < count <= 255:
        header = _UBYTE.pack(count)
    else:
        header = _UBYTE.pack(0) + _INT.pack(count)
    return header + b"".join(struct.pack("!dd", x, y) for x, y in value.points)


_ENCODERS: Dict[Type[TypedValue], Callable[[TypedValue], bytes]] = {
    UByte: lambda v: _UBYTE.pack(v.value),
    Byte: lambda v: _BYTE.pack(v.value),
    Integer: lambda v: _INT.pack(v.value),
    Double: lambda v: _DOUBLE.pack(v.value),
    String: lambda v: _pack_string(v.value),
    StringList: lambda v: _INT.pack(len(v.values)) + b"".join(_pack_string(s) for s in v.values),
    DoubleList: lambda v: _INT.pack(len(v.values)) + b"".join(_DOUBLE.pack(d) for d in v.values),
    Position2D: lambda v: struct.pack("!dd", v.x, v.y),
    Position3D: lambda v: struct.pack("!ddd", v.x, v.y, v.z),
    GeoPosition: lambda v: struct.pack("!dd", v.lon, v.lat),
    RoadPosition: lambda v: _pack_string(v.edge_id) + _DOUBLE.pack(v.pos) + _UBYTE.pack(v.lane_index),
    Color: lambda v: struct.pack("!BBBB", v.r, v.g, v.b, v.a),
    Polygon: _encode_polygon,
    Compound: lambda v: _INT.pack(len(v.items)) + b"".join(encode_tagged(i) for i in v.items),
}


def encode(value: TypedValue) -> bytes:
    """
    Encode a value body without its tag.

    Args:
        value: Any well-formed TypedValue

    Returns:
        Canonical byte layout of the value
    """
    encoder = _ENCODERS.get(type(value))
    if encoder is None:
        raise InvalidValueError(f"not a wire value: {type(value).__name__}")
    return encoder(value)


def encode_tagged(value: TypedValue) -> bytes:
    """Encode a value preceded by its one-byte tag"""
    return _UBYTE.pack(value.tag) + encode(value)


def encode_all(values: Iterable[TypedValue], tagged: bool = True) -> bytes:
    """Concatenate the encodings of several values"""
    if tagged:
        return b"".join(encode_tagged(v) for v in values)
    return b"".join(encode(v) for v in values)


# Decoding

class ByteReader:
    """
    Bounded read cursor over a byte buffer.

    Every read checks the remaining length first and raises
    TruncatedValueError instead of reading past ``end``.
    """

    def __init__(self, data: bytes, offset: int = 0, end: Optional[int] = None):
        self._data = memoryview(data)
        self.offset = offset
        self.end = len(data) if end is None else end
        self.depth = 0

    @property
    def remaining(self) -> int:
        return self.end - self.offset

    def at_end(self) -> bool:
        return self.offset >= self.end

    def take(self, size: int, what: str = "bytes") -> bytes:
        if size < 0:
            raise DecodeError(f"Negative length for {what}", details={"offset": self.offset, "size": size})
        if size > self.remaining:
            raise TruncatedValueError(
                f"Not enough data for {what} (need {size}, have {self.remaining})",
                details={"offset": self.offset, "needed": size, "available": self.remaining},
            )
        start = self.offset
        self.offset += size
        return self._data[start:self.offset].tobytes()

    def _unpack(self, fmt: struct.Struct, what: str):
        return fmt.unpack(self.take(fmt.size, what))[0]

    def read_ubyte(self) -> int:
        return self._unpack(_UBYTE, "ubyte")

    def read_byte(self) -> int:
        return self._unpack(_BYTE, "byte")

    def read_int(self) -> int:
        return self._unpack(_INT, "integer")

    def read_double(self) -> float:
        return self._unpack(_DOUBLE, "double")

    def read_count(self, what: str, element_size: int = 0) -> int:
        count = self.read_int()
        if count < 0:
            raise DecodeError(f"Negative element count for {what}", details={"offset": self.offset, "count": count})
        if element_size and count * element_size > self.remaining:
            raise TruncatedValueError(
                f"Not enough data for {count} {what} elements",
                details={"offset": self.offset, "needed": count * element_size, "available": self.remaining},
            )
        return count

    def read_string(self) -> str:
        length = self.read_int()
        return self.take(length, "string").decode(STRING_ENCODING)

    def read_string_list(self) -> Tuple[str, ...]:
        count = self.read_count("string list", element_size=4)
        return tuple(self.read_string() for _ in range(count))

    def read_tag(self) -> ValueTag:
        offset = self.offset
        raw = self.read_ubyte()
        try:
            return ValueTag(raw)
        except ValueError:
            raise UnknownTagError(
                f"Unknown value tag 0x{raw:02x}",
                details={"offset": offset, "tag": raw},
            ) from None

    def read_value(self, tag: ValueTag) -> TypedValue:
        """Decode a value body whose tag was already consumed"""
        return _DECODERS[tag](self)

    def read_tagged(self) -> TypedValue:
        """Decode a tag byte followed by the value body"""
        return self.read_value(self.read_tag())


def _read_polygon(reader: ByteReader) -> Polygon:
    count = reader.read_ubyte()
    if count == 0:
        count = reader.read_count("polygon", element_size=16)
    return Polygon(tuple((reader.read_double(), reader.read_double()) for _ in range(count)))


def _read_compound(reader: ByteReader) -> Compound:
    if reader.depth >= MAX_COMPOUND_DEPTH:
        raise DecodeError(
            f"Compound nesting deeper than {MAX_COMPOUND_DEPTH} levels",
            details={"offset": reader.offset, "max_depth": MAX_COMPOUND_DEPTH},
        )
    count = reader.read_count("compound", element_size=1)
    reader.depth += 1
    try:
        return Compound(tuple(reader.read_tagged() for _ in range(count)))
    finally:
        reader.depth -= 1


def _read_double_list(reader: ByteReader) -> DoubleList:
    count = reader.read_count("double list", element_size=8)
    return DoubleList(tuple(reader.read_double() for _ in range(count)))


_DECODERS: Dict[ValueTag, Callable[[ByteReader], TypedValue]] = {
    ValueTag.UBYTE: lambda r: UByte(r.read_ubyte()),
    ValueTag.BYTE: lambda r: Byte(r.read_byte()),
    ValueTag.INTEGER: lambda r: Integer(r.read_int()),
    ValueTag.DOUBLE: lambda r: Double(r.read_double()),
    ValueTag.STRING: lambda r: String(r.read_string()),
    ValueTag.STRINGLIST: lambda r: StringList(r.read_string_list()),
    ValueTag.DOUBLELIST: _read_double_list,
    ValueTag.POSITION_2D: lambda r: Position2D(r.read_double(), r.read_double()),
    ValueTag.POSITION_3D: lambda r: Position3D(r.read_double(), r.read_double(), r.read_double()),
    ValueTag.POSITION_LON_LAT: lambda r: GeoPosition(r.read_double(), r.read_double()),
    ValueTag.POSITION_ROADMAP: lambda r: RoadPosition(r.read_string(), r.read_double(), r.read_ubyte()),
    ValueTag.COLOR: lambda r: Color(r.read_ubyte(), r.read_ubyte(), r.read_ubyte(), r.read_ubyte()),
    ValueTag.POLYGON: _read_polygon,
    ValueTag.COMPOUND: _read_compound,
}


def decode(tag: int, data: bytes, offset: int = 0) -> Tuple[TypedValue, int]:
    """
    Decode one value body from ``data`` starting at ``offset``.

    Args:
        tag: Wire tag announcing the value type
        data: Buffer holding the value body
        offset: Start position inside ``data``

    Returns:
        Tuple of (value, bytes consumed)

    Raises:
        UnknownTagError: If ``tag`` is not a recognized wire type
        TruncatedValueError: If ``data`` ends before the value does
    """
    try:
        wire_tag = ValueTag(tag)
    except ValueError:
        raise UnknownTagError(f"Unknown value tag 0x{tag:02x}", details={"tag": tag}) from None

    reader = ByteReader(data, offset)
    value = reader.read_value(wire_tag)
    return value, reader.offset - offset


def decode_tagged(data: bytes, offset: int = 0) -> Tuple[TypedValue, int]:
    """Decode a tag byte plus value body; consumed count includes the tag"""
    reader = ByteReader(data, offset)
    value = reader.read_tagged()
    return value, reader.offset - offset
