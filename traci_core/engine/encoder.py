"""
Command Encoder - Builds and splits length-prefixed TraCI frames

A frame is a u32 total length (counting the prefix itself) followed by
command blocks. Each block header counts the whole block: content below 255
bytes uses a one-byte length, larger content a 0x00 marker plus a u32 length.
"""
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import structlog

from traci_core.constants import (
    EXTENDED_LENGTH_THRESHOLD,
    INVALID_DOUBLE_VALUE,
    LENGTH_PREFIX_SIZE,
    Command,
)
from traci_core.engine.codec import ByteReader, Double, Integer, String, StringList, TypedValue, UByte
from traci_core.engine.codec import encode as encode_value
from traci_core.engine.codec import encode_all, encode_tagged
from traci_core.exceptions import FrameError, InvalidValueError

logger = structlog.get_logger()

_UINT = struct.Struct("!I")


@dataclass(frozen=True)
class CommandBlock:
    """One opcode plus its opaque payload"""

    opcode: int
    payload: bytes = b""

    def __post_init__(self):
        if isinstance(self.opcode, bool) or not isinstance(self.opcode, int) or not 0 <= self.opcode <= 0xFF:
            raise InvalidValueError(f"opcode out of range: {self.opcode}", details={"opcode": self.opcode})
        object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def content_length(self) -> int:
        """Opcode byte plus payload"""
        return 1 + len(self.payload)

    @property
    def extended(self) -> bool:
        return self.content_length >= EXTENDED_LENGTH_THRESHOLD

    @property
    def wire_size(self) -> int:
        header = 1 + _UINT.size if self.extended else 1
        return header + self.content_length


BlockLike = Union[CommandBlock, Tuple[int, bytes]]


def _as_block(command: BlockLike) -> CommandBlock:
    if isinstance(command, CommandBlock):
        return command
    opcode, payload = command
    return CommandBlock(opcode, payload)


def encode_block(block: CommandBlock) -> bytes:
    """Serialize one command block including its length header"""
    if block.extended:
        header = b"\x00" + _UINT.pack(block.wire_size)
    else:
        header = bytes([block.wire_size])
    return header + bytes([block.opcode]) + block.payload


def build_message(commands: Iterable[BlockLike]) -> bytes:
    """
    Assemble command blocks into a single frame.

    Args:
        commands: Ordered command blocks or (opcode, payload) pairs

    Returns:
        Complete frame including the 4-byte total length

    Raises:
        InvalidValueError: If no command is given
    """
    blocks = [_as_block(c) for c in commands]
    if not blocks:
        raise InvalidValueError("a message needs at least one command")

    body = b"".join(encode_block(b) for b in blocks)
    frame = _UINT.pack(LENGTH_PREFIX_SIZE + len(body)) + body

    logger.debug(
        "message_built",
        commands=[f"0x{b.opcode:02x}" for b in blocks],
        size=len(frame),
    )
    return frame


def frame_length(frame: bytes) -> int:
    """Declared total length of a frame; FrameError if the prefix is short"""
    if len(frame) < LENGTH_PREFIX_SIZE:
        raise FrameError("Frame shorter than its length prefix", details={"size": len(frame)})
    return _UINT.unpack_from(frame)[0]


def read_block(reader: ByteReader) -> CommandBlock:
    """
    Consume one command block from a bounded reader.

    Raises:
        FrameError: If the header is incomplete or the declared length does
            not fit inside the remaining bytes
    """
    start = reader.offset
    if reader.remaining < 1:
        raise FrameError("Missing command block header", details={"offset": start})

    length = reader.read_ubyte()
    header = 1
    if length == 0:
        if reader.remaining < _UINT.size:
            raise FrameError("Truncated extended block header", details={"offset": start})
        length = _UINT.unpack(reader.take(_UINT.size))[0]
        header += _UINT.size

    content = length - header
    if content < 1:
        raise FrameError(
            "Block length too small to hold an opcode",
            details={"offset": start, "declared": length},
        )
    if content > reader.remaining:
        raise FrameError(
            "Block length overruns frame",
            details={"offset": start, "declared": length, "available": reader.remaining + header},
        )

    opcode = reader.read_ubyte()
    payload = reader.take(content - 1)
    return CommandBlock(opcode, payload)


def parse_message(frame: bytes) -> List[CommandBlock]:
    """
    Split a frame made only of command blocks back into blocks.

    Raises:
        FrameError: If the declared total length disagrees with the frame
            size or the blocks do not exactly fill it
    """
    declared = frame_length(frame)
    if declared != len(frame):
        raise FrameError(
            "Declared frame length does not match frame size",
            details={"declared": declared, "actual": len(frame)},
        )

    reader = ByteReader(frame, LENGTH_PREFIX_SIZE)
    blocks = []
    while not reader.at_end():
        blocks.append(read_block(reader))
    return blocks


# Payload builders

def variable_payload(variable_id: int, object_id: str, params: Sequence[TypedValue] = ()) -> bytes:
    """var id + object id + tagged parameters, the layout of get and set commands"""
    return encode_value(UByte(variable_id)) + encode_value(String(object_id)) + encode_all(params)


def subscribe_payload(
    object_id: str,
    variable_ids: Sequence[int],
    begin_time: float = INVALID_DOUBLE_VALUE,
    end_time: float = INVALID_DOUBLE_VALUE,
    context: Optional[Tuple[int, float]] = None,
) -> bytes:
    """
    Layout of a subscription declaration.

    Args:
        object_id: Subscribed object
        variable_ids: Variables to push; empty cancels
        begin_time: Window start, INVALID_DOUBLE_VALUE for unbounded
        end_time: Window end, INVALID_DOUBLE_VALUE for unbounded
        context: (domain, range) for context subscriptions
    """
    if len(variable_ids) > 0xFF:
        raise InvalidValueError(
            "at most 255 variables per subscription", details={"count": len(variable_ids)}
        )

    parts = [
        encode_value(Double(begin_time)),
        encode_value(Double(end_time)),
        encode_value(String(object_id)),
    ]
    if context is not None:
        domain, dist = context
        parts.append(encode_value(UByte(domain)))
        parts.append(encode_value(Double(dist)))
    parts.append(bytes([len(variable_ids)]))
    parts.extend(encode_value(UByte(var)) for var in variable_ids)
    return b"".join(parts)


def get_version_block() -> CommandBlock:
    return CommandBlock(Command.GETVERSION)


def simstep_block(target_time: float = 0.0) -> CommandBlock:
    return CommandBlock(Command.SIMSTEP, encode_value(Double(target_time)))


def setorder_block(order: int) -> CommandBlock:
    return CommandBlock(Command.SETORDER, encode_value(Integer(order)))


def load_block(args: Sequence[str]) -> CommandBlock:
    return CommandBlock(Command.LOAD, encode_tagged(StringList(tuple(args))))


def close_block() -> CommandBlock:
    return CommandBlock(Command.CLOSE)
