"""
Dispatcher - Strict request/response cycle over one transport

Sends one frame per batch, reads exactly one reply frame and walks it block by
block in request order: a status block per request, then the result block the
request kind calls for. Subscription results bundled into the reply are
decoded and attached to the slot they arrived in.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import structlog

from traci_core.constants import (
    INVALID_DOUBLE_VALUE,
    LENGTH_PREFIX_SIZE,
    Command,
    ValueTag,
    push_kind,
    response_opcode,
)
from traci_core.engine.codec import ByteReader, Integer, String, TypedValue
from traci_core.engine.encoder import (
    CommandBlock,
    build_message,
    frame_length,
    get_version_block,
    read_block,
    simstep_block,
    subscribe_payload,
    variable_payload,
)
from traci_core.engine.errors import ErrorTranslator
from traci_core.engine.subscriptions import SubscriptionResult, ack_opcode, decode_push
from traci_core.engine.transport import Transport
from traci_core.exceptions import DecodeError, FrameError, TraciError, UnexpectedOpcodeError
from traci_core.models import ResponseKind

logger = structlog.get_logger()


@dataclass(frozen=True)
class Request:
    """
    One outgoing command plus what its reply should contain.

    Attributes:
        block: Encoded command
        kind: Shape of the reply following the status block
        variable_id: Variable a get reply must echo
        expected_tag: Value tag a get reply must carry, None accepts any
        expects_ack: Subscription declarations with variables get an
            acknowledgement block after a successful status
        target_time: Time a step request runs to, 0 for a single step
    """

    block: CommandBlock
    kind: ResponseKind = ResponseKind.STATUS
    variable_id: Optional[int] = None
    expected_tag: Optional[ValueTag] = None
    expects_ack: bool = False
    target_time: Optional[float] = None

    @property
    def opcode(self) -> int:
        return self.block.opcode

    @classmethod
    def status(cls, block: CommandBlock) -> "Request":
        return cls(block)

    @classmethod
    def get(
        cls,
        opcode: int,
        variable_id: int,
        object_id: str,
        params: Sequence[TypedValue] = (),
        expected_tag: Optional[ValueTag] = None,
    ) -> "Request":
        block = CommandBlock(opcode, variable_payload(variable_id, object_id, params))
        return cls(block, ResponseKind.VARIABLE, variable_id=variable_id, expected_tag=expected_tag)

    @classmethod
    def set(cls, opcode: int, variable_id: int, object_id: str, value: Optional[TypedValue] = None) -> "Request":
        params = (value,) if value is not None else ()
        return cls(CommandBlock(opcode, variable_payload(variable_id, object_id, params)))

    @classmethod
    def version(cls) -> "Request":
        return cls(get_version_block(), ResponseKind.VERSION)

    @classmethod
    def step(cls, target_time: float = 0.0) -> "Request":
        return cls(simstep_block(target_time), ResponseKind.STEP, target_time=target_time)

    @classmethod
    def subscribe(
        cls,
        opcode: int,
        object_id: str,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
        context: Optional[Tuple[int, float]] = None,
    ) -> "Request":
        payload = subscribe_payload(object_id, variable_ids, begin_time, end_time, context)
        return cls.from_declaration(CommandBlock(opcode, payload), bool(variable_ids))

    @classmethod
    def from_declaration(cls, block: CommandBlock, expects_ack: bool) -> "Request":
        return cls(block, ResponseKind.SUBSCRIPTION, expects_ack=expects_ack)


@dataclass
class CommandResult:
    """Outcome of one request slot: decoded values or the slot's error"""

    opcode: int
    values: List[TypedValue] = field(default_factory=list)
    error: Optional[TraciError] = None
    description: str = ""
    pushes: List[SubscriptionResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> List[TypedValue]:
        """Values of a successful slot; raises the slot's error otherwise"""
        if self.error is not None:
            raise self.error
        return self.values

    def value(self) -> TypedValue:
        """Single value of a successful get"""
        values = self.unwrap()
        if len(values) != 1:
            raise DecodeError(
                f"Expected one result value, got {len(values)}",
                details={"opcode": self.opcode},
            )
        return values[0]


class Dispatcher:
    """
    Runs batches of requests over a transport.

    Not thread safe on its own; the owning connection serializes calls.
    Errors that leave the byte stream position unknown are raised; status
    failures are reported per slot.
    """

    def __init__(self, transport: Transport, translator: Optional[ErrorTranslator] = None):
        self.transport = transport
        self.translator = translator or ErrorTranslator()

    def execute(self, requests: Sequence[Request]) -> List[CommandResult]:
        """
        Send a batch and decode the reply.

        Args:
            requests: Ordered requests, encoded into one frame

        Returns:
            One CommandResult per request, in request order

        Raises:
            TransportError: Socket failure
            FrameError: Reply length accounting is inconsistent
            UnexpectedOpcodeError: A reply block answers something else
            DecodeError: A value inside the reply cannot be decoded
        """
        frame = build_message(r.block for r in requests)
        self.transport.send(frame)
        reply = self.transport.recv()
        return self.parse_reply(requests, reply)

    def parse_reply(self, requests: Sequence[Request], reply: bytes) -> List[CommandResult]:
        declared = frame_length(reply)
        if declared != len(reply):
            raise FrameError(
                "Reply length prefix does not match frame size",
                details={"declared": declared, "actual": len(reply)},
            )

        reader = ByteReader(reply, LENGTH_PREFIX_SIZE)
        results = []
        for request in requests:
            result = CommandResult(request.opcode)
            self._read_slot(reader, request, result)
            results.append(result)

        # Pushes may trail the last reply block
        while not reader.at_end():
            block = read_block(reader)
            if push_kind(block.opcode) is None:
                raise UnexpectedOpcodeError(
                    f"Unexpected trailing block 0x{block.opcode:02x}",
                    details={"opcode": block.opcode, "offset": reader.offset},
                )
            results[-1].pushes.append(decode_push(block))

        return results

    def _next_block(self, reader: ByteReader, expected: int, result: CommandResult) -> CommandBlock:
        """Read up to the block with ``expected`` opcode, collecting pushes on the way"""
        while True:
            block = read_block(reader)
            if block.opcode == expected:
                return block
            if push_kind(block.opcode) is not None:
                result.pushes.append(decode_push(block))
                continue
            raise UnexpectedOpcodeError(
                f"Expected block 0x{expected:02x}, got 0x{block.opcode:02x}",
                details={"expected": expected, "opcode": block.opcode},
            )

    def _read_slot(self, reader: ByteReader, request: Request, result: CommandResult) -> None:
        status = self._next_block(reader, request.opcode, result)
        code, description = self._decode_status(status)
        result.description = description
        result.error = self.translator.translate_status(request.opcode, code, description)

        if result.error is not None:
            logger.debug(
                "command_rejected",
                opcode=f"0x{request.opcode:02x}",
                return_code=code,
                description=description,
            )
            return

        if request.kind == ResponseKind.VARIABLE:
            block = self._next_block(reader, response_opcode(request.opcode), result)
            result.values = [self._decode_variable(block, request)]
        elif request.kind == ResponseKind.VERSION:
            block = self._next_block(reader, Command.GETVERSION, result)
            result.values = self._decode_version(block)
        elif request.kind == ResponseKind.STEP:
            result.pushes.extend(self._read_step_results(reader))
        elif request.kind == ResponseKind.SUBSCRIPTION and request.expects_ack:
            block = self._next_block(reader, ack_opcode(request.opcode), result)
            result.pushes.append(decode_push(block))

    @staticmethod
    def _finish(payload: ByteReader, block: CommandBlock) -> None:
        if not payload.at_end():
            raise DecodeError(
                f"Trailing bytes in block 0x{block.opcode:02x}",
                details={"opcode": block.opcode, "remaining": payload.remaining},
            )

    def _decode_status(self, block: CommandBlock) -> Tuple[int, str]:
        payload = ByteReader(block.payload)
        code = payload.read_ubyte()
        description = payload.read_string()
        self._finish(payload, block)
        return code, description

    def _decode_variable(self, block: CommandBlock, request: Request) -> TypedValue:
        payload = ByteReader(block.payload)
        variable_id = payload.read_ubyte()
        object_id = payload.read_string()
        if request.variable_id is not None and variable_id != request.variable_id:
            raise DecodeError(
                f"Reply is for variable 0x{variable_id:02x}, requested 0x{request.variable_id:02x}",
                details={"opcode": block.opcode, "object_id": object_id},
            )

        tag = payload.read_tag()
        if request.expected_tag is not None and tag != request.expected_tag:
            raise DecodeError(
                f"Expected value tag 0x{request.expected_tag:02x}, got 0x{tag:02x}",
                details={"opcode": block.opcode, "variable_id": variable_id, "object_id": object_id},
            )
        value = payload.read_value(tag)
        self._finish(payload, block)
        return value

    def _decode_version(self, block: CommandBlock) -> List[TypedValue]:
        payload = ByteReader(block.payload)
        api_version = payload.read_int()
        name = payload.read_string()
        self._finish(payload, block)
        return [Integer(api_version), String(name)]

    def _read_step_results(self, reader: ByteReader) -> List[SubscriptionResult]:
        if reader.remaining < 4:
            raise FrameError(
                "Step reply is missing its subscription count",
                details={"offset": reader.offset},
            )
        count = reader.read_int()
        if count < 0:
            raise FrameError("Negative subscription count in step reply", details={"count": count})

        pushes = []
        for _ in range(count):
            pushes.append(decode_push(read_block(reader)))
        return pushes
