"""
Subscription Manager - Tracks subscription handles and routes pushed results

Provides:
- Decoding of variable and context subscription-result blocks
- Per-handle lifecycle (pending, active, cancelled, expired)
- Per-handle FIFO buffers drained by polling
- Expiry against the simulation clock observed on each step
"""
import weakref
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from traci_core.constants import INVALID_DOUBLE_VALUE, ReturnCode, push_kind, response_opcode
from traci_core.engine.codec import ByteReader, String, TypedValue
from traci_core.engine.encoder import CommandBlock, subscribe_payload
from traci_core.exceptions import (
    DecodeError,
    InvalidSubscriptionWindowError,
    InvalidValueError,
    UnexpectedOpcodeError,
    UnknownSubscriptionError,
    UsageError,
)
from traci_core.models import SubscriptionInfo, SubscriptionState

logger = structlog.get_logger()


def is_unbounded(value: float) -> bool:
    return value == INVALID_DOUBLE_VALUE


@dataclass
class SubscriptionResult:
    """
    Values pushed for one subscribed object.

    For context subscriptions ``values`` is empty and ``context`` maps each
    object found around the subscribed object to its values.
    """

    opcode: int
    object_id: str
    values: Dict[int, TypedValue] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)
    context_domain: Optional[int] = None
    context: Dict[str, Dict[int, TypedValue]] = field(default_factory=dict)
    context_errors: Dict[str, Dict[int, str]] = field(default_factory=dict)

    @property
    def is_context(self) -> bool:
        return self.context_domain is not None

    def restricted_to(self, variable_ids: Iterable[int]) -> "SubscriptionResult":
        """Copy keeping only ``variable_ids``"""
        wanted = set(variable_ids)

        def pick(mapping):
            return {k: v for k, v in mapping.items() if k in wanted}

        return SubscriptionResult(
            opcode=self.opcode,
            object_id=self.object_id,
            values=pick(self.values),
            errors=pick(self.errors),
            context_domain=self.context_domain,
            context={obj: pick(vals) for obj, vals in self.context.items()},
            context_errors={obj: pick(errs) for obj, errs in self.context_errors.items() if pick(errs)},
        )

    def is_empty(self) -> bool:
        if self.is_context:
            return not self.context and not self.context_errors
        return not self.values and not self.errors


def _read_variables(reader: ByteReader, count: int) -> Tuple[Dict[int, TypedValue], Dict[int, str]]:
    values: Dict[int, TypedValue] = {}
    errors: Dict[int, str] = {}
    for _ in range(count):
        variable_id = reader.read_ubyte()
        status = reader.read_ubyte()
        value = reader.read_tagged()
        if status == ReturnCode.OK:
            values[variable_id] = value
        else:
            errors[variable_id] = value.value if isinstance(value, String) else str(value)
    return values, errors


def decode_push(block: CommandBlock) -> SubscriptionResult:
    """
    Decode a subscription-result block.

    Args:
        block: Block whose opcode lies in a push range

    Returns:
        SubscriptionResult keyed by the subscribe opcode it answers

    Raises:
        UnexpectedOpcodeError: If the opcode is not a push opcode
        DecodeError: If the payload does not match the push layout
    """
    kind = push_kind(block.opcode)
    if kind is None:
        raise UnexpectedOpcodeError(
            f"Opcode 0x{block.opcode:02x} is not a subscription result",
            details={"opcode": block.opcode},
        )

    reader = ByteReader(block.payload)
    subscribe_opcode = (block.opcode - 0x10) & 0xFF
    object_id = reader.read_string()

    if kind == "variable":
        count = reader.read_ubyte()
        values, errors = _read_variables(reader, count)
        result = SubscriptionResult(subscribe_opcode, object_id, values=values, errors=errors)
    else:
        domain = reader.read_ubyte()
        count = reader.read_ubyte()
        n_objects = reader.read_count("context objects", element_size=4)
        result = SubscriptionResult(subscribe_opcode, object_id, context_domain=domain)
        for _ in range(n_objects):
            found_id = reader.read_string()
            values, errors = _read_variables(reader, count)
            result.context[found_id] = values
            if errors:
                result.context_errors[found_id] = errors

    if not reader.at_end():
        raise DecodeError(
            "Trailing bytes in subscription result",
            details={"opcode": block.opcode, "object_id": object_id, "remaining": reader.remaining},
        )
    return result


class Subscription:
    """
    Handle for one subscription declaration.

    ``initial`` holds the values the simulator returned when the
    subscription was acknowledged; pushed results queue in the handle's
    buffer until polled.
    """

    def __init__(
        self,
        handle: int,
        opcode: int,
        object_id: str,
        variable_ids: Sequence[int],
        begin_time: float,
        end_time: float,
        context_domain: Optional[int] = None,
        context_range: Optional[float] = None,
    ):
        self.handle = handle
        self.opcode = opcode
        self.object_id = object_id
        self.variable_ids: Tuple[int, ...] = tuple(variable_ids)
        self.begin_time = begin_time
        self.end_time = end_time
        self.context_domain = context_domain
        self.context_range = context_range
        self.state = SubscriptionState.PENDING
        self.initial: Optional[SubscriptionResult] = None
        self._buffer: Deque[SubscriptionResult] = deque()

    @property
    def key(self) -> Tuple[int, str, Optional[int]]:
        return (self.opcode, self.object_id, self.context_domain)

    @property
    def active(self) -> bool:
        return self.state == SubscriptionState.ACTIVE

    def ended_by(self, sim_time: float) -> bool:
        return not is_unbounded(self.end_time) and sim_time > self.end_time

    def started_by(self, sim_time: float) -> bool:
        return is_unbounded(self.begin_time) or sim_time >= self.begin_time

    def info(self) -> SubscriptionInfo:
        return SubscriptionInfo(
            handle=self.handle,
            opcode=self.opcode,
            object_id=self.object_id,
            variable_ids=list(self.variable_ids),
            begin_time=self.begin_time,
            end_time=self.end_time,
            state=self.state,
            context_domain=self.context_domain,
            context_range=self.context_range,
            buffered=len(self._buffer),
        )

    def __repr__(self) -> str:
        return f"Subscription(handle={self.handle}, opcode=0x{self.opcode:02x}, object_id={self.object_id!r}, state={self.state.value})"


class SubscriptionManager:
    """
    Owns every subscription handle of one connection.

    The manager never performs I/O: it builds declaration and cancellation
    blocks for the connection to send and consumes the decoded pushes the
    dispatcher hands back.
    """

    def __init__(self):
        self._subscriptions: Dict[int, Subscription] = {}
        # Handles already cancelled or expired and drained
        self._released: "weakref.WeakSet[Subscription]" = weakref.WeakSet()
        self._next_handle = 1

    def create(
        self,
        opcode: int,
        object_id: str,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
        context: Optional[Tuple[int, float]] = None,
    ) -> Subscription:
        """
        Register a pending handle.

        Raises:
            InvalidSubscriptionWindowError: If both ends are bounded and
                begin_time lies after end_time
            UsageError: If no variables are requested
            InvalidValueError: If a variable id is not a single byte or
                more than 255 variables are requested
        """
        if not variable_ids:
            raise UsageError("A subscription needs at least one variable", details={"object_id": object_id})
        if len(variable_ids) > 0xFF:
            raise InvalidValueError(
                "At most 255 variables per subscription",
                details={"object_id": object_id, "count": len(variable_ids)},
            )
        for var in variable_ids:
            if isinstance(var, bool) or not isinstance(var, int) or not 0 <= var <= 0xFF:
                raise InvalidValueError(
                    f"Variable id out of range: {var!r}",
                    details={"object_id": object_id, "variable_id": var},
                )
        if not is_unbounded(begin_time) and not is_unbounded(end_time) and begin_time > end_time:
            raise InvalidSubscriptionWindowError(
                f"Subscription window begins after it ends ({begin_time} > {end_time})",
                details={"begin_time": begin_time, "end_time": end_time, "object_id": object_id},
            )

        domain, dist = context if context is not None else (None, None)
        sub = Subscription(
            self._next_handle, opcode, object_id, variable_ids, begin_time, end_time,
            context_domain=domain, context_range=dist,
        )
        self._subscriptions[sub.handle] = sub
        self._next_handle += 1
        return sub

    def _active_for(self, key) -> List[Subscription]:
        return [s for s in self._subscriptions.values() if s.active and s.key == key]

    def declaration(self, sub: Subscription) -> CommandBlock:
        """
        Build the declaration for ``sub``.

        The simulator keeps one subscription per object and command, so
        handles sharing that key are declared with the union of their
        variables and the widest of their windows.
        """
        peers = self._active_for(sub.key) + [sub]

        variable_ids: List[int] = []
        for peer in peers:
            for var in peer.variable_ids:
                if var not in variable_ids:
                    variable_ids.append(var)

        begins = [p.begin_time for p in peers]
        ends = [p.end_time for p in peers]
        begin = INVALID_DOUBLE_VALUE if any(is_unbounded(b) for b in begins) else min(begins)
        end = INVALID_DOUBLE_VALUE if any(is_unbounded(e) for e in ends) else max(ends)

        context = (sub.context_domain, sub.context_range) if sub.context_domain is not None else None
        return CommandBlock(sub.opcode, subscribe_payload(sub.object_id, variable_ids, begin, end, context))

    def activate(self, sub: Subscription, ack: Optional[SubscriptionResult] = None) -> None:
        """Mark a declaration as acknowledged by the simulator"""
        sub.state = SubscriptionState.ACTIVE
        if ack is not None:
            sub.initial = ack.restricted_to(sub.variable_ids)
        logger.debug(
            "subscription_active",
            handle=sub.handle,
            opcode=f"0x{sub.opcode:02x}",
            object_id=sub.object_id,
        )

    def discard(self, sub: Subscription) -> None:
        """Forget a handle whose declaration was rejected"""
        self._subscriptions.pop(sub.handle, None)

    def _release(self, sub: Subscription) -> None:
        if self._subscriptions.get(sub.handle) is sub:
            del self._subscriptions[sub.handle]
            self._released.add(sub)

    def is_released(self, sub: Subscription) -> bool:
        """True for a handle this manager issued and has since let go of"""
        try:
            return sub in self._released
        except TypeError:
            return False

    def get(self, sub: Subscription) -> Subscription:
        """
        Resolve a handle belonging to this manager.

        Raises:
            UnknownSubscriptionError: If the handle was issued elsewhere
        """
        if self.is_released(sub):
            return sub
        known = self._subscriptions.get(getattr(sub, "handle", None))
        if known is None or known is not sub:
            raise UnknownSubscriptionError(
                "Subscription handle does not belong to this connection",
                details={"handle": getattr(sub, "handle", None)},
            )
        return known

    def cancellation(self, sub: Subscription) -> Optional[CommandBlock]:
        """
        Block to send when cancelling ``sub``, or None when nothing goes on the wire.

        The simulator-side subscription is only removed once no other active
        handle shares it.
        """
        if not sub.active:
            return None
        if any(peer is not sub for peer in self._active_for(sub.key)):
            return None
        context = (sub.context_domain, sub.context_range) if sub.context_domain is not None else None
        return CommandBlock(sub.opcode, subscribe_payload(sub.object_id, (), context=context))

    def mark_cancelled(self, sub: Subscription) -> None:
        """Cancel ``sub`` locally, dropping its buffer and releasing the handle"""
        if sub.state == SubscriptionState.CANCELLED:
            return
        sub.state = SubscriptionState.CANCELLED
        dropped = len(sub._buffer)
        sub._buffer.clear()
        self._release(sub)
        logger.debug("subscription_cancelled", handle=sub.handle, dropped=dropped)

    def deliver(self, pushes: Iterable[SubscriptionResult], sim_time: Optional[float] = None) -> int:
        """
        Route decoded pushes to matching active handles.

        Returns:
            Number of per-handle results queued
        """
        delivered = 0
        for push in pushes:
            key = (push.opcode, push.object_id, push.context_domain)
            matched = False
            for sub in self._active_for(key):
                matched = True
                if sim_time is not None and not sub.started_by(sim_time):
                    continue
                result = push.restricted_to(sub.variable_ids)
                if result.is_empty() and not push.is_empty():
                    continue
                sub._buffer.append(result)
                delivered += 1
            if not matched:
                logger.debug(
                    "subscription_result_unclaimed",
                    opcode=f"0x{push.opcode:02x}",
                    object_id=push.object_id,
                )
        return delivered

    def on_step(self, sim_time: Optional[float], pushes: Sequence[SubscriptionResult]) -> int:
        """
        Apply one step reply: expire elapsed handles, then queue the pushes.

        Args:
            sim_time: Simulation clock after the step, None when unknown
            pushes: Results bundled with the step reply
        """
        if sim_time is not None:
            for sub in list(self._subscriptions.values()):
                if sub.active and sub.ended_by(sim_time):
                    sub.state = SubscriptionState.EXPIRED
                    logger.debug(
                        "subscription_expired",
                        handle=sub.handle,
                        end_time=sub.end_time,
                        sim_time=sim_time,
                    )
                    if not sub._buffer:
                        self._release(sub)
        return self.deliver(pushes, sim_time)

    def poll(self, sub: Subscription) -> List[SubscriptionResult]:
        """
        Drain the handle's buffer in arrival order.

        An expired handle is released once drained; later polls return [].
        """
        sub = self.get(sub)
        results = list(sub._buffer)
        sub._buffer.clear()
        if sub.state == SubscriptionState.EXPIRED:
            self._release(sub)
        return results

    def infos(self) -> List[SubscriptionInfo]:
        return [s.info() for s in self._subscriptions.values()]

    def clear(self) -> None:
        """Release every handle and buffered result"""
        for sub in self._subscriptions.values():
            if sub.state in (SubscriptionState.PENDING, SubscriptionState.ACTIVE):
                sub.state = SubscriptionState.CANCELLED
            sub._buffer.clear()
            self._released.add(sub)
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)


def ack_opcode(subscribe_opcode: int) -> int:
    """Opcode of the acknowledgement block answering a declaration"""
    return response_opcode(subscribe_opcode)
