"""
Tests for subscription result decoding and the subscription manager.

Tests cover:
- Variable and context push decoding, per-variable error statuses
- Window validation
- Delivery to matching handles, FIFO polling
- Expiry and cancellation semantics
- Duplicate handles for the same object
"""
import pytest

from fake_simulator import context_push, push
from traci_core.constants import (
    CMD_GET_VEHICLE_VARIABLE,
    CMD_SUBSCRIBE_VEHICLE_CONTEXT,
    CMD_SUBSCRIBE_VEHICLE_VARIABLE,
    INVALID_DOUBLE_VALUE,
    VAR_ANGLE,
    VAR_POSITION,
    VAR_SPEED,
)
from traci_core.engine.codec import ByteReader, Double, Position2D
from traci_core.engine.encoder import CommandBlock, read_block
from traci_core.engine.subscriptions import SubscriptionManager, SubscriptionResult, decode_push
from traci_core.exceptions import (
    DecodeError,
    InvalidSubscriptionWindowError,
    InvalidValueError,
    UnexpectedOpcodeError,
    UnknownSubscriptionError,
    UsageError,
)
from traci_core.models import SubscriptionState

SUB = CMD_SUBSCRIBE_VEHICLE_VARIABLE
CTX = CMD_SUBSCRIBE_VEHICLE_CONTEXT


def _block(raw: bytes) -> CommandBlock:
    return read_block(ByteReader(raw))


def _push(object_id="veh", values=None, opcode=SUB):
    values = values if values is not None else {VAR_SPEED: Double(1.0)}
    return SubscriptionResult(opcode, object_id, values=values)


@pytest.fixture
def manager():
    return SubscriptionManager()


def _active(manager, object_id="veh", variables=(VAR_SPEED,), begin=0.0, end=10.0):
    sub = manager.create(SUB, object_id, variables, begin, end)
    manager.activate(sub)
    return sub


class TestDecodePush:
    """Subscription result block decoding"""

    def test_variable_push(self):
        result = decode_push(_block(push(SUB, "veh", {VAR_SPEED: Double(2.0), VAR_POSITION: Position2D(1.0, 2.0)})))

        assert result.opcode == SUB
        assert result.object_id == "veh"
        assert result.values == {VAR_SPEED: Double(2.0), VAR_POSITION: Position2D(1.0, 2.0)}
        assert result.errors == {}
        assert result.is_context is False

    def test_variable_error_status_is_kept(self):
        """Test that a failed variable reports its message instead of failing the block."""
        result = decode_push(_block(push(SUB, "veh", {VAR_SPEED: Double(2.0)}, errors={VAR_ANGLE: "no angle"})))

        assert result.values == {VAR_SPEED: Double(2.0)}
        assert result.errors == {VAR_ANGLE: "no angle"}

    def test_context_push(self):
        raw = context_push(CTX, "ego", CMD_GET_VEHICLE_VARIABLE, {
            "a": {VAR_SPEED: Double(1.0)},
            "b": {VAR_SPEED: Double(2.0)},
        })

        result = decode_push(_block(raw))

        assert result.opcode == CTX
        assert result.context_domain == CMD_GET_VEHICLE_VARIABLE
        assert result.context == {"a": {VAR_SPEED: Double(1.0)}, "b": {VAR_SPEED: Double(2.0)}}

    def test_non_push_opcode(self):
        with pytest.raises(UnexpectedOpcodeError):
            decode_push(CommandBlock(0xA4, b""))

    def test_trailing_bytes(self):
        good = _block(push(SUB, "veh", {VAR_SPEED: Double(2.0)}))
        with pytest.raises(DecodeError):
            decode_push(CommandBlock(good.opcode, good.payload + b"\x00"))

    def test_truncated_push(self):
        good = _block(push(SUB, "veh", {VAR_SPEED: Double(2.0)}))
        with pytest.raises(DecodeError):
            decode_push(CommandBlock(good.opcode, good.payload[:-3]))


class TestCreate:
    """Handle creation and window validation"""

    def test_begin_after_end_rejected(self, manager):
        with pytest.raises(InvalidSubscriptionWindowError):
            manager.create(SUB, "veh", [VAR_SPEED], 10.0, 0.0)
        assert len(manager) == 0

    def test_unbounded_window_accepted(self, manager):
        sub = manager.create(SUB, "veh", [VAR_SPEED], 50.0, INVALID_DOUBLE_VALUE)
        assert sub.state == SubscriptionState.PENDING

    def test_empty_variable_list_rejected(self, manager):
        with pytest.raises(UsageError):
            manager.create(SUB, "veh", [], 0.0, 1.0)

    @pytest.mark.parametrize("variable_ids", [[0x100], [VAR_SPEED, -1], [True], list(range(256))])
    def test_variable_ids_must_fit_the_wire(self, manager, variable_ids):
        """Test that unencodable variable ids are rejected before a handle is registered."""
        with pytest.raises(InvalidValueError):
            manager.create(SUB, "veh", variable_ids)
        assert len(manager) == 0

    def test_handles_are_distinct(self, manager):
        a = manager.create(SUB, "veh", [VAR_SPEED])
        b = manager.create(SUB, "veh", [VAR_SPEED])
        assert a.handle != b.handle


class TestDelivery:
    """Routing pushes to handles"""

    def test_fifo_poll(self, manager):
        """Test that results drain in arrival order and are not replayed."""
        sub = _active(manager)
        for speed in (1.0, 2.0, 3.0):
            manager.on_step(speed, [_push(values={VAR_SPEED: Double(speed)})])

        results = manager.poll(sub)

        assert [r.values[VAR_SPEED].value for r in results] == [1.0, 2.0, 3.0]
        assert manager.poll(sub) == []

    def test_other_objects_ignored(self, manager):
        sub = _active(manager, "veh")
        manager.deliver([_push("other")])
        assert manager.poll(sub) == []

    def test_duplicates_each_receive_their_variables(self, manager):
        """Test that handles for one object coexist and are filtered per handle."""
        speed = _active(manager, variables=(VAR_SPEED,))
        position = _active(manager, variables=(VAR_POSITION,))

        manager.deliver([_push(values={VAR_SPEED: Double(1.0), VAR_POSITION: Position2D(0.0, 1.0)})])

        assert manager.poll(speed)[0].values == {VAR_SPEED: Double(1.0)}
        assert manager.poll(position)[0].values == {VAR_POSITION: Position2D(0.0, 1.0)}

    def test_not_before_begin(self, manager):
        sub = _active(manager, begin=5.0, end=10.0)
        manager.on_step(2.0, [_push()])
        assert manager.poll(sub) == []


class TestLifecycle:
    """Expiry and cancellation"""

    def test_expiry_after_end(self, manager):
        """Test that a step past the end expires the handle and drops its pushes."""
        sub = _active(manager, begin=0.0, end=10.0)
        manager.on_step(10.0, [_push()])
        manager.on_step(10.5, [_push()])

        assert sub.state == SubscriptionState.EXPIRED
        assert len(manager.poll(sub)) == 1

    def test_unknown_clock_never_expires(self, manager):
        sub = _active(manager, end=1.0)
        manager.on_step(None, [_push()])
        assert sub.state == SubscriptionState.ACTIVE

    def test_unbounded_end_never_expires(self, manager):
        sub = _active(manager, end=INVALID_DOUBLE_VALUE)
        manager.on_step(1e9, [_push()])
        assert sub.state == SubscriptionState.ACTIVE

    def test_cancel_discards_buffer(self, manager):
        sub = _active(manager)
        manager.deliver([_push()])

        assert manager.cancellation(sub) is not None
        manager.mark_cancelled(sub)

        assert sub.state == SubscriptionState.CANCELLED
        assert manager.poll(sub) == []
        manager.deliver([_push()])
        assert manager.poll(sub) == []

    def test_cancel_block_is_empty_declaration(self, manager):
        sub = _active(manager)
        cancel = manager.cancellation(sub)

        assert cancel.opcode == SUB
        assert cancel.payload[-1] == 0

    def test_cancel_with_remaining_duplicate_stays_local(self, manager):
        first = _active(manager)
        second = _active(manager)

        assert manager.cancellation(first) is None
        manager.mark_cancelled(first)
        assert manager.cancellation(second) is not None

    def test_declaration_merges_duplicates(self, manager):
        """Test that a second handle re-declares the union of variables and windows."""
        _active(manager, variables=(VAR_SPEED,), begin=0.0, end=10.0)
        second = manager.create(SUB, "veh", [VAR_POSITION], 5.0, 20.0)

        declaration = manager.declaration(second)
        reader = ByteReader(declaration.payload)

        assert reader.read_double() == 0.0
        assert reader.read_double() == 20.0
        assert reader.read_string() == "veh"
        assert reader.read_ubyte() == 2
        assert reader.take(2) == bytes([VAR_SPEED, VAR_POSITION])

    def test_foreign_handle_rejected(self, manager):
        other = SubscriptionManager()
        sub = _active(other)
        with pytest.raises(UnknownSubscriptionError):
            manager.poll(sub)

    def test_initial_values_restricted(self, manager):
        sub = manager.create(SUB, "veh", [VAR_SPEED])
        manager.activate(sub, _push(values={VAR_SPEED: Double(1.0), VAR_ANGLE: Double(90.0)}))

        assert sub.initial.values == {VAR_SPEED: Double(1.0)}
        assert manager.poll(sub) == []

    def test_info_snapshot(self, manager):
        sub = _active(manager)
        manager.deliver([_push()])

        [info] = manager.infos()

        assert info.handle == sub.handle
        assert info.state == SubscriptionState.ACTIVE
        assert info.buffered == 1
        assert info.variable_ids == [VAR_SPEED]

    def test_clear_releases_everything(self, manager):
        sub = _active(manager)
        manager.deliver([_push()])
        manager.clear()

        assert len(manager) == 0
        assert sub.state == SubscriptionState.CANCELLED

    def test_cancelled_handle_is_released(self, manager):
        sub = _active(manager)
        manager.mark_cancelled(sub)

        assert len(manager) == 0
        assert manager.infos() == []
        assert manager.poll(sub) == []
        manager.mark_cancelled(sub)

    def test_expired_handle_released_after_drain(self, manager):
        """Test that an expired handle stays until its last results are polled."""
        sub = _active(manager, end=10.0)
        manager.on_step(5.0, [_push()])
        manager.on_step(11.0, [])

        assert sub.state == SubscriptionState.EXPIRED
        assert len(manager) == 1
        assert len(manager.poll(sub)) == 1
        assert len(manager) == 0
        assert manager.poll(sub) == []

    def test_expired_empty_handle_released_at_once(self, manager):
        sub = _active(manager, end=1.0)
        manager.on_step(2.0, [])

        assert sub.state == SubscriptionState.EXPIRED
        assert len(manager) == 0
        assert manager.poll(sub) == []

    def test_repeated_cycles_leave_nothing_behind(self, manager):
        """Test that subscribe, deliver, poll and cancel cycles do not accumulate handles."""
        for i in range(50):
            sub = _active(manager, end=float(i + 1))
            manager.deliver([_push()])
            assert len(manager.poll(sub)) == 1
            if i % 2:
                manager.mark_cancelled(sub)
            else:
                manager.on_step(float(i + 2), [])

        assert len(manager) == 0
        assert manager.infos() == []

    def test_released_handle_from_other_manager_still_rejected(self, manager):
        other = SubscriptionManager()
        sub = _active(other)
        other.mark_cancelled(sub)

        with pytest.raises(UnknownSubscriptionError):
            manager.poll(sub)


def test_context_delivery_filters_variables():
    manager = SubscriptionManager()
    sub = manager.create(CTX, "ego", [VAR_SPEED], context=(CMD_GET_VEHICLE_VARIABLE, 50.0))
    manager.activate(sub)
    pushed = SubscriptionResult(
        CTX, "ego", context_domain=CMD_GET_VEHICLE_VARIABLE,
        context={"a": {VAR_SPEED: Double(1.0), VAR_ANGLE: Double(3.0)}},
    )

    manager.deliver([pushed])

    [result] = manager.poll(sub)
    assert result.context == {"a": {VAR_SPEED: Double(1.0)}}
