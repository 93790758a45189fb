"""
Connection - Public entry point to a running simulator

One Connection owns one transport, one dispatcher and one subscription
manager. Every round trip runs under a single lock so concurrent callers
never interleave frames on the socket.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

import structlog

from traci_core.config import Settings, load_settings, settings
from traci_core.constants import (
    CMD_GET_SIM_VARIABLE,
    CMD_SUBSCRIBE_VEHICLE_CONTEXT,
    CMD_SUBSCRIBE_VEHICLE_VARIABLE,
    CONTEXT_SUBSCRIBE_COMMANDS,
    GET_COMMANDS,
    INVALID_DOUBLE_VALUE,
    MAX_ORDER,
    VAR_TIME,
    VARIABLE_SUBSCRIBE_COMMANDS,
    ValueTag,
)
from traci_core.engine.codec import Double, TypedValue
from traci_core.engine.dispatcher import CommandResult, Dispatcher, Request
from traci_core.engine.encoder import CommandBlock, close_block, load_block, setorder_block, variable_payload
from traci_core.engine.errors import ErrorTranslator
from traci_core.engine.subscriptions import Subscription, SubscriptionManager, SubscriptionResult
from traci_core.engine.transport import Transport
from traci_core.exceptions import (
    ConnectionClosedError,
    ConnectionDegradedError,
    DecodeError,
    DisconnectedError,
    OrderAlreadySetError,
    TraciError,
    UsageError,
)
from traci_core.models import ConnectionState, ResponseKind, SubscriptionInfo, TransportStats

logger = structlog.get_logger()


class Connection:
    """
    Client side of one TraCI session.

    Usage:
        with Connection.connect("localhost", 8813) as conn:
            conn.set_order(1)
            api, name = conn.get_version()
            conn.simulation_step()

    After an error that leaves the byte stream position unknown the
    connection is DEGRADED (or DISCONNECTED when the peer went away) and
    every further call fails; close it and reconnect.
    """

    def __init__(self, transport: Transport, track_simulation_time: Optional[bool] = None):
        self._transport = transport
        self._translator = ErrorTranslator()
        self._dispatcher = Dispatcher(transport, self._translator)
        self._subscriptions = SubscriptionManager()
        self._lock = threading.Lock()

        self.state = ConnectionState.CONNECTED
        self.track_simulation_time = (
            settings.track_simulation_time if track_simulation_time is None else track_simulation_time
        )
        self.simulation_time: Optional[float] = None
        self.last_error: Optional[TraciError] = None
        self._order: Optional[int] = None
        self._commands_sent = 0

    @classmethod
    def connect(
        cls,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[Settings] = None,
        **overrides,
    ) -> "Connection":
        """
        Open a connection to a simulator.

        Args:
            host: Simulator host, defaults to settings.host
            port: Simulator port, defaults to settings.port
            config: Settings to use instead of the module defaults
            **overrides: Individual Settings fields, e.g. read_timeout_sec=5

        Raises:
            ConfigurationError: If overrides fail validation
            ConnectError: If the simulator cannot be reached
        """
        if config is None:
            config = load_settings(**overrides) if overrides else settings
        elif overrides:
            config = load_settings(**{**config.model_dump(), **overrides})

        transport = Transport.connect(
            host or config.host,
            port or config.port,
            connect_timeout=config.connect_timeout_sec,
            read_timeout=config.read_timeout_sec,
            nodelay=config.tcp_nodelay,
            max_frame_bytes=config.max_frame_bytes,
        )
        return cls(transport, track_simulation_time=config.track_simulation_time)

    # Gate

    def _check_usable(self, io: bool = True) -> None:
        if self.state == ConnectionState.CLOSED:
            raise ConnectionClosedError("Connection is closed")
        if not io:
            return
        if self.state == ConnectionState.DISCONNECTED:
            raise DisconnectedError(
                "Connection to simulator was lost",
                details={"cause": str(self.last_error) if self.last_error else None},
            )
        if self.state == ConnectionState.DEGRADED:
            raise ConnectionDegradedError(
                "Connection lost frame synchronization; close and reconnect",
                details={"cause": str(self.last_error) if self.last_error else None},
            )

    @contextmanager
    def _gate(self, io: bool = True) -> Iterator[None]:
        with self._lock:
            self._check_usable(io)
            yield

    def _mark_unusable(self, error: TraciError) -> None:
        self.last_error = error
        self.state = (
            ConnectionState.DISCONNECTED if isinstance(error, DisconnectedError) else ConnectionState.DEGRADED
        )
        logger.warning(
            "connection_unusable",
            state=self.state.value,
            error_type=type(error).__name__,
            error=error.message,
        )
        self._transport.close()

    def _exchange(self, requests: Sequence[Request]) -> List[CommandResult]:
        """
        One round trip; the caller holds the gate.

        Anything other than a TraciError escaping the dispatcher means the
        reply could not be processed; it is raised as DecodeError and the
        connection is marked unusable.
        """
        self._commands_sent += len(requests)
        try:
            return self._dispatcher.execute(requests)
        except TraciError as e:
            if self._translator.is_fatal(e):
                self._mark_unusable(e)
            raise
        except Exception as e:
            error = DecodeError(
                f"Failed to process reply: {e!r}",
                details={"error_type": type(e).__name__},
            )
            self._mark_unusable(error)
            raise error from e

    def _route_pushes(self, results: Sequence[CommandResult]) -> None:
        pushes = [p for r in results for p in r.pushes]
        if pushes:
            self._subscriptions.deliver(pushes, self.simulation_time)

    def _after_step(self, requests: Sequence[Request], results: Sequence[CommandResult]) -> None:
        """
        Advance the clock and apply a reply holding a step command.

        The clock comes from a simulation time query answered after the step
        in the same batch, else from the step's target time. A failed step
        leaves the clock alone and only routes the pushes.
        """
        index = next(i for i, r in enumerate(requests) if r.kind == ResponseKind.STEP)
        if not results[index].ok:
            self._route_pushes(results)
            return

        clock = None
        for request, result in zip(requests[index + 1:], results[index + 1:]):
            if (
                request.opcode == CMD_GET_SIM_VARIABLE
                and request.variable_id == VAR_TIME
                and result.ok
                and len(result.values) == 1
                and isinstance(result.values[0], Double)
            ):
                clock = result.values[0].value
                break
        target_time = requests[index].target_time
        if clock is None and target_time is not None and target_time > 0:
            clock = target_time

        if clock is not None:
            self.simulation_time = clock
        self._subscriptions.on_step(clock, [p for r in results for p in r.pushes])

    # Generic primitives

    def execute(self, requests: Sequence[Request]) -> List[CommandResult]:
        """
        Send several requests in one frame.

        A batch holding a step command advances the simulation clock and
        expires subscriptions the same way simulation_step does.

        Returns:
            One CommandResult per request, in order; status failures stay
            in their slot and do not affect siblings
        """
        requests = list(requests)
        if not all(isinstance(r, Request) for r in requests):
            raise UsageError("execute expects Request objects")
        with self._gate():
            results = self._exchange(requests)
            if any(r.kind == ResponseKind.STEP for r in requests):
                self._after_step(requests, results)
            else:
                self._route_pushes(results)
            return results

    def _single(self, request: Request) -> CommandResult:
        with self._gate():
            results = self._exchange([request])
            self._route_pushes(results)
        results[0].unwrap()
        return results[0]

    def send_command(
        self,
        opcode: int,
        variable_id: int,
        object_id: str,
        args: Sequence[TypedValue] = (),
        expected_tag: Optional[ValueTag] = None,
    ) -> List[TypedValue]:
        """
        Generic get/set primitive used by domain scopes.

        Args:
            opcode: Domain get or set command
            variable_id: Variable to read or write
            object_id: Target object, "" for domain-wide variables
            args: Tagged values appended to the command
            expected_tag: Required tag of a get reply

        Returns:
            The decoded reply values; empty for set commands
        """
        if opcode in GET_COMMANDS:
            request = Request.get(opcode, variable_id, object_id, args, expected_tag)
        else:
            request = Request.status(CommandBlock(opcode, variable_payload(variable_id, object_id, args)))
        return self._single(request).values

    def get_variable(
        self,
        opcode: int,
        variable_id: int,
        object_id: str,
        *params: TypedValue,
        expected_tag: Optional[ValueTag] = None,
    ) -> TypedValue:
        """Read one variable; DecodeError if the reply tag differs from ``expected_tag``"""
        return self._single(Request.get(opcode, variable_id, object_id, params, expected_tag)).value()

    def set_variable(self, opcode: int, variable_id: int, object_id: str, value: Optional[TypedValue] = None) -> None:
        self._single(Request.set(opcode, variable_id, object_id, value))

    # Simulation control

    def set_order(self, order: int) -> None:
        """
        Declare this client's execution order for multi-client setups.

        Raises:
            OrderAlreadySetError: If an order was set before or other
                commands were already sent on this connection
            UsageError: If ``order`` is not a non-negative integer
        """
        if isinstance(order, bool) or not isinstance(order, int) or not 0 <= order <= MAX_ORDER:
            raise UsageError(f"Client order must be an integer in [0, {MAX_ORDER}]", details={"order": order})

        with self._gate():
            if self._order is not None or self._commands_sent:
                raise OrderAlreadySetError(
                    "Client order can only be set once, before any other command",
                    details={"order": self._order, "commands_sent": self._commands_sent},
                )
            [result] = self._exchange([Request.status(setorder_block(order))])
            result.unwrap()
            self._order = order
        logger.info("client_order_set", order=order)

    @property
    def order(self) -> Optional[int]:
        return self._order

    def get_version(self) -> Tuple[int, str]:
        """Return (api version, simulator identifier)"""
        api_version, name = self._single(Request.version()).values
        return api_version.value, name.value

    def simulation_step(self, target_time: float = 0.0) -> None:
        """
        Advance the simulation.

        Args:
            target_time: Simulation time to run to, 0 for a single step

        Subscription results carried by the reply become available through
        poll_results; handles whose window has ended expire.
        """
        requests = [Request.step(target_time)]
        if self.track_simulation_time:
            requests.append(Request.get(CMD_GET_SIM_VARIABLE, VAR_TIME, "", expected_tag=ValueTag.DOUBLE))

        with self._gate():
            results = self._exchange(requests)
            self._after_step(requests, results)

        results[0].unwrap()
        logger.debug("simulation_step", target_time=target_time, sim_time=self.simulation_time)

    def load(self, args: Sequence[str]) -> None:
        """Restart the simulation with the given command line arguments"""
        self._single(Request.status(load_block(args)))
        with self._lock:
            self.simulation_time = None

    # Subscriptions

    def subscribe(
        self,
        object_id: str,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
        opcode: int = CMD_SUBSCRIBE_VEHICLE_VARIABLE,
    ) -> Subscription:
        """
        Subscribe to variables of one object.

        Args:
            object_id: Object to watch
            variable_ids: Variables pushed after every step
            begin_time: Window start, INVALID_DOUBLE_VALUE for unbounded
            end_time: Window end, INVALID_DOUBLE_VALUE for unbounded
            opcode: Domain subscribe command, vehicles by default

        Returns:
            An ACTIVE handle; its ``initial`` holds the acknowledged values

        Raises:
            InvalidSubscriptionWindowError: If begin_time > end_time
            CommandError: If the simulator rejects the subscription
        """
        if opcode not in VARIABLE_SUBSCRIBE_COMMANDS:
            raise UsageError(f"0x{opcode:02x} is not a variable subscription command", details={"opcode": opcode})
        return self._declare(opcode, object_id, variable_ids, begin_time, end_time)

    def subscribe_context(
        self,
        object_id: str,
        domain: int,
        dist: float,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
        opcode: int = CMD_SUBSCRIBE_VEHICLE_CONTEXT,
    ) -> Subscription:
        """
        Subscribe to variables of every ``domain`` object within ``dist`` of an object.

        ``domain`` is the get opcode of the surrounding objects' domain.
        """
        if opcode not in CONTEXT_SUBSCRIBE_COMMANDS:
            raise UsageError(f"0x{opcode:02x} is not a context subscription command", details={"opcode": opcode})
        return self._declare(opcode, object_id, variable_ids, begin_time, end_time, context=(domain, dist))

    def _declare(self, opcode, object_id, variable_ids, begin_time, end_time, context=None) -> Subscription:
        with self._gate():
            sub = self._subscriptions.create(opcode, object_id, variable_ids, begin_time, end_time, context)
            try:
                request = Request.from_declaration(self._subscriptions.declaration(sub), expects_ack=True)
                [result] = self._exchange([request])
            except Exception:
                self._subscriptions.discard(sub)
                raise

            if not result.ok:
                self._subscriptions.discard(sub)
                raise result.error

            ack: Optional[SubscriptionResult] = result.pushes[-1] if result.pushes else None
            if result.pushes[:-1]:
                self._subscriptions.deliver(result.pushes[:-1], self.simulation_time)
            self._subscriptions.activate(sub, ack)

        logger.info(
            "subscription_created",
            handle=sub.handle,
            opcode=f"0x{opcode:02x}",
            object_id=object_id,
            variables=list(sub.variable_ids),
        )
        return sub

    def cancel_subscription(self, subscription: Subscription) -> None:
        """
        Cancel a handle and discard its undelivered results.

        The simulator side is only told once no other handle shares the
        same object and command.
        """
        with self._gate():
            sub = self._subscriptions.get(subscription)
            block = self._subscriptions.cancellation(sub)
            if block is not None:
                [result] = self._exchange([Request.from_declaration(block, expects_ack=False)])
                self._route_pushes([result])
                result.unwrap()
            self._subscriptions.mark_cancelled(sub)

    def poll_results(self, subscription: Subscription) -> List[SubscriptionResult]:
        """Drain results received for a handle, oldest first; [] once the handle was released"""
        with self._gate(io=False):
            return self._subscriptions.poll(subscription)

    def subscriptions(self) -> List[SubscriptionInfo]:
        with self._lock:
            return self._subscriptions.infos()

    # Lifecycle

    def get_stats(self) -> TransportStats:
        return self._transport.get_stats()

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def close(self) -> None:
        """
        Send the close command when possible and release the socket.

        Calling close on a closed connection does nothing.
        """
        with self._lock:
            if self.state == ConnectionState.CLOSED:
                return

            if self.state == ConnectionState.CONNECTED:
                try:
                    [result] = self._exchange([Request.status(close_block())])
                    if not result.ok:
                        logger.warning("close_command_rejected", description=result.description)
                except TraciError as e:
                    logger.warning("close_command_failed", error_type=type(e).__name__, error=e.message)

            self._transport.close()
            self._subscriptions.clear()
            self.state = ConnectionState.CLOSED
        logger.info("connection_closed", host=self._transport.host, port=self._transport.port)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Connection(host={self._transport.host!r}, port={self._transport.port!r}, state={self.state.value})"
