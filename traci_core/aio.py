"""
Asyncio adapter for Connection

The protocol core stays blocking; this wrapper runs each call in a worker
thread so it can be awaited from an event loop. An asyncio.Lock keeps
coroutines from queueing more than one call on the worker side at a time.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional, Sequence, Tuple

import structlog

from traci_core.client import Connection
from traci_core.engine.codec import TypedValue
from traci_core.engine.dispatcher import CommandResult, Request
from traci_core.engine.subscriptions import Subscription, SubscriptionResult
from traci_core.models import ConnectionState, SubscriptionInfo, TransportStats

logger = structlog.get_logger()


class AsyncConnection:
    """Awaitable facade over a blocking Connection"""

    def __init__(self, connection: Connection):
        self._connection = connection
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(cls, host: Optional[str] = None, port: Optional[int] = None, **kwargs) -> "AsyncConnection":
        connection = await asyncio.to_thread(Connection.connect, host, port, **kwargs)
        return cls(connection)

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def simulation_time(self) -> Optional[float]:
        return self._connection.simulation_time

    async def _call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        async with self._lock:
            return await asyncio.to_thread(func, *args, **kwargs)

    async def execute(self, requests: Sequence[Request]) -> List[CommandResult]:
        return await self._call(self._connection.execute, requests)

    async def set_order(self, order: int) -> None:
        await self._call(self._connection.set_order, order)

    async def get_version(self) -> Tuple[int, str]:
        return await self._call(self._connection.get_version)

    async def simulation_step(self, target_time: float = 0.0) -> None:
        await self._call(self._connection.simulation_step, target_time)

    async def load(self, args: Sequence[str]) -> None:
        await self._call(self._connection.load, args)

    async def send_command(self, opcode: int, variable_id: int, object_id: str, args: Sequence[TypedValue] = (), expected_tag=None) -> List[TypedValue]:
        return await self._call(self._connection.send_command, opcode, variable_id, object_id, args, expected_tag)

    async def get_variable(self, opcode: int, variable_id: int, object_id: str, *params: TypedValue, expected_tag=None) -> TypedValue:
        return await self._call(
            self._connection.get_variable, opcode, variable_id, object_id, *params, expected_tag=expected_tag
        )

    async def set_variable(self, opcode: int, variable_id: int, object_id: str, value: Optional[TypedValue] = None) -> None:
        await self._call(self._connection.set_variable, opcode, variable_id, object_id, value)

    async def subscribe(self, object_id: str, variable_ids: Sequence[int], *args, **kwargs) -> Subscription:
        return await self._call(self._connection.subscribe, object_id, variable_ids, *args, **kwargs)

    async def subscribe_context(self, object_id: str, domain: int, dist: float, variable_ids: Sequence[int], *args, **kwargs) -> Subscription:
        return await self._call(self._connection.subscribe_context, object_id, domain, dist, variable_ids, *args, **kwargs)

    async def cancel_subscription(self, subscription: Subscription) -> None:
        await self._call(self._connection.cancel_subscription, subscription)

    def poll_results(self, subscription: Subscription) -> List[SubscriptionResult]:
        # No I/O, safe to call from the loop thread
        return self._connection.poll_results(subscription)

    def subscriptions(self) -> List[SubscriptionInfo]:
        return self._connection.subscriptions()

    def get_stats(self) -> TransportStats:
        return self._connection.get_stats()

    async def close(self) -> None:
        await self._call(self._connection.close)

    async def __aenter__(self) -> "AsyncConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
