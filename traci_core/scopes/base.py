"""
Shared helpers for domain scopes

A scope only holds a reference to a Connection and the opcode family of its
domain; it keeps no state of its own.
"""
from typing import List, Optional, Sequence, Tuple

from traci_core.client import Connection
from traci_core.constants import (
    ID_COUNT,
    INVALID_DOUBLE_VALUE,
    TRACI_ID_LIST,
    VAR_PARAMETER,
    Domain,
    ValueTag,
)
from traci_core.engine.codec import Color, Compound, String, TypedValue
from traci_core.engine.subscriptions import Subscription


class DomainScope:
    """Typed get/set/subscribe access to one object domain"""

    domain: Domain

    def __init__(self, connection: Connection):
        self.connection = connection

    def _get(self, variable_id: int, object_id: str = "", *params: TypedValue, tag: Optional[ValueTag] = None) -> TypedValue:
        return self.connection.get_variable(self.domain.get, variable_id, object_id, *params, expected_tag=tag)

    def _set(self, variable_id: int, object_id: str, value: Optional[TypedValue] = None) -> None:
        self.connection.set_variable(self.domain.set, variable_id, object_id, value)

    def _get_double(self, variable_id: int, object_id: str = "") -> float:
        return self._get(variable_id, object_id, tag=ValueTag.DOUBLE).value

    def _get_int(self, variable_id: int, object_id: str = "") -> int:
        return self._get(variable_id, object_id, tag=ValueTag.INTEGER).value

    def _get_string(self, variable_id: int, object_id: str = "") -> str:
        return self._get(variable_id, object_id, tag=ValueTag.STRING).value

    def _get_string_list(self, variable_id: int, object_id: str = "") -> List[str]:
        return list(self._get(variable_id, object_id, tag=ValueTag.STRINGLIST).values)

    def _get_position(self, variable_id: int, object_id: str = "") -> Tuple[float, float]:
        pos = self._get(variable_id, object_id, tag=ValueTag.POSITION_2D)
        return pos.x, pos.y

    def _get_color(self, variable_id: int, object_id: str = "") -> Color:
        return self._get(variable_id, object_id, tag=ValueTag.COLOR)

    def get_id_list(self) -> List[str]:
        return self._get_string_list(TRACI_ID_LIST)

    def get_id_count(self) -> int:
        return self._get_int(ID_COUNT)

    def get_parameter(self, object_id: str, key: str) -> str:
        return self._get(VAR_PARAMETER, object_id, String(key), tag=ValueTag.STRING).value

    def set_parameter(self, object_id: str, key: str, value: str) -> None:
        self._set(VAR_PARAMETER, object_id, Compound((String(key), String(value))))

    def subscribe(
        self,
        object_id: str,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
    ) -> Subscription:
        return self.connection.subscribe(object_id, variable_ids, begin_time, end_time, opcode=self.domain.subscribe)

    def subscribe_context(
        self,
        object_id: str,
        domain: int,
        dist: float,
        variable_ids: Sequence[int],
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
    ) -> Subscription:
        return self.connection.subscribe_context(
            object_id, domain, dist, variable_ids, begin_time, end_time, opcode=self.domain.subscribe_context
        )
