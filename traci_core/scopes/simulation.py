"""Simulation-wide queries"""
from typing import List, Tuple

from traci_core.constants import (
    DOMAINS,
    INVALID_DOUBLE_VALUE,
    VAR_ARRIVED_VEHICLES_IDS,
    VAR_ARRIVED_VEHICLES_NUMBER,
    VAR_DELTA_T,
    VAR_DEPARTED_VEHICLES_IDS,
    VAR_DEPARTED_VEHICLES_NUMBER,
    VAR_LOADED_VEHICLES_IDS,
    VAR_LOADED_VEHICLES_NUMBER,
    VAR_MIN_EXPECTED_VEHICLES,
    VAR_NET_BOUNDARY,
    VAR_TIME,
    ValueTag,
)
from traci_core.engine.subscriptions import Subscription
from traci_core.scopes.base import DomainScope


class SimulationScope(DomainScope):
    domain = DOMAINS["simulation"]

    def get_time(self) -> float:
        """Current simulation time in seconds"""
        return self._get_double(VAR_TIME)

    def get_delta_t(self) -> float:
        return self._get_double(VAR_DELTA_T)

    def get_loaded_number(self) -> int:
        return self._get_int(VAR_LOADED_VEHICLES_NUMBER)

    def get_loaded_id_list(self) -> List[str]:
        return self._get_string_list(VAR_LOADED_VEHICLES_IDS)

    def get_departed_number(self) -> int:
        return self._get_int(VAR_DEPARTED_VEHICLES_NUMBER)

    def get_departed_id_list(self) -> List[str]:
        return self._get_string_list(VAR_DEPARTED_VEHICLES_IDS)

    def get_arrived_number(self) -> int:
        return self._get_int(VAR_ARRIVED_VEHICLES_NUMBER)

    def get_arrived_id_list(self) -> List[str]:
        return self._get_string_list(VAR_ARRIVED_VEHICLES_IDS)

    def get_min_expected_number(self) -> int:
        """Vehicles still running or waiting to depart; 0 means the scenario is done"""
        return self._get_int(VAR_MIN_EXPECTED_VEHICLES)

    def get_net_boundary(self) -> List[Tuple[float, float]]:
        return list(self._get(VAR_NET_BOUNDARY, tag=ValueTag.POLYGON).points)

    def subscribe_globals(
        self,
        variable_ids,
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
    ) -> Subscription:
        """Subscribe to simulation variables; the object id is always empty"""
        return self.subscribe("", variable_ids, begin_time, end_time)
