"""
Vehicle scope

Getters and setters for single vehicles plus insertion and removal.
"""
from typing import Tuple

from traci_core.constants import (
    ADD_FULL,
    DOMAINS,
    INVALID_DOUBLE_VALUE,
    REMOVE,
    REMOVE_VAPORIZED,
    VAR_ACCELERATION,
    VAR_ANGLE,
    VAR_COLOR,
    VAR_LANE_ID,
    VAR_LENGTH,
    VAR_MAXSPEED,
    VAR_POSITION,
    VAR_POSITION3D,
    VAR_ROAD_ID,
    VAR_ROUTE_ID,
    VAR_SPEED,
    VAR_TYPE,
    ValueTag,
)
from traci_core.engine.codec import Byte, Color, Compound, Double, Integer, String
from traci_core.engine.subscriptions import Subscription
from traci_core.scopes.base import DomainScope

KINEMATIC_VARIABLES = (VAR_SPEED, VAR_POSITION, VAR_ANGLE)


class VehicleScope(DomainScope):
    domain = DOMAINS["vehicle"]

    def get_speed(self, vehicle_id: str) -> float:
        return self._get_double(VAR_SPEED, vehicle_id)

    def get_acceleration(self, vehicle_id: str) -> float:
        return self._get_double(VAR_ACCELERATION, vehicle_id)

    def get_angle(self, vehicle_id: str) -> float:
        return self._get_double(VAR_ANGLE, vehicle_id)

    def get_length(self, vehicle_id: str) -> float:
        return self._get_double(VAR_LENGTH, vehicle_id)

    def get_max_speed(self, vehicle_id: str) -> float:
        return self._get_double(VAR_MAXSPEED, vehicle_id)

    def get_position(self, vehicle_id: str) -> Tuple[float, float]:
        return self._get_position(VAR_POSITION, vehicle_id)

    def get_position3d(self, vehicle_id: str) -> Tuple[float, float, float]:
        pos = self._get(VAR_POSITION3D, vehicle_id, tag=ValueTag.POSITION_3D)
        return pos.x, pos.y, pos.z

    def get_road_id(self, vehicle_id: str) -> str:
        return self._get_string(VAR_ROAD_ID, vehicle_id)

    def get_lane_id(self, vehicle_id: str) -> str:
        return self._get_string(VAR_LANE_ID, vehicle_id)

    def get_route_id(self, vehicle_id: str) -> str:
        return self._get_string(VAR_ROUTE_ID, vehicle_id)

    def get_type_id(self, vehicle_id: str) -> str:
        return self._get_string(VAR_TYPE, vehicle_id)

    def get_color(self, vehicle_id: str) -> Color:
        return self._get_color(VAR_COLOR, vehicle_id)

    def set_speed(self, vehicle_id: str, speed: float) -> None:
        """Fix the vehicle's speed; a negative value hands control back to the car-following model"""
        self._set(VAR_SPEED, vehicle_id, Double(speed))

    def set_max_speed(self, vehicle_id: str, speed: float) -> None:
        self._set(VAR_MAXSPEED, vehicle_id, Double(speed))

    def set_color(self, vehicle_id: str, color: Color) -> None:
        self._set(VAR_COLOR, vehicle_id, color)

    def add(
        self,
        vehicle_id: str,
        route_id: str,
        type_id: str = "DEFAULT_VEHTYPE",
        depart: str = "now",
        depart_lane: str = "first",
        depart_pos: str = "base",
        depart_speed: str = "0",
        arrival_lane: str = "current",
        arrival_pos: str = "max",
        arrival_speed: str = "current",
        from_taz: str = "",
        to_taz: str = "",
        line: str = "",
        person_capacity: int = 0,
        person_number: int = 0,
    ) -> None:
        """
        Insert a vehicle on an existing route.

        Departure and arrival attributes use the simulator's own string
        syntax ("now", "first", "max", numbers as text, ...).
        """
        fields = Compound((
            String(route_id),
            String(type_id),
            String(depart),
            String(depart_lane),
            String(depart_pos),
            String(depart_speed),
            String(arrival_lane),
            String(arrival_pos),
            String(arrival_speed),
            String(from_taz),
            String(to_taz),
            String(line),
            Integer(person_capacity),
            Integer(person_number),
        ))
        self._set(ADD_FULL, vehicle_id, fields)

    def remove(self, vehicle_id: str, reason: int = REMOVE_VAPORIZED) -> None:
        self._set(REMOVE, vehicle_id, Byte(reason))

    def subscribe_kinematics(
        self,
        vehicle_id: str,
        begin_time: float = INVALID_DOUBLE_VALUE,
        end_time: float = INVALID_DOUBLE_VALUE,
    ) -> Subscription:
        """Subscribe to speed, position and angle of one vehicle"""
        return self.subscribe(vehicle_id, KINEMATIC_VARIABLES, begin_time, end_time)
