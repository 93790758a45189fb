"""Polygon scope"""
from typing import List, Sequence, Tuple

from traci_core.constants import ADD, DOMAINS, REMOVE, VAR_COLOR, VAR_FILL, VAR_SHAPE, VAR_TYPE, VAR_WIDTH, ValueTag
from traci_core.engine.codec import Color, Compound, Double, Integer, Polygon, String, UByte
from traci_core.scopes.base import DomainScope


class PolygonScope(DomainScope):
    domain = DOMAINS["polygon"]

    def get_type(self, polygon_id: str) -> str:
        return self._get_string(VAR_TYPE, polygon_id)

    def get_shape(self, polygon_id: str) -> List[Tuple[float, float]]:
        return list(self._get(VAR_SHAPE, polygon_id, tag=ValueTag.POLYGON).points)

    def get_color(self, polygon_id: str) -> Color:
        return self._get_color(VAR_COLOR, polygon_id)

    def get_filled(self, polygon_id: str) -> bool:
        return self._get_int(VAR_FILL, polygon_id) != 0

    def get_line_width(self, polygon_id: str) -> float:
        return self._get_double(VAR_WIDTH, polygon_id)

    def set_type(self, polygon_id: str, polygon_type: str) -> None:
        self._set(VAR_TYPE, polygon_id, String(polygon_type))

    def set_shape(self, polygon_id: str, shape: Sequence[Tuple[float, float]]) -> None:
        self._set(VAR_SHAPE, polygon_id, Polygon(tuple(shape)))

    def set_color(self, polygon_id: str, color: Color) -> None:
        self._set(VAR_COLOR, polygon_id, color)

    def set_filled(self, polygon_id: str, filled: bool) -> None:
        self._set(VAR_FILL, polygon_id, Integer(1 if filled else 0))

    def set_line_width(self, polygon_id: str, width: float) -> None:
        self._set(VAR_WIDTH, polygon_id, Double(width))

    def add(
        self,
        polygon_id: str,
        shape: Sequence[Tuple[float, float]],
        color: Color,
        fill: bool = False,
        polygon_type: str = "",
        layer: int = 0,
    ) -> None:
        fields = Compound((
            String(polygon_type),
            color,
            UByte(1 if fill else 0),
            Integer(layer),
            Polygon(tuple(shape)),
        ))
        self._set(ADD, polygon_id, fields)

    def remove(self, polygon_id: str, layer: int = 0) -> None:
        self._set(REMOVE, polygon_id, Integer(layer))
