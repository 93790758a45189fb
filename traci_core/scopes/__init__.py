"""Domain scopes built on the generic Connection primitives"""
from traci_core.scopes.base import DomainScope
from traci_core.scopes.polygon import PolygonScope
from traci_core.scopes.simulation import SimulationScope
from traci_core.scopes.vehicle import VehicleScope

__all__ = ["DomainScope", "PolygonScope", "SimulationScope", "VehicleScope"]
