import pytest

from fake_simulator import ScriptedTransport
from traci_core.client import Connection


@pytest.fixture
def scripted():
    return ScriptedTransport()


@pytest.fixture
def conn(scripted):
    """Connection over a scripted transport that does not query the clock"""
    return Connection(scripted, track_simulation_time=False)


@pytest.fixture
def clocked_conn(scripted):
    """Connection that batches a simulation time query with every step"""
    return Connection(scripted, track_simulation_time=True)
