"""
Tests for the traci-inspect command line entry point.
"""
from unittest.mock import patch

import pytest

from fake_simulator import FakeSimulator, frame, status, step_body, variable_result, version_result
from traci_core.cli import build_parser, main
from traci_core.constants import CMD_GET_SIM_VARIABLE, VAR_MIN_EXPECTED_VEHICLES, VAR_TIME, Command
from traci_core.engine.codec import Double, Integer
from traci_core.exceptions import ConnectError


class _Clock:
    """Simulator double that advances one second per step"""

    def __init__(self):
        self.time = 0.0

    def __call__(self, blocks):
        parts = []
        for block in blocks:
            if block.opcode == Command.SIMSTEP:
                self.time += 1.0
                parts.append(step_body())
                continue
            parts.append(status(block.opcode))
            if block.opcode == Command.GETVERSION:
                parts.append(version_result(22, "fake-sim"))
            elif block.opcode == CMD_GET_SIM_VARIABLE:
                variable_id = block.payload[0]
                value = Double(self.time) if variable_id == VAR_TIME else Integer(3)
                parts.append(variable_result(CMD_GET_SIM_VARIABLE, variable_id, "", value))
        return frame(*parts)


@pytest.fixture
def simulator():
    server = FakeSimulator(_Clock())
    server.start()
    yield server
    server.stop()


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.steps == 0
    assert args.order is None


def test_inspect_reports_version(simulator, capsys):
    assert main([simulator.host, str(simulator.port)]) == 0

    out = capsys.readouterr().out
    assert "api version: 22" in out
    assert "fake-sim" in out


def test_inspect_steps(simulator, capsys):
    assert main([simulator.host, str(simulator.port), "--steps", "3", "--order", "1"]) == 0

    out = capsys.readouterr().out
    assert "time:        3.0" in out
    assert "expected:    3" in out
    assert simulator.requests[0][0].opcode == Command.SETORDER
    get_vars = [b.payload[0] for r in simulator.requests for b in r if b.opcode == CMD_GET_SIM_VARIABLE]
    assert VAR_MIN_EXPECTED_VEHICLES in get_vars


def test_inspect_connect_failure(capsys):
    with patch("traci_core.cli.Connection.connect", side_effect=ConnectError("refused")):
        assert main(["127.0.0.1", "1"]) == 1

    assert "refused" in capsys.readouterr().err
