"""Protocol constants pinned to TraCI API version 22.

These are protocol-level constants that must match the simulator's protocol
revision; they are not user configuration.
"""
from enum import IntEnum
from typing import Dict, NamedTuple, Optional

TRACI_VERSION = 22

# Strings travel as raw bytes with a 4-byte length prefix
STRING_ENCODING = "latin-1"

# Frame = u32 total length (including these 4 bytes) + command blocks
LENGTH_PREFIX_SIZE = 4

# Content (opcode + payload) at or above this size uses the extended header
EXTENDED_LENGTH_THRESHOLD = 255

# Response blocks echo the request opcode plus this offset
RESPONSE_OFFSET = 0x10

INVALID_DOUBLE_VALUE = -1073741824.0
INVALID_INT_VALUE = -1073741824
MAX_ORDER = 1073741824


class ValueTag(IntEnum):
    """Wire type tags"""

    POSITION_LON_LAT = 0x00
    POSITION_2D = 0x01
    POSITION_3D = 0x03
    POSITION_ROADMAP = 0x04
    POLYGON = 0x06
    UBYTE = 0x07
    BYTE = 0x08
    INTEGER = 0x09
    DOUBLE = 0x0B
    STRING = 0x0C
    STRINGLIST = 0x0E
    COMPOUND = 0x0F
    DOUBLELIST = 0x10
    COLOR = 0x11


class ReturnCode(IntEnum):
    """Status byte in every status block"""

    OK = 0x00
    NOT_IMPLEMENTED = 0x01
    ERR = 0xFF


class Command(IntEnum):
    """Simulation-control opcodes handled by the core itself"""

    GETVERSION = 0x00
    LOAD = 0x01
    SIMSTEP = 0x02
    SETORDER = 0x03
    CLOSE = 0x7F


class Domain(NamedTuple):
    """Opcode family of one object domain"""

    name: str
    get: int
    set: int
    subscribe: int
    subscribe_context: int


DOMAINS: Dict[str, Domain] = {
    d.name: d
    for d in (
        Domain("inductionloop", 0xA0, 0xC0, 0xD0, 0x80),
        Domain("multientryexit", 0xA1, 0xC1, 0xD1, 0x81),
        Domain("trafficlight", 0xA2, 0xC2, 0xD2, 0x82),
        Domain("lane", 0xA3, 0xC3, 0xD3, 0x83),
        Domain("vehicle", 0xA4, 0xC4, 0xD4, 0x84),
        Domain("vehicletype", 0xA5, 0xC5, 0xD5, 0x85),
        Domain("route", 0xA6, 0xC6, 0xD6, 0x86),
        Domain("poi", 0xA7, 0xC7, 0xD7, 0x87),
        Domain("polygon", 0xA8, 0xC8, 0xD8, 0x88),
        Domain("junction", 0xA9, 0xC9, 0xD9, 0x89),
        Domain("edge", 0xAA, 0xCA, 0xDA, 0x8A),
        Domain("simulation", 0xAB, 0xCB, 0xDB, 0x8B),
        Domain("gui", 0xAC, 0xCC, 0xDC, 0x8C),
        Domain("lanearea", 0xAD, 0xCD, 0xDD, 0x8D),
        Domain("person", 0xAE, 0xCE, 0xDE, 0x8E),
        Domain("routeprobe", 0x26, 0x46, 0x56, 0x06),
        Domain("rerouter", 0x28, 0x48, 0x58, 0x08),
    )
}

GET_COMMANDS = frozenset(d.get for d in DOMAINS.values())
SET_COMMANDS = frozenset(d.set for d in DOMAINS.values())
VARIABLE_SUBSCRIBE_COMMANDS = frozenset(d.subscribe for d in DOMAINS.values())
CONTEXT_SUBSCRIBE_COMMANDS = frozenset(d.subscribe_context for d in DOMAINS.values())
VARIABLE_PUSH_OPCODES = frozenset(op + RESPONSE_OFFSET for op in VARIABLE_SUBSCRIBE_COMMANDS)
CONTEXT_PUSH_OPCODES = frozenset(op + RESPONSE_OFFSET for op in CONTEXT_SUBSCRIBE_COMMANDS)

CMD_GET_SIM_VARIABLE = DOMAINS["simulation"].get
CMD_GET_VEHICLE_VARIABLE = DOMAINS["vehicle"].get
CMD_SET_VEHICLE_VARIABLE = DOMAINS["vehicle"].set
CMD_SUBSCRIBE_VEHICLE_VARIABLE = DOMAINS["vehicle"].subscribe
CMD_SUBSCRIBE_VEHICLE_CONTEXT = DOMAINS["vehicle"].subscribe_context

# Variable identifiers shared by most domains
TRACI_ID_LIST = 0x00
ID_COUNT = 0x01
VAR_SPEED = 0x40
VAR_MAXSPEED = 0x41
VAR_POSITION = 0x42
VAR_ANGLE = 0x43
VAR_LENGTH = 0x44
VAR_COLOR = 0x45
VAR_SHAPE = 0x4E
VAR_TYPE = 0x4F
VAR_ROAD_ID = 0x50
VAR_LANE_ID = 0x51
VAR_ROUTE_ID = 0x53
VAR_POSITION3D = 0x39
VAR_ACCELERATION = 0x72
VAR_PARAMETER = 0x7E
VAR_FILL = 0x55
VAR_WIDTH = 0x4D
ADD = 0x80
REMOVE = 0x81
ADD_FULL = 0x85

# Simulation domain
VAR_TIME = 0x66
VAR_TIME_STEP = 0x70
VAR_LOADED_VEHICLES_NUMBER = 0x71
VAR_LOADED_VEHICLES_IDS = 0x72
VAR_DEPARTED_VEHICLES_NUMBER = 0x73
VAR_DEPARTED_VEHICLES_IDS = 0x74
VAR_ARRIVED_VEHICLES_NUMBER = 0x79
VAR_ARRIVED_VEHICLES_IDS = 0x7A
VAR_DELTA_T = 0x7B
VAR_NET_BOUNDARY = 0x7C
VAR_MIN_EXPECTED_VEHICLES = 0x7D

# Vehicle removal reasons
REMOVE_TELEPORT = 0x00
REMOVE_PARKING = 0x01
REMOVE_ARRIVED = 0x02
REMOVE_VAPORIZED = 0x03


def response_opcode(opcode: int) -> int:
    """Opcode of the result block answering a request opcode"""
    return (opcode + RESPONSE_OFFSET) & 0xFF


def push_kind(opcode: int) -> Optional[str]:
    """Classify a block opcode as a variable or context subscription push"""
    if opcode in VARIABLE_PUSH_OPCODES:
        return "variable"
    if opcode in CONTEXT_PUSH_OPCODES:
        return "context"
    return None
