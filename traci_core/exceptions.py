"""
Custom Exception Hierarchy for the TraCI client

Every failure surfaced by the client is a TraciError subclass so callers can
handle transport, protocol, decode and usage problems with one except clause.
Each class carries the error kind and whether the connection that produced
it can still be used.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Coarse error family exposed to callers"""

    IO = "io"
    PROTOCOL = "protocol"
    DECODE = "decode"
    USAGE = "usage"


class TraciError(Exception):
    """
    Base exception for all TraCI client errors.

    Attributes:
        message: Human readable description
        details: Structured context (opcode, offsets, host, ...)
    """

    kind: ErrorKind = ErrorKind.PROTOCOL
    invalidates_connection: bool = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TraciError):
    """
    Invalid configuration or settings.

    Raised when environment variables or explicit overrides fail validation.
    """

    kind = ErrorKind.USAGE


# Network and Transport Errors

class TransportError(TraciError):
    """
    Socket level failures.

    Base class for all network communication errors. The byte stream position
    is unknown after any of these, so the connection is no longer usable.
    """

    kind = ErrorKind.IO
    invalidates_connection = True


class ConnectError(TransportError):
    """Failed to establish the TCP connection to the simulator."""
    pass


class ConnectionRefusedError(ConnectError):
    """Simulator actively refused the connection (ECONNREFUSED)."""
    pass


class ConnectionTimeoutError(TransportError):
    """Connection attempt timed out."""
    pass


class SendError(TransportError):
    """Failed to write a frame to the socket."""
    pass


class ReceiveError(TransportError):
    """Failed to read a frame from the socket."""
    pass


class ReceiveTimeoutError(ReceiveError):
    """Timeout waiting for reply bytes."""
    pass


class DisconnectedError(ReceiveError):
    """Peer closed the connection (zero-byte read)."""
    pass


# Protocol and Parsing Errors

class ProtocolError(TraciError):
    """
    Well-formed transport bytes that violate the wire contract.

    Base class for all protocol handling errors.
    """

    kind = ErrorKind.PROTOCOL


class CommandError(ProtocolError):
    """
    The simulator answered a command with a non-success return code.

    The description string is preserved verbatim. Sibling commands and later
    calls on the same connection are unaffected.
    """

    def __init__(
        self,
        message: str,
        opcode: int,
        return_code: int,
        description: str,
        details: Optional[dict] = None,
    ):
        merged = {"opcode": opcode, "return_code": return_code, "description": description}
        merged.update(details or {})
        super().__init__(message, merged)
        self.opcode = opcode
        self.return_code = return_code
        self.description = description


class CommandFailedError(CommandError):
    """Simulator reported RTYPE_ERR for a command."""
    pass


class CommandNotImplementedError(CommandError):
    """Simulator reported RTYPE_NOTIMPLEMENTED for a command."""
    pass


class FrameError(ProtocolError):
    """
    Length accounting violation in a frame or command block.

    The next command boundary can no longer be located.
    """

    invalidates_connection = True


class UnexpectedOpcodeError(ProtocolError):
    """Reply block carries an opcode that does not answer the pending request."""

    invalidates_connection = True


class DecodeError(ProtocolError):
    """
    Value codec tag or length mismatch inside a well-framed payload.

    Usually caused by version skew between client and simulator.
    """

    kind = ErrorKind.DECODE
    invalidates_connection = True


class UnknownTagError(DecodeError):
    """Value tag is not among the recognized wire types."""
    pass


class TruncatedValueError(DecodeError):
    """Fewer bytes remain than the value's declared or implied length."""
    pass


# Caller Misuse

class UsageError(TraciError):
    """
    Caller misuse of the client API.

    Base class for errors raised before anything is put on the wire.
    """

    kind = ErrorKind.USAGE


class InvalidValueError(UsageError, ValueError):
    """Argument cannot be represented on the wire (range, type or encoding)."""
    pass


class ConnectionClosedError(UsageError):
    """Operation attempted on a closed connection."""
    pass


class ConnectionDegradedError(UsageError):
    """Operation attempted on a connection that lost frame synchronization."""
    pass


class OrderAlreadySetError(UsageError):
    """set_order called twice, or after other commands were sent."""
    pass


class InvalidSubscriptionWindowError(UsageError):
    """Subscription begin time lies after its end time."""
    pass


class UnknownSubscriptionError(UsageError):
    """Subscription handle does not belong to this connection."""
    pass
