"""
Error Translator - Maps wire status codes and OS failures onto TraciError

Status translation is a pure lookup. Socket failures are classified by the
phase they happened in (connect, send, recv) so callers see one taxonomy
regardless of where the failure originated.
"""
import builtins
import socket
from typing import Optional, Type

import structlog

from traci_core.constants import ReturnCode
from traci_core.exceptions import (
    CommandError,
    CommandFailedError,
    CommandNotImplementedError,
    ConnectError,
    ConnectionRefusedError,
    ConnectionTimeoutError,
    DisconnectedError,
    ErrorKind,
    ReceiveError,
    ReceiveTimeoutError,
    SendError,
    TraciError,
    TransportError,
)

logger = structlog.get_logger()


class ErrorTranslator:
    """Classify status codes and low-level exceptions into the public taxonomy"""

    STATUS_ERRORS = {
        ReturnCode.ERR: CommandFailedError,
        ReturnCode.NOT_IMPLEMENTED: CommandNotImplementedError,
    }

    def translate_status(self, opcode: int, return_code: int, description: str) -> Optional[CommandError]:
        """
        Map a status block to an error.

        Args:
            opcode: Command the status answers
            return_code: Status byte from the simulator
            description: Server supplied text, kept verbatim

        Returns:
            None for success, otherwise the CommandError to report for the slot
        """
        if return_code == ReturnCode.OK:
            return None

        error_cls: Type[CommandError] = self.STATUS_ERRORS.get(return_code, CommandFailedError)
        try:
            code_name = ReturnCode(return_code).name
        except ValueError:
            code_name = f"0x{return_code:02x}"

        return error_cls(
            f"Command 0x{opcode:02x} failed ({code_name}): {description}",
            opcode=opcode,
            return_code=return_code,
            description=description,
        )

    def translate_os_error(
        self,
        exc: BaseException,
        phase: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> TransportError:
        """
        Wrap a socket level exception.

        Args:
            exc: Original exception
            phase: One of "connect", "send", "recv"
            host: Remote host, for error details
            port: Remote port, for error details
        """
        details = {"host": host, "port": port, "phase": phase, "error": str(exc)}

        if isinstance(exc, TransportError):
            return exc

        if isinstance(exc, socket.timeout):
            if phase == "connect":
                return ConnectionTimeoutError(f"Connection to {host}:{port} timed out", details)
            if phase == "recv":
                return ReceiveTimeoutError("Timed out waiting for simulator reply", details)
            return SendError("Timed out writing to simulator", details)

        if phase == "connect":
            if isinstance(exc, builtins.ConnectionRefusedError):
                return ConnectionRefusedError(f"Connection refused by {host}:{port}", details)
            return ConnectError(f"Failed to connect to {host}:{port}: {exc}", details)

        if phase == "send":
            return SendError(f"Failed to send frame: {exc}", details)

        if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
            return DisconnectedError(f"Connection lost: {exc}", details)
        return ReceiveError(f"Failed to receive frame: {exc}", details)

    @staticmethod
    def is_fatal(exc: BaseException) -> bool:
        """True when the connection cannot be used after ``exc``"""
        if isinstance(exc, TraciError):
            return exc.invalidates_connection
        return True

    @staticmethod
    def kind_of(exc: BaseException) -> ErrorKind:
        if isinstance(exc, TraciError):
            return exc.kind
        if isinstance(exc, OSError):
            return ErrorKind.IO
        return ErrorKind.PROTOCOL
