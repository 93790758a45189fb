"""
Transport - Blocking length-prefixed frame I/O over one TCP socket

Provides:
- Connection establishment with optional connect/read timeouts
- Exact frame writes, looping over partial sends
- Exact frame reads: 4-byte prefix first, then the declared remainder
- Byte and frame counters for diagnostics

The transport never interprets payload bytes.
"""
from __future__ import annotations

import socket
import struct
from datetime import datetime
from typing import Optional

import structlog

from traci_core.config import settings
from traci_core.constants import LENGTH_PREFIX_SIZE
from traci_core.engine.errors import ErrorTranslator
from traci_core.exceptions import DisconnectedError, FrameError, SendError, TransportError
from traci_core.models import TransportStats

logger = structlog.get_logger()

_UINT = struct.Struct("!I")


class Transport:
    """
    Owns one connected socket and moves whole frames across it.

    All failures surface as TransportError subclasses (or FrameError for a
    bad length prefix); after any of them the socket is left unusable.
    """

    def __init__(
        self,
        sock: socket.socket,
        host: Optional[str] = None,
        port: Optional[int] = None,
        max_frame_bytes: Optional[int] = None,
        translator: Optional[ErrorTranslator] = None,
    ):
        self.host = host
        self.port = port
        self.max_frame_bytes = max_frame_bytes or settings.max_frame_bytes
        self._sock: Optional[socket.socket] = sock
        self._translator = translator or ErrorTranslator()

        self.created_at = datetime.utcnow()
        self.last_send: Optional[datetime] = None
        self.last_recv: Optional[datetime] = None
        self.bytes_sent = 0
        self.bytes_received = 0
        self.frames_sent = 0
        self.frames_received = 0

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        nodelay: bool = True,
        max_frame_bytes: Optional[int] = None,
    ) -> "Transport":
        """
        Open a TCP connection to the simulator.

        Args:
            host: Simulator host
            port: Simulator port
            connect_timeout: Seconds to wait for the handshake, None blocks
            read_timeout: Seconds to wait per read once connected, None blocks
            nodelay: Disable Nagle's algorithm
            max_frame_bytes: Largest accepted frame

        Raises:
            ConnectError: Connection failed or was refused
            ConnectionTimeoutError: Handshake timed out
        """
        translator = ErrorTranslator()
        try:
            sock = socket.create_connection((host, port), timeout=connect_timeout)
        except OSError as e:
            error = translator.translate_os_error(e, "connect", host, port)
            logger.warning("traci_connect_failed", host=host, port=port, error=str(e))
            raise error from e

        try:
            sock.settimeout(read_timeout)
            if nodelay:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            sock.close()
            raise translator.translate_os_error(e, "connect", host, port) from e

        logger.info("traci_connected", host=host, port=port)
        return cls(sock, host=host, port=port, max_frame_bytes=max_frame_bytes, translator=translator)

    @classmethod
    def from_socket(cls, sock: socket.socket, max_frame_bytes: Optional[int] = None) -> "Transport":
        """Wrap an already connected socket (socketpair, accepted socket, ...)"""
        try:
            peer = sock.getpeername()
        except OSError:
            peer = None
        host, port = (peer[0], peer[1]) if isinstance(peer, tuple) else (None, None)
        return cls(sock, host=host, port=port, max_frame_bytes=max_frame_bytes)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise TransportError("Transport is closed", details={"host": self.host, "port": self.port})
        return self._sock

    def send(self, frame: bytes) -> None:
        """
        Write one complete frame.

        Raises:
            FrameError: If the frame's length prefix disagrees with its size
            SendError: If the socket fails before every byte is flushed
        """
        sock = self._socket()
        if len(frame) < LENGTH_PREFIX_SIZE or _UINT.unpack_from(frame)[0] != len(frame):
            raise FrameError(
                "Outgoing frame length prefix does not match frame size",
                details={"size": len(frame)},
            )

        view = memoryview(frame)
        sent = 0
        try:
            while sent < len(frame):
                n = sock.send(view[sent:])
                if n == 0:
                    raise SendError(
                        "Socket accepted no bytes",
                        details={"host": self.host, "port": self.port, "sent": sent, "size": len(frame)},
                    )
                sent += n
        except OSError as e:
            raise self._translator.translate_os_error(e, "send", self.host, self.port) from e

        self.bytes_sent += sent
        self.frames_sent += 1
        self.last_send = datetime.utcnow()
        logger.debug("frame_sent", size=sent)

    def recv(self) -> bytes:
        """
        Read exactly one frame, including its 4-byte length prefix.

        Raises:
            DisconnectedError: Peer closed the stream
            ReceiveTimeoutError: Read timeout elapsed
            FrameError: Declared length is below 4 or above max_frame_bytes
        """
        header = self._recv_exact(LENGTH_PREFIX_SIZE)
        total = _UINT.unpack(header)[0]
        if total < LENGTH_PREFIX_SIZE or total > self.max_frame_bytes:
            raise FrameError(
                "Invalid frame length",
                details={"declared": total, "max_frame_bytes": self.max_frame_bytes},
            )

        body = self._recv_exact(total - LENGTH_PREFIX_SIZE)
        self.bytes_received += total
        self.frames_received += 1
        self.last_recv = datetime.utcnow()
        logger.debug("frame_received", size=total)
        return header + body

    def _recv_exact(self, size: int) -> bytes:
        sock = self._socket()
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = sock.recv(size - len(buf))
            except OSError as e:
                raise self._translator.translate_os_error(e, "recv", self.host, self.port) from e
            if not chunk:
                raise DisconnectedError(
                    "Connection closed by simulator",
                    details={"host": self.host, "port": self.port, "expected": size, "received": len(buf)},
                )
            buf.extend(chunk)
        return bytes(buf)

    def close(self) -> None:
        """Close the socket; safe to call more than once"""
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.debug("traci_close_error", error=str(e))
        finally:
            self._sock = None
        logger.info("traci_disconnected", host=self.host, port=self.port)

    def get_stats(self) -> TransportStats:
        return TransportStats(
            connected=self.connected,
            host=self.host,
            port=self.port,
            created_at=self.created_at,
            last_send=self.last_send,
            last_recv=self.last_recv,
            bytes_sent=self.bytes_sent,
            bytes_received=self.bytes_received,
            frames_sent=self.frames_sent,
            frames_received=self.frames_received,
        )
