"""Reader byte-stream connections (TCP socket or serial line)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Protocol

import serial

from rfidzone.config import ReaderEndpoint
from rfidzone.exceptions import RfidReaderError

_logger = logging.getLogger(__name__)

_READ_SIZE = 4096
_TCP_KEEPALIVE_IDLE_S = 15
_SERIAL_READ_TIMEOUT_S = 0.2


class ReaderConnection(Protocol):
    """Byte-stream interface the supervisor drives.

    ``read`` returns ``b""`` once the stream is closed.
    """

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class TcpReaderConnection:
    """asyncio stream connection to a networked reader."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    @classmethod
    async def open(cls, host: str, port: int, *, connect_timeout: float = 10.0) -> TcpReaderConnection:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), connect_timeout)
        sock = writer.get_extra_info("socket")
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                if hasattr(socket, "TCP_KEEPIDLE"):
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, _TCP_KEEPALIVE_IDLE_S)
        return cls(reader, writer)

    async def read(self) -> bytes:
        return await self._reader.read(_READ_SIZE)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        transport = self._writer.transport
        if not transport.is_closing():
            transport.abort()


class SerialReaderConnection:
    """pyserial port driven from worker threads.

    pyserial is blocking; every call runs through :func:`asyncio.to_thread`
    with a short read timeout so :meth:`close` is noticed promptly.
    """

    def __init__(self, port: serial.Serial) -> None:
        self._port = port
        self._closed = False

    @classmethod
    async def open(cls, path: str, baud_rate: int) -> SerialReaderConnection:
        port = await asyncio.to_thread(
            serial.Serial,
            port=path,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=_SERIAL_READ_TIMEOUT_S,
        )
        return cls(port)

    def _read_available(self) -> bytes:
        waiting = self._port.in_waiting
        return self._port.read(min(max(waiting, 1), _READ_SIZE))

    async def read(self) -> bytes:
        while not self._closed:
            try:
                data = await asyncio.to_thread(self._read_available)
            except (serial.SerialException, OSError):
                if self._closed:
                    return b""
                raise
            if data:
                return data
        return b""

    async def write(self, data: bytes) -> None:
        await asyncio.to_thread(self._port.write, data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(serial.SerialException, OSError):
            await asyncio.to_thread(self._port.close)


async def open_reader(endpoint: ReaderEndpoint, *, reader_id: str = "") -> ReaderConnection:
    """Open a connection to *endpoint*, raising :class:`RfidReaderError` on failure."""
    try:
        if endpoint.host:
            return await TcpReaderConnection.open(endpoint.host, endpoint.port)
        return await SerialReaderConnection.open(str(endpoint.serial_path), endpoint.baud_rate)
    except (OSError, TimeoutError, serial.SerialException) as exc:
        raise RfidReaderError(f"Could not open reader {reader_id or endpoint}: {exc}", reader_id=reader_id) from exc
