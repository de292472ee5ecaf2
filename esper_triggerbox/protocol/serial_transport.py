"""
pyserial implementation of the line transport.

A single reader thread owns all reads from the port. It splits the byte
stream on newlines and hands each complete line to the event loop with
call_soon_threadsafe, so engine state is only ever touched on the loop
thread. Writes and open/close run in the loop's default executor.
"""

import asyncio
import logging
import threading
from typing import Optional

import serial
from serial import SerialException

from esper_triggerbox.protocol.interface import LineTransport
from esper_triggerbox.utils.exceptions import (
    NotConnectedError,
    PortInUseError,
    PortNotFoundError,
    TransportError,
)


logger = logging.getLogger(__name__)


class SerialLineTransport(LineTransport):
    """
    Serial port transport for the trigger box.

    Serial settings are fixed by the firmware: 115200 8N1, newline framed.
    """

    BAUD_RATE = 115200
    DATA_BITS = serial.EIGHTBITS
    PARITY = serial.PARITY_NONE
    STOP_BITS = serial.STOPBITS_ONE

    # Upper bound for an unterminated line before it is discarded
    MAX_LINE_BYTES = 4096

    def __init__(self, port: str, baud: int = BAUD_RATE, read_timeout_seconds: float = 0.1):
        """
        Args:
            port: Serial port name (e.g., COM5 or /dev/ttyACM0).
            baud: Baud rate.
            read_timeout_seconds: Poll timeout of the reader thread.
        """
        super().__init__()
        self._port_name = port
        self._baud = baud
        self._read_timeout = read_timeout_seconds
        self._serial: Optional[serial.Serial] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._stop_reading = threading.Event()
        self._write_lock = asyncio.Lock()

    @property
    def port_name(self) -> str:
        return self._port_name

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    async def open(self) -> None:
        """Open the serial port and start the reader thread."""
        if self.is_open:
            logger.warning(f"{self._port_name} already open")
            return

        self._loop = asyncio.get_running_loop()
        logger.info(f"Opening serial port {self._port_name} at {self._baud} baud")

        try:
            self._serial = await self._loop.run_in_executor(None, self._open_port)
        except SerialException as e:
            error_msg = str(e).lower()
            if "filenotfounderror" in error_msg or "no such file" in error_msg:
                raise PortNotFoundError(f"Failed to open {self._port_name}: Port not found") from e
            elif "access" in error_msg or "permission" in error_msg or "in use" in error_msg or "busy" in error_msg:
                raise PortInUseError(f"{self._port_name} is already in use by another application") from e
            else:
                raise TransportError(f"Failed to connect to trigger box on port {self._port_name}: {e}") from e

        self._stop_reading.clear()
        self._reader_thread = threading.Thread(
            target=self._read_loop,
            name=f"triggerbox-reader-{self._port_name}",
            daemon=True,
        )
        self._reader_thread.start()

    def _open_port(self) -> serial.Serial:
        port = serial.Serial(
            port=self._port_name,
            baudrate=self._baud,
            bytesize=self.DATA_BITS,
            parity=self.PARITY,
            stopbits=self.STOP_BITS,
            timeout=self._read_timeout,
            write_timeout=1.0,
        )
        port.reset_input_buffer()
        port.reset_output_buffer()
        return port

    async def write(self, data: bytes) -> None:
        """Write bytes and flush; returns once pyserial reports the write done."""
        if not self.is_open:
            raise NotConnectedError(f"Serial port {self._port_name} not open")

        port = self._serial
        loop = asyncio.get_running_loop()

        async with self._write_lock:
            try:
                await loop.run_in_executor(None, self._write_and_flush, port, data)
            except (SerialException, OSError) as e:
                raise TransportError(f"Failed to write to {self._port_name}: {e}") from e

    @staticmethod
    def _write_and_flush(port: serial.Serial, data: bytes) -> None:
        port.write(data)
        port.flush()

    async def close(self) -> None:
        """Stop the reader thread and close the port."""
        if self._serial is None:
            return

        port = self._serial
        loop = asyncio.get_running_loop()

        self._stop_reading.set()
        if self._reader_thread is not None and self._reader_thread is not threading.current_thread():
            await loop.run_in_executor(None, self._reader_thread.join, 2.0)
        self._reader_thread = None
        self._serial = None

        try:
            await loop.run_in_executor(None, port.close)
        except (SerialException, OSError) as e:
            raise TransportError(f"Failed to close connection to trigger box on {self._port_name}: {e}") from e

        logger.info(f"Serial port {self._port_name} closed")

    def _read_loop(self) -> None:
        """Reader thread: split incoming bytes into lines."""
        buffer = bytearray()
        port = self._serial

        logger.debug(f"Reader thread started for {self._port_name}")

        while not self._stop_reading.is_set():
            try:
                chunk = port.read(port.in_waiting or 1)
            except (SerialException, OSError, TypeError) as e:
                if self._stop_reading.is_set():
                    break
                logger.error(f"Read error on {self._port_name}: {e}")
                self._schedule(self._connection_lost)
                break

            if not chunk:
                continue

            buffer.extend(chunk)
            while True:
                index = buffer.find(b"\n")
                if index < 0:
                    break
                raw = bytes(buffer[:index])
                del buffer[:index + 1]
                line = raw.decode("ascii", errors="replace").rstrip("\r")
                self._schedule(self._deliver_line, line)

            if len(buffer) > self.MAX_LINE_BYTES:
                logger.warning(f"Discarding {len(buffer)} unterminated bytes from {self._port_name}")
                buffer.clear()

        logger.debug(f"Reader thread finished for {self._port_name}")

    def _schedule(self, callback, *args) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed
            logger.debug(f"Dropped event for {self._port_name}: event loop closed")

    def _connection_lost(self) -> None:
        port = self._serial
        self._serial = None
        if port is not None:
            try:
                port.close()
            except (SerialException, OSError) as e:
                logger.debug(f"Error closing lost port {self._port_name}: {e}")
        logger.warning(f"Serial port {self._port_name} closed unexpectedly")
        self._deliver_close()
