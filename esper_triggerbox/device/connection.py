"""
Connection and validation engine for the ESPER trigger box.

Owns the connection lifecycle: opens the transport in the background,
attaches the line parser, runs the identity handshake and the quiet-down
phase, then exposes the raw command/response channel.

Every received line goes through one ingest step (_ingest) that records
the last line and its timestamp and pushes the line into a single queue.
Whichever phase is active (handshake, quiet-down or a command waiting for
its reply) owns the next dequeue. The engine runs on one asyncio event
loop; callers must not overlap send_command calls and must not send typed
commands before the connection is ready.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from esper_triggerbox.config.models import AppConfig
from esper_triggerbox.protocol.encoder import (
    ACK_TOKEN,
    PROBE_COMMAND,
    STOP_ANNOUNCE_COMMAND,
    BoxMode,
    Identity,
    encode_line,
    parse_identity,
)
from esper_triggerbox.protocol.interface import LineTransport
from esper_triggerbox.protocol.logger import get_protocol_logger
from esper_triggerbox.utils.exceptions import (
    HandshakeError,
    MaxRetriesExceededError,
    NotConnectedError,
    ParameterError,
    ProtocolError,
    ResponseTimeoutError,
    TransportError,
    TriggerBoxException,
)
from esper_triggerbox.utils.retry import repeat_until


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle of a trigger box connection."""
    CONNECTING = "connecting"
    AWAITING_INIT = "awaiting_init"
    PARSING = "parsing"
    VALIDATING = "validating"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ConnectionState.CLOSED, ConnectionState.FAILED})

# Queued in place of a reply when the link goes away under a waiting command
_LINK_CLOSED = object()


@dataclass
class PendingCommand:
    """The one request currently waiting for its reply line."""
    command: str
    issued_at: float
    timeout_ms: int
    outcome: Optional[str] = None  # "sent", "answered", "timeout" or "closed"
    response: Optional[str] = None


class TriggerBoxConnection:
    """
    Core connection capability shared by every firmware generation.

    Must be constructed while an asyncio event loop is running. The
    constructor returns immediately; the port is opened and validated in
    a background task. Use wait_until_ready() or the "ready" signal to
    learn the outcome.

    Signals (see add_listener):
        ready(identity)  once, after handshake and quiet-down succeed
        data(line)       every received line
        closed()         once per close() call, or when the port drops
        error(exc)       when opening or validation fails
    """

    EVENTS = ("ready", "data", "closed", "error")

    def __init__(
        self,
        port: Optional[str] = None,
        transport: Optional[LineTransport] = None,
        config: Optional[AppConfig] = None,
    ):
        """
        Args:
            port: Serial port name. Defaults to transport.port_name or config.serial.port.
            transport: Transport to use. Built from config when omitted
                (simulator when config.simulator.enabled, serial port otherwise).
            config: Driver configuration (defaults when omitted).
        """
        self._config = config or AppConfig()
        self._loop = asyncio.get_running_loop()

        if transport is None:
            port = port or self._config.serial.port
            if not port:
                raise ValueError("A port name or a transport is required")
            transport = _build_transport(port, self._config)
        self._transport = transport
        self._port = port or transport.port_name

        self._state = ConnectionState.CONNECTING
        self._identity: Optional[Identity] = None
        self._last_line: Optional[str] = None
        self._last_received_at: Optional[float] = None
        self._lines: asyncio.Queue = asyncio.Queue()
        self._pending: Optional[PendingCommand] = None

        self._listeners: Dict[str, List[Callable]] = {event: [] for event in self.EVENTS}
        self._settled = asyncio.Event()
        self._failure: Optional[TriggerBoxException] = None

        self._task = self._loop.create_task(self._open_and_validate())

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------

    @property
    def port(self) -> str:
        return self._port

    @property
    def transport(self) -> LineTransport:
        return self._transport

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        """Identity resolved by the last handshake, None before that."""
        return self._identity

    @property
    def mode(self) -> Optional[BoxMode]:
        return self._identity.mode if self._identity else None

    @property
    def box_id(self) -> Optional[int]:
        return self._identity.box_id if self._identity else None

    @property
    def is_open(self) -> bool:
        return self._transport.is_open

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def last_line(self) -> Optional[str]:
        return self._last_line

    @property
    def last_received_at(self) -> Optional[float]:
        """Event loop time (seconds) of the last received line."""
        return self._last_received_at

    @property
    def pending_command(self) -> Optional[PendingCommand]:
        return self._pending

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def add_listener(self, event: str, callback: Callable) -> None:
        """Register a callback for one of EVENTS."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event {event!r}, expected one of {self.EVENTS}")
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable) -> None:
        """Unregister a callback; unknown callbacks are ignored."""
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Listener for {event!r} on {self._port} raised")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state in TERMINAL_STATES:
            logger.debug(f"{self._port}: ignoring {new_state.value} after terminal {self._state.value}")
            return
        logger.debug(f"{self._port}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _settle(self, failure: Optional[TriggerBoxException] = None) -> None:
        if self._settled.is_set():
            return
        self._failure = failure
        self._settled.set()

    def _fail(self, error: TriggerBoxException) -> None:
        if self._state in TERMINAL_STATES:
            return
        logger.error(f"Trigger box on {self._port} failed: {error}")
        get_protocol_logger().log_error(self._port, str(error))
        self._set_state(ConnectionState.FAILED)
        self._settle(error)
        self._emit("error", error)

    async def _open_and_validate(self) -> None:
        try:
            try:
                await self._transport.open()
            except TransportError as e:
                self._fail(e)
                return

            self._set_state(ConnectionState.AWAITING_INIT)
            self._attach_parser()

            try:
                identity = await self._validate()
            except (HandshakeError, TransportError) as e:
                self._fail(e)
                return

            if self._state in TERMINAL_STATES:
                return

            self._set_state(ConnectionState.READY)
            logger.info(
                f"Connected to trigger box {identity.box_id} in {identity.mode.value} mode on port {self._port}"
            )
            self._settle()
            self._emit("ready", identity)

        except asyncio.CancelledError:
            self._settle(NotConnectedError(f"Connection to {self._port} closed before it was ready"))
            raise

    def _attach_parser(self) -> None:
        self._last_received_at = None
        self._transport.set_line_handler(self._ingest)
        self._transport.set_close_handler(self._on_transport_closed)
        self._set_state(ConnectionState.PARSING)

    def _ingest(self, line: str) -> None:
        """Parser ingest step: the only writer of last line / timestamp."""
        line = line.rstrip("\r\n")
        self._last_line = line
        self._last_received_at = self._loop.time()

        logger.debug(f"RX {self._port}: {line}")
        get_protocol_logger().log_rx(self._port, line)

        if self._state not in TERMINAL_STATES:
            self._lines.put_nowait(line)
        self._emit("data", line)

    def _on_transport_closed(self) -> None:
        if self._state in TERMINAL_STATES:
            return
        logger.warning(f"Transport for {self._port} closed")
        self._set_state(ConnectionState.CLOSED)
        self._settle(NotConnectedError(f"Connection to {self._port} closed"))
        self._wake_waiter()
        self._emit("closed")

    def _wake_waiter(self) -> None:
        pending = self._pending
        if pending is not None and pending.outcome is None:
            pending.outcome = "closed"
            self._lines.put_nowait(_LINK_CLOSED)

    def _drain_lines(self) -> List[str]:
        lines = []
        while not self._lines.empty():
            line = self._lines.get_nowait()
            if line is not _LINK_CLOSED:
                lines.append(line)
        return lines

    def _quiet_for_ms(self) -> float:
        if self._last_received_at is None:
            return math.inf
        return (self._loop.time() - self._last_received_at) * 1000.0

    async def _validate(self) -> Identity:
        """
        Run the identity handshake followed by quiet-down.

        Raises:
            HandshakeError: If either phase exhausts its attempts.
            TransportError: If the port fails while validating.
        """
        handshake = self._config.handshake
        self._identity = None
        self._set_state(ConnectionState.VALIDATING)

        found: Optional[Identity] = None

        def inspect_received() -> bool:
            nonlocal found
            for line in self._drain_lines():
                identity = parse_identity(line)
                if identity is not None:
                    found = identity
                    break
            return found is not None

        async def probe() -> bool:
            await self.send_command(PROBE_COMMAND, 0)
            return inspect_received()

        try:
            attempts = await repeat_until(probe, handshake.probe_interval_ms, handshake.max_attempts)
        except MaxRetriesExceededError as e:
            # Give the reply to the final probe its interval too
            await asyncio.sleep(handshake.probe_interval_ms / 1000.0)
            if not inspect_received():
                raise HandshakeError(
                    f"No trigger box identity on {self._port} after {handshake.max_attempts} attempts"
                ) from e
            attempts = handshake.max_attempts

        self._identity = found
        logger.debug(f"{self._port}: identity {found} after {attempts} probe(s)")

        # Firmware repeats its identity until told to stop
        async def stop_announce() -> bool:
            await self.send_command(STOP_ANNOUNCE_COMMAND, 0)
            self._drain_lines()
            return self._quiet_for_ms() > handshake.quiet_gap_ms

        try:
            await repeat_until(stop_announce, handshake.quiet_interval_ms, handshake.max_attempts)
        except MaxRetriesExceededError as e:
            raise HandshakeError(
                f"Trigger box on {self._port} kept announcing after {handshake.max_attempts} stop requests"
            ) from e

        self._drain_lines()
        return found

    async def wait_until_ready(self, timeout: Optional[float] = None) -> Identity:
        """
        Wait for the handshake outcome.

        Args:
            timeout: Seconds to wait, None to wait for the outcome.

        Returns:
            The resolved identity.

        Raises:
            TransportError: If the port could not be opened or closed early.
            HandshakeError: If validation failed.
            ResponseTimeoutError: If timeout elapsed first.
        """
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise ResponseTimeoutError(f"Trigger box on {self._port} not ready within {timeout}s") from e
        if self._failure is not None:
            raise self._failure
        return self._identity

    async def close(self) -> None:
        """
        Close the connection. Safe to call repeatedly and before the port opened.

        Emits exactly one "closed" signal per call.

        Raises:
            TransportError: If the transport failed to close (the signal is still emitted).
        """
        if not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
            await asyncio.wait({self._task})

        error: Optional[TransportError] = None
        try:
            if self._transport.is_open:
                await self._transport.close()
        except TransportError as e:
            error = e
            logger.error(f"Failed to close connection to trigger box on {self._port}: {e}")
        finally:
            self._set_state(ConnectionState.CLOSED)
            self._settle(NotConnectedError(f"Connection to {self._port} closed"))
            self._wake_waiter()
            self._emit("closed")

        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Command / response
    # ------------------------------------------------------------------

    async def send_command(self, command: str, timeout_ms: Optional[int] = None) -> Optional[str]:
        """
        Write one command line and optionally wait for its reply.

        Args:
            command: Raw command text without terminator.
            timeout_ms: 0 to return once the write is acknowledged; > 0 to
                wait that long for the next received line. Defaults to
                config.command.response_timeout_ms.

        Returns:
            The reply line, or None when timeout_ms is 0.

        Raises:
            NotConnectedError: If the port is not open, or closes while waiting.
            TransportError: If the write fails.
            ResponseTimeoutError: If no line arrives in time.
        """
        if timeout_ms is None:
            timeout_ms = self._config.command.response_timeout_ms
        if timeout_ms < 0:
            raise ParameterError(f"timeout_ms must be >= 0, got {timeout_ms}")

        if not self.is_open:
            raise NotConnectedError(f"Failed to send trigger box command {command!r}, connection not open")

        data = encode_line(command)

        if self._pending is not None:
            logger.warning(f"{self._port}: {command!r} sent while {self._pending.command!r} awaits a reply")

        pending = PendingCommand(command=command, issued_at=self._loop.time(), timeout_ms=timeout_ms)

        logger.debug(f"TX {self._port}: {command}")
        get_protocol_logger().log_tx(self._port, command)

        try:
            await self._transport.write(data)
        except TransportError as e:
            get_protocol_logger().log_error(self._port, f"Write failed: {e}", command)
            raise
        except OSError as e:
            get_protocol_logger().log_error(self._port, f"Write failed: {e}", command)
            raise TransportError(f"Failed to send trigger box command {command!r}") from e

        if timeout_ms == 0:
            pending.outcome = "sent"
            return None

        self._pending = pending
        try:
            line = await asyncio.wait_for(self._lines.get(), timeout_ms / 1000.0)
        except asyncio.TimeoutError as e:
            pending.outcome = "timeout"
            get_protocol_logger().log_error(self._port, f"Timeout: no response to {command!r}")
            raise ResponseTimeoutError(f"No response to {command!r} within {timeout_ms}ms") from e
        finally:
            if self._pending is pending:
                self._pending = None

        if line is _LINK_CLOSED:
            get_protocol_logger().log_error(self._port, f"Closed while waiting for a response to {command!r}")
            raise NotConnectedError(f"Connection to {self._port} closed while waiting for a response to {command!r}")

        pending.outcome = "answered"
        pending.response = line
        return line

    async def send_acknowledged_command(self, command: str, timeout_ms: Optional[int] = None) -> str:
        """
        Send a state-changing command that the firmware answers with tenFour.

        Raises:
            ProtocolError: If the reply is anything else or never arrives.
            TransportError: If the port is closed or the write fails.
        """
        if timeout_ms == 0:
            raise ParameterError("Acknowledged commands need a non-zero response timeout")

        try:
            response = await self.send_command(command, timeout_ms)
        except ResponseTimeoutError as e:
            raise ProtocolError(f"No acknowledgement for {command!r}") from e

        if not response.startswith(ACK_TOKEN):
            raise ProtocolError(f"Command {command!r} was not acknowledged, got {response!r}")
        return response


def _build_transport(port: str, config: AppConfig) -> LineTransport:
    if config.simulator.enabled:
        from esper_triggerbox.simulator.mock_transport import SimulatedTriggerBox
        return SimulatedTriggerBox(config.simulator, port=port)

    from esper_triggerbox.protocol.serial_transport import SerialLineTransport
    return SerialLineTransport(
        port,
        baud=config.serial.baud,
        read_timeout_seconds=config.serial.read_timeout_seconds,
    )
