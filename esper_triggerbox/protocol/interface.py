"""
Abstract interface for the line-oriented transport under the engine.

This interface allows transparent substitution between real hardware and simulator.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional


LineHandler = Callable[[str], None]
CloseHandler = Callable[[], None]


class LineTransport(ABC):
    """
    Abstract base class for line-delimited byte transports.

    Handlers are always invoked on the event loop thread, one line at a
    time, in arrival order.
    """

    def __init__(self) -> None:
        self._line_handler: Optional[LineHandler] = None
        self._close_handler: Optional[CloseHandler] = None

    @property
    @abstractmethod
    def port_name(self) -> str:
        """Identifier of the underlying port."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the port is open."""
        pass

    @abstractmethod
    async def open(self) -> None:
        """
        Open the port.

        Raises:
            TransportError: If the port cannot be opened.
        """
        pass

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write bytes; returns once the transport has acknowledged the write.

        Raises:
            NotConnectedError: If the port is not open.
            TransportError: If the write fails.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close the port and wait for completion. No-op when already closed.

        Raises:
            TransportError: If closing fails.
        """
        pass

    def set_line_handler(self, handler: Optional[LineHandler]) -> None:
        """Attach the line parser consumer (one per transport)."""
        self._line_handler = handler

    def set_close_handler(self, handler: Optional[CloseHandler]) -> None:
        """Register a callback fired when the port closes unexpectedly."""
        self._close_handler = handler

    def _deliver_line(self, line: str) -> None:
        if self._line_handler is not None:
            self._line_handler(line)

    def _deliver_close(self) -> None:
        if self._close_handler is not None:
            self._close_handler()
