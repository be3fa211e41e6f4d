"""The interface a transport must provide for the loader to talk to a target."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from serial_flasher.loader_types import ErrorCode, LoaderError

logger = logging.getLogger(__name__)


class LoaderPort(ABC):
    """Base class for a host-side transport to the target.

    Subclasses supply byte transfer and the reset/boot pin control; timing
    helpers and debug output have working defaults.
    Timeouts and delays are given in milliseconds.
    """

    def __init__(self) -> None:
        self._deadline: float | None = None

    @abstractmethod
    def write(self, data: bytes, timeout: int) -> None:
        """Send ``data``; raise LoaderError(TIMEOUT) if it cannot be sent in time."""

    @abstractmethod
    def read(self, size: int, timeout: int) -> bytes:
        """Return exactly ``size`` bytes; raise LoaderError(TIMEOUT) if they do not arrive."""

    @abstractmethod
    def enter_bootloader(self) -> None:
        """Assert the bootstrap pins and toggle reset so the target enters boot mode."""

    @abstractmethod
    def reset_target(self) -> None:
        """Toggle the reset pin of the target."""

    def delay_ms(self, ms: int) -> None:
        """Block for ``ms`` milliseconds."""
        time.sleep(ms / 1000)

    def start_timer(self, ms: int) -> None:
        """Start a timeout timer that expires after ``ms`` milliseconds."""
        self._deadline = time.monotonic() + ms / 1000

    def remaining_time(self) -> int:
        """Milliseconds left on the timer started by start_timer, 0 once elapsed."""
        if self._deadline is None:
            return 0
        remaining = int((self._deadline - time.monotonic()) * 1000)
        return max(remaining, 0)

    def debug_print(self, text: str) -> None:
        """Emit a debug message from the loader."""
        logger.debug("%s", text)

    def change_transmission_rate(self, rate: int) -> None:
        """Change the rate of the host peripheral.

        Transports without an adjustable rate keep this default, which reports
        the operation as unsupported.
        """
        raise LoaderError(
            ErrorCode.UNSUPPORTED_FUNC,
            f"{type(self).__name__} cannot change the transmission rate to {rate}",
        )