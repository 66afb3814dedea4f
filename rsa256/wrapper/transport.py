"""
Register Transport

Byte-wide memory-mapped interface between the wrapper and the host link.

Register map (byte offsets):
  0x0  RX      (R)  next inbound byte from the host
  0x4  TX      (W)  next outbound byte to the host
  0x8  STATUS  (R)  bit 7: RX has data
                    bit 6: TX can accept

The wrapper never touches RX/TX without first seeing the matching
STATUS bit set; BusPort implements that spin-poll. There is no timeout
unless one is configured, so a stuck link stalls the wrapper forever.
"""

import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional

from ..core_crypto.rsa_math import bytes_to_int, check_word


# ---------------------------------------------------------------------------
#  Register map
# ---------------------------------------------------------------------------

RX_BASE = 0 * 4
TX_BASE = 1 * 4
STATUS_BASE = 2 * 4

RX_OK_BIT = 7
TX_OK_BIT = 6

DEFAULT_POLL_INTERVAL = 0.0


class Channel(Enum):
    """Direction of a transfer, as seen from the wrapper."""
    RX = RX_OK_BIT
    TX = TX_OK_BIT


class TransportTimeout(TimeoutError):
    """Raised when a configured poll deadline expires."""
    pass


# ---------------------------------------------------------------------------
#  Transport base
# ---------------------------------------------------------------------------

class RegisterTransport:
    """Abstract register-mapped byte link."""

    def read8(self, address: int) -> int:
        """Read one byte from a register."""
        raise NotImplementedError

    def write8(self, address: int, value: int) -> None:
        """Write one byte to a register."""
        raise NotImplementedError


class LoopbackTransport(RegisterTransport):
    """
    In-memory link with a host->device and a device->host FIFO.

    The host side uses inject()/drain(); the wrapper side sees only the
    three registers.

    Args:
        tx_capacity: Maximum bytes buffered towards the host (None = unbounded).
                     A full buffer clears TX-can-accept, giving back-pressure.
        stall_polls: Number of upcoming STATUS reads that report nothing
                     ready, to exercise the wrapper's retry path.
    """

    def __init__(self, tx_capacity: Optional[int] = None, stall_polls: int = 0):
        self.rx_fifo: Deque[int] = deque()   # host -> device
        self.tx_fifo: Deque[int] = deque()   # device -> host
        self.tx_capacity = tx_capacity
        self.stall_polls = stall_polls
        self.status_reads = 0
        self.overruns = 0
        self.underruns = 0

        self.on_tx: Optional[Callable[[int], None]] = None

    # -- device side ---------------------------------------------------------

    def read8(self, address: int) -> int:
        if address == RX_BASE:
            if self.rx_fifo:
                return self.rx_fifo.popleft()
            self.underruns += 1
            return 0
        if address == STATUS_BASE:
            self.status_reads += 1
            if self.stall_polls > 0:
                self.stall_polls -= 1
                return 0
            rx_ok = 1 if self.rx_fifo else 0
            tx_ok = 1 if self.tx_capacity is None or len(self.tx_fifo) < self.tx_capacity else 0
            return (rx_ok << RX_OK_BIT) | (tx_ok << TX_OK_BIT)
        return 0

    def write8(self, address: int, value: int) -> None:
        if address != TX_BASE:
            return
        if self.tx_capacity is not None and len(self.tx_fifo) >= self.tx_capacity:
            self.overruns += 1
            return
        value &= 0xFF
        self.tx_fifo.append(value)
        if self.on_tx:
            self.on_tx(value)

    # -- host side -----------------------------------------------------------

    def inject(self, data: bytes) -> None:
        """Queue bytes from the host towards the device."""
        self.rx_fifo.extend(data)

    def drain(self, count: Optional[int] = None) -> bytes:
        """Take bytes the device has sent (all of them by default)."""
        if count is None:
            count = len(self.tx_fifo)
        count = min(count, len(self.tx_fifo))
        return bytes(self.tx_fifo.popleft() for _ in range(count))

    @property
    def pending_rx(self) -> int:
        return len(self.rx_fifo)

    @property
    def pending_tx(self) -> int:
        return len(self.tx_fifo)


# ---------------------------------------------------------------------------
#  Polling port
# ---------------------------------------------------------------------------

class BusPort:
    """
    Byte primitives over a register transport with readiness polling.

    Every transfer first spins on the STATUS register until the matching
    bit is set. `on_poll` is called once per poll iteration so the owner
    can keep sampling other inputs while it waits.
    """

    def __init__(self, transport: RegisterTransport,
                 poll_timeout: Optional[float] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 on_poll: Optional[Callable[[], None]] = None):
        self._transport = transport
        self._poll_timeout = poll_timeout
        self._poll_interval = poll_interval
        self._on_poll = on_poll
        self.polls = 0

    @property
    def transport(self) -> RegisterTransport:
        return self._transport

    def status_ready(self, channel: Channel) -> bool:
        """One STATUS read: is the channel ready?"""
        status = self._transport.read8(STATUS_BASE)
        return bool((status >> channel.value) & 1)

    def wait(self, channel: Channel) -> None:
        """
        Spin until the channel is ready.

        Raises:
            TransportTimeout: If poll_timeout is set and expires
        """
        deadline = None
        if self._poll_timeout is not None:
            deadline = time.monotonic() + self._poll_timeout

        while True:
            self.polls += 1
            if self._on_poll is not None:
                self._on_poll()
            if self.status_ready(channel):
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise TransportTimeout(
                    f"{channel.name} not ready after {self._poll_timeout}s"
                )
            if self._poll_interval:
                time.sleep(self._poll_interval)

    def read_byte(self) -> int:
        self.wait(Channel.RX)
        return self._transport.read8(RX_BASE)

    def write_byte(self, value: int) -> None:
        self.write_from(lambda: value)

    def write_from(self, produce: Callable[[], int]) -> int:
        """
        Wait for TX, then write the byte `produce()` returns.

        The byte is computed only once the channel is ready, so it
        reflects state at the instant of the transfer.
        """
        self.wait(Channel.TX)
        value = produce()
        if not 0 <= value <= 0xFF:
            raise ValueError(f"byte out of range: {value}")
        self._transport.write8(TX_BASE, value)
        return value

    def read_word(self, length: int = 32) -> int:
        """Read `length` bytes MSB-first into an integer."""
        return bytes_to_int(bytes(self.read_byte() for _ in range(length)))

    def write_word(self, value: int, length: int = 32) -> None:
        """Write the low `length` bytes of a 256-bit value, MSB-first."""
        for b in check_word(value).to_bytes(32, 'big')[32 - length:]:
            self.write_byte(b)
