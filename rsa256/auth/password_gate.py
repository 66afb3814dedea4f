"""
Password Gate

Authentication overlay on the byte-stream wrapper. A 16-bit password
candidate and two guard bits (enable, change) are sampled from an
external input source every cycle; the gate decides whether plaintext
bytes leave the device or are replaced by zero.

Rules:
- enable low: protection off, every byte is authenticated
- enable high: authenticated iff candidate == stored password,
  recomputed on every update (not sticky)
- enable & change & correct candidate while NORMAL: enter CHANGE_PASSWORD;
  the comparison target then follows the live candidate, and the value
  present when change is released is committed as the new password

Gating variants (selected explicitly, never mixed):
- CONTINUOUS: the live verdict is applied to each byte
- LATCHED: the verdict is captured once when a package starts and held
  until the package completes
"""

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..core_crypto.rsa_math import PASSWORD_MASK
from ..integration.event_logger import EventLogger, EventType


DEFAULT_PASSWORD = 0x0000
SUBJECT = "gate"


class GateState(Enum):
    NORMAL = "normal"
    CHANGE_PASSWORD = "change_password"


class GateMode(Enum):
    """When the verdict is applied to output bytes."""
    CONTINUOUS = "continuous"
    LATCHED = "latched"


@dataclass(frozen=True)
class GuardInputs:
    """One sample of the external switches."""
    candidate: int = 0
    enable: bool = False
    change: bool = False


GuardSource = Callable[[], GuardInputs]


class SwitchPanel:
    """
    Mutable guard input source.

    Stands in for the board switches: tests and the CLI set values on it
    and the wrapper samples it by calling the panel.

    Example:
        >>> panel = SwitchPanel()
        >>> panel.set(candidate=0x1234, enable=True)
        >>> panel().enable
        True
    """

    def __init__(self, candidate: int = 0, enable: bool = False, change: bool = False):
        self._inputs = GuardInputs(candidate & PASSWORD_MASK, enable, change)

    def set(self, candidate: Optional[int] = None,
            enable: Optional[bool] = None,
            change: Optional[bool] = None) -> None:
        """Update any subset of the switches."""
        current = self._inputs
        self._inputs = GuardInputs(
            candidate=current.candidate if candidate is None else candidate & PASSWORD_MASK,
            enable=current.enable if enable is None else bool(enable),
            change=current.change if change is None else bool(change),
        )

    def __call__(self) -> GuardInputs:
        return self._inputs


def secure_equal(a: int, b: int) -> bool:
    """Constant-time comparison of two 16-bit values."""
    return hmac.compare_digest(
        (a & PASSWORD_MASK).to_bytes(2, 'big'),
        (b & PASSWORD_MASK).to_bytes(2, 'big'),
    )


class PasswordGate:
    """
    Authentication and password-change state machine.

    Call update() once per cycle with the current switch values; read
    `authenticated` (live verdict) or `output_authenticated` (the verdict
    that applies to output under the configured mode), and pass output
    bytes through mask_byte().
    """

    def __init__(self, password: int = DEFAULT_PASSWORD,
                 mode: GateMode = GateMode.CONTINUOUS,
                 event_logger: Optional[EventLogger] = None):
        """
        Args:
            password: Initial stored password (16 bits)
            mode: CONTINUOUS or LATCHED output gating
            event_logger: Optional audit log
        """
        self._password = password & PASSWORD_MASK
        self._mode = GateMode(mode)
        self._state = GateState.NORMAL
        self._authenticated = False
        self._sampled = False
        self._latched: Optional[bool] = None
        self._logger = event_logger

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def mode(self) -> GateMode:
        return self._mode

    @property
    def password(self) -> int:
        """Current comparison target (previews the candidate while changing)."""
        return self._password

    @property
    def authenticated(self) -> bool:
        """Live verdict from the last update()."""
        return self._authenticated

    @property
    def changing(self) -> bool:
        return self._state is GateState.CHANGE_PASSWORD

    @property
    def output_authenticated(self) -> bool:
        """Verdict applied to output bytes under the configured mode."""
        if self._mode is GateMode.LATCHED:
            return bool(self._latched)
        return self._authenticated

    def update(self, inputs: GuardInputs) -> bool:
        """
        Evaluate one cycle of switch inputs.

        Args:
            inputs: Current candidate and guard bits

        Returns:
            The live authentication verdict
        """
        candidate = inputs.candidate & PASSWORD_MASK

        if self._state is GateState.NORMAL:
            if inputs.enable and inputs.change and secure_equal(candidate, self._password):
                self._state = GateState.CHANGE_PASSWORD
                self._log(EventType.PASSWORD_CHANGE_STARTED)
        else:
            # target previews the live candidate until change is released
            self._password = candidate
            if not inputs.change:
                self._state = GateState.NORMAL
                self._log(EventType.PASSWORD_COMMITTED)

        verdict = (not inputs.enable) or secure_equal(candidate, self._password)
        if verdict != self._authenticated or not self._sampled:
            self._log(EventType.AUTH_GRANTED if verdict else EventType.AUTH_DENIED,
                      protection=inputs.enable)
        self._authenticated = verdict
        self._sampled = True
        return verdict

    def latch(self) -> bool:
        """Capture the verdict for the package about to be processed."""
        self._latched = self._authenticated
        return self._latched

    def release(self) -> None:
        """End of package: drop the latched verdict."""
        self._latched = None

    def new_epoch(self) -> None:
        """A new key-load cycle begins; the latched verdict resets."""
        self._latched = None

    def mask_byte(self, value: int) -> int:
        """Pass a plaintext byte through, or zero it if not authenticated."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"byte out of range: {value}")
        return value if self.output_authenticated else 0

    def _log(self, event_type: EventType, **details) -> None:
        if self._logger is not None:
            self._logger.log(event_type, SUBJECT, **details)

    def __repr__(self) -> str:
        return (f"PasswordGate(state={self._state.value}, mode={self._mode.value}, "
                f"authenticated={self._authenticated})")


# Self-test when run directly
if __name__ == "__main__":
    print("Password Gate Test")
    print("=" * 60)

    gate = PasswordGate(password=0xBEEF)
    print(f"  protection off:     {gate.update(GuardInputs(0x0000, enable=False))}")
    print(f"  wrong candidate:    {gate.update(GuardInputs(0x0000, enable=True))}")
    print(f"  correct candidate:  {gate.update(GuardInputs(0xBEEF, enable=True))}")

    gate.update(GuardInputs(0xBEEF, enable=True, change=True))
    gate.update(GuardInputs(0x1234, enable=True, change=True))
    gate.update(GuardInputs(0x1234, enable=True, change=False))
    print(f"  after change -> 0x{gate.password:04x}, state={gate.state.value}")
    print(f"  old password now:   {gate.update(GuardInputs(0xBEEF, enable=True))}")
    print(f"  new password now:   {gate.update(GuardInputs(0x1234, enable=True))}")
