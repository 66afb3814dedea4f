"""
Bit-Serial Montgomery Multiplication

Computes (a * b * R^-1) mod n with R = 2^256 using nothing but
add, subtract and shift:

    acc = 0
    for i in 0..255:              (LSB of a first)
        if a[i]: acc += b
        if acc is odd: acc += n
        acc >>= 1
    if acc >= n: acc -= n

Two forms are provided:
- montgomery_multiply(): pure function, used by the threaded engine
  backend and by the REDC helpers
- MontgomeryMultiplier: cycle-stepped unit with the same state machine
  as the hardware (IDLE -> PREP -> ADD/REDUCE x256 -> FINAL -> DONE),
  advanced one clock per tick()

Preconditions: n must be odd and non-zero. This is not checked; an even
modulus silently produces garbage, exactly like the hardware.
"""

from enum import Enum
from typing import Optional

from .rsa_math import KEY_BITS


R_BITS = KEY_BITS
R = 1 << R_BITS


def reduce_operand(x: int, n: int) -> int:
    """Bring an operand below n by repeated subtraction (the PREP pass)."""
    while x >= n:
        x -= n
    return x


def montgomery_multiply(a: int, b: int, n: int) -> int:
    """
    Montgomery product a * b * 2^-256 mod n.

    Args:
        a: First operand (reduced below n first if needed)
        b: Second operand (reduced below n first if needed)
        n: Odd modulus

    Returns:
        The fully reduced product, in [0, n)
    """
    a = reduce_operand(a, n)
    b = reduce_operand(b, n)

    acc = 0
    for i in range(R_BITS):
        if (a >> i) & 1:
            acc += b
        if acc & 1:
            acc += n
        acc >>= 1

    if acc >= n:
        acc -= n
    return acc


def to_montgomery(x: int, n: int) -> int:
    """
    REDC prep: x * R mod n by 256 doubling-and-subtract steps.

    The operand is reduced below n first so a single conditional
    subtraction per doubling keeps it below n.
    """
    t = reduce_operand(x, n)
    for _ in range(R_BITS):
        t <<= 1
        if t >= n:
            t -= n
    return t


def from_montgomery(x: int, n: int) -> int:
    """Leave Montgomery form: x * R^-1 mod n."""
    return montgomery_multiply(x, 1, n)


class MultiplierState(Enum):
    """States of the cycle-stepped multiplier."""
    IDLE = "idle"
    PREP = "prep"
    ADD = "add"
    REDUCE = "reduce"
    FINAL = "final"


class MontgomeryMultiplier:
    """
    Cycle-stepped bit-serial Montgomery multiplier.

    Each call to tick() is one clock. With both operands already below n
    a multiplication takes 1 (PREP) + 2*256 (ADD/REDUCE) + 1 (FINAL)
    ticks. `done` is high for exactly the tick that produced `result`.

    Instances hold all their state themselves, so any number of them can
    be stepped side by side.

    Example:
        >>> unit = MontgomeryMultiplier()
        >>> unit.start(3, 5, 7)
        >>> while not unit.tick():
        ...     pass
        >>> unit.result == montgomery_multiply(3, 5, 7)
        True
    """

    def __init__(self, name: str = "mont"):
        self.name = name
        self._state = MultiplierState.IDLE
        self._a = 0
        self._b = 0
        self._n = 1
        self._acc = 0
        self._bit = 0
        self._done = False
        self._result: Optional[int] = None
        self._cycles = 0

    @property
    def state(self) -> MultiplierState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not MultiplierState.IDLE

    @property
    def done(self) -> bool:
        """Single-tick completion pulse."""
        return self._done

    @property
    def result(self) -> Optional[int]:
        """Product of the last completed multiplication."""
        return self._result

    @property
    def cycles(self) -> int:
        """Ticks spent on the current (or last) multiplication."""
        return self._cycles

    def start(self, a: int, b: int, n: int) -> None:
        """Latch operands and begin a new multiplication."""
        self._a = a
        self._b = b
        self._n = n
        self._acc = 0
        self._bit = 0
        self._done = False
        self._cycles = 0
        self._state = MultiplierState.PREP

    def reset(self) -> None:
        """Abandon any in-flight multiplication."""
        self._state = MultiplierState.IDLE
        self._done = False

    def tick(self) -> bool:
        """
        Advance one clock.

        Returns:
            True on the tick the result becomes valid (the done pulse)
        """
        self._done = False
        state = self._state

        if state is MultiplierState.IDLE:
            return False

        self._cycles += 1
        n = self._n

        if state is MultiplierState.PREP:
            if self._a < n and self._b < n:
                self._state = MultiplierState.ADD
            else:
                if self._a >= n:
                    self._a -= n
                if self._b >= n:
                    self._b -= n

        elif state is MultiplierState.ADD:
            if (self._a >> self._bit) & 1:
                self._acc += self._b
            self._state = MultiplierState.REDUCE

        elif state is MultiplierState.REDUCE:
            if self._acc & 1:
                self._acc += n
            self._acc >>= 1
            self._bit += 1
            if self._bit == R_BITS:
                self._state = MultiplierState.FINAL
            else:
                self._state = MultiplierState.ADD

        elif state is MultiplierState.FINAL:
            if self._acc >= n:
                self._acc -= n
            self._result = self._acc
            self._done = True
            self._state = MultiplierState.IDLE

        return self._done

    def run(self) -> int:
        """Tick until done and return the product."""
        if self._state is MultiplierState.IDLE:
            raise RuntimeError(f"{self.name}: start() must be called before run()")
        while not self.tick():
            pass
        return self._result

    def __repr__(self) -> str:
        return f"MontgomeryMultiplier(name={self.name!r}, state={self._state.value})"


# Self-test when run directly
if __name__ == "__main__":
    print("Montgomery Multiplier Test")
    print("=" * 60)

    n = 0xE2D7C8D6A9E7D6A1C4F1F1A7C3F3B1E9D5C7A3B1F9E7C5A3B1D9F7E5C3A1B3B5
    a, b = 0x1234567890ABCDEF, 0xFEDCBA0987654321
    r_inv = pow(R, -1, n)

    expected = (a * b * r_inv) % n
    pure = montgomery_multiply(a, b, n)
    unit = MontgomeryMultiplier()
    unit.start(a, b, n)
    stepped = unit.run()

    print(f"  pure == reference:    {'✓' if pure == expected else '✗'}")
    print(f"  stepped == reference: {'✓' if stepped == expected else '✗'}")
    print(f"  cycles: {unit.cycles}")

    back = from_montgomery(montgomery_multiply(to_montgomery(a, n), to_montgomery(b, n), n), n)
    print(f"  REDC round trip == a*b mod n: {'✓' if back == (a * b) % n else '✗'}")
