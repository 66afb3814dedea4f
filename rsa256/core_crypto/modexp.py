"""
Modular Exponentiation Engine

Computes c^d mod n for 256-bit operands with LSB-first square-and-multiply
in Montgomery form:

    t = c * R mod n                (REDC prep, 256 doublings)
    m = 1
    for i in 0..255:
        m' = Mont(m, t)            (used only if d[i] == 1)
        t' = Mont(t, t)            (always)
        wait for both, then m <- m' if d[i] else m;  t <- t'
    result = m

m is kept as a plain integer while t carries one factor of R, so each
accumulate step Mont(m, t) cancels exactly that factor. No final REDC is
needed.

Backends:
- CYCLE:    tick-accurate; two MontgomeryMultiplier units stepped in
            lock-step with a barrier on both done pulses. Bit-exact with
            the RTL, including cycle counts.
- THREADED: the pure montgomery_multiply() submitted twice per round to
            a thread pool and joined on both futures.
- NATIVE:   Python's built-in pow(). Same result, no bit-serial structure.
            Used by the wrapper by default; the bit-serial backends exist
            for parity checks against RTL simulation.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Optional

from .montgomery import MontgomeryMultiplier, montgomery_multiply, to_montgomery, R_BITS
from .rsa_math import check_word


LAST_ROUND = R_BITS - 1


class EngineBackend(Enum):
    """How the engine carries out the exponentiation."""
    CYCLE = "cycle"
    THREADED = "threaded"
    NATIVE = "native"


class EngineState(Enum):
    """Top-level engine states."""
    IDLE = "idle"
    PREP = "prep"
    CALC = "calc"
    DONE = "done"


class EngineBusyError(RuntimeError):
    """Raised when start() is issued while an exponentiation is in flight."""
    pass


class ModExpEngine:
    """
    RSA-256 modular exponentiation engine.

    Usage mirrors the hardware core: start() latches (c, d, n), then the
    engine is run until `done`. For the CYCLE backend the caller may step
    it with tick(); run() does that internally for all backends.

    Example:
        >>> engine = ModExpEngine(EngineBackend.NATIVE)
        >>> engine.start(4, 13, 497)
        >>> engine.run()
        445
    """

    def __init__(self, backend: EngineBackend = EngineBackend.CYCLE):
        self._backend = EngineBackend(backend)
        self._state = EngineState.IDLE
        self._c = 0
        self._d = 0
        self._n = 1
        self._t = 0
        self._m = 1
        self._round = 0
        self._prep_step = 0
        self._result: Optional[int] = None
        self._done = False
        self._cycles = 0

        # Two independent multipliers: accumulate (m*t) and square (t*t)
        self._mul_unit = MontgomeryMultiplier("mul")
        self._sqr_unit = MontgomeryMultiplier("sqr")
        self._mul_ready = False
        self._sqr_ready = False
        self._mul_value = 0
        self._sqr_value = 0

    # ========================================================================
    # Status
    # ========================================================================

    @property
    def backend(self) -> EngineBackend:
        return self._backend

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def busy(self) -> bool:
        """True between start() and completion."""
        return self._state in (EngineState.PREP, EngineState.CALC)

    @property
    def done(self) -> bool:
        """Completion pulse; high for the tick that finished the last round."""
        return self._done

    @property
    def result(self) -> Optional[int]:
        return self._result

    @property
    def round(self) -> int:
        """Exponent bit currently being processed (0..255)."""
        return self._round

    @property
    def cycles(self) -> int:
        """Clock ticks used by the last exponentiation (CYCLE backend only)."""
        return self._cycles

    # ========================================================================
    # Control
    # ========================================================================

    def start(self, c: int, d: int, n: int) -> None:
        """
        Latch operands and begin an exponentiation.

        Args:
            c: Ciphertext (or message to sign)
            d: Exponent, consumed LSB-first over all 256 bits
            n: Odd modulus (parity is not checked)

        Raises:
            EngineBusyError: If a computation is already in flight
            ValueError: If an operand does not fit in 256 bits
        """
        if self.busy:
            raise EngineBusyError(
                f"engine is busy (round {self._round}); wait for done or reset()"
            )
        self._c = check_word(c, "ciphertext")
        self._d = check_word(d, "exponent")
        self._n = check_word(n, "modulus")

        self._t = self._c
        self._m = 1
        self._round = 0
        self._prep_step = 0
        self._result = None
        self._done = False
        self._cycles = 0
        self._mul_unit.reset()
        self._sqr_unit.reset()
        self._state = EngineState.PREP

    def reset(self) -> None:
        """Abandon in-flight state unconditionally."""
        self._mul_unit.reset()
        self._sqr_unit.reset()
        self._state = EngineState.IDLE
        self._done = False

    def run(self) -> int:
        """
        Run the current exponentiation to completion.

        Returns:
            c^d mod n
        """
        if self._state is EngineState.DONE:
            return self._result
        if self._state is EngineState.IDLE:
            raise RuntimeError("start() must be called before run()")

        if self._backend is EngineBackend.NATIVE:
            self._finish(pow(self._c, self._d, self._n))
        elif self._backend is EngineBackend.THREADED:
            self._finish(self._run_threaded())
        else:
            while not self.tick():
                pass
        return self._result

    def compute(self, c: int, d: int, n: int) -> int:
        """start() followed by run()."""
        self.start(c, d, n)
        return self.run()

    def _finish(self, value: int) -> None:
        self._result = value
        self._m = value
        self._round = LAST_ROUND
        self._done = True
        self._state = EngineState.DONE

    # ========================================================================
    # Threaded backend
    # ========================================================================

    def _run_threaded(self) -> int:
        """Square-and-multiply with both products of a round joined."""
        n = self._n
        t = to_montgomery(self._t, n)
        m = 1
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="mont") as pool:
            for i in range(R_BITS):
                self._round = i
                bit = (self._d >> i) & 1
                mul_future = pool.submit(montgomery_multiply, m, t, n) if bit else None
                sqr_future = pool.submit(montgomery_multiply, t, t, n)
                wait([f for f in (mul_future, sqr_future) if f is not None])
                if mul_future is not None:
                    m = mul_future.result()
                t = sqr_future.result()
        self._t = t
        return m

    # ========================================================================
    # Cycle-accurate backend
    # ========================================================================

    def tick(self) -> bool:
        """
        Advance one clock (CYCLE backend).

        Returns:
            True on the tick the final result becomes valid
        """
        if self._backend is not EngineBackend.CYCLE:
            raise RuntimeError(f"tick() is only available on the cycle backend, not {self._backend.value}")

        if self._done:
            self._done = False
            self._state = EngineState.IDLE
        state = self._state
        if state is EngineState.IDLE or state is EngineState.DONE:
            return False

        self._cycles += 1
        if state is EngineState.PREP:
            self._tick_prep()
        else:
            self._tick_calc()
        return self._done

    def _tick_prep(self) -> None:
        n = self._n
        if self._t >= n:
            # operand reduction, one subtraction per clock
            self._t -= n
            return

        self._t <<= 1
        if self._t >= n:
            self._t -= n
        self._prep_step += 1

        if self._prep_step == R_BITS:
            self._state = EngineState.CALC
            self._start_round()

    def _start_round(self) -> None:
        self._mul_unit.start(self._m, self._t, self._n)
        self._sqr_unit.start(self._t, self._t, self._n)
        self._mul_ready = False
        self._sqr_ready = False

    def _tick_calc(self) -> None:
        if self._mul_unit.tick():
            self._mul_ready = True
            self._mul_value = self._mul_unit.result
        if self._sqr_unit.tick():
            self._sqr_ready = True
            self._sqr_value = self._sqr_unit.result

        # barrier: the round advances only once both products are in
        if not (self._mul_ready and self._sqr_ready):
            return

        if (self._d >> self._round) & 1:
            self._m = self._mul_value
        self._t = self._sqr_value

        if self._round == LAST_ROUND:
            self._result = self._m
            self._done = True
            self._state = EngineState.DONE
        else:
            self._round += 1
            self._start_round()

    def __repr__(self) -> str:
        return f"ModExpEngine(backend={self._backend.value}, state={self._state.value})"


def modexp(c: int, d: int, n: int, backend: EngineBackend = EngineBackend.CYCLE) -> int:
    """One-shot c^d mod n on a fresh engine."""
    return ModExpEngine(backend).compute(c, d, n)
