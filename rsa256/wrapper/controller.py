"""
Byte-Stream Controller

Device side of the RSA-256 wrapper. Moves 256-bit words between the
8-bit register transport and the modular exponentiation engine, with
the password gate deciding what actually leaves the device.

Protocol (repeats forever, one iteration per key epoch):
    1. read n (32 bytes, MSB-first), then d (32 bytes, MSB-first)
    2. read the package count (1 byte)
    3. per package: read c (32 bytes) -> run engine -> write 31 bytes
       (bytes 1..31 of the big-endian result; byte 0 is never sent)
    4. back to 1; the key is not cached across epochs

Each byte transfer spin-polls STATUS first. While the gate is in
CHANGE_PASSWORD the controller holds its current stage and resumes
where it left off once the new password is committed.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..auth.password_gate import (
    DEFAULT_PASSWORD, GateMode, GuardSource, PasswordGate, SwitchPanel,
)
from ..core_crypto.modexp import EngineBackend, EngineBusyError, ModExpEngine
from ..core_crypto.rsa_math import WORD_BYTES, word_to_result_bytes
from ..integration.event_logger import EventLogger, EventType, key_fingerprint
from .transport import (
    BusPort, RegisterTransport, TransportTimeout, DEFAULT_POLL_INTERVAL,
)


SUBJECT = "wrapper"


class WrapperStage(Enum):
    """Where the controller is in the protocol."""
    GET_KEY = "get_key"
    GET_COUNT = "get_count"
    GET_DATA = "get_data"
    WAIT_CALCULATE = "wait_calculate"
    SEND_DATA = "send_data"


@dataclass
class WrapperConfig:
    """
    Wrapper settings.

    poll_timeout is None by default: the device spins forever on a
    silent link. Setting it raises TransportTimeout instead.
    """
    backend: EngineBackend = EngineBackend.NATIVE
    gate_mode: GateMode = GateMode.CONTINUOUS
    poll_timeout: Optional[float] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    initial_password: int = DEFAULT_PASSWORD


@dataclass
class WrapperSession:
    """Protocol state owned by one controller."""
    n: int = 0
    d: int = 0
    c: int = 0
    m: int = 0
    packages_left: int = 0
    package_index: int = 0
    epoch: int = 0
    key_id: str = ""
    stage: WrapperStage = WrapperStage.GET_KEY


@dataclass
class EpochSummary:
    """What happened during one key epoch."""
    epoch: int
    key_id: str
    packages: int = 0
    masked_packages: int = 0
    cycles: int = 0
    results: List[bytes] = field(default_factory=list)


class ByteStreamController:
    """
    Serves the wrapper protocol over a register transport.

    Example:
        >>> link = LoopbackTransport()
        >>> wrapper = ByteStreamController(link)
        >>> link.inject(HostDriver.frame_epoch(n, d, [c]))
        >>> wrapper.serve_epoch()
        >>> link.drain(31)
    """

    def __init__(self, transport: RegisterTransport,
                 guards: Optional[GuardSource] = None,
                 config: Optional[WrapperConfig] = None,
                 event_logger: Optional[EventLogger] = None,
                 gate: Optional[PasswordGate] = None,
                 engine: Optional[ModExpEngine] = None):
        """
        Args:
            transport: Register-mapped byte link
            guards: Source of password switches (defaults to an idle SwitchPanel)
            config: Wrapper settings
            event_logger: Optional audit log
            gate: Pre-built password gate (built from config if omitted)
            engine: Pre-built engine (built from config if omitted)
        """
        self.config = config or WrapperConfig()
        self._logger = event_logger
        self._guards = guards or SwitchPanel()
        self.gate = gate or PasswordGate(
            password=self.config.initial_password,
            mode=self.config.gate_mode,
            event_logger=event_logger,
        )
        self.engine = engine or ModExpEngine(self.config.backend)
        self.port = BusPort(
            transport,
            poll_timeout=self.config.poll_timeout,
            poll_interval=self.config.poll_interval,
            on_poll=self.sample_guards,
        )
        self.session = WrapperSession()
        self._last_masked = False

    # ========================================================================
    # Guard sampling and password-edit pause
    # ========================================================================

    def sample_guards(self) -> bool:
        """
        Feed one sample of the switches to the gate.

        If the sample starts a password edit, block here until it is
        committed.

        Returns:
            The live authentication verdict
        """
        verdict = self.gate.update(self._guards())
        if self.gate.changing:
            verdict = self._hold_for_password_change()
        return verdict

    def _hold_for_password_change(self) -> bool:
        stage = self.session.stage
        self._log(EventType.CONTROLLER_PAUSED, stage=stage.value)

        deadline = None
        if self.config.poll_timeout is not None:
            deadline = time.monotonic() + self.config.poll_timeout

        verdict = self.gate.authenticated
        while self.gate.changing:
            if deadline is not None and time.monotonic() >= deadline:
                raise TransportTimeout(
                    f"password change still open after {self.config.poll_timeout}s"
                )
            if self.config.poll_interval:
                time.sleep(self.config.poll_interval)
            verdict = self.gate.update(self._guards())

        self._log(EventType.CONTROLLER_RESUMED, stage=stage.value)
        return verdict

    # ========================================================================
    # Protocol steps
    # ========================================================================

    def load_key(self) -> Tuple[int, int]:
        """
        Read a fresh (n, d) pair and open a new key epoch.

        Returns:
            Tuple (n, d)
        """
        session = self.session
        session.stage = WrapperStage.GET_KEY
        self.gate.new_epoch()

        n = self.port.read_word(WORD_BYTES)
        d = self.port.read_word(WORD_BYTES)

        session.n = n
        session.d = d
        session.epoch += 1
        session.package_index = 0
        session.key_id = key_fingerprint(n)
        self._log(EventType.KEY_LOADED, epoch=session.epoch, key_id=session.key_id)
        return n, d

    def load_package_count(self) -> int:
        """Read the number of packages in this epoch (0..255)."""
        self.session.stage = WrapperStage.GET_COUNT
        count = self.port.read_byte()
        self.session.packages_left = count
        self._log(EventType.EPOCH_STARTED, epoch=self.session.epoch, packages=count)
        return count

    def load_ciphertext(self) -> int:
        """
        Read one ciphertext word and trigger the engine on it.

        Under LATCHED gating this is also where the package's verdict
        is captured.

        Returns:
            The ciphertext c

        Raises:
            EngineBusyError: If the engine is still running a previous package
        """
        session = self.session
        session.stage = WrapperStage.GET_DATA
        c = self.port.read_word(WORD_BYTES)
        session.c = c
        session.package_index += 1
        self._log(EventType.PACKAGE_RECEIVED, epoch=session.epoch, index=session.package_index)

        if self.gate.mode is GateMode.LATCHED:
            self.gate.latch()

        try:
            self.engine.start(c, session.d, session.n)
        except EngineBusyError:
            self._log(EventType.ENGINE_REJECTED, index=session.package_index)
            raise
        return c

    def wait_calculate(self) -> int:
        """
        Run the engine to completion, sampling the switches meanwhile.

        Returns:
            The plaintext m = c^d mod n
        """
        session = self.session
        session.stage = WrapperStage.WAIT_CALCULATE
        engine = self.engine

        if engine.backend is EngineBackend.CYCLE:
            while not engine.tick():
                self.sample_guards()
            m = engine.result
        else:
            self.sample_guards()
            m = engine.run()

        session.m = m
        self._log(EventType.COMPUTE_DONE, index=session.package_index,
                  backend=engine.backend.value, cycles=engine.cycles)
        return m

    def drain_plaintext(self, m: Optional[int] = None) -> bytes:
        """
        Send the 31 result bytes, each one gated at the moment it goes out.

        Args:
            m: Plaintext word (defaults to the session's last result)

        Returns:
            The bytes actually written (zeros where the gate refused)
        """
        session = self.session
        session.stage = WrapperStage.SEND_DATA
        if m is None:
            m = session.m

        sent = bytearray()
        masked = False
        for b in word_to_result_bytes(m):
            sent.append(self.port.write_from(lambda b=b: self.gate.mask_byte(b)))
            masked = masked or not self.gate.output_authenticated

        self.gate.release()
        session.packages_left = max(0, session.packages_left - 1)
        self._last_masked = masked
        self._log(EventType.PACKAGE_SENT, epoch=session.epoch,
                  index=session.package_index, masked=masked)
        return bytes(sent)

    # ========================================================================
    # Loops
    # ========================================================================

    def serve_package(self) -> bytes:
        """One ciphertext in, 31 plaintext bytes out."""
        self.load_ciphertext()
        self.wait_calculate()
        return self.drain_plaintext()

    def serve_epoch(self) -> EpochSummary:
        """
        Serve one key epoch: key, count, then `count` packages.

        A count of 0 is an empty epoch; the next read is a fresh key.

        Raises:
            TransportTimeout: If a configured poll deadline expires
        """
        try:
            self.load_key()
            count = self.load_package_count()
            summary = EpochSummary(epoch=self.session.epoch, key_id=self.session.key_id)

            for _ in range(count):
                summary.results.append(self.serve_package())
                summary.packages += 1
                summary.cycles += self.engine.cycles
                if self._last_masked:
                    summary.masked_packages += 1
        except TransportTimeout:
            self._log(EventType.TRANSPORT_TIMEOUT, stage=self.session.stage.value)
            raise

        self.session.stage = WrapperStage.GET_KEY
        return summary

    def serve(self, max_epochs: Optional[int] = None) -> List[EpochSummary]:
        """
        Serve epochs back to back.

        With max_epochs=None this never returns on its own; it ends only
        when a configured poll timeout fires.
        """
        summaries = []
        while max_epochs is None or len(summaries) < max_epochs:
            summaries.append(self.serve_epoch())
        return summaries

    def _log(self, event_type: EventType, **details) -> None:
        if self._logger is not None:
            self._logger.log(event_type, SUBJECT, **details)
