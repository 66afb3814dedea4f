"""
Unit tests for the byte-stream wrapper.

Tests:
- Loopback transport registers and FIFOs
- BusPort polling, back-pressure and stall deferral
- Controller protocol: epochs, package counts, MSB drop
- Host-side framing
"""

import secrets

import pytest
from rsa256.core_crypto.modexp import EngineBackend, EngineBusyError
from rsa256.core_crypto.rsa_math import (
    RSAKeyPair, RESULT_BYTES, bytes_to_int, int_to_bytes, word_to_result_bytes,
)
from rsa256.integration.event_logger import EventLogger, EventType, key_fingerprint
from rsa256.wrapper.controller import ByteStreamController, WrapperConfig, WrapperStage
from rsa256.wrapper.host import HostDriver, ProtocolError, MAX_PACKAGES_PER_EPOCH
from rsa256.wrapper.transport import (
    LoopbackTransport, BusPort, Channel, TransportTimeout,
    RX_BASE, TX_BASE, STATUS_BASE, RX_OK_BIT, TX_OK_BIT,
)


KEYPAIR = RSAKeyPair.generate()
N = KEYPAIR.modulus
D = KEYPAIR.private_exponent


def random_block():
    return bytes_to_int(secrets.token_bytes(RESULT_BYTES))


class SlowHostTransport(LoopbackTransport):
    """Host that only takes a byte after the device sees TX full."""

    def __init__(self, capacity=1):
        super().__init__(tx_capacity=capacity)
        self.received = bytearray()

    def read8(self, address):
        value = super().read8(address)
        if address == STATUS_BASE and not (value >> TX_OK_BIT) & 1:
            self.received += self.drain()
        return value


class TestLoopbackTransport:
    """Register view of the in-memory link."""

    def test_status_bits(self):
        """RX bit tracks inbound data, TX bit tracks free space."""
        link = LoopbackTransport(tx_capacity=1)
        assert link.read8(STATUS_BASE) == 1 << TX_OK_BIT

        link.inject(b'\x42')
        assert link.read8(STATUS_BASE) == (1 << RX_OK_BIT) | (1 << TX_OK_BIT)

        link.write8(TX_BASE, 0x99)
        assert link.read8(STATUS_BASE) == 1 << RX_OK_BIT

    def test_fifo_order(self):
        """Bytes come out in the order they went in."""
        link = LoopbackTransport()
        link.inject(b'\x01\x02\x03')
        assert [link.read8(RX_BASE) for _ in range(3)] == [1, 2, 3]
        for b in (4, 5):
            link.write8(TX_BASE, b)
        assert link.drain() == b'\x04\x05'

    def test_underrun_and_overrun(self):
        """Unchecked reads and writes are counted, not raised."""
        link = LoopbackTransport(tx_capacity=1)
        assert link.read8(RX_BASE) == 0
        assert link.underruns == 1

        link.write8(TX_BASE, 1)
        link.write8(TX_BASE, 2)
        assert link.overruns == 1
        assert link.drain() == b'\x01'

    def test_stall_polls(self):
        """Stalled STATUS reads report nothing ready."""
        link = LoopbackTransport(stall_polls=2)
        link.inject(b'\x01')
        assert link.read8(STATUS_BASE) == 0
        assert link.read8(STATUS_BASE) == 0
        assert link.read8(STATUS_BASE) & (1 << RX_OK_BIT)
        assert link.status_reads == 3

    def test_drain_partial(self):
        """drain(count) takes at most count bytes."""
        link = LoopbackTransport()
        for b in range(5):
            link.write8(TX_BASE, b)
        assert link.drain(2) == b'\x00\x01'
        assert link.pending_tx == 3


class TestBusPort:
    """Spin-polled byte primitives."""

    def test_read_waits_through_stalls(self):
        """Stalled polls are retried until RX is ready."""
        link = LoopbackTransport(stall_polls=3)
        link.inject(b'\x7f')
        port = BusPort(link)
        assert port.read_byte() == 0x7f
        assert port.polls == 4
        assert link.underruns == 0

    def test_on_poll_called_each_iteration(self):
        """The owner's hook runs once per poll."""
        calls = []
        link = LoopbackTransport(stall_polls=2)
        port = BusPort(link, on_poll=lambda: calls.append(1))
        port.write_byte(0x10)
        assert len(calls) == 3

    def test_write_value_produced_at_transfer(self):
        """write_from() computes the byte only once TX is ready."""
        link = LoopbackTransport(stall_polls=2)
        state = {'polls': 0}
        port = BusPort(link, on_poll=lambda: state.update(polls=state['polls'] + 1))
        port.write_from(lambda: state['polls'])
        assert link.drain() == b'\x03'

    def test_back_pressure(self):
        """A full TX FIFO defers writes instead of dropping bytes."""
        link = SlowHostTransport(capacity=1)
        port = BusPort(link)
        payload = bytes(range(10))
        for b in payload:
            port.write_byte(b)
        link.received += link.drain()
        assert bytes(link.received) == payload
        assert link.overruns == 0
        assert port.polls > len(payload)

    def test_words_msb_first(self):
        """Words travel most-significant byte first."""
        link = LoopbackTransport()
        port = BusPort(link)
        port.write_word(0x0102, length=2)
        assert link.drain() == b'\x01\x02'
        link.inject(int_to_bytes(N))
        assert port.read_word() == N

    def test_timeout(self):
        """A configured deadline turns a silent link into an error."""
        port = BusPort(LoopbackTransport(), poll_timeout=0.01)
        with pytest.raises(TransportTimeout):
            port.wait(Channel.RX)

    def test_write_range(self):
        """Produced values must be bytes."""
        port = BusPort(LoopbackTransport())
        with pytest.raises(ValueError):
            port.write_byte(300)


class TestController:
    """Device-side protocol."""

    def test_single_package(self):
        """One ciphertext in, 31 plaintext bytes out."""
        m = random_block()
        link = LoopbackTransport()
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)]))

        summary = device.serve_epoch()
        assert link.drain() == word_to_result_bytes(m)
        assert summary.packages == 1
        assert summary.masked_packages == 0
        assert summary.key_id == key_fingerprint(N)

    def test_multiple_packages_in_order(self):
        """Results come back in ciphertext order."""
        messages = [random_block() for _ in range(4)]
        link = LoopbackTransport()
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m) for m in messages]))

        summary = device.serve_epoch()
        assert summary.results == [word_to_result_bytes(m) for m in messages]
        assert link.drain() == b''.join(summary.results)

    def test_count_one_then_fresh_key(self):
        """After count packages the next bytes are a new key."""
        other = RSAKeyPair.generate()
        m1, m2 = random_block(), random_block()
        link = LoopbackTransport()
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m1)]))
        link.inject(HostDriver.frame_epoch(
            other.modulus, other.private_exponent, [other.encrypt(m2)]))

        first, second = device.serve(max_epochs=2)
        assert first.results == [word_to_result_bytes(m1)]
        assert second.results == [word_to_result_bytes(m2)]
        assert second.key_id == key_fingerprint(other.modulus)
        assert device.session.epoch == 2
        assert device.session.stage is WrapperStage.GET_KEY

    def test_count_zero_is_empty_epoch(self):
        """count=0 reads no package; the next read is a fresh key."""
        m = random_block()
        link = LoopbackTransport()
        device = ByteStreamController(link)
        second_frame = HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)])
        link.inject(HostDriver.frame_epoch(N, D, []))
        link.inject(second_frame)

        empty = device.serve_epoch()
        assert empty.packages == 0
        assert link.pending_rx == len(second_frame)
        assert link.pending_tx == 0

        device.serve_epoch()
        assert link.drain() == word_to_result_bytes(m)

    def test_msb_dropped(self):
        """Only bytes 1..31 of the big-endian result are sent."""
        m = N - 1
        link = LoopbackTransport()
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)]))
        device.serve_epoch()

        out = link.drain()
        assert len(out) == RESULT_BYTES
        assert out == int_to_bytes(m)[1:]

    def test_back_pressure_end_to_end(self):
        """A host that reads one byte at a time still gets everything."""
        m = random_block()
        link = SlowHostTransport(capacity=1)
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)]))
        device.serve_epoch()
        link.received += link.drain()
        assert bytes(link.received) == word_to_result_bytes(m)
        assert link.overruns == 0

    def test_stalled_link(self):
        """Not-ready polls delay but do not corrupt the stream."""
        m = random_block()
        link = LoopbackTransport(stall_polls=50)
        device = ByteStreamController(link)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)]))
        device.serve_epoch()
        assert link.drain() == word_to_result_bytes(m)
        assert link.underruns == 0

    @pytest.mark.parametrize("backend", list(EngineBackend))
    def test_backends(self, backend):
        """Every engine backend serves the same protocol."""
        m = random_block()
        link = LoopbackTransport()
        device = ByteStreamController(link, config=WrapperConfig(backend=backend))
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(m)]))
        summary = device.serve_epoch()
        assert link.drain() == word_to_result_bytes(m)
        if backend is EngineBackend.CYCLE:
            assert summary.cycles == 256 + 256 * 514

    def test_engine_busy_rejected(self):
        """A new ciphertext while the engine runs is refused and logged."""
        logger = EventLogger()
        link = LoopbackTransport()
        device = ByteStreamController(
            link, config=WrapperConfig(backend=EngineBackend.CYCLE), event_logger=logger)
        c = KEYPAIR.encrypt(random_block())
        link.inject(int_to_bytes(N) + int_to_bytes(D) + int_to_bytes(c) + int_to_bytes(c))

        device.load_key()
        device.load_ciphertext()
        with pytest.raises(EngineBusyError):
            device.load_ciphertext()
        assert logger.get_events_by_type(EventType.ENGINE_REJECTED)

    def test_protocol_events(self):
        """Each stage leaves an audit record."""
        logger = EventLogger()
        link = LoopbackTransport()
        device = ByteStreamController(link, event_logger=logger)
        link.inject(HostDriver.frame_epoch(N, D, [KEYPAIR.encrypt(random_block())]))
        device.serve_epoch()

        types = [e.event_type for e in logger.get_all_events()]
        for expected in (EventType.KEY_LOADED, EventType.EPOCH_STARTED,
                         EventType.PACKAGE_RECEIVED, EventType.COMPUTE_DONE,
                         EventType.PACKAGE_SENT):
            assert expected in types
        assert types.index(EventType.KEY_LOADED) < types.index(EventType.PACKAGE_SENT)


class TestHostFraming:
    """Host-side epoch framing."""

    def test_frame_layout(self):
        """n, d, count, then each ciphertext, all MSB-first."""
        frame = HostDriver.frame_epoch(N, D, [1, 2])
        assert len(frame) == 32 + 32 + 1 + 2 * 32
        assert frame[:32] == int_to_bytes(N)
        assert frame[32:64] == int_to_bytes(D)
        assert frame[64] == 2
        assert frame[65:97] == int_to_bytes(1)

    def test_frame_limit(self):
        """The count field is one byte."""
        HostDriver.frame_epoch(N, D, [1] * MAX_PACKAGES_PER_EPOCH)
        with pytest.raises(ValueError):
            HostDriver.frame_epoch(N, D, [1] * (MAX_PACKAGES_PER_EPOCH + 1))

    def test_long_job_split_into_epochs(self):
        """More than 255 packages are sent as several key epochs."""
        messages = [random_block() for _ in range(MAX_PACKAGES_PER_EPOCH + 2)]
        link = LoopbackTransport()
        host = HostDriver(link, ByteStreamController(link))

        results = host.decrypt(N, D, [KEYPAIR.encrypt(m) for m in messages])
        assert results == [word_to_result_bytes(m) for m in messages]
        assert [s.packages for s in host.summaries] == [MAX_PACKAGES_PER_EPOCH, 2]

    def test_short_reply(self):
        """Missing result bytes are a protocol error."""
        link = LoopbackTransport()
        with pytest.raises(ProtocolError):
            HostDriver(link).receive_results(1)

    def test_decrypt_needs_device(self):
        """decrypt() drives an attached device."""
        with pytest.raises(ProtocolError):
            HostDriver(LoopbackTransport()).decrypt(N, D, [1])
