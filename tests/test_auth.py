"""
Unit tests for the password gate.

Tests:
- Authentication verdict (protection off, wrong and correct candidate)
- Password change state machine
- CONTINUOUS vs LATCHED output gating
- Switch panel input source
"""

import pytest
from rsa256.auth.password_gate import (
    PasswordGate, GateState, GateMode, GuardInputs, SwitchPanel,
    DEFAULT_PASSWORD, secure_equal,
)
from rsa256.integration.event_logger import EventLogger, EventType


class TestVerdict:
    """Authentication verdict per update."""

    def test_protection_off(self):
        """enable low: always authenticated, whatever the candidate."""
        gate = PasswordGate(password=0xBEEF)
        assert gate.update(GuardInputs(0x0000, enable=False))
        assert gate.update(GuardInputs(0x1234, enable=False))

    def test_wrong_candidate(self):
        """enable high with the wrong candidate is refused."""
        gate = PasswordGate(password=0xBEEF)
        assert not gate.update(GuardInputs(0xBEEE, enable=True))
        assert not gate.authenticated

    def test_correct_candidate(self):
        """enable high with the stored password is granted."""
        gate = PasswordGate(password=0xBEEF)
        assert gate.update(GuardInputs(0xBEEF, enable=True))

    def test_default_password(self):
        """A fresh gate accepts 0x0000."""
        gate = PasswordGate()
        assert gate.password == DEFAULT_PASSWORD
        assert gate.update(GuardInputs(0x0000, enable=True))

    def test_not_sticky(self):
        """The verdict follows the candidate on every update."""
        gate = PasswordGate(password=0xBEEF)
        assert gate.update(GuardInputs(0xBEEF, enable=True))
        assert not gate.update(GuardInputs(0x0000, enable=True))
        assert gate.update(GuardInputs(0xBEEF, enable=True))

    def test_unauthenticated_before_first_sample(self):
        """Nothing is granted until the switches have been read."""
        gate = PasswordGate()
        assert not gate.authenticated
        assert gate.mask_byte(0x5A) == 0

    def test_candidate_masked_to_16_bits(self):
        """Only the low 16 bits of the candidate count."""
        gate = PasswordGate(password=0x0001)
        assert gate.update(GuardInputs(0x10001, enable=True))


class TestPasswordChange:
    """NORMAL <-> CHANGE_PASSWORD transitions."""

    def test_change_commits_on_release(self):
        """(enable, OLD, change) then (NEW, change low) commits NEW."""
        gate = PasswordGate(password=0xBEEF)
        gate.update(GuardInputs(0xBEEF, enable=True, change=True))
        assert gate.state is GateState.CHANGE_PASSWORD
        assert gate.changing

        gate.update(GuardInputs(0x1234, enable=True, change=True))
        gate.update(GuardInputs(0x1234, enable=True, change=False))
        assert gate.state is GateState.NORMAL
        assert gate.password == 0x1234

        assert not gate.update(GuardInputs(0xBEEF, enable=True))
        assert gate.update(GuardInputs(0x1234, enable=True))

    def test_target_follows_candidate_while_changing(self):
        """In CHANGE_PASSWORD the comparison target previews the candidate."""
        gate = PasswordGate(password=0xBEEF)
        gate.update(GuardInputs(0xBEEF, enable=True, change=True))
        assert gate.update(GuardInputs(0x4321, enable=True, change=True))
        assert gate.password == 0x4321

    def test_wrong_candidate_cannot_change(self):
        """change with the wrong candidate stays NORMAL."""
        gate = PasswordGate(password=0xBEEF)
        gate.update(GuardInputs(0x0000, enable=True, change=True))
        assert gate.state is GateState.NORMAL
        assert gate.password == 0xBEEF

    def test_change_requires_enable(self):
        """change without enable is ignored."""
        gate = PasswordGate(password=0xBEEF)
        gate.update(GuardInputs(0xBEEF, enable=False, change=True))
        assert gate.state is GateState.NORMAL

    def test_release_with_same_value(self):
        """Releasing change at once re-commits the old password."""
        gate = PasswordGate(password=0xBEEF)
        gate.update(GuardInputs(0xBEEF, enable=True, change=True))
        gate.update(GuardInputs(0xBEEF, enable=True, change=False))
        assert gate.state is GateState.NORMAL
        assert gate.password == 0xBEEF


class TestGatingModes:
    """When the verdict is applied to output bytes."""

    def test_continuous_follows_live_verdict(self):
        """CONTINUOUS masks according to the latest update."""
        gate = PasswordGate(password=0xBEEF, mode=GateMode.CONTINUOUS)
        gate.update(GuardInputs(0xBEEF, enable=True))
        assert gate.mask_byte(0x5A) == 0x5A
        gate.update(GuardInputs(0x0000, enable=True))
        assert gate.mask_byte(0x5A) == 0

    def test_latched_holds_verdict(self):
        """LATCHED keeps the verdict captured at latch() until release()."""
        gate = PasswordGate(password=0xBEEF, mode=GateMode.LATCHED)
        gate.update(GuardInputs(0xBEEF, enable=True))
        gate.latch()
        gate.update(GuardInputs(0x0000, enable=True))
        assert gate.output_authenticated
        assert gate.mask_byte(0x5A) == 0x5A

        gate.release()
        assert not gate.output_authenticated
        assert gate.mask_byte(0x5A) == 0

    def test_latched_refusal_holds(self):
        """A refused latch stays refused even if the candidate is fixed."""
        gate = PasswordGate(password=0xBEEF, mode=GateMode.LATCHED)
        gate.update(GuardInputs(0x0000, enable=True))
        gate.latch()
        gate.update(GuardInputs(0xBEEF, enable=True))
        assert gate.mask_byte(0x5A) == 0

    def test_new_epoch_clears_latch(self):
        """A key reload drops any latched verdict."""
        gate = PasswordGate(mode=GateMode.LATCHED)
        gate.update(GuardInputs(0x0000, enable=False))
        gate.latch()
        gate.new_epoch()
        assert not gate.output_authenticated

    def test_mask_byte_range(self):
        """Only byte values are accepted."""
        gate = PasswordGate()
        with pytest.raises(ValueError):
            gate.mask_byte(256)
        with pytest.raises(ValueError):
            gate.mask_byte(-1)

    def test_mode_from_value(self):
        """Modes can be given by their string value."""
        assert PasswordGate(mode="latched").mode is GateMode.LATCHED


class TestGateLogging:
    """Events emitted by the gate."""

    def test_verdict_changes_logged(self):
        """Only transitions of the verdict are recorded."""
        logger = EventLogger()
        gate = PasswordGate(password=0xBEEF, event_logger=logger)
        gate.update(GuardInputs(0xBEEF, enable=True))
        gate.update(GuardInputs(0xBEEF, enable=True))
        gate.update(GuardInputs(0x0000, enable=True))

        assert len(logger.get_events_by_type(EventType.AUTH_GRANTED)) == 1
        assert len(logger.get_events_by_type(EventType.AUTH_DENIED)) == 1

    def test_password_change_logged(self):
        """Start and commit of a change are recorded."""
        logger = EventLogger()
        gate = PasswordGate(password=0xBEEF, event_logger=logger)
        gate.update(GuardInputs(0xBEEF, enable=True, change=True))
        gate.update(GuardInputs(0x1234, enable=True, change=False))

        assert len(logger.get_events_by_type(EventType.PASSWORD_CHANGE_STARTED)) == 1
        assert len(logger.get_events_by_type(EventType.PASSWORD_COMMITTED)) == 1


class TestSwitchPanel:
    """Mutable switch source."""

    def test_defaults(self):
        """Fresh panel: candidate 0, everything low."""
        assert SwitchPanel()() == GuardInputs(0, False, False)

    def test_partial_update(self):
        """set() changes only what it is given."""
        panel = SwitchPanel(candidate=0x1111)
        panel.set(enable=True)
        assert panel() == GuardInputs(0x1111, True, False)
        panel.set(candidate=0x12345)
        assert panel().candidate == 0x2345

    def test_secure_equal(self):
        """Constant-time comparison of 16-bit values."""
        assert secure_equal(0xBEEF, 0xBEEF)
        assert not secure_equal(0xBEEF, 0xBEEE)
