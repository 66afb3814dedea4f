#!/usr/bin/env python
"""
╔══════════════════════════════════════════════════════════════════════════════╗
║                          RSA256 WRAPPER LIVE DEMO                            ║
╚══════════════════════════════════════════════════════════════════════════════╝

Interactive walk-through of the RSA-256 wrapper:
- Key generation and key load over the byte-stream protocol
- Decryption through the Montgomery engine
- Password gate zeroing the output for a wrong candidate
- Password change while the wrapper is mid-package
- Hash-chained audit log
"""

import sys
import time

from rsa256.auth.password_gate import GuardInputs, SwitchPanel
from rsa256.core_crypto.modexp import EngineBackend, ModExpEngine
from rsa256.core_crypto.rsa_math import RSAKeyPair, bytes_to_int, word_to_result_bytes
from rsa256.integration.event_logger import EventLogger, EventType, key_fingerprint
from rsa256.wrapper.controller import ByteStreamController, WrapperConfig
from rsa256.wrapper.host import HostDriver, split_plaintext
from rsa256.wrapper.transport import LoopbackTransport


def print_header(title):
    """Print a formatted section header"""
    print("\n" + "═" * 70)
    print(f"  {title}")
    print("═" * 70)


def print_step(step_num, description):
    """Print a numbered step"""
    print(f"\n  [{step_num}] {description}")


def pause(message="Press ENTER to continue..."):
    """Pause for presenter to explain"""
    if "--no-pause" in sys.argv:
        return
    print(f"\n  [PAUSE] {message}")
    input()


class ScriptedSwitches:
    """Plays back a list of switch samples, then holds the last one."""

    def __init__(self, samples):
        self._samples = list(samples)
        self._index = 0

    def __call__(self):
        sample = self._samples[min(self._index, len(self._samples) - 1)]
        self._index += 1
        return sample


def main():

    print("\n" * 2)
    print("╔" + "═" * 68 + "╗")
    print("║" + " " * 68 + "║")
    print("║" + "        RSA256 - MONTGOMERY ENGINE BEHIND A PASSWORD GATE".center(68) + "║")
    print("║" + " " * 68 + "║")
    print("╚" + "═" * 68 + "╝")

    print("\n  This demonstration showcases:")
    print("  • 256-bit RSA key load over an 8-bit register link")
    print("  • Bit-serial Montgomery modular exponentiation")
    print("  • Output gating by a 16-bit password")
    print("  • Password change with the wrapper paused mid-package")
    print("  • Hash-chained audit logging")

    pause("Press ENTER to begin the demonstration...")

    event_logger = EventLogger(node="live-demo")
    event_logger.add_callback(lambda e: print(f"      log: {e.event_type.value} ({e.subject})"))

    # ========================================================================
    print_header("PART 1: KEY LOAD")

    print_step("1.1", "Generating a 256-bit key pair on the host")
    keypair = RSAKeyPair.generate()
    n, d = keypair.modulus, keypair.private_exponent
    print(f"\n  n  = 0x{n:064x}")
    print(f"  e  = {keypair.public_exponent}")
    print(f"  key id: {key_fingerprint(n)}")

    pause()

    print_step("1.2", "Encrypting a 31-byte message block")
    message = b"Montgomery says hi over 8 bits"
    block = split_plaintext(message)[0]
    c = keypair.encrypt(bytes_to_int(block))
    print(f"\n  plaintext : {block!r}")
    print(f"  ciphertext: 0x{c:064x}")

    pause()

    # ========================================================================
    print_header("PART 2: DECRYPTION THROUGH THE WRAPPER")

    print_step("2.1", "Cycle-accurate engine")
    engine = ModExpEngine(EngineBackend.CYCLE)
    start = time.time()
    m = engine.compute(c, d, n)
    print(f"\n  m == plaintext: {m == bytes_to_int(block)}")
    print(f"  clock ticks:    {engine.cycles}")
    print(f"  wall time:      {time.time() - start:.2f}s")

    pause()

    print_step("2.2", "Full protocol: n, d, count, c in; 31 bytes out")
    link = LoopbackTransport()
    panel = SwitchPanel()
    device = ByteStreamController(link, guards=panel, event_logger=event_logger)
    host = HostDriver(link, device)

    result = host.decrypt(n, d, [c])[0]
    print(f"\n  received:  {result!r}")
    print(f"  [OK] matches: {result == word_to_result_bytes(m)}")

    pause()

    # ========================================================================
    print_header("PART 3: PASSWORD GATE")

    print_step("3.1", "Protection on, wrong candidate")
    panel.set(candidate=0xBAD0, enable=True)
    result = host.decrypt(n, d, [c])[0]
    print(f"\n  received:  {result.hex()}")
    print(f"  [X] all zeros: {result == bytes(len(result))}")

    pause()

    print_step("3.2", "Protection on, correct candidate (default 0x0000)")
    panel.set(candidate=0x0000)
    result = host.decrypt(n, d, [c])[0]
    print(f"\n  received:  {result!r}")

    pause()

    # ========================================================================
    print_header("PART 4: PASSWORD CHANGE MID-PACKAGE")

    print_step("4.1", "Switches flip to change mode while the key is loading")
    new_password = 0x2024
    samples = [GuardInputs(0x0000, enable=True)] * 10
    samples += [GuardInputs(0x0000, enable=True, change=True)]
    samples += [GuardInputs(new_password, enable=True, change=True)] * 5
    samples += [GuardInputs(new_password, enable=True, change=False)]
    switches = ScriptedSwitches(samples)

    link = LoopbackTransport()
    device = ByteStreamController(link, guards=switches,
                                  config=WrapperConfig(), event_logger=event_logger)
    host = HostDriver(link, device)
    result = host.decrypt(n, d, [c])[0]

    print(f"\n  new password committed: 0x{device.gate.password:04x}")
    print(f"  [OK] output under new password matches: {result == word_to_result_bytes(m)}")

    pause()

    # ========================================================================
    print_header("PART 5: AUDIT LOG")

    event_logger.print_audit_log(last_n=12)
    print(f"\n  Chain valid: {event_logger.verify_integrity()}")
    print(f"  Auth denials: {len(event_logger.get_events_by_type(EventType.AUTH_DENIED))}")

    print("\n  Demo complete.\n")


if __name__ == "__main__":
    main()
