"""
RSA256 - Main Entry Point

Command line front end for the wrapper.

Usage:
    python -m rsa256.main keygen KEYFILE [--public PUBFILE]
    python -m rsa256.main encrypt PUBFILE IN OUT
    python -m rsa256.main decrypt KEYFILE IN OUT [--backend cycle|threaded|native]
                                  [--gate-mode continuous|latched]
                                  [--password HEX] [--candidate HEX] [--protect]
                                  [--length N] [--audit-log PATH]
    python -m rsa256.main selftest

Decryption always goes through the device-side protocol over an
in-memory loopback link, password gate included.
"""

import argparse
import secrets
import sys
import textwrap
from pathlib import Path
from typing import List, Optional

from .auth.password_gate import DEFAULT_PASSWORD, GateMode, GuardInputs, PasswordGate, SwitchPanel
from .core_crypto.modexp import EngineBackend, modexp
from .core_crypto.rsa_math import (
    PASSWORD_MASK, RESULT_BYTES, RSAKeyPair, bytes_to_int, word_to_result_bytes,
)
from .integration.event_logger import EventLogger, key_fingerprint
from .wrapper.controller import ByteStreamController, WrapperConfig
from .wrapper.host import (
    HostDriver, ProtocolError, encrypt_blocks, load_key_file, save_key_file, split_plaintext,
)
from .wrapper.transport import LoopbackTransport, TransportTimeout


def _hex16(text: str) -> int:
    value = int(text, 16)
    if not 0 <= value <= PASSWORD_MASK:
        raise argparse.ArgumentTypeError(f"{text} is not a 16-bit value")
    return value


# ============================================================================
# Commands
# ============================================================================

def cmd_keygen(args: argparse.Namespace) -> int:
    keypair = RSAKeyPair.generate()
    save_key_file(args.keyfile, keypair.modulus, keypair.private_exponent)
    print(f"  private key -> {args.keyfile}")
    if args.public:
        save_key_file(args.public, keypair.modulus, keypair.public_exponent)
        print(f"  public key  -> {args.public}")
    print(f"  key id: {key_fingerprint(keypair.modulus)}")
    return 0


def cmd_encrypt(args: argparse.Namespace) -> int:
    n, e = load_key_file(args.pubfile)
    data = Path(args.infile).read_bytes()
    blocks = split_plaintext(data)
    Path(args.outfile).write_bytes(encrypt_blocks(blocks, (e, n)))
    print(f"  {len(data)} bytes -> {len(blocks)} ciphertext blocks")
    return 0


def cmd_decrypt(args: argparse.Namespace) -> int:
    n, d = load_key_file(args.keyfile)
    data = Path(args.infile).read_bytes()

    logger = EventLogger() if args.audit_log else None
    config = WrapperConfig(
        backend=EngineBackend(args.backend),
        gate_mode=GateMode(args.gate_mode),
        poll_timeout=args.timeout,
        initial_password=args.password,
    )
    panel = SwitchPanel(candidate=args.candidate, enable=args.protect)

    link = LoopbackTransport()
    device = ByteStreamController(link, guards=panel, config=config, event_logger=logger)
    host = HostDriver(link, device)

    plaintext = host.decrypt_bytes(n, d, data)
    if args.length is not None:
        plaintext = plaintext[:args.length]
    Path(args.outfile).write_bytes(plaintext)

    masked = sum(s.masked_packages for s in host.summaries)
    packages = sum(s.packages for s in host.summaries)
    print(f"  {packages} packages in {len(host.summaries)} epoch(s), {masked} masked")

    if logger is not None:
        Path(args.audit_log).write_text(logger.export_log())
        print(f"  audit log ({logger.length} events) -> {args.audit_log}")
    return 0


def run_selftest() -> bool:
    """Quick end-to-end check of every backend and the gate."""
    print("RSA256 Self-Test")
    print("=" * 60)

    keypair = RSAKeyPair.generate()
    n, d = keypair.modulus, keypair.private_exponent
    m = bytes_to_int(secrets.token_bytes(RESULT_BYTES))
    c = keypair.encrypt(m)
    ok = True

    for backend in EngineBackend:
        good = modexp(c, d, n, backend) == m
        ok = ok and good
        print(f"  {backend.value:<9} engine == pow: {'✓' if good else '✗'}")

    link = LoopbackTransport()
    panel = SwitchPanel()
    host = HostDriver(link, ByteStreamController(link, guards=panel))

    good = host.decrypt(n, d, [c]) == [word_to_result_bytes(m)]
    ok = ok and good
    print(f"  wrapper round trip:      {'✓' if good else '✗'}")

    panel.set(candidate=DEFAULT_PASSWORD ^ 1, enable=True)
    good = host.decrypt(n, d, [c]) == [bytes(RESULT_BYTES)]
    ok = ok and good
    print(f"  wrong password -> zeros: {'✓' if good else '✗'}")

    gate = PasswordGate()
    gate.update(GuardInputs(DEFAULT_PASSWORD, enable=True, change=True))
    gate.update(GuardInputs(0x1234, enable=True, change=False))
    good = gate.password == 0x1234
    ok = ok and good
    print(f"  password change:         {'✓' if good else '✗'}")

    print("=" * 60)
    print("  PASSED" if ok else "  FAILED")
    return ok


def cmd_selftest(args: argparse.Namespace) -> int:
    return 0 if run_selftest() else 1


# ============================================================================
# Argument parsing
# ============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="rsa256",
        description="RSA-256 Montgomery engine behind a password-gated byte-stream wrapper.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Key files hold n || exponent as two 32-byte big-endian words.
            Plaintext is processed in 31-byte blocks; the last block is
            zero-padded, use --length to trim it on decryption.
        """),
    )
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keygen", help="generate a 256-bit key pair")
    p.add_argument("keyfile", help="private key output (n || d)")
    p.add_argument("--public", metavar="PUBFILE", help="public key output (n || e)")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("encrypt", help="host-side encryption into 32-byte blocks")
    p.add_argument("pubfile")
    p.add_argument("infile")
    p.add_argument("outfile")
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", help="decrypt through the wrapper protocol")
    p.add_argument("keyfile")
    p.add_argument("infile")
    p.add_argument("outfile")
    p.add_argument("--backend", choices=[b.value for b in EngineBackend],
                   default=EngineBackend.NATIVE.value)
    p.add_argument("--gate-mode", choices=[m.value for m in GateMode],
                   default=GateMode.CONTINUOUS.value)
    p.add_argument("--password", type=_hex16, default=DEFAULT_PASSWORD,
                   help="stored device password (hex, default 0000)")
    p.add_argument("--candidate", type=_hex16, default=0,
                   help="password presented on the switches (hex)")
    p.add_argument("--protect", action="store_true",
                   help="raise the enable switch (turn password protection on)")
    p.add_argument("--length", type=int, help="trim the output to this many bytes")
    p.add_argument("--timeout", type=float, help="poll timeout in seconds")
    p.add_argument("--audit-log", metavar="PATH", help="write the hash-chained audit log")
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("selftest", help="run a quick end-to-end check")
    p.set_defaults(func=cmd_selftest)

    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for RSA256."""
    args = parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, OSError, ProtocolError, TransportTimeout) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
