# Wrapper Module
"""
Byte-stream wrapper around the modexp engine:
- Register transport with STATUS spin-polling - transport.py
- Protocol controller (key, count, packages) - controller.py
- Host-side framing, key files and block helpers - host.py

Wire protocol per epoch: n (32 B) | d (32 B) | count (1 B) | c * count,
each c answered with 31 plaintext bytes.
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    from . import controller, host, transport
    for module in (controller, host, transport):
        if hasattr(module, name):
            return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    # Transport
    'LoopbackTransport',
    'BusPort',
    'TransportTimeout',
    # Controller
    'ByteStreamController',
    'WrapperConfig',
    'WrapperStage',
    'EpochSummary',
    # Host
    'HostDriver',
    'ProtocolError',
    'load_key_file',
    'save_key_file',
    'split_plaintext',
    'join_plaintext',
    'encrypt_blocks',
    'split_ciphertext',
]
