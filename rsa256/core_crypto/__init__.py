# Core Cryptography Module
"""
Core cryptographic implementations including:
- RSA mathematics (keygen, reference encrypt/decrypt, word helpers)
- Bit-serial Montgomery multiplier (R = 2^256)
- Modular exponentiation engine (cycle, threaded and native backends)
"""

from .rsa_math import (
    KEY_BITS,
    WORD_BYTES,
    RESULT_BYTES,
    RSAKeyPair,
    generate_rsa_keypair,
    rsa_encrypt,
    check_word,
    bytes_to_int,
    int_to_bytes,
    word_to_result_bytes,
)

from .montgomery import (
    MontgomeryMultiplier,
    montgomery_multiply,
    to_montgomery,
    from_montgomery,
)

from .modexp import (
    EngineBackend,
    EngineBusyError,
    EngineState,
    ModExpEngine,
    modexp,
)

__all__ = [
    # RSA math
    'KEY_BITS',
    'WORD_BYTES',
    'RESULT_BYTES',
    'RSAKeyPair',
    'generate_rsa_keypair',
    'rsa_encrypt',
    'check_word',
    'bytes_to_int',
    'int_to_bytes',
    'word_to_result_bytes',
    # Montgomery
    'MontgomeryMultiplier',
    'montgomery_multiply',
    'to_montgomery',
    'from_montgomery',
    # Engine
    'EngineBackend',
    'EngineBusyError',
    'EngineState',
    'ModExpEngine',
    'modexp',
]
