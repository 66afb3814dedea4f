# RSA-256 Wrapper
"""
RSA-256 decryption engine behind a byte-stream controller and a
16-bit password gate.

Subpackages:
- core_crypto: RSA math, Montgomery multiplier, modexp engine
- auth: password gate
- wrapper: register transport, byte-stream controller, host driver
- integration: hash-chained audit log
"""

__version__ = "1.0.0"
