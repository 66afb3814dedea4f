# Authentication Module
"""
Password gate for the wrapper's output - password_gate.py

- 16-bit password compared against switch inputs sampled every cycle
- Constant-time comparison (hmac.compare_digest)
- Password change mode gated by the current password
- CONTINUOUS or LATCHED output gating
"""

from .password_gate import (
    PasswordGate,
    GateState,
    GateMode,
    GuardInputs,
    GuardSource,
    SwitchPanel,
    secure_equal,
    DEFAULT_PASSWORD,
)

__all__ = [
    'PasswordGate',
    'GateState',
    'GateMode',
    'GuardInputs',
    'GuardSource',
    'SwitchPanel',
    'secure_equal',
    'DEFAULT_PASSWORD',
]
