# RSA256 Test Suite
"""
Test suite including:
- Unit tests (Montgomery multiplier, modexp engine, password gate, transport)
- Integration tests (host driver, controller, CLI, audit log)
- Security tests (output gating, password change, tamper detection)

Run with: pytest
"""
