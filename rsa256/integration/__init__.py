# Integration Module
"""
Audit logging for the wrapper: events are appended to a SHA-256 hash
chain. Keys appear only as fingerprints; passwords never appear.
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    from . import event_logger
    return getattr(event_logger, name)

__all__ = [
    'EventType',
    'DeviceEvent',
    'LogEntry',
    'EventLogger',
    'IntegrityError',
    'key_fingerprint',
    'create_event_logger',
]
