"""
Event Logger Module

Audit trail for the RSA-256 wrapper. Every security-relevant event
(key loads, package traffic, authentication verdicts, password changes,
stalls) is appended to a hash-chained log so that the record can be
checked for tampering afterwards.

Features:
- Structured events serialized as compact JSON transactions
- SHA-256 hash chain (each entry commits to the previous one)
- Privacy: key material is referred to by fingerprint only and
  password values are never recorded
- Callbacks for live observers (CLI, demo)

Author: RSA256 Project
"""

import time
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Callable

from cryptography.hazmat.primitives import hashes


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
GENESIS_HASH = "0" * 64
FINGERPRINT_CHARS = 16


# ============================================================================
# Hashing Helpers
# ============================================================================

def sha256_digest(data: bytes) -> bytes:
    """SHA-256 of data."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def key_fingerprint(modulus: int) -> str:
    """
    Short identifier for a key epoch.

    Hashes the 32-byte big-endian modulus so that logs can correlate
    packages under the same key without ever containing the key.

    Args:
        modulus: RSA modulus n

    Returns:
        First 16 hex characters of SHA-256(n)
    """
    length = max(32, (modulus.bit_length() + 7) // 8)
    return sha256_digest(modulus.to_bytes(length, 'big')).hex()[:FINGERPRINT_CHARS]


def chain_hash(prev_hash: str, transaction: str) -> str:
    """Hash linking a transaction to its predecessor."""
    return sha256_digest(prev_hash.encode() + transaction.encode()).hex()


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of events recorded by the wrapper."""

    # Protocol events
    KEY_LOADED = "key_loaded"
    EPOCH_STARTED = "epoch_started"
    PACKAGE_RECEIVED = "package_received"
    COMPUTE_DONE = "compute_done"
    PACKAGE_SENT = "package_sent"

    # Authentication events
    AUTH_GRANTED = "auth_granted"
    AUTH_DENIED = "auth_denied"
    PASSWORD_CHANGE_STARTED = "password_change_started"
    PASSWORD_COMMITTED = "password_committed"

    # Flow control and anomalies
    CONTROLLER_PAUSED = "controller_paused"
    CONTROLLER_RESUMED = "controller_resumed"
    ENGINE_REJECTED = "engine_rejected"
    TRANSPORT_TIMEOUT = "transport_timeout"

    # System events
    SYSTEM_START = "system_start"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class DeviceEvent:
    """
    A single audit event.

    `subject` names the component the event is about ("wrapper", "gate",
    "engine") or a key fingerprint.
    """
    event_type: EventType
    subject: str
    timestamp: int  # Unix timestamp
    details: Dict[str, Any] = field(default_factory=dict)

    def to_transaction(self) -> str:
        """Serialize to a compact JSON transaction string."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'subject': self.subject,
            'time': self.timestamp,
            'details': self.details,
        }, separators=(',', ':'), sort_keys=True)

    @classmethod
    def from_transaction(cls, tx_str: str) -> 'DeviceEvent':
        """Parse an event from its transaction string."""
        data = json.loads(tx_str)
        return cls(
            event_type=EventType(data['type']),
            subject=data['subject'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | {self.subject}"
        )


@dataclass(frozen=True)
class LogEntry:
    """One link of the hash chain."""
    index: int
    prev_hash: str
    transaction: str
    hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'prev_hash': self.prev_hash,
            'transaction': self.transaction,
            'hash': self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            index=data['index'],
            prev_hash=data['prev_hash'],
            transaction=data['transaction'],
            hash=data['hash'],
        )


class IntegrityError(Exception):
    """Raised when an imported log fails hash-chain validation."""
    pass


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Hash-chained event logger for the wrapper's audit trail.

    Entries are append-only; verify_integrity() recomputes the chain and
    fails if any transaction or link has been altered.
    """

    def __init__(self, node: str = "rsa256", entries: Optional[List[LogEntry]] = None):
        """
        Initialize the event logger.

        Args:
            node: Name recorded in the SYSTEM_START event
            entries: Existing chain to continue (used by import_log)
        """
        self._node = node
        self._entries: List[LogEntry] = list(entries or [])
        self._callbacks: List[Callable[[DeviceEvent], None]] = []

        if not self._entries:
            self.log(EventType.SYSTEM_START, "system", node=node)

    @property
    def length(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[LogEntry]:
        """Read-only view of the chain."""
        return list(self._entries)

    @property
    def head_hash(self) -> str:
        return self._entries[-1].hash if self._entries else GENESIS_HASH

    def log(self, event_type: EventType, subject: str, **details: Any) -> DeviceEvent:
        """
        Record an event.

        Args:
            event_type: Kind of event
            subject: Component or key fingerprint the event is about
            **details: JSON-serializable extra fields

        Returns:
            The logged event
        """
        event = DeviceEvent(
            event_type=event_type,
            subject=subject,
            timestamp=int(time.time()),
            details=details,
        )
        self._append(event)
        return event

    def _append(self, event: DeviceEvent) -> None:
        tx = event.to_transaction()
        prev = self.head_hash
        self._entries.append(LogEntry(
            index=len(self._entries),
            prev_hash=prev,
            transaction=tx,
            hash=chain_hash(prev, tx),
        ))

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                pass  # observers must not break the audit trail

    def add_callback(self, callback: Callable[[DeviceEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[DeviceEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[DeviceEvent]:
        return [DeviceEvent.from_transaction(e.transaction) for e in self._entries]

    def get_events_by_type(self, event_type: EventType) -> List[DeviceEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[DeviceEvent]:
        events = self.get_all_events()
        return events[-count:] if len(events) > count else events

    def print_audit_log(self, last_n: Optional[int] = None) -> None:
        """Print the audit log in a readable format."""
        events = self.get_all_events()
        if last_n:
            events = events[-last_n:]

        print("\n" + "=" * 70)
        print("WRAPPER AUDIT LOG")
        print("=" * 70)
        for event in events:
            print(event)
            for k, v in event.details.items():
                print(f"    {k}: {v}")
        print("=" * 70)
        print(f"Total events: {self.length}")
        print(f"Head hash: {self.head_hash[:16]}...")
        print("=" * 70)

    # ========================================================================
    # Integrity and Persistence
    # ========================================================================

    def verify_integrity(self) -> bool:
        """Recompute the hash chain; False if anything was altered."""
        prev = GENESIS_HASH
        for i, entry in enumerate(self._entries):
            if entry.index != i or entry.prev_hash != prev:
                return False
            if chain_hash(prev, entry.transaction) != entry.hash:
                return False
            prev = entry.hash
        return True

    def export_log(self) -> str:
        """Export the whole chain as JSON."""
        return json.dumps({
            'node': self._node,
            'chain': [entry.to_dict() for entry in self._entries],
        }, indent=2)

    @classmethod
    def import_log(cls, json_str: str) -> 'EventLogger':
        """
        Import a chain exported by export_log().

        Raises:
            IntegrityError: If the imported chain does not validate
        """
        data = json.loads(json_str)
        entries = [LogEntry.from_dict(d) for d in data['chain']]
        logger = cls(node=data.get('node', 'rsa256'), entries=entries)
        if not logger.verify_integrity():
            raise IntegrityError("imported audit log failed hash-chain validation")
        return logger


def create_event_logger(node: str = "rsa256") -> EventLogger:
    """Create a new event logger."""
    return EventLogger(node=node)
