"""
Tamper-Aware Audit Log
======================

Append-only audit trail of authentication events with chained hashes.

Entries never contain passwords, password hashes or reset tokens.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


class AuditSeverity(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AuditEventType(Enum):
    """Auditable authentication events."""
    USER_REGISTERED = "USER_REGISTERED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    VERIFICATION_REQUESTED = "VERIFICATION_REQUESTED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"


@dataclass
class AuditEvent:
    """An auditable security event."""
    event_type: AuditEventType
    severity: AuditSeverity
    timestamp: datetime
    owner_id: Optional[str] = None
    ip_address: Optional[str] = None
    description: str = ""
    details: Dict = field(default_factory=dict)

    event_id: str = field(default="")
    previous_hash: str = field(default="")
    event_hash: str = field(default="")

    def __post_init__(self):
        if not self.event_id:
            self.event_id = hashlib.sha256(
                f"{self.timestamp.isoformat()}{self.event_type.value}{os.urandom(8).hex()}".encode()
            ).hexdigest()[:16]

    def _payload(self) -> Dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "owner_id": self.owner_id,
            "ip_address": self.ip_address,
            "description": self.description,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }

    def compute_hash(self, previous_hash: str) -> str:
        """Compute event hash for chain integrity."""
        self.previous_hash = previous_hash
        self.event_hash = hashlib.sha256(
            json.dumps(self._payload(), sort_keys=True, default=str).encode()
        ).hexdigest()
        return self.event_hash

    def to_dict(self) -> Dict:
        data = self._payload()
        data["event_hash"] = self.event_hash
        return data


def _compute_stored_hash(event: Dict) -> str:
    payload = {k: v for k, v in event.items() if k != "event_hash"}
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()


class TamperAwareAuditLog:
    """
    Append-only audit log with tamper detection.

    Features:
    - Chained SHA-256 hashes, recomputed on verification
    - Thread-safe appends
    - JSON Lines format
    """

    def __init__(
        self,
        log_path: Path,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._log_path = Path(log_path)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_hash = GENESIS_HASH
        self._event_count = 0

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._load_chain()

    @property
    def event_count(self) -> int:
        return self._event_count

    def _load_chain(self) -> None:
        """Resume the chain from the last entry on disk."""
        if not self._log_path.exists():
            return

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping unreadable audit entry in %s", self._log_path)
                    continue
                self._last_hash = event.get("event_hash", self._last_hash)
                self._event_count += 1

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        description: str,
        owner_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict] = None,
    ) -> str:
        """
        Append an audit event.

        Returns:
            Event ID
        """
        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            timestamp=self._clock(),
            owner_id=owner_id,
            ip_address=ip_address,
            description=description,
            details=details or {},
        )

        with self._lock:
            event.compute_hash(self._last_hash)

            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())

            self._last_hash = event.event_hash
            self._event_count += 1

        return event.event_id

    def verify_integrity(self) -> tuple[bool, int]:
        """
        Verify the hash chain.

        Returns:
            Tuple of (is_valid, number of events verified before the first break)
        """
        if not self._log_path.exists():
            return True, 0

        previous_hash = GENESIS_HASH
        count = 0

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    return False, count

                if event.get("previous_hash") != previous_hash:
                    return False, count
                if _compute_stored_hash(event) != event.get("event_hash"):
                    return False, count

                previous_hash = event["event_hash"]
                count += 1

        return True, count

    def get_events(
        self,
        since: Optional[datetime] = None,
        event_type: Optional[AuditEventType] = None,
        owner_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict]:
        """Get filtered events (read-only)."""
        events: List[Dict] = []

        if not self._log_path.exists():
            return events

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if since and datetime.fromisoformat(event["timestamp"]) < since:
                    continue
                if event_type and event["event_type"] != event_type.value:
                    continue
                if owner_id and event.get("owner_id") != owner_id:
                    continue

                events.append(event)
                if len(events) >= limit:
                    break

        return events
