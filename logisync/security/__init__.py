"""
Security module - Audit trail for authentication events.
"""

from logisync.security.audit import (
    TamperAwareAuditLog,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    "TamperAwareAuditLog",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
]
