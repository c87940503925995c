"""
Audit: journal append-only des événements licences et modules.
"""
from .interfaces import (
    SUBSCRIPTION_EVENT_TYPES,
    AuditEvent,
    AuditEventType,
    AuditQuery,
    AuditSeverity,
    IAuditSink,
    PurgeResult,
)
from .audit_sink import AuditSink, AuditSinkError

__all__ = [
    # Interfaces
    "IAuditSink",
    # Data classes
    "AuditEvent",
    "AuditQuery",
    "PurgeResult",
    # Enums
    "AuditEventType",
    "AuditSeverity",
    "SUBSCRIPTION_EVENT_TYPES",
    # Implementations
    "AuditSink",
    # Exceptions
    "AuditSinkError",
]
