# Core Module - Shared Utilities
#
# Audit logging shared by every vault component.

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
)

__all__ = [
    "AuditLogger",
    "EventType",
    "EventSeverity",
]
