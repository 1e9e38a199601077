# Audit Logging
#
# Append-only audit trail for vault security events (unlock, lock, document
# access, cascade deletes). Structured JSON lines, one file per day.
# Never pass key material, passwords or decrypted content in details.

import hashlib
import logging
import os
import socket
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""

    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_PASSWORD_CHANGED = "vault.password.changed"
    VAULT_ERROR = "vault.error"

    RECORD_DELETED = "record.deleted"

    DOCUMENT_SAVED = "document.saved"
    DOCUMENT_ACCESSED = "document.accessed"
    DOCUMENT_DELETED = "document.deleted"
    THUMBNAIL_REGENERATED = "thumbnail.regenerated"

    INTEGRITY_CHECKED = "integrity.checked"
    ORPHANS_PURGED = "integrity.orphans.purged"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity
    - ALERT: Something the user should know about (failed unlock, tampering)
    - CRITICAL: Data may be lost or unreadable
    """
    INFO = "info"
    ALERT = "alert"
    CRITICAL = "critical"

    def to_log_level(self) -> int:
        return {
            EventSeverity.INFO: logging.INFO,
            EventSeverity.ALERT: logging.WARNING,
            EventSeverity.CRITICAL: logging.ERROR,
        }[self]


_structlog_configured = False


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def _configure_structlog():
    global _structlog_configured
    if _structlog_configured:
        return
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _structlog_configured = True


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging via structlog
    - Automatic timestamp and event ID
    - OS user / host context capture
    - Daily file, rolled over on the first event of a new day
    - One stdlib logger and file handler per instance, so several vaults
      in one process keep separate trails and close() never affects another
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir or "./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        _configure_structlog()

        digest = hashlib.sha256(str(self.log_dir.resolve()).encode("utf-8")).hexdigest()[:12]
        self._logger_name = f"personal_vault.audit.{digest}.{uuid4().hex[:8]}"
        self._file_handler: Optional[logging.Handler] = None
        self._current_day: Optional[str] = None
        self._setup_file_handler()

        self.logger = structlog.get_logger(self._logger_name)

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"audit_{self._current_day}.log"

    def _setup_file_handler(self):
        """Attach today's log file to this instance's stdlib logger."""
        self._current_day = _today()

        std_logger = logging.getLogger(self._logger_name)
        std_logger.setLevel(logging.INFO)
        std_logger.propagate = False

        file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))  # structlog handles formatting
        std_logger.addHandler(file_handler)
        self._file_handler = file_handler

    def _roll_over_if_needed(self):
        if self._file_handler is not None and self._current_day == _today():
            return
        self.close()
        self._setup_file_handler()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event (append-only).

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "details": details or {},
            "user_context": self._get_default_user_context(),
        }

        self._roll_over_if_needed()
        self.logger.log(severity.to_log_level(), "vault_event", **event_data)
        return event_id

    def close(self):
        """Detach and close this instance's file handler."""
        if self._file_handler is not None:
            logging.getLogger(self._logger_name).removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, etc.)."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }
