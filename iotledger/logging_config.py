"""
Logging configuration for iotledger.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .security import sanitize_for_logging

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for ledger audit events.

    Records registrations, submissions (accepted and rejected), authority
    changes and security-relevant denials.
    """

    def __init__(self, name: str = "iotledger.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def device_registered(
        self,
        id_hash: str,
        owner: str,
        metadata: Dict[str, Any]
    ) -> None:
        self._log(
            logging.INFO,
            "DEVICE_REGISTERED",
            id_hash=id_hash,
            owner=owner,
            metadata=sanitize_for_logging(metadata),
            message=f"Device {id_hash[:12]} registered"
        )

    def registration_rejected(
        self,
        id_hash: Optional[str],
        caller: str,
        reason: str
    ) -> None:
        self._log(
            logging.WARNING,
            "REGISTRATION_REJECTED",
            id_hash=id_hash,
            caller=caller,
            reason=reason,
            message=f"Registration rejected: {reason}"
        )

    def submission_accepted(
        self,
        record_id: int,
        device_id_hash: str,
        data_hash: str,
        analytics_type: int
    ) -> None:
        self._log(
            logging.INFO,
            "SUBMISSION_ACCEPTED",
            record_id=record_id,
            device_id_hash=device_id_hash,
            data_hash=data_hash,
            analytics_type=analytics_type,
            message=f"Record {record_id} stored"
        )

    def submission_rejected(
        self,
        device_id_hash: str,
        caller: str,
        reason: str
    ) -> None:
        self._log(
            logging.WARNING,
            "SUBMISSION_REJECTED",
            device_id_hash=device_id_hash,
            caller=caller,
            reason=reason,
            message=f"Submission rejected: {reason}"
        )

    def proof_stored(
        self,
        proof_id: int,
        record_id: int,
        proof_hash: str,
        is_valid: bool
    ) -> None:
        self._log(
            logging.INFO,
            "PROOF_STORED",
            proof_id=proof_id,
            record_id=record_id,
            proof_hash=proof_hash,
            is_valid=is_valid,
            message=f"Proof {proof_id} filed for record {record_id}"
        )

    def authority_changed(
        self,
        field: str,
        previous: Any,
        new: Any,
        caller: str
    ) -> None:
        self._log(
            logging.INFO,
            "AUTHORITY_CHANGED",
            field=field,
            previous=previous,
            new=new,
            caller=caller,
            message=f"{field} changed"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
