"""
Structured logging for DevShop.

JSON log lines correlated with the active OpenTelemetry span, plus an audit
logger for session, agent, handoff and budget events.
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional, Union

from opentelemetry import trace

from devshop.lib.config import LoggingConfig


# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

AUDIT_LOGGER_NAME = "devshop.audit"


class StructuredFormatter(logging.Formatter):
    """Renders each record as one JSON object."""

    def __init__(self, include_trace: bool = True, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.include_trace = include_trace
        self.extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if self.include_trace:
            entry.update(self._trace_fields())
        if record.exc_info:
            entry["exception"] = self._exception_fields(record)

        entry.update({
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        })
        entry.update(self.extra_fields)

        return json.dumps(entry, ensure_ascii=False, default=str)

    @staticmethod
    def _trace_fields() -> Dict[str, str]:
        span = trace.get_current_span()
        if not span.is_recording():
            return {}
        context = span.get_span_context()
        return {
            "trace_id": trace.format_trace_id(context.trace_id),
            "span_id": trace.format_span_id(context.span_id),
        }

    def _exception_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        exc_type, exc_value, _ = record.exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "traceback": self.formatException(record.exc_info),
        }


class AuditLogger:
    """Emits audit events as log records whose fields are record attributes."""

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME):
        self.logger = logging.getLogger(logger_name)

    def _emit(self, level: int, message: str, audit_type: str, **fields) -> None:
        fields["metadata"] = fields.get("metadata") or {}
        self.logger.log(level, message, extra={"audit_type": audit_type, **fields})

    def log_session_event(
        self,
        event_type: str,
        session_id: str,
        agent_id: Optional[str] = None,
        action: Optional[str] = None,
        result: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Session created, resumed, finalized, or an interaction inside it."""
        self._emit(
            logging.INFO, f"Session {session_id}: {event_type}", "session",
            event_type=event_type, session_id=session_id, agent_id=agent_id,
            action=action, result=result, metadata=metadata
        )

    def log_agent_event(
        self,
        event_type: str,
        agent_id: str,
        action: str,
        result: str,
        session_id: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        cost_usd: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        level = logging.INFO if result == "success" else logging.WARNING
        self._emit(
            level, f"Agent {agent_id} {action}: {result}", "agent",
            event_type=event_type, agent_id=agent_id, session_id=session_id,
            action=action, result=result, execution_time_ms=execution_time_ms,
            cost_usd=cost_usd, metadata=metadata
        )

    def log_handoff_event(
        self,
        session_id: str,
        from_agent: str,
        to_agent: str,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        self._emit(
            logging.INFO, f"Active agent {from_agent} -> {to_agent}", "handoff",
            session_id=session_id, from_agent=from_agent, to_agent=to_agent,
            reason=reason, metadata=metadata
        )

    def log_budget_event(
        self,
        event_type: str,
        session_id: str,
        tokens: int,
        cost_usd: float,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Extensions and exhaustion; logged at WARNING so they survive quiet levels."""
        self._emit(
            logging.WARNING, f"Budget {event_type} for {session_id}", "budget",
            event_type=event_type, session_id=session_id, tokens=tokens,
            cost_usd=cost_usd, reason=reason, metadata=metadata
        )


def _rotating_file(path: Path, level: str, max_bytes: int, backups: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "json",
        "filename": str(path),
        "maxBytes": max_bytes,
        "backupCount": backups,
        "encoding": "utf-8",
    }


def setup_logging(config: Union[LoggingConfig, Dict[str, Any]]) -> None:
    """Install console, application and audit handlers via ``dictConfig``.

    Application records go to ``orchestrator.log``; audit records go only to
    ``audit.jsonl`` in the same directory.
    """
    if isinstance(config, dict):
        config = LoggingConfig.model_validate({**config, "level": config.get("level", "INFO").upper()})

    log_dir = Path(config.directory).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    app_handlers = ["stderr", "app_log"]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": StructuredFormatter,
                "include_trace": config.include_trace,
                "extra_fields": {"service": "devshop-orchestrator", "environment": config.environment},
            },
            "plain": {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"},
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "level": config.level,
                "formatter": "json" if config.format == "structured" else "plain",
                "stream": sys.stderr,
            },
            "app_log": _rotating_file(
                log_dir / "orchestrator.log", config.level, config.max_file_size, config.backup_count
            ),
            "audit_log": _rotating_file(
                log_dir / "audit.jsonl", "INFO", config.max_file_size, config.backup_count * 2
            ),
        },
        "loggers": {
            "devshop": {"level": config.level, "handlers": app_handlers, "propagate": False},
            AUDIT_LOGGER_NAME: {"level": "INFO", "handlers": ["audit_log"], "propagate": False},
            "opentelemetry": {"level": "WARNING", "handlers": app_handlers, "propagate": False},
        },
        "root": {"level": config.level, "handlers": ["stderr"]},
    })

    logging.getLogger(__name__).debug(
        f"Logging configured at {config.level} ({config.format}) under {log_dir}"
    )


def get_audit_logger() -> AuditLogger:
    return AuditLogger()
