"""Interaction logger implementations for the session audit trail."""

import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import aiofiles

from devshop.lib.logging_config import AuditLogger, get_audit_logger
from devshop.models.interaction_record import InteractionRecord
from devshop.services.interfaces.interaction_logger import IInteractionLogger


logger = logging.getLogger(__name__)


def _agent_role(metadata: Dict[str, Any]) -> str:
    return metadata.get("agent") or metadata.get("agent_role") or "user"


class AuditInteractionLogger(IInteractionLogger):
    """Forwards interactions to the structured ``devshop.audit`` logger."""

    def __init__(self, session_id: Optional[str] = None, audit_logger: Optional[AuditLogger] = None):
        self.session_id = session_id
        self.audit_logger = audit_logger or get_audit_logger()

    async def log_interaction(
        self,
        type: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        metadata = dict(metadata or {})
        session_id = metadata.pop("session_id", None) or self.session_id or "unknown"

        self.audit_logger.log_session_event(
            type,
            session_id,
            agent_id=metadata.get("agent"),
            action="interaction",
            result=content[:200],
            metadata=metadata
        )


class JsonlInteractionLogger(IInteractionLogger):
    """Appends one JSON line per interaction to ``<directory>/<session_id>.jsonl``."""

    def __init__(self, directory: str = "~/.devshop/logs/interactions", session_id: Optional[str] = None):
        """Initialize the JSONL logger.

        Args:
            directory: Directory holding one log file per session
            session_id: Default session for entries whose metadata carries none
        """
        self.logger = logging.getLogger(__name__)
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.session_id = session_id

    def _log_file(self, session_id: Optional[str]) -> Path:
        return self.directory / f"{session_id or 'unassigned'}.jsonl"

    async def log_interaction(
        self,
        type: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        metadata = dict(metadata or {})
        record = InteractionRecord(
            session_id=metadata.pop("session_id", None) or self.session_id,
            type=type,
            content=content,
            agent_role=_agent_role(metadata),
            metadata=metadata
        )

        async with aiofiles.open(self._log_file(record.session_id), 'a') as f:
            await f.write(record.model_dump_json() + "\n")

    async def read_interactions(self, session_id: str) -> List[InteractionRecord]:
        """Read back a session's entries in the order they were written."""
        log_file = self._log_file(session_id)
        if not log_file.exists():
            return []

        async with aiofiles.open(log_file, 'r') as f:
            content = await f.read()

        return [
            InteractionRecord.model_validate(json.loads(line))
            for line in content.splitlines()
            if line.strip()
        ]
