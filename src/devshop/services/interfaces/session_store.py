"""Abstract interface for session state persistence.

Defines the ISessionStore contract: one record per (session id, key),
read and written as a whole document.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class RecordNotFound(KeyError):
    """Raised when no record exists for a session id and key."""

    def __init__(self, session_id: str, key: str):
        self.session_id = session_id
        self.key = key
        super().__init__(f"No '{key}' record for session {session_id}")


class ISessionStore(ABC):
    """Interface for the key-value persistence service."""

    @abstractmethod
    async def get(self, session_id: str, key: str) -> Dict[str, Any]:
        """Return the record or raise RecordNotFound."""
        pass

    @abstractmethod
    async def set(self, session_id: str, key: str, record: Dict[str, Any]) -> None:
        """Store the record, replacing any previous one."""
        pass

    async def exists(self, session_id: str, key: str) -> bool:
        """Check whether a record is present."""
        try:
            await self.get(session_id, key)
            return True
        except RecordNotFound:
            return False

    async def flush(self, session_id: Optional[str] = None) -> None:
        """Make pending writes durable. Stores without a cache have nothing to do."""
        return None

    async def list_sessions(self) -> List[str]:
        """Session ids known to the store."""
        return []
