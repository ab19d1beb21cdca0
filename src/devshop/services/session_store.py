"""Session store implementations with state persistence."""

import copy
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Tuple

import aiofiles

from devshop.services.interfaces.session_store import ISessionStore, RecordNotFound


logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = "1.0"


class FileSessionStore(ISessionStore):
    """Stores one JSON document per session, holding every key's record."""

    def __init__(self, storage_path: str = "~/.devshop/sessions"):
        """Initialize file store.

        Args:
            storage_path: Directory for session documents
        """
        self.logger = logging.getLogger(__name__)
        self.storage_path = Path(storage_path).expanduser()
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _session_file(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.storage_path / f"{session_id}.json"

    async def _read_document(self, session_id: str) -> Optional[Dict[str, Any]]:
        session_file = self._session_file(session_id)
        if not session_file.exists():
            return None

        async with aiofiles.open(session_file, 'r') as f:
            content = await f.read()
        return json.loads(content)

    async def get(self, session_id: str, key: str) -> Dict[str, Any]:
        document = await self._read_document(session_id)
        if document is None or key not in document.get("records", {}):
            raise RecordNotFound(session_id, key)
        return document["records"][key]

    async def set(self, session_id: str, key: str, record: Dict[str, Any]) -> None:
        document = await self._read_document(session_id) or {"records": {}}
        document["records"][key] = record
        document["saved_at"] = datetime.now(timezone.utc).isoformat()
        document["version"] = STORE_FORMAT_VERSION

        async with aiofiles.open(self._session_file(session_id), 'w') as f:
            await f.write(json.dumps(document, indent=2, default=str))

        self.logger.debug(f"Saved '{key}' record for session {session_id}")

    async def list_sessions(self) -> List[str]:
        if not self.storage_path.exists():
            return []
        return sorted(f.stem for f in self.storage_path.glob("*.json"))

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session document. Returns False if it did not exist."""
        session_file = self._session_file(session_id)
        if not session_file.exists():
            return False
        session_file.unlink()
        self.logger.info(f"Deleted session {session_id}")
        return True


class InMemorySessionStore(ISessionStore):
    """Process-local store, used for ephemeral sessions and tests."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, session_id: str, key: str) -> Dict[str, Any]:
        try:
            return copy.deepcopy(self._records[session_id][key])
        except KeyError:
            raise RecordNotFound(session_id, key)

    async def set(self, session_id: str, key: str, record: Dict[str, Any]) -> None:
        self._records.setdefault(session_id, {})[key] = copy.deepcopy(record)

    async def list_sessions(self) -> List[str]:
        return sorted(self._records)


class CachedSessionStore(ISessionStore):
    """Two-tier store: writes land in memory and reach the backing store on flush.

    Reads are served from the cache when present. Nothing is durable until
    ``flush`` returns.
    """

    def __init__(self, backing_store: ISessionStore):
        self.logger = logging.getLogger(__name__)
        self.backing_store = backing_store
        self._cache: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._dirty: Set[Tuple[str, str]] = set()

    async def get(self, session_id: str, key: str) -> Dict[str, Any]:
        cache_key = (session_id, key)
        if cache_key not in self._cache:
            self._cache[cache_key] = await self.backing_store.get(session_id, key)
        return copy.deepcopy(self._cache[cache_key])

    async def set(self, session_id: str, key: str, record: Dict[str, Any]) -> None:
        cache_key = (session_id, key)
        self._cache[cache_key] = copy.deepcopy(record)
        self._dirty.add(cache_key)

    async def exists(self, session_id: str, key: str) -> bool:
        if (session_id, key) in self._cache:
            return True
        return await self.backing_store.exists(session_id, key)

    async def flush(self, session_id: Optional[str] = None) -> None:
        pending = sorted(
            cache_key for cache_key in self._dirty
            if session_id is None or cache_key[0] == session_id
        )

        for cache_key in pending:
            await self.backing_store.set(cache_key[0], cache_key[1], self._cache[cache_key])
            self._dirty.discard(cache_key)

        await self.backing_store.flush(session_id)

        if pending:
            self.logger.debug(f"Flushed {len(pending)} cached records")

    @property
    def pending_writes(self) -> int:
        return len(self._dirty)

    def evict(self, session_id: str) -> None:
        """Drop clean cache entries for a session."""
        for cache_key in [k for k in self._cache if k[0] == session_id and k not in self._dirty]:
            del self._cache[cache_key]

    async def list_sessions(self) -> List[str]:
        cached = {cache_key[0] for cache_key in self._cache}
        return sorted(cached.union(await self.backing_store.list_sessions()))
