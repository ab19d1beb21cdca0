"""Abstract interface for the interaction audit sink."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IInteractionLogger(ABC):
    """Interface for fire-and-forget interaction logging."""

    @abstractmethod
    async def log_interaction(
        self,
        type: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record one interaction. Failures must not affect the caller's flow."""
        pass
