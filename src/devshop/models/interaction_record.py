"""InteractionRecord model for the session audit trail."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class InteractionType(str, Enum):
    """Kinds of events written to the interaction log."""

    SESSION_CREATED = "session_created"
    SESSION_RESUMED = "session_resumed"
    USER_INPUT = "user_input"
    AGENT_RESPONSE = "agent_response"
    AGENT_ERROR = "agent_error"
    HANDOFF = "agent_handoff"
    FALLBACK = "agent_fallback"
    BUDGET_EXTENDED = "budget_extended"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FINALIZED = "conversation_finalized"


class InteractionRecord(BaseModel):
    """
    One entry in a session's interaction log.

    Content is kept verbatim; metadata carries routing, cost and token details.
    """

    record_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier for the entry")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the event occurred")
    session_id: Optional[str] = Field(None, description="Session the event belongs to")
    type: str = Field(..., description="Interaction type")
    content: str = Field(default="", description="Interaction content")
    agent_role: str = Field(default="user", description="Role that produced the content")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional event metadata")

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        """Validate type is not empty."""
        if isinstance(v, InteractionType):
            return v.value
        if not v.strip():
            raise ValueError("type cannot be empty")
        return v.strip()
