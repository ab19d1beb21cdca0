"""Turn model for the append-only conversation history."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Speaker(str, Enum):
    """Who produced a turn."""

    USER = "user"
    BA = "ba"
    TL = "tl"
    SYSTEM = "system"


AGENT_SPEAKERS = (Speaker.BA, Speaker.TL)


class HandoffDescriptor(BaseModel):
    """Transfer of the active agent from one role to another."""

    model_config = ConfigDict(populate_by_name=True)

    from_agent: str = Field(..., alias="from", pattern="^(ba|tl)$", description="Previously active agent")
    to_agent: str = Field(..., alias="to", pattern="^(ba|tl)$", description="Newly active agent")
    reason: str = Field(default="", description="Why the handoff happened")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the handoff was recorded"
    )


class Turn(BaseModel):
    """
    One recorded exchange unit in a conversation.

    Sequence numbers start at 1 and increase by exactly one per appended turn.
    """

    turn: int = Field(..., ge=1, description="1-based sequence number")
    speaker: Speaker = Field(..., description="user, ba, tl or system")
    message: str = Field(..., description="Clean message content")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the turn was recorded"
    )
    cost: float = Field(default=0.0, ge=0.0, description="Cost attributed to this turn")
    tokens: int = Field(default=0, ge=0, description="Tokens attributed to this turn")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Handoff or fallback descriptors")

    @field_validator('message')
    @classmethod
    def strip_message(cls, v):
        """Store messages without surrounding whitespace."""
        return v.strip()

    @property
    def is_agent_turn(self) -> bool:
        return self.speaker in AGENT_SPEAKERS

    @property
    def handoff(self) -> Optional[HandoffDescriptor]:
        """Handoff carried by a system turn, if any."""
        data = self.metadata.get("handoff")
        return HandoffDescriptor.model_validate(data) if data else None

    def is_visible_to(self, agent: str) -> bool:
        """Whether an agent should see this turn when its context is built.

        Agents see user and system turns plus the other agent's output,
        never their own prior replies.
        """
        if self.speaker in (Speaker.USER, Speaker.SYSTEM):
            return True
        return self.speaker.value != agent

    def to_chat_format(self) -> Dict[str, Any]:
        """Convert to the chat message shape handed to agents."""
        return {
            "turn": self.turn,
            "speaker": self.speaker.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat()
        }
