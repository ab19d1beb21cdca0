"""ConversationRecord model with state transitions and validation."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from devshop.lib.errors import InvalidStateTransition, NotReadyToFinalize
from devshop.models.budget import BudgetSnapshot
from devshop.models.turn import Turn, Speaker, HandoffDescriptor


class ConversationState(str, Enum):
    """Progress of a requirements conversation."""

    GATHERING = "gathering"
    CLARIFYING = "clarifying"
    PROPOSING = "proposing"
    READY_TO_FINALIZE = "ready_to_finalize"
    FINALIZED = "finalized"


VALID_TRANSITIONS = {
    ConversationState.GATHERING: [ConversationState.CLARIFYING, ConversationState.PROPOSING],
    ConversationState.CLARIFYING: [ConversationState.GATHERING, ConversationState.PROPOSING],
    ConversationState.PROPOSING: [ConversationState.READY_TO_FINALIZE, ConversationState.GATHERING],
    ConversationState.READY_TO_FINALIZE: [ConversationState.FINALIZED, ConversationState.GATHERING],
    ConversationState.FINALIZED: [],  # Terminal state
}

FINALIZABLE_STATES = (ConversationState.READY_TO_FINALIZE, ConversationState.PROPOSING)


class ConversationKind(str, Enum):
    """Single Business Analyst or BA + Tech Lead conversation."""

    SINGLE = "single"
    MULTI = "multi"


class CollaborationState(str, Enum):
    """Status of BA/TL cooperation in a multi-agent conversation."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ESCALATED = "escalated"


class WorkItem(BaseModel):
    """Draft issue proposed by an agent."""

    title: str = Field(..., min_length=1, max_length=256, description="Issue title")
    body: str = Field(default="", description="Issue description with acceptance criteria")
    labels: List[str] = Field(default_factory=list, description="Labels to apply on creation")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        """Validate title is not blank."""
        if not v.strip():
            raise ValueError("title cannot be empty")
        return v.strip()


class MultiAgentRouting(BaseModel):
    """Routing bookkeeping present only for multi-agent conversations."""

    active_agent: str = Field(default="ba", pattern="^(ba|tl)$", description="Exactly one active agent")
    handoff_count: int = Field(default=0, ge=0)
    last_handoff: Optional[HandoffDescriptor] = None
    collaboration_state: CollaborationState = Field(default=CollaborationState.ACTIVE)


class ConversationRecord(BaseModel):
    """The single persisted document describing one session.

    Owns the turn history, conversation state, proposed work items, budget
    snapshot and, for multi-agent sessions, the routing ledger.
    """

    session_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Opaque session identifier"
    )
    repo_owner: str = Field(..., min_length=1)
    repo_name: str = Field(..., min_length=1)
    kind: ConversationKind = Field(default=ConversationKind.SINGLE)
    state: ConversationState = Field(default=ConversationState.GATHERING)
    history: List[Turn] = Field(default_factory=list, description="Ordered, append-only turns")
    proposed_issues: List[WorkItem] = Field(default_factory=list)
    total_cost: float = Field(default=0.0, ge=0.0)
    turn_count: int = Field(default=0, ge=0)
    token_budget: BudgetSnapshot
    multi_agent: Optional[MultiAgentRouting] = None
    state_transitions: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode='after')
    def validate_constraints(self):
        """Validate cross-field invariants."""
        if self.kind == ConversationKind.MULTI and self.multi_agent is None:
            self.multi_agent = MultiAgentRouting()
        if self.kind == ConversationKind.SINGLE and self.multi_agent is not None:
            raise ValueError("multi_agent routing is only valid for multi-agent conversations")

        for expected, turn in enumerate(self.history, start=1):
            if turn.turn != expected:
                raise ValueError(f"Turn history has a gap: expected turn {expected}, found {turn.turn}")

        if self.turn_count != len(self.history):
            raise ValueError("turn_count does not match history length")

        return self

    @property
    def repo(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @property
    def is_multi_agent(self) -> bool:
        return self.kind == ConversationKind.MULTI

    @property
    def is_finalized(self) -> bool:
        return self.state == ConversationState.FINALIZED

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)

    def can_transition_to(self, new_state: ConversationState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, [])

    def transition_to(self, new_state: ConversationState, reason: Optional[str] = None) -> bool:
        """Transition to a new state with validation.

        Returns False when already in ``new_state``; raises
        InvalidStateTransition for anything outside the allowed table.
        """
        new_state = ConversationState(new_state)
        if new_state == self.state:
            return False

        if not self.can_transition_to(new_state):
            guidance = "conversation is finalized" if self.is_finalized else None
            raise InvalidStateTransition(self.state.value, new_state.value, guidance)

        self._apply_state(new_state, reason)
        return True

    def finalize(self) -> None:
        """Move to the terminal state from proposing or ready_to_finalize."""
        if self.state not in FINALIZABLE_STATES:
            raise NotReadyToFinalize(self.state.value)

        self._apply_state(ConversationState.FINALIZED, "finalized")
        if self.multi_agent is not None:
            self.multi_agent.collaboration_state = CollaborationState.COMPLETED

    def replace_proposed_items(self, items: List[WorkItem]) -> None:
        """Supersede proposed items and force ready_to_finalize."""
        if self.is_finalized:
            raise InvalidStateTransition(
                self.state.value,
                ConversationState.READY_TO_FINALIZE.value,
                "proposed items cannot change after finalization"
            )

        self.proposed_issues = list(items)
        if self.state != ConversationState.READY_TO_FINALIZE:
            self._apply_state(ConversationState.READY_TO_FINALIZE, "issues proposed")

    def append_turn(
        self,
        speaker: Speaker,
        message: str,
        cost: float = 0.0,
        tokens: int = 0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Turn:
        """Append a turn with the next sequence number and update totals."""
        if cost < 0:
            raise ValueError("Cost cannot be negative")

        turn = Turn(
            turn=self.turn_count + 1,
            speaker=Speaker(speaker),
            message=message,
            cost=cost,
            tokens=tokens,
            metadata=metadata or {}
        )

        self.history.append(turn)
        self.turn_count += 1
        self.total_cost += cost
        self.touch()

        return turn

    def _apply_state(self, new_state: ConversationState, reason: Optional[str]) -> None:
        old_state = self.state
        self.state = new_state
        self.touch()
        self.state_transitions.append({
            'from': old_state.value,
            'to': new_state.value,
            'reason': reason,
            'timestamp': self.last_activity.isoformat()
        })

    def to_context(self) -> Dict[str, Any]:
        """Conversation context handed to agents and to resumed sessions."""
        return {
            "session_id": self.session_id,
            "repo": self.repo,
            "kind": self.kind.value,
            "state": self.state.value,
            "history": [turn.to_chat_format() for turn in self.history],
            "turn_count": self.turn_count,
            "total_cost": self.total_cost,
            "proposed_issues": [item.model_dump() for item in self.proposed_issues],
            "multi_agent": self.multi_agent.model_dump(mode="json", by_alias=True) if self.multi_agent else None
        }
