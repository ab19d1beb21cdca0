"""Request and response shapes exchanged with conversational agents."""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field

from devshop.models.conversation import ConversationState, WorkItem


class AgentContext(BaseModel):
    """Context passed to an agent for one invocation."""

    session_id: str = Field(..., description="Session being advanced")
    repo_owner: str = Field(..., description="Repository owner")
    repo_name: str = Field(..., description="Repository name")
    user_input: Optional[str] = Field(None, description="Latest user input, absent for the opening turn")
    initial_prompt: Optional[str] = Field(None, description="Seed describing the repository")
    history: List[Dict[str, Any]] = Field(default_factory=list, description="Turns visible to this agent")
    state: ConversationState = Field(default=ConversationState.GATHERING)
    proposed_issues: List[WorkItem] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_repository(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"


class AgentStartResult(BaseModel):
    """Result of opening a conversation."""

    response: str
    cost: float = Field(default=0.0, ge=0.0)
    tokens_used: int = Field(default=0, ge=0)
    turn_count: int = Field(default=0, ge=0)


class AgentTurnResult(BaseModel):
    """Result of continuing a conversation with the latest user input."""

    response: str
    turn_cost: float = Field(default=0.0, ge=0.0)
    tokens_used: int = Field(default=0, ge=0)
    total_cost: Optional[float] = Field(None, ge=0.0, description="Agent-side running total, informational")
    turn_count: Optional[int] = Field(None, ge=0)
    state: Optional[ConversationState] = Field(None, description="State the agent believes the conversation is in")
    proposed_items: Optional[List[WorkItem]] = Field(None, description="Draft issues when the agent is proposing")


class CreatedIssue(BaseModel):
    """Issue created during finalization."""

    number: int
    title: str
    url: Optional[str] = None


class FinalizeResult(BaseModel):
    """Result of turning proposed items into persisted deliverables."""

    created_issues: List[CreatedIssue] = Field(default_factory=list)
    duplicates_found: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)
    tokens_used: int = Field(default=0, ge=0)
    conversation_turns: int = Field(default=0, ge=0)
