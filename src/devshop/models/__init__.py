"""DevShop Data Models.

This package contains the data models for the conversation orchestration
engine: turns, conversation records, budget snapshots, agent results and
interaction log entries.
"""

from .turn import Turn, Speaker, HandoffDescriptor
from .budget import BudgetExtension, BudgetSnapshot, BudgetStatus
from .conversation import (
    ConversationRecord,
    ConversationState,
    ConversationKind,
    CollaborationState,
    MultiAgentRouting,
    WorkItem,
    VALID_TRANSITIONS,
)
from .agent_result import (
    AgentContext,
    AgentStartResult,
    AgentTurnResult,
    CreatedIssue,
    FinalizeResult,
)
from .interaction_record import InteractionRecord, InteractionType

__all__ = [
    # Turn
    "Turn",
    "Speaker",
    "HandoffDescriptor",
    # Budget
    "BudgetExtension",
    "BudgetSnapshot",
    "BudgetStatus",
    # Conversation
    "ConversationRecord",
    "ConversationState",
    "ConversationKind",
    "CollaborationState",
    "MultiAgentRouting",
    "WorkItem",
    "VALID_TRANSITIONS",
    # Agent results
    "AgentContext",
    "AgentStartResult",
    "AgentTurnResult",
    "CreatedIssue",
    "FinalizeResult",
    # Interaction log
    "InteractionRecord",
    "InteractionType",
]
