"""
DevShop Services.

Budget tracking, conversation state, agent routing, session lifecycle and
the orchestrator that ties them together.
"""

from .budget_tracker import BudgetTracker
from .conversation_manager import ConversationManager, TurnHistory
from .agent_router import AgentRouter, ExplicitCommand, RoutingDecision, InvocationOutcome
from .session_lifecycle import SessionLifecycleManager, SessionHandle, LegacySessionView
from .session_store import FileSessionStore, InMemorySessionStore, CachedSessionStore
from .interaction_logger import AuditInteractionLogger, JsonlInteractionLogger
from .conversation_orchestrator import ConversationOrchestrator, TurnOutcome

__all__ = [
    "BudgetTracker",
    "ConversationManager",
    "TurnHistory",
    "AgentRouter",
    "ExplicitCommand",
    "RoutingDecision",
    "InvocationOutcome",
    "SessionLifecycleManager",
    "SessionHandle",
    "LegacySessionView",
    "FileSessionStore",
    "InMemorySessionStore",
    "CachedSessionStore",
    "AuditInteractionLogger",
    "JsonlInteractionLogger",
    "ConversationOrchestrator",
    "TurnOutcome",
]
