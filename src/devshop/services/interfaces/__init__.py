"""Interfaces for the collaborators consumed by the orchestration engine."""

from .session_store import ISessionStore, RecordNotFound
from .agent import IConversationalAgent
from .interaction_logger import IInteractionLogger

__all__ = [
    "ISessionStore",
    "RecordNotFound",
    "IConversationalAgent",
    "IInteractionLogger",
]
