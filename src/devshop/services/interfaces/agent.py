"""Abstract interface for conversational agents.

Both the Business Analyst and the Tech Lead implement IConversationalAgent;
the orchestration engine never depends on how they reach an LLM.
"""

from abc import ABC, abstractmethod

from devshop.models.agent_result import (
    AgentContext,
    AgentStartResult,
    AgentTurnResult,
    FinalizeResult,
)


class IConversationalAgent(ABC):
    """Interface for an agent taking part in a conversation."""

    @abstractmethod
    async def start_conversation(self, context: AgentContext) -> AgentStartResult:
        """Open the conversation from the repository seed."""
        pass

    @abstractmethod
    async def continue_conversation(self, context: AgentContext) -> AgentTurnResult:
        """Respond to the latest user input."""
        pass

    @abstractmethod
    async def finalize_conversation(self, context: AgentContext) -> FinalizeResult:
        """Turn the proposed items into created issues."""
        pass
