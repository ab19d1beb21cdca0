"""Shared fixtures: in-memory stores and scripted conversational agents."""

import asyncio
from typing import List, Optional

import pytest

from devshop.lib.config import BudgetConfig, DevShopConfig, SessionConfig
from devshop.models.agent_result import (
    AgentContext,
    AgentStartResult,
    AgentTurnResult,
    CreatedIssue,
    FinalizeResult,
)
from devshop.models.budget import BudgetSnapshot
from devshop.models.conversation import ConversationState, WorkItem
from devshop.services.conversation_manager import ConversationManager
from devshop.services.interfaces.agent import IConversationalAgent
from devshop.services.session_store import InMemorySessionStore


class ScriptedAgent(IConversationalAgent):
    """Agent double with configurable cost, failures and reported state."""

    def __init__(
        self,
        role: str,
        cost: float = 0.01,
        tokens: int = 100,
        fail: bool = False,
        delay: float = 0.0,
        state: Optional[ConversationState] = None,
        proposed_items: Optional[List[WorkItem]] = None
    ):
        self.role = role
        self.cost = cost
        self.tokens = tokens
        self.fail = fail
        self.delay = delay
        self.state = state
        self.proposed_items = proposed_items
        self.calls: List[tuple] = []

    async def _before(self, method: str, context: AgentContext) -> None:
        self.calls.append((method, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{self.role} backend unavailable")

    async def start_conversation(self, context: AgentContext) -> AgentStartResult:
        await self._before("start_conversation", context)
        return AgentStartResult(
            response=f"{self.role} here, tell me about {context.get_repository()}",
            cost=self.cost,
            tokens_used=self.tokens,
            turn_count=1
        )

    async def continue_conversation(self, context: AgentContext) -> AgentTurnResult:
        await self._before("continue_conversation", context)
        return AgentTurnResult(
            response=f"{self.role} answer to: {context.user_input}",
            turn_cost=self.cost,
            tokens_used=self.tokens,
            state=self.state,
            proposed_items=self.proposed_items
        )

    async def finalize_conversation(self, context: AgentContext) -> FinalizeResult:
        await self._before("finalize_conversation", context)
        return FinalizeResult(
            created_issues=[
                CreatedIssue(number=index, title=item.title, url=f"https://github.com/acme/shop/issues/{index}")
                for index, item in enumerate(context.proposed_issues, start=1)
            ],
            tokens_used=self.tokens,
            conversation_turns=len(context.history)
        )

    def count(self, method: str) -> int:
        return sum(1 for called, _ in self.calls if called == method)


@pytest.fixture
def make_agent():
    """Factory for scripted agents."""
    return ScriptedAgent


@pytest.fixture
def store():
    """Process-local session store."""
    return InMemorySessionStore()


@pytest.fixture
def conversation_manager(store):
    """Conversation manager over the in-memory store."""
    return ConversationManager(store)


@pytest.fixture
def budget_snapshot():
    """Default budget snapshot: 10,000 tokens and $5.00."""
    return BudgetSnapshot(initial_tokens=10000, initial_cost=5.0)


@pytest.fixture
def devshop_config(tmp_path):
    """Configuration with storage under a temporary directory."""
    return DevShopConfig(
        budget=BudgetConfig(),
        session=SessionConfig(storage_directory=str(tmp_path / "sessions"))
    )
