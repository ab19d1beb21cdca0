"""Conversation state machine with whole-document persistence."""

import logging
from typing import Dict, Any, Iterator, List, Optional

from devshop.lib.errors import ConversationNotFound, MultiAgentDisabled
from devshop.models.budget import BudgetSnapshot
from devshop.models.conversation import (
    CollaborationState,
    ConversationKind,
    ConversationRecord,
    ConversationState,
    WorkItem,
)
from devshop.models.turn import HandoffDescriptor, Speaker, Turn
from devshop.services.interfaces.session_store import ISessionStore, RecordNotFound


logger = logging.getLogger(__name__)

CONVERSATION_KEY = "conversation"


class TurnHistory:
    """Lazy, restartable view over a conversation's turns.

    Each iteration starts from the first turn again; filtering happens while
    iterating.
    """

    def __init__(self, turns: List[Turn], for_agent: Optional[str] = None):
        self._turns = turns
        self.for_agent = for_agent

    def __iter__(self) -> Iterator[Turn]:
        for turn in self._turns:
            if self.for_agent is None or turn.is_visible_to(self.for_agent):
                yield turn

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def latest(self, limit: int) -> List[Turn]:
        """The most recent ``limit`` visible turns, oldest first."""
        if limit <= 0:
            raise ValueError("Limit must be positive")
        return list(self)[-limit:]

    def to_chat_format(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        turns = self.latest(limit) if limit else list(self)
        return [turn.to_chat_format() for turn in turns]


class ConversationManager:
    """Owns turn history, conversation state, proposed items, budget snapshot
    and multi-agent routing for every session.

    Every mutation loads the full record, applies the change and writes the
    whole record back, so concurrent budget extensions are never clobbered.
    """

    def __init__(self, store: ISessionStore, state_key: str = CONVERSATION_KEY):
        """Initialize the manager.

        Args:
            store: Persistence service holding one record per session
            state_key: Key the conversation record lives under
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.state_key = state_key

    async def initialize_conversation(
        self,
        session_id: str,
        repo_owner: str,
        repo_name: str,
        kind: ConversationKind,
        budget: BudgetSnapshot
    ) -> ConversationRecord:
        """Create the record for a new session in the gathering state."""
        record = ConversationRecord(
            session_id=session_id,
            repo_owner=repo_owner,
            repo_name=repo_name,
            kind=ConversationKind(kind),
            token_budget=budget
        )

        await self._save(record)

        self.logger.info(f"Initialized {record.kind.value} conversation {session_id} for {record.repo}")
        return record

    async def conversation_exists(self, session_id: str) -> bool:
        return await self.store.exists(session_id, self.state_key)

    async def get_conversation(self, session_id: str) -> ConversationRecord:
        """Load the full record.

        Raises:
            ConversationNotFound: If the session was never initialized
        """
        try:
            data = await self.store.get(session_id, self.state_key)
        except RecordNotFound:
            raise ConversationNotFound(session_id)
        return ConversationRecord.model_validate(data)

    async def append_turn(
        self,
        session_id: str,
        speaker: Speaker,
        message: str,
        cost: float = 0.0,
        tokens: int = 0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Turn:
        """Append a turn and persist. Allowed on finalized conversations for audit."""
        record = await self.get_conversation(session_id)
        turn = record.append_turn(speaker, message, cost=cost, tokens=tokens, metadata=metadata)
        await self._save(record)
        return turn

    async def transition_to(
        self,
        session_id: str,
        new_state: ConversationState,
        reason: Optional[str] = None
    ) -> ConversationState:
        """Move to ``new_state`` if allowed.

        Raises:
            InvalidStateTransition: If the move is not in the allowed set;
                the persisted state is left unchanged
        """
        record = await self.get_conversation(session_id)
        if record.transition_to(new_state, reason):
            await self._save(record)
            self.logger.info(f"Conversation {session_id} moved to {record.state.value}")
        return record.state

    async def set_proposed_items(self, session_id: str, items: List[WorkItem]) -> ConversationRecord:
        """Replace proposed items and force ready_to_finalize."""
        record = await self.get_conversation(session_id)
        record.replace_proposed_items([WorkItem.model_validate(item) for item in items])
        await self._save(record)
        return record

    async def get_proposed_items(self, session_id: str) -> List[WorkItem]:
        record = await self.get_conversation(session_id)
        return list(record.proposed_issues)

    async def finalize(self, session_id: str) -> ConversationRecord:
        """Move to the terminal state.

        Raises:
            NotReadyToFinalize: Unless the state is proposing or ready_to_finalize
        """
        record = await self.get_conversation(session_id)
        record.finalize()
        await self._save(record)
        self.logger.info(f"Conversation {session_id} finalized with {len(record.proposed_issues)} items")
        return record

    async def record_handoff(
        self,
        session_id: str,
        from_agent: str,
        to_agent: str,
        reason: str,
        context: Optional[Dict[str, Any]] = None
    ) -> Turn:
        """Record a transfer of the active agent as a system turn."""
        record = await self.get_conversation(session_id)
        if record.multi_agent is None:
            raise MultiAgentDisabled(session_id)

        handoff = HandoffDescriptor(from_agent=from_agent, to_agent=to_agent, reason=reason)
        metadata: Dict[str, Any] = {"handoff": handoff.model_dump(mode="json", by_alias=True)}
        if context:
            metadata["context"] = context

        turn = record.append_turn(
            Speaker.SYSTEM,
            f"Handoff from {from_agent} to {to_agent}: {reason}",
            metadata=metadata
        )

        record.multi_agent.active_agent = to_agent
        record.multi_agent.handoff_count += 1
        record.multi_agent.last_handoff = handoff

        await self._save(record)
        self.logger.info(f"Recorded handoff {from_agent} -> {to_agent} in {session_id}")
        return turn

    async def record_fallback(
        self,
        session_id: str,
        from_agent: str,
        to_agent: str,
        cause: str
    ) -> Turn:
        """Record that ``from_agent`` failed and ``to_agent`` takes the same input.

        In multi-agent conversations the fallback agent becomes active; the
        handoff counter only tracks user or agent initiated switches.
        """
        record = await self.get_conversation(session_id)
        turn = record.append_turn(
            Speaker.SYSTEM,
            f"{from_agent} is unavailable, continuing with {to_agent}: {cause}",
            metadata={"fallback": {"from": from_agent, "to": to_agent, "cause": cause}}
        )
        if record.multi_agent is not None:
            record.multi_agent.active_agent = to_agent

        await self._save(record)
        self.logger.warning(f"Agent {from_agent} failed in {session_id}, fell back to {to_agent}: {cause}")
        return turn

    async def escalate(self, session_id: str, reason: str) -> Turn:
        """Mark BA/TL collaboration as escalated beyond the normal flow."""
        record = await self.get_conversation(session_id)
        if record.multi_agent is None:
            raise MultiAgentDisabled(session_id)

        record.multi_agent.collaboration_state = CollaborationState.ESCALATED
        turn = record.append_turn(
            Speaker.SYSTEM,
            f"Collaboration escalated: {reason}",
            metadata={"escalation": {"reason": reason}}
        )
        await self._save(record)
        return turn

    async def get_active_agent(self, session_id: str) -> str:
        """Active agent; always 'ba' for single-agent conversations."""
        record = await self.get_conversation(session_id)
        return record.multi_agent.active_agent if record.multi_agent else Speaker.BA.value

    async def history(self, session_id: str, for_agent: Optional[str] = None) -> TurnHistory:
        record = await self.get_conversation(session_id)
        return TurnHistory(record.history, for_agent=for_agent)

    async def get_conversation_history(self, session_id: str) -> List[Turn]:
        record = await self.get_conversation(session_id)
        return list(record.history)

    async def save_budget(self, session_id: str, snapshot: BudgetSnapshot) -> None:
        record = await self.get_conversation(session_id)
        record.token_budget = snapshot
        await self._save(record)

    async def load_budget(self, session_id: str) -> BudgetSnapshot:
        record = await self.get_conversation(session_id)
        return record.token_budget

    async def get_conversation_context(self, session_id: str) -> Dict[str, Any]:
        record = await self.get_conversation(session_id)
        return record.to_context()

    async def _save(self, record: ConversationRecord) -> None:
        await self.store.set(
            record.session_id,
            self.state_key,
            record.model_dump(mode="json", by_alias=True)
        )
        await self.store.flush(record.session_id)
