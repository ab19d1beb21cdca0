"""Session lifecycle: start, resume and the current-session view."""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from devshop.lib.config import DevShopConfig
from devshop.lib.errors import SessionNotFound
from devshop.lib.logging_config import AuditLogger, get_audit_logger
from devshop.models.agent_result import AgentContext
from devshop.models.conversation import ConversationKind, ConversationState
from devshop.models.interaction_record import InteractionType
from devshop.models.turn import Turn
from devshop.services.budget_tracker import BudgetTracker
from devshop.services.conversation_manager import ConversationManager
from devshop.services.interfaces.interaction_logger import IInteractionLogger


logger = logging.getLogger(__name__)


class SessionHandle(BaseModel):
    """The current-session pointer handed to the interactive surface."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str
    repo_owner: str
    repo_name: str
    kind: ConversationKind = ConversationKind.SINGLE
    created_at: Optional[datetime] = None
    budget_tracker: BudgetTracker
    seed_context: AgentContext
    active_agent: str = "ba"

    @property
    def repo(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @property
    def is_multi_agent(self) -> bool:
        return self.kind == ConversationKind.MULTI


class ResumedSession(BaseModel):
    """A rehydrated session with its full history and carried-over totals."""

    handle: SessionHandle
    history: List[Turn] = Field(default_factory=list)
    state: ConversationState
    total_cost: float = 0.0
    turn_count: int = 0
    conversation_context: Dict[str, Any] = Field(default_factory=dict)


class SessionUsage(BaseModel):
    """Usage snapshot for display."""

    total_cost: float = 0.0
    turn_count: int = 0
    session_id: Optional[str] = None


def build_seed_prompt(repo_owner: str, repo_name: str, kind: ConversationKind) -> str:
    """Opening context describing the repository to the first agent."""
    mode = "Business Analyst and Tech Lead" if kind == ConversationKind.MULTI else "Business Analyst"
    return (
        f"Interactive {mode} conversation for repository {repo_owner}/{repo_name}. "
        "Gather requirements from the user and propose well-scoped GitHub issues."
    )


class SessionLifecycleManager:
    """Creates or resumes sessions and exposes a single current session.

    The conversation record is the source of truth; this manager only
    caches the totals shown between turns.
    """

    def __init__(
        self,
        conversation_manager: ConversationManager,
        config: Optional[DevShopConfig] = None,
        interaction_logger: Optional[IInteractionLogger] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.conversation_manager = conversation_manager
        self.config = config or DevShopConfig()
        self.interaction_logger = interaction_logger
        self.audit_logger = audit_logger or get_audit_logger()

        self._current: Optional[SessionHandle] = None
        self.total_cost = 0.0
        self.turn_count = 0

    async def start_new(
        self,
        repo_owner: str,
        repo_name: str,
        kind: ConversationKind = ConversationKind.SINGLE
    ) -> SessionHandle:
        """Allocate a session, persist its initial record and make it current.

        Args:
            repo_owner: Repository owner
            repo_name: Repository name
            kind: Single Business Analyst or BA + Tech Lead

        Returns:
            Handle with the budget tracker at configured defaults and the seed context
        """
        kind = ConversationKind(kind)
        session_id = str(uuid4())
        tracker = BudgetTracker(config=self.config.budget)

        record = await self.conversation_manager.initialize_conversation(
            session_id, repo_owner, repo_name, kind, tracker.snapshot()
        )

        handle = SessionHandle(
            session_id=session_id,
            repo_owner=repo_owner,
            repo_name=repo_name,
            kind=kind,
            created_at=record.created_at,
            budget_tracker=tracker,
            seed_context=self._seed_context(session_id, repo_owner, repo_name, kind),
            active_agent="ba"
        )

        self._current = handle
        self.total_cost = 0.0
        self.turn_count = 0

        self.audit_logger.log_session_event(
            "session_created", session_id,
            action="start",
            result="success",
            metadata={"repo": handle.repo, "kind": kind.value}
        )
        await self._log_interaction(
            InteractionType.SESSION_CREATED,
            f"Interactive {kind.value} conversation for {handle.repo}",
            {"session_id": session_id, "kind": kind.value}
        )

        self.logger.info(f"Started {kind.value} session {session_id} for {handle.repo}")
        return handle

    async def resume(self, session_id: str, repo_owner: str, repo_name: str) -> ResumedSession:
        """Rehydrate a persisted session and make it current.

        Counters carry over exactly; the budget tracker is rebuilt from the
        persisted extension ledger.

        Raises:
            SessionNotFound: If no conversation record exists for ``session_id``
        """
        if not await self.conversation_manager.conversation_exists(session_id):
            raise SessionNotFound(session_id)

        record = await self.conversation_manager.get_conversation(session_id)

        if (repo_owner, repo_name) != (record.repo_owner, record.repo_name):
            self.logger.warning(
                f"Session {session_id} belongs to {record.repo}, ignoring requested {repo_owner}/{repo_name}"
            )

        handle = SessionHandle(
            session_id=session_id,
            repo_owner=record.repo_owner,
            repo_name=record.repo_name,
            kind=record.kind,
            created_at=record.created_at,
            budget_tracker=BudgetTracker.restore(record.token_budget),
            seed_context=self._seed_context(session_id, record.repo_owner, record.repo_name, record.kind),
            active_agent=record.multi_agent.active_agent if record.multi_agent else "ba"
        )

        self._current = handle
        self.total_cost = record.total_cost
        self.turn_count = record.turn_count

        self.audit_logger.log_session_event(
            "session_resumed", session_id,
            action="resume",
            result="success",
            metadata={"turn_count": record.turn_count, "state": record.state.value}
        )
        await self._log_interaction(
            InteractionType.SESSION_RESUMED,
            f"Resumed conversation for {record.repo}",
            {"session_id": session_id, "turn_count": record.turn_count}
        )

        return ResumedSession(
            handle=handle,
            history=list(record.history),
            state=record.state,
            total_cost=record.total_cost,
            turn_count=record.turn_count,
            conversation_context=record.to_context()
        )

    def current_usage(self) -> SessionUsage:
        return SessionUsage(
            total_cost=self.total_cost,
            turn_count=self.turn_count,
            session_id=self._current.session_id if self._current else None
        )

    def update_session_state(self, total_cost: float, turn_count: int) -> None:
        """Replace the cached totals after a turn."""
        self.total_cost = total_cost
        self.turn_count = turn_count

    @property
    def current_session(self) -> Optional[SessionHandle]:
        return self._current

    @property
    def budget_tracker(self) -> Optional[BudgetTracker]:
        return self._current.budget_tracker if self._current else None

    def session_id_display(self, length: int = 8) -> str:
        if self._current is None:
            return "No session"
        return f"{self._current.session_id[:length]}..."

    def repository_string(self) -> Optional[str]:
        return self._current.repo if self._current else None

    async def persist_budget(self) -> None:
        """Write the current tracker state into the conversation record."""
        if self._current is None:
            raise RuntimeError("No active session")
        await self.conversation_manager.save_budget(
            self._current.session_id, self._current.budget_tracker.snapshot()
        )

    def clear_session(self) -> None:
        self._current = None
        self.total_cost = 0.0
        self.turn_count = 0

    def _seed_context(
        self,
        session_id: str,
        repo_owner: str,
        repo_name: str,
        kind: ConversationKind
    ) -> AgentContext:
        return AgentContext(
            session_id=session_id,
            repo_owner=repo_owner,
            repo_name=repo_name,
            initial_prompt=build_seed_prompt(repo_owner, repo_name, kind),
            metadata={"kind": kind.value}
        )

    async def _log_interaction(self, type: InteractionType, content: str, metadata: Dict[str, Any]) -> None:
        if self.interaction_logger is None:
            return
        try:
            await self.interaction_logger.log_interaction(type.value, content, metadata)
        except Exception as e:
            self.logger.warning(f"Interaction logging failed: {e}")


class LegacySessionView:
    """Old flat session fields, delegated to the components that own them.

    Holds no state of its own: totals live in the lifecycle manager, usage
    and limits in the budget tracker, the active agent in the session handle.
    """

    def __init__(self, lifecycle: SessionLifecycleManager):
        self._lifecycle = lifecycle

    def _tracker(self) -> BudgetTracker:
        tracker = self._lifecycle.budget_tracker
        if tracker is None:
            raise AttributeError("No active session")
        return tracker

    @property
    def session_id(self) -> Optional[str]:
        session = self._lifecycle.current_session
        return session.session_id if session else None

    @property
    def total_cost(self) -> float:
        return self._lifecycle.total_cost

    @total_cost.setter
    def total_cost(self, value: float) -> None:
        self._lifecycle.update_session_state(value, self._lifecycle.turn_count)

    @property
    def turn_count(self) -> int:
        return self._lifecycle.turn_count

    @turn_count.setter
    def turn_count(self, value: int) -> None:
        self._lifecycle.update_session_state(self._lifecycle.total_cost, value)

    @property
    def multi_agent_mode(self) -> bool:
        session = self._lifecycle.current_session
        return bool(session and session.is_multi_agent)

    @property
    def active_agent(self) -> str:
        session = self._lifecycle.current_session
        return session.active_agent if session else "ba"

    @property
    def session_tokens_used(self) -> int:
        return self._tracker().session_tokens_used

    @session_tokens_used.setter
    def session_tokens_used(self, value: int) -> None:
        tracker = self._tracker()
        tracker.record_usage(value - tracker.session_tokens_used, 0.0)

    @property
    def session_cost_used(self) -> float:
        return self._tracker().session_cost_used

    @session_cost_used.setter
    def session_cost_used(self, value: float) -> None:
        tracker = self._tracker()
        tracker.record_usage(0, value - tracker.session_cost_used)

    @property
    def max_tokens_per_session(self) -> int:
        return self._tracker().max_tokens

    @property
    def max_cost_per_session(self) -> float:
        return self._tracker().max_cost

    @property
    def warning_threshold(self) -> float:
        return self._tracker().warning_threshold
