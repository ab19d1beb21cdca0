"""Conversation orchestrator service with turn management."""

import logging
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from devshop.lib.config import DevShopConfig
from devshop.lib.errors import AgentUnavailable, InvalidStateTransition, NotReadyToFinalize
from devshop.lib.logging_config import AuditLogger, get_audit_logger
from devshop.models.agent_result import AgentContext, AgentTurnResult, FinalizeResult
from devshop.models.budget import BudgetStatus
from devshop.models.conversation import ConversationKind, ConversationState, FINALIZABLE_STATES
from devshop.models.interaction_record import InteractionType
from devshop.models.turn import Speaker
from devshop.services.agent_router import AgentRouter, InvocationOutcome, RoutingDecision
from devshop.services.conversation_manager import ConversationManager
from devshop.services.interfaces.agent import IConversationalAgent
from devshop.services.interfaces.interaction_logger import IInteractionLogger
from devshop.services.interfaces.session_store import ISessionStore
from devshop.services.session_lifecycle import ResumedSession, SessionHandle, SessionLifecycleManager
from devshop.services.session_store import CachedSessionStore, FileSessionStore, InMemorySessionStore


logger = logging.getLogger(__name__)


class TurnOutcome(BaseModel):
    """What happened to one user input."""

    session_id: str
    agent: str = Field(..., description="Agent that handled the turn")
    requested_agent: Optional[str] = None
    response: Optional[str] = None
    succeeded: bool = True
    fell_back: bool = False
    invoked: bool = True
    handoff_recorded: bool = False
    suggested_agent: Optional[str] = None
    budget_exhausted: bool = False
    budget_warning: bool = False
    state: Optional[ConversationState] = None
    turn_cost: float = 0.0
    tokens_used: int = 0
    notice: Optional[str] = None
    error: Optional[str] = None


class ConversationOrchestrator:
    """Advances one session a user turn at a time.

    Routing, budget gating, agent invocation with fallback, usage accounting
    and persistence happen in that order; every step completes before the
    next one starts.
    """

    def __init__(
        self,
        agents: Dict[str, IConversationalAgent],
        store: Optional[ISessionStore] = None,
        config: Optional[DevShopConfig] = None,
        interaction_logger: Optional[IInteractionLogger] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        """Initialize the conversation orchestrator.

        Args:
            agents: Conversational agents keyed by role ('ba', 'tl')
            store: Session store; built from configuration when omitted
            config: DevShop configuration, defaults when omitted
            interaction_logger: Optional audit sink for interactions
            audit_logger: Structured audit logger
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or DevShopConfig()
        self.agents = {
            agent_id: agent for agent_id, agent in agents.items()
            if agent_id not in self.config.agents or self.config.agents[agent_id].enabled
        }
        self.store = store or self._build_store(self.config)
        self.interaction_logger = interaction_logger
        self.audit_logger = audit_logger or get_audit_logger()

        self.conversation_manager = ConversationManager(self.store, self.config.session.state_key)
        self.lifecycle = SessionLifecycleManager(
            self.conversation_manager,
            config=self.config,
            interaction_logger=interaction_logger,
            audit_logger=self.audit_logger
        )
        self.router: Optional[AgentRouter] = None

    @staticmethod
    def _build_store(config: DevShopConfig) -> ISessionStore:
        if not config.session.enable_persistence:
            return InMemorySessionStore()
        return CachedSessionStore(FileSessionStore(config.session.storage_directory))

    def _build_router(self, handle: SessionHandle) -> AgentRouter:
        if handle.is_multi_agent and "tl" not in self.agents:
            self.logger.warning(f"Tech Lead unavailable, session {handle.session_id} runs with the Business Analyst only")

        return AgentRouter(
            self.agents,
            self.conversation_manager,
            keywords=self.config.routing.intent_keywords,
            multi_agent=handle.is_multi_agent,
            timeouts={agent_id: self.config.agent_timeout(agent_id) for agent_id in self.agents},
            default_timeout=self.config.agent_timeout("ba"),
            interaction_logger=self.interaction_logger,
            audit_logger=self.audit_logger
        )

    def _require_session(self) -> SessionHandle:
        handle = self.lifecycle.current_session
        if handle is None or self.router is None:
            raise RuntimeError("No active session. Start or resume a session first.")
        return handle

    async def start_session(
        self,
        repo_owner: str,
        repo_name: str,
        kind: ConversationKind = ConversationKind.SINGLE
    ) -> TurnOutcome:
        """Create a session and let the active agent open the conversation.

        Args:
            repo_owner: Repository owner
            repo_name: Repository name
            kind: Single Business Analyst or BA + Tech Lead

        Returns:
            Outcome of the opening turn
        """
        handle = await self.lifecycle.start_new(repo_owner, repo_name, kind)
        self.router = self._build_router(handle)

        outcome = await self.router.invoke(
            handle.session_id, handle.active_agent, "start_conversation", handle.seed_context
        )
        return await self._complete_turn(handle, outcome, RoutingDecision(agent=handle.active_agent, message=""))

    async def resume_session(self, session_id: str, repo_owner: str, repo_name: str) -> ResumedSession:
        """Rehydrate a persisted session.

        Raises:
            SessionNotFound: If the session was never persisted
        """
        resumed = await self.lifecycle.resume(session_id, repo_owner, repo_name)
        self.router = self._build_router(resumed.handle)
        return resumed

    async def handle_input(self, user_input: str) -> TurnOutcome:
        """Advance the current session by one user input.

        Never raises for agent failures; budget exhaustion is reported with
        ``budget_exhausted`` and no agent is invoked.
        """
        handle = self._require_session()
        session_id = handle.session_id
        tracker = handle.budget_tracker
        notice = None

        # Resolved without a session id so nothing is persisted before the budget gate
        try:
            decision = await self.router.route(user_input, handle.active_agent)
        except AgentUnavailable as e:
            # Explicit command for an agent this session cannot use
            command = self.router.parse_explicit_command(user_input, handle.active_agent)
            decision = RoutingDecision(
                agent=handle.active_agent,
                message=command.remaining_message if command else user_input.strip()
            )
            notice = str(e)
            self.logger.warning(f"Routing in {session_id} kept {handle.active_agent}: {e}")

        if decision.message and tracker.is_exhausted():
            self.audit_logger.log_budget_event(
                "budget_exhausted", session_id, tracker.session_tokens_used, tracker.session_cost_used
            )
            await self._log_interaction(
                InteractionType.BUDGET_EXHAUSTED,
                "Budget exhausted before invoking agent",
                {"session_id": session_id, "tokens_used": tracker.session_tokens_used,
                 "cost_used": tracker.session_cost_used}
            )
            return TurnOutcome(
                session_id=session_id,
                agent=handle.active_agent,
                requested_agent=decision.agent,
                invoked=False,
                succeeded=False,
                budget_exhausted=True,
                notice=notice
            )

        if decision.agent != handle.active_agent:
            command = self.router.parse_explicit_command(user_input, handle.active_agent)
            reason = "User toggled agent" if command and command.is_toggle else "User requested agent"
            decision.handoff_recorded = await self.router.switch_to(
                decision.agent, session_id, reason, handle.active_agent
            )
            handle.active_agent = decision.agent

        if not decision.message:
            return TurnOutcome(
                session_id=session_id,
                agent=decision.agent,
                invoked=False,
                handoff_recorded=decision.handoff_recorded,
                notice=notice
            )

        await self.conversation_manager.append_turn(session_id, Speaker.USER, decision.message)
        await self._log_interaction(
            InteractionType.USER_INPUT,
            decision.message,
            {"session_id": session_id, "active_agent": decision.agent,
             "agent_mode": "multi-agent" if handle.is_multi_agent else "single-agent"}
        )

        context = await self._build_context(handle, decision.agent, decision.message)
        outcome = await self.router.invoke(session_id, decision.agent, "continue_conversation", context)

        turn_outcome = await self._complete_turn(handle, outcome, decision)
        turn_outcome.notice = notice
        return turn_outcome

    async def _complete_turn(
        self,
        handle: SessionHandle,
        outcome: InvocationOutcome,
        decision: RoutingDecision
    ) -> TurnOutcome:
        """Account usage, append the agent turn and apply the agent's reported state."""
        session_id = handle.session_id
        tracker = handle.budget_tracker
        handle.active_agent = outcome.agent if outcome.fell_back else handle.active_agent

        turn_outcome = TurnOutcome(
            session_id=session_id,
            agent=outcome.agent,
            requested_agent=outcome.requested_agent,
            succeeded=outcome.succeeded,
            fell_back=outcome.fell_back,
            handoff_recorded=decision.handoff_recorded,
            suggested_agent=decision.suggested_agent,
            error=outcome.error
        )

        if outcome.succeeded:
            result = outcome.result
            if isinstance(result, AgentTurnResult):
                cost, tokens = result.turn_cost, result.tokens_used
            else:
                cost, tokens = result.cost, result.tokens_used

            tracker.record_usage(tokens, cost)
            await self.conversation_manager.append_turn(
                session_id, Speaker(outcome.agent), result.response, cost=cost, tokens=tokens
            )
            await self.conversation_manager.save_budget(session_id, tracker.snapshot())

            if isinstance(result, AgentTurnResult):
                await self._apply_reported_state(session_id, result)

            turn_outcome.response = result.response
            turn_outcome.turn_cost = cost
            turn_outcome.tokens_used = tokens

            await self._log_interaction(
                InteractionType.AGENT_RESPONSE,
                result.response,
                {"session_id": session_id, "agent": outcome.agent, "cost": cost, "tokens": tokens}
            )

        record = await self.conversation_manager.get_conversation(session_id)
        self.lifecycle.update_session_state(record.total_cost, record.turn_count)

        turn_outcome.state = record.state
        turn_outcome.budget_warning = tracker.is_near_token_limit() or tracker.is_near_cost_limit()
        return turn_outcome

    async def _apply_reported_state(self, session_id: str, result: AgentTurnResult) -> None:
        """Apply proposed items or the agent's state; illegal changes are logged and dropped."""
        try:
            if result.proposed_items:
                await self.conversation_manager.set_proposed_items(session_id, result.proposed_items)
            elif result.state is not None:
                await self.conversation_manager.transition_to(session_id, result.state, "reported by agent")
        except InvalidStateTransition as e:
            self.logger.warning(f"Ignoring agent-reported state in {session_id}: {e}")

    async def _build_context(self, handle: SessionHandle, agent: str, user_input: Optional[str]) -> AgentContext:
        record = await self.conversation_manager.get_conversation(handle.session_id)
        history = await self.conversation_manager.history(handle.session_id, for_agent=agent)

        return AgentContext(
            session_id=handle.session_id,
            repo_owner=record.repo_owner,
            repo_name=record.repo_name,
            user_input=user_input,
            initial_prompt=handle.seed_context.initial_prompt,
            history=history.to_chat_format(),
            state=record.state,
            proposed_issues=list(record.proposed_issues),
            metadata={"kind": record.kind.value, "turn_count": record.turn_count}
        )

    async def extend_budget(self, tokens: int, cost: float, reason: str = "User approved extension") -> BudgetStatus:
        """Grant a user-approved extension and persist it immediately.

        Raises:
            InvalidExtension: If the request is malformed; nothing changes
        """
        handle = self._require_session()
        extension = handle.budget_tracker.extend(tokens, cost, reason)
        await self.conversation_manager.save_budget(handle.session_id, handle.budget_tracker.snapshot())

        self.audit_logger.log_budget_event(
            "budget_extended", handle.session_id, tokens, cost, reason=extension.reason
        )
        await self._log_interaction(
            InteractionType.BUDGET_EXTENDED,
            extension.reason,
            {"session_id": handle.session_id, "tokens": tokens, "cost": cost}
        )
        return handle.budget_tracker.status()

    async def finalize(self) -> Optional[FinalizeResult]:
        """Have the Business Analyst create the proposed issues, then finalize.

        Returns None when the agent failed; the failure is recorded as a
        system turn and the conversation stays open.

        Raises:
            NotReadyToFinalize: Unless the state is proposing or ready_to_finalize
        """
        handle = self._require_session()
        record = await self.conversation_manager.get_conversation(handle.session_id)
        if record.state not in FINALIZABLE_STATES:
            raise NotReadyToFinalize(record.state.value)

        context = await self._build_context(handle, "ba", None)
        outcome = await self.router.invoke(handle.session_id, "ba", "finalize_conversation", context)
        if not outcome.succeeded:
            return None

        result: FinalizeResult = outcome.result
        if result.tokens_used:
            handle.budget_tracker.record_usage(result.tokens_used, 0.0)
            await self.conversation_manager.save_budget(handle.session_id, handle.budget_tracker.snapshot())

        await self.conversation_manager.append_turn(
            handle.session_id,
            Speaker.SYSTEM,
            f"Created {len(result.created_issues)} issues ({result.duplicates_found} duplicates skipped)",
            tokens=result.tokens_used,
            metadata={"created_issues": [issue.model_dump() for issue in result.created_issues]}
        )
        record = await self.conversation_manager.finalize(handle.session_id)
        self.lifecycle.update_session_state(record.total_cost, record.turn_count)

        self.audit_logger.log_session_event(
            "conversation_finalized", handle.session_id,
            agent_id="ba",
            action="finalize",
            result="success",
            metadata={"created_issues": len(result.created_issues)}
        )
        await self._log_interaction(
            InteractionType.FINALIZED,
            f"Created {len(result.created_issues)} issues",
            {"session_id": handle.session_id, "duplicates_found": result.duplicates_found}
        )
        return result

    def budget_status(self) -> BudgetStatus:
        return self._require_session().budget_tracker.status()

    def available_commands(self) -> List[Dict[str, str]]:
        return self.router.available_commands() if self.router else []

    async def shutdown(self) -> None:
        """Flush pending writes and drop the current session."""
        self.logger.info("Shutting down conversation orchestrator")
        await self.store.flush()
        self.lifecycle.clear_session()
        self.router = None

    async def _log_interaction(self, type: InteractionType, content: str, metadata: Dict[str, Any]) -> None:
        if self.interaction_logger is None:
            return
        try:
            await self.interaction_logger.log_interaction(type.value, content, metadata)
        except Exception as e:
            self.logger.warning(f"Interaction logging failed: {e}")
