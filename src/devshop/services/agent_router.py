"""Agent routing: explicit commands, intent suggestions and invocation fallback."""

import asyncio
import logging
import re
import time
from enum import Enum
from typing import Dict, Any, List, Optional, Union

from opentelemetry import trace
from pydantic import BaseModel, Field

from devshop.lib.config import AGENT_NAMES, IntentKeywords
from devshop.lib.errors import AgentUnavailable, MultiAgentDisabled
from devshop.lib.logging_config import AuditLogger, get_audit_logger
from devshop.models.agent_result import (
    AgentContext,
    AgentStartResult,
    AgentTurnResult,
    FinalizeResult,
)
from devshop.models.interaction_record import InteractionType
from devshop.models.turn import Speaker
from devshop.services.conversation_manager import ConversationManager
from devshop.services.interfaces.agent import IConversationalAgent
from devshop.services.interfaces.interaction_logger import IInteractionLogger


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

AGENT_DISPLAY_NAMES = AGENT_NAMES

AGENT_METHODS = ("start_conversation", "continue_conversation", "finalize_conversation")

FALLBACK_AGENT = "ba"

_COMMAND_PATTERN = re.compile(r"^@(techlead|tl|business|ba)\b", re.IGNORECASE)
_COMMAND_AGENTS = {"techlead": "tl", "tl": "tl", "business": "ba", "ba": "ba"}


class RoutingSource(str, Enum):
    """What decided the agent for a turn."""

    EXPLICIT = "explicit"
    INTENT = "intent"
    CURRENT = "current"


class ExplicitCommand(BaseModel):
    """Parsed ``@agent`` prefix or bare ``switch``."""

    agent: str = Field(..., pattern="^(ba|tl)$")
    remaining_message: str = ""
    is_toggle: bool = False


class RoutingDecision(BaseModel):
    """Agent that handles a turn and the message it receives."""

    agent: str
    message: str
    source: RoutingSource = RoutingSource.CURRENT
    suggested_agent: Optional[str] = Field(None, description="Intent suggestion, never applied automatically")
    handoff_recorded: bool = False


class InvocationOutcome(BaseModel):
    """Result of invoking an agent, after any fallback."""

    requested_agent: str
    agent: str = Field(..., description="Agent that actually produced the result")
    succeeded: bool
    result: Optional[Union[AgentTurnResult, AgentStartResult, FinalizeResult]] = None
    fell_back: bool = False
    error: Optional[str] = None
    execution_time_ms: int = 0


class AgentRouter:
    """Decides which agent handles each user turn and invokes it.

    Exactly one agent is active at a time. Only explicit user commands change
    the active agent; intent detection produces suggestions.
    """

    def __init__(
        self,
        agents: Dict[str, IConversationalAgent],
        conversation_manager: ConversationManager,
        keywords: Optional[IntentKeywords] = None,
        multi_agent: bool = False,
        timeouts: Optional[Dict[str, float]] = None,
        default_timeout: float = 120.0,
        interaction_logger: Optional[IInteractionLogger] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        """Initialize the router.

        Args:
            agents: Conversational agents keyed by role ('ba', 'tl')
            conversation_manager: Owner of history and routing state
            keywords: Versioned intent keyword tables
            multi_agent: Whether BA/TL switching is enabled
            timeouts: Per-agent invocation timeouts in seconds
            default_timeout: Timeout for agents without an explicit one
            interaction_logger: Optional audit sink
            audit_logger: Structured audit logger
        """
        self.logger = logging.getLogger(__name__)
        self.agents = dict(agents)
        self.conversation_manager = conversation_manager
        self.keywords = keywords or IntentKeywords()
        self.multi_agent = multi_agent
        self.timeouts = dict(timeouts or {})
        self.default_timeout = default_timeout
        self.interaction_logger = interaction_logger
        self.audit_logger = audit_logger or get_audit_logger()

        if FALLBACK_AGENT not in self.agents:
            raise ValueError("A Business Analyst agent is required")

    def parse_explicit_command(self, text: str, current_agent: str = FALLBACK_AGENT) -> Optional[ExplicitCommand]:
        """Parse a leading ``@tl``/``@techLead``/``@ba``/``@business`` or bare ``switch``.

        Prefixes match case-insensitively and only as whole words, so
        ``@tlx`` is ordinary text. ``switch`` targets the agent that is not
        ``current_agent``.
        """
        trimmed = text.strip()

        if trimmed.lower() == "switch":
            return ExplicitCommand(agent=self._other_agent(current_agent), is_toggle=True)

        match = _COMMAND_PATTERN.match(trimmed)
        if not match:
            return None

        return ExplicitCommand(
            agent=_COMMAND_AGENTS[match.group(1).lower()],
            remaining_message=trimmed[match.end():].strip()
        )

    def detect_intent(self, text: str) -> Optional[str]:
        """Keyword classifier returning 'tl', 'ba' or None.

        Technical keywords are checked first, so a message with both kinds of
        keywords resolves to the Tech Lead. Always None in single-agent mode.
        """
        if not self.multi_agent:
            return None

        lowered = text.lower()
        if any(keyword in lowered for keyword in self.keywords.technical):
            return Speaker.TL.value
        if any(keyword in lowered for keyword in self.keywords.business):
            return Speaker.BA.value
        return None

    async def route(
        self,
        user_input: str,
        current_agent: str,
        session_id: Optional[str] = None
    ) -> RoutingDecision:
        """Pick the agent for ``user_input``.

        Precedence: explicit command, then intent suggestion (reported but not
        applied), then the current agent.

        Raises:
            AgentUnavailable: If an explicit command names an agent that
                cannot be switched to
        """
        command = self.parse_explicit_command(user_input, current_agent)

        if command is not None:
            handoff_recorded = False
            if command.agent != current_agent:
                if session_id is None:
                    self._require_switchable(command.agent)
                else:
                    reason = "User toggled agent" if command.is_toggle else "User requested agent"
                    handoff_recorded = await self.switch_to(command.agent, session_id, reason, current_agent)

            return RoutingDecision(
                agent=command.agent,
                message=command.remaining_message,
                source=RoutingSource.EXPLICIT,
                handoff_recorded=handoff_recorded
            )

        suggestion = self.detect_intent(user_input)
        if suggestion is not None and not self.is_agent_available(suggestion):
            suggestion = None

        return RoutingDecision(
            agent=current_agent,
            message=user_input.strip(),
            source=RoutingSource.INTENT if suggestion else RoutingSource.CURRENT,
            suggested_agent=suggestion if suggestion != current_agent else None
        )

    async def switch_to(
        self,
        agent: str,
        session_id: str,
        reason: str = "User requested agent",
        current_agent: Optional[str] = None
    ) -> bool:
        """Make ``agent`` active, recording the handoff.

        Returns False when ``agent`` is already active.

        Raises:
            AgentUnavailable: If multi-agent mode is off or the agent is not configured
        """
        self._require_switchable(agent)

        if current_agent is None:
            current_agent = await self.conversation_manager.get_active_agent(session_id)
        if current_agent == agent:
            return False

        try:
            await self.conversation_manager.record_handoff(session_id, current_agent, agent, reason)
        except MultiAgentDisabled as e:
            raise AgentUnavailable(agent, str(e))

        self.audit_logger.log_handoff_event(session_id, current_agent, agent, reason)
        await self._log_interaction(
            InteractionType.HANDOFF,
            f"{current_agent} -> {agent}",
            {"session_id": session_id, "from": current_agent, "to": agent, "reason": reason}
        )
        self.logger.info(f"Switched from {current_agent} to {agent} in {session_id}")
        return True

    async def toggle(self, session_id: str) -> str:
        """Switch to the other agent and return the new active agent."""
        current_agent = await self.conversation_manager.get_active_agent(session_id)
        target = self._other_agent(current_agent)
        await self.switch_to(target, session_id, "User toggled agent", current_agent)
        return target

    async def invoke(
        self,
        session_id: str,
        agent: str,
        method: str,
        context: AgentContext
    ) -> InvocationOutcome:
        """Invoke ``method`` on ``agent``, falling back to the Business Analyst.

        Agent errors and timeouts never propagate: a Tech Lead failure is
        recorded as a fallback turn and the same context is retried on the
        Business Analyst; a Business Analyst failure is recorded as a system
        turn and reported with ``succeeded=False``.
        """
        if method not in AGENT_METHODS:
            raise ValueError(f"Unknown agent method: {method}")

        try:
            result, elapsed_ms = await self._call(agent, method, context)
            return InvocationOutcome(
                requested_agent=agent,
                agent=agent,
                succeeded=True,
                result=result,
                execution_time_ms=elapsed_ms
            )
        except Exception as e:
            cause = self._describe_failure(agent, e)
            self.audit_logger.log_agent_event("agent_error", agent, method, "failed", session_id=session_id,
                                              metadata={"cause": cause})

        if agent != FALLBACK_AGENT:
            await self.conversation_manager.record_fallback(session_id, agent, FALLBACK_AGENT, cause)
            await self._log_interaction(
                InteractionType.FALLBACK,
                cause,
                {"session_id": session_id, "from": agent, "to": FALLBACK_AGENT}
            )

            history = await self.conversation_manager.history(session_id, for_agent=FALLBACK_AGENT)
            fallback_context = context.model_copy(update={"history": history.to_chat_format()})

            try:
                result, elapsed_ms = await self._call(FALLBACK_AGENT, method, fallback_context)
                return InvocationOutcome(
                    requested_agent=agent,
                    agent=FALLBACK_AGENT,
                    succeeded=True,
                    result=result,
                    fell_back=True,
                    execution_time_ms=elapsed_ms
                )
            except Exception as e:
                cause = self._describe_failure(FALLBACK_AGENT, e)
                self.audit_logger.log_agent_event("agent_error", FALLBACK_AGENT, method, "failed",
                                                  session_id=session_id, metadata={"cause": cause})

        await self.conversation_manager.append_turn(
            session_id,
            Speaker.SYSTEM,
            f"Agent request failed: {cause}",
            metadata={"failure": {"agent": FALLBACK_AGENT, "requested": agent, "cause": cause}}
        )
        await self._log_interaction(
            InteractionType.AGENT_ERROR,
            cause,
            {"session_id": session_id, "agent": agent, "method": method}
        )

        return InvocationOutcome(
            requested_agent=agent,
            agent=FALLBACK_AGENT,
            succeeded=False,
            fell_back=agent != FALLBACK_AGENT,
            error=cause
        )

    async def _call(self, agent: str, method: str, context: AgentContext):
        """Await one agent call under its timeout and a tracing span."""
        if agent not in self.agents:
            raise AgentUnavailable(agent)

        timeout = self.timeouts.get(agent, self.default_timeout)
        handler = getattr(self.agents[agent], method)

        with tracer.start_as_current_span(
            "devshop.agent.invoke",
            attributes={
                "agent.id": agent,
                "agent.operation": method,
                "conversation.session_id": context.session_id
            }
        ) as span:
            # Exceptions leaving the block are recorded on the span
            start_time = time.perf_counter()
            result = await asyncio.wait_for(handler(context), timeout=timeout)
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            span.set_attribute("agent.execution_time_ms", elapsed_ms)

        self.audit_logger.log_agent_event(
            "agent_invoked", agent, method, "success",
            session_id=context.session_id,
            execution_time_ms=elapsed_ms,
            cost_usd=getattr(result, "turn_cost", None) or getattr(result, "cost", None)
        )
        return result, elapsed_ms

    def _describe_failure(self, agent: str, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            timeout = self.timeouts.get(agent, self.default_timeout)
            return f"{AGENT_DISPLAY_NAMES.get(agent, agent)} timed out after {timeout:g}s"
        return f"{AGENT_DISPLAY_NAMES.get(agent, agent)} failed: {error}"

    def _require_switchable(self, agent: str) -> None:
        if not self.multi_agent:
            raise AgentUnavailable(agent, "Multi-agent mode is not enabled")
        if agent not in self.agents:
            raise AgentUnavailable(agent, f"{AGENT_DISPLAY_NAMES.get(agent, agent)} agent is not available")

    @staticmethod
    def _other_agent(agent: str) -> str:
        return Speaker.BA.value if agent == Speaker.TL.value else Speaker.TL.value

    def is_agent_available(self, agent: str) -> bool:
        if agent != FALLBACK_AGENT and not self.multi_agent:
            return False
        return agent in self.agents

    def available_commands(self) -> List[Dict[str, str]]:
        """Commands shown in help; empty in single-agent mode."""
        if not self.multi_agent:
            return []

        return [
            {"command": "@tl [message]", "description": "Switch to or invoke Tech Lead agent"},
            {"command": "@ba [message]", "description": "Switch to or invoke Business Analyst agent"},
            {"command": "switch", "description": "Toggle between BA and TL agents"},
        ]

    def agent_info(self, agent: str, active_agent: Optional[str] = None) -> Dict[str, Any]:
        return {
            "type": agent,
            "name": AGENT_DISPLAY_NAMES.get(agent, agent),
            "available": self.is_agent_available(agent),
            "is_active": agent == active_agent
        }

    async def _log_interaction(self, type: InteractionType, content: str, metadata: Dict[str, Any]) -> None:
        if self.interaction_logger is None:
            return
        try:
            await self.interaction_logger.log_interaction(type.value, content, metadata)
        except Exception as e:
            self.logger.warning(f"Interaction logging failed: {e}")
