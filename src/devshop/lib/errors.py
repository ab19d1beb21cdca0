"""Error taxonomy for the DevShop orchestration engine."""

from typing import Optional


class DevShopError(Exception):
    """Base class for all orchestration errors."""
    pass


class SessionNotFound(DevShopError):
    """Raised when resuming a session that was never persisted."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} not found. Start a new session instead."
        )


class ConversationNotFound(DevShopError):
    """Raised when reading a conversation before it has been created."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Conversation session {session_id} not found. Initialize the conversation first."
        )


class InvalidStateTransition(DevShopError):
    """Raised when a conversation state change is not in the allowed set."""

    def __init__(self, from_state: str, to_state: str, reason: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        message = f"Cannot transition conversation from '{from_state}' to '{to_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotReadyToFinalize(DevShopError):
    """Raised when finalization is requested before issues were proposed."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(
            f"Conversation is in state '{state}'. Keep discussing until the agent proposes issues."
        )


class AgentUnavailable(DevShopError):
    """Raised when the requested agent is not configured for this session."""

    def __init__(self, agent: str, reason: Optional[str] = None):
        self.agent = agent
        super().__init__(reason or f"Agent '{agent}' is not available")


class MultiAgentDisabled(DevShopError):
    """Raised when a multi-agent operation is used on a single-agent conversation."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Multi-agent mode is not enabled for session {session_id}")


class InvalidExtension(DevShopError):
    """Raised for malformed budget extension requests."""
    pass
