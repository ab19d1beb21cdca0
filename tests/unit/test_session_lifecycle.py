"""
Unit tests for session lifecycle management.

Tests SessionLifecycleManager start/resume behaviour, the current-session
view and the legacy field façade.
"""

import pytest

from devshop.lib.config import BudgetConfig, DevShopConfig
from devshop.lib.errors import SessionNotFound
from devshop.models.conversation import ConversationKind, ConversationState
from devshop.models.turn import Speaker
from devshop.services.conversation_manager import ConversationManager
from devshop.services.session_lifecycle import LegacySessionView, SessionLifecycleManager
from devshop.services.session_store import CachedSessionStore, FileSessionStore


@pytest.fixture
def lifecycle(conversation_manager):
    """Lifecycle manager with default configuration."""
    return SessionLifecycleManager(conversation_manager)


class TestStartNew:
    """Test session creation."""

    @pytest.mark.asyncio
    async def test_start_new_persists_record(self, lifecycle, conversation_manager):
        """Test a new session is persisted in the gathering state."""
        handle = await lifecycle.start_new("acme", "shop")

        record = await conversation_manager.get_conversation(handle.session_id)
        assert record.state == ConversationState.GATHERING
        assert record.repo == "acme/shop"
        assert record.token_budget.initial_tokens == 10000
        assert handle.budget_tracker.max_tokens == 10000
        assert handle.active_agent == "ba"
        assert "acme/shop" in handle.seed_context.initial_prompt

    @pytest.mark.asyncio
    async def test_budget_from_config(self, conversation_manager):
        """Test new trackers use the configured limits."""
        config = DevShopConfig(budget=BudgetConfig(max_tokens=2500, max_cost_usd=0.5))
        lifecycle = SessionLifecycleManager(conversation_manager, config=config)

        handle = await lifecycle.start_new("acme", "shop", ConversationKind.MULTI)

        assert handle.budget_tracker.max_tokens == 2500
        assert handle.budget_tracker.max_cost == 0.5
        assert handle.is_multi_agent
        record = await conversation_manager.get_conversation(handle.session_id)
        assert record.multi_agent.active_agent == "ba"

    @pytest.mark.asyncio
    async def test_unique_session_ids(self, lifecycle):
        """Test every session gets a fresh id."""
        first = await lifecycle.start_new("acme", "shop")
        second = await lifecycle.start_new("acme", "shop")

        assert first.session_id != second.session_id
        assert lifecycle.current_session.session_id == second.session_id

    @pytest.mark.asyncio
    async def test_display_helpers(self, lifecycle):
        """Test usage and display helpers reflect the current session."""
        assert lifecycle.session_id_display() == "No session"
        assert lifecycle.repository_string() is None

        handle = await lifecycle.start_new("acme", "shop")
        lifecycle.update_session_state(0.42, 3)

        usage = lifecycle.current_usage()
        assert usage.total_cost == 0.42
        assert usage.turn_count == 3
        assert usage.session_id == handle.session_id
        assert lifecycle.session_id_display() == f"{handle.session_id[:8]}..."
        assert lifecycle.repository_string() == "acme/shop"

        lifecycle.clear_session()
        assert lifecycle.current_session is None
        assert lifecycle.current_usage().session_id is None


class TestResume:
    """Test session rehydration."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, lifecycle):
        """Test resuming an unknown id raises SessionNotFound."""
        with pytest.raises(SessionNotFound) as exc_info:
            await lifecycle.resume("does-not-exist", "acme", "shop")

        assert exc_info.value.session_id == "does-not-exist"

    @pytest.mark.asyncio
    async def test_resume_fidelity(self, tmp_path):
        """Test 3 turns and a 2,000 token/$1.00 extension survive a restart."""
        manager = ConversationManager(CachedSessionStore(FileSessionStore(str(tmp_path))))
        lifecycle = SessionLifecycleManager(manager)

        handle = await lifecycle.start_new("acme", "shop")
        await manager.append_turn(handle.session_id, Speaker.BA, "Welcome", cost=0.02, tokens=150)
        await manager.append_turn(handle.session_id, Speaker.USER, "We need login")
        await manager.append_turn(handle.session_id, Speaker.BA, "Who signs in?", cost=0.03, tokens=200)
        handle.budget_tracker.record_usage(350, 0.05)
        handle.budget_tracker.extend(2000, 1.00, "User approved extension")
        await lifecycle.persist_budget()
        original = await manager.get_conversation(handle.session_id)

        # New process: fresh store, manager and lifecycle over the same directory
        restarted = ConversationManager(CachedSessionStore(FileSessionStore(str(tmp_path))))
        resumed = await SessionLifecycleManager(restarted).resume(handle.session_id, "acme", "shop")

        assert [(t.turn, t.speaker, t.message) for t in resumed.history] == \
            [(t.turn, t.speaker, t.message) for t in original.history]
        assert resumed.total_cost == pytest.approx(original.total_cost)
        assert resumed.turn_count == 3
        assert resumed.handle.budget_tracker.max_tokens == 10000 + 2000
        assert resumed.handle.budget_tracker.max_cost == pytest.approx(6.0)
        assert resumed.handle.budget_tracker.session_tokens_used == 350
        assert resumed.state == ConversationState.GATHERING

    @pytest.mark.asyncio
    async def test_resume_carries_counters(self, lifecycle, conversation_manager):
        """Test resuming never resets cached totals."""
        handle = await lifecycle.start_new("acme", "shop")
        await conversation_manager.append_turn(handle.session_id, Speaker.BA, "hi", cost=0.5)
        lifecycle.clear_session()

        await lifecycle.resume(handle.session_id, "acme", "shop")

        assert lifecycle.current_usage().total_cost == 0.5
        assert lifecycle.current_usage().turn_count == 1

    @pytest.mark.asyncio
    async def test_resume_keeps_record_repository(self, lifecycle):
        """Test session identity is immutable on resume."""
        handle = await lifecycle.start_new("acme", "shop")

        resumed = await lifecycle.resume(handle.session_id, "other", "repo")

        assert resumed.handle.repo == "acme/shop"

    @pytest.mark.asyncio
    async def test_resume_restores_active_agent(self, lifecycle, conversation_manager):
        """Test multi-agent sessions resume with their active agent."""
        handle = await lifecycle.start_new("acme", "shop", ConversationKind.MULTI)
        await conversation_manager.record_handoff(handle.session_id, "ba", "tl", "User requested agent")

        resumed = await lifecycle.resume(handle.session_id, "acme", "shop")

        assert resumed.handle.active_agent == "tl"
        assert resumed.conversation_context["multi_agent"]["handoff_count"] == 1


class TestLegacySessionView:
    """Test old field names delegate to their owners."""

    @pytest.mark.asyncio
    async def test_reads_delegate(self, lifecycle):
        """Test the façade reads from tracker and lifecycle."""
        handle = await lifecycle.start_new("acme", "shop")
        view = LegacySessionView(lifecycle)

        handle.budget_tracker.record_usage(1200, 0.3)
        handle.budget_tracker.extend(1000, 0.5)
        lifecycle.update_session_state(0.3, 2)

        assert view.session_id == handle.session_id
        assert view.session_tokens_used == 1200
        assert view.session_cost_used == pytest.approx(0.3)
        assert view.max_tokens_per_session == 11000
        assert view.max_cost_per_session == pytest.approx(5.5)
        assert view.total_cost == 0.3
        assert view.turn_count == 2
        assert view.active_agent == "ba"
        assert view.multi_agent_mode is False

    @pytest.mark.asyncio
    async def test_writes_delegate(self, lifecycle):
        """Test the façade writes into the owning components."""
        handle = await lifecycle.start_new("acme", "shop")
        view = LegacySessionView(lifecycle)

        view.total_cost = 1.5
        view.turn_count = 4
        view.session_tokens_used = 500

        assert lifecycle.total_cost == 1.5
        assert lifecycle.turn_count == 4
        assert handle.budget_tracker.session_tokens_used == 500

    @pytest.mark.asyncio
    async def test_usage_cannot_decrease(self, lifecycle):
        """Test legacy writes keep usage monotonic."""
        await lifecycle.start_new("acme", "shop")
        view = LegacySessionView(lifecycle)
        view.session_tokens_used = 500

        with pytest.raises(ValueError):
            view.session_tokens_used = 100

    def test_no_session(self, lifecycle):
        """Test budget fields need an active session."""
        view = LegacySessionView(lifecycle)

        assert view.session_id is None
        assert view.active_agent == "ba"
        with pytest.raises(AttributeError):
            view.max_tokens_per_session
