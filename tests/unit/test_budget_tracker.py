"""
Unit tests for budget accounting.

Tests the BudgetTracker for usage recording, limit queries, the extension
ledger and snapshot/restore fidelity.
"""

import pytest

from devshop.lib.config import BudgetConfig
from devshop.lib.errors import InvalidExtension
from devshop.models.budget import BudgetSnapshot
from devshop.services.budget_tracker import BudgetTracker


@pytest.fixture
def tracker():
    """Tracker at the documented defaults."""
    return BudgetTracker()


class TestBudgetDefaults:
    """Test limits sourced from configuration."""

    def test_documented_defaults(self, tracker):
        """Test 10,000 tokens, $5.00 and a 0.8 warning threshold."""
        assert tracker.max_tokens == 10000
        assert tracker.max_cost == 5.0
        assert tracker.warning_threshold == 0.8
        assert tracker.session_tokens_used == 0
        assert tracker.session_cost_used == 0.0

    def test_limits_from_config(self):
        """Test limits default from a BudgetConfig."""
        tracker = BudgetTracker(config=BudgetConfig(max_tokens=500, max_cost_usd=1.5, warning_threshold=0.5))

        assert tracker.max_tokens == 500
        assert tracker.max_cost == 1.5
        assert tracker.warning_threshold == 0.5

    def test_explicit_limits_override_config(self):
        """Test explicit arguments win over configuration."""
        tracker = BudgetTracker(max_tokens=42, config=BudgetConfig(max_tokens=500))

        assert tracker.max_tokens == 42
        assert tracker.max_cost == 5.0

    def test_rejects_non_positive_limits(self):
        """Test a tracker cannot start without a budget."""
        with pytest.raises(ValueError):
            BudgetTracker(max_tokens=0)


class TestUsageQueries:
    """Test warning and exhaustion queries."""

    def test_approaching_then_exceeded(self, tracker):
        """Test 8,500 tokens warns and 10,000 tokens exceeds the default limit."""
        tracker.record_usage(8500, 0)

        assert tracker.is_approaching_token_limit() is True
        assert tracker.is_token_limit_exceeded() is False

        tracker.record_usage(1500, 0)

        assert tracker.session_tokens_used == 10000
        assert tracker.is_token_limit_exceeded() is True
        assert tracker.is_exhausted() is True

    def test_cost_limit(self, tracker):
        """Test cost queries use the cost ceiling."""
        tracker.record_usage(0, 4.0)
        assert tracker.is_near_cost_limit() is True
        assert tracker.is_cost_limit_exceeded() is False

        tracker.record_usage(0, 1.0)
        assert tracker.is_cost_limit_exceeded() is True
        assert tracker.is_token_limit_exceeded() is False

    def test_below_threshold(self, tracker):
        """Test small usage raises no warning."""
        tracker.record_usage(100, 0.1)

        assert tracker.is_near_token_limit() is False
        assert tracker.is_near_cost_limit() is False
        assert tracker.token_utilization() == pytest.approx(0.01)

    def test_negative_usage_rejected(self, tracker):
        """Test usage counters never decrease."""
        with pytest.raises(ValueError):
            tracker.record_usage(-1, 0)

        with pytest.raises(ValueError):
            tracker.record_usage(0, -0.5)

        assert tracker.session_tokens_used == 0


class TestExtensions:
    """Test the extension ledger."""

    def test_extend_raises_both_limits(self, tracker):
        """Test an extension adds to derived maxima."""
        extension = tracker.extend(2000, 1.0, "More discovery needed")

        assert tracker.max_tokens == 12000
        assert tracker.max_cost == 6.0
        assert extension.reason == "More discovery needed"

    def test_extensions_are_not_merged(self, tracker):
        """Test each grant is its own ledger entry."""
        tracker.extend(1000, 0.5, "first")
        tracker.extend(1000, 0.5, "second")

        assert [extension.reason for extension in tracker.extensions] == ["first", "second"]
        assert tracker.max_tokens == 12000
        assert tracker.status().extensions_count == 2

    def test_extension_clears_exhaustion(self, tracker):
        """Test exhaustion is lifted by a large enough extension."""
        tracker.record_usage(10000, 0)
        assert tracker.is_exhausted()

        tracker.extend(5000, 0)

        assert not tracker.is_exhausted()

    def test_token_only_extension_allowed(self, tracker):
        """Test a grant may cover tokens alone."""
        tracker.extend(500, 0)
        assert tracker.max_tokens == 10500
        assert tracker.max_cost == 5.0

    def test_cost_only_extension_allowed(self, tracker):
        """Test a zero token amount is accepted when cost is granted."""
        extension = tracker.extend(0, 1.0, "More analysis time")

        assert extension.tokens == 0
        assert tracker.max_tokens == 10000
        assert tracker.max_cost == pytest.approx(6.0)
        assert len(tracker.extensions) == 1

    @pytest.mark.parametrize("tokens,cost", [(-1, 1.0), (100, -0.01), (0, 0)])
    def test_invalid_extension_changes_nothing(self, tracker, tokens, cost):
        """Test negative or empty grants are rejected without state change."""
        with pytest.raises(InvalidExtension):
            tracker.extend(tokens, cost)

        assert tracker.extensions == []
        assert tracker.max_tokens == 10000
        assert tracker.max_cost == 5.0

    def test_limits_are_monotonic(self, tracker):
        """Test usage and maxima never decrease across mixed calls."""
        previous_used, previous_max = 0, tracker.max_tokens

        for step in range(10):
            if step % 3 == 0:
                tracker.extend(250, 0.25)
            else:
                tracker.record_usage(700, 0.2)

            assert tracker.session_tokens_used >= previous_used
            assert tracker.max_tokens >= previous_max
            previous_used, previous_max = tracker.session_tokens_used, tracker.max_tokens


class TestSnapshotRestore:
    """Test persistence round trips."""

    def test_round_trip_reproduces_maxima(self, tracker):
        """Test restore derives the same maxima from the ledger."""
        tracker.record_usage(3000, 1.25)
        tracker.extend(2000, 1.0, "extension")
        tracker.extend(500, 0.0, "tokens only")

        restored = BudgetTracker.restore(tracker.snapshot())

        assert restored.max_tokens == tracker.max_tokens == 12500
        assert restored.max_cost == tracker.max_cost == 6.0
        assert restored.session_tokens_used == 3000
        assert restored.session_cost_used == pytest.approx(1.25)
        assert [e.reason for e in restored.extensions] == ["extension", "tokens only"]

    def test_snapshot_survives_json(self, tracker):
        """Test the serialized snapshot never stores maxima."""
        tracker.extend(2000, 1.0)
        data = tracker.snapshot().model_dump(mode="json")

        assert "max_tokens" not in data
        assert "max_cost" not in data

        restored = BudgetTracker.restore(BudgetSnapshot.model_validate(data))
        assert restored.max_tokens == 12000

    def test_restore_is_independent(self, tracker):
        """Test extending a restored tracker leaves the original untouched."""
        restored = BudgetTracker.restore(tracker.snapshot())
        restored.extend(100, 0.1)

        assert tracker.max_tokens == 10000
        assert restored.max_tokens == 10100

    def test_status_report(self, tracker):
        """Test status fields mirror the queries."""
        tracker.record_usage(9000, 1.0)
        status = tracker.status()

        assert status.tokens_used == 9000
        assert status.max_tokens == 10000
        assert status.is_approaching_token_limit is True
        assert status.is_token_limit_exceeded is False
        assert status.cost_utilization == pytest.approx(0.2)
