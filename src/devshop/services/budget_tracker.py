"""Token and cost budget accounting with an auditable extension ledger."""

import logging
from typing import List, Optional

from devshop.lib.config import BudgetConfig
from devshop.lib.errors import InvalidExtension
from devshop.models.budget import BudgetExtension, BudgetSnapshot, BudgetStatus


logger = logging.getLogger(__name__)


class BudgetTracker:
    """Tracks session consumption against limits that only ever grow.

    This component reports status; it never refuses usage. Enforcement and
    extension negotiation belong to the caller.
    """

    def __init__(
        self,
        max_tokens: Optional[int] = None,
        max_cost: Optional[float] = None,
        warning_threshold: Optional[float] = None,
        config: Optional[BudgetConfig] = None
    ):
        """Initialize the tracker.

        Args:
            max_tokens: Initial token ceiling, defaults from configuration
            max_cost: Initial cost ceiling in USD, defaults from configuration
            warning_threshold: Fraction of a limit that counts as "near"
            config: Budget configuration supplying the defaults
        """
        config = config or BudgetConfig()
        self.initial_tokens = max_tokens if max_tokens is not None else config.max_tokens
        self.initial_cost = max_cost if max_cost is not None else config.max_cost_usd
        self.warning_threshold = warning_threshold if warning_threshold is not None else config.warning_threshold

        if self.initial_tokens <= 0 or self.initial_cost <= 0:
            raise ValueError("Initial budget limits must be positive")
        if not 0.0 < self.warning_threshold <= 1.0:
            raise ValueError("Warning threshold must be in (0, 1]")

        self.session_tokens_used = 0
        self.session_cost_used = 0.0
        self._extensions: List[BudgetExtension] = []

    @property
    def extensions(self) -> List[BudgetExtension]:
        return list(self._extensions)

    @property
    def max_tokens(self) -> int:
        return self.initial_tokens + sum(extension.tokens for extension in self._extensions)

    @property
    def max_cost(self) -> float:
        return self.initial_cost + sum(extension.cost for extension in self._extensions)

    def record_usage(self, tokens: int, cost: float) -> None:
        """Add consumption to the running totals."""
        if tokens < 0 or cost < 0:
            raise ValueError("Usage cannot be negative")

        self.session_tokens_used += tokens
        self.session_cost_used += cost

    def token_utilization(self) -> float:
        return self.session_tokens_used / self.max_tokens

    def cost_utilization(self) -> float:
        return self.session_cost_used / self.max_cost

    def is_near_token_limit(self) -> bool:
        return self.token_utilization() >= self.warning_threshold

    def is_near_cost_limit(self) -> bool:
        return self.cost_utilization() >= self.warning_threshold

    # Names used by the interactive surface
    is_approaching_token_limit = is_near_token_limit
    is_approaching_cost_limit = is_near_cost_limit

    def is_token_limit_exceeded(self) -> bool:
        return self.session_tokens_used >= self.max_tokens

    def is_cost_limit_exceeded(self) -> bool:
        return self.session_cost_used >= self.max_cost

    def is_exhausted(self) -> bool:
        return self.is_token_limit_exceeded() or self.is_cost_limit_exceeded()

    def extend(self, tokens: int, cost: float, reason: str = "Budget extension") -> BudgetExtension:
        """Grant additional tokens and cost.

        Every call appends its own ledger entry; grants are never merged.
        One amount may be zero as long as the other is positive, so a
        tokens-only or cost-only grant is valid.

        Raises:
            InvalidExtension: If an amount is negative or nothing is granted
        """
        if tokens < 0 or cost < 0:
            raise InvalidExtension(f"Extension amounts cannot be negative (tokens={tokens}, cost={cost})")
        if tokens == 0 and cost == 0:
            raise InvalidExtension("Extension must grant additional tokens or cost")

        extension = BudgetExtension(tokens=tokens, cost=cost, reason=reason or "Budget extension")
        self._extensions.append(extension)

        logger.info(
            f"Budget extended by {tokens} tokens / ${cost:.2f}: {extension.reason}",
            extra={"max_tokens": self.max_tokens, "max_cost": self.max_cost}
        )
        return extension

    def status(self) -> BudgetStatus:
        """Comprehensive budget status."""
        return BudgetStatus(
            tokens_used=self.session_tokens_used,
            cost_used=self.session_cost_used,
            max_tokens=self.max_tokens,
            max_cost=self.max_cost,
            token_utilization=self.token_utilization(),
            cost_utilization=self.cost_utilization(),
            is_approaching_token_limit=self.is_near_token_limit(),
            is_approaching_cost_limit=self.is_near_cost_limit(),
            is_token_limit_exceeded=self.is_token_limit_exceeded(),
            is_cost_limit_exceeded=self.is_cost_limit_exceeded(),
            extensions_count=len(self._extensions),
            warning_threshold=self.warning_threshold
        )

    def snapshot(self) -> BudgetSnapshot:
        """Export state for persistence."""
        return BudgetSnapshot(
            initial_tokens=self.initial_tokens,
            initial_cost=self.initial_cost,
            extensions=[extension.model_copy() for extension in self._extensions],
            session_tokens_used=self.session_tokens_used,
            session_cost_used=self.session_cost_used,
            warning_threshold=self.warning_threshold
        )

    @classmethod
    def restore(cls, snapshot: BudgetSnapshot) -> "BudgetTracker":
        """Rebuild a tracker; maxima come from replaying the extension ledger."""
        tracker = cls(
            max_tokens=snapshot.initial_tokens,
            max_cost=snapshot.initial_cost,
            warning_threshold=snapshot.warning_threshold
        )
        tracker.session_tokens_used = snapshot.session_tokens_used
        tracker.session_cost_used = snapshot.session_cost_used
        tracker._extensions = [extension.model_copy() for extension in snapshot.extensions]
        return tracker
