"""Budget models: extension ledger and persisted snapshot."""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field


class BudgetExtension(BaseModel):
    """A single user-authorized increase of the session ceilings."""

    tokens: int = Field(..., ge=0, description="Additional tokens granted")
    cost: float = Field(..., ge=0.0, description="Additional cost granted in USD")
    reason: str = Field(default="Budget extension", description="Why the extension was granted")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the extension was granted"
    )


class BudgetSnapshot(BaseModel):
    """
    Serializable budget state.

    Maximum values are never stored; they are re-derived from the initial
    limits plus the extension ledger.
    """

    initial_tokens: int = Field(..., gt=0)
    initial_cost: float = Field(..., gt=0.0)
    extensions: List[BudgetExtension] = Field(default_factory=list)
    session_tokens_used: int = Field(default=0, ge=0)
    session_cost_used: float = Field(default=0.0, ge=0.0)
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)

    @property
    def max_tokens(self) -> int:
        return self.initial_tokens + sum(extension.tokens for extension in self.extensions)

    @property
    def max_cost(self) -> float:
        return self.initial_cost + sum(extension.cost for extension in self.extensions)


class BudgetStatus(BaseModel):
    """Point-in-time budget report for display and negotiation."""

    tokens_used: int
    cost_used: float
    max_tokens: int
    max_cost: float
    token_utilization: float
    cost_utilization: float
    is_approaching_token_limit: bool
    is_approaching_cost_limit: bool
    is_token_limit_exceeded: bool
    is_cost_limit_exceeded: bool
    extensions_count: int
    warning_threshold: float
