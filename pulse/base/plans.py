# ==============================================================================
# Plan Directory Abstract Base Class
# ==============================================================================
"""
Abstract interface for resolving a user's current subscription tier.

Plan tiers drive retention horizons and the free-tier ingestion ceiling. The
engine never reaches into a billing system directly; it asks a PlanDirectory.
"""

from abc import ABC, abstractmethod

from pulse.core.models import PlanTier


class PlanDirectory(ABC):
    """Maps user ids to their current plan tier."""

    @abstractmethod
    def current_plan_tier(self, user_id: str) -> PlanTier:
        """
        Resolve a user's plan tier.

        Unknown users are on the free tier.
        """
        ...

    def invalidate(self, user_id: str) -> None:
        """Forget any cached tier for a user (no-op unless caching)."""
        return None
