"""Follow-up task creation."""

from .service import FollowUpService

__all__ = ["FollowUpService"]
