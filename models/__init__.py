"""ORM models exposed by the offline sync client."""
from .pending_action import PendingActionEntry

__all__ = ["PendingActionEntry"]
