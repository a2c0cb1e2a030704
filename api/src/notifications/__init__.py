"""User notifications.

Provides:
- Gmail API email delivery
- Fire-and-forget dispatch with logged failures
- Payment receipt and course welcome templates
"""

from .dispatcher import NotificationDispatcher
from .email import EmailService


__all__ = ["EmailService", "NotificationDispatcher"]
