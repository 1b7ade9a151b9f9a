"""
Status Streaming

Push subscription to task status changes plus the user-facing
notifications raised while a generation is tracked.

Usage:
    from services.streaming import StatusSubscriptionChannel

    channel = StatusSubscriptionChannel()
    subscription = channel.subscribe(task_id, on_update=tracker_callback)
"""

from .channel import StatusSubscriptionChannel, Subscription, parse_event_data
from .notifications import Notification, NotificationType, Notifier

__all__ = [
    "StatusSubscriptionChannel",
    "Subscription",
    "parse_event_data",
    "Notification",
    "NotificationType",
    "Notifier",
]
