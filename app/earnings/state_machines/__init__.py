"""
State machine enums for the earnings app.

Usage:
    from earnings.state_machines import PayoutStatus, FailureReason, EventCategory
"""

from earnings.state_machines.states import (
    CONNECT_EVENT_TYPES,
    PLATFORM_EVENT_TYPES,
    TRANSFERS_CAPABILITY,
    EventCategory,
    FailureReason,
    MetadataKey,
    PayoutStatus,
    WebhookEventStatus,
)

__all__ = [
    "CONNECT_EVENT_TYPES",
    "PLATFORM_EVENT_TYPES",
    "TRANSFERS_CAPABILITY",
    "EventCategory",
    "FailureReason",
    "MetadataKey",
    "PayoutStatus",
    "WebhookEventStatus",
]
