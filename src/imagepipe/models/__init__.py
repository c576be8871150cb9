"""Data models shared by every pipeline stage."""

from imagepipe.models.events import (
    CaptionUpdate,
    ChangeEvent,
    ChangeType,
    DeadLetterBody,
    EventType,
    ImageRecord,
    Message,
    NotificationEvent,
    StorageObject,
)

__all__ = [
    "CaptionUpdate",
    "ChangeEvent",
    "ChangeType",
    "DeadLetterBody",
    "EventType",
    "ImageRecord",
    "Message",
    "NotificationEvent",
    "StorageObject",
]
