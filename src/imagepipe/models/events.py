"""
Event and record models for the image pipeline.

The notification payload mirrors the bucket notification document
``{"Records": [{"eventName": ..., "s3": {"bucket": {"name"}, "object": {"key"}}}]}``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote_plus, unquote_plus
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from imagepipe.core.exceptions import ValidationError


class EventType(str, Enum):
    """Kinds of bucket mutation observed by the watcher."""

    CREATED = "Created"
    REMOVED = "Removed"

    @property
    def event_name(self) -> str:
        """Bucket notification event name for this mutation kind."""
        return "ObjectCreated:Put" if self is EventType.CREATED else "ObjectRemoved:Delete"

    @classmethod
    def from_event_name(cls, event_name: str) -> Optional["EventType"]:
        if event_name.startswith("ObjectCreated"):
            return cls.CREATED
        if event_name.startswith("ObjectRemoved"):
            return cls.REMOVED
        return None


class StorageObject(BaseModel):
    """Object identity in a bucket. ``key`` is kept in its notification (encoded) form."""

    model_config = ConfigDict(frozen=True)

    bucket: str = Field(..., description="Bucket name")
    key: str = Field(..., description="Object key as delivered (URL-encoded, '+' for space)")

    @classmethod
    def from_raw_key(cls, bucket: str, raw_key: str) -> "StorageObject":
        """Build from a real object key, encoding it the way notifications do."""
        return cls(bucket=bucket, key=quote_plus(raw_key, safe="/"))

    def decoded_key(self) -> str:
        """Return the real object key.

        Raises:
            ValidationError: If the key is not valid percent-encoded UTF-8
        """
        try:
            return unquote_plus(self.key, errors="strict")
        except UnicodeDecodeError as e:
            raise ValidationError("Malformed object key") from e

    @property
    def uri(self) -> str:
        return f"{self.bucket}/{self.key}"


class NotificationEvent(BaseModel):
    """One bucket mutation, produced once per watcher observation."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    object: StorageObject
    attributes: Dict[str, str] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Render the bucket notification document for this event."""
        return {
            "Records": [
                {
                    "eventName": self.type.event_name,
                    "s3": {
                        "bucket": {"name": self.object.bucket},
                        "object": {"key": self.object.key},
                    },
                }
            ]
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A queued or directly delivered copy of a published notification."""

    message_id: str = Field(default_factory=lambda: str(uuid4()))
    body: bytes
    attributes: Dict[str, str] = Field(default_factory=dict)
    receive_count: int = 0
    enqueued_at: datetime = Field(default_factory=_utcnow)

    def copy_for_delivery(self) -> "Message":
        """Independent copy with a fresh identity, as each subscriber gets."""
        return Message(body=self.body, attributes=dict(self.attributes))


class ImageRecord(BaseModel):
    """Row of the images table, keyed by filename."""

    filename: str = Field(..., description="Primary key: decoded object key")
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_item(self) -> Dict[str, Any]:
        """Flat table item ``{"filename": ..., **attributes}``."""
        return {**self.attributes, "filename": self.filename}


class ChangeType(str, Enum):
    """Kind of committed state store mutation."""

    INSERT = "Insert"
    MODIFY = "Modify"
    REMOVE = "Remove"


class ChangeEvent(BaseModel):
    """Before/after pair for one committed mutation."""

    model_config = ConfigDict(frozen=True)

    sequence_number: int
    event_type: ChangeType
    keys: Dict[str, str]
    before: Optional[ImageRecord] = None
    after: Optional[ImageRecord] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    committed_at: datetime = Field(default_factory=_utcnow)

    @property
    def filename(self) -> str:
        return self.keys["filename"]


class DeadLetterBody(BaseModel):
    """Structured body written to the dead-letter queue by fail-fast consumers."""

    bucket: str
    key: str
    error: str


class CaptionUpdate(BaseModel):
    """Table update published with ``comment_type`` on the delete/update topic."""

    id: str = Field(..., description="Filename of the image being annotated")
    value: str = Field(..., description="Caption text")
