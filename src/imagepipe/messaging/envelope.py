"""
Transport envelope codec.

A published notification travels with two layers of serialization: the
message body holds a serialized transport envelope, and that envelope's
``Message`` field holds the serialized notification payload. Decoding each
layer raises its own error type so a broken envelope can be told apart from
a broken payload.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from imagepipe.core.exceptions import EnvelopeError, PayloadError
from imagepipe.models.events import StorageObject


def wrap_notification(
    payload: Mapping[str, Any],
    attributes: Mapping[str, str] | None = None,
    topic_name: str = "",
) -> bytes:
    """Serialize a payload inside a transport envelope.

    Args:
        payload: Notification document (e.g. ``{"Records": [...]}``)
        attributes: Message attributes used for subscription filtering
        topic_name: Name of the publishing topic

    Returns:
        UTF-8 encoded envelope, ready to be used as a message body
    """
    envelope = {
        "Type": "Notification",
        "MessageId": str(uuid4()),
        "TopicArn": topic_name,
        "Message": json.dumps(payload, separators=(",", ":"), ensure_ascii=False),
        "MessageAttributes": {
            name: {"Type": "String", "Value": value}
            for name, value in (attributes or {}).items()
        },
        "Timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def unwrap_envelope(body: bytes | str) -> Dict[str, Any]:
    """Decode the outer transport envelope.

    Raises:
        EnvelopeError: If the body is not a JSON object with a string ``Message``
    """
    try:
        envelope = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EnvelopeError(f"Message body is not valid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise EnvelopeError("Message body is not a JSON object")
    if not isinstance(envelope.get("Message"), str):
        raise EnvelopeError("Envelope has no serialized 'Message' field")
    return envelope


def unwrap_notification(body: bytes | str) -> Dict[str, Any]:
    """Decode both serialization layers and return the notification payload.

    Raises:
        EnvelopeError: If the outer envelope is malformed
        PayloadError: If the wrapped payload is malformed
    """
    envelope = unwrap_envelope(body)
    try:
        payload = json.loads(envelope["Message"])
    except json.JSONDecodeError as e:
        raise PayloadError(f"Notification payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise PayloadError("Notification payload is not a JSON object")
    return payload


def extract_storage_objects(payload: Mapping[str, Any]) -> List[StorageObject]:
    """Return the bucket objects referenced by a notification payload.

    A payload without ``Records`` is not a bucket notification and yields
    an empty list.

    Raises:
        PayloadError: If a record lacks the bucket name or object key
    """
    records = payload.get("Records")
    if not records:
        return []
    if not isinstance(records, list):
        raise PayloadError("'Records' is not a list")

    objects = []
    for index, record in enumerate(records):
        try:
            s3 = record["s3"]
            objects.append(
                StorageObject(bucket=s3["bucket"]["name"], key=s3["object"]["key"])
            )
        except (KeyError, TypeError, ModelValidationError) as e:
            raise PayloadError(f"Record {index} is missing s3 bucket/object fields") from e
    return objects


def record_event_names(payload: Mapping[str, Any]) -> List[str]:
    """Event names of each record, in record order (empty string if absent)."""
    records = payload.get("Records") or []
    return [
        record.get("eventName", "") if isinstance(record, dict) else ""
        for record in records
    ]
