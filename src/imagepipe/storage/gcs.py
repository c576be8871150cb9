"""Google Cloud Storage object store."""

import asyncio
import logging

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from imagepipe.core.exceptions import ObjectNotFoundError, TransientError
from imagepipe.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class GCSObjectStore(ObjectStore):
    """Object store backed by a Cloud Storage client."""

    def __init__(self, project_id: str | None = None, endpoint: str | None = None):
        """Initialize the storage client.

        Args:
            project_id: GCP project ID. If None, uses default credentials.
            endpoint: Optional API endpoint override (emulators)
        """
        client_options = {"api_endpoint": endpoint} if endpoint else None
        self.client = storage.Client(project=project_id or None, client_options=client_options)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    )
    def _download(self, bucket: str, key: str) -> bytes:
        try:
            return self.client.bucket(bucket).blob(key).download_as_bytes()
        except NotFound as e:
            logger.error(
                "Object not found in GCS",
                extra={"bucket": bucket, "object_name": key},
            )
            raise ObjectNotFoundError(f"Object not found: gs://{bucket}/{key}") from e
        except GoogleAPIError as e:
            logger.warning(
                "GCS download failed",
                extra={"bucket": bucket, "object_name": key, "error": str(e)},
            )
            raise TransientError(f"Failed to download gs://{bucket}/{key}: {e}") from e

    async def fetch(self, bucket: str, key: str) -> bytes:
        content = await asyncio.to_thread(self._download, bucket, key)
        logger.info(
            "Object fetched from GCS",
            extra={"bucket": bucket, "object_name": key, "size_bytes": len(content)},
        )
        return content
