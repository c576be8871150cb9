"""Abstract object store interface."""

from abc import ABC, abstractmethod


class ObjectStore(ABC):
    """Read access to bucket objects."""

    @abstractmethod
    async def fetch(self, bucket: str, key: str) -> bytes:
        """Fetch an object's payload.

        Args:
            bucket: Bucket name
            key: Decoded object key

        Returns:
            Object content

        Raises:
            ObjectNotFoundError: If the object does not exist
            TransientError: If the store is unavailable
        """
        pass
