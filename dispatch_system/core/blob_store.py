"""
Blob store for attachment bytes, keyed by the FileRecord id.

Ids are generated and never reused, so blob writes never race each other.
A missing blob is reported and returned as None; callers show it as
"preview unavailable".
"""

import logging
from typing import Optional

from error_handler import ErrorCategory, ErrorHandler, ErrorSeverity, get_error_handler
from redis_client import RedisClient

logger = logging.getLogger(__name__)


class BlobUnavailable(Exception):
    """Blob bytes could not be written or found."""


class BlobStore:
    def __init__(self, redis_client: RedisClient, error_handler: Optional[ErrorHandler] = None):
        self.redis = redis_client
        self.error_handler = error_handler or get_error_handler()

    def put(self, blob_id: str, data: bytes) -> bool:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"Blob data must be bytes, got {type(data).__name__}")
        ok = self.redis.put_blob(blob_id, bytes(data))
        if not ok:
            self.error_handler.handle_error(
                BlobUnavailable(f"Could not store blob {blob_id}"),
                ErrorCategory.BLOB_STORE,
                ErrorSeverity.HIGH_DEGRADE,
                context=blob_id,
                operation="blob_put"
            )
        return ok

    def get(self, blob_id: str) -> Optional[bytes]:
        data = self.redis.get_blob(blob_id)
        if data is None:
            # Metadata written but blob lost between the two writes, or store down
            self.error_handler.handle_error(
                BlobUnavailable(f"Blob {blob_id} not found"),
                ErrorCategory.BLOB_STORE,
                ErrorSeverity.LOW_DEBUG,
                context=blob_id,
                operation="blob_get",
                attempt_recovery=False
            )
        return data

    def delete(self, blob_id: str) -> bool:
        ok = self.redis.delete_blob(blob_id)
        if not ok:
            logger.warning(f"Blob {blob_id} could not be deleted; it will linger until the store is cleared")
        return ok
