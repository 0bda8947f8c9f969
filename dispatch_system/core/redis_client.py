"""
Redis Client Implementation

Store boundary for the dispatch data layer. Every open instance of the
application talks to the same device-local Redis:

    dispatch:collection:<name>          whole-collection JSON (one SET per save)
    dispatch:blob:<id>                  raw attachment bytes
    dispatch:pubsub:collection:<name>   change notifications

Gracefully degrades to stub behavior if Redis is unavailable: reads return
None, writes return False, and callers decide how loud to be about it.

Usage:
    from redis_client import RedisClient
    client = RedisClient()
    client.save_collection("workorders", payload)
"""

import json
import logging
from typing import Dict, Iterable, Optional

import redis

from dispatch_config import DispatchConfig

logger = logging.getLogger(__name__)

KEY_PREFIX = DispatchConfig.KEY_PREFIX
COLLECTION_PREFIX = f"{KEY_PREFIX}collection:"
BLOB_PREFIX = f"{KEY_PREFIX}blob:"
PUBSUB_PREFIX = f"{KEY_PREFIX}pubsub:"
CHANGE_CHANNEL_PREFIX = f"{PUBSUB_PREFIX}collection:"
CHANGE_CHANNEL_PATTERN = f"{CHANGE_CHANNEL_PREFIX}*"


def collection_key(name: str) -> str:
    return f"{COLLECTION_PREFIX}{name}"


def blob_key(blob_id: str) -> str:
    return f"{BLOB_PREFIX}{blob_id}"


def change_channel(name: str) -> str:
    return f"{CHANGE_CHANNEL_PREFIX}{name}"


def collection_from_channel(channel) -> Optional[str]:
    """Recover the collection name from a change channel."""
    if isinstance(channel, bytes):
        channel = channel.decode('utf-8')
    if not isinstance(channel, str) or not channel.startswith(CHANGE_CHANNEL_PREFIX):
        return None
    return channel[len(CHANGE_CHANNEL_PREFIX):] or None


class RedisClient:
    """
    Shared key-value store used by every dispatch instance on the device.

    Two connections are kept: a text connection (decode_responses=True) for
    collections and notifications, and a binary one for blob bytes.
    Pre-built clients can be injected (fakeredis in tests).
    """

    def __init__(self, client=None, binary_client=None,
                 host: Optional[str] = None, port: Optional[int] = None,
                 db: Optional[int] = None, password: Optional[str] = None):
        self.host = host or DispatchConfig.REDIS_HOST
        self.port = port or DispatchConfig.REDIS_PORT
        self.db = DispatchConfig.REDIS_DB if db is None else db
        self.password = password if password is not None else DispatchConfig.REDIS_PASSWORD
        self._client = client
        self._binary_client = binary_client
        self._connected = False
        self._injected = client is not None

        if client is not None:
            self._adopt_injected()
        else:
            self._connect()

    def _adopt_injected(self):
        """Use caller-provided connections as-is."""
        try:
            self._client.ping()
            self._connected = True
        except Exception as e:
            logger.warning(f"Injected Redis client not answering: {e}. Operating in stub mode.")
            self._connected = False
        if self._binary_client is None:
            logger.debug("No binary client injected; blob operations will be unavailable")

    def _connect(self):
        """Attempt to connect to Redis."""
        common = dict(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            socket_connect_timeout=DispatchConfig.REDIS_SOCKET_TIMEOUT,
            socket_timeout=DispatchConfig.REDIS_SOCKET_TIMEOUT
        )
        try:
            self._client = redis.Redis(decode_responses=True, **common)
            self._binary_client = redis.Redis(decode_responses=False, **common)
            # Test connection
            self._client.ping()
            self._connected = True
            logger.info(f"Connected to Redis at {self.host}:{self.port}")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Operating in stub mode.")
            self._connected = False

    def is_connected(self) -> bool:
        """Check if Redis is available."""
        if not self._connected or self._client is None:
            return False
        try:
            self._client.ping()
            return True
        except Exception:
            self._connected = False
            return False

    def reconnect(self) -> bool:
        """Attempt to reconnect to Redis."""
        if self._client is not None:
            try:
                self._client.ping()
                self._connected = True
                return True
            except Exception as e:
                logger.debug(f"Existing Redis connection still down: {e}")
        if self._injected:
            # Injected connections are never replaced
            self._connected = False
            return False
        self._connect()
        return self._connected

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def load_collection(self, name: str, raise_on_error: bool = False) -> Optional[str]:
        """
        Fetch the serialized collection, None when absent or unavailable.

        With raise_on_error, a GET that fails on a live connection is
        re-raised so the caller can tell it apart from a missing key.
        """
        if not self.is_connected():
            return None

        try:
            return self._client.get(collection_key(name))
        except Exception as e:
            logger.error(f"Redis load_collection error for {name}: {e}")
            if raise_on_error:
                raise
            return None

    def save_collection(self, name: str, payload: str) -> bool:
        """Replace the whole collection in a single SET."""
        if not self.is_connected():
            return False

        try:
            self._client.set(collection_key(name), payload)
            return True
        except Exception as e:
            logger.error(f"Redis save_collection error for {name}: {e}")
            return False

    def delete_collection(self, name: str) -> bool:
        if not self.is_connected():
            return False

        try:
            self._client.delete(collection_key(name))
            return True
        except Exception as e:
            logger.error(f"Redis delete_collection error for {name}: {e}")
            return False

    # =========================================================================
    # BLOBS
    # =========================================================================

    def put_blob(self, blob_id: str, data: bytes) -> bool:
        if not self.is_connected() or self._binary_client is None:
            return False

        try:
            self._binary_client.set(blob_key(blob_id), data)
            return True
        except Exception as e:
            logger.error(f"Redis put_blob error for {blob_id}: {e}")
            return False

    def get_blob(self, blob_id: str) -> Optional[bytes]:
        if not self.is_connected() or self._binary_client is None:
            return None

        try:
            return self._binary_client.get(blob_key(blob_id))
        except Exception as e:
            logger.error(f"Redis get_blob error for {blob_id}: {e}")
            return None

    def delete_blob(self, blob_id: str) -> bool:
        if not self.is_connected() or self._binary_client is None:
            return False

        try:
            self._binary_client.delete(blob_key(blob_id))
            return True
        except Exception as e:
            logger.error(f"Redis delete_blob error for {blob_id}: {e}")
            return False

    # =========================================================================
    # PUB/SUB HOOKS
    # =========================================================================

    def publish_change(self, name: str, message: Dict) -> bool:
        """Announce that a collection was rewritten."""
        if not self.is_connected():
            return False

        try:
            self._client.publish(change_channel(name), json.dumps(message))
            return True
        except Exception as e:
            logger.error(f"Redis publish_change error for {name}: {e}")
            return False

    def open_change_subscription(self):
        """
        PubSub subscribed to every collection change channel.

        Returns None in stub mode; the caller then relies on focus refresh.
        """
        if not self.is_connected():
            return None

        try:
            pubsub = self._client.pubsub()
            pubsub.psubscribe(CHANGE_CHANNEL_PATTERN)
            return pubsub
        except Exception as e:
            logger.error(f"Redis open_change_subscription error: {e}")
            return None

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def clear_namespace(self, collections: Iterable[str] = ()) -> int:
        """
        Remove every dispatch key (collections and blobs).

        Returns the number of keys deleted.
        """
        if not self.is_connected():
            return 0

        try:
            keys = list(self._client.scan_iter(match=f"{KEY_PREFIX}*"))
            if keys:
                self._client.delete(*keys)
            for name in collections:
                self.publish_change(name, {"collection": name, "origin": "clear"})
            return len(keys)
        except Exception as e:
            logger.error(f"Redis clear_namespace error: {e}")
            return 0

    def health_check(self) -> Dict:
        """Check Redis health and return status."""
        result = {
            "connected": self.is_connected(),
            "host": self.host,
            "port": self.port,
            "blobs_available": self._binary_client is not None
        }

        if result["connected"]:
            try:
                info = self._client.info("memory")
                result["used_memory"] = info.get("used_memory_human", "unknown")
                result["status"] = "healthy"
            except Exception as e:
                result["status"] = f"degraded: {e}"
        else:
            result["status"] = "disconnected"

        return result


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Process-wide client for entry points; library code takes one injected."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
