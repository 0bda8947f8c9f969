"""
Collection Store - whole-collection persistence over the shared store

Each named collection is one JSON document:

    {"schema_version": 1, "collection": "techs", "saved_at": "...", "records": [...]}

A bare JSON list (the layout the earlier browser build wrote) is accepted on
load. There is no per-record API and no version check before a write: every
save replaces the whole collection, so concurrent writers get
last-write-wins at collection granularity.

Load never raises. Missing data is an empty collection; corrupt data or an
unreachable store is reported through ErrorHandler and also comes back empty
so the application stays usable.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from datashapes import to_iso, utc_now
from dispatch_config import DispatchConfig
from error_handler import ErrorCategory, ErrorHandler, ErrorSeverity, get_error_handler
from redis_client import RedisClient

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """Shared store could not be reached."""


class CorruptCollection(Exception):
    """Stored collection could not be decoded into a list of records."""


class CollectionStore:
    """load/save of named, ordered record lists."""

    def __init__(self, redis_client: RedisClient, error_handler: Optional[ErrorHandler] = None):
        self.redis = redis_client
        self.error_handler = error_handler or get_error_handler()

    def load(self, name: str) -> List[Dict[str, Any]]:
        """
        Read a collection.

        Returns:
            Records in stored order; [] when missing, corrupt or unavailable.
        """
        if not self.redis.is_connected():
            self.error_handler.handle_error(
                StoreUnavailable("Shared store unavailable"),
                ErrorCategory.STORE_CONNECTION,
                ErrorSeverity.HIGH_DEGRADE,
                context=name,
                operation="collection_load"
            )
            return []

        try:
            raw = self.redis.load_collection(name, raise_on_error=True)
        except Exception as e:
            self.error_handler.handle_error(
                e,
                ErrorCategory.STORE_LOAD,
                ErrorSeverity.HIGH_DEGRADE,
                context=name,
                operation="collection_load"
            )
            return []
        if raw is None:
            return []

        try:
            records = self._decode(name, raw)
        except (CorruptCollection, ValueError) as e:
            self.error_handler.handle_error(
                e,
                ErrorCategory.STORE_LOAD,
                ErrorSeverity.HIGH_DEGRADE,
                context=name,
                operation="collection_load",
                attempt_recovery=False
            )
            return []

        kept = [r for r in records if isinstance(r, dict)]
        if len(kept) != len(records):
            logger.warning(f"Dropped {len(records) - len(kept)} malformed record(s) from {name}")
        return kept

    def save(self, name: str, records: List[Dict[str, Any]]) -> bool:
        """
        Replace a collection in one write.

        Returns:
            True when the store accepted the write.
        """
        try:
            payload = json.dumps(self._envelope(name, records), allow_nan=False)
        except (TypeError, ValueError) as e:
            self.error_handler.handle_error(
                e,
                ErrorCategory.DATA_SERIALIZATION,
                ErrorSeverity.HIGH_DEGRADE,
                context=name,
                operation="collection_save",
                attempt_recovery=False
            )
            return False

        if not self.redis.save_collection(name, payload):
            self.error_handler.handle_error(
                StoreUnavailable(f"Write of {len(records)} record(s) was not accepted"),
                ErrorCategory.STORE_SAVE,
                ErrorSeverity.HIGH_DEGRADE,
                context=name,
                operation="collection_save"
            )
            return False

        logger.debug(f"Saved {len(records)} record(s) to {name}")
        return True

    @staticmethod
    def _envelope(name: str, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "schema_version": DispatchConfig.SCHEMA_VERSION,
            "collection": name,
            "saved_at": to_iso(utc_now()),
            "records": list(records),
        }

    @staticmethod
    def _decode(name: str, raw: str) -> List[Any]:
        data = json.loads(raw)

        if isinstance(data, list):
            return data

        if isinstance(data, dict) and isinstance(data.get("records"), list):
            version = data.get("schema_version", 0)
            if isinstance(version, int) and version > DispatchConfig.SCHEMA_VERSION:
                logger.warning(
                    f"{name} was written with schema v{version}, this build reads v{DispatchConfig.SCHEMA_VERSION}"
                )
            return data["records"]

        raise CorruptCollection(f"Unexpected {type(data).__name__} payload for {name}")
