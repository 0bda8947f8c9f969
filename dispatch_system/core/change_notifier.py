"""
Change Notifier - cross-instance "collection changed" signal

After every successful save an instance publishes the collection name on the
shared store. Other instances drain those messages with poll() and re-read
the named collections. Regaining focus re-reads everything as a catch-all,
because a notification can be missed (store restart, subscription opened late).

This only narrows the window for lost updates. Nothing here orders or merges
writes.

Message format (JSON on dispatch:pubsub:collection:<name>):
    {"collection": "techs", "origin": "<instance id>", "timestamp": "..."}
"""

import json
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from datashapes import generate_id, to_iso, utc_now
from error_handler import ErrorCategory, ErrorHandler, ErrorSeverity, get_error_handler
from redis_client import RedisClient, collection_from_channel

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[str], None]
FocusHandler = Callable[[], None]

ALL = "*"


class NotificationFailed(Exception):
    """Publish or poll against the store failed."""


class ChangeNotifier:
    """Publish/subscribe for collection changes, one per application instance."""

    def __init__(self, redis_client: RedisClient, instance_id: Optional[str] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.redis = redis_client
        self.instance_id = instance_id or generate_id("INST")
        self.error_handler = error_handler or get_error_handler()
        self._handlers: Dict[str, List[ChangeHandler]] = defaultdict(list)
        self._focus_handlers: List[FocusHandler] = []
        self._pubsub = None

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def start(self) -> bool:
        """Open the store subscription. Safe to call repeatedly."""
        if self._pubsub is None:
            self._pubsub = self.redis.open_change_subscription()
            if self._pubsub is not None:
                logger.debug(f"{self.instance_id} listening for collection changes")
        return self._pubsub is not None

    def subscribe(self, collection: str, handler: ChangeHandler):
        """Call handler(collection) when another instance rewrites it. Use '*' for every collection."""
        self._handlers[collection].append(handler)

    def unsubscribe(self, collection: str, handler: ChangeHandler):
        if handler in self._handlers.get(collection, []):
            self._handlers[collection].remove(handler)

    def subscribe_focus(self, handler: FocusHandler):
        self._focus_handlers.append(handler)

    # =========================================================================
    # PUBLISH
    # =========================================================================

    def publish(self, collection: str) -> bool:
        message = {
            "collection": collection,
            "origin": self.instance_id,
            "timestamp": to_iso(utc_now()),
        }
        ok = self.redis.publish_change(collection, message)
        if not ok:
            # Peers still catch up on their next focus refresh
            self.error_handler.handle_error(
                NotificationFailed(f"Change notification for {collection} not delivered"),
                ErrorCategory.CHANGE_NOTIFICATION,
                ErrorSeverity.MEDIUM_ALERT,
                context=collection,
                operation="publish_change"
            )
        return ok

    # =========================================================================
    # RECEIVE
    # =========================================================================

    def poll(self, max_messages: int = 1000) -> List[str]:
        """
        Drain pending notifications without blocking and run handlers.

        Returns:
            Changed collection names, first-seen order, own writes excluded.
        """
        if not self.start():
            return []

        changed: List[str] = []
        for _ in range(max_messages):
            try:
                message = self._pubsub.get_message(timeout=0)
            except Exception as e:
                self.error_handler.handle_error(
                    NotificationFailed(str(e)),
                    ErrorCategory.CHANGE_NOTIFICATION,
                    ErrorSeverity.MEDIUM_ALERT,
                    operation="poll_changes"
                )
                self._drop_subscription()
                break

            if message is None:
                break
            if message.get("type") not in ("pmessage", "message"):
                continue

            name = self._collection_for(message)
            if name and name not in changed:
                changed.append(name)

        for name in changed:
            self._dispatch(name)
        return changed

    def notify_focus(self) -> int:
        """Run every focus handler. Returns how many completed."""
        completed = 0
        for handler in list(self._focus_handlers):
            if self._run_handler(handler, "focus"):
                completed += 1
        return completed

    def close(self):
        self._drop_subscription()
        self._handlers.clear()
        self._focus_handlers.clear()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _collection_for(self, message: Dict) -> Optional[str]:
        """Collection name of a foreign change, None for our own or unreadable ones."""
        data = message.get("data")
        payload = {}
        if isinstance(data, (str, bytes)):
            try:
                decoded = json.loads(data)
                if isinstance(decoded, dict):
                    payload = decoded
            except ValueError:
                logger.debug(f"Non-JSON change payload on {message.get('channel')}")

        if payload.get("origin") == self.instance_id:
            return None
        return payload.get("collection") or collection_from_channel(message.get("channel"))

    def _dispatch(self, collection: str):
        for handler in list(self._handlers.get(collection, [])) + list(self._handlers.get(ALL, [])):
            self._run_handler(handler, collection, collection)

    def _run_handler(self, handler: Callable, label: str, *args) -> bool:
        try:
            handler(*args)
            return True
        except Exception as e:
            self.error_handler.handle_error(
                e,
                ErrorCategory.REFRESH_HANDLER,
                ErrorSeverity.MEDIUM_ALERT,
                context=label,
                operation=getattr(handler, "__name__", "refresh_handler"),
                attempt_recovery=False
            )
            return False

    def _drop_subscription(self):
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except Exception as e:
                logger.debug(f"Closing change subscription failed: {e}")
            self._pubsub = None
