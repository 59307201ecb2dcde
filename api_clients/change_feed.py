import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from api_clients.filters import Filter, row_matches

logger = logging.getLogger("automation_service")


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    event_type: ChangeType
    table: str
    row: Dict[str, Any]


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """
    In-process pub/sub keyed by table name.

    Delivery is at-least-once from the writer's point of view: stores publish
    after every successful write and the database webhook republishes rows
    written elsewhere, so a listener may see the same row twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Tuple[int, Listener, Optional[List[Filter]]]]] = {}
        self._next_id = 0

    def subscribe(self, table: str, listener: Listener, filters: Optional[List[Filter]] = None) -> Callable[[], None]:
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._listeners.setdefault(table, []).append((token, listener, filters))

        def unsubscribe():
            with self._lock:
                entries = self._listeners.get(table, [])
                self._listeners[table] = [e for e in entries if e[0] != token]

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Delivers `event` to matching listeners. Returns how many were called."""
        with self._lock:
            targets = list(self._listeners.get(event.table, []))

        delivered = 0
        for _, listener, filters in targets:
            if filters and not row_matches(event.row, filters):
                continue
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Change listener for '{event.table}' failed: {e}")
        return delivered

    def listener_count(self, table: str) -> int:
        with self._lock:
            return len(self._listeners.get(table, []))
