import copy
import logging
import threading
from typing import Any, Dict, List, Optional
from uuid import uuid4

from api_clients.base_client import TableStore
from api_clients.change_feed import ChangeFeed, ChangeType
from api_clients.filters import Filter, row_matches, validate_filters
from utils.errors import PersistenceError

logger = logging.getLogger("automation_service")


class InMemoryTableStore(TableStore):
    """
    Process-local TableStore used for local runs and tests.

    A single lock covers every read and write, so a filtered update is one
    atomic check-and-set.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        super().__init__(feed)
        self._lock = threading.Lock()
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        for table, rows in (seed or {}).items():
            for row in rows:
                self.insert(table, row)

    def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        filters = validate_filters(filters or [])
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables.get(table, []) if row_matches(r, filters)]
        if order_by:
            # NULLs sort last ascending, first descending (PostgreSQL default).
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = missing + present if descending else present + missing
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, table, row):
        stored = copy.deepcopy(row)
        if not stored.get("id"):
            stored["id"] = str(uuid4())
        with self._lock:
            rows = self._tables.setdefault(table, [])
            if any(r["id"] == stored["id"] for r in rows):
                raise PersistenceError(f"Duplicate id {stored['id']} in {table}", status_code=409)
            rows.append(stored)
            result = copy.deepcopy(stored)
        self._publish(ChangeType.INSERT, table, [result])
        return result

    def update(self, table, values, filters):
        if not filters:
            raise PersistenceError(f"Refusing unfiltered update on {table}")
        filters = validate_filters(filters)
        changed = []
        with self._lock:
            for row in self._tables.get(table, []):
                if row_matches(row, filters):
                    row.update(copy.deepcopy(values))
                    changed.append(copy.deepcopy(row))
        self._publish(ChangeType.UPDATE, table, changed)
        return changed

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, []))
