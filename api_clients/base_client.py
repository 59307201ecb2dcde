import requests
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import logging

from api_clients.change_feed import ChangeEvent, ChangeFeed, ChangeType, Listener
from api_clients.filters import Filter, validate_filters
from utils.errors import PersistenceError

logger = logging.getLogger("automation_service")


class TableStore(ABC):
    """
    Generic table access used by every client in this package.

    `update` must evaluate its filters atomically with the write and return
    only the rows it changed; the processor's conditional claim relies on the
    loser getting an empty list back.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    @abstractmethod
    def select(self,
               table: str,
               filters: Optional[List[Filter]] = None,
               order_by: Optional[str] = None,
               descending: bool = False,
               limit: Optional[int] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update(self, table: str, values: Dict[str, Any], filters: List[Filter]) -> List[Dict[str, Any]]:
        pass

    def subscribe(self, table: str, listener: Listener, filters: Optional[List[Filter]] = None) -> Callable[[], None]:
        return self.feed.subscribe(table, listener, filters)

    def _publish(self, event_type: ChangeType, table: str, rows: List[Dict[str, Any]]):
        for row in rows:
            self.feed.publish(ChangeEvent(event_type=event_type, table=table, row=dict(row)))


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_in_item(value: Any) -> str:
    text = _format_value(value)
    if any(ch in text for ch in ',()"'):
        escaped = text.replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_query(filters: Optional[List[Filter]] = None,
                order_by: Optional[str] = None,
                descending: bool = False,
                limit: Optional[int] = None) -> Dict[str, str]:
    """Translates (column, op, value) filters into PostgREST query parameters."""
    params: Dict[str, str] = {}
    for column, op, value in validate_filters(filters or []):
        if op == "in":
            rendered = f"in.({','.join(_format_in_item(v) for v in value)})"
        else:
            rendered = f"{op}.{_format_value(value)}"
        if column in params:
            # PostgREST wants repeated columns combined with and=(...)
            existing = params.pop(column)
            params["and"] = f"({column}.{existing},{column}.{rendered})"
        else:
            params[column] = rendered
    if order_by:
        params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
    if limit is not None:
        params["limit"] = str(limit)
    return params


class RestTableStore(TableStore):
    """TableStore backed by a PostgREST endpoint (e.g. a Supabase project)."""

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 feed: Optional[ChangeFeed] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 15.0):
        super().__init__(feed)
        self.base_url = f"{base_url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, table: str, params: Dict[str, str], json: Any = None,
                 prefer: Optional[str] = None) -> List[Dict[str, Any]]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.HTTPError as e:
            body = e.response.text if e.response is not None else ""
            logger.error(f"{method} {table} failed: {e} {body}")
            raise PersistenceError(f"{method} {table} failed: {body or e}",
                                   status_code=e.response.status_code if e.response is not None else None) from e
        except requests.RequestException as e:
            logger.error(f"{method} {table} failed: {e}")
            raise PersistenceError(f"{method} {table} failed: {e}") from e

        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        params = build_query(filters, order_by, descending, limit)
        params["select"] = "*"
        return self._request("GET", table, params)

    def insert(self, table, row):
        rows = self._request("POST", table, {}, json=row, prefer="return=representation")
        if not rows:
            raise PersistenceError(f"Insert into {table} returned no row")
        self._publish(ChangeType.INSERT, table, rows)
        return rows[0]

    def update(self, table, values, filters):
        if not filters:
            raise PersistenceError(f"Refusing unfiltered update on {table}")
        rows = self._request("PATCH", table, build_query(filters), json=values, prefer="return=representation")
        self._publish(ChangeType.UPDATE, table, rows)
        return rows
