"""
Managed database access.

Thin pass-through to Supabase (row storage + auth). Schema, defaults, foreign
keys and row-level security belong to the managed service; this module only
issues equality-filtered selects/inserts/updates/deletes and merges related
rows client-side, because the client API used here does no joins.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client, create_client

from agrisense import config

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


class DataAccessError(Exception):
    """The managed database or auth service rejected or failed a request."""


def get_client() -> Client:
    global _client
    if _client is None:
        url = config.get_supabase_url()
        key = config.get_supabase_key()
        if not url or not key:
            raise DataAccessError("SUPABASE_URL and SUPABASE_KEY must be configured")
        _client = create_client(url, key)
    return _client


def set_client(client: Optional[Client]) -> None:
    """Install (or clear with None) the process-wide client."""
    global _client
    _client = client


def _execute(query, action: str):
    try:
        return query.execute()
    except Exception as e:
        logger.error("Database %s failed: %s", action, e)
        raise DataAccessError(f"{action} failed: {e}") from e


def _apply_filters(query, filters: Optional[Dict[str, Any]]):
    for column, value in (filters or {}).items():
        query = query.eq(column, value)
    return query


def select_rows(table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[str] = None, ascending: bool = True,
                limit: Optional[int] = None) -> List[Dict[str, Any]]:
    query = _apply_filters(get_client().table(table).select(columns), filters)
    if order_by:
        query = query.order(order_by, desc=not ascending)
    if limit:
        query = query.limit(limit)
    return _execute(query, f"select from {table}").data or []


def select_in(table: str, column: str, values: Iterable[Any], columns: str = "*") -> List[Dict[str, Any]]:
    values = list(values)
    if not values:
        return []
    query = get_client().table(table).select(columns).in_(column, values)
    return _execute(query, f"select from {table}").data or []


def select_one(table: str, filters: Dict[str, Any], columns: str = "*") -> Optional[Dict[str, Any]]:
    """Maybe-single: the first matching row or None."""
    rows = select_rows(table, columns=columns, filters=filters, limit=1)
    return rows[0] if rows else None


def insert_row(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    data = _execute(get_client().table(table).insert(row), f"insert into {table}").data or []
    return data[0] if data else dict(row)


def update_rows(table: str, fields: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    query = _apply_filters(get_client().table(table).update(fields), filters)
    return _execute(query, f"update {table}").data or []


def delete_rows(table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    if not filters:
        raise ValueError("delete_rows requires at least one filter")
    query = _apply_filters(get_client().table(table).delete(), filters)
    return _execute(query, f"delete from {table}").data or []


def count_rows(table: str, filters: Optional[Dict[str, Any]] = None) -> int:
    query = _apply_filters(get_client().table(table).select("id", count="exact"), filters)
    resp = _execute(query, f"count {table}")
    if resp.count is not None:
        return resp.count
    return len(resp.data or [])


def call_function(name: str, params: Dict[str, Any]) -> Any:
    return _execute(get_client().rpc(name, params), f"rpc {name}").data


def attach_related(parents: List[Dict[str, Any]], related: List[Dict[str, Any]],
                   parent_key: str, related_key: str, field: str) -> List[Dict[str, Any]]:
    """Merge related rows into parent rows in memory.

    Every parent gets `field` set to the first related row whose `related_key`
    equals the parent's `parent_key`, or None when there is no such row.
    Parents are copied, not mutated.
    """
    index: Dict[Any, Dict[str, Any]] = {}
    for row in related:
        index.setdefault(row.get(related_key), row)
    merged = []
    for parent in parents:
        item = dict(parent)
        item[field] = index.get(parent.get(parent_key))
        merged.append(item)
    return merged


def fetch_with_related(parents: List[Dict[str, Any]], table: str, parent_key: str,
                       related_key: str, field: str, columns: str = "*") -> List[Dict[str, Any]]:
    """Collect foreign keys from `parents`, fetch matching rows, then merge."""
    keys = list(dict.fromkeys(p.get(parent_key) for p in parents if p.get(parent_key) is not None))
    related = select_in(table, related_key, keys, columns=columns)
    return attach_related(parents, related, parent_key, related_key, field)


# ---- auth pass-through -------------------------------------------------------

def _auth_payload(resp) -> Dict[str, Any]:
    user = getattr(resp, "user", None)
    session = getattr(resp, "session", None)
    return {
        "user": {"id": user.id, "email": getattr(user, "email", None)} if user else None,
        "access_token": getattr(session, "access_token", None) if session else None,
        "refresh_token": getattr(session, "refresh_token", None) if session else None,
    }


def sign_up(email: str, password: str, full_name: Optional[str] = None) -> Dict[str, Any]:
    credentials: Dict[str, Any] = {"email": email, "password": password}
    if full_name:
        credentials["options"] = {"data": {"full_name": full_name}}
    try:
        resp = get_client().auth.sign_up(credentials)
    except Exception as e:
        raise DataAccessError(f"sign up failed: {e}") from e
    return _auth_payload(resp)


def sign_in(email: str, password: str) -> Dict[str, Any]:
    try:
        resp = get_client().auth.sign_in_with_password({"email": email, "password": password})
    except Exception as e:
        raise DataAccessError(f"sign in failed: {e}") from e
    return _auth_payload(resp)


def sign_out() -> None:
    try:
        get_client().auth.sign_out()
    except Exception as e:
        raise DataAccessError(f"sign out failed: {e}") from e


def get_user(access_token: str) -> Optional[Dict[str, Any]]:
    try:
        resp = get_client().auth.get_user(access_token)
    except Exception as e:
        raise DataAccessError(f"get user failed: {e}") from e
    user = getattr(resp, "user", None) if resp else None
    if not user:
        return None
    return {"id": user.id, "email": getattr(user, "email", None)}
