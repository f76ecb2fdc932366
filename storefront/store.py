# storefront/store.py
"""Record store used by the core.

Collections map one-to-one to tables: products, product_variants, coupons,
orders, order_items, order_tracking.

`update` takes an optional precondition (a list of `Check`). The checks are
evaluated as part of the write itself, so "decrement stock only if enough is
left" is a single conditional update and the store's own row-level atomicity
is the only concurrency guard. A failed precondition returns None.
"""
import copy
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol, Sequence

from psycopg import sql
from psycopg.types.json import Jsonb

from .db import fetch_all, fetch_one, get_conn

COLLECTIONS = (
    "products",
    "product_variants",
    "coupons",
    "orders",
    "order_items",
    "order_tracking",
)


@dataclass(frozen=True)
class Increment:
    """Update value: add `delta` to the stored value."""

    delta: int


@dataclass(frozen=True)
class Column:
    """Check operand referring to another column of the same row."""

    name: str


@dataclass(frozen=True)
class Check:
    field: str
    op: str  # one of OPERATORS
    operand: Any


OPERATORS = {
    "=": lambda a, b: a == b,
    ">=": lambda a, b: a >= b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    "<": lambda a, b: a < b,
}


class RecordStore(Protocol):
    def get(self, collection: str, record_id: str) -> Optional[dict]: ...

    def find(
        self,
        collection: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]: ...

    def create(self, collection: str, record: dict) -> dict: ...

    def update(
        self,
        collection: str,
        record_id: str,
        changes: dict,
        where: Sequence[Check] = (),
    ) -> Optional[dict]: ...

    def transaction(self) -> "Iterator[RecordStore]": ...


def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        raise KeyError(f"unknown collection: {collection}")


# In-memory fixture store

class MemoryStore:
    """Dict-backed store with the same contract as PostgresStore.

    A single re-entrant lock serialises writes; `transaction()` holds it and
    restores a snapshot if the block raises.
    """

    def __init__(self):
        self._tables: dict[str, dict[str, dict]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection, record_id):
        _check_collection(collection)
        with self._lock:
            row = self._tables[collection].get(record_id)
            return copy.deepcopy(row)

    def find(self, collection, filters=None, order_by=None, descending=False):
        _check_collection(collection)
        with self._lock:
            rows = [
                copy.deepcopy(r)
                for r in self._tables[collection].values()
                if _matches(r, filters or {})
            ]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        return rows

    def create(self, collection, record):
        _check_collection(collection)
        row = copy.deepcopy(record)
        if row.get("id") is None:
            row["id"] = str(uuid.uuid4())
        with self._lock:
            if row["id"] in self._tables[collection]:
                raise KeyError(f"duplicate id in {collection}: {row['id']}")
            self._tables[collection][row["id"]] = row
        return copy.deepcopy(row)

    def update(self, collection, record_id, changes, where=()):
        _check_collection(collection)
        with self._lock:
            row = self._tables[collection].get(record_id)
            if row is None or not all(_passes(row, c) for c in where):
                return None
            for key, value in changes.items():
                if isinstance(value, Increment):
                    row[key] = row.get(key, 0) + value.delta
                else:
                    row[key] = copy.deepcopy(value)
            return copy.deepcopy(row)

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield self
            except BaseException:
                self._tables = snapshot
                raise


def _matches(row: dict, filters: dict) -> bool:
    for key, expected in filters.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _passes(row: dict, check: Check) -> bool:
    left = row.get(check.field)
    right = row.get(check.operand.name) if isinstance(check.operand, Column) else check.operand
    if left is None or right is None:
        # same as SQL: comparisons against NULL never hold
        return False
    return OPERATORS[check.op](left, right)


# PostgreSQL store

class PostgresStore:
    """RecordStore over the psycopg pool in db.py.

    Outside a transaction every call takes its own pooled connection and
    commits. Inside `transaction()` the returned store is bound to one
    connection that is committed or rolled back as a whole.
    """

    def __init__(self, conn=None):
        self._conn = conn

    @contextmanager
    def _connection(self):
        if self._conn is not None:
            yield self._conn
            return
        with get_conn() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def transaction(self):
        if self._conn is not None:
            yield self
            return
        with get_conn() as conn:
            try:
                yield PostgresStore(conn)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def get(self, collection, record_id):
        _check_collection(collection)
        query = sql.SQL("SELECT * FROM {} WHERE id = %s").format(sql.Identifier(collection))
        with self._connection() as conn:
            return fetch_one(conn, query, (record_id,))

    def find(self, collection, filters=None, order_by=None, descending=False):
        _check_collection(collection)
        clauses, params = [], []
        for key, expected in (filters or {}).items():
            if isinstance(expected, (list, tuple, set, frozenset)):
                clauses.append(sql.SQL("{} = ANY(%s)").format(sql.Identifier(key)))
                params.append(list(expected))
            elif expected is None:
                clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(key)))
            else:
                clauses.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
                params.append(expected)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(collection))
        if clauses:
            query += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
        if order_by:
            query += sql.SQL(" ORDER BY {} {}").format(
                sql.Identifier(order_by), sql.SQL("DESC" if descending else "ASC")
            )
        with self._connection() as conn:
            return fetch_all(conn, query, params)

    def create(self, collection, record):
        _check_collection(collection)
        row = {k: v for k, v in record.items() if not (k == "id" and v is None)}
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(collection),
            sql.SQL(", ").join(map(sql.Identifier, row)),
            sql.SQL(", ").join(sql.Placeholder() * len(row)),
        )
        with self._connection() as conn:
            return fetch_one(conn, query, [_adapt(v) for v in row.values()])

    def update(self, collection, record_id, changes, where=()):
        _check_collection(collection)
        sets, params = [], []
        for key, value in changes.items():
            if isinstance(value, Increment):
                sets.append(sql.SQL("{0} = {0} + %s").format(sql.Identifier(key)))
                params.append(value.delta)
            else:
                sets.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
                params.append(_adapt(value))
        conditions = [sql.SQL("id = %s")]
        params.append(record_id)
        for check in where:
            if check.op not in OPERATORS:
                raise ValueError(f"unsupported operator: {check.op}")
            if isinstance(check.operand, Column):
                rhs = sql.Identifier(check.operand.name)
            else:
                rhs = sql.Placeholder()
                params.append(check.operand)
            conditions.append(
                sql.SQL("{} {} {}").format(sql.Identifier(check.field), sql.SQL(check.op), rhs)
            )
        query = sql.SQL("UPDATE {} SET {} WHERE {} RETURNING *").format(
            sql.Identifier(collection),
            sql.SQL(", ").join(sets),
            sql.SQL(" AND ").join(conditions),
        )
        with self._connection() as conn:
            return fetch_one(conn, query, params)


def _adapt(value):
    if isinstance(value, dict):
        return Jsonb(value)
    return value
