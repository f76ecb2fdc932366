# storefront/db.py
from contextlib import contextmanager
from pathlib import Path

from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

from .settings import DATABASE_URL, POOL_MAX, POOL_MIN

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_pool = None


def get_pool() -> ConnectionPool:
    # created on first use so importing the app never needs a database
    global _pool
    if _pool is None:
        _pool = ConnectionPool(
            conninfo=DATABASE_URL or "",
            min_size=POOL_MIN,
            max_size=POOL_MAX,
            kwargs={"autocommit": False},  # we manage transactions
            open=True,
        )
    return _pool


def close_pool():
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None


@contextmanager
def get_conn():
    with get_pool().connection() as conn:
        yield conn


def fetch_all(conn, sql, params=None):
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, params or ())
        return cur.fetchall()


def fetch_one(conn, sql, params=None):
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, params or ())
        return cur.fetchone()


def execute(conn, sql, params=None):
    with conn.cursor() as cur:
        cur.execute(sql, params or ())


def apply_schema(conn):
    # multi-statement script, so no bind parameters
    with conn.cursor() as cur:
        cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    conn.commit()
