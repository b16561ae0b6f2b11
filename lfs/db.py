# lfs/db.py
"""
Row access and transaction helpers over Django's connection pool.

Repositories use the ORM; these helpers exist for raw statements and for
transactions that need an explicit isolation level.
"""
import logging
from contextlib import contextmanager
from enum import Enum

from django.db import DEFAULT_DB_ALIAS, connections, transaction

logger = logging.getLogger(__name__)


class IsolationLevel(Enum):
    DEFAULT = None
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


def query_row(sql, params=None, using=DEFAULT_DB_ALIAS):
    """Returns the first row as a tuple, or None when the query yields nothing."""
    with connections[using].cursor() as cursor:
        cursor.execute(sql, params)
        return cursor.fetchone()


def query(sql, params=None, using=DEFAULT_DB_ALIAS):
    with connections[using].cursor() as cursor:
        cursor.execute(sql, params)
        return cursor.fetchall()


def execute(sql, params=None, using=DEFAULT_DB_ALIAS) -> int:
    """Runs a statement and returns the number of affected rows."""
    with connections[using].cursor() as cursor:
        cursor.execute(sql, params)
        return cursor.rowcount


@contextmanager
def begin_tx(isolation=IsolationLevel.DEFAULT, using=DEFAULT_DB_ALIAS):
    """
    Opens a transaction that commits when the block exits normally and rolls
    back when it raises. Nested calls become savepoints; the isolation level
    only applies to the outermost block.
    """
    connection = connections[using]
    outermost = not connection.in_atomic_block
    with transaction.atomic(using=using):
        if outermost and isolation.value and connection.vendor == "postgresql":
            with connection.cursor() as cursor:
                cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {isolation.value}")
        yield connection


def with_transaction(fn, isolation=IsolationLevel.DEFAULT, using=DEFAULT_DB_ALIAS):
    """Calls fn() inside begin_tx and returns its result."""
    with begin_tx(isolation, using=using):
        return fn()


def ping(using=DEFAULT_DB_ALIAS) -> None:
    row = query_row("SELECT 1", using=using)
    if not row or row[0] != 1:
        raise RuntimeError("database ping returned an unexpected result")
