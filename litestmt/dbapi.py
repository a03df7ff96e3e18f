"""PEP 249 (DB-API 2.0) interface over ``litestmt``.

Statements are prepared through the connection's statement cache, so a
cursor that runs the same SQL in a loop reuses one compiled statement.
Placeholders are bound by the engine itself: ``?``, ``?NNN``, ``:name``,
``@name`` and ``$name`` all work.
"""
import datetime
import logging
import re
import time
import weakref

from . import native
from .config import ConnectOptions, OpenFlags
from .connection import Connection as _CoreConnection
from .exceptions import (
    Error, Warning, InterfaceError, DatabaseError, InternalError, OperationalError,
    ProgrammingError, IntegrityError, DataError, NotSupportedError,
)

logger = logging.getLogger(__name__)

# DB-API 2.0 Globals
apilevel = "2.0"
threadsafety = 1  # Threads may share the module, but not connections
paramstyle = "qmark"  # The engine binds :name, @name and $name as well


def __getattr__(name):
    # Resolved lazily so importing the module does not load the library.
    if name == "sqlite_version_info":
        return native.version_info()
    if name == "sqlite_version":
        return native.version()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# Types
Date = datetime.date
Time = datetime.time
Timestamp = datetime.datetime
def DateFromTicks(ticks): return datetime.date.fromtimestamp(ticks)
def TimeFromTicks(ticks): return datetime.time(*time.localtime(ticks)[3:6])
def TimestampFromTicks(ticks): return datetime.datetime.fromtimestamp(ticks)
def Binary(string): return bytes(string)
STRING = str
BINARY = bytes
NUMBER = float
DATETIME = datetime.datetime
ROWID = int

_ISOLATION_LEVELS = ("", "DEFERRED", "IMMEDIATE", "EXCLUSIVE")

# Leading comments and whitespace, then the statement's first keyword.
_LEADING_KEYWORD = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)*([A-Za-z]+)", re.S)
_DML = frozenset({"INSERT", "UPDATE", "DELETE", "REPLACE"})


def _statement_kind(sql):
    m = _LEADING_KEYWORD.match(sql)
    return m.group(1).upper() if m else ""


def _check_isolation_level(level):
    if level is None:
        return None
    if not isinstance(level, str) or level.upper() not in _ISOLATION_LEVELS:
        raise ProgrammingError(
            f"isolation_level must be None, '', 'DEFERRED', 'IMMEDIATE' or 'EXCLUSIVE', got {level!r}"
        )
    return level.upper()


class Cursor:
    def __init__(self, connection):
        self._connection = connection
        self._stmt = None  # CachedStatement backing the current result set
        self._rows = None
        self._first = None
        self.description = None
        self.rowcount = -1
        self.lastrowid = None
        self.arraysize = 1
        self._closed = False

    @property
    def connection(self):
        return self._connection

    def _check(self):
        if self._closed:
            raise ProgrammingError("Cursor is closed")
        self._connection._check()

    def _release(self):
        rows, self._rows = self._rows, None
        stmt, self._stmt = self._stmt, None
        self._first = None
        if rows is not None:
            rows.close()
        if stmt is not None:
            # Return to cache instead of finalizing directly
            stmt.release()

    def close(self):
        if self._closed:
            return
        if not self._connection._core.closed:
            self._release()
        self._rows = self._stmt = self._first = None
        self._closed = True

    def execute(self, operation, parameters=None):
        self._check()
        # New execute invalidates any pending result set.
        self._release()
        self.description = None
        self.rowcount = -1

        conn = self._connection
        kind = _statement_kind(operation)
        conn._begin_for(kind)

        core = conn._core
        stmt = core.prepare_cached(operation)
        try:
            rows = stmt.statement.query(() if parameters is None else parameters)
            # Step once now so statements run even if nothing is fetched.
            row = rows.next()
            first = row.values() if row is not None else None
        except BaseException:
            stmt.release()
            raise

        if kind in _DML:
            self.lastrowid = core.last_insert_rowid()

        if stmt.column_count == 0:
            self.rowcount = core.changes() if kind in _DML else -1
            rows.close()
            stmt.release()
            return self

        self.description = tuple((name, None, None, None, None, None, None) for name in stmt.column_names)
        if first is None:
            rows.close()
            stmt.release()
            return self
        self._stmt = stmt
        self._rows = rows
        self._first = first
        return self

    def executemany(self, operation, seq_of_parameters):
        self._check()
        total = 0
        counted = False
        for params in seq_of_parameters:
            self.execute(operation, params)
            if self.description is not None:
                self._release()
                raise ProgrammingError("executemany() can only execute statements that return no rows")
            if self.rowcount >= 0:
                total += self.rowcount
                counted = True
        self.rowcount = total if counted else -1
        return self

    def executescript(self, sql_script):
        self._check()
        self._release()
        conn = self._connection
        if conn.in_transaction:
            conn.commit()
        conn._core.execute_batch(sql_script)
        return self

    def fetchone(self):
        self._check()
        if self._first is not None:
            first, self._first = self._first, None
            return first
        if self._rows is None:
            return None
        row = self._rows.next()
        if row is None:
            self._release()
            return None
        return row.values()

    def fetchmany(self, size=None):
        if size is None:
            size = self.arraysize
        rows = []
        for _ in range(size):
            r = self.fetchone()
            if r is None:
                break
            rows.append(r)
        return rows

    def fetchall(self):
        rows = []
        while True:
            r = self.fetchone()
            if r is None:
                break
            rows.append(r)
        return rows

    def setinputsizes(self, sizes):
        pass

    def setoutputsize(self, size, column=None):
        pass

    def __iter__(self):
        return self

    def __next__(self):
        r = self.fetchone()
        if r is None:
            raise StopIteration
        return r

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class Connection:
    """DB-API connection wrapping a ``litestmt.Connection`` (``.core``)."""

    def __init__(self, core, isolation_level=""):
        self._core = core
        self._isolation_level = _check_isolation_level(isolation_level)
        self._cursors = weakref.WeakSet()

    @property
    def core(self):
        return self._core

    def _check(self):
        if self._core.closed:
            raise ProgrammingError("Connection closed")

    @property
    def isolation_level(self):
        return self._isolation_level

    @isolation_level.setter
    def isolation_level(self, value):
        value = _check_isolation_level(value)
        if value is None:
            # Switching to autocommit ends the pending transaction.
            self.commit()
        self._isolation_level = value

    @property
    def in_transaction(self):
        self._check()
        return self._core.in_transaction

    @property
    def total_changes(self):
        self._check()
        return self._core.total_changes()

    def _begin_for(self, kind):
        if self._isolation_level is None or kind not in _DML:
            return
        if self._core.is_autocommit():
            begin = f"BEGIN {self._isolation_level}".strip()
            logger.debug("Implicit %s before %s", begin, kind)
            self._core.execute(begin)

    def commit(self):
        self._check()
        if self._core.in_transaction:
            self._core.execute("COMMIT")

    def rollback(self):
        self._check()
        if self._core.in_transaction:
            for c in list(self._cursors):
                c._release()
            self._core.execute("ROLLBACK")

    def cursor(self):
        self._check()
        c = Cursor(self)
        self._cursors.add(c)
        return c

    def execute(self, operation, parameters=None):
        # Convenience method
        return self.cursor().execute(operation, parameters)

    def executemany(self, operation, seq_of_parameters):
        return self.cursor().executemany(operation, seq_of_parameters)

    def executescript(self, sql_script):
        return self.cursor().executescript(sql_script)

    def close(self):
        if self._core.closed:
            return
        for c in list(self._cursors):
            c.close()
        self._core.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._core.closed:
            return
        if exc_type:
            self.rollback()
        else:
            self.commit()
        self.close()


def connect(database, timeout=None, isolation_level="", check_same_thread=True,
            cached_statements=16, uri=False):
    flags = OpenFlags.READ_WRITE | OpenFlags.CREATE
    if uri:
        flags |= OpenFlags.URI
    options = ConnectOptions.from_env(
        flags=flags,
        cache_capacity=cached_statements,
        check_same_thread=check_same_thread,
    )
    if timeout is not None:
        options = options.replace(busy_timeout=timeout)
    core = _CoreConnection(database, options)
    try:
        return Connection(core, isolation_level=isolation_level)
    except BaseException:
        core.close()
        raise
