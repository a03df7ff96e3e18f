import collections
import ctypes
import logging
import os
import re
import threading
import weakref

from . import native
from . import transaction as _transaction
from .cache import StatementCache
from .config import ConnectOptions
from .exceptions import PrepareError, UsageFault, engine_error, with_context
from .statement import Statement

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _pragma_literal(value):
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    raise TypeError(f"cannot use {type(value).__name__} as a PRAGMA value")


def _pragma_target(name, schema):
    for part in (schema, name):
        if part is not None and not _IDENTIFIER.match(part):
            raise PrepareError(f"invalid PRAGMA identifier {part!r}", sql=None)
    return f"{schema}.{name}" if schema else name


class Connection:
    """A connection to an SQLite database.

    Owns one engine handle and every statement prepared from it. Closing the
    connection (``close()`` or leaving a ``with`` block) finalizes those
    statements first; any later use of them raises ``UsageFault``.
    """

    def __init__(self, path, options=None, **kwargs):
        if options is None:
            options = ConnectOptions(**kwargs)
        elif kwargs:
            options = options.replace(**kwargs)
        self._lib = native.load_library()
        self._options = options
        self._path = path
        self._db = None

        if isinstance(path, bytes):
            c_path = path
        else:
            c_path = os.fspath(path).encode("utf-8")
        vfs = options.vfs.encode("utf-8") if options.vfs else None

        db = ctypes.c_void_p()
        rc = self._lib.sqlite3_open_v2(c_path, ctypes.byref(db), int(options.flags), vfs)
        if rc != native.SQLITE_OK:
            err = engine_error(db.value, rc)
            # The engine may hand back a handle even when opening failed.
            if db.value:
                self._lib.sqlite3_close(db.value)
            logger.debug("Opening %r failed: %s", path, err.message)
            raise err
        self._db = db.value
        self._lib.sqlite3_extended_result_codes(self._db, 1)

        self._thread_ident = threading.get_ident()
        self._statements = weakref.WeakSet()
        self._transactions = []  # weakrefs to the open guards, innermost last
        self._close_listeners = []

        # Statistics for testing
        self.stats = collections.Counter()
        self._cache = StatementCache(self, options.cache_capacity)

        if options.busy_timeout is not None:
            self.busy_timeout(options.busy_timeout)
        logger.debug("Opened %r", path)

    @classmethod
    def open_in_memory(cls, options=None, **kwargs):
        return cls(":memory:", options, **kwargs)

    def __repr__(self):
        state = "closed" if self._db is None else "open"
        return f"<Connection {self._path!r} {state}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if getattr(self, "_db", None) is not None:
            self._close()

    # Ownership

    def _check_thread(self):
        if self._options.check_same_thread and threading.get_ident() != self._thread_ident:
            raise UsageFault(
                "connection used from a thread other than the one that opened it "
                f"(opened in {self._thread_ident}, used in {threading.get_ident()})"
            )

    def _ensure_usable(self):
        if self._db is None:
            raise UsageFault(f"connection to {self._path!r} is closed")
        self._check_thread()

    def _forget_statement(self, stmt):
        self._statements.discard(stmt)

    @property
    def closed(self):
        return self._db is None

    @property
    def path(self):
        return self._path

    @property
    def options(self):
        return self._options

    @property
    def handle(self):
        """Raw ``sqlite3*`` address for code that calls the engine directly."""
        self._ensure_usable()
        return self._db

    # Preparing

    def _prepare_raw(self, buf, offset, end):
        base = ctypes.addressof(buf)
        stmt = ctypes.c_void_p()
        tail = ctypes.c_void_p()
        rc = self._lib.sqlite3_prepare_v2(
            self._db, ctypes.c_char_p(base + offset), end - offset, ctypes.byref(stmt), ctypes.byref(tail)
        )
        tail_offset = tail.value - base if tail.value else end
        return stmt.value, tail_offset, rc

    def _prepare_error(self, rc, sql):
        offset = None
        if hasattr(self._lib, "sqlite3_error_offset"):
            off = self._lib.sqlite3_error_offset(self._db)
            offset = off if off >= 0 else None
        err = engine_error(self._db, rc, sql=sql)
        if err.code in (native.SQLITE_BUSY, native.SQLITE_LOCKED):
            # Lock contention while reading the schema is not a problem with
            # the SQL itself.
            return err
        extra = {} if offset is None else {"offset": offset}
        return PrepareError(
            with_context(err.message, code=err.extended_code, sql=sql, **extra),
            sql=sql,
            code=err.code,
            offset=offset,
        )

    def prepare(self, sql):
        """Compile exactly one SQL statement."""
        self._ensure_usable()
        try:
            raw = sql.encode("utf-8")
        except UnicodeEncodeError as e:
            raise PrepareError(f"SQL text is not valid UTF-8: {e}", sql=sql) from e
        buf = ctypes.create_string_buffer(raw, len(raw) + 1)

        handle, tail, rc = self._prepare_raw(buf, 0, len(raw))
        if rc != native.SQLITE_OK:
            raise self._prepare_error(rc, sql)
        if not handle:
            raise PrepareError(f"no SQL statement to prepare in {sql!r}", sql=sql)

        if tail < len(raw):
            extra, _, rc = self._prepare_raw(buf, tail, len(raw))
            if extra:
                self._lib.sqlite3_finalize(extra)
            if extra or rc != native.SQLITE_OK:
                self._lib.sqlite3_finalize(handle)
                raise PrepareError(
                    with_context(
                        "Multiple statements provided; prepare() accepts exactly one",
                        code=native.SQLITE_MISUSE,
                        sql=sql,
                        offset=tail,
                    ),
                    sql=sql,
                    offset=tail,
                )

        self.stats["prepare_count"] += 1
        stmt = Statement(self, handle, sql)
        self._statements.add(stmt)
        logger.debug("Prepared %r", sql)
        return stmt

    def prepare_cached(self, sql):
        """A statement from the LRU cache; release it (or use ``with``) when done."""
        self._ensure_usable()
        return self._cache.get_or_prepare(sql)

    @property
    def statement_cache(self):
        return self._cache

    def set_cache_capacity(self, capacity):
        self._cache.set_capacity(capacity)

    def flush_cache(self):
        self._cache.flush()

    # Executing

    def execute(self, sql, params=()):
        """Run one statement that returns no rows; return the changed-row count."""
        with self.prepare_cached(sql) as stmt:
            return stmt.execute(params)

    def execute_batch(self, sql):
        """Run every statement in ``sql`` in order. Rows they return are discarded."""
        self._ensure_usable()
        lib = self._lib
        raw = sql.encode("utf-8")
        buf = ctypes.create_string_buffer(raw, len(raw) + 1)
        offset = 0
        while offset < len(raw):
            handle, tail, rc = self._prepare_raw(buf, offset, len(raw))
            part = raw[offset:tail].decode("utf-8", errors="replace")
            if rc != native.SQLITE_OK:
                raise self._prepare_error(rc, part)
            if not handle:
                break
            try:
                while True:
                    rc = lib.sqlite3_step(handle)
                    if rc == native.SQLITE_ROW:
                        continue
                    if rc == native.SQLITE_DONE:
                        break
                    raise engine_error(self._db, rc, sql=part)
            finally:
                lib.sqlite3_finalize(handle)
            offset = tail

    def query(self, sql, params=()):
        """Lazy ``Rows`` over a cached statement, returned to the cache on close."""
        cached = self.prepare_cached(sql)
        try:
            return cached.statement._query(params, on_close=cached.release)
        except BaseException:
            cached.release()
            raise

    def query_map(self, sql, params, f):
        return self.query(sql, params).map(f)

    def query_and_then(self, sql, params, f):
        """Like ``query_map``; an exception raised by ``f`` closes the cursor and propagates."""
        return self.query(sql, params).and_then(f)

    def query_row(self, sql, params=(), f=None):
        with self.prepare_cached(sql) as stmt:
            return stmt.query_row(params, f)

    def query_row_and_then(self, sql, params, f):
        with self.prepare_cached(sql) as stmt:
            return stmt.query_row_and_then(params, f)

    def last_insert_rowid(self):
        self._ensure_usable()
        return int(self._lib.sqlite3_last_insert_rowid(self._db))

    def changes(self):
        self._ensure_usable()
        return int(self._lib.sqlite3_changes(self._db))

    def total_changes(self):
        self._ensure_usable()
        return int(self._lib.sqlite3_total_changes(self._db))

    def is_autocommit(self):
        self._ensure_usable()
        return bool(self._lib.sqlite3_get_autocommit(self._db))

    @property
    def in_transaction(self):
        return not self.is_autocommit()

    @property
    def transaction_depth(self):
        return len(self._transactions)

    def busy_timeout(self, seconds):
        """Let the engine retry on a locked database for up to ``seconds``.

        ``None`` or 0 removes the timeout, so BUSY surfaces immediately.
        """
        self._ensure_usable()
        ms = 0 if not seconds else max(0, int(seconds * 1000))
        rc = self._lib.sqlite3_busy_timeout(self._db, ms)
        if rc != native.SQLITE_OK:
            raise engine_error(self._db, rc)

    # Pragmas

    def pragma_query_value(self, name, f=None, schema=None):
        sql = f"PRAGMA {_pragma_target(name, schema)}"
        return self.query_row(sql, (), f if f is not None else (lambda row: row.get(0)))

    def pragma_update(self, name, value, schema=None):
        # PRAGMA does not accept bound parameters.
        self.execute_batch(f"PRAGMA {_pragma_target(name, schema)} = {_pragma_literal(value)}")

    # Transactions

    def transaction(self, behavior=None):
        return _transaction.begin(self, behavior)

    def savepoint(self, name=None):
        return _transaction.savepoint(self, name)

    # Closing

    def add_close_listener(self, callback):
        """Call ``callback(connection)`` after the engine handle is closed."""
        self._close_listeners.append(callback)

    def remove_close_listener(self, callback):
        self._close_listeners.remove(callback)

    def close(self):
        if self._db is None:
            return
        self._check_thread()
        self._close()

    def _close(self):
        self._cache.flush()
        for stmt in list(self._statements):
            stmt._orphan()
        rc = self._lib.sqlite3_close(self._db)
        if rc != native.SQLITE_OK:
            raise engine_error(self._db, rc)
        self._db = None
        logger.debug("Closed %r", self._path)

        listeners, self._close_listeners = self._close_listeners, []
        for callback in listeners:
            callback(self)


def open(path, options=None, **kwargs):
    return Connection(path, options, **kwargs)
