import collections.abc
import ctypes
import enum
import logging
import weakref

from . import native
from .exceptions import (
    BindError,
    ColumnIndexOutOfRange,
    ConversionError,
    ExecuteReturnedResults,
    InvalidColumnName,
    QueryReturnedNoRows,
    StatementChangedRows,
    UsageFault,
    engine_error,
)
from .types import SqlType, Value, to_sql

logger = logging.getLogger(__name__)

_NAME_PREFIXES = (":", "@", "$")


class StepResult(enum.Enum):
    ROW = "row"
    DONE = "done"


class _State(enum.Enum):
    NEW = "new"
    ROW = "row"
    DONE = "done"
    FINALIZED = "finalized"


def read_column(lib, stmt, i):
    """Copy column ``i`` of the current row out of engine memory."""
    kind = lib.sqlite3_column_type(stmt, i)
    if kind == native.SQLITE_INTEGER:
        return Value(SqlType.INTEGER, lib.sqlite3_column_int64(stmt, i))
    if kind == native.SQLITE_FLOAT:
        return Value(SqlType.FLOAT, lib.sqlite3_column_double(stmt, i))
    if kind == native.SQLITE_TEXT:
        # Fetch the pointer before the length, as the engine documents.
        ptr = lib.sqlite3_column_text(stmt, i)
        n = lib.sqlite3_column_bytes(stmt, i)
        return Value(SqlType.TEXT, ctypes.string_at(ptr, n) if ptr and n else b"")
    if kind == native.SQLITE_BLOB:
        ptr = lib.sqlite3_column_blob(stmt, i)
        n = lib.sqlite3_column_bytes(stmt, i)
        return Value(SqlType.BLOB, ctypes.string_at(ptr, n) if ptr and n else b"")
    return Value(SqlType.NULL)


class Statement:
    """A prepared statement owning one engine statement handle.

    Obtain one from ``Connection.prepare``. The statement keeps only a weak
    reference to its connection; once the connection is closed every
    operation except ``finalize`` raises ``UsageFault``.

    Every step, reset, (re)execution and finalize bumps ``generation``.
    ``Row`` and ``Rows`` objects remember the generation they were created
    at and refuse to work once it moved.
    """

    def __init__(self, connection, handle, sql):
        self._lib = native.load_library()
        self._conn_ref = weakref.ref(connection)
        self._stmt = handle
        self._sql = sql
        self._state = _State.NEW
        self._generation = 0
        self._orphaned = False
        self._param_count = int(self._lib.sqlite3_bind_parameter_count(handle))
        self._bound = {}
        self._column_names = None
        self._column_lookup = None

    def __repr__(self):
        state = self._state.value
        return f"<Statement {self._sql!r} state={state} params={self._param_count}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finalize()

    def __del__(self):
        if getattr(self, "_stmt", None) is None:
            return
        conn = self._conn_ref()
        if conn is not None and not conn.closed:
            logger.debug("Finalizing unreferenced statement %r", self._sql)
            self.finalize()

    # Ownership checks

    def _connection(self):
        if self._stmt is None:
            if self._orphaned:
                raise UsageFault(f"statement {self._sql!r} used after its connection was closed")
            raise UsageFault(f"statement {self._sql!r} used after finalize()")
        conn = self._conn_ref()
        if conn is None or conn.closed:
            raise UsageFault(f"statement {self._sql!r} used after its connection was closed")
        conn._check_thread()
        return conn

    def _bump(self):
        self._generation += 1

    def _orphan(self):
        self._orphaned = True
        self.finalize()

    # Metadata

    @property
    def sql(self):
        return self._sql

    @property
    def generation(self):
        return self._generation

    @property
    def finalized(self):
        return self._stmt is None

    @property
    def handle(self):
        self._connection()
        return self._stmt

    @property
    def parameter_count(self):
        return self._param_count

    def parameter_name(self, index):
        self._connection()
        name = self._lib.sqlite3_bind_parameter_name(self._stmt, index)
        return name.decode("utf-8") if name else None

    def parameter_index(self, name):
        """Slot of ``name`` (with its prefix, e.g. ``":id"``), or ``None``."""
        self._connection()
        index = self._lib.sqlite3_bind_parameter_index(self._stmt, name.encode("utf-8"))
        return index or None

    def _load_columns(self):
        if self._column_names is None:
            lib = self._lib
            names = []
            for i in range(lib.sqlite3_column_count(self._stmt)):
                name = lib.sqlite3_column_name(self._stmt, i)
                names.append(name.decode("utf-8") if name else "")
            lookup = {}
            for i, name in enumerate(names):
                # First column wins for duplicated names.
                lookup.setdefault(name, i)
            self._column_names = names
            self._column_lookup = lookup
        return self._column_names

    @property
    def column_count(self):
        self._connection()
        return len(self._load_columns())

    @property
    def column_names(self):
        self._connection()
        return list(self._load_columns())

    def column_name(self, index):
        self._connection()
        names = self._load_columns()
        if not 0 <= index < len(names):
            raise ColumnIndexOutOfRange(
                f"column index {index} out of range (0..{len(names) - 1})", column=index
            )
        return names[index]

    def column_index(self, name):
        """Ordinal of the result column called ``name`` (case-sensitive)."""
        self._connection()
        self._load_columns()
        try:
            return self._column_lookup[name]
        except KeyError:
            raise InvalidColumnName(f"no result column named {name!r}", column=name) from None

    @property
    def expanded_sql(self):
        self._connection()
        ptr = self._lib.sqlite3_expanded_sql(self._stmt)
        if not ptr:
            return None
        try:
            return ctypes.string_at(ptr).decode("utf-8", errors="replace")
        finally:
            self._lib.sqlite3_free(ptr)

    @property
    def readonly(self):
        self._connection()
        return bool(self._lib.sqlite3_stmt_readonly(self._stmt))

    # Binding

    def _slot_index(self, slot):
        if isinstance(slot, bool) or not isinstance(slot, (int, str)):
            raise BindError(f"parameter slot must be an int or a name, got {slot!r}", slot=slot, sql=self._sql)
        if isinstance(slot, int):
            if not 1 <= slot <= self._param_count:
                raise BindError(
                    f"parameter index {slot} out of range (1..{self._param_count})", slot=slot, sql=self._sql
                )
            return slot
        candidates = [slot] if slot.startswith(_NAME_PREFIXES + ("?",)) else [p + slot for p in _NAME_PREFIXES]
        for name in candidates:
            index = self._lib.sqlite3_bind_parameter_index(self._stmt, name.encode("utf-8"))
            if index:
                return index
        raise BindError(f"no parameter named {slot!r}", slot=slot, sql=self._sql)

    def _rewind(self):
        # The engine only accepts bindings on a statement in its reset state.
        if self._state is not _State.NEW:
            self.reset()

    def bind(self, slot, value):
        """Bind ``value`` to a 1-based ``slot`` or a parameter name."""
        conn = self._connection()
        index = self._slot_index(slot)
        try:
            v = to_sql(value)
        except ConversionError as e:
            raise BindError(f"cannot bind parameter {slot!r}: {e}", slot=slot, sql=self._sql) from e
        self._rewind()
        self._bump()

        lib = self._lib
        if v.type is SqlType.INTEGER:
            rc = lib.sqlite3_bind_int64(self._stmt, index, v.data)
        elif v.type is SqlType.FLOAT:
            rc = lib.sqlite3_bind_double(self._stmt, index, v.data)
        elif v.type is SqlType.TEXT:
            rc = lib.sqlite3_bind_text(self._stmt, index, v.data, len(v.data), native.SQLITE_TRANSIENT)
        elif v.type is SqlType.BLOB:
            rc = lib.sqlite3_bind_blob(self._stmt, index, v.data, len(v.data), native.SQLITE_TRANSIENT)
        else:
            rc = lib.sqlite3_bind_null(self._stmt, index)

        if rc != native.SQLITE_OK:
            err = engine_error(conn._db, rc, sql=self._sql)
            raise BindError(f"cannot bind parameter {slot!r}: {err.message}", slot=slot, sql=self._sql) from err
        self._bound[index] = value

    def bind_parameters(self, params):
        """Bind a sequence (positional, all slots) or a mapping (named)."""
        if params is None:
            return
        if isinstance(params, collections.abc.Mapping):
            if params:
                self.clear_bindings()
            for name, value in params.items():
                self.bind(name, value)
            return
        if isinstance(params, (str, bytes)):
            raise BindError("parameters must be a sequence or a mapping, not a single string", sql=self._sql)
        values = list(params)
        if not values:
            return
        if len(values) != self._param_count:
            raise BindError(
                f"Incorrect number of parameters: expected {self._param_count}, got {len(values)}",
                sql=self._sql,
            )
        for i, value in enumerate(values):
            self.bind(i + 1, value)

    def clear_bindings(self):
        self._connection()
        self._rewind()
        self._bump()
        self._lib.sqlite3_clear_bindings(self._stmt)
        self._bound.clear()

    def _bound_params(self):
        return [self._bound.get(i) for i in range(1, self._param_count + 1)]

    # Execution

    def step(self):
        conn = self._connection()
        if self._state is _State.DONE:
            self.reset()
        self._bump()
        rc = self._lib.sqlite3_step(self._stmt)
        if rc == native.SQLITE_ROW:
            self._state = _State.ROW
            return StepResult.ROW
        if rc == native.SQLITE_DONE:
            self._state = _State.DONE
            return StepResult.DONE

        # Copy the error out before reset touches the handle's error state.
        err = engine_error(conn._db, rc, sql=self._sql, params=self._bound_params())
        self._lib.sqlite3_reset(self._stmt)
        self._state = _State.NEW
        raise err

    def reset(self):
        """Back to the pre-execution state; bindings are kept."""
        conn = self._connection()
        self._bump()
        rc = self._lib.sqlite3_reset(self._stmt)
        self._state = _State.NEW
        if rc != native.SQLITE_OK:
            raise engine_error(conn._db, rc, sql=self._sql)

    def _quiet_reset(self, clear=False):
        # Used from garbage-collection paths, which may run on any thread and
        # must not raise.
        if self._stmt is None:
            return
        conn = self._conn_ref()
        if conn is None or conn.closed:
            return
        self._bump()
        self._lib.sqlite3_reset(self._stmt)
        self._state = _State.NEW
        if clear:
            self._lib.sqlite3_clear_bindings(self._stmt)
            self._bound.clear()

    def finalize(self):
        """Release the engine handle. Safe to call any number of times."""
        if self._stmt is None:
            return
        stmt, self._stmt = self._stmt, None
        self._bump()
        self._state = _State.FINALIZED
        conn = self._conn_ref()
        if conn is not None:
            conn._forget_statement(self)
        # The return code only repeats the last step() failure, which was
        # already raised from step().
        self._lib.sqlite3_finalize(stmt)

    close = finalize

    def _start(self, params):
        conn = self._connection()
        self._rewind()
        # A fresh execution invalidates cursors over the previous one even
        # when no step happened yet.
        self._bump()
        self.bind_parameters(params)
        return conn

    def execute(self, params=()):
        """Run a statement that returns no rows; return the changed-row count."""
        conn = self._start(params)
        if self.step() is StepResult.ROW:
            self.reset()
            raise ExecuteReturnedResults(
                f"execute() was given a statement that returns rows; use query(): {self._sql!r}"
            )
        changed = conn.changes()
        self.reset()
        return changed

    def insert(self, params=()):
        """Execute an INSERT that must change exactly one row; return its rowid."""
        changed = self.execute(params)
        if changed != 1:
            raise StatementChangedRows(f"expected 1 changed row, got {changed}", changed=changed)
        return self._connection().last_insert_rowid()

    def query(self, params=()):
        return self._query(params)

    def _query(self, params, on_close=None):
        from .row import Rows

        self._start(params)
        return Rows(self, on_close=on_close)

    def query_map(self, params, f):
        return self.query(params).map(f)

    def query_row(self, params=(), f=None):
        """First row mapped through ``f`` (a tuple of values by default).

        Raises ``QueryReturnedNoRows`` when there is no row; further rows
        are ignored.
        """
        with self.query(params) as rows:
            row = rows.next()
            if row is None:
                raise QueryReturnedNoRows(f"query returned no rows: {self._sql!r}")
            return f(row) if f is not None else row.values()

    def query_and_then(self, params, f):
        return self.query(params).and_then(f)

    def query_row_and_then(self, params, f):
        """First row through a mapper that may raise; its exception propagates unchanged.

        The statement is reset either way. Raises ``QueryReturnedNoRows``
        when there is no row.
        """
        return self.query_row(params, f)

    def exists(self, params=()):
        with self.query(params) as rows:
            return rows.next() is not None

    def _column_value(self, index):
        return read_column(self._lib, self._stmt, index)

