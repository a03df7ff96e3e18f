from .exceptions import ColumnIndexOutOfRange, ConversionError, EngineError, UsageFault
from .statement import StepResult
from .types import from_sql


class Row:
    """A read-only view of the statement's current row.

    Valid only until the statement is stepped again, reset or finalized;
    after that every read raises ``UsageFault``. Keys are 0-based ordinals
    or result-column names.
    """

    __slots__ = ("_stmt", "_generation")

    def __init__(self, statement, generation):
        self._stmt = statement
        self._generation = generation

    def _check(self):
        if self._stmt._generation != self._generation:
            raise UsageFault(
                f"row of {self._stmt.sql!r} read after its statement advanced, was reset or finalized"
            )

    def _index(self, key):
        self._check()
        if isinstance(key, str):
            return self._stmt.column_index(key)
        if isinstance(key, bool) or not isinstance(key, int):
            raise TypeError(f"row keys are column ordinals or names, not {type(key).__name__}")
        count = self._stmt.column_count
        if not 0 <= key < count:
            raise ColumnIndexOutOfRange(f"column index {key} out of range (0..{count - 1})", column=key)
        return key

    def get_raw(self, key):
        return self._stmt._column_value(self._index(key))

    def get(self, key, target=None):
        """Column ``key`` converted to ``target`` (natural Python value when omitted)."""
        value = self.get_raw(key)
        try:
            return from_sql(value, target)
        except ConversionError as e:
            raise e.with_column(key)

    def __getitem__(self, key):
        return self.get(key)

    def __len__(self):
        self._check()
        return self._stmt.column_count

    def __iter__(self):
        return iter(self.values())

    def keys(self):
        self._check()
        return self._stmt.column_names

    def values(self):
        return tuple(self.get(i) for i in range(len(self)))

    def as_dict(self):
        return dict(zip(self.keys(), self.values()))

    def __repr__(self):
        if self._stmt._generation != self._generation:
            return "<Row (stale)>"
        return f"<Row {self.values()!r}>"


class Rows:
    """Lazy, forward-only cursor over a statement's result rows.

    Each pull steps the statement once. The sequence ends at DONE or after
    the first engine error, which is raised once. Only one cursor per
    statement is live: re-executing, binding, resetting or finalizing the
    statement invalidates this one.
    """

    def __init__(self, statement, on_close=None):
        self._stmt = statement
        self._generation = statement._generation
        self._on_close = on_close
        self._done = False
        self._closed = False

    def _check(self):
        if self._closed:
            raise UsageFault("cursor used after close()")
        if self._stmt._generation != self._generation:
            raise UsageFault(
                f"cursor over {self._stmt.sql!r} used after its statement was re-executed, reset or finalized"
            )

    @property
    def statement(self):
        return self._stmt

    @property
    def column_names(self):
        return self._stmt.column_names

    def next(self):
        """The next ``Row``, or ``None`` once the sequence has ended."""
        if self._done:
            return None
        self._check()
        try:
            result = self._stmt.step()
        except EngineError:
            self._done = True
            self.close()
            raise
        if result is StepResult.DONE:
            self._done = True
            self.close()
            return None
        self._generation = self._stmt._generation
        return Row(self._stmt, self._generation)

    def __iter__(self):
        return self

    def __next__(self):
        row = self.next()
        if row is None:
            raise StopIteration
        return row

    def map(self, f):
        return MappedRows(self, f)

    def and_then(self, f):
        """Like ``map`` for a mapper that may raise: its exception closes the cursor."""
        return MappedRows(self, f, close_on_error=True)

    def close(self):
        """Stop iterating and return the statement to its reset state."""
        if self._closed:
            return
        self._closed = True
        self._done = True
        stmt = self._stmt
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            on_close()
        elif not stmt.finalized and stmt._generation == self._generation:
            stmt.reset()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if getattr(self, "_closed", True) or self._on_close is not None:
            # Cached statements are reset when the cache takes them back.
            return
        if self._stmt._generation == self._generation:
            self._stmt._quiet_reset()


class MappedRows:
    """Rows passed through a mapping function.

    With ``close_on_error`` an exception from ``f`` closes the cursor before
    it propagates, so no further rows are read.
    """

    def __init__(self, rows, f, close_on_error=False):
        self._rows = rows
        self._f = f
        self._close_on_error = close_on_error

    def __iter__(self):
        return self

    def __next__(self):
        row = next(self._rows)
        if not self._close_on_error:
            return self._f(row)
        try:
            return self._f(row)
        except Exception:
            self._rows.close()
            raise

    def close(self):
        self._rows.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
