import collections
import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 16


class _Entry:
    __slots__ = ("statement", "checked_out")

    def __init__(self, statement):
        self.statement = statement
        self.checked_out = False


class CachedStatement:
    """A statement checked out of the cache.

    Behaves like the underlying ``Statement``. ``release()`` (or leaving a
    ``with`` block) hands it back reset, with bindings cleared;
    ``discard()`` finalizes it instead.
    """

    def __init__(self, cache, sql, statement, entry):
        self._cache = cache
        self._sql = sql
        self._statement = statement
        self._entry = entry

    @property
    def statement(self):
        if self._statement is None:
            raise AttributeError("cached statement was already released")
        return self._statement

    def __getattr__(self, name):
        return getattr(self.statement, name)

    def __repr__(self):
        return f"<CachedStatement {self._sql!r}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def __del__(self):
        if getattr(self, "_statement", None) is not None:
            self._cache._checkin(self, gc=True)

    @property
    def released(self):
        return self._statement is None

    def release(self):
        if self._statement is not None:
            self._cache._checkin(self)

    def discard(self):
        if self._statement is not None:
            stmt = self._statement
            self._cache._checkin(self, discard=True)
            stmt.finalize()


class StatementCache:
    """LRU cache of prepared statements keyed by verbatim SQL text.

    Entries that are checked out are pinned: they are never evicted, so the
    cache can briefly hold more than ``capacity`` entries.
    """

    def __init__(self, connection, capacity=DEFAULT_CAPACITY):
        self._connection = connection
        self._capacity = max(0, int(capacity))
        self._entries = collections.OrderedDict()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, sql):
        return sql in self._entries

    @property
    def capacity(self):
        return self._capacity

    @property
    def stats(self):
        return self._connection.stats

    def set_capacity(self, capacity):
        self._capacity = max(0, int(capacity))
        self._evict()

    def get_or_prepare(self, sql):
        entry = self._entries.get(sql)
        if entry is not None and not entry.checked_out:
            # Move to end (LRU)
            self._entries.move_to_end(sql)
            self.stats["cache_hit"] += 1
            stmt = entry.statement
            stmt.clear_bindings()
            entry.checked_out = True
            return CachedStatement(self, sql, stmt, entry)

        self.stats["cache_miss"] += 1
        stmt = self._connection.prepare(sql)
        if entry is not None or self._capacity <= 0:
            # Either caching is off or the cached copy is in use: hand out a
            # private statement and settle on release.
            return CachedStatement(self, sql, stmt, None)

        entry = _Entry(stmt)
        entry.checked_out = True
        self._entries[sql] = entry
        self._evict()
        return CachedStatement(self, sql, stmt, entry)

    def _checkin(self, handle, discard=False, gc=False):
        stmt, handle._statement = handle._statement, None
        entry = handle._entry
        sql = handle._sql
        if entry is not None:
            if self._entries.get(sql) is not entry:
                # Flushed while checked out.
                stmt.finalize()
                return
            entry.checked_out = False
            if discard or stmt.finalized:
                del self._entries[sql]
            elif gc:
                # An abandoned cursor can leave the statement paused on a row,
                # holding its read lock.
                stmt._quiet_reset(clear=True)
            else:
                stmt.clear_bindings()
            self._evict()
            return
        # Private copy, handed out while the cached one was busy or with caching off.
        if discard or stmt.finalized:
            return
        if not gc and self._capacity > 0 and sql not in self._entries:
            stmt.clear_bindings()
            self._entries[sql] = _Entry(stmt)
            self._evict()
            return
        stmt.finalize()

    def _evict(self):
        if len(self._entries) <= self._capacity:
            return
        for sql in list(self._entries):
            if len(self._entries) <= self._capacity:
                break
            entry = self._entries[sql]
            if entry.checked_out:
                continue
            del self._entries[sql]
            entry.statement.finalize()
            self.stats["evicted"] += 1
            logger.debug("Evicted cached statement %r", sql)

    def flush(self):
        """Finalize every idle entry; checked-out ones are finalized on release."""
        for sql in list(self._entries):
            entry = self._entries.pop(sql)
            if not entry.checked_out:
                entry.statement.finalize()

    clear = flush
