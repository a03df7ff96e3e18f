"""
Nested transactions and savepoints.

Each connection keeps a stack of open guards. The outermost guard issues
``BEGIN``; anything opened while a guard is open issues ``SAVEPOINT``.
A guard closes exactly once, when its ``with`` block ends or ``close()`` is
called, and by default it rolls back:

    with conn.transaction() as tx:
        conn.execute("INSERT INTO t VALUES (1)")
        with conn.savepoint() as sp:
            conn.execute("INSERT INTO t VALUES (2)")
            # no sp.commit(): rolled back to the savepoint on exit
        tx.commit()
"""
import enum
import logging
import weakref

from .exceptions import EngineError, UsageFault

logger = logging.getLogger(__name__)

SAVEPOINT_PREFIX = "_litestmt_sp_"


class TransactionBehavior(enum.Enum):
    DEFERRED = "DEFERRED"
    IMMEDIATE = "IMMEDIATE"
    EXCLUSIVE = "EXCLUSIVE"


class DropBehavior(enum.Enum):
    ROLLBACK = "rollback"
    COMMIT = "commit"
    # Leave the transaction open for the caller to finish by hand.
    IGNORE = "ignore"
    # Closing the guard is a bug.
    PANIC = "panic"


def savepoint_name(depth):
    return f"{SAVEPOINT_PREFIX}{depth}"


def _quote_identifier(name):
    return '"' + name.replace('"', '""') + '"'


class Transaction:
    """One level of BEGIN/SAVEPOINT nesting on a connection."""

    def __init__(self, connection, depth, name, is_savepoint, parent=None):
        self._conn = connection
        # An open inner guard keeps the guards around it alive.
        self._parent = parent
        self._depth = depth
        self._name = name
        self._is_savepoint = is_savepoint
        self._closed = False
        self.drop_behavior = DropBehavior.ROLLBACK

    def __repr__(self):
        kind = "savepoint" if self._is_savepoint else "transaction"
        state = "closed" if self._closed else self.drop_behavior.value
        return f"<Transaction {kind} {self._name!r} depth={self._depth} {state}>"

    @property
    def connection(self):
        return self._conn

    @property
    def depth(self):
        return self._depth

    @property
    def name(self):
        return self._name

    @property
    def is_savepoint(self):
        return self._is_savepoint

    @property
    def closed(self):
        return self._closed

    def _check_open(self):
        if self._closed:
            raise UsageFault(f"transaction guard {self._name!r} used after it was closed")

    def commit(self):
        """Commit when the guard closes. Issues no SQL by itself."""
        self._check_open()
        self.drop_behavior = DropBehavior.COMMIT

    def rollback(self):
        """Roll back when the guard closes (the default)."""
        self._check_open()
        self.drop_behavior = DropBehavior.ROLLBACK

    def set_drop_behavior(self, behavior):
        self._check_open()
        self.drop_behavior = DropBehavior(behavior)

    def savepoint(self, name=None):
        self._check_open()
        stack = self._conn._transactions
        if not stack or stack[-1]() is not self:
            raise UsageFault(f"savepoint opened from {self._name!r}, which is not the innermost open guard")
        return savepoint(self._conn, name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._finish(exc_val)

    def close(self):
        self._finish(None)

    def __del__(self):
        if getattr(self, "_closed", True):
            return
        conn = self._conn
        # Guards outside this one are kept alive by it, and an open guard
        # inside it would keep it alive, so a collected guard is innermost.
        if conn.closed or len(conn._transactions) != self._depth:
            return
        if self.drop_behavior is not DropBehavior.IGNORE:
            logger.warning(
                "Transaction guard %s dropped without close(); finishing with %s",
                self._name, self.drop_behavior.value,
            )
        try:
            self._close_level(None)
        except (EngineError, UsageFault) as e:
            logger.warning("Closing dropped transaction guard %s failed: %s", self._name, e)

    def _finish(self, exc):
        if self._closed:
            return
        stack = self._conn._transactions
        if not stack or stack[-1]() is not self:
            raise UsageFault(
                f"transaction guard {self._name!r} closed out of order; guards must close innermost first"
            )
        self._close_level(exc)

    def _close_level(self, exc):
        self._closed = True
        self._conn._transactions.pop()

        behavior = self.drop_behavior
        if behavior is DropBehavior.PANIC:
            raise UsageFault(f"transaction guard {self._name!r} closed while its drop behavior is PANIC")
        if behavior is DropBehavior.IGNORE:
            return
        if self._conn.closed or self._conn.is_autocommit():
            # The engine is no longer inside a transaction (e.g. COMMIT was
            # issued by hand); nothing left to close.
            logger.debug("Transaction %s already ended in the engine", self._name)
            return

        if behavior is DropBehavior.ROLLBACK and exc is not None:
            logger.warning("Rolling back %s after %s", self._name, type(exc).__name__)

        try:
            for sql in self._closing_sql(behavior):
                self._conn.execute(sql)
        except EngineError as err:
            if exc is not None:
                raise err from exc
            raise
        logger.debug("Closed %s with %s", self._name, behavior.value)

    def _closing_sql(self, behavior):
        if not self._is_savepoint:
            return ["COMMIT" if behavior is DropBehavior.COMMIT else "ROLLBACK"]
        name = _quote_identifier(self._name)
        if behavior is DropBehavior.COMMIT:
            return [f"RELEASE SAVEPOINT {name}"]
        # Rolling back to a savepoint leaves it on the stack.
        return [f"ROLLBACK TO SAVEPOINT {name}", f"RELEASE SAVEPOINT {name}"]


def begin(connection, behavior=None):
    """Open a transaction: BEGIN at depth 0, a savepoint below that."""
    stack = connection._transactions
    if stack:
        return savepoint(connection)
    if behavior is None:
        behavior = connection.options.transaction_behavior
    behavior = TransactionBehavior(behavior)
    connection.execute(f"BEGIN {behavior.value}")
    guard = Transaction(connection, 1, savepoint_name(1), is_savepoint=False)
    stack.append(weakref.ref(guard))
    logger.debug("Began transaction (%s)", behavior.value)
    return guard


def savepoint(connection, name=None):
    stack = connection._transactions
    depth = len(stack) + 1
    if name is None:
        name = savepoint_name(depth)
    connection.execute(f"SAVEPOINT {_quote_identifier(name)}")
    parent = stack[-1]() if stack else None
    guard = Transaction(connection, depth, name, is_savepoint=True, parent=parent)
    stack.append(weakref.ref(guard))
    logger.debug("Opened savepoint %s at depth %s", name, depth)
    return guard
