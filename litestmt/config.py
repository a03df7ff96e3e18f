import dataclasses
import enum
import os
from dataclasses import dataclass

from . import native
from .cache import DEFAULT_CAPACITY
from .transaction import TransactionBehavior


class OpenFlags(enum.IntFlag):
    READ_ONLY = native.SQLITE_OPEN_READONLY
    READ_WRITE = native.SQLITE_OPEN_READWRITE
    CREATE = native.SQLITE_OPEN_CREATE
    URI = native.SQLITE_OPEN_URI
    MEMORY = native.SQLITE_OPEN_MEMORY
    NO_MUTEX = native.SQLITE_OPEN_NOMUTEX
    FULL_MUTEX = native.SQLITE_OPEN_FULLMUTEX
    SHARED_CACHE = native.SQLITE_OPEN_SHAREDCACHE
    PRIVATE_CACHE = native.SQLITE_OPEN_PRIVATECACHE

    DEFAULT = READ_WRITE | CREATE | URI


@dataclass
class ConnectOptions:
    """How a ``Connection`` is opened.

    busy_timeout: seconds the engine keeps retrying on a locked database;
        ``None`` surfaces BUSY/LOCKED immediately.
    cache_capacity: prepared statements kept by ``prepare_cached`` (0 disables).
    transaction_behavior: what ``transaction()`` issues at the outermost level.
    check_same_thread: reject use of the connection from other threads.
    vfs: name of a registered VFS, ``None`` for the default.
    """
    flags: OpenFlags = OpenFlags.DEFAULT
    busy_timeout: float | None = None
    cache_capacity: int = DEFAULT_CAPACITY
    transaction_behavior: TransactionBehavior = TransactionBehavior.DEFERRED
    check_same_thread: bool = True
    vfs: str | None = None

    def __post_init__(self):
        self.flags = OpenFlags(self.flags)
        self.transaction_behavior = TransactionBehavior(self.transaction_behavior)
        if self.busy_timeout is not None and self.busy_timeout < 0:
            raise ValueError(f"busy_timeout must be >= 0, got {self.busy_timeout}")
        if self.cache_capacity < 0:
            raise ValueError(f"cache_capacity must be >= 0, got {self.cache_capacity}")

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """Defaults overlaid with ``LITESTMT_*`` environment variables, then ``overrides``."""
        environ = os.environ if environ is None else environ
        values = {}

        timeout = environ.get("LITESTMT_BUSY_TIMEOUT", "").strip()
        if timeout:
            values["busy_timeout"] = _parse(timeout, float, "LITESTMT_BUSY_TIMEOUT")

        cache_size = environ.get("LITESTMT_STMT_CACHE_SIZE", "").strip()
        if cache_size:
            values["cache_capacity"] = _parse(cache_size, int, "LITESTMT_STMT_CACHE_SIZE")

        behavior = environ.get("LITESTMT_TRANSACTION_BEHAVIOR", "").strip().upper()
        if behavior:
            values["transaction_behavior"] = _parse(behavior, TransactionBehavior, "LITESTMT_TRANSACTION_BEHAVIOR")

        values.update(overrides)
        return cls(**values)

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)


def _parse(raw, kind, name):
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{name}={raw!r} is not a valid {kind.__name__}") from None
