from . import native
from .native import load_library
from .exceptions import (
    Error, Warning, InterfaceError, DatabaseError, InternalError, OperationalError,
    ProgrammingError, IntegrityError, DataError, NotSupportedError,
    UsageFault, PrepareError, BindError, ColumnIndexOutOfRange, InvalidColumnName,
    QueryReturnedNoRows, ExecuteReturnedResults, StatementChangedRows, ConversionError,
    EngineError, BusyError, LockedError, ConstraintError, CorruptError, MisuseError,
)
from .types import (
    SqlType, Value, NULL, IntRange,
    INT8, INT16, INT32, INT64, UINT8, UINT16, UINT32,
    to_sql, from_sql, register_to_sql, register_from_sql,
)
from .statement import Statement, StepResult
from .row import Row, Rows, MappedRows
from .cache import StatementCache, CachedStatement
from .transaction import Transaction, TransactionBehavior, DropBehavior
from .config import ConnectOptions, OpenFlags
from .connection import Connection, open

__version__ = "0.1.0"


def version():
    """Version string of the loaded SQLite library, e.g. ``"3.45.1"``."""
    return native.version()


def version_number():
    """Version of the loaded SQLite library as ``X*1000000 + Y*1000 + Z``."""
    return native.version_number()

