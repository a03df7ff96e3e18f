import collections.abc
import json

from . import native


class Error(Exception):
    pass


class Warning(Exception):
    pass


class InterfaceError(Error):
    pass


class DatabaseError(Error):
    pass


class InternalError(DatabaseError):
    pass


class OperationalError(DatabaseError):
    pass


class ProgrammingError(DatabaseError):
    pass


class IntegrityError(DatabaseError):
    pass


class DataError(DatabaseError):
    pass


class NotSupportedError(DatabaseError):
    pass


class UsageFault(InterfaceError):
    """A programming error: use-after-finalize, a stale row or cursor,
    transaction guards closed out of order, or a connection used from the
    wrong thread. Not meant to be caught and recovered from."""


class PrepareError(ProgrammingError):
    def __init__(self, message, *, sql=None, code=None, offset=None):
        super().__init__(message)
        self.sql = sql
        self.code = code
        self.offset = offset


class BindError(ProgrammingError):
    def __init__(self, message, *, slot=None, sql=None):
        super().__init__(message)
        self.slot = slot
        self.sql = sql


class ColumnIndexOutOfRange(ProgrammingError):
    def __init__(self, message, *, column=None):
        super().__init__(message)
        self.column = column


class InvalidColumnName(ColumnIndexOutOfRange):
    pass


class QueryReturnedNoRows(ProgrammingError):
    pass


class ExecuteReturnedResults(ProgrammingError):
    pass


class StatementChangedRows(ProgrammingError):
    def __init__(self, message, *, changed=None):
        super().__init__(message)
        self.changed = changed


class ConversionError(DataError):
    def __init__(self, message, *, source=None, target=None, column=None):
        super().__init__(message)
        self.source = source
        self.target = target
        self.column = column

    def with_column(self, column):
        self.column = column
        self.args = (f"column {column!r}: {self.args[0]}",) + self.args[1:]
        return self


class EngineError(DatabaseError):
    """A non-OK status returned by the engine.

    ``code`` is the primary result code, ``extended_code`` the extended one
    (equal to ``code`` when the engine reported none), ``message`` the text
    copied out of the engine right after the failing call.
    """

    def __init__(self, message, *, code=native.SQLITE_ERROR, extended_code=None,
                 sql=None, params=None, engine_message=None):
        super().__init__(message)
        self.code = code
        self.extended_code = code if extended_code is None else extended_code
        self.message = message if engine_message is None else engine_message
        self.sql = sql
        self.params = params


class BusyError(EngineError, OperationalError):
    pass


class LockedError(EngineError, OperationalError):
    pass


class ConstraintError(EngineError, IntegrityError):
    pass


class CorruptError(EngineError):
    pass


class MisuseError(EngineError, InterfaceError):
    pass


class EngineOperationalError(EngineError, OperationalError):
    pass


class EngineInternalError(EngineError, InternalError):
    pass


class EngineDataError(EngineError, DataError):
    pass


class EngineProgrammingError(EngineError, ProgrammingError):
    pass


_ERROR_CLASSES = {
    native.SQLITE_BUSY: BusyError,
    native.SQLITE_LOCKED: LockedError,
    native.SQLITE_CONSTRAINT: ConstraintError,
    native.SQLITE_CORRUPT: CorruptError,
    native.SQLITE_NOTADB: CorruptError,
    native.SQLITE_MISUSE: MisuseError,
    native.SQLITE_INTERNAL: EngineInternalError,
    native.SQLITE_NOMEM: EngineInternalError,
    native.SQLITE_TOOBIG: EngineDataError,
    native.SQLITE_MISMATCH: EngineDataError,
    native.SQLITE_RANGE: EngineProgrammingError,
    native.SQLITE_ERROR: EngineOperationalError,
    native.SQLITE_PERM: EngineOperationalError,
    native.SQLITE_ABORT: EngineOperationalError,
    native.SQLITE_READONLY: EngineOperationalError,
    native.SQLITE_INTERRUPT: EngineOperationalError,
    native.SQLITE_IOERR: EngineOperationalError,
    native.SQLITE_FULL: EngineOperationalError,
    native.SQLITE_CANTOPEN: EngineOperationalError,
    native.SQLITE_PROTOCOL: EngineOperationalError,
    native.SQLITE_SCHEMA: EngineOperationalError,
    native.SQLITE_AUTH: EngineOperationalError,
}


def _format_value_for_error(v, *, max_str=200, max_bytes=64):
    if v is None:
        return None
    if isinstance(v, (bool, int, float)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        b = bytes(v)
        if len(b) <= max_bytes:
            return {"_type": "bytes", "hex": b.hex(), "len": len(b)}
        head = b[:max_bytes]
        return {"_type": "bytes", "hex_prefix": head.hex(), "len": len(b)}
    if isinstance(v, str):
        if len(v) <= max_str:
            return v
        return v[:max_str] + "…"
    # Fall back to capped repr
    s = repr(v)
    if len(s) <= max_str:
        return s
    return s[:max_str] + "…"


def _format_params_for_error(params, *, max_items=50):
    if params is None:
        return None
    if isinstance(params, collections.abc.Mapping):
        out = {}
        for i, (k, v) in enumerate(params.items()):
            if i >= max_items:
                out["_truncated"] = True
                break
            out[str(k)] = _format_value_for_error(v)
        return out
    try:
        seq = list(params)
    except TypeError:
        return _format_value_for_error(params)
    if len(seq) > max_items:
        seq = seq[:max_items] + ["<truncated>"]
    return [_format_value_for_error(v) for v in seq]


def with_context(msg, *, code, sql=None, params=None, **extra):
    """Append the JSON context block the error messages carry."""
    if sql is None and not extra:
        return msg
    ctx = {"native_code": int(code)}
    if sql is not None:
        ctx["sql"] = sql
        ctx["params"] = _format_params_for_error(params)
    ctx.update(extra)
    return msg + "\nContext: " + json.dumps(ctx, ensure_ascii=False)


def engine_error(db_handle, code, *, sql=None, params=None):
    """Build the EngineError for ``code`` from the connection's error state.

    The message is copied out of engine-owned memory here, before any other
    call can overwrite it.
    """
    lib = native.load_library()
    extended = code
    msg_str = None
    if db_handle:
        extended = lib.sqlite3_extended_errcode(db_handle)
        msg = lib.sqlite3_errmsg(db_handle)
        # Engine messages are UTF-8; undecodable bytes are replaced.
        msg_str = msg.decode("utf-8", errors="replace") if msg else None
        if (extended & 0xFF) != (code & 0xFF):
            # The handle's error state belongs to another call; keep the code we got.
            extended = code
            msg_str = None
    if not msg_str:
        msg_str = native.errstr(code)

    primary = code & 0xFF
    cls = _ERROR_CLASSES.get(primary, EngineError)
    return cls(
        with_context(msg_str, code=extended, sql=sql, params=params),
        code=primary,
        extended_code=extended,
        sql=sql,
        params=params,
        engine_message=msg_str,
    )
