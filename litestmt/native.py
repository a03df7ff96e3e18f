import ctypes
import ctypes.util
import logging
import os
import sys
from ctypes import c_int, c_int64, c_double, c_char_p, c_void_p, POINTER

logger = logging.getLogger(__name__)

# Primary result codes (must match sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_INTERNAL = 2
SQLITE_PERM = 3
SQLITE_ABORT = 4
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_READONLY = 8
SQLITE_INTERRUPT = 9
SQLITE_IOERR = 10
SQLITE_CORRUPT = 11
SQLITE_NOTFOUND = 12
SQLITE_FULL = 13
SQLITE_CANTOPEN = 14
SQLITE_PROTOCOL = 15
SQLITE_EMPTY = 16
SQLITE_SCHEMA = 17
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_NOLFS = 22
SQLITE_AUTH = 23
SQLITE_FORMAT = 24
SQLITE_RANGE = 25
SQLITE_NOTADB = 26
SQLITE_NOTICE = 27
SQLITE_WARNING = 28
SQLITE_ROW = 100
SQLITE_DONE = 101

# Fundamental datatypes reported by sqlite3_column_type.
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# Flags for sqlite3_open_v2.
SQLITE_OPEN_READONLY = 0x00000001
SQLITE_OPEN_READWRITE = 0x00000002
SQLITE_OPEN_CREATE = 0x00000004
SQLITE_OPEN_URI = 0x00000040
SQLITE_OPEN_MEMORY = 0x00000080
SQLITE_OPEN_NOMUTEX = 0x00008000
SQLITE_OPEN_FULLMUTEX = 0x00010000
SQLITE_OPEN_SHAREDCACHE = 0x00020000
SQLITE_OPEN_PRIVATECACHE = 0x00040000

# Destructor sentinel telling the engine to copy bound text/blob buffers
# before the bind call returns.
SQLITE_TRANSIENT = c_void_p(-1)

_lib = None


def _candidate_paths():
    # Explicit override first, then the platform loader's idea of "sqlite3",
    # then the well-known sonames, then the library next to the interpreter
    # (conda and virtualenv builds ship their own copy).
    env_path = os.environ.get("LITESTMT_SQLITE_LIB")
    if env_path:
        yield env_path
        return

    found = ctypes.util.find_library("sqlite3")
    if found:
        yield found

    lib_names = [
        "libsqlite3.so.0",
        "libsqlite3.so",
        "libsqlite3.0.dylib",
        "libsqlite3.dylib",
        "sqlite3.dll",
    ]
    yield from lib_names

    for prefix in (sys.prefix, sys.base_prefix):
        for sub in ("lib", "DLLs", "Library/bin"):
            for name in lib_names:
                p = os.path.join(prefix, sub, name)
                if os.path.exists(p):
                    yield p


def load_library():
    global _lib
    if _lib is not None:
        return _lib

    errors = []
    lib = None
    for lib_path in _candidate_paths():
        try:
            lib = ctypes.CDLL(lib_path)
        except OSError as e:
            errors.append(f"{lib_path}: {e}")
            continue
        logger.debug("Loaded SQLite library from %s", lib_path)
        break

    if lib is None:
        detail = "; ".join(errors) if errors else "no candidates"
        raise RuntimeError(
            f"Could not load the SQLite shared library ({detail}). Set LITESTMT_SQLITE_LIB env var."
        )

    # Define signatures

    # Library information
    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p

    lib.sqlite3_libversion_number.argtypes = []
    lib.sqlite3_libversion_number.restype = c_int

    lib.sqlite3_threadsafe.argtypes = []
    lib.sqlite3_threadsafe.restype = c_int

    lib.sqlite3_free.argtypes = [c_void_p]
    lib.sqlite3_free.restype = None

    # Connections
    lib.sqlite3_open_v2.argtypes = [c_char_p, POINTER(c_void_p), c_int, c_char_p]
    lib.sqlite3_open_v2.restype = c_int

    lib.sqlite3_close.argtypes = [c_void_p]
    lib.sqlite3_close.restype = c_int

    lib.sqlite3_extended_result_codes.argtypes = [c_void_p, c_int]
    lib.sqlite3_extended_result_codes.restype = c_int

    lib.sqlite3_busy_timeout.argtypes = [c_void_p, c_int]
    lib.sqlite3_busy_timeout.restype = c_int

    lib.sqlite3_get_autocommit.argtypes = [c_void_p]
    lib.sqlite3_get_autocommit.restype = c_int

    lib.sqlite3_changes.argtypes = [c_void_p]
    lib.sqlite3_changes.restype = c_int

    lib.sqlite3_total_changes.argtypes = [c_void_p]
    lib.sqlite3_total_changes.restype = c_int

    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64

    # Errors
    lib.sqlite3_errcode.argtypes = [c_void_p]
    lib.sqlite3_errcode.restype = c_int

    lib.sqlite3_extended_errcode.argtypes = [c_void_p]
    lib.sqlite3_extended_errcode.restype = c_int

    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p

    lib.sqlite3_errstr.argtypes = [c_int]
    lib.sqlite3_errstr.restype = c_char_p

    # Only present in 3.38+.
    if hasattr(lib, "sqlite3_error_offset"):
        lib.sqlite3_error_offset.argtypes = [c_void_p]
        lib.sqlite3_error_offset.restype = c_int

    # Statements
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_char_p, c_int, POINTER(c_void_p), POINTER(c_void_p)]
    lib.sqlite3_prepare_v2.restype = c_int

    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int

    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int

    lib.sqlite3_clear_bindings.argtypes = [c_void_p]
    lib.sqlite3_clear_bindings.restype = c_int

    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int

    lib.sqlite3_sql.argtypes = [c_void_p]
    lib.sqlite3_sql.restype = c_char_p

    lib.sqlite3_expanded_sql.argtypes = [c_void_p]
    lib.sqlite3_expanded_sql.restype = c_void_p

    lib.sqlite3_stmt_readonly.argtypes = [c_void_p]
    lib.sqlite3_stmt_readonly.restype = c_int

    # Bindings
    lib.sqlite3_bind_parameter_count.argtypes = [c_void_p]
    lib.sqlite3_bind_parameter_count.restype = c_int

    lib.sqlite3_bind_parameter_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_parameter_name.restype = c_char_p

    lib.sqlite3_bind_parameter_index.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_bind_parameter_index.restype = c_int

    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int

    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int

    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int

    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int

    lib.sqlite3_bind_blob.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_blob.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int

    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p

    lib.sqlite3_column_type.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_type.restype = c_int

    lib.sqlite3_column_int64.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int64.restype = c_int64

    lib.sqlite3_column_double.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_double.restype = c_double

    # Pointers come back as c_void_p so text with embedded NULs is read with
    # an explicit length instead of being cut at the first NUL.
    lib.sqlite3_column_text.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_text.restype = c_void_p

    lib.sqlite3_column_blob.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_blob.restype = c_void_p

    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    if lib.sqlite3_threadsafe() == 0:
        logger.warning("SQLite library was compiled single-threaded; do not share it across threads")

    _lib = lib
    return _lib


def version():
    return load_library().sqlite3_libversion().decode("ascii")


def version_number():
    return int(load_library().sqlite3_libversion_number())


def version_info():
    return tuple(int(part) for part in version().split(".")[:3])


def errstr(code):
    msg = load_library().sqlite3_errstr(code)
    return msg.decode("utf-8", errors="replace") if msg else f"Unknown error {code}"
