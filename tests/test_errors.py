import json
import time

import pytest
import litestmt


def context_of(err):
    msg = str(err)
    assert "\nContext: " in msg
    return json.loads(msg.split("\nContext: ", 1)[1])

def test_hierarchy():
    assert issubclass(litestmt.UsageFault, litestmt.InterfaceError)
    assert issubclass(litestmt.PrepareError, litestmt.ProgrammingError)
    assert issubclass(litestmt.BindError, litestmt.ProgrammingError)
    assert issubclass(litestmt.InvalidColumnName, litestmt.ColumnIndexOutOfRange)
    assert issubclass(litestmt.ConversionError, litestmt.DataError)
    assert issubclass(litestmt.BusyError, litestmt.OperationalError)
    assert issubclass(litestmt.ConstraintError, litestmt.IntegrityError)
    for cls in (litestmt.BusyError, litestmt.LockedError, litestmt.ConstraintError,
                litestmt.CorruptError, litestmt.MisuseError):
        assert issubclass(cls, litestmt.EngineError)
        assert issubclass(cls, litestmt.DatabaseError)

def test_step_error_context_has_params(mem):
    mem.execute("CREATE TABLE t (x INTEGER NOT NULL)")
    with pytest.raises(litestmt.ConstraintError) as excinfo:
        mem.execute("INSERT INTO t VALUES (?)", (None,))
    ctx = context_of(excinfo.value)
    assert ctx["sql"] == "INSERT INTO t VALUES (?)"
    assert ctx["params"] == [None]
    assert ctx["native_code"] & 0xFF == 19
    assert excinfo.value.message == "NOT NULL constraint failed: t.x"

def test_long_params_are_truncated_in_context(mem):
    mem.execute("CREATE TABLE t (x INTEGER PRIMARY KEY, b BLOB)")
    mem.execute("INSERT INTO t VALUES (1, NULL)")
    blob = bytes(range(256)) * 4
    with pytest.raises(litestmt.ConstraintError) as excinfo:
        mem.execute("INSERT INTO t VALUES (?, ?)", (1, blob))
    ctx = context_of(excinfo.value)
    assert ctx["params"][0] == 1
    assert ctx["params"][1]["len"] == len(blob)
    assert "hex_prefix" in ctx["params"][1]

def test_prepare_error_offset(mem):
    if not hasattr(litestmt.load_library(), "sqlite3_error_offset"):
        pytest.skip("SQLite library predates sqlite3_error_offset")
    with pytest.raises(litestmt.PrepareError) as excinfo:
        mem.prepare("SELECT nope FROM (SELECT 1)")
    assert excinfo.value.offset == len("SELECT ")
    assert "no such column" in str(excinfo.value)
    assert context_of(excinfo.value)["offset"] == len("SELECT ")

def test_engine_error_carries_extended_code(mem):
    mem.execute("CREATE TABLE t (x INTEGER UNIQUE)")
    mem.execute("INSERT INTO t VALUES (1)")
    with pytest.raises(litestmt.ConstraintError) as excinfo:
        mem.execute("INSERT INTO t VALUES (1)")
    assert excinfo.value.code == 19
    assert excinfo.value.extended_code == 2067  # SQLITE_CONSTRAINT_UNIQUE

def test_busy_without_timeout_fails_fast(db_path):
    a = litestmt.open(db_path)
    b = litestmt.open(db_path)
    try:
        a.execute("CREATE TABLE t (x INTEGER)")
        with a.transaction("EXCLUSIVE"):
            start = time.monotonic()
            with pytest.raises(litestmt.BusyError) as excinfo:
                b.query_row("SELECT count(*) FROM t")
            assert time.monotonic() - start < 0.5
            assert excinfo.value.code == 5
    finally:
        a.close()
        b.close()

def test_busy_timeout_waits(db_path):
    a = litestmt.open(db_path)
    b = litestmt.open(db_path, busy_timeout=0.3)
    try:
        a.execute("CREATE TABLE t (x INTEGER)")
        with a.transaction("EXCLUSIVE"):
            start = time.monotonic()
            with pytest.raises(litestmt.BusyError):
                b.query_row("SELECT count(*) FROM t")
            assert time.monotonic() - start >= 0.25
        # Once the lock is gone the same connection proceeds.
        assert b.query_row("SELECT count(*) FROM t") == (0,)
    finally:
        a.close()
        b.close()

def test_busy_timeout_can_be_removed(db_path):
    conn = litestmt.open(db_path, busy_timeout=5)
    conn.busy_timeout(None)
    other = litestmt.open(db_path)
    try:
        other.execute("CREATE TABLE t (x INTEGER)")
        with other.transaction("EXCLUSIVE"):
            start = time.monotonic()
            with pytest.raises(litestmt.BusyError):
                conn.query_row("SELECT count(*) FROM t")
            assert time.monotonic() - start < 0.5
    finally:
        conn.close()
        other.close()

def test_usage_fault_is_not_an_engine_error(mem):
    stmt = mem.prepare("SELECT 1")
    stmt.finalize()
    with pytest.raises(litestmt.UsageFault) as excinfo:
        stmt.step()
    assert not isinstance(excinfo.value, litestmt.DatabaseError)
