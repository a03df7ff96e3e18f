import pytest
from litestmt import dbapi


@pytest.fixture
def dbconn(db_path):
    conn = dbapi.connect(db_path)
    yield conn
    conn.close()

def test_module_globals():
    assert dbapi.apilevel == "2.0"
    assert dbapi.threadsafety == 1
    assert dbapi.paramstyle == "qmark"
    assert len(dbapi.sqlite_version_info) == 3
    assert dbapi.sqlite_version.startswith("3.")

def test_ddl_and_insert(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()

    cur.execute("CREATE TABLE foo (id INTEGER, name TEXT)")
    cur.execute("INSERT INTO foo VALUES (1, 'alice')")
    cur.execute("INSERT INTO foo VALUES (2, 'bob')")

    conn.commit()
    conn.close()

    # Reopen and verify
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM foo ORDER BY id")
    rows = cur.fetchall()

    assert rows == [(1, "alice"), (2, "bob")]
    assert [d[0] for d in cur.description] == ["id", "name"]

    conn.close()

def test_uncommitted_changes_are_lost_on_close(db_path):
    conn = dbapi.connect(db_path)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.execute("INSERT INTO foo VALUES (1)")
    assert conn.in_transaction
    conn.close()

    conn = dbapi.connect(db_path)
    assert conn.execute("SELECT count(*) FROM foo").fetchone() == (0,)
    conn.close()

def test_parameters(dbconn):
    cur = dbconn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER, val TEXT)")

    cur.execute("INSERT INTO foo VALUES (?, ?)", (1, "a"))
    cur.execute("INSERT INTO foo VALUES (:id, :val)", {"id": 2, "val": "b"})
    dbconn.commit()

    cur.execute("SELECT * FROM foo WHERE id = ?", (1,))
    assert cur.fetchone() == (1, "a")

    cur.execute("SELECT * FROM foo WHERE id = :target", {"target": 2})
    assert cur.fetchone() == (2, "b")

def test_parameters_named_reuse(dbconn):
    cur = dbconn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER, val TEXT)")
    cur.execute("INSERT INTO foo VALUES (1, 'a')")
    cur.execute("INSERT INTO foo VALUES (2, 'b')")

    cur.execute("SELECT id FROM foo WHERE id = :target OR id = :target ORDER BY id", {"target": 2})
    assert cur.fetchall() == [(2,)]

def test_wrong_parameter_count(dbconn):
    with pytest.raises(dbapi.ProgrammingError):
        dbconn.execute("SELECT ?, ?", (1,))

def test_fetchmany(dbconn):
    cur = dbconn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER)")
    cur.executemany("INSERT INTO foo VALUES (?)", [(i,) for i in range(10)])
    assert cur.rowcount == 10
    dbconn.commit()

    cur.execute("SELECT * FROM foo ORDER BY id")
    batch = cur.fetchmany(3)
    assert [r[0] for r in batch] == [0, 1, 2]

    batch = cur.fetchmany(3)
    assert batch[0][0] == 3

    batch = cur.fetchmany(5)  # Remaining 4
    assert len(batch) == 4
    assert cur.fetchone() is None

def test_types(dbconn):
    cur = dbconn.cursor()
    cur.execute("CREATE TABLE types (i INTEGER, f REAL, t TEXT, b BLOB, flag INTEGER, n TEXT)")

    blob_data = b"\x00\x01\x02"
    cur.execute("INSERT INTO types VALUES (?, ?, ?, ?, ?, ?)",
                (123, 1.23, "hello", blob_data, True, None))

    cur.execute("SELECT * FROM types")
    row = cur.fetchone()
    assert row[0] == 123
    assert abs(row[1] - 1.23) < 0.0001
    assert row[2] == "hello"
    assert row[3] == blob_data
    assert row[4] == 1
    assert row[5] is None

def test_rowcount_and_lastrowid(dbconn):
    cur = dbconn.cursor()
    cur.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY, v INTEGER)")
    assert cur.rowcount == -1
    cur.execute("INSERT INTO foo (v) VALUES (10)")
    assert cur.rowcount == 1
    assert cur.lastrowid == 1
    cur.execute("INSERT INTO foo (v) VALUES (20)")
    assert cur.lastrowid == 2
    cur.execute("UPDATE foo SET v = v + 1")
    assert cur.rowcount == 2
    cur.execute("SELECT * FROM foo")
    assert cur.rowcount == -1

def test_insert_returning_runs_without_fetch(dbconn):
    if dbapi.sqlite_version_info < (3, 35, 0):
        pytest.skip("RETURNING needs SQLite 3.35")
    dbconn.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY, v INTEGER)")
    cur = dbconn.execute("INSERT INTO foo (v) VALUES (5) RETURNING id")
    cur.close()
    assert dbconn.execute("SELECT v FROM foo").fetchall() == [(5,)]

def test_commit_and_rollback(dbconn):
    dbconn.execute("CREATE TABLE foo (id INTEGER)")
    dbconn.commit()
    dbconn.execute("INSERT INTO foo VALUES (1)")
    dbconn.rollback()
    assert dbconn.execute("SELECT count(*) FROM foo").fetchone() == (0,)
    dbconn.execute("INSERT INTO foo VALUES (1)")
    dbconn.commit()
    assert not dbconn.in_transaction
    # No-ops outside a transaction
    dbconn.commit()
    dbconn.rollback()
    assert dbconn.execute("SELECT count(*) FROM foo").fetchone() == (1,)

def test_autocommit_mode(db_path):
    conn = dbapi.connect(db_path, isolation_level=None)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.execute("INSERT INTO foo VALUES (1)")
    assert not conn.in_transaction
    conn.close()

    conn = dbapi.connect(db_path)
    assert conn.execute("SELECT count(*) FROM foo").fetchone() == (1,)
    conn.close()

def test_isolation_level_validation(db_path):
    with pytest.raises(dbapi.ProgrammingError):
        dbapi.connect(db_path, isolation_level="SERIALIZABLE")
    conn = dbapi.connect(db_path, isolation_level="immediate")
    assert conn.isolation_level == "IMMEDIATE"
    conn.close()

def test_context_manager(db_path):
    with dbapi.connect(db_path) as conn:
        conn.execute("CREATE TABLE foo (id INTEGER)")
        conn.execute("INSERT INTO foo VALUES (1)")
    assert conn.core.closed

    with pytest.raises(RuntimeError):
        with dbapi.connect(db_path) as conn:
            conn.execute("INSERT INTO foo VALUES (2)")
            raise RuntimeError("boom")

    with dbapi.connect(db_path) as conn:
        assert conn.execute("SELECT id FROM foo").fetchall() == [(1,)]

def test_iteration(dbconn):
    dbconn.execute("CREATE TABLE foo (id INTEGER)")
    dbconn.executemany("INSERT INTO foo VALUES (?)", [(1,), (2,), (3,)])
    assert [r[0] for r in dbconn.execute("SELECT id FROM foo ORDER BY id")] == [1, 2, 3]

def test_cursors_share_statement_cache(dbconn):
    dbconn.execute("CREATE TABLE foo (id INTEGER)")
    stats = dbconn.core.stats
    sql = "SELECT id FROM foo WHERE id = ?"
    cur = dbconn.cursor()
    cur.execute(sql, (1,))
    before = stats["prepare_count"]
    for i in range(5):
        cur.execute(sql, (i,))
        cur.fetchall()
    assert stats["prepare_count"] == before

def test_two_open_cursors_same_sql(dbconn):
    dbconn.execute("CREATE TABLE foo (id INTEGER)")
    dbconn.executemany("INSERT INTO foo VALUES (?)", [(1,), (2,)])
    a = dbconn.execute("SELECT id FROM foo ORDER BY id")
    b = dbconn.execute("SELECT id FROM foo ORDER BY id")
    assert a.fetchone() == (1,)
    assert b.fetchall() == [(1,), (2,)]
    assert a.fetchone() == (2,)

def test_executemany_rejects_queries(dbconn):
    with pytest.raises(dbapi.ProgrammingError):
        dbconn.executemany("SELECT ?", [(1,), (2,)])

def test_executescript(dbconn):
    dbconn.executescript("""
        CREATE TABLE foo (id INTEGER);
        INSERT INTO foo VALUES (1);
        INSERT INTO foo VALUES (2);
    """)
    assert dbconn.execute("SELECT count(*) FROM foo").fetchone() == (2,)

def test_closed_cursor_and_connection(db_path):
    conn = dbapi.connect(db_path)
    cur = conn.cursor()
    cur.close()
    with pytest.raises(dbapi.ProgrammingError):
        cur.execute("SELECT 1")
    conn.close()
    with pytest.raises(dbapi.ProgrammingError):
        conn.cursor()
    with pytest.raises(dbapi.ProgrammingError):
        conn.commit()

def test_error_includes_sql_and_code(dbconn):
    cur = dbconn.cursor()

    with pytest.raises(dbapi.ProgrammingError) as excinfo:
        cur.execute("SELEC 1")

    msg = str(excinfo.value)
    assert "Context:" in msg
    assert "native_code" in msg
    assert "\"sql\":" in msg

def test_integrity_error(dbconn):
    dbconn.execute("CREATE TABLE foo (id INTEGER PRIMARY KEY)")
    dbconn.execute("INSERT INTO foo VALUES (1)")
    with pytest.raises(dbapi.IntegrityError):
        dbconn.execute("INSERT INTO foo VALUES (1)")

def test_constructors():
    assert dbapi.Binary(bytearray(b"ab")) == b"ab"
    assert dbapi.DateFromTicks(0).year in (1969, 1970)
    assert dbapi.Timestamp is dbapi.DATETIME
