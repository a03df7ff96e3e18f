import gc

import pytest
import litestmt


def test_statement_cache_reuse(db_path):
    conn = litestmt.open(db_path, cache_capacity=10)
    conn.execute("CREATE TABLE foo (id INTEGER)")
    conn.execute("INSERT INTO foo VALUES (1)")

    initial_prepares = conn.stats["prepare_count"]
    assert initial_prepares > 0

    sql = "SELECT * FROM foo WHERE id = ?"

    # 1. First execution - should prepare
    assert conn.query_row(sql, (1,)) == (1,)
    prepares_after_1 = conn.stats["prepare_count"]
    assert prepares_after_1 == initial_prepares + 1

    # 2. Second execution - should hit cache
    assert conn.query_row(sql, (1,)) == (1,)
    assert conn.stats["prepare_count"] == prepares_after_1
    assert conn.stats["cache_hit"] > 0

    # 3. A different statement, then back to the first one
    conn.query_row("SELECT count(*) FROM foo")
    prepares_after_interim = conn.stats["prepare_count"]
    assert prepares_after_interim == prepares_after_1 + 1

    conn.query_row(sql, (1,))
    assert conn.stats["prepare_count"] == prepares_after_interim, "Should hit cache"

    conn.close()

def test_cache_eviction(db_path):
    conn = litestmt.open(db_path, cache_capacity=2)  # Small cache

    conn.query_row("SELECT 1")
    conn.query_row("SELECT 2")
    # Cache: ["SELECT 1", "SELECT 2"]
    conn.query_row("SELECT 3")
    # Cache: ["SELECT 2", "SELECT 3"] (SELECT 1 evicted)
    assert len(conn.statement_cache) == 2
    assert "SELECT 1" not in conn.statement_cache
    assert conn.stats["evicted"] == 1

    before = conn.stats["prepare_count"]
    conn.query_row("SELECT 1")
    assert conn.stats["prepare_count"] == before + 1, "Should be a cache miss (evicted)"

    # Cache: ["SELECT 3", "SELECT 1"]; a hit on SELECT 3 makes SELECT 1 the oldest.
    conn.query_row("SELECT 3")
    conn.query_row("SELECT 4")
    assert "SELECT 1" not in conn.statement_cache
    assert "SELECT 3" in conn.statement_cache

    conn.close()

def test_released_statement_is_reset_and_cleared(mem):
    with mem.prepare_cached("SELECT ?") as stmt:
        stmt.bind(1, 5)
        stmt.step()
    with mem.prepare_cached("SELECT ?") as stmt:
        # Same compiled statement, but no leftover binding or row.
        assert stmt.query_row() == (None,)
    assert mem.stats["cache_hit"] == 1

def test_key_is_verbatim_sql(mem):
    mem.query_row("SELECT 1")
    mem.query_row("select 1")
    mem.query_row("SELECT 1 ")
    assert len(mem.statement_cache) == 3

def test_checked_out_entries_are_pinned(mem):
    mem.set_cache_capacity(1)
    held = mem.prepare_cached("SELECT 1")
    mem.query_row("SELECT 2")
    # SELECT 1 is in use, so the cache is over capacity rather than evicting it.
    assert "SELECT 1" in mem.statement_cache
    assert not held.finalized
    assert held.query_row() == (1,)
    held.release()
    assert held.released
    mem.query_row("SELECT 3")
    assert len(mem.statement_cache) == 1

def test_concurrent_checkout_gets_a_separate_statement(mem):
    with mem.prepare_cached("SELECT 7") as first:
        with mem.prepare_cached("SELECT 7") as second:
            assert first.statement is not second.statement
            assert first.query_row() == second.query_row() == (7,)
    # The duplicate was finalized; one entry remains.
    assert len(mem.statement_cache) == 1

def test_nested_queries_on_same_sql(mem):
    mem.execute_batch("CREATE TABLE t (x INTEGER); INSERT INTO t VALUES (1); INSERT INTO t VALUES (2);")
    sql = "SELECT x FROM t ORDER BY x"
    pairs = []
    for a in mem.query(sql):
        x = a[0]
        for b in mem.query(sql):
            pairs.append((x, b[0]))
    assert pairs == [(1, 1), (1, 2), (2, 1), (2, 2)]

def test_capacity_zero_disables_caching(mem):
    mem.set_cache_capacity(0)
    before = mem.stats["prepare_count"]
    mem.query_row("SELECT 1")
    mem.query_row("SELECT 1")
    assert mem.stats["prepare_count"] == before + 2
    assert len(mem.statement_cache) == 0

def test_shrinking_capacity_evicts(mem):
    for i in range(5):
        mem.query_row(f"SELECT {i}")
    assert len(mem.statement_cache) == 5
    mem.set_cache_capacity(2)
    assert len(mem.statement_cache) == 2
    assert mem.statement_cache.capacity == 2

def test_flush(mem):
    for i in range(3):
        mem.query_row(f"SELECT {i}")
    held = mem.prepare_cached("SELECT 0")
    stmt = held.statement
    mem.flush_cache()
    assert len(mem.statement_cache) == 0
    # A checked-out statement survives the flush until released.
    assert held.query_row() == (0,)
    held.release()
    assert stmt.finalized

def test_discard(mem):
    held = mem.prepare_cached("SELECT 1")
    stmt = held.statement
    held.discard()
    assert stmt.finalized
    assert "SELECT 1" not in mem.statement_cache

def test_default_capacity(mem):
    assert mem.statement_cache.capacity == 16

def test_abandoned_checkout_is_returned_on_collection(mem):
    held = mem.prepare_cached("SELECT 1")
    del held
    gc.collect()
    before = mem.stats["prepare_count"]
    mem.query_row("SELECT 1")
    assert mem.stats["prepare_count"] == before

def test_abandoned_checkout_is_reset_and_cleared(mem):
    mem.execute_batch("CREATE TABLE t (a INTEGER); INSERT INTO t VALUES (1); INSERT INTO t VALUES (2);")
    sql = "SELECT a FROM t WHERE a > ?"
    held = mem.prepare_cached(sql)
    held.bind(1, 0)
    held.step()
    stmt = held.statement
    del held
    gc.collect()
    assert sql in mem.statement_cache
    assert stmt.expanded_sql == "SELECT a FROM t WHERE a > NULL"
    # Still paused on a row, the statement would keep the table locked.
    mem.execute("DROP TABLE t")

def test_early_break_from_query_releases_table(mem):
    mem.execute_batch("CREATE TABLE t (a INTEGER); INSERT INTO t VALUES (1); INSERT INTO t VALUES (2);")
    for row in mem.query("SELECT a FROM t"):
        break
    del row
    gc.collect()
    mem.execute("DROP TABLE t")

def test_early_break_from_query_releases_read_lock(db_path):
    conn = litestmt.open(db_path)
    other = litestmt.open(db_path)
    try:
        conn.execute_batch("CREATE TABLE t (a INTEGER); INSERT INTO t VALUES (1); INSERT INTO t VALUES (2);")
        for row in conn.query("SELECT a FROM t"):
            break
        del row
        gc.collect()
        # No busy timeout: a lingering read lock would fail this right away.
        other.execute("INSERT INTO t VALUES (3)")
        assert conn.query_row("SELECT count(*) FROM t") == (3,)
    finally:
        conn.close()
        other.close()

def test_cached_statement_after_close(db_path):
    conn = litestmt.open(db_path)
    held = conn.prepare_cached("SELECT 1")
    conn.close()
    with pytest.raises(litestmt.UsageFault):
        held.step()
    held.release()
