import litestmt
from litestmt import dbapi
import time
import os

def run_benchmark():
    db_path = "bench_fetch.db"
    if os.path.exists(db_path):
        os.remove(db_path)

    conn = litestmt.open(db_path)
    conn.execute("CREATE TABLE bench (id INTEGER, val TEXT, f REAL)")

    count = 100000
    data = [(i, f"value_{i}", float(i)) for i in range(count)]

    print("Setting up data...")
    start_time = time.perf_counter()
    with conn.transaction() as tx:
        for row in data:
            conn.execute("INSERT INTO bench VALUES (?, ?, ?)", row)
        tx.commit()
    end_time = time.perf_counter()
    print(f"Insert {count} rows (cached statement): {end_time - start_time:.4f}s")
    print(f"  prepares={conn.stats['prepare_count']} cache hits={conn.stats['cache_hit']}")

    # Row-at-a-time iteration over the core API
    print("Benchmarking query()...")
    start_time = time.perf_counter()
    total = 0
    for row in conn.query("SELECT * FROM bench"):
        total += 1
    end_time = time.perf_counter()
    print(f"query() {count} rows: {end_time - start_time:.4f}s")
    assert total == count

    print("Benchmarking query_map()...")
    start_time = time.perf_counter()
    ids = list(conn.query_map("SELECT id FROM bench", (), lambda row: row.get(0, int)))
    end_time = time.perf_counter()
    print(f"query_map() {count} rows: {end_time - start_time:.4f}s")
    assert len(ids) == count
    conn.close()

    # DB-API cursor
    conn = dbapi.connect(db_path)
    cur = conn.cursor()

    print("Benchmarking fetchall...")
    start_time = time.perf_counter()
    cur.execute("SELECT * FROM bench")
    rows = cur.fetchall()
    end_time = time.perf_counter()

    print(f"Fetchall {count} rows: {end_time - start_time:.4f}s")
    assert len(rows) == count

    print("Benchmarking fetchmany(1000)...")
    start_time = time.perf_counter()
    cur.execute("SELECT * FROM bench")
    total = 0
    while True:
        batch = cur.fetchmany(1000)
        if not batch:
            break
        total += len(batch)
    end_time = time.perf_counter()

    print(f"Fetchmany(1000) {count} rows: {end_time - start_time:.4f}s")
    assert total == count

    conn.close()
    if os.path.exists(db_path):
        os.remove(db_path)

if __name__ == "__main__":
    run_benchmark()
