"""Example: Basic litestmt usage, core API and DB-API 2.0 interface.

litestmt loads the system libsqlite3. To use a specific build:
    LITESTMT_SQLITE_LIB=/path/to/libsqlite3.so python example.py
"""

import os
import tempfile
import litestmt
from litestmt import dbapi


def main():
    # Create a temporary database file for this example.
    db_path = os.path.join(tempfile.gettempdir(), "litestmt_example.db")

    print(f"SQLite {litestmt.version()}")
    conn = litestmt.open(db_path)

    # Create a table.
    conn.execute_batch("""
        CREATE TABLE users (
            id    INTEGER PRIMARY KEY,
            name  TEXT NOT NULL,
            email TEXT UNIQUE
        );
    """)

    # Insert rows through one cached, reused statement.
    users = [
        ("Alice", "alice@example.com"),
        ("Bob", "bob@example.com"),
        ("Carol", "carol@example.com"),
    ]
    with conn.transaction() as tx:
        for user in users:
            conn.execute("INSERT INTO users (name, email) VALUES (?, ?)", user)
        tx.commit()

    # Query all users.
    print("All users:")
    for row in conn.query("SELECT id, name, email FROM users ORDER BY id"):
        print(f"  id={row['id']}  name={row['name']}  email={row['email']}")

    # Parameterised lookup with named parameters.
    name = conn.query_row(
        "SELECT name FROM users WHERE email = :email",
        {":email": "bob@example.com"},
        lambda row: row.get(0, str),
    )
    print(f"\nLookup by email: {name}")

    # A failed savepoint leaves the outer transaction intact.
    with conn.transaction() as tx:
        conn.execute("INSERT INTO users (name, email) VALUES (?, ?)", ("Dave", "dave@example.com"))
        try:
            with tx.savepoint():
                conn.execute("INSERT INTO users (name, email) VALUES (?, ?)", ("Eve", "alice@example.com"))
        except litestmt.ConstraintError as e:
            print(f"\nSavepoint rolled back: {e.message}")
        tx.commit()

    count = conn.query_row("SELECT count(*) FROM users")[0]
    print(f"\nTotal users after transaction: {count}")
    conn.close()

    # The same database through the DB-API 2.0 interface.
    db = dbapi.connect(db_path)
    cursor = db.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
    print(f"\nTables: {[r[0] for r in cursor.fetchall()]}")

    cursor.execute("PRAGMA table_info(users)")
    print("Columns:")
    for cid, col, type_, not_null, default, pk in cursor.fetchall():
        print(f"  {col} ({type_})"
              f"{'  PK' if pk else ''}"
              f"{'  NOT NULL' if not_null else ''}")

    cursor.close()
    db.close()

    # Clean up.
    for suffix in ("", "-journal", "-wal"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass

    print("\nDone.")


if __name__ == "__main__":
    main()
