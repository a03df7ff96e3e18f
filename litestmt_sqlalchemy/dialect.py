import os

from sqlalchemy import exc
from sqlalchemy import pool
from sqlalchemy import util
from sqlalchemy.dialects.sqlite.base import SQLiteDialect

import litestmt.dbapi


class LitestmtDialect(SQLiteDialect):
    """``sqlite+litestmt://``: SQLite's SQL dialect over the litestmt driver."""

    driver = "litestmt"
    supports_statement_cache = True
    returns_native_bytes = True
    description_encoding = None

    default_paramstyle = "qmark"

    _isolation_lookup = SQLiteDialect._isolation_lookup.union(
        {
            "AUTOCOMMIT": None,
        }
    )

    @classmethod
    def import_dbapi(cls):
        return litestmt.dbapi

    @classmethod
    def _is_url_file_db(cls, url):
        return bool(url.database and url.database != ":memory:" and url.query.get("mode") != "memory")

    @classmethod
    def get_pool_class(cls, url):
        if cls._is_url_file_db(url):
            return pool.QueuePool
        # Every checkout of an in-memory database must see the same one.
        return pool.SingletonThreadPool

    def _get_server_version_info(self, connection):
        return self.dbapi.sqlite_version_info

    def set_isolation_level(self, dbapi_connection, level):
        if level == "AUTOCOMMIT":
            dbapi_connection.isolation_level = None
        else:
            dbapi_connection.isolation_level = ""
            super().set_isolation_level(dbapi_connection, level)

    def create_connect_args(self, url):
        if url.username or url.password or url.host or url.port:
            raise exc.ArgumentError(
                f"Invalid SQLite URL: {url}\n"
                "Valid forms are sqlite+litestmt:///:memory: (or sqlite+litestmt://), "
                "sqlite+litestmt:///relative/path.db and sqlite+litestmt:////absolute/path.db"
            )

        driver_args = [
            ("uri", bool),
            ("timeout", float),
            ("isolation_level", str),
            ("check_same_thread", bool),
            ("cached_statements", int),
        ]
        opts = dict(url.query)  # Convert to mutable dict
        driver_opts = {}
        for key, type_ in driver_args:
            util.coerce_kw_type(opts, key, type_, dest=driver_opts)

        if driver_opts.get("uri", False):
            # Whatever is not a driver argument belongs to the SQLite URI.
            uri_opts = {k: v for k, v in opts.items() if k not in dict(driver_args)}
            filename = url.database
            if uri_opts:
                filename += "?" + "&".join(f"{k}={uri_opts[k]}" for k in sorted(uri_opts))
        else:
            filename = url.database or ":memory:"
            if filename != ":memory:":
                filename = os.path.abspath(filename)

        # Pooled file connections move between threads; an in-memory one
        # stays with its SingletonThreadPool thread.
        driver_opts.setdefault("check_same_thread", not self._is_url_file_db(url))
        return ([filename], driver_opts)

    def is_disconnect(self, e, connection, cursor):
        if isinstance(e, litestmt.dbapi.ProgrammingError) and "Connection closed" in str(e):
            return True
        return isinstance(e, litestmt.UsageFault) and "is closed" in str(e)


dialect = LitestmtDialect
