"""Firebird database driver."""

from __future__ import annotations

import threading
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

from schemamigrate.driver import (
    NIL_VERSION,
    Driver,
    LockedError,
    NotLockedError,
    register,
)
from schemamigrate.errors import DatabaseError

DEFAULT_MIGRATIONS_TABLE = "schema_migrations"


@dataclass
class Config:
    """Settings of a Firebird driver instance."""

    database_name: str = ""
    migrations_table: str = ""


def _filter_custom_query(url: str) -> str:
    """Drop the query parameters that start with "x-", sorting the rest."""
    parts = urlsplit(url)
    kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not k.startswith("x-")]
    kept.sort(key=lambda item: item[0])
    return urlunsplit(parts._replace(query=urlencode(kept)))


def _query_param(url: str, name: str) -> str:
    values = parse_qs(urlsplit(url).query, keep_blank_values=True).get(name)
    return values[0] if values else ""


def _read_all(migration: Any) -> bytes:
    data = migration.read()
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class Firebird(Driver):
    """Migration driver for Firebird over a DB-API connection.

    ``connect`` is called with a DSN and must return a DB-API connection.
    """

    def __init__(self, connect: Callable[[str], Any] | None = None) -> None:
        self._connect = connect
        self._conn: Any = None
        self.config: Config | None = None
        self._locked = False
        self._guard = threading.Lock()

    def _execute(self, query: str) -> None:
        with closing(self._conn.cursor()) as cursor:
            cursor.execute(query)

    def _fetch(self, query: str) -> list[Any]:
        with closing(self._conn.cursor()) as cursor:
            cursor.execute(query)
            return list(cursor.fetchall())

    def open(self, url: str) -> "Firebird":
        if self._connect is None:
            raise ValueError("no connect function configured for the firebird driver")
        connection = self._connect(_filter_custom_query(url))
        instance = with_instance(
            connection,
            Config(
                migrations_table=_query_param(url, "x-migrations-table"),
                database_name=urlsplit(url).path,
            ),
        )
        instance._connect = self._connect
        return instance

    def close(self) -> None:
        self._conn.close()

    def lock(self) -> None:
        with self._guard:
            if self._locked:
                raise LockedError()
            self._locked = True

    def unlock(self) -> None:
        with self._guard:
            if not self._locked:
                raise NotLockedError()
            self._locked = False

    def run(self, migration: Any) -> None:
        body = _read_all(migration)
        try:
            self._execute(body.decode("utf-8"))
        except Exception as exc:
            raise DatabaseError(exc, query=body, err="migration failed") from exc

    def set_version(self, version: int, dirty: bool) -> None:
        table = self.config.migrations_table
        query = (
            "EXECUTE BLOCK AS BEGIN\n"
            f'\t\t\t\t\tDELETE FROM "{table}";\n'
            f'\t\t\t\t\tINSERT INTO "{table}" (version, dirty) VALUES ({version}, {int(bool(dirty))});\n'
            "\t\t\t\tEND;"
        )
        try:
            self._execute(query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc

    def version(self) -> tuple[int, bool]:
        query = f'SELECT FIRST 1 version, dirty FROM "{self.config.migrations_table}"'
        try:
            with closing(self._conn.cursor()) as cursor:
                cursor.execute(query)
                row = cursor.fetchone()
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        if row is None:
            return NIL_VERSION, False
        return int(row[0]), row[1] != 0

    def drop(self) -> None:
        query = (
            "SELECT rdb$relation_name FROM rdb$relations WHERE rdb$view_blr IS NULL "
            "AND (rdb$system_flag IS NULL OR rdb$system_flag = 0);"
        )
        try:
            rows = self._fetch(query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        for (name,) in (row[:1] for row in rows):
            if not name:
                continue
            statement = (
                "EXECUTE BLOCK AS BEGIN\n"
                f"\t\t\t\t\t\tif (not exists(select 1 from rdb$relations where rdb$relation_name = '{name}')) then\n"
                f"\t\t\t\t\t\texecute statement 'drop table \"{name}\"';\n"
                "\t\t\t\t\tEND;"
            )
            try:
                self._execute(statement)
            except Exception as exc:
                raise DatabaseError(exc, query=statement) from exc

    def _ensure_version_table(self) -> None:
        self.lock()
        try:
            table = self.config.migrations_table
            query = (
                "EXECUTE BLOCK AS BEGIN\n"
                f"\t\t\tif (not exists(select 1 from rdb$relations where rdb$relation_name = '{table}')) then\n"
                f"\t\t\texecute statement 'create table \"{table}\" "
                "(version bigint not null primary key, dirty smallint not null)';\n"
                "\t\tEND;"
            )
            try:
                self._execute(query)
            except Exception as exc:
                raise DatabaseError(exc, query=query) from exc
        finally:
            self.unlock()


def with_instance(connection: Any, config: Config | None) -> Firebird:
    """Build a driver around an open DB-API connection."""
    if config is None:
        raise ValueError("no config")
    if not config.migrations_table:
        config.migrations_table = DEFAULT_MIGRATIONS_TABLE
    instance = Firebird()
    instance._conn = connection
    instance.config = config
    instance._ensure_version_table()
    return instance


_default = Firebird()
register("firebird", _default)
register("firebirdsql", _default)