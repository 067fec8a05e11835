"""MySQL database driver using named locks."""

from __future__ import annotations

import re
import ssl
import threading
import zlib
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import parse_qs, quote_plus, unquote_plus

from schemamigrate.driver import (
    NIL_VERSION,
    Driver,
    LockedError,
    NotLockedError,
    register,
)
from schemamigrate.errors import DatabaseError

DEFAULT_MIGRATIONS_TABLE = "schema_migrations"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass
class Config:
    """Settings of a MySQL driver instance."""

    migrations_table: str = ""
    database_name: str = ""
    no_lock: bool = False


def read_bool(value: str) -> tuple[bool, bool]:
    """Return the boolean meaning of ``value`` and whether it is a valid boolean."""
    if value in ("1", "true", "TRUE", "True"):
        return True, True
    if value in ("0", "false", "FALSE", "False"):
        return False, True
    return False, False


def extract_custom_query_params(params: dict[str, str] | None) -> dict[str, str]:
    """Move the parameters whose names start with "x-" out of ``params``."""
    if params is None:
        raise ValueError("no config")
    custom = {key: value for key, value in params.items() if key.startswith("x-")}
    for key in custom:
        del params[key]
    return custom


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f'parsing "{value}": invalid syntax')


def _strict_unescape(value: str) -> str:
    bad = _BAD_ESCAPE.search(value)
    if bad is not None:
        raise ValueError(f'invalid URL escape "{value[bad.start():bad.start() + 3]}"')
    return unquote_plus(value)


def _has_port(addr: str) -> bool:
    if addr.startswith("["):
        return "]:" in addr
    return ":" in addr


@dataclass
class _DSN:
    user: str = ""
    password: str = ""
    net: str = ""
    addr: str = ""
    dbname: str = ""
    params: dict[str, str] = field(default_factory=dict)

    def format(self) -> str:
        text = ""
        if self.user or self.password:
            text = self.user
            if self.password:
                text += ":" + self.password
            text += "@"
        if self.net:
            text += self.net
            if self.addr:
                text += f"({self.addr})"
        text += "/" + self.dbname
        if self.params:
            text += "?" + "&".join(
                f"{key}={quote_plus(value)}" for key, value in sorted(self.params.items())
            )
        return text


def _parse_dsn(dsn: str) -> _DSN:
    """Parse ``[user[:password]@][net[(addr)]]/dbname[?params]``."""
    result = _DSN()
    question = dsn.rfind("?")
    head = dsn if question < 0 else dsn[:question]
    slash = head.rfind("/")
    if slash < 0:
        if dsn:
            raise ValueError("invalid DSN: missing the slash separating the database name")
    else:
        left = head[:slash]
        if left:
            at = left.rfind("@")
            if at >= 0:
                user, _, secret = left[:at].partition(":")
                result.user = user
                result.password = secret
            rest = left[at + 1:]
            paren = rest.find("(")
            if paren >= 0:
                if not rest.endswith(")"):
                    if ")" in rest[paren + 1:]:
                        raise ValueError("invalid DSN: did you forget to escape a param value?")
                    raise ValueError("invalid DSN: network address not terminated (missing closing brace)")
                result.addr = rest[paren + 1:-1]
                result.net = rest[:paren]
            else:
                result.net = rest
        result.dbname = head[slash + 1:]
        if question >= 0:
            for piece in dsn[question + 1:].split("&"):
                key, sep, value = piece.partition("=")
                if sep:
                    result.params[key] = _strict_unescape(value)

    if not result.net:
        result.net = "tcp"
    if not result.addr:
        if result.net == "tcp":
            result.addr = "127.0.0.1:3306"
        elif result.net == "unix":
            result.addr = "/tmp/mysql.sock"
    elif result.net == "tcp" and not _has_port(result.addr):
        result.addr += ":3306"
    return result


def _build_tls_context(get: Callable[[str], str]) -> ssl.SSLContext:
    with open(get("x-tls-ca"), "rb") as handle:
        pem = handle.read()
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        context.load_verify_locations(cadata=pem.decode("ascii"))
    except (ssl.SSLError, ValueError, UnicodeError) as exc:
        raise ValueError("failed to append PEM") from exc

    cert, key = get("x-tls-cert"), get("x-tls-key")
    if cert or key:
        if not cert or not key:
            raise ValueError(
                "To use TLS client authentication, both x-tls-cert and x-tls-key must not be empty"
            )
        context.load_cert_chain(cert, key)

    skip = get("x-tls-insecure-skip-verify")
    if skip and _parse_bool(skip):
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _url_to_config(url: str) -> tuple[_DSN, ssl.SSLContext | None]:
    context = None
    question = url.rfind("?")
    if question > 0:
        raw = parse_qs(url[question + 1:], keep_blank_values=True)

        def get(name: str) -> str:
            values = raw.get(name)
            return values[0] if values else ""

        tls_name = get("tls")
        if tls_name:
            _, is_bool = read_bool(tls_name)
            if not is_bool and tls_name.lower() != "skip-verify":
                context = _build_tls_context(get)

    dsn = _parse_dsn(url.removeprefix("mysql://"))
    dsn.params["multiStatements"] = "true"
    dsn.user = _strict_unescape(dsn.user)
    dsn.password = _strict_unescape(dsn.password)
    return dsn, context


def _advisory_lock_id(name: str) -> str:
    return str(zlib.crc32(name.encode("utf-8")))


def _read_all(migration: Any) -> bytes:
    data = migration.read()
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def _error_number(exc: BaseException) -> int | None:
    errno = getattr(exc, "errno", None)
    if isinstance(errno, int):
        return errno
    if exc.args and isinstance(exc.args[0], int):
        return exc.args[0]
    return None


def _fetch_one(connection: Any, query: str, params: tuple | None = None) -> Any:
    with closing(connection.cursor()) as cursor:
        if params is None:
            cursor.execute(query)
        else:
            cursor.execute(query, params)
        return cursor.fetchone()


class Mysql(Driver):
    """Migration driver for MySQL over a DB-API connection.

    ``connect`` is called with a DSN, plus an ``ssl`` keyword holding an
    ``ssl.SSLContext`` when the URL names a custom TLS configuration, and
    must return a DB-API connection using the ``format`` parameter style
    with multiple statements enabled.
    """

    def __init__(self, connect: Callable[..., Any] | None = None) -> None:
        self._connect = connect
        self._conn: Any = None
        self.config: Config | None = None
        self._locked = False
        self._guard = threading.Lock()

    def _execute(self, query: str, params: tuple | None = None) -> None:
        with closing(self._conn.cursor()) as cursor:
            if params is None:
                cursor.execute(query)
            else:
                cursor.execute(query, params)

    def _commit(self) -> None:
        commit = getattr(self._conn, "commit", None)
        if commit is not None:
            commit()

    def _rollback(self) -> None:
        rollback = getattr(self._conn, "rollback", None)
        if rollback is None:
            return
        try:
            rollback()
        except Exception:
            pass

    def _lock_id(self) -> str:
        return _advisory_lock_id(f"{self.config.database_name}:{self.config.migrations_table}")

    def open(self, url: str) -> "Mysql":
        if self._connect is None:
            raise ValueError("no connect function configured for the mysql driver")
        dsn, context = _url_to_config(url)
        custom = extract_custom_query_params(dsn.params)

        no_lock = False
        if custom.get("x-no-lock"):
            try:
                no_lock = _parse_bool(custom["x-no-lock"])
            except ValueError as exc:
                raise ValueError(f"could not parse x-no-lock as bool: {exc}") from exc

        if context is not None:
            connection = self._connect(dsn.format(), ssl=context)
        else:
            connection = self._connect(dsn.format())
        instance = with_instance(
            connection,
            Config(
                database_name=dsn.dbname,
                migrations_table=custom.get("x-migrations-table", ""),
                no_lock=no_lock,
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
        try:
            self._acquire()
        except BaseException:
            with self._guard:
                self._locked = False
            raise

    def _acquire(self) -> None:
        if self.config.no_lock:
            return
        query = "SELECT GET_LOCK(%s, 10)"
        try:
            row = _fetch_one(self._conn, query, (self._lock_id(),))
        except Exception as exc:
            raise DatabaseError(exc, query=query, err="try lock failed") from exc
        if row is None or not row[0]:
            raise LockedError()

    def unlock(self) -> None:
        with self._guard:
            if not self._locked:
                raise NotLockedError()
            self._locked = False
        try:
            self._release()
        except BaseException:
            with self._guard:
                self._locked = True
            raise

    def _release(self) -> None:
        if self.config.no_lock:
            return
        query = "SELECT RELEASE_LOCK(%s)"
        try:
            self._execute(query, (self._lock_id(),))
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc

    def run(self, migration: Any) -> None:
        body = _read_all(migration)
        try:
            self._execute(body.decode("utf-8"))
            self._commit()
        except Exception as exc:
            self._rollback()
            raise DatabaseError(exc, query=body, err="migration failed") from exc

    def set_version(self, version: int, dirty: bool) -> None:
        table = self.config.migrations_table
        query = f"TRUNCATE `{table}`"
        try:
            self._execute(query)
            if version >= 0 or (version == NIL_VERSION and dirty):
                query = f"INSERT INTO `{table}` (version, dirty) VALUES (%s, %s)"
                self._execute(query, (version, bool(dirty)))
        except Exception as exc:
            self._rollback()
            raise DatabaseError(exc, query=query) from exc
        try:
            self._commit()
        except Exception as exc:
            raise DatabaseError(exc, err="transaction commit failed") from exc

    def version(self) -> tuple[int, bool]:
        query = f"SELECT version, dirty FROM `{self.config.migrations_table}` LIMIT 1"
        try:
            row = _fetch_one(self._conn, query)
        except Exception as exc:
            if _error_number(exc) == 0:
                return NIL_VERSION, False
            raise DatabaseError(exc, query=query) from exc
        if row is None:
            return NIL_VERSION, False
        return int(row[0]), bool(row[1])

    def drop(self) -> None:
        query = "SHOW TABLES LIKE '%'"
        try:
            with closing(self._conn.cursor()) as cursor:
                cursor.execute(query)
                names = [row[0] for row in cursor.fetchall() if row[0]]
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        if not names:
            return

        query = "SET foreign_key_checks = 0"
        try:
            self._execute(query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        try:
            for name in names:
                statement = f"DROP TABLE IF EXISTS `{name}`"
                try:
                    self._execute(statement)
                except Exception as exc:
                    raise DatabaseError(exc, query=statement) from exc
        finally:
            try:
                self._execute("SET foreign_key_checks = 1")
            except Exception:
                pass

    def _ensure_version_table(self) -> None:
        self.lock()
        try:
            self._create_version_table()
        except BaseException:
            try:
                self.unlock()
            except Exception:
                pass
            raise
        self.unlock()

    def _create_version_table(self) -> None:
        table = self.config.migrations_table
        query = f"SHOW TABLES LIKE '{table}'"
        try:
            row = _fetch_one(self._conn, query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        if row is not None:
            return
        query = f"CREATE TABLE `{table}` (version bigint not null primary key, dirty boolean not null)"
        try:
            self._execute(query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc


def with_instance(connection: Any, config: Config | None) -> Mysql:
    """Build a driver around an open DB-API connection."""
    ping = getattr(connection, "ping", None)
    if callable(ping):
        ping()
    if config is None:
        raise ValueError("no config")

    if not config.database_name:
        query = "SELECT DATABASE()"
        try:
            row = _fetch_one(connection, query)
        except Exception as exc:
            raise DatabaseError(exc, query=query) from exc
        if row is None or not row[0]:
            raise ValueError("no database name")
        config.database_name = row[0]

    if not config.migrations_table:
        config.migrations_table = DEFAULT_MIGRATIONS_TABLE

    instance = Mysql()
    instance._conn = connection
    instance.config = config
    instance._ensure_version_table()
    return instance


register("mysql", Mysql())