# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False

# Cython imports
import cython

# Python imports
from os import PathLike
from typing import Generator, Any
from asyncio import AbstractEventLoop
from pgcycli._optionfile import ServiceFile
from pgcycli.aio.connection import Connection
from pgcycli.utils import validate_arg_str, validate_arg_uint, build_conninfo
from pgcycli.utils import MAX_CONNECT_TIMEOUT
from pgcycli import errors

__all__ = ["connect", "ConnectionManager"]


# Connection --------------------------------------------------------------------------------------
@cython.cclass
class ConnectionManager:
    """The Context Manager for an `async` Connection."""

    # . connection
    _conn: object
    # . arguments
    _conninfo: str
    _engine: object
    _loop: object

    def __init__(
        self,
        conninfo: str,
        engine: object | None,
        loop: AbstractEventLoop | None,
    ) -> None:
        """The Context Manager for an `async` Connection.

        For information about the arguments, please
        refer to the 'connect()' function.
        """
        self._conn = None
        self._conninfo = conninfo
        self._engine = engine
        self._loop = loop

    async def _acquire_conn(self) -> Connection:
        """(internal) Acquire an `async` connection `<'Connection'>`."""
        conn = Connection(self._conninfo, engine=self._engine, loop=self._loop)
        await conn.connect()
        return conn

    def __await__(self) -> Generator[Any, Any, Connection]:
        return self._acquire_conn().__await__()

    async def __aenter__(self) -> Connection:
        self._conn = await self._acquire_conn()
        return self._conn

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        conn, self._conn = self._conn, None
        await conn.close()

    def __del__(self):
        if self._conn is not None and not self._conn.closed():
            self._conn.finish()
        self._conn = None


@cython.ccall
def connect(
    conninfo: str | dict | None = None,
    host: str | None = None,
    port: int | Any = None,
    user: str | None = None,
    password: str | None = None,
    dbname: str | None = None,
    connect_timeout: int | Any = None,
    application_name: str | None = None,
    options: str | None = None,
    service_file: str | bytes | PathLike | None = None,
    service: str | None = None,
    engine: object | None = None,
    loop: AbstractEventLoop | None = None,
) -> ConnectionManager:
    """Connect to the server and acquire an `async` connection
    through context manager `<'ConnectionManager'>`.

    :param conninfo `<'str/dict/None'>`: A libpq connection string or a mapping of
        connection keywords. The keyword arguments below are layered on top of it.
        Defaults to `None`.
    :param host `<'str/None'>`: The host of the server. Defaults to `None` (libpq default).
    :param port `<'int/None'>`: The port of the server. Defaults to `None` (libpq default).
    :param user `<'str/None'>`: The username to login as. Defaults to `None`.
    :param password `<'str/None'>`: The password for login authentication. Defaults to `None`.
    :param dbname `<'str/None'>`: The database to connect to. Defaults to `None`.
    :param connect_timeout `<'int/None'>`: Seconds to wait for the connection. Defaults to `None`.
    :param application_name `<'str/None'>`: The 'application_name' reported to the server. Defaults to `None`.
    :param options `<'str/None'>`: Command-line options sent to the server, e.g. `'-c statement_timeout=5000'`. Defaults to `None`.
    :param service_file `<'str/bytes/PathLike/None'>`: Path to a connection service file
        (pg_service.conf) to load the 'service' section from. Defaults to `None`.
    :param service `<'str/None'>`: The service name within 'service_file'. Defaults to `None`.
    :param engine `<'object/None'>`: The database engine. Defaults to `None` (libpq through psycopg).
    :param loop `<'AbstractEventLoop/None'>`: The event loop. Defaults to `None` (the running loop).

    ## Example (await)
    >>> conn = await connect(host="localhost", user="postgres", dbname="test_db")
        res = await conn.exec("SELECT 1")
        conn.finish()

    ## Example (context manager)
    >>> async with connect("host=localhost dbname=test_db") as conn:
            res = await conn.exec("SELECT 1")
    """
    # Keywords
    params: dict = {}
    if service_file is not None:
        if service is None:
            raise errors.InvalidServiceFileError(
                "Argument 'service' is required along with 'service_file'."
            )
        params.update(ServiceFile(service_file, service).params)
    elif service is not None:
        params["service"] = validate_arg_str(service, "service", None)
    # fmt: off
    overrides: dict = {
        "host": validate_arg_str(host, "host", None),
        "port": validate_arg_uint(port, "port", 1, 65_535),
        "user": validate_arg_str(user, "user", None),
        "password": validate_arg_str(password, "password", None),
        "dbname": validate_arg_str(dbname, "dbname", None),
        "connect_timeout": validate_arg_uint(connect_timeout, "connect_timeout", 1, MAX_CONNECT_TIMEOUT),
        "application_name": validate_arg_str(application_name, "application_name", None),
        "options": validate_arg_str(options, "options", None),
    }
    # fmt: on
    for key, value in overrides.items():
        if value is not None:
            params[key] = value

    # Connection string
    dsn: str
    if conninfo is None:
        dsn = build_conninfo(params)
    elif isinstance(conninfo, str):
        if params and conninfo.startswith(("postgresql://", "postgres://")):
            raise errors.InvalidConnectionArgsError(
                "Connection URI cannot be combined with keyword arguments: %r."
                % sorted(params)
            )
        # . later keywords take precedence in libpq
        extra: str = build_conninfo(params)
        dsn = conninfo + " " + extra if conninfo and extra else conninfo or extra
    elif isinstance(conninfo, dict):
        merged: dict = dict(conninfo)
        merged.update(params)
        dsn = build_conninfo(merged)
    else:
        raise errors.InvalidConnectionArgsError(
            "Invalid 'conninfo' argument: %r.\n"
            "Expects <'str'> or <'dict'> instead of %s." % (conninfo, type(conninfo))
        )
    return ConnectionManager(dsn, engine, loop)
