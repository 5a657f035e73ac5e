# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False
from __future__ import annotations

# Cython imports
import cython

# Python imports
import asyncio, warnings
from contextlib import aclosing
from typing import Any, AsyncIterator
from asyncio import AbstractEventLoop, Future, get_event_loop
from pgcycli.constants import CONN, FORMAT, STATUS
from pgcycli.protocol import encode_params, escape_bytea
from pgcycli.result import Result
from pgcycli.utils import build_conninfo
from pgcycli._engine import default_engine
from pgcycli import errors

__all__ = ["ReadEvent", "Connection"]


# Utils -------------------------------------------------------------------------------------------
@cython.cfunc
@cython.inline(True)
def _parse_exec_args(args: tuple, method: str) -> tuple:
    """(cfunc) Resolve the positional forms of 'exec()' into
    `(types, query, params)` `<'tuple'>`.

    Accepted forms: `(query)`, `(query, params)`, `(types, query)`
    and `(types, query, params)`.
    """
    size: cython.Py_ssize_t = len(args)
    if size == 1 and isinstance(args[0], str):
        return (), args[0], ()
    if size == 2 and isinstance(args[0], str):
        return (), args[0], args[1]
    if size == 2 and isinstance(args[1], str):
        return args[0], args[1], ()
    if size == 3 and isinstance(args[1], str):
        return args[0], args[1], args[2]
    raise errors.PGTypeError(
        "Invalid arguments for '%s()': %r.\n"
        "Expects '(query)', '(query, params)', '(types, query)' "
        "or '(types, query, params)' with 'query' as <'str'>." % (method, args)
    )


def _finish_orphan(engine: object, fut: Future) -> None:
    """Finish a handle whose connect completed after the caller gave up."""
    if fut.cancelled() or fut.exception() is not None:
        return None
    engine.finish(fut.result())


# ReadEvent ---------------------------------------------------------------------------------------
@cython.cclass
class ReadEvent:
    """The readiness registration of a connection's socket `<'ReadEvent'>`.

    Each `add()` arms a one-shot reader on the socket and returns a
    future the event loop resolves once the socket becomes readable.
    A connection creates one `ReadEvent` and reuses it for every wait.
    """

    _loop: object
    _fd: cython.int
    _waiter: object

    def __init__(self, loop: AbstractEventLoop, fd: int) -> None:
        """The readiness registration of a connection's socket.

        :param loop `<'AbstractEventLoop'>`: The event loop to register with.
        :param fd `<'int'>`: The socket file descriptor.
        """
        self._loop = loop
        self._fd = fd
        self._waiter = None

    # Property ------------------------------------------------------------------------------------
    @property
    def loop(self) -> AbstractEventLoop:
        """The event loop of the registration `<'AbstractEventLoop'>`."""
        return self._loop

    @property
    def fd(self) -> int:
        """The watched socket file descriptor `<'int'>`."""
        return self._fd

    @property
    def armed(self) -> bool:
        """Whether a wait is pending on the socket `<'bool'>`."""
        return self._waiter is not None

    # Event ---------------------------------------------------------------------------------------
    @cython.ccall
    def add(self) -> object:
        """Arm the registration and return the readiness `<'Future'>`.

        Arming an already armed registration returns the pending future.
        """
        if self._waiter is not None:
            return self._waiter
        waiter = self._loop.create_future()
        self._loop.add_reader(self._fd, self._on_readable)
        self._waiter = waiter
        return waiter

    @cython.ccall
    @cython.exceptval(-1, check=False)
    def remove(self) -> cython.bint:
        """Disarm the registration, cancelling any pending future."""
        waiter = self._waiter
        if waiter is None:
            return False
        self._waiter = None
        self._loop.remove_reader(self._fd)
        if not waiter.done():
            waiter.cancel()
        return True

    def _on_readable(self) -> None:
        waiter = self._waiter
        self._waiter = None
        self._loop.remove_reader(self._fd)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    # Special Methods -----------------------------------------------------------------------------
    def __repr__(self) -> str:
        return "<%s(fd=%d, armed=%s)>" % (
            self.__class__.__name__,
            self._fd,
            self._waiter is not None,
        )


# Connection --------------------------------------------------------------------------------------
class Connection:
    """The asynchronous connection to a PostgreSQL server.

    Owns one engine handle and the cached `ReadEvent` of its socket.
    Commands on the same connection are serialized by an internal
    lock, so the protocol never sees interleaved queries.

    ## Example
    >>> async with Connection("host=localhost dbname=test_db") as conn:
            res = await conn.exec((int, str), "SELECT $1::int, $2", [1, "a"])
            res.rows
    >>> ((1, 'a'),)
    """

    def __init__(
        self,
        conninfo: str | dict[str, Any],
        *,
        engine: object | None = None,
        loop: AbstractEventLoop | None = None,
    ) -> None:
        """The asynchronous connection to a PostgreSQL server.

        :param conninfo `<'str/dict'>`: The libpq connection string, or a mapping
            of connection keywords serialized to `"key=value"` pairs joined by spaces.
        :param engine `<'object/None'>`: The database engine. Defaults to `None`,
            which uses libpq through `psycopg.pq`.
        :param loop `<'AbstractEventLoop/None'>`: The event loop the connection
            registers its socket with. Defaults to `None`, the loop running
            when `connect()` is awaited.
        """
        if isinstance(conninfo, str):
            self._conninfo = conninfo
        else:
            self._conninfo = build_conninfo(conninfo)
        self._engine = default_engine if engine is None else engine
        self._loop = loop if isinstance(loop, AbstractEventLoop) else None
        self._raw = None
        self._read_event = None
        self._lock = asyncio.Lock()
        self._close_reason = "Connection not connected."

    # Property ------------------------------------------------------------------------------------
    @property
    def conninfo(self) -> str:
        """The connection string of the connection `<'str'>`."""
        return self._conninfo

    @property
    def engine(self) -> object:
        """The database engine of the connection `<'object'>`."""
        return self._engine

    @property
    def loop(self) -> AbstractEventLoop | None:
        """The event loop of the connection `<'AbstractEventLoop/None'>`."""
        return self._loop

    @property
    def socket(self) -> int:
        """The socket file descriptor of the connection `<'int'>`."""
        return self._engine.socket(self._verify_connected())

    def closed(self) -> bool:
        """Whether the connection is closed (not connected or finished) `<'bool'>`."""
        return self._raw is None

    # Connect -------------------------------------------------------------------------------------
    async def connect(self) -> None:
        """Open the engine handle to the server.

        The blocking engine connect runs in the loop's default executor.
        Calling `connect()` on an open connection does nothing.

        :raise ConnectionError: If the server cannot be reached or refuses
            the connection. The partially built handle is finished first.
        """
        if self._raw is not None:
            return None
        if self._loop is None:
            self._loop = get_event_loop()
        engine = self._engine
        fut: Future = self._loop.run_in_executor(None, engine.connect, self._conninfo)
        try:
            raw = await asyncio.shield(fut)
        except asyncio.CancelledError:
            fut.add_done_callback(lambda f: _finish_orphan(engine, f))
            raise
        if engine.status(raw) != CONN.OK:
            error = errors.ConnectionError(engine.error_message(raw))
            engine.finish(raw)
            raise error
        self._raw = raw
        self._read_event = None

    def finish(self) -> None:
        """Release the engine handle, closing the connection.

        :raise ConnectionClosedError: If the connection is not
            connected or has already been finished.
        """
        raw = self._verify_connected()
        self._raw = None
        self._close_reason = "Connection already finished."
        try:
            if self._read_event is not None:
                self._read_event.remove()
        finally:
            self._read_event = None
            self._engine.finish(raw)

    async def close(self) -> None:
        """Finish the connection if it is still open.

        Unlike `finish()`, closing a closed connection does nothing.
        """
        if self._raw is not None:
            self.finish()

    # Query ---------------------------------------------------------------------------------------
    async def exec(self, *args: Any) -> Result | None:
        """Execute a query and return its first result `<'Result/None'>`.

        Accepted forms:
        - `exec(query)`
        - `exec(query, params)`
        - `exec(types, query)`
        - `exec(types, query, params)`

        :param types `<'Sequence[type]'>`: The expected python type of each
            result column. Empty (default) decodes by the column type OIDs.
        :param query `<'str'>`: The SQL query, parameters referenced as `$1`, `$2`...
        :param params `<'Sequence'>`: The bound values, mapped positionally.
            `None` is sent as NULL, bytes as binary, others as their `str()`.

        Every result frame of the query is consumed before returning, only
        the first one is materialized. Returns `None` if the query produced
        no result at all.

        :raise Error: If the engine rejects the submission.
        :raise ResultError: If the first result reports a failure.
        :raise ConnectionError: If the connection is lost while waiting.
        """
        types, query, params = _parse_exec_args(args, "exec")
        async with self._lock:
            self._send_query_params(query, params)
            result: Result = None
            async with aclosing(self._get_results()) as frames:
                async for frame in frames:
                    try:
                        result = Result(types, frame)
                    finally:
                        self._engine.clear(frame)
                    break
            return result

    async def exec_all(self, query: str) -> None:
        """Execute one or more semicolon-separated statements without
        parameters, validating the status of the last one.

        The engine runs the statements to completion without suspending
        the task, so this is meant for short setup scripts.

        :raise ResultError: If a statement fails.
        """
        async with self._lock:
            raw = self._verify_connected()
            frame = self._engine.exec(raw, query)
            self._check_status(frame)
            self._engine.clear(frame)

    async def results(
        self,
        *args: Any,
        single_row: bool = False,
    ) -> AsyncIterator[Result]:
        """Execute a query and iterate over every result `<'AsyncIterator[Result]'>`.

        Takes the same positional forms as `exec()`. Results are yielded
        in the order the server produces them. With 'single_row=True'
        the rows are streamed one result per row, followed by one final
        empty result.

        Leaving the iteration early still consumes the remaining results.
        Close the iterator (or exhaust it) to release the connection, e.g.
        `async with contextlib.aclosing(conn.results(...)) as results:`.

        :raise ResultError: On the first failing result, after all the
            remaining results have been consumed.
        """
        types, query, params = _parse_exec_args(args, "results")
        async with self._lock:
            self._send_query_params(query, params)
            if single_row and not self._engine.set_single_row_mode(self._raw):
                error = errors.Error(self._engine.error_message(self._raw))
                await self._clear_results()
                raise error
            async with aclosing(self._get_results()) as frames:
                async for frame in frames:
                    try:
                        result = Result(types, frame)
                    finally:
                        self._engine.clear(frame)
                    yield result

    def _send_query_params(self, query: str, params: object) -> None:
        """(internal) Encode the parameters and submit the query."""
        raw = self._verify_connected()
        encoded: tuple = encode_params(params)
        n_params: cython.Py_ssize_t = len(encoded)
        param_values: list = [p.data for p in encoded]
        param_lengths: list = [len(p) for p in encoded]
        param_formats: list = [p.format for p in encoded]
        ret = self._engine.send_query_params(
            raw,
            query,
            n_params,
            None,  # have server infer types
            param_values,
            param_lengths,
            param_formats,
            FORMAT.TEXT,
        )
        if ret == 0:
            raise errors.Error(self._engine.error_message(raw))

    # Drain ---------------------------------------------------------------------------------------
    async def _get_results(self) -> AsyncIterator[object]:
        """(internal) Yield every validated result frame of the
        submitted query, in order.

        The consumer owns each yielded frame and must clear it. The
        remaining frames are always drained before this iterator
        finishes, whether it is exhausted, closed early or raising.
        """
        engine = self._engine
        try:
            while True:
                await self._wait_result()
                frame = engine.get_result(self._raw)
                if frame is None:
                    break
                self._check_status(frame)
                yield frame
        finally:
            await self._clear_results()

    async def _clear_results(self) -> None:
        """(internal) Pull and clear frames until none remain."""
        engine = self._engine
        while True:
            await self._wait_result()
            frame = engine.get_result(self._raw)
            if frame is None:
                return None
            engine.clear(frame)

    async def _wait_result(self) -> None:
        """(internal) Suspend until the next frame can be pulled
        without blocking."""
        engine = self._engine
        raw = self._raw
        while engine.is_busy(raw):
            await self._wait_readable()
            if not engine.consume_input(raw):
                raise errors.ConnectionError(engine.error_message(raw))

    async def _wait_readable(self) -> None:
        """(internal) Suspend the current task until the socket is readable."""
        read_event: ReadEvent = self._read_event
        if read_event is None:
            read_event = ReadEvent(self._loop, self._engine.socket(self._raw))
            self._read_event = read_event
        try:
            await read_event.add()
        finally:
            read_event.remove()

    def _check_status(self, frame: object) -> None:
        """(internal) Validate the status of a frame.

        A failing frame is cleared and raised as `ResultError`, with
        the message taken from the frame itself.
        """
        status = self._engine.result_status(frame)
        if status in STATUS.SUCCESS:
            return None
        error = errors.ResultError(status, self._engine.error_message(frame))
        self._engine.clear(frame)
        raise error

    # Escape --------------------------------------------------------------------------------------
    def escape_literal(self, value: str | bytes) -> str:
        """Escape a value for use as a literal constant in an SQL command `<'str'>`.

        Strings are escaped by the engine, quotes and backslashes
        included. Binary data becomes a hex-format BYTEA literal
        (`'\\x...'`) without involving the engine.

        Values passed as `params` to `exec()` need no escaping.

        :raise ConnectionError: If the engine fails to escape the string.
        """
        if isinstance(value, (bytes, bytearray, memoryview)):
            return escape_bytea(value)
        raw = self._verify_connected()
        data = self._encode_escape_arg(value, "escape_literal")
        escaped = self._engine.escape_literal(raw, data, len(data))
        return self._extract_escaped_result(escaped, raw)

    def escape_identifier(self, value: str) -> str:
        """Escape a string for use as an SQL identifier, such as a
        table, column or function name `<'str'>`.

        The identifier is double-quoted, preserving its case.

        :raise ConnectionError: If the engine fails to escape the string.
        """
        raw = self._verify_connected()
        data = self._encode_escape_arg(value, "escape_identifier")
        escaped = self._engine.escape_identifier(raw, data, len(data))
        return self._extract_escaped_result(escaped, raw)

    def _encode_escape_arg(self, value: object, method: str) -> bytes:
        if not isinstance(value, str):
            raise errors.PGTypeError(
                "Invalid argument for '%s()': %r.\n"
                "Expects <'str'> instead of %s." % (method, value, type(value))
            )
        return value.encode("utf8")

    def _extract_escaped_result(self, escaped: object, raw: object) -> str:
        if escaped is None:
            raise errors.ConnectionError(self._engine.error_message(raw))
        try:
            return bytes(escaped).decode("utf8")
        finally:
            self._engine.freemem(escaped)

    # Utils ---------------------------------------------------------------------------------------
    def _verify_connected(self) -> object:
        """(internal) Return the engine handle, or raise if the
        connection is closed."""
        raw = self._raw
        if raw is None:
            raise errors.ConnectionClosedError(self._close_reason)
        return raw

    # Special methods -----------------------------------------------------------------------------
    async def __aenter__(self) -> Connection:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self) -> str:
        return "<%s(%s)>" % (
            self.__class__.__name__,
            "closed" if self._raw is None else "open",
        )

    def __del__(self):
        if getattr(self, "_raw", None) is None:
            return None
        raw = self._raw
        self._raw = None
        warnings.warn("Unclosed connection, finished on collection.", ResourceWarning)
        try:
            if self._read_event is not None:
                self._read_event.remove()
        finally:
            self._read_event = None
            self._engine.finish(raw)
