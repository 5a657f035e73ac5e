import asyncio, os, socket, unittest, warnings
from collections import deque
from contextlib import aclosing
from pgcycli import errors
from pgcycli.constants import CONN, FORMAT, OID, STATUS
from pgcycli.protocol import Param, encode_param
from pgcycli.result import Result
from pgcycli.aio.connection import Connection, ReadEvent
from pgcycli._engine import LibpqEngine
from pgcycli._connect import connect


# Fake engine ---------------------------------------------------------------------------------
class FakeFrame:
    """A scripted result frame, readable like a libpq result."""

    def __init__(
        self,
        status: int = STATUS.TUPLES_OK,
        fields: list[tuple[str, int]] = (),
        rows: list[tuple] = (),
        message: bytes = b"",
        command_status: bytes = b"SELECT",
    ) -> None:
        self.status = status
        self.fields = list(fields)
        self.rows = list(rows)
        self.error_message = message
        self.command_status = command_status
        self.command_tuples = len(self.rows) if status == STATUS.TUPLES_OK else None
        self.cleared = 0

    @property
    def ntuples(self) -> int:
        return len(self.rows)

    @property
    def nfields(self) -> int:
        return len(self.fields)

    def fname(self, col: int) -> bytes:
        return self.fields[col][0].encode()

    def ftype(self, col: int) -> int:
        return self.fields[col][1]

    def get_value(self, row: int, col: int) -> bytes | None:
        return self.rows[row][col]


class FakeHandle:
    """A scripted connection handle.

    Every frame of a query travels as one byte over a socket pair:
    the frame becomes pullable only after the socket turned readable
    and the input was consumed, just like libpq's non-blocking reads.
    """

    def __init__(self, conninfo: str, status: int, message: bytes) -> None:
        self.conninfo = conninfo
        self.status = status
        self.error_message = message
        self.reader, self.writer = socket.socketpair()
        self.reader.setblocking(False)
        self.in_flight: deque = deque()
        self.ready: deque = deque()
        self.sent: list[tuple] = []
        self.pulled: list[FakeFrame] = []
        self.consumed = 0
        self.finished = 0
        self.single_row = False

    def deliver(self, frames: list[FakeFrame], hold: bool = False) -> None:
        for frame in frames:
            self.in_flight.append(frame)
            if not hold:
                self.writer.send(b"x")

    def idle(self) -> bool:
        return not self.in_flight and not self.ready


class FakeEngine:
    """The database engine contract, scripted for tests."""

    def __init__(self) -> None:
        self.connect_status = CONN.OK
        self.connect_message = b""
        self.send_ok = True
        self.consume_ok = True
        self.escape_ok = True
        self.single_row_ok = True
        self.hold_input = False
        self.scripts: deque = deque()
        self.exec_frames: deque = deque()
        self.handles: list[FakeHandle] = []
        self.freed: list = []

    def script(self, *frames: FakeFrame) -> list[FakeFrame]:
        self.scripts.append(list(frames))
        return list(frames)

    # Connection
    def connect(self, conninfo: str) -> FakeHandle:
        handle = FakeHandle(conninfo, self.connect_status, self.connect_message)
        self.handles.append(handle)
        return handle

    def status(self, handle: FakeHandle) -> int:
        return handle.status

    def finish(self, handle: FakeHandle) -> None:
        handle.finished += 1
        if handle.finished > 1:
            raise AssertionError("handle finished twice")
        handle.reader.close()
        handle.writer.close()

    def socket(self, handle: FakeHandle) -> int:
        return handle.reader.fileno()

    def error_message(self, obj: object) -> bytes:
        return obj.error_message

    # Query
    def send_query_params(
        self,
        handle,
        query,
        n_params,
        param_types,
        param_values,
        param_lengths,
        param_formats,
        result_format,
    ) -> int:
        if not handle.idle():
            raise AssertionError("query sent while the previous one is pending")
        handle.sent.append(
            (query, n_params, param_types, param_values, param_lengths, param_formats, result_format)
        )
        if not self.send_ok:
            handle.error_message = b"another command is already in progress\n"
            return 0
        handle.deliver(self.scripts.popleft() if self.scripts else [], self.hold_input)
        return 1

    def exec(self, handle: FakeHandle, query: str) -> FakeFrame:
        handle.sent.append((query,))
        return self.exec_frames.popleft()

    def set_single_row_mode(self, handle: FakeHandle) -> int:
        if not self.single_row_ok:
            handle.error_message = b"cannot switch to single row mode\n"
            return 0
        handle.single_row = True
        return 1

    # Result
    def consume_input(self, handle: FakeHandle) -> int:
        if not self.consume_ok:
            handle.error_message = b"server closed the connection unexpectedly\n"
            return 0
        try:
            data = handle.reader.recv(1)
        except BlockingIOError:
            return 1
        if data:
            handle.consumed += 1
            handle.ready.append(handle.in_flight.popleft())
        return 1

    def is_busy(self, handle: FakeHandle) -> bool:
        return not handle.ready and bool(handle.in_flight)

    def get_result(self, handle: FakeHandle) -> FakeFrame | None:
        if handle.ready:
            frame = handle.ready.popleft()
            handle.pulled.append(frame)
            return frame
        if handle.in_flight:
            raise AssertionError("get_result() would block")
        return None

    def result_status(self, frame: FakeFrame) -> int:
        return frame.status

    def clear(self, frame: FakeFrame) -> None:
        frame.cleared += 1
        if frame.cleared > 1:
            raise AssertionError("frame cleared twice")

    # Escape
    def escape_literal(self, handle, data: bytes, size: int) -> bytes | None:
        if not self.escape_ok:
            handle.error_message = b"invalid multibyte character\n"
            return None
        text = data[:size].decode()
        prefix = " E" if "\\" in text else ""
        return (prefix + "'" + text.replace("'", "''").replace("\\", "\\\\") + "'").encode()

    def escape_identifier(self, handle, data: bytes, size: int) -> bytes | None:
        if not self.escape_ok:
            handle.error_message = b"invalid multibyte character\n"
            return None
        return ('"' + data[:size].decode().replace('"', '""') + '"').encode()

    def freemem(self, buffer: bytes) -> None:
        self.freed.append(buffer)


def rows_frame(*values: int, status: int = STATUS.TUPLES_OK) -> FakeFrame:
    return FakeFrame(
        status,
        [("n", OID.INT4)],
        [(str(v).encode(),) for v in values],
    )


def error_frame(message: bytes) -> FakeFrame:
    return FakeFrame(STATUS.FATAL_ERROR, message=message, command_status=None)


# Test cases ----------------------------------------------------------------------------------
class TestCase(unittest.IsolatedAsyncioTestCase):
    name: str = "Case"

    async def get_conn(self, engine: FakeEngine | None = None) -> Connection:
        self.engine = FakeEngine() if engine is None else engine
        conn = Connection("host=localhost dbname=test_db", engine=self.engine)
        await conn.connect()
        return conn

    def handle(self, conn: Connection) -> FakeHandle:
        return conn._raw

    def assertDrained(self, conn: Connection, frames: list[FakeFrame]) -> None:
        handle = self.handle(conn)
        self.assertTrue(handle.idle())
        # frames pulled by the latest query only
        start = len(handle.pulled) - len(frames)
        self.assertEqual(handle.pulled[start:], frames)
        self.assertEqual([f.cleared for f in frames], [1] * len(frames))

    def log(self, msg: str, skip: bool = False) -> None:
        if skip:
            print(f"SKIP TEST '{self.name}': {msg}")
        else:
            print(f"PASS TEST '{self.name}': {msg}")


class TestConnection(TestCase):
    name: str = "Connection"

    async def test_connect(self) -> None:
        test = "CONNECT"
        conn = Connection({"host": "localhost", "dbname": "test_db", "port": 5432}, engine=FakeEngine())
        self.assertTrue(conn.closed())
        self.assertEqual(conn.conninfo, "host=localhost dbname=test_db port=5432")
        await conn.connect()
        self.assertFalse(conn.closed())
        self.assertEqual(conn._raw.conninfo, "host=localhost dbname=test_db port=5432")
        self.assertEqual(conn.socket, conn._raw.reader.fileno())
        conn.finish()
        self.assertTrue(conn.closed())
        self.log(test)

    async def test_connect_failure(self) -> None:
        test = "CONNECT FAILURE"
        engine = FakeEngine()
        engine.connect_status = CONN.BAD
        engine.connect_message = b'FATAL:  password authentication failed for user "postgres"\n'
        conn = Connection("host=localhost user=postgres password=bad", engine=engine)
        with self.assertRaises(errors.ConnectionError) as ctx:
            await conn.connect()
        self.assertEqual(ctx.exception.kind, "ConnectionError")
        self.assertEqual(
            ctx.exception.message,
            'FATAL:  password authentication failed for user "postgres"',
        )
        # partially built handle released, nothing left open
        self.assertEqual(engine.handles[0].finished, 1)
        self.assertTrue(conn.closed())
        with self.assertRaises(errors.ConnectionClosedError):
            conn.finish()
        self.log(test)

    async def test_finish(self) -> None:
        test = "FINISH"
        conn = await self.get_conn()
        handle = self.handle(conn)
        conn.finish()
        self.assertEqual(handle.finished, 1)
        with self.assertRaises(errors.ConnectionClosedError):
            conn.finish()
        with self.assertRaises(errors.ConnectionClosedError):
            await conn.exec("SELECT 1")
        with self.assertRaises(errors.ConnectionClosedError):
            conn.escape_literal("abc")
        # close() is tolerant
        await conn.close()
        self.assertEqual(handle.finished, 1)
        self.log(test)

    async def test_context_manager(self) -> None:
        test = "CONTEXT MANAGER"
        engine = FakeEngine()
        engine.script(rows_frame(1))
        async with Connection("dbname=test_db", engine=engine) as conn:
            res = await conn.exec("SELECT 1")
            self.assertEqual(res.rows, ((1,),))
        self.assertTrue(conn.closed())
        self.assertEqual(engine.handles[0].finished, 1)

        engine.script(rows_frame(2))
        async with connect(dbname="test_db", port=5432, engine=engine) as conn:
            self.assertEqual(conn.conninfo, "port=5432 dbname=test_db")
            res = await conn.exec("SELECT 2")
            self.assertEqual(res.rows, ((2,),))
        self.assertTrue(conn.closed())

        conn = await connect("host=db", user="me", engine=engine)
        self.assertEqual(conn.conninfo, "host=db user=me")
        conn.finish()

        conn = await connect({"host": "db", "port": 5432}, port=5433, engine=engine)
        self.assertEqual(conn.conninfo, "host=db port=5433")
        conn.finish()
        self.log(test)

    async def test_unclosed_warning(self) -> None:
        test = "UNCLOSED WARNING"
        conn = await self.get_conn()
        handle = self.handle(conn)
        fd = handle.reader.fileno()
        task = asyncio.ensure_future(conn._wait_readable())
        await asyncio.sleep(0.01)
        event = conn._read_event
        self.assertTrue(event.armed)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            conn.__del__()
        self.assertTrue(any(issubclass(w.category, ResourceWarning) for w in caught))
        self.assertEqual(handle.finished, 1)
        self.assertTrue(conn.closed())
        # reader disarmed before the socket was closed
        self.assertFalse(event.armed)
        self.assertIsNone(conn._read_event)
        self.assertFalse(asyncio.get_running_loop().remove_reader(fd))
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.log(test)


class TestReadEvent(TestCase):
    name: str = "ReadEvent"

    async def test_reuse(self) -> None:
        test = "REUSE REGISTRATION"
        conn = await self.get_conn()
        handle = self.handle(conn)
        self.assertIsNone(conn._read_event)

        handle.writer.send(b"ab")
        await conn._wait_readable()
        event = conn._read_event
        self.assertIsInstance(event, ReadEvent)
        self.assertEqual(event.fd, handle.reader.fileno())
        self.assertFalse(event.armed)

        await conn._wait_readable()
        self.assertIs(conn._read_event, event)
        conn.finish()
        self.assertIsNone(conn._read_event)
        self.log(test)

    async def test_suspend_until_readable(self) -> None:
        test = "SUSPEND UNTIL READABLE"
        conn = await self.get_conn()
        handle = self.handle(conn)
        task = asyncio.ensure_future(conn._wait_readable())
        await asyncio.sleep(0.01)
        self.assertFalse(task.done())
        self.assertTrue(conn._read_event.armed)
        handle.writer.send(b"x")
        await asyncio.wait_for(task, 1)
        self.assertFalse(conn._read_event.armed)
        conn.finish()
        self.log(test)

    async def test_cancel(self) -> None:
        test = "CANCEL WAIT"
        conn = await self.get_conn()
        task = asyncio.ensure_future(conn._wait_readable())
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertFalse(conn._read_event.armed)
        conn.finish()
        self.log(test)


class TestExec(TestCase):
    name: str = "Exec"

    async def test_params_encoding(self) -> None:
        test = "PARAMS ENCODING"
        conn = await self.get_conn()
        self.engine.script(FakeFrame(STATUS.COMMAND_OK, command_status=b"INSERT 0 1"))
        params = [None, b"\x00\xff", bytearray(b"ab"), 42, 1.5, "O'Brien", True]
        res = await conn.exec("INSERT INTO t VALUES ($1, $2, $3, $4, $5, $6, $7)", params)
        self.assertEqual(res.command_status, "INSERT 0 1")

        query, n, types, values, lengths, formats, result_format = self.handle(conn).sent[0]
        self.assertEqual(query, "INSERT INTO t VALUES ($1, $2, $3, $4, $5, $6, $7)")
        self.assertEqual(n, 7)
        self.assertIsNone(types)
        self.assertEqual(result_format, FORMAT.TEXT)
        self.assertEqual(values, [None, b"\x00\xff", b"ab", b"42", b"1.5", b"O'Brien", b"True"])
        self.assertEqual(lengths, [0, 2, 2, 2, 3, 7, 4])
        self.assertEqual(formats, [1, 1, 1, 0, 0, 0, 0])
        for i, value in enumerate(params):
            param: Param = encode_param(value)
            self.assertEqual((values[i], formats[i]), (param.data, param.format))
        conn.finish()
        self.log(test)

    async def test_overloads(self) -> None:
        test = "OVERLOADS"
        conn = await self.get_conn()
        for _ in range(4):
            self.engine.script(rows_frame(7))
        self.assertEqual((await conn.exec("SELECT 7")).rows, ((7,),))
        self.assertEqual((await conn.exec("SELECT $1", [7])).rows, ((7,),))
        self.assertEqual((await conn.exec([str], "SELECT 7")).rows, (("7",),))
        self.assertEqual((await conn.exec((float,), "SELECT $1", (7,))).rows, ((7.0,),))
        sent = self.handle(conn).sent
        self.assertEqual([s[1] for s in sent], [0, 1, 0, 1])
        with self.assertRaises(errors.PGTypeError):
            await conn.exec(1, 2)
        with self.assertRaises(errors.PGTypeError):
            await conn.exec()
        conn.finish()
        self.log(test)

    async def test_first_frame_full_drain(self) -> None:
        test = "FIRST FRAME & FULL DRAIN"
        conn = await self.get_conn()
        frames = self.engine.script(rows_frame(1, 2), rows_frame(3), rows_frame(4, 5, 6))
        # the engine reports three frames for one query
        res = await conn.exec("SELECT n FROM t")
        self.assertIsInstance(res, Result)
        self.assertEqual(res.rows, ((1,), (2,)))
        self.assertEqual(res.fields, ("n",))
        self.assertDrained(conn, frames)
        self.assertEqual(self.handle(conn).consumed, 3)

        # connection is idle and usable again
        frames = self.engine.script(rows_frame(9))
        res = await conn.exec("SELECT 9")
        self.assertEqual(res.rows, ((9,),))
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_no_result(self) -> None:
        test = "NO RESULT"
        conn = await self.get_conn()
        self.engine.script()
        self.assertIsNone(await conn.exec(""))
        self.assertTrue(self.handle(conn).idle())
        conn.finish()
        self.log(test)

    async def test_first_frame_error(self) -> None:
        test = "FIRST FRAME ERROR"
        conn = await self.get_conn()
        frames = self.engine.script(
            error_frame(b'ERROR:  relation "missing" does not exist\n'),
            rows_frame(1),
            error_frame(b"ERROR:  a later failure\n"),
        )
        with self.assertRaises(errors.ResultError) as ctx:
            await conn.exec("SELECT * FROM missing")
        err = ctx.exception
        self.assertEqual(err.kind, "ResultError")
        self.assertEqual(err.status, STATUS.FATAL_ERROR)
        self.assertEqual(err.status_name, "FATAL_ERROR")
        self.assertEqual(err.message, 'ERROR:  relation "missing" does not exist')
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_later_frame_error_drained(self) -> None:
        test = "LATER FRAME ERROR"
        conn = await self.get_conn()
        frames = self.engine.script(
            rows_frame(1), error_frame(b"ERROR:  division by zero\n"), rows_frame(2)
        )
        # only the first frame is materialized, later frames are drained unchecked
        res = await conn.exec("SELECT n FROM t")
        self.assertEqual(res.rows, ((1,),))
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_send_failure(self) -> None:
        test = "SEND FAILURE"
        conn = await self.get_conn()
        self.engine.send_ok = False
        with self.assertRaises(errors.Error) as ctx:
            await conn.exec("SELECT 1")
        self.assertEqual(type(ctx.exception), errors.Error)
        self.assertEqual(ctx.exception.kind, "Error")
        self.assertEqual(ctx.exception.message, "another command is already in progress")
        self.assertEqual(self.handle(conn).consumed, 0)
        self.assertIsNone(conn._read_event)
        conn.finish()
        self.log(test)

    async def test_connection_lost(self) -> None:
        test = "CONNECTION LOST"
        conn = await self.get_conn()
        self.engine.script(rows_frame(1))
        self.engine.consume_ok = False
        with self.assertRaises(errors.ConnectionError) as ctx:
            await conn.exec("SELECT 1")
        self.assertEqual(ctx.exception.message, "server closed the connection unexpectedly")
        self.assertFalse(conn._read_event.armed)
        conn.finish()
        self.log(test)

    async def test_decode_error_drains(self) -> None:
        test = "DECODE ERROR DRAINS"
        conn = await self.get_conn()
        frames = self.engine.script(
            FakeFrame(fields=[("v", OID.TEXT)], rows=[(b"abc",)]), rows_frame(2)
        )
        with self.assertRaises(errors.DecodeError):
            await conn.exec([int], "SELECT 'abc'")
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_cancel_drains(self) -> None:
        test = "CANCEL DRAINS"
        conn = await self.get_conn()
        handle = self.handle(conn)
        (frame,) = self.engine.script(rows_frame(1))
        self.engine.hold_input = True  # pending, not yet on the wire
        task = asyncio.ensure_future(conn.exec("SELECT pg_sleep(10)"))
        await asyncio.sleep(0.01)
        self.assertTrue(conn._read_event.armed)
        task.cancel()
        await asyncio.sleep(0.01)
        self.assertFalse(task.done())  # still draining
        handle.writer.send(b"x")
        with self.assertRaises(asyncio.CancelledError):
            await asyncio.wait_for(task, 1)
        self.assertTrue(handle.idle())
        self.assertEqual(frame.cleared, 1)
        conn.finish()
        self.log(test)

    async def test_serialized(self) -> None:
        test = "SERIALIZED COMMANDS"
        conn = await self.get_conn()
        self.engine.script(rows_frame(1), rows_frame(11))
        self.engine.script(rows_frame(2))
        r1, r2 = await asyncio.gather(conn.exec("SELECT 1"), conn.exec("SELECT 2"))
        self.assertEqual((r1.rows, r2.rows), (((1,),), ((2,),)))
        conn.finish()
        self.log(test)


class TestExecAll(TestCase):
    name: str = "ExecAll"

    async def test_exec_all(self) -> None:
        test = "EXEC ALL"
        conn = await self.get_conn()
        ok = FakeFrame(STATUS.COMMAND_OK, command_status=b"CREATE TABLE")
        self.engine.exec_frames.append(ok)
        self.assertIsNone(await conn.exec_all("CREATE TABLE a (x int); CREATE TABLE b (y int)"))
        self.assertEqual(ok.cleared, 1)
        self.assertIsNone(conn._read_event)

        bad = error_frame(b'ERROR:  syntax error at or near "TABL"\n')
        self.engine.exec_frames.append(bad)
        with self.assertRaises(errors.ResultError) as ctx:
            await conn.exec_all("CREATE TABL c")
        self.assertEqual(ctx.exception.message, 'ERROR:  syntax error at or near "TABL"')
        self.assertEqual(bad.cleared, 1)
        conn.finish()
        self.log(test)


class TestResults(TestCase):
    name: str = "Results"

    async def test_iterate(self) -> None:
        test = "ITERATE"
        conn = await self.get_conn()
        frames = self.engine.script(rows_frame(1), rows_frame(2, 3))
        got = [r.rows async for r in conn.results("SELECT n FROM t")]
        self.assertEqual(got, [((1,),), ((2,), (3,))])
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_error_precedence(self) -> None:
        test = "ERROR PRECEDENCE"
        conn = await self.get_conn()
        frames = self.engine.script(
            rows_frame(1),
            error_frame(b"ERROR:  first failure\n"),
            error_frame(b"ERROR:  second failure\n"),
            rows_frame(2),
        )
        got = []
        with self.assertRaises(errors.ResultError) as ctx:
            async for res in conn.results("SELECT n FROM t"):
                got.append(res.rows)
        self.assertEqual(got, [((1,),)])
        self.assertEqual(ctx.exception.message, "ERROR:  first failure")
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_early_exit(self) -> None:
        test = "EARLY EXIT"
        conn = await self.get_conn()
        frames = self.engine.script(rows_frame(1), rows_frame(2), rows_frame(3))
        async with aclosing(conn.results("SELECT n FROM t")) as results:
            async for res in results:
                self.assertEqual(res.rows, ((1,),))
                break
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)

    async def test_single_row(self) -> None:
        test = "SINGLE ROW"
        conn = await self.get_conn()
        frames = self.engine.script(
            rows_frame(1, status=STATUS.SINGLE_TUPLE),
            rows_frame(2, status=STATUS.SINGLE_TUPLE),
            rows_frame(),
        )
        got = [r.rows async for r in conn.results("SELECT n", single_row=True)]
        self.assertTrue(self.handle(conn).single_row)
        self.assertEqual(got, [((1,),), ((2,),), ()])
        self.assertDrained(conn, frames)

        self.engine.single_row_ok = False
        frames = self.engine.script(rows_frame(1))
        with self.assertRaises(errors.Error) as ctx:
            async for _ in conn.results("SELECT n", single_row=True):
                pass
        self.assertEqual(ctx.exception.message, "cannot switch to single row mode")
        self.assertDrained(conn, frames)
        conn.finish()
        self.log(test)


class TestEscape(TestCase):
    name: str = "Escape"

    async def test_escape_literal(self) -> None:
        test = "ESCAPE LITERAL"
        conn = await self.get_conn()
        self.assertEqual(conn.escape_literal("O'Brien"), "'O''Brien'")
        self.assertEqual(conn.escape_literal("a\\b"), " E'a\\\\b'")
        self.assertEqual(conn.escape_literal("'; DROP TABLE t; --"), "'''; DROP TABLE t; --'")
        self.assertEqual(len(self.engine.freed), 3)
        with self.assertRaises(errors.PGTypeError):
            conn.escape_literal(1)
        conn.finish()
        self.log(test)

    async def test_escape_identifier(self) -> None:
        test = "ESCAPE IDENTIFIER"
        conn = await self.get_conn()
        self.assertEqual(conn.escape_identifier("MyTable"), '"MyTable"')
        self.assertEqual(conn.escape_identifier('we"ird'), '"we""ird"')
        self.assertEqual(len(self.engine.freed), 2)
        conn.finish()
        self.log(test)

    async def test_escape_failure(self) -> None:
        test = "ESCAPE FAILURE"
        conn = await self.get_conn()
        self.engine.escape_ok = False
        with self.assertRaises(errors.ConnectionError) as ctx:
            conn.escape_literal("abc")
        self.assertEqual(ctx.exception.message, "invalid multibyte character")
        with self.assertRaises(errors.ConnectionError):
            conn.escape_identifier("abc")
        self.assertEqual(self.engine.freed, [])
        conn.finish()
        self.log(test)

    async def test_escape_bytes(self) -> None:
        test = "ESCAPE BYTES"
        conn = await self.get_conn()
        self.assertEqual(conn.escape_literal(b"\x00\xff"), "'\\x00ff'")
        self.assertEqual(self.engine.freed, [])
        conn.finish()
        # no engine involved, works on a closed connection too
        self.assertEqual(conn.escape_literal(b""), "'\\x'")
        self.log(test)


# Libpq engine --------------------------------------------------------------------------------
class TestLibpqEngine(TestCase):
    name: str = "LibpqEngine"
    # unix socket directory that cannot exist, libpq fails without network I/O
    conninfo: str = "host=/nonexistent-pgcycli-dir port=5999 connect_timeout=2"

    async def test_connect_refused(self) -> None:
        test = "CONNECT REFUSED"
        conn = Connection(self.conninfo)
        self.assertIsInstance(conn.engine, LibpqEngine)
        with self.assertRaises(errors.ConnectionError) as ctx:
            await conn.connect()
        self.assertEqual(ctx.exception.kind, "ConnectionError")
        self.assertTrue(ctx.exception.message)
        self.assertEqual(ctx.exception.message, ctx.exception.message.rstrip())
        self.assertTrue(conn.closed())
        with self.assertRaises(errors.ConnectionClosedError):
            conn.finish()

        with self.assertRaises(errors.ConnectionError):
            await connect(host="/nonexistent-pgcycli-dir", port=5999, connect_timeout=2)
        self.log(test)

    def test_params_mismatch(self) -> None:
        test = "PARAMS MISMATCH"
        with self.assertRaises(ValueError):
            LibpqEngine().send_query_params(
                None, "SELECT $1", 1, None, [b"1", b"2"], [1, 1], [0, 0], FORMAT.TEXT
            )
        self.log(test)


# Live server ---------------------------------------------------------------------------------
@unittest.skipUnless(os.environ.get("PGCYCLI_TEST_DSN"), "set PGCYCLI_TEST_DSN to run")
class TestServer(TestCase):
    name: str = "Server"

    async def test_roundtrip(self) -> None:
        test = "SERVER ROUNDTRIP"
        async with connect(os.environ["PGCYCLI_TEST_DSN"]) as conn:
            res = await conn.exec(
                (int, str, bytes), "SELECT $1::int, $2::text, $3::bytea", [1, "a", b"\x00"]
            )
            self.assertEqual(res.rows, ((1, "a", b"\x00"),))
            res = await conn.exec("SELECT NULL::int AS n")
            self.assertEqual(res.rows, ((None,),))
            with self.assertRaises(errors.ResultError):
                await conn.exec("SELECT * FROM pgcycli_missing_table")
            res = await conn.exec("SELECT " + conn.escape_literal("O'Brien"))
            self.assertEqual(res.rows, (("O'Brien",),))
        self.log(test)

    async def test_bad_password(self) -> None:
        test = "SERVER BAD PASSWORD"
        dsn = os.environ["PGCYCLI_TEST_DSN"] + " password=pgcycli-wrong-password"
        with self.assertRaises(errors.ConnectionError) as ctx:
            await connect(dsn)
        self.assertTrue(ctx.exception.message)
        self.log(test)


if __name__ == "__main__":
    unittest.main()
