from __future__ import annotations

# Python imports
from psycopg import pq, OperationalError
from pgcycli.constants import FORMAT

__all__ = ["LibpqEngine", "default_engine"]


# Engine ------------------------------------------------------------------------------------------
class LibpqEngine:
    """The database engine: libpq, reached through `psycopg.pq`.

    Exposes the handle-oriented contract the connection relies on:

    - `connect(conninfo) -> handle`, `status(handle)`, `finish(handle)`.
    - `send_query_params(...) -> 0|1`, `exec(handle, query) -> frame`.
    - `get_result(handle) -> frame|None`, `consume_input(handle) -> 0|1`,
      `is_busy(handle)`, `set_single_row_mode(handle) -> 0|1`.
    - `result_status(frame)`, `clear(frame)`, `socket(handle)`,
      `error_message(handle|frame)`.
    - `escape_literal(handle, data, size) -> bytes|None`,
      `escape_identifier(...)`, `freemem(buffer)`.

    psycopg raises `OperationalError` where libpq returns a failure
    code or NULL; those are translated back into the codes here, the
    caller reads the reason from `error_message(handle)`.
    """

    # Connection ----------------------------------------------------------------------------------
    def connect(self, conninfo: str) -> pq.PGconn:
        return pq.PGconn.connect(conninfo.encode("utf8"))

    def status(self, handle: pq.PGconn) -> int:
        return handle.status

    def finish(self, handle: pq.PGconn) -> None:
        handle.finish()

    def socket(self, handle: pq.PGconn) -> int:
        return handle.socket

    def error_message(self, obj: pq.PGconn | pq.PGresult) -> bytes:
        return obj.error_message

    # Query ---------------------------------------------------------------------------------------
    def send_query_params(
        self,
        handle: pq.PGconn,
        query: str,
        n_params: int,
        param_types: list[int] | None,
        param_values: list[bytes | None],
        param_lengths: list[int],
        param_formats: list[int],
        result_format: int = FORMAT.TEXT,
    ) -> int:
        # psycopg derives the lengths from the buffers themselves.
        if n_params != len(param_values) or n_params != len(param_lengths):
            raise ValueError(
                "Parameter count mismatch: %d declared, %d values, %d lengths."
                % (n_params, len(param_values), len(param_lengths))
            )
        try:
            handle.send_query_params(
                query.encode("utf8"),
                param_values,
                param_types,
                param_formats,
                result_format,
            )
        except OperationalError:
            return 0
        return 1

    def exec(self, handle: pq.PGconn, query: str) -> pq.PGresult:
        return handle.exec_(query.encode("utf8"))

    def set_single_row_mode(self, handle: pq.PGconn) -> int:
        try:
            handle.set_single_row_mode()
        except OperationalError:
            return 0
        return 1

    # Result --------------------------------------------------------------------------------------
    def get_result(self, handle: pq.PGconn) -> pq.PGresult | None:
        return handle.get_result()

    def consume_input(self, handle: pq.PGconn) -> int:
        try:
            handle.consume_input()
        except OperationalError:
            return 0
        return 1

    def is_busy(self, handle: pq.PGconn) -> bool:
        return handle.is_busy() != 0

    def result_status(self, frame: pq.PGresult) -> int:
        return frame.status

    def clear(self, frame: pq.PGresult) -> None:
        frame.clear()

    # Escape --------------------------------------------------------------------------------------
    def escape_literal(self, handle: pq.PGconn, data: bytes, size: int) -> bytes | None:
        try:
            return pq.Escaping(handle).escape_literal(data[:size])
        except OperationalError:
            return None

    def escape_identifier(
        self,
        handle: pq.PGconn,
        data: bytes,
        size: int,
    ) -> bytes | None:
        try:
            return pq.Escaping(handle).escape_identifier(data[:size])
        except OperationalError:
            return None

    def freemem(self, buffer: bytes) -> None:
        # psycopg copies the libpq buffer and frees it before returning.
        return None


default_engine: LibpqEngine = LibpqEngine()
