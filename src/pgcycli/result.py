# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False
from __future__ import annotations

# Cython imports
import cython

# Python imports
from typing import Iterator
from pandas import DataFrame
from pgcycli.transcode import decode, decode_as
from pgcycli import errors

__all__ = ["Result"]


# Result ------------------------------------------------------------------------------------------
@cython.cclass
class Result:
    """The materialized rows of one result frame `<'Result'>`.

    The frame is read completely at construction, so the `Result`
    never refers back to the frame and the caller remains free to
    release it right after.
    """

    # Frame data
    _status: cython.int
    _command_status: str
    _affected_rows: object  # int | None
    # Field data
    _fields: tuple
    _type_oids: tuple
    _types: tuple
    _rows: tuple

    def __init__(self, types: object, frame: object) -> None:
        """The materialized rows of one result frame.

        :param types `<'Sequence[type]'>`: The expected python type of each
            column. An empty sequence decodes every column by its type OID,
            a `None` entry does so for that column only.
        :param frame `<'object'>`: The engine result frame to read.
        :raises `<'DecodeError'>`: If the types do not match the columns,
            or a value cannot be decoded.
        """
        self._status = frame.status
        cmd = frame.command_status
        self._command_status = None if cmd is None else cmd.decode("utf8", "replace")
        self._affected_rows = frame.command_tuples
        # Fields
        nfields: cython.Py_ssize_t = frame.nfields
        self._fields = tuple([self._read_fname(frame, i) for i in range(nfields)])
        self._type_oids = tuple([frame.ftype(i) for i in range(nfields)])
        self._types = tuple(types) if types is not None else ()
        if self._types and len(self._types) != nfields:
            raise errors.DecodeError(
                "Expected %d column types, but the result has %d columns %r."
                % (len(self._types), nfields, self._fields)
            )
        # Rows
        self._rows = tuple(
            [self._read_row(frame, r, nfields) for r in range(frame.ntuples)]
        )

    @cython.cfunc
    @cython.inline(True)
    def _read_fname(self, frame: object, col: cython.Py_ssize_t) -> str:
        name = frame.fname(col)
        return "" if name is None else name.decode("utf8", "replace")

    @cython.cfunc
    @cython.inline(True)
    def _read_row(
        self,
        frame: object,
        row: cython.Py_ssize_t,
        nfields: cython.Py_ssize_t,
    ) -> tuple:
        values: list = []
        col: cython.Py_ssize_t
        for col in range(nfields):
            value = frame.get_value(row, col)
            dtype = self._types[col] if self._types else None
            if dtype is None:
                values.append(decode(value, self._type_oids[col]))
            else:
                values.append(decode_as(value, dtype))
        return tuple(values)

    # Property ------------------------------------------------------------------------------------
    @property
    def status(self) -> int:
        """The execution status of the frame `<'int'>`."""
        return self._status

    @property
    def command_status(self) -> str | None:
        """The command status tag, e.g. `'INSERT 0 1'` `<'str/None'>`."""
        return self._command_status

    @property
    def affected_rows(self) -> int | None:
        """The number of rows affected by the command `<'int/None'>`."""
        return self._affected_rows

    @property
    def fields(self) -> tuple[str]:
        """The column names `<'tuple[str]'>`."""
        return self._fields

    @property
    def type_oids(self) -> tuple[int]:
        """The type OID of each column `<'tuple[int]'>`."""
        return self._type_oids

    @property
    def rows(self) -> tuple[tuple]:
        """The decoded rows `<'tuple[tuple]'>`."""
        return self._rows

    # Access --------------------------------------------------------------------------------------
    @cython.ccall
    def columns(self) -> tuple:
        """The column names of the result `<'tuple[str]'>`."""
        return self._fields

    @cython.ccall
    def first(self) -> object:
        """The first row, or `None` if the result is empty `<'tuple/None'>`."""
        return self._rows[0] if self._rows else None

    @cython.ccall
    def to_dicts(self) -> list:
        """The rows as dictionaries keyed by column name `<'list[dict]'>`."""
        return [dict(zip(self._fields, row)) for row in self._rows]

    @cython.ccall
    def to_df(self) -> object:
        """The rows as a pandas DataFrame `<'DataFrame'>`."""
        return DataFrame(list(self._rows), columns=list(self._fields))

    # Special Methods -----------------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self._rows)

    @cython.wraparound(True)
    def __getitem__(self, index: object) -> tuple:
        return self._rows[index]

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "<%s(fields=%r, rows=%d, command_status=%r)>" % (
            self.__class__.__name__,
            self._fields,
            len(self._rows),
            self._command_status,
        )
