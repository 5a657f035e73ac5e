# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False
from __future__ import annotations

# Cython imports
import cython

# Python imports
from pgcycli.constants import FORMAT

__all__ = ["Param", "encode_param", "encode_params", "escape_bytea"]


# Param -------------------------------------------------------------------------------------------
@cython.cclass
class Param:
    """Represents one bound value encoded for the wire protocol `<'Param'>`.

    The only special cases are `None` and raw bytes, everything
    else travels as the text of its `str()` conversion. Adding a
    new semantic type means adding a case to `encode_param()`.
    """

    _data: bytes
    _format: cython.int

    def __init__(self, data: bytes | None, format: int) -> None:
        """Represents one bound value encoded for the wire protocol.

        :param data `<'bytes/None'>`: The encoded value, `None` represents SQL NULL.
        :param format `<'int'>`: The parameter format, `0` for text and `1` for binary.
        """
        self._data = data
        self._format = format

    @staticmethod
    def text(data: bytes) -> Param:
        """Construct a text format parameter `<'Param'>`."""
        return Param(data, FORMAT.TEXT)

    @staticmethod
    def binary(data: bytes | None) -> Param:
        """Construct a binary format parameter `<'Param'>`."""
        return Param(data, FORMAT.BINARY)

    # Property ------------------------------------------------------------------------------------
    @property
    def data(self) -> bytes | None:
        """The encoded value, `None` for SQL NULL `<'bytes/None'>`."""
        return self._data

    @property
    def format(self) -> int:
        """The parameter format, `0` text or `1` binary `<'int'>`."""
        return self._format

    @property
    def is_null(self) -> bool:
        """Whether the parameter represents SQL NULL `<'bool'>`."""
        return self._data is None

    # Special Methods -----------------------------------------------------------------------------
    def __len__(self) -> int:
        return 0 if self._data is None else len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Param):
            return NotImplemented
        return self._format == other.format and self._data == other.data

    def __hash__(self) -> int:
        return hash((self._format, self._data))

    def __repr__(self) -> str:
        return "<%s(format=%s, data=%r)>" % (
            self.__class__.__name__,
            "binary" if self._format == FORMAT.BINARY else "text",
            self._data,
        )


# Encode ------------------------------------------------------------------------------------------
@cython.ccall
def encode_param(value: object) -> Param:
    """Encode one bound value into a `<'Param'>`.

    - `None` -> binary, zero-length null.
    - `bytes`, `bytearray`, `memoryview` -> binary, bytes unchanged.
    - anything else -> text, `str(value)` encoded as UTF-8.

    ## Example
    >>> encode_param(None)
    >>> <Param(format=binary, data=None)>
    >>> encode_param(b"\\x00\\xff")
    >>> <Param(format=binary, data=b'\\x00\\xff')>
    >>> encode_param(42)
    >>> <Param(format=text, data=b'42')>
    """
    if value is None:
        return Param(None, FORMAT.BINARY)
    if isinstance(value, bytes):
        return Param(value, FORMAT.BINARY)
    if isinstance(value, (bytearray, memoryview)):
        return Param(bytes(value), FORMAT.BINARY)
    return Param(str(value).encode("utf8", "surrogatepass"), FORMAT.TEXT)


@cython.ccall
def encode_params(params: object) -> tuple:
    """Encode a sequence of bound values positionally `<'tuple[Param]'>`.

    Parameter `i` of the input maps to protocol parameter `i`.
    """
    if params is None:
        return ()
    return tuple([encode_param(value) for value in params])


# Escape ------------------------------------------------------------------------------------------
@cython.ccall
def escape_bytea(data: object) -> str:
    """Escape binary data as a hex-format BYTEA literal `<'str'>`.

    The literal is the single-quoted `\\x` prefix followed by two hex
    digits per input byte, always exactly `2 * len(data) + 4` characters.
    No engine round trip is involved.

    ## Example
    >>> escape_bytea(b"\\x00\\xff")
    >>> "'\\\\x00ff'"
    """
    return "'\\x" + bytes(data).hex() + "'"
