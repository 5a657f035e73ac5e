# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False

# Cython imports
import cython

# Python imports
from pgcycli.constants import STATUS

__all__ = [
    "PGError",
    "Error",
    "ConnectionError",
    "ConnectionClosedError",
    "ResultError",
    "PGValueError",
    "PGTypeError",
    "InvalidConnectionArgsError",
    "InvalidServiceFileError",
    "ServiceFileNotFoundError",
    "DecodeError",
]


# Utils -------------------------------------------------------------------------------------------
@cython.ccall
def decode_message(msg: object) -> str:
    """Decode an engine error message to `<'str'>`.

    The engine reports its messages as NUL-terminated C strings,
    usually with a trailing newline, which is stripped here.
    """
    if msg is None:
        return ""
    if isinstance(msg, (bytes, bytearray, memoryview)):
        msg = bytes(msg).decode("utf8", "replace")
    return str(msg).rstrip()


# PostgreSQL Exceptions ---------------------------------------------------------------------------
class PGError(Exception):
    """Base class for all exceptions raised by pgcycli."""

    kind: str = "PGError"

    @property
    def message(self) -> str:
        """The human-readable error message `<'str'>`."""
        size: cython.Py_ssize_t = len(self.args)
        return self.args[size - 1] if size > 0 else ""


class Error(PGError):
    """Exception raised when the engine rejects a query submission
    before any result exists (generic protocol error)."""

    kind: str = "Error"

    def __init__(self, message: object) -> None:
        PGError.__init__(self, decode_message(message))


class ConnectionError(Error):
    """Exception raised when the connection is unusable: the server
    refused the connection, the connection was lost, or the engine
    failed to escape a value on behalf of the connection."""

    kind: str = "ConnectionError"


class ConnectionClosedError(ConnectionError):
    """Exception raised when an operation is issued on a connection
    that has already been finished."""


class ResultError(Error):
    """Exception raised when a result frame reports a failure status.

    Carries the failing `status` and the message extracted from the
    frame itself, which stays accurate even if the connection moved
    on to a later operation.
    """

    kind: str = "ResultError"

    def __init__(self, status: int, message: object) -> None:
        PGError.__init__(self, status, decode_message(message))

    @property
    def status(self) -> int:
        """The execution status of the failing frame `<'int'>`."""
        return self.args[0]

    @property
    def status_name(self) -> str:
        """The libpq name of the failing status `<'str'>`."""
        return STATUS.name_of(self.args[0])

    def __str__(self) -> str:
        return "[%s] %s" % (self.status_name, self.args[1])


# Base Exceptions ---------------------------------------------------------------------------------
class PGTypeError(PGError, TypeError):
    """Raised when a type is invalid."""


class PGValueError(PGError, ValueError):
    """Raised when a value is invalid."""


class InvalidConnectionArgsError(PGValueError):
    """Raised when a connection argument is invalid."""


class InvalidServiceFileError(InvalidConnectionArgsError):
    """Raised when a connection service file is invalid."""


class ServiceFileNotFoundError(InvalidServiceFileError, FileNotFoundError):
    """Raised when a connection service file is not found."""


# Transcode Exceptions ----------------------------------------------------------------------------
class DecodeError(PGValueError):
    """Raised when a column value cannot be decoded to the requested type."""
