# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False

# Cython imports
import cython

# Python imports
import datetime
from uuid import UUID
from decimal import Decimal, InvalidOperation
from orjson import loads as _loads, JSONDecodeError
from pgcycli.constants import OID
from pgcycli import errors

__all__ = ["decode", "decode_as"]


# Utils -------------------------------------------------------------------------------------------
@cython.cfunc
@cython.inline(True)
def _orjson_loads(data: object) -> object:
    """(cfunc) Deserialize JSON string to python `<'object'>`.

    Based on [orjson](https://github.com/ijl/orjson) `'loads()'` function.
    """
    return _loads(data)


@cython.cfunc
@cython.inline(True)
def _decode_str(value: bytes) -> str:
    return value.decode("utf8", "surrogateescape")


# Decode ------------------------------------------------------------------------------------------
@cython.cfunc
@cython.inline(True)
def _decode_bool(value: bytes) -> object:
    """(cfunc) Decode a BOOLEAN column value to `<'bool'>`.

    ## Example:
    >>> _decode_bool(b't')
    >>> True
    """
    if value == b"t":
        return True
    if value == b"f":
        return False
    raise ValueError("invalid boolean %r" % value)


@cython.cfunc
@cython.inline(True)
def _decode_bytea(value: bytes) -> object:
    """(cfunc) Decode a BYTEA column value to `<'bytes'>`.

    Handles both the `hex` output format (default since 9.0)
    and the legacy `escape` output format.

    ## Example:
    >>> _decode_bytea(b'\\\\x00ff')
    >>> b'\\x00\\xff'
    """
    if value[:2] == b"\\x":
        return bytes.fromhex(value[2:].decode("ascii"))
    buf: bytearray = bytearray()
    size: cython.Py_ssize_t = len(value)
    i: cython.Py_ssize_t = 0
    while i < size:
        ch = value[i]
        if ch != 0x5C:  # not "\"
            buf.append(ch)
            i += 1
        elif i + 1 < size and value[i + 1] == 0x5C:
            buf.append(0x5C)
            i += 2
        elif i + 3 < size:
            buf.append(int(value[i + 1 : i + 4], 8))
            i += 4
        else:
            raise ValueError("truncated escape sequence in %r" % value)
    return bytes(buf)


@cython.cfunc
@cython.inline(True)
def _decode_int(value: bytes) -> object:
    """(cfunc) Decode an INTEGER column value to `<'int'>`.

    ## Example:
    >>> _decode_int(b'-9223372036854775808')
    >>> -9223372036854775808
    """
    return int(value)


@cython.cfunc
@cython.inline(True)
def _decode_float(value: bytes) -> object:
    """(cfunc) Decode a FLOAT column value to `<'float'>`.

    ## Example:
    >>> _decode_float(b'-Infinity')
    >>> -inf
    """
    return float(value)


@cython.cfunc
@cython.inline(True)
def _decode_decimal(value: bytes) -> object:
    """(cfunc) Decode a NUMERIC column value to `<'Decimal'>`.

    ## Example:
    >>> _decode_decimal(b'-3.141592653589793')
    >>> Decimal('-3.141592653589793')
    """
    return Decimal(value.decode("ascii"))


@cython.cfunc
@cython.inline(True)
def _decode_date(value: bytes) -> object:
    """(cfunc) Decode a DATE column value to `<'datetime.date'>`.

    Values outside of python's range (`infinity`, BC dates)
    are returned as their original text.

    ## Example:
    >>> _decode_date(b'2007-02-25')
    >>> datetime.date(2007, 2, 25)
    """
    text = value.decode("ascii")
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        return text


@cython.cfunc
@cython.inline(True)
def _decode_datetime(value: bytes) -> object:
    """(cfunc) Decode a TIMESTAMP/TIMESTAMPTZ column value to `<'datetime.datetime'>`.

    ## Example:
    >>> _decode_datetime(b'2007-02-25 23:06:20+00')
    >>> datetime.datetime(2007, 2, 25, 23, 6, 20, tzinfo=datetime.timezone.utc)
    """
    text = value.decode("ascii")
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        return text


@cython.cfunc
@cython.inline(True)
def _decode_time(value: bytes) -> object:
    """(cfunc) Decode a TIME/TIMETZ column value to `<'datetime.time'>`.

    ## Example:
    >>> _decode_time(b'23:06:20.5')
    >>> datetime.time(23, 6, 20, 500000)
    """
    text = value.decode("ascii")
    try:
        return datetime.time.fromisoformat(text)
    except ValueError:
        return text


@cython.cfunc
@cython.inline(True)
def _decode_uuid(value: bytes) -> object:
    return UUID(value.decode("ascii"))


@cython.cfunc
@cython.inline(True)
def _decode_json(value: bytes) -> object:
    """(cfunc) Decode a JSON/JSONB column value to python `<'object'>`.

    ## Example:
    >>> _decode_json(b'{"a": [1, 2]}')
    >>> {'a': [1, 2]}
    """
    return _orjson_loads(value)


@cython.ccall
def decode(value: object, type_oid: cython.uint) -> object:
    """Decode a text-format column value by its type OID `<'object'>`.

    :param value `<'bytes/None'>`: The raw column value, `None` for SQL NULL.
    :param type_oid `<'int'>`: The type OID of the column. Please refer to 'constants.OID'.
        Unknown types are decoded to `<'str'>`.
    :raises `<'DecodeError'>`: If the value does not match its type.
    """
    if value is None:
        return None
    try:
        # . common
        if type_oid in (OID.TEXT, OID.VARCHAR, OID.BPCHAR, OID.NAME):
            return _decode_str(value)
        if type_oid in (OID.INT4, OID.INT8, OID.INT2, OID.OID):
            return _decode_int(value)
        if type_oid == OID.BOOL:
            return _decode_bool(value)
        if type_oid in (OID.FLOAT8, OID.FLOAT4):
            return _decode_float(value)
        if type_oid == OID.NUMERIC:
            return _decode_decimal(value)
        # . date & time
        if type_oid in (OID.TIMESTAMPTZ, OID.TIMESTAMP):
            return _decode_datetime(value)
        if type_oid == OID.DATE:
            return _decode_date(value)
        if type_oid in (OID.TIME, OID.TIMETZ):
            return _decode_time(value)
        # . uncommon
        if type_oid == OID.BYTEA:
            return _decode_bytea(value)
        if type_oid in (OID.JSONB, OID.JSON):
            return _decode_json(value)
        if type_oid == OID.UUID:
            return _decode_uuid(value)
    except (ValueError, IndexError, InvalidOperation, JSONDecodeError) as err:
        raise errors.DecodeError(
            "Failed to decode %r as type OID %d: %s" % (value, type_oid, err)
        ) from err
    # . fallback
    return _decode_str(value)


@cython.ccall
def decode_as(value: object, dtype: object) -> object:
    """Decode a text-format column value to the requested python type `<'object'>`.

    :param value `<'bytes/None'>`: The raw column value, `None` for SQL NULL.
    :param dtype `<'type/callable'>`: The expected python type, e.g. `int`,
        `str`, `bytes`, `Decimal`, `datetime.date`. Any other callable
        is invoked with the value's text.
    :raises `<'DecodeError'>`: If the value cannot be converted.
    """
    if value is None:
        return None
    try:
        if dtype is str:
            return _decode_str(value)
        if dtype is int:
            return _decode_int(value)
        if dtype is bool:
            return _decode_bool(value)
        if dtype is float:
            return _decode_float(value)
        if dtype is Decimal:
            return _decode_decimal(value)
        if dtype is bytes:
            return _decode_bytea(value)
        if dtype is datetime.datetime:
            return _decode_datetime(value)
        if dtype is datetime.date:
            return _decode_date(value)
        if dtype is datetime.time:
            return _decode_time(value)
        if dtype is UUID:
            return _decode_uuid(value)
        if dtype is dict or dtype is list:
            return _decode_json(value)
        return dtype(_decode_str(value))
    except (ValueError, TypeError, IndexError, InvalidOperation) as err:
        raise errors.DecodeError(
            "Failed to decode %r as %r: %s" % (value, dtype, err)
        ) from err
