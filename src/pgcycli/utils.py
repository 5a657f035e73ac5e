# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False

# Cython imports
import cython

# Python imports
from pgcycli import errors

__all__ = [
    "validate_arg_str",
    "validate_arg_uint",
    "quote_conninfo_value",
    "build_conninfo",
]

# Constants ---------------------------------------------------------------------------------------
MAX_CONNECT_TIMEOUT = 31_536_000  # 1 year
# Characters that force a conninfo value to be single-quoted.
_CONNINFO_SPECIALS = " \t\n\r\f\v'\\="


# Utils: Arguments --------------------------------------------------------------------------------
@cython.ccall
def validate_arg_str(arg: object, arg_name: str, default: object) -> object:
    """Validate if a string argument is valid `<'str/None'>`.

    `None` and empty strings fall back to the 'default'.
    """
    if arg is None:
        return default
    if isinstance(arg, str):
        return arg if len(arg) > 0 else default
    raise errors.InvalidConnectionArgsError(
        "Invalid '%s' argument: %r.\n"
        "Expects <'str'> instead of %s." % (arg_name, arg, type(arg))
    )


@cython.ccall
def validate_arg_uint(
    arg: object,
    arg_name: str,
    min_val: cython.longlong,
    max_val: cython.longlong,
) -> object:
    """Validate if an unsigned integer argument is valid `<'int/None'>`."""
    if arg is None:
        return None
    if isinstance(arg, bool):
        raise errors.InvalidConnectionArgsError(
            "Invalid '%s' argument: %r.\n"
            "Expects <'int'> instead of %s." % (arg_name, arg, type(arg))
        )
    try:
        val: cython.longlong = int(arg)
    except Exception as err:
        raise errors.InvalidConnectionArgsError(
            "Invalid '%s' argument: %r.\n"
            "Expects <'int'> instead of %s." % (arg_name, arg, type(arg))
        ) from err
    if not min_val <= val <= max_val:
        raise errors.InvalidConnectionArgsError(
            "Invalid '%s' argument: %r.\n"
            "Expects an integer between %d and %d." % (arg_name, val, min_val, max_val)
        )
    return val


# Utils: Conninfo ---------------------------------------------------------------------------------
@cython.ccall
def quote_conninfo_value(value: object) -> str:
    """Quote a value for a libpq connection string `<'str'>`.

    Empty values and values containing whitespace, quotes, backslashes
    or '=' are single-quoted, with `'` and `\\` backslash-escaped.

    ## Example
    >>> quote_conninfo_value("secret")
    >>> "secret"
    >>> quote_conninfo_value("it's me")
    >>> "'it\\\\'s me'"
    """
    text: str = str(value)
    if not text:
        return "''"
    for ch in text:
        if ch in _CONNINFO_SPECIALS:
            break
    else:
        return text
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


@cython.ccall
def build_conninfo(params: object) -> str:
    """Serialize a mapping of connection keywords to a libpq
    connection string `<'str'>`.

    Each item becomes `key=value`, joined by single spaces in the
    mapping's order. Items with a `None` value are skipped.

    ## Example
    >>> build_conninfo({"host": "localhost", "dbname": "test_db", "port": 5432})
    >>> "host=localhost dbname=test_db port=5432"
    """
    if not isinstance(params, dict):
        try:
            params = dict(params)
        except Exception as err:
            raise errors.InvalidConnectionArgsError(
                "Invalid connection parameters: %r.\n"
                "Expects a mapping of keyword to value." % (params,)
            ) from err
    items: list = []
    for key, value in params.items():
        if value is None:
            continue
        if not isinstance(key, str) or not key:
            raise errors.InvalidConnectionArgsError(
                "Invalid connection keyword: %r." % (key,)
            )
        items.append("%s=%s" % (key, quote_conninfo_value(value)))
    return " ".join(items)
