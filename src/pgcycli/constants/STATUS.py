# libpq ExecStatusType
EMPTY_QUERY = 0
COMMAND_OK = 1
TUPLES_OK = 2
COPY_OUT = 3
COPY_IN = 4
BAD_RESPONSE = 5
NONFATAL_ERROR = 6
FATAL_ERROR = 7
COPY_BOTH = 8
SINGLE_TUPLE = 9
PIPELINE_SYNC = 10
PIPELINE_ABORTED = 11
TUPLES_CHUNK = 12

# Statuses a result frame may carry and still be consumed.
SUCCESS = frozenset((TUPLES_OK, SINGLE_TUPLE, COMMAND_OK))

_NAMES = {
    value: name
    for name, value in list(globals().items())
    if name.isupper() and isinstance(value, int)
}


def name_of(status: int) -> str:
    """Return the libpq name of an execution status, e.g. 'FATAL_ERROR'."""
    return _NAMES.get(int(status), "UNKNOWN(%s)" % status)
