from pgcycli import constants, errors, transcode
from pgcycli._optionfile import ServiceFile
from pgcycli.protocol import Param, encode_param, encode_params, escape_bytea
from pgcycli.result import Result
from pgcycli._engine import LibpqEngine
from pgcycli import aio
from pgcycli.aio.connection import ReadEvent, Connection
from pgcycli._connect import connect, ConnectionManager


__all__ = [
    # Module
    "constants",
    "errors",
    "transcode",
    # Class
    "ServiceFile",
    "Param",
    "Result",
    "LibpqEngine",
    "ReadEvent",
    "Connection",
    "ConnectionManager",
    "aio",
    # Function
    "encode_param",
    "encode_params",
    "escape_bytea",
    "connect",
]
