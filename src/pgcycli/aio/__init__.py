from pgcycli.aio.connection import ReadEvent, Connection

__all__ = ["ReadEvent", "Connection"]
