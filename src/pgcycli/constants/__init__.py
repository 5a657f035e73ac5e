from pgcycli.constants import CONN, STATUS, FORMAT, OID

__all__ = ["CONN", "STATUS", "FORMAT", "OID"]
