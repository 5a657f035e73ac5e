# Parameter and result formats
TEXT = 0
BINARY = 1
