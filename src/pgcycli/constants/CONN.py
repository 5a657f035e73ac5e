# libpq ConnStatusType
OK = 0
BAD = 1
STARTED = 2
MADE = 3
AWAITING_RESPONSE = 4
AUTH_OK = 5
SETENV = 6
SSL_STARTUP = 7
NEEDED = 8
CHECK_WRITABLE = 9
CONSUME = 10
GSS_STARTUP = 11
CHECK_TARGET = 12
CHECK_STANDBY = 13
