# cython: language_level=3
# cython: wraparound=False
# cython: boundscheck=False

# Cython imports
import cython

# Python imports
import os
from os import PathLike
from configparser import RawConfigParser
from pgcycli import errors

__all__ = ["ServiceFile"]


# Custom Parser -----------------------------------------------------------------------------------
class ConfigParser(RawConfigParser):
    """Custom configuration parser for PostgreSQL connection service files.

    Extends `configparser.RawConfigParser` to handle `pg_service.conf` files by:
      - Allowing options without an explicit value (`allow_no_value=True`).
      - Stripping matching surrounding quotes from option values.
      - Normalizing keywords to lowercase (e.g. `DBNAME` → `dbname`).

    :param kwargs: Any keyword arguments supported by `RawConfigParser`.
        Note that `allow_no_value` is always set to `True`.
    """

    def __init__(self, **kwargs):
        kwargs["allow_no_value"] = True
        RawConfigParser.__init__(self, **kwargs)

    @cython.wraparound(True)
    def __remove_quotes(self, value):
        if value is None:
            return value
        for quote in ("'", '"'):
            if len(value) >= 2 and value[0] == value[-1] == quote:
                return value[1:-1]
        return value

    def optionxform(self, key: str):
        return key.strip().lower()

    def get(self, section, option):
        value = RawConfigParser.get(self, section, option)
        return self.__remove_quotes(value)


# ServiceFile -------------------------------------------------------------------------------------
@cython.cclass
class ServiceFile:
    """Load connection keywords from a PostgreSQL connection service
    file (e.g. `~/.pg_service.conf`).

    Reads the specified file and service section, exposing libpq
    keywords such as host, port, user, password and dbname.
    """

    # File
    _service_file: object
    _service: str
    # Keywords
    _params: dict

    def __init__(
        self,
        service_file: str | bytes | PathLike,
        service: str,
    ) -> None:
        """Load connection keywords from a PostgreSQL connection service file.

        :param service_file `<'str/bytes/PathLike'>`: Path to the service file.
        :param service `<'str'>`: The service (section) name within the file.
        """
        self._service_file = self._validate_path(service_file, "service_file")
        if not isinstance(service, str) or not service:
            raise errors.InvalidServiceFileError(
                "<'%s'>\nInvalid 'service' argument: %r."
                % (self.__class__.__name__, service)
            )
        self._service = service
        # Load keywords
        try:
            self._load_options()
        except errors.InvalidServiceFileError:
            raise
        except Exception as err:
            raise errors.InvalidServiceFileError(
                "<'%s'>\nFailed to load service file '%s'.\n"
                "Error: %s" % (self.__class__.__name__, self._service_file, err)
            ) from err

    # Property ------------------------------------------------------------------------------------
    @property
    def service_file(self) -> str | bytes | PathLike:
        """The path to the service file `<'str/bytes/Path'>`."""
        return self._service_file

    @property
    def service(self) -> str:
        """The service (section) name `<'str'>`."""
        return self._service

    @property
    def host(self) -> str | None:
        """The 'host' of the service `<'str/None'>`."""
        return self._params.get("host")

    @property
    def port(self) -> int | None:
        """The 'port' of the service `<'int/None'>`."""
        port = self._params.get("port")
        return None if port is None else int(port)

    @property
    def user(self) -> str | None:
        """The 'user' of the service `<'str/None'>`."""
        return self._params.get("user")

    @property
    def password(self) -> str | None:
        """The 'password' of the service `<'str/None'>`."""
        return self._params.get("password")

    @property
    def dbname(self) -> str | None:
        """The 'dbname' of the service `<'str/None'>`."""
        return self._params.get("dbname")

    @property
    def params(self) -> dict[str, str]:
        """All the keywords of the service `<'dict[str, str]'>`."""
        return dict(self._params)

    # Options -------------------------------------------------------------------------------------
    @cython.cfunc
    @cython.inline(True)
    @cython.exceptval(-1, check=False)
    def _load_options(self) -> cython.bint:
        """(internal) Parse and load all keywords of the service section."""
        cfg = ConfigParser()
        cfg.read(self._service_file, encoding="utf8")
        if not cfg.has_section(self._service):
            raise errors.InvalidServiceFileError(
                "<'%s'>\nService file '%s' does not contain service '%s'."
                % (self.__class__.__name__, self._service_file, self._service)
            )
        params: dict = {}
        for key in cfg.options(self._service):
            value = cfg.get(self._service, key)
            if value is not None and value != "":
                params[key] = value
        port = params.get("port")
        if port is not None and not port.isdigit():
            raise errors.InvalidServiceFileError(
                "<'%s'>\nService '%s' has an invalid 'port': %r."
                % (self.__class__.__name__, self._service, port)
            )
        self._params = params
        return True

    @cython.cfunc
    @cython.inline(True)
    def _validate_path(self, path: object, arg_name: str) -> object:
        """(internal) Expand and verify that a filesystem path exists.

        Expands `~` and `~user`. Raises if the path is not found.

        :param path `<'str/bytes/PathLike'>`: Input path.
        :param arg_name `<'str'>`: Name of the argument for error messages.
        """
        try:
            path = os.path.expanduser(path)
        except Exception as err:
            raise errors.InvalidServiceFileError(
                "<'%s'>\nPath for '%s' is invalid: '%s'.\n"
                "Error: %s" % (self.__class__.__name__, arg_name, path, err)
            ) from err
        if not os.path.exists(path):
            raise errors.ServiceFileNotFoundError(
                "<'%s'>\nPath for '%s' does not exist: '%s'."
                % (self.__class__.__name__, arg_name, path)
            )
        return path

    # Special Methods -----------------------------------------------------------------------------
    def __repr__(self) -> str:
        reprs = {"service_file": self._service_file, "service": self._service}
        reprs.update(
            {k: ("***" if k == "password" else v) for k, v in self._params.items()}
        )
        # fmt: off
        return "<%s(\n  %s)>" % (
            self.__class__.__name__,
            ",\n  ".join("%s=%r" % (k, v) for k, v in reprs.items())
        )
        # fmt: on
