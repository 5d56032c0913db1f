"""
Configuration

Connection settings are an immutable `MongoSettings` value that is built once, either directly or from environment
variables, and passed to the client factories:

    ```python
    settings = MongoSettings.from_environ()
    client = create_client(settings)
    template = MongoTemplate(get_database(client, settings))
    ```

The asyncio variant works the same way with `create_async_client`.
"""
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from bson.binary import UuidRepresentation
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from mongomap.exceptions import DataAccessResourceFailureError


DEFAULT_ENVIRON_PREFIX = "MONGOMAP_"

_UUID_REPRESENTATIONS = {
    UuidRepresentation.STANDARD: "standard",
    UuidRepresentation.PYTHON_LEGACY: "pythonLegacy",
    UuidRepresentation.JAVA_LEGACY: "javaLegacy",
    UuidRepresentation.CSHARP_LEGACY: "csharpLegacy",
    UuidRepresentation.UNSPECIFIED: "unspecified",
}


@dataclass(frozen=True)
class MongoSettings:
    """Settings for connecting to a MongoDB server.

    Attributes:
        host: Hostname or IP address of the MongoDB server
        port: Port number the MongoDB server is listening on
        database_name: Name of the database to use
        username: Optional username for authentication
        password: Optional password for authentication
        auth_source: Authentication database name
        timeout: Server selection timeout in milliseconds
        uuid_representation: How UUIDs are encoded, one of `bson.binary.UuidRepresentation`
        connection_options: Additional options passed to the client as they are.
            Example: {"tlsAllowInvalidCertificates": True}
    """
    host: str = "localhost"
    port: int = 27017
    database_name: str = "mongomap"
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    auth_source: str | None = "admin"
    timeout: int = 20000
    uuid_representation: int = UuidRepresentation.STANDARD
    connection_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.database_name:
            raise ValueError("MongoSettings requires a database name")

        if self.uuid_representation not in _UUID_REPRESENTATIONS:
            raise ValueError(f"Unknown UUID representation {self.uuid_representation!r}")

        object.__setattr__(self, "connection_options", MappingProxyType(dict(self.connection_options)))

    @classmethod
    def from_environ(cls, prefix: str = DEFAULT_ENVIRON_PREFIX, environ: Mapping[str, str] | None = None) -> "MongoSettings":
        """Reads settings from `<prefix>HOST`, `PORT`, `DATABASE`, `USERNAME`, `PASSWORD`, `AUTH_SOURCE` and `TIMEOUT`.

        Variables that are not set keep their defaults.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, setting, parse in (
            ("HOST", "host", str),
            ("PORT", "port", int),
            ("DATABASE", "database_name", str),
            ("USERNAME", "username", str),
            ("PASSWORD", "password", str),
            ("AUTH_SOURCE", "auth_source", str),
            ("TIMEOUT", "timeout", int),
        ):
            if (value := environ.get(f"{prefix}{name}")) is not None:
                try:
                    values[setting] = parse(value)
                except ValueError as error:
                    raise ValueError(f"Invalid value for {prefix}{name}: {value!r}") from error

        return cls(**values)

    def client_options(self) -> dict[str, Any]:
        options = {
            "host": self.host,
            "port": self.port,
            "serverSelectionTimeoutMS": self.timeout,
            "uuidRepresentation": _UUID_REPRESENTATIONS[self.uuid_representation],
        }
        if self.username is not None:
            options["username"] = self.username
            options["password"] = self.password
            options["authSource"] = self.auth_source

        options.update(self.connection_options)
        return options


def create_client(settings: MongoSettings | None = None) -> MongoClient:
    """Creates a synchronous client. The connection is established lazily by the driver.

    Raises:
        DataAccessResourceFailureError: If the client rejects the settings.
    """
    settings = settings or MongoSettings()
    logger.debug(f"Creating MongoClient for {settings.host}:{settings.port}")
    try:
        return MongoClient(**settings.client_options())
    except PyMongoError as error:
        raise DataAccessResourceFailureError(f"Failed to initialize MongoDB client: {error}", cause=error) from error


def create_async_client(settings: MongoSettings | None = None) -> AsyncIOMotorClient:
    """Creates an asyncio client. The connection is established lazily by the driver.

    Raises:
        DataAccessResourceFailureError: If the client rejects the settings.
    """
    settings = settings or MongoSettings()
    logger.debug(f"Creating AsyncIOMotorClient for {settings.host}:{settings.port}")
    try:
        return AsyncIOMotorClient(**settings.client_options())
    except PyMongoError as error:
        raise DataAccessResourceFailureError(f"Failed to initialize MongoDB client: {error}", cause=error) from error


def get_database(
    client: MongoClient | AsyncIOMotorClient, settings: MongoSettings | None = None
) -> Database | AsyncIOMotorDatabase:
    return client[(settings or MongoSettings()).database_name]
