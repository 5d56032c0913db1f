from unittest.mock import MagicMock

import pytest
from pymongo.errors import ConfigurationError

import mongomap.config
from mongomap.config import MongoSettings, create_async_client, create_client, get_database
from mongomap.exceptions import DataAccessResourceFailureError


def test_defaults():
    settings = MongoSettings()
    assert settings.host == "localhost"
    assert settings.port == 27017
    assert settings.database_name == "mongomap"


def test_from_environ():
    settings = MongoSettings.from_environ(
        environ={
            "MONGOMAP_HOST": "db.internal",
            "MONGOMAP_PORT": "27018",
            "MONGOMAP_DATABASE": "ledger",
            "MONGOMAP_USERNAME": "app",
            "MONGOMAP_PASSWORD": "secret",
            "MONGOMAP_TIMEOUT": "500",
            "OTHER_HOST": "ignored",
        }
    )
    assert settings == MongoSettings(
        host="db.internal", port=27018, database_name="ledger", username="app", password="secret", timeout=500
    )


def test_from_environ_with_prefix():
    settings = MongoSettings.from_environ("APP_", environ={"APP_DATABASE": "shop"})
    assert settings.database_name == "shop"
    assert settings.host == "localhost"


def test_invalid_environ_values():
    with pytest.raises(ValueError, match="MONGOMAP_PORT"):
        MongoSettings.from_environ(environ={"MONGOMAP_PORT": "not-a-port"})


def test_database_name_is_required():
    with pytest.raises(ValueError):
        MongoSettings(database_name="")


def test_unknown_uuid_representation():
    with pytest.raises(ValueError):
        MongoSettings(uuid_representation=99)


def test_client_options_without_credentials():
    options = MongoSettings(timeout=100, connection_options={"tls": True}).client_options()
    assert options == {
        "host": "localhost",
        "port": 27017,
        "serverSelectionTimeoutMS": 100,
        "uuidRepresentation": "standard",
        "tls": True,
    }


def test_client_options_with_credentials():
    options = MongoSettings(username="app", password="secret").client_options()
    assert options["username"] == "app"
    assert options["password"] == "secret"
    assert options["authSource"] == "admin"


def test_settings_are_immutable():
    settings = MongoSettings(connection_options={"tls": True})
    with pytest.raises(TypeError):
        settings.connection_options["tls"] = False


def test_password_is_not_in_repr():
    assert "secret" not in repr(MongoSettings(username="app", password="secret"))


def test_create_client(monkeypatch):
    client_type = MagicMock()
    monkeypatch.setattr(mongomap.config, "MongoClient", client_type)
    settings = MongoSettings(database_name="ledger")

    client = create_client(settings)

    client_type.assert_called_once_with(**settings.client_options())
    assert get_database(client, settings) is client.__getitem__.return_value
    client.__getitem__.assert_called_once_with("ledger")


def test_create_client_failures_are_translated(monkeypatch):
    monkeypatch.setattr(mongomap.config, "MongoClient", MagicMock(side_effect=ConfigurationError("bad uri")))
    with pytest.raises(DataAccessResourceFailureError) as error:
        create_client(MongoSettings())

    assert isinstance(error.value.__cause__, ConfigurationError)


def test_create_async_client(monkeypatch):
    client_type = MagicMock()
    monkeypatch.setattr(mongomap.config, "AsyncIOMotorClient", client_type)
    create_async_client(MongoSettings(port=27019))
    assert client_type.call_args.kwargs["port"] == 27019
