"""Tests for keystore.py module."""

import json
import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

import keystore
from config import ConfigError


def client_error(code: str, operation: str = "GetParameter") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestLoadKeyConfig:
    """Tests for the feed-id → reference file."""

    def test_loads_mapping(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text(json.dumps({"mdb-1": "/gtfs/mdb-1/api_key"}))

        assert keystore.load_key_config(str(path)) == {"mdb-1": "/gtfs/mdb-1/api_key"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            keystore.load_key_config(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError, match="Invalid JSON"):
            keystore.load_key_config(str(path))

    def test_non_object(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text("[]")

        with pytest.raises(ConfigError, match="JSON object"):
            keystore.load_key_config(str(path))

    def test_empty_reference(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text(json.dumps({"mdb-1": ""}))

        with pytest.raises(ConfigError, match="mdb-1"):
            keystore.load_key_config(str(path))


class TestSsmKeyStore:
    """Tests for SSM parameter resolution."""

    def test_get_decrypts_parameter(self):
        client = MagicMock()
        client.get_parameter.return_value = {"Parameter": {"Value": "secret"}}
        store = keystore.SsmKeyStore(client=client)

        assert store.get("/gtfs/mdb-1/api_key") == "secret"
        client.get_parameter.assert_called_once_with(
            Name="/gtfs/mdb-1/api_key", WithDecryption=True
        )

    def test_client_error_raises_config_error(self):
        client = MagicMock()
        client.get_parameter.side_effect = client_error("ParameterNotFound")
        store = keystore.SsmKeyStore(client=client)

        with pytest.raises(ConfigError, match="ParameterNotFound"):
            store.get("/gtfs/missing")

    def test_empty_value_raises_config_error(self):
        client = MagicMock()
        client.get_parameter.return_value = {"Parameter": {"Value": ""}}
        store = keystore.SsmKeyStore(client=client)

        with pytest.raises(ConfigError, match="no value"):
            store.get("/gtfs/empty")


class TestResolveKeys:
    """Tests for startup key resolution."""

    @pytest.mark.asyncio
    async def test_failed_references_are_left_out(self):
        store = MagicMock()

        def get(reference):
            if reference == "/bad":
                raise ConfigError("denied")
            return f"value-of-{reference}"

        store.get.side_effect = get

        resolved = await keystore.resolve_keys(
            store, {"good": "/good", "bad": "/bad"}
        )

        assert dict(resolved) == {"good": "value-of-/good"}

    @pytest.mark.asyncio
    async def test_snapshot_is_read_only(self):
        store = MagicMock()
        store.get.return_value = "secret"

        resolved = await keystore.resolve_keys(store, {"mdb-1": "/ref"})

        with pytest.raises(TypeError):
            resolved["mdb-2"] = "other"  # type: ignore[index]
