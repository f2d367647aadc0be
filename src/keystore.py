"""Feed API-key resolution module.

Maps feed ids to secret references (SSM parameter paths) and resolves them
once at startup into an immutable snapshot shared by every polling task.
"""

import asyncio
import json
import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import ConfigError

logger = logging.getLogger(__name__)


def load_key_config(path: str) -> Dict[str, str]:
    """Load a JSON object mapping feed ids to secret references.

    Example file:
        {"mdb-123": "/gtfs/feeds/mdb-123/api_key"}

    Args:
        path: Path to the JSON file

    Returns:
        Dict of feed_id -> reference

    Raises:
        ConfigError: If the file is missing, not JSON, or not a string map
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Key config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in key config file: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Key config file must contain a JSON object")

    for feed_id, reference in data.items():
        if not isinstance(reference, str) or not reference:
            raise ConfigError(
                f"Key config entry for '{feed_id}' must be a non-empty string"
            )
    return data


class SsmKeyStore:
    """Resolves secrets from AWS SSM Parameter Store with decryption."""

    def __init__(self, client: Any = None) -> None:
        self._client = client if client is not None else boto3.client("ssm")

    def get(self, reference: str) -> str:
        """Fetch the plaintext value of an SSM parameter.

        Raises:
            ConfigError: If the parameter cannot be read or has no value
        """
        try:
            response = self._client.get_parameter(Name=reference, WithDecryption=True)
        except (BotoCoreError, ClientError) as e:
            raise ConfigError(f"SSM GetParameter failed for '{reference}': {e}") from e

        value = response.get("Parameter", {}).get("Value")
        if not value:
            raise ConfigError(f"SSM parameter '{reference}' exists but has no value")
        return value


async def resolve_keys(store: Any, references: Mapping[str, str]) -> Mapping[str, str]:
    """Resolve every configured reference once.

    Feeds whose key cannot be resolved are logged and left out, which
    excludes them from the active set without failing the run.

    Args:
        store: Object with a blocking get(reference) -> str
        references: feed_id -> reference

    Returns:
        Read-only mapping of feed_id -> secret
    """
    resolved: Dict[str, str] = {}
    for feed_id, reference in references.items():
        try:
            resolved[feed_id] = await asyncio.to_thread(store.get, reference)
        except ConfigError as e:
            logger.error(f"Failed to resolve key for {feed_id} ({reference}): {e}")
            continue
        logger.info(f"Resolved key for {feed_id} ({reference})")
    return MappingProxyType(resolved)
