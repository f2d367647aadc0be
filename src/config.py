"""Configuration loading and validation module.

This module handles all YAML configuration loading and provides a typed
Config dataclass consumed by all other modules.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Set
import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class CatalogConfig:
    """Feed catalog connection configuration."""
    base_url: str = "https://api.mobilitydatabase.org"
    refresh_token_env: str = "MOBILITYDATA_REFRESH_TOKEN"
    timeout_seconds: int = 30


@dataclass
class SamplingConfig:
    """Polling behavior configuration."""
    concurrency: int
    interval_seconds: int
    rounds: int = 0
    request_timeout_seconds: int = 30


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str


@dataclass
class StorageConfig:
    """Durable storage configuration."""
    backend: str
    bucket: Optional[str] = None
    prefix: str = ""
    path: Optional[str] = None
    upload_raw: bool = True
    gzip_raw: bool = False


@dataclass
class KeysConfig:
    """Feed API-key configuration."""
    config_path: Optional[str] = None


@dataclass
class ExcludeConfig:
    """Exclusion lists configuration."""
    feeds: Set[str] = field(default_factory=set)


@dataclass
class Config:
    """Root configuration dataclass."""
    catalog: CatalogConfig
    sampling: SamplingConfig
    database: DatabaseConfig
    storage: StorageConfig
    keys: KeysConfig
    exclude: ExcludeConfig


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "sampling.concurrency")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    keys = path.split(".")
    current = data

    for key in keys:
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if expected_type is list:
        if not isinstance(value, list):
            raise ConfigError(
                f"Field '{field_name}' must be a list, got {type(value).__name__}"
            )
    elif expected_type is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be an integer, got {type(value).__name__}"
            )
    elif expected_type is str:
        if not isinstance(value, str):
            raise ConfigError(
                f"Field '{field_name}' must be a string, got {type(value).__name__}"
            )
    elif expected_type is bool:
        if not isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be a boolean, got {type(value).__name__}"
            )
    else:
        if not isinstance(value, expected_type):
            raise ConfigError(
                f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
            )


def _optional(data: dict, section: str, key: str, expected_type: type, default: Any) -> Any:
    """Read an optional key from a section and validate its type."""
    value = _get_nested(data, key, required=False, default=default)
    if value is not None:
        _validate_type(value, expected_type, f"{section}.{key}")
    return value


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    # Catalog configuration
    catalog_data = _get_nested(data, "catalog", required=False, default={})
    catalog = CatalogConfig(
        base_url=_optional(
            catalog_data, "catalog", "base_url", str, CatalogConfig.base_url
        ),
        refresh_token_env=_optional(
            catalog_data, "catalog", "refresh_token_env", str,
            CatalogConfig.refresh_token_env,
        ),
        timeout_seconds=_optional(
            catalog_data, "catalog", "timeout_seconds", int,
            CatalogConfig.timeout_seconds,
        ),
    )
    if catalog.timeout_seconds <= 0:
        raise ConfigError("catalog.timeout_seconds must be > 0")

    # Sampling configuration
    sampling_data = _get_nested(data, "sampling")

    concurrency = _get_nested(sampling_data, "concurrency")
    _validate_type(concurrency, int, "sampling.concurrency")

    interval_seconds = _get_nested(sampling_data, "interval_seconds")
    _validate_type(interval_seconds, int, "sampling.interval_seconds")

    rounds = _optional(sampling_data, "sampling", "rounds", int, 0)
    request_timeout_seconds = _optional(
        sampling_data, "sampling", "request_timeout_seconds", int, 30
    )

    # Range validation for sampling config fields
    if concurrency < 1:
        raise ConfigError("sampling.concurrency must be >= 1")
    if interval_seconds < 0:
        raise ConfigError("sampling.interval_seconds must be >= 0")
    if rounds < 0:
        raise ConfigError("sampling.rounds must be >= 0 (0 = run until cancelled)")
    if request_timeout_seconds <= 0:
        raise ConfigError("sampling.request_timeout_seconds must be > 0")

    sampling = SamplingConfig(
        concurrency=concurrency,
        interval_seconds=interval_seconds,
        rounds=rounds,
        request_timeout_seconds=request_timeout_seconds,
    )

    # Database configuration
    database_data = _get_nested(data, "database")
    database_path = _get_nested(database_data, "path")
    _validate_type(database_path, str, "database.path")

    database = DatabaseConfig(path=database_path)

    # Storage configuration
    storage_data = _get_nested(data, "storage")
    backend = _get_nested(storage_data, "backend")
    _validate_type(backend, str, "storage.backend")
    if backend not in ("s3", "local"):
        raise ConfigError(f"storage.backend must be 's3' or 'local', got {backend!r}")

    bucket = _optional(storage_data, "storage", "bucket", str, None)
    storage_path = _optional(storage_data, "storage", "path", str, None)
    if backend == "s3" and not bucket:
        raise ConfigError("Missing required configuration field: storage.bucket")
    if backend == "local" and not storage_path:
        raise ConfigError("Missing required configuration field: storage.path")

    storage = StorageConfig(
        backend=backend,
        bucket=bucket,
        prefix=_optional(storage_data, "storage", "prefix", str, ""),
        path=storage_path,
        upload_raw=_optional(storage_data, "storage", "upload_raw", bool, True),
        gzip_raw=_optional(storage_data, "storage", "gzip_raw", bool, False),
    )

    # Keys configuration
    keys_data = _get_nested(data, "keys", required=False, default={})
    keys = KeysConfig(
        config_path=_optional(keys_data, "keys", "config_path", str, None)
    )

    # Exclude configuration
    exclude_data = _get_nested(data, "exclude", required=False, default={})

    feeds = _get_nested(exclude_data, "feeds", required=False, default=[])
    _validate_type(feeds, list, "exclude.feeds")
    for i, feed_id in enumerate(feeds):
        _validate_type(feed_id, str, f"exclude.feeds[{i}]")

    exclude = ExcludeConfig(feeds=set(feeds))

    return Config(
        catalog=catalog,
        sampling=sampling,
        database=database,
        storage=storage,
        keys=keys,
        exclude=exclude,
    )
