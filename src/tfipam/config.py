import os
import re
from dataclasses import dataclass, fields
from pathlib import Path

import yaml


STORAGE_TYPES = ("file", "azure_blob", "aws_s3")


class ConfigError(Exception):
    pass


@dataclass
class StorageConfig:
    """Tagged storage backend settings. Only the fields for ``type`` are used."""

    type: str = "file"

    # file
    file_path: str | None = None

    # azure_blob
    azure_connection_string: str | None = None
    azure_container_name: str | None = None
    azure_blob_name: str | None = None

    # aws_s3
    s3_region: str | None = None
    s3_bucket_name: str | None = None
    s3_object_key: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_session_token: str | None = None
    s3_endpoint_url: str | None = None
    s3_skip_tls_verify: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "StorageConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown storage config field(s): {', '.join(unknown)}")
        values = dict(data)
        if values.get("type") is None:
            values["type"] = "file"
        if "s3_skip_tls_verify" in values:
            values["s3_skip_tls_verify"] = _as_bool(values["s3_skip_tls_verify"])
        return cls(**values)


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"Expected a boolean for s3_skip_tls_verify, got {value!r}")


def load_config(path: Path) -> StorageConfig:
    """Load storage settings from a YAML file."""
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid config file: {path}")

    section = raw.get("storage", raw)
    if not isinstance(section, dict):
        raise ConfigError(f"'storage' must be a mapping in {path}")

    config = StorageConfig.from_dict(interpolate_variables(section))
    validate_config(config)
    return config


def validate_config(config: StorageConfig) -> None:
    """Check the backend tag and the fields that backend requires."""
    if not config.type:
        config.type = "file"

    if config.type not in STORAGE_TYPES:
        raise ConfigError(
            f"Unknown storage type '{config.type}'. Supported: {', '.join(STORAGE_TYPES)}"
        )

    if config.type == "azure_blob":
        if not config.azure_connection_string:
            raise ConfigError("azure connection string is required")
        if not config.azure_container_name:
            raise ConfigError("azure container name is required")

    elif config.type == "aws_s3":
        if not config.s3_region:
            raise ConfigError("aws region is required")
        if not config.s3_bucket_name:
            raise ConfigError("s3 bucket name is required")
        if config.s3_access_key_id and not config.s3_secret_access_key:
            raise ConfigError(
                "aws secret access key is required when access key id is provided"
            )
        if config.s3_secret_access_key and not config.s3_access_key_id:
            raise ConfigError(
                "aws access key id is required when secret access key is provided"
            )


def interpolate_variables(config: dict) -> dict:
    """Interpolate ${VAR} references from the environment."""

    def _replace(obj):
        if isinstance(obj, str):
            def _sub(m):
                env_val = os.environ.get(m.group(1))
                if env_val is not None:
                    return env_val
                return m.group(0)  # leave unresolved
            return re.sub(r"\$\{(\w+)\}", _sub, obj)
        elif isinstance(obj, dict):
            return {k: _replace(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [_replace(item) for item in obj]
        return obj

    return _replace(config)
