import logging

from tfipam.config import StorageConfig, validate_config
from tfipam.storage.base import (
    BackendError,
    DocumentStore,
    NotFoundError,
    PoolInUseError,
    StorageError,
    Store,
)
from tfipam.storage.file import FileStore

logger = logging.getLogger(__name__)

__all__ = [
    "BackendError",
    "DocumentStore",
    "FileStore",
    "NotFoundError",
    "PoolInUseError",
    "StorageError",
    "Store",
    "create_store",
]


def create_store(config: StorageConfig) -> Store:
    """Build the backend named by config.type. Raises ConfigError for bad settings."""
    validate_config(config)
    logger.debug("Initializing %s storage backend", config.type)

    if config.type == "file":
        return FileStore(config.file_path)

    if config.type == "azure_blob":
        from tfipam.storage.azure_blob import AzureBlobStore
        return AzureBlobStore(
            config.azure_connection_string,
            config.azure_container_name,
            config.azure_blob_name,
        )

    from tfipam.storage.s3 import S3Store
    return S3Store(
        region=config.s3_region,
        bucket_name=config.s3_bucket_name,
        object_key=config.s3_object_key,
        access_key_id=config.s3_access_key_id,
        secret_access_key=config.s3_secret_access_key,
        session_token=config.s3_session_token,
        endpoint_url=config.s3_endpoint_url,
        skip_tls_verify=config.s3_skip_tls_verify,
    )
