from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from tfipam.storage.base import BackendError, DocumentStore

DEFAULT_BLOB_NAME = "ipam-storage.json"


class AzureBlobStore(DocumentStore):
    """Dataset persisted as a single blob in an Azure Storage container."""

    def __init__(
        self,
        connection_string: str,
        container_name: str,
        blob_name: str | None = None,
        blob_client=None,
    ):
        self.container_name = container_name
        self.blob_name = blob_name or DEFAULT_BLOB_NAME
        self._blob_client = blob_client or self._build_client(connection_string)
        super().__init__()

    @property
    def location(self) -> str:
        return f"azure://{self.container_name}/{self.blob_name}"

    def _build_client(self, connection_string: str):
        try:
            service = BlobServiceClient.from_connection_string(connection_string)
        except (ValueError, AzureError) as e:
            raise BackendError(f"Failed to create Azure blob client: {e}") from e
        return service.get_blob_client(container=self.container_name, blob=self.blob_name)

    def _read_document(self) -> bytes | None:
        try:
            return self._blob_client.download_blob().readall()
        except ResourceNotFoundError as e:
            # A missing container is a configuration problem, not a fresh store
            if getattr(e, "error_code", None) == "ContainerNotFound":
                raise BackendError(
                    f"Azure container '{self.container_name}' does not exist"
                ) from e
            return None
        except AzureError as e:
            raise BackendError(f"Failed to load storage blob {self.location}: {e}") from e

    def _write_document(self, data: bytes) -> None:
        try:
            self._blob_client.upload_blob(data, overwrite=True)
        except AzureError as e:
            raise BackendError(f"Failed to upload storage blob {self.location}: {e}") from e

    def _release(self) -> None:
        self._blob_client.close()
