import logging
import os
from pathlib import Path

from tfipam.storage.base import BackendError, DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_FILE_PATH = ".terraform/ipam-storage.json"


class FileStore(DocumentStore):
    """Dataset persisted as a JSON file on the local filesystem."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path or DEFAULT_FILE_PATH)
        super().__init__()

    @property
    def location(self) -> str:
        return str(self.path)

    def _read_document(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendError(f"Failed to read storage file {self.path}: {e}") from e

    def _write_document(self, data: bytes) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_path)
            raise BackendError(f"Failed to write storage file {self.path}: {e}") from e
