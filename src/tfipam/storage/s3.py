import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from tfipam.storage.base import BackendError, DocumentStore

DEFAULT_OBJECT_KEY = "ipam-storage.json"

# Error codes S3 (and S3-compatible services) use for a missing object.
MISSING_OBJECT_CODES = ("NoSuchKey", "404", "NotFound")


class S3Store(DocumentStore):
    """Dataset persisted as a single object in an S3 bucket.

    Without explicit keys the default boto3 credential chain is used
    (environment, shared config, instance role). ``endpoint_url`` points the
    client at an S3-compatible service such as MinIO or LocalStack.
    """

    def __init__(
        self,
        region: str,
        bucket_name: str,
        object_key: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        endpoint_url: str | None = None,
        skip_tls_verify: bool = False,
        client=None,
    ):
        self.region = region
        self.bucket_name = bucket_name
        self.object_key = object_key or DEFAULT_OBJECT_KEY
        self._client = client or self._build_client(
            access_key_id, secret_access_key, session_token, endpoint_url, skip_tls_verify
        )
        super().__init__()

    @property
    def location(self) -> str:
        return f"s3://{self.bucket_name}/{self.object_key}"

    def _build_client(self, access_key_id, secret_access_key, session_token, endpoint_url, skip_tls_verify):
        try:
            session = boto3.session.Session(
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                aws_session_token=session_token or None,
                region_name=self.region,
            )
            kwargs = {}
            if endpoint_url:
                # Most S3-compatible services only support path-style addressing
                kwargs["endpoint_url"] = endpoint_url
                kwargs["config"] = Config(s3={"addressing_style": "path"})
                if skip_tls_verify:
                    kwargs["verify"] = False
            return session.client("s3", **kwargs)
        except BotoCoreError as e:
            raise BackendError(f"Failed to create S3 client: {e}") from e

    def _read_document(self) -> bytes | None:
        try:
            response = self._client.get_object(Bucket=self.bucket_name, Key=self.object_key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_OBJECT_CODES:
                return None
            raise BackendError(f"Failed to load storage object {self.location}: {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"Failed to load storage object {self.location}: {e}") from e

    def _write_document(self, data: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=self.object_key,
                Body=data,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"Failed to upload storage object {self.location}: {e}") from e

    def _release(self) -> None:
        self._client.close()
