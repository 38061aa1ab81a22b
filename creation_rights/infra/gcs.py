import logging
import os

from google.api_core import exceptions as gexc
from google.auth import default as google_auth_default
from google.cloud import storage
from google.oauth2 import service_account

from creation_rights.domain.errors import BlobNotFound, StorageError, TransientStorageError
from creation_rights.infra.storage import DEFAULT_CONTENT_TYPE, BlobInfo

logger = logging.getLogger(__name__)

_TRANSIENT = (
    gexc.TooManyRequests,
    gexc.InternalServerError,
    gexc.BadGateway,
    gexc.ServiceUnavailable,
    gexc.GatewayTimeout,
    gexc.DeadlineExceeded,
)


def build_credentials(key_file: str | None):
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    key_path = key_file or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


class GcsBlobStore:
    """BlobStore over a Google Cloud Storage bucket."""

    def __init__(self, bucket_name: str, client: storage.Client | None = None, key_file: str | None = None) -> None:
        self._bucket_name = bucket_name
        self._client = client or storage.Client(credentials=build_credentials(key_file))
        self._bucket = self._client.bucket(bucket_name)

    def _call(self, path: str, op):
        try:
            return op()
        except gexc.NotFound:
            raise BlobNotFound(path)
        except _TRANSIENT as e:
            raise TransientStorageError(f"{path}: {e}") from e
        except (gexc.GoogleAPICallError, ConnectionError) as e:
            raise StorageError(f"{path}: {e}") from e

    def get(self, path: str) -> bytes:
        return self._call(path, lambda: self._bucket.blob(path).download_as_bytes())

    def put(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        blob = self._bucket.blob(path)
        blob.cache_control = "no-cache, max-age=0"
        self._call(path, lambda: blob.upload_from_string(data, content_type=content_type))

    def exists(self, path: str) -> bool:
        return bool(self._call(path, lambda: self._bucket.blob(path).exists()))

    def delete(self, path: str) -> None:
        self._call(path, lambda: self._bucket.blob(path).delete())

    def list_by_prefix(self, prefix: str) -> list[str]:
        blobs = self._call(prefix, lambda: list(self._client.list_blobs(self._bucket_name, prefix=prefix)))
        return sorted(b.name for b in blobs)

    def info(self, path: str) -> BlobInfo:
        blob = self._call(path, lambda: self._bucket.get_blob(path))
        if blob is None:
            raise BlobNotFound(path)
        return BlobInfo(
            path=path,
            size=int(blob.size or 0),
            content_type=blob.content_type or DEFAULT_CONTENT_TYPE,
            updated_at=blob.updated.isoformat() if blob.updated else None,
        )

    def public_url(self, path: str) -> str:
        return f"https://storage.googleapis.com/{self._bucket_name}/{path}"
