import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from creation_rights.domain.enums import UploadState
from creation_rights.domain.errors import BlobNotFound, NotFound, StorageError, UploadRejected, ValidationError
from creation_rights.domain.results import OperationResult, ReplicationGap
from creation_rights.features.ledger.service import generate_creation_rights_id
from creation_rights.infra import paths
from creation_rights.infra.collection_store import ensure_placeholders
from creation_rights.infra.jsonblob import read_json, write_json
from creation_rights.infra.replication import BLOB_COPY, ReplicationQueue, utc_now_iso
from creation_rights.infra.storage import BlobStore
from creation_rights.infra.thumbnails import THUMBNAIL_CONTENT_TYPE, ThumbnailError, make_thumbnail

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        # images
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/svg+xml",
        # documents
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/markdown",
        # audio
        "audio/mpeg",
        "audio/wav",
        "audio/ogg",
        "audio/flac",
        "audio/x-m4a",
        # video
        "video/mp4",
        "video/webm",
        "video/ogg",
        "video/quicktime",
    }
)

DEFAULT_MAX_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class AssetRef:
    """Stable reference to an uploaded asset, usable in a Creation record."""

    owner: str
    creation_rights_id: str
    path: str
    url: str
    content_type: str
    size: int
    sha256: str
    thumbnail_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "creationRightsId": self.creation_rights_id,
            "path": self.path,
            "url": self.url,
            "contentType": self.content_type,
            "size": self.size,
            "sha256": self.sha256,
            "thumbnailUrl": self.thumbnail_url,
        }


class UploadPipeline:
    """Received -> ScaffoldEnsured -> ContentWritten -> SidecarWritten -> Complete.

    Rejections (type, size, empty file) raise before any write. A scaffold
    failure raises ScaffoldError before the content write. A content write
    failure returns a failed result; thumbnail and sidecar failures do not.
    """

    def __init__(
        self,
        blobs: BlobStore,
        queue: ReplicationQueue | None = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self._blobs = blobs
        self._queue = queue
        self._max_bytes = max_bytes

    def _check(self, data: bytes, content_type: str) -> None:
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise UploadRejected.single(
                "unsupported_media_type",
                "file",
                f"{content_type or 'unknown'} is not allowed; only images, documents, audio and video are",
            )
        if not data:
            raise UploadRejected.single("empty_file", "file", "file is empty")
        if len(data) > self._max_bytes:
            raise UploadRejected.single("file_too_large", "file", f"file exceeds {self._max_bytes} bytes")

    def upload(
        self,
        owner: str,
        data: bytes,
        content_type: str,
        *,
        original_name: str = "",
        creation_rights_id: str | None = None,
        client_thumbnail: bytes | None = None,
        uploaded_by: str | None = None,
    ) -> OperationResult:
        state = UploadState.received
        self._check(data, content_type)
        crid = creation_rights_id or generate_creation_rights_id()

        ensure_placeholders(self._blobs, paths.asset_scaffold(owner, crid))
        state = UploadState.scaffold_ensured
        logger.debug("upload %s/%s: %s", owner, crid, state.value)

        content_path = paths.asset_object(owner, crid)
        try:
            self._blobs.put(content_path, data, content_type)
        except StorageError as e:
            logger.error("upload %s/%s: content write failed: %s", owner, crid, e)
            self._discard(content_path)
            return OperationResult.failed(str(e), stage=state.value)
        state = UploadState.content_written
        logger.debug("upload %s/%s: %s", owner, crid, state.value)
        self._clear_orphan_marker(owner, crid)

        ref = AssetRef(
            owner=owner,
            creation_rights_id=crid,
            path=content_path,
            url=self._blobs.public_url(content_path),
            content_type=content_type,
            size=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            thumbnail_url=self._write_thumbnail(owner, crid, data, content_type, client_thumbnail),
        )

        gaps: list[ReplicationGap] = []
        sidecar_path = paths.asset_sidecar(owner, crid)
        sidecar = {
            **ref.to_dict(),
            "originalName": original_name,
            "uploadDate": utc_now_iso(),
            "uploadedBy": uploaded_by or owner,
        }
        try:
            write_json(self._blobs, sidecar_path, sidecar)
            state = UploadState.sidecar_written
        except StorageError as e:
            logger.warning("upload %s/%s: sidecar not written: %s", owner, crid, e)
            queued = False
            if self._queue is not None:
                queued = self._queue.enqueue(BLOB_COPY, sidecar, target_path=sidecar_path) is not None
            gaps.append(ReplicationGap(copy="upload_sidecar", path=sidecar_path, reason=str(e), queued=queued))

        state = UploadState.complete
        logger.info("upload %s/%s complete (%d bytes)", owner, crid, ref.size)
        return OperationResult.from_gaps(ref.to_dict(), gaps, stage=state.value)

    def _write_thumbnail(
        self, owner: str, crid: str, data: bytes, content_type: str, client_thumbnail: bytes | None
    ) -> str | None:
        try:
            thumb = make_thumbnail(data, content_type, client_thumbnail)
        except ThumbnailError as e:
            logger.warning("upload %s/%s: no thumbnail: %s", owner, crid, e)
            return None
        if thumb is None:
            return None
        path = paths.asset_thumbnail(owner, crid)
        try:
            self._blobs.put(path, thumb, THUMBNAIL_CONTENT_TYPE)
        except StorageError as e:
            logger.warning("upload %s/%s: thumbnail not written: %s", owner, crid, e)
            return None
        return self._blobs.public_url(path)

    def _discard(self, path: str) -> None:
        try:
            self._blobs.delete(path)
        except BlobNotFound:
            pass
        except StorageError as e:
            logger.warning("could not discard partial upload %s: %s", path, e)

    def _clear_orphan_marker(self, owner: str, crid: str) -> None:
        marker = paths.asset_orphan_marker(owner, crid)
        try:
            self._blobs.delete(marker)
        except BlobNotFound:
            return
        except StorageError as e:
            logger.warning("upload %s/%s: stale orphan marker not removed: %s", owner, crid, e)
            return
        logger.info("upload %s/%s replaced an abandoned upload", owner, crid)

    def list_assets(self, owner: str, creation_rights_id: str) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for name in self._blobs.list_by_prefix(paths.asset_folder(owner, creation_rights_id)):
            if paths.is_placeholder(name):
                continue
            try:
                info = self._blobs.info(name)
            except BlobNotFound:
                continue
            out.append(
                {
                    "path": info.path,
                    "size": info.size,
                    "contentType": info.content_type,
                    "updatedAt": info.updated_at,
                    "url": self._blobs.public_url(name),
                }
            )
        return out

    def open_asset(self, owner: str, creation_rights_id: str, name: str = "file") -> tuple[bytes, str]:
        """Bytes and stored content type of one object in the asset folder."""
        path = paths.asset_file(owner, creation_rights_id, name)
        if paths.is_placeholder(path):
            raise NotFound(f"no {name} in upload {creation_rights_id} for {owner}")
        info = self._blobs.info(path)
        return self._blobs.get(path), info.content_type

    def describe(self, owner: str, creation_rights_id: str) -> dict[str, Any]:
        assets = self.list_assets(owner, creation_rights_id)
        if not assets:
            raise NotFound(f"no upload {creation_rights_id} for {owner}")
        try:
            sidecar = read_json(self._blobs, paths.asset_sidecar(owner, creation_rights_id))
        except BlobNotFound:
            sidecar = None
        return {
            "creationRightsId": creation_rights_id,
            "assets": assets,
            "sidecar": sidecar,
            "orphaned": self.is_orphaned(owner, creation_rights_id),
        }

    def is_orphaned(self, owner: str, creation_rights_id: str) -> bool:
        return self._blobs.exists(paths.asset_orphan_marker(owner, creation_rights_id))

    def abandon(self, owner: str, creation_rights_id: str, reason: str = "") -> dict[str, Any]:
        """Mark an upload as not referenced by any Creation. The blobs stay until purged."""
        if not self._blobs.exists(paths.asset_object(owner, creation_rights_id)):
            raise NotFound(f"no upload {creation_rights_id} for {owner}")
        marker = {
            "creationRightsId": creation_rights_id,
            "owner": owner,
            "abandonedAt": utc_now_iso(),
            "reason": reason,
        }
        write_json(self._blobs, paths.asset_orphan_marker(owner, creation_rights_id), marker)
        logger.info("upload %s/%s marked orphaned", owner, creation_rights_id)
        return marker

    def purge_orphan(self, owner: str, creation_rights_id: str, referenced: bool) -> list[str]:
        if not self.is_orphaned(owner, creation_rights_id):
            raise ValidationError.single("not_orphaned", "creationRightsId", "upload was not abandoned")
        if referenced:
            raise ValidationError.single(
                "still_referenced", "creationRightsId", "a creation still references this upload"
            )
        deleted: list[str] = []
        for name in self._blobs.list_by_prefix(paths.asset_folder(owner, creation_rights_id)):
            try:
                self._blobs.delete(name)
            except BlobNotFound:
                continue
            deleted.append(name)
        logger.info("purged %d blob(s) of orphaned upload %s/%s", len(deleted), owner, creation_rights_id)
        return deleted
