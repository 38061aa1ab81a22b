import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from creation_rights.domain.errors import BlobNotFound, FabricError, StorageError
from creation_rights.infra import paths
from creation_rights.infra.jsonblob import read_json, write_json
from creation_rights.infra.storage import BlobStore

logger = logging.getLogger(__name__)

BLOB_COPY = "blob_copy"
ABSENT = "absent"


@dataclass(frozen=True)
class PendingCopy:
    id: str
    kind: str
    target_path: str | None
    payload: dict[str, Any]
    attempts: int
    created_at: str
    last_error: str | None
    # sha256 of the target when the copy was queued, ABSENT, or None if unknown
    baseline: str | None = None


@dataclass(frozen=True)
class ReplayReport:
    applied: list[str]
    failed: list[str]
    superseded: list[str] = field(default_factory=list)


# A handler returns False when the copy no longer applies (superseded).
Handler = Callable[[PendingCopy], bool]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _copy_id(kind: str, key: str | None) -> str:
    if not key:
        return uuid.uuid4().hex
    return hashlib.sha256(f"{kind}:{key}".encode("utf-8")).hexdigest()[:32]


class ReplicationQueue:
    """Pending copies whose write failed after the canonical copy landed.

    Entries are blobs under ``system/replication/pending/``. There is at most
    one entry per (kind, key); queueing again for the same target replaces the
    older entry. A ``blob_copy`` is only replayed while its target still holds
    what it held when the copy was queued, so a later successful write is
    never overwritten by an older payload.
    """

    def __init__(self, blobs: BlobStore) -> None:
        self._blobs = blobs

    def _fingerprint(self, path: str) -> str:
        try:
            return hashlib.sha256(self._blobs.get(path)).hexdigest()
        except BlobNotFound:
            return ABSENT

    def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        target_path: str | None = None,
        key: str | None = None,
    ) -> str | None:
        copy_id = _copy_id(kind, key or target_path)
        baseline = None
        if kind == BLOB_COPY and target_path:
            try:
                baseline = self._fingerprint(target_path)
            except StorageError as e:
                logger.warning("could not read %s before queueing a copy: %s", target_path, e)
        record = {
            "id": copy_id,
            "kind": kind,
            "targetPath": target_path,
            "payload": payload,
            "attempts": 0,
            "createdAt": utc_now_iso(),
            "lastError": None,
            "baseline": baseline,
        }
        try:
            write_json(self._blobs, paths.replication_pending(copy_id), record)
        except StorageError as e:
            logger.error("could not queue %s copy for %s: %s", kind, target_path, e)
            return None
        return copy_id

    def list_pending(self) -> list[PendingCopy]:
        out: list[PendingCopy] = []
        for name in self._blobs.list_by_prefix(paths.replication_prefix()):
            if not name.endswith(".json"):
                continue
            try:
                r = read_json(self._blobs, name)
            except BlobNotFound:
                continue
            out.append(
                PendingCopy(
                    id=str(r["id"]),
                    kind=str(r["kind"]),
                    target_path=r.get("targetPath"),
                    payload=dict(r.get("payload") or {}),
                    attempts=int(r.get("attempts") or 0),
                    created_at=str(r.get("createdAt") or ""),
                    last_error=r.get("lastError"),
                    baseline=r.get("baseline"),
                )
            )
        return sorted(out, key=lambda p: (p.created_at, p.id))

    def mark_succeeded(self, copy_id: str) -> None:
        try:
            self._blobs.delete(paths.replication_pending(copy_id))
        except BlobNotFound:
            pass

    def mark_failed(self, pending: PendingCopy, error: str) -> None:
        write_json(
            self._blobs,
            paths.replication_pending(pending.id),
            {
                "id": pending.id,
                "kind": pending.kind,
                "targetPath": pending.target_path,
                "payload": pending.payload,
                "attempts": pending.attempts + 1,
                "createdAt": pending.created_at,
                "lastError": error,
                "baseline": pending.baseline,
            },
        )

    def replay(self, handlers: dict[str, Handler] | None = None) -> ReplayReport:
        table: dict[str, Handler] = {BLOB_COPY: self._apply_blob_copy}
        table.update(handlers or {})
        report = ReplayReport(applied=[], failed=[])
        for pending in self.list_pending():
            handler = table.get(pending.kind)
            if handler is None:
                logger.warning("no handler for pending copy kind %s (%s)", pending.kind, pending.id)
                report.failed.append(pending.id)
                continue
            try:
                applied = handler(pending)
            except FabricError as e:
                logger.warning("replay of %s failed: %s", pending.id, e)
                try:
                    self.mark_failed(pending, str(e))
                except StorageError as mark_err:
                    logger.error("could not update pending copy %s: %s", pending.id, mark_err)
                report.failed.append(pending.id)
                continue
            self.mark_succeeded(pending.id)
            (report.applied if applied else report.superseded).append(pending.id)
        return report

    def _apply_blob_copy(self, pending: PendingCopy) -> bool:
        if not pending.target_path:
            raise StorageError(f"pending copy {pending.id} has no target path")
        if pending.baseline is not None and self._fingerprint(pending.target_path) != pending.baseline:
            logger.info("pending copy %s dropped: %s was written since it was queued", pending.id, pending.target_path)
            return False
        write_json(self._blobs, pending.target_path, pending.payload)
        return True
