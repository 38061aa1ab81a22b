"""Collections stored as one JSON array blob per owner, plus per-item mirrors.

``upsert`` and ``remove`` are whole-document read-modify-write operations on the
aggregate blob. Two concurrent writers for the same owner race and the last one
wins; the per-item mirrors are written independently and stay correct, which is
why ``read_item`` prefers them and ``verify``/``rebuild_from_mirrors`` exist.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from creation_rights.domain.enums import AnomalyKind
from creation_rights.domain.errors import BlobNotFound, CorruptDocument, ScaffoldError, StorageError
from creation_rights.domain.results import ConcurrencyAnomaly, ReplicationGap, WriteOutcome
from creation_rights.infra import paths
from creation_rights.infra.jsonblob import content_hash_sha256, read_json, write_json
from creation_rights.infra.replication import BLOB_COPY, ReplicationQueue
from creation_rights.infra.storage import BlobStore

logger = logging.getLogger(__name__)

Item = dict[str, Any]


@dataclass(frozen=True)
class CollectionLayout:
    name: str
    aggregate_path: Callable[[str], str]
    mirror_path: Callable[[str, str], str] | None = None
    mirror_prefix: Callable[[str], str] | None = None
    mirror_suffix: str = ".json"
    scaffold: Callable[[str], list[str]] | None = None
    id_field: str = "id"
    mirror_key: Callable[[Item], str | None] | None = None


def ensure_placeholders(blobs: BlobStore, placeholder_paths: list[str]) -> list[str]:
    """Create missing placeholder objects; returns the ones written.

    Safe to call repeatedly and concurrently: a redundant write of an empty
    placeholder is harmless.
    """
    created: list[str] = []
    for p in placeholder_paths:
        try:
            if blobs.exists(p):
                continue
            blobs.put(p, b"", "text/plain")
        except StorageError as e:
            raise ScaffoldError(f"could not create placeholder {p}: {e}") from e
        created.append(p)
    return created


class CollectionStore:
    def __init__(self, blobs: BlobStore, layout: CollectionLayout, queue: ReplicationQueue | None = None) -> None:
        self._blobs = blobs
        self._layout = layout
        self._queue = queue

    def _item_id(self, item: Item) -> str | None:
        v = item.get(self._layout.id_field)
        return str(v) if v else None

    def _mirror_key(self, item: Item) -> str | None:
        if self._layout.mirror_key is not None:
            return self._layout.mirror_key(item)
        return self._item_id(item)

    def ensure_scaffold(self, owner_id: str) -> list[str]:
        if self._layout.scaffold is None:
            return []
        return ensure_placeholders(self._blobs, self._layout.scaffold(owner_id))

    def ensure_collection(self, owner_id: str) -> bool:
        path = self._layout.aggregate_path(owner_id)
        if self._blobs.exists(path):
            return False
        write_json(self._blobs, path, [])
        return True

    def read_all(self, owner_id: str) -> list[Item]:
        path = self._layout.aggregate_path(owner_id)
        try:
            data = read_json(self._blobs, path)
        except BlobNotFound:
            return []
        if not isinstance(data, list):
            raise CorruptDocument(path, "expected a JSON array")
        return [i for i in data if isinstance(i, dict)]

    def read_item(self, owner_id: str, item_id: str) -> Item | None:
        if self._layout.mirror_path is not None:
            try:
                mirrored = read_json(self._blobs, self._layout.mirror_path(owner_id, item_id))
            except BlobNotFound:
                mirrored = None
            if isinstance(mirrored, dict) and self._item_id(mirrored) == item_id:
                return mirrored
        for item in self.read_all(owner_id):
            if self._item_id(item) == item_id:
                return item
        return None

    def upsert(self, owner_id: str, item: Item) -> WriteOutcome:
        outcomes = self.upsert_many(owner_id, [item])
        return outcomes[0]

    def upsert_many(self, owner_id: str, items: list[Item]) -> list[WriteOutcome]:
        """Replace-or-append every item in a single read-modify-write of the aggregate.

        Items are whole documents, not patches. The aggregate write is the
        canonical one and raises on failure; mirror failures become gaps.
        """
        for item in items:
            if not self._item_id(item):
                raise ValueError(f"{self._layout.name} item is missing '{self._layout.id_field}'")
        current = self.read_all(owner_id)
        index = {self._item_id(i): n for n, i in enumerate(current)}
        created: list[bool] = []
        for item in items:
            key = self._item_id(item)
            if key in index:
                current[index[key]] = item
                created.append(False)
            else:
                index[key] = len(current)
                current.append(item)
                created.append(True)
        write_json(self._blobs, self._layout.aggregate_path(owner_id), current)

        return [
            WriteOutcome(item=item, created=was_created, gaps=self._write_mirror(owner_id, item))
            for item, was_created in zip(items, created)
        ]

    def remove(self, owner_id: str, item_id: str) -> WriteOutcome:
        current = self.read_all(owner_id)
        kept = [i for i in current if self._item_id(i) != item_id]
        removed = next((i for i in current if self._item_id(i) == item_id), None)
        if len(kept) != len(current):
            write_json(self._blobs, self._layout.aggregate_path(owner_id), kept)

        gaps: list[ReplicationGap] = []
        if self._layout.mirror_path is not None:
            key = self._mirror_key(removed) if removed else item_id
            mirror = self._layout.mirror_path(owner_id, key or item_id)
            try:
                self._blobs.delete(mirror)
            except BlobNotFound:
                pass
            except StorageError as e:
                logger.warning("%s mirror delete failed for %s: %s", self._layout.name, mirror, e)
                gaps.append(ReplicationGap(copy=f"{self._layout.name}_mirror", path=mirror, reason=str(e)))
        return WriteOutcome(item=removed, created=False, gaps=gaps)

    def _write_mirror(self, owner_id: str, item: Item) -> list[ReplicationGap]:
        if self._layout.mirror_path is None:
            return []
        key = self._mirror_key(item)
        if not key:
            return []
        mirror = self._layout.mirror_path(owner_id, key)
        try:
            write_json(self._blobs, mirror, item)
        except StorageError as e:
            logger.warning("%s mirror write failed for %s: %s", self._layout.name, mirror, e)
            queued = False
            if self._queue is not None:
                queued = self._queue.enqueue(BLOB_COPY, item, target_path=mirror) is not None
            return [ReplicationGap(copy=f"{self._layout.name}_mirror", path=mirror, reason=str(e), queued=queued)]
        return []

    def read_mirrors(self, owner_id: str) -> dict[str, Item]:
        """Every mirror blob for ``owner_id``, keyed by item id."""
        if self._layout.mirror_path is None or self._layout.mirror_prefix is None:
            return {}
        found: dict[str, Item] = {}
        for name in self._blobs.list_by_prefix(self._layout.mirror_prefix(owner_id)):
            if not name.endswith(self._layout.mirror_suffix):
                continue
            try:
                doc = read_json(self._blobs, name)
            except BlobNotFound:
                continue
            except CorruptDocument as e:
                logger.warning("skipping corrupt %s mirror: %s", self._layout.name, e)
                continue
            if not isinstance(doc, dict):
                continue
            item_id = self._item_id(doc)
            key = self._mirror_key(doc)
            if item_id and key and self._layout.mirror_path(owner_id, key) == name:
                found[item_id] = doc
        return found

    def verify(self, owner_id: str) -> list[ConcurrencyAnomaly]:
        """Report where the aggregate and the mirrors disagree. Changes nothing."""
        if self._layout.mirror_path is None:
            return []
        aggregate = {self._item_id(i): i for i in self.read_all(owner_id)}
        mirrors = self.read_mirrors(owner_id)
        anomalies: list[ConcurrencyAnomaly] = []
        for item_id, item in aggregate.items():
            if item_id is None:
                continue
            key = self._mirror_key(item) or item_id
            mirror_path = self._layout.mirror_path(owner_id, key)
            mirrored = mirrors.get(item_id)
            if mirrored is None:
                anomalies.append(ConcurrencyAnomaly(AnomalyKind.missing_mirror, item_id, mirror_path))
            elif content_hash_sha256(mirrored) != content_hash_sha256(item):
                anomalies.append(
                    ConcurrencyAnomaly(AnomalyKind.diverged, item_id, mirror_path, "aggregate and mirror differ")
                )
        for item_id, doc in mirrors.items():
            if item_id not in aggregate:
                key = self._mirror_key(doc) or item_id
                anomalies.append(
                    ConcurrencyAnomaly(
                        AnomalyKind.missing_from_aggregate,
                        item_id,
                        self._layout.mirror_path(owner_id, key),
                        "mirror exists but the aggregate does not list it",
                    )
                )
        return anomalies

    def rebuild_from_mirrors(self, owner_id: str) -> list[Item]:
        """Rewrite the aggregate from the mirrors (mirror wins on conflict)."""
        mirrors = self.read_mirrors(owner_id)
        rebuilt: list[Item] = []
        seen: set[str] = set()
        for item in self.read_all(owner_id):
            item_id = self._item_id(item)
            if item_id is None or item_id in seen:
                continue
            seen.add(item_id)
            rebuilt.append(mirrors.get(item_id, item))
        for item_id in sorted(set(mirrors) - seen):
            rebuilt.append(mirrors[item_id])
        write_json(self._blobs, self._layout.aggregate_path(owner_id), rebuilt)
        return rebuilt


def creations_layout() -> CollectionLayout:
    def _mirror_key(item: Item) -> str | None:
        meta = item.get("metadata") or {}
        crid = meta.get("creationRightsId") if isinstance(meta, dict) else None
        return str(crid or item.get("id") or "") or None

    return CollectionLayout(
        name="creation",
        aggregate_path=paths.creations_collection,
        mirror_path=paths.creation_mirror,
        mirror_prefix=paths.creation_mirrors_prefix,
        mirror_suffix="/metadata.json",
        scaffold=paths.user_scaffold,
        mirror_key=_mirror_key,
    )


def conversations_layout() -> CollectionLayout:
    return CollectionLayout(
        name="conversation",
        aggregate_path=lambda _owner: paths.conversations_collection(),
        mirror_path=lambda _owner, cid: paths.conversation_mirror(cid),
        mirror_prefix=lambda _owner: paths.chats_prefix(),
        mirror_suffix="/chat.json",
    )


def messages_layout() -> CollectionLayout:
    return CollectionLayout(
        name="message",
        aggregate_path=paths.messages_collection,
        mirror_path=paths.message_mirror,
        mirror_prefix=paths.messages_prefix,
    )
