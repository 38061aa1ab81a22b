import hashlib
import json
from typing import Any

from creation_rights.domain.errors import CorruptDocument
from creation_rights.infra.storage import BlobStore

JSON_CONTENT_TYPE = "application/json"


def canonical_json_dumps(obj: Any) -> str:
    """Key-sorted compact JSON, so two copies of a document compare by content."""
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def content_hash_sha256(obj: Any) -> str:
    payload = canonical_json_dumps(obj).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def dump_bytes(obj: Any) -> bytes:
    return json.dumps(obj, ensure_ascii=False, indent=2).encode("utf-8")


def read_json(blobs: BlobStore, path: str) -> Any:
    raw = blobs.get(path)
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptDocument(path, str(e)) from e


def write_json(blobs: BlobStore, path: str, obj: Any) -> None:
    blobs.put(path, dump_bytes(obj), JSON_CONTENT_TYPE)
