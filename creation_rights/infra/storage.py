import json
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from creation_rights.domain.errors import BlobNotFound, StorageError
from creation_rights.infra import paths

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class BlobInfo:
    path: str
    size: int
    content_type: str
    updated_at: str | None


class BlobStore(Protocol):
    def get(self, path: str) -> bytes: ...

    def put(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None: ...

    def exists(self, path: str) -> bool: ...

    def delete(self, path: str) -> None: ...

    def list_by_prefix(self, prefix: str) -> list[str]: ...

    def info(self, path: str) -> BlobInfo: ...

    def public_url(self, path: str) -> str: ...


class LocalBlobStore:
    """Filesystem-backed object store.

    Objects live under ``root/objects/<path>``; content types under
    ``root/meta/<path>.json``. Writes go through a temp file and ``os.replace``
    so readers never observe a half-written object.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._objects = root / "objects"
        self._meta = root / "meta"
        self._tmp = root / "tmp"

    def _resolve(self, base: Path, path: str) -> Path:
        if not path or path.startswith("/") or path.endswith("/"):
            raise StorageError(f"invalid object path: {path!r}")
        parts = path.split("/")
        if any(p in ("", ".", "..") for p in parts):
            raise StorageError(f"invalid object path: {path!r}")
        return base.joinpath(*parts)

    def _write_atomic(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        self._tmp.mkdir(parents=True, exist_ok=True)
        tmp = self._tmp / uuid.uuid4().hex
        tmp.write_bytes(data)
        os.replace(tmp, target)

    def get(self, path: str) -> bytes:
        target = self._resolve(self._objects, path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            raise BlobNotFound(path)
        except OSError as e:
            raise StorageError(f"read failed for {path}: {e}") from e

    def put(self, path: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        target = self._resolve(self._objects, path)
        meta = self._resolve(self._meta, path + ".json")
        try:
            self._write_atomic(target, data)
            self._write_atomic(meta, json.dumps({"contentType": content_type}).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"write failed for {path}: {e}") from e

    def exists(self, path: str) -> bool:
        return self._resolve(self._objects, path).is_file()

    def delete(self, path: str) -> None:
        target = self._resolve(self._objects, path)
        try:
            target.unlink()
        except FileNotFoundError:
            raise BlobNotFound(path)
        except OSError as e:
            raise StorageError(f"delete failed for {path}: {e}") from e
        self._resolve(self._meta, path + ".json").unlink(missing_ok=True)

    def list_by_prefix(self, prefix: str) -> list[str]:
        if not self._objects.exists():
            return []
        # Walk only the deepest directory the prefix fully names.
        head = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = self._objects.joinpath(*head.split("/")) if head else self._objects
        if not start.is_dir():
            return []
        names: list[str] = []
        for p in start.rglob("*"):
            if p.is_file():
                name = p.relative_to(self._objects).as_posix()
                if name.startswith(prefix):
                    names.append(name)
        return sorted(names)

    def info(self, path: str) -> BlobInfo:
        target = self._resolve(self._objects, path)
        try:
            st = target.stat()
        except FileNotFoundError:
            raise BlobNotFound(path)
        content_type = DEFAULT_CONTENT_TYPE
        meta = self._resolve(self._meta, path + ".json")
        if meta.is_file():
            content_type = json.loads(meta.read_text("utf-8")).get("contentType", content_type)
        updated = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat()
        return BlobInfo(path=path, size=st.st_size, content_type=content_type, updated_at=updated)

    def public_url(self, path: str) -> str:
        """Local objects have no URL of their own; they are served by the API."""
        route = paths.public_route(path)
        if route is None:
            raise StorageError(f"no route serves {path}")
        return route
