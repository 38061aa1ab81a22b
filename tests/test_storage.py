from pathlib import Path

import pytest

from creation_rights.domain.errors import BlobNotFound, StorageError, TransientStorageError
from creation_rights.infra.retry import RetryingBlobStore, call_with_retries
from creation_rights.infra.storage import LocalBlobStore


def test_put_then_get_roundtrips_bytes_and_content_type(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    store.put("users/alice/profile/info.json", b'{"a": 1}', "application/json")

    assert store.get("users/alice/profile/info.json") == b'{"a": 1}'
    assert store.exists("users/alice/profile/info.json")
    info = store.info("users/alice/profile/info.json")
    assert info.size == 8
    assert info.content_type == "application/json"


def test_put_overwrites_in_place(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    store.put("a/b.txt", b"one")
    store.put("a/b.txt", b"two")

    assert store.get("a/b.txt") == b"two"
    assert list((tmp_path / "tmp").iterdir()) == []


def test_missing_blob_raises_not_found(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    with pytest.raises(BlobNotFound):
        store.get("nope.json")
    with pytest.raises(BlobNotFound):
        store.delete("nope.json")
    assert store.exists("nope.json") is False


def test_list_by_prefix_respects_separator(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)
    store.put("Creations/alice/CR-1/file", b"x")
    store.put("Creations/alice/CR-10/file", b"y")

    assert store.list_by_prefix("Creations/alice/CR-1/") == ["Creations/alice/CR-1/file"]
    assert store.list_by_prefix("Creations/alice/") == [
        "Creations/alice/CR-1/file",
        "Creations/alice/CR-10/file",
    ]
    assert store.list_by_prefix("Creations/bob/") == []


@pytest.mark.parametrize("bad", ["", "/abs", "a/../b", "a//b", "folder/"])
def test_rejects_paths_outside_the_root(tmp_path: Path, bad: str) -> None:
    store = LocalBlobStore(tmp_path)

    with pytest.raises(StorageError):
        store.put(bad, b"x")


def test_public_url_points_at_the_serving_route(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path)

    assert store.public_url("Creations/alice/CR-1/file") == "/api/users/alice/uploads/CR-1/download"
    with pytest.raises(StorageError):
        store.public_url("system/replication/pending/x.json")


def test_call_with_retries_recovers_from_transient_errors() -> None:
    attempts: list[int] = []
    delays: list[float] = []

    def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientStorageError("busy")
        return "ok"

    assert call_with_retries(flaky, attempts=3, base_delay=0.1, sleep=delays.append) == "ok"
    assert len(attempts) == 3
    assert len(delays) == 2
    assert delays[1] > delays[0]


def test_call_with_retries_does_not_retry_permanent_errors() -> None:
    attempts: list[int] = []

    def broken() -> None:
        attempts.append(1)
        raise StorageError("permission denied")

    with pytest.raises(StorageError):
        call_with_retries(broken, attempts=3, sleep=lambda _: None)
    assert len(attempts) == 1


def test_retrying_store_gives_up_after_the_cap(tmp_path: Path) -> None:
    class AlwaysBusy(LocalBlobStore):
        def __init__(self, root: Path) -> None:
            super().__init__(root)
            self.puts = 0

        def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
            self.puts += 1
            raise TransientStorageError("503")

    inner = AlwaysBusy(tmp_path)
    store = RetryingBlobStore(inner, attempts=3, base_delay=0.0, sleep=lambda _: None)

    with pytest.raises(TransientStorageError):
        store.put("x.json", b"{}")
    assert inner.puts == 3
