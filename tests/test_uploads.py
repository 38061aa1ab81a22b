import io
import json

import fitz  # PyMuPDF
import pytest
from PIL import Image

from conftest import FlakyBlobStore
from creation_rights.domain.enums import OutcomeStatus
from creation_rights.domain.errors import NotFound, ScaffoldError, UploadRejected, ValidationError
from creation_rights.features.uploads.service import UploadPipeline
from creation_rights.infra import paths
from creation_rights.infra.storage import LocalBlobStore


def _png(size: tuple[int, int] = (640, 480)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(out, format="PNG")
    return out.getvalue()


def _pdf() -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "A short story.")
    data = doc.tobytes()
    doc.close()
    return data


def test_image_upload_writes_content_thumbnail_and_sidecar(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)
    data = _png()

    result = pipeline.upload("alice", data, "image/png", original_name="red.png", creation_rights_id="CR-1")

    assert result.status == OutcomeStatus.succeeded
    assert result.stage == "complete"
    assert blobs.get(paths.asset_object("alice", "CR-1")) == data
    with Image.open(io.BytesIO(blobs.get(paths.asset_thumbnail("alice", "CR-1")))) as thumb:
        assert thumb.format == "JPEG"
        assert max(thumb.size) == 320
    sidecar = json.loads(blobs.get(paths.asset_sidecar("alice", "CR-1")))
    assert sidecar["originalName"] == "red.png"
    assert sidecar["size"] == len(data)
    assert sidecar["sha256"] == result.value["sha256"]
    assert result.value["thumbnailUrl"] is not None
    for placeholder in paths.asset_scaffold("alice", "CR-1"):
        assert blobs.exists(placeholder)


def test_pdf_upload_gets_a_first_page_thumbnail(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)

    result = pipeline.upload("alice", _pdf(), "application/pdf", creation_rights_id="CR-2")

    assert result.ok
    assert blobs.exists(paths.asset_thumbnail("alice", "CR-2"))


def test_audio_upload_has_no_thumbnail(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)

    result = pipeline.upload("alice", b"ID3\x00fake", "audio/mpeg", creation_rights_id="CR-3")

    assert result.status == OutcomeStatus.succeeded
    assert result.value["thumbnailUrl"] is None
    assert not blobs.exists(paths.asset_thumbnail("alice", "CR-3"))


def test_video_uses_the_client_supplied_frame(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)

    pipeline.upload("alice", b"\x00\x00\x00\x18ftypmp42", "video/mp4", creation_rights_id="CR-4", client_thumbnail=_png())

    assert blobs.exists(paths.asset_thumbnail("alice", "CR-4"))


def test_generates_a_rights_id_when_none_is_given(blobs: LocalBlobStore) -> None:
    result = UploadPipeline(blobs).upload("alice", b"hello", "text/plain")

    assert result.value["creationRightsId"].startswith("CR-")
    assert blobs.exists(paths.asset_object("alice", result.value["creationRightsId"]))


@pytest.mark.parametrize(
    "data, content_type",
    [(b"MZ\x90", "application/x-msdownload"), (b"", "text/plain"), (b"x" * 11, "text/plain")],
)
def test_rejections_happen_before_any_write(flaky: FlakyBlobStore, data: bytes, content_type: str) -> None:
    pipeline = UploadPipeline(flaky, max_bytes=10)

    with pytest.raises(UploadRejected):
        pipeline.upload("alice", data, content_type, creation_rights_id="CR-1")

    assert flaky.calls == []


def test_scaffold_failure_stops_before_content(flaky: FlakyBlobStore) -> None:
    flaky.fail_on = lambda op, path: op == "put" and paths.is_placeholder(path)

    with pytest.raises(ScaffoldError):
        UploadPipeline(flaky).upload("alice", b"hello", "text/plain", creation_rights_id="CR-1")

    assert ("put", paths.asset_object("alice", "CR-1")) not in flaky.calls


def test_content_failure_fails_the_upload(flaky: FlakyBlobStore, blobs: LocalBlobStore) -> None:
    flaky.fail_on = lambda op, path: op == "put" and path.endswith("/file")

    result = UploadPipeline(flaky).upload("alice", b"hello", "text/plain", creation_rights_id="CR-1")

    assert result.status == OutcomeStatus.failed
    assert result.stage == "scaffold_ensured"
    assert not blobs.exists(paths.asset_object("alice", "CR-1"))
    assert not blobs.exists(paths.asset_sidecar("alice", "CR-1"))


def test_sidecar_failure_is_not_fatal(flaky: FlakyBlobStore, blobs: LocalBlobStore) -> None:
    flaky.fail_on = lambda op, path: op == "put" and path.endswith("upload-metadata.json")

    result = UploadPipeline(flaky).upload("alice", b"hello", "text/plain", creation_rights_id="CR-1")

    assert result.status == OutcomeStatus.partial
    assert result.ok
    assert blobs.get(paths.asset_object("alice", "CR-1")) == b"hello"
    assert [g.copy for g in result.gaps] == ["upload_sidecar"]


def test_abandon_then_purge(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)
    pipeline.upload("alice", b"hello", "text/plain", creation_rights_id="CR-1")

    with pytest.raises(ValidationError):
        pipeline.purge_orphan("alice", "CR-1", referenced=False)

    pipeline.abandon("alice", "CR-1", reason="closed the tab")
    assert pipeline.describe("alice", "CR-1")["orphaned"] is True

    with pytest.raises(ValidationError):
        pipeline.purge_orphan("alice", "CR-1", referenced=True)

    deleted = pipeline.purge_orphan("alice", "CR-1", referenced=False)
    assert paths.asset_object("alice", "CR-1") in deleted
    assert blobs.list_by_prefix(paths.asset_folder("alice", "CR-1")) == []
    with pytest.raises(NotFound):
        pipeline.describe("alice", "CR-1")


def test_abandon_unknown_upload(blobs: LocalBlobStore) -> None:
    with pytest.raises(NotFound):
        UploadPipeline(blobs).abandon("alice", "CR-404")


def test_list_assets_skips_placeholders(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)
    pipeline.upload("alice", b"hello", "text/plain", creation_rights_id="CR-1")

    names = [a["path"] for a in pipeline.list_assets("alice", "CR-1")]

    assert names == [paths.asset_object("alice", "CR-1"), paths.asset_sidecar("alice", "CR-1")]


def test_oversized_image_dimensions_skip_the_thumbnail(blobs: LocalBlobStore, monkeypatch: pytest.MonkeyPatch) -> None:
    data = _png((100, 100))
    # 10_000 pixels is more than twice the limit, so Pillow refuses to open it.
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    result = UploadPipeline(blobs).upload("alice", data, "image/png", creation_rights_id="CR-9")

    assert result.status == OutcomeStatus.succeeded
    assert result.value["thumbnailUrl"] is None
    assert not blobs.exists(paths.asset_thumbnail("alice", "CR-9"))
    assert json.loads(blobs.get(paths.asset_sidecar("alice", "CR-9")))["size"] == len(data)


def test_broken_pdf_skips_the_thumbnail(blobs: LocalBlobStore) -> None:
    result = UploadPipeline(blobs).upload("alice", b"%PDF-1.4 not really", "application/pdf", creation_rights_id="CR-8")

    assert result.status == OutcomeStatus.succeeded
    assert result.value["thumbnailUrl"] is None


def test_reupload_clears_the_orphan_marker(blobs: LocalBlobStore) -> None:
    pipeline = UploadPipeline(blobs)
    pipeline.upload("alice", b"first", "text/plain", creation_rights_id="CR-1")
    pipeline.abandon("alice", "CR-1")

    pipeline.upload("alice", b"second", "text/plain", creation_rights_id="CR-1")

    described = pipeline.describe("alice", "CR-1")
    assert described["orphaned"] is False
    assert blobs.get(paths.asset_object("alice", "CR-1")) == b"second"
