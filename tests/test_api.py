import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import FakePaymentProcessor
from creation_rights.config import AppConfig
from creation_rights.infra.storage import LocalBlobStore
from creation_rights.main import create_app

ADMIN = {"X-Admin-Secret": "test-secret"}


@pytest.fixture
def client(tmp_path: Path, payments: FakePaymentProcessor) -> TestClient:
    cfg = AppConfig(data_dir=tmp_path, admin_secret="test-secret", max_upload_bytes=1024 * 1024)
    app = create_app(cfg, blobs=LocalBlobStore(tmp_path / "blobs"), payments=payments)
    return TestClient(app)


def _creation(cid: str = "CR-1") -> dict:
    return {
        "title": "Sunset",
        "type": "Image",
        "status": "published",
        "metadata": {"creationRightsId": cid, "photographer": "Alice", "rightsHolders": ["Alice"]},
    }


def test_health(client: TestClient) -> None:
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_session_and_profile(client: TestClient) -> None:
    resp = client.post("/api/users/session", json={"user_id": "uid-1", "email": "alice@example.com"})
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert resp.json()["created"] is True

    resp = client.put(f"/api/users/{user}/profile", json={"bio": "Painter"})
    assert resp.status_code == 200
    assert client.get(f"/api/users/{user}/profile").json()["bio"] == "Painter"
    assert client.get("/api/users/nobody/profile").status_code == 404

    client.put(f"/api/users/{user}/folders", json=[{"name": "Portfolio"}])
    assert client.get(f"/api/users/{user}/folders").json() == [{"name": "Portfolio"}]
    assert [p["id"] for p in client.get("/api/users/search", params={"q": "alice"}).json()["items"]] == [user]


def test_creation_and_license_flow(client: TestClient, payments: FakePaymentProcessor) -> None:
    resp = client.put("/api/users/alice/creations/CR-1", json=_creation())
    assert resp.status_code == 200
    assert resp.json()["status"] == "succeeded"

    assert [c["id"] for c in client.get("/api/users/alice/creations").json()["items"]] == ["CR-1"]
    assert client.get("/api/users/alice/creations/CR-1").json()["title"] == "Sunset"
    assert [c["id"] for c in client.get("/api/creations/published").json()["items"]] == ["CR-1"]

    purchase = {
        "creationId": "CR-1",
        "transactionId": "pi_123",
        "creator": "alice",
        "purchaserEmail": "bob@example.com",
        "amount": 500,
    }
    assert client.post("/api/licenses", json=purchase).status_code == 402

    payments.add("pi_123", amount=500)
    resp = client.post("/api/licenses", json=purchase)
    assert resp.status_code == 200
    license_id = resp.json()["value"]["id"]

    listed = client.get("/api/users/alice/creations/CR-1/licenses").json()["items"]
    assert [lic["id"] for lic in listed] == [license_id]
    bobs = client.get("/api/users/bob@example.com/licenses").json()["items"]
    assert [lic["id"] for lic in bobs] == [license_id]
    assert client.get("/api/users/alice/creations/CR-1/licenses/audit").json()["anomalies"] == []
    assert client.get("/api/users/alice/creations/verify").json()["anomalies"] == []

    resp = client.post("/api/users/alice/creations/CR-1/licenses/pi_123/revoke")
    assert resp.json()["value"]["status"] == "revoked"


def test_invalid_creation_is_422(client: TestClient) -> None:
    body = _creation()
    del body["metadata"]["photographer"]

    resp = client.put("/api/users/alice/creations/CR-1", json=body)

    assert resp.status_code == 422
    assert resp.json()["detail"]["issues"][0]["path"] == "metadata.photographer"


def test_post_creation_generates_an_id(client: TestClient) -> None:
    body = _creation()
    del body["metadata"]["creationRightsId"]

    resp = client.post("/api/users/alice/creations", json=body)

    assert resp.status_code == 200
    value = resp.json()["value"]
    assert value["id"].startswith("CR-")
    assert value["metadata"]["creationRightsId"] == value["id"]


def test_delete_creation(client: TestClient) -> None:
    client.put("/api/users/alice/creations/CR-1", json=_creation())

    assert client.delete("/api/users/alice/creations/CR-1").status_code == 200
    assert client.get("/api/users/alice/creations/CR-1").status_code == 404


def test_upload_flow(client: TestClient) -> None:
    out = io.BytesIO()
    Image.new("RGB", (50, 50)).save(out, format="PNG")

    resp = client.post(
        "/api/users/alice/uploads",
        data={"creationRightsId": "CR-9"},
        files={"file": ("pic.png", out.getvalue(), "image/png")},
    )
    assert resp.status_code == 200
    assert resp.json()["value"]["creationRightsId"] == "CR-9"

    described = client.get("/api/users/alice/uploads/CR-9").json()
    assert described["sidecar"]["originalName"] == "pic.png"

    rejected = client.post("/api/users/alice/uploads", files={"file": ("x.exe", b"MZ", "application/x-msdownload")})
    assert rejected.status_code == 422

    assert client.post("/api/users/alice/uploads/CR-9/abandon").status_code == 200
    purged = client.post("/api/users/alice/uploads/CR-9/purge").json()["deleted"]
    assert "Creations/alice/CR-9/file" in purged


def test_uploaded_asset_urls_are_served(client: TestClient) -> None:
    out = io.BytesIO()
    Image.new("RGB", (50, 50), (0, 90, 200)).save(out, format="PNG")
    data = out.getvalue()

    value = client.post(
        "/api/users/alice/uploads",
        data={"creationRightsId": "CR-9"},
        files={"file": ("pic.png", data, "image/png")},
    ).json()["value"]

    content = client.get(value["url"])
    assert content.status_code == 200
    assert content.content == data
    assert content.headers["content-type"] == "image/png"
    thumb = client.get(value["thumbnailUrl"])
    assert thumb.headers["content-type"] == "image/jpeg"
    for asset in client.get("/api/users/alice/uploads/CR-9").json()["assets"]:
        assert client.get(asset["url"]).status_code == 200

    assert client.get("/api/users/alice/uploads/CR-404/download").status_code == 404
    assert client.get("/api/users/alice/uploads/CR-9/files/.keep").status_code == 404


def test_profile_photo_url_is_served(client: TestClient) -> None:
    user = client.post("/api/users/session", json={"user_id": "uid-1", "email": "alice@example.com"}).json()["user"]
    out = io.BytesIO()
    Image.new("RGB", (20, 20)).save(out, format="JPEG")

    resp = client.post(f"/api/users/{user}/profile-photo", files={"file": ("me.jpg", out.getvalue(), "image/jpeg")})
    url = resp.json()["value"]["photoUrl"]

    photo = client.get(url)
    assert photo.status_code == 200
    assert photo.content == out.getvalue()
    assert client.get(f"/api/users/{user}/profile-photo/info.json").status_code == 404


def test_chat_flow(client: TestClient) -> None:
    participants = [{"email": "alice@example.com"}, {"email": "bob@example.com"}]
    cid = client.post("/api/chats", json={"participants": participants}).json()["value"]["id"]
    again = client.post("/api/chats", json={"participants": participants[::-1]}).json()["value"]["id"]
    assert again == cid

    resp = client.post(f"/api/chats/{cid}/messages", json={"sender": "alice@example.com", "content": "hi"})
    assert resp.status_code == 200
    assert client.get("/api/participants/bob@example.com/unread").json()["unread"] == 1

    chats = client.get("/api/participants/bob@example.com/chats").json()["items"]
    assert [(c["id"], c["unread"]) for c in chats] == [(cid, 1)]

    client.post(f"/api/chats/{cid}/read", json={"participant": "bob@example.com"})
    assert client.get("/api/participants/bob@example.com/unread").json()["unread"] == 0
    assert [m["content"] for m in client.get(f"/api/chats/{cid}/messages").json()["items"]] == ["hi"]
    assert client.get("/api/chats/missing/messages").status_code == 404


def test_admin_endpoints_need_the_secret(client: TestClient) -> None:
    assert client.post("/api/admin/replication/replay").status_code == 401
    assert client.post("/api/admin/chats/merge-duplicates", headers={"X-Admin-Secret": "wrong"}).status_code == 401

    resp = client.post("/api/admin/replication/replay", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json() == {"applied": [], "failed": [], "superseded": []}
    assert client.post("/api/admin/chats/merge-duplicates", headers=ADMIN).json() == {"merged": []}

    client.put("/api/users/alice/creations/CR-1", json=_creation())
    rebuilt = client.post("/api/admin/users/alice/creations/rebuild", headers=ADMIN).json()
    assert rebuilt["count"] == 1
