"""API tests with TestClient: uploads, file access, admin sync and deletion."""

import asyncio
import base64
import json

import pytest
from fastapi.testclient import TestClient

from fileportal.api.deps import (
    get_blob_storage,
    get_eager_manager,
    get_lazy_manager,
    get_metadata_store,
    get_retry_policy,
)
from fileportal.main import app
from fileportal.models.upload_session import UploadVariant
from fileportal.services.chunk_session import ChunkSessionManager, VariantLimits
from fileportal.services.retry import RetryPolicy
from fileportal.services.session_store import BlobSessionStore
from fileportal.services.storage.internal import InternalStorage
from support import auth_headers, build_metadata_store

SMALL = VariantLimits(chunk_size=4, max_file_size=100)


@pytest.fixture
def metadata(tmp_path):
    return build_metadata_store(str(tmp_path / "api.db"))


@pytest.fixture
def users(metadata):
    async def create():
        return {
            "admin": await metadata.create_user("admin", is_admin=True),
            "alice": await metadata.create_user("alice"),
            "bob": await metadata.create_user("bob"),
        }

    return asyncio.run(create())


def _override(storage, metadata, fake_sleep):
    def manager(variant):
        return lambda: ChunkSessionManager(storage, BlobSessionStore(storage), variant, limits=SMALL)

    app.dependency_overrides[get_blob_storage] = lambda: storage
    app.dependency_overrides[get_metadata_store] = lambda: metadata
    app.dependency_overrides[get_retry_policy] = lambda: RetryPolicy(max_attempts=2, delay=0.1, sleep=fake_sleep)
    app.dependency_overrides[get_eager_manager] = manager(UploadVariant.EAGER)
    app.dependency_overrides[get_lazy_manager] = manager(UploadVariant.LAZY)


@pytest.fixture
def client(storage, metadata, fake_sleep):
    """TestClient with in-memory blob storage and a per-test metadata database."""
    _override(storage, metadata, fake_sleep)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin(users):
    return auth_headers(users["admin"], is_admin=True)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def init(client, headers, path="/upload/chunked", size=10, **extra):
    body = {"action": "init", "fileName": "notes.txt", "fileSize": size, "mimeType": "text/plain", **extra}
    r = client.post(path, json=body, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def send_chunk(client, headers, session_id, index, data, path="/upload/chunked"):
    body = {"action": "upload_chunk", "sessionId": session_id, "chunkIndex": index, "chunkData": b64(data)}
    return client.post(path, json=body, headers=headers)


def test_health(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_upload_requires_admin(client, users) -> None:
    r = client.post(
        "/upload/chunked",
        json={"action": "init", "fileName": "a", "fileSize": 1},
        headers=auth_headers(users["alice"]),
    )
    assert r.status_code == 403
    assert r.json() == {"success": False, "error": "Admin access required", "details": ""}


def test_invalid_token_rejected(client) -> None:
    r = client.get("/files", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_unknown_action_rejected_before_dispatch(client, admin) -> None:
    r = client.post("/upload/chunked", json={"action": "explode", "sessionId": "x"}, headers=admin)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert r.json()["error"] == "Invalid request"


def test_lazy_only_action_rejected_on_eager_endpoint(client, admin) -> None:
    session = init(client, admin)
    r = client.post(
        "/upload/chunked",
        json={"action": "get_chunk", "sessionId": session["sessionId"], "chunkIndex": 0},
        headers=admin,
    )
    assert r.status_code == 400


def test_eager_upload_registers_file(client, admin, users) -> None:
    session = init(client, admin, assignedUserIds=[users["alice"]], description="Q3 notes")
    assert session["totalChunks"] == 3
    assert session["chunkSize"] == 4

    sid = session["sessionId"]
    progress = send_chunk(client, admin, sid, 2, b"89").json()
    assert progress == {
        "success": True,
        "message": "Chunk uploaded successfully",
        "sessionId": sid,
        "chunkIndex": 2,
        "uploadedChunks": 1,
        "totalChunks": 3,
    }
    send_chunk(client, admin, sid, 0, b"0123")
    r = send_chunk(client, admin, sid, 1, b"4567")
    assert r.status_code == 200
    done = r.json()
    assert done["fileName"] == "notes.txt"
    assert done["fileSize"] == 10
    assert done["fileKey"].startswith("files/")
    assert done["originalChunks"] == 3

    listed = client.get("/files", headers=auth_headers(users["alice"])).json()["files"]
    assert [(f["id"], f["description"]) for f in listed] == [(done["fileId"], "Q3 notes")]
    assert client.get("/files", headers=auth_headers(users["bob"])).json()["files"] == []

    link = client.get(f"/files/{done['fileId']}/download", headers=auth_headers(users["alice"]))
    assert link.status_code == 200
    assert link.json()["downloadUrl"] == f"memory://{done['fileKey']}?ttl=3600&direction=download"
    denied = client.get(f"/files/{done['fileId']}/download", headers=auth_headers(users["bob"]))
    assert denied.status_code == 404


def test_lazy_upload_combine(client, admin, storage) -> None:
    path = "/upload/lazy"
    sid = init(client, admin, path=path)["sessionId"]
    send_chunk(client, admin, sid, 0, b"0123", path=path)
    send_chunk(client, admin, sid, 1, b"4567", path=path)

    early = client.post("/upload/lazy/combine", json={"sessionId": sid}, headers=admin)
    assert early.status_code == 400
    assert early.json()["error"] == "Not all chunks uploaded"

    chunk = client.post(path, json={"action": "get_chunk", "sessionId": sid, "chunkIndex": 1}, headers=admin)
    assert base64.b64decode(chunk.json()["chunkData"]) == b"4567"
    missing = client.post(path, json={"action": "get_chunk", "sessionId": sid, "chunkIndex": 2}, headers=admin)
    assert missing.status_code == 404

    marked = client.post(path, json={"action": "mark_completed", "sessionId": sid}, headers=admin).json()
    assert marked["status"] == "completed"
    assert marked["uploadedChunks"] == 2

    send_chunk(client, admin, sid, 2, b"89", path=path)
    info = client.post(path, json={"action": "get_session_info", "sessionId": sid}, headers=admin).json()
    assert info["session"]["uploadedChunkIndices"] == [0, 1, 2]

    r = client.post("/upload/lazy/combine", json={"sessionId": sid}, headers=admin)
    assert r.status_code == 200
    done = r.json()
    assert storage.objects[done["fileKey"]][0] == b"0123456789"
    gone = client.post(path, json={"action": "get_session_info", "sessionId": sid}, headers=admin)
    assert gone.status_code == 404
    assert gone.json()["error"] == "Upload session not found"


def test_multipart_init_reads_declared_file(client, admin) -> None:
    r = client.post(
        "/upload/lazy/init",
        files={"file": ("clip.bin", b"x" * 9, "application/octet-stream")},
        data={"metadata": json.dumps({"description": "clip"})},
        headers=admin,
    )
    assert r.status_code == 200
    assert r.json()["totalChunks"] == 3
    assert r.json()["sessionId"].startswith("lazy_")


def test_oversized_init(client, admin) -> None:
    r = client.post(
        "/upload/chunked",
        json={"action": "init", "fileName": "big.bin", "fileSize": 101},
        headers=admin,
    )
    assert r.status_code == 413
    assert r.json()["error"] == "File too large"


def test_bad_chunk_payloads(client, admin) -> None:
    sid = init(client, admin)["sessionId"]
    bad_b64 = client.post(
        "/upload/chunked",
        json={"action": "upload_chunk", "sessionId": sid, "chunkIndex": 0, "chunkData": "***"},
        headers=admin,
    )
    assert bad_b64.status_code == 400
    too_big = send_chunk(client, admin, sid, 0, b"0123456")
    assert too_big.status_code == 400
    assert too_big.json()["error"] == "Invalid chunk"


def test_chunk_for_lazy_session_rejected_on_eager_endpoint(client, admin, storage) -> None:
    sid = init(client, admin, path="/upload/lazy", size=4)["sessionId"]

    r = send_chunk(client, admin, sid, 0, b"0123")

    assert r.status_code == 404
    assert r.json()["success"] is False
    assert not any(k.startswith("files/") for k in storage.objects)


def test_abort_session(client, admin, storage) -> None:
    sid = init(client, admin)["sessionId"]
    send_chunk(client, admin, sid, 0, b"0123")

    r = client.post("/upload/chunked", json={"action": "abort", "sessionId": sid}, headers=admin)

    assert r.status_code == 200
    assert r.json()["chunksRemoved"] == 1
    assert storage.objects == {}


def test_sync_reports_and_optionally_deletes(client, admin, storage, metadata) -> None:
    asyncio.run(storage.put_object("files/orphan", b"o"))
    asyncio.run(storage.put_object("files/short", b"x" * 1024))
    asyncio.run(metadata.insert_file("short.bin", 1000, None, "files/short", None))
    asyncio.run(metadata.insert_file("gone.bin", 5, None, "files/gone", None))

    report = client.post("/admin/sync", headers=admin).json()["report"]
    assert report["summary"]["orphanedBlobs"] == 1
    assert report["summary"]["missingBlobs"] == 1
    assert report["sizeCorrections"][0]["newSize"] == 1024
    assert "files/orphan" in storage.objects

    opted = client.post("/admin/sync", headers={**admin, "X-Delete-Orphaned": "true"}).json()["report"]
    assert opted["deletedOrphans"] == ["files/orphan"]
    assert "files/orphan" not in storage.objects


def test_sync_requires_admin(client, users) -> None:
    r = client.post("/admin/sync", headers=auth_headers(users["alice"]))
    assert r.status_code == 403


def test_delete_file(client, admin, storage, metadata) -> None:
    asyncio.run(storage.put_object("files/doc", b"doc"))
    file_id = asyncio.run(metadata.insert_file("doc", 3, None, "files/doc", None))

    r = client.request("DELETE", "/admin/files", json={"fileId": file_id}, headers=admin)

    assert r.status_code == 200
    body = r.json()
    assert body["blobDeleted"] is True
    assert body["blobExistedBefore"] is True
    assert body["attempts"] == 1
    assert storage.objects == {}

    again = client.request("DELETE", "/admin/files", json={"fileId": file_id}, headers=admin)
    assert again.status_code == 404
    assert again.json()["error"] == "File not found"


def test_assignments(client, admin, users, metadata) -> None:
    file_id = asyncio.run(metadata.insert_file("doc", 3, None, "files/doc", None))

    r = client.post(f"/files/{file_id}/assignments", json={"userIds": [users["bob"]]}, headers=admin)
    assert r.status_code == 200
    assert r.json()["file"]["assignedUserIds"] == [users["bob"]]

    unknown = client.post(f"/files/{file_id}/assignments", json={"userIds": [999]}, headers=admin)
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "Unknown users"


def test_session_cleanup(client, admin) -> None:
    init(client, admin)
    r = client.post("/admin/sessions/cleanup", headers=admin)
    assert r.status_code == 200
    assert r.json()["count"] == 0


def test_local_signed_link_serves_blob(tmp_path, metadata, users, fake_sleep) -> None:
    local = InternalStorage(base_path=str(tmp_path / "blobs"))
    _override(local, metadata, fake_sleep)
    try:
        with TestClient(app) as client:
            asyncio.run(local.put_object("files/1-a-doc.txt", b"hello"))
            file_id = asyncio.run(metadata.insert_file("doc.txt", 5, "text/plain", "files/1-a-doc.txt", None))
            asyncio.run(metadata.assign_file_to_users(file_id, [users["alice"]]))

            link = client.get(f"/files/{file_id}/download", headers=auth_headers(users["alice"])).json()
            r = client.get(link["downloadUrl"])
            assert r.status_code == 200
            assert r.content == b"hello"

            forged = client.get("/files/blob/not-a-token")
            assert forged.status_code == 403
    finally:
        app.dependency_overrides.clear()
