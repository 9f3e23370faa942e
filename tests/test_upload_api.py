from __future__ import annotations

import re
import time
import uuid
from pathlib import Path

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from conftest import FakeInspector, auth_headers, build_token, requires_ffmpeg, staged_files
from tubely.api import deps
from tubely.core.config import get_settings
from tubely.core.errors import InspectionError, InspectionFailure, MetadataUpdateError, StorageError
from tubely.core.storage import ObjectStore
from tubely.main import create_app
from tubely.media.probe import Classification
from tubely.services.videos import VideoRepository

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 512
KEY_PATTERN = re.compile(r"/objects/(videos/(landscape|portrait|other)/[A-Za-z0-9_-]{43}\.mp4)$")


def _video_part(content_type: str = "video/mp4", payload: bytes = VIDEO_BYTES, field: str = "video"):
    return {field: ("clip.mp4", payload, content_type)}


class RejectingStore(ObjectStore):
    def put_object(self, key, body, *, content_type):
        raise StorageError(f"Object store rejected {key}: AccessDenied")

    def public_url(self, key):
        return f"https://cdn.example.com/{key}"


class SlowStore(RejectingStore):
    def put_object(self, key, body, *, content_type):
        time.sleep(0.5)


class FailingUpdateRepository(VideoRepository):
    async def update(self, video):
        raise MetadataUpdateError("Unable to update video data")


def test_upload_stores_object_and_records_url(client, create_video, owner_headers, objects_root, staging_root, fake_inspector, fake_rewriter):
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 200, resp.text
    body = resp.json()
    match = KEY_PATTERN.search(body["video_url"])
    assert match is not None
    assert match.group(2) == "landscape"
    assert body["video_url"].startswith("http://testserver/objects/videos/landscape/")

    stored = objects_root / match.group(1)
    assert stored.read_bytes() == VIDEO_BYTES
    assert len(fake_inspector.calls) == 1
    assert len(fake_rewriter.calls) == 1
    assert staged_files(staging_root) == []

    fetched = client.get(f"/v1/videos/{video['id']}", headers=owner_headers)
    assert fetched.status_code == 200
    assert fetched.json()["video_url"] == body["video_url"]

    served = client.get(body["video_url"].removeprefix("http://testserver"))
    assert served.status_code == 200
    assert served.content == VIDEO_BYTES


def test_upload_accepts_put_and_content_type_parameters(client, create_video, owner_headers, fake_inspector):
    fake_inspector.result = Classification.portrait
    video = create_video()

    resp = client.put(
        f"/v1/videos/{video['id']}/upload",
        files=_video_part(content_type="Video/MP4; codecs=avc1"),
        headers=owner_headers,
    )

    assert resp.status_code == 200, resp.text
    assert "/objects/videos/portrait/" in resp.json()["video_url"]


def test_reupload_replaces_url_with_fresh_key(client, create_video, owner_headers):
    video = create_video()
    first = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)
    second = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["video_url"] != second.json()["video_url"]


def test_wrong_media_type_is_rejected_before_staging(client, create_video, owner_headers, staging_root, fake_inspector):
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part("video/webm"), headers=owner_headers)

    assert resp.status_code == 400
    assert resp.json() == {"error": "validation_error", "message": "invalid media type: video/webm"}
    assert fake_inspector.calls == []
    assert staged_files(staging_root) == []


def test_same_bad_input_fails_the_same_way(client, create_video, owner_headers):
    video = create_video()

    responses = [
        client.post(f"/v1/videos/{video['id']}/upload", files=_video_part("text/plain"), headers=owner_headers)
        for _ in range(2)
    ]

    assert [r.status_code for r in responses] == [400, 400]
    assert responses[0].json() == responses[1].json()


def test_missing_video_part(client, create_video, owner_headers):
    video = create_video()

    resp = client.post(
        f"/v1/videos/{video['id']}/upload",
        files=_video_part(field="file"),
        headers=owner_headers,
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"
    assert "'video'" in resp.json()["message"]


def test_body_that_is_not_multipart(client, create_video, owner_headers):
    video = create_video()

    resp = client.post(
        f"/v1/videos/{video['id']}/upload",
        content=b"raw bytes",
        headers={**owner_headers, "Content-Type": "application/octet-stream"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_inspection_failure_leaves_record_and_staging_clean(
    client, create_video, owner_headers, staging_root, objects_root, fake_inspector, fake_rewriter
):
    fake_inspector.result = InspectionError(InspectionFailure.no_streams, "Unable to classify video")
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 400
    assert resp.json() == {"error": "inspection_failed", "message": "Unable to classify video (no_streams)"}
    assert fake_rewriter.calls == []
    assert staged_files(staging_root) == []
    assert not any(path.is_file() for path in objects_root.rglob("*"))
    assert client.get(f"/v1/videos/{video['id']}", headers=owner_headers).json()["video_url"] is None


def test_rewrite_failure(client, create_video, owner_headers, staging_root, fake_rewriter):
    fake_rewriter.fail = True
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "rewrite_failed"
    assert staged_files(staging_root) == []


def test_missing_rewritten_file_is_a_staging_error(client, create_video, owner_headers, staging_root, fake_rewriter):
    fake_rewriter.remove_output = True
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 500
    assert resp.json()["error"] == "staging_error"
    assert staged_files(staging_root) == []


def test_object_store_failure(app, client, create_video, owner_headers, staging_root):
    app.dependency_overrides[deps.get_object_store] = lambda: RejectingStore()
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 502
    assert resp.json()["error"] == "storage_error"
    assert resp.json()["message"].endswith(": AccessDenied")
    assert staged_files(staging_root) == []
    assert client.get(f"/v1/videos/{video['id']}", headers=owner_headers).json()["video_url"] is None


def test_object_store_timeout(app, client, create_video, owner_headers, monkeypatch, staging_root):
    monkeypatch.setenv("TUBELY_OBJECT_STORE_TIMEOUT_S", "0.05")
    get_settings.cache_clear()
    app.dependency_overrides[deps.get_object_store] = lambda: SlowStore()
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 502
    assert resp.json()["error"] == "storage_error"
    assert "timed out" in resp.json()["message"]
    assert staged_files(staging_root) == []


def test_metadata_failure_leaves_orphaned_object(app, client, create_video, owner_headers, objects_root):
    def _failing_repository(session=Depends(deps.get_session)) -> VideoRepository:
        return FailingUpdateRepository(session)

    video = create_video()
    app.dependency_overrides[deps.get_video_repository] = _failing_repository

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 500
    assert resp.json() == {"error": "metadata_update_failed", "message": "Unable to update video data"}
    orphans = [path for path in objects_root.rglob("*.mp4") if path.is_file()]
    assert len(orphans) == 1

    del app.dependency_overrides[deps.get_video_repository]
    assert client.get(f"/v1/videos/{video['id']}", headers=owner_headers).json()["video_url"] is None


def test_other_user_is_rejected_before_body_is_read(client, create_video, other_headers, staging_root, fake_inspector):
    video = create_video()

    for files in (_video_part(), _video_part("text/plain"), _video_part(field="nope")):
        resp = client.post(f"/v1/videos/{video['id']}/upload", files=files, headers=other_headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthorized", "message": "Unauthorized Request"}

    assert fake_inspector.calls == []
    assert staged_files(staging_root) == []


@pytest.mark.parametrize(
    "headers, message",
    [
        ({}, "Couldn't find JWT"),
        ({"Authorization": "Bearer not-a-jwt"}, "Couldn't validate JWT"),
    ],
)
def test_upload_requires_valid_token(client, create_video, headers, message):
    video = create_video()

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=headers)

    assert resp.status_code == 401
    assert resp.json() == {"error": "unauthorized", "message": message}


def test_token_signed_with_wrong_secret(client, create_video):
    video = create_video()
    headers = {"Authorization": f"Bearer {build_token('user-a', secret='other-secret')}"}

    resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=headers)

    assert resp.status_code == 401


def test_invalid_video_id(client, owner_headers):
    resp = client.post("/v1/videos/not-a-uuid/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 400
    assert resp.json() == {"error": "validation_error", "message": "Invalid ID"}


def test_unknown_video_id(client, owner_headers):
    resp = client.post(f"/v1/videos/{uuid.uuid4()}/upload", files=_video_part(), headers=owner_headers)

    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_create_video_validates_title(client, owner_headers):
    resp = client.post("/v1/videos", json={"title": ""}, headers=owner_headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_get_video_of_other_user(client, create_video, other_headers):
    video = create_video()

    resp = client.get(f"/v1/videos/{video['id']}", headers=other_headers)

    assert resp.status_code == 401


@requires_ffmpeg
def test_upload_with_real_media_tools(configure_environment, generated_video_file: Path, objects_root, staging_root):
    headers = auth_headers("user-ffmpeg")
    with TestClient(create_app()) as client:
        video = client.post("/v1/videos", json={"title": "Real"}, headers=headers).json()
        with generated_video_file.open("rb") as handle:
            resp = client.post(
                f"/v1/videos/{video['id']}/upload",
                files={"video": ("landscape.mp4", handle, "video/mp4")},
                headers=headers,
            )

    assert resp.status_code == 200, resp.text
    match = KEY_PATTERN.search(resp.json()["video_url"])
    assert match is not None and match.group(2) == "landscape"
    stored = objects_root / match.group(1)
    # Fast-start output carries moov before mdat.
    data = stored.read_bytes()
    assert data.index(b"moov") < data.index(b"mdat")
    assert staged_files(staging_root) == []


@requires_ffmpeg
def test_upload_of_garbage_with_real_media_tools(configure_environment, staging_root):
    headers = auth_headers("user-ffmpeg")
    with TestClient(create_app()) as client:
        video = client.post("/v1/videos", json={"title": "Broken"}, headers=headers).json()
        resp = client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(payload=b"garbage"), headers=headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "inspection_failed"
    assert staged_files(staging_root) == []


def test_fake_inspector_sees_staged_file_with_mp4_suffix(client, create_video, owner_headers, fake_inspector: FakeInspector):
    video = create_video()

    client.post(f"/v1/videos/{video['id']}/upload", files=_video_part(), headers=owner_headers)

    assert fake_inspector.calls[0].suffix == ".mp4"
    assert fake_inspector.calls[0].name.startswith("tubely-upload-")
