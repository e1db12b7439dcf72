import json
import logging

import pytest
import soundfile as sf
from fastapi.testclient import TestClient

from conftest import build_midi
from src.backend.config import Settings
from src.backend.main import create_app
from src.project import ustx


@pytest.fixture
def client(tmp_path, monkeypatch, singers_dir):
    monkeypatch.setenv("BACKEND_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SINGERS_DIR", str(singers_dir))
    monkeypatch.setenv("EXPORT_SAMPLE_RATE", "8000")
    monkeypatch.delenv("RENDER_CACHE_DIR", raising=False)
    monkeypatch.delenv("BACKEND_MAX_UPLOAD_MB", raising=False)
    app = create_app(Settings.from_env())
    with TestClient(app) as test_client:
        yield test_client


def _convert(client, files, voices=("Alice",), phonemizers="[]", bpm=None):
    data = {"voices": list(voices)}
    if phonemizers is not None:
        data["phonemizers"] = phonemizers
    if bpm is not None:
        data["bpm"] = str(bpm)
    return client.post(
        "/api/project/convert",
        files=[("files", (name, content, "application/octet-stream")) for name, content in files],
        data=data,
    )


def test_status_reports_running_without_project(client):
    response = client.get("/api/project")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["message"] == "HTTP API is running"
    assert "currentProject" not in body
    assert response.headers["X-Request-ID"]


def test_convert_load_export_flow(client, two_line_midi, tmp_path):
    converted = _convert(client, [("duet.mid", two_line_midi)], bpm=120)
    assert converted.status_code == 200, converted.text
    serialized = converted.json()["serializedProject"]
    assert "voice_parts" in serialized

    loaded = client.post("/api/project/load", json={"ustxContent": serialized})
    assert loaded.status_code == 200, loaded.text
    assert loaded.json()["project"]["revision"] == 1

    status = client.get("/api/project").json()
    assert status["currentProject"]["name"] == "Line 1"

    output = tmp_path / "exports" / "duet.wav"
    exported = client.post("/api/project/export", json={"outputPath": str(output)})
    assert exported.status_code == 200, exported.text
    body = exported.json()
    assert body["status"] == "ok"
    assert body["outputPath"] == str(output.resolve())
    info = sf.info(str(output))
    assert info.subtype == "PCM_16"
    assert info.duration == pytest.approx(body["durationSeconds"], abs=1e-3)

    progress = client.get("/api/project/progress").json()
    assert progress["status"] == "done"


def test_convert_accepts_repeated_phonemizer_fields(client, two_line_midi):
    response = _convert(
        client,
        [("duet.mid", two_line_midi)],
        voices=("Alice", "Bob"),
        phonemizers=["en-syllable", "default"],
    )
    assert response.status_code == 200, response.text
    serialized = response.json()["serializedProject"]
    assert "phonemizer: en-syllable" in serialized
    assert "phonemizer: default" in serialized


def test_convert_keeps_track_positions_for_empty_voices(client, two_line_midi):
    response = _convert(client, [("duet.mid", two_line_midi)], voices=("", "Alice"))
    assert response.status_code == 200, response.text
    project = ustx.loads(response.json()["serializedProject"])
    assert project.tracks[0].singer is None
    assert project.tracks[1].singer.id == "alice"


def test_convert_json_array_null_entries_hold_their_slot(client, two_line_midi):
    response = client.post(
        "/api/project/convert",
        files=[("files", ("duet.mid", two_line_midi, "audio/midi"))],
        data={
            "voices": json.dumps([None, "Bob"]),
            "phonemizers": json.dumps(["", "en-syllable"]),
        },
    )
    assert response.status_code == 200, response.text
    project = ustx.loads(response.json()["serializedProject"])
    assert [track.singer.id if track.singer else None for track in project.tracks] == [None, "bob_utau"]
    assert [track.phonemizer for track in project.tracks] == [None, "en-syllable"]


def test_convert_rejects_unsupported_file(client):
    response = _convert(client, [("notes.txt", b"hello")])
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["error"] == "UnsupportedFormat"


def test_convert_requires_phonemizer_array(client, two_line_midi):
    response = _convert(client, [("duet.mid", two_line_midi)], phonemizers=None)
    assert response.status_code == 400
    assert response.json()["error"] == "MissingInput"


def test_convert_requires_files(client):
    response = client.post("/api/project/convert", data={"voices": ["Alice"], "phonemizers": "[]"})
    assert response.status_code == 400
    assert response.json()["error"] == "MissingInput"


def test_convert_rejects_oversized_upload(tmp_path, monkeypatch, singers_dir):
    monkeypatch.setenv("BACKEND_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SINGERS_DIR", str(singers_dir))
    monkeypatch.setenv("BACKEND_MAX_UPLOAD_MB", "0")
    app = create_app(Settings.from_env())
    with TestClient(app) as small_client:
        response = _convert(small_client, [("big.mid", build_midi([[(0, 480, 60)]]))])
    assert response.status_code == 413
    assert response.json()["error"] == "PayloadTooLarge"


def test_load_requires_a_source(client):
    response = client.post("/api/project/load", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "MissingInput"


def test_load_missing_file_is_not_found(client, tmp_path):
    response = client.post("/api/project/load", json={"filePath": str(tmp_path / "absent.ustx")})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_load_from_file_path(client, tmp_path):
    path = tmp_path / "song.ustx"
    path.write_text("tracks: [{singer: alice}]\n", encoding="utf-8")
    response = client.post("/api/project/load", json={"filePath": str(path)})
    assert response.status_code == 200
    assert response.json()["project"]["name"] == "song"
    assert response.json()["project"]["filePath"] == str(path)


def test_load_malformed_content_is_rejected(client):
    response = client.post("/api/project/load", json={"ustxContent": "name: nothing else\n"})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidProject"


def test_unload_twice(client):
    client.post("/api/project/load", json={"ustxContent": "tracks: []\n"})
    first = client.post("/api/project/unload")
    second = client.post("/api/project/unload")
    assert first.json() == {"status": "ok"}
    assert second.status_code == 200
    assert second.json() == {"message": "nothing loaded"}


def test_export_without_project(client, tmp_path):
    output = tmp_path / "never" / "out.wav"
    response = client.post("/api/project/export", json={"outputPath": str(output)})
    assert response.status_code == 400
    assert response.json()["error"] == "NoActiveProject"
    assert not output.parent.exists()


def test_export_to_unwritable_location(client, tmp_path):
    client.post("/api/project/load", json={"ustxContent": "tracks: []\n"})
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    response = client.post("/api/project/export", json={"outputPath": str(blocker / "out.wav")})
    assert response.status_code == 403
    assert response.json()["error"] == "PermissionDenied"


def test_cancel_without_running_export(client):
    response = client.post("/api/project/export/cancel")
    assert response.json() == {"status": "ok", "cancelled": False}


def test_progress_idle_before_any_export(client):
    assert client.get("/api/project/progress").json() == {"status": "idle"}


def test_lists_singers_and_phonemizers(client):
    singers = client.get("/api/singers").json()["singers"]
    assert {"id": "alice", "name": "Alice"} in singers
    assert {"id": "bob_utau", "name": "Bob"} in singers
    phonemizers = client.get("/api/phonemizers").json()["phonemizers"]
    assert phonemizers == ["default", "en-syllable"]


def test_convert_json_voice_array(client, two_line_midi):
    response = client.post(
        "/api/project/convert",
        files=[("files", ("duet.mid", two_line_midi, "audio/midi"))],
        data={"voices": json.dumps(["Alice", "Bob"]), "phonemizers": "[]"},
    )
    assert response.status_code == 200, response.text
    assert "singer: bob_utau" in response.json()["serializedProject"]


def test_request_log_reports_response_status(client, caplog):
    caplog.set_level(logging.INFO, logger="backend.api")
    response = client.get("/api/project", headers={"x-request-id": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"
    assert any(
        "http_request method=GET path=/api/project status=200" in record.getMessage()
        for record in caplog.records
    )
