import json

from src.backend.progress import (
    CompositeProgressSink,
    FileProgressSink,
    MemoryProgressSink,
    build_progress_payload,
    read_progress,
    write_progress,
)


def test_build_progress_payload_maps_status_and_fields():
    payload = build_progress_payload(
        {
            "job_id": "job-123",
            "status": "succeeded",
            "message": "Export finished.",
            "progress": 1.0,
            "output_path": "/tmp/mix.wav",
            "revision": 3,
        }
    )
    assert payload["status"] == "done"
    assert payload["step"] == "succeeded"
    assert payload["job_id"] == "job-123"
    assert payload["output_path"] == "/tmp/mix.wav"
    assert payload["revision"] == 3


def test_build_progress_payload_maps_error_status():
    payload = build_progress_payload({"status": "failed", "error": "boom"})
    assert payload["status"] == "error"
    assert payload["error"] == "boom"
    assert build_progress_payload({"status": "cancelled"})["status"] == "error"


def test_build_progress_payload_running_states():
    for state in ("pending", "rendering", "writing"):
        assert build_progress_payload({"status": state})["status"] == "running"


def test_build_progress_payload_idle_without_data():
    assert build_progress_payload(None) == {"status": "idle"}


def test_memory_sink_returns_copy_of_latest():
    sink = MemoryProgressSink()
    sink.notify({"status": "rendering", "progress": 0.1})
    sink.notify({"status": "writing", "progress": 0.9})
    latest = sink.latest()
    assert latest["status"] == "writing"
    assert "updated_at" in latest
    latest["status"] = "tampered"
    assert sink.latest()["status"] == "writing"


def test_file_sink_writes_atomically(tmp_path):
    path = tmp_path / "state" / "progress.json"
    FileProgressSink(path).notify({"job_id": "j1", "status": "rendering"})
    assert json.loads(path.read_text(encoding="utf-8"))["status"] == "rendering"
    assert not path.with_suffix(".json.tmp").exists()


def test_write_progress_guards_job_ownership(tmp_path):
    path = tmp_path / "progress.json"
    assert write_progress(path, {"job_id": "a", "status": "rendering"})
    assert not write_progress(path, {"job_id": "b", "status": "rendering"}, expected_job_id="b")
    assert read_progress(path)["job_id"] == "a"


def test_read_progress_tolerates_missing_and_corrupt_files(tmp_path):
    path = tmp_path / "progress.json"
    assert read_progress(path) is None
    path.write_text("{not json", encoding="utf-8")
    assert read_progress(path) is None


def test_composite_sink_isolates_failures():
    class Broken:
        def notify(self, event):
            raise RuntimeError("sink down")

    memory = MemoryProgressSink()
    CompositeProgressSink([Broken(), memory]).notify({"status": "pending"})
    assert memory.latest()["status"] == "pending"
