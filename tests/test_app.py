import io
import json

import pytest

from chunkvault.app import create_app, main
from chunkvault.control import PAUSED_MESSAGE, STOPPING_MESSAGE, ServiceControl
from chunkvault.storage import ChunkStore, sha256_hex


@pytest.fixture
def control():
    return ServiceControl()


@pytest.fixture
def store(tmp_path):
    with ChunkStore(tmp_path / "vault", 2) as chunk_store:
        yield chunk_store


@pytest.fixture
def client(store, control):
    return create_app(store, control).test_client()


def upload(client, name, data, **extra):
    form = {"file": (io.BytesIO(data), name)}
    form.update(extra)
    return client.post("/files", data=form, content_type="multipart/form-data")


def test_upload_and_download_round_trip(client):
    resp = upload(client, "notes.txt", b"hello world")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"
    assert body["filename"] == "notes.txt"
    assert body["processing_time_ms"] >= 0

    got = client.get("/files/notes.txt")
    assert got.status_code == 200
    assert got.data == b"hello world"
    assert got.headers["Content-Type"].startswith("text/plain")
    assert got.headers["Content-Disposition"] == 'attachment; filename="notes.txt"'
    assert got.headers["X-Processing-Time"].endswith("ms")


def test_upload_without_file_is_rejected(client):
    resp = client.post("/files", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No file uploaded"}


def test_content_type_parameter_overrides_extension(client):
    upload(client, "data.bin", b"\x00\x01", content_type="application/pdf")
    got = client.get("/files/data.bin")
    assert got.headers["Content-Type"] == "application/pdf"
    meta = client.get("/files/data.bin/metadata").get_json()
    assert meta["content_type"] == "application/pdf"


def test_missing_file_is_404(client):
    resp = client.get("/files/absent.txt")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "File not found"}


def test_metadata_endpoint(client):
    upload(client, "report.csv", b"a,b\n1,2\n")
    resp = client.get("/files/report.csv/metadata")
    assert resp.status_code == 200
    meta = resp.get_json()
    assert meta["size"] == len(b"a,b\n1,2\n")
    assert meta["filename"] == "report.csv"
    assert meta["content_type"] == "text/csv"
    assert meta["chunks"] == [sha256_hex(b"a,b\n1,2\n")]


def test_metadata_missing_is_404(client):
    resp = client.get("/files/absent.txt/metadata")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "File metadata not found"}


def test_list_files_uses_sanitized_names(client):
    upload(client, "my file.txt", b"one")
    upload(client, "b.txt", b"two")
    body = client.get("/files").get_json()
    assert sorted(body["files"]) == ["b.txt", "my_file.txt"]
    assert body["count"] == len(body["files"])


def test_chunk_endpoint_returns_stored_chunk(client):
    upload(client, "c.txt", b"chunk data")
    chunk_hash = client.get("/files/c.txt/metadata").get_json()["chunks"][0]
    resp = client.get(f"/chunks/{chunk_hash}")
    assert resp.status_code == 200
    assert resp.data == b"chunk data"
    assert resp.headers["Content-Type"] == "application/octet-stream"


def test_missing_chunk_is_404(client):
    resp = client.get("/chunks/" + sha256_hex(b"nothing"))
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Chunk not found"}


def test_put_updates_content_and_keeps_created_at(client):
    upload(client, "u.txt", b"old")
    created = client.get("/files/u.txt/metadata").get_json()["created_at"]
    resp = client.put(
        "/files/u.txt",
        data={"file": (io.BytesIO(b"new content"), "u.txt")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert resp.get_json()["message"] == "File updated successfully"
    assert client.get("/files/u.txt").data == b"new content"
    meta = client.get("/files/u.txt/metadata").get_json()
    assert meta["created_at"] == created
    assert meta["content_type"] == "text/plain"


def test_put_missing_file_is_404(client):
    resp = client.put(
        "/files/ghost.txt",
        data={"file": (io.BytesIO(b"x"), "ghost.txt")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "File not found or update failed"}


def test_put_without_file_is_400(client):
    resp = client.put("/files/u.txt", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No file uploaded for update"}


def test_delete_file(client):
    upload(client, "d.txt", b"bye")
    resp = client.delete("/files/d.txt")
    assert resp.status_code == 200
    assert resp.get_json()["message"] == "File deleted successfully"
    assert client.get("/files/d.txt").status_code == 404
    again = client.delete("/files/d.txt")
    assert again.status_code == 404
    assert again.get_json() == {"error": "File not found"}


def test_bulk_delete_reports_each_file(client):
    upload(client, "a.txt", b"a")
    upload(client, "b.txt", b"b")
    resp = client.delete(
        "/files", query_string={"files": json.dumps(["a.txt", "b.txt", "missing.txt"])}
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert sorted(body["successful_deletions"]) == ["a.txt", "b.txt"]
    assert body["failed_deletions"] == ["missing.txt"]
    assert body["total_successful"] == len(body["successful_deletions"])
    assert body["total_failed"] == len(body["failed_deletions"])
    assert client.get("/files").get_json()["files"] == []


def test_bulk_delete_requires_parameter(client):
    resp = client.delete("/files")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No files parameter provided"}


def test_bulk_delete_requires_array(client):
    resp = client.delete("/files", query_string={"files": json.dumps({"a": 1})})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Files must be a JSON array"}


def test_bulk_delete_invalid_json_is_500(client):
    resp = client.delete("/files", query_string={"files": "[not json"})
    assert resp.status_code == 500
    assert "error" in resp.get_json()


def test_multi_upload(client):
    resp = client.post(
        "/files/multi",
        data={
            "file1": (io.BytesIO(b"first"), "one.txt"),
            "file2": (io.BytesIO(b"second"), "two.txt"),
            "other": (io.BytesIO(b"ignored"), "skip.txt"),
        },
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert sorted(body["successful_files"]) == ["one.txt", "two.txt"]
    assert body["failed_files"] == []
    assert body["total_successful"] == 2
    assert client.get("/files/two.txt").data == b"second"
    assert client.get("/files/skip.txt").status_code == 404


def test_multi_upload_without_files_is_400(client):
    resp = client.post("/files/multi", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No files uploaded"}


def test_paused_service_rejects_requests(client, control):
    upload(client, "p.txt", b"data")
    control.pause()
    resp = client.get("/files/p.txt")
    assert resp.status_code == 503
    assert resp.get_json() == {"error": "Service is currently paused"}
    assert upload(client, "q.txt", b"x").status_code == 503
    status = client.get("/service/status").get_json()
    assert status == {"status": "paused", "state": "paused"}
    control.resume()
    assert client.get("/files/p.txt").data == b"data"


def test_service_status_running(client):
    assert client.get("/service/status").get_json() == {"status": "running", "state": "running"}


def test_stats_invariants(client):
    stats = client.get("/stats").get_json()
    assert set(stats) == {"total_mb", "free_mb", "used_mb"}
    assert stats["total_mb"] >= stats["free_mb"] >= 0
    assert stats["used_mb"] >= 0


def test_index_text(client):
    resp = client.get("/")
    assert resp.data == b"File Chunking Service is running"


def test_main_runs_console_until_exit(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("pause\nexit\n"))
    code = main([
        "--storage", str(tmp_path / "store"),
        "--host", "127.0.0.1",
        "--port", "0",
        "--threads", "1",
    ])
    out = capsys.readouterr().out
    assert code == 0
    assert PAUSED_MESSAGE in out
    assert STOPPING_MESSAGE in out
    assert (tmp_path / "store" / "chunks").is_dir()
    assert (tmp_path / "store" / "metadata").is_dir()