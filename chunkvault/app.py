"""HTTP front end for the chunk store, plus the console entry point."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask, Response, request

from chunkvault.control import ServiceControl, ServiceState, disk_stats, handle_command
from chunkvault.storage import (
    DEFAULT_CONTENT_TYPE,
    ChunkStore,
    FileTooLargeError,
    StorageError,
)

DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_STORAGE = "storage"

_ALWAYS_AVAILABLE = {"index", "service_status"}

_log = logging.getLogger(__name__)


def _json_response(payload, status=200, indent=None) -> Response:
    return Response(json.dumps(payload, indent=indent), status=status, mimetype="application/json")


def _error(status: int, message: str) -> Response:
    return _json_response({"error": message}, status=status)


class _Timer:
    """Measures elapsed wall time in whole milliseconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)


def create_app(store: ChunkStore, control: ServiceControl) -> Flask:
    """Build the Flask application serving ``store`` under ``control``."""
    app = Flask(__name__)

    @app.before_request
    def reject_when_paused():
        if control.state is ServiceState.PAUSED and request.endpoint not in _ALWAYS_AVAILABLE:
            return _error(503, "Service is currently paused")
        return None

    @app.errorhandler(Exception)
    def internal_error(exc):
        code = getattr(exc, "code", None)
        if isinstance(code, int) and code < 500:
            return _error(code, getattr(exc, "description", str(exc)))
        return _error(500, str(exc))

    @app.get("/")
    def index():
        return Response("File Chunking Service is running", mimetype="text/plain")

    @app.get("/service/status")
    def service_status():
        return _json_response(control.status(), indent=4)

    @app.post("/files")
    def upload_file():
        timer = _Timer()
        upload = request.files.get("file")
        if upload is None:
            return _error(400, "No file uploaded")
        content_type = request.values.get("content_type", "")
        filename = upload.filename or ""
        try:
            store.save_file(filename, upload.read(), content_type)
        except FileTooLargeError:
            return _error(400, "File upload failed or file too large")
        except StorageError as exc:
            return _error(500, str(exc))
        return _json_response({
            "success": True,
            "message": "File uploaded successfully",
            "filename": filename,
            "processing_time_ms": timer.elapsed_ms,
        })

    @app.post("/files/multi")
    def upload_many():
        timer = _Timer()
        if not request.files:
            return _error(400, "No files uploaded")
        content_type = request.values.get("content_type", "")
        pairs = [
            (upload.filename or "", upload.read())
            for key, upload in request.files.items(multi=True)
            if key.startswith("file")
        ]
        results = store.save_multiple_files(pairs, content_type)
        succeeded = [name for name, ok in results if ok]
        failed = [name for name, ok in results if not ok]
        return _json_response({
            "success": bool(succeeded),
            "message": "Files processed",
            "successful_files": succeeded,
            "failed_files": failed,
            "total_successful": len(succeeded),
            "total_failed": len(failed),
            "processing_time_ms": timer.elapsed_ms,
        })

    @app.get("/files/<filename>")
    def download_file(filename):
        timer = _Timer()
        try:
            content = store.get_file(filename)
        except StorageError:
            content = b""
        elapsed = timer.elapsed_ms
        if not content:
            return _error(404, "File not found")
        try:
            content_type = store.get_metadata(filename).get("content_type") or DEFAULT_CONTENT_TYPE
        except StorageError:
            content_type = DEFAULT_CONTENT_TYPE
        response = Response(content, content_type=content_type)
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        response.headers["X-Processing-Time"] = f"{elapsed}ms"
        return response

    @app.get("/chunks/<chunk_hash>")
    def download_chunk(chunk_hash):
        try:
            chunk = store.get_chunk(chunk_hash)
        except StorageError:
            chunk = b""
        if not chunk:
            return _error(404, "Chunk not found")
        return Response(chunk, content_type=DEFAULT_CONTENT_TYPE)

    @app.put("/files/<filename>")
    def update_file(filename):
        upload = request.files.get("file")
        if upload is None:
            return _error(400, "No file uploaded for update")
        content_type = request.values.get("content_type", "")
        timer = _Timer()
        try:
            store.update_partial(filename, upload.read(), content_type)
        except StorageError:
            return _error(404, "File not found or update failed")
        return _json_response({
            "success": True,
            "message": "File updated successfully",
            "filename": filename,
            "processing_time_ms": timer.elapsed_ms,
        })

    @app.delete("/files/<filename>")
    def delete_file(filename):
        timer = _Timer()
        try:
            store.delete_file(filename)
        except StorageError:
            return _error(404, "File not found")
        return _json_response({
            "success": True,
            "message": "File deleted successfully",
            "filename": filename,
            "processing_time_ms": timer.elapsed_ms,
        })

    @app.get("/files/<filename>/metadata")
    def file_metadata(filename):
        try:
            metadata = store.get_metadata(filename)
        except StorageError:
            metadata = {}
        if not metadata:
            return _error(404, "File metadata not found")
        return _json_response(metadata, indent=4)

    @app.get("/files")
    def list_files():
        files = store.list_files()
        return _json_response({"files": files, "count": len(files)}, indent=4)

    @app.delete("/files")
    def delete_many():
        raw = request.values.get("files")
        if raw is None:
            return _error(400, "No files parameter provided")
        try:
            names = json.loads(raw)
        except json.JSONDecodeError as exc:
            return _error(500, str(exc))
        if not isinstance(names, list):
            return _error(400, "Files must be a JSON array")
        if not all(isinstance(name, str) for name in names):
            return _error(500, "Every entry in files must be a string")

        timer = _Timer()

        def delete_one(name):
            try:
                store.delete_file(name)
            except StorageError:
                return name, False
            return name, True

        if names:
            with ThreadPoolExecutor(max_workers=min(len(names), os.cpu_count() or 1)) as pool:
                results = list(pool.map(delete_one, names))
        else:
            results = []
        succeeded = [name for name, ok in results if ok]
        failed = [name for name, ok in results if not ok]
        return _json_response({
            "success": bool(succeeded),
            "successful_deletions": succeeded,
            "failed_deletions": failed,
            "total_successful": len(succeeded),
            "total_failed": len(failed),
            "processing_time_ms": timer.elapsed_ms,
        }, indent=4)

    @app.get("/stats")
    def stats():
        return _json_response(disk_stats(store.base_directory), indent=4)

    return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    """Sends request logs to the module logger instead of stderr."""

    def log_message(self, format, *args):  # noqa: A002
        _log.debug("%s - %s", self.address_string(), format % args)


def _run_console(control: ServiceControl) -> None:
    print("Type 'exit' to stop the server")
    print("Type 'pause' to pause the service")
    print("Type 'resume' to resume the service")
    print("> ", end="", flush=True)
    for line in sys.stdin:
        print(handle_command(control, line), flush=True)
        if control.stop_event.is_set():
            return
        print("> ", end="", flush=True)


def main(argv=None) -> int:
    """Start the HTTP service with an interactive console; return an exit code."""
    parser = argparse.ArgumentParser(description="Chunked, deduplicating file storage service.")
    parser.add_argument("--storage", default=DEFAULT_STORAGE, help="storage directory")
    parser.add_argument("--host", default=DEFAULT_HOST, help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument("--threads", type=int, default=None, help="worker thread count")
    args = parser.parse_args(argv)

    storage = Path(args.storage)
    try:
        storage.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Error creating storage directory: {exc}", file=sys.stderr)
        return 1
    print(f"Storage directory created at: {storage}")

    threads = args.threads or os.cpu_count() or 1
    print(f"Detected {threads} CPU threads")

    control = ServiceControl()
    with ChunkStore(storage, threads) as store:
        app = create_app(store, control)
        server = make_server(
            args.host, args.port, app,
            server_class=_ThreadingWSGIServer, handler_class=_QuietHandler,
        )
        server_thread = threading.Thread(target=server.serve_forever, daemon=True)
        server_thread.start()
        print(f"FileManagerService started at http://{args.host}:{server.server_port}")
        print(f"Using storage directory: {storage}")
        try:
            _run_console(control)
            control.stop_event.wait()
        except KeyboardInterrupt:
            print("Stopping server...")
        finally:
            server.shutdown()
            server.server_close()
            server_thread.join()
    print("Server stopped.")
    return 0