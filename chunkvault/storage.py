"""Content-addressed chunk storage with per-file JSON metadata."""

from __future__ import annotations

import hashlib
import json
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Iterable

CHUNK_SIZE = 1024 * 1024
MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_UNSAFE_CHARS = re.compile(r"[^\w\-.]", re.ASCII)

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".csv": "text/csv",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".zip": "application/zip",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
}


class StorageError(Exception):
    """Base class for storage failures."""


class FileTooLargeError(StorageError):
    """Raised when content exceeds the size limit."""


class StoredFileNotFoundError(StorageError):
    """Raised when a file or chunk is not in the store."""


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_.-]`` with an underscore."""
    return _UNSAFE_CHARS.sub("_", filename)


def guess_content_type(filename: str) -> str:
    """Return the MIME type for the file's extension, or a generic binary type."""
    ext = PurePosixPath(filename).suffix.lower()
    return _CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def sha256_hex(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")


def _split_chunks(content: bytes) -> Iterable[bytes]:
    for start in range(0, len(content), CHUNK_SIZE):
        yield content[start:start + CHUNK_SIZE]


class ChunkStore:
    """Stores files as deduplicated, reference-counted chunks on disk."""

    def __init__(self, base_directory, thread_count=None):
        self.base_directory = Path(base_directory)
        self.chunks_directory = self.base_directory / "chunks"
        self.metadata_directory = self.base_directory / "metadata"
        for directory in (self.base_directory, self.chunks_directory, self.metadata_directory):
            directory.mkdir(parents=True, exist_ok=True)
        self._thread_count = max(1, thread_count or os.cpu_count() or 1)
        self._executor = ThreadPoolExecutor(max_workers=self._thread_count)
        self._chunk_lock = threading.RLock()
        self._metadata_lock = threading.RLock()

    # -- context management -------------------------------------------------

    def close(self) -> None:
        """Stop the worker threads after pending work finishes."""
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -- internal helpers ---------------------------------------------------

    def _metadata_path(self, safe_name: str) -> Path:
        return self.metadata_directory / f"{safe_name}.json"

    def _refcount_path(self, chunk_hash: str) -> Path:
        return self.chunks_directory / f"{chunk_hash}.refcount"

    def _store_chunk(self, chunk: bytes) -> str:
        chunk_hash = sha256_hex(chunk)
        chunk_path = self.chunks_directory / chunk_hash
        refcount_path = self._refcount_path(chunk_hash)
        with self._chunk_lock:
            if not chunk_path.exists():
                try:
                    chunk_path.write_bytes(chunk)
                except OSError as exc:
                    raise StorageError(f"Failed to create chunk file: {chunk_path}") from exc
            count = 1
            if refcount_path.exists():
                count = self._read_refcount(refcount_path) + 1
            refcount_path.write_text(str(count))
        return chunk_hash

    @staticmethod
    def _read_refcount(path: Path) -> int:
        try:
            return int(path.read_text().strip())
        except ValueError:
            return 0

    def _release_chunk(self, chunk_hash: str) -> bool:
        refcount_path = self._refcount_path(chunk_hash)
        with self._chunk_lock:
            if not refcount_path.exists():
                return False
            count = self._read_refcount(refcount_path) - 1
            if count <= 0:
                (self.chunks_directory / chunk_hash).unlink(missing_ok=True)
                refcount_path.unlink(missing_ok=True)
            else:
                refcount_path.write_text(str(count))
        return True

    def _store_content(self, content: bytes) -> list[str]:
        futures = [self._executor.submit(self._store_chunk, chunk) for chunk in _split_chunks(content)]
        return [future.result() for future in futures]

    def _release_all(self, chunk_hashes: Iterable[str]) -> None:
        futures = [self._executor.submit(self._release_chunk, h) for h in chunk_hashes]
        for future in futures:
            future.result()

    def _read_chunk(self, chunk_hash: str) -> bytes:
        chunk_path = self.chunks_directory / chunk_hash
        with self._chunk_lock:
            if not chunk_path.is_file():
                raise StoredFileNotFoundError(f"Chunk not found: {chunk_hash}")
            return chunk_path.read_bytes()

    def _load_metadata(self, safe_name: str) -> dict:
        meta_path = self._metadata_path(safe_name)
        if not meta_path.exists():
            raise StoredFileNotFoundError(f"File not found: {safe_name}")
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt metadata for {safe_name}: {exc}") from exc

    def _write_metadata(self, safe_name: str, meta: dict) -> None:
        meta_path = self._metadata_path(safe_name)
        try:
            meta_path.write_text(json.dumps(meta, indent=4, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to create metadata file: {meta_path}") from exc

    @staticmethod
    def _build_metadata(safe_name, chunk_hashes, size, content_type) -> dict:
        now = _timestamp()
        return {
            "filename": safe_name,
            "size": size,
            "chunks": list(chunk_hashes),
            "created_at": now,
            "modified_at": now,
            "content_type": content_type or guess_content_type(safe_name),
        }

    # -- public API ---------------------------------------------------------

    def save_file(self, filename, content, content_type=None) -> dict:
        """Store ``content`` under ``filename`` and return its metadata."""
        content = bytes(content)
        if len(content) > MAX_FILE_SIZE:
            raise FileTooLargeError(
                f"{filename!r} is {len(content)} bytes; the limit is {MAX_FILE_SIZE}"
            )
        safe_name = sanitize_filename(filename)
        chunk_hashes = self._store_content(content)
        meta = self._build_metadata(safe_name, chunk_hashes, len(content), content_type)
        with self._metadata_lock:
            self._write_metadata(safe_name, meta)
        return meta

    def get_file(self, filename) -> bytes:
        """Reassemble and return the stored content of ``filename``."""
        safe_name = sanitize_filename(filename)
        with self._metadata_lock:
            meta = self._load_metadata(safe_name)
        futures = [self._executor.submit(self._read_chunk, str(h)) for h in meta.get("chunks", [])]
        parts = []
        for future in futures:
            try:
                parts.append(future.result())
            except StoredFileNotFoundError as exc:
                raise StorageError(f"Missing chunk in {safe_name}: {exc}") from exc
        return b"".join(parts)

    def get_metadata(self, filename) -> dict:
        """Return the metadata dictionary stored for ``filename``."""
        safe_name = sanitize_filename(filename)
        with self._metadata_lock:
            return self._load_metadata(safe_name)

    def get_chunk(self, chunk_hash) -> bytes:
        """Return the raw bytes of one chunk."""
        return self._read_chunk(chunk_hash)

    def update_file(self, filename, content, content_type=None) -> dict:
        """Replace an existing file entirely; it must already exist."""
        self.delete_file(filename)
        return self.save_file(filename, content, content_type)

    def update_partial(self, filename, content, content_type=None) -> dict:
        """Replace a file's content, keeping its creation time and content type."""
        content = bytes(content)
        safe_name = sanitize_filename(filename)
        with self._metadata_lock:
            original = self._load_metadata(safe_name)

        new_hashes = self._store_content(content)
        self._release_all(str(h) for h in original.get("chunks", []))

        if not content_type:
            content_type = original.get("content_type")
        meta = self._build_metadata(safe_name, new_hashes, len(content), content_type)
        meta["created_at"] = original.get("created_at", meta["created_at"])

        with self._metadata_lock:
            self._write_metadata(safe_name, meta)
        return meta

    def delete_file(self, filename) -> None:
        """Remove a file's metadata and release its chunks."""
        safe_name = sanitize_filename(filename)
        with self._metadata_lock:
            meta = self._load_metadata(safe_name)
            self._metadata_path(safe_name).unlink()
        self._release_all(str(h) for h in meta.get("chunks", []))

    def list_files(self) -> list[str]:
        """Return the names of all stored files, sorted."""
        with self._metadata_lock:
            return sorted(
                entry.stem
                for entry in self.metadata_directory.iterdir()
                if entry.suffix == ".json"
            )

    def save_multiple_files(self, files, content_type=None) -> list[tuple[str, bool]]:
        """Save several ``(filename, content)`` pairs; report success per file."""
        pairs = list(files)

        def save_one(pair):
            name, data = pair
            try:
                self.save_file(name, data, content_type)
            except StorageError:
                return name, False
            return name, True

        if not pairs:
            return []
        # A separate pool keeps outer tasks from starving the chunk workers.
        with ThreadPoolExecutor(max_workers=min(len(pairs), self._thread_count)) as outer:
            return list(outer.map(save_one, pairs))