# chunkvault

A small HTTP file storage service. Uploaded files are split into 1 MiB
chunks. Each chunk is stored once, under its SHA-256 hash, so files that
share chunks also share storage. Every chunk has a reference count, and a
chunk is removed only after the last file that uses it has been deleted or
updated.

## Installing

```
pip install .
```

## Running the server

```
chunkvault
```

This starts the HTTP API in the foreground and prints the address it
listens on. It accepts these options:

| Option        | Default    | Meaning                                   |
|---------------|------------|-------------------------------------------|
| `--storage`   | `storage`  | storage directory, created if missing     |
| `--host`      | `0.0.0.0`  | address to listen on                      |
| `--port`      | `8080`     | port to listen on                         |
| `--threads`   | CPU count  | number of worker threads for chunk work   |

While it runs, the server reads commands from standard input:

- `pause`: API requests get `503` with `{"error": "Service is currently paused"}`
  until the service is resumed. `GET /` and `GET /service/status` still answer.
- `resume`: requests are handled normally again.
- `exit`: stop the server.

Any other input prints the list of available commands. Ctrl-C also stops
the server.

## HTTP API

| Method | Path                         | Purpose                                                      |
|--------|------------------------------|--------------------------------------------------------------|
| GET    | `/`                          | Plain-text message saying the service is running             |
| POST   | `/files`                     | Upload one file (multipart field `file`)                     |
| POST   | `/files/multi`               | Upload several files (fields whose names start with `file`)  |
| GET    | `/files`                     | List stored files, sorted, with a count                      |
| GET    | `/files/<name>`              | Download a file as an attachment                             |
| GET    | `/files/<name>/metadata`     | Show a file's metadata as JSON                               |
| PUT    | `/files/<name>`              | Replace a file's content (multipart field `file`)            |
| DELETE | `/files/<name>`              | Delete a file                                                |
| DELETE | `/files?files=[...]`         | Delete several files named in a JSON array                   |
| GET    | `/chunks/<hash>`             | Fetch a raw chunk by its SHA-256 hash                        |
| GET    | `/stats`                     | Total, free and used space of the storage disk, in MiB       |
| GET    | `/service/status`            | Whether the service is running or paused                     |

The optional `content_type` parameter sets the content type on upload; on
`/files/multi` it applies to every file in the request. Without it, the type
is guessed from the file extension and falls back to
`application/octet-stream`. `PUT` keeps the file's creation time and, unless
`content_type` is given, its content type.

Files larger than 100 MiB are refused with `400`. Uploads, updates and
deletions answer with JSON that includes `processing_time_ms`; downloads
carry an `X-Processing-Time` header. A stored file with no content is
answered with `404` on download, like a missing one.

Examples with `curl`:

```
curl -F file=@report.pdf http://localhost:8080/files
curl http://localhost:8080/files/report.pdf -o report.pdf
curl http://localhost:8080/files/report.pdf/metadata
curl -X PUT -F file=@report.pdf http://localhost:8080/files/report.pdf
curl -X DELETE http://localhost:8080/files/report.pdf
curl -X DELETE 'http://localhost:8080/files?files=["a.txt","b.txt"]'
```

## Using the storage from Python

```python
from chunkvault.storage import ChunkStore

with ChunkStore("storage", thread_count=4) as store:
    store.save_file("notes.txt", b"hello", "")
    assert store.get_file("notes.txt") == b"hello"
    print(store.get_metadata("notes.txt")["content_type"])  # text/plain
    print(store.list_files())  # ['notes.txt']
    store.update_partial("notes.txt", b"hello again", "")
    store.delete_file("notes.txt")
```

`ChunkStore` also offers `get_chunk(hash)`, `update_file(...)` (delete, then
save again, which resets the creation time) and
`save_multiple_files(pairs, content_type)`, which returns a
`(filename, succeeded)` pair for every file.

Failures are raised as exceptions from `chunkvault.storage`:

- `StoredFileNotFoundError` when a file or chunk is not in the store,
- `FileTooLargeError` when content exceeds 100 MiB,
- `StorageError`, the base of both, for other failures such as corrupt
  metadata or a missing chunk while reassembling a file.

The module also provides `sanitize_filename`, `guess_content_type` and
`sha256_hex`. File names are sanitised before they are stored: any character
other than an ASCII letter, digit, underscore, hyphen or dot becomes `_`.

Data is laid out under the base directory as:

```
<base>/chunks/<sha256>            chunk contents
<base>/chunks/<sha256>.refcount   how many file references the chunk has
<base>/metadata/<name>.json       file metadata
```

Metadata holds `filename`, `size`, `chunks`, `content_type`, `created_at`
and `modified_at`; the timestamps are local time written as
`YYYY-MM-DDTHH:MM:SSZ`.

To serve an existing store, build the Flask application with
`chunkvault.app.create_app(store, control)`. `chunkvault.control` provides
`ServiceControl` (with `pause()`, `resume()` and `status()`), the
`ServiceState` enum, `handle_command(control, command)` for the console
commands, and `disk_stats(path)`.

## What it does not do

The service runs only as a foreground process started from a terminal. It
does not install or register itself as an operating-system service, and it
has no authentication or TLS; put it behind a proxy if it must be reachable
from untrusted networks.