"""Streaming file uploads and directory creation below a sandboxed directory."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Iterator, List, Mapping, Optional, Tuple

from werkzeug.exceptions import ClientDisconnected, RequestEntityTooLarge
from werkzeug.http import parse_options_header
from werkzeug.sansio.multipart import (
    Data,
    Epilogue,
    Field,
    File,
    MultipartDecoder,
    NeedData,
)

from .errors import (
    ConflictMkdirError,
    DuplicateFileError,
    InvalidPathError,
    IoError,
    MultipartError,
    ParseError,
)
from .sandbox import check_target_dir

logger = logging.getLogger("dirserve.uploads")

CHUNK_SIZE_BYTES = 64 * 1024
MAX_PARTS = 1000
_FORBIDDEN_NAME_CHARACTERS = ("/", "\\", "\x00")
_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)
_BINARY = getattr(os, "O_BINARY", 0)


@dataclass
class UploadField:
    """One part of a multipart body.

    ``chunks`` yields the part's bytes lazily; it must be consumed before the
    next field can be read.
    """

    name: Optional[str]
    filename: Optional[str]
    headers: Mapping[str, str] = field(default_factory=dict)
    chunks: Iterator[bytes] = field(default_factory=lambda: iter(()))

    def drain(self) -> None:
        for _ in self.chunks:
            pass


def multipart_boundary(content_type: Optional[str]) -> bytes:
    mimetype, options = parse_options_header(content_type or "")
    if mimetype != "multipart/form-data":
        raise MultipartError(f"unsupported content type {mimetype or 'none'}")
    boundary = options.get("boundary")
    if not boundary:
        raise MultipartError("missing multipart boundary")
    return boundary.encode("latin-1")


class MultipartReader:
    """Pull events out of a request body one chunk at a time."""

    def __init__(self, stream: BinaryIO, boundary: bytes, chunk_size: int = CHUNK_SIZE_BYTES) -> None:
        self._stream = stream
        self._decoder = MultipartDecoder(boundary, max_parts=MAX_PARTS)
        self._chunk_size = chunk_size
        self._exhausted = False

    def _feed(self) -> None:
        if self._exhausted:
            raise MultipartError("unexpected end of request body")
        try:
            data = self._stream.read(self._chunk_size)
        except ClientDisconnected as error:
            raise MultipartError("client disconnected during upload") from error
        except OSError as error:
            raise MultipartError(f"failed to read request body: {error}") from error
        if data:
            self._decoder.receive_data(data)
        else:
            self._decoder.receive_data(None)
            self._exhausted = True

    def _next_event(self):
        while True:
            try:
                event = self._decoder.next_event()
            except ValueError as error:
                if "Content-Disposition" in str(error):
                    raise ParseError(
                        "HTTP header", "Failed to retrieve the name of the file to upload"
                    ) from error
                raise MultipartError(str(error)) from error
            except RequestEntityTooLarge as error:
                raise MultipartError(str(error)) from error
            if not isinstance(event, NeedData):
                return event
            self._feed()

    def _part_data(self) -> Iterator[bytes]:
        while True:
            event = self._next_event()
            if not isinstance(event, Data):
                raise MultipartError(f"unexpected {type(event).__name__} inside a part")
            if event.data:
                yield event.data
            if not event.more_data:
                return

    def fields(self) -> Iterator[UploadField]:
        while True:
            event = self._next_event()
            if isinstance(event, Epilogue):
                return
            if isinstance(event, (File, Field)):
                part = UploadField(
                    name=event.name,
                    filename=event.filename if isinstance(event, File) else None,
                    headers=event.headers,
                    chunks=self._part_data(),
                )
                yield part
                part.drain()


def iter_multipart(
    stream: BinaryIO, content_type: Optional[str], chunk_size: int = CHUNK_SIZE_BYTES
) -> Iterator[UploadField]:
    return MultipartReader(stream, multipart_boundary(content_type), chunk_size).fields()


def upload_destination(target_dir: Path, filename: str) -> Path:
    """Join ``filename`` onto ``target_dir`` as a single path component."""

    if (
        filename in (".", "..")
        or any(character in filename for character in _FORBIDDEN_NAME_CHARACTERS)
    ):
        raise InvalidPathError(f"illegal file name {filename}")
    destination = target_dir / filename
    if destination.parent != target_dir:
        raise InvalidPathError(f"illegal file name {filename}")
    return destination


def save_file(chunks: Iterable[bytes], file_path: Path, overwrite_files: bool) -> int:
    """Stream ``chunks`` into ``file_path`` and return the number of bytes written."""

    if not overwrite_files and os.path.lexists(file_path):
        raise DuplicateFileError()

    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _NOFOLLOW | _BINARY
    if not overwrite_files:
        flags |= os.O_EXCL
    try:
        fd = os.open(file_path, flags, 0o666)
    except FileExistsError as error:
        raise DuplicateFileError() from error
    except OSError as error:
        raise IoError(f"Failed to create {file_path}", error) from error

    written = 0
    with os.fdopen(fd, "wb") as handle:
        for chunk in chunks:
            try:
                handle.write(chunk)
            except OSError as error:
                raise IoError(f"Failed to write to file {file_path}", error) from error
            written += len(chunk)
    return written


def ingest(
    fields: Iterable[UploadField], target_dir: Path, overwrite_files: bool
) -> List[Tuple[Path, int]]:
    """Save every file field of a multipart body below ``target_dir``.

    Fields are handled strictly in arrival order. A failure stops processing;
    files written before it, and the partial content of the failing one, stay
    on disk.
    """

    check_target_dir(target_dir, "upload file")
    saved: List[Tuple[Path, int]] = []
    for upload in fields:
        if not upload.filename:
            raise ParseError("HTTP header", "Failed to retrieve the name of the file to upload")
        destination = upload_destination(target_dir, upload.filename)
        size = save_file(upload.chunks, destination, overwrite_files)
        logger.info("upload_saved path=%s size=%d", destination, size)
        saved.append((destination, size))
    return saved


def check_dir_name(dir_name: str) -> str:
    """Return the single component named by ``dir_name``.

    ``.`` components are ignored, so a name made only of them names the
    target directory itself. Parent references, roots, separators between
    several names and the empty name are rejected.
    """

    if not dir_name or "\\" in dir_name or "\x00" in dir_name:
        raise InvalidPathError(f"illegal directory name {dir_name}")
    candidate = PurePosixPath(dir_name)
    parts = candidate.parts
    if not parts:
        return "."
    if candidate.is_absolute() or len(parts) != 1 or parts[0] == "..":
        raise InvalidPathError(f"illegal directory name {dir_name}")
    return parts[0]


def create_directory(target_dir: Path, dir_name: str) -> Path:
    check_target_dir(target_dir, "create directory")
    name = check_dir_name(dir_name)

    destination = target_dir / name
    if os.path.lexists(destination):
        raise ConflictMkdirError(str(destination))

    try:
        os.mkdir(destination)
    except FileExistsError as error:
        raise ConflictMkdirError(str(destination)) from error
    except OSError as error:
        raise IoError(f"Failed to create {destination}", error) from error
    logger.info("directory_created path=%s", destination)
    return destination
