"""Wire format and copy helpers shared by the file transfer services."""

from __future__ import annotations

import enum
import logging
import os
import struct
import sys
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional, TextIO

log = logging.getLogger(__name__)

FILECOPY_VMNAME_SIZE = 32
PROGRESS_NOTIFY_DELTA = 1 * 1000 * 1000
MAX_PATH_LENGTH = 16384
LEGAL_EOF = 31415926

UNIX_EPOCH_OFFSET = 11644478640

ENAMETOOLONG = 36
EDQUOT = 122

S_IFMT = 0o170000
S_IFSOCK = 0o140000
S_IFLNK = 0o120000
S_IFREG = 0o100000
S_IFBLK = 0o060000
S_IFDIR = 0o040000
S_IFCHR = 0o020000
S_IFIFO = 0o010000
S_ISUID = 0o004000
S_ISGID = 0o002000
S_ISVTX = 0o001000

COPY_CHUNK_SIZE = 4096
_MESSAGE_LIMIT = 1024

_FILE_HEADER = struct.Struct("<IIQIIII")
_RESULT_HEADER = struct.Struct("<IIQ")
_RESULT_HEADER_EXT = struct.Struct("<I")


def is_regular(mode: int) -> bool:
    """True if the mode describes a regular file."""
    return (mode & S_IFMT) == S_IFREG


def is_directory(mode: int) -> bool:
    """True if the mode describes a directory."""
    return (mode & S_IFMT) == S_IFDIR


def is_link(mode: int) -> bool:
    """True if the mode describes a symbolic link."""
    return (mode & S_IFMT) == S_IFLNK


@dataclass
class FileHeader:
    """Header preceding every entry of a transfer stream."""

    namelen: int = 0
    mode: int = 0
    filelen: int = 0
    atime: int = 0
    atime_nsec: int = 0
    mtime: int = 0
    mtime_nsec: int = 0

    SIZE = _FILE_HEADER.size

    def pack(self) -> bytes:
        return _FILE_HEADER.pack(
            self.namelen,
            self.mode,
            self.filelen,
            self.atime,
            self.atime_nsec,
            self.mtime,
            self.mtime_nsec,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "FileHeader":
        if len(data) < _FILE_HEADER.size:
            raise ValueError(
                f"file header needs {_FILE_HEADER.size} bytes, got {len(data)}"
            )
        return cls(*_FILE_HEADER.unpack_from(data))


@dataclass
class ResultHeader:
    """Status sent back by the receiving side, optionally naming the last file."""

    error_code: int = 0
    crc32: int = 0
    last_name: Optional[bytes] = None

    SIZE = _RESULT_HEADER.size
    EXT_SIZE = _RESULT_HEADER_EXT.size

    def pack(self) -> bytes:
        data = _RESULT_HEADER.pack(self.error_code, 0, self.crc32)
        if self.last_name is not None:
            data += _RESULT_HEADER_EXT.pack(len(self.last_name)) + self.last_name
        return data

    @classmethod
    def unpack(cls, data: bytes) -> "ResultHeader":
        if len(data) < _RESULT_HEADER.size:
            raise ValueError(
                f"result header needs {_RESULT_HEADER.size} bytes, got {len(data)}"
            )
        error_code, _pad, crc = _RESULT_HEADER.unpack_from(data)
        rest = data[_RESULT_HEADER.size:]
        if len(rest) < _RESULT_HEADER_EXT.size:
            return cls(error_code, crc, None)
        (namelen,) = _RESULT_HEADER_EXT.unpack_from(rest)
        name = rest[_RESULT_HEADER_EXT.size:_RESULT_HEADER_EXT.size + namelen]
        if len(name) != namelen:
            raise ValueError("truncated last file name in result header")
        return cls(error_code, crc, name)


class CopyStatus(enum.IntEnum):
    OK = 0
    READ_EOF = 1
    READ_ERROR = 2
    WRITE_ERROR = 3


class ProgressType(enum.IntEnum):
    NORMAL = 0
    INIT = 1
    DONE = 2
    ERROR = 3


_STATUS_TEXT = {
    CopyStatus.OK: "OK",
    CopyStatus.READ_EOF: "Unexpected end of data while reading",
    CopyStatus.READ_ERROR: "Error reading",
    CopyStatus.WRITE_ERROR: "Error writing",
}


def status_to_string(status: int) -> str:
    """Human-readable description of a copy status."""
    try:
        return _STATUS_TEXT[CopyStatus(status)]
    except ValueError:
        log.warning("Unknown status: %s", status)
        return "Unknown error"


class CopyError(Exception):
    """A file copy did not complete."""

    def __init__(self, status: CopyStatus):
        super().__init__(status_to_string(status))
        self.status = status


class FileCopyError(Exception):
    """A fatal error reported through an ErrorReporter."""

    def __init__(self, error_code: int, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly size bytes or raise EOFError."""
    parts = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError(f"expected {size} bytes, got {size - remaining}")
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _write_all(output: BinaryIO, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = output.write(view)
        if written is None:
            written = len(view)
        if written <= 0:
            raise OSError("write made no progress")
        view = view[written:]


def copy_file(
    output: BinaryIO,
    source: BinaryIO,
    size: int,
    crc: int = 0,
    progress: Optional[Callable[[int, ProgressType], None]] = None,
) -> int:
    """Copy size bytes from source to output; return the updated CRC-32."""
    transferred = 0
    while transferred < size:
        to_read = min(COPY_CHUNK_SIZE, size - transferred)
        try:
            chunk = source.read(to_read)
        except OSError as exc:
            log.error("read failed: %s", exc)
            raise CopyError(CopyStatus.READ_ERROR) from exc
        if not chunk:
            raise CopyError(CopyStatus.READ_EOF)
        crc = zlib.crc32(chunk, crc)
        try:
            _write_all(output, chunk)
        except OSError as exc:
            raise CopyError(CopyStatus.WRITE_ERROR) from exc
        if progress is not None:
            progress(len(chunk), ProgressType.NORMAL)
        transferred += len(chunk)
    return crc


class ErrorReporter:
    """Report transfer errors to a stream, notifying a callback around each report."""

    def __init__(
        self,
        callback: Optional[Callable[[bool], None]] = None,
        stream: Optional[TextIO] = None,
    ):
        self.callback = callback
        self.stream = stream if stream is not None else sys.stderr

    def _notify(self, error_occurred: bool) -> None:
        if self.callback is not None:
            self.callback(error_occurred)

    def _produce(self, error_code: int, message: str) -> str:
        text = message
        if len(text) >= _MESSAGE_LIMIT:
            log.error("error message too long")
            return text
        if error_code:
            text = f"{text}: {os.strerror(error_code)}"
        text += "\n"
        if len(text) >= _MESSAGE_LIMIT:
            log.error("error message too long")
            return text
        self.stream.write(text)
        self.stream.flush()
        return text

    def report(self, error_code: int, fatal: bool, message: str) -> None:
        """Emit a message; raise FileCopyError if fatal."""
        self._notify(True)
        text = self._produce(error_code, message)
        if fatal:
            raise FileCopyError(error_code, text.rstrip("\n"))
        self._notify(False)