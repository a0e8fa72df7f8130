"""Sending side of a file transfer: packs files and directories into a stream."""

from __future__ import annotations

import errno
import logging
import os
import struct
import sys
import zlib
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional

from .filecopy import (
    PROGRESS_NOTIFY_DELTA,
    S_IFDIR,
    S_IFREG,
    CopyError,
    CopyStatus,
    ErrorReporter,
    FileCopyError,
    FileHeader,
    ProgressType,
    ResultHeader,
    copy_file,
    read_exact,
)
from .names import MAX_PATH

log = logging.getLogger(__name__)

_DIRECTORY_MODE = 0o755 | S_IFDIR
_FILE_MODE = 0o644 | S_IFREG
_TICKS_PER_SECOND = 10_000_000
_NS_PER_TICK = 100
_UINT32 = 0xFFFFFFFF
_LAST_FILE_PREFIX = "; Last file: "


def split_timestamp(ns: int) -> tuple[int, int]:
    """Split a nanosecond timestamp into 32-bit seconds and 100 ns-granular nanoseconds."""
    ticks = ns // _NS_PER_TICK
    seconds = ticks // _TICKS_PER_SECOND
    nsec = (ticks % _TICKS_PER_SECOND) * _NS_PER_TICK
    return seconds & _UINT32, nsec & _UINT32


class ProgressNotifier:
    """Accumulate transferred bytes and pass notable changes on to a callback."""

    def __init__(
        self,
        total: int = 0,
        callback: Optional[Callable[[int, ProgressType], None]] = None,
    ):
        self.total = total
        self.callback = callback
        self.written = 0
        self._previous = 0

    def notify(self, size: int, kind: ProgressType = ProgressType.NORMAL) -> None:
        """Count size more bytes; call back every PROGRESS_NOTIFY_DELTA bytes or on a state change."""
        kind = ProgressType(kind)
        self.written += size
        if self.written > self._previous + PROGRESS_NOTIFY_DELTA or kind != ProgressType.NORMAL:
            if self.callback is not None:
                self.callback(self.written, kind)
            self._previous = self.written

    def _set_error_state(self, error_occurred: bool) -> None:
        if self.callback is not None:
            self.callback(0, ProgressType.ERROR if error_occurred else ProgressType.NORMAL)


class FileSender:
    """Write files and directories to sink and read the receiver's verdict from source."""

    def __init__(
        self,
        source: BinaryIO,
        sink: BinaryIO,
        progress: Optional[ProgressNotifier] = None,
    ):
        self.source = source
        self.sink = sink
        self.progress = progress
        self.crc = 0
        self.cancelled = False
        self.reporter = ErrorReporter(
            callback=progress._set_error_state if progress is not None else None
        )

    def _fatal(self, error_code: int, message: str) -> None:
        self.reporter.report(error_code, True, message)
        raise FileCopyError(error_code, message)

    def _notify(self, size: int, kind: ProgressType) -> None:
        if self.progress is not None:
            self.progress.notify(size, kind)

    # size calculation

    def _size_of(self, path: Path) -> int:
        try:
            st = path.stat()
        except OSError as exc:
            self._fatal(exc.errno or 0, f"Cannot get attributes of '{path}'")
        if not path.is_dir():
            return st.st_size
        try:
            children = sorted(os.listdir(path))
        except OSError as exc:
            self._fatal(exc.errno or 0, f"Cannot list directory '{path}'")
        size = 0
        for child in children:
            size += self._size_of(path / child)
            if self.cancelled:
                break
        return size

    def total_size(self, paths: Iterable[os.PathLike | str]) -> int:
        """Total number of file bytes below the given paths."""
        total = 0
        for path in paths:
            if self.cancelled:
                break
            total += self._size_of(Path(path))
        return total

    # sending

    def _write(self, data: bytes) -> None:
        self.crc = zlib.crc32(data, self.crc)
        self.sink.write(data)

    def _abort_after_write_error(self) -> None:
        # the receiver has most likely stopped; its verdict explains why
        self.wait_for_result()
        raise FileCopyError(errno.EPIPE, "writing to the receiving side failed")

    def _write_headers(self, header: FileHeader, name: str) -> None:
        encoded = name.encode("utf-8", "surrogateescape")
        header.namelen = len(encoded)
        try:
            self._write(header.pack() + encoded)
        except OSError:
            self._abort_after_write_error()

    def _send_entry(self, full: Path, name: str, is_dir: bool) -> None:
        log.debug("%s", full)
        if is_dir:
            try:
                st = full.stat()
            except OSError as exc:
                self._fatal(exc.errno or 0, f"Cannot get time of file '{full}'")
            header = self._header(_DIRECTORY_MODE, 0, st)
            self._write_headers(header, name)
            return

        try:
            handle = open(full, "rb")
        except OSError as exc:
            self._fatal(exc.errno or 0, f"Cannot open file '{full}'")
        with handle:
            try:
                st = os.fstat(handle.fileno())
            except OSError as exc:
                self._fatal(exc.errno or 0, f"Cannot get size of file '{full}'")
            header = self._header(_FILE_MODE, st.st_size, st)
            self._write_headers(header, name)
            try:
                self.crc = copy_file(self.sink, handle, header.filelen, self.crc, self._notify)
            except CopyError as exc:
                if exc.status == CopyStatus.WRITE_ERROR:
                    self._abort_after_write_error()
                self._fatal(0, f"Error copying file '{full}': {exc}")

    @staticmethod
    def _header(mode: int, filelen: int, st: os.stat_result) -> FileHeader:
        atime, atime_nsec = split_timestamp(st.st_atime_ns)
        mtime, mtime_nsec = split_timestamp(st.st_mtime_ns)
        return FileHeader(
            mode=mode,
            filelen=filelen,
            atime=atime,
            atime_nsec=atime_nsec,
            mtime=mtime,
            mtime_nsec=mtime_nsec,
        )

    def _process(self, parent: Path, name: str) -> None:
        full = parent / name
        try:
            is_dir = full.is_dir()
            full.stat()
        except OSError as exc:
            self._fatal(exc.errno or 0, f"Cannot get attributes of '{full}'")
        self._send_entry(full, name, is_dir)
        if not is_dir:
            return
        try:
            children = sorted(os.listdir(full))
        except OSError as exc:
            self._fatal(exc.errno or 0, f"Cannot list directory '{full}'")
        for child in children:
            # forward slashes travel to the other end unchanged
            self._process(parent, f"{name}/{child}")
            if self.cancelled:
                break
        # directory metadata is sent again so that its times end up right
        self._send_entry(full, name, True)

    def send_paths(self, paths: Iterable[os.PathLike | str]) -> None:
        """Send every path with its contents, then the end-of-transfer marker."""
        for path in paths:
            if self.cancelled:
                break
            absolute = Path(os.path.abspath(path))
            if not absolute.name:
                self._fatal(errno.EINVAL, f"Cannot send '{path}'")
            self._process(absolute.parent, absolute.name)
        try:
            self._write(FileHeader().pack())
            self.sink.flush()
        except OSError:
            self._abort_after_write_error()

    def wait_for_result(self) -> ResultHeader:
        """Read the receiver's status; raise FileCopyError if it reports a failure."""
        try:
            raw = read_exact(self.source, ResultHeader.SIZE)
        except (EOFError, OSError):
            log.error("reading the result failed")
            raise FileCopyError(0, "no result received from the receiving side") from None
        base = ResultHeader.unpack(raw)

        has_ext = True
        try:
            (namelen,) = struct.unpack("<I", read_exact(self.source, ResultHeader.EXT_SIZE))
        except (EOFError, OSError):
            # the receiver uses the short result header
            has_ext = False
            namelen = 0
        namelen = min(namelen, MAX_PATH)
        try:
            last = read_exact(self.source, namelen)
        except (EOFError, OSError):
            sys.stderr.write("Failed to get last filename\n")
            log.error("Failed to get last filename")
            last = b""

        last_text = last.decode("utf-8", "replace")
        prefix = _LAST_FILE_PREFIX if last else ""
        code = base.error_code
        if code == errno.EEXIST:
            self._fatal(
                errno.EEXIST,
                "File copy: not overwriting existing file. Clean incoming dir, "
                f"and retry copy{prefix}{last_text}",
            )
        elif code == errno.EINVAL:
            self._fatal(errno.EINVAL, f"File copy: Corrupted data from packer{prefix}{last_text}")
        elif code != 0:
            self._fatal(0, f"File copy: {os.strerror(code)}{prefix}{last_text}")

        if base.crc32 != self.crc:
            self._fatal(errno.EINVAL, "File transfer failed: checksum mismatch")
        return ResultHeader(code, base.crc32, last if has_ext else None)


def _console_progress(notifier: ProgressNotifier) -> Callable[[int, ProgressType], None]:
    def show(written: int, kind: ProgressType) -> None:
        if kind == ProgressType.NORMAL and written and notifier.total:
            sys.stderr.write(f"\rSending files: {100 * written // notifier.total}%")
        elif kind == ProgressType.DONE:
            sys.stderr.write("\rSending files: done\n")
        elif kind == ProgressType.ERROR:
            sys.stderr.write("\n")
        sys.stderr.flush()

    return show


def main(argv: Optional[list[str]] = None) -> int:
    """Send the paths given on the command line to stdout and await the result on stdin."""
    paths = sys.argv[1:] if argv is None else list(argv)
    notifier = ProgressNotifier()
    notifier.callback = _console_progress(notifier)
    sender = FileSender(sys.stdin.buffer, sys.stdout.buffer, notifier)
    try:
        notifier.notify(0, ProgressType.INIT)
        notifier.total = sender.total_size(paths)
        sender.send_paths(paths)
        sender.wait_for_result()
    except FileCopyError:
        return 1
    notifier.notify(0, ProgressType.DONE)
    return 0


if __name__ == "__main__":
    sys.exit(main())