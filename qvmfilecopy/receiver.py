"""Receiving side of a file transfer: unpacks a stream of entries into a directory."""

from __future__ import annotations

import errno
import logging
import os
import sys
import zlib
from pathlib import Path
from typing import BinaryIO, Optional

from .filecopy import (
    EDQUOT,
    ENAMETOOLONG,
    LEGAL_EOF,
    MAX_PATH_LENGTH,
    CopyError,
    FileHeader,
    ResultHeader,
    copy_file,
    is_directory,
    is_link,
    is_regular,
    read_exact,
)
from .names import MAX_PATH, NameTooLongError, untrusted_name_to_path

log = logging.getLogger(__name__)

INCOMING_DIR_ROOT = "QubesIncoming"
_DRIVE_PREFIX_CHARS = 3  # room taken by the drive prefix of a mapped root


class TransferAborted(Exception):
    """The transfer stops; code and last_name go back to the sender."""

    def __init__(self, code: int, last_name: Optional[bytes] = None):
        super().__init__(f"transfer aborted with status {code}")
        self.code = code
        self.last_name = last_name


def incoming_directory(documents: os.PathLike | str, remote_domain: str) -> Path:
    """Directory that receives files sent by remote_domain."""
    return Path(documents) / INCOMING_DIR_ROOT / remote_domain


def _utf16_units(text: str) -> int:
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


class FileReceiver:
    """Unpack entries read from source below root, reporting the result to sink."""

    def __init__(
        self,
        source: BinaryIO,
        sink: BinaryIO,
        root: os.PathLike | str,
        bytes_limit: int = 0,
        files_limit: int = 0,
    ):
        self.source = source
        self.sink = sink
        self.root = Path(root)
        self.bytes_limit = bytes_limit
        self.files_limit = files_limit
        self.crc = 0
        self.total_bytes = 0
        self.total_files = 0
        self.last_name: Optional[bytes] = None

    def _read(self, size: int) -> bytes:
        data = read_exact(self.source, size)
        self.crc = zlib.crc32(data, self.crc)
        return data

    def _local_path(self, untrusted: bytes) -> Path:
        try:
            name = untrusted_name_to_path(untrusted, MAX_PATH)
        except NameTooLongError:
            raise TransferAborted(errno.EINVAL) from None
        if not name:
            raise TransferAborted(errno.EINVAL)
        if _utf16_units(name) + _DRIVE_PREFIX_CHARS > MAX_PATH:
            raise TransferAborted(errno.EINVAL, untrusted)
        return self._resolve(name)

    def _resolve(self, name: str) -> Path:
        # Everything stays below root, as if root were the top of a drive.
        parts: list[str] = []
        for part in name.replace("\\", "/").split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                if parts:
                    parts.pop()
                continue
            parts.append(part)
        return self.root.joinpath(*parts)

    def _regular_file(self, header: FileHeader, untrusted: bytes) -> None:
        path = self._local_path(untrusted)
        log.debug("file '%s'", path)
        try:
            output = open(path, "xb")
        except FileExistsError:
            raise TransferAborted(errno.EEXIST, untrusted) from None
        except PermissionError:
            raise TransferAborted(errno.EACCES, untrusted) from None
        except OSError:
            raise TransferAborted(errno.EIO, untrusted) from None

        with output:
            self.total_bytes += header.filelen
            if self.bytes_limit and self.total_bytes > self.bytes_limit:
                raise TransferAborted(EDQUOT, untrusted)
            try:
                self.crc = copy_file(output, self.source, header.filelen, self.crc)
            except CopyError:
                raise TransferAborted(errno.EIO, untrusted) from None

    def _directory(self, header: FileHeader, untrusted: bytes) -> None:
        path = self._local_path(untrusted)
        log.debug("dir '%s'", path)
        try:
            path.mkdir()
        except FileExistsError:
            pass
        except OSError:
            raise TransferAborted(errno.ENOTDIR, untrusted) from None

    def _link(self, header: FileHeader, untrusted: bytes) -> None:
        path = self._local_path(untrusted)
        log.debug("link '%s'", path)
        if header.filelen > MAX_PATH - 1:
            raise TransferAborted(ENAMETOOLONG, untrusted)
        try:
            raw_target = self._read(header.filelen)
        except (EOFError, OSError):
            raise TransferAborted(errno.EIO, untrusted) from None
        try:
            target = untrusted_name_to_path(raw_target, MAX_PATH)
        except NameTooLongError:
            raise TransferAborted(errno.EINVAL, untrusted) from None
        if not target:
            raise TransferAborted(errno.EINVAL, untrusted)
        log.debug("target '%s'", target)

        if target.startswith(("/", "\\")):
            raise TransferAborted(errno.EPERM, untrusted)

        candidate = path.parent / target.replace("\\", "/")
        target_is_file = candidate.exists() and not candidate.is_dir()
        try:
            os.symlink(target, path, target_is_directory=not target_is_file)
        except FileExistsError:
            raise TransferAborted(errno.EEXIST, untrusted) from None
        except PermissionError:
            raise TransferAborted(errno.EACCES, untrusted) from None
        except OSError:
            raise TransferAborted(errno.EIO, untrusted) from None

    def process_entry(self, header: FileHeader) -> None:
        """Read the name of one entry and create it; raise TransferAborted on error."""
        if header.namelen > MAX_PATH_LENGTH - 1:
            raise TransferAborted(ENAMETOOLONG)
        try:
            untrusted = self._read(header.namelen)
        except (EOFError, OSError):
            raise TransferAborted(LEGAL_EOF) from None
        self.last_name = untrusted

        if is_regular(header.mode):
            self._regular_file(header, untrusted)
        elif is_link(header.mode):
            self._link(header, untrusted)
        elif is_directory(header.mode):
            self._directory(header, untrusted)
        else:
            raise TransferAborted(errno.EINVAL, untrusted)

    def send_status(self, code: int, last_name: Optional[bytes] = None) -> None:
        """Send the status code and running checksum back to the sender."""
        log.debug("status %d, last file %r", code, last_name)
        try:
            self.sink.write(ResultHeader(code, self.crc, last_name).pack())
            self.sink.flush()
        except OSError as exc:
            log.error("sending status failed: %s", exc)

    def receive_files(self) -> int:
        """Receive entries until the end marker; return the status sent back."""
        self.crc = 0
        try:
            while True:
                try:
                    raw = self._read(FileHeader.SIZE)
                except (EOFError, OSError):
                    break
                header = FileHeader.unpack(raw)
                if header.namelen == 0:
                    break
                self.process_entry(header)
                self.total_files += 1
                if self.files_limit and self.total_files > self.files_limit:
                    raise TransferAborted(EDQUOT, self.last_name)
        except TransferAborted as exc:
            code = 0 if exc.code == LEGAL_EOF else exc.code
            self.send_status(code, exc.last_name)
            return code
        self.send_status(0)
        return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Receive files from stdin into the incoming directory of the remote domain."""
    logging.basicConfig(level=logging.WARNING)
    remote_domain = os.environ.get("QREXEC_REMOTE_DOMAIN")
    if not remote_domain:
        log.error("QREXEC_REMOTE_DOMAIN is not set")
        return 1
    target = incoming_directory(Path.home() / "Documents", remote_domain)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log.error("cannot create %s: %s", target, exc)
        return exc.errno or 1
    receiver = FileReceiver(sys.stdin.buffer, sys.stdout.buffer, target)
    return receiver.receive_files()


if __name__ == "__main__":
    sys.exit(main())