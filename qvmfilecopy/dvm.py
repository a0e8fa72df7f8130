"""Exchanging a single file with a disposable VM: open-in-VM and the editor side."""

from __future__ import annotations

import errno
import logging
import os
import re
import shlex
import subprocess
import sys
import tempfile
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from .filecopy import ErrorReporter, FileCopyError, read_exact

log = logging.getLogger(__name__)

DVM_FILENAME_SIZE = 256
_CHUNK_SIZE = 64 * 1024
_REPLACED_CHARS = b' !?"#$%^&*()[]<>;`~'
_REPLACE_TABLE = bytes.maketrans(_REPLACED_CHARS, b"_" * len(_REPLACED_CHARS))


class DispVMError(Exception):
    """A step of a disposable VM file exchange failed."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def sanitize_dvm_filename(data: bytes) -> str:
    """Turn the fixed-size name field sent by the peer into a safe file name."""
    raw = bytes(data[:DVM_FILENAME_SIZE])
    end = raw.find(b"\x00")
    if end >= 0:
        raw = raw[:end]
    if b"/" in raw:
        raise DispVMError(errno.EINVAL, "filename contains /")
    if b"\\" in raw:
        raise DispVMError(errno.EINVAL, "filename contains \\")
    # some openers have trouble with these characters
    raw = raw.translate(_REPLACE_TABLE)
    try:
        name = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise DispVMError(errno.EINVAL, "Invalid file name") from None
    if name in ("", ".", ".."):
        raise DispVMError(errno.EINVAL, "Invalid file name")
    return name


def pad_filename(name: str) -> bytes:
    """Encode name into the fixed-size field, keeping its tail if it is too long."""
    encoded = name.encode("utf-8", "surrogateescape")
    if len(encoded) >= DVM_FILENAME_SIZE:
        encoded = encoded[len(encoded) - DVM_FILENAME_SIZE + 1:]
    return encoded.ljust(DVM_FILENAME_SIZE, b"\x00")


def _base_name(path: os.PathLike | str) -> str:
    return re.split(r"[\\/]", os.fspath(path))[-1]


def _copy_until_eof(output: BinaryIO, source: BinaryIO) -> int:
    total = 0
    while True:
        chunk = source.read(_CHUNK_SIZE)
        if not chunk:
            break
        output.write(chunk)
        total += len(chunk)
    output.flush()
    return total


def send_file(path: os.PathLike | str, sink: BinaryIO) -> int:
    """Send the padded base name of path followed by its contents; return the content size."""
    try:
        handle = open(path, "rb")
    except OSError as exc:
        raise DispVMError(exc.errno or 0, f"open '{path}'") from None
    with handle:
        try:
            sink.write(pad_filename(_base_name(path)))
        except OSError as exc:
            raise DispVMError(exc.errno or 0, "send filename to dispVM") from None
        try:
            return _copy_until_eof(sink, handle)
        except OSError as exc:
            raise DispVMError(exc.errno or 0, "send file to dispVM") from None


def receive_file(path: os.PathLike | str, source: BinaryIO) -> bool:
    """Replace path with everything read from source; leave it alone if nothing came."""
    try:
        tmp = tempfile.NamedTemporaryFile(prefix="qvm", delete=False)
    except OSError as exc:
        raise DispVMError(exc.errno or 0, "Failed to get temp file") from None
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            try:
                size = _copy_until_eof(tmp, source)
            except OSError as exc:
                raise DispVMError(exc.errno or 0, "receiving file from dispVM") from None
        if size == 0:
            return False
        try:
            os.replace(tmp_path, path)
        except OSError:
            try:
                with open(tmp_path, "rb") as src, open(path, "wb") as dst:
                    _copy_until_eof(dst, src)
            except OSError as exc:
                raise DispVMError(exc.errno or 0, "rename") from None
        return True
    finally:
        tmp_path.unlink(missing_ok=True)


def receive_into_temp(source: BinaryIO) -> Path:
    """Read a named file from source into a fresh temporary directory; return its path."""
    try:
        field = read_exact(source, DVM_FILENAME_SIZE)
    except (EOFError, OSError):
        raise DispVMError(errno.EIO, "Failed get filename") from None
    name = sanitize_dvm_filename(field)

    directory = Path(tempfile.gettempdir()) / str(uuid.uuid4())
    try:
        directory.mkdir(exist_ok=True)
    except OSError as exc:
        raise DispVMError(exc.errno or 0, "Failed to create tmp subdir") from None

    path = directory / name
    try:
        try:
            output = open(path, "xb")
        except FileExistsError:
            raise DispVMError(errno.EEXIST, "File already exists, cleanup temp directory") from None
        except OSError as exc:
            raise DispVMError(exc.errno or 0, f"Failed to create file '{path}'") from None
        with output:
            try:
                _copy_until_eof(output, source)
            except OSError as exc:
                raise DispVMError(exc.errno or 0, "Failed to read/write file") from None
    except DispVMError:
        _cleanup(path)
        raise
    return path


def _cleanup(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass
    try:
        path.parent.rmdir()
    except OSError:
        pass


def _close_stdout() -> None:
    # the peer learns that the data is complete when our output closes
    try:
        sys.stdout.flush()
        sys.stdout.close()
    except OSError:
        pass


def open_in_vm_main(argv: Optional[list[str]] = None) -> int:
    """Send the named file to a disposable VM and take back its edited version."""
    args = sys.argv[1:] if argv is None else list(argv)
    reporter = ErrorReporter()
    try:
        if len(args) != 1:
            reporter.report(errno.EINVAL, True, "OpenInVM - no file given?")
        sys.stderr.write("OpenInVM starting\n")
        path = args[0]
        try:
            send_file(path, sys.stdout.buffer)
            _close_stdout()
            sys.stderr.write("File sent\n")
            receive_file(path, sys.stdin.buffer)
        except DispVMError as exc:
            reporter.report(exc.code, True, exc.message)
    except FileCopyError:
        return 1
    return 0


def _open_command(argv: list[str]) -> list[str]:
    if argv:
        return argv
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
    if editor:
        return shlex.split(editor)
    if sys.platform == "win32":
        return ["cmd", "/c", "start", "/wait", ""]
    if sys.platform == "darwin":
        return ["open", "-W"]
    return ["xdg-open"]


def editor_main(argv: Optional[list[str]] = None) -> int:
    """Receive a file, open it with the given command and send it back if it changed."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        path = receive_into_temp(sys.stdin.buffer)
    except DispVMError as exc:
        sys.stderr.write(f"{exc.message}\n")
        return 1

    try:
        try:
            before = path.stat().st_mtime_ns
        except OSError as exc:
            sys.stderr.write(f"Failed to get file attributes pre: {exc}\n")
            return exc.errno or 1

        command = _open_command(args)
        log.debug("Opening '%s'", path)
        try:
            result = subprocess.run([*command, str(path)], check=False)
        except OSError as exc:
            sys.stderr.write(f"Editor startup failed: {exc}\n")
            return exc.errno or 1
        if result.returncode != 0:
            log.error("Process exit code: %d", result.returncode)
            sys.stderr.write(f"Editor failed: {result.returncode:#x}\n")
            return result.returncode

        try:
            after = path.stat().st_mtime_ns
        except OSError as exc:
            sys.stderr.write(f"Failed to get file attributes post: {exc}\n")
            return exc.errno or 1

        if after != before:
            try:
                with open(path, "rb") as handle:
                    _copy_until_eof(sys.stdout.buffer, handle)
            except OSError as exc:
                sys.stderr.write(f"Failed read/write file: {exc}\n")
            finally:
                _close_stdout()
        return 0
    finally:
        _cleanup(path)


if __name__ == "__main__":
    sys.exit(open_in_vm_main())