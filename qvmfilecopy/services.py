"""Small services: clipboard text exchange, GUI mode switching and URL opening."""

from __future__ import annotations

import enum
import errno
import logging
import sys
import webbrowser
from typing import Optional

log = logging.getLogger(__name__)

MAX_CLIPBOARD_SIZE = 65000
GUI_MODE_PARAM_SIZE = 63
URL_BUFFER_SIZE = 4096


class GuiMode(enum.Enum):
    """Display modes that the GUI agent can be switched to."""

    FULLSCREEN = ("FULLSCREEN", "QUBES_GUI_AGENT_FULLSCREEN_ON")
    SEAMLESS = ("SEAMLESS", "QUBES_GUI_AGENT_FULLSCREEN_OFF")

    def __init__(self, command: str, event_name: str):
        self.command = command
        self.event_name = event_name


def _until_nul(data: bytes) -> bytes:
    end = data.find(b"\x00")
    return data if end < 0 else data[:end]


def prepare_clip_text(text: str) -> str:
    """Drop every carriage return, turning CRLF line ends into LF."""
    return text.replace("\r", "")


def encode_clipboard(text: str) -> bytes:
    """Clipboard text as UTF-8 with carriage returns removed."""
    return prepare_clip_text(text).encode("utf-8")


def decode_clipboard(data: bytes) -> str:
    """Decode clipboard content received from the peer.

    At most MAX_CLIPBOARD_SIZE bytes are taken and the text ends at the first
    NUL byte. Raises ValueError if nothing was received or the bytes are not
    valid UTF-8.
    """
    raw = bytes(data[:MAX_CLIPBOARD_SIZE])
    if not raw:
        raise ValueError("no clipboard data received")
    return _until_nul(raw).decode("utf-8")


def parse_gui_mode(data: bytes) -> GuiMode:
    """Pick the requested GUI mode from a request; the match is a case-insensitive prefix."""
    raw = _until_nul(bytes(data[:GUI_MODE_PARAM_SIZE]))
    for mode in GuiMode:
        command = mode.command.encode("ascii")
        if raw[: len(command)].upper() == command:
            return mode
    raise ValueError(f"unknown GUI mode request: {raw!r}")


def read_url(data: bytes) -> str:
    """URL carried by a request of at most URL_BUFFER_SIZE bytes; raise ValueError if empty."""
    raw = bytes(data[:URL_BUFFER_SIZE])
    if not raw:
        raise ValueError("empty request")
    return _until_nul(raw).decode("utf-8", "replace")


def open_url_main(argv: Optional[list[str]] = None) -> int:
    """Open the URL read from standard input in the default browser.

    Command line arguments are not used; the request always comes on stdin.
    """
    data = sys.stdin.buffer.read(URL_BUFFER_SIZE)
    try:
        url = read_url(data)
    except ValueError as exc:
        log.error("%s", exc)
        return errno.EINVAL
    log.debug("request: %s", url)
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        log.error("opening the URL failed: %s", exc)
        return 1
    if not opened:
        log.error("opening the URL failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(open_url_main())