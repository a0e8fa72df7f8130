"""Conversion of untrusted UTF-8 file names into safe local path names."""

from __future__ import annotations

from .filecopy import ENAMETOOLONG

MAX_PATH = 260

_HEX = "0123456789abcdef"


class NameTooLongError(ValueError):
    """The converted name does not fit into the allowed number of characters."""

    errno = ENAMETOOLONG


def untrusted_name_to_path(data: bytes, max_chars: int = MAX_PATH) -> str:
    """Decode an untrusted name leniently.

    Stops at the first NUL byte, replaces ':' by '_', keeps stray bytes of
    0xa0 and above as the matching character and writes other invalid bytes as
    two hex digits. The result, counted in UTF-16 units, must fit into
    max_chars including a terminator.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be at least 1")
    limit = max_chars - 1
    utf = bytes(data)
    end = utf.find(b"\x00")
    if end < 0:
        end = len(utf)

    out: list[str] = []
    units = 0
    pos = 0
    while pos < end:
        c = utf[pos]
        pos += 1

        if units >= limit:
            raise NameTooLongError("file name too long")

        if c < 0x80:
            out.append("_" if c == 0x3A else chr(c))
            units += 1
        elif 0xC2 <= c < 0xE0 and pos < end and (utf[pos] & 0xC0) == 0x80:
            out.append(chr(((c & 0x1F) << 6) | (utf[pos] & 0x3F)))
            pos += 1
            units += 1
        elif (
            0xE0 <= c < 0xF0
            and pos + 1 < end
            and not (c == 0xE0 and utf[pos] < 0xA0)
            and (utf[pos] & 0xC0) == 0x80
            and (utf[pos + 1] & 0xC0) == 0x80
        ):
            out.append(
                chr(((c & 0x0F) << 12) | ((utf[pos] & 0x3F) << 6) | (utf[pos + 1] & 0x3F))
            )
            pos += 2
            units += 1
        elif (
            0xF0 <= c < 0xF5
            and pos + 2 < end
            and units + 1 < limit
            and not (c == 0xF0 and utf[pos] < 0x90)
            and not (c == 0xF4 and utf[pos] >= 0x90)
            and (utf[pos] & 0xC0) == 0x80
            and (utf[pos + 1] & 0xC0) == 0x80
            and (utf[pos + 2] & 0xC0) == 0x80
        ):
            code = (
                ((c & 0x07) << 18)
                | ((utf[pos] & 0x3F) << 12)
                | ((utf[pos + 1] & 0x3F) << 6)
                | (utf[pos + 2] & 0x3F)
            )
            out.append(chr(code))
            pos += 3
            units += 2
        elif c >= 0xA0:
            out.append(chr(c))
            units += 1
        else:
            out.append(_HEX[c >> 4])
            units += 1
            if units < limit:
                out.append(_HEX[c & 0x0F])
                units += 1
    return "".join(out)