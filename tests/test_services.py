import errno
import io
import webbrowser

import pytest

from qvmfilecopy.services import (
    MAX_CLIPBOARD_SIZE,
    URL_BUFFER_SIZE,
    GuiMode,
    decode_clipboard,
    encode_clipboard,
    open_url_main,
    parse_gui_mode,
    prepare_clip_text,
    read_url,
)


def _stdin(data: bytes) -> io.TextIOWrapper:
    return io.TextIOWrapper(io.BytesIO(data))


def test_prepare_clip_text_removes_carriage_returns():
    assert prepare_clip_text("a\r\nb\rc\n") == "a\nbc\n"


def test_prepare_clip_text_keeps_text_without_cr():
    assert prepare_clip_text("plain text\n") == "plain text\n"


def test_encode_clipboard_converts_line_ends():
    assert encode_clipboard("line1\r\nline2") == b"line1\nline2"


def test_encode_clipboard_is_utf8():
    text = "zażółć ✓"
    assert encode_clipboard(text) == text.encode("utf-8")


def test_clipboard_round_trip():
    text = "first\nsecond ✓ €"
    assert decode_clipboard(encode_clipboard(text)) == text


def test_decode_clipboard_empty_raises():
    with pytest.raises(ValueError):
        decode_clipboard(b"")


def test_decode_clipboard_stops_at_nul():
    assert decode_clipboard(b"abc\x00def") == "abc"


def test_decode_clipboard_truncates_to_limit():
    result = decode_clipboard(b"x" * (MAX_CLIPBOARD_SIZE + 100))
    assert len(result) == MAX_CLIPBOARD_SIZE


def test_decode_clipboard_invalid_utf8_raises():
    with pytest.raises(ValueError):
        decode_clipboard(b"\xff\xfe")


def test_parsed_gui_mode_event_names():
    assert parse_gui_mode(b"FULLSCREEN").event_name == "QUBES_GUI_AGENT_FULLSCREEN_ON"
    assert parse_gui_mode(b"SEAMLESS").event_name == "QUBES_GUI_AGENT_FULLSCREEN_OFF"


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"FULLSCREEN", GuiMode.FULLSCREEN),
        (b"fullscreen\n", GuiMode.FULLSCREEN),
        (b"SEAMLESS", GuiMode.SEAMLESS),
        (b"Seamless mode", GuiMode.SEAMLESS),
    ],
)
def test_parse_gui_mode(data, expected):
    assert parse_gui_mode(data) is expected


@pytest.mark.parametrize("data", [b"", b"FULL", b"window", b"SEAM\x00LESS"])
def test_parse_gui_mode_rejects_unknown(data):
    with pytest.raises(ValueError):
        parse_gui_mode(data)


def test_read_url_returns_request():
    assert read_url(b"https://example.com/page") == "https://example.com/page"


def test_read_url_empty_raises():
    with pytest.raises(ValueError):
        read_url(b"")


def test_read_url_truncates_to_buffer():
    assert len(read_url(b"a" * (URL_BUFFER_SIZE * 2))) == URL_BUFFER_SIZE


def test_open_url_main_opens_browser(monkeypatch):
    opened = []
    monkeypatch.setattr("sys.stdin", _stdin(b"https://example.com/"))
    monkeypatch.setattr(webbrowser, "open", lambda url: opened.append(url) or True)
    assert open_url_main([]) == 0
    assert opened == ["https://example.com/"]


def test_open_url_main_empty_request(monkeypatch):
    opened = []
    monkeypatch.setattr("sys.stdin", _stdin(b""))
    monkeypatch.setattr(webbrowser, "open", lambda url: opened.append(url) or True)
    assert open_url_main([]) == errno.EINVAL
    assert opened == []


def test_open_url_main_browser_failure(monkeypatch):
    monkeypatch.setattr("sys.stdin", _stdin(b"https://example.com/"))
    monkeypatch.setattr(webbrowser, "open", lambda url: False)
    assert open_url_main([]) == 1