import io
import sys
import tempfile
from types import SimpleNamespace

import pytest

from qvmfilecopy.dvm import (
    DVM_FILENAME_SIZE,
    DispVMError,
    editor_main,
    open_in_vm_main,
    pad_filename,
    receive_file,
    receive_into_temp,
    sanitize_dvm_filename,
    send_file,
)


@pytest.fixture
def private_tmp(tmp_path, monkeypatch):
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


def test_pad_filename_short_name():
    field = pad_filename("a.txt")
    assert len(field) == DVM_FILENAME_SIZE
    assert field == b"a.txt" + b"\x00" * (DVM_FILENAME_SIZE - 5)


def test_pad_filename_keeps_tail_of_long_name():
    field = pad_filename("a" + "b" * 299)
    assert len(field) == DVM_FILENAME_SIZE
    assert field[:DVM_FILENAME_SIZE - 1] == b"b" * (DVM_FILENAME_SIZE - 1)
    assert field[-1:] == b"\x00"


def test_pad_filename_exact_limit_is_shortened():
    field = pad_filename("c" * DVM_FILENAME_SIZE)
    assert field == b"c" * (DVM_FILENAME_SIZE - 1) + b"\x00"


def test_sanitize_replaces_special_characters():
    assert sanitize_dvm_filename(pad_filename("my file!.txt")) == "my_file_.txt"


def test_sanitize_keeps_unicode():
    assert sanitize_dvm_filename(pad_filename("résumé.odt")) == "résumé.odt"


def test_sanitize_stops_at_nul():
    assert sanitize_dvm_filename(b"ok\x00/evil") == "ok"


@pytest.mark.parametrize("raw", [b"a/b", b"a\\b", b"", b"..", b"\xff\xfe"])
def test_sanitize_rejects_bad_names(raw):
    with pytest.raises(DispVMError):
        sanitize_dvm_filename(raw)


def test_send_file_writes_name_then_contents(tmp_path):
    source = tmp_path / "report.txt"
    source.write_bytes(b"hello world")
    sink = io.BytesIO()
    count = send_file(source, sink)
    data = sink.getvalue()
    assert count == len(b"hello world")
    assert data[:DVM_FILENAME_SIZE] == pad_filename("report.txt")
    assert data[DVM_FILENAME_SIZE:] == b"hello world"


def test_send_file_missing(tmp_path):
    with pytest.raises(DispVMError):
        send_file(tmp_path / "missing.txt", io.BytesIO())


def test_receive_file_replaces_contents(tmp_path, private_tmp):
    target = tmp_path / "doc.txt"
    target.write_bytes(b"old")
    assert receive_file(target, io.BytesIO(b"new contents")) is True
    assert target.read_bytes() == b"new contents"
    assert list(private_tmp.iterdir()) == []


def test_receive_file_empty_input_keeps_file(tmp_path, private_tmp):
    target = tmp_path / "doc.txt"
    target.write_bytes(b"old")
    assert receive_file(target, io.BytesIO(b"")) is False
    assert target.read_bytes() == b"old"
    assert list(private_tmp.iterdir()) == []


def test_receive_into_temp_round_trip(tmp_path, private_tmp):
    original = tmp_path / "notes (draft).txt"
    original.write_bytes(b"line one\nline two\n")
    stream = io.BytesIO()
    send_file(original, stream)
    stream.seek(0)
    path = receive_into_temp(stream)
    assert path.name == "notes__draft_.txt"
    assert path.read_bytes() == b"line one\nline two\n"
    assert path.parent.parent == private_tmp


def test_receive_into_temp_short_header(private_tmp):
    with pytest.raises(DispVMError):
        receive_into_temp(io.BytesIO(b"short"))
    assert list(private_tmp.iterdir()) == []


def test_open_in_vm_without_file_fails():
    assert open_in_vm_main([]) == 1


def _fake_stdio(monkeypatch, data):
    out = io.BytesIO()
    monkeypatch.setattr(sys, "stdin", SimpleNamespace(buffer=io.BytesIO(data)))
    monkeypatch.setattr(
        sys, "stdout", SimpleNamespace(buffer=out, flush=lambda: None, close=lambda: None)
    )
    return out


def test_editor_sends_back_changed_file(monkeypatch, private_tmp):
    out = _fake_stdio(monkeypatch, pad_filename("a.txt") + b"data")
    script = (
        "import os, sys; open(sys.argv[1], 'ab').write(b'!'); "
        "os.utime(sys.argv[1], ns=(0, 0))"
    )
    assert editor_main([sys.executable, "-c", script]) == 0
    assert out.getvalue() == b"data!"
    assert list(private_tmp.iterdir()) == []


def test_editor_unchanged_file_sends_nothing(monkeypatch, private_tmp):
    out = _fake_stdio(monkeypatch, pad_filename("a.txt") + b"data")
    assert editor_main([sys.executable, "-c", "pass"]) == 0
    assert out.getvalue() == b""
    assert list(private_tmp.iterdir()) == []


def test_editor_failure_returns_exit_code(monkeypatch, private_tmp):
    out = _fake_stdio(monkeypatch, pad_filename("a.txt") + b"data")
    assert editor_main([sys.executable, "-c", "raise SystemExit(3)"]) == 3
    assert out.getvalue() == b""
    assert list(private_tmp.iterdir()) == []


def test_editor_rejects_bad_name(monkeypatch, private_tmp):
    _fake_stdio(monkeypatch, pad_filename("x/y") + b"data")
    assert editor_main([sys.executable, "-c", "pass"]) == 1
    assert list(private_tmp.iterdir()) == []