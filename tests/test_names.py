import pytest

from qvmfilecopy.names import NameTooLongError, untrusted_name_to_path


@pytest.mark.parametrize(
    "name",
    ["hello.txt", "dir/sub/file", "zażółć gęślą jaźń.txt", "日本語.doc", "smile😀.png"],
)
def test_valid_utf8_round_trip(name):
    assert untrusted_name_to_path(name.encode("utf-8")) == name


def test_colon_replaced():
    assert untrusted_name_to_path(b"a:b") == "a_b"


def test_nul_terminates():
    assert untrusted_name_to_path(b"abc\x00def") == "abc"


def test_invalid_low_byte_becomes_hex():
    assert untrusted_name_to_path(b"\x85") == "85"


def test_invalid_high_byte_kept():
    assert untrusted_name_to_path(b"\xe9") == "\xe9"


def test_overlong_encoding_not_decoded():
    assert untrusted_name_to_path(b"\xc0\xaf") == "\xc0\xaf"


def test_result_never_contains_colon():
    result = untrusted_name_to_path(b"C:\\x:y:z")
    assert ":" not in result


def test_length_limit():
    assert untrusted_name_to_path(b"a" * 259) == "a" * 259
    with pytest.raises(NameTooLongError):
        untrusted_name_to_path(b"a" * 260)


def test_surrogate_pair_needs_two_units():
    emoji = "😀".encode("utf-8")
    assert untrusted_name_to_path(emoji, max_chars=3) == "😀"
    with pytest.raises(NameTooLongError):
        untrusted_name_to_path(b"a" + emoji, max_chars=3)


def test_error_carries_errno():
    with pytest.raises(NameTooLongError) as info:
        untrusted_name_to_path(b"abc", max_chars=2)
    assert info.value.errno == 36


def test_invalid_buffer_size():
    with pytest.raises(ValueError):
        untrusted_name_to_path(b"abc", max_chars=0)


def test_empty_name():
    assert untrusted_name_to_path(b"") == ""