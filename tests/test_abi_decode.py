from decoding.abi import (
    decode_address,
    decode_address_array_at,
    decode_bool,
    decode_dynamic_string,
    decode_string_at,
    decode_uint,
    decode_uint_array_at,
)


def word(n: int) -> str:
    return f"{n:064x}"


def string_payload(s: str, declared_len=None, offset: int = 32) -> str:
    body = s.encode("ascii").hex()
    body += "0" * (-len(body) % 64)
    n = len(s) if declared_len is None else declared_len
    return "0x" + word(offset) + word(n) + body


def test_decode_dynamic_string_abc_123():
    assert decode_dynamic_string(string_payload("ABC-123")) == "ABC-123"


def test_decode_dynamic_string_accepts_bytes():
    raw = bytes.fromhex(string_payload("XYZ")[2:])
    assert decode_dynamic_string(raw) == "XYZ"


def test_declared_length_past_end_is_no_value():
    # declares 40 bytes but only one 32 byte word follows
    assert decode_dynamic_string(string_payload("ABC-123", declared_len=40)) is None


def test_zero_and_oversized_lengths_are_no_value():
    assert decode_dynamic_string(string_payload("ABC", declared_len=0)) is None
    assert decode_dynamic_string("0x" + word(32) + word(101) + "41" * 128) is None


def test_offset_past_end_is_no_value():
    assert decode_dynamic_string("0x" + word(2**255) + word(3) + "41" * 32) is None
    assert decode_dynamic_string("0x" + word(64) + word(3)) is None


def test_malformed_hex_is_no_value():
    assert decode_dynamic_string("0xzz") is None
    assert decode_dynamic_string("0x123") is None
    assert decode_dynamic_string("") is None
    assert decode_dynamic_string(None) is None


def test_string_stops_at_first_null():
    payload = "0x" + word(32) + word(6) + ("414243004445" + "0" * 52)
    assert decode_dynamic_string(payload) == "ABC"


def test_non_ascii_is_no_value():
    payload = "0x" + word(32) + word(2) + ("c3a9" + "0" * 60)
    assert decode_dynamic_string(payload) is None


def test_decoding_is_repeatable():
    payload = string_payload("GAME-1")
    assert decode_dynamic_string(payload) == decode_dynamic_string(payload) == "GAME-1"
    bad = string_payload("GAME-1", declared_len=99)
    assert decode_dynamic_string(bad) is None and decode_dynamic_string(bad) is None


def test_decode_string_at_offset():
    data = "0x" + word(0) + word(3) + "414243" + "0" * 58
    assert decode_string_at(data, 32) == "ABC"


def test_decode_address_low_20_bytes():
    chunk = "0x" + "ff" * 12 + "ab" * 20
    assert decode_address(chunk) == "0x" + "ab" * 20


def test_decode_uint_big_endian():
    assert decode_uint("0x" + word(1000)) == 1000
    assert decode_uint(b"\x00" * 31 + b"\x01") == 1
    assert decode_uint("0x" + "ff" * 32) == 2**256 - 1


def test_wrong_width_words_are_no_value():
    assert decode_uint("0x01") is None
    assert decode_address("0x" + "ab" * 20) is None
    assert decode_bool("0x" + word(2)) is None
    assert decode_bool("0x" + word(1)) is True


def test_arrays():
    data = "0x" + word(2) + "0" * 24 + "aa" * 20 + "0" * 24 + "bb" * 20
    assert decode_address_array_at(data, 0) == ("0x" + "aa" * 20, "0x" + "bb" * 20)
    assert decode_uint_array_at("0x" + word(3) + word(5) + word(6) + word(7), 0) == (5, 6, 7)
    assert decode_uint_array_at("0x" + word(0), 0) == ()
    # claims three elements, carries one
    assert decode_uint_array_at("0x" + word(3) + word(5), 0) is None
