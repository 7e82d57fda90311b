# decoding/abi.py
"""
Hand-rolled decoding of ABI-encoded event data.

Layout contract: data is a sequence of 32-byte words. Static values
(address, uint, bool) sit in fixed head slots. Dynamic values (string,
T[]) put a byte offset in their head slot; at that offset the tail holds a
32-byte length word followed by the payload (string bytes, or one word per
array element).

Every function here is total: malformed input gives None, never an
exception and never a read past the end of the buffer.
"""
from typing import Optional, Tuple, Union

from common.utils import strip_0x

WORD = 32
MAX_STRING_LENGTH = 100
MAX_ARRAY_LENGTH = 256

HexOrBytes = Union[str, bytes, bytearray]


def to_bytes(data: HexOrBytes) -> Optional[bytes]:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if not isinstance(data, str):
        return None
    h = strip_0x(data.strip())
    if len(h) % 2:
        return None
    try:
        return bytes.fromhex(h)
    except ValueError:
        return None


def word_at(buf: bytes, offset: int) -> Optional[bytes]:
    if offset < 0 or offset + WORD > len(buf):
        return None
    return buf[offset:offset + WORD]


def decode_uint(chunk: HexOrBytes) -> Optional[int]:
    """Big-endian unsigned value of one 32-byte word."""
    b = to_bytes(chunk)
    if b is None or len(b) != WORD:
        return None
    return int.from_bytes(b, "big")


def decode_address(chunk: HexOrBytes) -> Optional[str]:
    """The low 20 bytes of one 32-byte word, as 0x-prefixed lowercase hex."""
    b = to_bytes(chunk)
    if b is None or len(b) != WORD:
        return None
    return "0x" + b[-20:].hex()


def decode_bool(chunk: HexOrBytes) -> Optional[bool]:
    v = decode_uint(chunk)
    if v is None or v > 1:
        return None
    return bool(v)


def _ascii_until_null(raw: bytes) -> Optional[str]:
    text = raw.split(b"\x00", 1)[0]
    if not text or any(c >= 0x80 for c in text):
        return None
    return text.decode("ascii")


def decode_string_at(data: HexOrBytes, offset: int) -> Optional[str]:
    """Decode a length-prefixed string whose length word sits at `offset`."""
    buf = to_bytes(data)
    if buf is None:
        return None
    length_word = word_at(buf, offset)
    if length_word is None:
        return None
    length = int.from_bytes(length_word, "big")
    if length == 0 or length > MAX_STRING_LENGTH:
        return None
    start = offset + WORD
    if start + length > len(buf):
        return None
    return _ascii_until_null(buf[start:start + length])


def decode_dynamic_string(data: HexOrBytes) -> Optional[str]:
    """
    Decode data whose first word is the byte offset of a length-prefixed
    string, e.g. the data of an event with a single string argument.
    """
    buf = to_bytes(data)
    if buf is None:
        return None
    head = word_at(buf, 0)
    if head is None:
        return None
    return decode_string_at(buf, int.from_bytes(head, "big"))


def _words_at(buf: bytes, offset: int) -> Optional[Tuple[bytes, ...]]:
    length_word = word_at(buf, offset)
    if length_word is None:
        return None
    n = int.from_bytes(length_word, "big")
    if n > MAX_ARRAY_LENGTH:
        return None
    start = offset + WORD
    if start + n * WORD > len(buf):
        return None
    return tuple(buf[start + i * WORD:start + (i + 1) * WORD] for i in range(n))


def decode_address_array_at(data: HexOrBytes, offset: int) -> Optional[Tuple[str, ...]]:
    buf = to_bytes(data)
    if buf is None:
        return None
    words = _words_at(buf, offset)
    if words is None:
        return None
    return tuple("0x" + w[-20:].hex() for w in words)


def decode_uint_array_at(data: HexOrBytes, offset: int) -> Optional[Tuple[int, ...]]:
    buf = to_bytes(data)
    if buf is None:
        return None
    words = _words_at(buf, offset)
    if words is None:
        return None
    return tuple(int.from_bytes(w, "big") for w in words)
