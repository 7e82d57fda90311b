"""
common.utils

Small helpers for block ranges and 0x-prefixed hex values.
"""
from typing import Iterator, Tuple, Union


def chunked(start: int, end: int, size: int) -> Iterator[Tuple[int, int]]:
    """
    Yield inclusive (start, end) subranges of at most `size` blocks.
    The subranges are contiguous and cover [start, end] exactly.
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")
    cur = start
    while cur <= end:
        sub_end = min(cur + size - 1, end)
        yield (cur, sub_end)
        cur = sub_end + 1


def strip_0x(s: str) -> str:
    return s[2:] if isinstance(s, str) and s[:2] in ("0x", "0X") else s


def hex_to_int(value: Union[str, int, None], default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip().lower()
    if not s:
        return default
    return int(s, 16) if s.startswith("0x") else int(s)
