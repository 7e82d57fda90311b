import pytest

from common.utils import chunked
from ingestion.endpoints import BlockRange


def test_split_example_from_capacity_75():
    chunks = BlockRange(100, 250).split(75)
    assert chunks == [BlockRange(100, 174), BlockRange(175, 249), BlockRange(250, 250)]


def test_split_covers_range_exactly():
    for lo, hi, cap in [(0, 0, 1), (0, 9, 10), (0, 10, 10), (5, 1005, 7), (42, 99_999, 10_000), (3, 4, 1000)]:
        chunks = BlockRange(lo, hi).split(cap)
        assert chunks[0].from_block == lo
        assert chunks[-1].to_block == hi
        for a, b in zip(chunks, chunks[1:]):
            assert b.from_block == a.to_block + 1
        assert all(c.size <= cap for c in chunks)
        assert sum(c.size for c in chunks) == hi - lo + 1


def test_single_block_range():
    assert BlockRange(7, 7).split(1000) == [BlockRange(7, 7)]
    assert BlockRange(7, 7).size == 1


def test_block_range_rejects_inverted_and_negative():
    with pytest.raises(ValueError):
        BlockRange(100, 50)
    with pytest.raises(ValueError):
        BlockRange(-1, 5)


def test_chunked_rejects_zero_size():
    with pytest.raises(ValueError):
        list(chunked(0, 10, 0))
