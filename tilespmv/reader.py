"""The reader/writer stage: streams buffer blocks out and writes result blocks back."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import numpy as np

from tilespmv.packets import BLOCK_SIZE, pack_indices, pack_values, unpack_values


def _as_blocks(buffer: Any, dtype: Any) -> np.ndarray:
    array = np.asarray(buffer, dtype=dtype)
    if array.size % BLOCK_SIZE:
        raise ValueError(f"buffer of {array.size} items is not whole blocks of {BLOCK_SIZE}")
    return array.reshape(-1, BLOCK_SIZE)


def _check_stream(blocks: np.ndarray, end: int, runs: int) -> None:
    if runs < 1:
        raise ValueError("runs must be at least 1")
    if end < 1:
        raise ValueError("at least one block must be read")
    if end > len(blocks):
        raise ValueError(f"reading {end} blocks from a buffer of {len(blocks)}")


def _stream(blocks: np.ndarray, end: int, runs: int, pack: Any) -> Iterator[int]:
    words = [pack(block.tolist()) for block in blocks[:end]]
    for _ in range(runs):
        yield from words


def read_indices(indices: Any, ind_end_1: int, ind_end_2: int, runs: int) -> Iterator[int]:
    """Stream the index buffer as burst words, once per run.

    Each run sends the leading block of per-tile nnz counts followed by
    ``ind_end_1 + ind_end_2`` blocks of row pointers and column indices.
    """
    blocks = _as_blocks(indices, np.int64)
    end = ind_end_1 + ind_end_2 + 1
    _check_stream(blocks, end, runs)
    return _stream(blocks, end, runs, pack_indices)


def read_values(values: Any, vals_end_1: int, vals_end_2: int, runs: int) -> Iterator[int]:
    """Stream the first ``vals_end_1 + vals_end_2`` value blocks as burst words, once per run."""
    blocks = _as_blocks(values, np.float32)
    end = vals_end_1 + vals_end_2
    _check_stream(blocks, end, runs)
    return _stream(blocks, end, runs, pack_values)


def write_results(
    results: Iterable[int],
    vec_res: np.ndarray,
    write_start_1: int,
    write_start_2: int,
    write_blocks: int,
) -> np.ndarray:
    """Write ``write_blocks`` result words into ``vec_res`` from block ``write_start_1 + write_start_2`` on.

    ``vec_res`` is updated in place and returned.
    """
    if write_blocks < 1:
        raise ValueError("write_blocks must be at least 1")
    start = write_start_1 + write_start_2
    if start < 0:
        raise ValueError("write start must not be negative")
    end = (start + write_blocks) * BLOCK_SIZE
    if end > vec_res.size:
        raise ValueError(f"writing up to item {end} overruns a buffer of {vec_res.size}")
    stream = iter(results)
    for block in range(start, start + write_blocks):
        try:
            word = next(stream)
        except StopIteration:
            raise ValueError(
                f"result stream ended after {block - start} of {write_blocks} blocks"
            ) from None
        offset = block * BLOCK_SIZE
        vec_res[offset:offset + BLOCK_SIZE] = unpack_values(word)
    return vec_res