"""The full four-stage SpMV pipeline over one packed row partition."""

from __future__ import annotations

from typing import Any

import numpy as np

from tilespmv.accumulator import accumulator_kernel
from tilespmv.multiplier import multiplier_kernel
from tilespmv.packets import BLOCK_SIZE
from tilespmv.reader import read_indices, read_values
from tilespmv.reader import write_results as write_result_blocks
from tilespmv.summer import summer_kernel


def run_spmv(
    values: Any,
    indices: Any,
    x_blocks: int,
    row_blocks: int,
    y_len: int,
    y_blocks: int,
    tiles: int,
    nnz_blocks_tot: int,
    runs: int,
) -> np.ndarray:
    """Multiply one packed row partition by its packed x vector parts.

    ``x_blocks`` and ``row_blocks`` are per tile, ``tiles`` counts the non-empty
    tiles, and ``nnz_blocks_tot`` is the total of non-zero blocks. The result is
    written behind the packed data of a copy of ``values``, as the reader stage
    does, and those ``y_blocks`` blocks are returned.
    """
    buffer = np.array(values, dtype=np.float32)
    if buffer.ndim != 1:
        raise ValueError(f"expected a one-dimensional value buffer, got shape {buffer.shape}")
    if tiles < 1:
        raise ValueError("tiles must be at least 1")
    x_blocks_tot = x_blocks * tiles
    row_blocks_tot = row_blocks * tiles

    index_words = read_indices(indices, row_blocks_tot, nnz_blocks_tot, runs)
    value_words = read_values(buffer, x_blocks_tot, nnz_blocks_tot, runs)
    row_words, product_words = multiplier_kernel(
        index_words, value_words, x_blocks, row_blocks, y_len, tiles, nnz_blocks_tot, runs
    )
    sums = summer_kernel(row_words, product_words, tiles, runs)
    result_words = accumulator_kernel(sums, y_blocks, tiles, runs)
    write_result_blocks(result_words, buffer, x_blocks_tot, nnz_blocks_tot, y_blocks)

    start = (x_blocks_tot + nnz_blocks_tot) * BLOCK_SIZE
    return buffer[start:start + y_blocks * BLOCK_SIZE].copy()