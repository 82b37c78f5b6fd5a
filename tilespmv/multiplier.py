"""The multiplier stage: multiplies non-zero blocks by the x vector and emits row tuples."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import numpy as np

from tilespmv.packets import (
    BLOCK_SIZE,
    VECTOR_SIZE,
    IndexIndex,
    pack_values,
    unpack_indices,
    unpack_values,
)

_BUFFER_SIZE = VECTOR_SIZE + BLOCK_SIZE
_INVALID_INDEX = VECTOR_SIZE + BLOCK_SIZE - 1


def _check_counts(tiles: int, runs: int) -> None:
    if runs < 1:
        raise ValueError("runs must be at least 1")
    if tiles < 1:
        raise ValueError("tiles must be at least 1")


def _check_blocks(blocks: int, name: str) -> None:
    if blocks < 0:
        raise ValueError(f"{name} must not be negative")
    if blocks * BLOCK_SIZE > _BUFFER_SIZE:
        raise ValueError(f"{name} of {blocks} blocks exceeds {_BUFFER_SIZE} items")


def _next(stream: Iterator[Any], what: str) -> Any:
    try:
        return next(stream)
    except StopIteration:
        raise ValueError(f"{what} stream ended early") from None


def mult_values(
    indices: Iterable[int],
    values: Iterable[int],
    x_blocks: int,
    row_blocks: int,
    tiles: int,
    runs: int,
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """Multiply each tile's non-zero blocks by its x vector part.

    Per run the index stream opens with one block of per-tile nnz block
    counts. Per tile, ``row_blocks`` row-pointer blocks are passed on,
    ``x_blocks`` vector blocks are loaded, and each non-zero block of columns
    and values yields one block of products. Returns the row-pointer blocks
    and the product blocks.
    """
    _check_counts(tiles, runs)
    if tiles > BLOCK_SIZE:
        raise ValueError(f"at most {BLOCK_SIZE} tiles fit the nnz count block")
    _check_blocks(x_blocks, "x_blocks")
    _check_blocks(row_blocks, "row_blocks")
    index_stream = iter(indices)
    value_stream = iter(values)
    row_out: list[np.ndarray] = []
    products: list[np.ndarray] = []
    for _ in range(runs):
        nnz_counts = unpack_indices(_next(index_stream, "index")).tolist()
        for nnz_blocks in nnz_counts[:tiles]:
            for _ in range(row_blocks):
                row_out.append(unpack_indices(_next(index_stream, "index")))
            vector = np.zeros(_BUFFER_SIZE, dtype=np.float32)
            for block in range(x_blocks):
                offset = block * BLOCK_SIZE
                vector[offset:offset + BLOCK_SIZE] = unpack_values(_next(value_stream, "value"))
            for _ in range(nnz_blocks):
                cols = unpack_indices(_next(index_stream, "index")).astype(np.int64)
                block_values = unpack_values(_next(value_stream, "value"))
                if cols.min() < 0 or cols.max() >= _BUFFER_SIZE:
                    raise ValueError(f"column index out of range for {_BUFFER_SIZE} items")
                with np.errstate(over="ignore", invalid="ignore"):
                    products.append((block_values * vector[cols]).astype(np.float32))
    return row_out, products


def read_products(products: Iterable[Any], nnz_blocks: int, runs: int) -> list[int]:
    """Pack ``nnz_blocks`` product blocks per run into burst words."""
    if nnz_blocks < 1:
        raise ValueError("nnz_blocks must be at least 1")
    if runs < 0:
        raise ValueError("runs must not be negative")
    stream = iter(products)
    words = []
    for _ in range(runs * nnz_blocks):
        block = np.asarray(_next(stream, "product"), dtype=np.float32)
        words.append(pack_values(block.tolist()))
    return words


def read_rows(
    rows: Iterable[Any], y_len: int, row_blocks: int, tiles: int, runs: int
) -> list[int]:
    """Turn each tile's row pointers into row tuples of index and nnz count.

    Rows without entries are left out; every tile ends with a last tuple of
    an invalid index and a count of one block.
    """
    _check_counts(tiles, runs)
    _check_blocks(row_blocks, "row_blocks")
    if not 0 <= y_len < _BUFFER_SIZE:
        raise ValueError(f"y_len must lie in [0, {_BUFFER_SIZE})")
    stream = iter(rows)
    row_ptr = np.zeros(_BUFFER_SIZE, dtype=np.int64)
    words = []
    for _ in range(runs * tiles):
        for block in range(row_blocks):
            items = np.asarray(_next(stream, "row"), dtype=np.int64)
            if items.size != BLOCK_SIZE:
                raise ValueError(f"a row block holds {BLOCK_SIZE} items, got {items.size}")
            offset = block * BLOCK_SIZE
            row_ptr[offset:offset + BLOCK_SIZE] = items
        counts = np.diff(row_ptr[: y_len + 1]).tolist()
        for index, count in enumerate(counts):
            if count > 0:
                words.append(IndexIndex(index, count).pack())
        words.append(IndexIndex(_INVALID_INDEX, BLOCK_SIZE, is_last=True).pack())
    return words


def multiplier_kernel(
    indices: Iterable[int],
    values: Iterable[int],
    x_blocks: int,
    row_blocks: int,
    y_len: int,
    tiles: int,
    nnz_blocks_tot: int,
    runs: int,
) -> tuple[list[int], list[int]]:
    """Run the multiplier stage; returns the row tuple words and the product words."""
    row_out, products = mult_values(indices, values, x_blocks, row_blocks, tiles, runs)
    if len(products) != nnz_blocks_tot * runs:
        raise ValueError(
            f"{len(products)} product blocks but {nnz_blocks_tot} per run were expected"
        )
    product_words = read_products(products, nnz_blocks_tot, runs)
    row_words = read_rows(row_out, y_len, row_blocks, tiles, runs)
    return row_words, product_words