"""The partial summer stage: splits rows into per-block masks and sums the masked products."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import numpy as np

from tilespmv.packets import (
    BLOCK_SIZE,
    VECTOR_SIZE,
    IndexIndex,
    IndexMask,
    IndexValue,
    unpack_values,
)

_FULL_MASK = (1 << BLOCK_SIZE) - 1
_INVALID_INDEX = VECTOR_SIZE + BLOCK_SIZE - 1


def _check_counts(tiles: int, runs: int) -> None:
    if runs < 1:
        raise ValueError("runs must be at least 1")
    if tiles < 1:
        raise ValueError("tiles must be at least 1")


def _next(stream: Iterator[Any], what: str) -> Any:
    try:
        return next(stream)
    except StopIteration:
        raise ValueError(f"{what} stream ended early") from None


def mark_row_elements(row_info: Iterable[int], tiles: int, runs: int) -> list[IndexMask]:
    """Mark, for each row, which entries of each product block belong to it.

    A row that fills up a block continues in the next one; only its final
    mark carries ``is_write``. Each tile ends with a last mark.
    """
    _check_counts(tiles, runs)
    stream = iter(row_info)
    marks: list[IndexMask] = []
    for _ in range(runs * tiles):
        item = IndexIndex(-1, -1)
        block_ind = BLOCK_SIZE
        while True:
            if item.value <= 0:
                item = IndexIndex.unpack(_next(stream, "row"))
                if not item.is_last and item.value <= 0:
                    raise ValueError(f"row {item.index} has no entries")
            if item.is_last:
                break
            block_read = block_ind > BLOCK_SIZE - 1
            if block_read:
                block_ind = 0
            start = block_ind
            bound = item.value - 1 + block_ind
            end = min(bound, BLOCK_SIZE - 1)
            mask = (_FULL_MASK >> start) & (_FULL_MASK << (BLOCK_SIZE - 1 - end)) & _FULL_MASK
            marks.append(
                IndexMask(
                    item.index,
                    mask,
                    is_write=bound < BLOCK_SIZE,
                    is_last=False,
                    is_blk_read=block_read,
                )
            )
            old_nnz = item.value
            item.value -= BLOCK_SIZE - block_ind
            block_ind += old_nnz
        marks.append(IndexMask(item.index, 0, is_write=False, is_last=True, is_blk_read=False))
    return marks


def data_prefix_sum(
    row_marks: Iterable[IndexMask], products: Iterable[int], tiles: int, runs: int
) -> list[int]:
    """Sum the marked products of each mark and emit index-value words.

    A new product block is read whenever a mark asks for one. Each tile ends
    with a last word carrying an invalid index.
    """
    _check_counts(tiles, runs)
    marks = iter(row_marks)
    product_stream = iter(products)
    words = []
    for _ in range(runs * tiles):
        block = np.zeros(BLOCK_SIZE, dtype=np.float32)
        while True:
            mark = _next(marks, "mark")
            if mark.is_last:
                break
            if mark.is_blk_read:
                block = unpack_values(_next(product_stream, "product"))
            total = np.float32(0.0)
            with np.errstate(over="ignore", invalid="ignore"):
                for position, item in enumerate(block):
                    if (mark.mask >> (BLOCK_SIZE - 1 - position)) & 1:
                        total = np.float32(total + item)
            words.append(
                IndexValue(mark.index, float(total), is_last=False, is_write=mark.is_write).pack()
            )
        words.append(IndexValue(_INVALID_INDEX, 0.0, is_last=True, is_write=False).pack())
    return words


def summer_kernel(
    row_info: Iterable[int], products: Iterable[int], tiles: int, runs: int
) -> list[int]:
    """Run the partial summer stage on row tuple words and product words."""
    marks = mark_row_elements(row_info, tiles, runs)
    return data_prefix_sum(marks, products, tiles, runs)