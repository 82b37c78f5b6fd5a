"""The accumulator stage: adds up the partial row sums and writes out the result blocks."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Iterator
from typing import Any

import numpy as np

from tilespmv.packets import BLOCK_SIZE, VECTOR_SIZE, IndexValue, pack_values

_BUFFER_SIZE = VECTOR_SIZE + BLOCK_SIZE
_INVALID_INDEX = VECTOR_SIZE + BLOCK_SIZE - 1
_REGISTER_DEPTH = 5


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


def _last_row() -> IndexValue:
    return IndexValue(_INVALID_INDEX, 0.0, is_last=True, is_write=False)


def accumulate_rows(rows: Iterable[int], tiles: int, runs: int) -> list[IndexValue]:
    """Gather the partial sums of rows that span several product blocks.

    Partial sums that do not close a row are kept in a shift register; when a
    row's final sum arrives it is passed on with the earlier partials in
    ``prev_sum``. Each tile ends with a last row.
    """
    _check_counts(tiles, runs)
    stream = iter(rows)
    out: list[IndexValue] = []
    with np.errstate(over="ignore", invalid="ignore"):
        for _ in range(runs * tiles):
            register = np.zeros(_REGISTER_DEPTH, dtype=np.float32)
            while True:
                row = IndexValue.unpack(_next(stream, "row"))
                prev_sum = np.float32(0.0)
                for item in register[1:]:
                    prev_sum = np.float32(prev_sum + item)
                if row.is_write:
                    register[:-1] = 0.0
                else:
                    register[:-1] = register[1:].copy()
                if row.is_write:
                    out.append(dataclasses.replace(row, prev_sum=float(prev_sum)))
                value = np.float32(0.0) if row.is_write else np.float32(row.value)
                register[-1] = np.float32(register[0] + value)
                if row.is_last:
                    break
            out.append(_last_row())
    return out


def write_results(
    rows: Iterable[IndexValue], y_blocks: int, tiles: int, runs: int
) -> list[int]:
    """Add every row's sum into the result vector and return its first ``y_blocks`` blocks.

    The result vector starts from zero on every run; the blocks of the final
    run are returned as burst words.
    """
    _check_counts(tiles, runs)
    if y_blocks < 0 or y_blocks * BLOCK_SIZE > _BUFFER_SIZE:
        raise ValueError(f"y_blocks must lie in [0, {_BUFFER_SIZE // BLOCK_SIZE}]")
    stream = iter(rows)
    result = np.zeros(_BUFFER_SIZE, dtype=np.float32)
    with np.errstate(over="ignore", invalid="ignore"):
        for _ in range(runs):
            result.fill(0.0)
            for _ in range(tiles):
                while True:
                    row = _next(stream, "row")
                    if not 0 <= row.index < _BUFFER_SIZE:
                        raise ValueError(
                            f"row index {row.index} out of range for {_BUFFER_SIZE} items"
                        )
                    addend = np.float32(np.float32(row.value) + np.float32(row.prev_sum))
                    result[row.index] = np.float32(result[row.index] + addend)
                    if row.is_last:
                        break
    return [
        pack_values(result[block * BLOCK_SIZE:(block + 1) * BLOCK_SIZE].tolist())
        for block in range(y_blocks)
    ]


def accumulator_kernel(rows: Iterable[int], y_blocks: int, tiles: int, runs: int) -> list[int]:
    """Run the accumulator stage on index-value words; returns the result block words."""
    gathered = accumulate_rows(rows, tiles, runs)
    return write_results(gathered, y_blocks, tiles, runs)