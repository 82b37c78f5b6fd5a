"""Packing CSR tiles into flat per-partition value and index buffers, and checking them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from tilespmv.matrices import CSRMatrix, matvec, norm

logger = logging.getLogger(__name__)

PAGE_SIZE = 4 * 1024
INDEX_BUFFER_DTYPE = np.int32
KERNEL_BASE_NAME = "csr_spmv_repl_"
KERNEL_COUNT = 4


@dataclass(eq=False)
class TileBuffers:
    """Flat value and index buffers for one row partition of tiles.

    ``values`` holds, per tile, the x-vector part and the non-zero values,
    followed by room for the result. ``indices`` starts with one block of
    per-tile nnz block counts and then holds, per tile, the row pointers and
    the column indices.
    """

    values: np.ndarray
    indices: np.ndarray
    valid_tiles: int = 0


@dataclass(frozen=True)
class PackedCounts:
    """Block totals of one packed row partition, as the kernels need them."""

    nnz_blocks: int
    row_blocks: int
    vec_blocks: int
    valid_tiles: int


def _ceil_blocks(count: int, block_size: int) -> int:
    return -(-count // block_size)


def _page_round(size: int) -> int:
    """Round up past ``size`` to whole pages, always adding at least one page."""
    return (size // PAGE_SIZE + 1) * PAGE_SIZE


def _check_block_size(block_size: int) -> None:
    if block_size < 1:
        raise ValueError("block_size must be at least 1")


def _write(buffer: np.ndarray, offset: int, items: np.ndarray) -> None:
    end = offset + items.size
    if end > buffer.size:
        raise ValueError(
            f"writing {items.size} items at offset {offset} overruns a buffer of {buffer.size}"
        )
    buffer[offset:end] = items


def _vector_chunk(vec_x: np.ndarray, offset: int, count: int) -> np.ndarray:
    chunk = vec_x[offset:offset + count]
    if chunk.size != count:
        raise ValueError(
            f"vector of length {vec_x.size} has no {count} entries at offset {offset}"
        )
    return chunk


def kernel_instance_names(compute_units: int) -> list[list[str]]:
    """Names of the four kernel instances of each compute unit, as ``kernel:{kernel_n}``."""
    if compute_units < 0:
        raise ValueError("compute_units must not be negative")
    kernels = [f"{KERNEL_BASE_NAME}{k}" for k in range(1, KERNEL_COUNT + 1)]
    return [
        [f"{kernel}:{{{kernel}_{unit}}}" for kernel in kernels]
        for unit in range(1, compute_units + 1)
    ]


def allocate_buffers(tiles: list[list[CSRMatrix]], block_size: int) -> list[TileBuffers]:
    """Allocate zeroed, page-sized buffers large enough for each row partition."""
    _check_block_size(block_size)
    buffers = []
    for part in tiles:
        dtype = part[0].data.dtype if part else np.dtype(np.float32)
        value_size = dtype.itemsize
        index_size = np.dtype(INDEX_BUFFER_DTYPE).itemsize
        values_bytes = 0
        indices_bytes = 0
        row_bytes_max = 0
        valid = 0
        for tile in part:
            nnz_blocks = _ceil_blocks(tile.nnz, block_size)
            row_blocks = tile.rows // block_size + 1
            vec_blocks = _ceil_blocks(tile.cols, block_size)
            value_bytes = value_size * nnz_blocks * block_size
            col_bytes = index_size * nnz_blocks * block_size
            row_bytes = index_size * row_blocks * block_size
            vec_bytes = value_size * vec_blocks * block_size
            row_bytes_max = max(row_bytes_max, row_bytes)
            values_bytes += _page_round(value_bytes + 2 * vec_bytes)
            indices_bytes += _page_round(row_bytes + col_bytes)
            if tile.nnz:
                valid += 1
        values_bytes += _page_round(max(row_bytes_max - 1, 0))
        indices_bytes += PAGE_SIZE
        buffers.append(
            TileBuffers(
                np.zeros(values_bytes // value_size, dtype=dtype),
                np.zeros(indices_bytes // index_size, dtype=INDEX_BUFFER_DTYPE),
                valid,
            )
        )
    return buffers


def pack_tiles(
    buffers: list[TileBuffers],
    tiles: list[list[CSRMatrix]],
    vec_x: Any,
    max_vec_blocks: int,
    max_row_blocks: int,
    block_size: int,
) -> list[PackedCounts]:
    """Copy the x vector parts and the tiles into the buffers.

    Every non-empty tile takes ``max_vec_blocks`` blocks of vector and
    ``max_row_blocks`` blocks of row pointers; empty tiles take no room.
    """
    _check_block_size(block_size)
    if len(buffers) < len(tiles):
        raise ValueError(f"{len(buffers)} buffers for {len(tiles)} partitions")
    vector = np.asarray(vec_x)
    counts = []
    for buffer, part in zip(buffers, tiles):
        values, indices = buffer.values, buffer.indices
        val_offset = 0
        ind_offset = block_size
        vec_offset = 0
        nnz_total = row_total = vec_total = 0
        valid = 0
        for tile in part:
            nnz = tile.nnz
            nnz_blocks = _ceil_blocks(nnz, block_size)
            vec_blocks = max_vec_blocks if nnz else 0
            row_blocks = max_row_blocks if nnz else 0

            copy_cols = tile.cols if nnz else 0
            _write(values, val_offset, _vector_chunk(vector, vec_offset, copy_cols))
            vec_offset += tile.cols
            val_offset += vec_blocks * block_size

            copy_rows = tile.rows + 1 if nnz else 0
            _write(indices, ind_offset, tile.row_pointer[:copy_rows])
            ind_offset += row_blocks * block_size

            _write(values, val_offset, tile.data)
            val_offset += nnz_blocks * block_size

            _write(indices, ind_offset, tile.col_index)
            ind_offset += nnz_blocks * block_size

            nnz_total += nnz_blocks
            row_total += row_blocks
            vec_total += vec_blocks

            if nnz:
                indices[valid] = nnz_blocks
                valid += 1
        buffer.valid_tiles = valid
        counts.append(PackedCounts(nnz_total, row_total, vec_total, valid))
    return counts


def pack_vector_only(
    buffers: list[TileBuffers],
    tiles: list[list[CSRMatrix]],
    vec_x: Any,
    max_vec_blocks: int,
    block_size: int,
) -> None:
    """Refresh only the x vector parts in buffers that already hold packed tiles."""
    _check_block_size(block_size)
    if len(buffers) < len(tiles):
        raise ValueError(f"{len(buffers)} buffers for {len(tiles)} partitions")
    vector = np.asarray(vec_x)
    for buffer, part in zip(buffers, tiles):
        val_offset = 0
        vec_offset = 0
        for tile in part:
            nnz = tile.nnz
            nnz_blocks = _ceil_blocks(nnz, block_size)
            vec_blocks = max_vec_blocks if nnz else 0
            copy_cols = tile.cols if nnz else 0
            _write(buffer.values, val_offset, _vector_chunk(vector, vec_offset, copy_cols))
            vec_offset += tile.cols
            val_offset += (vec_blocks + nnz_blocks) * block_size


def verify_tiles_packing(
    buffers: list[TileBuffers],
    tiles: list[list[CSRMatrix]],
    valid_tiles: list[int],
    max_row_blocks: int,
    max_vec_blocks: int,
    block_size: int,
) -> bool:
    """Unpack the buffers, multiply, and compare with multiplying the tiles directly.

    Returns whether every partition's norm matched; mismatching counts,
    values and columns are logged as warnings.
    """
    _check_block_size(block_size)
    equal = True
    vec_len = max_vec_blocks * block_size
    row_len = max_row_blocks * block_size
    for part_ind, (buffer, part) in enumerate(zip(buffers, tiles)):
        values, indices = buffer.values, buffer.indices
        dtype = values.dtype
        y_part = np.zeros(row_len, dtype=dtype)
        y_ref = np.zeros(row_len, dtype=dtype)
        val_offset = 0
        ind_offset = _ceil_blocks(valid_tiles[part_ind], block_size) * block_size
        rows = part[0].rows if part else 0

        for tile_ind, tile in enumerate(part):
            nnz_blocks = int(indices[tile_ind])
            x_part = values[val_offset:val_offset + vec_len].copy()
            val_offset += vec_len
            row_part = indices[ind_offset:ind_offset + row_len].astype(np.int64)
            ind_offset += row_len

            z = 0
            for row in range(rows):
                first, last = int(row_part[row]), int(row_part[row + 1])
                packed = last - first
                original = int(tile.row_pointer[row + 1] - tile.row_pointer[row])
                if packed != original:
                    logger.warning(
                        "tile: %d, %d, row: %d, nnz count mismatch: %d vs. %d",
                        part_ind, tile_ind, row, packed, original,
                    )
                if packed <= 0:
                    continue
                row_values = values[val_offset + first:val_offset + last]
                row_cols = indices[ind_offset + first:ind_offset + last].astype(np.int64)
                expected_values = tile.data[z:z + packed]
                expected_cols = tile.col_index[z:z + packed]
                z += packed
                if row_values.size != expected_values.size or (
                    row_values != expected_values.astype(dtype)
                ).any():
                    logger.warning("values mismatch: %s vs. %s", row_values, expected_values)
                if row_cols.size != expected_cols.size or (row_cols != expected_cols).any():
                    logger.warning("col mismatch: %s vs. %s", row_cols, expected_cols)
                if row_cols.size and (row_cols.min() < 0 or row_cols.max() >= x_part.size):
                    raise ValueError(
                        f"packed column index out of range in tile {part_ind}, {tile_ind}"
                    )
                products = (row_values * x_part[row_cols]).astype(dtype, copy=False)
                np.add.at(y_part, np.full(products.size, row), products)

            val_offset += nnz_blocks * block_size
            ind_offset += nnz_blocks * block_size
            matvec(tile, x_part, y_ref)
            part_norm, ref_norm = norm(y_part), norm(y_ref)
            equal &= part_norm == ref_norm
            if not equal:
                logger.info(
                    "partition %d, tile %d: norm of packed %s and norm of reference %s",
                    part_ind, tile_ind, part_norm, ref_norm,
                )
    logger.info("verify_tiles_packing: norm of partition equality: %s", equal)
    return bool(equal)