"""Splitting a CSR matrix into nnz-balanced row partitions of column tiles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from tilespmv.matrices import INDEX_DTYPE, CSCMatrix, CSRMatrix, matvec, norm

logger = logging.getLogger(__name__)


@dataclass
class Partitioning:
    """Tiles of a partitioned matrix and the source rows of each row partition.

    ``tiles[i][j]`` is the CSR tile of row partition ``i`` and column part ``j``;
    its local row ``r`` is source row ``y_part_rows[i][r]``.
    """

    tiles: list[list[CSRMatrix]] = field(default_factory=list)
    y_part_rows: list[list[int]] = field(default_factory=list)

    @property
    def y_parts(self) -> int:
        return len(self.tiles)

    @property
    def x_parts(self) -> int:
        return len(self.tiles[0]) if self.tiles else 0


def _x_part_bounds(src_cols: int, x_parts: int) -> list[tuple[int, int]]:
    size = -(-src_cols // x_parts)
    bounds = []
    for j in range(x_parts):
        start = j * size
        end = src_cols if j == x_parts - 1 else start + size
        if start > src_cols or end > src_cols or end < start:
            raise ValueError(
                f"{x_parts} column parts of size {size} do not fit {src_cols} columns"
            )
        bounds.append((start, end))
    return bounds


def _snake_assign(order: np.ndarray, y_parts: int) -> list[list[int]]:
    parts: list[list[int]] = [[] for _ in range(y_parts)]
    ordered = order.tolist()
    for chunk_number, chunk_start in enumerate(range(0, len(ordered), y_parts)):
        chunk = ordered[chunk_start:chunk_start + y_parts]
        targets = range(y_parts) if chunk_number % 2 == 0 else reversed(range(y_parts))
        for part, row in zip(targets, chunk):
            parts[part].append(row)
    return parts


def _part_to_csc(source: CSRMatrix, rows: list[int], src_cols: int) -> CSCMatrix:
    pointers = source.row_pointer
    ranges = [np.arange(pointers[row], pointers[row + 1], dtype=INDEX_DTYPE) for row in rows]
    entries = np.concatenate(ranges) if ranges else np.empty(0, dtype=INDEX_DTYPE)
    counts = [int(pointers[row + 1] - pointers[row]) for row in rows]
    local_rows = np.repeat(np.arange(len(rows), dtype=INDEX_DTYPE), counts)
    cols = source.col_index[entries]
    if cols.size and (cols.min() < 0 or cols.max() >= src_cols):
        raise ValueError(f"column index out of range for {src_cols} columns")
    order = np.argsort(cols, kind="stable")
    col_pointer = np.concatenate(
        ([0], np.cumsum(np.bincount(cols, minlength=src_cols)))
    ).astype(INDEX_DTYPE)
    return CSCMatrix(source.data[entries][order], local_rows[order], col_pointer)


def _csc_slice_to_csr(csc: CSCMatrix, start: int, end: int, rows: int) -> CSRMatrix:
    pointers = csc.col_pointer
    first, last = int(pointers[start]), int(pointers[end])
    sub_rows = csc.row_index[first:last]
    sub_cols = np.repeat(
        np.arange(end - start, dtype=INDEX_DTYPE), np.diff(pointers[start:end + 1])
    )
    order = np.argsort(sub_rows, kind="stable")
    row_pointer = np.concatenate(
        ([0], np.cumsum(np.bincount(sub_rows, minlength=rows)))
    ).astype(INDEX_DTYPE)
    return CSRMatrix(csc.data[first:last][order], sub_cols[order], row_pointer, end - start)


def partition_nnz_balanced(
    source: CSRMatrix, src_rows: int, src_cols: int, y_parts: int, x_parts: int
) -> Partitioning:
    """Split ``source`` into ``y_parts`` row partitions of ``x_parts`` column tiles.

    Rows are sorted by their nnz count and dealt out to the partitions back and
    forth, so each partition gets a similar number of non-zeros. Each partition
    is cut into column parts of ``ceil(src_cols / x_parts)`` columns, the last
    one taking what remains.
    """
    if y_parts < 1 or x_parts < 1:
        raise ValueError("y_parts and x_parts must be at least 1")
    if src_rows != source.rows:
        raise ValueError(f"src_rows is {src_rows} but the matrix has {source.rows} rows")
    if src_cols < 0:
        raise ValueError("src_cols must not be negative")
    bounds = _x_part_bounds(src_cols, x_parts)
    logger.debug("x_parts: %d, x_part_size: %d", x_parts, -(-src_cols // x_parts))

    counts = np.diff(source.row_pointer)
    order = np.argsort(counts, kind="stable")
    y_part_rows = _snake_assign(order, y_parts)

    tiles = []
    for rows in y_part_rows:
        csc = _part_to_csc(source, rows, src_cols)
        tiles.append([_csc_slice_to_csr(csc, start, end, len(rows)) for start, end in bounds])
    return Partitioning(tiles, y_part_rows)


def _combine(
    tiles: list[list[CSRMatrix]],
    vec: Any,
    y_part_rows: list[list[int]],
    part_method: int,
    y_parts: int,
    x_parts: int,
    length: int,
) -> np.ndarray:
    if len(tiles) < y_parts or any(len(row) < x_parts for row in tiles[:y_parts]):
        raise ValueError("fewer tiles than the requested parts")
    dtype = tiles[0][0].data.dtype
    vector = np.asarray(vec, dtype=dtype)
    offset_step = tiles[0][0].cols
    vec_parts = []
    for j in range(x_parts):
        part = np.zeros(tiles[0][j].cols, dtype=dtype)
        chunk = vector[offset_step * j: offset_step * j + part.size]
        part[: chunk.size] = chunk
        vec_parts.append(part)

    result = np.zeros(length, dtype=dtype)
    rows_done = 0
    for i in range(y_parts):
        res_part = np.zeros(tiles[i][0].rows, dtype=dtype)
        for j in range(x_parts):
            matvec(tiles[i][j], vec_parts[j], res_part)
        if part_method > 1:
            targets = np.asarray(y_part_rows[i][: res_part.size], dtype=INDEX_DTYPE)
        else:
            targets = np.arange(rows_done, rows_done + res_part.size)
        result[targets] = res_part
        rows_done += res_part.size
    return result


def tiled_matvec(
    tiles: list[list[CSRMatrix]],
    vec: Any,
    y_part_rows: list[list[int]],
    part_method: int,
) -> np.ndarray:
    """Multiply the tiled matrix by ``vec`` and gather the partial results.

    With ``part_method`` above 1 each partition's results go back to their
    source rows; otherwise the partitions are laid end to end.
    """
    if not tiles or not tiles[0]:
        raise ValueError("no tiles to multiply")
    length = sum(part[0].rows for part in tiles)
    return _combine(tiles, vec, y_part_rows, part_method, len(tiles), len(tiles[0]), length)


def verify_tile_partitioning(
    mat: CSRMatrix,
    y_parts: int,
    x_parts: int,
    start: float,
    tiles: list[list[CSRMatrix]],
    y_part_rows: list[list[int]],
    part_method: int,
) -> bool:
    """Check that the tiled product has the same norm as the plain product.

    The test vector holds ``start, start + 1, ...`` with one entry per matrix row.
    """
    dtype = mat.data.dtype
    vec = (start + np.arange(mat.rows, dtype=np.float64)).astype(dtype)
    reference = matvec(mat, vec, np.zeros(mat.rows, dtype=dtype))
    combined = _combine(tiles, vec, y_part_rows, part_method, y_parts, x_parts, mat.rows)
    ref_norm, comb_norm = norm(reference), norm(combined)
    equal = ref_norm == comb_norm
    if not equal:
        logger.info("norm of reference: %s and norm of combined: %s", ref_norm, comb_norm)
    return equal