"""Compressed sparse row and column matrices and dense-vector helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

Single = np.float32
Double = np.float64
INDEX_DTYPE = np.int64


def _as_vector(values: Any, dtype: Any = None) -> np.ndarray:
    array = np.asarray(values, dtype=dtype)
    if array.ndim != 1:
        raise ValueError(f"expected a one-dimensional array, got shape {array.shape}")
    return array


@dataclass(eq=False)
class CSRMatrix:
    """A matrix in compressed sparse row form."""

    data: np.ndarray
    col_index: np.ndarray
    row_pointer: np.ndarray
    cols: int = 0

    def __post_init__(self) -> None:
        self.data = _as_vector(self.data)
        self.col_index = _as_vector(self.col_index, INDEX_DTYPE)
        self.row_pointer = _as_vector(self.row_pointer, INDEX_DTYPE)
        if self.row_pointer.size < 1:
            raise ValueError("row_pointer must hold at least one entry")
        if self.col_index.size != self.data.size:
            raise ValueError(
                f"col_index has {self.col_index.size} entries but data has {self.data.size}"
            )
        if self.cols < 0:
            raise ValueError("cols must not be negative")

    @classmethod
    def zeros(cls, nnz: int, rows: int, cols: int = 0) -> CSRMatrix:
        """Return a matrix with room for ``nnz`` entries and ``rows`` rows, all zero."""
        if nnz < 0 or rows < 0 or cols < 0:
            raise ValueError("nnz, rows and cols must not be negative")
        return cls(
            np.zeros(nnz, dtype=Double),
            np.zeros(nnz, dtype=INDEX_DTYPE),
            np.zeros(rows + 1, dtype=INDEX_DTYPE),
            cols,
        )

    @property
    def rows(self) -> int:
        return self.row_pointer.size - 1

    @property
    def nnz(self) -> int:
        return self.data.size

    def copy(self) -> CSRMatrix:
        """Return an independent copy of the matrix."""
        return CSRMatrix(
            self.data.copy(), self.col_index.copy(), self.row_pointer.copy(), self.cols
        )

    def clear(self) -> None:
        """Reset the row pointers and column indices to zero; values are kept."""
        self.row_pointer.fill(0)
        self.col_index.fill(0)


@dataclass(eq=False)
class CSCMatrix:
    """A matrix in compressed sparse column form."""

    data: np.ndarray
    row_index: np.ndarray
    col_pointer: np.ndarray

    def __post_init__(self) -> None:
        self.data = _as_vector(self.data)
        self.row_index = _as_vector(self.row_index, INDEX_DTYPE)
        self.col_pointer = _as_vector(self.col_pointer, INDEX_DTYPE)
        if self.col_pointer.size < 1:
            raise ValueError("col_pointer must hold at least one entry")
        if self.row_index.size != self.data.size:
            raise ValueError(
                f"row_index has {self.row_index.size} entries but data has {self.data.size}"
            )

    @classmethod
    def zeros(cls, nnz: int, cols: int) -> CSCMatrix:
        """Return a matrix with room for ``nnz`` entries and ``cols`` columns, all zero."""
        if nnz < 0 or cols < 0:
            raise ValueError("nnz and cols must not be negative")
        return cls(
            np.zeros(nnz, dtype=Double),
            np.zeros(nnz, dtype=INDEX_DTYPE),
            np.zeros(cols + 1, dtype=INDEX_DTYPE),
        )

    @property
    def cols(self) -> int:
        return self.col_pointer.size - 1

    @property
    def nnz(self) -> int:
        return self.data.size

    def copy(self) -> CSCMatrix:
        """Return an independent copy of the matrix."""
        return CSCMatrix(self.data.copy(), self.row_index.copy(), self.col_pointer.copy())

    def clear(self) -> None:
        """Reset the row indices and column pointers to zero; values are kept."""
        self.row_index.fill(0)
        self.col_pointer.fill(0)


@dataclass(frozen=True)
class IndexValuePair:
    """An index together with a value."""

    index: int
    value: float


@dataclass(frozen=True)
class NonZero:
    """A single non-zero entry of a matrix."""

    row: int
    col: int
    value: float


def dot(vec1: Any, vec2: Any) -> float:
    """Dot product over the length of ``vec1``, accumulated in double precision."""
    first = _as_vector(vec1)
    second = _as_vector(vec2)[: first.size]
    products = first * second
    return float(sum(products.astype(np.float64).tolist(), 0.0))


def norm(vec: Any) -> float:
    """Euclidean norm of a vector."""
    return math.sqrt(dot(vec, vec))


def matvec(mat: CSRMatrix, vec: Any, out: np.ndarray | None = None) -> np.ndarray:
    """Add ``mat @ vec`` into ``out`` row by row and return it.

    When ``out`` is omitted a zero vector is used, so the plain product is returned.
    """
    vector = _as_vector(vec)
    if out is None:
        out = np.zeros(mat.rows, dtype=np.result_type(mat.data, vector))
    elif out.size < mat.rows:
        raise ValueError(f"output has {out.size} entries, matrix has {mat.rows} rows")
    pointers = mat.row_pointer
    counts = np.diff(pointers)
    if (counts < 0).any():
        raise ValueError("row pointers must not decrease")
    start, end = int(pointers[0]), int(pointers[-1])
    row_ids = np.repeat(np.arange(mat.rows), counts)
    products = mat.data[start:end] * vector[mat.col_index[start:end]]
    np.add.at(out, row_ids, products.astype(out.dtype, copy=False))
    return out