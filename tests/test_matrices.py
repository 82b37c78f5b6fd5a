import numpy as np
import pytest

from tilespmv.matrices import (
    CSCMatrix,
    CSRMatrix,
    IndexValuePair,
    NonZero,
    dot,
    matvec,
    norm,
)


def _sample():
    data = np.array([2.0, 1.5, -1.0, 4.0])
    cols = np.array([0, 2, 1, 2])
    pointers = np.array([0, 2, 2, 4])
    dense = np.array([[2.0, 0.0, 1.5], [0.0, 0.0, 0.0], [0.0, -1.0, 4.0]])
    return CSRMatrix(data, cols, pointers, 3), dense


def test_csr_zeros_shape():
    mat = CSRMatrix.zeros(5, 3, 4)
    assert mat.nnz == 5
    assert mat.rows == 3
    assert mat.cols == 4
    assert mat.row_pointer.size == 4
    assert not mat.data.any()


def test_csr_zeros_rejects_negative():
    with pytest.raises(ValueError):
        CSRMatrix.zeros(-1, 2, 2)


def test_csr_mismatched_lengths():
    with pytest.raises(ValueError):
        CSRMatrix([1.0, 2.0], [0], [0, 2], 2)


def test_csr_copy_is_independent():
    mat, _ = _sample()
    clone = mat.copy()
    clone.data[0] = 99.0
    clone.row_pointer[1] = 0
    assert mat.data[0] == 2.0
    assert mat.row_pointer[1] == 2
    assert clone.cols == mat.cols
    assert np.array_equal(clone.col_index, mat.col_index)


def test_csr_clear_keeps_data():
    mat, _ = _sample()
    mat.clear()
    assert not mat.row_pointer.any()
    assert not mat.col_index.any()
    assert np.array_equal(mat.data, [2.0, 1.5, -1.0, 4.0])


def test_csc_zeros_and_clear():
    mat = CSCMatrix.zeros(3, 2)
    assert mat.nnz == 3
    assert mat.cols == 2
    mat.row_index[:] = [1, 2, 3]
    mat.col_pointer[:] = [0, 1, 3]
    mat.data[:] = [7.0, 8.0, 9.0]
    clone = mat.copy()
    mat.clear()
    assert not mat.row_index.any()
    assert not mat.col_pointer.any()
    assert np.array_equal(mat.data, [7.0, 8.0, 9.0])
    assert np.array_equal(clone.row_index, [1, 2, 3])


def test_pairs_hold_fields():
    pair = IndexValuePair(3, 1.25)
    entry = NonZero(1, 2, -0.5)
    assert (pair.index, pair.value) == (3, 1.25)
    assert (entry.row, entry.col, entry.value) == (1, 2, -0.5)


def test_dot_matches_numpy():
    a = np.array([1.0, -2.0, 3.5])
    b = np.array([0.5, 4.0, 2.0])
    assert dot(a, b) == pytest.approx(float(np.dot(a, b)))


def test_dot_uses_length_of_first():
    assert dot([1.0, 2.0], [3.0, 4.0, 100.0]) == pytest.approx(dot([1.0, 2.0], [3.0, 4.0]))


def test_norm_squared_is_dot():
    v = np.array([1.5, -2.0, 0.25, 3.0])
    assert norm(v) ** 2 == pytest.approx(dot(v, v))
    assert norm(v) >= 0.0


def test_matvec_matches_dense():
    mat, dense = _sample()
    x = np.array([1.0, 2.0, 3.0])
    assert np.allclose(matvec(mat, x), dense @ x)


def test_matvec_accumulates_into_out():
    mat, dense = _sample()
    x = np.array([0.5, -1.0, 2.0])
    out = np.zeros(3)
    matvec(mat, x, out)
    result = matvec(mat, x, out)
    assert result is out
    assert np.allclose(out, 2 * (dense @ x))


def test_matvec_single_precision():
    mat, dense = _sample()
    mat32 = CSRMatrix(mat.data.astype(np.float32), mat.col_index, mat.row_pointer, 3)
    x = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    out = matvec(mat32, x)
    assert out.dtype == np.float32
    assert np.allclose(out, dense @ x)


def test_matvec_output_too_small():
    mat, _ = _sample()
    with pytest.raises(ValueError):
        matvec(mat, np.ones(3), np.zeros(2))