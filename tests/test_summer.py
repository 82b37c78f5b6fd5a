import numpy as np
import pytest

from tilespmv.matrices import CSRMatrix, matvec
from tilespmv.multiplier import multiplier_kernel
from tilespmv.packets import BLOCK_SIZE, VECTOR_SIZE, IndexIndex, IndexValue, pack_values
from tilespmv.packing import allocate_buffers, pack_tiles
from tilespmv.partitioning import partition_nnz_balanced
from tilespmv.reader import read_indices, read_values
from tilespmv.summer import data_prefix_sum, mark_row_elements, summer_kernel

INVALID = VECTOR_SIZE + BLOCK_SIZE - 1


def _row_words(counts):
    words = [IndexIndex(index, count).pack() for index, count in enumerate(counts)]
    words.append(IndexIndex(INVALID, BLOCK_SIZE, is_last=True).pack())
    return words


def test_single_row_mark():
    marks = mark_row_elements(_row_words([3]), 1, 1)
    assert len(marks) == 2
    first, last = marks
    assert first.index == 0
    assert first.mask == 0xE000
    assert first.is_write
    assert first.is_blk_read
    assert last.is_last
    assert last.index == INVALID
    assert not last.is_write


def test_marks_cover_each_row_once():
    counts = [5, 20, 1, 16]
    marks = mark_row_elements(_row_words(counts), 1, 1)
    body = [m for m in marks if not m.is_last]
    for index, count in enumerate(counts):
        row_marks = [m for m in body if m.index == index]
        assert sum(bin(m.mask).count("1") for m in row_marks) == count
        assert [m.is_write for m in row_marks].count(True) == 1
        assert row_marks[-1].is_write
    assert sum(m.is_blk_read for m in body) == -(-sum(counts) // BLOCK_SIZE)


def test_masks_within_a_block_do_not_overlap():
    marks = mark_row_elements(_row_words([5, 20, 1, 16]), 1, 1)
    seen = 0
    for mark in marks:
        if mark.is_last:
            break
        if mark.is_blk_read:
            seen = 0
        assert seen & mark.mask == 0
        seen |= mark.mask


def test_full_block_row_mask():
    marks = mark_row_elements(_row_words([BLOCK_SIZE + 2]), 1, 1)
    assert marks[0].mask == 0xFFFF
    assert not marks[0].is_write
    assert marks[1].is_write and marks[1].is_blk_read


def test_mark_errors():
    with pytest.raises(ValueError):
        mark_row_elements(_row_words([3]), 0, 1)
    with pytest.raises(ValueError):
        mark_row_elements(_row_words([3])[:1], 1, 1)
    with pytest.raises(ValueError):
        mark_row_elements([IndexIndex(0, 0).pack()], 1, 1)


def test_data_prefix_sum_row_sums():
    block = [1.0, 2.0, 3.0, 4.0, 5.0] + [0.0] * (BLOCK_SIZE - 5)
    marks = mark_row_elements(_row_words([2, 3]), 1, 1)
    words = data_prefix_sum(marks, [pack_values(block)], 1, 1)
    items = [IndexValue.unpack(w) for w in words]
    assert [i.index for i in items[:-1]] == [0, 1]
    assert [i.value for i in items[:-1]] == [sum(block[:2]), sum(block[2:5])]
    assert all(i.is_write for i in items[:-1])
    assert items[-1].is_last and items[-1].index == INVALID


def test_data_prefix_sum_short_product_stream():
    marks = mark_row_elements(_row_words([2]), 1, 1)
    with pytest.raises(ValueError):
        data_prefix_sum(marks, [], 1, 1)


def _dense_source():
    rng = np.random.default_rng(7)
    dense = rng.integers(-4, 5, size=(6, 40)).astype(np.float32)
    dense[:, 0] = 1.0
    dense[:, 39] = 2.0
    rows, cols = np.nonzero(dense)
    row_ptr = np.concatenate(([0], np.cumsum(np.count_nonzero(dense, axis=1))))
    return CSRMatrix(dense[rows, cols], cols, row_ptr, 40)


def test_pipeline_partial_sums_match_matvec():
    source = _dense_source()
    tiles = partition_nnz_balanced(source, 6, 40, 1, 2).tiles
    x = np.arange(40, dtype=np.float32) / 4
    max_vec = -(-max(t.cols for t in tiles[0]) // BLOCK_SIZE)
    local_rows = tiles[0][0].rows
    max_row = local_rows // BLOCK_SIZE + 1
    buffers = allocate_buffers(tiles, BLOCK_SIZE)
    counts = pack_tiles(buffers, tiles, x, max_vec, max_row, BLOCK_SIZE)[0]
    runs = 2
    index_words = list(read_indices(buffers[0].indices, counts.row_blocks, counts.nnz_blocks, runs))
    value_words = list(read_values(buffers[0].values, counts.vec_blocks, counts.nnz_blocks, runs))
    row_words, product_words = multiplier_kernel(
        index_words, value_words, max_vec, max_row, local_rows,
        counts.valid_tiles, counts.nnz_blocks, runs,
    )
    out = summer_kernel(row_words, product_words, counts.valid_tiles, runs)

    sums = np.zeros(local_rows, dtype=np.float64)
    writes = 0
    for word in out:
        item = IndexValue.unpack(word)
        if not item.is_last:
            sums[item.index] += item.value
            writes += item.is_write
    expected = np.zeros(local_rows, dtype=np.float64)
    offset = 0
    for tile in tiles[0]:
        expected += matvec(tile, x[offset:offset + tile.cols])
        offset += tile.cols
    np.testing.assert_allclose(sums, expected * runs)
    assert writes == local_rows * counts.valid_tiles * runs