import numpy as np
import pytest

from tilespmv.packets import (
    BLOCK_SIZE,
    IndexIndex,
    IndexMask,
    IndexValue,
    align_to_next_byte,
    pack_indices,
    pack_values,
    unpack_indices,
    unpack_values,
)


def test_block_fills_a_512_bit_burst():
    word = pack_values([-1.0] * BLOCK_SIZE)
    assert word.bit_length() == 512
    assert len(unpack_values(word)) == BLOCK_SIZE


def test_align_to_next_byte_is_multiple_of_eight_and_not_smaller():
    for n in range(0, 100):
        aligned = align_to_next_byte(n)
        assert aligned % 8 == 0
        assert n <= aligned < n + 8


def test_align_to_next_byte_rejects_negative():
    with pytest.raises(ValueError):
        align_to_next_byte(-1)


def test_word_widths():
    assert IndexValue.WIDTH == align_to_next_byte(66)
    assert IndexIndex.WIDTH == align_to_next_byte(65)
    assert IndexMask.WIDTH == align_to_next_byte(50)


def test_index_value_round_trip():
    item = IndexValue(index=-3, value=1.5, is_last=True, is_write=False)
    back = IndexValue.unpack(item.pack())
    assert (back.index, back.value, back.is_last, back.is_write) == (-3, 1.5, True, False)


def test_index_value_prev_sum_not_packed():
    item = IndexValue(index=7, value=2.0, is_write=True, prev_sum=9.0)
    back = IndexValue.unpack(item.pack())
    assert back.prev_sum == 0.0
    assert back.is_write is True


def test_index_value_layout():
    word = IndexValue(index=-1, value=1.0, is_last=True, is_write=True).pack()
    assert word & 0xFFFFFFFF == 0xFFFFFFFF
    assert (word >> 32) & 0xFFFFFFFF == 0x3F800000
    assert word >> 64 == 3


def test_index_index_round_trip_and_layout():
    item = IndexIndex(index=5, value=-2, is_last=True)
    word = item.pack()
    assert IndexIndex.unpack(word) == item
    assert word & 0xFFFFFFFF == 5
    assert word >> 64 == 1


def test_index_mask_round_trip():
    item = IndexMask(index=12, mask=0xFFFF, is_write=True, is_last=False, is_blk_read=True)
    back = IndexMask.unpack(item.pack())
    assert (back.index, back.mask, back.is_write, back.is_last) == (12, 0xFFFF, True, False)
    assert back.is_blk_read is False


def test_index_mask_rejects_wide_mask():
    with pytest.raises(ValueError):
        IndexMask(index=0, mask=1 << 16).pack()


def test_index_out_of_int32_range():
    with pytest.raises(ValueError):
        IndexIndex(index=1 << 31, value=0).pack()


def test_unpack_rejects_oversized_word():
    with pytest.raises(ValueError):
        IndexIndex.unpack(1 << IndexIndex.WIDTH)


def test_pack_values_first_item_lowest():
    word = pack_values([1.0] + [0.0] * (BLOCK_SIZE - 1))
    assert word == 0x3F800000


def test_values_round_trip():
    items = np.linspace(-4.0, 3.5, BLOCK_SIZE)
    back = unpack_values(pack_values(items))
    assert back.dtype == np.float32
    np.testing.assert_array_equal(back, items.astype(np.float32))


def test_indices_round_trip():
    items = list(range(-8, 8))
    back = unpack_indices(pack_indices(items))
    assert back.tolist() == items


def test_pack_wrong_length_rejected():
    with pytest.raises(ValueError):
        pack_values([1.0] * (BLOCK_SIZE - 1))
    with pytest.raises(ValueError):
        pack_indices([1] * (BLOCK_SIZE + 1))


def test_unpack_values_rejects_negative_word():
    with pytest.raises(ValueError):
        unpack_values(-1)