"""Wide stream words exchanged between the SpMV kernels, and their bit layouts."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, ClassVar

import numpy as np

PREC_SIZE = 32
INDEX_SIZE = 32
BURST_SIZE = 512
BLOCK_SIZE = BURST_SIZE // PREC_SIZE
VECTOR_SIZE = 16368
MASK_SIZE = 16

_U32 = 0xFFFFFFFF
_BLOCK_BYTES = BURST_SIZE // 8


def align_to_next_byte(n: int) -> int:
    """Round a bit count up to the next multiple of eight."""
    if n < 0:
        raise ValueError("bit count must not be negative")
    return (n + 7) & ~7


def _int_to_bits(value: int) -> int:
    value = int(value)
    if not -(1 << 31) <= value < (1 << 31):
        raise ValueError(f"{value} does not fit a 32-bit signed integer")
    return value & _U32


def _bits_to_int(bits: int) -> int:
    bits &= _U32
    return bits - (1 << 32) if bits & (1 << 31) else bits


def _float_to_bits(value: float) -> int:
    with np.errstate(over="ignore"):
        return int(np.array([value], dtype="<f4").view("<u4")[0])


def _bits_to_float(bits: int) -> float:
    return float(np.array([bits & _U32], dtype="<u4").view("<f4")[0])


def _bit(word: int, position: int) -> bool:
    return bool((word >> position) & 1)


def _check_word(word: int, width: int) -> int:
    word = int(word)
    if not 0 <= word < (1 << width):
        raise ValueError(f"word does not fit {width} bits")
    return word


@dataclass
class IndexValue:
    """A row index with a partial sum; ``prev_sum`` is local and never packed."""

    index: int
    value: float
    is_last: bool = False
    is_write: bool = False
    prev_sum: float = 0.0

    WIDTH: ClassVar[int] = align_to_next_byte(INDEX_SIZE + PREC_SIZE + 1 + 1)

    def pack(self) -> int:
        """Pack into a stream word: index, value bits, is_last, is_write."""
        return (
            _int_to_bits(self.index)
            | _float_to_bits(self.value) << INDEX_SIZE
            | int(bool(self.is_last)) << (INDEX_SIZE + PREC_SIZE)
            | int(bool(self.is_write)) << (INDEX_SIZE + PREC_SIZE + 1)
        )

    @classmethod
    def unpack(cls, word: int) -> IndexValue:
        """Read an ``IndexValue`` back from a stream word."""
        word = _check_word(word, cls.WIDTH)
        return cls(
            index=_bits_to_int(word),
            value=_bits_to_float(word >> INDEX_SIZE),
            is_last=_bit(word, INDEX_SIZE + PREC_SIZE),
            is_write=_bit(word, INDEX_SIZE + PREC_SIZE + 1),
        )


@dataclass
class IndexIndex:
    """A row index with its non-zero count."""

    index: int
    value: int
    is_last: bool = False

    WIDTH: ClassVar[int] = align_to_next_byte(2 * INDEX_SIZE + 1)

    def pack(self) -> int:
        """Pack into a stream word: index, value, is_last."""
        return (
            _int_to_bits(self.index)
            | _int_to_bits(self.value) << INDEX_SIZE
            | int(bool(self.is_last)) << (2 * INDEX_SIZE)
        )

    @classmethod
    def unpack(cls, word: int) -> IndexIndex:
        """Read an ``IndexIndex`` back from a stream word."""
        word = _check_word(word, cls.WIDTH)
        return cls(
            index=_bits_to_int(word),
            value=_bits_to_int(word >> INDEX_SIZE),
            is_last=_bit(word, 2 * INDEX_SIZE),
        )


@dataclass
class IndexMask:
    """A row index with the mask of its entries within one block.

    ``is_blk_read`` is local and never packed.
    """

    index: int
    mask: int = 0
    is_write: bool = False
    is_last: bool = False
    is_blk_read: bool = False

    WIDTH: ClassVar[int] = align_to_next_byte(INDEX_SIZE + MASK_SIZE + 1 + 1)

    def pack(self) -> int:
        """Pack into a stream word: index, mask, is_write, is_last."""
        mask = int(self.mask)
        if not 0 <= mask < (1 << MASK_SIZE):
            raise ValueError(f"mask {mask} does not fit {MASK_SIZE} bits")
        return (
            _int_to_bits(self.index)
            | mask << INDEX_SIZE
            | int(bool(self.is_write)) << (INDEX_SIZE + MASK_SIZE)
            | int(bool(self.is_last)) << (INDEX_SIZE + MASK_SIZE + 1)
        )

    @classmethod
    def unpack(cls, word: int) -> IndexMask:
        """Read an ``IndexMask`` back from a stream word."""
        word = _check_word(word, cls.WIDTH)
        return cls(
            index=_bits_to_int(word),
            mask=(word >> INDEX_SIZE) & ((1 << MASK_SIZE) - 1),
            is_write=_bit(word, INDEX_SIZE + MASK_SIZE),
            is_last=_bit(word, INDEX_SIZE + MASK_SIZE + 1),
        )


def _block(items: Iterable[Any]) -> list:
    block = list(items)
    if len(block) != BLOCK_SIZE:
        raise ValueError(f"a block holds {BLOCK_SIZE} items, got {len(block)}")
    return block


def pack_values(items: Iterable[float]) -> int:
    """Pack a block of single-precision values into one burst word, item 0 lowest."""
    block = _block(items)
    with np.errstate(over="ignore"):
        raw = np.array(block, dtype="<f4").tobytes()
    return int.from_bytes(raw, "little")


def unpack_values(word: int) -> np.ndarray:
    """Unpack a burst word into a block of single-precision values."""
    word = _check_word(word, BURST_SIZE)
    return np.frombuffer(word.to_bytes(_BLOCK_BYTES, "little"), dtype="<f4").astype(np.float32)


def pack_indices(items: Iterable[int]) -> int:
    """Pack a block of 32-bit signed integers into one burst word, item 0 lowest."""
    word = 0
    for position, item in enumerate(_block(items)):
        word |= _int_to_bits(item) << (position * INDEX_SIZE)
    return word


def unpack_indices(word: int) -> np.ndarray:
    """Unpack a burst word into a block of 32-bit signed integers."""
    word = _check_word(word, BURST_SIZE)
    return np.frombuffer(word.to_bytes(_BLOCK_BYTES, "little"), dtype="<i4").astype(np.int32)