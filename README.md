# tilespmv

Tools for tiled sparse matrix-vector multiplication (SpMV) on CSR matrices:

- `tilespmv.matrices`: the `CSRMatrix` and `CSCMatrix` containers (numpy
  arrays for values, indices and pointers), the `IndexValuePair` and
  `NonZero` records, and `dot`, `norm` and `matvec`.
- `tilespmv.partitioning`: `partition_nnz_balanced` splits a matrix into a
  grid of CSR tiles, `tiled_matvec` multiplies the tiles by a vector, and
  `verify_tile_partitioning` compares the tiled product with the plain one.
- `tilespmv.packing`: `allocate_buffers`, `pack_tiles`, `pack_vector_only`
  and `verify_tiles_packing` lay tiles and the input vector out in
  block-aligned value and index buffers (`TileBuffers`) and check them;
  `kernel_instance_names` gives the names of the four kernel instances per
  compute unit.
- A software model of a four-stage streaming CSR SpMV pipeline working on
  blocks of 16 single-precision values: the stream word formats
  (`tilespmv.packets`), the buffer reader and result writer
  (`tilespmv.reader`), the multiplier (`tilespmv.multiplier`), the per-row
  partial summer (`tilespmv.summer`), the accumulator
  (`tilespmv.accumulator`) and the whole chain in one call,
  `run_spmv` (`tilespmv.pipeline`).

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import numpy as np

from tilespmv.matrices import CSRMatrix, matvec
from tilespmv.partitioning import (
    partition_nnz_balanced,
    tiled_matvec,
    verify_tile_partitioning,
)

mat = CSRMatrix(
    np.array([1.0, 2.0, 3.0, 4.0]),  # values
    [0, 2, 1, 3],                     # column indices
    [0, 2, 3, 3, 4],                  # row pointers
    cols=4,
)

parts = partition_nnz_balanced(mat, mat.rows, mat.cols, 2, 2)
x = np.arange(4.0)
y = tiled_matvec(parts.tiles, x, parts.y_part_rows, 2)
assert np.allclose(y, matvec(mat, x))

assert verify_tile_partitioning(mat, 2, 2, 1.0, parts.tiles, parts.y_part_rows, 2)
```

`partition_nnz_balanced` sorts rows by their number of non-zeros and deals
them out to the row partitions back and forth, so each partition receives a
similar share of the work. Each row partition is then cut into column tiles
of `ceil(cols / x_parts)` columns; the last tile takes what remains. The
returned `Partitioning` holds `tiles[i][j]` and, in `y_part_rows[i]`, the
source row of each local row of partition `i`.

`tiled_matvec` multiplies the tiles by a vector and puts the partial results
back on their source rows (for `part_method` above 1) or lays them out one
partition after another.

With `tilespmv.packing`, the tiles of each row partition go into a value
buffer (per tile: the vector slice, then the tile's non-zeros) and an index
buffer (a first block of per-tile nnz block counts, then per tile the row
pointers and column indices), each region padded to whole blocks.
`pack_tiles` returns the block totals of each partition as `PackedCounts`.
`run_spmv` takes one partition's buffers and those counts and returns the
result blocks the pipeline writes back.

## What this package does not do

- It reads no matrix files: matrices are built in code from arrays.
- It has no command-line program.
- It does not drive any accelerator device; the pipeline stages run as
  plain Python on numpy arrays.