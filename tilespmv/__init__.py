"""Tiled sparse matrix-vector multiplication: partitioning, packing and a streaming pipeline model."""

__version__ = "0.1.0"

__all__ = [
    "accumulator",
    "matrices",
    "multiplier",
    "packets",
    "packing",
    "partitioning",
    "pipeline",
    "reader",
    "summer",
]