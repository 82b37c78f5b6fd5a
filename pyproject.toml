[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tilespmv"
version = "0.1.0"
description = "Tiled sparse matrix-vector multiplication: nnz-balanced partitioning, buffer packing and a software model of a streaming CSR SpMV pipeline"
requires-python = ">=3.10"
keywords = ["sparse", "spmv", "csr", "csc", "partitioning", "tiling", "streaming"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["tilespmv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
