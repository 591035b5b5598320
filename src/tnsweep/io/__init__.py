"""Persistence of tensors, environment-block checkpoints and MPS snapshots."""

from tnsweep.io.tensor_file import (
    block_file_path,
    dump_mps,
    load_mps,
    read_block,
    read_tensor,
    write_block,
    write_tensor,
)

__all__ = [
    "write_tensor",
    "read_tensor",
    "block_file_path",
    "write_block",
    "read_block",
    "dump_mps",
    "load_mps",
]
