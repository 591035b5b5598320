"""Saving and loading block-sparse tensors as ``.npz`` archives.

Each archive holds the symmetry name, the flow and charge array of every leg,
the divergence, a ``(n_blocks, ndim)`` array of block keys and one array per
block. Environment-block checkpoints live at
``<directory>/<side>block<length>.npz`` with ``side`` in ``{"l", "r"}``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

import jax.numpy as jnp
import numpy as np

from tnsweep.core.index import TensorIndex
from tnsweep.core.symmetry import symmetry_from_name
from tnsweep.core.tensor import SymmetricTensor

PathLike = Union[str, os.PathLike]

BLOCK_SIDES = ("l", "r")


def write_tensor(tensor: SymmetricTensor, path: PathLike) -> Path:
    """Write ``tensor`` to ``path`` (an ``.npz`` archive).

    Args:
        tensor: Tensor to save.
        path:   Destination file. ``numpy.savez`` appends ``.npz`` if absent.

    Returns:
        The path that was written.
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_name(path.name + ".npz")
    keys = sorted(tensor.blocks)
    data = {
        "symmetry": np.array(tensor.symmetry.name if tensor.symmetry is not None else ""),
        "ndim": np.array(tensor.ndim),
        "divergence": np.array(tensor.divergence),
        "flows": np.array([int(idx.flow) for idx in tensor.indices], dtype=np.int32),
        "keys": np.array(keys, dtype=np.int32).reshape(len(keys), tensor.ndim),
    }
    for i, idx in enumerate(tensor.indices):
        data[f"charges_{i}"] = np.asarray(idx.charges)
    for k, key in enumerate(keys):
        data[f"block_{k}"] = np.asarray(tensor.blocks[key])
    np.savez(path, **data)
    return path


def read_tensor(path: PathLike) -> SymmetricTensor:
    """Read a tensor written by :func:`write_tensor`.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    with np.load(path) as fin:
        ndim = int(fin["ndim"])
        divergence = int(fin["divergence"])
        keys = [tuple(int(q) for q in row) for row in fin["keys"]]
        blocks = {key: jnp.asarray(fin[f"block_{k}"]) for k, key in enumerate(keys)}
        if ndim == 0:
            return SymmetricTensor._trusted(blocks, (), divergence)
        sym = symmetry_from_name(str(fin["symmetry"]))
        flows = fin["flows"]
        indices = tuple(
            TensorIndex(sym, fin[f"charges_{i}"], int(flows[i])) for i in range(ndim)
        )
    return SymmetricTensor(blocks, indices, divergence)


# ---------- Environment-block checkpoints ----------


def block_file_path(directory: PathLike, side: str, length: int) -> Path:
    """Deterministic checkpoint path ``<directory>/<side>block<length>.npz``.

    Raises:
        ValueError: If ``side`` is not ``"l"`` or ``"r"``.
    """
    if side not in BLOCK_SIDES:
        raise ValueError(f"side must be one of {BLOCK_SIDES}, got {side!r}")
    return Path(directory) / f"{side}block{int(length)}.npz"


def write_block(block: SymmetricTensor, directory: PathLike, side: str, length: int) -> Path:
    """Flush one environment block to its checkpoint file."""
    return write_tensor(block, block_file_path(directory, side, length))


def read_block(directory: PathLike, side: str, length: int) -> SymmetricTensor:
    """Load one environment block from its checkpoint file.

    Raises:
        FileNotFoundError: If the checkpoint does not exist.
    """
    path = block_file_path(directory, side, length)
    if not path.exists():
        raise FileNotFoundError(
            f"missing checkpoint for {side!r} block of length {length}: {path}"
        )
    return read_tensor(path)


# ---------- MPS snapshots ----------


def mps_file_path(directory: PathLike, site: int) -> Path:
    return Path(directory) / f"mps_ten{int(site)}.npz"


def dump_mps(mps: list[SymmetricTensor], directory: PathLike) -> None:
    """Write every site tensor to ``<directory>/mps_ten<i>.npz``."""
    os.makedirs(directory, exist_ok=True)
    for i, tensor in enumerate(mps):
        write_tensor(tensor, mps_file_path(directory, i))


def load_mps(n_sites: int, directory: PathLike) -> list[SymmetricTensor]:
    """Read back an MPS written by :func:`dump_mps`."""
    mps = []
    for i in range(n_sites):
        path = mps_file_path(directory, i)
        if not path.exists():
            raise FileNotFoundError(f"missing MPS tensor for site {i}: {path}")
        mps.append(read_tensor(path))
    return mps
