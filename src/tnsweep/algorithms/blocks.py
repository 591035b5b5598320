"""Environment blocks of the two-site sweep.

A left block of length ``n`` is the MPS/MPO/conjugate-MPS network of sites
``0..n-1`` contracted down to three legs ``(mps OUT, mpo OUT, conj IN)``; a
right block of length ``n`` covers the last ``n`` sites with legs
``(mps IN, mpo IN, conj OUT)``. Length 0 is the rank-0 identity
(``SymmetricTensor.trivial()``).

``BlockStore`` holds one chain of blocks indexed by length. Slots are empty
until set; with checkpointing enabled most slots stay empty and blocks are
paged in from ``<checkpoint_dir>/<side>block<length>.npz`` on demand.
"""

from __future__ import annotations

import os

from tnsweep.algorithms.params import SweepParams, Workflow
from tnsweep.contraction.contractor import contract
from tnsweep.core.tensor import SymmetricTensor
from tnsweep.io.tensor_file import write_block


class BlockStore:
    """Fixed-size store of optional environment blocks, indexed by length.

    Args:
        size: Number of slots (``n_sites - 1`` for a sweep).
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError(f"size must be non-negative, got {size}")
        self._slots: list[SymmetricTensor | None] = [None] * size

    def __len__(self) -> int:
        return len(self._slots)

    def _check(self, length: int) -> None:
        if not 0 <= length < len(self._slots):
            raise IndexError(
                f"block length {length} out of range for a store of size {len(self._slots)}"
            )

    def get(self, length: int) -> SymmetricTensor:
        """Return the block at ``length``.

        Raises:
            LookupError: If the slot is empty.
        """
        self._check(length)
        block = self._slots[length]
        if block is None:
            raise LookupError(f"no block of length {length} is resident")
        return block

    def get_or_allocate(self, length: int) -> SymmetricTensor:
        """Return the block at ``length``, filling an empty slot with the trivial block."""
        self._check(length)
        if self._slots[length] is None:
            self._slots[length] = SymmetricTensor.trivial()
        return self._slots[length]

    def set(self, length: int, block: SymmetricTensor) -> None:
        """Store ``block`` at ``length``, dropping any previous occupant."""
        self._check(length)
        self._slots[length] = block

    def release(self, length: int) -> None:
        """Empty the slot at ``length`` (no-op when already empty)."""
        self._check(length)
        self._slots[length] = None

    def is_resident(self, length: int) -> bool:
        self._check(length)
        return self._slots[length] is not None

    def n_resident(self) -> int:
        """Number of occupied slots."""
        return sum(block is not None for block in self._slots)

    def __repr__(self) -> str:
        occupied = [n for n, block in enumerate(self._slots) if block is not None]
        return f"BlockStore(size={len(self._slots)}, resident={occupied})"


# ---------- Block growth ----------


def grow_left_block(
    lblock: SymmetricTensor,
    site_tensor: SymmetricTensor,
    mpo_tensor: SymmetricTensor,
) -> SymmetricTensor:
    """Absorb one site into a left block.

    A rank-2 ``site_tensor`` is the left end of the chain ``(p, r)``; the
    incoming block is then the trivial one and is not used.

    Returns:
        Left block with legs (mps OUT, mpo OUT, conj IN).
    """
    bra = site_tensor.dagger()
    if site_tensor.ndim == 2:
        t = contract(site_tensor, mpo_tensor, ([0], [0]))  # (r, p', w)
        return contract(t, bra, ([1], [0]))
    t = contract(lblock, site_tensor, ([0], [0]))  # (w, d, p, r)
    t = contract(t, mpo_tensor, ([0, 2], [0, 1]))  # (d, r, p', w)
    return contract(t, bra, ([0, 2], [0, 1]))


def grow_right_block(
    rblock: SymmetricTensor,
    site_tensor: SymmetricTensor,
    mpo_tensor: SymmetricTensor,
) -> SymmetricTensor:
    """Absorb one site into a right block.

    A rank-2 ``site_tensor`` is the right end of the chain ``(l, p)``; the
    incoming block is then the trivial one and is not used.

    Returns:
        Right block with legs (mps IN, mpo IN, conj OUT).
    """
    bra = site_tensor.dagger()
    if site_tensor.ndim == 2:
        t = contract(site_tensor, mpo_tensor, ([1], [1]))  # (l, w, p')
        return contract(t, bra, ([2], [1]))
    t = contract(site_tensor, rblock, ([2], [0]))  # (l, p, w, d)
    t = contract(t, mpo_tensor, ([1, 2], [1, 3]))  # (l, d, w, p')
    return contract(t, bra, ([3, 1], [1, 2]))


# ---------- Initial blocks ----------


def init_blocks(
    mps: list[SymmetricTensor],
    mpo: list[SymmetricTensor],
    params: SweepParams,
) -> tuple[BlockStore, BlockStore]:
    """Build the left and right block chains before the first sweep.

    With ``Workflow.CONTINUE`` both stores are returned empty: the blocks of
    a previous complete run are expected in ``params.checkpoint_dir``.

    With ``Workflow.INITIAL`` the right blocks of lengths ``0..N-2`` are built
    from the right end inwards and the trivial left block of length 0 is
    added. With checkpointing every block is written to disk and then
    dropped from memory; otherwise all of them stay resident.

    Args:
        mps:    Site tensors of the state.
        mpo:    Site tensors of the Hamiltonian, aligned with ``mps``.
        params: Sweep configuration.

    Returns:
        (lblocks, rblocks), two ``BlockStore`` of size ``N-1``.

    Raises:
        ValueError: If the chains differ in length or are shorter than 2 sites.
    """
    n_sites = len(mps)
    if len(mpo) != n_sites:
        raise ValueError(f"MPS has {n_sites} sites but MPO has {len(mpo)}")
    if n_sites < 2:
        raise ValueError(f"need at least 2 sites, got {n_sites}")

    lblocks = BlockStore(n_sites - 1)
    rblocks = BlockStore(n_sites - 1)
    if params.workflow is Workflow.CONTINUE:
        return lblocks, rblocks

    checkpoint_dir = params.checkpoint_dir
    if params.checkpoint:
        os.makedirs(checkpoint_dir, exist_ok=True)

    block = SymmetricTensor.trivial()
    for length in range(n_sites - 1):
        if length > 0:
            site = n_sites - length
            block = grow_right_block(block, mps[site], mpo[site])
        if params.checkpoint:
            # write-then-discard: only the block being grown stays in memory
            write_block(block, checkpoint_dir, "r", length)
        else:
            rblocks.set(length, block)

    if params.checkpoint:
        write_block(SymmetricTensor.trivial(), checkpoint_dir, "l", 0)
    else:
        lblocks.set(0, SymmetricTensor.trivial())
    return lblocks, rblocks
