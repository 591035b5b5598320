"""Block-sparse symmetric tensor storage.

SymmetricTensor stores only the symmetry-allowed charge sectors of a tensor.
It is registered as a JAX pytree node, so block arrays can flow through
jax.jit / jax.tree_util transformations.

Block-sparse design:
- Blocks are stored as a dict[BlockKey, jax.Array]
- BlockKey = tuple of one representative charge per leg
- Only blocks satisfying the conservation law are stored:
  sum_i(flow_i * charge_i) == divergence
- Block arrays are the pytree leaves (traced by JAX)
- Block keys, index metadata and the divergence are pytree aux data (static)
"""

from __future__ import annotations

from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from tnsweep.core.index import TensorIndex
from tnsweep.core.symmetry import BaseSymmetry

# Block key: tuple of one charge value per leg identifying a charge sector
BlockKey = tuple[int, ...]

# Flat-vector layout: ordered (key, shape) pairs
BlockLayout = tuple[tuple[BlockKey, tuple[int, ...]], ...]


def _compute_valid_blocks(
    indices: tuple[TensorIndex, ...],
    divergence: int | None = None,
) -> list[BlockKey]:
    """Find all charge-sector tuples satisfying the conservation law.

    Uses incremental fused-sector propagation: instead of testing all N-leg
    combinations, builds up partial charge sums one leg at a time.  For
    finite groups (Zn), every intermediate sum is kept.  For infinite groups
    (U1, or a product containing U1), the last leg is constrained to exactly
    reach the divergence, avoiding enumeration of its charges.

    Args:
        indices:    Tuple of TensorIndex objects, one per tensor leg.
        divergence: Required net charge; defaults to the identity.

    Returns:
        Sorted list of BlockKey tuples (one charge per leg) for valid sectors.
    """
    if not indices:
        return [()]

    sym = indices[0].symmetry
    target = sym.identity() if divergence is None else int(divergence)

    # Collect unique charge values per leg (sorted for determinism)
    unique_charges_per_leg = [idx.sector_charges() for idx in indices]
    n_legs = len(indices)

    if n_legs == 1:
        flow0 = int(indices[0].flow)
        return [(q,) for q in unique_charges_per_leg[0]
                if sym.net_charge((q,), (flow0,)) == target]

    # partial maps running fused charge -> list of partial BlockKey tuples
    flow0 = int(indices[0].flow)
    partial: dict[int, list[tuple[int, ...]]] = {}
    for q in unique_charges_per_leg[0]:
        partial.setdefault(sym.net_charge((q,), (flow0,)), []).append((q,))

    last_leg_idx = n_legs - 1
    for leg_i in range(1, last_leg_idx):
        flow_i = int(indices[leg_i].flow)
        next_partial: dict[int, list[tuple[int, ...]]] = {}
        for q in unique_charges_per_leg[leg_i]:
            for prev_fused, prev_combos in partial.items():
                new_fused = sym.fuse_scalar(prev_fused, sym.oriented(q, flow_i))
                next_partial.setdefault(new_fused, []).extend(
                    combo + (q,) for combo in prev_combos
                )
        partial = next_partial

    flow_last = int(indices[last_leg_idx].flow)
    valid_keys: list[BlockKey] = []

    if sym.n_values() is None:
        # Infinite group: the last leg must supply exactly target - prev_fused
        last_charge_set = set(unique_charges_per_leg[last_leg_idx])
        for prev_fused, prev_combos in partial.items():
            needed = sym.fuse_scalar(target, sym.dual_scalar(prev_fused))
            q_last = sym.oriented(needed, flow_last)
            if q_last in last_charge_set:
                valid_keys.extend(combo + (q_last,) for combo in prev_combos)
    else:
        for q in unique_charges_per_leg[last_leg_idx]:
            for prev_fused, prev_combos in partial.items():
                if sym.fuse_scalar(prev_fused, sym.oriented(q, flow_last)) == target:
                    valid_keys.extend(combo + (q,) for combo in prev_combos)

    return sorted(valid_keys)


def _block_slices(
    indices: tuple[TensorIndex, ...],
    key: BlockKey,
) -> tuple[tuple[np.ndarray, ...], tuple[int, ...]]:
    """Find the positions (boolean mask) and block shape for a given BlockKey.

    Args:
        indices: Tuple of TensorIndex per leg.
        key:     BlockKey (one charge per leg).

    Returns:
        Tuple of (masks_per_leg, block_shape) where masks_per_leg[i] is a
        boolean array selecting positions along leg i, and block_shape[i] is
        the number of True entries (number of states with this charge).
    """
    masks = tuple(idx.charges == q for idx, q in zip(indices, key))
    shape = tuple(int(m.sum()) for m in masks)
    return masks, shape


@jax.tree_util.register_pytree_node_class
class SymmetricTensor:
    """Block-sparse tensor storing only symmetry-allowed charge sectors.

    Storage model:

    - ``_blocks``: ``dict[BlockKey, jax.Array]`` --
      Key is a tuple of one representative charge per leg.
      Value is a JAX array of shape ``(n_states_leg0, ..., n_states_legN)``
      for that charge sector.
    - ``_indices``: ``tuple[TensorIndex, ...]`` --
      Full index metadata per leg.
    - ``_divergence``: net charge carried by the tensor.

    Conservation law enforced on all stored blocks::

        sum_i(flow_i * charge_i) == divergence

    A rank-0 tensor holds a single block under the empty key; it is the
    trivial (length-0) environment block.

    Args:
        blocks:     Dict mapping BlockKey -> JAX array for each allowed sector.
        indices:    Tuple of TensorIndex objects, one per leg.
        divergence: Net charge of the tensor; defaults to the identity.
    """

    def __init__(
        self,
        blocks: dict[BlockKey, jax.Array],
        indices: tuple[TensorIndex, ...],
        divergence: int | None = None,
    ) -> None:
        self._indices = tuple(indices)
        self._blocks: dict[BlockKey, jax.Array] = {
            tuple(int(q) for q in k): v for k, v in blocks.items()
        }
        if divergence is None:
            divergence = self._indices[0].symmetry.identity() if self._indices else 0
        self._divergence = int(divergence)
        self._validate()

    @classmethod
    def _trusted(
        cls,
        blocks: dict[BlockKey, jax.Array],
        indices: tuple[TensorIndex, ...],
        divergence: int,
    ) -> SymmetricTensor:
        # Internal constructor for results whose keys are valid by construction
        obj = object.__new__(cls)
        obj._indices = tuple(indices)
        obj._blocks = blocks
        obj._divergence = int(divergence)
        return obj

    def _validate(self) -> None:
        """Verify block keys satisfy the conservation law and shapes match."""
        if not self._indices:
            for key, block in self._blocks.items():
                if key != () or jnp.ndim(block) != 0:
                    raise ValueError("rank-0 tensor must hold one scalar block under ()")
            return
        sym = self._indices[0].symmetry
        flows = tuple(int(idx.flow) for idx in self._indices)
        for key, block in self._blocks.items():
            if len(key) != len(self._indices):
                raise ValueError(
                    f"Block key {key} has {len(key)} charges for {len(self._indices)} legs"
                )
            fused_val = sym.net_charge(key, flows)
            if fused_val != self._divergence:
                raise ValueError(
                    f"Block {key} violates charge conservation: "
                    f"fused={fused_val}, expected divergence={self._divergence}"
                )
            _, shape = _block_slices(self._indices, key)
            if tuple(block.shape) != shape:
                raise ValueError(
                    f"Block {key} has shape {tuple(block.shape)}, expected {shape}"
                )

    # --- Pytree interface ---

    def tree_flatten(
        self,
    ) -> tuple[list[jax.Array], tuple[tuple[BlockKey, ...], tuple[TensorIndex, ...], int]]:
        # Sort keys for deterministic ordering
        keys = tuple(sorted(self._blocks.keys()))
        arrays = [self._blocks[k] for k in keys]
        return arrays, (keys, self._indices, self._divergence)

    @classmethod
    def tree_unflatten(
        cls,
        aux: tuple[tuple[BlockKey, ...], tuple[TensorIndex, ...], int],
        children: list[jax.Array],
    ) -> SymmetricTensor:
        keys, indices, divergence = aux
        return cls._trusted(dict(zip(keys, children)), indices, divergence)

    # --- Factory methods ---

    @classmethod
    def zeros(
        cls,
        indices: tuple[TensorIndex, ...],
        divergence: int | None = None,
        dtype: Any = jnp.float64,
    ) -> SymmetricTensor:
        """Create a zero tensor with all valid charge sectors initialized to zero.

        Args:
            indices:    Tuple of TensorIndex objects.
            divergence: Net charge of the tensor.
            dtype:      Data type for block arrays.

        Returns:
            SymmetricTensor with all valid blocks set to zero.
        """
        blocks: dict[BlockKey, jax.Array] = {}
        for key in _compute_valid_blocks(indices, divergence):
            _, shape = _block_slices(indices, key)
            blocks[key] = jnp.zeros(shape, dtype=dtype)
        return cls(blocks, indices, divergence)

    @classmethod
    def random_normal(
        cls,
        indices: tuple[TensorIndex, ...],
        key: jax.Array,
        divergence: int | None = None,
        dtype: Any = jnp.float64,
        stddev: float = 1.0,
    ) -> SymmetricTensor:
        """Create a random tensor with blocks drawn from N(0, stddev).

        Folds the JAX random key over the sorted block keys, so the result
        is reproducible for a given key.

        Args:
            indices:    Tuple of TensorIndex objects.
            key:        JAX random key.
            divergence: Net charge of the tensor.
            dtype:      Data type for block arrays.
            stddev:     Standard deviation of the normal distribution.

        Returns:
            SymmetricTensor with random entries in all valid blocks.
        """
        blocks: dict[BlockKey, jax.Array] = {}
        for i, block_key in enumerate(_compute_valid_blocks(indices, divergence)):
            _, shape = _block_slices(indices, block_key)
            subkey = jax.random.fold_in(key, i)
            blocks[block_key] = jax.random.normal(subkey, shape, dtype=dtype) * stddev
        return cls(blocks, indices, divergence)

    @classmethod
    def from_dense(
        cls,
        data: jax.Array,
        indices: tuple[TensorIndex, ...],
        divergence: int | None = None,
        tol: float = 1e-12,
    ) -> SymmetricTensor:
        """Extract block-sparse structure from a dense array.

        Elements outside valid charge sectors must be zero (within tol)
        or a ValueError is raised.

        Args:
            data:       Dense array of shape matching index dimensions.
            indices:    Tuple of TensorIndex objects.
            divergence: Net charge of the tensor.
            tol:        Tolerance for checking zero elements outside blocks.

        Returns:
            SymmetricTensor with blocks extracted from data.

        Raises:
            ValueError: If data has non-zero elements outside valid sectors.
        """
        data_np = np.asarray(data)
        if data_np.shape != tuple(idx.dim for idx in indices):
            raise ValueError(
                f"data.shape {data_np.shape} does not match index dims "
                f"{tuple(idx.dim for idx in indices)}"
            )

        full_mask = np.zeros(data_np.shape, dtype=bool)
        blocks: dict[BlockKey, jax.Array] = {}

        for key in _compute_valid_blocks(indices, divergence):
            masks, _ = _block_slices(indices, key)
            grid = np.ix_(*[np.where(m)[0] for m in masks])
            blocks[key] = jnp.asarray(data_np[grid])
            full_mask[grid] = True

        outside = data_np[~full_mask]
        if np.any(np.abs(outside) > tol):
            raise ValueError(
                f"data has {np.sum(np.abs(outside) > tol)} non-zero elements "
                f"outside symmetry-allowed sectors (max abs value: "
                f"{np.max(np.abs(outside)):.3e})"
            )

        return cls(blocks, indices, divergence)

    @classmethod
    def trivial(cls, dtype: Any = jnp.float64) -> SymmetricTensor:
        """Rank-0 tensor holding the scalar 1."""
        return cls._trusted({(): jnp.ones((), dtype=dtype)}, (), 0)

    # --- Tensor interface ---

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        return self._indices

    @property
    def ndim(self) -> int:
        return len(self._indices)

    @property
    def divergence(self) -> int:
        """Net charge of the tensor (the charge-conservation target)."""
        return self._divergence

    @property
    def symmetry(self) -> BaseSymmetry | None:
        return self._indices[0].symmetry if self._indices else None

    @property
    def dtype(self) -> Any:
        if not self._blocks:
            return jnp.float64
        return next(iter(self._blocks.values())).dtype

    @property
    def n_blocks(self) -> int:
        """Number of non-empty charge sectors."""
        return len(self._blocks)

    @property
    def blocks(self) -> dict[BlockKey, jax.Array]:
        """Read-only view of the block dict."""
        return self._blocks

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(idx.dim for idx in self._indices)

    def todense(self) -> jax.Array:
        """Materialize the full dense tensor (for testing/debugging only)."""
        if not self._indices:
            return self._blocks.get((), jnp.zeros((), dtype=self.dtype))
        result = np.zeros(self.shape, dtype=np.dtype(self.dtype))
        for key, block in self._blocks.items():
            masks, _ = _block_slices(self._indices, key)
            grid = np.ix_(*[np.where(m)[0] for m in masks])
            result[grid] = np.asarray(block)
        return jnp.asarray(result)

    def conj(self) -> SymmetricTensor:
        """Return conjugate tensor (conjugate all block arrays, legs unchanged)."""
        new_blocks = {k: jnp.conj(v) for k, v in self._blocks.items()}
        return SymmetricTensor._trusted(new_blocks, self._indices, self._divergence)

    def dagger(self) -> SymmetricTensor:
        """Structural conjugate: the bra-side copy of a ket tensor.

        Conjugates the data and reverses every leg's flow while keeping the
        charge arrays (and therefore the block keys) unchanged. The
        divergence becomes its dual.
        """
        new_indices = tuple(idx.flipped() for idx in self._indices)
        new_blocks = {k: jnp.conj(v) for k, v in self._blocks.items()}
        sym = self.symmetry
        div = sym.dual_scalar(self._divergence) if sym is not None else 0
        return SymmetricTensor._trusted(new_blocks, new_indices, div)

    def transpose(self, axes: tuple[int, ...]) -> SymmetricTensor:
        """Permute tensor legs.

        Args:
            axes: New ordering of leg indices.

        Returns:
            New SymmetricTensor with permuted blocks and reordered indices.
        """
        new_indices = tuple(self._indices[i] for i in axes)
        new_blocks = {
            tuple(key[i] for i in axes): jnp.transpose(block, axes)
            for key, block in self._blocks.items()
        }
        return SymmetricTensor._trusted(new_blocks, new_indices, self._divergence)

    def norm(self) -> jax.Array:
        """Frobenius norm across all blocks."""
        if not self._blocks:
            return jnp.zeros((), dtype=self.dtype)
        sq_norms = [jnp.sum(jnp.abs(v) ** 2) for v in self._blocks.values()]
        return jnp.sqrt(sum(sq_norms))

    def scale(self, factor: Any) -> SymmetricTensor:
        """Multiply every block by ``factor``."""
        new_blocks = {k: v * factor for k, v in self._blocks.items()}
        return SymmetricTensor._trusted(new_blocks, self._indices, self._divergence)

    def block_shapes(self) -> dict[BlockKey, tuple[int, ...]]:
        """Return the shape of each stored block."""
        return {k: tuple(v.shape) for k, v in self._blocks.items()}

    # --- Flat-vector view (used by the Krylov eigensolver) ---

    def block_layout(self) -> BlockLayout:
        """All symmetry-allowed sectors of this tensor's legs, as (key, shape) pairs.

        Sectors that are not stored are included, so two tensors with the
        same legs and divergence always share a layout.
        """
        return tuple(
            (key, _block_slices(self._indices, key)[1])
            for key in _compute_valid_blocks(self._indices, self._divergence)
        )

    def to_vector(self, layout: BlockLayout) -> jax.Array:
        """Concatenate blocks in ``layout`` order; missing blocks read as zeros."""
        parts = []
        for key, shape in layout:
            block = self._blocks.get(key)
            if block is None:
                parts.append(jnp.zeros(int(np.prod(shape)), dtype=self.dtype))
            else:
                parts.append(jnp.ravel(block))
        if not parts:
            return jnp.zeros((0,), dtype=self.dtype)
        return jnp.concatenate(parts)

    def with_vector(self, vec: jax.Array, layout: BlockLayout) -> SymmetricTensor:
        """Inverse of to_vector: same legs and divergence, blocks taken from ``vec``."""
        blocks: dict[BlockKey, jax.Array] = {}
        offset = 0
        for key, shape in layout:
            size = int(np.prod(shape))
            blocks[key] = vec[offset:offset + size].reshape(shape)
            offset += size
        if offset != vec.shape[0]:
            raise ValueError(
                f"vector has {vec.shape[0]} entries but layout needs {offset}"
            )
        return SymmetricTensor._trusted(blocks, self._indices, self._divergence)

    def __repr__(self) -> str:
        total_elements = sum(int(np.size(v)) for v in self._blocks.values())
        return (
            f"SymmetricTensor(ndim={self.ndim}, n_blocks={self.n_blocks}, "
            f"nnz={total_elements}, divergence={self._divergence}, dtype={self.dtype})"
        )
