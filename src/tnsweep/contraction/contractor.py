r"""Block-sparse contraction and truncated factorization.

Primary API::

    contract(a, b, axes) -> SymmetricTensor
    truncated_svd(tensor, ldims, rdims, ldiv, rdiv, cutoff, dmin, dmax) -> SvdResult

``contract`` follows tensordot semantics: ``axes[0]`` of ``a`` are summed
against ``axes[1]`` of ``b`` and the result carries the free legs of ``a``
followed by the free legs of ``b``. Axis lists are translated to an einsum
subscript string which is fed to opt_einsum, block pair by block pair, with
the JAX backend.
"""

from __future__ import annotations

import string
from collections.abc import Sequence
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
import opt_einsum

from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.tensor import BlockKey, SymmetricTensor

# ---------- Axes → Subscript Translation ----------


def _axes_to_subscripts(
    ndim_a: int,
    ndim_b: int,
    axes_a: Sequence[int],
    axes_b: Sequence[int],
) -> str:
    """Build a pairwise einsum subscript string from tensordot-style axes.

    Legs of ``a`` get consecutive letters; contracted legs of ``b`` reuse the
    letter of their partner on ``a``; free legs of ``b`` get fresh letters.

    Raises:
        ValueError: If the two tensors together need more than 52 letters.
    """
    if ndim_a + ndim_b > 52:
        raise ValueError(
            f"Too many legs ({ndim_a + ndim_b}) for einsum encoding. "
            f"Maximum supported is 52 (a-z + A-Z)."
        )
    chars = string.ascii_lowercase + string.ascii_uppercase
    subs_a = [chars[i] for i in range(ndim_a)]
    subs_b = []
    fresh = ndim_a
    partner = dict(zip(axes_b, axes_a))
    for j in range(ndim_b):
        if j in partner:
            subs_b.append(subs_a[partner[j]])
        else:
            subs_b.append(chars[fresh])
            fresh += 1
    contracted = set(axes_a)
    out = [subs_a[i] for i in range(ndim_a) if i not in contracted]
    out += [subs_b[j] for j in range(ndim_b) if j not in partner]
    return "".join(subs_a) + "," + "".join(subs_b) + "->" + "".join(out)


def _normalize_axes(axes: Sequence[int], ndim: int) -> tuple[int, ...]:
    normalized = tuple(int(ax) % ndim if ndim else int(ax) for ax in axes)
    if len(set(normalized)) != len(normalized):
        raise ValueError(f"Repeated axis in {tuple(axes)}")
    return normalized


# ---------- Public API ----------


def contract(
    a: SymmetricTensor,
    b: SymmetricTensor,
    axes: tuple[Sequence[int], Sequence[int]],
) -> SymmetricTensor:
    """Contract two block-sparse tensors over the given axes.

    Blocks of ``b`` are grouped by their charges on the contracted legs, so
    each block of ``a`` meets only the blocks it can couple to. Every such
    pair is contracted with opt_einsum and contributions landing on the same
    output key are accumulated.

    Args:
        a:    First tensor.
        b:    Second tensor.
        axes: ``(axes_a, axes_b)`` of equal length; ``axes_a[k]`` of ``a`` is
              summed against ``axes_b[k]`` of ``b``.

    Returns:
        SymmetricTensor with legs (free legs of a..., free legs of b...) and
        divergence fuse(a.divergence, b.divergence).

    Raises:
        ValueError: If the axis lists differ in length or a contracted pair of
                    legs does not carry identical charges with opposite flows.

    Example:
        >>> # A has legs (l, p, r), B has legs (l, p, r)
        >>> theta = contract(A, B, ([2], [0]))
        >>> theta.ndim
        4
    """
    axes_a = _normalize_axes(axes[0], a.ndim)
    axes_b = _normalize_axes(axes[1], b.ndim)
    if len(axes_a) != len(axes_b):
        raise ValueError(
            f"axes must pair up, got {len(axes_a)} axes on a and {len(axes_b)} on b"
        )
    for ia, ib in zip(axes_a, axes_b):
        if not a.indices[ia].is_contractible_with(b.indices[ib]):
            raise ValueError(
                f"Cannot contract leg {ia} ({a.indices[ia]!r}) with leg {ib} "
                f"({b.indices[ib]!r}): charges must match with opposite flows"
            )

    sym = a.symmetry if a.symmetry is not None else b.symmetry
    divergence = sym.fuse_scalar(a.divergence, b.divergence) if sym is not None else 0

    # Rank-0 operands are scalars
    if a.ndim == 0:
        return SymmetricTensor._trusted(
            {k: v * a.blocks.get((), 0.0) for k, v in b.blocks.items()},
            b.indices,
            divergence,
        )
    if b.ndim == 0:
        return SymmetricTensor._trusted(
            {k: v * b.blocks.get((), 0.0) for k, v in a.blocks.items()},
            a.indices,
            divergence,
        )

    free_a = [i for i in range(a.ndim) if i not in axes_a]
    free_b = [j for j in range(b.ndim) if j not in axes_b]
    out_indices = tuple(a.indices[i] for i in free_a) + tuple(b.indices[j] for j in free_b)
    subscripts = _axes_to_subscripts(a.ndim, b.ndim, axes_a, axes_b)

    b_groups: dict[BlockKey, list[tuple[BlockKey, jax.Array]]] = {}
    for key_b, block_b in b.blocks.items():
        b_groups.setdefault(tuple(key_b[j] for j in axes_b), []).append((key_b, block_b))

    output_blocks: dict[BlockKey, Any] = {}
    for key_a, block_a in a.blocks.items():
        matches = b_groups.get(tuple(key_a[i] for i in axes_a))
        if not matches:
            continue
        head = tuple(key_a[i] for i in free_a)
        for key_b, block_b in matches:
            out_key = head + tuple(key_b[j] for j in free_b)
            result_array = opt_einsum.contract(subscripts, block_a, block_b, backend="jax")
            if out_key in output_blocks:
                output_blocks[out_key] = output_blocks[out_key] + result_array
            else:
                output_blocks[out_key] = result_array

    return SymmetricTensor._trusted(output_blocks, out_indices, divergence)


# ---------- Truncated SVD ----------


class SvdResult(NamedTuple):
    """Result of a truncated block-sparse SVD.

    Attributes:
        u:         Left factor, legs (left legs..., bond OUT), divergence ldiv.
        s:         Diagonal spectrum, legs (bond IN, bond OUT).
        v:         Right factor, legs (bond IN, right legs...), divergence rdiv.
        D:         Kept bond dimension.
        trunc_err: Discarded squared weight over total squared weight.
    """

    u: SymmetricTensor
    s: SymmetricTensor
    v: SymmetricTensor
    D: int
    trunc_err: float


def _truncation_dim(
    s_sorted: np.ndarray,
    cutoff: float,
    dmin: int,
    dmax: int,
) -> tuple[int, float]:
    """Pick the kept dimension for a descending spectrum.

    Keep the largest values up to dmax; below dmax, keep dropping the
    smallest kept value while the discarded squared weight stays below
    cutoff and more than dmin values remain.

    Returns:
        (D, trunc_err) with trunc_err the discarded fraction of the squared weight.
    """
    weights = s_sorted.astype(np.float64) ** 2
    total = float(np.sum(weights))
    D = min(dmax, len(s_sorted))
    discarded = float(np.sum(weights[D:]))
    if total <= 0.0:
        return max(D, 1), 0.0
    while D > dmin and (discarded + weights[D - 1]) / total < cutoff:
        discarded += float(weights[D - 1])
        D -= 1
    return D, discarded / total


def truncated_svd(
    tensor: SymmetricTensor,
    ldims: int,
    rdims: int,
    ldiv: int,
    rdiv: int,
    cutoff: float,
    dmin: int,
    dmax: int,
) -> SvdResult:
    """Charge-resolved SVD of a block-sparse tensor with truncation.

    The first ``ldims`` legs form the rows and the remaining ``rdims`` legs the
    columns. Blocks are grouped into sectors by the charge the new bond must
    carry for the left factor to have divergence ``ldiv``; each sector matrix
    is decomposed separately. The spectrum is then ranked globally by
    descending value (ties broken by sector charge, then by position inside
    the sector) and truncated by ``_truncation_dim``.

    Note:
        Not JIT-able as a whole: the kept dimension is decided from the
        singular values on the host.

    Args:
        tensor: Tensor to decompose.
        ldims:  Number of leading legs assigned to the left factor.
        rdims:  Number of trailing legs assigned to the right factor.
        ldiv:   Divergence of the left factor.
        rdiv:   Divergence of the right factor.
        cutoff: Maximum discarded squared weight (relative) below dmax.
        dmin:   Minimum kept dimension (subject to availability).
        dmax:   Maximum kept dimension.

    Returns:
        SvdResult(u, s, v, D, trunc_err).

    Raises:
        ValueError: On an inconsistent split, divergences or bounds, or if the
                    tensor has no stored blocks.
    """
    if ldims < 1 or rdims < 1 or ldims + rdims != tensor.ndim:
        raise ValueError(
            f"ldims={ldims} + rdims={rdims} must split the {tensor.ndim} legs of the tensor"
        )
    if dmin < 1 or dmax < dmin:
        raise ValueError(f"need 1 <= dmin <= dmax, got dmin={dmin}, dmax={dmax}")
    sym = tensor.symmetry
    if sym.fuse_scalar(ldiv, rdiv) != tensor.divergence:
        raise ValueError(
            f"ldiv={ldiv} and rdiv={rdiv} do not fuse to the tensor divergence "
            f"{tensor.divergence}"
        )
    if not tensor.blocks:
        raise ValueError("cannot factorize a tensor with no stored blocks")

    left_indices = tensor.indices[:ldims]
    right_indices = tensor.indices[ldims:]
    lflows = tuple(int(idx.flow) for idx in left_indices)
    dual_ldiv = sym.dual_scalar(ldiv)

    # sector charge -> {"rows": {lkey: shape}, "cols": {rkey: shape}, "blocks": [...]}
    sectors: dict[int, dict[str, Any]] = {}
    for key in sorted(tensor.blocks):
        block = tensor.blocks[key]
        lkey, rkey = key[:ldims], key[ldims:]
        q = sym.fuse_scalar(sym.net_charge(lkey, lflows), dual_ldiv)
        sector = sectors.setdefault(q, {"rows": {}, "cols": {}, "blocks": []})
        sector["rows"][lkey] = tuple(block.shape[:ldims])
        sector["cols"][rkey] = tuple(block.shape[ldims:])
        sector["blocks"].append((lkey, rkey, block))

    decompositions = {}
    values, charges, positions = [], [], []
    for q in sorted(sectors):
        sector = sectors[q]
        row_off, n_rows = {}, 0
        for lkey in sorted(sector["rows"]):
            row_off[lkey] = n_rows
            n_rows += int(np.prod(sector["rows"][lkey]))
        col_off, n_cols = {}, 0
        for rkey in sorted(sector["cols"]):
            col_off[rkey] = n_cols
            n_cols += int(np.prod(sector["cols"][rkey]))

        matrix = np.zeros((n_rows, n_cols), dtype=np.dtype(tensor.dtype))
        for lkey, rkey, block in sector["blocks"]:
            r0, c0 = row_off[lkey], col_off[rkey]
            nr = int(np.prod(sector["rows"][lkey]))
            nc = int(np.prod(sector["cols"][rkey]))
            matrix[r0:r0 + nr, c0:c0 + nc] = np.asarray(block).reshape(nr, nc)

        U, s, Vh = jnp.linalg.svd(jnp.asarray(matrix), full_matrices=False)
        decompositions[q] = (U, s, Vh, row_off, col_off)
        s_np = np.asarray(s)
        values.append(s_np)
        charges.append(np.full(len(s_np), q, dtype=np.int64))
        positions.append(np.arange(len(s_np)))

    all_values = np.concatenate(values)
    all_charges = np.concatenate(charges)
    all_positions = np.concatenate(positions)
    # Primary key: descending value; then ascending charge; then position
    order = np.lexsort((all_positions, all_charges, -all_values))
    D, trunc_err = _truncation_dim(all_values[order], cutoff, dmin, dmax)

    kept: dict[int, list[int]] = {}
    for k in order[:D]:
        kept.setdefault(int(all_charges[k]), []).append(int(all_positions[k]))

    kept_charges = sorted(kept)
    bond_charges = np.concatenate(
        [np.full(len(kept[q]), q, dtype=np.int32) for q in kept_charges]
    )
    bond_out = TensorIndex(sym, bond_charges, FlowDirection.OUT)
    bond_in = TensorIndex(sym, bond_charges, FlowDirection.IN)

    u_blocks: dict[BlockKey, jax.Array] = {}
    s_blocks: dict[BlockKey, jax.Array] = {}
    v_blocks: dict[BlockKey, jax.Array] = {}
    for q in kept_charges:
        U, s, Vh, row_off, col_off = decompositions[q]
        cols = jnp.asarray(sorted(kept[q]))
        n_q = len(kept[q])
        U_q = U[:, cols]
        Vh_q = Vh[cols, :]
        for lkey, r0 in row_off.items():
            shape = sectors[q]["rows"][lkey]
            nr = int(np.prod(shape))
            u_blocks[lkey + (q,)] = U_q[r0:r0 + nr, :].reshape(shape + (n_q,))
        for rkey, c0 in col_off.items():
            shape = sectors[q]["cols"][rkey]
            nc = int(np.prod(shape))
            v_blocks[(q,) + rkey] = Vh_q[:, c0:c0 + nc].reshape((n_q,) + shape)
        s_blocks[(q, q)] = jnp.diag(s[cols])

    u = SymmetricTensor(u_blocks, left_indices + (bond_out,), ldiv)
    s_tensor = SymmetricTensor(s_blocks, (bond_in, bond_out), sym.identity())
    v = SymmetricTensor(v_blocks, (bond_in,) + right_indices, rdiv)
    return SvdResult(u=u, s=s_tensor, v=v, D=int(D), trunc_err=float(trunc_err))


def singular_values(s: SymmetricTensor) -> np.ndarray:
    """Descending 1-D array of the values on the diagonal of a spectrum tensor."""
    diagonals = [np.diag(np.asarray(block)) for block in s.blocks.values()]
    if not diagonals:
        return np.zeros(0)
    return np.sort(np.concatenate(diagonals))[::-1]
