"""Builders for symmetric MPOs and initial MPS.

Spin-1/2 conventions: basis order (up, down), physical charges 2*Sz = (+1, -1).
t-J conventions: basis order (up, down, empty), packed charges (N, 2*Sz).

MPO site tensors store ``W[wl, ket, bra, wr] = op[bra, ket]`` with legs
``(wl IN, ket OUT, bra IN, wr OUT)``, so the ket leg contracts with the MPS
physical leg and the bra leg becomes the physical leg of ``H |psi>``. The
dummy virtual bond is dropped on both end sites. Each MPO virtual channel
carries the charge picked up by the operators already placed to its left.
"""

from __future__ import annotations

from collections.abc import Sequence

import jax
import jax.numpy as jnp
import numpy as np

from tnsweep.contraction.contractor import contract, truncated_svd
from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.symmetry import BaseSymmetry, ProductSymmetry, U1Symmetry
from tnsweep.core.tensor import SymmetricTensor

# ---------------------------------------------------------------------------
# Spin-1/2 site
# ---------------------------------------------------------------------------


def spin_half_charges() -> np.ndarray:
    """Physical charges 2*Sz of a spin-1/2 site: up = +1, down = -1."""
    return np.array([1, -1], dtype=np.int32)


def spin_half_ops() -> dict[str, np.ndarray]:
    """Standard spin-1/2 single-site operators (d=2).

    Returns a dict with keys "Sz", "Sp", "Sm", "Id".
    """
    return {
        "Sz": np.array([[0.5, 0.0], [0.0, -0.5]], dtype=np.float64),
        "Sp": np.array([[0.0, 1.0], [0.0, 0.0]], dtype=np.float64),
        "Sm": np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float64),
        "Id": np.eye(2, dtype=np.float64),
    }


# ---------------------------------------------------------------------------
# t-J site
# ---------------------------------------------------------------------------


def tj_symmetry() -> ProductSymmetry:
    """Conserved (particle number N, 2*Sz) of the t-J model."""
    return ProductSymmetry(U1Symmetry(), U1Symmetry())


def tj_charges() -> np.ndarray:
    """Packed (N, 2*Sz) charges of the t-J site basis (up, down, empty)."""
    return ProductSymmetry.encode_charges(
        np.array([1, 1, 0]), np.array([1, -1, 0])
    )


def tj_ops() -> dict[str, np.ndarray]:
    """Single-site operators of the t-J model (d=3, no double occupancy).

    Returns a dict with keys "Sz", "Sp", "Sm", "Cup", "Cdagup", "Cdn",
    "Cdagdn" and "Id". The hopping operators are the hard-core ones; on an
    open chain with nearest-neighbour hopping the Jordan-Wigner strings are
    trivial, so they describe fermions there as well.
    """
    ops = {name: np.zeros((3, 3), dtype=np.float64) for name in
           ("Sz", "Sp", "Sm", "Cup", "Cdagup", "Cdn", "Cdagdn")}
    ops["Sz"][0, 0], ops["Sz"][1, 1] = 0.5, -0.5
    ops["Sp"][0, 1] = 1.0
    ops["Sm"][1, 0] = 1.0
    ops["Cup"][2, 0] = 1.0
    ops["Cdagup"][0, 2] = 1.0
    ops["Cdn"][2, 1] = 1.0
    ops["Cdagdn"][1, 2] = 1.0
    ops["Id"] = np.eye(3, dtype=np.float64)
    return ops


# ---------------------------------------------------------------------------
# MPO
# ---------------------------------------------------------------------------


def operator_charge(
    op: np.ndarray,
    phys_charges: np.ndarray,
    symmetry: BaseSymmetry | None = None,
) -> int:
    """Charge transferred by a local operator: ``q(bra) - q(ket)``.

    Raises:
        ValueError: If the non-zero elements of ``op`` do not all transfer the
                    same charge.
    """
    sym = symmetry if symmetry is not None else U1Symmetry()
    bra, ket = np.nonzero(np.abs(op) > 1e-14)
    deltas = {
        sym.fuse_scalar(int(phys_charges[b]), sym.dual_scalar(int(phys_charges[k])))
        for b, k in zip(bra, ket)
    }
    if len(deltas) > 1:
        raise ValueError(f"operator does not carry a definite charge: {sorted(deltas)}")
    return deltas.pop() if deltas else sym.identity()


def mpo_from_w_matrices(
    w_matrices: Sequence[np.ndarray],
    bond_charges: Sequence[np.ndarray],
    phys_charges: np.ndarray,
    symmetry: BaseSymmetry | None = None,
    dtype: jnp.dtype = jnp.float64,
) -> list[SymmetricTensor]:
    """Wrap dense W-matrices into block-sparse MPO site tensors.

    Args:
        w_matrices:   One array per site, shape ``(D_l, d, d, D_r)`` indexed
                      ``[wl, ket, bra, wr]``; ``D_l = 1`` on the first site
                      and ``D_r = 1`` on the last.
        bond_charges: Channel charges of each of the ``N-1`` virtual bonds.
        phys_charges: Charges of the physical basis states.
        symmetry:     Symmetry of all legs (U(1) by default).
        dtype:        JAX dtype of the blocks.

    Returns:
        List of N SymmetricTensor: left end ``(ket, bra, wr)``, bulk
        ``(wl, ket, bra, wr)``, right end ``(wl, ket, bra)``.

    Raises:
        ValueError: If a W-matrix has weight outside the charge-allowed blocks.
    """
    sym = symmetry if symmetry is not None else U1Symmetry()
    phys = np.asarray(phys_charges, dtype=np.int32)
    n_sites = len(w_matrices)
    mpo = []
    for i, W in enumerate(w_matrices):
        data = np.asarray(W)
        legs = []
        if i > 0:
            legs.append(TensorIndex(sym, np.asarray(bond_charges[i - 1]), FlowDirection.IN))
        else:
            data = data[0]
        legs.append(TensorIndex(sym, phys, FlowDirection.OUT))
        legs.append(TensorIndex(sym, phys, FlowDirection.IN))
        if i < n_sites - 1:
            legs.append(TensorIndex(sym, np.asarray(bond_charges[i]), FlowDirection.OUT))
        else:
            data = data[..., 0]
        mpo.append(SymmetricTensor.from_dense(jnp.asarray(data, dtype=dtype), tuple(legs)))
    return mpo


def build_mpo_xxz(
    n_sites: int,
    jz: float = 1.0,
    jxy: float = 1.0,
    hz: float = 0.0,
    dtype: jnp.dtype = jnp.float64,
) -> list[SymmetricTensor]:
    """Build the U(1)-symmetric MPO of the open spin-1/2 XXZ chain.

    H = jz * sum_i Sz_i Sz_{i+1} + jxy/2 * sum_i (S+_i S-_{i+1} + S-_i S+_{i+1})
        + hz * sum_i Sz_i

    ``jxy=0`` gives the Ising chain.

    The MPO uses the standard 5x5 lower-triangular representation::

        W = [[I,     0,        0,        0,     0],
             [S+,    0,        0,        0,     0],
             [S-,    0,        0,        0,     0],
             [Sz,    0,        0,        0,     0],
             [hz*Sz, jxy/2*S-, jxy/2*S+, jz*Sz, I]]

    The first site keeps the last row, the last site the first column.
    Channel charges are (0, -2, +2, 0, 0).

    Args:
        n_sites: Chain length, at least 2.
        jz:      Ising coupling.
        jxy:     XY coupling.
        hz:      Longitudinal field.
        dtype:   JAX dtype of the blocks.

    Returns:
        List of ``n_sites`` MPO site tensors.
    """
    if n_sites < 2:
        raise ValueError(f"n_sites must be >= 2, got {n_sites}")
    ops = spin_half_ops()
    Sz, Sp, Sm, I2 = ops["Sz"], ops["Sp"], ops["Sm"], ops["Id"]
    d, D_w = 2, 5

    W = np.zeros((D_w, d, d, D_w), dtype=np.float64)
    entries = {
        (0, 0): I2,
        (1, 0): Sp,
        (2, 0): Sm,
        (3, 0): Sz,
        (4, 0): hz * Sz,
        (4, 1): (jxy / 2) * Sm,
        (4, 2): (jxy / 2) * Sp,
        (4, 3): jz * Sz,
        (4, 4): I2,
    }
    for (a, b), op in entries.items():
        W[a, :, :, b] = op.T

    channels = np.array([0, -2, 2, 0, 0], dtype=np.int32)
    w_mats = [W[D_w - 1:D_w]] + [W] * (n_sites - 2) + [W[..., 0:1]]
    return mpo_from_w_matrices(
        w_mats, [channels] * (n_sites - 1), spin_half_charges(), dtype=dtype
    )


# ---------------------------------------------------------------------------
# MPS
# ---------------------------------------------------------------------------


def _site_indices(
    sym: BaseSymmetry,
    phys: np.ndarray,
    left: np.ndarray | None,
    right: np.ndarray | None,
) -> tuple[TensorIndex, ...]:
    legs = []
    if left is not None:
        legs.append(TensorIndex(sym, left, FlowDirection.IN))
    legs.append(TensorIndex(sym, phys, FlowDirection.IN))
    if right is not None:
        legs.append(TensorIndex(sym, right, FlowDirection.OUT))
    return tuple(legs)


def right_canonicalize(mps: list[SymmetricTensor]) -> list[SymmetricTensor]:
    """Bring an MPS into right-canonical form and normalise it, in place.

    Sweeps from the right end with exact (untruncated) SVDs; every site but
    the first becomes right-orthonormal and keeps its divergence.
    """
    for i in range(len(mps) - 1, 0, -1):
        t = mps[i]
        sym = t.symmetry
        u, s, v, _, _ = truncated_svd(
            t, 1, t.ndim - 1, sym.identity(), t.divergence,
            cutoff=0.0, dmin=1, dmax=int(np.prod(t.shape)),
        )
        mps[i] = v
        us = contract(u, s, ([1], [0]))
        mps[i - 1] = contract(mps[i - 1], us, ([mps[i - 1].ndim - 1], [0]))
    mps[0] = mps[0].scale(1.0 / mps[0].norm())
    return mps


def random_init_mps(
    n_sites: int,
    phys_charges: np.ndarray,
    bond_dim: int,
    total_charge: int = 0,
    seed: int = 0,
    symmetry: BaseSymmetry | None = None,
    dtype: jnp.dtype = jnp.float64,
) -> list[SymmetricTensor]:
    """Build a random, right-canonical, normalised block-sparse MPS.

    The charges on bond ``b`` (between sites ``b`` and ``b+1``) are limited
    to those reachable by the first ``b+1`` sites that still let the
    remaining sites reach ``total_charge``. The ``bond_dim`` states are dealt
    out round-robin over those charges, nearest the uniform charge density
    ``total_charge * (b+1) / n_sites`` first (summed over the components of
    a product charge). The total charge sits on the
    divergence of the last site.

    Args:
        n_sites:      Chain length, at least 2.
        phys_charges: Charges of the physical basis states.
        bond_dim:     Number of states on each virtual bond.
        total_charge: Target total charge of the state.
        seed:         Site ``i`` draws from ``jax.random.PRNGKey(seed + i)``.
        symmetry:     Symmetry of all legs (U(1) by default).
        dtype:        JAX dtype of the blocks.

    Returns:
        List of ``n_sites`` MPS site tensors.

    Raises:
        ValueError: If ``total_charge`` cannot be reached.
    """
    if n_sites < 2:
        raise ValueError(f"n_sites must be >= 2, got {n_sites}")
    if bond_dim < 1:
        raise ValueError(f"bond_dim must be >= 1, got {bond_dim}")
    sym = symmetry if symmetry is not None else U1Symmetry()
    phys = np.asarray(phys_charges, dtype=np.int32)
    site_charges = sorted({int(q) for q in phys})

    from_left = []
    reach = {sym.identity()}
    for _ in range(n_sites - 1):
        reach = {sym.fuse_scalar(a, q) for a in reach for q in site_charges}
        from_left.append(reach)

    from_right: list[set[int]] = [set()] * (n_sites - 1)
    reach = {int(total_charge)}
    for b in range(n_sites - 2, -1, -1):
        reach = {sym.fuse_scalar(a, sym.dual_scalar(q)) for a in reach for q in site_charges}
        from_right[b] = reach

    bonds = []
    for b in range(n_sites - 1):
        allowed = from_left[b] & from_right[b]
        if not allowed:
            raise ValueError(
                f"total charge {total_charge} is not reachable on {n_sites} sites "
                f"with physical charges {site_charges}"
            )
        density = [t * (b + 1) / n_sites for t in sym.components(total_charge)]

        def distance(q: int) -> tuple[float, tuple[int, ...]]:
            comps = sym.components(q)
            return sum(abs(c - r) for c, r in zip(comps, density)), comps

        ordered = sorted(allowed, key=distance)
        picked = [ordered[k % len(ordered)] for k in range(bond_dim)]
        bonds.append(np.array(sorted(picked), dtype=np.int32))

    mps = []
    for i in range(n_sites):
        left = bonds[i - 1] if i > 0 else None
        right = bonds[i] if i < n_sites - 1 else None
        divergence = int(total_charge) if i == n_sites - 1 else sym.identity()
        key = jax.random.PRNGKey(seed + i)
        mps.append(
            SymmetricTensor.random_normal(
                _site_indices(sym, phys, left, right), key, divergence, dtype=dtype
            )
        )
    return right_canonicalize(mps)


def direct_product_mps(
    phys_charges: np.ndarray,
    states: Sequence[int],
    symmetry: BaseSymmetry | None = None,
    dtype: jnp.dtype = jnp.float64,
) -> list[SymmetricTensor]:
    """Build the bond-dimension-1 product state ``|states[0], states[1], ...>``.

    Each bond carries the accumulated charge of the sites to its left; the
    total charge sits on the divergence of the last site.

    Args:
        phys_charges: Charges of the physical basis states.
        states:       Basis-state index of every site.
        symmetry:     Symmetry of all legs (U(1) by default).
        dtype:        JAX dtype of the blocks.
    """
    n_sites = len(states)
    if n_sites < 2:
        raise ValueError(f"need at least 2 sites, got {n_sites}")
    sym = symmetry if symmetry is not None else U1Symmetry()
    phys = np.asarray(phys_charges, dtype=np.int32)
    d = len(phys)
    for i, s in enumerate(states):
        if not 0 <= s < d:
            raise ValueError(f"state {s} at site {i} out of range [0, {d})")

    bonds = []
    acc = sym.identity()
    for s in states[:-1]:
        acc = sym.fuse_scalar(acc, int(phys[s]))
        bonds.append(np.array([acc], dtype=np.int32))

    mps = []
    for i, s in enumerate(states):
        if i == 0:
            data = np.zeros((d, 1))
            data[s, 0] = 1.0
            indices = _site_indices(sym, phys, None, bonds[0])
            divergence = sym.identity()
        elif i == n_sites - 1:
            data = np.zeros((1, d))
            data[0, s] = 1.0
            indices = _site_indices(sym, phys, bonds[-1], None)
            divergence = sym.fuse_scalar(int(bonds[-1][0]), int(phys[s]))
        else:
            data = np.zeros((1, d, 1))
            data[0, s, 0] = 1.0
            indices = _site_indices(sym, phys, bonds[i - 1], bonds[i])
            divergence = sym.identity()
        mps.append(
            SymmetricTensor.from_dense(jnp.asarray(data, dtype=dtype), indices, divergence)
        )
    return mps
