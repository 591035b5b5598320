"""Two-site DMRG sweep over a finite open chain.

One sweep is a forward pass over bonds ``0..N-2`` followed by a backward pass
over bonds ``N-1..1``. At every bond the two adjacent site tensors are merged,
the local ground state of the effective Hamiltonian is found with Lanczos, and
the result is split back with a truncated charge-resolved SVD. The block on
the side the sweep just left is then grown by one site.

Bond geometry::

    forward  bond i: sites (i, i+1),   left block length i,   right block length N-i-2
    backward bond i: sites (i-1, i),   left block length i-1, right block length N-i-1

so the two block lengths plus the two active sites always cover the chain.

Leg conventions::

    MPS:  left end (p, r)      bulk (l, p, r)            right end (l, p)
    MPO:  left end (p, p', wr) bulk (wl, p, p', wr)      right end (wl, p, p')
    left block  (mps OUT, mpo OUT, conj IN)
    right block (mps IN,  mpo IN,  conj OUT)

With checkpointing, each step pages in from disk only the block on the side
the sweep is moving towards, flushes the newly grown block immediately and
drops the blocks it no longer needs, so at most two blocks are resident
between steps.
"""

from __future__ import annotations

import time
from typing import NamedTuple

import numpy as np

from tnsweep.algorithms.blocks import (
    BlockStore,
    grow_left_block,
    grow_right_block,
    init_blocks,
)
from tnsweep.algorithms.lanczos import Boundary, EffectiveHamiltonian, lanczos_solve
from tnsweep.algorithms.params import SweepDirection, SweepParams
from tnsweep.contraction.contractor import contract, singular_values, truncated_svd
from tnsweep.core import LOG_EPS
from tnsweep.core.tensor import SymmetricTensor
from tnsweep.io.tensor_file import read_block, write_block


# ---------- Bond geometry ----------


class BondGeometry(NamedTuple):
    """Everything about one bond update that depends only on position.

    Attributes:
        bond:           Bond index as passed to the update.
        direction:      Sweep direction.
        lsite:          Index of the left active site.
        rsite:          Index of the right active site.
        lblock_len:     Length of the left block used by the update.
        rblock_len:     Length of the right block used by the update.
        boundary:       Position class selecting the contraction patterns.
        merge_axes:     Axes contracting the two site tensors into one state.
        ldims:          Number of state legs assigned to the left SVD factor.
        rdims:          Number of state legs assigned to the right SVD factor.
        measure_entropy: Whether the entanglement entropy is measured here.
    """

    bond: int
    direction: SweepDirection
    lsite: int
    rsite: int
    lblock_len: int
    rblock_len: int
    boundary: Boundary
    merge_axes: tuple[tuple[int, ...], tuple[int, ...]]
    ldims: int
    rdims: int
    measure_entropy: bool


_MERGE_AXES = {
    Boundary.LEFT_END: ((1,), (0,)),
    Boundary.RIGHT_END: ((2,), (0,)),
    Boundary.CENTER: ((2,), (0,)),
}

_SVD_SPLIT = {
    Boundary.LEFT_END: (1, 2),
    Boundary.RIGHT_END: (2, 1),
    Boundary.CENTER: (2, 2),
}


def resolve_bond(
    bond: int,
    direction: SweepDirection | str,
    n_sites: int,
    entropy_target_bond: int | None = None,
) -> BondGeometry:
    """Classify one bond update.

    The entropy target names the bond between sites ``b`` and ``b+1``; on the
    backward pass that bond is visited as ``b+1``.

    Args:
        bond:                Bond index (``0..N-2`` forward, ``1..N-1`` backward).
        direction:           ``SweepDirection`` or its value ``"r"`` / ``"l"``.
        n_sites:             Chain length, at least 3.
        entropy_target_bond: Bond whose entropy is measured, or None.

    Returns:
        BondGeometry for the update.

    Raises:
        ValueError: On an unknown direction, a chain shorter than 3 sites or
                    a bond outside the range of the direction.
    """
    direction = SweepDirection(direction)
    if n_sites < 3:
        raise ValueError(f"two-site sweeps need at least 3 sites, got {n_sites}")

    if direction is SweepDirection.FORWARD:
        if not 0 <= bond <= n_sites - 2:
            raise ValueError(f"forward bond must be in [0, {n_sites - 2}], got {bond}")
        lsite, rsite = bond, bond + 1
        if bond == 0:
            boundary = Boundary.LEFT_END
        elif bond == n_sites - 2:
            boundary = Boundary.RIGHT_END
        else:
            boundary = Boundary.CENTER
        entropy_bond = entropy_target_bond
    else:
        if not 1 <= bond <= n_sites - 1:
            raise ValueError(f"backward bond must be in [1, {n_sites - 1}], got {bond}")
        lsite, rsite = bond - 1, bond
        if bond == n_sites - 1:
            boundary = Boundary.RIGHT_END
        elif bond == 1:
            boundary = Boundary.LEFT_END
        else:
            boundary = Boundary.CENTER
        entropy_bond = None if entropy_target_bond is None else entropy_target_bond + 1

    ldims, rdims = _SVD_SPLIT[boundary]
    return BondGeometry(
        bond=bond,
        direction=direction,
        lsite=lsite,
        rsite=rsite,
        lblock_len=lsite,
        rblock_len=n_sites - 1 - rsite,
        boundary=boundary,
        merge_axes=_MERGE_AXES[boundary],
        ldims=ldims,
        rdims=rdims,
        measure_entropy=entropy_bond is not None and bond == entropy_bond,
    )


# ---------- Entanglement ----------


def measure_entanglement_entropy(s: SymmetricTensor | np.ndarray, D: int) -> float:
    """Von Neumann entropy of the ``D`` largest values of a singular spectrum.

    ``S = -sum_i p_i ln p_i`` with ``p_i = s_i^2 / sum_j s_j^2``; zero
    probabilities contribute nothing.

    Args:
        s: Diagonal spectrum tensor from ``truncated_svd`` or a 1-D array.
        D: Number of leading values to use.

    Returns:
        The entropy as a Python float.
    """
    values = singular_values(s) if isinstance(s, SymmetricTensor) else np.sort(np.asarray(s))[::-1]
    weights = values[:D].astype(np.float64) ** 2
    total = weights.sum()
    if total <= 0.0:
        return 0.0
    p = weights / total
    p = p[p > LOG_EPS]
    return float(-np.sum(p * np.log(p)))


# ---------- Single bond update ----------


class StepRecord(NamedTuple):
    """Diagnostics of one bond update.

    Attributes:
        bond:         Bond index.
        direction:    Sweep direction.
        energy:       Lanczos ground energy.
        trunc_err:    Discarded weight of the truncated SVD.
        D:            Kept bond dimension.
        iters:        Lanczos iterations.
        entropy:      Entanglement entropy, or None when not measured.
        lanczos_time: Seconds spent in Lanczos.
        elapsed:      Seconds spent in the whole update.
    """

    bond: int
    direction: SweepDirection
    energy: float
    trunc_err: float
    D: int
    iters: int
    entropy: float | None
    lanczos_time: float
    elapsed: float


def _format_step(record: StepRecord) -> str:
    line = (
        f"Site {record.bond:4d}"
        f" E0 = {record.energy:20.16f}"
        f" TruncErr = {record.trunc_err:.2e}"
        f" D = {record.D:5d}"
        f" Iter = {record.iters:3d}"
        f" LanczT = {record.lanczos_time:8.4f}"
        f" TotT = {record.elapsed:8.4f}"
    )
    if record.entropy is not None:
        line += f" S = {record.entropy:10.7f}"
    return line


def _fetch(store: BlockStore, length: int) -> SymmetricTensor:
    # The length-0 block is the identity and is created on first use
    if length == 0:
        return store.get_or_allocate(0)
    return store.get(length)


def two_site_update(
    bond: int,
    mps: list[SymmetricTensor],
    mpo: list[SymmetricTensor],
    lblocks: BlockStore,
    rblocks: BlockStore,
    params: SweepParams,
    direction: SweepDirection | str,
    history: list[StepRecord] | None = None,
) -> float:
    """Optimise the two sites at one bond and grow the vacated block.

    ``mps`` is modified in place: on the forward pass the left site becomes
    the left-orthonormal SVD factor and the right site absorbs the singular
    values; on the backward pass it is the other way round.

    Args:
        bond:      Bond index, see ``resolve_bond``.
        mps:       Site tensors of the state (mutated).
        mpo:       Site tensors of the Hamiltonian.
        lblocks:   Left environment blocks (mutated).
        rblocks:   Right environment blocks (mutated).
        params:    Sweep configuration.
        direction: ``SweepDirection`` or ``"r"`` / ``"l"``.
        history:   If given, a ``StepRecord`` is appended to it.

    Returns:
        The Lanczos ground energy at this bond.

    Raises:
        ValueError: On an unknown direction or inconsistent chain lengths.
        FileNotFoundError: If checkpointing and a needed block file is missing.
    """
    t_start = time.perf_counter()
    n_sites = len(mps)
    if len(mpo) != n_sites:
        raise ValueError(f"MPS has {n_sites} sites but MPO has {len(mpo)}")
    geom = resolve_bond(bond, direction, n_sites, params.entropy_target_bond)
    forward = geom.direction is SweepDirection.FORWARD

    if params.checkpoint:
        if forward:
            rblocks.set(geom.rblock_len, read_block(params.checkpoint_dir, "r", geom.rblock_len))
        else:
            lblocks.set(geom.lblock_len, read_block(params.checkpoint_dir, "l", geom.lblock_len))
    lblock = _fetch(lblocks, geom.lblock_len)
    rblock = _fetch(rblocks, geom.rblock_len)

    lsite, rsite = geom.lsite, geom.rsite
    eff_ham = EffectiveHamiltonian(lblock, mpo[lsite], mpo[rsite], rblock)
    init_state = contract(mps[lsite], mps[rsite], geom.merge_axes)

    t_lanczos = time.perf_counter()
    lanczos = lanczos_solve(
        eff_ham,
        init_state,
        tol=params.lanczos_tol,
        max_iter=params.lanczos_max_iter,
        boundary=geom.boundary,
    )
    lanczos_time = time.perf_counter() - t_lanczos
    del init_state

    svd = truncated_svd(
        lanczos.gs_vec,
        geom.ldims,
        geom.rdims,
        mps[lsite].divergence,
        mps[rsite].divergence,
        params.cutoff,
        params.dmin,
        params.dmax,
    )
    entropy = measure_entanglement_entropy(svd.s, svd.D) if geom.measure_entropy else None

    if forward:
        mps[lsite] = svd.u
        mps[rsite] = contract(svd.s, svd.v, ([1], [0]))
        if geom.boundary is Boundary.RIGHT_END:
            new_block = None
        else:
            new_block = grow_left_block(lblock, mps[lsite], mpo[lsite])
        store, side, target = lblocks, "l", bond + 1
    else:
        mps[lsite] = contract(svd.u, svd.s, ([geom.ldims], [0]))
        mps[rsite] = svd.v
        if geom.boundary is Boundary.LEFT_END:
            new_block = None
        else:
            new_block = grow_right_block(rblock, mps[rsite], mpo[rsite])
        store, side, target = rblocks, "r", n_sites - bond

    if params.checkpoint:
        if new_block is not None:
            store.set(target, new_block)
            write_block(new_block, params.checkpoint_dir, side, target)
            lblocks.release(geom.lblock_len)
            rblocks.release(geom.rblock_len)
        elif forward:
            lblocks.release(geom.lblock_len)
        else:
            rblocks.release(geom.rblock_len)
    elif new_block is not None:
        store.set(target, new_block)

    record = StepRecord(
        bond=bond,
        direction=geom.direction,
        energy=lanczos.gs_eng,
        trunc_err=svd.trunc_err,
        D=svd.D,
        iters=lanczos.iters,
        entropy=entropy,
        lanczos_time=lanczos_time,
        elapsed=time.perf_counter() - t_start,
    )
    if history is not None:
        history.append(record)
    if params.verbose:
        print(_format_step(record))
    return lanczos.gs_eng


# ---------- Sweeps ----------


def two_site_sweep(
    mps: list[SymmetricTensor],
    mpo: list[SymmetricTensor],
    lblocks: BlockStore,
    rblocks: BlockStore,
    params: SweepParams,
    history: list[StepRecord] | None = None,
) -> float:
    """One forward pass then one backward pass of two-site updates.

    Returns:
        The ground energy of the last update of the sweep (bond 1 of the
        backward pass). This is not a minimum over the sweep.
    """
    n_sites = len(mps)
    if n_sites < 3:
        raise ValueError(f"two-site sweeps need at least 3 sites, got {n_sites}")
    energy = 0.0
    for i in range(n_sites - 1):
        energy = two_site_update(
            i, mps, mpo, lblocks, rblocks, params, SweepDirection.FORWARD, history
        )
    for i in range(n_sites - 1, 0, -1):
        energy = two_site_update(
            i, mps, mpo, lblocks, rblocks, params, SweepDirection.BACKWARD, history
        )
    return energy


def two_site_algorithm(
    mps: list[SymmetricTensor],
    mpo: list[SymmetricTensor],
    params: SweepParams,
    history: list[StepRecord] | None = None,
) -> float:
    """Run ``params.num_sweeps`` two-site sweeps on ``mps`` in place.

    Args:
        mps:     Initial state (mutated into the optimised state).
        mpo:     Hamiltonian MPO.
        params:  Sweep configuration.
        history: If given, one ``StepRecord`` per bond update is appended.

    Returns:
        The energy returned by the final sweep.

    Example:
        >>> mpo = build_mpo_xxz(6)
        >>> mps = random_init_mps(6, spin_half_charges(), bond_dim=4)
        >>> params = SweepParams(num_sweeps=4, dmin=8, dmax=8, cutoff=1e-9)
        >>> energy = two_site_algorithm(mps, mpo, params)
    """
    lblocks, rblocks = init_blocks(mps, mpo, params)

    energy = 0.0
    for sweep in range(params.num_sweeps):
        t0 = time.perf_counter()
        energy = two_site_sweep(mps, mpo, lblocks, rblocks, params, history)
        if params.verbose:
            print(
                f"Sweep {sweep + 1}/{params.num_sweeps}: E = {energy:.10f}"
                f" ({time.perf_counter() - t0:.2f}s)"
            )
    return energy
