"""Local ground-state solver for the two-site update.

The effective Hamiltonian at one bond is the ordered quadruple
``(left block, left-site MPO, right-site MPO, right block)``. It is never
formed as a matrix: ``apply_effective_hamiltonian`` contracts the four
operands into the two-site state pairwise, and ``lanczos_solve`` runs a
Lanczos iteration on the flattened block vector of that state.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

import jax
import jax.numpy as jnp

from tnsweep.contraction.contractor import contract
from tnsweep.core import EPS
from tnsweep.core.tensor import SymmetricTensor

# Krylov vectors with a smaller residual norm are treated as an exhausted space
KRYLOV_BREAKDOWN = 1e-12


class Boundary(Enum):
    """Position class of a bond: the two ends of the chain or the bulk."""

    LEFT_END = "lend"
    RIGHT_END = "rend"
    CENTER = "cent"


class EffectiveHamiltonian(NamedTuple):
    """The four operands of one local eigenproblem, in contraction order."""

    lblock: SymmetricTensor
    lmpo: SymmetricTensor
    rmpo: SymmetricTensor
    rblock: SymmetricTensor


class LanczosResult(NamedTuple):
    """Result of a Lanczos ground-state search.

    Attributes:
        gs_vec: Normalised ground-state tensor (same legs as the guess).
        gs_eng: Lowest Ritz value.
        iters:  Number of effective-Hamiltonian applications.
    """

    gs_vec: SymmetricTensor
    gs_eng: float
    iters: int


def apply_effective_hamiltonian(
    eff_ham: EffectiveHamiltonian,
    state: SymmetricTensor,
    boundary: Boundary,
) -> SymmetricTensor:
    """Apply H_eff to a two-site state.

    State legs by boundary class:

    - CENTER:    (l, p1, p2, r)
    - LEFT_END:  (p1, p2, r)   -- the left block is not used
    - RIGHT_END: (l, p1, p2)   -- the right block is not used

    The result has the same legs and divergence as ``state``.
    """
    lblock, lmpo, rmpo, rblock = eff_ham
    if boundary is Boundary.CENTER:
        t = contract(lblock, state, ([0], [0]))   # (w, d, p1, p2, r)
        t = contract(t, lmpo, ([0, 2], [0, 1]))   # (d, p2, r, p1', w)
        t = contract(t, rmpo, ([4, 1], [0, 1]))   # (d, r, p1', p2', w)
        return contract(t, rblock, ([1, 4], [0, 1]))
    if boundary is Boundary.LEFT_END:
        t = contract(state, lmpo, ([0], [0]))     # (p2, r, p1', w)
        t = contract(t, rmpo, ([3, 0], [0, 1]))   # (r, p1', p2', w)
        return contract(t, rblock, ([0, 3], [0, 1]))
    if boundary is Boundary.RIGHT_END:
        t = contract(lblock, state, ([0], [0]))   # (w, d, p1, p2)
        t = contract(t, lmpo, ([0, 2], [0, 1]))   # (d, p2, p1', w)
        return contract(t, rmpo, ([3, 1], [0, 1]))
    raise ValueError(f"Unknown boundary class {boundary!r}")


def _lowest_ritz_pair(alphas: list[float], betas: list[float]) -> tuple[float, jax.Array]:
    n = len(alphas)
    T = jnp.diag(jnp.asarray(alphas))
    if n > 1:
        off = jnp.asarray(betas[: n - 1])
        T = T + jnp.diag(off, k=1) + jnp.diag(off, k=-1)
    eigvals, eigvecs = jnp.linalg.eigh(T)
    return float(eigvals[0]), eigvecs[:, 0]


def lanczos_solve(
    eff_ham: EffectiveHamiltonian,
    init_state: SymmetricTensor,
    tol: float = 1e-7,
    max_iter: int = 200,
    boundary: Boundary = Boundary.CENTER,
) -> LanczosResult:
    """Lanczos eigensolver for the lowest eigenpair of H_eff.

    Every new Krylov vector is orthogonalised against the full basis (two
    passes), so the tridiagonal projection stays faithful until the Krylov
    space is exhausted.

    The iteration stops when the lowest Ritz value changes by less than
    ``tol`` between two iterations, when the residual norm drops below
    ``KRYLOV_BREAKDOWN`` or the basis spans the whole sector space, or after
    ``max_iter`` applications. Hitting ``max_iter`` is not an error; the best
    Ritz vector found so far is returned.

    Args:
        eff_ham:    Effective Hamiltonian operands.
        init_state: Starting two-site tensor (need not be normalised).
        tol:        Convergence tolerance on the lowest Ritz value.
        max_iter:   Maximum number of H_eff applications.
        boundary:   Boundary class selecting the contraction pattern.

    Returns:
        LanczosResult(gs_vec, gs_eng, iters).
    """
    layout = init_state.block_layout()

    def matvec(vec: jax.Array) -> jax.Array:
        state = init_state.with_vector(vec, layout)
        return apply_effective_hamiltonian(eff_ham, state, boundary).to_vector(layout)

    v = init_state.to_vector(layout)
    dim = v.shape[0]
    norm = float(jnp.linalg.norm(v))
    if norm < EPS:
        v = jnp.ones_like(v)
        norm = float(jnp.linalg.norm(v))
    v = v / norm

    basis = [v]
    alphas: list[float] = []
    betas: list[float] = []
    energy = None
    coeffs = None
    iters = 0

    for _ in range(max_iter):
        w = matvec(basis[-1])
        iters += 1
        alphas.append(float(jnp.vdot(basis[-1], w).real))

        V = jnp.stack(basis)
        w = w - jnp.dot(jnp.dot(V.conj(), w), V)
        w = w - jnp.dot(jnp.dot(V.conj(), w), V)
        beta = float(jnp.linalg.norm(w))

        new_energy, coeffs = _lowest_ritz_pair(alphas, betas)
        converged = energy is not None and abs(new_energy - energy) < tol
        energy = new_energy
        if converged or beta < KRYLOV_BREAKDOWN or len(basis) >= dim:
            break
        betas.append(beta)
        basis.append(w / beta)

    n = len(alphas)
    gs = jnp.tensordot(coeffs, jnp.stack(basis[:n]), axes=1)
    gs = gs / (jnp.linalg.norm(gs) + EPS)
    return LanczosResult(
        gs_vec=init_state.with_vector(gs, layout),
        gs_eng=float(energy),
        iters=iters,
    )
