"""Tests for the effective Hamiltonian and the Lanczos solver."""

import numpy as np
import pytest

from tnsweep.algorithms.blocks import grow_left_block, grow_right_block
from tnsweep.algorithms.builders import build_mpo_xxz, random_init_mps, spin_half_charges
from tnsweep.algorithms.lanczos import (
    Boundary,
    EffectiveHamiltonian,
    apply_effective_hamiltonian,
    lanczos_solve,
)
from tnsweep.contraction.contractor import contract
from tnsweep.core.tensor import SymmetricTensor


def _dense_effective_matrix(eff_ham, state, boundary):
    """H_eff as a dense matrix in the flat block layout of ``state``."""
    layout = state.block_layout()
    dim = state.to_vector(layout).shape[0]
    cols = []
    for k in range(dim):
        e = np.zeros(dim)
        e[k] = 1.0
        trial = state.with_vector(np.asarray(e), layout)
        out = apply_effective_hamiltonian(eff_ham, trial, boundary)
        cols.append(np.asarray(out.to_vector(layout)))
    return np.stack(cols, axis=1)


@pytest.fixture
def left_end_problem():
    """Three-site Heisenberg chain, total 2*Sz = 1, bond 0 of the forward pass."""
    mpo = build_mpo_xxz(3)
    mps = random_init_mps(3, spin_half_charges(), bond_dim=2, total_charge=1, seed=3)
    rblock = grow_right_block(SymmetricTensor.trivial(), mps[2], mpo[2])
    eff_ham = EffectiveHamiltonian(SymmetricTensor.trivial(), mpo[0], mpo[1], rblock)
    state = contract(mps[0], mps[1], ([1], [0]))
    return eff_ham, state


@pytest.fixture
def center_problem():
    """Five-site Heisenberg chain, sites (1, 2) with both blocks of length >= 1."""
    mpo = build_mpo_xxz(5)
    mps = random_init_mps(5, spin_half_charges(), bond_dim=4, total_charge=1, seed=5)
    lblock = grow_left_block(SymmetricTensor.trivial(), mps[0], mpo[0])
    rblock = SymmetricTensor.trivial()
    for site in (4, 3):
        rblock = grow_right_block(rblock, mps[site], mpo[site])
    eff_ham = EffectiveHamiltonian(lblock, mpo[1], mpo[2], rblock)
    state = contract(mps[1], mps[2], ([2], [0]))
    return eff_ham, state


class TestApplyEffectiveHamiltonian:
    def test_keeps_legs_and_divergence(self, center_problem):
        eff_ham, state = center_problem
        out = apply_effective_hamiltonian(eff_ham, state, Boundary.CENTER)
        assert out.indices == state.indices
        assert out.divergence == state.divergence

    def test_hermitian(self, center_problem):
        eff_ham, state = center_problem
        H = _dense_effective_matrix(eff_ham, state, Boundary.CENTER)
        np.testing.assert_allclose(H, H.T, atol=1e-12)

    def test_left_end_spans_full_sector(self, left_end_problem, xxz_hamiltonian):
        # the right block of a right-canonical end site is an isometry onto the
        # whole 2*Sz = 1 sector, so H_eff has the exact spectrum there
        eff_ham, state = left_end_problem
        H = _dense_effective_matrix(eff_ham, state, Boundary.LEFT_END)
        full = xxz_hamiltonian(3)
        sector = [1, 2, 4]  # up-up-down, up-down-up, down-up-up
        np.testing.assert_allclose(
            np.linalg.eigvalsh(H),
            np.linalg.eigvalsh(full[np.ix_(sector, sector)]),
            atol=1e-12,
        )


class TestLanczosSolve:
    def test_matches_dense_ground_state(self, center_problem):
        eff_ham, state = center_problem
        exact = np.linalg.eigvalsh(_dense_effective_matrix(eff_ham, state, Boundary.CENTER))[0]
        result = lanczos_solve(eff_ham, state, tol=1e-12, max_iter=200)
        assert result.gs_eng == pytest.approx(exact, abs=1e-9)

    def test_ground_vector_normalised(self, center_problem):
        eff_ham, state = center_problem
        result = lanczos_solve(eff_ham, state, tol=1e-12)
        assert float(result.gs_vec.norm()) == pytest.approx(1.0, abs=1e-10)
        assert result.gs_vec.indices == state.indices

    def test_ground_vector_is_eigenvector(self, center_problem):
        eff_ham, state = center_problem
        result = lanczos_solve(eff_ham, state, tol=1e-14)
        h_psi = apply_effective_hamiltonian(eff_ham, result.gs_vec, Boundary.CENTER)
        np.testing.assert_allclose(
            np.asarray(h_psi.todense()),
            result.gs_eng * np.asarray(result.gs_vec.todense()),
            atol=1e-8,
        )

    def test_left_end_exact(self, left_end_problem):
        eff_ham, state = left_end_problem
        result = lanczos_solve(eff_ham, state, tol=1e-12, boundary=Boundary.LEFT_END)
        assert result.gs_eng == pytest.approx(-1.0, abs=1e-10)
        # the sector has dimension 3, so the Krylov space is exhausted by then
        assert result.iters <= 3

    def test_iteration_cap_is_not_an_error(self, center_problem):
        eff_ham, state = center_problem
        result = lanczos_solve(eff_ham, state, tol=1e-14, max_iter=2)
        assert result.iters == 2
        assert np.isfinite(result.gs_eng)

    def test_ritz_value_is_upper_bound(self, center_problem):
        eff_ham, state = center_problem
        exact = np.linalg.eigvalsh(_dense_effective_matrix(eff_ham, state, Boundary.CENTER))[0]
        result = lanczos_solve(eff_ham, state, tol=1e-14, max_iter=3)
        assert result.gs_eng >= exact - 1e-10
