"""Tests for the MPO and MPS builders."""

import numpy as np
import pytest

from tnsweep.algorithms.builders import (
    build_mpo_xxz,
    direct_product_mps,
    mpo_from_w_matrices,
    operator_charge,
    random_init_mps,
    right_canonicalize,
    spin_half_charges,
    spin_half_ops,
    tj_charges,
    tj_ops,
    tj_symmetry,
)
from tnsweep.contraction.contractor import contract
from tnsweep.core.symmetry import ProductSymmetry, ZnSymmetry


def _tj_quantum_numbers(k, n_sites):
    """(N, 2*Sz) of product basis state k, site 0 most significant."""
    digits = np.unravel_index(k, (3,) * n_sites)
    n = sum(d != 2 for d in digits)
    sz = sum(1 if d == 0 else -1 if d == 1 else 0 for d in digits)
    return int(n), int(sz)


class TestSpinHalf:
    def test_charges(self):
        np.testing.assert_array_equal(spin_half_charges(), [1, -1])

    def test_ops_shapes(self):
        for name, mat in spin_half_ops().items():
            assert mat.shape == (2, 2), f"{name} should be 2x2"

    def test_commutation(self):
        ops = spin_half_ops()
        comm = ops["Sp"] @ ops["Sm"] - ops["Sm"] @ ops["Sp"]
        np.testing.assert_allclose(comm, 2 * ops["Sz"], atol=1e-14)

    @pytest.mark.parametrize("name,charge", [("Sz", 0), ("Sp", 2), ("Sm", -2), ("Id", 0)])
    def test_operator_charge(self, name, charge):
        assert operator_charge(spin_half_ops()[name], spin_half_charges()) == charge

    def test_mixed_charge_raises(self):
        ops = spin_half_ops()
        with pytest.raises(ValueError, match="definite charge"):
            operator_charge(ops["Sp"] + ops["Sm"], spin_half_charges())



class TestTjSite:
    def test_charges(self):
        n, sz = ProductSymmetry.decode_charges(tj_charges())
        np.testing.assert_array_equal(n, [1, 1, 0])
        np.testing.assert_array_equal(sz, [1, -1, 0])

    @pytest.mark.parametrize(
        "name,charge",
        [
            ("Sz", (0, 0)),
            ("Sp", (0, 2)),
            ("Sm", (0, -2)),
            ("Cup", (-1, -1)),
            ("Cdagup", (1, 1)),
            ("Cdn", (-1, 1)),
            ("Cdagdn", (1, -1)),
            ("Id", (0, 0)),
        ],
    )
    def test_operator_charge(self, name, charge):
        sym = tj_symmetry()
        q = operator_charge(tj_ops()[name], tj_charges(), sym)
        assert sym.components(q) == charge

    def test_hopping_ops_are_adjoint(self):
        ops = tj_ops()
        np.testing.assert_array_equal(ops["Cdagup"], ops["Cup"].T)
        np.testing.assert_array_equal(ops["Cdagdn"], ops["Cdn"].T)

    def test_spin_ops_vanish_on_empty_site(self):
        ops = tj_ops()
        for name in ("Sz", "Sp", "Sm"):
            np.testing.assert_array_equal(ops[name][2], 0.0)
            np.testing.assert_array_equal(ops[name][:, 2], 0.0)

class TestBuildMpoXXZ:
    @pytest.mark.parametrize(
        "n_sites,jz,jxy,hz",
        [(2, 1.0, 1.0, 0.0), (4, 1.0, 1.0, 0.0), (4, 1.0, 0.0, 0.0), (5, 0.5, 1.3, 0.2)],
    )
    def test_matches_dense_hamiltonian(self, n_sites, jz, jxy, hz, dense_operator, xxz_hamiltonian):
        mpo = build_mpo_xxz(n_sites, jz=jz, jxy=jxy, hz=hz)
        np.testing.assert_allclose(
            dense_operator(mpo), xxz_hamiltonian(n_sites, jz, jxy, hz), atol=1e-12
        )

    def test_leg_structure(self):
        mpo = build_mpo_xxz(4)
        assert [t.ndim for t in mpo] == [3, 4, 4, 3]
        assert mpo[1].shape == (5, 2, 2, 5)
        assert all(t.divergence == 0 for t in mpo)

    def test_too_short(self):
        with pytest.raises(ValueError):
            build_mpo_xxz(1)

    def test_weight_outside_blocks_raises(self):
        W = np.zeros((1, 2, 2, 1))
        W[0, 0, 1, 0] = 1.0  # up -> down with a neutral channel
        with pytest.raises(ValueError):
            mpo_from_w_matrices([W, W], [np.array([0], dtype=np.int32)], spin_half_charges())


class TestRandomInitMps:
    def test_normalised(self, dense_state):
        mps = random_init_mps(6, spin_half_charges(), bond_dim=4, seed=1)
        psi = dense_state(mps)
        assert np.linalg.norm(psi) == pytest.approx(1.0, abs=1e-12)

    def test_right_canonical(self):
        mps = random_init_mps(6, spin_half_charges(), bond_dim=4, seed=2)
        for t in mps[1:]:
            rest = list(range(1, t.ndim))
            gram = contract(t, t.dagger(), (rest, rest))
            np.testing.assert_allclose(
                np.asarray(gram.todense()), np.eye(t.shape[0]), atol=1e-12
            )

    def test_total_charge_sector(self, dense_state):
        n_sites, total = 5, 1
        psi = dense_state(random_init_mps(n_sites, spin_half_charges(), 4, total_charge=total))
        for k in np.nonzero(np.abs(psi) > 1e-12)[0]:
            charge = sum(1 if (k >> (n_sites - 1 - i)) & 1 == 0 else -1 for i in range(n_sites))
            assert charge == total

    def test_reproducible(self):
        a = random_init_mps(4, spin_half_charges(), 2, seed=5)
        b = random_init_mps(4, spin_half_charges(), 2, seed=5)
        for ta, tb in zip(a, b):
            np.testing.assert_array_equal(np.asarray(ta.todense()), np.asarray(tb.todense()))

    def test_unreachable_charge(self):
        with pytest.raises(ValueError, match="not reachable"):
            random_init_mps(3, spin_half_charges(), 2, total_charge=0)

    def test_zn_symmetry(self, dense_state):
        mps = random_init_mps(4, np.array([0, 1]), 2, total_charge=1, symmetry=ZnSymmetry(2))
        assert mps[-1].divergence == 1
        assert np.linalg.norm(dense_state(mps)) == pytest.approx(1.0, abs=1e-12)

    def test_product_symmetry_sector(self, dense_state):
        n_sites, sym = 4, tj_symmetry()
        total = ProductSymmetry.encode(2, 0)
        mps = random_init_mps(n_sites, tj_charges(), 5, total_charge=total, symmetry=sym)
        assert mps[-1].divergence == total
        psi = dense_state(mps)
        assert np.linalg.norm(psi) == pytest.approx(1.0, abs=1e-12)
        for k in np.nonzero(np.abs(psi) > 1e-12)[0]:
            assert _tj_quantum_numbers(k, n_sites) == (2, 0)

    def test_product_symmetry_bond_charges_are_reachable(self):
        sym = tj_symmetry()
        mps = random_init_mps(4, tj_charges(), 5, total_charge=ProductSymmetry.encode(2, 0),
                              symmetry=sym)
        middle = {sym.components(q) for q in mps[1].indices[-1].charges.tolist()}
        assert middle <= {(0, 0), (1, 1), (1, -1), (2, 0), (2, 2), (2, -2)}
        assert (1, 1) in middle and (1, -1) in middle

    def test_right_canonicalize_keeps_state(self, dense_state):
        mps = random_init_mps(4, spin_half_charges(), 3, seed=9)
        psi = dense_state(mps)
        again = right_canonicalize(list(mps))
        np.testing.assert_allclose(np.abs(dense_state(again)), np.abs(psi), atol=1e-12)


class TestDirectProductMps:
    def test_basis_state(self, dense_state):
        mps = direct_product_mps(spin_half_charges(), [0, 1, 0, 1])
        psi = dense_state(mps)
        expected = np.zeros(16)
        expected[0b0101] = 1.0
        np.testing.assert_allclose(psi, expected)

    def test_bond_charges_accumulate(self):
        mps = direct_product_mps(spin_half_charges(), [0, 0, 1])
        np.testing.assert_array_equal(mps[0].indices[-1].charges, [1])
        np.testing.assert_array_equal(mps[1].indices[-1].charges, [2])
        assert mps[-1].divergence == 1

    def test_bad_state(self):
        with pytest.raises(ValueError, match="out of range"):
            direct_product_mps(spin_half_charges(), [0, 2, 1])

    def test_product_symmetry_basis_state(self, dense_state):
        sym = tj_symmetry()
        mps = direct_product_mps(tj_charges(), [2, 0, 1, 2], symmetry=sym)
        assert sym.components(mps[-1].divergence) == (2, 0)
        assert sym.components(int(mps[1].indices[-1].charges[0])) == (1, 1)
        psi = dense_state(mps)
        expected = np.zeros(81)
        expected[np.ravel_multi_index((2, 0, 1, 2), (3,) * 4)] = 1.0
        np.testing.assert_allclose(psi, expected)
