"""Shared fixtures for the tnsweep test suite."""

import jax
import numpy as np
import pytest

from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.symmetry import ProductSymmetry, U1Symmetry, ZnSymmetry
from tnsweep.core.tensor import SymmetricTensor

# ------------------------------------------------------------------ #
# Symmetry fixtures                                                    #
# ------------------------------------------------------------------ #

@pytest.fixture
def u1():
    return U1Symmetry()


@pytest.fixture
def z2():
    return ZnSymmetry(2)


@pytest.fixture
def z3():
    return ZnSymmetry(3)


@pytest.fixture
def nsz():
    """Product symmetry conserving (particle number, 2*Sz)."""
    return ProductSymmetry(U1Symmetry(), U1Symmetry())


@pytest.fixture
def tj_phys():
    """Packed (N, 2*Sz) charges of a t-J site: up, down, empty."""
    return ProductSymmetry.encode_charges(np.array([1, 1, 0]), np.array([1, -1, 0]))


# ------------------------------------------------------------------ #
# Random key fixture                                                   #
# ------------------------------------------------------------------ #

@pytest.fixture
def rng():
    return jax.random.PRNGKey(42)


@pytest.fixture
def rng2():
    return jax.random.PRNGKey(99)


# ------------------------------------------------------------------ #
# TensorIndex fixtures                                                 #
# ------------------------------------------------------------------ #

@pytest.fixture
def u1_charges_3():
    """U(1) charges [-1, 0, 1] -- typical small bond."""
    return np.array([-1, 0, 1], dtype=np.int32)


@pytest.fixture
def phys_charges():
    """Spin-1/2 charges 2*Sz: up = +1, down = -1."""
    return np.array([1, -1], dtype=np.int32)


@pytest.fixture
def idx_in_3(u1, u1_charges_3):
    return TensorIndex(u1, u1_charges_3, FlowDirection.IN)


@pytest.fixture
def idx_out_3(u1, u1_charges_3):
    return TensorIndex(u1, u1_charges_3, FlowDirection.OUT)


# ------------------------------------------------------------------ #
# SymmetricTensor fixtures                                             #
# ------------------------------------------------------------------ #

@pytest.fixture
def u1_sym_tensor_2leg(u1, rng, u1_charges_3):
    """2-leg U(1)-symmetric matrix: IN x OUT, charges [-1, 0, 1]."""
    indices = (
        TensorIndex(u1, u1_charges_3, FlowDirection.IN),
        TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
    )
    return SymmetricTensor.random_normal(indices, rng)


@pytest.fixture
def u1_site_tensor(u1, rng, phys_charges, u1_charges_3):
    """Bulk MPS-like tensor (l IN, p IN, r OUT)."""
    indices = (
        TensorIndex(u1, u1_charges_3, FlowDirection.IN),
        TensorIndex(u1, phys_charges, FlowDirection.IN),
        TensorIndex(u1, np.array([-2, -1, 0, 0, 1, 2], dtype=np.int32), FlowDirection.OUT),
    )
    return SymmetricTensor.random_normal(indices, rng)


@pytest.fixture
def u1_sym_tensor_pair(u1, rng, rng2, phys_charges, u1_charges_3):
    """Two bulk site tensors sharing a bond: A (l, p, r OUT) and B (r IN, p, r2).

    Both ends of the shared bond use the same charge array with opposite
    flows, so dense einsum of the two tensors matches the block contraction.
    """
    bond_c = np.array([-1, 0, 0, 1], dtype=np.int32)
    indices_A = (
        TensorIndex(u1, u1_charges_3, FlowDirection.IN),
        TensorIndex(u1, phys_charges, FlowDirection.IN),
        TensorIndex(u1, bond_c, FlowDirection.OUT),
    )
    indices_B = (
        TensorIndex(u1, bond_c, FlowDirection.IN),
        TensorIndex(u1, phys_charges, FlowDirection.IN),
        TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
    )
    A = SymmetricTensor.random_normal(indices_A, rng)
    B = SymmetricTensor.random_normal(indices_B, rng2, divergence=1)
    return A, B


# ------------------------------------------------------------------ #
# Spin-chain helpers                                                   #
# ------------------------------------------------------------------ #

def _xxz_matrix(n_sites, jz=1.0, jxy=1.0, hz=0.0):
    """Dense open-chain XXZ Hamiltonian in the (up, down) product basis."""
    Sz = np.array([[0.5, 0.0], [0.0, -0.5]])
    Sp = np.array([[0.0, 1.0], [0.0, 0.0]])
    Sm = np.array([[0.0, 0.0], [1.0, 0.0]])

    def site_op(op, i):
        mats = [np.eye(2)] * n_sites
        mats[i] = op
        out = mats[0]
        for m in mats[1:]:
            out = np.kron(out, m)
        return out

    dim = 2 ** n_sites
    H = np.zeros((dim, dim))
    for i in range(n_sites - 1):
        H += jz * site_op(Sz, i) @ site_op(Sz, i + 1)
        H += 0.5 * jxy * (site_op(Sp, i) @ site_op(Sm, i + 1) + site_op(Sm, i) @ site_op(Sp, i + 1))
    for i in range(n_sites):
        H += hz * site_op(Sz, i)
    return H


def _mps_to_dense(mps):
    """Contract an MPS (legs as produced by the builders) into a state vector."""
    psi = np.asarray(mps[0].todense())  # (p, r)
    for t in mps[1:]:
        psi = np.tensordot(psi, np.asarray(t.todense()), axes=([psi.ndim - 1], [0]))
    return psi.reshape(-1)


@pytest.fixture
def ed_ground_energy():
    """Exact ground energy of the XXZ chain restricted to total 2*Sz = 0."""
    def _ground(n_sites, jz=1.0, jxy=1.0, hz=0.0):
        H = _xxz_matrix(n_sites, jz, jxy, hz)
        sz_total = np.array([
            sum(1 if (k >> (n_sites - 1 - i)) & 1 == 0 else -1 for i in range(n_sites))
            for k in range(2 ** n_sites)
        ])
        sector = np.where(sz_total == 0)[0]
        return float(np.linalg.eigvalsh(H[np.ix_(sector, sector)])[0])
    return _ground


@pytest.fixture
def xxz_hamiltonian():
    """Builder of the dense XXZ Hamiltonian, for exact diagonalisation."""
    return _xxz_matrix


@pytest.fixture
def dense_state():
    """Contract an MPS into its dense state vector."""
    return _mps_to_dense


def _mpo_to_dense(mpo):
    """Contract an MPO into the (d^N, d^N) matrix H[bra, ket]."""
    op = np.asarray(mpo[0].todense())  # (ket, bra, wr)
    for t in mpo[1:]:
        op = np.tensordot(op, np.asarray(t.todense()), axes=([op.ndim - 1], [0]))
    n_sites = len(mpo)
    kets = list(range(0, 2 * n_sites, 2))
    bras = list(range(1, 2 * n_sites, 2))
    dim = int(np.prod([op.shape[k] for k in kets]))
    return np.transpose(op, bras + kets).reshape(dim, dim)


@pytest.fixture
def dense_operator():
    """Contract an MPO into its dense matrix."""
    return _mpo_to_dense
