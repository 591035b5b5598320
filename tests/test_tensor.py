"""Tests for SymmetricTensor."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.symmetry import ProductSymmetry
from tnsweep.core.tensor import (
    SymmetricTensor,
    _block_slices,
    _compute_valid_blocks,
)


class TestComputeValidBlocks:
    def test_u1_2leg(self, u1, u1_charges_3):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        keys = _compute_valid_blocks(indices)
        assert keys == [(-1, -1), (0, 0), (1, 1)]

    def test_divergence_shifts_sectors(self, u1, u1_charges_3):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        keys = _compute_valid_blocks(indices, divergence=1)
        # q_in - q_out == 1
        assert keys == [(0, -1), (1, 0)]

    def test_empty_indices(self):
        assert _compute_valid_blocks(()) == [()]

    def test_z2_3leg(self, z2):
        charges = np.array([0, 1], dtype=np.int32)
        indices = (
            TensorIndex(z2, charges, FlowDirection.IN),
            TensorIndex(z2, charges, FlowDirection.IN),
            TensorIndex(z2, charges, FlowDirection.OUT),
        )
        keys = _compute_valid_blocks(indices)
        assert len(keys) == 4
        for key in keys:
            assert (key[0] + key[1] - key[2]) % 2 == 0

    @pytest.mark.parametrize("n_div,sz_div", [(0, 0), (1, -1), (2, 0)])
    def test_product_charges_match_brute_force(self, nsz, tj_phys, n_div, sz_div):
        bond = ProductSymmetry.encode_charges(np.array([0, 1, 1, 2]), np.array([0, 1, -1, 0]))
        indices = (
            TensorIndex(nsz, bond, FlowDirection.IN),
            TensorIndex(nsz, tj_phys, FlowDirection.IN),
            TensorIndex(nsz, bond, FlowDirection.OUT),
        )
        target = (n_div, sz_div)
        keys = _compute_valid_blocks(indices, ProductSymmetry.encode(*target))

        expected = []
        for ql in sorted(set(bond.tolist())):
            for qp in sorted(set(tj_phys.tolist())):
                for qr in sorted(set(bond.tolist())):
                    l, p, r = (ProductSymmetry.decode(q) for q in (ql, qp, qr))
                    if (l[0] + p[0] - r[0], l[1] + p[1] - r[1]) == target:
                        expected.append((ql, qp, qr))
        assert expected
        assert keys == sorted(expected)

    def test_block_slices_shape(self, u1):
        idx = TensorIndex(u1, np.array([0, 1, 1, -1], dtype=np.int32), FlowDirection.IN)
        masks, shape = _block_slices((idx, idx.flipped()), (1, 1))
        assert shape == (2, 2)
        np.testing.assert_array_equal(masks[0], [False, True, True, False])


class TestSymmetricTensorCreation:
    def test_zeros_factory(self, u1, u1_charges_3):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        t = SymmetricTensor.zeros(indices)
        assert t.ndim == 2
        assert t.n_blocks == 3
        for block in t.blocks.values():
            np.testing.assert_allclose(block, 0.0)

    def test_default_dtype_is_float64(self, u1_sym_tensor_2leg):
        assert u1_sym_tensor_2leg.dtype == jnp.float64

    def test_random_normal_reproducible(self, u1, u1_charges_3, rng):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        a = SymmetricTensor.random_normal(indices, rng)
        b = SymmetricTensor.random_normal(indices, rng)
        for key in a.blocks:
            np.testing.assert_array_equal(a.blocks[key], b.blocks[key])

    def test_conservation_with_divergence(self, u1_sym_tensor_pair):
        _, B = u1_sym_tensor_pair
        assert B.divergence == 1
        for key in B.blocks:
            assert key[0] + key[1] - key[2] == 1

    def test_invalid_block_raises(self, u1):
        charges = np.array([0, 1], dtype=np.int32)
        indices = (
            TensorIndex(u1, charges, FlowDirection.IN),
            TensorIndex(u1, charges, FlowDirection.OUT),
        )
        with pytest.raises(ValueError, match="conservation"):
            SymmetricTensor({(0, 1): jnp.ones((1, 1))}, indices)

    def test_wrong_block_shape_raises(self, u1):
        charges = np.array([0, 1, 1], dtype=np.int32)
        indices = (
            TensorIndex(u1, charges, FlowDirection.IN),
            TensorIndex(u1, charges, FlowDirection.OUT),
        )
        with pytest.raises(ValueError, match="shape"):
            SymmetricTensor({(1, 1): jnp.ones((1, 1))}, indices)

    def test_from_dense_roundtrip(self, u1_site_tensor):
        dense = u1_site_tensor.todense()
        t = SymmetricTensor.from_dense(dense, u1_site_tensor.indices)
        for key in u1_site_tensor.blocks:
            np.testing.assert_allclose(t.blocks[key], u1_site_tensor.blocks[key])

    def test_from_dense_rejects_non_zero_outside_blocks(self, u1, u1_charges_3):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        with pytest.raises(ValueError):
            SymmetricTensor.from_dense(jnp.ones((3, 3)), indices)

    def test_trivial(self):
        t = SymmetricTensor.trivial()
        assert t.ndim == 0
        assert t.divergence == 0
        assert float(t.todense()) == 1.0
        assert t.symmetry is None


class TestSymmetricTensorOperations:
    def test_norm_matches_dense(self, u1_site_tensor):
        dense_norm = jnp.linalg.norm(u1_site_tensor.todense().ravel())
        np.testing.assert_allclose(float(u1_site_tensor.norm()), float(dense_norm), rtol=1e-12)

    def test_todense_zeros_outside_blocks(self, u1_sym_tensor_2leg):
        dense = np.asarray(u1_sym_tensor_2leg.todense())
        off_diagonal = dense[~np.eye(3, dtype=bool)]
        np.testing.assert_array_equal(off_diagonal, 0.0)

    def test_transpose_matches_dense(self, u1_site_tensor):
        t = u1_site_tensor.transpose((2, 0, 1))
        np.testing.assert_allclose(
            t.todense(), jnp.transpose(u1_site_tensor.todense(), (2, 0, 1))
        )
        assert t.indices[0] == u1_site_tensor.indices[2]

    def test_dagger_flips_flows_and_divergence(self, u1_sym_tensor_pair):
        _, B = u1_sym_tensor_pair
        Bd = B.dagger()
        assert Bd.divergence == -1
        for idx, idx_d in zip(B.indices, Bd.indices):
            assert idx_d.flow == -idx.flow
            np.testing.assert_array_equal(idx_d.charges, idx.charges)
        assert set(Bd.blocks) == set(B.blocks)
        np.testing.assert_allclose(Bd.todense(), jnp.conj(B.todense()))

    def test_scale(self, u1_site_tensor):
        np.testing.assert_allclose(
            u1_site_tensor.scale(-2.0).todense(), -2.0 * u1_site_tensor.todense()
        )

    def test_block_shapes(self, u1_sym_tensor_2leg):
        assert u1_sym_tensor_2leg.block_shapes() == {
            (-1, -1): (1, 1), (0, 0): (1, 1), (1, 1): (1, 1)
        }

    def test_repr(self, u1_sym_tensor_2leg):
        r = repr(u1_sym_tensor_2leg)
        assert "SymmetricTensor" in r
        assert "divergence=0" in r


class TestFlatVectorView:
    def test_round_trip(self, u1_site_tensor):
        layout = u1_site_tensor.block_layout()
        vec = u1_site_tensor.to_vector(layout)
        assert vec.shape == (sum(int(np.prod(s)) for _, s in layout),)
        back = u1_site_tensor.with_vector(vec, layout)
        np.testing.assert_allclose(back.todense(), u1_site_tensor.todense())

    def test_missing_blocks_read_as_zero(self, u1, u1_charges_3):
        indices = (
            TensorIndex(u1, u1_charges_3, FlowDirection.IN),
            TensorIndex(u1, u1_charges_3, FlowDirection.OUT),
        )
        t = SymmetricTensor({(0, 0): jnp.full((1, 1), 3.0)}, indices)
        vec = t.to_vector(t.block_layout())
        np.testing.assert_allclose(vec, [0.0, 3.0, 0.0])

    def test_wrong_length_raises(self, u1_sym_tensor_2leg):
        layout = u1_sym_tensor_2leg.block_layout()
        with pytest.raises(ValueError, match="layout"):
            u1_sym_tensor_2leg.with_vector(jnp.zeros(7), layout)


class TestPytree:
    def test_jit(self, u1_sym_tensor_2leg):
        t = u1_sym_tensor_2leg

        @jax.jit
        def scale_blocks(tensor, factor):
            new_blocks = {k: v * factor for k, v in tensor.blocks.items()}
            return SymmetricTensor(new_blocks, tensor.indices, tensor.divergence)

        result = scale_blocks(t, 2.0)
        for key in t.blocks:
            np.testing.assert_allclose(result.blocks[key], t.blocks[key] * 2.0)

    def test_flatten_keeps_divergence(self, u1_sym_tensor_pair):
        _, B = u1_sym_tensor_pair
        leaves, treedef = jax.tree_util.tree_flatten(B)
        rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
        assert rebuilt.divergence == B.divergence
        np.testing.assert_allclose(rebuilt.todense(), B.todense())

    def test_grad(self, u1_sym_tensor_2leg):
        grad = jax.grad(lambda t: t.norm())(u1_sym_tensor_2leg)
        assert isinstance(grad, SymmetricTensor)
