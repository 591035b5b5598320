"""tnsweep: two-site DMRG on charge-conserving block-sparse tensors, in JAX.

A finite open chain is optimised by sweeping a two-site update back and forth:
merge two neighbouring MPS tensors, find the local ground state of the
effective Hamiltonian with Lanczos, split it again with a truncated
charge-resolved SVD and grow the environment block the sweep just left.
Environment blocks can be checkpointed to disk so that only the blocks needed
by the next step stay in memory.

.. note::
    Importing ``tnsweep`` enables JAX 64-bit mode (``jax_enable_x64``).
    All tensors and algorithms default to ``float64``.

Quick start::

    from tnsweep import (
        SweepParams, build_mpo_xxz, random_init_mps, spin_half_charges,
        two_site_algorithm,
    )

    mpo = build_mpo_xxz(6, jz=1.0, jxy=1.0)
    mps = random_init_mps(6, spin_half_charges(), bond_dim=4)
    params = SweepParams(num_sweeps=4, dmin=8, dmax=8, cutoff=1e-9, verbose=True)
    energy = two_site_algorithm(mps, mpo, params)   # about -2.4935771339
"""

import jax

jax.config.update("jax_enable_x64", True)

from tnsweep.algorithms.auto_mpo import AutoMPO, HamiltonianTerm, build_auto_mpo
from tnsweep.algorithms.blocks import (
    BlockStore,
    grow_left_block,
    grow_right_block,
    init_blocks,
)
from tnsweep.algorithms.builders import (
    build_mpo_xxz,
    direct_product_mps,
    random_init_mps,
    right_canonicalize,
    spin_half_charges,
    spin_half_ops,
    tj_charges,
    tj_ops,
    tj_symmetry,
)
from tnsweep.algorithms.lanczos import (
    Boundary,
    EffectiveHamiltonian,
    LanczosResult,
    apply_effective_hamiltonian,
    lanczos_solve,
)
from tnsweep.algorithms.params import SweepDirection, SweepParams, Workflow
from tnsweep.algorithms.two_site import (
    BondGeometry,
    StepRecord,
    measure_entanglement_entropy,
    resolve_bond,
    two_site_algorithm,
    two_site_sweep,
    two_site_update,
)
from tnsweep.contraction.contractor import (
    SvdResult,
    contract,
    singular_values,
    truncated_svd,
)
from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.symmetry import (
    BaseSymmetry,
    ProductSymmetry,
    U1Symmetry,
    ZnSymmetry,
    symmetry_from_name,
)
from tnsweep.core.tensor import BlockKey, SymmetricTensor
from tnsweep.io.tensor_file import (
    block_file_path,
    dump_mps,
    load_mps,
    read_block,
    read_tensor,
    write_block,
    write_tensor,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Symmetries
    "BaseSymmetry",
    "ProductSymmetry",
    "U1Symmetry",
    "ZnSymmetry",
    "symmetry_from_name",
    # Index
    "FlowDirection",
    "TensorIndex",
    # Tensors
    "SymmetricTensor",
    "BlockKey",
    # Contraction
    "contract",
    "truncated_svd",
    "SvdResult",
    "singular_values",
    # Persistence
    "write_tensor",
    "read_tensor",
    "block_file_path",
    "write_block",
    "read_block",
    "dump_mps",
    "load_mps",
    # Sweep
    "SweepParams",
    "SweepDirection",
    "Workflow",
    "BlockStore",
    "init_blocks",
    "grow_left_block",
    "grow_right_block",
    "Boundary",
    "EffectiveHamiltonian",
    "LanczosResult",
    "apply_effective_hamiltonian",
    "lanczos_solve",
    "BondGeometry",
    "StepRecord",
    "resolve_bond",
    "measure_entanglement_entropy",
    "two_site_update",
    "two_site_sweep",
    "two_site_algorithm",
    # Builders
    "build_mpo_xxz",
    "random_init_mps",
    "direct_product_mps",
    "right_canonicalize",
    "spin_half_charges",
    "spin_half_ops",
    "tj_charges",
    "tj_ops",
    "tj_symmetry",
    # AutoMPO
    "AutoMPO",
    "HamiltonianTerm",
    "build_auto_mpo",
]
