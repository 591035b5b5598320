"""Two-site DMRG sweep engine and its helpers."""

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

__all__ = [
    # Configuration
    "SweepParams",
    "SweepDirection",
    "Workflow",
    # Blocks
    "BlockStore",
    "init_blocks",
    "grow_left_block",
    "grow_right_block",
    # Local solver
    "Boundary",
    "EffectiveHamiltonian",
    "LanczosResult",
    "apply_effective_hamiltonian",
    "lanczos_solve",
    # Sweep
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
    "mpo_from_w_matrices",
    "operator_charge",
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
