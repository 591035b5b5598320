"""Core tensor and symmetry classes."""

from tnsweep.core.index import FlowDirection, TensorIndex
from tnsweep.core.symmetry import (
    BaseSymmetry,
    ProductSymmetry,
    U1Symmetry,
    ZnSymmetry,
    symmetry_from_name,
)
from tnsweep.core.tensor import BlockKey, BlockLayout, SymmetricTensor

# Shared epsilon constants used across algorithms to prevent underflow.
# EPS: zero-guard for normalization and Krylov breakdown checks (1e-15).
# LOG_EPS: probabilities below this are treated as zero in entropy sums.
EPS = 1e-15
LOG_EPS = 1e-250

__all__ = [
    "BaseSymmetry",
    "ProductSymmetry",
    "U1Symmetry",
    "ZnSymmetry",
    "symmetry_from_name",
    "FlowDirection",
    "TensorIndex",
    "SymmetricTensor",
    "BlockKey",
    "BlockLayout",
    "EPS",
    "LOG_EPS",
]
