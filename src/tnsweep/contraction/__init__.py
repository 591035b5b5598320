"""Block-sparse contraction and truncated factorization."""

from tnsweep.contraction.contractor import (
    SvdResult,
    contract,
    singular_values,
    truncated_svd,
)

__all__ = [
    "contract",
    "truncated_svd",
    "SvdResult",
    "singular_values",
]
