"""Tensor index (leg) metadata: symmetry, per-state charges and flow direction.

Each leg of a tensor is described by a TensorIndex, which carries:
- The symmetry group governing charges on this leg
- The charge of each basis state along this leg
- The flow direction (incoming/outgoing)

Two legs can be contracted when they carry the same charges with opposite
flows, so that the charge leaving one tensor enters the other.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from tnsweep.core.symmetry import BaseSymmetry


class FlowDirection(IntEnum):
    """Flow direction of a tensor leg.

    IN (+1):  Incoming leg, arrow pointing into the tensor.
    OUT (-1): Outgoing leg, arrow pointing out of the tensor.

    Conservation law: sum_i(flow_i * charge_i) == divergence
    for any stored block of a symmetric tensor.
    """

    IN = 1
    OUT = -1


@dataclass(frozen=True, slots=True)
class TensorIndex:
    """Metadata for one leg (index) of a symmetric tensor.

    Attributes:
        symmetry:  The symmetry group governing charges on this leg.
        charges:   1-D numpy int32 array of length D (bond dimension).
                   charges[i] is the charge of basis state i.
        flow:      Whether this leg is incoming (IN) or outgoing (OUT).

    Example:
        >>> u1 = U1Symmetry()
        >>> idx = TensorIndex(u1, np.array([-1, 0, 1], dtype=np.int32), FlowDirection.IN)
        >>> idx.dim
        3
        >>> idx.flipped().flow
        <FlowDirection.OUT: -1>
    """

    symmetry: BaseSymmetry
    charges: np.ndarray  # shape (D,), dtype int32
    flow: FlowDirection

    def __post_init__(self) -> None:
        if self.charges.ndim != 1:
            raise ValueError(
                f"charges must be 1-D, got shape {self.charges.shape}"
            )
        # Coerce to int32 if needed (use object.__setattr__ since frozen)
        if self.charges.dtype != np.int32:
            object.__setattr__(self, "charges", self.charges.astype(np.int32))
        if not isinstance(self.flow, FlowDirection):
            object.__setattr__(self, "flow", FlowDirection(int(self.flow)))

    @property
    def dim(self) -> int:
        """Bond dimension of this leg (number of basis states)."""
        return len(self.charges)

    def sector_charges(self) -> list[int]:
        """Distinct charge values on this leg, sorted."""
        return sorted(set(self.charges.tolist()))

    def sector_dim(self, charge: int) -> int:
        """Number of basis states carrying ``charge``."""
        return int(np.count_nonzero(self.charges == charge))

    def flipped(self) -> TensorIndex:
        """Return the same leg with reversed flow and unchanged charges.

        This is the leg a partner tensor must carry to be contracted with
        this one, and the leg layout of the bra copy of a ket tensor.
        """
        return TensorIndex(
            symmetry=self.symmetry,
            charges=self.charges,
            flow=FlowDirection(-int(self.flow)),
        )

    def is_contractible_with(self, other: TensorIndex) -> bool:
        """Check if this leg can be summed against ``other``.

        Requires the same symmetry, opposite flows and identical charge
        arrays (position i on both legs labels the same basis state).
        """
        return (
            self.symmetry == other.symmetry
            and self.flow != other.flow
            and np.array_equal(self.charges, other.charges)
        )

    def __hash__(self) -> int:
        return hash((self.symmetry, self.charges.tobytes(), int(self.flow)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorIndex):
            return NotImplemented
        return (
            self.symmetry == other.symmetry
            and np.array_equal(self.charges, other.charges)
            and self.flow == other.flow
        )

    def __repr__(self) -> str:
        return (
            f"TensorIndex(sym={self.symmetry!r}, dim={self.dim}, "
            f"flow={self.flow.name})"
        )
