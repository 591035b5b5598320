"""Abelian symmetry groups for charge-conserving block-sparse tensors.

All symmetry classes operate on numpy integer arrays of charge values.
No JAX dependency: pure Python/numpy arithmetic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class BaseSymmetry(ABC):
    """Abstract base for symmetry groups governing tensor index charges.

    A symmetry group defines how charges combine (fuse) when tensor legs
    are merged, and how charges transform when a leg's flow is reversed (dual).

    Concrete subclasses must implement fuse, dual, identity, n_values and name.
    All concrete classes implement __eq__ and __hash__ so they can serve as
    dict keys and be compared for compatibility checks.
    """

    @abstractmethod
    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        """Fuse two charge arrays element-wise under the group operation.

        Args:
            charges_a: Integer charge array of shape (D,).
            charges_b: Integer charge array of shape (D,).

        Returns:
            Fused charge array of shape (D,).
        """

    @abstractmethod
    def dual(self, charges: np.ndarray) -> np.ndarray:
        """Return the group inverse (dual) of each charge."""

    @abstractmethod
    def identity(self) -> int:
        """Return the identity element (neutral charge, typically 0)."""

    @abstractmethod
    def n_values(self) -> int | None:
        """Return the number of distinct charge values, or None if infinite (U(1))."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short name used when a tensor is written to disk."""

    def fuse_many(self, charge_list: list[np.ndarray]) -> np.ndarray:
        """Fuse a list of charge arrays left-to-right via repeated fuse().

        Args:
            charge_list: Non-empty list of integer charge arrays, all shape (D,).

        Returns:
            Fully fused charge array of shape (D,).
        """
        if not charge_list:
            raise ValueError("charge_list must be non-empty")
        result = charge_list[0]
        for c in charge_list[1:]:
            result = self.fuse(result, c)
        return result

    def fuse_scalar(self, a: int, b: int) -> int:
        """Fuse two single charges."""
        return int(self.fuse(np.array([a], dtype=np.int32), np.array([b], dtype=np.int32))[0])

    def dual_scalar(self, q: int) -> int:
        """Dual of a single charge."""
        return int(self.dual(np.array([q], dtype=np.int32))[0])

    def oriented(self, q: int, flow: int) -> int:
        """Charge ``q`` as seen through a leg of the given flow.

        IN legs (+1) contribute ``q`` itself, OUT legs (-1) its dual.
        """
        return int(q) if int(flow) > 0 else self.dual_scalar(q)

    def net_charge(self, charges_per_leg: tuple[int, ...], flows: tuple[int, ...]) -> int:
        """Net charge ``sum_i flow_i * charge_i`` of one charge sector.

        Args:
            charges_per_leg: One charge value per leg.
            flows: +1 (IN) or -1 (OUT) per leg.

        Returns:
            The fused net charge, reduced into the group's range.
        """
        net = self.identity()
        for f, q in zip(flows, charges_per_leg):
            net = self.fuse_scalar(net, self.oriented(q, f))
        return net

    def components(self, q: int) -> tuple[int, ...]:
        """Integer components of a charge; a single component by default."""
        return (int(q),)


class U1Symmetry(BaseSymmetry):
    """U(1) symmetry: integer charges, fusion by addition.

    Represents the continuous U(1) group (particle number conservation,
    total Sz conservation, etc.). Charges are unbounded integers.

    Example:
        >>> sym = U1Symmetry()
        >>> sym.fuse(np.array([0, 1, -1]), np.array([1, -1, 0]))
        array([1, 0, -1])
    """

    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        return charges_a + charges_b

    def dual(self, charges: np.ndarray) -> np.ndarray:
        return -charges

    def identity(self) -> int:
        return 0

    def n_values(self) -> None:
        return None

    @property
    def name(self) -> str:
        return "U1"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, U1Symmetry)

    def __hash__(self) -> int:
        return hash("U1Symmetry")

    def __repr__(self) -> str:
        return "U1Symmetry()"


class ZnSymmetry(BaseSymmetry):
    """Z_n symmetry: integer charges mod n, fusion by addition mod n.

    Args:
        n: The order of the group. Must be >= 2.

    Example:
        >>> sym = ZnSymmetry(3)
        >>> sym.fuse(np.array([1, 2]), np.array([2, 2]))
        array([0, 1])
    """

    def __init__(self, n: int) -> None:
        if n < 2:
            raise ValueError(f"n must be >= 2, got {n}")
        self.n = n

    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        return (charges_a + charges_b) % self.n

    def dual(self, charges: np.ndarray) -> np.ndarray:
        return (-charges) % self.n

    def identity(self) -> int:
        return 0

    def n_values(self) -> int:
        return self.n

    @property
    def name(self) -> str:
        return f"Z{self.n}"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ZnSymmetry) and self.n == other.n

    def __hash__(self) -> int:
        return hash(("ZnSymmetry", self.n))

    def __repr__(self) -> str:
        return f"ZnSymmetry({self.n})"


class ProductSymmetry(BaseSymmetry):
    """Direct product of two symmetries with bit-packed charges.

    Charges from the two factor symmetries are encoded into a single int32
    via bit-packing: ``encoded = (q2 << 16) | (q1 & 0xFFFF)``.
    Component charges are limited to the int16 range [-32768, 32767].
    Packed charges are ordinary integers everywhere else (block keys, leg
    charge arrays, files), so only fuse/dual need to know about the packing.

    Args:
        sym1: First factor symmetry.
        sym2: Second factor symmetry.

    Raises:
        TypeError: If either factor is itself a ProductSymmetry (no nesting).

    Example:
        >>> sym = ProductSymmetry(U1Symmetry(), U1Symmetry())  # (N, 2*Sz)
        >>> up = ProductSymmetry.encode(1, 1)
        >>> sym.components(sym.fuse_scalar(up, up))
        (2, 2)
    """

    def __init__(self, sym1: BaseSymmetry, sym2: BaseSymmetry) -> None:
        if isinstance(sym1, ProductSymmetry) or isinstance(sym2, ProductSymmetry):
            raise TypeError("Nested ProductSymmetry is not supported")
        self.sym1 = sym1
        self.sym2 = sym2

    @staticmethod
    def encode(q1: int, q2: int) -> int:
        """Pack two int16 charges into one int32."""
        return (int(np.int16(q2)) << 16) | (int(np.int16(q1)) & 0xFFFF)

    @staticmethod
    def decode(encoded: int) -> tuple[int, int]:
        """Unpack one int32 into two int16 charges."""
        q1, q2 = ProductSymmetry.decode_charges(np.array([encoded], dtype=np.int32))
        return int(q1[0]), int(q2[0])

    @staticmethod
    def encode_charges(arr1: np.ndarray, arr2: np.ndarray) -> np.ndarray:
        """Vectorized encoding of two charge arrays."""
        a1 = np.asarray(arr1).astype(np.int16).astype(np.int32)
        a2 = np.asarray(arr2).astype(np.int16).astype(np.int32)
        return ((a2 << 16) | (a1 & 0xFFFF)).astype(np.int32)

    @staticmethod
    def decode_charges(arr: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Vectorized decoding of a packed charge array."""
        arr = np.asarray(arr, dtype=np.int32)
        q1 = (arr & 0xFFFF).astype(np.uint16).view(np.int16).astype(np.int32)
        q2 = ((arr >> 16) & 0xFFFF).astype(np.uint16).view(np.int16).astype(np.int32)
        return q1, q2

    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        a1, a2 = self.decode_charges(charges_a)
        b1, b2 = self.decode_charges(charges_b)
        return self.encode_charges(self.sym1.fuse(a1, b1), self.sym2.fuse(a2, b2))

    def dual(self, charges: np.ndarray) -> np.ndarray:
        q1, q2 = self.decode_charges(charges)
        return self.encode_charges(self.sym1.dual(q1), self.sym2.dual(q2))

    def identity(self) -> int:
        return self.encode(self.sym1.identity(), self.sym2.identity())

    def n_values(self) -> int | None:
        n1 = self.sym1.n_values()
        n2 = self.sym2.n_values()
        if n1 is not None and n2 is not None:
            return n1 * n2
        return None

    def components(self, q: int) -> tuple[int, ...]:
        return self.decode(q)

    @property
    def name(self) -> str:
        return f"{self.sym1.name}x{self.sym2.name}"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, ProductSymmetry)
            and self.sym1 == other.sym1
            and self.sym2 == other.sym2
        )

    def __hash__(self) -> int:
        return hash(("ProductSymmetry", self.sym1, self.sym2))

    def __repr__(self) -> str:
        return f"ProductSymmetry({self.sym1!r}, {self.sym2!r})"


def symmetry_from_name(name: str) -> BaseSymmetry:
    """Rebuild a symmetry from its ``name`` ("U1", "Z2", "U1xU1", "Z2xU1", ...).

    Raises:
        ValueError: If the name is not recognised.
    """
    if "x" in name:
        first, _, second = name.partition("x")
        return ProductSymmetry(symmetry_from_name(first), symmetry_from_name(second))
    if name == "U1":
        return U1Symmetry()
    if name.startswith("Z") and name[1:].isdigit():
        return ZnSymmetry(int(name[1:]))
    raise ValueError(f"Unknown symmetry name {name!r}")
