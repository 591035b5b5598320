"""AutoMPO: charge-conserving MPO construction from a list of operator terms.

Builds a charge-conserving MPO for a Hamiltonian given as a sum of products of
local operators:

    H = sum_k  c_k * O_{s0}^(k) O_{s1}^(k) ... O_{sm}^(k)

using the finite-automaton (left-partial-state) construction. At each
internal bond j, a term is *in-flight* when min_site <= j < max_site. The MPO
bond dimension is (# in-flight terms) + 2.

State index convention (matches ``build_mpo_xxz``):
  0           = "done"   (term completed, passes through with identity)
  1 .. n      = one per in-flight term (ordered by term enumeration)
  n + 1 = D-1 = "vacuum" (term not yet started, passes through with identity)

The channel of an in-flight term carries the total charge its operators have
transferred so far; "done" and "vacuum" carry the identity charge, so every
term must conserve charge overall.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jax.numpy as jnp
import numpy as np

from tnsweep.algorithms.builders import (
    mpo_from_w_matrices,
    operator_charge,
    spin_half_charges,
    spin_half_ops,
)
from tnsweep.core.symmetry import BaseSymmetry, U1Symmetry
from tnsweep.core.tensor import SymmetricTensor


@dataclass(frozen=True)
class HamiltonianTerm:
    """One term in the Hamiltonian: coefficient * product of local operators.

    Attributes:
        coefficient: Real prefactor.
        ops: Tuple of (site, operator_matrix) pairs, sorted by site.
    """

    coefficient: float
    ops: tuple[tuple[int, np.ndarray], ...]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _assign_bond_states(
    terms: list[HamiltonianTerm], n_sites: int
) -> list[dict[int, int]]:
    """Assign MPO bond-state indices to in-flight terms at each internal bond.

    Returns ``bond_states`` where ``bond_states[j][t_id]`` is the state index
    for term ``t_id`` at bond ``j`` (between sites ``j`` and ``j+1``).
    """
    bond_states: list[dict[int, int]] = []
    for j in range(n_sites - 1):
        states: dict[int, int] = {}
        idx = 1
        for t_id, term in enumerate(terms):
            sites = [s for s, _ in term.ops]
            if min(sites) <= j < max(sites):
                states[t_id] = idx
                idx += 1
        bond_states.append(states)
    return bond_states


def _bond_charges(
    terms: list[HamiltonianTerm],
    bond_states: list[dict[int, int]],
    phys_charges: np.ndarray,
    sym: BaseSymmetry,
) -> list[np.ndarray]:
    """Channel charges of every internal bond."""
    charges = []
    for j, states in enumerate(bond_states):
        q = np.full(len(states) + 2, sym.identity(), dtype=np.int32)
        for t_id, state in states.items():
            acc = sym.identity()
            for site, op in terms[t_id].ops:
                if site <= j:
                    acc = sym.fuse_scalar(acc, operator_charge(op, phys_charges, sym))
            q[state] = acc
        charges.append(q)
    return charges


def _build_w_matrices(
    terms: list[HamiltonianTerm],
    bond_states: list[dict[int, int]],
    n_sites: int,
    d: int,
) -> list[np.ndarray]:
    """Build a W-matrix ``[wl, ket, bra, wr]`` for every site.

    Shape conventions:
      * Left boundary  (i=0):         (1,   d, d, D_r) -- vacuum only
      * Right boundary (i=n_sites-1): (D_l, d, d, 1  ) -- done only
      * Bulk sites:                   (D_l, d, d, D_r)
    """
    identity = np.eye(d, dtype=np.float64)
    w_mats: list[np.ndarray] = []

    for i in range(n_sites):
        D_l = 1 if i == 0 else len(bond_states[i - 1]) + 2
        D_r = 1 if i == n_sites - 1 else len(bond_states[i]) + 2
        W = np.zeros((D_l, d, d, D_r), dtype=np.float64)

        vac_l = 0 if i == 0 else D_l - 1
        done_r = 0
        vac_r = D_r - 1

        # ----- pass-through identities -----
        if i == 0:
            W[0, :, :, vac_r] = identity
        elif i == n_sites - 1:
            W[0, :, :, 0] = identity
        else:
            W[0, :, :, done_r] = identity
            W[vac_l, :, :, vac_r] = identity

        # ----- fill each Hamiltonian term -----
        for t_id, term in enumerate(terms):
            op_dict = dict(term.ops)
            sites = sorted(op_dict)
            min_s, max_s = sites[0], sites[-1]
            if i < min_s or i > max_s:
                continue

            op = op_dict.get(i, identity).T

            if min_s == max_s:
                W[vac_l, :, :, done_r] += term.coefficient * op
            elif i == min_s:
                W[vac_l, :, :, bond_states[i][t_id]] += term.coefficient * op
            elif i == max_s:
                W[bond_states[i - 1][t_id], :, :, done_r] += op
            else:
                # each term owns its in-flight states, so no two terms share a slot
                W[bond_states[i - 1][t_id], :, :, bond_states[i][t_id]] = op

        w_mats.append(W)

    return w_mats


# ---------------------------------------------------------------------------
# Public class
# ---------------------------------------------------------------------------


class AutoMPO:
    """Symbolic Hamiltonian builder that produces a symmetric MPO.

    Operator names are resolved against a ``site_ops`` dictionary; the
    default is ``spin_half_ops()`` with ``spin_half_charges()``.

    Example::

        auto = AutoMPO(6)
        for i, j in [(0, 1), (0, 2), (1, 3)]:
            auto += (1.0, "Sz", i, "Sz", j)
            auto += (0.5, "Sp", i, "Sm", j)
            auto += (0.5, "Sm", i, "Sp", j)
        mpo = auto.to_mpo()
    """

    def __init__(
        self,
        n_sites: int,
        site_ops: dict[str, np.ndarray] | None = None,
        phys_charges: np.ndarray | None = None,
        symmetry: BaseSymmetry | None = None,
    ) -> None:
        if n_sites < 2:
            raise ValueError(f"n_sites must be >= 2, got {n_sites}")
        if (site_ops is None) != (phys_charges is None):
            raise ValueError("site_ops and phys_charges must be given together")
        self.n_sites = n_sites
        self._site_ops = site_ops if site_ops is not None else spin_half_ops()
        self._phys = np.asarray(
            phys_charges if phys_charges is not None else spin_half_charges(),
            dtype=np.int32,
        )
        self._sym = symmetry if symmetry is not None else U1Symmetry()
        self._terms: list[HamiltonianTerm] = []

    @property
    def d(self) -> int:
        return len(self._phys)

    def add_term(self, coeff: float, *args: Any) -> None:
        """Add one term to the Hamiltonian.

        Args:
            coeff: Scalar coefficient.
            *args: Alternating ``(op_name, site)`` pairs, at least one pair.

        Raises:
            ValueError: On malformed arguments, repeated sites or a term that
                        does not conserve charge.
            KeyError: On an unknown operator name.

        Example::

            auto.add_term(0.5, "Sp", 0, "Sm", 1)
        """
        if len(args) == 0 or len(args) % 2 != 0:
            raise ValueError(
                "args must be alternating (op_name, site) pairs; "
                f"got {len(args)} argument(s)."
            )

        pairs: list[tuple[int, np.ndarray]] = []
        for k in range(0, len(args), 2):
            op_name, site = args[k], args[k + 1]
            if op_name not in self._site_ops:
                raise KeyError(
                    f"Operator '{op_name}' not in site_ops. "
                    f"Available: {sorted(self._site_ops)}"
                )
            if not isinstance(site, int) or not 0 <= site < self.n_sites:
                raise ValueError(f"Site {site!r} out of range [0, {self.n_sites}).")
            pairs.append((site, np.asarray(self._site_ops[op_name], dtype=np.float64)))

        pairs.sort(key=lambda x: x[0])
        sites = [s for s, _ in pairs]
        if len(sites) != len(set(sites)):
            raise ValueError(f"Duplicate sites in term: {sites}")

        total = self._sym.identity()
        for _, op in pairs:
            total = self._sym.fuse_scalar(total, operator_charge(op, self._phys, self._sym))
        if total != self._sym.identity():
            raise ValueError(
                f"term {args} changes the total charge by {self._sym.components(total)}"
            )

        self._terms.append(HamiltonianTerm(coefficient=float(coeff), ops=tuple(pairs)))

    def __iadd__(self, args: tuple) -> AutoMPO:
        """Convenience operator: ``auto += (coeff, op1, site1, ...)``."""
        self.add_term(args[0], *args[1:])
        return self

    def to_mpo(self, dtype: Any = jnp.float64) -> list[SymmetricTensor]:
        """Build the MPO site tensors.

        Raises:
            ValueError: If no terms have been added.
        """
        if not self._terms:
            raise ValueError("No terms; call add_term() before to_mpo().")
        bond_states = _assign_bond_states(self._terms, self.n_sites)
        w_mats = _build_w_matrices(self._terms, bond_states, self.n_sites, self.d)
        charges = _bond_charges(self._terms, bond_states, self._phys, self._sym)
        return mpo_from_w_matrices(w_mats, charges, self._phys, self._sym, dtype=dtype)

    def bond_dims(self) -> list[int]:
        """MPO bond dimensions at each internal bond."""
        return [len(bs) + 2 for bs in _assign_bond_states(self._terms, self.n_sites)]

    def n_terms(self) -> int:
        return len(self._terms)


def build_auto_mpo(
    terms: list[tuple],
    n_sites: int,
    site_ops: dict[str, np.ndarray] | None = None,
    phys_charges: np.ndarray | None = None,
    symmetry: BaseSymmetry | None = None,
    dtype: Any = jnp.float64,
) -> list[SymmetricTensor]:
    """Build an MPO from a list of ``(coeff, op1, site1, op2, site2, ...)`` tuples."""
    auto = AutoMPO(n_sites, site_ops=site_ops, phys_charges=phys_charges, symmetry=symmetry)
    for term in terms:
        auto.add_term(term[0], *term[1:])
    return auto.to_mpo(dtype=dtype)
