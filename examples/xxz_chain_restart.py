#!/usr/bin/env python3
"""XXZ chain: an initial run, a snapshot of the MPS, then a resumed run.

The first run builds every environment block from scratch and keeps them as
checkpoint files. After saving the MPS, the second run loads it back and
resumes with ``Workflow.CONTINUE``, reusing the blocks on disk instead of
rebuilding them.

Usage::

    python examples/xxz_chain_restart.py [N] [jz]
"""

from __future__ import annotations

import os
import sys
import tempfile

from tnsweep import (
    SweepParams,
    Workflow,
    build_mpo_xxz,
    dump_mps,
    load_mps,
    random_init_mps,
    spin_half_charges,
    two_site_algorithm,
)


def main(N: int = 20, jz: float = 1.0) -> None:
    mpo = build_mpo_xxz(N, jz=jz, jxy=1.0)
    mps = random_init_mps(N, spin_half_charges(), bond_dim=8, seed=1)

    with tempfile.TemporaryDirectory() as workdir:
        ckpt = os.path.join(workdir, "blocks")
        snapshot = os.path.join(workdir, "mps")

        params = SweepParams(
            num_sweeps=4, dmin=16, dmax=48, cutoff=1e-8,
            checkpoint=True, checkpoint_dir=ckpt,
            entropy_target_bond=N // 2 - 1, verbose=True,
        )
        energy = two_site_algorithm(mps, mpo, params)
        print(f"Initial run:  E = {energy:.12f}")

        dump_mps(mps, snapshot)
        mps = load_mps(N, snapshot)

        params = SweepParams(
            num_sweeps=2, dmin=16, dmax=64, cutoff=1e-10,
            checkpoint=True, workflow=Workflow.CONTINUE, checkpoint_dir=ckpt,
            entropy_target_bond=N // 2 - 1, verbose=True,
        )
        energy = two_site_algorithm(mps, mpo, params)
        print(f"Resumed run:  E = {energy:.12f}  (E/N = {energy / N:.10f})")


if __name__ == "__main__":
    args = sys.argv[1:]
    main(int(args[0]) if args else 20, float(args[1]) if len(args) > 1 else 1.0)
