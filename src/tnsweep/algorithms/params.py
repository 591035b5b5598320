"""Configuration of the two-site sweep."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Workflow(str, Enum):
    """How the environment blocks are obtained before the first sweep.

    INITIAL builds them from the given MPS; CONTINUE trusts the checkpoint
    files left by a previous complete run.
    """

    INITIAL = "initial"
    CONTINUE = "continue"


class SweepDirection(str, Enum):
    """Direction of a pass over the chain.

    ``SweepDirection("r")`` and ``SweepDirection("l")`` are accepted; any
    other value raises ``ValueError``.
    """

    FORWARD = "r"
    BACKWARD = "l"


@dataclass
class SweepParams:
    """Configuration for a two-site sweep run.

    Attributes:
        num_sweeps:          Number of forward-then-backward sweeps.
        dmin:                Minimum kept bond dimension.
        dmax:                Maximum kept bond dimension.
        cutoff:              Largest relative squared weight that may be
                             discarded below dmax.
        checkpoint:          If True, environment blocks are flushed to
                             ``checkpoint_dir`` and only the blocks needed by
                             the next step stay in memory.
        workflow:            INITIAL (build blocks) or CONTINUE (resume from
                             checkpoints; requires ``checkpoint=True``).
        lanczos_tol:         Convergence tolerance on the lowest Ritz value.
        lanczos_max_iter:    Maximum Lanczos iterations per bond.
        entropy_target_bond: Bond (between sites b and b+1) whose entanglement
                             entropy is measured, or None.
        checkpoint_dir:      Directory holding block checkpoint files.
        verbose:             Print one line per bond update and per sweep.
    """

    num_sweeps: int
    dmin: int
    dmax: int
    cutoff: float
    checkpoint: bool = False
    workflow: Workflow = Workflow.INITIAL
    lanczos_tol: float = 1e-7
    lanczos_max_iter: int = 200
    entropy_target_bond: int | None = None
    checkpoint_dir: str = ".temp"
    verbose: bool = False

    def __post_init__(self) -> None:
        self.workflow = Workflow(self.workflow)
        if self.num_sweeps < 1:
            raise ValueError(f"num_sweeps must be positive, got {self.num_sweeps}")
        if self.dmin < 1 or self.dmax < self.dmin:
            raise ValueError(
                f"need 1 <= dmin <= dmax, got dmin={self.dmin}, dmax={self.dmax}"
            )
        if self.cutoff < 0:
            raise ValueError(f"cutoff must be non-negative, got {self.cutoff}")
        if self.lanczos_max_iter < 1:
            raise ValueError(
                f"lanczos_max_iter must be positive, got {self.lanczos_max_iter}"
            )
        if self.lanczos_tol <= 0:
            raise ValueError(f"lanczos_tol must be positive, got {self.lanczos_tol}")
        if self.entropy_target_bond is not None and self.entropy_target_bond < 0:
            raise ValueError(
                f"entropy_target_bond must be non-negative or None, "
                f"got {self.entropy_target_bond}"
            )
        if self.workflow is Workflow.CONTINUE and not self.checkpoint:
            raise ValueError("Workflow.CONTINUE resumes from checkpoints; set checkpoint=True")
