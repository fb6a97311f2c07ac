"""Weighted path selection for branch steps."""

from __future__ import annotations

import random
from collections.abc import Sequence

from dripline.errors import StepExecutionError

from .models import BranchPath


class BranchResolver:
    """Pick one branch path by relative weight.

    Weights are normalised by their sum, so ``[70, 30]`` and ``[7, 3]`` behave
    identically. Paths are laid out as half-open intervals
    ``[cumulative_prev, cumulative_next)`` in listed order; a zero-weight path
    has an empty interval and can never be chosen.

    Args:
        rng: Random source. Inject a seeded ``random.Random`` for reproducible runs.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def choose(self, paths: Sequence[BranchPath]) -> BranchPath:
        """Draw once and return the selected path."""
        total = self.total_weight(paths)
        return self.select(paths, self._rng.random() * total)

    @staticmethod
    def total_weight(paths: Sequence[BranchPath]) -> float:
        if not paths:
            raise StepExecutionError("Branch step has no paths", step_kind="branch")
        for path in paths:
            if path.weight_percent < 0:
                raise StepExecutionError(
                    f"Branch weight must not be negative, got {path.weight_percent}",
                    step_kind="branch",
                )
        total = sum(p.weight_percent for p in paths)
        if total <= 0:
            raise StepExecutionError("Branch paths all have zero weight", step_kind="branch")
        return total

    @classmethod
    def select(cls, paths: Sequence[BranchPath], draw: float) -> BranchPath:
        """Map a draw in ``[0, total)`` onto a path.

        Paths are scanned in listed order, so among paths sharing a boundary
        the earlier one wins.
        """
        total = cls.total_weight(paths)
        if draw < 0 or draw >= total:
            raise ValueError(f"draw must be in [0, {total}), got {draw}")

        cumulative = 0.0
        chosen = None
        for path in paths:
            if path.weight_percent == 0:
                continue
            cumulative += path.weight_percent
            chosen = path
            if draw < cumulative:
                return path
        # Float rounding can leave the draw a hair above the final sum
        return chosen
