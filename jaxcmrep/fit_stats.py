"""Fitting statistics for the augmented Lagrangian driver.

Tracks timing, outer/inner iteration counts, the final objective and the
per-round history of constraint violation and penalty.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .types import Float, SolveStatus


@dataclass
class FitStats:
    """Performance statistics of a medial fit.

    Inner solves that stop without converging are counted, not raised.
    """

    # Termination status
    status: SolveStatus = SolveStatus.UNSOLVED

    # Timing information (in milliseconds)
    solve_time: Float = 0.0

    # Iteration counts
    outer_iterations: int = 0
    inner_iterations: int = 0
    evaluations: int = 0
    inner_failures: int = 0

    # Convergence metrics
    objective_value: Float = 0.0
    max_violation: Float = 0.0

    # Per outer round
    violation_history: list[Float] = field(default_factory=list)
    mu_history: list[Float] = field(default_factory=list)

    def reset(self) -> None:
        """Reset all statistics to initial values."""
        self.status = SolveStatus.UNSOLVED
        self.solve_time = 0.0
        self.outer_iterations = 0
        self.inner_iterations = 0
        self.evaluations = 0
        self.inner_failures = 0
        self.objective_value = 0.0
        self.max_violation = 0.0
        self.violation_history = []
        self.mu_history = []

    def is_converged(self) -> bool:
        """Check if the fit reached the requested constraint tolerance."""
        return self.status == SolveStatus.SUCCESS

    def get_solve_time_ms(self) -> Float:
        """Get solve time in milliseconds."""
        return self.solve_time

    def get_final_objective(self) -> Float:
        """Get final objective value."""
        return self.objective_value

    def get_max_violation(self) -> Float:
        """Get final worst-case constraint violation."""
        return self.max_violation
