from __future__ import annotations

from dataclasses import dataclass

from .types import Float, ShootingAlgorithm, Verbosity


@dataclass(frozen=True)
class FitOptions:
    # Geodesic shooting
    nt: int = 40
    sigma: Float = 4.0
    w_kinetic: Float = 0.05

    # Penalty schedule
    mu_init: Float = 0.1
    mu_min: Float = 1e-6
    mu_max: Float = 10.0
    mu_scale: Float = 10.0
    violation_shrink: Float = 0.5

    # Outer loop; None keeps the fixed round count as the only stopping rule
    outer_iterations: int = 10
    constraint_tolerance: Float | None = None

    # Inner solves: a few rounds of conjugate gradient, then L-BFGS
    warmup_iterations: int = 5
    gradient_iter: int = 60000
    tol_inner_ftol: Float = 1e-9
    tol_inner_gtol: Float = 1e-6

    # Image overlap term
    w_dice: Float = 0.0
    n_wedges: int = 5

    # Derivative checks before each inner solve
    check_deriv: bool = False
    check_deriv_probes: int = 16
    check_deriv_eps: Float = 1e-6

    # Verbosity level
    verbose: Verbosity = Verbosity.SILENT

    def __post_init__(self) -> None:
        """Validate option values after initialization."""
        if self.nt <= 0:
            raise ValueError("nt must be positive")
        if self.sigma <= 0:
            raise ValueError("sigma must be positive")
        if self.w_kinetic < 0:
            raise ValueError("w_kinetic must be non-negative")
        if self.mu_init <= 0:
            raise ValueError("mu_init must be positive")
        if not 0 < self.mu_min <= self.mu_max:
            raise ValueError("mu_min must be positive and not greater than mu_max")
        if self.mu_scale < 1:
            raise ValueError("mu_scale must be at least 1")
        if not 0 < self.violation_shrink <= 1:
            raise ValueError("violation_shrink must be in (0, 1]")
        if self.outer_iterations <= 0:
            raise ValueError("outer_iterations must be positive")
        if self.constraint_tolerance is not None and self.constraint_tolerance <= 0:
            raise ValueError("constraint_tolerance must be positive")
        if self.warmup_iterations < 0:
            raise ValueError("warmup_iterations must be non-negative")
        if self.gradient_iter <= 0:
            raise ValueError("gradient_iter must be positive")
        if self.w_dice < 0:
            raise ValueError("w_dice must be non-negative")
        if self.n_wedges <= 0:
            raise ValueError("n_wedges must be positive")
        if self.check_deriv_eps <= 0:
            raise ValueError("check_deriv_eps must be positive")


@dataclass(frozen=True)
class ShootingOptions:
    sigma: Float = 1.0
    lam: Float = 1.0
    nt: int = 100
    iterations: int = 120
    algorithm: ShootingAlgorithm = ShootingAlgorithm.GRADIENT

    # Allassonniere iteration: damped step, singular values below the threshold are dropped
    newton_step: Float = 0.1
    svd_threshold: Float = 1.0

    verbose: Verbosity = Verbosity.SILENT

    def __post_init__(self) -> None:
        """Validate option values after initialization."""
        if self.sigma <= 0:
            raise ValueError("sigma must be positive")
        if self.lam <= 0:
            raise ValueError("lam must be positive")
        if self.nt <= 0:
            raise ValueError("nt must be positive")
        if self.iterations <= 0:
            raise ValueError("iterations must be positive")
        if not 0 < self.newton_step <= 1:
            raise ValueError("newton_step must be in (0, 1]")
        if self.svd_threshold < 0:
            raise ValueError("svd_threshold must be non-negative")
