"""Method-of-multipliers driver for constrained medial fitting.

Each outer round runs an optional derivative check, a short conjugate gradient
warm-up, and an L-BFGS inner solve of the augmented Lagrangian at fixed
multipliers and penalty. The multipliers are then updated, and the penalty is
increased when the worst constraint violation did not shrink enough.
"""

from __future__ import annotations

import time
from typing import Protocol

import numpy as np
import scipy.optimize as opt

from .augmented_lagrangian import AugmentedLagrangianObjective
from .cmrep import CMRep
from .derivative_check import check_gradient
from .dice import ImageFunction
from .exceptions import InitializationError, _cmrep_throw
from .fit_options import FitOptions
from .fit_stats import FitStats
from .fitting_scheme import PointBasedMedialFitting
from .types import ErrorCode, ExportCallback, Float, FlatVector, SolveStatus, Verbosity


class ConstrainedObjective(Protocol):
    """What the driver needs from an augmented Lagrangian objective."""

    @property
    def mu(self) -> Float: ...

    def get_xinit(self) -> FlatVector: ...

    def compute(self, x: FlatVector, need_gradient: bool = True) -> tuple[Float, FlatVector | None]: ...

    def constraint_values(self) -> FlatVector: ...

    def update_multipliers(self) -> None: ...

    def set_penalty(self, mu: Float, allow_decrease: bool = False) -> None: ...


class ObjectiveFunctionWrapper:
    """Callbacks for scipy.optimize bound to one objective instance.

    Solvers that ask for the value and the gradient in separate calls at the
    same point reuse the last evaluation.
    """

    def __init__(self, objective: ConstrainedObjective):
        self.objective = objective
        self.evaluations = 0
        self._x: FlatVector | None = None
        self._f: Float = 0.0
        self._g: FlatVector | None = None

    def invalidate(self) -> None:
        """Forget the cached point; needed whenever lambda or mu change."""
        self._x = None

    def _evaluate(self, x: FlatVector) -> tuple[Float, FlatVector]:
        if self._x is None or not np.array_equal(x, self._x):
            self._f, self._g = self.objective.compute(x)
            self._x = np.array(x, dtype=np.float64, copy=True)
            self.evaluations += 1
        return self._f, self._g

    def __call__(self, x: FlatVector) -> tuple[Float, FlatVector]:
        return self._evaluate(x)

    def fun(self, x: FlatVector) -> Float:
        return self._evaluate(x)[0]

    def jac(self, x: FlatVector) -> FlatVector:
        return self._evaluate(x)[1]


class MedialFitSolver:
    """Outer augmented Lagrangian loop around scipy's unconstrained solvers."""

    def __init__(
        self,
        objective: ConstrainedObjective,
        options: FitOptions | None = None,
        rng: np.random.Generator | None = None,
    ):
        """Create the driver.

        Args:
            objective: Objective holding the multipliers and the penalty
            options: Fitting options; defaults are used when omitted
            rng: Random generator for the derivative checks
        """
        self.objective = objective
        self.opts = options if options is not None else FitOptions()
        self.stats = FitStats()
        self.wrapper = ObjectiveFunctionWrapper(objective)
        self.rng = rng if rng is not None else np.random.default_rng()

        self.x: FlatVector | None = None
        self._export_callback: ExportCallback | None = None

    def set_options(self, opts: FitOptions) -> None:
        self.opts = opts

    def get_options(self) -> FitOptions:
        return self.opts

    def set_export_callback(self, callback: ExportCallback) -> None:
        """Call callback(round, objective) at the end of every outer round."""
        self._export_callback = callback

    def initialize_penalty(self, x0: FlatVector) -> Float:
        """Initial penalty mu0 = 2 |f(x0)| / |C(x0)|^2, clamped to [mu_min, mu_max].

        Returns:
            The penalty that was set on the objective
        """
        f, _ = self.wrapper(x0)
        if not np.isfinite(f):
            _cmrep_throw(f"Objective value {f} at the initial point", ErrorCode.NON_FINITE_FLOW)
        C = self.objective.constraint_values()
        ssq = float(C @ C)

        if ssq > 0:
            mu = min(self.opts.mu_max, max(self.opts.mu_min, 2.0 * abs(f) / ssq))
        else:
            mu = self.opts.mu_max

        self.objective.set_penalty(mu, allow_decrease=True)
        self.wrapper.invalidate()
        return mu

    def _verbose(self, level: Verbosity = Verbosity.OUTER) -> bool:
        order = [Verbosity.SILENT, Verbosity.OUTER, Verbosity.INNER, Verbosity.DERIVATIVES]
        return order.index(self.opts.verbose) >= order.index(level)

    def _inner_solve(self, x: FlatVector) -> tuple[FlatVector, bool]:
        opts = self.opts

        # A few conjugate gradient steps before the quasi-Newton solve
        if opts.warmup_iterations > 0:
            res = opt.minimize(
                self.wrapper.fun,
                x,
                jac=self.wrapper.jac,
                method="CG",
                options={"maxiter": opts.warmup_iterations, "gtol": opts.tol_inner_gtol},
            )
            x = res.x
            self.stats.inner_iterations += int(res.nit)

        res = opt.minimize(
            self.wrapper,
            x,
            jac=True,
            method="L-BFGS-B",
            options={
                "maxfun": opts.gradient_iter,
                "maxiter": opts.gradient_iter,
                "ftol": opts.tol_inner_ftol,
                "gtol": opts.tol_inner_gtol,
            },
        )
        self.stats.inner_iterations += int(res.nit)

        if self._verbose():
            print(f"L-BFGS: {res.message}")
        return res.x, bool(res.success)

    def solve(self, x0: FlatVector | None = None) -> SolveStatus:
        """Run the outer loop from x0 (the objective's initial point if omitted)."""
        opts = self.opts
        x = np.asarray(self.objective.get_xinit() if x0 is None else x0, dtype=np.float64).copy()

        self.stats.reset()
        self.wrapper.evaluations = 0
        self.wrapper.invalidate()
        start_time = time.time()

        mu = self.initialize_penalty(x)
        ICM = np.inf
        inner_ok = True

        if self._verbose():
            print("STARTING AUGMENTED LAGRANGIAN FIT....")
            print(f"  Initial mu: {mu}")

        for it in range(opts.outer_iterations):
            if opts.check_deriv:
                if self._verbose():
                    print(f"******* ANALYTIC GRADIENT TEST (ITER {it}) *******")
                check_gradient(
                    self.wrapper,
                    x,
                    n_probes=opts.check_deriv_probes,
                    eps=opts.check_deriv_eps,
                    rng=self.rng,
                    verbose=self._verbose(),
                )

            x, inner_ok = self._inner_solve(x)
            if not inner_ok:
                self.stats.inner_failures += 1

            if self._verbose():
                print(f"*** End of inner iteration loop {it} ***")

            # Constraints at the inner solution, then multipliers, then the
            # penalty from the violation at the new point
            self.wrapper(x)
            self.objective.update_multipliers()
            self.wrapper.invalidate()
            f, _ = self.wrapper(x)
            newICM = float(np.abs(self.objective.constraint_values()).max(initial=0.0))

            if self._verbose():
                print(f"Constraint max-norm [before] : {ICM:12.4f}  [after]: {newICM:12.4f}")

            if newICM > opts.violation_shrink * ICM:
                mu *= opts.mu_scale
                self.objective.set_penalty(mu)
                self.wrapper.invalidate()
            ICM = newICM

            self.stats.outer_iterations = it + 1
            self.stats.violation_history.append(newICM)
            self.stats.mu_history.append(self.objective.mu)
            self.stats.objective_value = f
            self.stats.max_violation = newICM

            if self._export_callback is not None:
                self._export_callback(it, self.objective)

            if opts.constraint_tolerance is not None and newICM <= opts.constraint_tolerance:
                self.stats.status = SolveStatus.SUCCESS
                break

        if self.stats.status != SolveStatus.SUCCESS:
            if opts.constraint_tolerance is not None:
                self.stats.status = SolveStatus.MAX_ITERATIONS
            elif not inner_ok:
                self.stats.status = SolveStatus.INNER_NOT_CONVERGED
            else:
                self.stats.status = SolveStatus.SUCCESS

        self.x = x
        self.stats.evaluations = self.wrapper.evaluations
        self.stats.solve_time = (time.time() - start_time) * 1000

        if self._verbose():
            print("AUGMENTED LAGRANGIAN FIT FINISHED!")
        return self.stats.status

    def get_solution(self) -> FlatVector:
        if self.x is None:
            raise InitializationError("No solution available before solve()")
        return self.x.copy()

    def get_status(self) -> SolveStatus:
        return self.stats.status

    def get_outer_iterations(self) -> int:
        return self.stats.outer_iterations

    def get_solve_time_ms(self) -> Float:
        return self.stats.solve_time

    def get_final_objective(self) -> Float:
        return self.stats.objective_value

    def get_max_violation(self) -> Float:
        return self.stats.max_violation


def fit_medial_model(
    model: CMRep,
    target: CMRep,
    options: FitOptions | None = None,
    image: ImageFunction | None = None,
    export_callback: ExportCallback | None = None,
) -> tuple[MedialFitSolver, AugmentedLagrangianObjective]:
    """Fit a cm-rep template to a target with the point-based medial scheme.

    Returns:
        The finished solver and the objective, which holds the last trajectory
        and the multipliers
    """
    options = options if options is not None else FitOptions()
    objective = AugmentedLagrangianObjective(PointBasedMedialFitting(model, target), options, image)
    solver = MedialFitSolver(objective, options)
    if export_callback is not None:
        solver.set_export_callback(export_callback)
    solver.solve()
    return solver, objective
