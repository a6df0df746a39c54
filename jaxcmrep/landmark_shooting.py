"""Plain landmark matching by geodesic shooting.

Finds the initial momentum p0 that carries the template landmarks q0 close to
the target landmarks qT by minimizing

    E(p0) = H(q0, p0) + lam / 2 |q1 - qT|^2

either with a quasi-Newton method on the adjoint gradient, or with the
Allassonniere transversality iteration, a damped Newton iteration on
G(p0) = p1 + lam (q1 - qT), which vanishes at the minimizer.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
import scipy.optimize as opt

from .derivative_check import check_jacobian
from .exceptions import DimensionError
from .fit_options import ShootingOptions
from .hamiltonian import HamiltonianSystem
from .types import Float, FlatVector, ShootingAlgorithm, Verbosity


@dataclass
class ShootingResult:
    p0: np.ndarray
    q1: np.ndarray
    hamiltonian: Float
    distance_sq: Float
    objective: Float
    iterations: int
    message: str = ""


class LandmarkMatchingObjective:
    """E(p0) = H + lam / 2 |q1 - qT|^2 over flattened momenta."""

    def __init__(self, q0, qT, options: ShootingOptions):
        q0 = jnp.asarray(q0, dtype=jnp.float64)
        qT = jnp.asarray(qT, dtype=jnp.float64)
        if q0.shape != qT.shape:
            raise DimensionError(f"Template {q0.shape} and target {qT.shape} landmarks don't match")

        self.opts = options
        self.system = HamiltonianSystem(q0, options.sigma, options.nt)
        self.q0, self.qT = q0, qT
        self.shape = q0.shape

    def initial_momentum(self) -> FlatVector:
        return np.asarray((self.qT - self.q0) / self.opts.nt).ravel()

    def compute(self, x: FlatVector) -> tuple[Float, FlatVector]:
        p0 = jnp.asarray(np.asarray(x, dtype=np.float64).reshape(self.shape))
        traj = self.system.flow_hamiltonian(p0)

        alpha = traj.q1 - self.qT
        f = traj.hamiltonian + 0.5 * self.opts.lam * float(jnp.sum(alpha * alpha))

        grad = self.opts.lam * self.system.flow_gradient_backward(traj, alpha)
        grad = grad + self.system.kinetic_energy_gradient(p0)
        return f, np.asarray(grad).ravel()

    def __call__(self, x: FlatVector) -> tuple[Float, FlatVector]:
        return self.compute(x)

    def transversality(self, x: FlatVector) -> FlatVector:
        """G(p0) = p1 + lam (q1 - qT), flattened."""
        p0 = jnp.asarray(np.asarray(x, dtype=np.float64).reshape(self.shape))
        traj = self.system.flow_hamiltonian(p0)
        return np.asarray(traj.p1 + self.opts.lam * (traj.q1 - self.qT)).ravel()

    def transversality_and_jacobian(self, x: FlatVector):
        """G and its Jacobian DG = dp1/dp0 + lam dq1/dp0.

        Returns:
            G, DG, the trajectory of the flow
        """
        p0 = jnp.asarray(np.asarray(x, dtype=np.float64).reshape(self.shape))
        traj, jac = self.system.flow_hamiltonian_with_gradient(p0)
        G = traj.p1 + self.opts.lam * (traj.q1 - self.qT)
        DG = jac.dp + self.opts.lam * jac.dq
        return np.asarray(G).ravel(), np.asarray(DG), traj

    def _result(self, x: FlatVector, iterations: int, message: str) -> ShootingResult:
        p0 = jnp.asarray(np.asarray(x).reshape(self.shape))
        traj = self.system.flow_hamiltonian(p0)
        dsq = float(jnp.sum((traj.q1 - self.qT) ** 2))
        return ShootingResult(
            p0=np.asarray(p0),
            q1=np.asarray(traj.q1),
            hamiltonian=traj.hamiltonian,
            distance_sq=dsq,
            objective=traj.hamiltonian + 0.5 * self.opts.lam * dsq,
            iterations=iterations,
            message=message,
        )


def _pseudo_inverse_solve(DG: np.ndarray, G: np.ndarray, threshold: Float) -> tuple[FlatVector, int]:
    """Solve DG d = G, dropping singular values below the threshold."""
    U, s, Vt = np.linalg.svd(DG)
    keep = s >= threshold
    s_inv = np.where(keep, 1.0 / np.where(keep, s, 1.0), 0.0)
    return Vt.T @ (s_inv * (U.T @ G)), int(keep.sum())


def minimize_gradient(q0, qT, options: ShootingOptions) -> ShootingResult:
    """Minimize E with L-BFGS on the adjoint gradient."""
    objective = LandmarkMatchingObjective(q0, qT, options)

    callback = None
    if options.verbose != Verbosity.SILENT:

        def callback(xk: np.ndarray) -> None:
            f, g = objective(xk)
            print(f"  E = {f:12.8f}   |g| = {np.linalg.norm(g):12.8f}")

    result = opt.minimize(
        objective,
        objective.initial_momentum(),
        jac=True,
        method="L-BFGS-B",
        callback=callback,
        options={"maxfun": options.iterations, "ftol": 1e-9, "gtol": 1e-6},
    )
    return objective._result(result.x, int(result.nit), str(result.message))


def minimize_allassonniere(q0, qT, options: ShootingOptions, x0: FlatVector | None = None) -> ShootingResult:
    """Damped Newton iteration on the transversality condition G(p0) = 0."""
    objective = LandmarkMatchingObjective(q0, qT, options)
    x = objective.initial_momentum() if x0 is None else np.asarray(x0, dtype=np.float64).copy()
    lam = options.lam

    for iteration in range(options.iterations):
        G, DG, traj = objective.transversality_and_jacobian(x)

        if options.verbose == Verbosity.DERIVATIVES:
            check_jacobian(objective.transversality, DG, x, verbose=True)

        step, rank = _pseudo_inverse_solve(DG, G, options.svd_threshold)

        if options.verbose != Verbosity.SILENT:
            dsq = float(jnp.sum((traj.q1 - objective.qT) ** 2))
            H = traj.hamiltonian
            print(
                f"Iter {iteration:4d}   H={H:8.6f}   l*Dsq={lam * dsq:8.6f}   "
                f"E={H + 0.5 * lam * dsq:8.6f}   |G|={np.linalg.norm(G):8.6f}   rank={rank}"
            )

        x = x - options.newton_step * step

    return objective._result(x, options.iterations, "Allassonniere iterations completed")


def match_landmarks(q0, qT, options: ShootingOptions | None = None) -> ShootingResult:
    """Geodesic shooting from q0 to qT with the configured algorithm."""
    options = options if options is not None else ShootingOptions()
    if options.algorithm == ShootingAlgorithm.ALLASSONNIERE:
        return minimize_allassonniere(q0, qT, options)
    return minimize_gradient(q0, qT, options)
