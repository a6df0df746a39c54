"""Hamiltonian geodesic shooting of landmark sets.

Forward flow, reverse (adjoint) flow and the optional forward propagation of
the flow Jacobian with respect to the initial momentum. The kinetic energy is

    H(q, p) = 1/2 sum_ij K(|q_i - q_j|^2) p_i . p_j

and a path is integrated with explicit Euler steps q += dt Hp, p -= dt Hq over
nt steps of size dt = 1 / nt. The adjoint pass applies the transpose of each
step Jacobian in closed form, using the kernel profile derivatives; the
Jacobian mode obtains the step Jacobians with jax.jacobian.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import jax
import jax.numpy as jnp
from jax import Array

from .exceptions import DimensionError, GeometryError
from .kernel import GaussianKernel, _pairwise_differences
from .types import ErrorCode, Float, GradientArray, MomentumArray, PositionArray


@partial(jax.jit, static_argnames=("kernel",))
def _hamiltonian_jet(
    q: Array, p: Array, kernel: GaussianKernel
) -> tuple[Array, Array, Array]:
    """Hamiltonian and its partial derivatives Hp = dH/dp, Hq = dH/dq."""
    D, sq = _pairwise_differences(q)
    g, g1, _ = kernel.profile(sq)
    P = p @ p.T

    H = 0.5 * jnp.sum(g * P)
    Hp = g @ p
    Hq = 2.0 * jnp.einsum("ij,ijd->id", g1 * P, D)
    return H, Hp, Hq


@partial(jax.jit, static_argnames=("kernel",))
def _flow_step(q: Array, p: Array, dt: Float, kernel: GaussianKernel) -> tuple[Array, Array]:
    """Single explicit Euler step of the Hamiltonian equations."""
    _, Hp, Hq = _hamiltonian_jet(q, p, kernel)
    return q + dt * Hp, p - dt * Hq


@partial(jax.jit, static_argnames=("kernel",))
def _flow_step_jacobian(q: Array, p: Array, dt: Float, kernel: GaussianKernel):
    """Jacobian blocks ((dq'/dq, dq'/dp), (dp'/dq, dp'/dp)) of one flow step."""
    return jax.jacobian(lambda q_, p_: _flow_step(q_, p_, dt, kernel), argnums=(0, 1))(q, p)


@partial(jax.jit, static_argnames=("kernel",))
def _adjoint_step(
    q: Array, p: Array, alpha: Array, beta: Array, dt: Float, kernel: GaussianKernel
) -> tuple[Array, Array]:
    """Pull (dL/dq', dL/dp') back through the step taken at (q, p).

    alpha_prev = alpha + dt (dHp/dq)' alpha - dt (dHq/dq)' beta
    beta_prev  = beta  + dt (dHp/dp)' alpha - dt (dHq/dp)' beta
    """
    D, sq = _pairwise_differences(q)
    g, g1, g2 = kernel.profile(sq)
    P = p @ p.T

    # Transpose of the velocity term Hp_i = sum_j g_ij p_j
    ap = alpha @ p.T
    dHp_dq = jnp.einsum("kj,kjd->kd", 2.0 * g1 * (ap + ap.T), D)
    dHp_dp = g @ alpha

    # Transpose of the force term Hq_i = sum_j 2 g1_ij P_ij D_ij
    db = beta[:, None, :] - beta[None, :, :]
    Bd = jnp.sum(db * D, axis=-1)
    dHq_dp = (2.0 * g1 * Bd) @ p
    dHq_dq = jnp.einsum("kj,kjd->kd", 4.0 * g2 * P * Bd, D) + jnp.einsum(
        "kj,kjd->kd", 2.0 * g1 * P, db
    )

    return alpha + dt * (dHp_dq - dHq_dq), beta + dt * (dHp_dp - dHq_dp)


@dataclass
class Trajectory:
    """Positions and momenta at time steps 0..nt of one forward flow."""

    q: Array  # (nt + 1, k, d)
    p: Array  # (nt + 1, k, d)
    hamiltonian: Float

    @property
    def num_steps(self) -> int:
        return self.q.shape[0] - 1

    @property
    def q1(self) -> PositionArray:
        return self.q[-1]

    @property
    def p1(self) -> MomentumArray:
        return self.p[-1]

    def get_qt(self, t: int) -> PositionArray:
        return self.q[t]

    def get_pt(self, t: int) -> MomentumArray:
        return self.p[t]


@dataclass
class FlowJacobian:
    """Jacobians of the terminal state with respect to the initial momentum.

    Stored as (k d, k d) matrices in row-major point layout, i.e. entry
    [i * d + a, j * d + b] is d q1[i, a] / d p0[j, b].
    """

    dq: Array
    dp: Array
    num_points: int
    dim: int

    def _blocks(self, M: Array) -> Array:
        k, d = self.num_points, self.dim
        return M.reshape(k, d, k, d).transpose(1, 3, 0, 2)

    @property
    def q_blocks(self) -> Array:
        """(d, d, k, k) array; block [a, b] holds d q1[:, a] / d p0[:, b]."""
        return self._blocks(self.dq)

    @property
    def p_blocks(self) -> Array:
        """(d, d, k, k) array; block [a, b] holds d p1[:, a] / d p0[:, b]."""
        return self._blocks(self.dp)


class HamiltonianSystem:
    """Geodesic shooting of a fixed landmark set under a Gaussian kernel."""

    def __init__(self, q0: PositionArray, sigma: Float | GaussianKernel, nt: int):
        """Create the system and validate the template landmarks.

        Args:
            q0: Template landmarks (k, d), d in {2, 3}
            sigma: Kernel bandwidth or a kernel instance
            nt: Number of time steps; the flow has nt + 1 states

        Raises:
            DimensionError: q0 is not a (k, 2) or (k, 3) array
            GeometryError: the kernel matrix at q0 is not positive definite
        """
        q0 = jnp.asarray(q0, dtype=jnp.float64)
        if q0.ndim != 2 or q0.shape[1] not in (2, 3):
            raise DimensionError(f"Landmarks must have shape (k, 2) or (k, 3), got {q0.shape}")
        if nt <= 0:
            raise ValueError("nt must be positive")

        self.kernel = sigma if isinstance(sigma, GaussianKernel) else GaussianKernel(float(sigma))
        self.q0 = q0
        self.k, self.dim = q0.shape
        self.nt = nt
        self.dt = 1.0 / nt

        self.kernel.check_positive_definite(q0)

    def _check_momentum(self, p: Array, name: str = "momentum") -> Array:
        p = jnp.asarray(p, dtype=jnp.float64)
        if p.shape != self.q0.shape:
            raise DimensionError(
                f"Shape of {name} {p.shape} does not match landmarks {self.q0.shape}"
            )
        return p

    def compute_hamiltonian_jet(
        self, q: PositionArray, p: MomentumArray
    ) -> tuple[Float, GradientArray, GradientArray]:
        H, Hp, Hq = _hamiltonian_jet(q, p, self.kernel)
        return float(H), Hp, Hq

    def kinetic_energy_gradient(self, p0: MomentumArray) -> GradientArray:
        """Gradient of the kinetic energy H(q0, p0) with respect to p0."""
        return self.kernel.apply_to_momentum(self.q0, self._check_momentum(p0))

    def flow_hamiltonian(self, p0: MomentumArray) -> Trajectory:
        """Integrate the flow from (q0, p0) and keep every state for the adjoint pass."""
        p = self._check_momentum(p0)
        q = self.q0
        H0, _, _ = self.compute_hamiltonian_jet(q, p)

        qs, ps = [q], [p]
        for _ in range(self.nt):
            q, p = _flow_step(q, p, self.dt, self.kernel)
            qs.append(q)
            ps.append(p)

        self._check_finite(q, p)
        return Trajectory(jnp.stack(qs), jnp.stack(ps), H0)

    def flow_hamiltonian_with_gradient(self, p0: MomentumArray) -> tuple[Trajectory, FlowJacobian]:
        """Forward flow that also propagates d(q, p)/dp0 through every step.

        This costs O((k d)^2) memory and O((k d)^3) time per step and is only
        needed by Newton-type (transversality) iterations.
        """
        p = self._check_momentum(p0)
        q = self.q0
        H0, _, _ = self.compute_hamiltonian_jet(q, p)

        n = self.k * self.dim
        Jq = jnp.zeros((n, n))
        Jp = jnp.eye(n)

        qs, ps = [q], [p]
        for _ in range(self.nt):
            (Aqq, Aqp), (Apq, App) = _flow_step_jacobian(q, p, self.dt, self.kernel)
            Aqq, Aqp, Apq, App = (A.reshape(n, n) for A in (Aqq, Aqp, Apq, App))
            Jq, Jp = Aqq @ Jq + Aqp @ Jp, Apq @ Jq + App @ Jp

            q, p = _flow_step(q, p, self.dt, self.kernel)
            qs.append(q)
            ps.append(p)

        self._check_finite(q, p)
        jac = FlowJacobian(Jq, Jp, self.k, self.dim)
        return Trajectory(jnp.stack(qs), jnp.stack(ps), H0), jac

    def flow_gradient_backward(
        self,
        trajectory: Trajectory,
        alpha: GradientArray,
        beta: GradientArray | None = None,
    ) -> GradientArray:
        """Gradient with respect to p0 of a loss L(q1, p1).

        Args:
            trajectory: Result of flow_hamiltonian for the same p0
            alpha: dL/dq1, shape (k, d)
            beta: dL/dp1, shape (k, d); zero if omitted

        Returns:
            dL/dp0, shape (k, d)
        """
        if trajectory.num_steps != self.nt:
            raise DimensionError(
                f"Trajectory has {trajectory.num_steps} steps, system expects {self.nt}"
            )
        alpha = self._check_momentum(alpha, "alpha")
        beta = jnp.zeros_like(alpha) if beta is None else self._check_momentum(beta, "beta")

        for t in range(self.nt - 1, -1, -1):
            alpha, beta = _adjoint_step(
                trajectory.q[t], trajectory.p[t], alpha, beta, self.dt, self.kernel
            )

        return beta

    def _check_finite(self, q: Array, p: Array) -> None:
        if not bool(jnp.all(jnp.isfinite(q)) & jnp.all(jnp.isfinite(p))):
            raise GeometryError(
                "Hamiltonian flow produced non-finite landmarks or momenta",
                ErrorCode.NON_FINITE_FLOW,
            )
