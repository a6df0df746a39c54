"""Interaction kernels for landmark geodesic shooting.

A kernel is a radial function of the squared distance between two landmarks.
The Hamiltonian and its derivatives only need the profile value and its first
two derivatives with respect to the squared distance, so those are what a
kernel provides.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp
from jax import Array

from .exceptions import GeometryError
from .types import ErrorCode, Float, MomentumArray, PositionArray, VelocityArray


# Landmarks closer than this fraction of sigma are treated as coincident
MIN_LANDMARK_SEPARATION = 1e-12


@jax.jit
def _pairwise_differences(q: Array) -> tuple[Array, Array]:
    """Return D[i, j] = q_i - q_j and the squared distances |D[i, j]|^2."""
    D = q[:, None, :] - q[None, :, :]
    return D, jnp.sum(D * D, axis=-1)


@jax.jit
def _gaussian_profile(sq: Array, f: Float) -> tuple[Array, Array, Array]:
    """Gaussian profile exp(f r^2) and its first two derivatives in r^2."""
    g = jnp.exp(f * sq)
    return g, f * g, f * f * g


@dataclass(frozen=True)
class GaussianKernel:
    """Isotropic Gaussian kernel K(x, y) = exp(-|x - y|^2 / (2 sigma^2))."""

    sigma: Float

    def __post_init__(self) -> None:
        if self.sigma <= 0:
            raise ValueError("sigma must be positive")

    @property
    def f(self) -> Float:
        return -0.5 / (self.sigma * self.sigma)

    def profile(self, sq: Array) -> tuple[Array, Array, Array]:
        """Kernel value and its first two derivatives with respect to squared distance."""
        return _gaussian_profile(sq, self.f)

    def evaluate(self, xi: Array, xj: Array) -> Float:
        d = jnp.asarray(xi) - jnp.asarray(xj)
        return float(jnp.exp(self.f * jnp.dot(d, d)))

    def matrix(self, q: PositionArray) -> Array:
        """Kernel matrix G[i, j] = K(q_i, q_j)."""
        _, sq = _pairwise_differences(q)
        g, _, _ = self.profile(sq)
        return g

    def apply_to_momentum(self, q: PositionArray, p: MomentumArray) -> VelocityArray:
        """Velocity v_i = sum_j K(q_i, q_j) p_j."""
        return self.matrix(q) @ p

    def hamiltonian(self, q: PositionArray, p: MomentumArray) -> Float:
        """Kinetic energy 1/2 sum_ij K(q_i, q_j) p_i . p_j."""
        return 0.5 * jnp.sum(self.matrix(q) * (p @ p.T))

    def check_positive_definite(self, q: PositionArray) -> None:
        """Raise GeometryError if two landmarks coincide.

        The Gaussian kernel matrix of distinct points is positive definite, so
        only duplicated landmarks make it singular. Ill-conditioning from a wide
        kernel is accepted since the flow only multiplies by the matrix.
        """
        k = q.shape[0]
        if k < 2:
            return

        # Coincident landmarks make two rows of the kernel matrix identical
        _, sq = _pairwise_differences(q)
        sq_off = jnp.where(jnp.eye(k, dtype=bool), jnp.inf, sq)
        if float(jnp.min(sq_off)) <= (MIN_LANDMARK_SEPARATION * self.sigma) ** 2:
            i, j = divmod(int(jnp.argmin(sq_off)), k)
            raise GeometryError(
                f"Landmarks {i} and {j} coincide; kernel matrix is singular",
                ErrorCode.KERNEL_NOT_POSITIVE_DEFINITE,
            )
