"""
Unit tests for the Gaussian kernel.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jaxcmrep import ErrorCode, GaussianKernel, GeometryError, HamiltonianSystem
from jaxcmrep.hamiltonian import _hamiltonian_jet


class TestGaussianKernel:
    """Kernel values, matrices and degeneracy checks."""

    def test_invalid_sigma(self):
        """Non-positive bandwidths are rejected."""
        with pytest.raises(ValueError):
            GaussianKernel(0.0)
        with pytest.raises(ValueError):
            GaussianKernel(-1.0)

    def test_evaluate(self):
        """K(x, y) = exp(-|x - y|^2 / (2 sigma^2))."""
        kernel = GaussianKernel(2.0)
        x, y = np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 1.0])
        assert kernel.evaluate(x, y) == pytest.approx(np.exp(-3.0 / 8.0))
        assert kernel.evaluate(x, x) == pytest.approx(1.0)

    def test_profile_derivatives(self):
        """Profile derivatives are taken with respect to the squared distance."""
        kernel = GaussianKernel(0.7)
        sq = jnp.array([0.0, 0.3, 2.0])
        g, g1, g2 = kernel.profile(sq)

        dg = jax.vmap(jax.grad(lambda s: kernel.profile(s)[0]))(sq)
        d2g = jax.vmap(jax.grad(jax.grad(lambda s: kernel.profile(s)[0])))(sq)
        np.testing.assert_allclose(g1, dg, rtol=1e-12)
        np.testing.assert_allclose(g2, d2g, rtol=1e-12)

    def test_matrix_symmetric_unit_diagonal(self, landmarks_3d):
        """Kernel matrix is symmetric with ones on the diagonal."""
        q0, _ = landmarks_3d
        G = np.asarray(GaussianKernel(1.0).matrix(jnp.asarray(q0)))
        np.testing.assert_allclose(G, G.T)
        np.testing.assert_allclose(np.diag(G), 1.0)

    def test_hamiltonian_matches_jet(self, landmarks_3d):
        """Kinetic energy and its partials agree with automatic differentiation."""
        q0, p0 = (jnp.asarray(a) for a in landmarks_3d)
        kernel = GaussianKernel(0.8)

        H, Hp, Hq = _hamiltonian_jet(q0, p0, kernel)
        assert float(H) == pytest.approx(float(kernel.hamiltonian(q0, p0)))
        np.testing.assert_allclose(Hp, jax.grad(kernel.hamiltonian, argnums=1)(q0, p0), atol=1e-12)
        np.testing.assert_allclose(Hq, jax.grad(kernel.hamiltonian, argnums=0)(q0, p0), atol=1e-12)

    def test_apply_to_momentum(self, landmarks_3d):
        q0, p0 = (jnp.asarray(a) for a in landmarks_3d)
        kernel = GaussianKernel(1.0)
        np.testing.assert_allclose(kernel.apply_to_momentum(q0, p0), kernel.matrix(q0) @ p0)

    def test_coincident_landmarks_rejected(self):
        """Duplicated landmarks make the kernel matrix singular."""
        q = jnp.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        with pytest.raises(GeometryError) as excinfo:
            GaussianKernel(1.0).check_positive_definite(q)
        assert excinfo.value.error_code == ErrorCode.KERNEL_NOT_POSITIVE_DEFINITE

    def test_wide_kernel_over_dense_grid_accepted(self):
        """An ill-conditioned but non-degenerate kernel matrix is allowed."""
        xs, ys = np.meshgrid(np.arange(10.0), np.arange(10.0))
        vertices = np.stack([xs.ravel(), ys.ravel(), np.zeros(100)], axis=1)
        GaussianKernel(4.0).check_positive_definite(jnp.asarray(vertices))

        system = HamiltonianSystem(vertices, 4.0, 10)
        traj = system.flow_hamiltonian(jnp.full(vertices.shape, 0.01))
        assert bool(jnp.all(jnp.isfinite(traj.q1)))

    def test_well_separated_landmarks_accepted(self, landmarks_3d):
        q0, _ = landmarks_3d
        GaussianKernel(1.0).check_positive_definite(jnp.asarray(q0))
