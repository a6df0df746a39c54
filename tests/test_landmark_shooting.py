"""
Tests of plain landmark matching by geodesic shooting.
"""

import numpy as np
import pytest

from jaxcmrep import (
    DimensionError,
    LandmarkMatchingObjective,
    ShootingAlgorithm,
    ShootingOptions,
    check_gradient,
    check_jacobian,
    match_landmarks,
)
from jaxcmrep.landmark_shooting import _pseudo_inverse_solve


@pytest.fixture
def circle_to_ellipse():
    theta = 2.0 * np.pi * np.arange(6) / 6
    q0 = np.stack([np.cos(theta), np.sin(theta)], axis=1)
    qT = np.stack([1.2 * np.cos(theta), 0.9 * np.sin(theta)], axis=1)
    return q0, qT


class TestMatchingObjective:
    def test_gradient(self, circle_to_ellipse, rng):
        q0, qT = circle_to_ellipse
        obj = LandmarkMatchingObjective(q0, qT, ShootingOptions(sigma=0.8, lam=5.0, nt=10))
        x = obj.initial_momentum() + 0.05 * rng.standard_normal(q0.size)

        for probe in check_gradient(obj, x, n_probes=8, rng=rng):
            assert probe.error < 1e-6

    def test_transversality_jacobian(self, circle_to_ellipse, rng):
        q0, qT = circle_to_ellipse
        obj = LandmarkMatchingObjective(q0, qT, ShootingOptions(sigma=0.8, lam=5.0, nt=10))
        x = obj.initial_momentum() + 0.05 * rng.standard_normal(q0.size)

        G, DG, _ = obj.transversality_and_jacobian(x)
        np.testing.assert_allclose(G, obj.transversality(x))
        assert max(check_jacobian(obj.transversality, DG, x, n_probes=6, rng=rng)) < 1e-6

    def test_initial_momentum(self, circle_to_ellipse):
        q0, qT = circle_to_ellipse
        obj = LandmarkMatchingObjective(q0, qT, ShootingOptions(nt=20))
        np.testing.assert_allclose(obj.initial_momentum(), ((qT - q0) / 20).ravel())

    def test_shape_mismatch(self, circle_to_ellipse):
        q0, qT = circle_to_ellipse
        with pytest.raises(DimensionError):
            LandmarkMatchingObjective(q0, qT[:5], ShootingOptions())


class TestPseudoInverse:
    def test_full_rank(self, rng):
        A = rng.standard_normal((4, 4)) + 4.0 * np.eye(4)
        b = rng.standard_normal(4)
        x, rank = _pseudo_inverse_solve(A, b, 1e-10)
        assert rank == 4
        np.testing.assert_allclose(A @ x, b, atol=1e-10)

    def test_truncation(self):
        A = np.diag([3.0, 1e-3])
        x, rank = _pseudo_inverse_solve(A, np.array([3.0, 1.0]), 1e-2)
        assert rank == 1
        np.testing.assert_allclose(x, [1.0, 0.0])


class TestShooting:
    def test_gradient_method(self, circle_to_ellipse):
        q0, qT = circle_to_ellipse
        options = ShootingOptions(sigma=0.8, lam=10.0, nt=20, iterations=500)
        obj = LandmarkMatchingObjective(q0, qT, options)
        f0, _ = obj(obj.initial_momentum())

        result = match_landmarks(q0, qT, options)
        assert result.objective < f0
        assert result.q1.shape == q0.shape
        assert result.objective == pytest.approx(result.hamiltonian + 5.0 * result.distance_sq)

        _, g = obj(result.p0.ravel())
        assert np.abs(g).max() < 1e-2

    def test_allassonniere_reduces_transversality(self, circle_to_ellipse):
        q0, qT = circle_to_ellipse
        options = ShootingOptions(
            sigma=0.8,
            lam=10.0,
            nt=10,
            iterations=25,
            algorithm=ShootingAlgorithm.ALLASSONNIERE,
            newton_step=0.5,
            svd_threshold=1e-8,
        )
        obj = LandmarkMatchingObjective(q0, qT, options)
        G0 = np.linalg.norm(obj.transversality(obj.initial_momentum()))

        result = match_landmarks(q0, qT, options)
        G1 = np.linalg.norm(obj.transversality(result.p0.ravel()))
        assert result.iterations == 25
        assert G1 < 1e-3 * G0
