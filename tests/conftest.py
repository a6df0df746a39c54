"""
Pytest configuration and shared fixtures for the jaxcmrep test suite.

Provides a seeded random generator, small landmark sets and two tiny cm-rep
models: a flat two-triangle model and a closed octahedral bi-layer.
"""

import numpy as np
import pytest

import jaxcmrep  # noqa: F401  (enables 64-bit JAX before any test creates arrays)
from jaxcmrep import CMRep


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Slow tests (full augmented Lagrangian fits)")


# =============================================================================
# Random data
# =============================================================================


@pytest.fixture
def rng():
    """Seeded random generator for reproducible probes and perturbations."""
    return np.random.default_rng(1234)


@pytest.fixture
def landmarks_3d(rng):
    """Five well separated 3D landmarks and a small random momentum."""
    q0 = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [0.8, 0.7, 0.5]]
    )
    p0 = 0.3 * rng.standard_normal(q0.shape)
    return q0, p0


@pytest.fixture
def landmarks_2d(rng):
    """Six points on a circle and a small random momentum."""
    theta = 2.0 * np.pi * np.arange(6) / 6
    q0 = np.stack([np.cos(theta), np.sin(theta)], axis=1)
    p0 = 0.2 * rng.standard_normal(q0.shape)
    return q0, p0


# =============================================================================
# Medial models
# =============================================================================


def make_two_triangle_cmrep(radius: float = 0.5) -> CMRep:
    """Equilateral triangle covered on both sides; every vertex is on the medial edge."""
    theta = np.deg2rad([90.0, 210.0, 330.0])
    bnd = np.stack([np.cos(theta), np.sin(theta), np.zeros(3)], axis=1)
    return CMRep.from_arrays(
        bnd,
        np.array([[0, 1, 2], [0, 2, 1]]),
        np.arange(3),
        bnd.copy(),
        np.full(3, radius),
    )


def make_octahedral_cmrep(scale=(1.0, 1.0, 1.0), offset=(0.0, 0.0, 0.0), edge_radius=0.5) -> CMRep:
    """Octahedron whose poles share the central medial vertex."""
    sx, sy, sz = scale
    bnd = np.array(
        [[sx, 0, 0], [-sx, 0, 0], [0, sy, 0], [0, -sy, 0], [0, 0, sz], [0, 0, -sz]], dtype=float
    )
    bnd += np.asarray(offset, dtype=float)
    triangles = np.array(
        [[0, 2, 4], [2, 1, 4], [1, 3, 4], [3, 0, 4], [2, 0, 5], [1, 2, 5], [3, 1, 5], [0, 3, 5]]
    )
    normals = np.array(
        [[1, 0, 0], [-1, 0, 0], [0, 1, 0], [0, -1, 0], [0, 0, 1], [0, 0, -1]], dtype=float
    )
    radius = np.array(
        [edge_radius * sx, edge_radius * sx, edge_radius * sy, edge_radius * sy, sz, sz]
    )
    return CMRep.from_arrays(bnd, triangles, np.array([0, 1, 2, 3, 4, 4]), normals, radius)


@pytest.fixture
def two_triangle_model():
    return make_two_triangle_cmrep()


@pytest.fixture
def octahedron_model():
    return make_octahedral_cmrep()


@pytest.fixture
def octahedron_target():
    return make_octahedral_cmrep(scale=(1.2, 1.0, 0.9), offset=(0.1, -0.05, 0.0))


def flat_grid_mesh(n: int = 3):
    """n x n grid of vertices in the z = 0 plane, two triangles per cell."""
    xs, ys = np.meshgrid(np.arange(n, dtype=float), np.arange(n, dtype=float))
    vertices = np.stack([xs.ravel(), ys.ravel(), np.zeros(n * n)], axis=1)

    triangles = []
    for i in range(n - 1):
        for j in range(n - 1):
            v00, v01 = i * n + j, i * n + j + 1
            v10, v11 = (i + 1) * n + j, (i + 1) * n + j + 1
            triangles.append([v00, v01, v11])
            triangles.append([v00, v11, v10])
    return vertices, np.array(triangles)


@pytest.fixture
def flat_grid():
    return flat_grid_mesh(3)
