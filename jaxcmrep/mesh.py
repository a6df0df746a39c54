"""Triangle mesh utilities for the boundary surface of a cm-rep.

One-ring traversal, Loop subdivision tangent weights and triangle areas with
their gradients.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp
import numpy as np
import scipy.sparse as sp
from jax import Array

from .exceptions import DimensionError, GeometryError
from .types import ErrorCode


# Triangles with a smaller area cannot provide a normal direction
MIN_TRIANGLE_AREA = 1e-14


@dataclass(frozen=True)
class OneRing:
    """Neighbours of a vertex ordered counter-clockwise around it.

    For a vertex on the mesh boundary the ring is open: it starts and ends at
    the two boundary neighbours.
    """

    vertex: int
    neighbors: np.ndarray
    is_boundary: bool

    @property
    def valence(self) -> int:
        return int(self.neighbors.size)


def _check_triangles(triangles, nv: int) -> np.ndarray:
    triangles = np.asarray(triangles, dtype=np.int64)
    if triangles.ndim != 2 or triangles.shape[1] != 3:
        raise DimensionError(f"Triangles must have shape (m, 3), got {triangles.shape}")
    if triangles.size and (triangles.min() < 0 or triangles.max() >= nv):
        raise DimensionError(
            f"Triangle vertex indices out of range [0, {nv})", ErrorCode.BAD_INDEX
        )
    return triangles


def vertex_one_rings(triangles, nv: int) -> list[OneRing]:
    """Walk the one-ring of every vertex.

    Each triangle (v, a, b), rotated so that v comes first, contributes the
    directed edge a -> b opposite v. Chaining these edges orders the ring.

    Raises:
        GeometryError: a vertex has no triangles or its ring is not a single
            disc or fan
    """
    triangles = _check_triangles(triangles, nv)

    edges: list[dict[int, int]] = [{} for _ in range(nv)]
    for tri in triangles:
        for r in range(3):
            v, a, b = tri[r], tri[(r + 1) % 3], tri[(r + 2) % 3]
            if a in edges[v]:
                raise GeometryError(
                    f"Edge ({v}, {a}) is shared by two triangles with the same orientation",
                    ErrorCode.NON_MANIFOLD_MESH,
                )
            edges[v][int(a)] = int(b)

    rings = []
    for v, nxt in enumerate(edges):
        if not nxt:
            raise GeometryError(f"Vertex {v} belongs to no triangle", ErrorCode.NON_MANIFOLD_MESH)

        starts = set(nxt) - set(nxt.values())
        if len(starts) > 1:
            raise GeometryError(
                f"One-ring of vertex {v} has {len(starts)} boundary gaps",
                ErrorCode.NON_MANIFOLD_MESH,
            )
        is_boundary = len(starts) == 1
        current = starts.pop() if is_boundary else min(nxt)

        ring = [current]
        while current in nxt and len(ring) <= len(nxt):
            current = nxt[current]
            if current == ring[0]:
                break
            ring.append(current)

        # An open ring has one more vertex than edges, a closed one the same number
        if len(ring) != len(nxt) + int(is_boundary):
            raise GeometryError(
                f"One-ring of vertex {v} is not connected", ErrorCode.NON_MANIFOLD_MESH
            )
        rings.append(OneRing(v, np.asarray(ring, dtype=np.int64), is_boundary))

    return rings


def _interior_weights(n: int) -> tuple[np.ndarray, np.ndarray]:
    theta = 2.0 * np.pi * np.arange(n) / n
    return np.cos(theta), np.sin(theta)


def _boundary_weights(n: int) -> tuple[tuple[float, np.ndarray], tuple[float, np.ndarray]]:
    """(own, neighbour) weights of the along and across tangents at a boundary vertex."""
    along = np.zeros(n)
    along[0], along[-1] = 1.0, -1.0

    across = np.zeros(n)
    if n == 2:
        across[:] = 1.0
        own = -2.0
    elif n == 3:
        across[1] = 1.0
        own = -1.0
    else:
        theta = np.pi / (n - 1)
        across[0] = across[-1] = np.sin(theta)
        across[1:-1] = (2.0 * np.cos(theta) - 2.0) * np.sin(np.arange(1, n - 1) * theta)
        own = 0.0

    return (0.0, along), (own, across)


def loop_tangent_weights(triangles, nv: int) -> tuple[sp.csr_matrix, sp.csr_matrix]:
    """Sparse matrices W_u, W_v with (W_a @ X)[i] a tangent vector of the surface at X[i].

    Interior vertices use the Loop limit-surface tangents
    sum_k cos(2 pi k / n) Q_k and sum_k sin(2 pi k / n) Q_k over the ordered
    one-ring. Boundary vertices use the tangent along the boundary curve and
    the Loop boundary rule across it.
    """
    rows: list[list[int]] = [[], []]
    cols: list[list[int]] = [[], []]
    vals: list[list[float]] = [[], []]

    for ring in vertex_one_rings(triangles, nv):
        n = ring.valence
        if ring.is_boundary:
            per_dir = _boundary_weights(n)
        else:
            wu, wv = _interior_weights(n)
            per_dir = ((0.0, wu), (0.0, wv))

        for a, (own, w) in enumerate(per_dir):
            rows[a].extend([ring.vertex] * (n + 1))
            cols[a].extend([ring.vertex, *ring.neighbors.tolist()])
            vals[a].extend([own, *w.tolist()])

    W = []
    for a in range(2):
        M = sp.csr_matrix((vals[a], (rows[a], cols[a])), shape=(nv, nv))
        M.eliminate_zeros()
        W.append(M)
    return W[0], W[1]


@jax.jit
def _triangle_area_and_gradient(A: Array, B: Array, C: Array):
    N = 0.25 * jnp.cross(B - A, C - A)
    half_area = jnp.linalg.norm(N, axis=-1, keepdims=True)
    n_hat = N / jnp.where(half_area > 0, half_area, 1.0)
    area = 2.0 * half_area[..., 0]
    return (
        area,
        0.5 * jnp.cross(n_hat, C - B),
        0.5 * jnp.cross(n_hat, A - C),
        0.5 * jnp.cross(n_hat, B - A),
    )


def triangle_area_and_gradient(
    A: Array, B: Array, C: Array, check_degenerate: bool = True
) -> tuple[Array, Array, Array, Array]:
    """Area of triangles ABC and its gradient with respect to each corner.

    All inputs are (..., 3) arrays of corner coordinates. Without the
    degeneracy check, zero-area triangles get a zero gradient.

    Returns:
        Areas (...,) and the three (..., 3) corner gradients
    """
    area, dA, dB, dC = _triangle_area_and_gradient(
        jnp.asarray(A, dtype=jnp.float64),
        jnp.asarray(B, dtype=jnp.float64),
        jnp.asarray(C, dtype=jnp.float64),
    )
    if check_degenerate and area.size and float(jnp.min(area)) <= MIN_TRIANGLE_AREA:
        raise GeometryError(
            f"Triangle area {float(jnp.min(area)):.3e} is too small to differentiate",
            ErrorCode.DEGENERATE_TRIANGLE,
        )
    return area, dA, dB, dC
