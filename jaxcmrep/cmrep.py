"""Boundary-constrained medial representation.

A cm-rep is a closed boundary triangle mesh in which every boundary vertex is
tied to a medial vertex by a spoke of length R along the boundary normal:
bnd = med + R N. Every medial vertex has one boundary vertex on each side (two
on the medial edge), and every medial triangle has a boundary triangle on
each side.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import jax
import jax.numpy as jnp
import numpy as np
import scipy.optimize as opt
import scipy.sparse as sp
from jax import Array

from .exceptions import DimensionError, GeometryError
from .mesh import _check_triangles, loop_tangent_weights
from .types import ErrorCode, Float


@dataclass
class CMRep:
    """Boundary mesh with medial indices and the quantities derived from them."""

    bnd_vtx: np.ndarray  # (nv, 3)
    bnd_tri: np.ndarray  # (nt, 3)
    bnd_nrm: np.ndarray  # (nv, 3)
    bnd_mi: np.ndarray  # (nv,) medial index of each boundary vertex

    med_vtx: np.ndarray  # (nmv, 3)
    med_R: np.ndarray  # (nmv,)
    med_bi: list[np.ndarray]  # boundary vertices of each medial vertex

    # Medial triangle of each boundary triangle, and the (up to) two boundary
    # triangles of each medial triangle; -1 marks a missing partner
    bnd_mti: np.ndarray  # (nt,)
    med_bti: np.ndarray  # (nmt, 2)

    # Sparse nv x nv matrices producing the tangent vectors Qu, Qv from Q
    wgt_Quv: tuple[sp.csr_matrix, sp.csr_matrix] = field(repr=False)

    @property
    def nv(self) -> int:
        return self.bnd_vtx.shape[0]

    @property
    def nmv(self) -> int:
        return self.med_vtx.shape[0]

    @property
    def nt(self) -> int:
        return self.bnd_tri.shape[0]

    @property
    def nmt(self) -> int:
        return self.med_bti.shape[0]

    @classmethod
    def from_arrays(
        cls,
        bnd_vtx,
        triangles,
        medial_index,
        normals,
        radius,
    ) -> CMRep:
        """Build a cm-rep from boundary mesh arrays.

        Args:
            bnd_vtx: Boundary vertex coordinates (nv, 3)
            triangles: Boundary triangles (nt, 3), counter-clockwise seen from outside
            medial_index: Medial vertex of each boundary vertex (nv,), covering 0..nmv-1
            normals: Outward unit normals at the boundary vertices (nv, 3)
            radius: Spoke length at each boundary vertex (nv,)

        Raises:
            DimensionError: inconsistent array shapes
            GeometryError: medial indices with gaps, or a medial triangle
                claimed by more than two boundary triangles
        """
        bnd_vtx = np.asarray(bnd_vtx, dtype=np.float64)
        if bnd_vtx.ndim != 2 or bnd_vtx.shape[1] != 3:
            raise DimensionError(f"Boundary vertices must have shape (nv, 3), got {bnd_vtx.shape}")
        nv = bnd_vtx.shape[0]

        bnd_tri = _check_triangles(triangles, nv)
        bnd_nrm = np.asarray(normals, dtype=np.float64)
        bnd_mi = np.asarray(medial_index, dtype=np.int64).ravel()
        radius = np.asarray(radius, dtype=np.float64).ravel()
        if bnd_nrm.shape != (nv, 3):
            raise DimensionError(f"Normals must have shape ({nv}, 3), got {bnd_nrm.shape}")
        if bnd_mi.shape != (nv,) or radius.shape != (nv,):
            raise DimensionError(
                f"Medial index and radius need {nv} entries, got {bnd_mi.size} and {radius.size}"
            )

        # Medial to boundary mapping
        if nv == 0 or bnd_mi.min() < 0:
            raise GeometryError("Medial indices must be non-negative", ErrorCode.INVALID_MEDIAL_INDEX)
        nmv = int(bnd_mi.max()) + 1
        order = np.argsort(bnd_mi, kind="stable")
        med_bi = np.split(order, np.cumsum(np.bincount(bnd_mi, minlength=nmv))[:-1])
        empty = [i for i, b in enumerate(med_bi) if b.size == 0]
        if empty:
            raise GeometryError(
                f"Medial vertices {empty} have no boundary vertex", ErrorCode.INVALID_MEDIAL_INDEX
            )

        # Medial geometry from the first boundary vertex of each medial vertex
        first = np.array([b[0] for b in med_bi], dtype=np.int64)
        med_R = radius[first]
        med_vtx = bnd_vtx[first] - bnd_nrm[first] * med_R[:, None]

        bnd_mti, med_bti = match_medial_triangles(bnd_tri, bnd_mi)

        return cls(
            bnd_vtx=bnd_vtx,
            bnd_tri=bnd_tri,
            bnd_nrm=bnd_nrm,
            bnd_mi=bnd_mi,
            med_vtx=med_vtx,
            med_R=med_R,
            med_bi=med_bi,
            bnd_mti=bnd_mti,
            med_bti=med_bti,
            wgt_Quv=loop_tangent_weights(bnd_tri, nv),
        )

    def spokes(self) -> np.ndarray:
        """Spoke vectors bnd - med for every boundary vertex."""
        return self.bnd_vtx - self.med_vtx[self.bnd_mi]


def match_medial_triangles(bnd_tri: np.ndarray, bnd_mi: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Pair boundary triangles that share the same set of medial vertices.

    Returns:
        bnd_mti: medial triangle index of each boundary triangle
        med_bti: (nmt, 2) boundary triangles of each medial triangle, -1 if unpaired
    """
    keys = np.sort(bnd_mi[bnd_tri], axis=1)
    _, first, bnd_mti = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    bnd_mti = bnd_mti.ravel()

    # Number medial triangles in order of first appearance
    renumber = np.empty_like(first)
    renumber[np.argsort(first)] = np.arange(first.size)
    bnd_mti = renumber[bnd_mti]

    med_bti = np.full((first.size, 2), -1, dtype=np.int64)
    for i, mt in enumerate(bnd_mti):
        slot = 0 if med_bti[mt, 0] < 0 else 1
        if med_bti[mt, slot] >= 0:
            raise GeometryError(
                f"Medial triangle {keys[i].tolist()} is shared by more than two boundary triangles",
                ErrorCode.INVALID_MEDIAL_INDEX,
            )
        med_bti[mt, slot] = i

    return bnd_mti.astype(np.int64), med_bti


@jax.jit
def _medial_center_objective(Y: Array, X: Array) -> Array:
    A1, B1, C1, A2, B2, C2 = X
    S1 = (A1 + B1 + C1) / 3.0 - Y
    S2 = (A2 + B2 + C2) / 3.0 - Y

    c0 = jnp.dot(B1 - A1, S1)
    c1 = jnp.dot(C1 - A1, S1)
    c2 = jnp.dot(B2 - A2, S2)
    c3 = jnp.dot(C2 - A2, S2)
    c4 = jnp.dot(S1 - S2, S1 + S2)
    return c0**2 + c1**2 + c2**2 + c3**2 + 2.0 * c4**2


_medial_center_value_and_grad = jax.jit(jax.value_and_grad(_medial_center_objective))


def find_medial_triangle_center(bnd_vertices, max_evaluations: int = 100) -> np.ndarray:
    """Point equidistant from the centers of two opposite boundary triangles.

    The point Y makes the spokes from Y to both triangle centers orthogonal to
    their triangles and of equal length, in the least squares sense.

    Args:
        bnd_vertices: (6, 3) corners of the two boundary triangles
        max_evaluations: Objective evaluation budget of the local solver

    Returns:
        The medial point (3,)
    """
    X = jnp.asarray(bnd_vertices, dtype=jnp.float64)
    if X.shape != (6, 3):
        raise DimensionError(f"Expected the 6 corners of two triangles, got shape {X.shape}")

    def fun(Y: np.ndarray) -> tuple[Float, np.ndarray]:
        value, grad = _medial_center_value_and_grad(jnp.asarray(Y), X)
        return float(value), np.asarray(grad)

    result = opt.minimize(
        fun,
        np.asarray(X.mean(axis=0)),
        jac=True,
        method="L-BFGS-B",
        options={"ftol": 1e-9, "gtol": 1e-6, "maxfun": max_evaluations},
    )
    return result.x
