"""
Unit tests for the cm-rep model and its medial helpers.
"""

import numpy as np
import pytest

from jaxcmrep import (
    CMRep,
    DimensionError,
    ErrorCode,
    GeometryError,
    find_medial_triangle_center,
    match_medial_triangles,
)
from jaxcmrep.cmrep import _medial_center_objective


class TestCMRepConstruction:
    def test_octahedron(self, octahedron_model):
        m = octahedron_model
        assert (m.nv, m.nmv, m.nt, m.nmt) == (6, 5, 8, 4)

        # Poles share the central medial vertex
        np.testing.assert_allclose(m.med_vtx[4], 0.0, atol=1e-12)
        assert m.med_R[4] == pytest.approx(1.0)
        np.testing.assert_array_equal(m.med_bi[4], [4, 5])

        # Spokes are normal times radius
        np.testing.assert_allclose(m.spokes(), m.bnd_nrm * m.med_R[m.bnd_mi][:, None], atol=1e-12)

    def test_two_triangles(self, two_triangle_model):
        m = two_triangle_model
        assert (m.nv, m.nmv, m.nt, m.nmt) == (3, 3, 2, 1)
        np.testing.assert_allclose(m.med_vtx, 0.5 * m.bnd_vtx)

    def test_bad_shapes(self, octahedron_model):
        m = octahedron_model
        with pytest.raises(DimensionError):
            CMRep.from_arrays(m.bnd_vtx[:, :2], m.bnd_tri, m.bnd_mi, m.bnd_nrm, np.ones(6))
        with pytest.raises(DimensionError):
            CMRep.from_arrays(m.bnd_vtx, m.bnd_tri, m.bnd_mi[:5], m.bnd_nrm, np.ones(6))
        with pytest.raises(DimensionError):
            CMRep.from_arrays(m.bnd_vtx, m.bnd_tri, m.bnd_mi, m.bnd_nrm[:5], np.ones(6))

    def test_medial_index_gap(self, octahedron_model):
        m = octahedron_model
        mi = np.array([0, 1, 2, 3, 5, 5])
        with pytest.raises(GeometryError) as excinfo:
            CMRep.from_arrays(m.bnd_vtx, m.bnd_tri, mi, m.bnd_nrm, np.ones(6))
        assert excinfo.value.error_code == ErrorCode.INVALID_MEDIAL_INDEX

    def test_negative_medial_index(self, octahedron_model):
        m = octahedron_model
        with pytest.raises(GeometryError):
            CMRep.from_arrays(m.bnd_vtx, m.bnd_tri, m.bnd_mi - 1, m.bnd_nrm, np.ones(6))


class TestMedialTriangles:
    def test_pairing(self, octahedron_model):
        m = octahedron_model
        # Top triangle (0, 2, 4) and bottom triangle (2, 0, 5) share medial triangle {0, 2, 4}
        assert m.bnd_mti[0] == m.bnd_mti[4] == 0
        np.testing.assert_array_equal(m.med_bti[0], [0, 4])
        assert np.all(m.med_bti >= 0)

    def test_unpaired(self):
        bnd_mti, med_bti = match_medial_triangles(np.array([[0, 1, 2], [1, 3, 2]]), np.arange(4))
        np.testing.assert_array_equal(bnd_mti, [0, 1])
        np.testing.assert_array_equal(med_bti, [[0, -1], [1, -1]])

    def test_more_than_two(self):
        tri = np.array([[0, 1, 2], [0, 2, 1], [3, 1, 2]])
        with pytest.raises(GeometryError):
            match_medial_triangles(tri, np.array([0, 1, 2, 0]))


class TestMedialTriangleCenter:
    def test_parallel_triangles(self):
        """Two parallel copies of a triangle have their medial point half way."""
        tri = np.array([[0.0, 0.0], [1.0, 0.2], [0.3, 1.1]])
        c = tri.mean(axis=0)
        X = np.vstack([np.c_[tri, np.full(3, 1.5)], np.c_[tri[::-1], np.full(3, -0.5)]])

        Y = find_medial_triangle_center(X)
        np.testing.assert_allclose(Y, [c[0], c[1], 0.5], atol=1e-4)

    def test_objective_decreases(self, rng):
        X = rng.standard_normal((6, 3))
        X[3:, 2] -= 3.0
        start = X.mean(axis=0)
        Y = find_medial_triangle_center(X)
        assert float(_medial_center_objective(Y, X)) <= float(_medial_center_objective(start, X))

    def test_wrong_shape(self):
        with pytest.raises(DimensionError):
            find_medial_triangle_center(np.zeros((5, 3)))
