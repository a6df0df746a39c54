"""
Unit tests for the point-based medial fitting scheme.
"""

import numpy as np
import pytest

from jaxcmrep import ConstraintCategory, DimensionError, PointBasedMedialFitting


@pytest.fixture
def scheme(octahedron_model, octahedron_target):
    return PointBasedMedialFitting(octahedron_model, octahedron_target)


def _random_extended(scheme, rng):
    return rng.standard_normal(scheme.num_extended_variables)


class TestLayout:
    def test_sizes(self, scheme):
        assert scheme.num_active_vertices() == 11
        assert scheme.num_slack_variables() == 18 + 5
        assert scheme.num_variables == 33 + 23
        assert scheme.num_extended_variables == 56 + 33
        assert scheme.num_constraints() == 36
        assert scheme.variables.total == scheme.num_extended_variables
        assert scheme.constraints.total == scheme.num_constraints()

    def test_mismatched_target(self, octahedron_model, two_triangle_model):
        with pytest.raises(DimensionError):
            PointBasedMedialFitting(octahedron_model, two_triangle_model)

    def test_initial_landmarks(self, scheme, octahedron_model):
        q0 = scheme.initial_landmarks()
        assert q0.shape == (11, 3)
        np.testing.assert_allclose(q0[:6], octahedron_model.bnd_vtx)
        np.testing.assert_allclose(q0[6:], octahedron_model.med_vtx)

    def test_initialization(self, scheme, octahedron_model, octahedron_target):
        x = scheme.compute_initialization(20)
        v = scheme.variables
        assert x.shape == (scheme.num_variables,)

        np.testing.assert_allclose(
            v["u_bnd"].view(x), (octahedron_target.bnd_vtx - octahedron_model.bnd_vtx) / 20
        )
        np.testing.assert_allclose(v["N"].view(x), octahedron_model.bnd_nrm, atol=1e-12)
        np.testing.assert_allclose(v["R"].view(x), octahedron_model.med_R)


class TestConstraints:
    def test_constraint_formulas(self, scheme, octahedron_model, rng):
        """Batched forms reproduce the geometric constraint definitions."""
        hd = scheme.precompute_hessian_data()
        Y = _random_extended(scheme, rng)
        C, _ = hd.qf_C.compute(Y)

        v, c = scheme.variables, scheme.constraints
        qb, qm = v["q_bnd"].view(Y), v["q_med"].view(Y)
        N, R = v["N"].view(Y), v["R"].view(Y)
        mi = octahedron_model.bnd_mi
        Wu, Wv = octahedron_model.wgt_Quv

        C_N, C_spk = c["C_N"].view(C), c["C_spk"].view(C)
        np.testing.assert_allclose(C_N[:, 0], np.sum(N * (Wu @ qb), axis=1), atol=1e-12)
        np.testing.assert_allclose(C_N[:, 1], np.sum(N * (Wv @ qb), axis=1), atol=1e-12)
        np.testing.assert_allclose(C_N[:, 2], np.sum(N * N, axis=1) - 1.0, atol=1e-12)
        np.testing.assert_allclose(C_spk, qb - N * R[mi][:, None] - qm[mi], atol=1e-12)

    def test_labels(self, scheme):
        hd = scheme.precompute_hessian_data()
        labels = hd.qf_C.labels
        assert labels[0] == ConstraintCategory.NORMAL_ORTHOGONAL.value
        assert labels[2] == ConstraintCategory.NORMAL_UNIT.value
        assert labels[-1] == ConstraintCategory.SPOKE.value

    def test_data_term(self, scheme, octahedron_target, rng):
        hd = scheme.precompute_hessian_data()
        Y = _random_extended(scheme, rng)
        F, _ = hd.qf_F.compute(Y)
        qb = scheme.variables["q_bnd"].view(Y)
        assert F == pytest.approx(np.sum((qb - octahedron_target.bnd_vtx) ** 2))

    def test_template_is_feasible(self, octahedron_model):
        """The template itself satisfies every constraint."""
        scheme = PointBasedMedialFitting(octahedron_model, octahedron_model)
        hd = scheme.precompute_hessian_data()
        x = scheme.compute_initialization(10)
        Y = np.concatenate([x, scheme.initial_landmarks().ravel()])
        C, _ = hd.qf_C.compute(Y)
        np.testing.assert_allclose(C, 0.0, atol=1e-12)

    def test_constraint_details(self, scheme):
        C = np.zeros(scheme.num_constraints())
        C_N = scheme.constraints["C_N"].view(C)
        C_N[2, 1] = -0.3
        C_N[4, 2] = 0.2
        scheme.constraints["C_spk"].view(C)[0, 0] = 0.7

        details = scheme.constraint_details(C)
        assert details == {
            ConstraintCategory.NORMAL_ORTHOGONAL.value: pytest.approx(0.3),
            ConstraintCategory.NORMAL_UNIT.value: pytest.approx(0.2),
            ConstraintCategory.SPOKE.value: pytest.approx(0.7),
        }

        with pytest.raises(DimensionError):
            scheme.constraint_details(np.zeros(5))

    def test_export_timepoint(self, scheme, octahedron_model, rng):
        Y = _random_extended(scheme, rng)
        C = rng.standard_normal(scheme.num_constraints())
        lam = rng.standard_normal(scheme.num_constraints())
        rec = scheme.export_timepoint(3, Y, C, lam)

        v = scheme.variables
        assert rec.t == 3
        np.testing.assert_allclose(rec.bnd_vtx, v["q_bnd"].view(Y))
        np.testing.assert_allclose(rec.radius, v["R"].view(Y)[octahedron_model.bnd_mi])
        assert rec.constraints.shape == (6, 6)
        assert rec.lambda_norm == pytest.approx(np.abs(lam).max())
