"""
Tests of the augmented Lagrangian objective: gradients, multipliers, penalty and export.
"""

import numpy as np
import pytest
import scipy.sparse as sp

from jaxcmrep import (
    AugmentedLagrangianObjective,
    ErrorCode,
    FitOptions,
    InitializationError,
    OptimizationError,
    PointBasedMedialFitting,
    TrigTestFunction,
    check_gradient,
)


def _central_differences(objective, x, indices, eps=1e-6):
    out = []
    for i in indices:
        e = np.zeros_like(x)
        e[i] = eps
        f2, _ = objective.compute(x + e, need_gradient=False)
        f1, _ = objective.compute(x - e, need_gradient=False)
        out.append((f2 - f1) / (2 * eps))
    return np.array(out)


@pytest.fixture
def options():
    return FitOptions(nt=8, sigma=1.0, w_kinetic=0.1)


@pytest.fixture
def objective(octahedron_model, octahedron_target, options):
    return AugmentedLagrangianObjective(
        PointBasedMedialFitting(octahedron_model, octahedron_target), options
    )


class TestObjectiveAtTemplate:
    def test_identity_fit_is_stationary(self, two_triangle_model, options):
        """Fitting the template to itself: zero objective and zero gradient at the start."""
        obj = AugmentedLagrangianObjective(
            PointBasedMedialFitting(two_triangle_model, two_triangle_model), options
        )
        f, g = obj.compute(obj.get_xinit())
        assert f == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(g, 0.0, atol=1e-10)

        spokes = obj.scheme.constraints["C_spk"].view(obj.constraint_values())
        np.testing.assert_allclose(spokes, 0.0, atol=1e-12)

    def test_multipliers_unchanged_when_feasible(self, octahedron_model, options):
        obj = AugmentedLagrangianObjective(
            PointBasedMedialFitting(octahedron_model, octahedron_model), options
        )
        obj.compute(obj.get_xinit())
        obj.update_multipliers()
        np.testing.assert_allclose(obj.lam, 0.0, atol=1e-12)


class TestGradient:
    def test_full_gradient(self, objective, rng):
        """Analytic gradient through the adjoint flow matches central differences."""
        x = objective.get_xinit() + 0.02 * rng.standard_normal(objective.nvar)
        objective.lam = 0.3 * rng.standard_normal(len(objective.lam))
        objective.set_penalty(2.0)

        _, g = objective.compute(x)
        idx = np.arange(objective.nvar)
        numeric = _central_differences(objective, x, idx)
        np.testing.assert_allclose(g, numeric, rtol=1e-5, atol=1e-6)

    def test_gradient_with_overlap_term(self, octahedron_model, octahedron_target, rng):
        opts = FitOptions(nt=6, sigma=1.0, w_kinetic=0.1, w_dice=0.5, n_wedges=3)
        obj = AugmentedLagrangianObjective(
            PointBasedMedialFitting(octahedron_model, octahedron_target),
            opts,
            image=TrigTestFunction(),
            image_volume=2.0,
        )
        x = obj.get_xinit() + 0.02 * rng.standard_normal(obj.nvar)

        probes = check_gradient(obj, x, n_probes=20, eps=1e-6, rng=rng)
        for p in probes:
            assert p.error < 1e-5 * max(1.0, abs(p.numeric))

    def test_overlap_requires_image(self, octahedron_model):
        with pytest.raises(ValueError):
            AugmentedLagrangianObjective(
                PointBasedMedialFitting(octahedron_model, octahedron_model), FitOptions(w_dice=1.0)
            )

    def test_value_only(self, objective):
        f, g = objective.compute(objective.get_xinit(), need_gradient=False)
        assert g is None
        f2, _ = objective(objective.get_xinit())
        assert f == pytest.approx(f2)

    def test_terms_add_up(self, objective, rng):
        x = objective.get_xinit() + 0.05 * rng.standard_normal(objective.nvar)
        f, _ = objective.compute(x)
        t = objective.terms
        expected = t.distsq + 0.5 * objective.mu * t.barrier - t.lag + objective.opts.w_kinetic * t.kinetic
        assert f == pytest.approx(expected)
        assert t.total == pytest.approx(f)


class TestMultipliersAndPenalty:
    def test_update_rule(self, objective, rng):
        x = objective.get_xinit() + 0.05 * rng.standard_normal(objective.nvar)
        objective.compute(x)
        C = objective.constraint_values()
        lam0 = objective.lam.copy()
        objective.update_multipliers()
        np.testing.assert_allclose(objective.lam, lam0 - objective.mu * C)

    def test_repeated_updates_at_fixed_point(self, objective, rng):
        """With mu held fixed, C is unchanged and lambda moves by -mu C each round."""
        x = objective.get_xinit() + 0.05 * rng.standard_normal(objective.nvar)
        objective.set_penalty(2.0)

        objective.compute(x)
        C0 = objective.constraint_values()
        norms = []
        for k in range(1, 5):
            objective.update_multipliers()
            objective.compute(x)
            C = objective.constraint_values()
            norms.append(np.linalg.norm(C))
            np.testing.assert_allclose(C, C0, rtol=1e-12, atol=1e-14)
            np.testing.assert_allclose(objective.lam, -k * 2.0 * C0, rtol=1e-12, atol=1e-14)

        assert all(b <= a * (1 + 1e-12) for a, b in zip(norms, norms[1:]))
        assert objective.mu == 2.0

    def test_penalty_rules(self, objective):
        objective.set_penalty(1.0)
        assert objective.mu == 1.0

        with pytest.raises(OptimizationError) as excinfo:
            objective.set_penalty(0.5)
        assert excinfo.value.error_code == ErrorCode.PENALTY_DECREASED

        with pytest.raises(OptimizationError) as excinfo:
            objective.set_penalty(0.0, allow_decrease=True)
        assert excinfo.value.error_code == ErrorCode.NON_POSITIVE_PENALTY

        objective.set_penalty(0.5, allow_decrease=True)
        assert objective.mu == 0.5


class TestHessianAndExport:
    def test_hessian_requires_evaluation(self, objective):
        with pytest.raises(InitializationError):
            objective.hessian_of_lagrangian()

    def test_hessian_of_lagrangian(self, objective, rng):
        x = objective.get_xinit() + 0.05 * rng.standard_normal(objective.nvar)
        HL = objective.hessian_of_lagrangian(x)
        n = objective.scheme.num_extended_variables
        assert sp.issparse(HL)
        assert HL.shape == (n, n)
        assert abs(HL - HL.T).max() < 1e-12

    def test_export(self, objective, octahedron_model):
        with pytest.raises(InitializationError):
            objective.export()

        objective.compute(objective.get_xinit())
        records = objective.export()
        assert len(records) == objective.opts.nt + 1
        assert [r.t for r in records] == list(range(objective.opts.nt + 1))

        # The first frame is the template geometry with the initial slack variables
        np.testing.assert_allclose(records[0].bnd_vtx, octahedron_model.bnd_vtx)
        np.testing.assert_allclose(records[0].med_vtx, octahedron_model.med_vtx)
        np.testing.assert_allclose(records[0].constraints, 0.0, atol=1e-12)
        assert set(records[-1].constraint_maxima) == {"C_NrmOrth", "C_NrmUnit", "C_Spk"}

        subset = objective.export(t_range=[0, 4])
        assert [r.t for r in subset] == [0, 4]

    def test_iter_print(self, objective, capsys):
        objective.compute(objective.get_xinit())
        objective.iter_print(7)
        out = capsys.readouterr().out
        assert out.startswith("Iter 00007")
        assert "|C_Spk|" in out
