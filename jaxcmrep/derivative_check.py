"""Finite-difference checks of analytic derivatives."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from .quadratic_form import QuadraticForm
from .types import Float, FlatVector, ObjectiveFunction


@dataclass
class DerivativeProbe:
    index: int
    analytic: Float
    numeric: Float

    @property
    def error(self) -> Float:
        return abs(self.analytic - self.numeric)


def check_gradient(
    fun: ObjectiveFunction,
    x: FlatVector,
    n_probes: int = 16,
    eps: Float = 1e-6,
    rng: np.random.Generator | None = None,
    verbose: bool = False,
) -> list[DerivativeProbe]:
    """Compare random gradient components with central differences.

    Args:
        fun: Returns (value, gradient) at a point
        x: Point at which to test
        n_probes: Number of randomly chosen components
        eps: Finite difference step
        rng: Random generator; a fresh default generator when omitted
        verbose: Print one line per probe

    Returns:
        One probe record per tested component
    """
    rng = rng if rng is not None else np.random.default_rng()
    x = np.asarray(x, dtype=np.float64)
    _, grad = fun(x)

    probes = []
    for i in rng.integers(0, x.size, size=n_probes):
        xt = x.copy()
        xt[i] = x[i] - eps
        f1, _ = fun(xt)
        xt[i] = x[i] + eps
        f2, _ = fun(xt)

        probe = DerivativeProbe(int(i), float(grad[i]), (f2 - f1) / (2.0 * eps))
        probes.append(probe)
        if verbose:
            print(
                f"i = {probe.index:04d},   AG = {probe.analytic:12.8f},  "
                f"NG = {probe.numeric:12.8f},  Del = {probe.error:12.8f}"
            )
    return probes


def check_jacobian(
    fun: Callable[[FlatVector], FlatVector],
    jac: np.ndarray,
    x: FlatVector,
    n_probes: int = 16,
    eps: Float = 1e-6,
    rng: np.random.Generator | None = None,
    verbose: bool = False,
) -> list[Float]:
    """Compare random columns of a Jacobian with central differences of fun.

    Returns:
        Largest absolute difference in each tested column
    """
    rng = rng if rng is not None else np.random.default_rng()
    x = np.asarray(x, dtype=np.float64)
    jac = np.asarray(jac)

    errors = []
    for i in rng.integers(0, x.size, size=n_probes):
        xt = x.copy()
        xt[i] = x[i] - eps
        G1 = np.asarray(fun(xt))
        xt[i] = x[i] + eps
        G2 = np.asarray(fun(xt))

        numeric = (G2 - G1) / (2.0 * eps)
        err = float(np.abs(jac[:, i] - numeric).max())
        errors.append(err)
        if verbose:
            print(
                f"i = {int(i):04d},   |AG| = {np.abs(jac[:, i]).max():12.8f},  "
                f"|NG| = {np.abs(numeric).max():12.8f},  |Del| = {err:12.8f}"
            )
    return errors


def check_quadratic_form(
    form: QuadraticForm,
    x: FlatVector,
    order: int = 2,
    eps: Float = 1e-6,
    rng: np.random.Generator | None = None,
) -> list[Float]:
    """Check value -> gradient -> Hessian of a quadratic form along a random direction.

    Each level differentiates the previous level's output numerically and
    compares it with the next analytic derivative applied to the direction.

    Args:
        form: Initialized quadratic form
        x: Point at which to test
        order: Highest derivative to check, 1 (gradient) or 2 (Hessian)

    Returns:
        Largest absolute difference at each level
    """
    if order not in (1, 2):
        raise ValueError("order must be 1 or 2")

    rng = rng if rng is not None else np.random.default_rng()
    x = np.asarray(x, dtype=np.float64)
    u = rng.standard_normal(x.size)

    jets: list[Callable[[FlatVector], object]] = [
        lambda y: np.atleast_1d(form.compute(y)[0]),
        lambda y: form.compute(y)[1],
        lambda y: form.A,
    ]

    errors = []
    for level in range(order):
        lower, upper = jets[level], jets[level + 1]
        numeric = (np.asarray(lower(x + eps * u)) - np.asarray(lower(x - eps * u))) / (2.0 * eps)
        D = upper(x)
        analytic = D @ u if sp.issparse(D) else np.atleast_1d(np.dot(D, u))
        errors.append(float(np.abs(numeric - analytic).max()))
    return errors
