"""Sparse quadratic forms for constraints and data terms.

Every constraint of the medial fitting problem, and the point-matching data
term, is an exact quadratic function 1/2 x'Ax + b'x + c of the concatenated
variable vector. The forms are built once per problem; the cache stacks all
constraint forms into batched sparse structures so that the whole constraint
vector, its Jacobian and the Lagrangian Hessian are evaluated with a handful
of sparse products instead of a loop over constraints.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import scipy.sparse as sp

from .exceptions import DimensionError, InitializationError
from .types import ErrorCode, Float, FlatVector


# Tolerance of the symmetry check relative to the largest entry
SYMMETRY_TOL = 1e-12


def _as_csr(A, n: int | None = None) -> sp.csr_matrix:
    A = sp.csr_matrix(A, dtype=np.float64)
    A.sum_duplicates()
    A.eliminate_zeros()
    if n is not None and A.shape != (n, n):
        raise DimensionError(f"Expected a {n} x {n} matrix, got {A.shape}")
    return A


def _as_rows(u, n: int) -> sp.csr_matrix:
    u = u if sp.issparse(u) else np.atleast_2d(np.asarray(u, dtype=np.float64))
    u = sp.csr_matrix(u)
    if u.shape[1] != n:
        raise DimensionError(f"Outer product factor of length {u.shape[1]} into {n} x {n} matrix")
    return u


def add_scaled_outer_product(target: sp.spmatrix, u, v, scale: Float) -> sp.csr_matrix:
    """Return target + scale * sum_j u_j v_j'.

    u and v are single vectors, or sparse matrices whose rows u_j, v_j are
    paired up; passing the Jacobian J for both gives target + scale * J'J.
    """
    n = target.shape[0]
    U, V = _as_rows(u, n), _as_rows(v, n)
    if U.shape[0] != V.shape[0]:
        raise DimensionError(f"Outer product factors have {U.shape[0]} and {V.shape[0]} rows")
    return sp.csr_matrix(target + scale * (U.T @ V))


class QuadraticForm:
    """f(x) = 1/2 x'Ax + b'x + c with sparse symmetric A."""

    def __init__(self) -> None:
        self.A: sp.csr_matrix | None = None
        self.b: FlatVector | None = None
        self.c: Float = 0.0

    @property
    def n(self) -> int:
        return self._require_initialized().shape[0]

    def _require_initialized(self) -> sp.csr_matrix:
        if self.A is None:
            raise InitializationError("Quadratic form used before initialize()")
        return self.A

    def initialize(self, A, b: FlatVector | None = None, c: Float = 0.0) -> None:
        A = _as_csr(A)
        n = A.shape[0]
        if A.shape != (n, n):
            raise DimensionError(f"Quadratic form matrix must be square, got {A.shape}")

        if A.nnz:
            asym = abs(A - A.T)
            if asym.nnz and asym.max() > SYMMETRY_TOL * max(1.0, abs(A).max()):
                raise DimensionError("Quadratic form matrix is not symmetric", ErrorCode.BAD_INDEX)

        b = np.zeros(n) if b is None else np.asarray(b, dtype=np.float64).ravel()
        if b.shape != (n,):
            raise DimensionError(f"Linear term has length {b.shape[0]}, expected {n}")

        self.A, self.b, self.c = A, b, float(c)

    def compute(self, x: FlatVector) -> tuple[Float, FlatVector]:
        """Value and gradient at x."""
        A = self._require_initialized()
        x = np.asarray(x, dtype=np.float64)
        Ax = A @ x
        return float(x @ (0.5 * Ax + self.b)) + self.c, Ax + self.b

    def accumulate_into_hessian(self, target: sp.spmatrix, scale: Float) -> sp.csr_matrix:
        """Return target + scale * A."""
        A = self._require_initialized()
        if target.shape != A.shape:
            raise DimensionError(f"Cannot add {A.shape} Hessian into {target.shape} matrix")
        return sp.csr_matrix(target + scale * A)

    def support(self) -> np.ndarray:
        """Indices of x on which the gradient can be non-zero."""
        A = self._require_initialized()
        rows = np.flatnonzero(np.diff(A.indptr))
        return np.union1d(rows, np.flatnonzero(self.b))


class SymmetricQuadraticForm(QuadraticForm):
    """f(x) = (Mx + d)'(Mx + d), i.e. A = 2M'M, b = 2M'd, c = d'd."""

    def __init__(self) -> None:
        super().__init__()
        self.M: sp.csr_matrix | None = None
        self.d: FlatVector | None = None

    def initialize(self, M, d: FlatVector) -> None:  # type: ignore[override]
        M = _as_csr(M)
        d = np.asarray(d, dtype=np.float64).ravel()
        if d.shape != (M.shape[0],):
            raise DimensionError(f"Offset has length {d.shape[0]}, expected {M.shape[0]}")

        self.M, self.d = M, d
        super().initialize(2.0 * (M.T @ M), 2.0 * (M.T @ d), float(d @ d))

    def compute(self, x: FlatVector) -> tuple[Float, FlatVector]:
        self._require_initialized()
        r = self.M @ np.asarray(x, dtype=np.float64) + self.d
        return float(r @ r), 2.0 * (self.M.T @ r)


class QuadraticFormCache:
    """An ordered set of constraint forms C_j(y), evaluated in one batch.

    The ordering of the forms is the ordering of the constraint vector C and
    of the multiplier vector lambda.
    """

    def __init__(self, forms: Sequence[QuadraticForm], labels: Sequence[str], n: int):
        if len(forms) != len(labels):
            raise DimensionError(f"{len(forms)} constraint forms but {len(labels)} labels")

        owners, rows, cols, vals = [], [], [], []
        b_rows, b_cols, b_vals = [], [], []
        c = np.zeros(len(forms))

        for j, form in enumerate(forms):
            if form.n != n:
                raise DimensionError(
                    f"Constraint {j} ({labels[j]}) acts on {form.n} variables, expected {n}",
                    ErrorCode.INDEX_MAP_MISMATCH,
                )
            A = form.A.tocoo()
            owners.append(np.full(A.nnz, j))
            rows.append(A.row)
            cols.append(A.col)
            vals.append(A.data)

            nz = np.flatnonzero(form.b)
            b_rows.append(np.full(nz.size, j))
            b_cols.append(nz)
            b_vals.append(form.b[nz])
            c[j] = form.c

        def _cat(parts, dtype):
            return np.concatenate(parts).astype(dtype) if parts else np.zeros(0, dtype)

        self.n = n
        self.labels = list(labels)
        self.forms = list(forms)
        self._owner = _cat(owners, np.int64)
        self._rows = _cat(rows, np.int64)
        self._cols = _cat(cols, np.int64)
        self._vals = _cat(vals, np.float64)
        self._B = sp.csr_matrix(
            (_cat(b_vals, np.float64), (_cat(b_rows, np.int64), _cat(b_cols, np.int64))),
            shape=(len(forms), n),
        )
        self._c = c

    def __len__(self) -> int:
        return len(self.labels)

    def compute(self, y: FlatVector) -> tuple[FlatVector, sp.csr_matrix]:
        """Constraint values C and the sparse Jacobian J (row j is grad C_j)."""
        y = np.asarray(y, dtype=np.float64)
        if y.shape != (self.n,):
            raise DimensionError(f"Constraint input has shape {y.shape}, expected ({self.n},)")

        AY = sp.csr_matrix(
            (self._vals * y[self._cols], (self._owner, self._rows)), shape=(len(self), self.n)
        )
        C = 0.5 * (AY @ y) + self._B @ y + self._c
        return C, sp.csr_matrix(AY + self._B)

    def accumulate_into_hessian(self, target: sp.spmatrix, weights: FlatVector) -> sp.csr_matrix:
        """Return target + sum_j weights[j] * A_j."""
        W = sp.csr_matrix(
            (self._vals * np.asarray(weights)[self._owner], (self._rows, self._cols)),
            shape=(self.n, self.n),
        )
        return sp.csr_matrix(target + W)

    def augmented_lagrangian_jet(
        self,
        y: FlatVector,
        lam: FlatVector,
        mu: Float,
        data_form: QuadraticForm | None = None,
        hessian: HessianCache | None = None,
    ) -> tuple[Float, FlatVector, FlatVector]:
        """Value and gradient of F(y) + sum_j C_j (mu/2 C_j - lambda_j).

        When a HessianCache is passed it is rebuilt at y.

        Returns:
            Value, gradient with respect to y, and the constraint values C
        """
        if data_form is not None:
            AL, grad = data_form.compute(y)
        else:
            AL, grad = 0.0, np.zeros(self.n)

        C, J = self.compute(y)
        w = mu * C - lam
        AL += float(C @ (0.5 * mu * C - lam))
        grad = grad + J.T @ w

        if hessian is not None:
            hessian.rebuild(self, C, J, lam, mu)

        return AL, grad, C

    def hessian_pattern(self, constant: sp.spmatrix | None = None) -> sp.csr_matrix:
        """Structural non-zeros of the Lagrangian Hessian.

        The union of the A_j patterns, the outer products of the supports of
        the constraint gradients and the pattern of an optional constant term.
        """
        rows, cols = [self._rows], [self._cols]
        if constant is not None:
            coo = sp.coo_matrix(constant)
            rows.append(coo.row)
            cols.append(coo.col)
        for form in self.forms:
            s = form.support()
            rows.append(np.repeat(s, s.size))
            cols.append(np.tile(s, s.size))

        r, c = np.concatenate(rows), np.concatenate(cols)
        pattern = sp.csr_matrix((np.ones(r.size), (r, c)), shape=(self.n, self.n))
        pattern.data[:] = 1.0
        return pattern

    def category_maxima(self, C: FlatVector) -> dict[str, Float]:
        """Largest |C_j| per category label, in order of first appearance."""
        maxima: dict[str, Float] = {}
        for label, value in zip(self.labels, np.abs(np.asarray(C))):
            maxima[label] = max(maxima.get(label, 0.0), float(value))
        return maxima


class HessianCache:
    """Hessian of the augmented Lagrangian with respect to y.

    HL = A_F + sum_j (mu C_j - lambda_j) A_j + mu sum_j grad C_j grad C_j'

    The last term is the exact second derivative of mu/2 C_j^2 because every
    C_j is quadratic. The constant part A_F is assembled once; the rest is
    rebuilt, never appended, each time the cache is refreshed. The sparsity
    pattern is derived from the non-zero structure of the forms and the
    supports of the constraint gradients.
    """

    def __init__(self, data_form: QuadraticForm | None, constraints: QuadraticFormCache):
        n = constraints.n
        zero = sp.csr_matrix((n, n))
        self.HL_init = data_form.accumulate_into_hessian(zero, 1.0) if data_form is not None else zero
        self.HL = self.HL_init.copy()
        self.pattern = constraints.hessian_pattern(self.HL_init)

    @property
    def nnz(self) -> int:
        return int(self.pattern.nnz)

    def rebuild(
        self,
        constraints: QuadraticFormCache,
        C: FlatVector,
        J: sp.csr_matrix,
        lam: FlatVector,
        mu: Float,
    ) -> sp.csr_matrix:
        HL = constraints.accumulate_into_hessian(self.HL_init, mu * C - lam)
        self.HL = add_scaled_outer_product(HL, J, J, mu)
        return self.HL
