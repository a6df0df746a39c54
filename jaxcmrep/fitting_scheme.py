"""Fitting schemes: how a medial model becomes variables and constraints.

A fitting scheme decides which vertices drive the geodesic shooting, which
extra (slack) variables the optimizer carries, how the variables are
initialized, and which quadratic constraints tie them together. The augmented
Lagrangian objective only talks to the abstract interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from .cmrep import CMRep
from .exceptions import DimensionError
from .index_map import IndexMap
from .quadratic_form import HessianCache, QuadraticForm, QuadraticFormCache, SymmetricQuadraticForm
from .types import ConstraintCategory, ErrorCode, Float, FlatVector


@dataclass
class HessianData:
    """Quadratic forms of one problem, built once before optimization."""

    qf_C: QuadraticFormCache
    qf_F: SymmetricQuadraticForm
    hessian: HessianCache


@dataclass
class TimepointExport:
    """Geometry and constraint diagnostics of the model at one time step."""

    t: int
    bnd_vtx: np.ndarray  # (nv, 3)
    med_vtx: np.ndarray  # (nmv, 3)
    normals: np.ndarray  # (nv, 3)
    radius: np.ndarray  # (nv,) radius of each boundary vertex's medial vertex
    constraints: np.ndarray  # (nv, 6) per boundary vertex
    constraint_maxima: dict[str, Float] = field(default_factory=dict)
    lambda_norm: Float = 0.0


class FittingScheme(ABC):
    """Variables, initialization and constraints of a medial fitting problem.

    The optimization vector x holds the momenta of the active vertices
    followed by the slack variables. The constraints are evaluated on the
    extended vector Y = [x, q1], where q1 are the active vertices at the end
    of the geodesic.
    """

    # Blocks of Y = [x, q1] and of the constraint vector, set by subclasses
    variables: IndexMap
    constraints: IndexMap

    def __init__(self, model: CMRep, target: CMRep):
        self.model = model
        self.target = target

    @abstractmethod
    def num_active_vertices(self) -> int:
        """Number of landmarks moved by the geodesic shooting."""

    @abstractmethod
    def num_slack_variables(self) -> int:
        """Number of optimization variables that are not momenta."""

    @abstractmethod
    def num_constraints(self) -> int:
        """Number of scalar constraints."""

    @abstractmethod
    def compute_initialization(self, nt: int) -> FlatVector:
        """Starting point x for a flow with nt time steps."""

    @abstractmethod
    def initial_landmarks(self) -> np.ndarray:
        """Template positions q0 of the active vertices, shape (k, 3)."""

    @abstractmethod
    def precompute_hessian_data(self) -> HessianData:
        """Build the constraint forms, the data term and the Hessian cache."""

    @abstractmethod
    def constraint_details(self, C: FlatVector) -> dict[str, Float]:
        """Largest |C| in each constraint category."""

    @abstractmethod
    def export_timepoint(self, t: int, Y: FlatVector, C: FlatVector, lam: FlatVector) -> TimepointExport:
        """Collect the model geometry and constraint values stored in Y."""

    @property
    def num_variables(self) -> int:
        """Length of the optimization vector x."""
        return 3 * self.num_active_vertices() + self.num_slack_variables()

    @property
    def num_extended_variables(self) -> int:
        """Length of Y = [x, q1]."""
        return self.num_variables + 3 * self.num_active_vertices()


class PointBasedMedialFitting(FittingScheme):
    """Boundary and medial points are landmarks; normals and radii are slack.

    Variables, in order:
        u_bnd (nv, 3), u_med (nmv, 3)   initial momenta
        N (nv, 3)                      boundary normals
        R (nmv,)                       medial radii
        q_bnd (nv, 3), q_med (nmv, 3)  landmarks at the end of the flow (Y only)

    Constraints per boundary vertex j, stored as an (nv, 3) block followed by
    a second (nv, 3) block:
        N_j . Qu_j = 0, N_j . Qv_j = 0, |N_j|^2 - 1 = 0
        q_bnd_j - N_j R_m(j) - q_med_m(j) = 0 (three components)
    """

    def __init__(self, model: CMRep, target: CMRep):
        super().__init__(model, target)
        if target.nv != model.nv or target.nmv != model.nmv:
            raise DimensionError(
                f"Target has {target.nv} boundary and {target.nmv} medial vertices, "
                f"model has {model.nv} and {model.nmv}"
            )

        nv, nmv = model.nv, model.nmv
        self.variables = IndexMap()
        for name, shape in (
            ("u_bnd", (nv, 3)),
            ("u_med", (nmv, 3)),
            ("N", (nv, 3)),
            ("R", (nmv,)),
            ("q_bnd", (nv, 3)),
            ("q_med", (nmv, 3)),
        ):
            self.variables.add(name, shape)

        self.constraints = IndexMap()
        self.constraints.add("C_N", (nv, 3))
        self.constraints.add("C_spk", (nv, 3))

        self.variables.check_size(self.num_extended_variables, "extended variable vector")
        self.constraints.check_size(self.num_constraints(), "constraint vector")

    def num_active_vertices(self) -> int:
        return self.model.nv + self.model.nmv

    def num_slack_variables(self) -> int:
        return 3 * self.model.nv + self.model.nmv

    def num_constraints(self) -> int:
        return 6 * self.model.nv

    def initial_landmarks(self) -> np.ndarray:
        return np.vstack([self.model.bnd_vtx, self.model.med_vtx])

    def compute_initialization(self, nt: int) -> FlatVector:
        """Momenta pointing at the target; normals and radii from the template spokes."""
        m, tgt = self.model, self.target
        x = np.zeros(self.num_variables)
        v = self.variables

        v["u_bnd"].view(x)[:] = (tgt.bnd_vtx - m.bnd_vtx) / nt
        v["u_med"].view(x)[:] = (tgt.med_vtx - m.med_vtx) / nt

        spokes = m.spokes()
        lengths = np.linalg.norm(spokes, axis=1)
        v["N"].view(x)[:] = spokes / np.where(lengths > 0, lengths, 1.0)[:, None]
        v["R"].view(x)[m.bnd_mi] = lengths
        return x

    def precompute_hessian_data(self) -> HessianData:
        m = self.model
        v, c = self.variables, self.constraints
        n = v.total

        i_Nb = v["N"].indices()
        i_Rm = v["R"].indices()
        i_qb = v["q_bnd"].indices()
        i_qm = v["q_med"].indices()
        ic_N = c["C_N"].indices()
        ic_spk = c["C_spk"].indices()

        forms: list[QuadraticForm | None] = [None] * c.total
        labels: list[str] = [""] * c.total

        def _form(rows, cols, vals, b=None, const=0.0) -> QuadraticForm:
            v.check_indices(rows, "Constraint Hessian rows")
            v.check_indices(cols, "Constraint Hessian columns")
            qf = QuadraticForm()
            qf.initialize(sp.csr_matrix((vals, (rows, cols)), shape=(n, n)), b, const)
            return qf

        W = [w.tocsr() for w in m.wgt_Quv]
        for j in range(m.nv):
            # Normal orthogonal to the tangents: sum_m w_jm N_j . q_bnd_m = 0
            for d in range(2):
                row = W[d][j]
                nbrs, wts = row.indices, row.data
                qb = i_qb[nbrs].ravel()
                Nb = np.tile(i_Nb[j], nbrs.size)
                w3 = np.repeat(wts, 3)
                forms[ic_N[j, d]] = _form(
                    np.concatenate([qb, Nb]), np.concatenate([Nb, qb]), np.concatenate([w3, w3])
                )
                labels[ic_N[j, d]] = ConstraintCategory.NORMAL_ORTHOGONAL.value

            # Unit normal
            forms[ic_N[j, 2]] = _form(i_Nb[j], i_Nb[j], np.full(3, 2.0), const=-1.0)
            labels[ic_N[j, 2]] = ConstraintCategory.NORMAL_UNIT.value

            # Spoke closure
            mi = m.bnd_mi[j]
            for a in range(3):
                b = np.zeros(n)
                b[i_qb[j, a]] = 1.0
                b[i_qm[mi, a]] = -1.0
                forms[ic_spk[j, a]] = _form(
                    [i_Nb[j, a], i_Rm[mi]], [i_Rm[mi], i_Nb[j, a]], [-1.0, -1.0], b
                )
                labels[ic_spk[j, a]] = ConstraintCategory.SPOKE.value

        if any(f is None for f in forms):
            raise DimensionError(
                "Constraint index map left constraints unassigned", ErrorCode.INDEX_MAP_MISMATCH
            )

        # Data term |q_bnd - target|^2
        rows = i_qb.ravel()
        M = sp.csr_matrix((np.ones(rows.size), (rows, rows)), shape=(n, n))
        d = np.zeros(n)
        d[rows] = -self.target.bnd_vtx.ravel()
        qf_F = SymmetricQuadraticForm()
        qf_F.initialize(M, d)

        qf_C = QuadraticFormCache(forms, labels, n)
        return HessianData(qf_C, qf_F, HessianCache(qf_F, qf_C))

    def constraint_details(self, C: FlatVector) -> dict[str, Float]:
        self.constraints.check_size(len(C), "constraint vector")
        C_N = np.abs(self.constraints["C_N"].view(C))
        C_spk = np.abs(self.constraints["C_spk"].view(C))
        return {
            ConstraintCategory.NORMAL_ORTHOGONAL.value: float(C_N[:, :2].max(initial=0.0)),
            ConstraintCategory.NORMAL_UNIT.value: float(C_N[:, 2].max(initial=0.0)),
            ConstraintCategory.SPOKE.value: float(C_spk.max(initial=0.0)),
        }

    def export_timepoint(self, t: int, Y: FlatVector, C: FlatVector, lam: FlatVector) -> TimepointExport:
        v, c = self.variables, self.constraints
        v.check_size(len(Y), "extended variable vector")
        c.check_size(len(C), "constraint vector")

        Y = np.asarray(Y)
        R = v["R"].view(Y)
        return TimepointExport(
            t=t,
            bnd_vtx=v["q_bnd"].view(Y).copy(),
            med_vtx=v["q_med"].view(Y).copy(),
            normals=v["N"].view(Y).copy(),
            radius=R[self.model.bnd_mi].copy(),
            constraints=np.hstack([c["C_N"].view(C), c["C_spk"].view(C)]),
            constraint_maxima=self.constraint_details(C),
            lambda_norm=float(np.abs(lam).max(initial=0.0)),
        )
