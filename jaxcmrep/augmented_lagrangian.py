"""Augmented Lagrangian objective for fitting a cm-rep by geodesic shooting.

The optimization vector x holds the initial momenta of the active vertices and
the slack variables of the fitting scheme. One evaluation

1. shoots the template landmarks with the momenta to get q1,
2. evaluates the data term and the constraints on Y = [x, q1],
3. forms AL = F + sum_j C_j (mu/2 C_j - lambda_j),
4. adds the weighted kinetic energy (and optionally an image overlap term),
5. pulls the q1 part of the gradient back to the momenta through the adjoint
   flow and adds the kinetic energy gradient.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
import scipy.sparse as sp

from .dice import DiceOverlapComputation, ImageFunction
from .exceptions import DimensionError, InitializationError, OptimizationError
from .fit_options import FitOptions
from .fitting_scheme import FittingScheme, TimepointExport
from .hamiltonian import HamiltonianSystem, Trajectory
from .kernel import GaussianKernel
from .types import ErrorCode, Float, FlatVector, ObjectiveValueAndGradient, Verbosity


@dataclass
class ObjectiveTerms:
    """Parts of the last evaluated objective, for reporting."""

    distsq: Float = 0.0
    kinetic: Float = 0.0
    barrier: Float = 0.0
    lag: Float = 0.0
    dice: Float = 0.0
    total: Float = 0.0


class AugmentedLagrangianObjective:
    """Endpoint-constrained geodesic shooting objective.

    Holds the multipliers lambda and the penalty mu, which only change between
    outer rounds of the method of multipliers.
    """

    def __init__(
        self,
        scheme: FittingScheme,
        options: FitOptions | None = None,
        image: ImageFunction | None = None,
        image_volume: Float | None = None,
    ):
        """Set up the flow, the quadratic forms and the initial point.

        Args:
            scheme: Fitting scheme relating the model to the variables
            options: Fitting options; defaults are used when omitted
            image: Image function for the overlap term, needed when w_dice > 0
            image_volume: Volume of the image object; taken from the image
                function's ``volume`` attribute when omitted
        """
        self.scheme = scheme
        self.opts = options if options is not None else FitOptions()

        self.k = scheme.num_active_vertices()
        self.nvar = scheme.num_variables
        self.q0 = jnp.asarray(scheme.initial_landmarks())
        self.system = HamiltonianSystem(self.q0, GaussianKernel(self.opts.sigma), self.opts.nt)
        self.hess_data = scheme.precompute_hessian_data()

        self.x_init = scheme.compute_initialization(self.opts.nt)
        self.Y = np.zeros(scheme.num_extended_variables)
        self.C = np.zeros(scheme.num_constraints())
        self.lam = np.zeros(scheme.num_constraints())
        self._mu = self.opts.mu_init

        self.dice: DiceOverlapComputation | None = None
        if self.opts.w_dice > 0:
            if image is None:
                raise ValueError("w_dice > 0 requires an image function")
            volume = image_volume if image_volume is not None else getattr(image, "volume", None)
            if volume is None:
                raise ValueError("Image volume must be given for the overlap term")
            self.dice = DiceOverlapComputation(scheme.model, self.opts.n_wedges, volume, image)

        self.trajectory: Trajectory | None = None
        self.terms = ObjectiveTerms()
        self.iter_count = 0
        self.verbose = self.opts.verbose in (Verbosity.INNER, Verbosity.DERIVATIVES)

    @property
    def mu(self) -> Float:
        return self._mu

    def get_xinit(self) -> FlatVector:
        return self.x_init.copy()

    def reset_counter(self) -> None:
        self.iter_count = 0

    def set_verbose(self, flag: bool) -> None:
        self.verbose = flag

    def compute(
        self, x: FlatVector, need_gradient: bool = True
    ) -> tuple[Float, FlatVector | None]:
        """Objective value and gradient at x.

        Args:
            x: Optimization vector (momenta followed by slack variables)
            need_gradient: Skip the adjoint pass when False; the gradient is
                then returned as None

        Returns:
            Total objective value and its gradient with respect to x
        """
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (self.nvar,):
            raise DimensionError(f"Objective input has shape {x.shape}, expected ({self.nvar},)")

        hd = self.hess_data
        v = self.scheme.variables

        # Forward flow; Y = [x, q1]
        p0 = jnp.asarray(x[: 3 * self.k].reshape(self.k, 3))
        traj = self.system.flow_hamiltonian(p0)
        self.trajectory = traj

        Y = self.Y
        Y[: self.nvar] = x
        Y[self.nvar :] = np.asarray(traj.q1).ravel()

        AL, d_AL__d_Y, C = hd.qf_C.augmented_lagrangian_jet(Y, self.lam, self._mu, hd.qf_F)
        self.C = C

        t = self.terms
        t.barrier = float(C @ C)
        t.lag = float(C @ self.lam)
        t.distsq = AL - (0.5 * self._mu * t.barrier - t.lag)
        t.kinetic = traj.hamiltonian
        t.total = AL + self.opts.w_kinetic * t.kinetic

        if self.dice is not None:
            qb, Nb, Rm = v["q_bnd"].view(Y), v["N"].view(Y), v["R"].view(Y)
            t.dice = self.dice.compute(qb, Nb, Rm)
            t.total += self.opts.w_dice * (1.0 - t.dice)

        if not need_gradient:
            return t.total, None

        if self.verbose:
            self.iter_print(self.iter_count)
        self.iter_count += 1

        if self.dice is not None:
            d_qb, d_Nb, d_Rm = self.dice.backpropagate()
            w = self.opts.w_dice
            v["q_bnd"].view(d_AL__d_Y)[:] -= w * np.asarray(d_qb)
            v["N"].view(d_AL__d_Y)[:] -= w * np.asarray(d_Nb)
            v["R"].view(d_AL__d_Y)[:] -= w * np.asarray(d_Rm)

        # Pull the q1 gradient back to p0, then add the kinetic energy gradient
        d_AL__d_q1 = jnp.asarray(d_AL__d_Y[self.nvar :].reshape(self.k, 3))
        d_AL__d_p0 = self.system.flow_gradient_backward(traj, d_AL__d_q1)
        d_AL__d_p0 = d_AL__d_p0 + self.opts.w_kinetic * self.system.kinetic_energy_gradient(p0)

        g = d_AL__d_Y[: self.nvar].copy()
        g[: 3 * self.k] += np.asarray(d_AL__d_p0).ravel()
        return t.total, g

    def __call__(self, x: FlatVector) -> ObjectiveValueAndGradient:
        return self.compute(x)

    def constraint_values(self) -> FlatVector:
        """Constraint values at the last evaluated point."""
        return self.C.copy()

    def update_multipliers(self) -> None:
        """First-order multiplier update lambda <- lambda - mu C."""
        self.lam = self.lam - self._mu * self.C

    def set_penalty(self, mu: Float, allow_decrease: bool = False) -> None:
        """Set the penalty mu.

        Args:
            mu: New penalty, strictly positive
            allow_decrease: Permit a smaller value; only used when choosing the
                initial penalty

        Raises:
            OptimizationError: mu is not positive, or smaller than the current
                penalty without allow_decrease
        """
        if not mu > 0:
            raise OptimizationError(f"Penalty {mu} is not positive", ErrorCode.NON_POSITIVE_PENALTY)
        if mu < self._mu and not allow_decrease:
            raise OptimizationError(
                f"Penalty may not decrease from {self._mu} to {mu}", ErrorCode.PENALTY_DECREASED
            )
        self._mu = float(mu)

    def hessian_of_lagrangian(self, x: FlatVector | None = None) -> sp.csr_matrix:
        """Hessian of the augmented Lagrangian with respect to Y at x.

        Uses the last evaluated point when x is omitted. The flow is not
        differentiated; this is the Hessian of AL as a function of Y.
        """
        if x is not None:
            self.compute(x, need_gradient=False)
        elif self.trajectory is None:
            raise InitializationError("hessian_of_lagrangian() called before compute()")

        hd = self.hess_data
        hd.qf_C.augmented_lagrangian_jet(self.Y, self.lam, self._mu, hd.qf_F, hessian=hd.hessian)
        return hd.hessian.HL

    def export(self, t_range=None) -> list[TimepointExport]:
        """Model geometry and constraint values at each time step of the last flow.

        Args:
            t_range: Time steps to export; all steps 0..nt when omitted
        """
        if self.trajectory is None:
            raise InitializationError("export() called before compute()")

        t_range = range(self.trajectory.num_steps + 1) if t_range is None else t_range
        records = []
        for t in t_range:
            Yt = self.Y.copy()
            Yt[self.nvar :] = np.asarray(self.trajectory.get_qt(t)).ravel()
            Ct, _ = self.hess_data.qf_C.compute(Yt)
            records.append(self.scheme.export_timepoint(t, Yt, Ct, self.lam))
        return records

    def iter_print(self, iteration: int) -> None:
        """Print the parts of the objective and the constraint maxima."""
        t = self.terms
        con_text = "".join(
            f" |{label}| = {value:8.4f} "
            for label, value in self.scheme.constraint_details(self.C).items()
        )
        dice_text = f"  Dice = {t.dice:8.4f}" if self.dice is not None else ""
        print(
            f"Iter {iteration:05d}  Mu = {self._mu:8.4f}  |Lam| = {np.abs(self.lam).max(initial=0.0):8.4f}  "
            f"DstSq = {t.distsq:8.4f}  Kin = {t.kinetic * self.opts.w_kinetic:8.4f}  "
            f"Bar = {t.barrier * self._mu / 2:8.4f}  Lag = {t.lag:8.4f}{dice_text} {con_text} "
            f"ETot = {t.total:12.8f}"
        )
