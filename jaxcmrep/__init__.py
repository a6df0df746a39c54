"""JAX-based fitting of boundary-constrained medial representations.

This package fits a cm-rep template (boundary mesh, medial skeleton and radius)
to a target by geodesic shooting of landmarks under a Gaussian kernel. The
medial consistency constraints are enforced exactly with a method-of-multipliers
outer loop around SciPy's unconstrained solvers.
"""

from __future__ import annotations

import jax


# Enable 64-bit precision before any arrays are created
jax.config.update("jax_enable_x64", True)

# Augmented Lagrangian objective and driver
from .augmented_lagrangian import AugmentedLagrangianObjective, ObjectiveTerms

# Medial model
from .cmrep import CMRep, find_medial_triangle_center, match_medial_triangles

# Derivative checks
from .derivative_check import DerivativeProbe, check_gradient, check_jacobian, check_quadratic_form

# Image overlap term
from .dice import DiceOverlapComputation, GridImageFunction, ImageFunction, TrigTestFunction

# Exception hierarchy
from .exceptions import (
    CMRepException,
    DimensionError,
    GeometryError,
    InitializationError,
    OptimizationError,
)

# Configuration classes
from .fit_options import FitOptions, ShootingOptions
from .fit_solver import MedialFitSolver, ObjectiveFunctionWrapper, fit_medial_model
from .fit_stats import FitStats
from .fitting_scheme import FittingScheme, HessianData, PointBasedMedialFitting, TimepointExport

# Geodesic shooting
from .hamiltonian import FlowJacobian, HamiltonianSystem, Trajectory
from .index_map import IndexMap, VariableBlock
from .kernel import GaussianKernel
from .landmark_shooting import (
    LandmarkMatchingObjective,
    ShootingResult,
    match_landmarks,
    minimize_allassonniere,
    minimize_gradient,
)
from .mesh import OneRing, loop_tangent_weights, triangle_area_and_gradient, vertex_one_rings

# Sparse quadratic forms
from .quadratic_form import (
    HessianCache,
    QuadraticForm,
    QuadraticFormCache,
    SymmetricQuadraticForm,
    add_scaled_outer_product,
)

# Type definitions
from .types import (
    ConstraintCategory,
    ErrorCode,
    ExportCallback,
    Float,
    FlatVector,
    ObjectiveFunction,
    ShootingAlgorithm,
    SolveStatus,
    Verbosity,
)


# Version information
__version__ = "0.1.0"
__license__ = "MIT"

# Public API
__all__ = [
    "AugmentedLagrangianObjective",
    "CMRep",
    "CMRepException",
    "ConstraintCategory",
    "DerivativeProbe",
    "DiceOverlapComputation",
    "DimensionError",
    "ErrorCode",
    "ExportCallback",
    "FitOptions",
    "FitStats",
    "FittingScheme",
    "Float",
    "FlatVector",
    "FlowJacobian",
    "GaussianKernel",
    "GeometryError",
    "GridImageFunction",
    "HamiltonianSystem",
    "HessianCache",
    "HessianData",
    "ImageFunction",
    "IndexMap",
    "InitializationError",
    "LandmarkMatchingObjective",
    "MedialFitSolver",
    "ObjectiveFunction",
    "ObjectiveFunctionWrapper",
    "ObjectiveTerms",
    "OneRing",
    "OptimizationError",
    "PointBasedMedialFitting",
    "QuadraticForm",
    "QuadraticFormCache",
    "ShootingAlgorithm",
    "ShootingOptions",
    "ShootingResult",
    "SolveStatus",
    "SymmetricQuadraticForm",
    "TimepointExport",
    "Trajectory",
    "TrigTestFunction",
    "VariableBlock",
    "Verbosity",
    "__license__",
    "__version__",
    "add_scaled_outer_product",
    "check_gradient",
    "check_jacobian",
    "check_quadratic_form",
    "find_medial_triangle_center",
    "fit_medial_model",
    "loop_tangent_weights",
    "match_landmarks",
    "match_medial_triangles",
    "minimize_allassonniere",
    "minimize_gradient",
    "triangle_area_and_gradient",
    "vertex_one_rings",
]
