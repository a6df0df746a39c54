"""Core type definitions for JAX-based cm-rep fitting.

This module provides the array aliases, callable signatures and enums shared by
the Hamiltonian flow, the quadratic form machinery and the fitting driver.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, TypeAlias

import numpy as np
from jax import Array


# Dense particle arrays (JAX)
PositionArray: TypeAlias = Array  # (k, d) landmark positions
MomentumArray: TypeAlias = Array  # (k, d) landmark momenta
VelocityArray: TypeAlias = Array  # (k, d) landmark velocities
GradientArray: TypeAlias = Array  # gradients with respect to positions or momenta

# Flat optimization vectors (host side, handed to SciPy)
FlatVector: TypeAlias = np.ndarray

# Scalar types
Float: TypeAlias = float

# Function type aliases
ObjectiveValueAndGradient: TypeAlias = tuple[Float, FlatVector]
ObjectiveFunction: TypeAlias = Callable[[FlatVector], ObjectiveValueAndGradient]
ExportCallback: TypeAlias = Callable[[int, Any], None]


class SolveStatus(Enum):
    """Fitting termination status."""

    SUCCESS = "Success"
    UNSOLVED = "Unsolved"
    MAX_ITERATIONS = "MaxIterations"
    INNER_NOT_CONVERGED = "InnerNotConverged"


class Verbosity(Enum):
    """Verbosity levels of the console reporting."""

    SILENT = "Silent"
    OUTER = "Outer"
    INNER = "Inner"
    DERIVATIVES = "Derivatives"


class ShootingAlgorithm(Enum):
    """Minimization method for plain landmark matching."""

    GRADIENT = "GradDescent"
    ALLASSONNIERE = "Allassonniere"


class ConstraintCategory(Enum):
    """Diagnostic labels of the medial constraints."""

    NORMAL_ORTHOGONAL = "C_NrmOrth"
    NORMAL_UNIT = "C_NrmUnit"
    SPOKE = "C_Spk"


class ErrorCode(Enum):
    """Error codes carried by the exception hierarchy."""

    NO_ERROR = "NoError"
    DIMENSION_MISMATCH = "DimensionMismatch"
    BAD_INDEX = "BadIndex"
    INDEX_MAP_MISMATCH = "IndexMapMismatch"
    NOT_INITIALIZED = "NotInitialized"
    NON_POSITIVE = "NonPositive"
    NON_POSITIVE_PENALTY = "NonPositivePenalty"
    PENALTY_DECREASED = "PenaltyDecreased"
    KERNEL_NOT_POSITIVE_DEFINITE = "KernelNotPositiveDefinite"
    DEGENERATE_TRIANGLE = "DegenerateTriangle"
    NON_MANIFOLD_MESH = "NonManifoldMesh"
    NON_FINITE_FLOW = "NonFiniteFlow"
    INVALID_MEDIAL_INDEX = "InvalidMedialIndex"
