"""Exception hierarchy for JAX-based cm-rep fitting.

Configuration and dimension problems fail fast; degenerate geometry is reported
rather than silently carried into the flow. Solver non-convergence is not an
exception and is recorded in the fit statistics instead.
"""

from __future__ import annotations

from .types import ErrorCode


class CMRepException(Exception):
    """Base exception class for cm-rep fitting errors."""

    def __init__(self, message: str, error_code: ErrorCode) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    def __str__(self) -> str:
        return f"CMRep Error {self.error_code.value}: {self.message}"


class DimensionError(CMRepException):
    """Exception for mismatched shapes, point counts and index-map totals."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.DIMENSION_MISMATCH) -> None:
        super().__init__(message, error_code)


class GeometryError(CMRepException):
    """Exception for degenerate geometric configurations."""

    def __init__(
        self, message: str, error_code: ErrorCode = ErrorCode.KERNEL_NOT_POSITIVE_DEFINITE
    ) -> None:
        super().__init__(message, error_code)


class InitializationError(CMRepException):
    """Exception for operations invoked before the required set-up."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NOT_INITIALIZED) -> None:
        super().__init__(message, error_code)


class OptimizationError(CMRepException):
    """Exception for invalid optimization state (penalty, multipliers)."""

    def __init__(self, message: str, error_code: ErrorCode) -> None:
        super().__init__(message, error_code)


def _error_code_to_string(error_code: ErrorCode) -> str:
    """Convert error code to a descriptive string."""
    error_messages = {
        ErrorCode.NO_ERROR: "no error",
        ErrorCode.DIMENSION_MISMATCH: "dimension mismatch",
        ErrorCode.BAD_INDEX: "bad index",
        ErrorCode.INDEX_MAP_MISMATCH: "variable index map does not match vector size",
        ErrorCode.NOT_INITIALIZED: "not initialized",
        ErrorCode.NON_POSITIVE: "expected a positive value",
        ErrorCode.NON_POSITIVE_PENALTY: "Penalty must be strictly positive",
        ErrorCode.PENALTY_DECREASED: "Penalty must not decrease between outer iterations",
        ErrorCode.KERNEL_NOT_POSITIVE_DEFINITE: "Kernel matrix is not positive definite. Check for duplicated landmarks",
        ErrorCode.DEGENERATE_TRIANGLE: "Triangle has zero area",
        ErrorCode.NON_MANIFOLD_MESH: "Mesh is not a manifold around a vertex",
        ErrorCode.NON_FINITE_FLOW: "Hamiltonian flow produced non-finite values",
        ErrorCode.INVALID_MEDIAL_INDEX: "Invalid medial index assignment",
    }
    return error_messages.get(error_code, "unknown error")


def _cmrep_throw(message: str, error_code: ErrorCode) -> None:
    """Raise the base cm-rep exception, tagged with the code's description."""
    raise CMRepException(f"{message} ({_error_code_to_string(error_code)})", error_code)
