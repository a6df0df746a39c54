"""Dice-style overlap between a cm-rep and a target image.

The interior of the model is sampled by wedgelets: copies of each boundary
triangle pushed along its spokes towards the medial surface, at fractions
l = 0, 1/n, ..., 1 of the radius. Each wedgelet is sampled once at its center
and weighted by its area, the mean radius of its corners and a trapezoid
weight along the spoke, which approximates the volume it represents. The
overlap with an image function f is

    dice = 2 sum(f v) / (sum(v) + V_image)

and its gradient is propagated back by hand to the boundary points, the
boundary normals and the medial radii.
"""

from __future__ import annotations

from typing import Protocol

import jax.numpy as jnp
import numpy as np
from jax import Array
from scipy.ndimage import gaussian_filter

from .cmrep import CMRep
from .exceptions import DimensionError, InitializationError
from .mesh import triangle_area_and_gradient
from .types import Float


class ImageFunction(Protocol):
    """Anything that can be sampled with gradients at a batch of points."""

    def compute(self, points: Array) -> tuple[Array, Array]:
        """Values (m,) and gradients (m, 3) at points (m, 3)."""
        ...


class TrigTestFunction:
    """f(x, y, z) = cos(xy - z) - sin(yz - x), for testing derivatives."""

    def compute(self, points: Array) -> tuple[Array, Array]:
        X = jnp.asarray(points, dtype=jnp.float64)
        x, y, z = X[:, 0], X[:, 1], X[:, 2]
        s1, c1 = jnp.sin(x * y - z), jnp.cos(x * y - z)
        s2, c2 = jnp.sin(y * z - x), jnp.cos(y * z - x)

        f = c1 - s2
        grad = jnp.stack([-s1 * y + c2, -s1 * x - c2 * z, s1 - c2 * y], axis=-1)
        return f, grad


class GridImageFunction:
    """Gaussian-smoothed image sampled by trilinear interpolation.

    Voxel (i, j, k) sits at origin + spacing * (i, j, k). Outside the grid
    both the value and the gradient are zero.
    """

    def __init__(self, image, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0), sigma: Float = 0.2):
        """Smooth the image and record its volume.

        Args:
            image: 3D array of intensities, typically a binary mask
            spacing: Voxel size along each axis
            origin: Physical position of voxel (0, 0, 0)
            sigma: Standard deviation of the smoothing in physical units
        """
        image = np.asarray(image, dtype=np.float64)
        if image.ndim != 3 or min(image.shape) < 2:
            raise DimensionError(f"Expected a 3D image with at least 2 voxels per axis, got {image.shape}")

        self.spacing = np.asarray(spacing, dtype=np.float64)
        self.origin = np.asarray(origin, dtype=np.float64)
        if self.spacing.shape != (3,) or self.origin.shape != (3,) or np.any(self.spacing <= 0):
            raise DimensionError("Spacing must be 3 positive numbers and origin 3 numbers")

        self.image = gaussian_filter(image, sigma / self.spacing) if sigma > 0 else image
        self.volume = float(self.image.sum() * np.prod(self.spacing))

    def compute(self, points: Array) -> tuple[np.ndarray, np.ndarray]:
        X = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        vox = (X - self.origin) / self.spacing
        shape = np.asarray(self.image.shape)

        inside = np.all((vox >= 0) & (vox <= shape - 1), axis=1)
        i0 = np.clip(np.floor(vox).astype(np.int64), 0, shape - 2)
        frac = vox - i0

        values = np.zeros(len(X))
        grad_vox = np.zeros((len(X), 3))
        for corner in np.ndindex(2, 2, 2):
            c = np.asarray(corner)
            I = self.image[i0[:, 0] + c[0], i0[:, 1] + c[1], i0[:, 2] + c[2]]
            w = np.where(c == 1, frac, 1.0 - frac)
            dw = np.where(c == 1, 1.0, -1.0)
            values += I * w.prod(axis=1)
            for a in range(3):
                others = np.delete(w, a, axis=1).prod(axis=1)
                grad_vox[:, a] += I * dw[a] * others

        values[~inside] = 0.0
        grad_vox[~inside] = 0.0
        return values, grad_vox / self.spacing


class DiceOverlapComputation:
    """Dice overlap of a cm-rep's interior with an image function."""

    def __init__(self, model: CMRep, n_wedges: int, vol_image: Float, func: ImageFunction):
        if n_wedges <= 0:
            raise ValueError("n_wedges must be positive")

        self.model = model
        self.func = func
        self.vol_image = float(vol_image)
        self.n_wedges = n_wedges

        self.ib = jnp.asarray(model.bnd_tri)
        self.im = jnp.asarray(model.bnd_mi[model.bnd_tri])

        # Position along the spoke and trapezoid weight of each wedge layer
        self.l = jnp.arange(n_wedges + 1) / n_wedges
        w_w = np.full(n_wedges + 1, 1.0 / n_wedges)
        w_w[0] = w_w[-1] = 0.5 / n_wedges
        self.w_w = jnp.asarray(w_w)

        self._cache: dict | None = None

    @property
    def num_wedgelets(self) -> int:
        return int(self.ib.shape[0]) * (self.n_wedges + 1)

    def _corners(self, qb: Array, Nb: Array, Rm: Array) -> Array:
        """Corners (W, T, 3, 3) of every wedgelet."""
        offset = self.l[:, None, None, None] * (Nb[self.ib] * Rm[self.im][..., None])[None]
        return qb[self.ib][None] - offset

    def compute(self, qb, Nb, Rm) -> Float:
        """Overlap for boundary points qb (nv, 3), normals Nb (nv, 3) and radii Rm (nmv,)."""
        qb, Nb, Rm = (jnp.asarray(a, dtype=jnp.float64) for a in (qb, Nb, Rm))
        X = self._corners(qb, Nb, Rm)
        A, B, C = X[..., 0, :], X[..., 1, :], X[..., 2, :]
        area, dA, dB, dC = triangle_area_and_gradient(A, B, C, check_degenerate=False)

        S = (A + B + C) / 3.0
        R_S = Rm[self.im].mean(axis=-1)

        f, grad_f = self.func.compute(S.reshape(-1, 3))
        f = jnp.asarray(f).reshape(area.shape)
        grad_f = jnp.asarray(grad_f).reshape(S.shape)

        v = self.w_w[:, None] * R_S[None, :] * area
        sum_v, sum_fv = float(jnp.sum(v)), float(jnp.sum(f * v))

        self._cache = dict(
            qb=qb, Nb=Nb, Rm=Rm, area=area, d_area=jnp.stack([dA, dB, dC], axis=2),
            R_S=R_S, f=f, grad_f=grad_f, v=v, sum_v=sum_v, sum_fv=sum_fv,
        )
        return 2.0 * sum_fv / (sum_v + self.vol_image)

    def backpropagate(self) -> tuple[Array, Array, Array]:
        """Gradient of the last computed overlap with respect to (qb, Nb, Rm)."""
        if self._cache is None:
            raise InitializationError("DiceOverlapComputation.backpropagate() called before compute()")
        c = self._cache
        denom = c["sum_v"] + self.vol_image
        d_fv = 2.0 / denom
        d_v = -2.0 * c["sum_fv"] / (denom * denom)

        # Per wedgelet (W, T)
        d_f = d_fv * c["v"]
        d_v = d_v + d_fv * c["f"]
        vol_scale = d_v * self.w_w[:, None] * c["R_S"][None, :]

        # Per corner (W, T, 3, 3)
        d_X = (d_f[..., None] * c["grad_f"] / 3.0)[..., None, :] + vol_scale[..., None, None] * c["d_area"]

        ib, im = self.ib, self.im
        Nb, Rm = c["Nb"], c["Rm"]
        lR = self.l[:, None, None] * Rm[im][None]  # (W, T, 3)

        d_qb = jnp.zeros_like(c["qb"]).at[ib].add(d_X.sum(axis=0))
        d_Nb = jnp.zeros_like(Nb).at[ib].add(-(lR[..., None] * d_X).sum(axis=0))

        d_R_area = (d_v * self.w_w[:, None] * c["area"]).sum(axis=0) / 3.0  # (T,)
        d_R_spoke = -(self.l[:, None, None] * jnp.sum(d_X * Nb[ib][None], axis=-1)).sum(axis=0)
        d_Rm = jnp.zeros_like(Rm).at[im].add(d_R_area[:, None] + d_R_spoke)

        return d_qb, d_Nb, d_Rm
