"""
Vectorized SPH smoothing kernels (Müller et al. 2003).

Implements, for a smoothing radius h:
- Poly6 W(r²) for density
- Spiky gradient ∇W(r⃗) for the pressure force
- Viscosity Laplacian ∇²W(r) for the viscosity force

The normalization constants depend only on h and are cached in
KernelConstants; they are recomputed whenever h changes.
"""

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class KernelConstants:
    """Scalar constants derived from the smoothing radius.

    poly6      = 315 / (64 π h⁹)
    spiky_grad = -45 / (π h⁶)
    visc_lap   =  45 / (π h⁶)
    """
    h: float
    h2: float
    poly6: float
    spiky_grad: float
    visc_lap: float

    @staticmethod
    def from_radius(h: float) -> 'KernelConstants':
        """Precompute the kernel constants for radius h.

        Raises:
            ValueError: If h is not strictly positive
        """
        if not h > 0:
            raise ValueError(f"Smoothing radius must be positive, got {h}")
        h = float(h)
        return KernelConstants(
            h=h,
            h2=h * h,
            poly6=315.0 / (64.0 * math.pi * h ** 9),
            spiky_grad=-45.0 / (math.pi * h ** 6),
            visc_lap=45.0 / (math.pi * h ** 6),
        )

    def with_radius(self, h: float) -> 'KernelConstants':
        """Return these constants, or fresh ones if h differs."""
        if h == self.h:
            return self
        return KernelConstants.from_radius(h)

    @property
    def poly6_self(self) -> float:
        """Poly6 at r = 0, the self contribution per unit mass."""
        return self.poly6 * self.h2 ** 3


class SPHKernels:
    """Array versions of the three kernels.

    All methods accept arrays of any shape (the vector kernel takes a
    trailing axis of length 3) and return float arrays.
    """

    def __init__(self, constants: KernelConstants):
        self.constants = constants

    @staticmethod
    def for_radius(h: float) -> 'SPHKernels':
        return SPHKernels(KernelConstants.from_radius(h))

    def poly6(self, r2: np.ndarray) -> np.ndarray:
        """Poly6(r²) = poly6 · (h² - r²)³ for r² < h², else 0."""
        c = self.constants
        r2 = np.asarray(r2)
        diff = np.where(r2 < c.h2, c.h2 - r2, 0.0)
        return c.poly6 * diff * diff * diff

    def spiky_gradient(self, r_vec: np.ndarray) -> np.ndarray:
        """SpikyGrad(r⃗) = spiky_grad · (h - |r|)² · r̂ for 0 < |r| < h.

        Zero-length separations get a zero gradient instead of a NaN
        direction.
        """
        c = self.constants
        r_vec = np.asarray(r_vec)
        r = np.sqrt(np.sum(r_vec * r_vec, axis=-1))
        inside = (r < c.h) & (r > 0.0)

        # Safe divisor where the mask is off
        safe_r = np.where(inside, r, 1.0)
        factor = np.where(inside, c.spiky_grad * (c.h - r) ** 2 / safe_r, 0.0)
        return factor[..., np.newaxis] * r_vec

    def viscosity_laplacian(self, r: np.ndarray) -> np.ndarray:
        """ViscLap(r) = visc_lap · (h - r) for r < h, else 0."""
        c = self.constants
        r = np.asarray(r)
        return np.where(r < c.h, c.visc_lap * (c.h - r), 0.0)

    def validate(self, n_samples: int = 2000) -> bool:
        """Check that Poly6 integrates to one over its support."""
        h = self.constants.h
        r = np.linspace(0.0, h, n_samples)
        dr = r[1] - r[0]
        integral = 4.0 * np.pi * np.sum(r * r * self.poly6(r * r)) * dr
        return abs(integral - 1.0) < 0.01
