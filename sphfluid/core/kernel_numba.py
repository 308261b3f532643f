"""
Scalar kernel evaluations for use inside Numba-compiled loops.

Constants are passed in explicitly so the compiled functions stay
independent of any Python object.
"""

import numba as nb
import numpy as np


@nb.njit(fastmath=True, cache=True)
def poly6_kernel(r2: float, h2: float, poly6: float) -> float:
    """Poly6 kernel of the squared distance."""
    if r2 >= h2:
        return 0.0
    diff = h2 - r2
    return poly6 * diff * diff * diff


@nb.njit(fastmath=True, cache=True)
def spiky_gradient_factor(r: float, h: float, spiky_grad: float) -> float:
    """Scalar that multiplies r⃗ to give the Spiky gradient.

    Returns 0 for coincident particles so no direction is ever
    normalized from a zero vector.
    """
    if r >= h or r <= 0.0:
        return 0.0
    diff = h - r
    return spiky_grad * diff * diff / r


@nb.njit(fastmath=True, cache=True)
def viscosity_laplacian(r: float, h: float, visc_lap: float) -> float:
    """Viscosity kernel Laplacian."""
    if r >= h:
        return 0.0
    return visc_lap * (h - r)


@nb.njit(fastmath=True, cache=True)
def cell_coords(px: float, py: float, pz: float,
                ox: float, oy: float, oz: float,
                cell_size: float, gx: int, gy: int, gz: int):
    """Integer cell coordinates clamped into the grid.

    Returns (cx, cy, cz, inside) where inside is False when the
    position had to be clamped.
    """
    cx = int(np.floor((px - ox) / cell_size))
    cy = int(np.floor((py - oy) / cell_size))
    cz = int(np.floor((pz - oz) / cell_size))
    inside = 0 <= cx < gx and 0 <= cy < gy and 0 <= cz < gz
    cx = max(0, min(cx, gx - 1))
    cy = max(0, min(cy, gy - 1))
    cz = max(0, min(cz, gz - 1))
    return cx, cy, cz, inside
