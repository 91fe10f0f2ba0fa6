"""Single-process reference for the diffusion stencil.

Used only to check the distributed solver: no partitions, no halos, every
boundary cell of the N x N field held fixed.
"""

import numpy as np


def diffuse_sequential(u0: np.ndarray, T: int, coeff: float) -> np.ndarray:
    """Apply ``T`` explicit five-point steps to a copy of ``u0``.

    Parameters
    ----------
    u0 : np.ndarray
        Initial N x N field.
    T : int
        Number of timesteps.
    coeff : float
        ``D * dt / dx**2``.
    """
    u = np.array(u0, dtype=np.float64, copy=True)
    un = u.copy()

    for _ in range(T):
        c = u[1:-1, 1:-1]
        un[1:-1, 1:-1] = c + coeff * (
            u[2:, 1:-1] + u[:-2, 1:-1] + u[1:-1, 2:] + u[1:-1, :-2] - 4.0 * c
        )
        u, un = un, u

    return u
