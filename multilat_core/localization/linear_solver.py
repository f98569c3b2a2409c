"""
Linear Lateration Solver (preliminary solutions).

Closed-form position solve from a small subset of distance samples. Used by
the robust solver on every iteration, so it never iterates and returns None
instead of raising when the subset is degenerate.

Each sample i gives ||x - p_i||^2 = d_i^2, i.e.

    -2 p_i . x + ||x||^2 = d_i^2 - ||p_i||^2

which is linear in the unknowns (x, ||x||^2).

- Inhomogeneous mode solves [-2 p_i, 1] u = d_i^2 - ||p_i||^2 by least squares.
- Homogeneous mode finds the null vector h of [-2 p_i, 1, ||p_i||^2 - d_i^2]
  by SVD and dehomogenises x = h[:D] / h[-1]. Simpler algebra, but sensitive
  to the scale of the coordinates.

Both modes first move the subset to its centroid and scale it to unit RMS
spread, so references far from the origin (UTM, ECEF) keep full precision:

    p'_i = (p_i - c) / s,   d'_i = d_i / s,   x = s * x' + c
"""

from typing import Optional

import numpy as np

# Smallest singular value relative to the largest below which a design
# matrix is treated as singular.
DEFAULT_RCOND = 1e-10


class LinearLaterationSolver:
    """
    Solve position from D+1 (or more) distance samples with one linear solve.

    Usage:
        solver = LinearLaterationSolver(homogeneous=False)
        position = solver.solve(positions, distances)

        if position is None:
            # Degenerate subset (collinear in 2D, coplanar in 3D)
            ...
    """

    def __init__(self, homogeneous: bool = False, rcond: float = DEFAULT_RCOND):
        """
        Initialize linear solver.

        Args:
            homogeneous: Use the homogeneous (SVD null vector) formulation
            rcond: Relative singular value threshold for degeneracy
        """
        self.homogeneous = homogeneous
        self.rcond = rcond

    @staticmethod
    def min_required_samples(dimensions: int) -> int:
        return dimensions + 1

    def solve(self, positions: np.ndarray, distances: np.ndarray) -> Optional[np.ndarray]:
        """
        Solve position from a subset of samples.

        Args:
            positions: Reference positions, shape (N, D) with N >= D + 1
            distances: Measured distances, shape (N,)

        Returns:
            Estimated position, shape (D,), or None when the subset is singular
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        n, dims = positions.shape

        if n < self.min_required_samples(dims) or distances.shape != (n,):
            return None

        center = np.mean(positions, axis=0)
        local = positions - center
        scale = float(np.sqrt(np.mean(np.sum(local ** 2, axis=1))))
        if not scale > 0.0 or not np.isfinite(scale):
            # All references coincide
            return None

        local /= scale
        local_distances = distances / scale

        if self.homogeneous:
            position = self._solve_homogeneous(local, local_distances)
        else:
            position = self._solve_inhomogeneous(local, local_distances)

        if position is None:
            return None
        return position * scale + center

    def _solve_inhomogeneous(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
    ) -> Optional[np.ndarray]:
        n, dims = positions.shape
        sq_norms = np.sum(positions ** 2, axis=1)

        a = np.hstack([-2.0 * positions, np.ones((n, 1))])
        b = distances ** 2 - sq_norms

        singular_values = np.linalg.svd(a, compute_uv=False)
        if singular_values[0] <= 0.0 or singular_values[-1] / singular_values[0] < self.rcond:
            return None

        solution, _, _, _ = np.linalg.lstsq(a, b, rcond=None)
        position = solution[:dims]

        if not np.all(np.isfinite(position)):
            return None
        return position

    def _solve_homogeneous(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
    ) -> Optional[np.ndarray]:
        n, dims = positions.shape
        sq_norms = np.sum(positions ** 2, axis=1)

        a = np.hstack([
            -2.0 * positions,
            np.ones((n, 1)),
            (sq_norms - distances ** 2).reshape(-1, 1),
        ])

        _, singular_values, vt = np.linalg.svd(a, full_matrices=True)

        # Rank must be D+1 for a unique (up to scale) null vector
        if singular_values[0] <= 0.0 or singular_values[dims] / singular_values[0] < self.rcond:
            return None

        h = vt[-1]
        scale = h[-1]
        if abs(scale) < self.rcond * np.linalg.norm(h):
            # Solution at infinity
            return None

        position = h[:dims] / scale
        if not np.all(np.isfinite(position)):
            return None
        return position
