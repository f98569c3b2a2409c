"""
Nonlinear Lateration Solver (refinement and covariance).

Weighted Levenberg-Marquardt over distance residuals:

    minimise  sum_i w_i * (||x - p_i|| - d_i)^2,   w_i = 1 / sigma_i^2

Used to polish the consensus position found by the robust solver and to
propagate measurement uncertainty into a position covariance:

    Cov = sigma_hat^2 * (J^T W J)^-1,   sigma_hat^2 = sum_i w_i r_i^2 / (N - D)
"""

from typing import Optional, Tuple
from dataclasses import dataclass
import logging

import numpy as np

from multilat_core.errors import ConfigurationError, NumericalError

logger = logging.getLogger(__name__)

# Distances below this are treated as zero when forming the Jacobian
EPSILON = 1e-7


@dataclass
class RefinementConfig:
    """
    Configuration for nonlinear refinement.

    Attributes:
        max_iterations: Maximum Levenberg-Marquardt iterations
        convergence_tol: Relative step / cost tolerance for convergence
        initial_damping: Initial Levenberg-Marquardt damping factor
        max_damping: Damping above which the solve is declared stalled
        psd_tolerance: Relative eigenvalue tolerance for the PSD check
    """

    max_iterations: int = 100
    convergence_tol: float = 1e-12
    initial_damping: float = 1e-3
    max_damping: float = 1e12
    psd_tolerance: float = 1e-9

    def __post_init__(self):
        """Validate configuration."""
        if self.max_iterations <= 0:
            raise ConfigurationError(f"max_iterations must be positive: {self.max_iterations}")
        if self.convergence_tol <= 0:
            raise ConfigurationError(f"convergence_tol must be positive: {self.convergence_tol}")
        if not 0 < self.initial_damping < self.max_damping:
            raise ConfigurationError("initial_damping must be positive and below max_damping")


@dataclass
class RefinementResult:
    """
    Output of a nonlinear refinement.

    Attributes:
        position: Refined position, shape (D,)
        covariance: Position covariance (D, D), None if not requested
        iterations: Iterations performed
        residual_rms: Weighted RMS residual at the solution
        chi2: Weighted sum of squared residuals at the solution
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residual_rms: float
    chi2: float


class NonLinearLaterationSolver:
    """
    Refine a position from distance samples with weighted Levenberg-Marquardt.

    Usage:
        solver = NonLinearLaterationSolver(RefinementConfig(max_iterations=50))
        result = solver.solve(positions, distances, std_devs,
                              initial_position=x0, compute_covariance=True)
        print(result.position, result.covariance)

    Raises NumericalError when the solve does not converge or the normal
    equations are singular; callers decide whether that is fatal.
    """

    def __init__(self, config: Optional[RefinementConfig] = None):
        """
        Initialize nonlinear solver.

        Args:
            config: Refinement configuration (uses defaults if None)
        """
        self.config = config or RefinementConfig()

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        std_devs: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        compute_covariance: bool = True,
    ) -> RefinementResult:
        """
        Solve position from samples.

        Args:
            positions: Reference positions, shape (N, D), N >= D + 1
            distances: Measured distances, shape (N,)
            std_devs: Optional distance standard deviations, shape (N,)
            initial_position: Starting point (centroid of positions if None)
            compute_covariance: Also propagate covariance at the solution

        Returns:
            RefinementResult

        Raises:
            NumericalError: If the solve diverges, stalls or is singular
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        n, dims = positions.shape

        if n < dims + 1:
            raise NumericalError(f"need at least {dims + 1} samples, got {n}")

        if std_devs is None:
            weights = np.ones(n)
        else:
            weights = 1.0 / np.asarray(std_devs, dtype=float) ** 2

        # Iterate about the centroid; step tolerances are relative to ||x||
        center = np.mean(positions, axis=0)
        local = positions - center

        if initial_position is None:
            x = np.zeros(dims)
        else:
            x = np.array(initial_position, dtype=float)
            if x.shape != (dims,):
                raise NumericalError(f"initial position must have {dims} coordinates")
            x = x - center

        local_position, iterations = self._levenberg_marquardt(local, distances, weights, x)
        position = local_position + center

        residuals, jacobian = self._evaluate(local_position, local, distances)
        chi2 = float(np.sum(weights * residuals ** 2))
        residual_rms = float(np.sqrt(chi2 / n))

        covariance = None
        if compute_covariance:
            covariance = self._compute_covariance(jacobian, weights, chi2, n, dims)

        return RefinementResult(
            position=position,
            covariance=covariance,
            iterations=iterations,
            residual_rms=residual_rms,
            chi2=chi2,
        )

    def estimate_covariance(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        position: np.ndarray,
        std_devs: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Propagate distance uncertainty into a position covariance at position.

        Args:
            positions: Reference positions, shape (N, D)
            distances: Measured distances, shape (N,)
            position: Point at which to linearise, shape (D,)
            std_devs: Optional distance standard deviations, shape (N,)

        Returns:
            Covariance matrix (D, D), symmetric positive semi-definite

        Raises:
            NumericalError: If J^T W J is singular or the result is not PSD
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        n, dims = positions.shape

        if std_devs is None:
            weights = np.ones(n)
        else:
            weights = 1.0 / np.asarray(std_devs, dtype=float) ** 2

        center = np.mean(positions, axis=0)
        residuals, jacobian = self._evaluate(
            np.asarray(position, dtype=float) - center, positions - center, distances
        )
        chi2 = float(np.sum(weights * residuals ** 2))
        return self._compute_covariance(jacobian, weights, chi2, n, dims)

    def _levenberg_marquardt(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        weights: np.ndarray,
        x: np.ndarray,
    ) -> Tuple[np.ndarray, int]:
        """
        Run damped Gauss-Newton iterations from x.

        Returns:
            Tuple of (position, iterations)
        """
        tol = self.config.convergence_tol
        damping = self.config.initial_damping
        dims = x.size

        residuals, jacobian = self._evaluate(x, positions, distances)
        cost = float(np.sum(weights * residuals ** 2))

        for iteration in range(1, self.config.max_iterations + 1):
            if cost <= tol ** 2:
                return x, iteration

            jtw = jacobian.T * weights
            jtj = jtw @ jacobian
            gradient = jtw @ residuals

            # Marquardt scaling, with an identity floor for zero diagonals
            diag = np.diag(jtj)
            damped = jtj + damping * np.diag(np.maximum(diag, tol))

            try:
                delta = np.linalg.solve(damped, -gradient)
            except np.linalg.LinAlgError:
                damping *= 10.0
                if damping > self.config.max_damping:
                    break
                continue

            if not np.all(np.isfinite(delta)):
                raise NumericalError("refinement step is not finite")

            if np.linalg.norm(delta) <= tol * (np.linalg.norm(x) + tol):
                return x, iteration

            x_new = x + delta
            residuals_new, jacobian_new = self._evaluate(x_new, positions, distances)
            cost_new = float(np.sum(weights * residuals_new ** 2))

            if cost_new <= cost:
                converged = (cost - cost_new) <= tol * cost
                x, residuals, jacobian, cost = x_new, residuals_new, jacobian_new, cost_new
                damping = max(damping / 10.0, 1e-15)
                if converged:
                    return x, iteration
            else:
                damping *= 10.0
                if damping > self.config.max_damping:
                    break

        # Stalled or out of iterations: accept only if the gradient vanished
        gradient = (jacobian.T * weights) @ residuals
        scale = max(1.0, float(np.sqrt(cost)))
        if np.linalg.norm(gradient) <= np.sqrt(tol) * scale * dims:
            return x, self.config.max_iterations

        logger.debug("Refinement did not converge (cost=%.3e, damping=%.1e)", cost, damping)
        raise NumericalError("nonlinear refinement did not converge")

    @staticmethod
    def _evaluate(
        x: np.ndarray,
        positions: np.ndarray,
        distances: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute residuals and Jacobian at x.

        Returns:
            Tuple of (residuals (N,), jacobian (N, D))
        """
        diff = x - positions
        computed = np.linalg.norm(diff, axis=1)
        residuals = computed - distances

        # d||x - p_i|| / dx = (x - p_i) / ||x - p_i||
        safe = np.maximum(computed, EPSILON)
        jacobian = diff / safe[:, None]
        jacobian[computed < EPSILON] = 0.0

        return residuals, jacobian

    def _compute_covariance(
        self,
        jacobian: np.ndarray,
        weights: np.ndarray,
        chi2: float,
        n: int,
        dims: int,
    ) -> np.ndarray:
        """
        Propagate covariance at the solution.

        Raises:
            NumericalError: If J^T W J is singular or the result is not PSD
        """
        information = (jacobian.T * weights) @ jacobian

        try:
            if np.linalg.cond(information) > 1.0 / np.finfo(float).eps:
                raise NumericalError("information matrix is singular")
            inverse = np.linalg.inv(information)
        except np.linalg.LinAlgError as e:
            raise NumericalError("information matrix is singular") from e

        dof = n - dims
        variance = chi2 / dof if dof > 0 else 1.0

        covariance = variance * inverse
        covariance = 0.5 * (covariance + covariance.T)

        eigenvalues = np.linalg.eigvalsh(covariance)
        largest = max(float(np.max(np.abs(eigenvalues))), np.finfo(float).tiny)
        if np.min(eigenvalues) < -self.config.psd_tolerance * largest:
            raise NumericalError("covariance is not positive semi-definite")

        return covariance
