"""
Estimation Result Output Schema.

Defines the output of a robust lateration solve: the consensus set found by
the active strategy and the final position with optional covariance.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
from enum import IntEnum

import numpy as np


class RobustEstimatorMethod(IntEnum):
    """Robust estimation strategy."""

    RANSAC = 0          # Fixed threshold, maximise inlier count
    LMEDS = 1           # Least median of squared residuals
    MSAC = 2            # Truncated squared residuals
    PROSAC = 3          # RANSAC with quality-ordered sampling
    PROMEDS = 4         # LMedS with quality-ordered sampling


@dataclass
class ConsensusSet:
    """
    Best consensus found by a robust strategy.

    Attributes:
        inlier_mask: Boolean mask over all samples (True = inlier)
        score: Strategy score (inlier count for RANSAC/PROSAC, cost otherwise)
        residuals: Absolute distance residual of every sample
        threshold: Inlier threshold used to build the mask (estimated for LMedS/PROMedS)
        method: Strategy that produced this consensus
        cost: Truncated squared cost (tie-breaker for PROSAC)

    Notes:
        - len(inlier_mask) == len(residuals) == number of samples
    """

    inlier_mask: np.ndarray
    score: float
    residuals: np.ndarray
    threshold: float
    method: RobustEstimatorMethod
    cost: float = 0.0

    def __post_init__(self):
        """Validate consensus shape."""
        self.inlier_mask = np.asarray(self.inlier_mask, dtype=bool)
        self.residuals = np.asarray(self.residuals, dtype=float)
        if self.inlier_mask.shape != self.residuals.shape:
            raise ValueError(
                f"Mask shape {self.inlier_mask.shape} does not match "
                f"residuals shape {self.residuals.shape}"
            )

    @property
    def num_samples(self) -> int:
        return int(self.inlier_mask.size)

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))

    @property
    def inlier_ratio(self) -> float:
        """Fraction of samples classified as inliers."""
        if self.num_samples == 0:
            return 0.0
        return self.num_inliers / self.num_samples

    @property
    def inlier_indices(self) -> np.ndarray:
        return np.flatnonzero(self.inlier_mask)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'method': self.method.name,
            'inlier_mask': self.inlier_mask.tolist(),
            'num_inliers': self.num_inliers,
            'score': float(self.score),
            'threshold': float(self.threshold),
            'residuals': self.residuals.tolist(),
        }


@dataclass
class EstimationResult:
    """
    Final position estimate from a robust lateration solve.

    Attributes:
        position: Estimated position, shape (D,)
        covariance: Position covariance (D, D), None unless refinement
            with covariance was requested and succeeded
        inliers_data: Consensus set of the robust stage
        method: Strategy used
        iterations: Robust iterations performed
        refined: True if nonlinear refinement succeeded
        residual_rms: Weighted RMS residual over inliers at the final position

    Notes:
        - covariance is symmetric positive semi-definite whenever present
        - refined=False with a requested refinement means a soft numerical failure
    """

    position: np.ndarray
    covariance: Optional[np.ndarray] = None
    inliers_data: Optional[ConsensusSet] = None
    method: Optional[RobustEstimatorMethod] = None
    iterations: int = 0
    refined: bool = False
    residual_rms: Optional[float] = None

    def __post_init__(self):
        """Validate estimate."""
        self.position = np.asarray(self.position, dtype=float)
        if self.position.ndim != 1 or self.position.size not in (2, 3):
            raise ValueError(f"Position must be 2D or 3D: {self.position}")

        if self.covariance is not None:
            self.covariance = np.asarray(self.covariance, dtype=float)
            d = self.position.size
            if self.covariance.shape != (d, d):
                raise ValueError(
                    f"Covariance shape {self.covariance.shape} does not match {d}D position"
                )

        if self.iterations < 0:
            raise ValueError(f"Iterations cannot be negative: {self.iterations}")

    @property
    def dimensions(self) -> int:
        return int(self.position.size)

    @property
    def has_covariance(self) -> bool:
        return self.covariance is not None

    @property
    def num_inliers(self) -> int:
        if self.inliers_data is None:
            return 0
        return self.inliers_data.num_inliers

    @property
    def position_std(self) -> Optional[Tuple[float, ...]]:
        """
        Position standard deviations (sqrt of covariance diagonal).

        Returns:
            Per-axis standard deviations, or None without covariance
        """
        if self.covariance is None:
            return None
        diag = np.clip(np.diag(self.covariance), 0.0, None)
        return tuple(float(v) for v in np.sqrt(diag))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'position': self.position.tolist(),
            'covariance': None if self.covariance is None else self.covariance.tolist(),
            'position_std': None if self.position_std is None else list(self.position_std),
            'method': None if self.method is None else self.method.name,
            'iterations': self.iterations,
            'refined': self.refined,
            'residual_rms': self.residual_rms,
            'inliers_data': None if self.inliers_data is None else self.inliers_data.to_dict(),
        }
