"""
Robust Strategy Policies.

Each policy turns the residuals of a candidate position into a ConsensusSet
and decides whether one consensus beats another:

| Policy  | Inlier rule                 | Score                          | Sampling        |
|---------|-----------------------------|--------------------------------|-----------------|
| RANSAC  | r <= threshold              | inlier count (max)             | uniform         |
| LMedS   | r <= estimated threshold    | median r^2 (min)               | uniform         |
| MSAC    | r <= threshold              | sum min(r^2, threshold^2) (min)| uniform         |
| PROSAC  | r <= threshold              | inlier count, then cost        | quality ordered |
| PROMedS | r <= estimated threshold    | median r^2 (min)               | quality ordered |

LMedS/PROMedS estimate their threshold from the median using the usual
robust scale 1.4826 * (1 + 5 / (N - m)) * sqrt(median), times inlier_factor.
"""

from typing import Optional
import math

import numpy as np

from multilat_core.errors import ConfigurationError
from multilat_core.proto.estimation_result import ConsensusSet, RobustEstimatorMethod

# Consistency constant of the median absolute deviation for Gaussian noise
MEDIAN_TO_SIGMA = 1.4826

DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-4
DEFAULT_INLIER_FACTOR = 1.5

# Breakdown point of the median: inlier ratio assumed by the LMedS budget
LMEDS_BREAKDOWN = 0.5


def compute_required_iterations(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """
    Iterations needed to draw one all-inlier subset with the given confidence.

        iterations = log(1 - confidence) / log(1 - inlier_ratio^m)

    Args:
        inlier_ratio: Estimated fraction of inliers (0-1)
        subset_size: Samples per subset (m)
        confidence: Desired probability of success (0-1)
        max_iterations: Upper clamp

    Returns:
        Iterations in [1, max_iterations]
    """
    p_good = inlier_ratio ** subset_size
    if p_good >= 1.0:
        return 1
    if p_good <= 0.0:
        return max_iterations

    denominator = math.log1p(-p_good)
    if denominator == 0.0:
        return max_iterations

    iterations = math.ceil(math.log(1.0 - confidence) / denominator)
    return int(min(max(iterations, 1), max_iterations))


class StrategyPolicy:
    """
    Base class for robust strategy policies.

    Subclasses implement evaluate() and is_better(). Policies are stateless
    across solves; the robust solver owns the best consensus.
    """

    method: RobustEstimatorMethod = None
    uses_quality_ordering: bool = False
    uses_threshold: bool = True

    def evaluate(self, residuals: np.ndarray, subset_size: int) -> ConsensusSet:
        """
        Score a candidate from its absolute residuals over all samples.

        Args:
            residuals: |distance(candidate, p_i) - d_i| for every sample
            subset_size: Size of the subsets being drawn

        Returns:
            ConsensusSet for the candidate
        """
        raise NotImplementedError

    def is_better(self, candidate: ConsensusSet, best: Optional[ConsensusSet]) -> bool:
        """True if candidate should replace best (best may be None)."""
        raise NotImplementedError

    def should_stop(self, best: ConsensusSet) -> bool:
        """True if the search can stop early with this consensus."""
        return False

    def budget_inlier_ratio(self, best: ConsensusSet) -> float:
        """Inlier ratio used to shrink the iteration budget."""
        return best.inlier_ratio

    def describe(self) -> dict:
        """Policy parameters for logging and serialization."""
        return {'method': self.method.name}


class RansacPolicy(StrategyPolicy):
    """Fixed threshold, maximise inlier count."""

    method = RobustEstimatorMethod.RANSAC

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        if threshold <= 0:
            raise ConfigurationError(f"threshold must be positive: {threshold}")
        self.threshold = threshold

    def truncated_cost(self, residuals: np.ndarray) -> float:
        return float(np.sum(np.minimum(residuals ** 2, self.threshold ** 2)))

    def evaluate(self, residuals: np.ndarray, subset_size: int) -> ConsensusSet:
        mask = residuals <= self.threshold
        return ConsensusSet(
            inlier_mask=mask,
            score=float(np.count_nonzero(mask)),
            residuals=residuals,
            threshold=self.threshold,
            method=self.method,
            cost=self.truncated_cost(residuals),
        )

    def is_better(self, candidate: ConsensusSet, best: Optional[ConsensusSet]) -> bool:
        best_score = 0.0 if best is None else best.score
        return candidate.score > best_score

    def describe(self) -> dict:
        return {'method': self.method.name, 'threshold': self.threshold}


class MsacPolicy(RansacPolicy):
    """Truncated quadratic loss: inliers cost r^2, outliers cost threshold^2."""

    method = RobustEstimatorMethod.MSAC

    def evaluate(self, residuals: np.ndarray, subset_size: int) -> ConsensusSet:
        cost = self.truncated_cost(residuals)
        return ConsensusSet(
            inlier_mask=residuals <= self.threshold,
            score=cost,
            residuals=residuals,
            threshold=self.threshold,
            method=self.method,
            cost=cost,
        )

    def is_better(self, candidate: ConsensusSet, best: Optional[ConsensusSet]) -> bool:
        if not math.isfinite(candidate.score):
            return False
        return best is None or candidate.score < best.score


class ProsacPolicy(RansacPolicy):
    """RANSAC scoring with quality-ordered sampling; ties broken by truncated cost."""

    method = RobustEstimatorMethod.PROSAC
    uses_quality_ordering = True

    def is_better(self, candidate: ConsensusSet, best: Optional[ConsensusSet]) -> bool:
        if best is None:
            return candidate.score > 0
        if candidate.score != best.score:
            return candidate.score > best.score
        return candidate.cost < best.cost


class LMedSPolicy(StrategyPolicy):
    """Least median of squares with a threshold estimated from the median."""

    method = RobustEstimatorMethod.LMEDS
    uses_threshold = False

    def __init__(
        self,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
    ):
        if stop_threshold <= 0:
            raise ConfigurationError(f"stop_threshold must be positive: {stop_threshold}")
        if inlier_factor <= 0:
            raise ConfigurationError(f"inlier_factor must be positive: {inlier_factor}")
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor

    def estimate_threshold(self, median_sq: float, num_samples: int, subset_size: int) -> float:
        """
        Robust inlier threshold derived from the median squared residual.

        Returns:
            inlier_factor * 1.4826 * (1 + 5 / (N - m)) * sqrt(median)
        """
        redundancy = num_samples - subset_size
        correction = 1.0 + 5.0 / redundancy if redundancy > 0 else 1.0
        return self.inlier_factor * MEDIAN_TO_SIGMA * correction * math.sqrt(median_sq)

    def evaluate(self, residuals: np.ndarray, subset_size: int) -> ConsensusSet:
        median_sq = float(np.median(residuals ** 2))
        estimated = self.estimate_threshold(median_sq, residuals.size, subset_size)

        # Exact fits drive the estimate to zero; stop_threshold is the noise floor
        threshold = max(estimated, self.stop_threshold)

        return ConsensusSet(
            inlier_mask=residuals <= threshold,
            score=median_sq,
            residuals=residuals,
            threshold=threshold,
            method=self.method,
            cost=estimated,
        )

    def is_better(self, candidate: ConsensusSet, best: Optional[ConsensusSet]) -> bool:
        if not math.isfinite(candidate.score):
            return False
        return best is None or candidate.score < best.score

    def should_stop(self, best: ConsensusSet) -> bool:
        # cost holds the unfloored threshold estimate
        return best.cost <= self.stop_threshold

    def budget_inlier_ratio(self, best: ConsensusSet) -> float:
        """
        The median only tolerates up to half the samples being outliers.

        The mask threshold is derived from the candidate's own median, so a
        contaminated candidate can claim every sample as an inlier. The
        budget therefore never assumes more than LMEDS_BREAKDOWN inliers.
        """
        return min(best.inlier_ratio, LMEDS_BREAKDOWN)

    def describe(self) -> dict:
        return {
            'method': self.method.name,
            'stop_threshold': self.stop_threshold,
            'inlier_factor': self.inlier_factor,
        }


class PromedsPolicy(LMedSPolicy):
    """LMedS scoring with quality-ordered sampling."""

    method = RobustEstimatorMethod.PROMEDS
    uses_quality_ordering = True


def create_policy(
    method: RobustEstimatorMethod,
    threshold: float = DEFAULT_THRESHOLD,
    stop_threshold: float = DEFAULT_STOP_THRESHOLD,
    inlier_factor: float = DEFAULT_INLIER_FACTOR,
) -> StrategyPolicy:
    """
    Create the policy for a robust method.

    Args:
        method: Robust estimation method
        threshold: Inlier threshold (RANSAC, MSAC, PROSAC)
        stop_threshold: Early-stop noise floor (LMedS, PROMedS)
        inlier_factor: Median-to-threshold factor (LMedS, PROMedS)

    Returns:
        StrategyPolicy instance
    """
    method = RobustEstimatorMethod(method)
    if method == RobustEstimatorMethod.RANSAC:
        return RansacPolicy(threshold)
    if method == RobustEstimatorMethod.MSAC:
        return MsacPolicy(threshold)
    if method == RobustEstimatorMethod.PROSAC:
        return ProsacPolicy(threshold)
    if method == RobustEstimatorMethod.LMEDS:
        return LMedSPolicy(stop_threshold, inlier_factor)
    return PromedsPolicy(stop_threshold, inlier_factor)
