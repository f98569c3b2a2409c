"""
Robust Lateration Solver.

One generic engine for RANSAC, LMedS, MSAC, PROSAC and PROMedS applied to
multilateration. The strategy is a policy object selected from the config;
the sampling loop, lifecycle guard and refinement are shared.

Usage:
    solver = RobustLaterationSolver(RobustSolverConfig(
        method=RobustEstimatorMethod.RANSAC,
        dimensions=3,
        threshold=0.05,
    ))
    solver.configure(samples)

    result = solver.solve()
    print(f"Position: {result.position}")
    print(f"Inliers: {result.num_inliers}/{len(samples)}")
    if result.has_covariance:
        print(f"Std: {result.position_std}")

Pipeline:
1. Draw a subset (uniform, or quality ordered for PROSAC/PROMedS)
2. Preliminary solve from the subset (linear, optionally polished)
3. Score against all samples with the policy, keep the best consensus
4. Shrink the iteration budget as the inlier ratio improves
5. Refine over the inliers and propagate covariance (soft failure)
"""

from typing import Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field, replace
import logging
import math

import numpy as np

from multilat_core.errors import (
    ConfigurationError,
    EstimationFailure,
    LockedError,
    NotReadyError,
    NumericalError,
)
from multilat_core.localization.linear_solver import LinearLaterationSolver
from multilat_core.localization.listener import SolverListener
from multilat_core.localization.nonlinear_solver import (
    EPSILON,
    NonLinearLaterationSolver,
    RefinementConfig,
)
from multilat_core.localization.sampling import ProsacSampler, UniformSampler
from multilat_core.localization.strategies import (
    DEFAULT_INLIER_FACTOR,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    StrategyPolicy,
    compute_required_iterations,
    create_policy,
)
from multilat_core.metrics import get_metrics
from multilat_core.proto.distance_sample import DistanceSample, DistanceSampleBatch
from multilat_core.proto.estimation_result import (
    ConsensusSet,
    EstimationResult,
    RobustEstimatorMethod,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05

MEDIAN_METHODS = (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


@dataclass
class RobustSolverConfig:
    """
    Configuration for the robust lateration solver.

    Attributes:
        method: Robust strategy (RANSAC, LMEDS, MSAC, PROSAC, PROMEDS)
        dimensions: 2 or 3
        threshold: Inlier threshold in distance units (RANSAC, MSAC, PROSAC)
        stop_threshold: Noise floor that stops LMedS/PROMedS early
        confidence: Probability of drawing at least one all-inlier subset
        max_iterations: Hard cap on robust iterations
        progress_delta: Minimum progress change between notifications
        refine_result: Polish the consensus with nonlinear least squares
        keep_covariance: Propagate covariance after refinement
        use_linear_solver: Preliminary solutions from the linear solver
        homogeneous_linear_solver: Homogeneous instead of inhomogeneous linear solve
        refine_preliminary_solutions: Polish every subset solution nonlinearly
        preliminary_subset_size: Subset size (defaults to dimensions + 1)
        initial_position: Seed for nonlinear solves when geometry is poor
        inlier_factor: Median-to-threshold factor (LMedS, PROMedS)
        prosac_max_draws: PROSAC schedule length T_N (defaults to max_iterations)
        seed: Random seed for reproducible sampling
        refinement: Nonlinear solver configuration
    """

    method: RobustEstimatorMethod = RobustEstimatorMethod.RANSAC
    dimensions: int = 2
    threshold: float = DEFAULT_THRESHOLD
    stop_threshold: float = DEFAULT_STOP_THRESHOLD
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    progress_delta: float = DEFAULT_PROGRESS_DELTA
    refine_result: bool = True
    keep_covariance: bool = True
    use_linear_solver: bool = True
    homogeneous_linear_solver: bool = False
    refine_preliminary_solutions: bool = False
    preliminary_subset_size: Optional[int] = None
    initial_position: Optional[Tuple[float, ...]] = None
    inlier_factor: float = DEFAULT_INLIER_FACTOR
    prosac_max_draws: Optional[int] = None
    seed: Optional[int] = None
    refinement: RefinementConfig = field(default_factory=RefinementConfig)

    def __post_init__(self):
        """Validate configuration."""
        try:
            self.method = RobustEstimatorMethod(self.method)
        except ValueError as e:
            raise ConfigurationError(f"Unknown robust method: {self.method}") from e

        if self.dimensions not in (2, 3):
            raise ConfigurationError(f"dimensions must be 2 or 3: {self.dimensions}")
        if not self.threshold > 0:
            raise ConfigurationError(f"threshold must be positive: {self.threshold}")
        if not self.stop_threshold > 0:
            raise ConfigurationError(f"stop_threshold must be positive: {self.stop_threshold}")
        if not 0.0 < self.confidence < 1.0:
            raise ConfigurationError(f"confidence must be in (0, 1): {self.confidence}")
        if self.max_iterations <= 0:
            raise ConfigurationError(f"max_iterations must be positive: {self.max_iterations}")
        if not 0.0 <= self.progress_delta <= 1.0:
            raise ConfigurationError(f"progress_delta must be in [0, 1]: {self.progress_delta}")
        if not self.inlier_factor > 0:
            raise ConfigurationError(f"inlier_factor must be positive: {self.inlier_factor}")
        if self.prosac_max_draws is not None and self.prosac_max_draws <= 0:
            raise ConfigurationError(f"prosac_max_draws must be positive: {self.prosac_max_draws}")

        if (self.preliminary_subset_size is not None
                and self.preliminary_subset_size < self.dimensions + 1):
            raise ConfigurationError(
                f"preliminary_subset_size must be at least {self.dimensions + 1}: "
                f"{self.preliminary_subset_size}"
            )

        if self.initial_position is not None:
            self.initial_position = tuple(float(c) for c in self.initial_position)
            if len(self.initial_position) != self.dimensions:
                raise ConfigurationError(
                    f"initial_position must have {self.dimensions} coordinates"
                )

    @property
    def subset_size(self) -> int:
        return self.preliminary_subset_size or self.dimensions + 1


def _copy_config(config: RobustSolverConfig) -> RobustSolverConfig:
    return replace(config, refinement=replace(config.refinement))


class RobustLaterationSolver:
    """
    Robust multilateration engine parameterised by a strategy policy.

    Lifecycle: NotReady -> Ready -> Locked (solving) -> Ready. Mutators check
    the lock before validating their arguments and raise LockedError while a
    solve is in progress, including from listener callbacks.
    """

    def __init__(
        self,
        config: Optional[RobustSolverConfig] = None,
        listener: Optional[SolverListener] = None,
    ):
        """
        Initialize robust solver.

        Args:
            config: Solver configuration (uses defaults if None)
            listener: Optional progress listener
        """
        self._config = _copy_config(config or RobustSolverConfig())
        self._listener = listener
        self.metrics = get_metrics()

        self._locked = False
        self._samples: Optional[list] = None
        self._positions: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self._std_devs: Optional[np.ndarray] = None
        self._quality_scores: Optional[np.ndarray] = None
        self._result: Optional[EstimationResult] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> RobustSolverConfig:
        """Copy of the configuration; change it through the setters."""
        return _copy_config(self._config)

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._config.method

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    @property
    def listener(self) -> Optional[SolverListener]:
        return self._listener

    @property
    def min_required_samples(self) -> int:
        """Samples needed to be ready (the preliminary subset size)."""
        return self._config.subset_size

    @property
    def samples(self) -> Optional[list]:
        return None if self._samples is None else list(self._samples)

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return None if self._quality_scores is None else self._quality_scores.copy()

    @property
    def std_devs(self) -> Optional[np.ndarray]:
        return None if self._std_devs is None else self._std_devs.copy()

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def is_ready(self) -> bool:
        return (
            self._positions is not None
            and self._positions.shape[0] >= self.min_required_samples
        )

    @property
    def result(self) -> Optional[EstimationResult]:
        """Result of the last successful solve (None before, or after reconfiguring)."""
        return self._result

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.covariance

    @property
    def inliers_data(self) -> Optional[ConsensusSet]:
        return None if self._result is None else self._result.inliers_data

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def _check_unlocked(self):
        if self._locked:
            raise LockedError()

    def configure(
        self,
        samples: Union[Sequence[DistanceSample], DistanceSampleBatch],
        std_devs: Optional[Sequence[float]] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[SolverListener] = None,
    ):
        """
        Set the samples to solve from.

        Args:
            samples: Distance samples (at least dimensions + 1)
            std_devs: Per-sample distance std devs, overriding the samples' own
            quality_scores: Per-sample quality scores, overriding the samples' own
            listener: Replaces the current listener when given

        Raises:
            LockedError: If called while solving
            ConfigurationError: If samples are missing, too few, of the wrong
                dimensionality, or std_devs/quality_scores lengths mismatch
        """
        self._check_unlocked()

        if samples is None:
            raise ConfigurationError("samples must be provided")
        batch = samples if isinstance(samples, DistanceSampleBatch) else DistanceSampleBatch(samples)

        min_samples = self.dimensions + 1
        if batch.num_samples < min_samples:
            raise ConfigurationError(
                f"need at least {min_samples} samples, got {batch.num_samples}"
            )
        if batch.dimensions != self.dimensions:
            raise ConfigurationError(
                f"samples are {batch.dimensions}D but solver is {self.dimensions}D"
            )

        n = batch.num_samples
        sample_std_devs = self._validated_column(std_devs, n, 'std_devs', positive=True)
        if sample_std_devs is None:
            sample_std_devs = batch.std_devs()
        sample_quality = self._validated_column(quality_scores, n, 'quality_scores')
        if sample_quality is None:
            sample_quality = batch.quality_scores()

        self._samples = list(batch.samples)
        self._positions = batch.positions()
        self._distances = np.maximum(batch.distances(), EPSILON)
        self._std_devs = sample_std_devs
        self._quality_scores = sample_quality
        if listener is not None:
            self._listener = listener
        self._result = None

    @staticmethod
    def _validated_column(
        values: Optional[Sequence[float]],
        n: int,
        name: str,
        positive: bool = False,
    ) -> Optional[np.ndarray]:
        if values is None:
            return None
        column = np.asarray(values, dtype=float)
        if column.shape != (n,):
            raise ConfigurationError(f"{name} must have {n} entries, got {column.size}")
        if not np.all(np.isfinite(column)):
            raise ConfigurationError(f"{name} must be finite")
        if positive and np.any(column <= 0):
            raise ConfigurationError(f"{name} must be positive")
        return column

    def _update_config(self, **changes):
        # replace() re-runs validation and raises ConfigurationError
        self._config = replace(self._config, **changes)

    def set_listener(self, listener: Optional[SolverListener]):
        self._check_unlocked()
        self._listener = listener

    def set_threshold(self, threshold: float):
        """Set the inlier threshold (RANSAC, MSAC, PROSAC)."""
        self._check_unlocked()
        if self.method in MEDIAN_METHODS:
            raise ConfigurationError(f"{self.method.name} estimates its own threshold")
        self._update_config(threshold=threshold)

    def set_stop_threshold(self, stop_threshold: float):
        """Set the early-stop noise floor (LMedS, PROMedS)."""
        self._check_unlocked()
        if self.method not in MEDIAN_METHODS:
            raise ConfigurationError(f"{self.method.name} has no stop threshold")
        self._update_config(stop_threshold=stop_threshold)

    def set_confidence(self, confidence: float):
        self._check_unlocked()
        self._update_config(confidence=confidence)

    def set_max_iterations(self, max_iterations: int):
        self._check_unlocked()
        self._update_config(max_iterations=max_iterations)

    def set_progress_delta(self, progress_delta: float):
        self._check_unlocked()
        self._update_config(progress_delta=progress_delta)

    def set_initial_position(self, initial_position: Optional[Sequence[float]]):
        self._check_unlocked()
        self._update_config(initial_position=initial_position)

    def set_preliminary_subset_size(self, subset_size: Optional[int]):
        self._check_unlocked()
        self._update_config(preliminary_subset_size=subset_size)

    def set_refine_result(self, refine_result: bool):
        self._check_unlocked()
        self._update_config(refine_result=bool(refine_result))

    def set_keep_covariance(self, keep_covariance: bool):
        self._check_unlocked()
        self._update_config(keep_covariance=bool(keep_covariance))

    def set_homogeneous_linear_solver(self, homogeneous: bool):
        self._check_unlocked()
        self._update_config(homogeneous_linear_solver=bool(homogeneous))

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self) -> EstimationResult:
        """
        Run the robust estimation and refinement.

        Returns:
            EstimationResult (covariance None on soft numerical failure)

        Raises:
            LockedError: If already solving
            NotReadyError: If fewer than min_required_samples samples are set
            EstimationFailure: If no valid consensus was found
        """
        if self._locked:
            raise LockedError()
        if not self.is_ready:
            raise NotReadyError()

        self._locked = True
        self.metrics.increment('solve_attempts')
        try:
            self._result = None
            config = self._config
            policy = create_policy(
                config.method,
                threshold=config.threshold,
                stop_threshold=config.stop_threshold,
                inlier_factor=config.inlier_factor,
            )
            logger.debug(
                "Solving %dD lateration from %d samples with %s",
                self.dimensions, self._positions.shape[0], policy.describe(),
            )

            if self._listener is not None:
                self._listener.on_solve_start(self)

            consensus, position, iterations = self._estimate_consensus(policy)
            result = self._attempt_refine(consensus, position, iterations)

            self._result = result
            self.metrics.increment('solve_successes')
            self.metrics.record_histogram('solve_iterations', iterations)
            self.metrics.record_histogram('inlier_ratio', consensus.inlier_ratio)
            logger.debug(
                "Solved position %s with %d/%d inliers after %d iterations (refined=%s)",
                np.round(result.position, 6).tolist(), consensus.num_inliers,
                consensus.num_samples, iterations, result.refined,
            )

            if self._listener is not None:
                self._listener.on_solve_end(self)

            return result
        except EstimationFailure:
            self.metrics.increment('solve_failures')
            raise
        finally:
            self._locked = False

    def _estimate_consensus(
        self,
        policy: StrategyPolicy,
    ) -> Tuple[ConsensusSet, np.ndarray, int]:
        """
        Robust sampling loop.

        Returns:
            Tuple of (best consensus, its preliminary position, iterations)
        """
        config = self._config
        n = self._positions.shape[0]
        subset_size = config.subset_size
        rng = np.random.default_rng(config.seed)

        if policy.uses_quality_ordering and self._quality_scores is not None:
            sampler = ProsacSampler(
                self._quality_scores, subset_size, rng,
                max_draws=config.prosac_max_draws or config.max_iterations,
            )
        else:
            sampler = UniformSampler(n, subset_size, rng)

        linear = LinearLaterationSolver(homogeneous=config.homogeneous_linear_solver)
        nonlinear = NonLinearLaterationSolver(config.refinement)

        best: Optional[ConsensusSet] = None
        best_position: Optional[np.ndarray] = None
        budget = config.max_iterations
        last_progress = 0.0
        iteration = 0

        while iteration < budget:
            iteration += 1
            indices = sampler.next_subset()
            position = self._preliminary_solution(indices, linear, nonlinear)

            if position is None:
                self.metrics.increment_drop('singular_subset')
            else:
                self.metrics.increment('preliminary_solutions')
                residuals = self._residuals(position)
                candidate = policy.evaluate(residuals, subset_size)

                if policy.is_better(candidate, best):
                    best, best_position = candidate, position
                    required = compute_required_iterations(
                        policy.budget_inlier_ratio(best), subset_size,
                        config.confidence, config.max_iterations,
                    )
                    budget = max(min(budget, required), iteration)

            if self._listener is not None:
                self._listener.on_solve_next_iteration(self, iteration)
                progress = min(iteration / budget, 1.0)
                if progress - last_progress >= config.progress_delta and progress > last_progress:
                    self._listener.on_solve_progress_change(self, progress)
                    last_progress = progress

            if best is not None and policy.should_stop(best):
                break

        if best is None:
            self.metrics.increment_drop('no_consensus')
            raise EstimationFailure(
                f"no valid consensus after {iteration} iterations "
                f"({self.method.name}, {n} samples)"
            )

        return best, best_position, iteration

    def _preliminary_solution(
        self,
        indices: np.ndarray,
        linear: LinearLaterationSolver,
        nonlinear: NonLinearLaterationSolver,
    ) -> Optional[np.ndarray]:
        """Solve one subset; None when the subset is degenerate."""
        positions = self._positions[indices]
        distances = self._distances[indices]
        std_devs = None if self._std_devs is None else self._std_devs[indices]
        config = self._config

        if not config.use_linear_solver:
            try:
                return nonlinear.solve(
                    positions, distances, std_devs,
                    initial_position=config.initial_position,
                    compute_covariance=False,
                ).position
            except NumericalError:
                return None

        position = linear.solve(positions, distances)
        if position is None or not config.refine_preliminary_solutions:
            return position

        try:
            return nonlinear.solve(
                positions, distances, std_devs,
                initial_position=position,
                compute_covariance=False,
            ).position
        except NumericalError:
            self.metrics.increment_drop('preliminary_refinement_failed')
            return position

    def _residuals(self, position: np.ndarray) -> np.ndarray:
        """Absolute distance residuals of position against all samples."""
        computed = np.linalg.norm(self._positions - position, axis=1)
        return np.abs(computed - self._distances)

    def _inlier_rms(self, position: np.ndarray, consensus: ConsensusSet) -> float:
        idx = consensus.inlier_indices
        if idx.size == 0:
            return 0.0
        residuals = self._residuals(position)[idx]
        weights = np.ones(idx.size) if self._std_devs is None else 1.0 / self._std_devs[idx] ** 2
        return float(math.sqrt(np.sum(weights * residuals ** 2) / idx.size))

    def _attempt_refine(
        self,
        consensus: ConsensusSet,
        position: np.ndarray,
        iterations: int,
    ) -> EstimationResult:
        """
        Refine the consensus position over its inliers.

        Soft failures keep the preliminary position and leave covariance None.
        """
        config = self._config
        preliminary = EstimationResult(
            position=position,
            covariance=None,
            inliers_data=consensus,
            method=config.method,
            iterations=iterations,
            refined=False,
            residual_rms=self._inlier_rms(position, consensus),
        )

        if not config.refine_result:
            return preliminary

        idx = consensus.inlier_indices
        if idx.size < self.dimensions + 1:
            self.metrics.increment_drop('insufficient_inliers')
            logger.warning(
                "Only %d inliers, need %d to refine; keeping preliminary position",
                idx.size, self.dimensions + 1,
            )
            return preliminary

        positions = self._positions[idx]
        distances = self._distances[idx]
        std_devs = None if self._std_devs is None else self._std_devs[idx]
        nonlinear = NonLinearLaterationSolver(config.refinement)

        seeds = [position]
        if config.initial_position is not None:
            seeds.append(np.array(config.initial_position, dtype=float))

        refined = None
        for seed in seeds:
            try:
                refined = nonlinear.solve(
                    positions, distances, std_devs,
                    initial_position=seed,
                    compute_covariance=False,
                )
                break
            except NumericalError as e:
                logger.debug("Refinement from %s failed: %s", seed, e)

        if refined is None:
            self.metrics.increment_drop('refinement_failed')
            logger.warning("Refinement did not converge; keeping preliminary position")
            return preliminary

        self.metrics.increment('refinements')
        self.metrics.record_histogram('refinement_iterations', refined.iterations)
        self.metrics.record_histogram('residual_rms', refined.residual_rms)

        covariance = None
        if config.keep_covariance:
            try:
                covariance = nonlinear.estimate_covariance(
                    positions, distances, refined.position, std_devs
                )
                self.metrics.increment('covariances_computed')
            except NumericalError as e:
                self.metrics.increment_drop('covariance_failed')
                logger.warning("Covariance not available: %s", e)

        return EstimationResult(
            position=refined.position,
            covariance=covariance,
            inliers_data=consensus,
            method=config.method,
            iterations=iterations,
            refined=True,
            residual_rms=refined.residual_rms,
        )


def create_solver(
    method: Union[RobustEstimatorMethod, str] = RobustEstimatorMethod.RANSAC,
    dimensions: int = 2,
    listener: Optional[SolverListener] = None,
    **overrides,
) -> RobustLaterationSolver:
    """
    Create a robust solver for a method with default configuration.

    Args:
        method: RobustEstimatorMethod or its name ("ransac", "lmeds", ...)
        dimensions: 2 or 3
        listener: Optional progress listener
        **overrides: Any other RobustSolverConfig field

    Returns:
        Configured RobustLaterationSolver (not yet holding samples)
    """
    if isinstance(method, str):
        try:
            method = RobustEstimatorMethod[method.upper()]
        except KeyError as e:
            raise ConfigurationError(f"Unknown robust method: {method}") from e

    config = RobustSolverConfig(method=method, dimensions=dimensions, **overrides)
    return RobustLaterationSolver(config, listener)
