"""
Pytest configuration and shared fixtures for the multilateration core tests.

This module provides reusable reference layouts, sample factories and
seeded random generators for the linear, nonlinear and robust solvers.
"""

import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from multilat_core.metrics import reset_metrics
from multilat_core.proto import DistanceSample, samples_from_arrays


# =============================================================================
# Reference Layout Fixtures
# =============================================================================


@pytest.fixture
def tetrahedron_positions() -> np.ndarray:
    """
    Four reference positions forming a regular tetrahedron around (1, 2, 3).

    Returns:
        Array of shape (4, 3).
    """
    center = np.array([1.0, 2.0, 3.0])
    vertices = np.array([
        [1.0, 1.0, 1.0],
        [1.0, -1.0, -1.0],
        [-1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0],
    ])
    return center + vertices


@pytest.fixture
def square_positions() -> np.ndarray:
    """
    Four 2D reference positions at the corners of a 10 m square.

    Returns:
        Array of shape (4, 2).
    """
    return np.array([
        [0.0, 0.0],
        [10.0, 0.0],
        [10.0, 10.0],
        [0.0, 10.0],
    ])


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator for reproducible scenarios."""
    return np.random.default_rng(12345)


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Reset the global metrics collector between tests."""
    reset_metrics()
    yield
    reset_metrics()


# =============================================================================
# Sample Factories
# =============================================================================


def exact_distances(positions: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """
    Exact distances from every reference position to point.

    Args:
        positions: Reference positions, shape (N, D).
        point: Unknown point, shape (D,).

    Returns:
        Distances, shape (N,).
    """
    return np.linalg.norm(np.asarray(positions) - np.asarray(point), axis=1)


def make_scenario(
    rng: np.random.Generator,
    point: Sequence[float],
    num_samples: int,
    outlier_fraction: float = 0.0,
    noise_std: float = 0.0,
    extent: float = 50.0,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Random reference positions with noisy distances and gross outliers.

    Outliers carry an error of magnitude 5-20 with random sign; the sign is
    flipped to positive where a negative error would make the distance negative.

    Returns:
        Tuple of (positions (N, D), distances (N,), outlier mask (N,))
    """
    point = np.asarray(point, dtype=float)
    dims = point.size
    positions = rng.uniform(-extent, extent, size=(num_samples, dims))
    distances = exact_distances(positions, point)

    if noise_std > 0:
        distances = distances + rng.normal(0.0, noise_std, size=num_samples)

    num_outliers = int(round(outlier_fraction * num_samples))
    outlier_mask = np.zeros(num_samples, dtype=bool)
    if num_outliers > 0:
        outlier_idx = rng.choice(num_samples, size=num_outliers, replace=False)
        signs = rng.choice([-1.0, 1.0], size=num_outliers)
        errors = signs * rng.uniform(5.0, 20.0, size=num_outliers)
        corrupted = distances[outlier_idx] + errors
        distances[outlier_idx] = np.where(
            corrupted < 0, distances[outlier_idx] + np.abs(errors), corrupted,
        )
        outlier_mask[outlier_idx] = True

    return positions, np.maximum(distances, 0.0), outlier_mask


@pytest.fixture
def sample_factory() -> Callable[..., List[DistanceSample]]:
    """
    Factory building DistanceSample lists from arrays.

    Returns:
        samples_from_arrays with positions/distances as numpy arrays allowed.
    """
    def factory(
        positions: np.ndarray,
        distances: np.ndarray,
        std_devs: Optional[Sequence[float]] = None,
        quality_scores: Optional[Sequence[float]] = None,
    ) -> List[DistanceSample]:
        return samples_from_arrays(
            [tuple(p) for p in np.asarray(positions)],
            list(np.asarray(distances, dtype=float)),
            std_devs=std_devs,
            quality_scores=quality_scores,
        )

    return factory
