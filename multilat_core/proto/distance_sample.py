"""
Distance Sample Input Schema.

Defines the distance observations consumed by the lateration solvers. Each
sample pairs the known position of a reference source (anchor, access point,
beacon) with the measured distance to the unknown point.

Radio-reading adapters (RSSI path-loss, ranging, mixed) produce these samples
through samples_from_arrays(); the solvers never see raw readings.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import math

import numpy as np

from multilat_core.errors import ConfigurationError


@dataclass(frozen=True)
class DistanceSample:
    """
    Distance observation to a reference source with known position.

    Attributes:
        position: Reference source position (x, y) or (x, y, z)
        distance: Measured distance to the unknown point (same units as position)
        std_dev: Distance standard deviation, if known (used to weight residuals)
        quality_score: Sampling priority for PROSAC/PROMedS (0 = worst)
        source_id: Optional identifier of the reference source

    Notes:
        - Distance must be non-negative and finite
        - std_dev, when present, must be strictly positive
        - quality_score only orders sampling; it never affects inlier decisions
    """

    position: Tuple[float, ...]
    distance: float
    std_dev: Optional[float] = None
    quality_score: Optional[float] = None
    source_id: Optional[str] = None

    def __post_init__(self):
        """Validate sample after initialization."""
        position = tuple(float(c) for c in self.position)
        if len(position) not in (2, 3):
            raise ConfigurationError(
                f"Position must have 2 or 3 coordinates: {self.position}"
            )
        if not all(math.isfinite(c) for c in position):
            raise ConfigurationError(f"Position must be finite: {self.position}")
        object.__setattr__(self, 'position', position)

        if not math.isfinite(self.distance):
            raise ConfigurationError(f"Distance must be finite: {self.distance}")
        if self.distance < 0:
            raise ConfigurationError(f"Distance cannot be negative: {self.distance}")

        if self.std_dev is not None and not (self.std_dev > 0 and math.isfinite(self.std_dev)):
            raise ConfigurationError(f"Standard deviation must be positive: {self.std_dev}")

        if self.quality_score is not None and not math.isfinite(self.quality_score):
            raise ConfigurationError(f"Quality score must be finite: {self.quality_score}")

    @property
    def dimensions(self) -> int:
        """Number of coordinates of the reference position."""
        return len(self.position)

    @property
    def weight(self) -> float:
        """
        Least-squares weight of this sample.

        Returns:
            1/std_dev^2, or 1.0 when no standard deviation is known
        """
        if self.std_dev is None:
            return 1.0
        return 1.0 / (self.std_dev ** 2)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'position': list(self.position),
            'distance': self.distance,
            'std_dev': self.std_dev,
            'quality_score': self.quality_score,
            'source_id': self.source_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DistanceSample':
        """Create a sample from its dictionary form."""
        try:
            return cls(
                position=tuple(data['position']),
                distance=float(data['distance']),
                std_dev=data.get('std_dev'),
                quality_score=data.get('quality_score'),
                source_id=data.get('source_id'),
            )
        except KeyError as e:
            raise ConfigurationError(f"Sample is missing field {e}") from e


@dataclass
class DistanceSampleBatch:
    """
    Batch of distance samples for a single solve.

    All samples must share the same dimensionality. Standard deviations and
    quality scores are reported only when every sample carries one.

    Attributes:
        samples: Ordered list of DistanceSample
    """

    samples: List[DistanceSample] = field(default_factory=list)

    def __post_init__(self):
        """Validate batch consistency."""
        self.samples = list(self.samples)
        dims = {s.dimensions for s in self.samples}
        if len(dims) > 1:
            raise ConfigurationError(f"Samples mix dimensionalities: {sorted(dims)}")

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    @property
    def num_samples(self) -> int:
        """Number of samples in batch."""
        return len(self.samples)

    @property
    def dimensions(self) -> Optional[int]:
        """Dimensionality shared by all samples (None if empty)."""
        if not self.samples:
            return None
        return self.samples[0].dimensions

    def positions(self) -> np.ndarray:
        """Reference positions, shape (N, D)."""
        return np.array([s.position for s in self.samples], dtype=float)

    def distances(self) -> np.ndarray:
        """Measured distances, shape (N,)."""
        return np.array([s.distance for s in self.samples], dtype=float)

    def std_devs(self) -> Optional[np.ndarray]:
        """
        Distance standard deviations, shape (N,).

        Returns:
            Array when all samples carry a std dev, None when none do

        Raises:
            ConfigurationError: If only some samples carry a std dev
        """
        return self._optional_column('std_dev')

    def quality_scores(self) -> Optional[np.ndarray]:
        """Quality scores, shape (N,), with the same all-or-none rule as std_devs()."""
        return self._optional_column('quality_score')

    def _optional_column(self, name: str) -> Optional[np.ndarray]:
        values = [getattr(s, name) for s in self.samples]
        present = [v is not None for v in values]
        if not any(present):
            return None
        if not all(present):
            raise ConfigurationError(f"Only some samples define {name}")
        return np.array(values, dtype=float)


def samples_from_arrays(
    positions: Sequence[Sequence[float]],
    distances: Sequence[float],
    std_devs: Optional[Sequence[float]] = None,
    quality_scores: Optional[Sequence[float]] = None,
    source_ids: Optional[Sequence[str]] = None,
) -> List[DistanceSample]:
    """
    Build distance samples from parallel arrays.

    Args:
        positions: Reference positions, shape (N, 2) or (N, 3)
        distances: Measured distances, shape (N,)
        std_devs: Optional per-sample distance standard deviations
        quality_scores: Optional per-sample quality scores
        source_ids: Optional per-sample source identifiers

    Returns:
        List of DistanceSample

    Raises:
        ConfigurationError: If array lengths do not match
    """
    n = len(positions)
    if len(distances) != n:
        raise ConfigurationError(
            f"Got {n} positions but {len(distances)} distances"
        )
    for name, column in (('std_devs', std_devs),
                         ('quality_scores', quality_scores),
                         ('source_ids', source_ids)):
        if column is not None and len(column) != n:
            raise ConfigurationError(f"Got {n} positions but {len(column)} {name}")

    return [
        DistanceSample(
            position=tuple(positions[i]),
            distance=float(distances[i]),
            std_dev=None if std_devs is None else float(std_devs[i]),
            quality_score=None if quality_scores is None else float(quality_scores[i]),
            source_id=None if source_ids is None else source_ids[i],
        )
        for i in range(n)
    ]
