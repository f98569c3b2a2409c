"""
Subset samplers for the robust solver.

- UniformSampler: m distinct indices uniformly at random (RANSAC, LMedS, MSAC).
- ProsacSampler: progressive sampling over samples sorted by quality score,
  drawing from a growing prefix of the best samples first (PROSAC, PROMedS).

PROSAC growth schedule (Chum & Matas, 2005): with N samples, subset size m
and T_N total draws,

    T_n      = T_N * prod_{i=0}^{m-1} (n - i) / (N - i)
    T_{n+1}  = T_n * (n + 1) / (n + 1 - m)
    T'_{n+1} = T'_n + ceil(T_{n+1} - T_n)

The prefix grows from n = m to n = N; while t <= T'_n each subset contains
sample n plus m - 1 samples drawn from the first n - 1.
"""

from typing import Optional
import math

import numpy as np

DEFAULT_PROSAC_MAX_DRAWS = 200000


class UniformSampler:
    """Draw subsets uniformly at random without replacement."""

    def __init__(self, num_samples: int, subset_size: int, rng: np.random.Generator):
        if subset_size > num_samples:
            raise ValueError(f"subset size {subset_size} exceeds {num_samples} samples")
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng

    def next_subset(self) -> np.ndarray:
        return self.rng.choice(self.num_samples, size=self.subset_size, replace=False)


class ProsacSampler:
    """
    Draw subsets from a growing prefix of quality-ordered samples.

    Usage:
        sampler = ProsacSampler(quality_scores, subset_size=3, rng=rng)
        indices = sampler.next_subset()  # indices into the original sample order
    """

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        rng: np.random.Generator,
        max_draws: Optional[int] = None,
    ):
        """
        Initialize PROSAC sampler.

        Args:
            quality_scores: Per-sample quality (higher is better), shape (N,)
            subset_size: Samples per subset (m)
            rng: Random generator
            max_draws: T_N, draws after which sampling is fully uniform
        """
        quality_scores = np.asarray(quality_scores, dtype=float)
        num_samples = quality_scores.size
        if subset_size > num_samples:
            raise ValueError(f"subset size {subset_size} exceeds {num_samples} samples")

        # Stable sort so equal scores keep caller order
        self.order = np.argsort(-quality_scores, kind='stable')
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng
        self.max_draws = max_draws or DEFAULT_PROSAC_MAX_DRAWS

        m = subset_size
        t_n = float(self.max_draws)
        for i in range(m):
            t_n *= (m - i) / (num_samples - i)

        self._t = 0                # draws so far
        self._n = m                # current prefix size
        self._t_n = t_n            # T_n (real valued)
        self._t_n_prime = 1        # T'_n (integer)

    @property
    def prefix_size(self) -> int:
        """Current size of the sampled prefix."""
        return self._n

    def next_subset(self) -> np.ndarray:
        m = self.subset_size
        self._t += 1

        if self._t > self._t_n_prime and self._n < self.num_samples:
            t_next = self._t_n * (self._n + 1) / (self._n + 1 - m)
            self._t_n_prime += int(math.ceil(t_next - self._t_n))
            self._t_n = t_next
            self._n += 1

        if self._t > self._t_n_prime or self._n == m:
            # Uniform over the whole prefix
            ranks = self.rng.choice(self._n, size=m, replace=False)
        else:
            # Newest sample n plus m - 1 from the first n - 1
            others = self.rng.choice(self._n - 1, size=m - 1, replace=False)
            ranks = np.append(others, self._n - 1)

        return self.order[ranks]
