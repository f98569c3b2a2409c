"""
Protocol Module: Input and output schemas of the lateration core.

- DistanceSample: one distance observation to a known reference position
- ConsensusSet / EstimationResult: robust solve output
"""

from .distance_sample import (
    DistanceSample,
    DistanceSampleBatch,
    samples_from_arrays,
)
from .estimation_result import (
    ConsensusSet,
    EstimationResult,
    RobustEstimatorMethod,
)

__all__ = [
    'DistanceSample',
    'DistanceSampleBatch',
    'samples_from_arrays',
    'ConsensusSet',
    'EstimationResult',
    'RobustEstimatorMethod',
]
