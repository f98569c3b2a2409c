"""
Multilateration Core Package.

Robust position estimation from distance samples to known reference
positions (2D and 3D), tolerant of outlier measurements.

Package structure:
- proto: Input samples and estimation result schemas
- localization: Linear, nonlinear and robust lateration solvers
- metrics: Diagnostics, counters, histograms
- errors: Error taxonomy
"""

__version__ = "0.1.0"
__author__ = "Multilateration Team"

from .errors import (
    LaterationError,
    ConfigurationError,
    LockedError,
    NotReadyError,
    EstimationFailure,
    NumericalError,
)
from .proto import (
    DistanceSample,
    DistanceSampleBatch,
    EstimationResult,
    ConsensusSet,
    RobustEstimatorMethod,
    samples_from_arrays,
)
from .localization import (
    RobustLaterationSolver,
    RobustSolverConfig,
    SolverListener,
    create_solver,
)
from .metrics import get_metrics
