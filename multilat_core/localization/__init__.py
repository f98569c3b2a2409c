"""
Localization Module: Robust multilateration solvers.

Key classes:
- LinearLaterationSolver: Closed-form preliminary solve (inhomogeneous/homogeneous)
- NonLinearLaterationSolver: Weighted Levenberg-Marquardt refinement and covariance
- StrategyPolicy: RANSAC, LMedS, MSAC, PROSAC, PROMedS scoring rules
- UniformSampler / ProsacSampler: Subset draws for the robust loop
- RobustLaterationSolver: Robust engine with lifecycle guard and listener
"""

from .linear_solver import LinearLaterationSolver
from .nonlinear_solver import (
    EPSILON,
    NonLinearLaterationSolver,
    RefinementConfig,
    RefinementResult,
)
from .strategies import (
    StrategyPolicy,
    RansacPolicy,
    MsacPolicy,
    ProsacPolicy,
    LMedSPolicy,
    PromedsPolicy,
    compute_required_iterations,
    create_policy,
)
from .sampling import UniformSampler, ProsacSampler
from .listener import SolverListener
from .robust_solver import (
    RobustLaterationSolver,
    RobustSolverConfig,
    create_solver,
)

__all__ = [
    # Preliminary and refinement solvers
    'LinearLaterationSolver',
    'NonLinearLaterationSolver',
    'RefinementConfig',
    'RefinementResult',
    'EPSILON',
    # Strategies
    'StrategyPolicy',
    'RansacPolicy',
    'MsacPolicy',
    'ProsacPolicy',
    'LMedSPolicy',
    'PromedsPolicy',
    'compute_required_iterations',
    'create_policy',
    # Sampling
    'UniformSampler',
    'ProsacSampler',
    # Robust engine
    'SolverListener',
    'RobustLaterationSolver',
    'RobustSolverConfig',
    'create_solver',
]
