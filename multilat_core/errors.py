"""
Error taxonomy for the robust multilateration core.

- ConfigurationError: invalid parameter passed to a setter, constructor or
  configure(); raised synchronously at the offending call.
- LockedError: mutation attempted while a solve is in progress.
- NotReadyError: solve() invoked without enough samples.
- EstimationFailure: robust loop exhausted its budget without a consensus.
- NumericalError: refinement/covariance did not converge or invert. Raised
  by the nonlinear solver only; RobustLaterationSolver absorbs it and
  reports a degraded result instead.
"""


class LaterationError(Exception):
    """Base class for all multilateration errors."""


class ConfigurationError(LaterationError, ValueError):
    """Invalid parameter (wrong size, range or missing value)."""


class LockedError(LaterationError):
    """Solver is locked while solving; configuration cannot change."""

    def __init__(self, message: str = "solver is locked while solving"):
        super().__init__(message)


class NotReadyError(LaterationError):
    """Solver does not hold enough samples to solve."""

    def __init__(self, message: str = "solver is not ready (not enough samples)"):
        super().__init__(message)


class EstimationFailure(LaterationError):
    """No valid consensus could be found within the iteration budget."""


class NumericalError(LaterationError):
    """Nonlinear refinement or covariance computation failed (soft failure)."""
