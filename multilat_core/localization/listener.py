"""
Solver listener contract.

Callbacks run synchronously on the solving thread while the solver is
locked; any configuration change attempted from inside a callback raises
LockedError. Notifications are informational only.
"""


class SolverListener:
    """
    Receives progress notifications from RobustLaterationSolver.

    Subclass and override the callbacks of interest; the defaults do nothing.
    """

    def on_solve_start(self, solver):
        """Called once when solve() starts, after the solver is locked."""

    def on_solve_end(self, solver):
        """Called once when solve() finishes successfully, before unlocking."""

    def on_solve_next_iteration(self, solver, iteration: int):
        """Called after every robust iteration (1-based)."""

    def on_solve_progress_change(self, solver, progress: float):
        """Called when progress (0-1) advanced by at least progress_delta."""
