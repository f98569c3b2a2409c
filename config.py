"""
Multilateration solver configuration
"""

# Robust solver defaults (overridable from the command line)
SOLVER_CONFIG = {
    "method": "ransac",               # ransac, lmeds, msac, prosac, promeds
    "dimensions": 2,                  # 2 or 3
    "threshold": 1e-2,                # inlier threshold (ransac, msac, prosac)
    "stop_threshold": 1e-4,           # early-stop noise floor (lmeds, promeds)
    "confidence": 0.99,               # probability of an all-inlier subset
    "max_iterations": 5000,           # robust iteration cap
    "refine_result": True,            # nonlinear refinement over inliers
    "keep_covariance": True,          # propagate position covariance
    "seed": None,                     # random seed (None = nondeterministic)
}

# Output configuration
OUTPUT_CONFIG = {
    "indent": 2,                      # JSON indentation of the printed result
    "include_residuals": False,       # include per-sample residuals and mask
}

# Logging configuration
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
