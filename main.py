"""
Multilateration command line tool
Reads distance samples from a JSON file, solves the position robustly and
prints the estimate as JSON
"""

import sys
import json
import logging
import argparse
from typing import List, Optional, Tuple

import config
from multilat_core.errors import ConfigurationError, EstimationFailure
from multilat_core.localization import create_solver
from multilat_core.metrics import get_metrics
from multilat_core.proto import DistanceSample, EstimationResult

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def load_samples(path: str) -> Tuple[Optional[int], List[DistanceSample]]:
    """
    Load distance samples from a JSON file.

    Accepts {"dimensions": D, "samples": [...]} or a bare list of samples.

    Returns:
        Tuple of (declared dimensions or None, samples)
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    dimensions = None
    if isinstance(data, dict):
        dimensions = data.get('dimensions')
        records = data.get('samples')
        if records is None:
            raise ConfigurationError(f"{path}: missing 'samples'")
    else:
        records = data

    if not isinstance(records, list):
        raise ConfigurationError(f"{path}: samples must be a list")

    return dimensions, [DistanceSample.from_dict(record) for record in records]


def format_result(result: EstimationResult) -> dict:
    """Build the printed form of a result according to OUTPUT_CONFIG."""
    output = result.to_dict()
    consensus = output.get('inliers_data')
    if consensus is not None and not config.OUTPUT_CONFIG["include_residuals"]:
        consensus.pop('residuals', None)
        consensus.pop('inlier_mask', None)
        consensus['inlier_indices'] = result.inliers_data.inlier_indices.tolist()
    return output


def build_parser() -> argparse.ArgumentParser:
    defaults = config.SOLVER_CONFIG
    parser = argparse.ArgumentParser(description='Robust multilateration solver')
    parser.add_argument('samples', type=str,
                        help='JSON file with distance samples')
    parser.add_argument('--method', '-m', type=str, default=defaults["method"],
                        choices=['ransac', 'lmeds', 'msac', 'prosac', 'promeds'],
                        help='robust estimation method')
    parser.add_argument('--dimensions', '-D', type=int, default=None, choices=[2, 3],
                        help='2 or 3 (defaults to the file, then to the config)')
    parser.add_argument('--threshold', '-t', type=float, default=defaults["threshold"],
                        help='inlier threshold (ransac, msac, prosac)')
    parser.add_argument('--stop-threshold', type=float, default=defaults["stop_threshold"],
                        help='early-stop threshold (lmeds, promeds)')
    parser.add_argument('--confidence', type=float, default=defaults["confidence"],
                        help='confidence of drawing an all-inlier subset')
    parser.add_argument('--max-iterations', type=int, default=defaults["max_iterations"],
                        help='maximum robust iterations')
    parser.add_argument('--seed', type=int, default=defaults["seed"],
                        help='random seed')
    parser.add_argument('--no-refine', action='store_true',
                        help='skip nonlinear refinement')
    parser.add_argument('--no-covariance', action='store_true',
                        help='skip covariance propagation')
    parser.add_argument('--stats', action='store_true',
                        help='print the metrics summary')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        file_dimensions, samples = load_samples(args.samples)
        dimensions = args.dimensions or file_dimensions or config.SOLVER_CONFIG["dimensions"]

        solver = create_solver(
            args.method,
            dimensions=dimensions,
            threshold=args.threshold,
            stop_threshold=args.stop_threshold,
            confidence=args.confidence,
            max_iterations=args.max_iterations,
            seed=args.seed,
            refine_result=config.SOLVER_CONFIG["refine_result"] and not args.no_refine,
            keep_covariance=config.SOLVER_CONFIG["keep_covariance"] and not args.no_covariance,
        )
        solver.configure(samples)
        result = solver.solve()
    except (ConfigurationError, EstimationFailure) as e:
        logger.error(f"Solve failed: {e}")
        return 1
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Cannot read {args.samples}: {e}")
        return 1

    print(json.dumps(format_result(result), indent=config.OUTPUT_CONFIG["indent"]))

    if args.stats:
        print(get_metrics().format_summary())

    return 0


if __name__ == "__main__":
    sys.exit(main())
