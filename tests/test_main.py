"""
Tests for the command line entry point.

Tests cover:
- Solving from {"dimensions", "samples"} files and bare lists
- Exit codes on configuration and estimation failures
- Metrics summary output
"""

import json

import numpy as np
import pytest

import main

from conftest import exact_distances


def write_samples(path, positions, distances, dimensions=None):
    records = [
        {'position': list(map(float, p)), 'distance': float(d)}
        for p, d in zip(positions, distances)
    ]
    data = records if dimensions is None else {'dimensions': dimensions, 'samples': records}
    path.write_text(json.dumps(data))
    return str(path)


class TestMain:
    """Tests for main()."""

    def test_solve_3d_file(self, tmp_path, capsys, tetrahedron_positions):
        """Test solving a 3D file with dimensions declared in the file."""
        point = np.array([1.0, 2.0, 3.0])
        path = write_samples(tmp_path / "samples.json", tetrahedron_positions,
                             exact_distances(tetrahedron_positions, point), dimensions=3)

        code = main.main([path, '--method', 'ransac', '--seed', '1'])

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        np.testing.assert_allclose(output['position'], point, atol=1e-6)
        assert output['method'] == 'RANSAC'
        assert output['inliers_data']['inlier_indices'] == [0, 1, 2, 3]

    def test_bare_list_with_dimensions_flag(self, tmp_path, capsys, square_positions):
        """Test a bare sample list with --dimensions and LMedS."""
        point = np.array([4.0, 1.0])
        path = write_samples(tmp_path / "samples.json", square_positions,
                             exact_distances(square_positions, point))

        code = main.main([path, '--method', 'lmeds', '--dimensions', '2',
                          '--seed', '2', '--no-covariance'])

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        np.testing.assert_allclose(output['position'], point, atol=1e-6)
        assert output['covariance'] is None

    def test_dimension_mismatch_exit_code(self, tmp_path, tetrahedron_positions):
        """Test 3D samples with --dimensions 2 fail with exit code 1."""
        path = write_samples(tmp_path / "samples.json", tetrahedron_positions, [1.0] * 4)

        assert main.main([path, '--dimensions', '2']) == 1

    def test_estimation_failure_exit_code(self, tmp_path):
        """Test collinear references fail with exit code 1."""
        positions = [(float(i), 0.0) for i in range(5)]
        path = write_samples(tmp_path / "samples.json", positions, [2.0] * 5, dimensions=2)

        assert main.main([path, '--max-iterations', '20']) == 1

    def test_missing_file_exit_code(self, tmp_path):
        """Test unreadable input fails with exit code 1."""
        assert main.main([str(tmp_path / "missing.json")]) == 1

    def test_stats_flag(self, tmp_path, capsys, square_positions):
        """Test --stats prints the metrics summary after the result."""
        point = np.array([5.0, 5.0])
        path = write_samples(tmp_path / "samples.json", square_positions,
                             exact_distances(square_positions, point), dimensions=2)

        assert main.main([path, '--stats', '--seed', '3']) == 0
        assert 'SOLVER METRICS' in capsys.readouterr().out

    def test_invalid_method_rejected(self, tmp_path):
        """Test argparse rejects unknown methods."""
        path = tmp_path / "samples.json"
        path.write_text("[]")
        with pytest.raises(SystemExit):
            main.main([str(path), '--method', 'bogus'])
