"""Tests for the spherical projection."""

import math

import numpy as np
import pytest

from pcd_tool.spherical import project, project_points


class TestProject:
    def test_origin(self):
        assert tuple(project(0.0, 0.0, 0.0)) == (0.0, 0.0, 0.0)

    def test_unit_x(self):
        p = project(1.0, 0.0, 0.0)
        assert p.distance == pytest.approx(1.0)
        assert p.azimuthal_angle == pytest.approx(0.0)
        assert p.vertical_angle == pytest.approx(0.0)

    def test_unit_y(self):
        p = project(0.0, 1.0, 0.0)
        assert p.azimuthal_angle == pytest.approx(math.pi / 2)
        assert p.vertical_angle == pytest.approx(0.0)

    def test_negative_y_axis(self):
        assert project(0.0, -2.0, 0.0).azimuthal_angle == pytest.approx(-math.pi / 2)

    def test_unit_z(self):
        p = project(0.0, 0.0, 1.0)
        assert p.distance == pytest.approx(1.0)
        assert p.azimuthal_angle == 0.0
        assert p.vertical_angle == pytest.approx(math.pi / 2)

    def test_first_quadrant_uses_plain_atan2(self):
        p = project(1.0, 1.0, 1.0)
        assert p.distance == pytest.approx(math.sqrt(3.0))
        assert p.azimuthal_angle == pytest.approx(math.pi / 4)
        assert p.vertical_angle == pytest.approx(math.pi / 2 - math.atan2(math.sqrt(2.0), 1.0))

    def test_negative_x_quadrant_correction(self):
        # atan2(0, -1) = pi, plus the legacy +pi correction
        assert project(-1.0, 0.0, 0.0).azimuthal_angle == pytest.approx(2 * math.pi)
        assert project(-1.0, -1.0, 0.0).azimuthal_angle == pytest.approx(-3 * math.pi / 4 - math.pi)

    def test_below_horizon_polar_correction(self):
        # polar = atan2(0, -1) + pi = 2*pi
        assert project(0.0, 0.0, -1.0).vertical_angle == pytest.approx(math.pi / 2 - 2 * math.pi)


class TestProjectPoints:
    def test_matches_scalar(self):
        pts = np.array(
            [
                [0.0, 0.0, 0.0],
                [1.0, 0.0, 0.0],
                [0.0, 1.0, 0.0],
                [0.0, -1.0, 0.0],
                [0.0, 0.0, 1.0],
                [-1.0, 0.0, 0.0],
                [-1.0, -1.0, 2.0],
                [3.0, -4.0, -5.0],
                [-2.0, 5.0, -1.0],
            ]
        )
        distance, azimuth, vertical = project_points(pts)
        for i, (x, y, z) in enumerate(pts):
            expected = project(x, y, z)
            assert distance[i] == pytest.approx(expected.distance)
            assert azimuth[i] == pytest.approx(expected.azimuthal_angle)
            assert vertical[i] == pytest.approx(expected.vertical_angle)

    def test_float32_input(self):
        distance, _, _ = project_points(np.array([[3.0, 4.0, 0.0]], dtype=np.float32))
        assert distance.dtype == np.float64
        np.testing.assert_allclose(distance, [5.0])

    def test_empty(self):
        distance, azimuth, vertical = project_points(np.zeros((0, 3)))
        assert distance.shape == azimuth.shape == vertical.shape == (0,)

    def test_bad_shape(self):
        with pytest.raises(ValueError):
            project_points(np.zeros((3, 2)))
