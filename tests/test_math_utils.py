"""
Tests for rotation and spatial force utilities.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest

from biomechanical_analysis.utils.math_utils import (
    rotation_matrix_x,
    rotation_matrix_z,
    quaternion_to_rotation_matrix,
    as_rotation_matrix,
    rotation_yaw,
    skew_symmetric,
    so3_exp,
    so3_log,
    wrench_transform,
)


class TestRotations:
    """Test rotation helpers."""

    def test_quaternion_identity(self):
        assert np.allclose(quaternion_to_rotation_matrix(np.array([1.0, 0.0, 0.0, 0.0])), np.eye(3))

    def test_quaternion_about_z(self):
        angle = 0.7
        q = np.array([np.cos(angle / 2), 0.0, 0.0, np.sin(angle / 2)])
        assert np.allclose(quaternion_to_rotation_matrix(q), rotation_matrix_z(angle))

    def test_as_rotation_matrix_accepts_matrix_and_quaternion(self):
        R = rotation_matrix_x(0.3)
        assert np.allclose(as_rotation_matrix(R), R)
        q = np.array([np.cos(0.15), np.sin(0.15), 0.0, 0.0])
        assert np.allclose(as_rotation_matrix(q), R)

    def test_as_rotation_matrix_rejects_other_shapes(self):
        with pytest.raises(ValueError):
            as_rotation_matrix(np.zeros(5))

    def test_as_rotation_matrix_rejects_non_finite(self):
        with pytest.raises(ValueError):
            as_rotation_matrix(np.full((3, 3), np.nan))
        with pytest.raises(ValueError):
            as_rotation_matrix(np.array([np.inf, 0.0, 0.0, 0.0]))

    def test_zero_quaternion_rejected(self):
        with pytest.raises(ValueError):
            as_rotation_matrix(np.zeros(4))
        with pytest.raises(ValueError):
            quaternion_to_rotation_matrix(np.zeros(4))

    def test_yaw_of_tilted_rotation(self):
        R = rotation_matrix_z(1.1) @ rotation_matrix_x(0.2)
        assert rotation_yaw(R) == pytest.approx(1.1)

    def test_exp_log_are_inverse(self):
        omega = np.array([0.1, -0.4, 0.25])
        assert np.allclose(so3_log(so3_exp(omega)), omega)


class TestSpatialForces:
    """Test wrench transforms."""

    def test_skew_is_cross_product(self):
        a = np.array([1.0, 2.0, 3.0])
        b = np.array([-0.5, 0.3, 2.0])
        assert np.allclose(skew_symmetric(a) @ b, np.cross(a, b))

    def test_pure_translation_adds_moment(self):
        p = np.array([0.0, 0.0, 1.0])
        force = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
        moved = wrench_transform(np.eye(3), p) @ force
        assert np.allclose(moved[:3], force[:3])
        assert np.allclose(moved[3:], np.cross(p, force[:3]))

    def test_transform_composition(self):
        R1, p1 = rotation_matrix_z(0.4), np.array([0.1, 0.2, 0.3])
        R2, p2 = rotation_matrix_x(-0.3), np.array([-0.2, 0.0, 0.5])
        X12 = wrench_transform(R1, p1) @ wrench_transform(R2, p2)
        X = wrench_transform(R1 @ R2, p1 + R1 @ p2)
        assert np.allclose(X12, X)
