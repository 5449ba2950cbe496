#!/usr/bin/env python3
"""
Mathematical utilities for human state estimation
Rotation representations, SO(3) maps and spatial force transforms
"""

import numpy as np
import pinocchio as pin


def rotation_matrix_x(angle: float) -> np.ndarray:
    """Rotation matrix about X axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [1, 0, 0],
        [0, c, -s],
        [0, s, c]
    ])


def rotation_matrix_y(angle: float) -> np.ndarray:
    """Rotation matrix about Y axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, 0, s],
        [0, 1, 0],
        [-s, 0, c]
    ])


def rotation_matrix_z(angle: float) -> np.ndarray:
    """Rotation matrix about Z axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, -s, 0],
        [s, c, 0],
        [0, 0, 1]
    ])


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """
    Convert quaternion to rotation matrix

    Args:
        q: Quaternion [w, x, y, z] (scalar first)

    Returns:
        3x3 rotation matrix
    """
    w, x, y, z = q

    # Normalize quaternion
    norm = np.sqrt(w*w + x*x + y*y + z*z)
    if not norm > 1e-12:
        raise ValueError("Quaternion has zero norm")
    w, x, y, z = w/norm, x/norm, y/norm, z/norm

    R = np.array([
        [1 - 2*(y*y + z*z), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x*x + z*z), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x*x + y*y)]
    ])

    return R


def as_rotation_matrix(rotation: np.ndarray) -> np.ndarray:
    """
    Accept a 3x3 rotation matrix or a scalar-first quaternion

    Raises:
        ValueError: if the input is neither, or is not finite
    """
    rotation = np.asarray(rotation, dtype=float)
    if not np.all(np.isfinite(rotation)):
        raise ValueError("Rotation contains non-finite values")
    if rotation.shape == (3, 3):
        return rotation.copy()
    if rotation.shape == (4,):
        return quaternion_to_rotation_matrix(rotation)
    raise ValueError(f"Expected a 3x3 rotation matrix or a quaternion, got shape {rotation.shape}")


def rotation_yaw(R: np.ndarray) -> float:
    """Yaw angle of a rotation matrix (ZYX convention)"""
    return float(np.arctan2(R[1, 0], R[0, 0]))


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Create skew-symmetric matrix from vector

    Args:
        v: 3D vector

    Returns:
        3x3 skew-symmetric matrix such that skew(v) @ u = v x u
    """
    return np.array([
        [0, -v[2], v[1]],
        [v[2], 0, -v[0]],
        [-v[1], v[0], 0]
    ])


def so3_exp(omega: np.ndarray) -> np.ndarray:
    """Exponential map from a rotation vector to SO(3)"""
    return pin.exp3(np.asarray(omega, dtype=float))


def so3_log(R: np.ndarray) -> np.ndarray:
    """Logarithm map from SO(3) to a rotation vector"""
    return pin.log3(np.asarray(R, dtype=float))


def homogeneous_transform(R: np.ndarray, p: np.ndarray) -> np.ndarray:
    """Build a 4x4 homogeneous transform"""
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = p
    return T


def wrench_transform(R: np.ndarray, p: np.ndarray) -> np.ndarray:
    """
    Compute the 6x6 matrix transforming a wrench [f, tau] from frame b to frame a

    Args:
        R: Rotation a_R_b
        p: Position of the origin of b expressed in a

    Returns:
        6x6 matrix X such that w_a = X @ w_b
    """
    X = np.zeros((6, 6))
    X[:3, :3] = R
    X[3:, 3:] = R
    X[3:, :3] = skew_symmetric(p) @ R

    return X


def rotate_wrench(R: np.ndarray, wrench: np.ndarray) -> np.ndarray:
    """Rotate force and torque of a wrench without changing the reference point"""
    return np.concatenate([R @ wrench[:3], R @ wrench[3:6]])
