#!/usr/bin/env python3
"""
Task definitions for velocity-level inverse kinematics
Each task is a linear equation A x = b on the generalized velocity
x = [base linear, base angular, joint velocities]
"""

import numpy as np
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from ..utils.math_utils import so3_log


class TaskPriority(Enum):
    """Task priority bands"""
    HIGH = 0   # Enforced as an equality constraint
    LOW = 1    # Weighted least-squares objective


class Task(ABC):
    """
    Abstract base class for inverse kinematics tasks

    Each task computes, for the current model state:
    - Task matrix A (dim x nv)
    - Task vector b (dim,)
    """

    def __init__(self, name: str, dim: int):
        """
        Initialize task

        Args:
            name: Task name for identification
            dim: Task dimension
        """
        self.name = name
        self.dim = dim
        self.A: Optional[np.ndarray] = None
        self.b = np.zeros(dim)

    @abstractmethod
    def update(self, human_model):
        """Recompute A and b from the current model state"""
        pass

    def is_valid(self) -> bool:
        """True when the last update produced finite matrices"""
        return (
            self.A is not None
            and np.all(np.isfinite(self.A))
            and np.all(np.isfinite(self.b))
        )

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.name}', dim={self.dim})"


class SO3Task(Task):
    """
    Frame orientation tracking task

    Desired world angular velocity of the frame:
        omega = omega_des + kp * log(R_des R^T)
    """

    def __init__(self, name: str, frame_name: str, kp_angular: float):
        super().__init__(name, dim=3)

        self.frame_name = frame_name
        self.kp_angular = kp_angular
        self.target_rotation = np.eye(3)
        self.target_angular_velocity = np.zeros(3)

    def set_set_point(
        self,
        rotation: np.ndarray,
        angular_velocity: Optional[np.ndarray] = None
    ):
        """Set desired frame orientation and angular velocity (world frame)"""
        self.target_rotation = np.array(rotation, dtype=float)
        self.target_angular_velocity = (
            np.zeros(3) if angular_velocity is None
            else np.array(angular_velocity, dtype=float).reshape(3)
        )

    def update(self, human_model):
        R = human_model.get_world_transform(self.frame_name)[:3, :3]
        J = human_model.get_frame_jacobian(self.frame_name)

        self.A = J[3:6, :]  # Angular part
        self.b = (
            self.target_angular_velocity
            + self.kp_angular * so3_log(self.target_rotation @ R.T)
        )


class GravityTask(Task):
    """
    Gravity alignment task

    Aligns the frame so that the world vertical, seen from the frame,
    matches the one measured by the IMU. Only the x and y components of
    the world angular velocity are constrained, rotation about the
    vertical is left free.
    """

    _SELECTION = np.array([
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0]
    ])

    def __init__(self, name: str, frame_name: str, kp: float):
        super().__init__(name, dim=2)

        self.frame_name = frame_name
        self.kp = kp
        # World z axis expressed in the frame
        self.target_vertical = np.array([0.0, 0.0, 1.0])

    def set_set_point(self, rotation: np.ndarray):
        """Set the desired frame orientation, only its tilt is used"""
        R_des = np.asarray(rotation, dtype=float)
        self.target_vertical = R_des.T @ np.array([0.0, 0.0, 1.0])

    def update(self, human_model):
        R = human_model.get_world_transform(self.frame_name)[:3, :3]
        J = human_model.get_frame_jacobian(self.frame_name)

        # Current world image of the desired frame vertical
        current = R @ self.target_vertical
        error = np.cross(current, np.array([0.0, 0.0, 1.0]))

        self.A = self._SELECTION @ J[3:6, :]
        self.b = self.kp * (self._SELECTION @ error)


class FloorContactTask(Task):
    """Floor contact task - keeps the frame still while loaded"""

    def __init__(self, name: str, frame_name: str):
        super().__init__(name, dim=3)

        self.frame_name = frame_name

    def update(self, human_model):
        J = human_model.get_frame_jacobian(self.frame_name)
        self.A = J[:3, :]  # Linear part
        self.b = np.zeros(3)


class JointRegularizationTask(Task):
    """Joint position regularization task"""

    def __init__(
        self,
        name: str,
        num_joints: int,
        kp: np.ndarray,
        nominal_positions: Optional[np.ndarray] = None
    ):
        super().__init__(name, dim=num_joints)

        self.num_joints = num_joints
        self.kp = np.broadcast_to(np.asarray(kp, dtype=float), (num_joints,)).copy()
        self.nominal_positions = (
            np.asarray(nominal_positions, dtype=float).copy() if nominal_positions is not None
            else np.zeros(num_joints)
        )

    def set_nominal_positions(self, positions: np.ndarray):
        """Set the regularization posture"""
        self.nominal_positions = np.asarray(positions, dtype=float).copy()

    def update(self, human_model):
        current_pos = human_model.get_joint_positions()
        nv = 6 + self.num_joints

        A = np.zeros((self.num_joints, nv))
        A[:, 6:] = np.eye(self.num_joints)

        self.A = A
        self.b = self.kp * (self.nominal_positions - current_pos)
