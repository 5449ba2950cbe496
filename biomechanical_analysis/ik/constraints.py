#!/usr/bin/env python3
"""
Constraint definitions for velocity-level inverse kinematics
Joint position limits mapped to joint velocity bounds
"""

import numpy as np
from typing import Optional

from .task import Task

# Limits beyond this magnitude are treated as unbounded
_UNBOUNDED = 1e10


class JointConstraintTask(Task):
    """
    Joint limit constraint

    Keeps the joints within their position limits by bounding the velocity:
        k_limits * (q_lower - q) <= dq <= k_limits * (q_upper - q)
    """

    def __init__(
        self,
        name: str,
        num_joints: int,
        k_limits: float,
        position_lower: np.ndarray,
        position_upper: np.ndarray
    ):
        super().__init__(name, dim=num_joints)

        self.num_joints = num_joints
        self.k_limits = k_limits
        self.position_lower = self._sanitize(position_lower, -np.inf)
        self.position_upper = self._sanitize(position_upper, np.inf)
        self.lower = np.full(num_joints, -np.inf)
        self.upper = np.full(num_joints, np.inf)

    @staticmethod
    def _sanitize(limits: np.ndarray, unbounded: float) -> np.ndarray:
        limits = np.asarray(limits, dtype=float).copy()
        limits[~np.isfinite(limits) | (np.abs(limits) > _UNBOUNDED)] = unbounded
        return limits

    def update(self, human_model):
        q_joints = human_model.get_joint_positions()
        nv = 6 + self.num_joints

        A = np.zeros((self.num_joints, nv))
        A[:, 6:] = np.eye(self.num_joints)

        # Zero velocity stays feasible when a joint is already outside its limits
        self.lower = np.minimum(self.k_limits * (self.position_lower - q_joints), 0.0)
        self.upper = np.maximum(self.k_limits * (self.position_upper - q_joints), 0.0)
        self.A = A
        self.b = np.zeros(self.num_joints)

    def is_valid(self) -> bool:
        return self.A is not None and np.all(np.isfinite(self.A))
