#!/usr/bin/env python3
"""
Floating-base kinematics integration
Explicit first-order integration of base pose and joint positions
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional

from ..errors import ConfigurationError, SolveError
from ..utils.math_utils import so3_exp


@dataclass
class FloatingBaseState:
    """Integrated floating-base state"""
    base_position: np.ndarray     # World frame
    base_rotation: np.ndarray     # world_R_base
    joint_positions: np.ndarray


@dataclass
class FloatingBaseVelocity:
    """Control input of the kinematic system"""
    base_velocity: np.ndarray     # [linear, angular], world-aligned
    joint_velocities: np.ndarray


class FloatingBaseSystemKinematics:
    """
    Kinematic system of a floating-base body

    State: (p, R, s), control: (base velocity, joint velocities)
        p_dot = v
        R_dot = skew(omega) R
        s_dot = joint velocities
    """

    def __init__(self, num_joints: int):
        self.num_joints = num_joints
        self.state = FloatingBaseState(
            base_position=np.zeros(3),
            base_rotation=np.eye(3),
            joint_positions=np.zeros(num_joints)
        )
        self.control = FloatingBaseVelocity(
            base_velocity=np.zeros(6),
            joint_velocities=np.zeros(num_joints)
        )

    def set_state(self, base_position: np.ndarray, base_rotation: np.ndarray,
                  joint_positions: np.ndarray):
        joint_positions = np.asarray(joint_positions, dtype=float).reshape(-1)
        if joint_positions.size != self.num_joints:
            raise ConfigurationError(
                f"Expected {self.num_joints} joint positions, got {joint_positions.size}"
            )
        self.state = FloatingBaseState(
            base_position=np.asarray(base_position, dtype=float).reshape(3).copy(),
            base_rotation=np.asarray(base_rotation, dtype=float).copy(),
            joint_positions=joint_positions.copy()
        )

    def set_control_input(self, base_velocity: np.ndarray, joint_velocities: np.ndarray):
        base_velocity = np.asarray(base_velocity, dtype=float).reshape(-1)
        joint_velocities = np.asarray(joint_velocities, dtype=float).reshape(-1)
        if base_velocity.size != 6 or joint_velocities.size != self.num_joints:
            raise SolveError(
                f"Invalid control input size: base {base_velocity.size}, "
                f"joints {joint_velocities.size}"
            )
        self.control = FloatingBaseVelocity(base_velocity.copy(), joint_velocities.copy())


class ForwardEuler:
    """Fixed-step explicit Euler integrator"""

    def __init__(self, system: FloatingBaseSystemKinematics):
        self.system = system
        self.dt: Optional[float] = None

    def set_integration_step(self, dt: float):
        if dt is None or not np.isfinite(dt) or dt <= 0.0:
            raise ConfigurationError(f"Integration step must be positive, got {dt}")
        self.dt = float(dt)

    def integrate(self) -> FloatingBaseState:
        """
        Advance the system by one step

        Returns:
            The new state, also stored in the system

        Raises:
            SolveError: if the step is not set or the result is not finite
        """
        if self.dt is None:
            raise SolveError("Integration step is not set")

        state = self.system.state
        control = self.system.control
        dt = self.dt

        p = state.base_position + control.base_velocity[:3] * dt
        # Left multiplication, omega is world-aligned
        R = so3_exp(control.base_velocity[3:6] * dt) @ state.base_rotation
        s = state.joint_positions + control.joint_velocities * dt

        if not (np.all(np.isfinite(p)) and np.all(np.isfinite(R)) and np.all(np.isfinite(s))):
            raise SolveError("Integration produced a non-finite state")

        self.system.state = FloatingBaseState(p, R, s)
        return self.system.state

    def get_solution(self) -> FloatingBaseState:
        return self.system.state
