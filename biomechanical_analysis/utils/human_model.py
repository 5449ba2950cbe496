#!/usr/bin/env python3
"""
Human Model Wrapper
Pinocchio-based floating-base kinematics and dynamics of the human body

The shared model state is kept in the mixed representation: base velocity
is [linear, angular] of the base origin expressed in world-aligned axes.
Pinocchio's free-flyer velocity is body-local, conversions happen here.
"""

import numpy as np
import pinocchio as pin
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..errors import ModelError


class SensorType(Enum):
    """Physical sensor types that can be attached to a link"""
    ACCELEROMETER = "ACCELEROMETER_SENSOR"
    THREE_AXIS_ANGULAR_ACCELEROMETER = "THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR"


@dataclass(frozen=True)
class Sensor:
    """Sensor attached to a model link"""
    name: str
    type: SensorType
    frame: str


@dataclass
class ModelState:
    """Floating-base state shared by the estimators"""
    base_pose: np.ndarray          # 4x4 world_H_base
    joint_positions: np.ndarray
    base_velocity: np.ndarray      # [linear, angular], world-aligned
    joint_velocities: np.ndarray
    gravity: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, -9.81]))


class HumanModel:
    """
    Rigid body model of a human subject using Pinocchio

    Provides:
    - Floating-base state get/set
    - Frame transforms and Jacobians
    - Center of mass and total mass
    - Mass matrix and nonlinear effects
    - The list of physical sensors mounted on the links
    """

    def __init__(
        self,
        model: pin.Model,
        sensors: Optional[List[Sensor]] = None,
        base_link: Optional[str] = None
    ):
        """
        Initialize human model

        Args:
            model: Pinocchio model whose first joint is a free-flyer
            sensors: Sensors mounted on the model links
            base_link: Name of the floating base link (defaults to the
                first body attached to the free-flyer)
        """
        if model is None or model.njoints < 2:
            raise ModelError("Invalid model: a floating base is required")
        if model.joints[1].shortname() != "JointModelFreeFlyer":
            raise ModelError("Invalid model: the root joint must be a free-flyer")
        if model.nq - 7 != model.nv - 6:
            raise ModelError("Invalid model: only single-DoF joints are supported")

        self.model = model
        self.data = model.createData()
        # Separate workspace for dynamics queries, keeps data.J and data.oMf intact
        self._dyn_data = model.createData()
        self.nq = model.nq
        self.nv = model.nv
        self.n_joints = model.nv - 6

        self._link_names = [
            frame.name for frame in model.frames
            if frame.type == pin.FrameType.BODY
        ]
        if base_link is None:
            base_link = next(
                (frame.name for frame in model.frames
                 if frame.type == pin.FrameType.BODY and frame.parentJoint == 1),
                None
            )
        if base_link is None or not model.existFrame(base_link):
            raise ModelError(f"Invalid model: floating base link {base_link} not found")
        self.base_link = base_link

        self.sensors: List[Sensor] = list(sensors) if sensors is not None else []
        for sensor in self.sensors:
            if not model.existFrame(sensor.frame):
                raise ModelError(f"Sensor {sensor.name} is attached to unknown frame {sensor.frame}")

        # Allocate state
        self._base_rotation = np.eye(3)
        self._base_position = np.zeros(3)
        self._joint_positions = np.zeros(self.n_joints)
        self._base_velocity = np.zeros(6)
        self._joint_velocities = np.zeros(self.n_joints)
        self._gravity = np.array([0.0, 0.0, -9.81])

        self._update_kinematics()

    @classmethod
    def from_urdf(
        cls,
        urdf_path: str,
        sensors: Optional[List[Sensor]] = None,
        base_link: Optional[str] = None
    ) -> 'HumanModel':
        """Build a floating-base model from a URDF file"""
        try:
            model = pin.buildModelFromUrdf(urdf_path, pin.JointModelFreeFlyer())
        except (RuntimeError, ValueError) as e:
            raise ModelError(f"Error loading the model from file {urdf_path}: {e}")
        return cls(model, sensors=sensors, base_link=base_link)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def set_robot_state(
        self,
        base_pose: np.ndarray,
        joint_positions: np.ndarray,
        base_velocity: np.ndarray,
        joint_velocities: np.ndarray,
        gravity: Optional[np.ndarray] = None
    ):
        """
        Set the floating-base state

        Args:
            base_pose: 4x4 homogeneous transform world_H_base
            joint_positions: Joint positions (n_joints,)
            base_velocity: Base velocity [linear, angular] in world-aligned axes
            joint_velocities: Joint velocities (n_joints,)
            gravity: Gravity vector in world frame
        """
        base_pose = np.asarray(base_pose, dtype=float)
        joint_positions = np.asarray(joint_positions, dtype=float).reshape(-1)
        base_velocity = np.asarray(base_velocity, dtype=float).reshape(-1)
        joint_velocities = np.asarray(joint_velocities, dtype=float).reshape(-1)

        if base_pose.shape != (4, 4):
            raise ModelError("Base pose must be a 4x4 homogeneous transform")
        if joint_positions.size != self.n_joints or joint_velocities.size != self.n_joints:
            raise ModelError(
                f"Expected {self.n_joints} joint values, got "
                f"{joint_positions.size} positions and {joint_velocities.size} velocities"
            )
        if base_velocity.size != 6:
            raise ModelError("Base velocity must have 6 elements")

        self._base_rotation = base_pose[:3, :3].copy()
        self._base_position = base_pose[:3, 3].copy()
        self._joint_positions = joint_positions.copy()
        self._base_velocity = base_velocity.copy()
        self._joint_velocities = joint_velocities.copy()
        if gravity is not None:
            self._gravity = np.asarray(gravity, dtype=float).reshape(3).copy()

        self._update_kinematics()

    def get_robot_state(self) -> ModelState:
        """Get a copy of the floating-base state"""
        T = np.eye(4)
        T[:3, :3] = self._base_rotation
        T[:3, 3] = self._base_position
        return ModelState(
            base_pose=T,
            joint_positions=self._joint_positions.copy(),
            base_velocity=self._base_velocity.copy(),
            joint_velocities=self._joint_velocities.copy(),
            gravity=self._gravity.copy()
        )

    def get_joint_positions(self) -> np.ndarray:
        return self._joint_positions.copy()

    def get_joint_velocities(self) -> np.ndarray:
        return self._joint_velocities.copy()

    def get_base_velocity(self) -> np.ndarray:
        return self._base_velocity.copy()

    def get_gravity(self) -> np.ndarray:
        return self._gravity.copy()

    def configuration(self) -> np.ndarray:
        """Pinocchio configuration vector q"""
        quat = pin.Quaternion(self._base_rotation).coeffs()  # [x, y, z, w]
        return np.concatenate([self._base_position, quat, self._joint_positions])

    def generalized_velocity(self) -> np.ndarray:
        """Pinocchio velocity vector v (body-local base velocity)"""
        R_T = self._base_rotation.T
        return np.concatenate([
            R_T @ self._base_velocity[:3],
            R_T @ self._base_velocity[3:6],
            self._joint_velocities
        ])

    def _update_kinematics(self):
        """Refresh frame placements and Jacobians for the current state"""
        self.model.gravity = pin.Motion(self._gravity, np.zeros(3))
        q = self.configuration()
        v = self.generalized_velocity()
        pin.forwardKinematics(self.model, self.data, q, v)
        pin.computeJointJacobians(self.model, self.data, q)
        pin.updateFramePlacements(self.model, self.data)

    # ------------------------------------------------------------------
    # Kinematics
    # ------------------------------------------------------------------

    def frame_id(self, frame_name: str) -> int:
        """Get the pinocchio index of a frame"""
        if not self.model.existFrame(frame_name):
            raise ModelError(f"Frame {frame_name} not found in the model")
        return self.model.getFrameId(frame_name)

    def has_frame(self, frame_name: str) -> bool:
        return self.model.existFrame(frame_name)

    def get_world_transform(self, frame_name: str) -> np.ndarray:
        """
        Get frame pose in world coordinates

        Returns:
            4x4 homogeneous transformation matrix
        """
        oMf = self.data.oMf[self.frame_id(frame_name)]
        T = np.eye(4)
        T[:3, :3] = oMf.rotation
        T[:3, 3] = oMf.translation
        return T

    def get_frame_jacobian(self, frame_name: str) -> np.ndarray:
        """
        Frame Jacobian in the mixed representation

        Rows are [linear, angular] velocity of the frame origin in
        world-aligned axes, columns follow the decision variable layout
        [base linear, base angular, joint velocities].

        Returns:
            6 x nv Jacobian matrix
        """
        J = pin.getFrameJacobian(
            self.model, self.data, self.frame_id(frame_name),
            pin.ReferenceFrame.LOCAL_WORLD_ALIGNED
        ).copy()
        R_T = self._base_rotation.T
        J[:, 0:3] = J[:, 0:3] @ R_T
        J[:, 3:6] = J[:, 3:6] @ R_T
        return J

    def get_link_jacobian_local(self, frame_name: str) -> np.ndarray:
        """Frame Jacobian in body-local coordinates, pinocchio velocity layout"""
        return pin.getFrameJacobian(
            self.model, self.data, self.frame_id(frame_name),
            pin.ReferenceFrame.LOCAL
        ).copy()

    def get_frame_drift_acceleration(self, frame_name: str) -> np.ndarray:
        """
        Classical acceleration of a frame for zero generalized acceleration

        Returns:
            6D [linear, angular] acceleration in the frame coordinates
        """
        q = self.configuration()
        v = self.generalized_velocity()
        pin.forwardKinematics(self.model, self._dyn_data, q, v, np.zeros(self.nv))
        a = pin.getFrameClassicalAcceleration(
            self.model, self._dyn_data, self.frame_id(frame_name),
            pin.ReferenceFrame.LOCAL
        )
        return np.concatenate([a.linear, a.angular])

    def get_center_of_mass_position(self) -> np.ndarray:
        """Get center of mass position in world frame"""
        return pin.centerOfMass(self.model, self._dyn_data, self.configuration()).copy()

    # ------------------------------------------------------------------
    # Dynamics
    # ------------------------------------------------------------------

    def get_mass_matrix(self) -> np.ndarray:
        """
        Compute joint-space mass matrix M(q)

        Returns:
            nv x nv mass matrix, pinocchio velocity layout
        """
        M = pin.crba(self.model, self._dyn_data, self.configuration())
        return np.triu(M) + np.triu(M, 1).T

    def get_nonlinear_effects(self) -> np.ndarray:
        """
        Compute Coriolis, centrifugal, and gravity terms h(q, v)

        Returns:
            nv-dimensional vector
        """
        return pin.nonLinearEffects(
            self.model, self._dyn_data, self.configuration(), self.generalized_velocity()
        ).copy()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def nr_of_dofs(self) -> int:
        return self.n_joints

    @property
    def floating_base(self) -> str:
        return self.base_link

    @property
    def total_mass(self) -> float:
        """Get total human mass"""
        return float(pin.computeTotalMass(self.model))

    @property
    def joint_names(self) -> List[str]:
        """Get list of joint names"""
        return [self.model.names[i] for i in range(2, self.model.njoints)]

    @property
    def link_names(self) -> List[str]:
        """Get list of link (body frame) names"""
        return list(self._link_names)

    def joint_position_limits(self) -> Dict[str, np.ndarray]:
        """Get joint position limits from model"""
        return {
            'lower': np.asarray(self.model.lowerPositionLimit[7:], dtype=float).copy(),
            'upper': np.asarray(self.model.upperPositionLimit[7:], dtype=float).copy()
        }
