#!/usr/bin/env python3
"""
Human Inverse Kinematics
Converts segment orientation, gravity and floor contact observations into a
consistent floating-base pose of the human model

Each cycle:
1. Feed the latest measurements to the tasks
2. Solve the QP for the generalized velocity
3. Integrate the velocity with forward Euler
4. Write pose and velocity back into the shared model
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Any

from .qp_ik import QPIKConfig, QPInverseKinematics, VariablesHandler
from .task_registry import TaskRegistry, TaskKind
from .integrator import FloatingBaseSystemKinematics, ForwardEuler
from .task import JointRegularizationTask
from ..config import get_group
from ..errors import EstimationError, ModelError
from ..utils.math_utils import homogeneous_transform

logger = logging.getLogger(__name__)


class IKState(Enum):
    """Life cycle of the IK solver"""
    UNINITIALIZED = 0
    INITIALIZED = 1
    ADVANCING = 2


@dataclass
class NodeData:
    """Measurement of an orientation node"""
    I_R_IMU: np.ndarray
    I_omega_IMU: np.ndarray = field(default_factory=lambda: np.zeros(3))


class HumanIK:
    """
    Human inverse kinematics solver

    Public operations return a success flag and log the cause of a failure.
    """

    def __init__(self):
        self.state = IKState.UNINITIALIZED
        self.human_model = None
        self.registry = TaskRegistry()
        self.qp: Optional[QPInverseKinematics] = None
        self.system: Optional[FloatingBaseSystemKinematics] = None
        self.integrator: Optional[ForwardEuler] = None

        self._n_dofs = 0
        self._base_pose = np.eye(4)
        self._base_velocity = np.zeros(6)
        self._joint_positions = np.zeros(0)
        self._joint_velocities = np.zeros(0)

    def initialize(self, config: Dict[str, Any], human_model) -> bool:
        """
        Build tasks, QP problem and integrator

        Args:
            config: Root configuration group with the `IK` group, the `tasks`
                list and one group per task
            human_model: Shared HumanModel

        Returns:
            True on success
        """
        try:
            self._initialize(config, human_model)
        except EstimationError as e:
            logger.error(f"[HumanIK.initialize] {e}")
            self.state = IKState.UNINITIALIZED
            return False

        self.state = IKState.INITIALIZED
        logger.info(f"[HumanIK.initialize] Initialized with {self._n_dofs} DoFs and "
                    f"{len(self.registry.nodes)} node tasks")
        return True

    def _initialize(self, config: Dict[str, Any], human_model):
        if human_model is None:
            raise ModelError("Invalid model: a shared human model is required")

        self.human_model = human_model
        self._n_dofs = human_model.nr_of_dofs

        qp_config = QPIKConfig.from_group(get_group(config, "IK", "[HumanIK.initialize]"))
        qp = QPInverseKinematics(qp_config, self._n_dofs)

        registry = TaskRegistry()
        registry.initialize(config, human_model, qp)

        variables = VariablesHandler()
        variables.add_variable(qp_config.robot_velocity_variable_name, self._n_dofs + 6)
        qp.finalize(variables)

        self.system = FloatingBaseSystemKinematics(self._n_dofs)
        self.integrator = ForwardEuler(self.system)
        self.qp = qp
        self.registry = registry

        self._read_model_state()

    def _read_model_state(self):
        state = self.human_model.get_robot_state()
        self._base_pose = state.base_pose
        self._base_velocity = state.base_velocity
        self._joint_positions = state.joint_positions
        self._joint_velocities = state.joint_velocities
        self.system.set_state(state.base_pose[:3, 3], state.base_pose[:3, :3], state.joint_positions)

    def _check_initialized(self, prefix: str) -> bool:
        if self.state == IKState.UNINITIALIZED:
            logger.error(f"{prefix} The solver is not initialized")
            return False
        return True

    def set_dt(self, dt: float) -> bool:
        """Set the integration step, must be positive"""
        if not self._check_initialized("[HumanIK.set_dt]"):
            return False
        try:
            self.integrator.set_integration_step(dt)
        except EstimationError as e:
            logger.error(f"[HumanIK.set_dt] {e}")
            return False
        return True

    def get_dt(self) -> Optional[float]:
        return self.integrator.dt if self.integrator is not None else None

    def get_dofs_number(self) -> int:
        return self._n_dofs

    def advance(self) -> bool:
        """
        Solve the QP and integrate one step

        On failure the model state and all outputs keep their last values.
        """
        prefix = "[HumanIK.advance]"
        if not self._check_initialized(prefix):
            return False
        if self.integrator.dt is None:
            logger.error(f"{prefix} The integration step is not set")
            return False

        state = self.human_model.get_robot_state()
        # Weight regimes only move forward on a completed cycle
        regimes = self.registry.weight_regimes()
        try:
            self.system.set_state(state.base_pose[:3, 3], state.base_pose[:3, :3],
                                  state.joint_positions)
            self.registry.update_weights()
            output = self.qp.advance(self.human_model)
        except EstimationError as e:
            logger.error(f"{prefix} Error in the QP solver: {e}")
            self.registry.restore_weight_regimes(regimes)
            return False

        try:
            self.system.set_control_input(output.base_velocity, output.joint_velocity)
            solution = self.integrator.integrate()
        except EstimationError as e:
            logger.error(f"{prefix} Error in the integration: {e}")
            self.registry.restore_weight_regimes(regimes)
            return False

        base_pose = homogeneous_transform(solution.base_rotation, solution.base_position)
        try:
            self.human_model.set_robot_state(
                base_pose,
                solution.joint_positions,
                output.base_velocity,
                output.joint_velocity,
                state.gravity
            )
        except EstimationError as e:
            logger.error(f"{prefix} Error writing the model state: {e}")
            self.registry.restore_weight_regimes(regimes)
            return False

        self._base_pose = base_pose
        self._base_velocity = output.base_velocity.copy()
        self._joint_positions = solution.joint_positions.copy()
        self._joint_velocities = output.joint_velocity.copy()
        self.state = IKState.ADVANCING
        return True

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def get_joint_positions(self) -> np.ndarray:
        return self._joint_positions.copy()

    def get_joint_velocities(self) -> np.ndarray:
        return self._joint_velocities.copy()

    def get_base_position(self) -> np.ndarray:
        return self._base_pose[:3, 3].copy()

    def get_base_linear_velocity(self) -> np.ndarray:
        return self._base_velocity[:3].copy()

    def get_base_orientation(self) -> np.ndarray:
        return self._base_pose[:3, :3].copy()

    def get_base_angular_velocity(self) -> np.ndarray:
        return self._base_velocity[3:6].copy()

    # ------------------------------------------------------------------
    # Task updates
    # ------------------------------------------------------------------

    def update_orientation_task(
        self,
        node: int,
        I_R_IMU: np.ndarray,
        I_omega_IMU: Optional[np.ndarray] = None
    ) -> bool:
        """Set the orientation target of a node from a raw IMU reading"""
        if not self._check_initialized("[HumanIK.update_orientation_task]"):
            return False
        return self.registry.set_orientation_set_point(node, I_R_IMU, I_omega_IMU)

    def update_gravity_task(self, node: int, I_R_IMU: np.ndarray) -> bool:
        if not self._check_initialized("[HumanIK.update_gravity_task]"):
            return False
        return self.registry.set_gravity_set_point(node, I_R_IMU)

    def update_floor_contact_task(self, node: int, vertical_force: float) -> bool:
        if not self._check_initialized("[HumanIK.update_floor_contact_task]"):
            return False
        return self.registry.set_vertical_force(node, vertical_force)

    def update_orientation_and_gravity_tasks(self, node_data: Dict[int, NodeData]) -> bool:
        """
        Update every orientation and gravity task with the given measurements

        Nodes are checked first, an unknown node leaves all tasks unchanged.
        """
        prefix = "[HumanIK.update_orientation_and_gravity_tasks]"
        if not self._check_initialized(prefix):
            return False

        for node in node_data:
            entry = self.registry.get_node_task(node)
            if entry is None or entry.kind not in (TaskKind.ORIENTATION, TaskKind.GRAVITY):
                logger.error(f"{prefix} Invalid node number {node}")
                return False

        ok = True
        for node, data in node_data.items():
            if self.registry.get_node_task(node).kind == TaskKind.ORIENTATION:
                ok = self.registry.set_orientation_set_point(node, data.I_R_IMU, data.I_omega_IMU) and ok
            else:
                ok = self.registry.set_gravity_set_point(node, data.I_R_IMU) and ok
        return ok

    def update_floor_contact_tasks(self, wrenches: Dict[int, np.ndarray]) -> bool:
        """Update the floor contact tasks from per-node contact wrenches [f, tau]"""
        prefix = "[HumanIK.update_floor_contact_tasks]"
        if not self._check_initialized(prefix):
            return False

        forces = {}
        for node, wrench in wrenches.items():
            entry = self.registry.get_node_task(node)
            if entry is None or entry.kind != TaskKind.FLOOR_CONTACT:
                logger.error(f"{prefix} Invalid node number {node}")
                return False
            wrench = np.asarray(wrench, dtype=float).reshape(-1)
            if wrench.size != 6:
                logger.error(f"{prefix} Wrench of node {node} must have 6 elements")
                return False
            forces[node] = wrench[2]

        ok = True
        for node, force in forces.items():
            ok = self.registry.set_vertical_force(node, force) and ok
        return ok

    def update_joint_regularization_task(self, nominal_positions: np.ndarray) -> bool:
        """Set the posture of every joint regularization task"""
        prefix = "[HumanIK.update_joint_regularization_task]"
        if not self._check_initialized(prefix):
            return False
        nominal_positions = np.asarray(nominal_positions, dtype=float).reshape(-1)
        if nominal_positions.size != self._n_dofs:
            logger.error(f"{prefix} Expected {self._n_dofs} joint positions, "
                         f"got {nominal_positions.size}")
            return False

        tasks = [task for task in self.registry.joint_tasks.values()
                 if isinstance(task, JointRegularizationTask)]
        if not tasks:
            logger.error(f"{prefix} No joint regularization task is configured")
            return False
        for task in tasks:
            task.set_nominal_positions(nominal_positions)
        return True

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def calibrate_node(
        self,
        node: int,
        I_R_IMU: np.ndarray,
        reference_rotation: Optional[np.ndarray] = None
    ) -> bool:
        """T-pose calibration of a single node"""
        if not self._check_initialized("[HumanIK.calibrate_node]"):
            return False
        return self.registry.calibrate_node(node, I_R_IMU, reference_rotation)

    def calibrate_world_yaw(self, node_data: Dict[int, NodeData]) -> bool:
        if not self._check_initialized("[HumanIK.calibrate_world_yaw]"):
            return False
        return self.registry.calibrate_world_yaw(
            {node: data.I_R_IMU for node, data in node_data.items()}
        )

    def calibrate_all_with_world(self, node_data: Dict[int, NodeData]) -> bool:
        if not self._check_initialized("[HumanIK.calibrate_all_with_world]"):
            return False
        return self.registry.calibrate_all_with_world(
            {node: data.I_R_IMU for node, data in node_data.items()}
        )

    def clear_calibration(self) -> bool:
        if not self._check_initialized("[HumanIK.clear_calibration]"):
            return False
        self.registry.clear_calibration()
        return True
