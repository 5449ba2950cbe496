#!/usr/bin/env python3
"""
Task Registry
Builds the configured IK tasks and keeps their per-node calibration state

Node tasks are stored in an ordered map node -> NodeTask. A node id may
appear once across all task types.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any

from .task import Task, TaskPriority, SO3Task, GravityTask, FloorContactTask, JointRegularizationTask
from .constraints import JointConstraintTask
from .weight_provider import MultiStateWeightProvider, WeightProviderConfig, WeightRegime
from .qp_ik import QPInverseKinematics
from ..config import get_group, get_parameter, get_float, get_int, get_vector, get_string_list, rotation_from_row_major
from ..errors import ConfigurationError
from ..utils.math_utils import as_rotation_matrix, rotation_matrix_z, rotation_yaw

logger = logging.getLogger(__name__)

DEFAULT_ORIENTATION_WEIGHT = 10.0


class TaskKind(Enum):
    """Task type discriminator, values match the configuration `type` key"""
    ORIENTATION = "SO3Task"
    GRAVITY = "GravityTask"
    FLOOR_CONTACT = "FloorContactTask"
    JOINT_REGULARIZATION = "JointRegularizationTask"
    JOINT_CONSTRAINT = "JointConstraintTask"


NODE_TASK_KINDS = (TaskKind.ORIENTATION, TaskKind.GRAVITY, TaskKind.FLOOR_CONTACT)


@dataclass
class NodeTask:
    """Task attached to an instrumented body segment"""
    kind: TaskKind
    name: str
    node: int
    frame_name: str
    task: Task
    IMU_R_link: np.ndarray = field(default_factory=lambda: np.eye(3))
    calibration_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))
    weight_provider: Optional[MultiStateWeightProvider] = None
    vertical_force: float = 0.0

    def link_rotation(self, I_R_IMU: np.ndarray) -> np.ndarray:
        """Calibrated link orientation for a raw sensor reading"""
        return self.calibration_matrix @ I_R_IMU @ self.IMU_R_link


class TaskRegistry:
    """
    Holds the configured tasks keyed by node id

    initialize() raises ConfigurationError, every runtime operation reports
    failure through its return value.
    """

    def __init__(self):
        self.nodes: Dict[int, NodeTask] = {}
        self.joint_tasks: Dict[str, Task] = {}
        self.human_model = None

    def initialize(self, config: Dict[str, Any], human_model, qp: QPInverseKinematics):
        """
        Build the tasks listed in the `tasks` parameter and add them to the QP

        Args:
            config: Root configuration group
            human_model: Shared HumanModel
            qp: QP problem the tasks are registered into
        """
        context = "[TaskRegistry.initialize]"
        self.human_model = human_model
        self.nodes = {}
        self.joint_tasks = {}

        task_names = get_string_list(config, "tasks", context)
        if len(set(task_names)) != len(task_names):
            raise ConfigurationError(f"{context} The tasks list contains duplicate names",
                                     parameter="tasks")

        for task_name in task_names:
            group = get_group(config, task_name, context)
            type_name = get_parameter(group, "type", context, group_name=task_name)
            try:
                kind = TaskKind(type_name)
            except ValueError:
                raise ConfigurationError(
                    f"{context} Unknown type {type_name} of the {task_name} task",
                    group=task_name,
                    parameter="type"
                )

            if kind in NODE_TASK_KINDS:
                self._add_node_task(kind, task_name, group, qp)
            elif kind == TaskKind.JOINT_REGULARIZATION:
                self._add_joint_regularization_task(task_name, group, qp)
            else:
                self._add_joint_constraint_task(task_name, group, qp)

        logger.info(f"{context} Registered {len(self.nodes)} node tasks and "
                    f"{len(self.joint_tasks)} joint tasks")

    def _add_node_task(self, kind: TaskKind, task_name: str, group: Dict[str, Any],
                       qp: QPInverseKinematics):
        context = "[TaskRegistry.initialize]"
        node = get_int(group, "node_number", context, group_name=task_name)
        frame_name = str(get_parameter(group, "frame_name", context, group_name=task_name))

        if node in self.nodes:
            raise ConfigurationError(
                f"{context} Node {node} of the {task_name} task is already used by the "
                f"{self.nodes[node].name} task",
                group=task_name,
                parameter="node_number"
            )
        if not self.human_model.has_frame(frame_name):
            raise ConfigurationError(
                f"{context} Frame {frame_name} of the {task_name} task is not in the model",
                group=task_name,
                parameter="frame_name"
            )

        IMU_R_link = np.eye(3)
        if kind in (TaskKind.ORIENTATION, TaskKind.GRAVITY):
            if "rotation_matrix" in group:
                IMU_R_link = rotation_from_row_major(
                    get_vector(group, "rotation_matrix", 9, context, group_name=task_name)
                )
            else:
                logger.warning(f"{context} Parameter rotation_matrix of the {task_name} task "
                               f"is missing, using the identity")

        weight_provider = None
        if kind == TaskKind.ORIENTATION:
            kp = get_float(group, "kp_angular", context, group_name=task_name)
            task = SO3Task(task_name, frame_name, kp)
            weight = get_vector(group, "weight", 3, context, default=DEFAULT_ORIENTATION_WEIGHT,
                                group_name=task_name)
            qp.add_task(task, task_name, TaskPriority.LOW, weight=weight)
        else:
            if kind == TaskKind.GRAVITY:
                kp = get_float(group, "kp", context, group_name=task_name)
                task = GravityTask(task_name, frame_name, kp)
            else:
                task = FloorContactTask(task_name, frame_name)
            weight_provider = MultiStateWeightProvider(
                WeightProviderConfig.from_group(group, task.dim, task_name)
            )
            qp.add_task(task, task_name, TaskPriority.LOW, weight_provider=weight_provider)

        self.nodes[node] = NodeTask(
            kind=kind,
            name=task_name,
            node=node,
            frame_name=frame_name,
            task=task,
            IMU_R_link=IMU_R_link,
            weight_provider=weight_provider
        )

    def _add_joint_regularization_task(self, task_name: str, group: Dict[str, Any],
                                       qp: QPInverseKinematics):
        context = "[TaskRegistry.initialize]"
        n = self.human_model.nr_of_dofs
        kp = get_vector(group, "kp", n, context, group_name=task_name)
        weight = get_vector(group, "weight", n, context, default=1.0, group_name=task_name)
        nominal = get_vector(group, "nominal_positions", n, context, default=np.zeros(n),
                             group_name=task_name)

        task = JointRegularizationTask(task_name, n, kp, nominal)
        qp.add_task(task, task_name, TaskPriority.LOW, weight=weight)
        self.joint_tasks[task_name] = task

    def _add_joint_constraint_task(self, task_name: str, group: Dict[str, Any],
                                   qp: QPInverseKinematics):
        context = "[TaskRegistry.initialize]"
        n = self.human_model.nr_of_dofs
        k_limits = get_float(group, "k_limits", context, group_name=task_name)
        if k_limits <= 0.0:
            raise ConfigurationError(
                f"{context} Parameter k_limits of the {task_name} task must be positive",
                group=task_name,
                parameter="k_limits"
            )

        limits = self.human_model.joint_position_limits()
        lower = get_vector(group, "lower_limits", n, context, default=limits['lower'],
                           group_name=task_name)
        upper = get_vector(group, "upper_limits", n, context, default=limits['upper'],
                           group_name=task_name)
        if np.any(lower > upper):
            raise ConfigurationError(
                f"{context} Lower limits exceed upper limits in the {task_name} task",
                group=task_name,
                parameter="lower_limits"
            )

        task = JointConstraintTask(task_name, n, k_limits, lower, upper)
        qp.add_constraint(task, task_name)
        self.joint_tasks[task_name] = task

    # ------------------------------------------------------------------
    # Runtime operations
    # ------------------------------------------------------------------

    def _lookup(self, node: int, kinds, prefix: str) -> Optional[NodeTask]:
        entry = self.nodes.get(node)
        if entry is None or entry.kind not in kinds:
            logger.error(f"{prefix} Invalid node number {node}")
            return None
        return entry

    def has_node(self, node: int) -> bool:
        return node in self.nodes

    def get_node_task(self, node: int) -> Optional[NodeTask]:
        return self.nodes.get(node)

    def set_orientation_set_point(
        self,
        node: int,
        I_R_IMU: np.ndarray,
        I_omega_IMU: Optional[np.ndarray] = None
    ) -> bool:
        """Set the orientation task target from a raw IMU reading"""
        prefix = "[TaskRegistry.set_orientation_set_point]"
        entry = self._lookup(node, (TaskKind.ORIENTATION,), prefix)
        if entry is None:
            return False
        try:
            I_R_IMU = as_rotation_matrix(I_R_IMU)
            omega = np.zeros(3) if I_omega_IMU is None else np.asarray(I_omega_IMU, dtype=float).reshape(3)
            if not np.all(np.isfinite(omega)):
                raise ValueError("angular velocity contains non-finite values")
        except ValueError as e:
            logger.error(f"{prefix} Invalid measurement for node {node}: {e}")
            return False

        entry.task.set_set_point(entry.link_rotation(I_R_IMU), omega)
        return True

    def set_gravity_set_point(self, node: int, I_R_IMU: np.ndarray) -> bool:
        """Set the gravity task target from a raw IMU reading"""
        prefix = "[TaskRegistry.set_gravity_set_point]"
        entry = self._lookup(node, (TaskKind.GRAVITY,), prefix)
        if entry is None:
            return False
        try:
            I_R_IMU = as_rotation_matrix(I_R_IMU)
        except ValueError as e:
            logger.error(f"{prefix} Invalid measurement for node {node}: {e}")
            return False

        entry.task.set_set_point(entry.link_rotation(I_R_IMU))
        return True

    def set_vertical_force(self, node: int, force: float) -> bool:
        """Store the vertical force used to select the weight of a node task"""
        prefix = "[TaskRegistry.set_vertical_force]"
        entry = self._lookup(node, (TaskKind.GRAVITY, TaskKind.FLOOR_CONTACT), prefix)
        if entry is None:
            return False
        if not np.isfinite(force):
            logger.error(f"{prefix} Non-finite vertical force for node {node}")
            return False

        entry.vertical_force = float(force)
        return True

    def update_weights(self):
        """Step every weight provider once with its latest vertical force"""
        for entry in self.nodes.values():
            if entry.weight_provider is not None:
                entry.weight_provider.advance(entry.vertical_force)

    def weight_regimes(self) -> Dict[int, WeightRegime]:
        """Current regime of every node task with a weight provider"""
        return {node: entry.weight_provider.state for node, entry in self.nodes.items()
                if entry.weight_provider is not None}

    def restore_weight_regimes(self, regimes: Dict[int, WeightRegime]):
        for node, regime in regimes.items():
            self.nodes[node].weight_provider.state = regime

    def calibrate_node(
        self,
        node: int,
        I_R_IMU: np.ndarray,
        reference_rotation: Optional[np.ndarray] = None
    ) -> bool:
        """
        Compute the calibration matrix of a node

        After calibration, a set-point with the same reading yields
        reference_rotation (identity for a T-pose).
        """
        prefix = "[TaskRegistry.calibrate_node]"
        entry = self._lookup(node, (TaskKind.ORIENTATION, TaskKind.GRAVITY), prefix)
        if entry is None:
            return False
        try:
            I_R_IMU = as_rotation_matrix(I_R_IMU)
            reference = np.eye(3) if reference_rotation is None else as_rotation_matrix(reference_rotation)
        except ValueError as e:
            logger.error(f"{prefix} Invalid rotation for node {node}: {e}")
            return False

        entry.calibration_matrix = reference @ (I_R_IMU @ entry.IMU_R_link).T
        return True

    def _validated_measurements(self, measurements: Dict[int, np.ndarray],
                                prefix: str) -> Optional[Dict[int, np.ndarray]]:
        """Check every node before any calibration matrix is touched"""
        rotations = {}
        for node, rotation in measurements.items():
            if self._lookup(node, (TaskKind.ORIENTATION, TaskKind.GRAVITY), prefix) is None:
                return None
            try:
                rotations[node] = as_rotation_matrix(rotation)
            except ValueError as e:
                logger.error(f"{prefix} Invalid rotation for node {node}: {e}")
                return None
        return rotations

    def calibrate_world_yaw(self, measurements: Dict[int, np.ndarray]) -> bool:
        """
        Align the heading of the measured nodes with the model

        The calibration matrix of each node becomes the rotation about the
        world z axis that maps the calibrated reading onto the current link
        orientation of the model.
        """
        prefix = "[TaskRegistry.calibrate_world_yaw]"
        rotations = self._validated_measurements(measurements, prefix)
        if rotations is None:
            return False

        for node, I_R_IMU in rotations.items():
            entry = self.nodes[node]
            I_R_link_model = self.human_model.get_world_transform(entry.frame_name)[:3, :3]
            yaw = rotation_yaw(I_R_link_model @ (I_R_IMU @ entry.IMU_R_link).T)
            entry.calibration_matrix = rotation_matrix_z(yaw)
        return True

    def calibrate_all_with_world(self, measurements: Dict[int, np.ndarray]) -> bool:
        """Calibrate every measured node against the current model orientation"""
        prefix = "[TaskRegistry.calibrate_all_with_world]"
        rotations = self._validated_measurements(measurements, prefix)
        if rotations is None:
            return False

        for node, I_R_IMU in rotations.items():
            entry = self.nodes[node]
            I_R_link_model = self.human_model.get_world_transform(entry.frame_name)[:3, :3]
            entry.calibration_matrix = I_R_link_model @ (I_R_IMU @ entry.IMU_R_link).T
        return True

    def clear_calibration(self):
        """Reset all calibration matrices to identity"""
        for entry in self.nodes.values():
            entry.calibration_matrix = np.eye(3)

    def node_ids(self, kind: Optional[TaskKind] = None) -> List[int]:
        return [node for node, entry in self.nodes.items() if kind is None or entry.kind == kind]
