#!/usr/bin/env python3
"""
Estimation graph for floating-base inverse dynamics

Describes, for the current model state, the linear relations used by the
MAP estimator:
    dynamics:     D d + b_D = 0
    measurements: y = Y d + b_Y

Dynamic variables d:
    FLOATING_BASE:
        [generalized accelerations (nv), joint torques (n), link wrenches (6 per link)]
    FLOATING_BASE_NON_COLLOCATED_EXT_WRENCHES:
        [link wrenches (6 per link)]

Generalized accelerations follow the pinocchio layout (body-local base).
Link wrenches [f, tau] are expressed in the link frame.
"""

import numpy as np
from scipy import sparse
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from ..errors import ConfigurationError, MeasurementLookupError
from ..utils.human_model import Sensor, SensorType
from ..utils.math_utils import wrench_transform


class GraphVariant(Enum):
    """Estimation graph formulations"""
    FLOATING_BASE = "FLOATING_BASE"
    FLOATING_BASE_NON_COLLOCATED_EXT_WRENCHES = "FLOATING_BASE_NON_COLLOCATED_EXT_WRENCHES"


class GraphSensorType(Enum):
    """Sensor types of the estimation graph"""
    NET_EXT_WRENCH_SENSOR = "NET_EXT_WRENCH_SENSOR"
    JOINT_ACCELERATION_SENSOR = "JOINT_ACCELERATION_SENSOR"
    JOINT_TORQUE_SENSOR = "JOINT_TORQUE_SENSOR"
    RCM_SENSOR = "RCM_SENSOR"
    ACCELEROMETER_SENSOR = "ACCELEROMETER_SENSOR"
    THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR = "THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR"


_PHYSICAL_SENSOR_TYPES = {
    SensorType.ACCELEROMETER: GraphSensorType.ACCELEROMETER_SENSOR,
    SensorType.THREE_AXIS_ANGULAR_ACCELEROMETER: GraphSensorType.THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR,
}


@dataclass
class EstimationGraphOptions:
    """Selects which quantities are unknowns and which are measured"""
    base_link: Optional[str] = None
    variant: GraphVariant = GraphVariant.FLOATING_BASE
    include_net_ext_wrenches_as_sensors: bool = True
    include_net_ext_wrenches_as_dynamic_variables: bool = True
    include_joint_accelerations_as_sensors: bool = True
    include_joint_torques_as_sensors: bool = False
    include_fixed_base_external_wrench: bool = False
    include_rcm_sensor: bool = False

    def check_consistency(self):
        """
        Raises:
            ConfigurationError: if the options cannot be combined
        """
        if not self.include_net_ext_wrenches_as_dynamic_variables:
            raise ConfigurationError(
                f"Variant {self.variant.value} needs the net external wrenches as dynamic variables"
            )
        if self.include_fixed_base_external_wrench:
            raise ConfigurationError(
                f"Variant {self.variant.value} does not support a fixed base external wrench"
            )
        if self.variant == GraphVariant.FLOATING_BASE_NON_COLLOCATED_EXT_WRENCHES:
            if self.include_joint_accelerations_as_sensors or self.include_joint_torques_as_sensors:
                raise ConfigurationError(
                    f"Variant {self.variant.value} cannot use joint accelerations or joint "
                    f"torques as sensors"
                )


@dataclass(frozen=True)
class GraphSensor:
    """Measurement block of the graph"""
    type: GraphSensorType
    id: str
    offset: int
    size: int

    @property
    def range(self) -> slice:
        return slice(self.offset, self.offset + self.size)


class EstimationGraph:
    """
    Sparse estimation graph built on a HumanModel

    The sensor ordering is fixed at construction:
    net external wrenches (one per link), joint accelerations, joint torques,
    RCM, then physical sensors in model order.
    """

    def __init__(
        self,
        human_model,
        options: EstimationGraphOptions,
        sensors: Optional[List[Sensor]] = None
    ):
        options.check_consistency()
        if options.base_link is not None and options.base_link != human_model.floating_base:
            raise ConfigurationError(
                f"Base link {options.base_link} differs from the model floating base "
                f"{human_model.floating_base}"
            )

        self.model = human_model
        self.options = options
        self.variant = options.variant
        self.nv = human_model.nv
        self.n_joints = human_model.nr_of_dofs
        self.links = human_model.link_names
        self.joints = human_model.joint_names

        # Dynamic variables layout
        offset = 0
        if self.variant == GraphVariant.FLOATING_BASE:
            self.acceleration_range = slice(0, self.nv)
            self.torque_range = slice(self.nv, self.nv + self.n_joints)
            offset = self.nv + self.n_joints
        else:
            self.acceleration_range = None
            self.torque_range = None
        self.link_wrench_ranges: Dict[str, slice] = {}
        for link in self.links:
            self.link_wrench_ranges[link] = slice(offset, offset + 6)
            offset += 6
        self.n_dynamic_variables = offset

        self.n_dynamic_equations = self.nv if self.variant == GraphVariant.FLOATING_BASE else 0

        self.sensors = self._build_sensor_ordering(sensors or [])
        self._physical_sensors = {s.name: s for s in (sensors or [])}
        self.n_measurements = sum(s.size for s in self.sensors)
        self._sensor_index = {(s.type, s.id): s for s in self.sensors}

        self.D = sparse.csc_matrix((self.n_dynamic_equations, self.n_dynamic_variables))
        self.b_D = np.zeros(self.n_dynamic_equations)
        self.Y = sparse.csc_matrix((self.n_measurements, self.n_dynamic_variables))
        self.b_Y = np.zeros(self.n_measurements)

    def _build_sensor_ordering(self, sensors: List[Sensor]) -> List[GraphSensor]:
        ordering = []
        offset = 0

        def add(sensor_type: GraphSensorType, sensor_id: str, size: int):
            nonlocal offset
            ordering.append(GraphSensor(sensor_type, sensor_id, offset, size))
            offset += size

        if self.options.include_net_ext_wrenches_as_sensors:
            for link in self.links:
                add(GraphSensorType.NET_EXT_WRENCH_SENSOR, link, 6)
        if self.options.include_joint_accelerations_as_sensors:
            for joint in self.joints:
                add(GraphSensorType.JOINT_ACCELERATION_SENSOR, joint, 1)
        if self.options.include_joint_torques_as_sensors:
            for joint in self.joints:
                add(GraphSensorType.JOINT_TORQUE_SENSOR, joint, 1)
        if self.options.include_rcm_sensor:
            add(GraphSensorType.RCM_SENSOR, GraphSensorType.RCM_SENSOR.value, 6)

        if sensors and self.variant != GraphVariant.FLOATING_BASE:
            raise ConfigurationError(
                f"Variant {self.variant.value} does not support physical sensors"
            )
        for sensor in sensors:
            if not self.model.has_frame(sensor.frame):
                raise ConfigurationError(f"Sensor {sensor.name} is attached to unknown frame {sensor.frame}")
            add(_PHYSICAL_SENSOR_TYPES[sensor.type], sensor.name, 3)

        return ordering

    def get_sensor(self, sensor_type: GraphSensorType, sensor_id: str) -> GraphSensor:
        sensor = self._sensor_index.get((sensor_type, sensor_id))
        if sensor is None:
            raise MeasurementLookupError(f"Sensor {sensor_id} of type {sensor_type.value} not found")
        return sensor

    def has_sensor(self, sensor_type: GraphSensorType, sensor_id: str) -> bool:
        return (sensor_type, sensor_id) in self._sensor_index

    # ------------------------------------------------------------------
    # Kinematics update
    # ------------------------------------------------------------------

    def update(self):
        """Recompute D, b_D, Y and b_Y from the current model state"""
        model = self.model
        nd = self.n_dynamic_variables

        link_jacobians = {}
        if self.variant == GraphVariant.FLOATING_BASE:
            link_jacobians = {link: model.get_link_jacobian_local(link) for link in self.links}

        # Dynamics: M ddq + h - S' tau - sum_l J_l' f_l = 0
        if self.variant == GraphVariant.FLOATING_BASE:
            D = sparse.lil_matrix((self.nv, nd))
            D[:, self.acceleration_range] = model.get_mass_matrix()
            D[6:, self.torque_range] = -np.eye(self.n_joints)
            for link, cols in self.link_wrench_ranges.items():
                D[:, cols] = -link_jacobians[link].T
            self.D = D.tocsc()
            self.b_D = model.get_nonlinear_effects()

        # Measurements
        Y = sparse.lil_matrix((self.n_measurements, nd))
        b_Y = np.zeros(self.n_measurements)
        world_H_base = model.get_world_transform(model.floating_base)
        gravity = model.get_gravity()

        for sensor in self.sensors:
            rows = sensor.range
            if sensor.type == GraphSensorType.NET_EXT_WRENCH_SENSOR:
                Y[rows, self.link_wrench_ranges[sensor.id]] = np.eye(6)

            elif sensor.type == GraphSensorType.JOINT_ACCELERATION_SENSOR:
                Y[sensor.offset, self.acceleration_range.start + 6 + self.joints.index(sensor.id)] = 1.0

            elif sensor.type == GraphSensorType.JOINT_TORQUE_SENSOR:
                Y[sensor.offset, self.torque_range.start + self.joints.index(sensor.id)] = 1.0

            elif sensor.type == GraphSensorType.RCM_SENSOR:
                # Sum of the link wrenches moved to the base frame
                base_H_world = np.linalg.inv(world_H_base)
                for link, cols in self.link_wrench_ranges.items():
                    base_H_link = base_H_world @ model.get_world_transform(link)
                    Y[rows, cols] = wrench_transform(base_H_link[:3, :3], base_H_link[:3, 3])

            else:
                physical = self._physical_sensors[sensor.id]
                J = model.get_link_jacobian_local(physical.frame)
                drift = model.get_frame_drift_acceleration(physical.frame)
                if sensor.type == GraphSensorType.ACCELEROMETER_SENSOR:
                    # Proper acceleration: frame acceleration minus gravity
                    world_R_frame = model.get_world_transform(physical.frame)[:3, :3]
                    Y[rows, self.acceleration_range] = J[:3, :]
                    b_Y[rows] = drift[:3] - world_R_frame.T @ gravity
                else:
                    Y[rows, self.acceleration_range] = J[3:6, :]
                    b_Y[rows] = drift[3:6]

        self.Y = Y.tocsc()
        self.b_Y = b_Y

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_link_wrenches(self, d: np.ndarray) -> Dict[str, np.ndarray]:
        """Net external wrench of every link, link frame"""
        return {link: d[cols].copy() for link, cols in self.link_wrench_ranges.items()}

    def extract_joint_torques(self, d: np.ndarray) -> np.ndarray:
        if self.torque_range is None:
            raise ConfigurationError(f"Variant {self.variant.value} has no joint torque variables")
        return d[self.torque_range].copy()

    def extract_joint_accelerations(self, d: np.ndarray) -> np.ndarray:
        if self.acceleration_range is None:
            raise ConfigurationError(f"Variant {self.variant.value} has no acceleration variables")
        return d[self.acceleration_range][6:].copy()
