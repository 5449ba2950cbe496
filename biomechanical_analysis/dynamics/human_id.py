#!/usr/bin/env python3
"""
Human Inverse Dynamics
Two-stage MAP estimation of external wrenches and joint torques

Stage 1 estimates the net external wrench of every link of a reduced model
from the wrench sources and the RCM virtual sensor. Stage 2 estimates joint
torques on the full model, using the stage 1 wrenches as measurements.
Stage 2 only runs after stage 1 succeeded in the same cycle.
"""

import logging
import numpy as np
from typing import Dict, List, Optional, Any

from .estimation_graph import EstimationGraphOptions, GraphVariant, GraphSensorType
from .pipeline import EstimationPipeline, MAPEstimationParams
from .sensors import SensorRemovalPolicy, remove_sensors
from .wrench_source import WrenchSourceModel
from ..config import get_group, get_float
from ..errors import ConfigurationError, EstimationError, ModelError
from ..utils.human_model import HumanModel

logger = logging.getLogger(__name__)


class HumanID:
    """
    Human inverse dynamics estimator

    Public operations return a success flag and log the cause of a failure.
    """

    def __init__(self):
        self.initialized = False
        self.human_model: Optional[HumanModel] = None
        self.wrench_model: Optional[HumanModel] = None
        self.wrench_sources = WrenchSourceModel()
        self.human_mass = 0.0

        self.ext_wrenches_pipeline: Optional[EstimationPipeline] = None
        self.joint_torques_pipeline: Optional[EstimationPipeline] = None

        # Full model joint index of every reduced model joint, None if unmatched
        self._joint_map: List[Optional[int]] = []
        self._wrench_joint_positions = np.zeros(0)
        self._wrench_joint_velocities = np.zeros(0)

        self._cycle = 0
        self._link_ext_wrenches: Dict[str, np.ndarray] = {}
        self._estimated_ext_wrenches: List[np.ndarray] = []
        self._joint_torques = np.zeros(0)

    def initialize(self, config: Dict[str, Any], human_model: HumanModel,
                   wrench_model: Optional[HumanModel] = None) -> bool:
        """
        Build both estimation stages

        Args:
            config: Root configuration with humanMass, JOINT_TORQUES and
                EXTERNAL_WRENCHES groups
            human_model: Shared full model
            wrench_model: Reduced model for the external wrench stage, used
                when EXTERNAL_WRENCHES has no modelPath
        """
        try:
            self._initialize(config, human_model, wrench_model)
        except EstimationError as e:
            logger.error(f"[HumanID.initialize] {e}")
            self.initialized = False
            return False

        self.initialized = True
        logger.info(f"[HumanID.initialize] {len(self.wrench_sources.sources)} wrench sources, "
                    f"{self.joint_torques_pipeline.graph.n_measurements} joint torque measurements")
        return True

    def _initialize(self, config: Dict[str, Any], human_model: HumanModel,
                    wrench_model: Optional[HumanModel]):
        context = "[HumanID.initialize]"
        if human_model is None:
            raise ModelError("Invalid model: a shared human model is required")

        human_mass = get_float(config, "humanMass", context)

        # Joint torques stage on the full model
        jt_group = get_group(config, "JOINT_TORQUES", context)
        policy = SensorRemovalPolicy.from_group(get_group(jt_group, "SENSOR_REMOVAL", context))
        sensors = remove_sensors(human_model.sensors, policy)
        jt_options = EstimationGraphOptions(
            base_link=human_model.floating_base,
            variant=GraphVariant.FLOATING_BASE,
            include_net_ext_wrenches_as_sensors=True,
            include_net_ext_wrenches_as_dynamic_variables=True,
            include_joint_accelerations_as_sensors=True,
            include_joint_torques_as_sensors=False,
            include_fixed_base_external_wrench=False
        )
        joint_torques_pipeline = EstimationPipeline(
            "JOINT_TORQUES", human_model, jt_options,
            MAPEstimationParams.from_group(jt_group, "JOINT_TORQUES"),
            sensors
        )

        # External wrenches stage on the reduced model
        ew_group = get_group(config, "EXTERNAL_WRENCHES", context)
        wrench_sources = WrenchSourceModel()
        wrench_sources.initialize(ew_group, human_mass)

        if wrench_model is None:
            if "modelPath" not in ew_group:
                raise ConfigurationError(
                    f"{context} Parameter modelPath of the EXTERNAL_WRENCHES group is missing "
                    f"and no wrench model was given",
                    group="EXTERNAL_WRENCHES",
                    parameter="modelPath"
                )
            wrench_model = HumanModel.from_urdf(str(ew_group["modelPath"]),
                                                base_link=human_model.floating_base)
        if wrench_model.floating_base != human_model.floating_base:
            raise ModelError(
                f"Floating base {wrench_model.floating_base} of the wrench model differs from "
                f"{human_model.floating_base}"
            )

        for frame in wrench_sources.output_frames:
            if frame not in wrench_model.link_names:
                raise ConfigurationError(
                    f"{context} Output frame {frame} is not a link of the wrench model",
                    group="EXTERNAL_WRENCHES",
                    parameter="outputFrame"
                )

        ew_options = EstimationGraphOptions(
            base_link=wrench_model.floating_base,
            variant=GraphVariant.FLOATING_BASE_NON_COLLOCATED_EXT_WRENCHES,
            include_net_ext_wrenches_as_sensors=True,
            include_net_ext_wrenches_as_dynamic_variables=True,
            include_joint_accelerations_as_sensors=False,
            include_joint_torques_as_sensors=False,
            include_fixed_base_external_wrench=False,
            include_rcm_sensor=True
        )
        ext_wrenches_pipeline = EstimationPipeline(
            "EXTERNAL_WRENCHES", wrench_model, ew_options,
            MAPEstimationParams.from_group(ew_group, "EXTERNAL_WRENCHES", require_rcm=True)
        )

        # Joint correspondence by name
        full_joints = human_model.joint_names
        joint_map = [full_joints.index(j) if j in full_joints else None
                     for j in wrench_model.joint_names]
        unmatched = [j for j, idx in zip(wrench_model.joint_names, joint_map) if idx is None]
        if unmatched:
            logger.warning(f"{context} Joints {unmatched} of the wrench model are not in the "
                           f"full model, they keep their previous value")

        self.human_model = human_model
        self.wrench_model = wrench_model
        self.wrench_sources = wrench_sources
        self.human_mass = human_mass
        self.joint_torques_pipeline = joint_torques_pipeline
        self.ext_wrenches_pipeline = ext_wrenches_pipeline
        self._joint_map = joint_map
        wrench_state = wrench_model.get_robot_state()
        self._wrench_joint_positions = wrench_state.joint_positions
        self._wrench_joint_velocities = wrench_state.joint_velocities

        self._cycle = 0
        self._link_ext_wrenches = {}
        self._estimated_ext_wrenches = [np.zeros(6) for _ in wrench_sources.sources]
        self._joint_torques = np.zeros(human_model.nr_of_dofs)

    def _check_initialized(self, prefix: str) -> bool:
        if not self.initialized:
            logger.error(f"{prefix} The estimator is not initialized")
            return False
        return True

    def _sync_wrench_model(self):
        """Copy the full model state into the reduced model, joints matched by name"""
        state = self.human_model.get_robot_state()
        for i, j in enumerate(self._joint_map):
            if j is not None:
                self._wrench_joint_positions[i] = state.joint_positions[j]
                self._wrench_joint_velocities[i] = state.joint_velocities[j]
        self.wrench_model.set_robot_state(
            state.base_pose,
            self._wrench_joint_positions,
            state.base_velocity,
            self._wrench_joint_velocities,
            state.gravity
        )

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def update_ext_wrenches_measurements(self, wrenches: Dict[str, np.ndarray]) -> bool:
        """
        Update the external wrench stage measurements

        Args:
            wrenches: Measured wrench [f, tau] of every fixed source, keyed by
                output frame, expressed in the sensor frame
        """
        prefix = "[HumanID.update_ext_wrenches_measurements]"
        if not self._check_initialized(prefix):
            return False
        try:
            self._sync_wrench_model()
            self.wrench_sources.update_measurements(
                wrenches, self.ext_wrenches_pipeline, self.wrench_model, self.human_model
            )
        except EstimationError as e:
            logger.error(f"{prefix} {e}")
            return False
        return True

    def update_joint_accelerations(self, joint_accelerations: np.ndarray) -> bool:
        """Set the joint acceleration measurements, full model joint order"""
        prefix = "[HumanID.update_joint_accelerations]"
        if not self._check_initialized(prefix):
            return False
        joint_accelerations = np.asarray(joint_accelerations, dtype=float).reshape(-1)
        if joint_accelerations.size != self.human_model.nr_of_dofs:
            logger.error(f"{prefix} Expected {self.human_model.nr_of_dofs} joint accelerations, "
                         f"got {joint_accelerations.size}")
            return False
        if not np.all(np.isfinite(joint_accelerations)):
            logger.error(f"{prefix} Non-finite joint accelerations")
            return False

        for joint, value in zip(self.human_model.joint_names, joint_accelerations):
            self.joint_torques_pipeline.set_measurement(
                GraphSensorType.JOINT_ACCELERATION_SENSOR, joint, value
            )
        return True

    def update_sensor_measurements(self, measurements: Dict[str, np.ndarray]) -> bool:
        """Set the measurements of physical sensors, keyed by sensor name"""
        prefix = "[HumanID.update_sensor_measurements]"
        if not self._check_initialized(prefix):
            return False

        graph = self.joint_torques_pipeline.graph
        resolved = []
        for name, values in measurements.items():
            sensor = next((s for s in graph.sensors if s.id == name and s.type in (
                GraphSensorType.ACCELEROMETER_SENSOR,
                GraphSensorType.THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR)), None)
            if sensor is None:
                logger.error(f"{prefix} Sensor {name} not found")
                return False
            resolved.append((sensor.type, name, values))

        previous = self.joint_torques_pipeline.measurements.copy()
        try:
            for sensor_type, name, values in resolved:
                self.joint_torques_pipeline.set_measurement(sensor_type, name, values)
        except EstimationError as e:
            self.joint_torques_pipeline.measurements = previous
            logger.error(f"{prefix} {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def solve_external_wrenches(self) -> bool:
        """Stage 1, starts a new cycle"""
        prefix = "[HumanID.solve_external_wrenches]"
        if not self._check_initialized(prefix):
            return False

        self._cycle += 1
        try:
            self._sync_wrench_model()
            estimate = self.ext_wrenches_pipeline.solve(self._cycle)
        except EstimationError as e:
            logger.error(f"{prefix} {e}")
            return False

        link_wrenches = self.ext_wrenches_pipeline.graph.extract_link_wrenches(estimate)
        self._link_ext_wrenches = link_wrenches
        self._estimated_ext_wrenches = [
            link_wrenches[frame].copy() for frame in self.wrench_sources.output_frames
        ]
        return True

    def solve_joint_torques(self) -> bool:
        """Stage 2, needs the stage 1 result of the current cycle"""
        prefix = "[HumanID.solve_joint_torques]"
        if not self._check_initialized(prefix):
            return False
        if not self.ext_wrenches_pipeline.solved_in(self._cycle):
            logger.error(f"{prefix} The external wrenches are not estimated in this cycle")
            return False

        pipeline = self.joint_torques_pipeline
        previous = pipeline.measurements.copy()
        pipeline.clear_measurements(GraphSensorType.NET_EXT_WRENCH_SENSOR)
        for link, wrench in self._link_ext_wrenches.items():
            if pipeline.graph.has_sensor(GraphSensorType.NET_EXT_WRENCH_SENSOR, link):
                pipeline.set_measurement(GraphSensorType.NET_EXT_WRENCH_SENSOR, link, wrench)

        try:
            estimate = pipeline.solve(self._cycle)
        except EstimationError as e:
            pipeline.measurements = previous
            logger.error(f"{prefix} {e}")
            return False

        self._joint_torques = pipeline.graph.extract_joint_torques(estimate)
        return True

    def solve(self) -> bool:
        """Run both stages for one cycle"""
        return self.solve_external_wrenches() and self.solve_joint_torques()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def get_joint_torques(self) -> np.ndarray:
        return self._joint_torques.copy()

    def get_estimated_ext_wrenches(self) -> List[np.ndarray]:
        """Estimated wrench of every source, configuration order, link frame"""
        return [w.copy() for w in self._estimated_ext_wrenches]

    def get_link_ext_wrenches(self) -> Dict[str, np.ndarray]:
        return {link: w.copy() for link, w in self._link_ext_wrenches.items()}

    @property
    def cycle(self) -> int:
        return self._cycle
