#!/usr/bin/env python3
"""
Estimation pipeline
One estimation graph, its MAP solver, the measurement vector and the last
estimate, with the priors resolved from configuration.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from .estimation_graph import EstimationGraph, EstimationGraphOptions, GraphSensorType
from .map_solver import SparseMAPSolver
from ..config import get_float, get_vector, get_string_list
from ..errors import ConfigurationError, MeasurementLookupError, SolveError
from ..utils.human_model import Sensor

logger = logging.getLogger(__name__)


@dataclass
class MAPEstimationParams:
    """Priors of a MAP estimation stage"""
    mu_dyn_variables: float
    cov_dyn_variables: float
    default_cov_measurements: float
    specific_covariances: Dict[str, np.ndarray] = field(default_factory=dict)
    cov_measurements_rcm: Optional[np.ndarray] = None
    cov_dyn_constraints: float = 1e-4

    @classmethod
    def from_group(cls, group: Dict[str, Any], group_name: str,
                   require_rcm: bool = False) -> 'MAPEstimationParams':
        """
        Read the priors of a JOINT_TORQUES or EXTERNAL_WRENCHES group

        Args:
            group: Configuration group
            group_name: Group name used in error messages
            require_rcm: cov_measurements_RCM_SENSOR is mandatory
        """
        context = "[MAPEstimationParams]"
        specific = {}
        for element in get_string_list(group, "specificElements", context, default=[],
                                       group_name=group_name):
            specific[element] = get_vector(group, element, context=context, group_name=group_name)

        rcm = None
        if require_rcm or "cov_measurements_RCM_SENSOR" in group:
            rcm = get_vector(group, "cov_measurements_RCM_SENSOR", 6, context, group_name=group_name)

        params = cls(
            mu_dyn_variables=get_float(group, "mu_dyn_variables", context, group_name=group_name),
            cov_dyn_variables=get_float(group, "cov_dyn_variables", context, group_name=group_name),
            default_cov_measurements=get_float(
                group, "default_cov_measurements", context, group_name=group_name),
            specific_covariances=specific,
            cov_measurements_rcm=rcm,
            cov_dyn_constraints=get_float(
                group, "cov_dyn_constraints", context, default=1e-4, group_name=group_name)
        )
        if min(params.cov_dyn_variables, params.default_cov_measurements,
               params.cov_dyn_constraints) <= 0.0:
            raise ConfigurationError(f"{context} Covariances of the {group_name} group must be positive",
                                     group=group_name)
        return params


class EstimationPipeline:
    """
    A single MAP estimation stage

    Every sensor of the graph gets its measurement covariance at
    construction, from a specific override or from the default.
    """

    def __init__(
        self,
        name: str,
        human_model,
        options: EstimationGraphOptions,
        params: MAPEstimationParams,
        sensors: Optional[List[Sensor]] = None
    ):
        self.name = name
        self.graph = EstimationGraph(human_model, options, sensors)
        self.solver = SparseMAPSolver(self.graph)
        self.params = params

        self.measurement_covariance = self._resolve_measurement_covariance()
        self.solver.set_measurements_prior_covariance(self.measurement_covariance)
        self.solver.set_dynamics_regularization_prior_expected_value(params.mu_dyn_variables)
        self.solver.set_dynamics_regularization_prior_covariance(params.cov_dyn_variables)
        self.solver.set_dynamics_constraints_prior_covariance(params.cov_dyn_constraints)

        self.measurements = np.zeros(self.graph.n_measurements)
        self.last_estimate = np.zeros(self.graph.n_dynamic_variables)
        self.last_cycle: Optional[int] = None

    def _resolve_measurement_covariance(self) -> np.ndarray:
        covariance = np.full(self.graph.n_measurements, np.nan)
        used = set()

        for sensor in self.graph.sensors:
            if sensor.type == GraphSensorType.RCM_SENSOR:
                if self.params.cov_measurements_rcm is None:
                    raise ConfigurationError(
                        f"[{self.name}] Parameter cov_measurements_RCM_SENSOR is missing",
                        parameter="cov_measurements_RCM_SENSOR"
                    )
                value = self.params.cov_measurements_rcm
            elif sensor.id in self.params.specific_covariances:
                value = self.params.specific_covariances[sensor.id]
                used.add(sensor.id)
            else:
                value = self.params.default_cov_measurements

            value = np.atleast_1d(np.asarray(value, dtype=float))
            if value.size == 1:
                value = np.full(sensor.size, value.item())
            if value.size != sensor.size:
                raise ConfigurationError(
                    f"[{self.name}] Covariance of sensor {sensor.id} has {value.size} elements, "
                    f"expected {sensor.size}",
                    parameter=sensor.id
                )
            covariance[sensor.range] = value

        for element in set(self.params.specific_covariances) - used:
            logger.warning(f"[{self.name}] Covariance override {element} matches no sensor")

        if not np.all(np.isfinite(covariance)):
            raise ConfigurationError(f"[{self.name}] Incomplete measurement covariance")
        return covariance

    def set_measurement(self, sensor_type: GraphSensorType, sensor_id: str, values: np.ndarray):
        """Write the measurement of one sensor"""
        sensor = self.graph.get_sensor(sensor_type, sensor_id)
        values = np.atleast_1d(np.asarray(values, dtype=float)).reshape(-1)
        if values.size != sensor.size or not np.all(np.isfinite(values)):
            raise MeasurementLookupError(
                f"Measurement of sensor {sensor_id} must be {sensor.size} finite values"
            )
        self.measurements[sensor.range] = values

    def get_measurement(self, sensor_type: GraphSensorType, sensor_id: str) -> np.ndarray:
        return self.measurements[self.graph.get_sensor(sensor_type, sensor_id).range].copy()

    def clear_measurements(self, sensor_type: Optional[GraphSensorType] = None):
        for sensor in self.graph.sensors:
            if sensor_type is None or sensor.type == sensor_type:
                self.measurements[sensor.range] = 0.0

    def solve(self, cycle: int) -> np.ndarray:
        """
        Run the MAP estimate for the current model state

        Raises:
            SolveError: if the estimate fails, the last estimate is kept
        """
        self.solver.update_estimate_information(self.measurements)
        if not self.solver.do_estimate():
            raise SolveError(f"[{self.name}] Error in the estimation of the dynamics")

        self.last_estimate = self.solver.get_last_estimate()
        self.last_cycle = cycle
        return self.last_estimate

    def solved_in(self, cycle: int) -> bool:
        return self.last_cycle == cycle
