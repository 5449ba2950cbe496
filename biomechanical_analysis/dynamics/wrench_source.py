#!/usr/bin/env python3
"""
External wrench sources
Fixed sources carry measured wrenches (e.g. force plates, shoe sensors),
dummy sources synthesize a constant wrench for unmeasured contacts.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any

from .estimation_graph import GraphSensorType
from ..config import get_group, get_parameter, get_vector, get_string_list, rotation_from_row_major
from ..errors import ConfigurationError, MeasurementLookupError
from ..utils.math_utils import wrench_transform, rotate_wrench

logger = logging.getLogger(__name__)


class WrenchSourceType(Enum):
    """Wrench source kinds, values match the configuration `type` key"""
    FIXED = "fixed"
    DUMMY = "dummy"


@dataclass
class WrenchSource:
    """External wrench applied on a link"""
    name: str
    output_frame: str
    type: WrenchSourceType
    # Fixed: 6x6 transform of a sensor wrench into the link frame
    link_X_sensor: np.ndarray = field(default_factory=lambda: np.eye(6))
    # Dummy: constant wrench [f, tau] expressed in the world frame
    values: np.ndarray = field(default_factory=lambda: np.zeros(6))
    # Last wrench written to the estimator, link frame
    wrench: np.ndarray = field(default_factory=lambda: np.zeros(6))


class WrenchSourceModel:
    """
    Configured wrench sources and the measurements they produce

    Measurements are written into the NET_EXT_WRENCH sensors of the
    external wrench estimation graph, followed by the RCM virtual sensor.
    """

    def __init__(self):
        self.sources: List[WrenchSource] = []
        self.human_mass = 0.0

    def initialize(self, group: Dict[str, Any], human_mass: float):
        """
        Read the sources listed in `wrenchSources`

        Raises:
            ConfigurationError: on a missing group or field, or an unknown type
        """
        context = "[WrenchSourceModel.initialize]"
        if human_mass <= 0.0:
            raise ConfigurationError(f"{context} Parameter humanMass must be positive",
                                     parameter="humanMass")
        self.human_mass = float(human_mass)

        sources = []
        for name in get_string_list(group, "wrenchSources", context, group_name="EXTERNAL_WRENCHES"):
            source_group = get_group(group, name, context)
            output_frame = str(get_parameter(source_group, "outputFrame", context, group_name=name))
            type_name = get_parameter(source_group, "type", context, group_name=name)
            try:
                source_type = WrenchSourceType(type_name)
            except ValueError:
                raise ConfigurationError(
                    f"{context} Invalid type {type_name} of the {name} wrench source",
                    group=name,
                    parameter="type"
                )

            if any(s.output_frame == output_frame for s in sources):
                raise ConfigurationError(
                    f"{context} Frame {output_frame} of the {name} wrench source already has a source",
                    group=name,
                    parameter="outputFrame"
                )

            source = WrenchSource(name=name, output_frame=output_frame, type=source_type)
            if source_type == WrenchSourceType.FIXED:
                position = get_vector(source_group, "position", 3, context, group_name=name)
                try:
                    orientation = rotation_from_row_major(
                        get_vector(source_group, "orientation", 9, context, group_name=name),
                        key="orientation"
                    )
                except ConfigurationError as e:
                    raise ConfigurationError(f"{context} {e} in the {name} wrench source",
                                             group=name, parameter="orientation")
                source.link_X_sensor = wrench_transform(orientation, position)
            else:
                source.values = get_vector(source_group, "values", 6, context, group_name=name)
            sources.append(source)

        self.sources = sources

    @property
    def output_frames(self) -> List[str]:
        return [source.output_frame for source in self.sources]

    def compute_source_wrenches(
        self,
        wrenches: Dict[str, np.ndarray],
        wrench_model
    ) -> Dict[str, np.ndarray]:
        """
        Link-frame wrench of every source

        Args:
            wrenches: Measured wrenches keyed by output frame name
            wrench_model: Model whose current orientation rotates dummy values

        Raises:
            MeasurementLookupError: if a fixed source has no measurement
        """
        result = {}
        for source in self.sources:
            if source.type == WrenchSourceType.FIXED:
                if source.output_frame not in wrenches:
                    raise MeasurementLookupError(f"Wrench {source.output_frame} not found")
                measured = np.asarray(wrenches[source.output_frame], dtype=float).reshape(-1)
                if measured.size != 6 or not np.all(np.isfinite(measured)):
                    raise MeasurementLookupError(f"Wrench {source.output_frame} is not a finite 6D vector")
                result[source.output_frame] = source.link_X_sensor @ measured
            else:
                world_R_link = wrench_model.get_world_transform(source.output_frame)[:3, :3]
                result[source.output_frame] = rotate_wrench(world_R_link.T, source.values)
        return result

    def compute_rcm_wrench(self, human_model) -> np.ndarray:
        """
        Subject weight as a wrench in the base frame

        The force -m g is applied at the center of mass with world-aligned
        axes, then moved to the base frame.
        """
        gravity = human_model.get_gravity()
        weight = np.concatenate([-self.human_mass * gravity, np.zeros(3)])

        world_H_base = human_model.get_world_transform(human_model.floating_base)
        world_R_base = world_H_base[:3, :3]
        com = human_model.get_center_of_mass_position()

        base_R_centroidal = world_R_base.T
        base_p_centroidal = world_R_base.T @ (com - world_H_base[:3, 3])
        return wrench_transform(base_R_centroidal, base_p_centroidal) @ weight

    def update_measurements(
        self,
        wrenches: Dict[str, np.ndarray],
        pipeline,
        wrench_model,
        human_model
    ):
        """
        Fill the external wrench estimator measurements

        Nothing is written unless every source has a measurement.
        """
        source_wrenches = self.compute_source_wrenches(wrenches, wrench_model)
        rcm = self.compute_rcm_wrench(human_model)

        pipeline.clear_measurements()
        for source in self.sources:
            source.wrench = source_wrenches[source.output_frame]
            pipeline.set_measurement(GraphSensorType.NET_EXT_WRENCH_SENSOR, source.output_frame,
                                     source.wrench)
        pipeline.set_measurement(GraphSensorType.RCM_SENSOR, GraphSensorType.RCM_SENSOR.value, rcm)

    def get_source(self, name: str) -> Optional[WrenchSource]:
        return next((s for s in self.sources if s.name == name), None)
