#!/usr/bin/env python3
"""
Physical sensor selection for the dynamics estimation graph
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any

from ..errors import ConfigurationError
from ..utils.human_model import Sensor, SensorType

logger = logging.getLogger(__name__)

# Removes every sensor of a type
WILDCARD = "*"


@dataclass
class SensorRemovalPolicy:
    """Per sensor type, either the wildcard or the name of one sensor to drop"""
    rules: Dict[SensorType, str] = field(default_factory=dict)

    @classmethod
    def from_group(cls, group: Dict[str, Any]) -> 'SensorRemovalPolicy':
        """
        Read a SENSOR_REMOVAL group

        Keys are sensor type names (e.g. ACCELEROMETER_SENSOR), values are
        "*" or a sensor name.
        """
        rules = {}
        for key, value in group.items():
            try:
                sensor_type = SensorType(key)
            except ValueError:
                raise ConfigurationError(
                    f"[SensorRemovalPolicy] Unknown sensor type {key}",
                    group="SENSOR_REMOVAL",
                    parameter=key
                )
            if not isinstance(value, str) or not value:
                raise ConfigurationError(
                    f"[SensorRemovalPolicy] Parameter {key} must be '*' or a sensor name",
                    group="SENSOR_REMOVAL",
                    parameter=key
                )
            rules[sensor_type] = value
        return cls(rules)

    def removes(self, sensor: Sensor) -> bool:
        rule = self.rules.get(sensor.type)
        return rule is not None and (rule == WILDCARD or rule == sensor.name)


def remove_sensors(sensors: List[Sensor], policy: SensorRemovalPolicy) -> List[Sensor]:
    """
    Filter a sensor list with a removal policy

    The input list is not modified. A rule naming a sensor that does not
    exist is logged and ignored.
    """
    for sensor_type, rule in policy.rules.items():
        if rule == WILDCARD:
            continue
        if not any(s.type == sensor_type and s.name == rule for s in sensors):
            logger.warning(f"[remove_sensors] Error removing sensor {rule}: "
                           f"no {sensor_type.value} with this name")

    return [sensor for sensor in sensors if not policy.removes(sensor)]
