#!/usr/bin/env python3
"""
Multi-state weight provider
Selects a task weight among discrete regimes from an observed vertical force
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any

from ..config import get_parameter, get_float, get_vector
from ..errors import ConfigurationError


class WeightRegime(Enum):
    """Discrete weight regimes"""
    SWING = "swing"     # Segment not loaded
    STANCE = "stance"   # Segment loaded by a vertical contact force


@dataclass
class WeightProviderConfig:
    """Weight provider configuration"""
    weight_swing: np.ndarray
    weight_stance: np.ndarray

    # Enter stance when force >= threshold
    vertical_force_threshold: float = 50.0  # N
    # Leave stance when force < threshold - hysteresis
    vertical_force_hysteresis: float = 0.0  # N

    initial_state: WeightRegime = WeightRegime.SWING

    @classmethod
    def from_group(cls, group: Dict[str, Any], size: int, task_name: str = "") -> 'WeightProviderConfig':
        """Read the weight provider parameters of a task group"""
        context = "[MultiStateWeightProvider]"
        threshold = get_float(group, "vertical_force_threshold", context, group_name=task_name)
        hysteresis = get_float(group, "vertical_force_hysteresis", context,
                               default=0.0, group_name=task_name)
        if hysteresis < 0.0:
            raise ConfigurationError(
                f"{context} Parameter vertical_force_hysteresis of the {task_name} task must be non-negative",
                group=task_name,
                parameter="vertical_force_hysteresis"
            )

        initial = get_parameter(group, "initial_state", context, default="swing", group_name=task_name)
        try:
            initial_state = WeightRegime(str(initial).lower())
        except ValueError:
            raise ConfigurationError(
                f"{context} Invalid initial_state {initial} of the {task_name} task",
                group=task_name,
                parameter="initial_state"
            )

        return cls(
            weight_swing=get_vector(group, "weight_swing", size, context, group_name=task_name),
            weight_stance=get_vector(group, "weight_stance", size, context, group_name=task_name),
            vertical_force_threshold=threshold,
            vertical_force_hysteresis=hysteresis,
            initial_state=initial_state
        )


class MultiStateWeightProvider:
    """
    Two-state weight selector with hysteresis

    SWING -> STANCE when force >= threshold
    STANCE -> SWING when force < threshold - hysteresis

    The machine steps exactly once per call to advance().
    """

    def __init__(self, config: WeightProviderConfig):
        self.config = config
        self.state = config.initial_state

    def advance(self, vertical_force: float) -> WeightRegime:
        """Step the state machine with the latest observed vertical force"""
        threshold = self.config.vertical_force_threshold

        if self.state == WeightRegime.SWING:
            new_state = WeightRegime.STANCE if vertical_force >= threshold else WeightRegime.SWING
        else:
            release = threshold - self.config.vertical_force_hysteresis
            new_state = WeightRegime.SWING if vertical_force < release else WeightRegime.STANCE

        self.state = new_state
        return self.state

    def get_output(self) -> np.ndarray:
        """Weight vector of the current regime"""
        if self.state == WeightRegime.STANCE:
            return self.config.weight_stance.copy()
        return self.config.weight_swing.copy()

    def reset(self):
        self.state = self.config.initial_state
