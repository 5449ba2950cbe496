"""
Tests for the stance/swing weight provider.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest

from biomechanical_analysis.errors import ConfigurationError
from biomechanical_analysis.ik.weight_provider import (
    MultiStateWeightProvider,
    WeightProviderConfig,
    WeightRegime,
)


def make_provider(hysteresis=10.0, initial="swing"):
    group = {
        "vertical_force_threshold": 50.0,
        "vertical_force_hysteresis": hysteresis,
        "weight_swing": [1.0, 1.0],
        "weight_stance": [5.0, 5.0],
        "initial_state": initial,
    }
    return MultiStateWeightProvider(WeightProviderConfig.from_group(group, 2, "GRAVITY_TASK"))


class TestWeightProvider:
    """Test regime transitions."""

    def test_starts_in_initial_state(self):
        assert make_provider().state == WeightRegime.SWING
        assert make_provider(initial="stance").state == WeightRegime.STANCE

    def test_enters_stance_at_threshold(self):
        provider = make_provider()
        assert provider.advance(49.0) == WeightRegime.SWING
        assert provider.advance(50.0) == WeightRegime.STANCE
        assert np.allclose(provider.get_output(), [5.0, 5.0])

    def test_hysteresis_keeps_stance(self):
        provider = make_provider()
        provider.advance(80.0)
        assert provider.advance(45.0) == WeightRegime.STANCE
        assert provider.advance(39.0) == WeightRegime.SWING
        assert np.allclose(provider.get_output(), [1.0, 1.0])

    def test_one_step_per_advance(self):
        provider = make_provider()
        assert provider.advance(100.0) == WeightRegime.STANCE
        provider.get_output()
        provider.get_output()
        assert provider.state == WeightRegime.STANCE
        assert provider.advance(0.0) == WeightRegime.SWING
        assert np.allclose(provider.get_output(), [1.0, 1.0])

    def test_reset(self):
        provider = make_provider()
        provider.advance(100.0)
        provider.reset()
        assert provider.state == WeightRegime.SWING

    def test_missing_threshold_fails(self):
        with pytest.raises(ConfigurationError) as info:
            WeightProviderConfig.from_group({"weight_swing": 1.0, "weight_stance": 1.0}, 2, "G")
        assert info.value.parameter == "vertical_force_threshold"

    def test_negative_hysteresis_fails(self):
        with pytest.raises(ConfigurationError):
            make_provider(hysteresis=-1.0)

    def test_unknown_initial_state_fails(self):
        with pytest.raises(ConfigurationError):
            make_provider(initial="flying")
