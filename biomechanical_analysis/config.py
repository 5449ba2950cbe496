"""
Configuration access helpers

Configuration is a nested mapping of named groups, usually loaded from a
YAML file. Lookups raise ConfigurationError naming the group and the
parameter so that initialization failures are easy to trace.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import yaml

from .errors import ConfigurationError

_MISSING = object()


def load_config(config_path: str) -> dict:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config if config is not None else {}


def get_group(config: Dict[str, Any], name: str, context: str = "") -> Dict[str, Any]:
    """
    Get a sub-group of the configuration

    Args:
        config: Parent group
        name: Name of the sub-group
        context: Prefix used in the error message

    Returns:
        The sub-group mapping
    """
    group = config.get(name) if isinstance(config, dict) else None
    if not isinstance(group, dict):
        raise ConfigurationError(
            f"{context} Group {name} is missing in the configuration".strip(),
            group=name
        )
    return group


def get_parameter(
    group: Dict[str, Any],
    key: str,
    context: str = "",
    default: Any = _MISSING,
    group_name: Optional[str] = None
) -> Any:
    """Get a scalar/string/list parameter, falling back to default if given"""
    if key in group:
        return group[key]
    if default is not _MISSING:
        return default
    where = f" of the {group_name} group" if group_name else ""
    raise ConfigurationError(
        f"{context} Parameter {key}{where} is missing".strip(),
        group=group_name,
        parameter=key
    )


def get_float(
    group: Dict[str, Any],
    key: str,
    context: str = "",
    default: Any = _MISSING,
    group_name: Optional[str] = None
) -> float:
    """Get a finite scalar parameter"""
    value = get_parameter(group, key, context, default, group_name)
    try:
        if isinstance(value, (bool, str)):
            raise TypeError
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{context} Parameter {key} must be a number, got {value!r}".strip(),
            group=group_name,
            parameter=key
        )
    if not np.isfinite(number):
        raise ConfigurationError(
            f"{context} Parameter {key} must be finite".strip(),
            group=group_name,
            parameter=key
        )
    return number


def get_int(
    group: Dict[str, Any],
    key: str,
    context: str = "",
    default: Any = _MISSING,
    group_name: Optional[str] = None
) -> int:
    """Get an integer parameter"""
    value = get_float(group, key, context, default, group_name)
    if not value.is_integer():
        raise ConfigurationError(
            f"{context} Parameter {key} must be an integer, got {value}".strip(),
            group=group_name,
            parameter=key
        )
    return int(value)


def get_vector(
    group: Dict[str, Any],
    key: str,
    size: Optional[int] = None,
    context: str = "",
    default: Any = _MISSING,
    group_name: Optional[str] = None
) -> np.ndarray:
    """
    Get a numeric vector parameter

    A scalar is broadcast to `size` when a size is requested.
    """
    value = get_parameter(group, key, context, default, group_name)
    try:
        vector = np.atleast_1d(np.asarray(value, dtype=float))
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{context} Parameter {key} is not numeric".strip(),
            group=group_name,
            parameter=key
        )

    if size is not None:
        if vector.size == 1 and size != 1:
            vector = np.full(size, vector.item())
        if vector.size != size:
            raise ConfigurationError(
                f"{context} Parameter {key} has {vector.size} elements, "
                f"expected {size}".strip(),
                group=group_name,
                parameter=key
            )
    return vector.reshape(-1)


def get_string_list(
    group: Dict[str, Any],
    key: str,
    context: str = "",
    default: Any = _MISSING,
    group_name: Optional[str] = None
) -> List[str]:
    """Get a list of names"""
    value = get_parameter(group, key, context, default, group_name)
    if isinstance(value, str):
        return [value]
    if not isinstance(value, Sequence) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(
            f"{context} Parameter {key} must be a list of names".strip(),
            group=group_name,
            parameter=key
        )
    return list(value)


def rotation_from_row_major(values: np.ndarray, key: str = "rotation_matrix") -> np.ndarray:
    """Build a 3x3 rotation matrix from 9 row-major values"""
    values = np.asarray(values, dtype=float).reshape(-1)
    if values.size != 9:
        raise ConfigurationError(
            f"Parameter {key} has {values.size} elements, expected 9",
            parameter=key
        )
    R = values.reshape(3, 3)
    if not np.allclose(R @ R.T, np.eye(3), atol=1e-6) or np.linalg.det(R) <= 0.0:
        raise ConfigurationError(
            f"Parameter {key} is not a rotation matrix",
            parameter=key
        )
    return R
