#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EKF Configuration Module
========================

Handles YAML configuration loading and defines global constants for the
motion-capture / IMU Extended Kalman Filter.

Configuration Structure:
------------------------
The YAML config file contains an ``ekf`` section with:
- inner_loop_rate: predict timer frequency [Hz]
- publish_rate: estimate output frequency [Hz]
- alpha: low-pass coefficient for gyro / accel channels (0 = no smoothing)
- x0: initial state (9 values)
- P0, Q0: initial covariance and process noise (9x9)
- R_IMU: attitude measurement noise (3x3)
- R_Mocap: pose measurement noise (6x6)

Matrices are accepted either as nested lists or as flat row-major lists of
exactly rows*cols values (param-server convention).

State Layout:
-------------
    x = [PN, PE, PD, U, V, W, PHI, THETA, PSI]
    - PN, PE, PD: inertial position, NED [m]
    - U, V, W: body-frame velocity [m/s]
    - PHI, THETA, PSI: roll, pitch, yaw (3-2-1 Euler) [rad]
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import numpy as np
import yaml


# =============================================================================
# State Layout
# =============================================================================

PN, PE, PD = 0, 1, 2
U, V, W = 3, 4, 5
PHI, THETA, PSI = 6, 7, 8
NUM_STATES = 9

NUM_IMU_MEAS = 3
NUM_MOCAP_MEAS = 6

STATE_NAMES = ("PN", "PE", "PD", "U", "V", "W", "PHI", "THETA", "PSI")


# =============================================================================
# Default Configuration Variables
# =============================================================================

INNER_LOOP_RATE = 400.0
PUBLISH_RATE = 400.0
ALPHA = 0.2

GRAVITY = 9.80665
FLIGHT_ACCEL_THRESHOLD = 11.0  # |a_z| in the IMU's native units
GIMBAL_EPSILON = 1e-6  # min |cos(theta)| before clamping

SINGULAR_TOLERANCE = 1e-12
MAX_INNOVATION_CONDITION = 1e12

TWIST_RATE_VARIANCE = 0.05  # body rates are not estimated
FRAME_ID = "body_link"

REQUIRED_MATRICES = {
    "x0": (NUM_STATES,),
    "P0": (NUM_STATES, NUM_STATES),
    "Q0": (NUM_STATES, NUM_STATES),
    "R_IMU": (NUM_IMU_MEAS, NUM_IMU_MEAS),
    "R_Mocap": (NUM_MOCAP_MEAS, NUM_MOCAP_MEAS),
}


class ConfigError(ValueError):
    """Raised when the estimator configuration is missing or malformed."""


def _as_matrix(name: str, value: Any, shape: tuple) -> np.ndarray:
    """Convert a YAML value into an array of exactly ``shape``."""
    if value is None:
        raise ConfigError(f"Missing required parameter: {name}")
    try:
        arr = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Parameter {name} is not numeric: {e}")

    expected_size = int(np.prod(shape))
    if arr.shape != shape:
        # Flat row-major list, as stored on a parameter server
        if arr.ndim == 1 and arr.size == expected_size:
            arr = arr.reshape(shape)
        elif len(shape) == 1 and arr.size == expected_size:
            arr = arr.reshape(shape)
        else:
            raise ConfigError(
                f"Parameter {name} must have shape {shape}, got {arr.shape}"
            )

    if not np.all(np.isfinite(arr)):
        raise ConfigError(f"Parameter {name} contains NaN/inf")
    return arr


@dataclass
class EKFConfig:
    """
    Validated estimator configuration.

    Built once before the estimator exists; all dimension checks happen in
    ``__post_init__`` so a bad shape can never reach the filter.
    """

    x0: np.ndarray
    P0: np.ndarray
    Q0: np.ndarray
    R_IMU: np.ndarray
    R_Mocap: np.ndarray

    inner_loop_rate: float = INNER_LOOP_RATE
    publish_rate: float = PUBLISH_RATE
    alpha: float = ALPHA

    gravity: float = GRAVITY
    flight_accel_threshold: float = FLIGHT_ACCEL_THRESHOLD
    gimbal_epsilon: float = GIMBAL_EPSILON
    singular_tolerance: float = SINGULAR_TOLERANCE
    max_innovation_condition: float = MAX_INNOVATION_CONDITION
    symmetrize_covariance: bool = False

    twist_rate_variance: float = TWIST_RATE_VARIANCE
    frame_id: str = FRAME_ID
    verbose: bool = False

    source_path: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        for name, shape in REQUIRED_MATRICES.items():
            setattr(self, name, _as_matrix(name, getattr(self, name), shape))

        for name in ("inner_loop_rate", "publish_rate"):
            rate = float(getattr(self, name))
            if not np.isfinite(rate) or rate <= 0.0:
                raise ConfigError(f"{name} must be positive, got {rate}")
            setattr(self, name, rate)

        self.alpha = float(self.alpha)
        if not 0.0 <= self.alpha <= 1.0:
            raise ConfigError(f"alpha must be in [0, 1], got {self.alpha}")

        for name in ("gimbal_epsilon", "singular_tolerance",
                     "max_innovation_condition", "flight_accel_threshold"):
            value = float(getattr(self, name))
            if not np.isfinite(value) or value <= 0.0:
                raise ConfigError(f"{name} must be positive, got {value}")
            setattr(self, name, value)

        self.gravity = float(self.gravity)
        self.twist_rate_variance = float(self.twist_rate_variance)
        self.symmetrize_covariance = bool(self.symmetrize_covariance)
        self.verbose = bool(self.verbose)

    @property
    def predict_period(self) -> float:
        return 1.0 / self.inner_loop_rate

    @property
    def publish_period(self) -> float:
        return 1.0 / self.publish_rate

    @classmethod
    def from_dict(cls, params: Mapping[str, Any],
                  source_path: Optional[str] = None) -> "EKFConfig":
        """
        Build a config from a mapping (the ``ekf`` section of the YAML file).

        Raises:
            ConfigError: If a required matrix is missing or has a wrong shape
        """
        if params is None:
            raise ConfigError("Empty EKF configuration")

        missing = [k for k in REQUIRED_MATRICES if k not in params]
        if missing:
            raise ConfigError(f"Missing required parameter(s): {', '.join(missing)}")

        known = set(cls.__dataclass_fields__) - {"source_path"}
        unknown = sorted(set(params) - known)
        if unknown:
            print(f"[CONFIG] WARNING: ignoring unknown parameter(s): {', '.join(unknown)}")

        kwargs = {k: v for k, v in params.items() if k in known}
        return cls(source_path=source_path, **kwargs)

    def summary(self) -> Dict[str, Any]:
        """Scalar settings for printing at startup."""
        return {
            "inner_loop_rate": self.inner_loop_rate,
            "publish_rate": self.publish_rate,
            "alpha": self.alpha,
            "gravity": self.gravity,
            "flight_accel_threshold": self.flight_accel_threshold,
            "gimbal_epsilon": self.gimbal_epsilon,
            "symmetrize_covariance": self.symmetrize_covariance,
        }


def load_config(config_path: str) -> EKFConfig:
    """
    Load YAML configuration file into a validated EKFConfig.

    The file may either contain an ``ekf:`` section or the parameters at the
    top level.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        EKFConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
        ConfigError: If a parameter is missing or has the wrong shape

    Example:
        >>> config = load_config("configs/default.yaml")
        >>> print(f"Predict rate: {config.inner_loop_rate:.0f} Hz")
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} does not contain a mapping")

    params = config.get('ekf', config)
    return EKFConfig.from_dict(params, source_path=config_path)
