"""Sample, estimate and step-result types exchanged with the estimator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np


@dataclass
class ImuSample:
    """Single IMU measurement."""
    t: float  # timestamp (seconds)
    linear_acceleration: np.ndarray  # [ax, ay, az]
    angular_velocity: np.ndarray  # [wx, wy, wz] rad/s
    orientation: np.ndarray  # quaternion [x, y, z, w]

    def __post_init__(self):
        self.t = float(self.t)
        self.linear_acceleration = np.asarray(self.linear_acceleration, dtype=float).reshape(3)
        self.angular_velocity = np.asarray(self.angular_velocity, dtype=float).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)


@dataclass
class PoseSample:
    """Motion-capture pose (NWU, up positive)."""
    t: float  # timestamp (seconds)
    translation: np.ndarray  # [x, y, z]
    orientation: np.ndarray  # quaternion [x, y, z, w]

    def __post_init__(self):
        self.t = float(self.t)
        self.translation = np.asarray(self.translation, dtype=float).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)


# Step outcomes that indicate a fault the caller should know about.
ERROR_REASONS = frozenset({"bad_dt", "singular_innovation", "non_finite"})


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of one estimator operation.

    ``applied`` is False both for deliberate gating no-ops
    (``not_flying``, ``already_flying``) and for rejected steps; only the
    latter set ``error``.
    """

    operation: str
    applied: bool
    reason: str = "ok"
    timestamp: float = float("nan")
    detail: str = ""

    @property
    def error(self) -> bool:
        return self.reason in ERROR_REASONS

    def __bool__(self):
        return self.applied


@dataclass
class Estimate:
    """Snapshot published to downstream consumers."""

    stamp: float
    frame_id: str
    position: np.ndarray  # NED [m]
    orientation: np.ndarray  # quaternion [x, y, z, w]
    euler: np.ndarray  # [phi, theta, psi]
    velocity: np.ndarray  # body [u, v, w]
    angular_velocity: np.ndarray  # filtered [p, q, r]
    pose_covariance_diag: np.ndarray  # 6
    twist_covariance_diag: np.ndarray  # 6
    flying: bool = False

    @property
    def pose_covariance(self) -> List[float]:
        """Row-major 6x6 covariance with only the diagonal filled."""
        return np.diag(self.pose_covariance_diag).ravel().tolist()

    @property
    def twist_covariance(self) -> List[float]:
        return np.diag(self.twist_covariance_diag).ravel().tolist()

    def as_row(self) -> Dict[str, float]:
        row = {"t": float(self.stamp), "flying": int(self.flying)}
        for name, val in zip(("pn", "pe", "pd"), self.position):
            row[name] = float(val)
        for name, val in zip(("qx", "qy", "qz", "qw"), self.orientation):
            row[name] = float(val)
        for name, val in zip(("phi", "theta", "psi"), self.euler):
            row[name] = float(val)
        for name, val in zip(("u", "v", "w"), self.velocity):
            row[name] = float(val)
        for name, val in zip(("p", "q", "r"), self.angular_velocity):
            row[name] = float(val)
        for name, val in zip(("P_pn", "P_pe", "P_pd", "P_phi", "P_theta", "P_psi"),
                             self.pose_covariance_diag):
            row[name] = float(val)
        for name, val in zip(("P_u", "P_v", "P_w", "P_p", "P_q", "P_r"),
                             self.twist_covariance_diag):
            row[name] = float(val)
        return row


ESTIMATE_COLUMNS = [
    "t", "flying", "pn", "pe", "pd", "qx", "qy", "qz", "qw",
    "phi", "theta", "psi", "u", "v", "w", "p", "q", "r",
    "P_pn", "P_pe", "P_pd", "P_phi", "P_theta", "P_psi",
    "P_u", "P_v", "P_w", "P_p", "P_q", "P_r",
]
