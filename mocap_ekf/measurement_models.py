"""
Measurement models for the attitude (IMU) and pose (mocap) corrections.

Both models are linear in the state, so ``C`` is constant; ``hx`` is kept
as a function so the filter engine treats them like any other EKF model.
"""

import numpy as np

from .config import (
    NUM_STATES, NUM_IMU_MEAS, NUM_MOCAP_MEAS,
    PN, PE, PD, PHI, THETA, PSI,
)
from .math_utils import quat_to_rpy, pose_to_ned


class IMUMeasurementModel:
    """
    Direct attitude correction from the IMU's onboard orientation.

    y = [roll, pitch, yaw] (3-2-1 extraction of the IMU quaternion)
    C selects PHI, THETA, PSI.

    The accelerometer is not used here; filtered accelerations only feed
    the motion model.
    """

    dim_z = NUM_IMU_MEAS

    def __init__(self):
        C = np.zeros((NUM_IMU_MEAS, NUM_STATES))
        C[0, PHI] = 1.0
        C[1, THETA] = 1.0
        C[2, PSI] = 1.0
        self._C = C

    def measurement(self, sample) -> np.ndarray:
        roll, pitch, yaw = quat_to_rpy(sample.orientation)
        return np.array([roll, pitch, yaw], dtype=float)

    def jacobian(self, x: np.ndarray = None) -> np.ndarray:
        return self._C.copy()

    def hx(self, x: np.ndarray) -> np.ndarray:
        return self._C @ np.asarray(x, dtype=float).reshape(NUM_STATES)


class MocapMeasurementModel:
    """
    Pose correction from motion capture.

    y = [tx, -ty, -tz, roll, -pitch, -yaw]  (NWU -> NED)

    C rows 0-2 select PN, PE, PD and row 5 selects PSI. Rows 3-4 (roll,
    pitch) are zero: only mocap yaw is trusted for attitude, roll and pitch
    come from the IMU correction.
    """

    dim_z = NUM_MOCAP_MEAS

    def __init__(self):
        C = np.zeros((NUM_MOCAP_MEAS, NUM_STATES))
        C[0, PN] = 1.0
        C[1, PE] = 1.0
        C[2, PD] = 1.0
        C[3, PHI] = 0.0
        C[4, THETA] = 0.0
        C[5, PSI] = 1.0
        self._C = C

    def measurement(self, sample) -> np.ndarray:
        return pose_to_ned(sample.translation, sample.orientation)

    def jacobian(self, x: np.ndarray = None) -> np.ndarray:
        return self._C.copy()

    def hx(self, x: np.ndarray) -> np.ndarray:
        return self._C @ np.asarray(x, dtype=float).reshape(NUM_STATES)
