#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EKF Math Utilities Module
=========================

Quaternion / Euler conversions and frame helpers.

Quaternion Convention:
----------------------
Quaternions arriving from the IMU and motion-capture system use the
[x, y, z, w] ordering (scipy / ROS message order).

Euler Convention:
-----------------
Roll/pitch/yaw are 3-2-1 (yaw about Z, then pitch about Y, then roll about X)
intrinsic angles, i.e. scipy's ``'ZYX'`` sequence.

Frame Conventions:
------------------
- NWU (North-West-Up): motion-capture world frame, X=North, Y=West, Z=Up
- NED (North-East-Down): filter frame, X=North, Y=East, Z=Down
  Transform: x_ned = x_nwu, y_ned = -y_nwu, z_ned = -z_nwu
"""

from typing import Tuple

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy


# NWU→NED frame transformation matrix (diagonal sign flip)
R_NED_FROM_NWU = np.diag([1.0, -1.0, -1.0])


def quat_to_rpy(q_xyzw: np.ndarray) -> Tuple[float, float, float]:
    """
    Extract 3-2-1 Euler angles from a quaternion.

    Args:
        q_xyzw: Quaternion [x, y, z, w] (need not be unit length)

    Returns:
        (roll, pitch, yaw) in radians
    """
    q = np.asarray(q_xyzw, dtype=float)
    yaw, pitch, roll = R_scipy.from_quat(q).as_euler('ZYX')
    return float(roll), float(pitch), float(yaw)


def rpy_to_quat(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Quaternion [x, y, z, w] from 3-2-1 Euler angles."""
    return R_scipy.from_euler('ZYX', [yaw, pitch, roll]).as_quat()


def nwu_to_ned_position(p_nwu: np.ndarray) -> np.ndarray:
    """Convert a motion-capture translation to NED."""
    return R_NED_FROM_NWU @ np.asarray(p_nwu, dtype=float)


def nwu_to_ned_rpy(roll: float, pitch: float, yaw: float) -> Tuple[float, float, float]:
    """
    Convert motion-capture Euler angles to the filter frame.

    Flipping Y and Z negates pitch and yaw; roll about the shared X axis
    is unchanged.
    """
    return roll, -pitch, -yaw


def pose_to_ned(translation: np.ndarray, q_xyzw: np.ndarray) -> np.ndarray:
    """
    Convert a motion-capture pose to the 6-vector [pn, pe, pd, phi, theta, psi].

    Used both to seed the state before flight and as the mocap measurement,
    so the two paths share one sign convention.
    """
    p_ned = nwu_to_ned_position(translation)
    roll, pitch, yaw = nwu_to_ned_rpy(*quat_to_rpy(q_xyzw))
    return np.array([p_ned[0], p_ned[1], p_ned[2], roll, pitch, yaw], dtype=float)


def is_symmetric(M: np.ndarray, atol: float = 1e-9) -> bool:
    """Check M == M^T within tolerance."""
    return bool(np.allclose(M, M.T, atol=atol, rtol=0.0))
