#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Motion Model Module
===================

Nonlinear rigid-body kinematics for the 9-state filter and its analytic
Jacobian.

    x = [pn, pe, pd, u, v, w, phi, theta, psi]

Inputs that are not part of the state (filtered body rates p, q, r and the
filtered vertical specific force a_z) are passed alongside x.

Position (inertial NED) - 3-2-1 body-to-inertial rotation of (u, v, w):

    pn' = ct*cs*u + (sp*st*cs - cp*ss)*v + (cp*st*cs + sp*ss)*w
    pe' = ct*ss*u + (sp*st*ss + cp*cs)*v + (cp*st*ss - sp*cs)*w
    pd' = -st*u   + sp*ct*v             + cp*ct*w

Velocity (body frame):

    u' = r*v - q*w - G*st
    v' = p*w - r*u + G*ct*sp
    w' = q*u - p*v + G*ct*cp + a_z

Attitude (Euler rates):

    phi'   = p + q*sp*tt + r*cp*tt
    theta' = q*cp - r*sp
    psi'   = q*sp/ct + r*cp/ct

Gimbal Lock:
------------
tan(theta) and 1/cos(theta) diverge at theta = +-pi/2. When |cos(theta)|
drops below ``gimbal_epsilon`` the denominator is clamped to
+-gimbal_epsilon (sign kept, + for exactly zero) and tan(theta) is recomputed
from the clamped value. Clamped evaluations of f are counted in
``gimbal_clamp_count`` (one per predict step; dfdx does not count).
"""

from typing import NamedTuple

import numpy as np

from .config import (
    NUM_STATES, PN, PE, PD, U, V, W, PHI, THETA, PSI,
    GRAVITY, GIMBAL_EPSILON,
)


class BodyInputs(NamedTuple):
    """Filtered IMU channels consumed by the motion model."""
    p: float = 0.0
    q: float = 0.0
    r: float = 0.0
    az: float = 0.0


class MotionModel:
    """State transition f(x) and Jacobian df/dx."""

    def __init__(self, gravity: float = GRAVITY,
                 gimbal_epsilon: float = GIMBAL_EPSILON):
        self.gravity = float(gravity)
        self.gimbal_epsilon = float(gimbal_epsilon)
        self.gimbal_clamp_count = 0
        self._in_gimbal_zone = False

    def _trig(self, x: np.ndarray, count: bool = True):
        phi, theta, psi = x[PHI], x[THETA], x[PSI]
        cp, sp = np.cos(phi), np.sin(phi)
        ct, st = np.cos(theta), np.sin(theta)
        cs, ss = np.cos(psi), np.sin(psi)

        # Denominator for tan/sec terms
        if abs(ct) < self.gimbal_epsilon:
            ct_div = self.gimbal_epsilon if ct >= 0.0 else -self.gimbal_epsilon
            if count:
                self.gimbal_clamp_count += 1
                if not self._in_gimbal_zone:
                    print(f"[EKF] WARNING: pitch near gimbal lock "
                          f"(theta={np.degrees(theta):.2f} deg), clamping cos(theta)")
                self._in_gimbal_zone = True
        else:
            ct_div = ct
            if count:
                self._in_gimbal_zone = False
        tt = st / ct_div
        return cp, sp, ct, st, cs, ss, ct_div, tt

    def f(self, x: np.ndarray, inputs: BodyInputs) -> np.ndarray:
        """
        Continuous-time state derivative.

        Args:
            x: State vector (9,)
            inputs: Filtered body rates and vertical specific force

        Returns:
            x_dot (9,)
        """
        x = np.asarray(x, dtype=float).reshape(NUM_STATES)
        p, q, r, az = inputs
        G = self.gravity
        u, v, w = x[U], x[V], x[W]
        cp, sp, ct, st, cs, ss, ct_div, tt = self._trig(x)

        xdot = np.zeros(NUM_STATES)
        xdot[PN] = ct*cs*u + (sp*st*cs - cp*ss)*v + (cp*st*cs + sp*ss)*w
        xdot[PE] = ct*ss*u + (sp*st*ss + cp*cs)*v + (cp*st*ss - sp*cs)*w
        xdot[PD] = -st*u + sp*ct*v + cp*ct*w

        xdot[U] = r*v - q*w - G*st
        xdot[V] = p*w - r*u + G*ct*sp
        xdot[W] = q*u - p*v + G*ct*cp + az

        xdot[PHI] = p + q*sp*tt + r*cp*tt
        xdot[THETA] = q*cp - r*sp
        xdot[PSI] = q*sp/ct_div + r*cp/ct_div
        return xdot

    def dfdx(self, x: np.ndarray, inputs: BodyInputs) -> np.ndarray:
        """Analytic Jacobian A = df/dx evaluated at x (9x9)."""
        x = np.asarray(x, dtype=float).reshape(NUM_STATES)
        p, q, r, _ = inputs
        G = self.gravity
        u, v, w = x[U], x[V], x[W]
        cp, sp, ct, st, cs, ss, ct_div, tt = self._trig(x, count=False)

        A = np.zeros((NUM_STATES, NUM_STATES))

        # Position rows
        A[PN, U] = ct*cs
        A[PN, V] = sp*st*cs - cp*ss
        A[PN, W] = cp*st*cs + sp*ss
        A[PN, PHI] = (cp*st*cs + sp*ss)*v + (-sp*st*cs + cp*ss)*w
        A[PN, THETA] = -st*cs*u + sp*ct*cs*v + cp*ct*cs*w
        A[PN, PSI] = -ct*ss*u + (-sp*st*ss - cp*cs)*v + (-cp*st*ss + sp*cs)*w

        A[PE, U] = ct*ss
        A[PE, V] = sp*st*ss + cp*cs
        A[PE, W] = cp*st*ss - sp*cs
        A[PE, PHI] = (cp*st*ss - sp*cs)*v + (-sp*st*ss - cp*cs)*w
        A[PE, THETA] = -st*ss*u + sp*ct*ss*v + cp*ct*ss*w
        A[PE, PSI] = ct*cs*u + (sp*st*cs - cp*ss)*v + (cp*st*cs + sp*ss)*w

        A[PD, U] = -st
        A[PD, V] = sp*ct
        A[PD, W] = cp*ct
        A[PD, PHI] = cp*ct*v - sp*ct*w
        A[PD, THETA] = -ct*u - sp*st*v - cp*st*w

        # Velocity rows
        A[U, V] = r
        A[U, W] = -q
        A[U, THETA] = -G*ct

        A[V, U] = -r
        A[V, W] = p
        A[V, PHI] = G*ct*cp
        A[V, THETA] = -G*st*sp

        A[W, U] = q
        A[W, V] = -p
        A[W, PHI] = -G*ct*sp
        A[W, THETA] = -G*st*cp

        # Attitude rows
        A[PHI, PHI] = q*cp*tt - r*sp*tt
        A[PHI, THETA] = (q*sp + r*cp) / (ct_div*ct_div)
        A[THETA, PHI] = -q*sp - r*cp
        A[PSI, PHI] = (q*cp - r*sp) / ct_div
        A[PSI, THETA] = (q*sp + r*cp) * tt / ct_div
        return A
