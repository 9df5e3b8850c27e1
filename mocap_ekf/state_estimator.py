#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
State Estimator
===============

Owns the shared (x, P) pair and the low-pass channel state, and serializes
every operation on them behind a single lock:

- initialize_from_pose(pose)  - NotFlying only, re-seeds x from mocap
- predict(dt) / predict_at(t) - Flying only, motion-model propagation
- update_imu(sample)          - Flying only, attitude correction
- update_mocap(sample)        - Flying only, pose correction

plus the sample dispatch used by callers (``process_imu`` /
``process_pose``) and the ``estimate()`` snapshot.

Gating:
-------
Calls made outside their flight state are deliberate no-ops and return a
StepResult with ``applied=False`` and reason ``not_flying`` (or
``already_flying`` for initialization). They are not errors.

Timing:
-------
On the NotFlying -> Flying transition the estimator records the timestamp
of the IMU sample that triggered it; the first ``predict_at(now)`` uses
``dt = now - transition_time``. Subsequent calls measure from the previous
successful predict. Non-increasing timestamps are rejected (``bad_dt``).
"""

import threading
from collections import Counter
from typing import Callable, Dict, List, Optional

import numpy as np

from .config import (
    EKFConfig, NUM_STATES,
    PN, PE, PD, U, V, W, PHI, THETA, PSI,
)
from .ekf import ExtendedKalmanFilter
from .flight_detector import FlightDetector
from .low_pass import LowPassFilter
from .math_utils import pose_to_ned, rpy_to_quat
from .measurement_models import IMUMeasurementModel, MocapMeasurementModel
from .messages import Estimate, ImuSample, PoseSample, StepResult
from .motion_model import BodyInputs, MotionModel


class StateEstimator:
    """Mutex-guarded EKF for motion-capture + IMU fusion."""

    def __init__(self, config: EKFConfig):
        self.config = config
        self._lock = threading.RLock()

        self.kf = ExtendedKalmanFilter(
            dim_x=NUM_STATES,
            x0=config.x0,
            P0=config.P0,
            Q=config.Q0,
            singular_tol=config.singular_tolerance,
            max_condition=config.max_innovation_condition,
            symmetrize=config.symmetrize_covariance,
            verbose=config.verbose,
        )
        self.R_IMU = np.array(config.R_IMU, dtype=float)
        self.R_Mocap = np.array(config.R_Mocap, dtype=float)

        self.motion_model = MotionModel(config.gravity, config.gimbal_epsilon)
        self.imu_model = IMUMeasurementModel()
        self.mocap_model = MocapMeasurementModel()

        # One filter per channel; ax/ay are kept for diagnostics only
        self.lpf = {
            name: LowPassFilter(config.alpha)
            for name in ("p", "q", "r", "ax", "ay", "az")
        }

        self.flight_detector = FlightDetector(config.flight_accel_threshold)
        self.flight_detector.on_flying(self._on_flying)
        self._flying_listeners: List[Callable[[float], None]] = []

        self.previous_predict_time: Optional[float] = None
        self.initialized = False
        self.stats = Counter()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def flying(self) -> bool:
        return self.flight_detector.flying

    @property
    def x(self) -> np.ndarray:
        with self._lock:
            return self.kf.x.copy()

    @property
    def P(self) -> np.ndarray:
        with self._lock:
            return self.kf.P.copy()

    def body_inputs(self) -> BodyInputs:
        """Filtered channels for the motion model (zero until seeded)."""
        return BodyInputs(*(self.lpf[k].value or 0.0 for k in ("p", "q", "r", "az")))

    @property
    def filtered_acceleration(self) -> np.ndarray:
        return np.array([self.lpf[k].value or 0.0 for k in ("ax", "ay", "az")])

    def on_flying(self, callback: Callable[[float], None]):
        """Register a listener for the one-shot flying flag."""
        self._flying_listeners.append(callback)

    def _on_flying(self, t: float):
        self.previous_predict_time = t
        for callback in self._flying_listeners:
            callback(t)

    def _result(self, operation: str, ok: bool, reason: str = "ok",
                t: Optional[float] = None, detail: str = "") -> StepResult:
        reason = reason if not ok else "ok"
        self.stats[f"{operation}:{reason}"] += 1
        return StepResult(operation=operation, applied=ok, reason=reason,
                          timestamp=float("nan") if t is None else float(t),
                          detail=detail)

    # ------------------------------------------------------------------
    # Filter operations
    # ------------------------------------------------------------------

    def initialize_from_pose(self, pose: PoseSample) -> StepResult:
        """
        Seed x from a motion-capture pose while on the ground.

        x := [tx, -ty, -tz, 0, 0, 0, roll, -pitch, -yaw]; P is not touched.
        """
        with self._lock:
            if self.flying:
                return self._result("initialize", False, "already_flying", pose.t)

            y = pose_to_ned(pose.translation, pose.orientation)
            x = np.zeros(NUM_STATES)
            x[[PN, PE, PD]] = y[0:3]
            x[[PHI, THETA, PSI]] = y[3:6]
            if not np.all(np.isfinite(x)):
                return self._result("initialize", False, "non_finite", pose.t)

            if not self.initialized:
                print("[EKF] initialized from motion capture")
            self.initialized = True
            self.kf.x = x
            return self._result("initialize", True, t=pose.t)

    def predict(self, dt: float, t: Optional[float] = None) -> StepResult:
        """
        Propagate over dt seconds using the filtered IMU channels.

        Rejected (state unchanged) when dt is not a positive finite number.
        """
        with self._lock:
            if not self.flying:
                return self._result("predict", False, "not_flying", t)

            try:
                dt = float(dt)
            except (TypeError, ValueError):
                return self._result("predict", False, "bad_dt", t, f"dt={dt!r}")
            if not np.isfinite(dt) or dt <= 0.0:
                print(f"[EKF] WARNING: rejecting predict with dt={dt}")
                return self._result("predict", False, "bad_dt", t, f"dt={dt}")

            inputs = self.body_inputs()
            ok, reason = self.kf.predict(dt, self.motion_model.f,
                                         self.motion_model.dfdx,
                                         args=(inputs,), t=t)
            if not ok:
                return self._result("predict", False, reason, t, f"dt={dt}")
            return self._result("predict", True, t=t)

    def predict_at(self, now: float) -> StepResult:
        """
        Timer entry point: predict from the last predict time up to ``now``.

        The baseline is the flight-transition timestamp for the first call.
        """
        with self._lock:
            if not self.flying:
                return self._result("predict", False, "not_flying", now)

            now = float(now)
            if self.previous_predict_time is None:
                self.previous_predict_time = now
                return self._result("predict", False, "bad_dt", now, "no baseline")

            dt = now - self.previous_predict_time
            result = self.predict(dt, t=now)
            if result.applied:
                self.previous_predict_time = now
            return result

    def update_imu(self, sample: ImuSample) -> StepResult:
        """
        Refresh the low-pass channels from ``sample`` and correct attitude.
        """
        with self._lock:
            if not self.flying:
                return self._result("update_imu", False, "not_flying", sample.t)

            # Non-finite inputs must not reach the low-pass state
            if not (np.all(np.isfinite(sample.angular_velocity))
                    and np.all(np.isfinite(sample.linear_acceleration))):
                self._report_rejection("IMU", "non_finite", sample.t)
                return self._result("update_imu", False, "non_finite", sample.t)

            gx, gy, gz = sample.angular_velocity
            ax, ay, az = sample.linear_acceleration
            for name, val in (("p", gx), ("q", gy), ("r", gz),
                              ("ax", ax), ("ay", ay), ("az", az)):
                self.lpf[name].update(val)

            z = self.imu_model.measurement(sample)
            ok, reason = self.kf.update(z, self.imu_model.jacobian,
                                        self.imu_model.hx, self.R_IMU,
                                        t=sample.t)
            if not ok:
                self._report_rejection("IMU", reason, sample.t)
                return self._result("update_imu", False, reason, sample.t)
            return self._result("update_imu", True, t=sample.t)

    def update_mocap(self, sample: PoseSample) -> StepResult:
        """Correct position and yaw from a motion-capture pose."""
        with self._lock:
            if not self.flying:
                return self._result("update_mocap", False, "not_flying", sample.t)

            z = self.mocap_model.measurement(sample)
            ok, reason = self.kf.update(z, self.mocap_model.jacobian,
                                        self.mocap_model.hx, self.R_Mocap,
                                        t=sample.t)
            if not ok:
                self._report_rejection("MOCAP", reason, sample.t)
                return self._result("update_mocap", False, reason, sample.t)
            return self._result("update_mocap", True, t=sample.t)

    def _report_rejection(self, tag: str, reason: str, t: float):
        n = self.stats[f"{tag}_rejects"] = self.stats[f"{tag}_rejects"] + 1
        if n == 1 or n % 100 == 0:
            print(f"[{tag}] WARNING: update rejected ({reason}) at t={t:.3f}, "
                  f"total rejects={n}")

    # ------------------------------------------------------------------
    # Sample dispatch
    # ------------------------------------------------------------------

    def process_imu(self, sample: ImuSample) -> StepResult:
        """Flight detection, then attitude correction once flying."""
        with self._lock:
            self.flight_detector.check(sample)
            return self.update_imu(sample)

    def process_pose(self, sample: PoseSample) -> StepResult:
        """Seed the state on the ground, correct it in flight."""
        with self._lock:
            if not self.flying:
                return self.initialize_from_pose(sample)
            return self.update_mocap(sample)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def estimate(self, stamp: float) -> Estimate:
        """Consistent snapshot of the current estimate."""
        with self._lock:
            x = self.kf.x.copy()
            P = self.kf.P
            inputs = self.body_inputs()
            rate_var = self.config.twist_rate_variance
            return Estimate(
                stamp=float(stamp),
                frame_id=self.config.frame_id,
                position=x[[PN, PE, PD]],
                orientation=rpy_to_quat(x[PHI], x[THETA], x[PSI]),
                euler=x[[PHI, THETA, PSI]],
                velocity=x[[U, V, W]],
                angular_velocity=np.array([inputs.p, inputs.q, inputs.r]),
                pose_covariance_diag=np.array([
                    P[PN, PN], P[PE, PE], P[PD, PD],
                    P[PHI, PHI], P[THETA, THETA], P[PSI, PSI],
                ]),
                twist_covariance_diag=np.array([
                    P[U, U], P[V, V], P[W, W], rate_var, rate_var, rate_var,
                ]),
                flying=self.flying,
            )

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = dict(self.stats)
            stats["gimbal_clamps"] = self.motion_model.gimbal_clamp_count
            return stats

    def __repr__(self):
        return (f"StateEstimator(flying={self.flying}, "
                f"x={np.array2string(self.kf.x, precision=4)})")
