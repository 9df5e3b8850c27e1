#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EKF Output Utilities Module

CSV writers for the published estimate, the flying flag and optional debug
logs, plus end-of-run statistics.
"""

import os
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .config import STATE_NAMES
from .messages import ESTIMATE_COLUMNS, Estimate, StepResult


class EstimateCSVWriter:
    """Appends Estimate snapshots to ``estimate.csv`` and the flag to ``flying.csv``."""

    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        os.makedirs(self.output_dir, exist_ok=True)

        self.estimate_csv = os.path.join(self.output_dir, "estimate.csv")
        with open(self.estimate_csv, "w", newline="") as f:
            f.write(",".join(ESTIMATE_COLUMNS) + "\n")

        self.flying_csv = os.path.join(self.output_dir, "flying.csv")
        with open(self.flying_csv, "w", newline="") as f:
            f.write("t,flying\n")

        self.rows_written = 0

    def write(self, estimate: Estimate):
        row = estimate.as_row()
        with open(self.estimate_csv, "a", newline="") as f:
            f.write(",".join(f"{row[c]:.9g}" for c in ESTIMATE_COLUMNS) + "\n")
        self.rows_written += 1

    def write_flying(self, t: float):
        with open(self.flying_csv, "a", newline="") as f:
            f.write(f"{t:.6f},1\n")


class DebugCSVWriters:
    """
    Manages debug CSV files for the estimator.

    Creates and manages:
    - Raw IMU data log
    - State & covariance evolution
    - Per-step outcome log (applied / rejected with reason)
    """

    def __init__(self, output_dir: str, save_debug_data: bool = False):
        """
        Initialize debug CSV writers.

        Args:
            output_dir: Output directory path
            save_debug_data: Whether to enable debug logging
        """
        self.output_dir = output_dir
        self.enabled = save_debug_data

        self.imu_raw_csv = None
        self.state_cov_csv = None
        self.steps_csv = None

        if self.enabled:
            self._init_files()

    def _init_files(self):
        os.makedirs(self.output_dir, exist_ok=True)

        self.imu_raw_csv = os.path.join(self.output_dir, "debug_imu_raw.csv")
        with open(self.imu_raw_csv, "w", newline="") as f:
            f.write("t,ori_x,ori_y,ori_z,ori_w,ang_x,ang_y,ang_z,lin_x,lin_y,lin_z\n")

        self.state_cov_csv = os.path.join(self.output_dir, "debug_state_covariance.csv")
        with open(self.state_cov_csv, "w", newline="") as f:
            f.write("t," + ",".join(f"x_{n}" for n in STATE_NAMES) + ","
                    + ",".join(f"P_{n}" for n in STATE_NAMES) + "\n")

        self.steps_csv = os.path.join(self.output_dir, "debug_steps.csv")
        with open(self.steps_csv, "w", newline="") as f:
            f.write("t,operation,applied,reason,detail\n")

    def log_imu_raw(self, sample):
        if not self.enabled:
            return
        q, w, a = sample.orientation, sample.angular_velocity, sample.linear_acceleration
        with open(self.imu_raw_csv, "a", newline="") as f:
            f.write(f"{sample.t:.6f},{q[0]:.6f},{q[1]:.6f},{q[2]:.6f},{q[3]:.6f},"
                    f"{w[0]:.6f},{w[1]:.6f},{w[2]:.6f},"
                    f"{a[0]:.6f},{a[1]:.6f},{a[2]:.6f}\n")

    def log_state_covariance(self, t: float, x: np.ndarray, P: np.ndarray):
        if not self.enabled:
            return
        with open(self.state_cov_csv, "a", newline="") as f:
            f.write(f"{t:.6f},"
                    + ",".join(f"{v:.6e}" for v in x) + ","
                    + ",".join(f"{v:.6e}" for v in np.diag(P)) + "\n")

    def log_step(self, result: StepResult):
        if not self.enabled:
            return
        detail = result.detail.replace(",", ";")
        with open(self.steps_csv, "a", newline="") as f:
            f.write(f"{result.timestamp:.6f},{result.operation},"
                    f"{int(result.applied)},{result.reason},{detail}\n")


def print_run_summary(stats: Dict[str, Any], estimate_csv: Optional[str] = None):
    """Print operation counters and, if available, final estimate statistics."""
    print("\n" + "=" * 70)
    print("EKF run summary")
    print("=" * 70)
    for key in sorted(stats):
        print(f"  {key:32s} {stats[key]}")

    if estimate_csv and os.path.exists(estimate_csv):
        df = pd.read_csv(estimate_csv)
        if len(df) > 0:
            last = df.iloc[-1]
            print(f"\n  estimates written: {len(df)}")
            print(f"  final position NED: [{last['pn']:.3f}, {last['pe']:.3f}, {last['pd']:.3f}] m")
            print(f"  final attitude: roll={np.degrees(last['phi']):.2f} deg, "
                  f"pitch={np.degrees(last['theta']):.2f} deg, "
                  f"yaw={np.degrees(last['psi']):.2f} deg")
    print("=" * 70)
