#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EKF Data Loaders Module

CSV loaders for recorded IMU and motion-capture streams.
"""

import os
from typing import List

import numpy as np
import pandas as pd

from .messages import ImuSample, PoseSample


IMU_COLUMNS = ["t", "ori_x", "ori_y", "ori_z", "ori_w",
               "ang_x", "ang_y", "ang_z", "lin_x", "lin_y", "lin_z"]
POSE_COLUMNS = ["t", "tx", "ty", "tz", "qx", "qy", "qz", "qw"]


def _read_sorted(path: str, columns: List[str], label: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"{label} CSV not found: {path}")

    df = pd.read_csv(path)
    for c in columns:
        if c not in df.columns:
            raise ValueError(f"{label} CSV missing column: {c}")

    n_raw = len(df)
    df = df.dropna(subset=columns)
    if len(df) < n_raw:
        print(f"[{label}] WARNING: dropped {n_raw - len(df)} rows with missing values")

    return df.sort_values("t", kind="mergesort").reset_index(drop=True)


def load_imu_csv(path: str) -> List[ImuSample]:
    """
    Load IMU data from CSV file.

    Columns: t, ori_x, ori_y, ori_z, ori_w, ang_x, ang_y, ang_z,
    lin_x, lin_y, lin_z (quaternion in [x, y, z, w] order).
    """
    df = _read_sorted(path, IMU_COLUMNS, "IMU")
    recs = [
        ImuSample(
            t=float(r["t"]),
            linear_acceleration=np.array([r["lin_x"], r["lin_y"], r["lin_z"]], dtype=float),
            angular_velocity=np.array([r["ang_x"], r["ang_y"], r["ang_z"]], dtype=float),
            orientation=np.array([r["ori_x"], r["ori_y"], r["ori_z"], r["ori_w"]], dtype=float),
        )
        for _, r in df.iterrows()
    ]
    print(f"[IMU] Loaded {len(recs)} samples")
    return recs


def load_pose_csv(path: str) -> List[PoseSample]:
    """
    Load motion-capture poses from CSV file.

    Columns: t, tx, ty, tz, qx, qy, qz, qw (NWU world frame).
    """
    df = _read_sorted(path, POSE_COLUMNS, "MOCAP")
    recs = [
        PoseSample(
            t=float(r["t"]),
            translation=np.array([r["tx"], r["ty"], r["tz"]], dtype=float),
            orientation=np.array([r["qx"], r["qy"], r["qz"], r["qw"]], dtype=float),
        )
        for _, r in df.iterrows()
    ]
    print(f"[MOCAP] Loaded {len(recs)} poses")
    return recs
