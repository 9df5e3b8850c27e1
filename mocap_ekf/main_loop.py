"""
Main EKF Replay Loop

This module provides the ReplayRunner class that drives the estimator from
recorded IMU and motion-capture logs, standing in for the live transport:

- IMU samples  -> StateEstimator.process_imu  (flight detection + attitude update)
- Mocap poses  -> StateEstimator.process_pose (seed on ground / pose update)
- Predict timer at ``inner_loop_rate`` -> StateEstimator.predict_at
- Publish timer at ``publish_rate``    -> estimate.csv

Both timers run on the recorded clock. Events are dispatched strictly in
timestamp order; at equal stamps samples go first, then predict, then
publish.

Usage:
    from mocap_ekf.main_loop import ReplayRunner

    runner = ReplayRunner(config, imu_path="imu.csv", mocap_path="mocap.csv",
                          output_dir="out/")
    runner.run()
"""

import heapq
import itertools
import time
from typing import Iterator, List, Optional, Tuple

import numpy as np

from .config import EKFConfig
from .data_loaders import load_imu_csv, load_pose_csv
from .messages import ImuSample, PoseSample
from .output_utils import DebugCSVWriters, EstimateCSVWriter, print_run_summary
from .state_estimator import StateEstimator

# Dispatch priority at equal timestamps
_PRIO_SAMPLE, _PRIO_PREDICT, _PRIO_PUBLISH = 0, 1, 2


def timer_ticks(t_start: float, t_end: float, period: float) -> Iterator[float]:
    """Fixed-rate tick times in (t_start, t_end], computed without drift."""
    k = 1
    while True:
        t = t_start + k * period
        if t > t_end:
            return
        yield t
        k += 1


class ReplayRunner:
    """
    Replays recorded sensor logs through a StateEstimator.

    Orchestrates:
    1. Data loading
    2. Event merge (samples + simulated timers)
    3. Serialized dispatch into the estimator
    4. Output logging
    """

    def __init__(self, config: EKFConfig, imu_path: Optional[str] = None,
                 mocap_path: Optional[str] = None,
                 output_dir: Optional[str] = None,
                 save_debug_data: bool = False,
                 keep_estimates: Optional[bool] = None):
        self.config = config
        self.imu_path = imu_path
        self.mocap_path = mocap_path
        self.output_dir = output_dir
        self.save_debug_data = save_debug_data
        # In-memory copy of every publish; defaults on only without a CSV writer
        self.keep_estimates = (output_dir is None) if keep_estimates is None else keep_estimates

        self.estimator = StateEstimator(config)
        self.imu: List[ImuSample] = []
        self.poses: List[PoseSample] = []
        self.estimates = []
        self.flying_time: Optional[float] = None

        self.writer: Optional[EstimateCSVWriter] = None
        self.debug: Optional[DebugCSVWriters] = None

        self.estimator.on_flying(self._on_flying)

    def _on_flying(self, t: float):
        self.flying_time = t
        if self.writer is not None:
            self.writer.write_flying(t)

    def load_data(self):
        if self.imu_path:
            self.imu = load_imu_csv(self.imu_path)
        if self.mocap_path:
            self.poses = load_pose_csv(self.mocap_path)

    def setup_output_files(self):
        if self.output_dir is None:
            return
        self.writer = EstimateCSVWriter(self.output_dir)
        self.debug = DebugCSVWriters(self.output_dir, self.save_debug_data)

    def events(self) -> Iterator[Tuple[float, int, str, object]]:
        """Merged, time-ordered event stream."""
        stamps = [s.t for s in itertools.chain(self.imu, self.poses)]
        if not stamps:
            return iter(())
        t0, t1 = min(stamps), max(stamps)

        seq = itertools.count()
        imu_ev = ((s.t, _PRIO_SAMPLE, next(seq), "imu", s) for s in self.imu)
        pose_ev = ((s.t, _PRIO_SAMPLE, next(seq), "pose", s) for s in self.poses)
        predict_ev = ((t, _PRIO_PREDICT, 0, "predict", None)
                      for t in timer_ticks(t0, t1, self.config.predict_period))
        publish_ev = ((t, _PRIO_PUBLISH, 0, "publish", None)
                      for t in timer_ticks(t0, t1, self.config.publish_period))

        merged = heapq.merge(imu_ev, pose_ev, predict_ev, publish_ev,
                             key=lambda e: (e[0], e[1], e[2]))
        return ((t, prio, kind, payload) for t, prio, _, kind, payload in merged)

    def dispatch(self, t: float, kind: str, payload) -> None:
        est = self.estimator
        if kind == "imu":
            if self.debug is not None:
                self.debug.log_imu_raw(payload)
            result = est.process_imu(payload)
        elif kind == "pose":
            result = est.process_pose(payload)
        elif kind == "predict":
            result = est.predict_at(t)
        elif kind == "publish":
            estimate = est.estimate(t)
            if self.keep_estimates:
                self.estimates.append(estimate)
            if self.writer is not None:
                self.writer.write(estimate)
            if self.debug is not None:
                self.debug.log_state_covariance(t, est.x, est.P)
            return
        else:
            raise ValueError(f"Unknown event kind: {kind}")

        if self.debug is not None and (result.applied or result.error):
            self.debug.log_step(result)

    def run(self):
        """Load data, replay every event, print summary."""
        wall_start = time.time()
        self.load_data()
        self.setup_output_files()

        n_events = 0
        for t, _, kind, payload in self.events():
            self.dispatch(t, kind, payload)
            n_events += 1

        elapsed = time.time() - wall_start
        print(f"[EKF] Replayed {n_events} events in {elapsed:.2f}s")
        if self.flying_time is None:
            print("[EKF] WARNING: flight never detected, estimate is a copy of mocap")

        stats = self.estimator.get_stats()
        stats["events"] = n_events
        print_run_summary(stats, self.writer.estimate_csv if self.writer else None)
        return self.estimates

    def final_state(self) -> np.ndarray:
        return self.estimator.x
