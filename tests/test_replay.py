import numpy as np
import pandas as pd
import pytest

from mocap_ekf.config import EKFConfig, GRAVITY
from mocap_ekf.data_loaders import IMU_COLUMNS, load_imu_csv, load_pose_csv
from mocap_ekf.main_loop import ReplayRunner, timer_ticks
from mocap_ekf.messages import ESTIMATE_COLUMNS


def _write_logs(tmp_path, t_end=1.0, spike_t=0.3):
    t = np.round(np.arange(0.0, t_end + 1e-9, 0.01), 6)
    imu = pd.DataFrame({
        "t": t,
        "ori_x": 0.0, "ori_y": 0.0, "ori_z": 0.0, "ori_w": 1.0,
        "ang_x": 0.0, "ang_y": 0.0, "ang_z": 0.0,
        "lin_x": 0.0, "lin_y": 0.0, "lin_z": -GRAVITY,
    })
    imu.loc[np.isclose(imu["t"], spike_t), "lin_z"] = -12.0
    # Shuffled rows must still replay in time order
    imu = imu.sample(frac=1.0, random_state=0)
    mocap = pd.DataFrame({
        "t": t + 0.005,
        "tx": 0.0, "ty": 0.0, "tz": 1.0,
        "qx": 0.0, "qy": 0.0, "qz": 0.0, "qw": 1.0,
    })
    imu_path = tmp_path / "imu.csv"
    mocap_path = tmp_path / "mocap.csv"
    imu.to_csv(imu_path, index=False)
    mocap.to_csv(mocap_path, index=False)
    return str(imu_path), str(mocap_path)


def _config():
    return EKFConfig(
        x0=np.zeros(9), P0=np.eye(9), Q0=0.01 * np.eye(9),
        R_IMU=0.01 * np.eye(3), R_Mocap=0.001 * np.eye(6),
        inner_loop_rate=100.0, publish_rate=50.0,
    )


def test_timer_ticks_exclude_start():
    ticks = list(timer_ticks(1.0, 1.1, 0.025))
    assert ticks == pytest.approx([1.025, 1.05, 1.075, 1.1])


def test_loaders_sort_by_time(tmp_path):
    imu_path, mocap_path = _write_logs(tmp_path)
    imu = load_imu_csv(imu_path)
    poses = load_pose_csv(mocap_path)
    stamps = [s.t for s in imu]
    assert stamps == sorted(stamps)
    assert len(poses) == len(imu)
    np.testing.assert_array_equal(poses[0].translation, [0.0, 0.0, 1.0])


def test_loader_missing_column(tmp_path):
    path = tmp_path / "imu.csv"
    pd.DataFrame({c: [0.0] for c in IMU_COLUMNS if c != "lin_z"}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="lin_z"):
        load_imu_csv(str(path))


def test_loader_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pose_csv(str(tmp_path / "nope.csv"))


def test_hover_replay(tmp_path):
    imu_path, mocap_path = _write_logs(tmp_path)
    out_dir = tmp_path / "out"

    runner = ReplayRunner(_config(), imu_path=imu_path, mocap_path=mocap_path,
                          output_dir=str(out_dir), save_debug_data=True,
                          keep_estimates=True)
    estimates = runner.run()

    assert runner.flying_time == pytest.approx(0.3)
    assert len(estimates) > 0
    assert not estimates[0].flying
    assert estimates[-1].flying

    df = pd.read_csv(out_dir / "estimate.csv")
    assert list(df.columns) == ESTIMATE_COLUMNS
    assert len(df) == len(estimates)
    assert np.all(np.isfinite(df.to_numpy()))

    flying = pd.read_csv(out_dir / "flying.csv")
    assert len(flying) == 1
    assert flying["t"].iloc[0] == pytest.approx(0.3)

    x = runner.final_state()
    assert abs(x[2] + 1.0) < 0.3
    assert np.all(np.abs(x[6:9]) < 1e-6)

    assert (out_dir / "debug_steps.csv").exists()
    assert runner.estimator.get_stats()["predict:ok"] > 0


def test_replay_without_flight_tracks_mocap(tmp_path):
    imu_path, mocap_path = _write_logs(tmp_path, spike_t=-1.0)
    runner = ReplayRunner(_config(), imu_path=imu_path, mocap_path=mocap_path)

    runner.run()

    assert runner.flying_time is None
    assert len(runner.estimates) > 0
    np.testing.assert_allclose(runner.final_state(), [0, 0, -1, 0, 0, 0, 0, 0, 0], atol=1e-12)


def test_replay_with_writer_does_not_buffer_estimates(tmp_path):
    imu_path, mocap_path = _write_logs(tmp_path)
    out_dir = tmp_path / "out"
    runner = ReplayRunner(_config(), imu_path=imu_path, mocap_path=mocap_path,
                          output_dir=str(out_dir))

    estimates = runner.run()

    assert estimates == []
    assert runner.writer.rows_written > 0
    assert len(pd.read_csv(out_dir / "estimate.csv")) == runner.writer.rows_written
