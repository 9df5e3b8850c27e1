import threading

import numpy as np
import pytest

from mocap_ekf.config import EKFConfig, GRAVITY, PD, PE, PHI, PN, PSI, THETA, U, V, W
from mocap_ekf.math_utils import is_symmetric, rpy_to_quat
from mocap_ekf.messages import ImuSample, PoseSample
from mocap_ekf.state_estimator import StateEstimator


def _make_config(**overrides) -> EKFConfig:
    params = {
        "x0": np.zeros(9),
        "P0": np.eye(9),
        "Q0": 0.01 * np.eye(9),
        "R_IMU": 0.1 * np.eye(3),
        "R_Mocap": 0.01 * np.eye(6),
    }
    params.update(overrides)
    return EKFConfig(**params)


def _imu(t, az=-GRAVITY, rpy=(0.0, 0.0, 0.0), gyro=(0.0, 0.0, 0.0)):
    return ImuSample(t=t, linear_acceleration=[0.0, 0.0, az],
                     angular_velocity=list(gyro),
                     orientation=rpy_to_quat(*rpy))


def _pose(t, translation=(0.0, 0.0, 0.0), rpy=(0.0, 0.0, 0.0)):
    return PoseSample(t=t, translation=list(translation),
                      orientation=rpy_to_quat(*rpy))


def _make_flying(est: StateEstimator, t=1.0, rpy=(0.0, 0.0, 0.0)):
    result = est.process_imu(_imu(t, az=-12.0, rpy=rpy))
    assert est.flying
    return result


def test_initialize_from_pose_scenario():
    est = StateEstimator(_make_config())
    P_before = est.P

    result = est.process_pose(_pose(0.5, (1.0, 2.0, 3.0), (0.1, 0.2, 0.3)))

    assert result.applied
    np.testing.assert_allclose(est.x, [1, -2, -3, 0, 0, 0, 0.1, -0.2, -0.3], atol=1e-12)
    np.testing.assert_array_equal(est.P, P_before)


def test_initialize_repeats_until_flight():
    est = StateEstimator(_make_config())
    est.process_pose(_pose(0.1, (1.0, 0.0, 0.0)))
    est.process_pose(_pose(0.2, (5.0, 0.0, 0.0)))
    assert est.x[PN] == 5.0

    _make_flying(est, t=0.3)
    result = est.initialize_from_pose(_pose(0.4, (9.0, 0.0, 0.0)))
    assert not result.applied
    assert result.reason == "already_flying"
    assert not result.error
    assert est.x[PN] == 5.0


def test_flight_transition_emits_once_and_sets_predict_baseline():
    est = StateEstimator(_make_config())
    flags = []
    est.on_flying(flags.append)

    est.process_imu(_imu(4.0, az=-9.8))
    assert not est.flying
    assert est.predict_at(4.5).reason == "not_flying"

    est.process_imu(_imu(5.0, az=-12.0))
    est.process_imu(_imu(5.01, az=-12.0))
    est.process_imu(_imu(5.02, az=-3.0))

    assert est.flying
    assert flags == [5.0]
    assert est.previous_predict_time == 5.0


def test_first_predict_dt_measured_from_transition_sample():
    est_a = StateEstimator(_make_config())
    est_b = StateEstimator(_make_config())
    for est in (est_a, est_b):
        est.process_imu(_imu(2.0, az=-9.8))
        est.process_imu(_imu(5.0, az=-12.0, gyro=(0.1, 0.2, -0.1)))

    result = est_a.predict_at(5.1)
    est_b.predict(0.1)

    assert result.applied
    np.testing.assert_allclose(est_a.x, est_b.x, atol=1e-12)
    np.testing.assert_allclose(est_a.P, est_b.P, atol=1e-12)
    assert est_a.previous_predict_time == 5.1


def test_predict_is_noop_when_not_flying():
    est = StateEstimator(_make_config())
    x_before, P_before = est.x, est.P
    result = est.predict(0.01)
    assert not result.applied
    assert result.reason == "not_flying"
    assert not result.error
    np.testing.assert_array_equal(est.x, x_before)
    np.testing.assert_array_equal(est.P, P_before)


@pytest.mark.parametrize("dt", [0.0, -0.01, float("nan"), float("inf")])
def test_predict_rejects_bad_dt(dt):
    est = StateEstimator(_make_config())
    _make_flying(est)
    x_before, P_before = est.x, est.P

    result = est.predict(dt)

    assert not result.applied
    assert result.reason == "bad_dt"
    assert result.error
    np.testing.assert_array_equal(est.x, x_before)
    np.testing.assert_array_equal(est.P, P_before)


def test_predict_at_rejects_non_increasing_time():
    est = StateEstimator(_make_config())
    _make_flying(est, t=1.0)
    assert est.predict_at(1.01).applied
    x_before = est.x

    assert est.predict_at(1.01).reason == "bad_dt"
    assert est.predict_at(1.0).reason == "bad_dt"
    np.testing.assert_array_equal(est.x, x_before)
    assert est.previous_predict_time == 1.01


def test_predict_preserves_covariance_symmetry():
    rng = np.random.default_rng(7)
    est = StateEstimator(_make_config())
    _make_flying(est, rpy=(0.1, -0.2, 0.3))
    for _ in range(3):
        est.process_imu(_imu(1.0, gyro=(0.2, -0.1, 0.4), rpy=(0.1, -0.2, 0.3)))

    M = rng.normal(size=(9, 9))
    est.kf.P = M @ M.T + np.eye(9)
    x = rng.normal(size=9)
    x[6:9] = [0.1, -0.2, 0.3]
    est.kf.x = x

    for _ in range(50):
        assert est.predict(0.0025).applied
        assert is_symmetric(est.P, atol=1e-9)


def test_imu_update_with_vanishing_noise_matches_measurement():
    est = StateEstimator(_make_config(R_IMU=1e-12 * np.eye(3)))
    _make_flying(est)
    est.kf.P = np.eye(9)

    assert est.update_imu(_imu(1.1, rpy=(0.05, -0.1, 0.2))).applied

    np.testing.assert_allclose(est.x[[PHI, THETA, PSI]], [0.05, -0.1, 0.2], atol=1e-9)


def test_mocap_update_never_touches_roll_pitch():
    est = StateEstimator(_make_config(P0=np.diag([1.0, 2.0, 3.0, 1.0, 1.0, 1.0, 0.5, 0.5, 0.5])))
    est.process_pose(_pose(0.0, (0.0, 0.0, 1.0), (0.1, 0.1, 0.1)))
    _make_flying(est, t=0.1, rpy=(0.1, -0.1, -0.1))
    x_before = est.x

    result = est.update_mocap(_pose(0.2, (0.5, -0.5, 1.5), (0.4, -0.3, 0.6)))

    assert result.applied
    x_after = est.x
    assert x_after[PHI] == x_before[PHI]
    assert x_after[THETA] == x_before[THETA]
    np.testing.assert_array_equal(x_after[[U, V, W]], x_before[[U, V, W]])
    for idx in (PN, PE, PD, PSI):
        assert x_after[idx] != x_before[idx]


def test_mocap_update_is_noop_before_flight():
    est = StateEstimator(_make_config())
    result = est.update_mocap(_pose(0.0, (1.0, 1.0, 1.0)))
    assert result.reason == "not_flying"
    assert not result.error


def test_fixed_point_with_zero_noise():
    x0 = np.array([1.0, -2.0, -3.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    est = StateEstimator(_make_config(
        x0=x0,
        P0=0.5 * np.eye(9),
        Q0=np.zeros((9, 9)),
        R_IMU=np.zeros((3, 3)),
        R_Mocap=np.zeros((6, 6)),
    ))
    _make_flying(est, t=0.0)

    # Attitude block has collapsed after the transition update
    np.testing.assert_allclose(est.x, x0, atol=1e-12)
    x_ref, P_ref = est.x, est.P

    for k in range(5):
        r_imu = est.update_imu(_imu(0.1 * (k + 1)))
        r_mocap = est.update_mocap(_pose(0.1 * (k + 1), (1.0, 2.0, 3.0)))
        assert r_imu.reason == "singular_innovation"
        assert r_mocap.reason == "singular_innovation"
        np.testing.assert_array_equal(est.x, x_ref)
        np.testing.assert_array_equal(est.P, P_ref)


def test_singular_innovation_leaves_state_untouched():
    P0 = np.eye(9)
    P0[6:9, 6:9] = 0.0
    est = StateEstimator(_make_config(P0=P0, R_IMU=np.zeros((3, 3))))
    _make_flying(est)
    x_before, P_before = est.x, est.P

    result = est.update_imu(_imu(1.5, rpy=(0.3, 0.3, 0.3)))

    assert not result.applied
    assert result.error
    assert result.reason == "singular_innovation"
    np.testing.assert_array_equal(est.x, x_before)
    np.testing.assert_array_equal(est.P, P_before)
    assert est.get_stats()["update_imu:singular_innovation"] >= 1


def test_body_rates_seeded_by_first_flying_sample():
    est = StateEstimator(_make_config(alpha=0.5))
    est.process_imu(_imu(0.5, gyro=(9.0, 9.0, 9.0)))
    assert est.body_inputs().p == 0.0

    est.process_imu(_imu(1.0, az=-12.0, gyro=(0.2, -0.4, 0.6)))
    inputs = est.body_inputs()
    assert (inputs.p, inputs.q, inputs.r, inputs.az) == (0.2, -0.4, 0.6, -12.0)

    est.process_imu(_imu(1.1, az=-10.0, gyro=(0.0, 0.0, 0.0)))
    inputs = est.body_inputs()
    assert inputs.p == pytest.approx(0.1)
    assert inputs.az == pytest.approx(-11.0)


def test_estimate_snapshot():
    P0 = np.diag(np.arange(1.0, 10.0))
    est = StateEstimator(_make_config(P0=P0))
    est.process_pose(_pose(0.0, (1.0, 2.0, 3.0), (0.1, 0.2, 0.3)))

    e = est.estimate(0.0)

    assert e.frame_id == "body_link"
    assert not e.flying
    np.testing.assert_allclose(e.position, [1.0, -2.0, -3.0], atol=1e-12)
    np.testing.assert_allclose(e.orientation, rpy_to_quat(0.1, -0.2, -0.3), atol=1e-12)
    np.testing.assert_array_equal(e.angular_velocity, [0.0, 0.0, 0.0])
    np.testing.assert_array_equal(e.pose_covariance_diag, [1, 2, 3, 7, 8, 9])
    np.testing.assert_array_equal(e.twist_covariance_diag, [4, 5, 6, 0.05, 0.05, 0.05])
    assert len(e.pose_covariance) == 36
    assert e.pose_covariance[0] == 1.0 and e.pose_covariance[35] == 9.0


def test_concurrent_callers_do_not_corrupt_state():
    est = StateEstimator(_make_config())
    _make_flying(est, t=0.0)
    errors = []

    def imu_worker():
        for k in range(200):
            if est.update_imu(_imu(0.001 * k, rpy=(0.01, 0.0, 0.0))).error:
                errors.append("imu")

    def mocap_worker():
        for k in range(200):
            if est.update_mocap(_pose(0.001 * k, (0.0, 0.0, 1.0))).error:
                errors.append("mocap")

    def predict_worker():
        for k in range(200):
            if est.predict(0.0025).error:
                errors.append("predict")

    threads = [threading.Thread(target=fn) for fn in (imu_worker, mocap_worker, predict_worker)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert errors == []
    assert np.all(np.isfinite(est.x))
    assert np.all(np.isfinite(est.P))


def test_nan_acceleration_on_ground_does_not_declare_flight():
    est = StateEstimator(_make_config())
    flags = []
    est.on_flying(flags.append)

    est.process_imu(_imu(1.0, az=float("nan")))
    est.process_imu(_imu(1.1, az=float("inf")))

    # +inf exceeds any threshold; NaN must not
    assert flags == [1.1]
    est2 = StateEstimator(_make_config())
    est2.process_imu(_imu(1.0, az=float("nan")))
    assert not est2.flying
    assert est2.predict_at(1.5).reason == "not_flying"


def test_non_finite_imu_channels_never_reach_low_pass_state():
    est = StateEstimator(_make_config())
    _make_flying(est, t=1.0)
    inputs_before = est.body_inputs()
    x_before, P_before = est.x, est.P

    result = est.process_imu(_imu(1.01, gyro=(float("nan"), 0.0, 0.0)))

    assert not result.applied
    assert result.reason == "non_finite"
    assert result.error
    assert est.body_inputs() == inputs_before
    np.testing.assert_array_equal(est.x, x_before)
    np.testing.assert_array_equal(est.P, P_before)

    reasons = set()
    for k in range(1, 51):
        t = 1.01 + 0.0025 * k
        est.process_imu(_imu(t))
        reasons.add(est.predict_at(t).reason)
    assert reasons == {"ok"}
    assert np.all(np.isfinite(est.filtered_acceleration))


def test_filtered_acceleration_tracks_all_axes():
    est = StateEstimator(_make_config(alpha=0.0))
    np.testing.assert_array_equal(est.filtered_acceleration, [0.0, 0.0, 0.0])

    sample = _imu(1.0, az=-12.0)
    sample.linear_acceleration[:2] = [0.3, -0.4]
    est.process_imu(sample)

    np.testing.assert_allclose(est.filtered_acceleration, [0.3, -0.4, -12.0])


def test_gimbal_clamps_counted_once_per_predict():
    est = StateEstimator(_make_config())
    _make_flying(est, t=1.0)
    x = est.kf.x.copy()
    x[THETA] = np.pi / 2.0
    est.kf.x = x

    for k in range(3):
        est.predict(1e-9)

    assert est.get_stats()["gimbal_clamps"] == 3


def test_mocap_update_with_matching_pose_leaves_state_unchanged():
    # Nonzero noise on the unobserved roll/pitch rows; S stays invertible
    R_Mocap = np.diag([0.01, 0.01, 0.01, 0.05, 0.05, 0.01])
    est = StateEstimator(_make_config(R_Mocap=R_Mocap))
    pose = _pose(0.0, (1.0, 2.0, 3.0), (0.1, 0.2, 0.3))
    est.process_pose(pose)
    _make_flying(est, t=0.1, rpy=(0.1, -0.2, -0.3))
    x_before = est.x

    result = est.update_mocap(_pose(0.2, (1.0, 2.0, 3.0), (0.1, 0.2, 0.3)))

    assert result.applied
    np.testing.assert_allclose(est.x, x_before, atol=1e-12)
