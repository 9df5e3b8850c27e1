"""
mocap_ekf - Motion-capture / IMU Extended Kalman Filter

Estimates NED position, body velocity and roll/pitch/yaw of a multirotor by
fusing IMU samples and motion-capture poses.

Submodules:
- config: Configuration loading, state layout and defaults
- math_utils: Quaternion / Euler and NWU->NED helpers
- low_pass: First-order IIR channel smoothing
- motion_model: Kinematics f(x) and Jacobian df/dx
- measurement_models: IMU attitude and mocap pose observation models
- flight_detector: Take-off gate
- ekf: Extended Kalman Filter core
- state_estimator: Lock-guarded estimator (predict / update / initialize)
- data_loaders: IMU and mocap CSV loaders
- output_utils: Estimate and debug CSV writers
- main_loop: ReplayRunner for recorded logs

Usage:
    from mocap_ekf.config import load_config
    from mocap_ekf.state_estimator import StateEstimator

    estimator = StateEstimator(load_config("configs/default.yaml"))
    estimator.process_pose(pose)
    estimator.process_imu(imu)
    estimator.predict_at(t)
"""

__version__ = "1.0.0"

# Lazy module imports - access as mocap_ekf.config, mocap_ekf.ekf, etc.
import importlib

_SUBMODULES = {
    "config", "math_utils", "low_pass", "motion_model", "measurement_models",
    "flight_detector", "numerical_checks", "messages", "ekf",
    "state_estimator", "data_loaders", "output_utils", "main_loop",
}


def __getattr__(name):
    """Lazy module loading to avoid importing pandas for core-only users."""
    if name in _SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module 'mocap_ekf' has no attribute '{name}'")


def __dir__():
    return list(_SUBMODULES)


__all__ = list(_SUBMODULES)
