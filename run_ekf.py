#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
EKF Replay Entry Point (run_ekf.py)

Runs the motion-capture / IMU EKF over recorded logs using the mocap_ekf
package.

Configuration Model:
--------------------
    YAML config holds every filter setting (rates, alpha, x0, P0, Q0,
    R_IMU, R_Mocap). CLI provides only paths and runtime flags.

Usage:
    python run_ekf.py --config configs/default.yaml \\
        --imu path/to/imu.csv \\
        --mocap path/to/mocap.csv \\
        --output output_dir/

    # With debug CSVs:
    python run_ekf.py --config configs/default.yaml --imu imu.csv \\
        --mocap mocap.csv --output out/ --save_debug_data
"""

import argparse
import os
import sys


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Motion-capture / IMU EKF - replay of recorded logs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Input formats:
  IMU CSV:   t,ori_x,ori_y,ori_z,ori_w,ang_x,ang_y,ang_z,lin_x,lin_y,lin_z
  Mocap CSV: t,tx,ty,tz,qx,qy,qz,qw   (NWU world frame)

Outputs:
  estimate.csv  - published estimates at publish_rate
  flying.csv    - one row at take-off
        """
    )
    parser.add_argument("--imu", type=str, required=True,
                        help="Path to IMU CSV file")
    parser.add_argument("--mocap", type=str, required=True,
                        help="Path to motion-capture CSV file")
    parser.add_argument("--output", type=str, required=True,
                        help="Output directory")
    parser.add_argument("--config", type=str, default="configs/default.yaml",
                        help="Path to YAML config file")
    parser.add_argument("--save_debug_data", action="store_true",
                        help="Save debug CSV files (debug_*.csv)")
    return parser.parse_args(argv)


def main(argv=None):
    """Load YAML config and replay the logs."""
    args = parse_args(argv)

    from mocap_ekf import __version__
    from mocap_ekf.config import load_config, ConfigError
    from mocap_ekf.main_loop import ReplayRunner

    print("=" * 70)
    print(f"Motion-capture / IMU EKF (mocap_ekf {__version__})")
    print("=" * 70)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ConfigError) as e:
        print(f"[CONFIG] ERROR: {e}")
        return 2

    print(f"  Config file: {args.config}")
    for key, val in config.summary().items():
        print(f"  {key}: {val}")
    print(f"  IMU path: {args.imu}")
    print(f"  Mocap path: {args.mocap}")
    print(f"  Output dir: {args.output}")
    print("=" * 70)

    os.makedirs(args.output, exist_ok=True)
    with open(os.path.join(args.output, "cli_command.txt"), "w") as f:
        f.write(f"# Config: {args.config}\n")
        f.write(" ".join(sys.argv) + "\n")

    runner = ReplayRunner(config, imu_path=args.imu, mocap_path=args.mocap,
                          output_dir=args.output,
                          save_debug_data=args.save_debug_data)
    runner.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
