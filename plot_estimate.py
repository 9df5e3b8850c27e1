#!/usr/bin/env python3
"""
Plot an EKF estimate.csv: position, attitude, body velocity and covariance
diagonals against time.
"""

import argparse
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def load_estimate(csv_path):
    print(f"Loading estimate from: {csv_path}")
    df = pd.read_csv(csv_path)
    print(f"Loaded {len(df)} estimates")
    if len(df) > 0:
        print(f"Time range: {df['t'].min():.2f}s to {df['t'].max():.2f}s")
    return df


def plot_estimate(df, output_path=None):
    """
    Four-panel overview of an estimate run.

    Parameters:
    -----------
    df : pandas.DataFrame
        Contents of estimate.csv
    output_path : str or None
        Save figure here if given
    """
    t = df['t'].values - df['t'].values[0]
    fig, axes = plt.subplots(2, 2, figsize=(16, 10), sharex=True)

    ax = axes[0, 0]
    for col, label in (('pn', 'North'), ('pe', 'East'), ('pd', 'Down')):
        ax.plot(t, df[col].values, label=label)
    ax.set_ylabel('Position NED (m)')
    ax.set_title('Position')
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[0, 1]
    for col, label in (('phi', 'Roll'), ('theta', 'Pitch'), ('psi', 'Yaw')):
        ax.plot(t, np.degrees(df[col].values), label=label)
    ax.set_ylabel('Angle (deg)')
    ax.set_title('Attitude')
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1, 0]
    for col in ('u', 'v', 'w'):
        ax.plot(t, df[col].values, label=col)
    ax.set_ylabel('Body velocity (m/s)')
    ax.set_xlabel('Time (s)')
    ax.set_title('Velocity')
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1, 1]
    for col in ('P_pn', 'P_pe', 'P_pd', 'P_u', 'P_v', 'P_w', 'P_phi', 'P_theta', 'P_psi'):
        ax.semilogy(t, np.maximum(df[col].values, 1e-12), label=col)
    ax.set_ylabel('Variance')
    ax.set_xlabel('Time (s)')
    ax.set_title('Covariance diagonal')
    ax.legend(ncol=3, fontsize=8)
    ax.grid(True, alpha=0.3)

    if 'flying' in df.columns and df['flying'].any():
        t_fly = t[np.argmax(df['flying'].values > 0)]
        for ax in axes.ravel():
            ax.axvline(t_fly, color='k', linestyle='--', linewidth=0.8)

    fig.tight_layout()
    if output_path:
        fig.savefig(output_path, dpi=150)
        print(f"Saved figure: {output_path}")
    return fig


def main():
    parser = argparse.ArgumentParser(description='Plot EKF estimate.csv')
    parser.add_argument('csv', type=str, help='Path to estimate.csv')
    parser.add_argument('--output', type=str, default=None,
                        help='Image path (default: next to the CSV)')
    args = parser.parse_args()

    df = load_estimate(args.csv)
    output = args.output or str(Path(args.csv).with_suffix('.png'))
    plot_estimate(df, output)


if __name__ == '__main__':
    main()
