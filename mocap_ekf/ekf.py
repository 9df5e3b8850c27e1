#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Extended Kalman Filter Module

Continuous-discrete EKF core: Euler-integrated prediction and the standard
(non-Joseph) Kalman correction, with rollback on numerical faults.
"""

import sys
from copy import deepcopy
from math import log, exp, sqrt
from typing import Callable, Tuple

import numpy as np
from numpy import dot, zeros, eye
import scipy.linalg as linalg
from filterpy.stats import logpdf
from filterpy.common import pretty_str

from .numerical_checks import assert_finite, check_innovation_covariance


def ensure_covariance_valid(P: np.ndarray, label: str = "",
                            symmetrize: bool = True,
                            verbose: bool = False) -> np.ndarray:
    """
    Remove floating-point asymmetry from a covariance matrix.

    Args:
        P: Covariance matrix (n×n)
        label: Debug label for logging
        symmetrize: Force symmetry
        verbose: Report large asymmetry

    Returns:
        P_valid: Symmetrized covariance matrix
    """
    if not symmetrize:
        return P
    if verbose:
        asymmetry = np.linalg.norm(P - P.T, ord='fro')
        if asymmetry > 1e-6:
            print(f"[COV_CHECK] {label}: Asymmetry detected (||P - P^T|| = {asymmetry:.3e}), symmetrizing")
    return (P + P.T) / 2.0


class ExtendedKalmanFilter:
    """
    EKF engine holding the state estimate and its covariance.

    Prediction (forward Euler over dt):
        x <- x + dt * f(x)
        A  = df/dx evaluated at the advanced x
        P <- P + dt * (A P + P A^T + Q)

    Correction:
        S = R + C P C^T
        L = P C^T S^-1
        P <- (I - L C) P
        x <- x + L (z - h(x))

    Both steps are computed on copies and only committed when every result
    is finite, so a fault never leaves NaN/inf in x or P.
    """

    def __init__(self, dim_x: int, x0=None, P0=None, Q=None,
                 singular_tol: float = 1e-12, max_condition: float = 1e12,
                 symmetrize: bool = False, verbose: bool = False):
        """
        Initialize EKF.

        Args:
            dim_x: State dimension
            x0: Initial state (dim_x,)
            P0: Initial covariance (dim_x x dim_x)
            Q: Continuous process noise (dim_x x dim_x)
            singular_tol: Smallest singular value accepted for S
            max_condition: Largest condition number accepted for S
            symmetrize: Symmetrize P after each correction
        """
        self.dim_x = dim_x

        self.x = zeros(dim_x) if x0 is None else np.array(x0, dtype=float).reshape(dim_x)
        self.P = eye(dim_x) if P0 is None else np.array(P0, dtype=float)
        self.Q = zeros((dim_x, dim_x)) if Q is None else np.array(Q, dtype=float)

        self.singular_tol = singular_tol
        self.max_condition = max_condition
        self.symmetrize = symmetrize
        self.verbose = verbose

        self._I = np.eye(dim_x)

        self.z = None
        self.y = None
        self.S = None
        self.SI = None
        self.K = None
        self.F = np.eye(dim_x)

        self._log_likelihood = log(sys.float_info.min)
        self._likelihood = sys.float_info.min
        self._mahalanobis = None

        self.x_prior = self.x.copy()
        self.P_prior = self.P.copy()
        self.x_post = self.x.copy()
        self.P_post = self.P.copy()

    def predict(self, dt: float, fx: Callable, FJacobian: Callable,
                args=(), t=None) -> Tuple[bool, str]:
        """
        Propagate x and P over dt.

        Returns:
            (ok, reason) - reason is '' on success
        """
        if not isinstance(args, tuple):
            args = (args,)
        if not np.isfinite(dt) or dt <= 0.0:
            return False, "bad_dt"

        x = self.x + dt * fx(self.x, *args)
        A = FJacobian(x, *args)
        P = self.P + dt * (dot(A, self.P) + dot(self.P, A.T) + self.Q)

        if not (assert_finite("x_pred", x, t=t, quiet=not self.verbose)
                and assert_finite("P_pred", P, t=t, quiet=not self.verbose,
                                  extra_info={"dt": dt, "A": A})):
            return False, "non_finite"

        self.F = A
        self.x = x
        self.P = P
        self.x_prior = self.x.copy()
        self.P_prior = self.P.copy()
        return True, ""

    def update(self, z, HJacobian: Callable, Hx: Callable, R,
               args=(), hx_args=(), t=None) -> Tuple[bool, str]:
        """
        Kalman correction with measurement z.

        Returns:
            (ok, reason) - reason is '' on success, otherwise
            'singular_innovation' or 'non_finite'; x and P are untouched
            on failure.
        """
        if not isinstance(args, tuple):
            args = (args,)
        if not isinstance(hx_args, tuple):
            hx_args = (hx_args,)

        z = np.asarray(z, dtype=float).ravel()
        if not assert_finite("z", z, t=t, quiet=not self.verbose):
            return False, "non_finite"

        H = HJacobian(self.x, *args)
        PHT = dot(self.P, H.T)
        S = dot(H, PHT) + R

        ok, why = check_innovation_covariance(S, self.singular_tol, self.max_condition)
        if not ok:
            if self.verbose:
                print(f"[EKF] WARNING: Singular S matrix ({why}), rejecting update")
            return False, "singular_innovation"
        try:
            SI = linalg.inv(S)
        except (np.linalg.LinAlgError, ValueError):
            if self.verbose:
                print("[EKF] WARNING: S inversion failed, rejecting update")
            return False, "singular_innovation"

        K = dot(PHT, SI)
        y = z - Hx(self.x, *hx_args)
        P = dot(self._I - dot(K, H), self.P)
        x = self.x + dot(K, y)

        if not (assert_finite("x_upd", x, t=t, quiet=not self.verbose)
                and assert_finite("P_upd", P, t=t, quiet=not self.verbose)):
            return False, "non_finite"

        self.x = x
        self.P = ensure_covariance_valid(P, label="EKF-Update",
                                         symmetrize=self.symmetrize,
                                         verbose=self.verbose)
        self.z = deepcopy(z)
        self.y = y
        self.S = S
        self.SI = SI
        self.K = K

        self._log_likelihood = None
        self._likelihood = None
        self._mahalanobis = None

        self.x_post = self.x.copy()
        self.P_post = self.P.copy()
        return True, ""

    @property
    def log_likelihood(self):
        """log-likelihood of the last measurement."""
        if self._log_likelihood is None:
            self._log_likelihood = logpdf(x=self.y, cov=self.S)
        return self._log_likelihood

    @property
    def likelihood(self):
        """Computed from the log-likelihood."""
        if self._likelihood is None:
            self._likelihood = exp(self.log_likelihood)
            if self._likelihood == 0:
                self._likelihood = sys.float_info.min
        return self._likelihood

    @property
    def mahalanobis(self):
        """Mahalanobis distance of innovation."""
        if self._mahalanobis is None:
            if self.y is None:
                return None
            self._mahalanobis = sqrt(float(dot(dot(self.y.T, self.SI), self.y)))
        return self._mahalanobis

    def __repr__(self):
        return '\n'.join([
            'ExtendedKalmanFilter object',
            pretty_str('x', self.x),
            pretty_str('P', self.P),
            pretty_str('x_prior', self.x_prior),
            pretty_str('P_prior', self.P_prior),
            pretty_str('F', self.F),
            pretty_str('Q', self.Q),
            pretty_str('K', self.K),
            pretty_str('y', self.y),
            pretty_str('S', self.S),
            pretty_str('mahalanobis', self.mahalanobis),
        ])
