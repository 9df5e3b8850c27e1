#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Numerical Validation and Tripwire Module
=========================================

Catches NaN/inf before it reaches the shared filter state and dumps
diagnostic information when it is detected.
"""

import numpy as np


def assert_finite(name, M, t=None, extra_info=None, raise_on_fail=False, quiet=False):
    """
    Tripwire: Check matrix/vector for inf/nan and dump diagnostics if found.

    Parameters:
    -----------
    name : str
        Descriptive name of the quantity being checked
    M : np.ndarray
        Matrix or vector to validate
    t : float, optional
        Timestamp (for logging context)
    extra_info : dict, optional
        Additional diagnostic information to dump
    raise_on_fail : bool
        If True, raises ValueError on failure. If False, only prints warning.
    quiet : bool
        Suppress the diagnostic dump

    Returns:
    --------
    bool : True if finite, False if inf/nan detected
    """
    if M is None:
        if not quiet:
            print(f"[TRIPWIRE] {name}: is None!")
        return False

    M = np.asarray(M)
    if np.all(np.isfinite(M)):
        return True

    if not quiet:
        print(f"\n{'='*70}")
        print(f"[TRIPWIRE] NaN/inf DETECTED in {name}")
        print(f"{'='*70}")
        if t is not None:
            print(f"Timestamp: {t:.6f}")
        print(f"Shape: {M.shape}")

        if M.size <= 100:
            print(f"\nFull matrix:\n{M}")

        if np.any(np.isnan(M)):
            print(f"NaN locations (first 10): {np.argwhere(np.isnan(M))[:10].tolist()}")
        if np.any(np.isinf(M)):
            print(f"Inf locations (first 10): {np.argwhere(np.isinf(M))[:10].tolist()}")

        if extra_info:
            print(f"\nAdditional context:")
            for key, val in extra_info.items():
                if isinstance(val, np.ndarray) and val.size > 10:
                    print(f"  {key}: shape={val.shape}, norm={np.linalg.norm(val):.6e}")
                elif isinstance(val, np.ndarray):
                    print(f"  {key}: {val.ravel()}")
                else:
                    print(f"  {key}: {val}")
        print(f"{'='*70}\n")

    if raise_on_fail:
        raise ValueError(f"NaN/inf detected in {name}")
    return False


def check_innovation_covariance(S, singular_tol=1e-12, max_condition=1e12):
    """
    Decide whether S = R + C P C^T can be safely inverted.

    Parameters:
    -----------
    S : np.ndarray
        Innovation covariance (m x m)
    singular_tol : float
        Smallest singular value allowed
    max_condition : float
        Largest condition number allowed

    Returns:
    --------
    ok : bool
    reason : str
        '' if ok, otherwise a short description
    """
    if not np.all(np.isfinite(S)):
        return False, "S not finite"

    sv = np.linalg.svd(S, compute_uv=False)
    s_max, s_min = float(sv[0]), float(sv[-1])
    if s_min <= singular_tol:
        return False, f"sigma_min={s_min:.3e} <= {singular_tol:.1e}"

    cond = s_max / s_min
    if cond > max_condition:
        return False, f"cond(S)={cond:.3e} > {max_condition:.1e}"
    return True, ""
