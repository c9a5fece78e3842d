# Copyright (c) Syntropy Systems
"""Critical constants for the selection procedures.

Both Rinott's constant and GSP's eta are defined by expectations over two
independent chi-square variables. The expectations are evaluated with
Gauss-Legendre quadrature on the chi-square quantile scale, and the
constants are found with Brent's method.
"""
from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np
from scipy import optimize, stats

if TYPE_CHECKING:
    from collections.abc import Callable

QUADRATURE_NODES = 96
_MAX_BRACKET = 1e6


@lru_cache(maxsize=32)
def _chi2_quadrature(dof: int) -> tuple[np.ndarray, np.ndarray]:
    """Nodes and weights such that E[g(X)] ~ sum(w * g(x)) for X ~ chi2(dof)."""
    u, w = np.polynomial.legendre.leggauss(QUADRATURE_NODES)
    u = 0.5 * (u + 1.0)
    w = 0.5 * w
    x = stats.chi2.ppf(u, dof)
    return x, w


def _pair_scale(dof: int, factor: float) -> tuple[np.ndarray, np.ndarray]:
    """sqrt(factor * (1/X + 1/Y)) on the quadrature grid, plus the weights."""
    x, w = _chi2_quadrature(dof)
    inv = 1.0 / x
    return np.sqrt(factor * (inv[:, None] + inv[None, :])), w


def _bracketed_root(
    func: Callable[[float], float], lower: float = 0.0, upper: float = 1.0
) -> float:
    """Root of a monotone function whose sign changes somewhere above lower."""
    while func(upper) * func(lower) > 0:
        upper *= 2.0
        if upper > _MAX_BRACKET:
            msg = "Could not bracket critical value"
            raise ValueError(msg)
    return float(optimize.brentq(func, lower, upper, xtol=1e-10))


@lru_cache(maxsize=256)
def rinott(k: int, pstar: float, dof: int) -> float:
    """Rinott's constant h for k systems, confidence pstar, dof degrees of freedom.

    h solves E_Y[ E_X[ Phi(h / sqrt(dof * (1/X + 1/Y))) ]^(k-1) ] = pstar,
    with X and Y independent chi-square(dof).
    """
    if k < 2:
        msg = "Rinott's constant needs at least two systems"
        raise ValueError(msg)
    if not 0.0 < pstar < 1.0:
        msg = "pstar must be strictly between 0 and 1"
        raise ValueError(msg)
    if dof < 1:
        msg = "dof must be at least 1"
        raise ValueError(msg)

    scale, w = _pair_scale(dof, float(dof))

    def coverage(h: float) -> float:
        inner = w @ stats.norm.cdf(h / scale)
        return float(w @ inner ** (k - 1)) - pstar

    if coverage(0.0) >= 0.0:
        return 0.0
    return _bracketed_root(coverage)


@lru_cache(maxsize=256)
def find_eta(n1: int, alpha: float, k: int) -> float:
    """GSP screening constant eta.

    eta solves E[2 * (1 - Phi(eta * sqrt((n1-1) * (1/X + 1/Y))))]
    = 1 - (1-alpha)^(1/(k-1)), with X and Y independent chi-square(n1-1).
    """
    if n1 < 2:
        msg = "n1 must be at least 2"
        raise ValueError(msg)
    if k < 2:
        msg = "eta needs at least two systems"
        raise ValueError(msg)
    if not 0.0 < alpha < 1.0:
        msg = "alpha must be strictly between 0 and 1"
        raise ValueError(msg)

    dof = n1 - 1
    target = 1.0 - (1.0 - alpha) ** (1.0 / (k - 1))
    scale, w = _pair_scale(dof, float(dof))

    def tail(eta: float) -> float:
        return float(w @ (2.0 * stats.norm.sf(eta * scale)) @ w) - target

    return _bracketed_root(tail)


def kn_h_squared(pcs: float, k: int, n: int) -> float:
    """KN's h^2 = 2 * Q * (n - 1) for k systems after n replications each."""
    if k < 2:
        msg = "KN needs at least two systems"
        raise ValueError(msg)
    if n < 2:
        msg = "KN needs at least two replications per system"
        raise ValueError(msg)
    if not 0.0 < pcs < 1.0:
        msg = "pcs must be strictly between 0 and 1"
        raise ValueError(msg)
    q = 0.5 * ((2.0 * (1.0 - pcs) / (k - 1)) ** (-2.0 / (n - 1)) - 1.0)
    return 2.0 * q * (n - 1)
