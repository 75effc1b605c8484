"""
Closed-form terms of the microcanonical SBM description length and the
log-likelihoods of the edge-covariate families.

All scalar terms are compiled with numba, since they are evaluated once per
touched block pair on every proposed move.
"""
from typing import Callable, Dict, Literal, Optional, Sequence
from enum import IntEnum
from math import lgamma, log, log1p, exp, sqrt, pi

import numpy as np
from numba import jit
from scipy.special import spence

#### aliases ######
WeightFamily = Literal[
    "none",
    "real-exponential",
    "real-normal",
    "discrete-geometric",
    "discrete-poisson",
    "discrete-binomial",
    "delta-t",
]

RecLogP = Callable[[int, float, float], float]


class WeightType(IntEnum):
    NONE = 0
    REAL_EXPONENTIAL = 1
    REAL_NORMAL = 2
    DISCRETE_GEOMETRIC = 3
    DISCRETE_POISSON = 4
    DISCRETE_BINOMIAL = 5
    DELTA_T = 6


WEIGHT_TYPES: Dict[str, WeightType] = {
    "none": WeightType.NONE,
    "real-exponential": WeightType.REAL_EXPONENTIAL,
    "real-normal": WeightType.REAL_NORMAL,
    "discrete-geometric": WeightType.DISCRETE_GEOMETRIC,
    "discrete-poisson": WeightType.DISCRETE_POISSON,
    "discrete-binomial": WeightType.DISCRETE_BINOMIAL,
    "delta-t": WeightType.DELTA_T,
}

# number of hyperparameters expected by each family
N_WEIGHT_PARAMS: Dict[WeightType, int] = {
    WeightType.NONE: 0,
    WeightType.REAL_EXPONENTIAL: 2,   # alpha, beta
    WeightType.REAL_NORMAL: 4,        # m0, k0, v0, nu0
    WeightType.DISCRETE_GEOMETRIC: 2, # alpha, beta
    WeightType.DISCRETE_POISSON: 2,   # alpha, beta
    WeightType.DISCRETE_BINOMIAL: 3,  # n, alpha, beta
    WeightType.DELTA_T: 2,            # alpha, beta
}


def parse_weight_type(tag) -> WeightType:
    """
    Map a family tag (string or WeightType) to a WeightType.
    """
    if isinstance(tag, WeightType):
        return tag
    if isinstance(tag, str) and tag.lower() in WEIGHT_TYPES:
        return WEIGHT_TYPES[tag.lower()]
    raise ValueError(f"Unknown edge covariate family '{tag}'. "
                     f"Expected one of {sorted(WEIGHT_TYPES)}.")


# ────────────────────────────────────────────────────────────────────
# elementary functions
# ────────────────────────────────────────────────────────────────────
@jit(nopython=True, cache=True)
def xlogx(x) -> float:
    if x == 0:
        return 0.0
    return x * log(x)


@jit(nopython=True, cache=True)
def safelog(x) -> float:
    if x == 0:
        return 0.0
    return log(x)


@jit(nopython=True, cache=True)
def lbinom(n, k) -> float:
    """log of the binomial coefficient; zero outside 0 < k < n."""
    if n <= 0 or k <= 0 or k >= n:
        return 0.0
    return (lgamma(n + 1) - lgamma(k + 1)) - lgamma(n - k + 1)


@jit(nopython=True, cache=True)
def lbeta(a, b) -> float:
    return (lgamma(a) + lgamma(b)) - lgamma(a + b)


# ────────────────────────────────────────────────────────────────────
# adjacency terms
# ────────────────────────────────────────────────────────────────────
@jit(nopython=True, cache=True)
def eterm(r, s, mrs, directed) -> float:
    """Stirling-approximated edge term for block pair (r, s)."""
    if not directed and r == s:
        return -xlogx(2 * mrs) / 2
    return -xlogx(mrs)


@jit(nopython=True, cache=True)
def vterm(mrp, mrm, wr, deg_corr, directed) -> float:
    """Stirling-approximated block term."""
    one = 1.0 if directed else 0.5
    if deg_corr:
        return one * (xlogx(mrm) + xlogx(mrp))
    return one * (mrm * safelog(wr) + mrp * safelog(wr))


@jit(nopython=True, cache=True)
def eterm_exact(r, s, mrs, directed) -> float:
    val = lgamma(mrs + 1)
    if directed or r != s:
        return -val
    return -val - mrs * log(2)


@jit(nopython=True, cache=True)
def vterm_exact(mrp, mrm, wr, deg_corr, directed) -> float:
    if deg_corr:
        if directed:
            return lgamma(mrp + 1) + lgamma(mrm + 1)
        return lgamma(mrp + 1)
    if directed:
        return (mrp + mrm) * safelog(wr)
    return mrp * safelog(wr)


@jit(nopython=True, cache=True)
def eterm_dense(r, s, ers, wr_r, wr_s, multigraph, directed) -> float:
    """Edge term of the dense (binomial) ensemble."""
    if ers == 0:
        return 0.0

    # floats, products of block sizes overflow quickly
    if r != s or directed:
        nrns = float(wr_r) * float(wr_s)
    else:
        if multigraph:
            nrns = (float(wr_r) * (wr_r + 1)) / 2
        else:
            nrns = (float(wr_r) * (wr_r - 1)) / 2

    if multigraph:
        return lbinom(nrns + ers - 1, ers)
    return lbinom(nrns, ers)


# ────────────────────────────────────────────────────────────────────
# edge covariate families
# ────────────────────────────────────────────────────────────────────
@jit(nopython=True, cache=True)
def positive_w_log_P(N, x, alpha, beta) -> float:
    """Exponential weights with a gamma prior on the rate."""
    if N == 0:
        return 0.0
    return (lgamma(N + alpha) - lgamma(alpha) + alpha * log(beta)
            - (alpha + N) * log(beta + x))


@jit(nopython=True, cache=True)
def signed_w_log_P(N, x, v, m0, k0, v0, nu0) -> float:
    """
    Normal weights with a normal-inverse-chi-squared prior.
    ``v`` is the sum of squared deviations from the block-pair mean.
    """
    if N == 0:
        return 0.0
    k_n = k0 + N
    nu_n = nu0 + N
    v_n = (v0 * nu0 + v + ((N * k0) / (k0 + N)) * (m0 - x / N) ** 2) / nu_n
    return (lgamma(nu_n / 2.) - lgamma(nu0 / 2.) + (log(k0) - log(k_n)) / 2.
            + (nu0 / 2.) * log(nu0 * v0) - (nu_n / 2.) * log(nu_n * v_n)
            - (N / 2.) * log(pi))


@jit(nopython=True, cache=True)
def geometric_w_log_P(N, x, alpha, beta) -> float:
    if N == 0:
        return 0.0
    return lbeta(N + alpha, x + beta) - lbeta(alpha, beta)


@jit(nopython=True, cache=True)
def binomial_w_log_P(N, x, n, alpha, beta) -> float:
    if N == 0:
        return 0.0
    return lbeta(x + alpha, N * n - x + beta) - lbeta(alpha, beta)


@jit(nopython=True, cache=True)
def poisson_w_log_P(N, x, alpha, beta) -> float:
    if N == 0:
        return 0.0
    return (lgamma(x + alpha) - (x + alpha) * log(N + beta) - lgamma(alpha)
            + alpha * log(beta))


def make_rec_log_P(wtype: WeightType, params: Sequence[float]) -> Optional[RecLogP]:
    """
    Bind the hyperparameters of one covariate channel once, returning a
    callable ``f(N, x, x2)`` with the block-pair log-likelihood, where
    ``x2`` is the sum of squares (only used by the normal family).

    Returns None for families without a block-pair term.
    """
    wp = [float(p) for p in params]
    if len(wp) < N_WEIGHT_PARAMS[wtype]:
        raise ValueError(f"Family {wtype.name} expects {N_WEIGHT_PARAMS[wtype]} "
                         f"hyperparameters, got {len(wp)}.")

    if wtype == WeightType.REAL_EXPONENTIAL:
        return lambda N, x, x2: positive_w_log_P(N, x, wp[0], wp[1])
    if wtype == WeightType.DISCRETE_GEOMETRIC:
        return lambda N, x, x2: geometric_w_log_P(N, x, wp[0], wp[1])
    if wtype == WeightType.DISCRETE_POISSON:
        return lambda N, x, x2: poisson_w_log_P(N, x, wp[0], wp[1])
    if wtype == WeightType.DISCRETE_BINOMIAL:
        return lambda N, x, x2: binomial_w_log_P(N, x, wp[0], wp[1], wp[2])
    if wtype == WeightType.REAL_NORMAL:
        def _normal(N, x, x2):
            sigma = x2 - x * (x / N) if N > 0 else 0.0
            return signed_w_log_P(N, x, sigma, wp[0], wp[1], wp[2], wp[3])
        return _normal
    return None


# ────────────────────────────────────────────────────────────────────
# integer partitions q(n, k): partitions of n into at most k parts
# ────────────────────────────────────────────────────────────────────
_Q_CACHE_MAX_N = 1000
_q_cache: Optional[np.ndarray] = None


@jit(nopython=True, cache=True)
def _build_log_q_table(n_max: int) -> np.ndarray:
    q = np.zeros((n_max + 1, n_max + 1))
    q[0, :] = 1.0
    for k in range(1, n_max + 1):
        for n in range(1, n_max + 1):
            q[n, k] = q[n, k - 1]
            if n >= k:
                q[n, k] += q[n - k, k]
    return np.log(q)


def init_q_cache(max_n: int = _Q_CACHE_MAX_N) -> None:
    """Tabulate log q(n, k) for n, k <= max_n."""
    global _q_cache
    _q_cache = _build_log_q_table(int(max_n))


def _get_v(u: float, epsilon: float = 1e-8) -> float:
    v = u
    delta = 1.0
    while delta > epsilon:
        n_v = u * sqrt(float(spence(exp(-v))))
        delta = abs(n_v - v)
        v = n_v
    return v


def log_q_approx_small(n: int, k: int) -> float:
    return lbinom(n - 1, k - 1) - lgamma(k + 1)


def log_q_approx(n: int, k: int) -> float:
    if k < n ** (1 / 4.):
        return log_q_approx_small(n, k)
    u = k / sqrt(n)
    v = _get_v(u)
    lf = (log(v) - log1p(-exp(-v) * (1 + u * u / 2)) / 2 - log(2) * 3 / 2.
          - log(u) - log(pi))
    g = 2 * v / u - u * log1p(-exp(-v))
    return lf - log(n) + sqrt(n) * g


def log_q(n: int, k: int) -> float:
    """log of the number of partitions of n into at most k parts."""
    n, k = int(n), int(k)
    if n <= 0:
        return 0.0
    if k <= 0:
        return -np.inf
    k = min(n, k)
    if _q_cache is None:
        init_q_cache()
    if n < _q_cache.shape[0]:
        return float(_q_cache[n, k])
    return log_q_approx(n, k)
