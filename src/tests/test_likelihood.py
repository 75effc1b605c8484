"""
Tests for blockmodel.likelihood

Closed-form scalar terms are checked against scipy, integer-partition
counts against a brute-force recursion, and the covariate families against
numerical integration of the prior.
"""
from __future__ import annotations

from functools import lru_cache
from math import exp, lgamma, log

import numpy as np
import pytest
from scipy.integrate import quad
from scipy.special import gammaln

from blockmodel.likelihood import (
    WeightType,
    binomial_w_log_P,
    eterm_dense,
    geometric_w_log_P,
    lbinom,
    log_q,
    make_rec_log_P,
    parse_weight_type,
    poisson_w_log_P,
    positive_w_log_P,
    safelog,
    xlogx,
)


# ---- helpers ----
@lru_cache(maxsize=None)
def _partitions(n: int, k: int) -> int:
    """Number of partitions of n into at most k parts."""
    if n == 0:
        return 1
    if k == 0:
        return 0
    if k > n:
        return _partitions(n, n)
    return _partitions(n, k - 1) + _partitions(n - k, k)


# ---------------------------------------------------------------------
# elementary functions
# ---------------------------------------------------------------------
def test_xlogx_and_safelog():
    assert xlogx(0) == 0.0
    assert np.isclose(xlogx(3), 3 * log(3))
    assert safelog(0) == 0.0
    assert np.isclose(safelog(5), log(5))


@pytest.mark.parametrize("n,k", [(10, 3), (7, 1), (30, 15), (5, 4)])
def test_lbinom(n, k):
    expected = gammaln(n + 1) - gammaln(k + 1) - gammaln(n - k + 1)
    assert np.isclose(lbinom(n, k), expected)


def test_lbinom_edges():
    assert lbinom(5, 0) == 0.0
    assert lbinom(5, 5) == 0.0
    assert lbinom(0, 0) == 0.0


def test_eterm_dense():
    # simple graph between blocks of 3 and 4 vertices: C(12, 5)
    assert np.isclose(eterm_dense(0, 1, 5, 3, 4, False, False), lbinom(12, 5))
    # multigraph: multiset coefficient C(12 + 5 - 1, 5)
    assert np.isclose(eterm_dense(0, 1, 5, 3, 4, True, False), lbinom(16, 5))
    # diagonal of an undirected simple graph: 4 * 3 / 2 vertex pairs
    assert np.isclose(eterm_dense(1, 1, 2, 4, 4, False, False), lbinom(6, 2))
    assert eterm_dense(0, 1, 0, 3, 4, True, False) == 0.0


# ---------------------------------------------------------------------
# integer partitions
# ---------------------------------------------------------------------
@pytest.mark.parametrize("n,k", [(1, 1), (5, 2), (10, 3), (20, 20), (25, 7), (40, 100)])
def test_log_q_exact(n, k):
    assert np.isclose(log_q(n, k), log(_partitions(n, min(n, k))))


def test_log_q_edges():
    assert log_q(0, 3) == 0.0
    assert log_q(4, 0) == -np.inf


def test_log_q_approximation_regime():
    # beyond the exact table; monotone in k and close to log p(n) for k = n
    a = log_q(2000, 10)
    b = log_q(2000, 100)
    c = log_q(2000, 2000)
    assert np.isfinite(a) and a < b < c
    # Hardy-Ramanujan: log p(n) ~ pi sqrt(2n/3) - log(4 n sqrt(3))
    hr = np.pi * np.sqrt(2 * 2000 / 3) - log(4 * 2000 * np.sqrt(3))
    assert abs(c - hr) / hr < 0.01


# ---------------------------------------------------------------------
# covariate families
# ---------------------------------------------------------------------
def test_positive_w_log_P_single_observation():
    alpha, beta, x = 2.0, 1.5, 0.7
    # exponential likelihood integrated against a gamma prior on the rate
    integrand = lambda lam: (lam * exp(-lam * x)
                             * exp(alpha * log(beta) - lgamma(alpha))
                             * lam ** (alpha - 1) * exp(-beta * lam))
    val, _ = quad(integrand, 0, np.inf)
    assert np.isclose(positive_w_log_P(1, x, alpha, beta), log(val))


def test_poisson_w_log_P():
    alpha, beta = 2.0, 1.5
    xs = [1, 3]
    integrand = lambda lam: (np.prod([lam ** x * exp(-lam) for x in xs])
                             * exp(alpha * log(beta) - lgamma(alpha))
                             * lam ** (alpha - 1) * exp(-beta * lam))
    val, _ = quad(integrand, 0, np.inf)
    # 1 / prod(x!) is left out of both the integrand and the block-pair term
    assert np.isclose(poisson_w_log_P(len(xs), sum(xs), alpha, beta), log(val))


def test_geometric_w_log_P():
    alpha, beta = 1.0, 2.0
    xs = [0, 2]
    integrand = lambda p: (np.prod([p * (1 - p) ** x for x in xs])
                           * p ** (alpha - 1) * (1 - p) ** (beta - 1)
                           / exp(lgamma(alpha) + lgamma(beta) - lgamma(alpha + beta)))
    val, _ = quad(integrand, 0, 1)
    assert np.isclose(geometric_w_log_P(len(xs), sum(xs), alpha, beta), log(val))


def test_binomial_w_log_P():
    n, alpha, beta = 4, 1.0, 1.0
    xs = [1, 3]
    integrand = lambda p: np.prod([p ** x * (1 - p) ** (n - x) for x in xs])
    val, _ = quad(integrand, 0, 1)
    assert np.isclose(binomial_w_log_P(len(xs), sum(xs), n, alpha, beta), log(val))


def test_empty_pair_terms_vanish():
    assert positive_w_log_P(0, 0.0, 1.0, 1.0) == 0.0
    assert poisson_w_log_P(0, 0.0, 1.0, 1.0) == 0.0


def test_parse_weight_type():
    assert parse_weight_type("real-normal") == WeightType.REAL_NORMAL
    assert parse_weight_type("Discrete-Poisson") == WeightType.DISCRETE_POISSON
    assert parse_weight_type(WeightType.DELTA_T) == WeightType.DELTA_T
    with pytest.raises(ValueError):
        parse_weight_type("gaussian")


def test_make_rec_log_P():
    assert make_rec_log_P(WeightType.NONE, []) is None
    assert make_rec_log_P(WeightType.DELTA_T, [1.0, 1.0]) is None
    f = make_rec_log_P(WeightType.REAL_EXPONENTIAL, [1.0, 2.0])
    assert np.isclose(f(3, 1.5, 0.0), positive_w_log_P(3, 1.5, 1.0, 2.0))
    with pytest.raises(ValueError):
        make_rec_log_P(WeightType.DISCRETE_BINOMIAL, [1.0, 1.0])
