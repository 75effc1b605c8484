"""
Tests for blockmodel.mcmc (BlockMCMC)

  • ``virtual_move_dS`` returns the exact entropy change together with the
    log ratio of backward and forward proposal probabilities;
  • sweeps keep the aggregates consistent and report the entropy change;
  • the vacate and label constraints are honoured;
  • on a tiny graph the chain samples partitions with probability
    proportional to exp(-S).
"""
from __future__ import annotations

from collections import Counter
from itertools import product
from math import log

import numpy as np
import pytest

from blockmodel.block_data import BlockData
from blockmodel.entropy import EntropyArgs
from blockmodel.graph_data import GraphData
from blockmodel.mcmc import BlockMCMC
from blockmodel.utils.logger import CSVLogger


# ---------------------------------------------------------------------
# single moves
# ---------------------------------------------------------------------
@pytest.mark.parametrize("directed", [False, True])
@pytest.mark.parametrize("deg_corr", [False, True])
@pytest.mark.parametrize("c", [0.5, np.inf])
def test_virtual_move_dS(state_factory, directed, deg_corr, c):
    bd = state_factory(directed=directed, deg_corr=deg_corr, seed=7)
    ea = EntropyArgs()
    mcmc = BlockMCMC(bd, ea, c=c)
    rng = np.random.default_rng(8)
    for _ in range(40):
        v = int(rng.integers(bd.num_nodes))
        r = int(bd.b[v])
        s = mcmc.move_proposal(v, rng)
        dS, a = mcmc.virtual_move_dS(v, s)
        if s == r:
            assert (dS, a) == (0.0, 0.0)
            continue
        if np.isinf(c):
            assert a == 0.0
        else:
            pf = mcmc.change_proposer.get_move_prob(v, r, s, c)
            pb = mcmc.change_proposer.get_move_prob(v, s, r, c, reverse=True)
            assert np.isclose(a, log(pb) - log(pf))
        S0 = bd.entropy(ea)
        mcmc.perform_move(v, s)
        assert np.isclose(dS, bd.entropy(ea) - S0), f"move {v}: {r}->{s}"


@pytest.mark.parametrize("directed", [False, True])
@pytest.mark.parametrize("beta", [1.0, 0.0])
def test_sweep_accumulates_entropy_change(state_factory, directed, beta):
    bd = state_factory(directed=directed, eweight=True, seed=9)
    mcmc = BlockMCMC(bd, c=1.0)
    S0 = bd.entropy(mcmc.entropy_args)
    dS, nmoves = mcmc.sweep(np.random.default_rng(10), beta=beta, niter=5)
    assert nmoves > 0
    assert np.isclose(bd.entropy(mcmc.entropy_args), S0 + dS)
    assert bd.check_edge_counts() and bd.check_node_counts()


def test_sweep_decreases_entropy_at_low_temperature(state_factory):
    bd = state_factory(seed=11)
    mcmc = BlockMCMC(bd)
    dS, _ = mcmc.sweep(np.random.default_rng(12), beta=np.inf, niter=5)
    assert dS <= 0


def test_sweep_restricted_vertex_list(state_factory):
    bd = state_factory(seed=13)
    mcmc = BlockMCMC(bd, c=np.inf)
    b0 = bd.b.copy()
    mcmc.sweep(np.random.default_rng(14), beta=0.0, niter=10, vlist=[2, 3])
    others = np.setdiff1d(np.arange(bd.num_nodes), [2, 3])
    assert np.array_equal(bd.b[others], b0[others])


def test_sweep_logs_every_iteration(state_factory, tmp_path):
    bd = state_factory(seed=15)
    mcmc = BlockMCMC(bd)
    S0 = bd.entropy(mcmc.entropy_args)
    path = tmp_path / "sweep.csv"
    with CSVLogger(path) as logger:
        dS, _ = mcmc.sweep(np.random.default_rng(16), niter=3, logger=logger)
    rows = path.read_text().splitlines()
    assert len(rows) == 4
    last = rows[-1].split(",")
    assert last[0] == "3"
    assert np.isclose(float(last[2]), S0 + dS)


# ---------------------------------------------------------------------
# constraints
# ---------------------------------------------------------------------
def test_no_vacate_keeps_blocks_occupied(state_factory):
    bd = state_factory(seed=17, n_blocks=5)
    mcmc = BlockMCMC(bd, c=0.5, allow_vacate=False)
    rng = np.random.default_rng(18)
    B = bd.get_nonempty_B()
    for _ in range(10):
        mcmc.sweep(rng, beta=0.0)
        assert bd.get_nonempty_B() >= B
        B = bd.get_nonempty_B()


def test_no_vacate_proposal_for_last_vertex(toy_state):
    bd = toy_state
    bd.move_vertex(0, 0, 1)
    mcmc = BlockMCMC(bd, allow_vacate=False)
    rng = np.random.default_rng(19)
    assert all(mcmc.move_proposal(0, rng) == 1 for _ in range(50))


def test_label_barrier_is_respected(graph_factory):
    g = graph_factory(seed=20)
    b = np.arange(g.num_nodes) % 4
    bd = BlockData(g, b, B=4, bclabel=[0, 0, 1, 1])
    # without empty blocks every move has to stay within a label
    mcmc = BlockMCMC(bd, c=1.0, allow_vacate=False)
    mcmc.sweep(np.random.default_rng(21), beta=0.0, niter=20)
    assert not np.array_equal(bd.b, b)
    assert np.array_equal(bd.bclabel[bd.b], bd.bclabel[b])
    assert bd.check_edge_counts()


# ---------------------------------------------------------------------
# stationary distribution
# ---------------------------------------------------------------------
def test_samples_boltzmann_distribution():
    g = GraphData(3, [(0, 1), (1, 2), (1, 2)])
    bd = BlockData(g, [0, 0, 0], B=2)
    ea = EntropyArgs()

    # exact distribution over every labelled partition
    weights = {}
    for bs in product(range(2), repeat=3):
        state = BlockData(g, list(bs), B=2)
        weights[bs] = np.exp(-state.entropy(ea))
    Z = sum(weights.values())

    mcmc = BlockMCMC(bd, ea, c=1.0)
    rng = np.random.default_rng(22)
    n = 6000
    counts = Counter()
    for _ in range(n):
        mcmc.sweep(rng)
        counts[tuple(int(x) for x in bd.b)] += 1
    for bs, w in weights.items():
        assert abs(counts[bs] / n - w / Z) < 0.04, f"partition {bs}"
