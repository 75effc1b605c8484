"""
Unit-tests for blockmodel.block_data (BlockData)

Covers the bookkeeping invariants of the partition state: block weights,
block-pair counts, block degrees and the empty/occupied registries stay
equal to a from-scratch recount under single, batch and merge mutations.
"""
from __future__ import annotations

import itertools

import numpy as np
import pytest

from blockmodel.block_data import BlockData
from blockmodel.graph_data import GraphData


# ---- helpers ----
def _assert_consistent(bd: BlockData) -> None:
    assert bd.check_edge_counts(), "block-pair counts differ from a recount"
    assert bd.check_node_counts(), "block weights / registries differ from a recount"
    assert (bd.wr >= 0).all()
    assert (bd.mrp >= 0).all() and (bd.mrm >= 0).all()
    assert (bd.bg.mrs[bd.bg.edges()] > 0).all()
    for r in range(bd.B):
        in_empty = r in bd.empty_blocks
        in_cand = r in bd.candidate_blocks
        assert in_empty != in_cand, f"block {r} must be in exactly one registry"
        assert bd.is_empty(r) == in_empty
        assert in_cand == (bd.wr[r] > 0)


def _random_moves(bd: BlockData, n: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    for _ in range(n):
        v = int(rng.integers(bd.num_nodes))
        nr = int(rng.integers(bd.B))
        if bd.allow_move(int(bd.b[v]), nr):
            yield v, int(bd.b[v]), nr


# ---------------------------------------------------------------------
# construction
# ---------------------------------------------------------------------
@pytest.mark.parametrize("directed", [False, True])
@pytest.mark.parametrize("use_hash", [True, False])
def test_construction_matches_recount(state_factory, directed, use_hash):
    bd = state_factory(directed=directed, eweight=True, use_hash=use_hash)
    _assert_consistent(bd)
    assert bd.get_nonempty_B() == 4
    assert sorted(bd.empty_blocks) == [4, 5]


def test_block_out_of_range_raises(graph_factory):
    g = graph_factory()
    with pytest.raises(ValueError):
        BlockData(g, np.full(g.num_nodes, 3), B=3)
    bd = BlockData(g, np.zeros(g.num_nodes, dtype=int), B=3)
    with pytest.raises(ValueError):
        bd.move_vertex(0, 0, 3)


def test_partition_length_mismatch_raises(graph_factory):
    g = graph_factory()
    with pytest.raises(ValueError):
        BlockData(g, [0, 1], B=2)


def test_dict_partition(toy_state):
    g = toy_state.graph_data
    bd = BlockData(g, {0: 1, 1: 0, 2: 0, 3: 1, 4: 1}, B=2)
    assert list(bd.b) == [1, 0, 0, 1, 1]
    _assert_consistent(bd)


# ---------------------------------------------------------------------
# single-vertex moves
# ---------------------------------------------------------------------
def test_split_vertex_into_singleton(toy_state):
    bd = toy_state
    assert list(bd.wr) == [5, 0]
    assert bd.empty_blocks == [1]

    bd.move_vertex(0, 0, 1)

    assert list(bd.wr) == [4, 1]
    assert bd.bg.get_mrs(0, 1) == 3          # degree of vertex 0
    assert bd.bg.get_mrs(1, 0) == 3
    assert bd.bg.get_mrs(0, 0) == 3
    assert bd.bg.get_mrs(1, 1) == 0
    assert list(bd.mrp) == [9, 3]
    assert bd.empty_blocks == [] and sorted(bd.candidate_blocks) == [0, 1]
    _assert_consistent(bd)


@pytest.mark.parametrize("directed", [False, True])
@pytest.mark.parametrize("deg_corr", [False, True])
def test_random_moves_keep_invariants(state_factory, directed, deg_corr):
    bd = state_factory(directed=directed, deg_corr=deg_corr, eweight=True, vweight=True)
    for v, r, nr in _random_moves(bd, 200, seed=1):
        bd.move_vertex(v, r, nr)
        assert bd.check_node_counts()
    _assert_consistent(bd)


@pytest.mark.parametrize("directed", [False, True])
def test_move_round_trip_restores_everything(state_factory, directed):
    bd = state_factory(directed=directed, deg_corr=True, eweight=True)
    for v, r, nr in itertools.islice(_random_moves(bd, 100, seed=2), 25):
        S0 = bd.entropy()
        before = (bd.wr.copy(), bd.mrp.copy(), bd.mrm.copy(), bd.get_block_count_matrix())
        bd.move_vertex(v, r, nr)
        bd.move_vertex(v, nr, r)
        after = (bd.wr, bd.mrp, bd.mrm, bd.get_block_count_matrix())
        for a, b in zip(before, after):
            assert np.array_equal(a, b)
        assert np.isclose(bd.entropy(), S0)


def test_null_move_is_noop(toy_state):
    bd = toy_state
    M = bd.get_block_count_matrix()
    bd.move_vertex(2, 0, 0)
    assert np.array_equal(M, bd.get_block_count_matrix())
    assert bd.virtual_move(2, 0, 0) == 0


def test_remove_then_add_vertex(state_factory):
    bd = state_factory(eweight=True)
    r = int(bd.b[3])
    bd.remove_vertex(3)
    assert bd.wr[r] == np.sum(bd.b == r) - 1
    bd.add_vertex(3, 5)
    assert bd.b[3] == 5
    _assert_consistent(bd)


def test_move_vertex_to_and_move_vertices(state_factory):
    bd = state_factory()
    bd.move_vertex_to(0, 5)
    assert bd.b[0] == 5
    bd.move_vertices([1, 2], [4, 4])
    assert bd.b[1] == 4 and bd.b[2] == 4
    _assert_consistent(bd)
    with pytest.raises(ValueError):
        bd.move_vertices([1, 2], [0])


def test_is_last_and_virtual_remove_size(toy_state):
    bd = toy_state
    bd.move_vertex(4, 0, 1)
    assert bd.is_last(4)
    assert not bd.is_last(0)
    assert bd.virtual_remove_size(0) == 3
    assert bd.virtual_remove_size(4) == 0
    assert bd.node_weight(4) == 1


# ---------------------------------------------------------------------
# batch mutation
# ---------------------------------------------------------------------
@pytest.mark.parametrize("directed", [False, True])
def test_batch_move_equals_fresh_state(state_factory, directed):
    bd = state_factory(directed=directed, eweight=True, seed=4)
    rng = np.random.default_rng(3)
    vs = rng.choice(bd.num_nodes, size=6, replace=False)
    nrs = rng.integers(bd.B, size=len(vs))

    bd.remove_vertices(vs)
    bd.add_vertices(vs, nrs)
    _assert_consistent(bd)

    fresh = BlockData(bd.graph_data, bd.b.copy(), B=bd.B)
    assert np.array_equal(fresh.get_block_count_matrix(), bd.get_block_count_matrix())
    assert np.array_equal(fresh.mrp, bd.mrp)
    assert np.isclose(fresh.entropy(), bd.entropy())


def test_add_vertices_length_mismatch(state_factory):
    bd = state_factory()
    bd.remove_vertices([0, 1])
    with pytest.raises(ValueError):
        bd.add_vertices([0, 1], [0])


def test_set_partition(state_factory):
    bd = state_factory(directed=True, seed=5)
    b_new = np.random.default_rng(9).integers(bd.B, size=bd.num_nodes)
    bd.set_partition(b_new)
    assert np.array_equal(bd.b, b_new)
    _assert_consistent(bd)


# ---------------------------------------------------------------------
# label barrier
# ---------------------------------------------------------------------
def test_label_barrier(graph_factory):
    g = graph_factory()
    b = np.arange(g.num_nodes) % 2
    bd = BlockData(g, b, B=4, bclabel=[0, 1, 0, 1])
    v = int(np.flatnonzero(b == 0)[0])

    assert not bd.allow_move(0, 1)
    with pytest.raises(ValueError):
        bd.move_vertex(v, 0, 1)
    assert bd.virtual_move(v, 0, 1) == np.inf

    # empty blocks can always be entered
    assert bd.allow_move(0, 3)
    bd.move_vertex(v, 0, 3)
    assert bd.b[v] == 3


# ---------------------------------------------------------------------
# vertex weights and merges
# ---------------------------------------------------------------------
def test_set_vertex_weight(state_factory):
    bd = state_factory(vweight=True)
    r = int(bd.b[2])
    w0 = bd.wr[r]
    bd.set_vertex_weight(2, bd.vweight[2] + 3)
    assert bd.wr[r] == w0 + 3
    _assert_consistent(bd)

    unweighted = state_factory()
    with pytest.raises(ValueError):
        unweighted.set_vertex_weight(2, 2)


def test_zero_weight_vertex_empties_block(graph_factory):
    g = graph_factory(vweight=True)
    b = np.zeros(g.num_nodes, dtype=int)
    b[0] = 1
    bd = BlockData(g, b, B=3)
    bd.set_vertex_weight(0, 0)
    assert 1 in bd.empty_blocks and bd.is_empty(1)
    assert not bd.is_empty(0)
    _assert_consistent(bd)


@pytest.mark.parametrize("directed", [False, True])
@pytest.mark.parametrize("deg_corr", [False, True])
def test_merge_vertices(state_factory, directed, deg_corr):
    bd = state_factory(directed=directed, deg_corr=deg_corr, eweight=True, seed=6)
    g = bd.graph_data
    E = bd.get_E()
    u, v = 0, 1
    wu, wv = bd.vweight[u], bd.vweight[v]

    bd.merge_vertices(u, v)

    assert bd.vweight[u] == 0 and bd.vweight[v] == wu + wv
    assert len(g.out_edges(u)) == 0
    if directed:
        assert len(g.in_edges(u)) == 0
    assert bd.merge_map[u] == v
    assert bd.get_E() == E
    _assert_consistent(bd)

    # the merged state still moves consistently
    for x, r, nr in itertools.islice(_random_moves(bd, 60, seed=7), 15):
        if x == u:
            continue
        S0 = bd.entropy()
        dS = bd.virtual_move(x, r, nr)
        bd.move_vertex(x, r, nr)
        assert np.isclose(dS, bd.entropy() - S0)
    _assert_consistent(bd)


def test_merge_requires_weighted_state(state_factory):
    bd = state_factory()
    with pytest.raises(ValueError):
        bd.merge_vertices(0, 1)


def test_merge_sums_parallel_edges():
    g = GraphData(3, [(0, 2), (1, 2), (0, 1)], directed=False, eweight=[1, 2, 4])
    bd = BlockData(g, [0, 0, 1], B=2)
    bd.merge_vertices(0, 1)
    src, tgt, w = g.edge_arrays()
    pairs = {(min(s, t), max(s, t)): int(x) for s, t, x in zip(src, tgt, w)}
    assert pairs == {(1, 2): 3, (1, 1): 4}
    assert bd.bg.get_mrs(0, 1) == 3
    assert bd.bg.get_mrs(0, 0) == 4
    assert list(bd.mrp) == [11, 3]


# ---------------------------------------------------------------------
# accessors
# ---------------------------------------------------------------------
def test_get_matrix_and_counts(toy_state):
    bd = toy_state
    bd.move_vertex(0, 0, 1)
    M = bd.get_matrix().toarray()
    assert np.array_equal(M, M.T)
    assert M[0, 1] == 3 and M[0, 0] == 3
    assert bd.get_B() == 2
    assert bd.get_N() == 5
    assert bd.get_E() == 6
    assert len(bd) == 5


def test_check_edge_counts_detects_corruption(toy_state):
    bd = toy_state
    bd.mrp[0] += 1
    assert not bd.check_edge_counts()
    bd.mrp[0] -= 1
    bd.wr[1] += 1
    assert not bd.check_node_counts()
