"""
Shared builders for the block-model tests: random multigraphs (with
self-loops, parallel edges and optional covariates) and partition states
on top of them.
"""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pytest

from blockmodel.graph_data import GraphData
from blockmodel.block_data import BlockData


# hyperparameters and value generators of each covariate family
REC_FAMILIES = {
    "real-exponential": ([1.0, 1.0], lambda rng, n: rng.exponential(2.0, size=n)),
    "real-normal": ([0.0, 1.0, 1.0, 1.0], lambda rng, n: rng.normal(0.5, 2.0, size=n)),
    "discrete-geometric": ([1.0, 1.0], lambda rng, n: rng.integers(0, 6, size=n).astype(float)),
    "discrete-poisson": ([1.0, 1.0], lambda rng, n: rng.integers(0, 6, size=n).astype(float)),
    "discrete-binomial": ([5.0, 1.0, 1.0], lambda rng, n: rng.integers(0, 6, size=n).astype(float)),
    "delta-t": ([1.0, 2.0], lambda rng, n: rng.exponential(1.0, size=n)),
}


# ---- helpers ----
def random_graph(N: int = 14,
                 E: int = 36,
                 directed: bool = False,
                 seed: int = 0,
                 eweight: bool = False,
                 vweight: bool = False,
                 rec_family: Optional[str] = None,
                 self_loops: bool = True,
                 ) -> GraphData:
    """Random multigraph; repeated pairs become parallel edges."""
    rng = np.random.default_rng(seed)
    src = rng.integers(N, size=E)
    tgt = rng.integers(N, size=E)
    if not self_loops:
        keep = src != tgt
        src, tgt = src[keep], tgt[keep]
    edges = np.column_stack([src, tgt])
    ew = rng.integers(1, 4, size=len(edges)) if eweight else None
    vw = rng.integers(1, 3, size=N) if vweight else None
    recs = None
    if rec_family is not None:
        recs = REC_FAMILIES[rec_family][1](rng, len(edges))
    return GraphData(N, edges, directed=directed, eweight=ew, vweight=vw, recs=recs)


def random_partition(N: int, n_blocks: int, seed: int = 0) -> np.ndarray:
    """Random partition that occupies every one of the first ``n_blocks`` blocks."""
    rng = np.random.default_rng(seed + 1000)
    b = rng.integers(n_blocks, size=N)
    b[:n_blocks] = np.arange(n_blocks)
    return b


def make_state(graph: GraphData,
               n_blocks: int = 4,
               B: Optional[int] = None,
               seed: int = 0,
               b: Optional[Sequence[int]] = None,
               **kwargs) -> BlockData:
    if b is None:
        b = random_partition(graph.num_nodes, n_blocks, seed)
    if B is None:
        B = n_blocks + 2  # leave empty slots
    return BlockData(graph, b, B=B, **kwargs)


@pytest.fixture
def graph_factory():
    return random_graph


@pytest.fixture
def state_factory():
    def _make(directed: bool = False, deg_corr: bool = False, seed: int = 0,
              eweight: bool = False, vweight: bool = False, rec_family: Optional[str] = None,
              n_blocks: int = 4, B: Optional[int] = None, **kwargs) -> BlockData:
        g = random_graph(directed=directed, seed=seed, eweight=eweight,
                         vweight=vweight, rec_family=rec_family)
        if rec_family is not None:
            kwargs.setdefault("rec_types", [rec_family])
            kwargs.setdefault("rec_params", [REC_FAMILIES[rec_family][0]])
        return make_state(g, n_blocks=n_blocks, B=B, seed=seed, deg_corr=deg_corr, **kwargs)
    return _make


@pytest.fixture
def toy_state() -> BlockData:
    """
    5 undirected vertices, all in block 0 of 2 slots:

        0──1──2──3──4──0   plus the chord 0──2
    """
    edges = [(0, 1), (1, 2), (2, 3), (3, 4), (4, 0), (0, 2)]
    g = GraphData(5, edges, directed=False)
    return BlockData(g, np.zeros(5, dtype=int), B=2)
