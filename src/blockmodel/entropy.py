"""
Description length (entropy) of a partition state and its exact change
under single-vertex moves.

The full entropy is a sum of independent terms (edge/block terms of the
microcanonical SBM, degree and parallel-edge terms, description lengths of
the partition, degrees and edge counts, and edge-covariate terms). The
virtual move visits only the block pairs touched by the move, so that
``virtual_move(v, r, nr) == entropy(after) - entropy(before)`` for every
combination of options.
"""
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING
from math import lgamma, log

import numpy as np
from numba import jit
from scipy.special import gammaln

from blockmodel.edge_delta import EdgeDelta
from blockmodel.likelihood import (
    WeightType,
    eterm,
    eterm_dense,
    eterm_exact,
    lbinom,
    positive_w_log_P,
    vterm,
    vterm_exact,
)
from blockmodel.partition_stats import DEGREE_DL_KINDS, DegreeDLKind

if TYPE_CHECKING:
    from blockmodel.block_data import BlockData


@dataclass
class EntropyArgs:
    """
    Selects which terms enter the entropy.

    adjacency: include the adjacency (edge and block) terms.
    dense: use the dense (binomial) ensemble instead of the sparse one.
    exact: exact log-factorials instead of Stirling's approximation.
    multigraph: allow parallel edges (parallel-edge entropy / multigraph
        dense ensemble).
    deg_entropy: include the degree-sequence entropy of degree-corrected models.
    partition_dl, degree_dl, edges_dl: description length of the partition,
        of the degrees (``degree_dl_kind``) and of the block-pair edge counts.
    recs: include the edge-covariate terms.
    """
    adjacency: bool = True
    dense: bool = False
    exact: bool = True
    multigraph: bool = True
    deg_entropy: bool = True
    partition_dl: bool = True
    degree_dl: bool = True
    degree_dl_kind: DegreeDLKind = "distributed"
    edges_dl: bool = True
    recs: bool = True

    def __post_init__(self):
        if self.degree_dl_kind not in DEGREE_DL_KINDS:
            raise ValueError(f"unrecognized degree_dl_kind '{self.degree_dl_kind}', "
                             f"expected one of {DEGREE_DL_KINDS}")

    @property
    def dl(self) -> bool:
        return self.partition_dl or self.degree_dl or self.edges_dl

    @classmethod
    def from_dict(cls, args: Optional[Mapping[str, Any]] = None) -> "EntropyArgs":
        args = dict(args or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(args) - known)
        if unknown:
            raise ValueError("unrecognized entropy arguments: " + str(unknown))
        return cls(**args)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ────────────────────────────────────────────────────────────────────
# vectorised sums over block pairs / blocks
# ────────────────────────────────────────────────────────────────────
@jit(nopython=True, cache=True)
def _sum_eterms(src, tgt, mrs, directed, exact) -> float:
    S = 0.0
    for i in range(mrs.shape[0]):
        if exact:
            S += eterm_exact(src[i], tgt[i], mrs[i], directed)
        else:
            S += eterm(src[i], tgt[i], mrs[i], directed)
    return S


@jit(nopython=True, cache=True)
def _sum_vterms(mrp, mrm, wr, deg_corr, directed, exact) -> float:
    S = 0.0
    for r in range(wr.shape[0]):
        if exact:
            S += vterm_exact(mrp[r], mrm[r], wr[r], deg_corr, directed)
        else:
            S += vterm(mrp[r], mrm[r], wr[r], deg_corr, directed)
    return S


@jit(nopython=True, cache=True)
def _sum_dense(src, tgt, mrs, wr, multigraph, directed) -> float:
    S = 0.0
    for i in range(mrs.shape[0]):
        S += eterm_dense(src[i], tgt[i], mrs[i], wr[src[i]], wr[tgt[i]], multigraph, directed)
    return S


# ────────────────────────────────────────────────────────────────────
# full entropy
# ────────────────────────────────────────────────────────────────────
def get_deg_entropy(state: "BlockData", v: int) -> float:
    ignore = state.ignore_degrees[v]
    if ignore == 1:
        return 0.0
    S = 0.0
    for kin, kout, n in state.get_degs(v):
        if ignore == 2:
            kout = 0
        S -= n * (lgamma(kin + 1) + lgamma(kout + 1))
    return S


def get_parallel_entropy(state: "BlockData", self_loop_log2: bool = False) -> float:
    """
    sum of log(m!) over the multiplicities m of every connected vertex pair;
    with ``self_loop_log2`` undirected self-loops add m * log(2).
    """
    g = state.graph_data
    src, tgt, w = g.edge_arrays()
    keep = w > 0
    src, tgt, w = src[keep], tgt[keep], w[keep]
    if len(w) == 0:
        return 0.0
    if not state.directed:
        src, tgt = np.minimum(src, tgt), np.maximum(src, tgt)
    N = np.int64(g.num_nodes)
    keys, inv = np.unique(src * N + tgt, return_inverse=True)
    m = np.bincount(inv.ravel(), weights=w)
    S = float(gammaln(m + 1).sum())
    if self_loop_log2 and not state.directed:
        loops = (keys // N) == (keys % N)
        S += float(m[loops].sum()) * log(2)
    return S


def sparse_entropy(state: "BlockData", multigraph: bool = True, deg_entropy: bool = True,
                   exact: bool = True) -> float:
    src, tgt, mrs = state.bg.edge_arrays()
    S = _sum_eterms(src, tgt, mrs, state.directed, exact)
    S += _sum_vterms(state.mrp, state.mrm, state.wr, state.deg_corr, state.directed, exact)

    if state.deg_corr and deg_entropy:
        for v in range(state.num_nodes):
            S += get_deg_entropy(state, v)

    if multigraph:
        S += get_parallel_entropy(state, self_loop_log2=True)
    return S


def dense_entropy(state: "BlockData", multigraph: bool = True) -> float:
    if state.deg_corr:
        raise NotImplementedError("Dense entropy for degree corrected model not implemented!")
    src, tgt, mrs = state.bg.edge_arrays()
    return _sum_dense(src, tgt, mrs, state.wr, multigraph, state.directed)


def rec_entropy(state: "BlockData") -> float:
    S = 0.0
    bg = state.bg
    ids = bg.edges()
    mrs = bg.mrs[ids]
    g = state.graph_data
    eids = g.edges()
    for i, wtype in enumerate(state.rec_types):
        log_P = state.rec_log_P[i]
        if log_P is not None:
            x = bg.rec[ids, i]
            x2 = bg.drec[ids, i]
            for N, xi, x2i in zip(mrs, x, x2):
                S -= log_P(N, xi, x2i)

        if wtype == WeightType.DISCRETE_POISSON:
            S += float(gammaln(g.rec[eids, i] + 1).sum())
        elif wtype == WeightType.DISCRETE_BINOMIAL:
            n = state.wparams[i][0]
            for x in g.rec[eids, i]:
                S -= lbinom(n, x)
        elif wtype == WeightType.DELTA_T:
            alpha, beta = state.wparams[i][:2]
            for r in np.flatnonzero(state.bignore_degrees > 0):
                S -= positive_w_log_P(state.mrp[r], state.brecsum[r], alpha, beta)
    return S


def compute_entropy(state: "BlockData", ea: EntropyArgs) -> float:
    S = 0.0
    if ea.adjacency:
        if ea.dense:
            S += dense_entropy(state, ea.multigraph)
        else:
            S += sparse_entropy(state, ea.multigraph, ea.deg_entropy, ea.exact)
            if not ea.exact:
                # Stirling correction for the edge count
                E = state.get_E()
                S += -E if ea.multigraph else E

    if ea.partition_dl:
        S += state.get_partition_dl()
    if state.deg_corr and ea.degree_dl:
        S += state.get_deg_dl(ea.degree_dl_kind)
    if ea.edges_dl:
        S += state.get_edges_dl()
    if ea.recs:
        S += rec_entropy(state)
    return S


# ────────────────────────────────────────────────────────────────────
# virtual moves
# ────────────────────────────────────────────────────────────────────
def _new_weight(state: "BlockData", v: int, r: Optional[int]):
    dwr = state.vweight[v]
    dwnr = dwr
    if r is None and dwnr == 0:
        dwnr = 1
    return dwr, dwnr


def virtual_move_sparse(state: "BlockData", v: int, r: Optional[int], nr: Optional[int],
                        entries: EdgeDelta, exact: bool = True,
                        include_edges: bool = True) -> float:
    et = eterm_exact if exact else eterm
    vt = vterm_exact if exact else vterm
    directed = state.directed
    dc = state.deg_corr
    bg = state.bg

    dS = 0.0
    for (s, t), (d, _, _) in entries.items():
        if d == 0:
            continue
        ers = bg.get_mrs(s, t)
        dS += et(s, t, ers + d, directed) - et(s, t, ers, directed)

    if include_edges:
        g = state.graph_data
        kout = g.out_degree(v)
        kin = g.in_degree(v) if directed else kout
    else:
        kout = kin = 0
    dwr, dwnr = _new_weight(state, v, r)

    mrp, mrm, wr = state.mrp, state.mrm, state.wr
    if r is not None:
        dS += (vt(mrp[r] - kout, mrm[r] - kin, wr[r] - dwr, dc, directed)
               - vt(mrp[r], mrm[r], wr[r], dc, directed))
    if nr is not None:
        dS += (vt(mrp[nr] + kout, mrm[nr] + kin, wr[nr] + dwnr, dc, directed)
               - vt(mrp[nr], mrm[nr], wr[nr], dc, directed))
    return dS


def virtual_move_dense(state: "BlockData", v: int, r: Optional[int], nr: Optional[int],
                       entries: EdgeDelta, multigraph: bool = True) -> float:
    if state.deg_corr:
        raise NotImplementedError("Dense entropy for degree corrected model not implemented!")
    bg = state.bg
    wr = state.wr
    directed = state.directed
    dwr, dwnr = _new_weight(state, v, r)

    def wr_after(x: int) -> int:
        w = wr[x]
        if x == r:
            w -= dwr
        if x == nr:
            w += dwnr
        return w

    # every pair touching r or nr changes through the block sizes
    pairs = set(entries.keys())
    for x in (r, nr):
        if x is None:
            continue
        for me in bg.out_edges(x):
            pairs.add((bg.source(me), bg.target(me)))
        if directed:
            for me in bg.in_edges(x):
                pairs.add((bg.source(me), bg.target(me)))

    dS = 0.0
    for s, t in pairs:
        ers = bg.get_mrs(s, t)
        d = entries[(s, t)]
        dS += (eterm_dense(s, t, ers + d, wr_after(s), wr_after(t), multigraph, directed)
               - eterm_dense(s, t, ers, wr[s], wr[t], multigraph, directed))
    return dS


def virtual_move_recs(state: "BlockData", v: int, r: Optional[int], nr: Optional[int],
                      entries: EdgeDelta) -> float:
    dS = 0.0
    bg = state.bg
    for i, wtype in enumerate(state.rec_types):
        log_P = state.rec_log_P[i]
        if log_P is not None:
            for (s, t), (d, dx, dx2) in entries.items():
                ers, xrs, x2rs = bg.pair_values(s, t)
                dS -= (log_P(ers + d, xrs[i] + dx[i], x2rs[i] + dx2[i])
                       - log_P(ers, xrs[i], x2rs[i]))
        elif wtype == WeightType.DELTA_T:
            # bignore blocks see the degree of every vertex, but only the
            # waiting times of vertices that ignore their degrees
            alpha, beta = state.wparams[i][:2]
            g = state.graph_data
            k = g.out_degree(v)
            dt = g.out_degree(v, weights=g.rec[:, i]) if state.ignore_degrees[v] > 0 else 0.0
            for x, sign in ((r, -1), (nr, 1)):
                if x is None or state.bignore_degrees[x] == 0:
                    continue
                dS -= (positive_w_log_P(state.mrp[x] + sign * k, state.brecsum[x] + sign * dt,
                                        alpha, beta)
                       - positive_w_log_P(state.mrp[x], state.brecsum[x], alpha, beta))
    return dS


def virtual_move_coupled(state: "BlockData", v: int, r: Optional[int], nr: Optional[int]) -> float:
    """
    Entropy change of the upper level when the move empties r or occupies
    nr (but not both, which leaves the upper level unchanged).
    """
    parent = state.coupled_state
    if parent is None or state.vweight[v] == 0:
        return 0.0
    r_vacate = r is not None and state.wr[r] == state.vweight[v]
    nr_occupy = nr is not None and state.wr[nr] == 0
    if r_vacate == nr_occupy:
        return 0.0
    pea = state.coupled_entropy_args
    if r_vacate:
        return parent.virtual_move(r, int(state.bclabel[r]), None, pea, include_edges=False)
    label = int(state.bclabel[r]) if r is not None else int(state.bclabel[nr])
    return parent.virtual_move(nr, None, label, pea)


def compute_virtual_move(state: "BlockData", v: int, r: Optional[int], nr: Optional[int],
                         ea: EntropyArgs, include_edges: bool = True) -> float:
    if r == nr:
        return 0.0
    if r is not None and nr is not None and not state.allow_move(r, nr):
        return np.inf

    if include_edges:
        entries = state.get_move_entries(v, r, nr)
    else:
        entries = EdgeDelta(state.directed, state.bg.n_recs)

    dS = 0.0
    if ea.adjacency:
        if ea.dense:
            dS += virtual_move_dense(state, v, r, nr, entries, ea.multigraph)
        else:
            dS += virtual_move_sparse(state, v, r, nr, entries, ea.exact, include_edges)

    if ea.partition_dl:
        dS += state.get_delta_partition_dl(v, r, nr)
    if state.deg_corr and ea.degree_dl:
        dS += state.get_delta_deg_dl(v, r, nr, ea.degree_dl_kind)
    if ea.edges_dl:
        dS += state.get_delta_edges_dl(v, r, nr)
    if ea.recs:
        dS += virtual_move_recs(state, v, r, nr, entries)

    dS += virtual_move_coupled(state, v, r, nr)
    return dS


#### EntropyCalculator class ######
class EntropyCalculator:
    """
    Keeps the current entropy of a state and evaluates single-vertex moves
    against it.
    """
    def __init__(self,
                 block_data: "BlockData",
                 entropy_args: Optional[EntropyArgs] = None,
                 ):
        self.block_data = block_data
        self.entropy_args = EntropyArgs() if entropy_args is None else entropy_args
        self.S = self.compute_entropy()

    def compute_entropy(self) -> float:
        """
        Compute the entropy of the current partition from scratch.
        """
        return compute_entropy(self.block_data, self.entropy_args)

    def compute_delta(self, v: int, nr: int) -> float:
        """
        Change in entropy if vertex v were moved to block nr.
        """
        return compute_virtual_move(self.block_data, v, int(self.block_data.b[v]), nr,
                                    self.entropy_args)

    def apply_move(self, v: int, nr: int, dS: Optional[float] = None) -> float:
        if dS is None:
            dS = self.compute_delta(v, nr)
        self.block_data.move_vertex(v, int(self.block_data.b[v]), nr)
        self.S += dS
        return dS
