from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_array

from blockmodel.graph_data import GraphData, GraphView
from blockmodel.block_graph import BlockGraph
from blockmodel.edge_delta import EdgeDelta
from blockmodel.likelihood import WeightType, make_rec_log_P, parse_weight_type
from blockmodel.partition_stats import DegreeDLKind, DegreeList, PartitionStats
from blockmodel.entropy import EntropyArgs, compute_entropy, compute_virtual_move
from blockmodel.edge_sampler import EdgeGroups, NeighbourSampler

if TYPE_CHECKING:
    from blockmodel.hierarchy import LevelStack

Partition = Union[Sequence[int], np.ndarray, Dict[int, int]]


class _BlockDataUpdater:
    """
    Helper class to apply block-pair edge-count changes to the block data.
    This class is used to hide bookkeeping of handling directed vs undirected graphs:
    for undirected graphs ``mrm`` is the same array as ``mrp``, so incrementing
    both ends of a pair counts the edge once per endpoint.

    Parameters
    ----------
    block_data : BlockData
    """
    def __init__(self, block_data: "BlockData"):
        self.block_data = block_data

    def _apply_entry(self, r: int, s: int, d: int, dx: np.ndarray, dx2: np.ndarray) -> None:
        if d == 0:
            return
        bd = self.block_data
        bg = bd.bg
        me = bg.get_me(r, s)
        if me is None:
            me = bg.add_me(r, s)

        bg.mrs[me] += d
        bd.mrp[r] += d
        bd.mrm[s] += d
        if bg.n_recs > 0:
            bg.rec[me] += dx
            bg.drec[me] += dx2

        assert bg.mrs[me] >= 0, f"negative edge count for block pair ({r}, {s})"
        if bg.mrs[me] == 0:
            bg.remove_me(me)

    def _apply(self, delta: EdgeDelta) -> None:
        for (r, s), (d, dx, dx2) in delta.items():
            self._apply_entry(r, s, d, dx, dx2)


class BlockData:
    """
    Partition state of a stochastic block model.

    Holds the block membership ``b`` of every vertex and keeps the
    block-level aggregates consistent with it under every mutation: block
    weights ``wr``, block-pair edge counts (held by the block graph ``bg``),
    block out/in degrees ``mrp``/``mrm``, covariate sums and the registries of
    empty and occupied blocks.

    The number of block slots ``B`` is fixed at construction.

    Attributes:
        graph_data: The observed graph (or the block graph of a lower level).
        b: Block of each vertex.
        vweight: Weight of each vertex.
        wr: Total vertex weight per block.
        mrp, mrm: Out/in degree per block (the same array when undirected).
        bg: Block-pair multigraph with edge counts and covariate sums.
        bclabel: Constraint label per block; moves may only join blocks with
            the same label, or an empty block.
        pclabel: Partition-stats group of each vertex.
    """

    def __init__(self,
                 graph_data: GraphView,
                 b: Partition,
                 B: Optional[int] = None,
                 deg_corr: bool = False,
                 use_hash: bool = True,
                 vweight: Optional[Sequence[int]] = None,
                 rec_types: Optional[Sequence] = None,
                 rec_params: Optional[Sequence[Sequence[float]]] = None,
                 bclabel: Optional[Sequence[int]] = None,
                 pclabel: Optional[Sequence[int]] = None,
                 ignore_degrees: Optional[Sequence[int]] = None,
                 bignore_degrees: Optional[Sequence[int]] = None,
                 allow_empty: bool = False,
        ):
        self.graph_data = graph_data
        self.directed: bool = graph_data.directed
        self.deg_corr = deg_corr
        self.is_weighted: bool = graph_data.is_weighted
        self.allow_empty = allow_empty
        self.num_nodes = N = graph_data.num_nodes

        b = self._as_array(b, N)
        if B is None:
            B = int(b.max()) + 1 if N > 0 else 1
        self.B = int(B)
        if N > 0 and (b.min() < 0 or b.max() >= self.B):
            raise ValueError(f"Block labels must lie in [0, {self.B}).")

        if vweight is None:
            vweight = graph_data.vweight
        self.vweight = np.array(vweight, dtype=np.int64)
        if self.vweight.shape != (N,):
            raise ValueError("vweight must have one entry per vertex.")

        self.b = b.copy()
        self.wr = np.zeros(self.B, dtype=np.int64)
        self.mrp = np.zeros(self.B, dtype=np.int64)
        self.mrm = np.zeros(self.B, dtype=np.int64) if self.directed else self.mrp
        self.bg = BlockGraph(self.B, self.directed, graph_data.n_recs, use_hash=use_hash)

        # edge covariates
        n_recs = graph_data.n_recs
        if rec_types is None:
            rec_types = [WeightType.NONE] * n_recs
        if len(rec_types) != n_recs:
            raise ValueError(f"Expected {n_recs} covariate families, got {len(rec_types)}.")
        self.rec_types: List[WeightType] = [parse_weight_type(t) for t in rec_types]
        for i, t in enumerate(self.rec_types):
            if t == WeightType.DELTA_T and i != 0:
                raise ValueError("The delta-t family is only supported on the first covariate channel.")
        if rec_params is None:
            rec_params = [[] for _ in range(n_recs)]
        if len(rec_params) != n_recs:
            raise ValueError(f"Expected {n_recs} hyperparameter lists, got {len(rec_params)}.")
        self.wparams: List[List[float]] = [list(p) for p in rec_params]
        self.rec_log_P = [make_rec_log_P(t, p) for t, p in zip(self.rec_types, self.wparams)]
        self.brecsum = np.zeros(self.B)

        # constraints
        self.bclabel = np.zeros(self.B, dtype=np.int64) if bclabel is None \
            else np.array(bclabel, dtype=np.int64)
        self.pclabel = np.zeros(N, dtype=np.int64) if pclabel is None \
            else np.array(pclabel, dtype=np.int64)
        self.ignore_degrees = np.zeros(N, dtype=np.uint8) if ignore_degrees is None \
            else np.array(ignore_degrees, dtype=np.uint8)
        if bignore_degrees is None:
            self.bignore_degrees = np.zeros(self.B, dtype=np.uint8)
            self.bignore_degrees[b[self.ignore_degrees > 0]] = 1
        else:
            self.bignore_degrees = np.array(bignore_degrees, dtype=np.uint8)

        # empty / occupied block registries (swap-remove lists with positions)
        self._empty_blocks: List[int] = list(range(self.B))
        self._empty_pos = np.arange(self.B, dtype=np.int64)
        self._candidate_blocks: List[int] = []
        self._candidate_pos = np.full(self.B, -1, dtype=np.int64)

        self.merge_map = np.arange(N, dtype=np.int64)
        self._degs: Optional[List[DegreeList]] = None
        if deg_corr:
            self._degs = [[self._graph_degrees(v) + (int(self.vweight[v]),)] for v in range(N)]

        self._egroups: Optional[EdgeGroups] = None
        self._neighbour_sampler: Optional[NeighbourSampler] = None
        self._partition_stats: Optional[List[PartitionStats]] = None
        self._coupling: Optional[Tuple["LevelStack", int, EntropyArgs]] = None

        self.block_updater = _BlockDataUpdater(self)

        self.add_vertices(range(N), b)

    @staticmethod
    def _as_array(b: Partition, N: int) -> np.ndarray:
        if isinstance(b, dict):
            b = [b[v] for v in range(N)]
        b = np.asarray(b, dtype=np.int64)
        if b.shape != (N,):
            raise ValueError("The partition must assign a block to every vertex.")
        return b

    def _graph_degrees(self, v: int) -> Tuple[int, int]:
        g = self.graph_data
        kout = int(g.out_degree(v))
        kin = int(g.in_degree(v)) if self.directed else 0
        return kin, kout

    def get_degs(self, v: int) -> DegreeList:
        """(kin, kout, count) histogram of the vertex; several entries after merges."""
        if self._degs is None:
            kin, kout = self._graph_degrees(v)
            return [(kin, kout, int(self.vweight[v]))]
        return self._degs[v]

    # ------------------------------------------------------------------
    # block registries
    # ------------------------------------------------------------------
    @staticmethod
    def _swap_remove(lst: List[int], pos: np.ndarray, r: int) -> None:
        i = pos[r]
        last = lst[-1]
        lst[i] = last
        pos[last] = i
        lst.pop()
        pos[r] = -1

    def _update_block_registry(self, r: int) -> None:
        if self.wr[r] > 0 and self._candidate_pos[r] < 0:
            self._swap_remove(self._empty_blocks, self._empty_pos, r)
            self._candidate_pos[r] = len(self._candidate_blocks)
            self._candidate_blocks.append(r)
        elif self.wr[r] == 0 and self._empty_pos[r] < 0:
            self._swap_remove(self._candidate_blocks, self._candidate_pos, r)
            self._empty_pos[r] = len(self._empty_blocks)
            self._empty_blocks.append(r)

    @property
    def empty_blocks(self) -> List[int]:
        return self._empty_blocks

    @property
    def candidate_blocks(self) -> List[int]:
        return self._candidate_blocks

    def is_empty(self, r: int) -> bool:
        """Constant-time membership in the empty-block registry."""
        return bool(self._empty_pos[r] >= 0)

    def get_nonempty_B(self) -> int:
        return len(self._candidate_blocks)

    def get_B_sampling(self, vacated: bool = False, occupied: bool = False) -> Tuple[int, int]:
        """
        Number of options of the uniform block draw (occupied blocks plus
        one slot standing for all empty blocks) and the number of empty
        blocks, optionally as they would be after a move that vacates and/or
        occupies a block.
        """
        n_occ = len(self._candidate_blocks) - int(vacated) + int(occupied)
        n_empty = len(self._empty_blocks) + int(vacated) - int(occupied)
        return n_occ + (1 if n_empty > 0 else 0), n_empty

    # ------------------------------------------------------------------
    # partition nodes
    # ------------------------------------------------------------------
    def add_partition_node(self, v: int, r: int) -> None:
        self.wr[r] += self.vweight[v]
        self._update_block_registry(r)
        if self._partition_stats is not None:
            self._get_partition_stats(v).add_vertex(r, int(self.vweight[v]), self._ps_degs(v))
        if self._egroups is not None:
            self._egroups.add_vertex(v, r)

    def remove_partition_node(self, v: int, r: int) -> None:
        self.wr[r] -= self.vweight[v]
        assert self.wr[r] >= 0, f"negative weight for block {r}"
        self._update_block_registry(r)
        if self._partition_stats is not None:
            self._get_partition_stats(v).remove_vertex(r, int(self.vweight[v]), self._ps_degs(v))
        if self._egroups is not None:
            self._egroups.remove_vertex(v, r)

    def set_vertex_weight(self, v: int, w: int) -> None:
        if not self.is_weighted:
            raise ValueError("cannot set the vertex weight of an unweighted state")
        if self._coupling is not None:
            raise ValueError("cannot set vertex weights of a state coupled to an upper level")
        self._change_vertex_weight(v, w)

    def _change_vertex_weight(self, v: int, w: int) -> None:
        r = int(self.b[v])
        self.remove_partition_node(v, r)
        self.vweight[v] = w
        if self._degs is not None:
            degs = self._degs[v]
            if len(degs) > 1:
                raise NotImplementedError("cannot reweight a merged vertex of a degree-corrected state")
            kin, kout = (degs[0][0], degs[0][1]) if degs else self._graph_degrees(v)
            self._degs[v] = [(kin, kout, int(w))]
        self.add_partition_node(v, r)

    def node_weight(self, v: int) -> int:
        return int(self.vweight[v])

    def is_last(self, v: int) -> bool:
        return self.wr[self.b[v]] == self.vweight[v]

    def virtual_remove_size(self, v: int) -> int:
        return int(self.wr[self.b[v]] - self.vweight[v])

    def allow_move(self, r: int, nr: int) -> bool:
        return self.bclabel[r] == self.bclabel[nr] or self.wr[nr] == 0

    # ------------------------------------------------------------------
    # move entries
    # ------------------------------------------------------------------
    def get_move_entries(self, v: int, r: Optional[int], nr: Optional[int],
                         efilt: Optional[set] = None) -> EdgeDelta:
        """
        Changes in block-pair aggregates caused by moving v from r to nr.
        Either block may be None; edges in ``efilt`` are skipped.
        """
        g = self.graph_data
        ew = g.eweight
        rec = g.rec
        drec = g.drec
        b = self.b
        delta = EdgeDelta(self.directed, self.bg.n_recs)

        for e in g.out_edges(v):
            if efilt is not None and e in efilt:
                continue
            w = ew[e]
            if w == 0:
                continue
            u = g.other_end(e, v)
            if u == v:
                s_old, s_new = r, nr
            else:
                s_old = s_new = int(b[u])
            if r is not None:
                delta.add(r, s_old, -w, -rec[e], -drec[e])
            if nr is not None:
                delta.add(nr, s_new, w, rec[e], drec[e])

        if self.directed:
            for e in g.in_edges(v):
                if efilt is not None and e in efilt:
                    continue
                w = ew[e]
                u = g.source(e)
                if w == 0 or u == v:
                    continue
                s = int(b[u])
                if r is not None:
                    delta.add(s, r, -w, -rec[e], -drec[e])
                if nr is not None:
                    delta.add(s, nr, w, rec[e], drec[e])
        return delta

    # ------------------------------------------------------------------
    # vertex mutation
    # ------------------------------------------------------------------
    def _check_block(self, r: int) -> None:
        if not 0 <= r < self.B:
            raise ValueError(f"Block {r} is out of range [0, {self.B}).")

    def _modify_vertex(self, v: int, r: int, add: bool, efilt: Optional[set] = None) -> None:
        if add:
            delta = self.get_move_entries(v, None, r, efilt)
        else:
            delta = self.get_move_entries(v, r, None, efilt)
        self.block_updater._apply(delta)

        if (self.rec_types and self.rec_types[0] == WeightType.DELTA_T
                and self.ignore_degrees[v] > 0):
            dt = self.graph_data.out_degree(v, weights=self.graph_data.rec[:, 0])
            self.brecsum[r] += dt if add else -dt

        if add:
            self.b[v] = r
            self.add_partition_node(v, r)
        else:
            self.remove_partition_node(v, r)

    def remove_vertex(self, v: int, r: Optional[int] = None, efilt: Optional[set] = None) -> None:
        if r is None:
            r = int(self.b[v])
        self._modify_vertex(v, r, False, efilt)

    def add_vertex(self, v: int, r: int, efilt: Optional[set] = None) -> None:
        self._check_block(r)
        self._modify_vertex(v, r, True, efilt)

    def _induced_edges(self, vset) -> set:
        g = self.graph_data
        eset = set()
        for v in vset:
            for e, u in g.incidences(v):
                if u in vset:
                    eset.add(e)
        return eset

    def _apply_induced(self, eset: set, blocks: Dict[int, int], sign: int) -> None:
        g = self.graph_data
        for e in eset:
            r = blocks[g.source(e)]
            s = blocks[g.target(e)]
            self.block_updater._apply_entry(r, s, sign * g.eweight[e],
                                            sign * g.rec[e], sign * g.drec[e])

    def remove_vertices(self, vs: Iterable[int]) -> None:
        """
        Remove a set of vertices; edges internal to the set are subtracted
        once, after the per-vertex updates.
        """
        vset = dict.fromkeys(int(v) for v in vs)
        eset = self._induced_edges(vset)
        blocks = {v: int(self.b[v]) for v in vset}
        for v in vset:
            self.remove_vertex(v, blocks[v], eset)
        self._apply_induced(eset, blocks, -1)

    def add_vertices(self, vs: Iterable[int], rs: Iterable[int]) -> None:
        vs = [int(v) for v in vs]
        rs = [int(r) for r in rs]
        if len(vs) != len(rs):
            raise ValueError("vertex and block lists must be of the same size")
        for r in rs:
            self._check_block(r)
        blocks = dict(zip(vs, rs))
        eset = self._induced_edges(blocks)
        for v, r in blocks.items():
            self.add_vertex(v, r, eset)
        self._apply_induced(eset, blocks, 1)

    def move_vertex(self, v: int, r: int, nr: int) -> None:
        """
        Move vertex v from block r to block nr, keeping all aggregates and,
        when coupled, the upper level consistent.

        :raises ValueError: if nr is out of range or the move crosses a
            label barrier.
        """
        self._check_block(nr)
        if r == nr:
            return
        if not self.allow_move(r, nr):
            raise ValueError("cannot move vertex across clabel barriers")

        parent = self.coupled_state
        weighted_move = self.vweight[v] > 0
        occupy = parent is not None and weighted_move and self.wr[nr] == 0
        if parent is not None:
            parent.clear_egroups()
            parent.clear_neighbour_sampler()
        if occupy:
            # relabel the weightless upper-level vertex while it has no edges
            parent._place_vertex(nr, int(self.bclabel[r]))

        self.remove_vertex(v, r)
        self.add_vertex(v, nr)

        if parent is not None and weighted_move:
            if self.wr[r] == 0:
                parent._change_vertex_weight(r, 0)
            if occupy:
                parent._change_vertex_weight(nr, 1)

    def _place_vertex(self, v: int, r: int) -> None:
        nr = int(self.b[v])
        if nr != r:
            self.remove_vertex(v, nr)
            self.add_vertex(v, r)

    def move_vertex_to(self, v: int, nr: int) -> None:
        self.move_vertex(v, int(self.b[v]), nr)

    def move_vertices(self, vs: Sequence[int], nrs: Sequence[int]) -> None:
        if len(vs) != len(nrs):
            raise ValueError("vertex and block lists must be of the same size")
        for v, nr in zip(vs, nrs):
            self.move_vertex(int(v), int(self.b[v]), int(nr))

    def set_partition(self, b: Partition) -> None:
        b = self._as_array(b, self.num_nodes)
        for v in range(self.num_nodes):
            if b[v] != self.b[v]:
                self.move_vertex(v, int(self.b[v]), int(b[v]))

    # ------------------------------------------------------------------
    # vertex merging
    # ------------------------------------------------------------------
    def merge_vertices(self, u: int, v: int) -> None:
        """
        Merge vertex u into vertex v: u's edges are folded into v's (parallel
        edges summed, u-v edges becoming self-loops of v), v takes u's weight
        and degree histogram, and u is left weightless and edgeless in its
        block.
        """
        if u == v:
            return
        if not self.is_weighted:
            raise ValueError("cannot merge vertices of unweighted graph")
        g = self.graph_data
        if not isinstance(g, GraphData):
            raise NotImplementedError("vertex merging requires a vertex-level graph")

        ru, rv = int(self.b[u]), int(self.b[v])
        self.clear_egroups()
        self.clear_neighbour_sampler()
        self.remove_vertices([u, v])

        out_idx = {g.other_end(e, v): e for e in g.out_edges(v)}
        in_idx = {g.source(e): e for e in g.in_edges(v)} if self.directed else out_idx

        def _fold(e: int, s: int, t: int) -> None:
            if self.directed and s != v:
                idx, key = in_idx, s
            else:
                idx, key = out_idx, t
            ne = idx.get(key)
            if ne is None:
                ne = g.add_edge(s, t, g.eweight[e], g.rec[e].copy(), g.drec[e].copy())
                idx[key] = ne
                if self.directed and s == t:
                    out_idx[v] = in_idx[v] = ne
            else:
                g.eweight[ne] += g.eweight[e]
                g.rec[ne] += g.rec[e]
                g.drec[ne] += g.drec[e]

        for e in list(g.out_edges(u)):
            t = g.other_end(e, u)
            _fold(e, v, v if t == u else t)
        if self.directed:
            for e in list(g.in_edges(u)):
                s = g.source(e)
                if s != u:
                    _fold(e, s, v)
        g.clear_vertex(u)

        self.vweight[v] += self.vweight[u]
        self.vweight[u] = 0
        self.merge_map[u] = v
        if self._degs is not None:
            self._degs[v] = self._degs[v] + self._degs[u]
            self._degs[u] = []

        self.add_vertex(u, ru)
        self.add_vertex(v, rv)

    # ------------------------------------------------------------------
    # entropy
    # ------------------------------------------------------------------
    def entropy(self, ea: Optional[EntropyArgs] = None) -> float:
        return compute_entropy(self, EntropyArgs() if ea is None else ea)

    def virtual_move(self, v: int, r: Optional[int], nr: Optional[int],
                     ea: Optional[EntropyArgs] = None, include_edges: bool = True) -> float:
        return compute_virtual_move(self, v, r, nr, EntropyArgs() if ea is None else ea,
                                    include_edges=include_edges)

    # ------------------------------------------------------------------
    # partition statistics
    # ------------------------------------------------------------------
    def _ps_degs(self, v: int) -> Optional[DegreeList]:
        return self._degs[v] if self._degs is not None else None

    def enable_partition_stats(self) -> None:
        if self._partition_stats is not None:
            return
        E = self.get_E()
        n_groups = int(self.pclabel.max()) + 1 if self.num_nodes > 0 else 1
        self._partition_stats = [PartitionStats(self.directed, self.B, E, self.allow_empty)
                                 for _ in range(n_groups)]
        for v in range(self.num_nodes):
            self._get_partition_stats(v).add_vertex(int(self.b[v]), int(self.vweight[v]),
                                                    self._ps_degs(v))

    def disable_partition_stats(self) -> None:
        self._partition_stats = None

    def is_partition_stats_enabled(self) -> bool:
        return self._partition_stats is not None

    def _get_partition_stats(self, v: int) -> PartitionStats:
        return self._partition_stats[self.pclabel[v]]

    def _actual_B(self) -> int:
        if self.allow_empty:
            return self.B
        return sum(ps.actual_B for ps in self._partition_stats)

    def get_partition_dl(self) -> float:
        self.enable_partition_stats()
        return sum(ps.get_partition_dl() for ps in self._partition_stats)

    def get_deg_dl(self, kind: DegreeDLKind = "distributed") -> float:
        self.enable_partition_stats()
        return sum(ps.get_deg_dl(kind) for ps in self._partition_stats)

    def get_edges_dl(self) -> float:
        self.enable_partition_stats()
        return self._partition_stats[0].get_edges_dl(self._actual_B())

    def get_delta_partition_dl(self, v: int, r: Optional[int], nr: Optional[int]) -> float:
        self.enable_partition_stats()
        return self._get_partition_stats(v).get_delta_partition_dl(r, nr, int(self.vweight[v]))

    def get_delta_deg_dl(self, v: int, r: Optional[int], nr: Optional[int],
                         kind: DegreeDLKind = "distributed") -> float:
        self.enable_partition_stats()
        return self._get_partition_stats(v).get_delta_deg_dl(r, nr, int(self.vweight[v]),
                                                             self.get_degs(v), kind)

    def get_delta_edges_dl(self, v: int, r: Optional[int], nr: Optional[int]) -> float:
        self.enable_partition_stats()
        return self._get_partition_stats(v).get_delta_edges_dl(r, nr, int(self.vweight[v]),
                                                               self._actual_B())

    # ------------------------------------------------------------------
    # proposal caches
    # ------------------------------------------------------------------
    def init_mcmc(self, c: float, dl: bool) -> None:
        if np.isinf(c):
            self.clear_egroups()
        else:
            self.get_egroups()
        if dl:
            self.enable_partition_stats()
        else:
            self.disable_partition_stats()

    def get_egroups(self) -> EdgeGroups:
        if self._egroups is None:
            self._egroups = EdgeGroups(self.graph_data, self.b, self.num_nodes, self.B)
        return self._egroups

    def clear_egroups(self) -> None:
        self._egroups = None

    def get_neighbour_sampler(self) -> NeighbourSampler:
        if self._neighbour_sampler is None:
            self._neighbour_sampler = NeighbourSampler(self.graph_data)
        return self._neighbour_sampler

    def clear_neighbour_sampler(self) -> None:
        self._neighbour_sampler = None

    def rebuild_neighbour_sampler(self) -> None:
        self._neighbour_sampler = NeighbourSampler(self.graph_data)

    def random_neighbour(self, v: int, rng: np.random.Generator) -> Optional[int]:
        return self.get_neighbour_sampler().sample(v, rng)

    # ------------------------------------------------------------------
    # coupling to an upper level
    # ------------------------------------------------------------------
    def couple_state(self, stack: "LevelStack", level: int, entropy_args: EntropyArgs) -> None:
        parent = stack.levels[level]
        if parent.deg_corr:
            raise NotImplementedError("upper levels must not be degree-corrected")
        if not parent.is_weighted:
            raise ValueError("upper levels must be weighted")
        if parent.num_nodes != self.B:
            raise ValueError("upper level must have one vertex per block slot")
        self._coupling = (stack, level, entropy_args)
        # block labels follow the upper level's partition
        self.bclabel = parent.b

    def decouple_state(self) -> None:
        if self._coupling is not None:
            self.bclabel = self.bclabel.copy()
        self._coupling = None

    @property
    def coupled_state(self) -> Optional["BlockData"]:
        if self._coupling is None:
            return None
        stack, level, _ = self._coupling
        return stack.levels[level]

    @property
    def coupled_entropy_args(self) -> Optional[EntropyArgs]:
        return None if self._coupling is None else self._coupling[2]

    # ------------------------------------------------------------------
    # consistency checks
    # ------------------------------------------------------------------
    def get_B(self) -> int:
        return self.B

    def get_N(self) -> int:
        return int(self.vweight.sum())

    def get_E(self) -> int:
        g = self.graph_data
        return int(g.eweight[g.edges()].sum())

    def get_matrix(self) -> csr_array:
        """Block-pair edge counts as a sparse matrix (symmetric when undirected)."""
        src, tgt, mrs = self.bg.edge_arrays()
        if not self.directed:
            off = src != tgt
            src, tgt, mrs = (np.concatenate([src, tgt[off]]), np.concatenate([tgt, src[off]]),
                             np.concatenate([mrs, mrs[off]]))
        return csr_array((mrs, (src, tgt)), shape=(self.B, self.B))

    def get_block_count_matrix(self) -> np.ndarray:
        return self.bg.to_dense()

    def _brute_block_counts(self) -> np.ndarray:
        g = self.graph_data
        M = np.zeros((self.B, self.B), dtype=np.int64)
        src, tgt, w = g.edge_arrays()
        np.add.at(M, (self.b[src], self.b[tgt]), w)
        if not self.directed:
            M = M + M.T - np.diag(np.diag(M))
        return M

    def check_edge_counts(self) -> bool:
        M = self._brute_block_counts()
        if not np.array_equal(M, self.get_block_count_matrix()):
            return False
        if self.directed:
            return (np.array_equal(self.mrp, M.sum(axis=1))
                    and np.array_equal(self.mrm, M.sum(axis=0)))
        return np.array_equal(self.mrp, M.sum(axis=1) + np.diag(M))

    def check_node_counts(self) -> bool:
        wr = np.bincount(self.b, weights=self.vweight, minlength=self.B).astype(np.int64)
        if not np.array_equal(wr, self.wr):
            return False
        occupied = set(np.flatnonzero(wr > 0).tolist())
        return (set(self._candidate_blocks) == occupied
                and set(self._empty_blocks) == set(range(self.B)) - occupied)

    def __len__(self):
        return self.num_nodes
