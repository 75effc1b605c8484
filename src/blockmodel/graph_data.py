from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_array, triu
import networkx as nx


class GraphView:
    """
    Incidence interface shared by vertex-level graphs and block graphs.

    Subclasses provide ``_source``, ``_target``, ``_out`` (and ``_in`` when
    directed) plus the ``eweight`` array. Undirected edges are stored once and
    listed in the incidence list of both endpoints; a self-loop appears once
    in the list of its vertex.
    """
    directed: bool
    _source: np.ndarray
    _target: np.ndarray
    _out: List
    _in: List

    @property
    def eweight(self) -> np.ndarray:
        raise NotImplementedError

    def source(self, e: int) -> int:
        return int(self._source[e])

    def target(self, e: int) -> int:
        return int(self._target[e])

    def other_end(self, e: int, v: int) -> int:
        s = int(self._source[e])
        return int(self._target[e]) if s == v else s

    def endpoint(self, e: int, side: int) -> int:
        return int(self._source[e]) if side == 0 else int(self._target[e])

    def out_edges(self, v: int):
        return self._out[v]

    def in_edges(self, v: int):
        if not self.directed:
            return self._out[v]
        return self._in[v]

    def out_degree(self, v: int, weights: Optional[np.ndarray] = None):
        """
        Weighted out-degree. For undirected graphs this is the total degree,
        with self-loops counted twice.
        """
        w = self.eweight if weights is None else weights
        k = 0
        for e in self._out[v]:
            k += w[e]
            if not self.directed and self._source[e] == self._target[e]:
                k += w[e]
        return k

    def in_degree(self, v: int, weights: Optional[np.ndarray] = None):
        if not self.directed:
            return self.out_degree(v, weights)
        w = self.eweight if weights is None else weights
        k = 0
        for e in self._in[v]:
            k += w[e]
        return k

    def incidences(self, v: int) -> Iterator[Tuple[int, int]]:
        """
        Yield (edge, neighbour) for every incidence of v. In directed graphs
        self-loops are reported once, from the out-list.
        """
        for e in self._out[v]:
            yield e, self.other_end(e, v)
        if self.directed:
            for e in self._in[v]:
                u = int(self._source[e])
                if u != v:
                    yield e, u

    def __len__(self):
        return self.num_nodes


class GraphData(GraphView):
    """
    Vertex-level multigraph with integer edge multiplicities, vertex weights
    and optional real-valued edge covariates.

    Edges keep their id for their whole life; ``clear_vertex`` zeroes the
    weight of the removed edges instead of compacting the arrays.
    """
    def __init__(self,
                 num_nodes: int,
                 edges: Optional[Sequence[Tuple[int, int]]] = None,
                 directed: bool = False,
                 eweight: Optional[Sequence[int]] = None,
                 vweight: Optional[Sequence[int]] = None,
                 recs: Optional[np.ndarray] = None,
                 drecs: Optional[np.ndarray] = None):
        self.num_nodes: int = int(num_nodes)
        self.directed: bool = directed

        if edges is None:
            edges = np.zeros((0, 2), dtype=np.int64)
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        E = edges.shape[0]
        if E > 0 and (edges.min() < 0 or edges.max() >= self.num_nodes):
            raise ValueError("Edge endpoints must lie in [0, num_nodes).")

        self.is_weighted: bool = eweight is not None or vweight is not None

        if eweight is None:
            ew = np.ones(E, dtype=np.int64)
        else:
            ew = np.asarray(eweight, dtype=np.int64).copy()
            if ew.shape != (E,):
                raise ValueError("eweight must have one entry per edge.")
        if (ew < 0).any():
            raise ValueError("Edge weights must be non-negative.")

        if vweight is None:
            self.vweight = np.ones(self.num_nodes, dtype=np.int64)
        else:
            self.vweight = np.asarray(vweight, dtype=np.int64).copy()
            if self.vweight.shape != (self.num_nodes,):
                raise ValueError("vweight must have one entry per vertex.")
            if (self.vweight < 0).any():
                raise ValueError("Vertex weights must be non-negative.")

        if recs is None:
            rec = np.zeros((E, 0))
        else:
            rec = np.asarray(recs, dtype=float).reshape(E, -1).copy()
        if drecs is None:
            drec = rec ** 2
        else:
            drec = np.asarray(drecs, dtype=float).reshape(rec.shape).copy()
        self.n_recs: int = rec.shape[1]

        self._n_slots = E
        self._source = edges[:, 0].copy()
        self._target = edges[:, 1].copy()
        self._eweight = ew
        self._rec = rec
        self._drec = drec

        self._out: List[List[int]] = [[] for _ in range(self.num_nodes)]
        self._in: List[List[int]] = [[] for _ in range(self.num_nodes)] if directed else []
        for e in range(E):
            self._attach(e)

    # ------------------------------------------------------------------
    @property
    def eweight(self) -> np.ndarray:
        return self._eweight

    @property
    def rec(self) -> np.ndarray:
        return self._rec

    @property
    def drec(self) -> np.ndarray:
        return self._drec

    @property
    def total_edges(self) -> int:
        return int(self._eweight[:self._n_slots].sum())

    def edges(self) -> np.ndarray:
        """Ids of the edges that are still attached."""
        return np.flatnonzero(self._alive_mask())

    def edge_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(sources, targets, weights) of the attached edges."""
        ids = self.edges()
        return self._source[ids], self._target[ids], self._eweight[ids]

    def _alive_mask(self) -> np.ndarray:
        alive = np.zeros(self._n_slots, dtype=bool)
        for lst in self._out:
            alive[lst] = True
        return alive

    # ------------------------------------------------------------------
    # mutation (used by vertex merging)
    # ------------------------------------------------------------------
    def _attach(self, e: int) -> None:
        s, t = int(self._source[e]), int(self._target[e])
        self._out[s].append(e)
        if self.directed:
            self._in[t].append(e)
        elif s != t:
            self._out[t].append(e)

    def _grow(self) -> None:
        cap = max(1, 2 * len(self._source))
        def _extend(a):
            out = np.zeros((cap,) + a.shape[1:], dtype=a.dtype)
            out[:len(a)] = a
            return out
        self._source = _extend(self._source)
        self._target = _extend(self._target)
        self._eweight = _extend(self._eweight)
        self._rec = _extend(self._rec)
        self._drec = _extend(self._drec)

    def add_edge(self, s: int, t: int, w: int = 1,
                 rec: Optional[np.ndarray] = None,
                 drec: Optional[np.ndarray] = None) -> int:
        if self._n_slots == len(self._source):
            self._grow()
        e = self._n_slots
        self._n_slots += 1
        self._source[e] = s
        self._target[e] = t
        self._eweight[e] = w
        self._rec[e] = 0 if rec is None else rec
        self._drec[e] = 0 if drec is None else drec
        self._attach(e)
        return e

    def clear_vertex(self, v: int) -> None:
        """Detach every edge incident to v and zero its weight."""
        incident = set(self._out[v])
        if self.directed:
            incident.update(self._in[v])
        for e in incident:
            s, t = int(self._source[e]), int(self._target[e])
            self._out[s].remove(e)
            if self.directed:
                self._in[t].remove(e)
            elif s != t:
                self._out[t].remove(e)
            self._eweight[e] = 0
            self._rec[e] = 0
            self._drec[e] = 0

    # ------------------------------------------------------------------
    @classmethod
    def from_adjacency(cls, adjacency_matrix: csr_array, directed: bool = False) -> "GraphData":
        """
        Build a graph from a sparse adjacency matrix. Entries are edge
        multiplicities; for undirected graphs the upper triangle (including
        the diagonal) is read, so a diagonal entry is a self-loop count.
        """
        if not isinstance(adjacency_matrix, csr_array):
            raise ValueError("Adjacency matrix must be a scipy.sparse.csr_array")
        adj = adjacency_matrix.astype(int)
        if not directed:
            adj = triu(adj, format="coo")
        else:
            adj = adj.tocoo()
        mask = adj.data != 0
        edges = np.column_stack([adj.row[mask], adj.col[mask]])
        weights = adj.data[mask]
        eweight = weights if (weights != 1).any() else None
        return cls(adj.shape[0], edges, directed=directed, eweight=eweight)


def gd_from_networkx(G: nx.Graph, weight: Optional[str] = None) -> GraphData:
    """
    Create a GraphData instance from a NetworkX graph. Nodes are relabelled
    0..N-1 in iteration order; parallel edges of multigraphs are kept.
    """
    index = {node: i for i, node in enumerate(G.nodes())}
    edges = []
    weights = []
    for u, v, data in G.edges(data=True):
        edges.append((index[u], index[v]))
        weights.append(int(data.get(weight, 1)) if weight is not None else 1)
    eweight = weights if weight is not None else None
    return GraphData(len(index), edges, directed=G.is_directed(), eweight=eweight)
