"""
Weighted samplers used by the move proposals: a dynamic sum-tree sampler,
the per-block groups of edge endpoints and a static weighted neighbour
sampler.
"""
from typing import Dict, Hashable, List, Optional, Tuple

import numpy as np

from blockmodel.graph_data import GraphView

EdgeItem = Tuple[int, int]   # (edge id, side); side 0 = source end, 1 = target end


class DynamicSampler:
    """
    Weighted sampling with O(log n) insertion and removal, backed by a sum
    tree over a flat array of leaves. Removed items are swapped with the
    last leaf so the leaves stay contiguous.
    """
    def __init__(self, capacity: int = 8):
        self._cap = capacity
        self._tree = np.zeros(2 * capacity)
        self._items: List[Hashable] = []
        self._pos: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item) -> bool:
        return item in self._pos

    @property
    def total(self) -> float:
        return float(self._tree[1])

    def _set(self, i: int, w: float) -> None:
        j = i + self._cap
        self._tree[j] = w
        j //= 2
        while j >= 1:
            self._tree[j] = self._tree[2 * j] + self._tree[2 * j + 1]
            j //= 2

    def _grow(self) -> None:
        old_cap = self._cap
        self._cap *= 2
        tree = np.zeros(2 * self._cap)
        tree[self._cap:self._cap + old_cap] = self._tree[old_cap:2 * old_cap]
        for j in range(self._cap - 1, 0, -1):
            tree[j] = tree[2 * j] + tree[2 * j + 1]
        self._tree = tree

    def insert(self, item: Hashable, w: float) -> None:
        if len(self._items) == self._cap:
            self._grow()
        i = len(self._items)
        self._items.append(item)
        self._pos[item] = i
        self._set(i, w)

    def remove(self, item: Hashable) -> None:
        i = self._pos.pop(item)
        last = len(self._items) - 1
        if i != last:
            moved = self._items[last]
            self._items[i] = moved
            self._pos[moved] = i
            self._set(i, self._tree[self._cap + last])
        self._items.pop()
        self._set(last, 0.0)

    def sample(self, rng: np.random.Generator) -> Hashable:
        x = rng.random() * self._tree[1]
        j = 1
        while j < self._cap:
            left = self._tree[2 * j]
            if x < left:
                j = 2 * j
            else:
                x -= left
                j = 2 * j + 1
        i = min(j - self._cap, len(self._items) - 1)
        return self._items[i]


class EdgeGroups:
    """
    For every block, the multiset of edge endpoints held by its vertices,
    each weighted by the edge multiplicity. Sampling from block t returns an
    (edge, side) item; the far end of the edge is a neighbour block of t
    drawn in proportion to the edge counts. An undirected self-loop owns
    both of its endpoints.
    """
    def __init__(self, graph: GraphView, b: np.ndarray, num_nodes: int, num_blocks: int):
        self.graph = graph
        self.b = b
        self._groups = [DynamicSampler() for _ in range(num_blocks)]
        for v in range(num_nodes):
            self.add_vertex(v, int(b[v]))

    def _items(self, v: int):
        g = self.graph
        if g.directed:
            for e in g.out_edges(v):
                yield e, 0
            for e in g.in_edges(v):
                yield e, 1
        else:
            for e in g.out_edges(v):
                if g.source(e) == v:
                    yield e, 0
                if g.target(e) == v:
                    yield e, 1

    def add_vertex(self, v: int, r: int) -> None:
        ew = self.graph.eweight
        group = self._groups[r]
        for item in self._items(v):
            w = ew[item[0]]
            if w > 0:
                group.insert(item, w)

    def remove_vertex(self, v: int, r: int) -> None:
        group = self._groups[r]
        for item in self._items(v):
            if item in group:
                group.remove(item)

    def group_size(self, r: int) -> int:
        return len(self._groups[r])

    def group_weight(self, r: int) -> float:
        return self._groups[r].total

    def sample_edge(self, r: int, rng: np.random.Generator) -> Optional[EdgeItem]:
        group = self._groups[r]
        if len(group) == 0:
            return None
        return group.sample(rng)

    def sample_neighbour_block(self, r: int, rng: np.random.Generator) -> Optional[int]:
        item = self.sample_edge(r, rng)
        if item is None:
            return None
        e, side = item
        return int(self.b[self.graph.endpoint(e, 1 - side)])


class NeighbourSampler:
    """
    Static weighted sampler of the neighbours of each vertex (in- and
    out-neighbours for directed graphs), excluding self-loops.

    Neighbour lists are flattened CSR-style; each vertex segment stores the
    running sum of its edge weights.
    """
    def __init__(self, graph: GraphView):
        ew = graph.eweight
        indptr = [0]
        nbrs: List[int] = []
        cum: List[float] = []
        for v in range(graph.num_nodes):
            c = 0
            for e, u in graph.incidences(v):
                w = ew[e]
                if u == v or w <= 0:
                    continue
                c += w
                nbrs.append(u)
                cum.append(c)
            indptr.append(len(nbrs))
        self._indptr = np.asarray(indptr, dtype=np.int64)
        self._nbrs = np.asarray(nbrs, dtype=np.int64)
        self._cum = np.asarray(cum, dtype=float)

    def empty(self, v: int) -> bool:
        return self._indptr[v] == self._indptr[v + 1]

    def sample(self, v: int, rng: np.random.Generator) -> Optional[int]:
        lo, hi = self._indptr[v], self._indptr[v + 1]
        if lo == hi:
            return None
        cum = self._cum[lo:hi]
        x = rng.random() * cum[-1]
        i = min(int(np.searchsorted(cum, x, side="right")), hi - lo - 1)
        return int(self._nbrs[lo + i])
