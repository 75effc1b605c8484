from typing import Dict, Callable, Tuple, Optional
from pathlib import Path
from dataclasses import dataclass, field
import json

import gzip

import numpy as np
from scipy.sparse import csr_array, coo_array, load_npz
from scipy.io import mmread
import networkx as nx

from blockmodel.graph_data import GraphData
from blockmodel.multicanonical import MulticanonicalState


# src/blockmodel/io.py
@dataclass
class MulticanonicalFit:
    S_min: float
    S_max: float
    hist: np.ndarray
    dens: np.ndarray
    f: float
    time: float
    refine: bool
    partition: np.ndarray   # final block of each vertex
    entropy: float
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_state(cls, m_state: MulticanonicalState, partition: np.ndarray,
                   entropy: float, metadata: Optional[dict] = None) -> "MulticanonicalFit":
        return cls(
            S_min=m_state.S_min,
            S_max=m_state.S_max,
            hist=m_state.hist.copy(),
            dens=m_state.dens.copy(),
            f=m_state.f,
            time=m_state.time,
            refine=m_state.refine,
            partition=np.asarray(partition).copy(),
            entropy=float(entropy),
            metadata=dict(metadata or {}),
        )

    def to_state(self, niter: int = 1, target_bin: Optional[int] = None) -> MulticanonicalState:
        """ resume a run from the saved histogram and density """
        m_state = MulticanonicalState(self.S_min, self.S_max, nbins=len(self.hist), f=self.f,
                                      refine=self.refine, target_bin=target_bin, niter=niter)
        m_state.hist[:] = self.hist
        m_state.dens[:] = self.dens
        m_state.time = self.time
        return m_state


class MulticanonicalWriter:
    @staticmethod
    def save(path: Path, fit: MulticanonicalFit) -> None:
        """ save multicanonical run to folder """
        path.mkdir(parents=True, exist_ok=True)

        np.savez(path / "arrays.npz", hist=fit.hist, dens=fit.dens, partition=fit.partition)

        summary = {
            "S_min": fit.S_min,
            "S_max": fit.S_max,
            "f": fit.f,
            "time": fit.time,
            "refine": bool(fit.refine),
            "entropy": fit.entropy,
        }
        (path / "summary.json").write_text(json.dumps(summary))
        with open(path / "metadata.json", 'w') as f:
            json.dump(fit.metadata, f)

    @staticmethod
    def load(path: Path, silence: bool = False) -> MulticanonicalFit:
        if not silence:
            print(f"Loading multicanonical run from {path}")

        summary = json.loads((path / "summary.json").read_text())
        with np.load(path / "arrays.npz") as z:
            hist = z["hist"]
            dens = z["dens"]
            partition = z["partition"]

        with open(path / "metadata.json", 'r') as f:
            metadata = json.load(f)

        return MulticanonicalFit(
            S_min=float(summary["S_min"]),
            S_max=float(summary["S_max"]),
            hist=hist,
            dens=dens,
            f=float(summary["f"]),
            time=float(summary["time"]),
            refine=bool(summary["refine"]),
            partition=partition,
            entropy=float(summary["entropy"]),
            metadata=metadata,
        )

# ---------------------------------------------------------------------
#  GraphLoader
# ---------------------------------------------------------------------

class GraphLoader:
    """
    Factory that maps a file *extension* to a loader function and returns
    a `GraphData` object.

    Register new loaders with the `@GraphLoader.register('.ext')`
    decorator.
    """

    # maps extension (lower-case, incl. leading dot) -> callable
    registry: Dict[str, Callable[[Path], Tuple[csr_array, bool]]] = {}

    # ----------------------- decorator -------------------------------
    @classmethod
    def register(cls, *exts: str):
        """
        Use as::

            @GraphLoader.register('.gml', '.graphml')
            def _load_graphml(path): ...
        """
        def decorator(fn: Callable[[Path], Tuple[csr_array, bool]]):
            for ext in exts:
                cls.registry[ext.lower()] = fn
            return fn
        return decorator

    # ----------------------- public API ------------------------------
    @staticmethod
    def load(
        path: Path,
        *,
        directed: Optional[bool] = None,
        force_undirected: Optional[bool] = None
    ) -> GraphData:
        """
        Load graph at *path* and return GraphData.

        Direction is detected from the symmetry of the adjacency, so an
        undirected edge list that writes each edge once reads as directed;
        pass `directed=False` (or `force_undirected=True`) for such files.
        """
        ext = path.suffix.lower()
        if ext not in GraphLoader.registry:
            raise ValueError(
                f"GraphLoader: no loader registered for extension '{ext}'."
            )
        adj, is_directed = GraphLoader.registry[ext](path)

        # allow caller to override detection
        if directed is not None:
            is_directed = bool(directed)
        if force_undirected:
            is_directed = False

        # an undirected graph may list each edge in one direction only
        if not is_directed and _is_directed(adj):
            adj = adj.maximum(adj.T)

        return GraphData.from_adjacency(csr_array(adj, dtype=np.int64), directed=is_directed)

    # ---------------- default loaders -------------------------------

# 1. compressed / plain .npz containing a CSR adjacency ----------------
@GraphLoader.register(".npz")
def _load_npz(path: Path) -> Tuple[csr_array, bool]:
    adj = csr_array(load_npz(path))
    return adj, _is_directed(adj)


# 2. Matrix Market -----------------------------------------------------
@GraphLoader.register(".mtx")
def _load_mtx(path: Path) -> Tuple[csr_array, bool]:
    adj = csr_array(mmread(str(path)), dtype=np.int64)
    return adj, _is_directed(adj)


# 3. Plain edge list (.edges, .edgelist, .txt, optional .gz) -----------
@GraphLoader.register(".edges", ".edgelist", ".txt", ".gz")
def _load_edgelist(path: Path) -> Tuple[csr_array, bool]:
    """ one `u v` pair per line; repeated lines are parallel edges """
    opener = gzip.open if path.suffix == ".gz" else open
    rows, cols = [], []
    if not path.exists():
        raise FileNotFoundError(f"GraphLoader: file {path} does not exist.")
    with opener(path, "rt") as f:
        for line in f:
            if not line.strip() or line.startswith("#"):
                continue
            u, v = map(int, line.split()[:2])
            rows.append(u)
            cols.append(v)
    n = max(rows + cols) + 1
    data = np.ones(len(rows), dtype=np.int64)
    # repeated lines become edge multiplicities
    adj = csr_array(coo_array((data, (rows, cols)), shape=(n, n)))

    directed = _is_directed(adj)
    if not directed:
        adj = adj.maximum(adj.T)
    return adj, directed


# 4. GML / GraphML via NetworkX ---------------------------------------
@GraphLoader.register(".gml", ".graphml")
def _load_graphml(path: Path) -> Tuple[csr_array, bool]:
    G = nx.read_gml(path) if path.suffix == ".gml" else nx.read_graphml(path)
    directed = G.is_directed()
    adj = nx.to_scipy_sparse_array(G, format="csr", dtype=np.int64)
    return csr_array(adj), directed

# ---------------- helper ----------------------------------------------
def _is_directed(adj: csr_array, tol: int = 0) -> bool:
    """
    Quick symmetric test for an adjacency.
    `tol` is an integer threshold: if more than `tol` entries differ,
    we declare the graph directed.
    """
    diff = adj - adj.T
    return diff.count_nonzero() > tol
