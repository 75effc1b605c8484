"""
Cached per-group statistics of a partition, used to evaluate the
description length of the partition, of the degree sequence and of the
block-pair edge counts, and their changes under single-vertex moves.

One PartitionStats instance is kept per ``pclabel`` group.
"""
from typing import Dict, List, Literal, Optional, Tuple
from collections import Counter, defaultdict
from math import lgamma

from blockmodel.likelihood import lbinom, log_q, safelog, xlogx

DegreeDLKind = Literal["entropy", "uniform", "distributed"]
DegreeList = List[Tuple[int, int, int]]   # (kin, kout, count)

DEGREE_DL_KINDS = ("entropy", "uniform", "distributed")


class PartitionStats:
    def __init__(self, directed: bool, total_B: int, E: int, allow_empty: bool = False):
        self.directed = directed
        self.total_B = total_B
        self.E = E
        self.allow_empty = allow_empty

        self.N = 0
        self.actual_B = 0
        self._total: Dict[int, int] = defaultdict(int)
        self._ep: Dict[int, int] = defaultdict(int)
        self._em: Dict[int, int] = defaultdict(int)
        self._hist: Dict[int, Counter] = defaultdict(Counter)
        self._hist_total: Dict[int, int] = defaultdict(int)

    # ------------------------------------------------------------------
    # bookkeeping
    # ------------------------------------------------------------------
    def change_vertex(self, r: int, vw: int, degs: Optional[DegreeList], diff: int) -> None:
        dv = vw * diff
        if self._total[r] == 0 and dv > 0:
            self.actual_B += 1
        if self._total[r] == vw and dv < 0:
            self.actual_B -= 1
        self._total[r] += dv
        self.N += dv
        assert self._total[r] >= 0, "negative block total"

        if degs is not None:
            hist = self._hist[r]
            for kin, kout, n in degs:
                if n == 0:
                    continue
                hist[(kin, kout)] += n * diff
                if hist[(kin, kout)] == 0:
                    del hist[(kin, kout)]
                self._hist_total[r] += n * diff
                self._em[r] += kin * n * diff
                self._ep[r] += kout * n * diff

    def add_vertex(self, r: int, vw: int, degs: Optional[DegreeList] = None) -> None:
        self.change_vertex(r, vw, degs, 1)

    def remove_vertex(self, r: int, vw: int, degs: Optional[DegreeList] = None) -> None:
        self.change_vertex(r, vw, degs, -1)

    def change_E(self, dE: int) -> None:
        self.E += dE

    def blocks(self):
        return [r for r, n in self._total.items() if n > 0]

    # ------------------------------------------------------------------
    # partition
    # ------------------------------------------------------------------
    def get_partition_dl(self) -> float:
        if self.allow_empty:
            S = lbinom(self.total_B + self.N - 1, self.N)
        else:
            S = lbinom(self.N - 1, self.actual_B - 1)
        S += lgamma(self.N + 1)
        for n in self._total.values():
            S -= lgamma(n + 1)
        S += safelog(self.N)
        return S

    def get_delta_partition_dl(self, r: Optional[int], nr: Optional[int], vw: int) -> float:
        """
        Change in partition description length when a vertex of weight
        ``vw`` moves from r to nr. Either end may be None (vertex entering or
        leaving the partition).
        """
        if r == nr:
            return 0.0

        n = vw
        if n == 0:
            if r is None:
                n = 1
            else:
                return 0.0

        S_b = S_a = 0.0
        if r is not None:
            S_b += -lgamma(self._total[r] + 1)
            S_a += -lgamma(self._total[r] - n + 1)
        if nr is not None:
            S_b += -lgamma(self._total[nr] + 1)
            S_a += -lgamma(self._total[nr] + n + 1)

        dN = 0
        if r is None:
            dN += n
        if nr is None:
            dN -= n

        S_b += lgamma(self.N + 1)
        S_a += lgamma(self.N + dN + 1)

        dB = 0
        if r is not None and self._total[r] == n:
            dB -= 1
        if nr is not None and self._total[nr] == 0:
            dB += 1

        if self.allow_empty:
            S_b += lbinom(self.total_B + self.N - 1, self.N)
            S_a += lbinom(self.total_B + self.N + dN - 1, self.N + dN)
        elif dN != 0 or dB != 0:
            S_b += lbinom(self.N - 1, self.actual_B - 1)
            S_a += lbinom(self.N - 1 + dN, self.actual_B + dB - 1)

        if dN != 0:
            S_b += safelog(self.N)
            S_a += safelog(self.N + dN)

        return S_a - S_b

    # ------------------------------------------------------------------
    # degrees
    # ------------------------------------------------------------------
    def _deg_dl_block(self, kind: DegreeDLKind, total: int, hist_total: int,
                      ep: int, em: int, hist_sum: float) -> float:
        """
        Per-block degree description length. ``hist_sum`` is the sum over
        the block's histogram of xlogx(count) (kind 'entropy') or
        lgamma(count + 1) (kind 'distributed').
        """
        if kind == "entropy":
            return xlogx(hist_total) - hist_sum
        if kind == "uniform":
            S = lbinom(total + ep - 1, ep)
            if self.directed:
                S += lbinom(total + em - 1, em)
            return S
        if kind == "distributed":
            S = log_q(ep, total)
            if self.directed:
                S += log_q(em, total)
            return S - hist_sum + lgamma(hist_total + 1)
        raise NotImplementedError(f"Degree description length kind '{kind}' is not implemented. "
                                  f"Expected one of {DEGREE_DL_KINDS}.")

    @staticmethod
    def _hist_term(kind: DegreeDLKind, count: int) -> float:
        if kind == "entropy":
            return xlogx(count)
        if kind == "distributed":
            return lgamma(count + 1)
        return 0.0

    def get_deg_dl(self, kind: DegreeDLKind) -> float:
        S = 0.0
        for r in self.blocks():
            hist = self._hist[r]
            hist_sum = sum(self._hist_term(kind, c) for c in hist.values())
            S += self._deg_dl_block(kind, self._total[r], self._hist_total[r],
                                    self._ep[r], self._em[r], hist_sum)
        return S

    def _delta_deg_dl_block(self, kind: DegreeDLKind, r: int, vw: int,
                            degs: DegreeList, diff: int) -> float:
        hist = self._hist[r]
        dhist: Dict[Tuple[int, int], int] = defaultdict(int)
        dep = dem = dhist_total = 0
        for kin, kout, n in degs:
            dhist[(kin, kout)] += n * diff
            dhist_total += n * diff
            dep += kout * n * diff
            dem += kin * n * diff

        sum_b = sum_a = 0.0
        for key, dn in dhist.items():
            c = hist.get(key, 0)
            sum_b += self._hist_term(kind, c)
            sum_a += self._hist_term(kind, c + dn)

        total = self._total[r]
        S_b = self._deg_dl_block(kind, total, self._hist_total[r],
                                 self._ep[r], self._em[r], sum_b)
        S_a = self._deg_dl_block(kind, total + vw * diff, self._hist_total[r] + dhist_total,
                                 self._ep[r] + dep, self._em[r] + dem, sum_a)
        return S_a - S_b

    def get_delta_deg_dl(self, r: Optional[int], nr: Optional[int], vw: int,
                         degs: DegreeList, kind: DegreeDLKind) -> float:
        if r == nr or vw == 0:
            return 0.0
        dS = 0.0
        if r is not None:
            dS += self._delta_deg_dl_block(kind, r, vw, degs, -1)
        if nr is not None:
            dS += self._delta_deg_dl_block(kind, nr, vw, degs, 1)
        return dS

    # ------------------------------------------------------------------
    # edges
    # ------------------------------------------------------------------
    def get_edges_dl(self, B: int) -> float:
        if self.directed:
            NB = B * B
        else:
            NB = (B * (B + 1)) / 2
        return lbinom(NB + self.E - 1, self.E)

    def get_delta_edges_dl(self, r: Optional[int], nr: Optional[int], vw: int,
                           actual_B: int) -> float:
        """
        Change of the edge-count description length when a move changes the
        number of occupied blocks. ``actual_B`` is the number of occupied
        blocks summed over all groups.
        """
        if r == nr or self.allow_empty:
            return 0.0
        if vw == 0 and r is not None:
            return 0.0

        n = vw if vw > 0 else 1
        dB = 0
        if r is not None and self._total[r] == n:
            dB -= 1
        if nr is not None and self._total[nr] == 0:
            dB += 1
        if dB == 0:
            return 0.0

        return self.get_edges_dl(actual_B + dB) - self.get_edges_dl(actual_B)
