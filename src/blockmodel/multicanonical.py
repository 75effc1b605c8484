"""
Multicanonical (flat-histogram, Wang-Landau) sampling over the entropy axis.

The entropy range ``[S_min, S_max)`` is split into ``nbins`` equal-width
bins. A sweep biases a Metropolis-Hastings chain with the running estimate
of the log density of states so that, once the estimate converges, all
bins are visited equally often.
"""
from typing import Optional, Sequence, Tuple
from math import exp, floor

import numpy as np
from scipy.special import logsumexp

from blockmodel.mcmc import BlockMCMC
from blockmodel.utils.logger import CSVLogger


class MulticanonicalState:
    """
    Histogram, log density-of-states estimate and schedule of a
    multicanonical run.

    :param S_min: Lower end of the entropy range (inclusive).
    :param S_max: Upper end of the entropy range (exclusive).
    :param nbins: Number of bins.
    :param f: Initial modification factor added to ``dens[i]`` per visit.
    :param refine: Start directly in the 1/t refinement phase.
    :param target_bin: Sweeps stop as soon as the chain reaches this bin.
    :param niter: Number of elementary steps per sweep.
    """
    def __init__(self,
                 S_min: float,
                 S_max: float,
                 nbins: int = 1000,
                 f: float = 1.0,
                 refine: bool = False,
                 target_bin: Optional[int] = None,
                 niter: int = 1,
                 ):
        if not S_max > S_min:
            raise ValueError("S_max must be larger than S_min")
        if nbins < 1:
            raise ValueError("nbins must be positive")
        self.S_min = float(S_min)
        self.S_max = float(S_max)
        self.hist = np.zeros(nbins, dtype=np.int64)
        self.dens = np.zeros(nbins)
        self.f = float(f)
        self.refine = refine
        self.target_bin = target_bin
        self.niter = int(niter)
        self.time = 0.0

    @property
    def nbins(self) -> int:
        return len(self.hist)

    def in_range(self, S: float) -> bool:
        return self.S_min <= S < self.S_max

    def get_bin(self, S: float) -> int:
        # rounding can put S just below S_max into bin nbins
        i = int(floor(self.nbins * (S - self.S_min) / (self.S_max - self.S_min)))
        return min(i, self.nbins - 1)

    def get_energies(self) -> np.ndarray:
        """Bin centres."""
        edges = np.linspace(self.S_min, self.S_max, self.nbins + 1)
        return (edges[1:] + edges[:-1]) / 2

    def get_allowed_energies(self) -> np.ndarray:
        """Centres of the bins visited so far."""
        return self.get_energies()[self.hist > 0]

    def get_range(self) -> Tuple[float, float]:
        return self.S_min, self.S_max

    def get_density(self) -> np.ndarray:
        """
        Normalised log density of states over the bins; visited bins sum to
        one in linear scale, unvisited bins are ``-inf``.
        """
        visited = self.dens > 0
        log_g = np.full(self.nbins, -np.inf)
        if visited.any():
            d = self.dens[visited]
            log_g[visited] = d - logsumexp(d)
        return log_g

    def get_hist(self) -> np.ndarray:
        return self.hist

    def reset_hist(self) -> None:
        self.hist[:] = 0

    def get_flatness(self, allow_gaps: bool = True) -> float:
        """
        ``min(min(h) / mean(h), mean(h) / max(h))`` of the visit histogram,
        restricted to visited bins when ``allow_gaps``.
        """
        h = self.hist
        if allow_gaps:
            h = h[h > 0]
        if len(h) == 0:
            return 0.0
        if len(h) == 1:
            h = np.array([1e-6, h[0]])
        h_mean = h.mean()
        return float(min(h.min() / h_mean, h_mean / h.max()))

    def get_f(self) -> float:
        return self.f

    def get_time(self) -> float:
        return self.time


def multicanonical_sweep(m_state: MulticanonicalState,
                         mcmc: BlockMCMC,
                         rng: np.random.Generator,
                         S: Optional[float] = None,
                         vlist: Optional[Sequence[int]] = None,
    ) -> Tuple[float, int]:
    """
    Perform ``m_state.niter`` elementary multicanonical steps.

    Draws of a weightless vertex consume an iteration but leave the
    histogram, the density estimate and the time untouched.

    :param S: Current entropy of the chain; computed from the state when omitted.
    :param vlist: Candidate vertices (all vertices by default).
    :return: Tuple of (entropy after the sweep, number of accepted moves that
        changed the partition).
    :raises ValueError: If the current entropy lies outside ``[S_min, S_max)``.
    """
    bd = mcmc.block_data
    if S is None:
        S = bd.entropy(mcmc.entropy_args)
    if vlist is None:
        vlist = np.arange(bd.num_nodes)
    vlist = np.asarray(vlist)

    if not m_state.in_range(S):
        raise ValueError("current state lies outside the allowed entropy range")

    hist, dens = m_state.hist, m_state.dens
    M = m_state.nbins
    i = m_state.get_bin(S)
    nmoves = 0

    for _ in range(m_state.niter):
        v = int(vlist[rng.integers(len(vlist))])
        if bd.node_weight(v) == 0:
            continue

        s = mcmc.move_proposal(v, rng)
        dS, log_pr = mcmc.virtual_move_dS(v, s)
        nS = S + dS

        if not m_state.in_range(nS):
            accept = False
        else:
            j = m_state.get_bin(nS)
            a = (dens[i] - dens[j]) + log_pr
            accept = a > 0 or rng.random() < exp(a)

        if accept:
            if s != bd.b[v]:
                mcmc.perform_move(v, s)
                nmoves += 1
            S = nS
            i = j

        hist[i] += 1
        dens[i] += m_state.f

        t_prev = m_state.time
        m_state.time += 1. / M
        # 1/t schedule; a run refining from t = 0 keeps its initial f for the first step
        if m_state.refine and t_prev > 0:
            m_state.f *= t_prev / m_state.time

        if m_state.target_bin is not None and i == m_state.target_bin:
            break

    return S, nmoves


def multicanonical_equilibrate(m_state: MulticanonicalState,
                               mcmc: BlockMCMC,
                               rng: np.random.Generator,
                               f_range: Tuple[float, float] = (1.0, 1e-6),
                               r: float = 2.0,
                               flatness: float = 0.95,
                               allow_gaps: bool = True,
                               max_sweeps: Optional[int] = None,
                               vlist: Optional[Sequence[int]] = None,
                               logger: Optional[CSVLogger] = None,
                               verbose: bool = False,
    ) -> Tuple[float, int]:
    """
    Wang-Landau outer loop: sweep until the histogram is flat, then divide
    ``f`` by ``r`` and reset the histogram; once ``f`` drops below 1/t
    switch to the 1/t refinement schedule. Stops when ``f < f_range[1]``
    or after ``max_sweeps`` sweeps.

    :return: Tuple of (final entropy, number of sweeps).
    """
    if m_state.f > f_range[0]:
        m_state.f = f_range[0]
    S = mcmc.block_data.entropy(mcmc.entropy_args)

    count = 0
    while m_state.f >= f_range[1]:
        if max_sweeps is not None and count >= max_sweeps:
            break
        S, nmoves = multicanonical_sweep(m_state, mcmc, rng, S=S, vlist=vlist)
        hf = m_state.get_flatness(allow_gaps)
        count += 1

        if logger is not None:
            logger.log(iteration=count, entropy=S, n_moves=nmoves, mod_factor=m_state.f,
                       flatness=hf, refine=m_state.refine)
        if verbose:
            print(f"sweep {count}: S = {S:.4f}, f = {m_state.f:.3g}, flatness = {hf:.3f}, "
                  f"moves = {nmoves}, refine = {m_state.refine}")

        if not m_state.refine and hf > flatness:
            m_state.f /= r
            if m_state.f >= 1. / m_state.time:
                m_state.reset_hist()
        if not m_state.refine and m_state.time > 0 and m_state.f < 1. / m_state.time:
            m_state.refine = True
            if verbose:
                print(f"switching to 1/t refinement at t = {m_state.time:.3f}")

    return S, count
