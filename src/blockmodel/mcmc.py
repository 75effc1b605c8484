"""
Single-vertex Metropolis-Hastings moves on a BlockData state.

BlockMCMC bundles the pieces an outer sampling loop needs: a proposal for a
vertex (respecting the vacate and label constraints), the entropy change
and log proposal-ratio of a candidate move, and the move itself.
"""
from typing import Optional, Sequence, Tuple
from math import exp, log

import numpy as np

from blockmodel.block_data import BlockData
from blockmodel.block_change_proposers import BlockChangeProposer
from blockmodel.entropy import EntropyArgs
from blockmodel.utils.logger import CSVLogger


class BlockMCMC:
    def __init__(self,
                 block_data: BlockData,
                 entropy_args: Optional[EntropyArgs] = None,
                 c: float = 1.0,
                 allow_vacate: bool = True,
                 ):
        self.block_data = block_data
        self.entropy_args = EntropyArgs() if entropy_args is None else entropy_args
        self.c = c
        self.allow_vacate = allow_vacate
        self.change_proposer = BlockChangeProposer(block_data)

        self.block_data.init_mcmc(c, self.entropy_args.dl)

    @property
    def state(self) -> BlockData:
        return self.block_data

    def node_weight(self, v: int) -> int:
        return self.block_data.node_weight(v)

    def move_proposal(self, v: int, rng: np.random.Generator) -> int:
        """
        Propose a new block for v; returns v's current block when the move is
        not allowed (vacating a block when ``allow_vacate`` is off, or
        crossing a label barrier).
        """
        bd = self.block_data
        r = int(bd.b[v])
        if not self.allow_vacate and bd.is_last(v):
            return r
        s = self.change_proposer.sample_block(v, self.c, rng)
        if not bd.allow_move(r, s):
            return r
        return s

    def virtual_move_dS(self, v: int, s: int) -> Tuple[float, float]:
        """
        Entropy change of moving v to s and the log ratio of the backward
        and forward proposal probabilities.
        """
        bd = self.block_data
        r = int(bd.b[v])
        if r == s:
            return 0.0, 0.0
        dS = bd.virtual_move(v, r, s, self.entropy_args)
        a = 0.0
        if not np.isinf(self.c):
            pf = self.change_proposer.get_move_prob(v, r, s, self.c, False)
            pb = self.change_proposer.get_move_prob(v, s, r, self.c, True)
            a = log(pb) - log(pf)
        return dS, a

    def perform_move(self, v: int, s: int) -> None:
        bd = self.block_data
        bd.move_vertex(v, int(bd.b[v]), s)

    # --------------------------------------------------------------
    def _accept_move(self, dS: float, a: float, beta: float, rng: np.random.Generator) -> bool:
        """
        Metropolis-Hastings acceptance for an entropy change dS at inverse
        temperature beta, with log proposal ratio a.
        """
        log_p = -beta * dS + a
        if log_p >= 0:
            return True
        return rng.random() < exp(max(log_p, -700))

    def sweep(self,
              rng: np.random.Generator,
              beta: float = 1.0,
              niter: int = 1,
              vlist: Optional[Sequence[int]] = None,
              logger: Optional[CSVLogger] = None,
        ) -> Tuple[float, int]:
        """
        Plain Metropolis-Hastings sweeps: every vertex of ``vlist`` (all
        vertices by default) is visited once per sweep in random order.

        :return: Tuple of (total entropy change, number of moves).
        """
        bd = self.block_data
        if vlist is None:
            vlist = np.arange(bd.num_nodes)
        vlist = np.asarray(vlist)

        S = bd.entropy(self.entropy_args) if logger is not None else 0.0
        dS_total = 0.0
        nmoves = 0
        for it in range(1, niter + 1):
            n_accepted = 0
            for v in rng.permutation(vlist):
                v = int(v)
                if bd.node_weight(v) == 0:
                    continue
                s = self.move_proposal(v, rng)
                if s == bd.b[v]:
                    continue
                dS, a = self.virtual_move_dS(v, s)
                if self._accept_move(dS, a, beta, rng):
                    self.perform_move(v, s)
                    dS_total += dS
                    n_accepted += 1
            nmoves += n_accepted

            if logger is not None:
                logger.log(iteration=it, entropy=S + dS_total, n_moves=n_accepted)
        return dS_total, nmoves
