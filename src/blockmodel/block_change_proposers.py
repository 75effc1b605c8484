from typing import Optional

import numpy as np

from blockmodel.block_data import BlockData


### BlockChangeProposer: proposing a target block for a single vertex
# The proposal mixes a uniform draw over the blocks with a draw guided by the
# block of a random neighbour; get_move_prob returns the exact probability of
# each outcome so the acceptance ratio can be corrected.
class BlockChangeProposer:
    """
    Proposes block changes for single vertices of a BlockData state.

    ``c`` controls the mixture: for ``c == inf`` the draw is uniform, for
    ``c == 0`` it always follows the edges of a neighbour's block.
    """
    def __init__(self, block_data: BlockData):
        self.block_data = block_data

    def random_neighbour(self, v: int, rng: np.random.Generator) -> Optional[int]:
        return self.block_data.random_neighbour(v, rng)

    def _uniform_block(self, rng: np.random.Generator) -> int:
        bd = self.block_data
        n_occ = len(bd.candidate_blocks)
        n_options = n_occ + (1 if bd.empty_blocks else 0)
        i = int(rng.integers(n_options))
        if i < n_occ:
            return bd.candidate_blocks[i]
        return bd.empty_blocks[int(rng.integers(len(bd.empty_blocks)))]

    def sample_block(self, v: int, c: float, rng: np.random.Generator) -> int:
        """
        Draw a target block for v.

        :param v: The vertex to move.
        :param c: Mixture parameter of the proposal.
        :param rng: Random generator.
        :return: The proposed block (may be the current one).
        """
        bd = self.block_data
        s = self._uniform_block(rng)

        if np.isinf(c):
            return s
        ns = bd.get_neighbour_sampler()
        if ns.empty(v):
            return s

        u = ns.sample(v, rng)
        t = int(bd.b[u])
        m_t = bd.mrp[t] + (bd.mrm[t] if bd.directed else 0)
        B, _ = bd.get_B_sampling()
        p_rand = c * B / (m_t + c * B) if c > 0 else 0.0
        if c == 0 or rng.random() >= p_rand:
            far = bd.get_egroups().sample_neighbour_block(t, rng)
            if far is not None:
                s = far
        return s

    def get_move_prob(self, v: int, r: int, s: int, c: float, reverse: bool = False) -> float:
        """
        Probability that ``sample_block`` proposes s for v.

        With ``reverse=False`` the current state is used and r is v's block.
        With ``reverse=True`` the probability is evaluated as if v had already
        been moved from its current block to r, and s is v's current block;
        this is the probability of proposing the move back.
        """
        bd = self.block_data
        g = bd.graph_data
        bg = bd.bg
        directed = bd.directed
        b = bd.b

        if reverse:
            r_cur = int(b[v])
            vw = bd.vweight[v]
            moved = vw > 0 and r != r_cur
            vacated = moved and bd.is_last(v)
            occupied = moved and bd.wr[r] == 0
            entries = bd.get_move_entries(v, r_cur, r)
            kout = g.out_degree(v)
            kin = g.in_degree(v) if directed else kout
            ws = bd.wr[s] - (vw if s == r_cur else 0) + (vw if s == r else 0)
            s_empty = ws == 0
        else:
            vacated = occupied = False
            entries = None
            s_empty = bd.wr[s] == 0
        B, n_empty = bd.get_B_sampling(vacated, occupied)

        # an empty target is reached through the single slot shared by all
        # empty blocks
        empty_factor = 1.0 / n_empty if s_empty else 1.0

        if np.isinf(c):
            return empty_factor / B

        p = 0.0
        w = 0
        for e, u in g.incidences(v):
            if u == v:
                continue
            ew = g.eweight[e]
            if ew == 0:
                continue
            t = int(b[u])
            w += ew

            mts = bg.get_mrs(t, s)
            mtp = bd.mrp[t]
            mst = mts
            mtm = mtp
            if directed:
                mst = bg.get_mrs(s, t)
                mtm = bd.mrm[t]

            if reverse:
                mts += entries[(t, s)]
                mst += entries[(s, t)] if directed else 0
                if t == r_cur:
                    mtp -= kout
                    mtm -= kin
                if t == r:
                    mtp += kout
                    mtm += kin
                if not directed:
                    mst = mts

            if directed:
                num = mts + mst
                den = mtp + mtm + c * B
            else:
                num = 2 * mts if t == s else mts
                den = mtp + c * B
            if den > 0:
                p += ew * (num + c * empty_factor) / den

        if w == 0:
            return empty_factor / B
        return p / w
