"""
Nested hierarchy of partition states.

Level ``l + 1`` is a partition of the block graph of level ``l``: every
block slot of the lower level is a vertex of the upper level, carrying
weight 1 while the block is occupied and 0 while it is empty. The stack
owns all levels; a coupled lower level refers to its upper level only
through ``(stack, index)``.
"""
from typing import List, Optional, Sequence

import numpy as np

from blockmodel.block_data import BlockData, Partition
from blockmodel.entropy import EntropyArgs


def default_upper_entropy_args() -> EntropyArgs:
    """Entropy options of the upper levels: dense multigraph ensemble, exact terms."""
    return EntropyArgs(dense=True, multigraph=True, exact=True,
                       degree_dl=False, edges_dl=False, recs=False)


class LevelStack:
    """
    Caller-owned list of per-level states, bottom level first.
    """
    def __init__(self, base: BlockData):
        self.levels: List[BlockData] = [base]
        self.upper_entropy_args: Optional[EntropyArgs] = None

    def __len__(self):
        return len(self.levels)

    def __getitem__(self, level: int) -> BlockData:
        return self.levels[level]

    @property
    def is_coupled(self) -> bool:
        return self.upper_entropy_args is not None

    def add_level(self, b: Optional[Partition] = None, B: Optional[int] = None,
                  use_hash: bool = True) -> BlockData:
        """
        Put a new level on top of the stack, partitioning the block slots of
        the current top level according to ``b`` (all in block 0 by default).
        """
        if self.is_coupled:
            raise ValueError("cannot add a level to a coupled hierarchy; decouple first")
        child = self.levels[-1]
        if b is None:
            b = np.zeros(child.B, dtype=np.int64)
        vweight = (child.wr > 0).astype(np.int64)
        parent = BlockData(child.bg, b, B=B, deg_corr=False, use_hash=use_hash,
                           vweight=vweight)
        self.levels.append(parent)
        return parent

    def couple_levels(self, entropy_args: Optional[EntropyArgs] = None) -> None:
        """
        Couple every level to the one above it, so that moves at a lower
        level include the entropy change of the upper levels and keep them
        consistent.
        """
        if entropy_args is None:
            entropy_args = default_upper_entropy_args()
        self.decouple_levels()
        for l in range(len(self.levels) - 1):
            child, parent = self.levels[l], self.levels[l + 1]
            # upper-level weights track block occupancy of the level below
            occupied = (child.wr > 0).astype(np.int64)
            for r in np.flatnonzero(parent.vweight != occupied):
                parent._change_vertex_weight(int(r), int(occupied[r]))
            parent.clear_egroups()
            parent.clear_neighbour_sampler()
            child.couple_state(self, l + 1, entropy_args)
        self.upper_entropy_args = entropy_args

    def decouple_levels(self) -> None:
        for state in self.levels:
            state.decouple_state()
        self.upper_entropy_args = None

    def entropy(self, entropy_args: Optional[EntropyArgs] = None,
                upper_entropy_args: Optional[EntropyArgs] = None) -> float:
        """
        Sum of the level entropies: the bottom level with ``entropy_args``,
        the upper ones with ``upper_entropy_args`` (the coupling options
        when coupled).
        """
        if upper_entropy_args is None:
            upper_entropy_args = self.upper_entropy_args or default_upper_entropy_args()
        S = self.levels[0].entropy(entropy_args)
        for state in self.levels[1:]:
            S += state.entropy(upper_entropy_args)
        return S

    def level_entropies(self, entropy_args: Optional[EntropyArgs] = None) -> Sequence[float]:
        upper = self.upper_entropy_args or default_upper_entropy_args()
        return [state.entropy(entropy_args if l == 0 else upper)
                for l, state in enumerate(self.levels)]

    def check_consistency(self) -> bool:
        """Aggregates of every level, and upper-level weights, agree with a recount."""
        for l, state in enumerate(self.levels):
            if not (state.check_edge_counts() and state.check_node_counts()):
                return False
            if l > 0:
                occupied = (self.levels[l - 1].wr > 0).astype(np.int64)
                if not np.array_equal(state.vweight, occupied):
                    return False
        return True
